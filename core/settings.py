from pathlib import Path
from datetime import timedelta
import os
from dotenv import load_dotenv

load_dotenv()

BASE_DIR = Path(__file__).resolve().parent.parent


def _rate(name: str, default: str) -> tuple[int, int]:
    """Parse RATE_LIMIT_<NAME>="<requests>/<seconds>" into (max_requests, window_ms)."""
    raw = os.getenv(f"RATE_LIMIT_{name.upper()}", default)
    count, _, seconds = raw.partition("/")
    return int(count), int(seconds or 60) * 1000


# --- Security & env (single source of truth) ---
SECRET_KEY = os.getenv("DJANGO_SECRET_KEY", "devsecret")  # local fallback only
DEBUG = os.getenv("DEBUG", "0") == "1"

ALLOWED_HOSTS = os.getenv("ALLOWED_HOSTS", "*").split(",")

JWT_SIGNING_KEY = os.getenv("JWT_SIGNING_KEY", "") or SECRET_KEY
JWT_ISS = os.getenv("JWT_ISS", "")

# Downstream search engine
ELASTICSEARCH_URL = os.getenv("ELASTICSEARCH_URL", "") or os.getenv("ELASTICSEARCH_NGROK_URL", "")
ELASTICSEARCH_API_KEY = os.getenv("ELASTICSEARCH_API_KEY", "")
ELASTICSEARCH_PAGE_SIZE = int(os.getenv("ELASTICSEARCH_PAGE_SIZE", "100"))

# PayPal (sandbox | live)
PAYPAL_CLIENT_ID = os.getenv("PAYPAL_CLIENT_ID", "")
PAYPAL_CLIENT_SECRET = os.getenv("PAYPAL_CLIENT_SECRET", "")
PAYPAL_MODE = os.getenv("PAYPAL_MODE", "sandbox")
PAYPAL_WEBHOOK_ID = os.getenv("PAYPAL_WEBHOOK_ID", "")
BRAND_NAME = os.getenv("BRAND_NAME", "OSINTHUB")

# Manual USDT transfers are confirmed by an admin
CRYPTO_WALLET = os.getenv("CRYPTO_WALLET", "")

# --- Broker policy ---
# Connection used for quota increments and audit rows (service privileges)
BROKER_SERVICE_DB_ALIAS = os.getenv("BROKER_SERVICE_DB_ALIAS", "default")

BROKER_RATE_LIMITS = {
    "search": _rate("search", "30/60"),
    "create_order": _rate("create_order", "10/60"),
    "capture": _rate("capture", "5/60"),
    "manual_transfer": _rate("manual_transfer", "5/60"),
}

PLAN_LIMITS = {
    "basic": 100,
    "pro": 1000,
    "enterprise": 999999,
}
DEFAULT_PLAN = "basic"

# --- Apps ---
INSTALLED_APPS = [
    "django.contrib.admin",
    "django.contrib.auth",
    "django.contrib.contenttypes",
    "django.contrib.sessions",
    "django.contrib.messages",
    "django.contrib.staticfiles",
    # third-party
    "rest_framework",
    "corsheaders",
    # local
    "accounts",
    "billing",
    "search",
    "reviews",
]

# --- Middleware (order matters) ---
MIDDLEWARE = [
    "django.middleware.security.SecurityMiddleware",
    "whitenoise.middleware.WhiteNoiseMiddleware",   # serve admin static files
    "corsheaders.middleware.CorsMiddleware",
    "django.contrib.sessions.middleware.SessionMiddleware",
    "django.middleware.common.CommonMiddleware",
    "django.middleware.csrf.CsrfViewMiddleware",
    "django.contrib.auth.middleware.AuthenticationMiddleware",
    "django.contrib.messages.middleware.MessageMiddleware",
]

TEMPLATES = [
    {
        "BACKEND": "django.template.backends.django.DjangoTemplates",
        "DIRS": [],
        "APP_DIRS": True,
        "OPTIONS": {
            "context_processors": [
                "django.template.context_processors.debug",
                "django.template.context_processors.request",
                "django.contrib.auth.context_processors.auth",
                "django.contrib.messages.context_processors.messages",
            ],
        },
    },
]

ROOT_URLCONF = "core.urls"
WSGI_APPLICATION = "core.wsgi.application"

# --- Database (SQLite on persistent path) ---
SQLITE_PATH = os.getenv("SQLITE_PATH", str(BASE_DIR / "db.sqlite3"))
DATABASES = {
    "default": {
        "ENGINE": "django.db.backends.sqlite3",
        "NAME": SQLITE_PATH,
        "OPTIONS": {"timeout": 20},
    }
}

# --- Auth ---
AUTH_USER_MODEL = "accounts.User"
AUTH_PASSWORD_VALIDATORS = [
    {"NAME": "django.contrib.auth.password_validation.UserAttributeSimilarityValidator"},
    {"NAME": "django.contrib.auth.password_validation.MinimumLengthValidator"},
    {"NAME": "django.contrib.auth.password_validation.CommonPasswordValidator"},
    {"NAME": "django.contrib.auth.password_validation.NumericPasswordValidator"},
]

# --- I18N ---
LANGUAGE_CODE = "en-us"
TIME_ZONE = "UTC"
USE_I18N = True
USE_TZ = True

# --- Static (WhiteNoise) ---
STATIC_URL = "/static/"
STATIC_ROOT = BASE_DIR / "staticfiles"

STORAGES = {
    "default": {
        "BACKEND": "django.core.files.storage.FileSystemStorage",
    },
    "staticfiles": {
        "BACKEND": "whitenoise.storage.CompressedManifestStaticFilesStorage",
    },
}

DEFAULT_AUTO_FIELD = "django.db.models.BigAutoField"

# --- CORS / CSRF ---
CORS_ALLOW_ALL_ORIGINS = True
CORS_ALLOW_HEADERS = [
    "authorization",
    "x-client-info",
    "apikey",
    "content-type",
]
CORS_EXPOSE_HEADERS = ["Retry-After", "X-RateLimit-Remaining"]

CSRF_TRUSTED_ORIGINS = [o for o in os.getenv("CSRF_TRUSTED_ORIGINS", "").split(",") if o]

# --- DRF ---
REST_FRAMEWORK = {
    "DEFAULT_AUTHENTICATION_CLASSES": [
        "billing.auth.ApiKeyAuthentication",
        "rest_framework_simplejwt.authentication.JWTAuthentication",
    ],
    "DEFAULT_PERMISSION_CLASSES": [
        "rest_framework.permissions.IsAuthenticated",
    ],
    "EXCEPTION_HANDLER": "core.errors.broker_exception_handler",
}

SIMPLE_JWT = {
    "ACCESS_TOKEN_LIFETIME": timedelta(minutes=int(os.getenv("ACCESS_TOKEN_MINUTES", "60"))),
    "REFRESH_TOKEN_LIFETIME": timedelta(days=7),
    "SIGNING_KEY": JWT_SIGNING_KEY,
    "ISSUER": JWT_ISS or None,
    "AUTH_HEADER_TYPES": ("Bearer",),
}

# --- Celery (PayPal webhook captures) ---
CELERY_BROKER_URL = os.getenv("CELERY_BROKER_URL", "redis://localhost:6379/0")
CELERY_RESULT_BACKEND = os.getenv("CELERY_RESULT_BACKEND", "redis://localhost:6379/0")
CELERY_TASK_ALWAYS_EAGER = os.getenv("CELERY_TASK_ALWAYS_EAGER", "0") == "1"

# --- Logging to console ---
LOGGING = {
    "version": 1,
    "disable_existing_loggers": False,
    "formatters": {
        "plain": {"format": "%(asctime)s %(levelname)s %(name)s: %(message)s"},
    },
    "handlers": {
        "console": {"class": "logging.StreamHandler", "formatter": "plain"},
    },
    "root": {  # catch-all logger
        "handlers": ["console"],
        "level": os.getenv("DJANGO_LOG_LEVEL", "INFO"),
    },
    "loggers": {
        "django": {
            "handlers": ["console"],
            "level": "INFO",
            "propagate": False,
        },
        "django.request": {  # shows 500 errors with tracebacks
            "handlers": ["console"],
            "level": "ERROR",
            "propagate": False,
        },
        # broker apps: guard decisions, engine fallbacks, settlements
        **{
            name: {"handlers": ["console"], "level": os.getenv("BROKER_LOG_LEVEL", "INFO"), "propagate": False}
            for name in ("core", "billing", "search", "reviews")
        },
    },
}
