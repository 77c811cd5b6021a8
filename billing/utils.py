import calendar
import secrets
import string
from datetime import datetime

from django.conf import settings

# Config
TOKEN_PREFIX_STR = "osint_"     # visible prefix in the raw token
TOKEN_BODY_LEN = 32
PREFIX_LEN = 12                 # <= models.ApiKey.key_prefix max_length

_ALPHABET = string.ascii_letters + string.digits

PLAN_ALIASES = {
    "básico": "basic",
    "basico": "basic",
    "empresa": "enterprise",
}


def make_api_key():
    """
    Generate a new API key.
    Returns (plain, prefix).
    - plain: the full token, shown to the owner on their dashboard
    - prefix: first PREFIX_LEN chars, safe to log/display
    """
    plain = TOKEN_PREFIX_STR + "".join(secrets.choice(_ALPHABET) for _ in range(TOKEN_BODY_LEN))
    return plain, plain[:PREFIX_LEN]


def looks_like_api_key(token: str) -> bool:
    return bool(token) and token.startswith(TOKEN_PREFIX_STR)


def normalize_plan(plan) -> str | None:
    """Map a plan name (any case, legacy Spanish aliases) to a known plan, or None."""
    name = str(plan or "").strip().lower()
    name = PLAN_ALIASES.get(name, name)
    return name if name in settings.PLAN_LIMITS else None


def plan_limit(plan: str) -> int:
    return settings.PLAN_LIMITS.get(plan, settings.PLAN_LIMITS[settings.DEFAULT_PLAN])


def add_one_month(when: datetime) -> datetime:
    """Same day next month, clamped to the month's last day (Jan 31 -> Feb 28/29)."""
    year, month = (when.year + 1, 1) if when.month == 12 else (when.year, when.month + 1)
    day = min(when.day, calendar.monthrange(year, month)[1])
    return when.replace(year=year, month=month, day=day)


def mask(value: str | None, keep=4):
    """Hide secrets in logs."""
    if not value:
        return ""
    value = str(value)
    return value[:keep] + "…" if len(value) > keep else "****"
