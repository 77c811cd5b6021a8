from django.apps import AppConfig
from django.conf import settings


class SearchConfig(AppConfig):
    default_auto_field = "django.db.models.BigAutoField"
    name = "search"

    def ready(self):
        self.reset_limiters()

    def reset_limiters(self, **overrides):
        """(Re)build one limiter per scope from BROKER_RATE_LIMITS; tests pass overrides."""
        from .ratelimit import FixedWindowRateLimiter

        limits = {**settings.BROKER_RATE_LIMITS, **overrides}
        self.limiters = {
            scope: FixedWindowRateLimiter(max_requests, window_ms)
            for scope, (max_requests, window_ms) in limits.items()
        }
        return self.limiters
