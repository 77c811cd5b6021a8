import time

from rest_framework.permissions import AllowAny
from rest_framework.views import APIView

from core.errors import RateLimited


def cid(request):
    """Correlation id to trace a single request through logs."""
    return request.headers.get("X-Request-Id") or f"cid-{int(time.time() * 1000)}"


class BrokerAPIView(APIView):
    """
    Base for the quota/payment endpoints.

    Rate limiting runs before authentication: credentials are only resolved
    when the handler first touches ``request.user``. Permission checks are
    left to the services, which raise ``Unauthenticated`` themselves.
    """
    permission_classes = [AllowAny]
    rate_limit = None

    def perform_authentication(self, request):
        pass

    def check_throttles(self, request):
        for throttle in self.get_throttles():
            allowed = throttle.allow_request(request, self)
            self.rate_limit = getattr(throttle, "result", None)
            if not allowed:
                self.throttled(request, throttle.wait())

    def throttled(self, request, wait):
        raise RateLimited(wait=wait)

    def finalize_response(self, request, response, *args, **kwargs):
        response = super().finalize_response(request, response, *args, **kwargs)
        if self.rate_limit is not None:
            response["X-RateLimit-Remaining"] = str(self.rate_limit.remaining)
        return response
