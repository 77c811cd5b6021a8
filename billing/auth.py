import logging

from rest_framework.authentication import BaseAuthentication, get_authorization_header
from rest_framework.exceptions import AuthenticationFailed

from core.errors import KeyExpired, Unauthenticated

from .models import ApiKey
from .utils import looks_like_api_key, mask

logger = logging.getLogger(__name__)

AUTHENTICATING_STATUSES = (ApiKey.Status.ACTIVE, ApiKey.Status.EXPIRED)


class ApiKeyAuthentication(BaseAuthentication):
    """
    Lets scripts call the API with the key itself instead of a session JWT.
    Requires: Authorization: Bearer osint_<...>

    Any other bearer token is left to JWTAuthentication. The principal is the
    key's owner; quota and expiry are still evaluated by the quota guard.
    """
    keyword = "Bearer"

    def authenticate(self, request):
        parts = get_authorization_header(request).split()
        if len(parts) != 2 or parts[0].decode().lower() != self.keyword.lower():
            return None

        token = parts[1].decode(errors="ignore").strip()
        if not looks_like_api_key(token):
            return None

        row = (
            ApiKey.objects
            .select_related("owner")
            # expired rows authenticate; the quota guard answers key_expired for them
            .filter(key_value=token, status__in=AUTHENTICATING_STATUSES)
            .first()
        )
        if row is None or not row.owner.is_active:
            logger.info("api key rejected: token=%s", mask(token, keep=10))
            raise AuthenticationFailed("Invalid or inactive API key")

        # request.user is the owner, request.auth the presented key row
        return (row.owner, row)

    def authenticate_header(self, request):
        return f'{self.keyword} realm="api"'


def presented_key(request):
    """The key row the caller authenticated with, or None for JWT and anonymous callers."""
    auth = request.auth
    return auth if isinstance(auth, ApiKey) else None


def request_principal(request):
    """Authenticated owner behind ``request``. A presented key that is no longer active is refused."""
    user = request.user
    if not user or not user.is_authenticated:
        raise Unauthenticated()
    key = presented_key(request)
    if key is not None and key.status != ApiKey.Status.ACTIVE:
        raise KeyExpired()
    return user
