import logging

from django.utils import timezone

from billing.models import ApiKey
from core.errors import KeyExpired, NoActiveKey, QuotaExceeded, Unauthenticated

logger = logging.getLogger(__name__)


def is_usable(key: ApiKey, now=None) -> bool:
    """Active, not past its expiry, and with quota left."""
    now = now or timezone.now()
    return (
        key.status == ApiKey.Status.ACTIVE
        and not key.is_expired(now)
        and key.requests_used < key.requests_limit
    )


def _mark_expired(key: ApiKey) -> None:
    # conditional so a concurrent status change wins over the lazy flip
    ApiKey.objects.filter(pk=key.pk, status=ApiKey.Status.ACTIVE).update(status=ApiKey.Status.EXPIRED)
    key.status = ApiKey.Status.EXPIRED


def authorize_search(principal, now=None, presented=None) -> ApiKey:
    """
    Resolve the principal's active key and check it can pay for one search.

    ``presented`` is the key row the caller authenticated with, if any; an
    expired one is refused even when the owner holds a newer key.

    Raises Unauthenticated, NoActiveKey, KeyExpired or QuotaExceeded, in that
    order. The returned row is the snapshot metering must increment.
    """
    if principal is None or not getattr(principal, "is_authenticated", False):
        raise Unauthenticated()

    if presented is not None and presented.status == ApiKey.Status.EXPIRED:
        logger.info("quota: expired key presented user=%s key=%s", principal.pk, presented.key_prefix)
        raise KeyExpired()

    now = now or timezone.now()
    keys = ApiKey.objects.owned_by(principal)
    key = keys.active().first()

    if key is None:
        latest = keys.only("status").first()
        if latest is not None and latest.status == ApiKey.Status.EXPIRED:
            raise KeyExpired()
        logger.info("quota: no active key user=%s", principal.pk)
        raise NoActiveKey()

    if is_usable(key, now):
        return key

    if key.is_expired(now):
        logger.info("quota: key expired user=%s key=%s expires_at=%s", principal.pk, key.key_prefix, key.expires_at)
        _mark_expired(key)
        raise KeyExpired()

    logger.info("quota: exhausted user=%s key=%s used=%d", principal.pk, key.key_prefix, key.requests_used)
    raise QuotaExceeded()
