import logging

from django.conf import settings
from django.db import transaction
from django.db.models import F

from billing.models import ApiKey
from .models import SearchLog

logger = logging.getLogger(__name__)


def record_usage(key: ApiKey, query: str, result_count: int) -> int:
    """
    Charge one request to ``key`` and append the audit row; returns remaining quota.

    The increment is a single ``UPDATE ... SET requests_used = requests_used + 1``
    so concurrent searches on one key never lose a count. Runs on the service
    connection (BROKER_SERVICE_DB_ALIAS), not the caller-scoped read path.
    Only call this after the engine answered.
    """
    alias = settings.BROKER_SERVICE_DB_ALIAS
    with transaction.atomic(using=alias):
        rows = ApiKey.objects.using(alias).filter(pk=key.pk)
        rows.update(requests_used=F("requests_used") + 1)
        used, limit = rows.values_list("requests_used", "requests_limit").get()

        SearchLog.objects.using(alias).create(
            owner_id=key.owner_id,
            api_key_id=key.pk,
            query=query,
            results_count=result_count,
        )

    remaining = max(limit - used, 0)
    logger.info(
        "metering: key=%s owner=%s used=%d limit=%d remaining=%d results=%d",
        key.key_prefix, key.owner_id, used, limit, remaining, result_count,
    )
    return remaining
