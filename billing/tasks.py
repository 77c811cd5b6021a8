import logging

from celery import shared_task

from core.errors import BrokerError, ProcessorAuthFailed, ProcessorUnavailable
from .services import capture_approved_order as _capture_approved_order

logger = logging.getLogger(__name__)


@shared_task(bind=True, max_retries=3, default_retry_delay=30)
def capture_approved_order(self, order_id):
    """
    Capture a PayPal order reported as APPROVED by the webhook and issue the key.
    Processor outages are retried; business rejections are logged and dropped.
    """
    try:
        settlement = _capture_approved_order(order_id)
    except (ProcessorUnavailable, ProcessorAuthFailed) as exc:
        logger.warning("webhook capture: processor error order=%s err=%s, retrying", order_id, exc)
        raise self.retry(exc=exc)
    except BrokerError as exc:
        logger.warning("webhook capture: order=%s not settled reason=%s", order_id, exc.reason)
        return None

    if settlement is None:
        return None
    logger.info("webhook capture: order=%s settled plan=%s", order_id, settlement.plan)
    return settlement.plan
