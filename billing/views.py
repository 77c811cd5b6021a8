import json
import logging

from django.conf import settings
from django.http import HttpResponse
from django.views.decorators.csrf import csrf_exempt
from django.views.decorators.http import require_POST
from kombu.exceptions import OperationalError
from rest_framework.response import Response

from core.errors import BrokerError, InvalidPlanOrPrice
from core.views import BrokerAPIView, cid
from search.ratelimit import (
    CaptureRateThrottle,
    CreateOrderRateThrottle,
    ManualTransferRateThrottle,
)

from . import services
from .auth import request_principal
from .models import ApiKey, WebhookEvent
from .paypal import PayPalClient
from .serializers import ApiKeySummary, CapturePayload, PlanPricePayload
from .tasks import capture_approved_order

logger = logging.getLogger(__name__)

# PayPal events that mean "buyer approved, ready to capture"
CAPTURE_EVENTS = {"CHECKOUT.ORDER.APPROVED"}


def _plan_and_price(request):
    s = PlanPricePayload(data=request.data)
    if not s.is_valid():
        raise InvalidPlanOrPrice()
    return s.validated_data["plan"], s.validated_data["price"]


# ---------- PayPal checkout ----------

class CreateOrderView(BrokerAPIView):
    """
    POST {"plan": "pro", "price": 99}
    200 -> {"success": true, "orderId": "<paypal order id>"}
    """
    throttle_classes = [CreateOrderRateThrottle]

    def post(self, request):
        user = request_principal(request)
        plan, price = _plan_and_price(request)
        order_id = services.create_order(user, plan, price, return_base=request.headers.get("Origin"))
        return Response({"success": True, "orderId": order_id})


class CaptureOrderView(BrokerAPIView):
    """
    POST {"orderId": "<paypal order id>"}
    200 -> {"success": true, "apiKey", "plan", "expiresAt"}
    """
    throttle_classes = [CaptureRateThrottle]

    def post(self, request):
        user = request_principal(request)
        s = CapturePayload(data=request.data)
        s.is_valid(raise_exception=True)
        order_id = s.validated_data["orderId"]

        logger.info("capture: request cid=%s user=%s order=%s", cid(request), user.pk, order_id)
        settlement = services.capture_order(user, order_id)
        return Response({
            "success": True,
            "message": "Payment completed successfully",
            "apiKey": settlement.api_key.key_value,
            "plan": settlement.plan,
            "expiresAt": settlement.expires_at.isoformat(),
        })


# ---------- Manual crypto transfer ----------

class ManualTransferView(BrokerAPIView):
    """
    POST {"plan": "basic", "price": 29}
    200 -> {"success": true, "paymentId", "wallet", "currency", "amount"}
    The key is issued once an administrator confirms the transfer.
    """
    throttle_classes = [ManualTransferRateThrottle]

    def post(self, request):
        user = request_principal(request)
        plan, price = _plan_and_price(request)
        payment = services.record_manual_transfer(user, plan, price)
        return Response({
            "success": True,
            "paymentId": payment.pk,
            "wallet": settings.CRYPTO_WALLET,
            "currency": payment.currency,
            "amount": str(payment.amount),
            "status": payment.status,
        })


# ---------- Key overview ----------

class MyKeyView(BrokerAPIView):
    """Return the caller's active key with its quota counters."""

    def get(self, request):
        user = request_principal(request)
        row = ApiKey.objects.owned_by(user).active().first()
        if not row:
            return Response({"success": True, "key": None})
        return Response({"success": True, "key": ApiKeySummary(row).data})


# ---------- PayPal webhook ----------

@csrf_exempt
@require_POST
def paypal_webhook(request):
    """
    Verify the delivery with PayPal, drop duplicates, and hand approved orders
    to Celery for capture. ACK fast so PayPal does not retry.
    """
    try:
        event = json.loads(request.body or b"{}")
    except ValueError:
        logger.warning("webhook: invalid JSON payload")
        return HttpResponse(status=400)

    webhook_id = settings.PAYPAL_WEBHOOK_ID
    if not webhook_id:
        logger.error("PAYPAL_WEBHOOK_ID not set")
        return HttpResponse(status=400)

    try:
        verified = PayPalClient.from_settings().verify_webhook(request.headers, event, webhook_id)
    except BrokerError as exc:
        # PayPal redelivers on non-2xx
        logger.warning("webhook: verification unavailable reason=%s", exc.reason)
        return HttpResponse(status=503)
    if not verified:
        logger.warning("webhook: signature verification failed id=%s", event.get("id"))
        return HttpResponse(status=400)

    event_id = event.get("id") or ""
    kind = event.get("event_type") or ""
    _, created = WebhookEvent.objects.get_or_create(event_id=event_id, defaults={"kind": kind})
    if not created:
        logger.info("webhook: duplicate event id=%s kind=%s", event_id, kind)
        return HttpResponse(status=200)

    logger.info("webhook OK: id=%s kind=%s", event_id, kind)
    if kind in CAPTURE_EVENTS:
        order_id = (event.get("resource") or {}).get("id")
        if order_id:
            try:
                capture_approved_order.delay(order_id)
            except OperationalError:
                logger.exception("webhook: failed to enqueue capture order=%s", order_id)
                # forget the event so PayPal's redelivery is processed
                WebhookEvent.objects.filter(event_id=event_id).delete()
                return HttpResponse(status=503)

    return HttpResponse(status=200)
