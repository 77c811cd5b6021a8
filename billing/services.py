"""
Payment settlement and key provisioning.

Per payment attempt: Initiated -> OrderCreated -> Captured | Canceled | Failed.
A key is only ever provisioned inside the same transaction that marks the
payment completed, so a failed capture leaves the payment pending and
retryable with the same order id.
"""
from __future__ import annotations

import json
import logging
from dataclasses import dataclass
from datetime import datetime
from decimal import Decimal, InvalidOperation

from django.conf import settings
from django.db import DatabaseError, transaction
from django.utils import timezone

from core.errors import (
    InvalidInput,
    InvalidPlanOrPrice,
    KeyProvisioningFailed,
    PaymentAlreadyCaptured,
    PaymentNotCompleted,
    ProcessorMisconfigured,
    ProcessorUnavailable,
    Unauthenticated,
    UnknownOrder,
)

from .models import ApiKey, Payment
from .paypal import PayPalClient, extract_custom_id
from .utils import add_one_month, make_api_key, normalize_plan, plan_limit

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class Settlement:
    api_key: ApiKey
    plan: str
    expires_at: datetime


def _require_principal(principal):
    if principal is None or not getattr(principal, "is_authenticated", False):
        raise Unauthenticated()


def _validate_plan_and_price(plan, price) -> tuple[str, Decimal]:
    name = normalize_plan(plan)
    try:
        amount = Decimal(str(price))
    except (InvalidOperation, TypeError, ValueError):
        amount = None
    if name is None or amount is None or not amount.is_finite() or amount <= 0:
        raise InvalidPlanOrPrice()
    return name, amount.quantize(Decimal("0.01"))


# ---------- Key lifecycle ----------

def deactivate_active_keys(owner, now=None) -> int:
    """Set every active key of ``owner`` inactive. Returns the number of rows changed."""
    changed = ApiKey.objects.owned_by(owner).active().update(
        status=ApiKey.Status.INACTIVE, deactivated_at=now or timezone.now()
    )
    if changed:
        logger.info("API keys deactivated: owner=%s count=%d", owner.pk, changed)
    return changed


def provision_key(owner, plan: str, now=None) -> ApiKey:
    """
    Rotate ``owner`` onto a fresh active key for ``plan``: prior active keys
    become inactive, the new one gets the plan quota and a one-month expiry.
    """
    now = now or timezone.now()
    plain, prefix = make_api_key()
    try:
        with transaction.atomic():
            deactivate_active_keys(owner, now)
            key = ApiKey.objects.create(
                owner=owner,
                key_value=plain,
                key_prefix=prefix,
                plan=plan,
                status=ApiKey.Status.ACTIVE,
                requests_used=0,
                requests_limit=plan_limit(plan),
                expires_at=add_one_month(now),
            )
    except DatabaseError as exc:
        logger.exception("API key provisioning failed: owner=%s plan=%s", owner.pk, plan)
        raise KeyProvisioningFailed() from exc

    logger.info(
        "API key ISSUED: owner=%s plan=%s limit=%d prefix=%s expires=%s",
        owner.pk, plan, key.requests_limit, prefix, key.expires_at.isoformat(),
    )
    return key


def grant_key(owner, plan: str) -> ApiKey:
    """Manual grant by an administrator (no payment attached)."""
    name = normalize_plan(plan)
    if name is None:
        raise InvalidPlanOrPrice(f"Unknown plan: {plan}")
    logger.info("manual key grant: owner=%s plan=%s", owner.pk, name)
    return provision_key(owner, name)


def set_key_status(key: ApiKey, status: str) -> ApiKey:
    """Administrative status change. Activating a key retires the owner's other active key."""
    if status not in ApiKey.Status.values:
        raise InvalidInput(f"Unknown key status: {status}")

    now = timezone.now()
    with transaction.atomic():
        if status == ApiKey.Status.ACTIVE:
            ApiKey.objects.owned_by(key.owner).active().exclude(pk=key.pk).update(
                status=ApiKey.Status.INACTIVE, deactivated_at=now
            )
            key.deactivated_at = None
        elif key.status == ApiKey.Status.ACTIVE:
            key.deactivated_at = now
        key.status = status
        key.save(update_fields=["status", "deactivated_at"])

    logger.info("API key status set: key=%s owner=%s status=%s", key.key_prefix, key.owner_id, status)
    return key


# ---------- PayPal path ----------

def create_order(principal, plan, price, return_base=None, client: PayPalClient | None = None) -> str:
    """Create a PayPal order and the matching pending Payment. Returns the PayPal order id."""
    _require_principal(principal)
    name, amount = _validate_plan_and_price(plan, price)
    client = client or PayPalClient.from_settings()

    logger.info("create_order: user=%s plan=%s price=%s", principal.pk, name, amount)
    order = client.create_order(amount=amount, plan=name, user_id=principal.pk, return_base=return_base)
    order_id = order.get("id")
    if not order_id:
        logger.error("create_order: PayPal answered without an order id user=%s", principal.pk)
        raise ProcessorUnavailable("PayPal did not return an order id.")

    Payment.objects.create(
        owner=principal,
        amount=amount,
        plan=name,
        method=Payment.Method.PAYPAL,
        status=Payment.Status.PENDING,
        external_transaction_id=order_id,
        currency="USD",
    )
    logger.info("PayPal order created: order=%s user=%s", order_id, principal.pk)
    return order_id


def plan_from_capture(capture: dict, order_id: str = "") -> str:
    """
    Recover the plan from the order's custom_id metadata.
    Missing or unparseable metadata falls back to DEFAULT_PLAN.
    """
    raw = extract_custom_id(capture)
    try:
        plan = normalize_plan(json.loads(raw).get("plan"))
    except (TypeError, ValueError, AttributeError):
        plan = None
    if plan is None:
        logger.warning(
            "capture: could not read plan from custom_id order=%s raw=%r, using default plan=%s",
            order_id, raw, settings.DEFAULT_PLAN,
        )
        return settings.DEFAULT_PLAN
    return plan


def capture_order(principal, order_id, client: PayPalClient | None = None) -> Settlement:
    """
    Capture a PayPal order the principal created and provision their key.
    The pending -> completed transition is a conditional update, so of two
    concurrent captures of one order only the first provisions a key.
    """
    _require_principal(principal)
    order_id = str(order_id or "").strip()
    if not order_id:
        raise InvalidInput("Order ID is required.")
    client = client or PayPalClient.from_settings()

    with transaction.atomic():
        try:
            payment = Payment.objects.select_for_update().get(
                external_transaction_id=order_id,
                owner=principal,
                method=Payment.Method.PAYPAL,
            )
        except Payment.DoesNotExist:
            raise UnknownOrder() from None

        if payment.status == Payment.Status.COMPLETED:
            logger.info("capture: order=%s already settled for user=%s", order_id, principal.pk)
            raise PaymentAlreadyCaptured()
        if payment.status == Payment.Status.FAILED:
            raise PaymentNotCompleted("This payment was marked as failed.")

        logger.info("capture: start order=%s user=%s", order_id, principal.pk)
        capture = client.capture_order(order_id)

        status = capture.get("status")
        if status != "COMPLETED":
            logger.warning("capture: order=%s not completed status=%s", order_id, status)
            raise PaymentNotCompleted(f"Payment not completed: {status}")

        plan = plan_from_capture(capture, order_id)
        now = timezone.now()

        # select_for_update is a no-op on SQLite
        settled = Payment.objects.filter(pk=payment.pk, status=Payment.Status.PENDING).update(
            status=Payment.Status.COMPLETED, completed_at=now
        )
        if not settled:
            logger.info("capture: order=%s settled concurrently for user=%s", order_id, principal.pk)
            raise PaymentAlreadyCaptured()

        payer_id = (capture.get("payer") or {}).get("payer_id")
        if payer_id and principal.paypal_payer_id != payer_id:
            principal.paypal_payer_id = payer_id
            principal.save(update_fields=["paypal_payer_id"])

        key = provision_key(principal, plan, now=now)

    logger.info("capture: completed order=%s user=%s plan=%s", order_id, principal.pk, plan)
    return Settlement(api_key=key, plan=plan, expires_at=key.expires_at)


def capture_approved_order(order_id: str, client: PayPalClient | None = None) -> Settlement | None:
    """Processor-callback path: capture on behalf of whoever created the order."""
    payment = (
        Payment.objects.select_related("owner")
        .filter(external_transaction_id=order_id, method=Payment.Method.PAYPAL)
        .first()
    )
    if payment is None:
        logger.warning("webhook capture: no payment for order=%s", order_id)
        return None
    if not payment.is_pending:
        logger.info("webhook capture: order=%s already %s", order_id, payment.status)
        return None
    return capture_order(payment.owner, order_id, client=client)


# ---------- Manual crypto transfer path ----------

def record_manual_transfer(principal, plan, price) -> Payment:
    """
    Record a pending USDT transfer intent. Nothing is captured automatically;
    an administrator confirms it with ``confirm_manual_payment``.
    """
    _require_principal(principal)
    name, amount = _validate_plan_and_price(plan, price)
    if not settings.CRYPTO_WALLET:
        raise ProcessorMisconfigured("Crypto wallet not configured. Contact the administrator.")

    payment = Payment.objects.create(
        owner=principal,
        amount=amount,
        plan=name,
        method=Payment.Method.MANUAL_TRANSFER,
        status=Payment.Status.PENDING,
        currency="USDT",
    )
    logger.info("manual transfer recorded: payment=%s user=%s plan=%s amount=%s", payment.pk, principal.pk, name, amount)
    return payment


def confirm_manual_payment(payment: Payment, transaction_id: str | None = None) -> ApiKey:
    """Admin-side settlement of a manual transfer: completes the payment and provisions a key."""
    with transaction.atomic():
        locked = Payment.objects.select_for_update().select_related("owner").get(pk=payment.pk)
        if locked.method != Payment.Method.MANUAL_TRANSFER:
            raise InvalidInput("Only manual transfers are confirmed by hand.")
        if not locked.is_pending:
            raise PaymentAlreadyCaptured(f"Payment is already {locked.status}.")

        now = timezone.now()
        changes = {"status": Payment.Status.COMPLETED, "completed_at": now}
        if transaction_id:
            changes["external_transaction_id"] = transaction_id
        if not Payment.objects.filter(pk=locked.pk, status=Payment.Status.PENDING).update(**changes):
            raise PaymentAlreadyCaptured("Payment is already settled.")

        key = provision_key(locked.owner, locked.plan, now=now)

    logger.info("manual transfer confirmed: payment=%s owner=%s plan=%s", locked.pk, locked.owner_id, locked.plan)
    return key


def reject_manual_payment(payment: Payment) -> Payment:
    updated = Payment.objects.filter(
        pk=payment.pk, method=Payment.Method.MANUAL_TRANSFER, status=Payment.Status.PENDING
    ).update(status=Payment.Status.FAILED)
    if not updated:
        raise InvalidInput("Only pending manual transfers can be rejected.")
    payment.refresh_from_db()
    logger.info("manual transfer rejected: payment=%s owner=%s", payment.pk, payment.owner_id)
    return payment
