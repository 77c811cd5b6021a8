"""
Broker failure taxonomy.

Every failure the broker can report is a DRF ``APIException`` subclass so
views can simply ``raise`` and let ``broker_exception_handler`` render
``{"success": false, "error": <message>, "reason": <code>}``.
"""
import logging

from rest_framework import status
from rest_framework.exceptions import APIException, AuthenticationFailed, NotAuthenticated, Throttled
from rest_framework.response import Response

logger = logging.getLogger(__name__)


class BrokerError(APIException):
    status_code = status.HTTP_500_INTERNAL_SERVER_ERROR
    default_detail = "Request could not be completed."
    default_code = "broker_error"

    @property
    def reason(self) -> str:
        return self.default_code


# ---------- Guard chain ----------

class Unauthenticated(BrokerError):
    status_code = status.HTTP_401_UNAUTHORIZED
    default_detail = "Not authenticated."
    default_code = "unauthenticated"


class RateLimited(Throttled):
    default_detail = "Too many requests. Please wait a moment."
    default_code = "rate_limited"


class NoActiveKey(BrokerError):
    status_code = status.HTTP_403_FORBIDDEN
    default_detail = "You have no active API key. Please purchase a plan."
    default_code = "no_active_key"


class KeyExpired(BrokerError):
    status_code = status.HTTP_403_FORBIDDEN
    default_detail = "Your API key has expired. Please renew your plan."
    default_code = "key_expired"


class QuotaExceeded(BrokerError):
    status_code = status.HTTP_403_FORBIDDEN
    default_detail = "You have reached the search limit of your plan."
    default_code = "quota_exceeded"


class InvalidInput(BrokerError):
    status_code = status.HTTP_400_BAD_REQUEST
    default_detail = "Invalid input."
    default_code = "invalid_input"


# ---------- Search engine ----------

class EngineMisconfigured(BrokerError):
    default_detail = "Search engine is not configured. Contact the administrator."
    default_code = "engine_misconfigured"


class EngineUnreachable(BrokerError):
    default_detail = "Search engine is unreachable."
    default_code = "engine_unreachable"


class EngineQueryRejected(BrokerError):
    default_detail = "Search engine rejected the query. Check the configuration."
    default_code = "engine_query_rejected"


# ---------- Payment processor / settlement ----------

class ProcessorMisconfigured(BrokerError):
    default_detail = "Payment processor is not configured."
    default_code = "processor_misconfigured"


class ProcessorUnavailable(BrokerError):
    status_code = status.HTTP_502_BAD_GATEWAY
    default_detail = "Payment processor is unavailable."
    default_code = "processor_unavailable"


class ProcessorAuthFailed(BrokerError):
    status_code = status.HTTP_502_BAD_GATEWAY
    default_detail = "Failed to authenticate with the payment processor."
    default_code = "processor_auth_failed"


class OrderCaptureRejected(BrokerError):
    status_code = status.HTTP_402_PAYMENT_REQUIRED
    default_detail = "The payment processor rejected the capture."
    default_code = "order_capture_rejected"


class PaymentNotCompleted(BrokerError):
    status_code = status.HTTP_402_PAYMENT_REQUIRED
    default_detail = "Payment not completed."
    default_code = "payment_not_completed"


class PaymentAlreadyCaptured(BrokerError):
    status_code = status.HTTP_409_CONFLICT
    default_detail = "This order has already been captured."
    default_code = "payment_already_captured"


class UnknownOrder(BrokerError):
    status_code = status.HTTP_404_NOT_FOUND
    default_detail = "Order not found."
    default_code = "unknown_order"


class InvalidPlanOrPrice(InvalidInput):
    default_detail = "Plan and a positive price are required."
    default_code = "invalid_plan_or_price"


class KeyProvisioningFailed(BrokerError):
    default_detail = "Failed to create API key."
    default_code = "key_provisioning_failed"


def _message(detail) -> str:
    """Flatten DRF error details (str, list or dict) into one readable line."""
    if isinstance(detail, dict):
        parts = []
        for field, value in detail.items():
            text = _message(value)
            parts.append(text if field == "non_field_errors" else f"{field}: {text}")
        return "; ".join(parts)
    if isinstance(detail, (list, tuple)):
        return " ".join(_message(d) for d in detail)
    return str(detail)


def _reason(exc: APIException) -> str:
    if isinstance(exc, BrokerError):
        return exc.reason
    if isinstance(exc, (NotAuthenticated, AuthenticationFailed)):
        return Unauthenticated.default_code
    codes = exc.get_codes()
    if isinstance(codes, str):
        return codes
    if isinstance(exc.detail, (dict, list)):
        return InvalidInput.default_code
    return exc.default_code


def broker_exception_handler(exc, context):
    """
    DRF EXCEPTION_HANDLER: every error leaves as {success, error, reason}.
    Unexpected exceptions are logged and turned into a 500 instead of crashing.
    """
    # Imported lazily: rest_framework.views loads DEFAULT_AUTHENTICATION_CLASSES,
    # which import this module (circular import at startup).
    from rest_framework.views import exception_handler

    response = exception_handler(exc, context)
    view = context.get("view")
    view_name = type(view).__name__ if view is not None else "?"

    if response is None:
        logger.exception("unhandled error in %s: %s", view_name, exc)
        return Response(
            {"success": False, "error": "Unexpected server error.", "reason": "internal_error"},
            status=status.HTTP_500_INTERNAL_SERVER_ERROR,
        )

    if isinstance(exc, APIException):
        reason = _reason(exc)
        detail = exc.detail
    else:
        # Django Http404 / PermissionDenied, already translated by DRF
        reason = "not_found" if response.status_code == 404 else "permission_denied"
        detail = response.data.get("detail", "")

    if response.status_code >= 500:
        logger.error("%s failed: reason=%s detail=%s", view_name, reason, exc)
    else:
        logger.info("%s rejected: reason=%s status=%s", view_name, reason, response.status_code)

    # simplejwt wraps its message as {"detail", "code", "messages"}
    if isinstance(exc, AuthenticationFailed) and isinstance(detail, dict) and "detail" in detail:
        detail = detail["detail"]

    response.data = {"success": False, "error": _message(detail), "reason": reason}
    return response
