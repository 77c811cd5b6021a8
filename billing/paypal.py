"""
Thin client for the PayPal REST API (OAuth2 client credentials + Orders v2).

PayPal's own order lifecycle (CREATED -> APPROVED -> COMPLETED) is used as is;
this module only maps transport and HTTP failures onto broker errors.
"""
from __future__ import annotations

import json
import logging
from typing import Any, Dict, Optional

import requests
from django.conf import settings

from core.errors import (
    OrderCaptureRejected,
    ProcessorAuthFailed,
    ProcessorMisconfigured,
    ProcessorUnavailable,
)

from .utils import mask

logger = logging.getLogger(__name__)

DEFAULT_TIMEOUT = (5, 30)  # (connect, read) seconds

API_URLS = {
    "live": "https://api-m.paypal.com",
    "sandbox": "https://api-m.sandbox.paypal.com",
}


def _excerpt(resp: requests.Response) -> str:
    try:
        return json.dumps(resp.json())[:500]
    except ValueError:
        return resp.text[:500]


class PayPalClient:
    def __init__(
        self,
        client_id: str | None,
        client_secret: str | None,
        mode: str = "sandbox",
        session: requests.Session | None = None,
        timeout=DEFAULT_TIMEOUT,
    ) -> None:
        self.client_id = client_id
        self.client_secret = client_secret
        self.mode = "live" if mode == "live" else "sandbox"
        self.session = session or requests.Session()
        self.timeout = timeout

    @classmethod
    def from_settings(cls, session: requests.Session | None = None) -> "PayPalClient":
        return cls(
            settings.PAYPAL_CLIENT_ID,
            settings.PAYPAL_CLIENT_SECRET,
            mode=settings.PAYPAL_MODE,
            session=session,
        )

    @property
    def base_url(self) -> str:
        return API_URLS[self.mode]

    def _post(self, path: str, **kwargs) -> requests.Response:
        try:
            return self.session.post(f"{self.base_url}{path}", timeout=self.timeout, **kwargs)
        except requests.RequestException as exc:
            logger.warning("paypal: transport error path=%s err=%s", path, exc)
            raise ProcessorUnavailable() from exc

    def access_token(self) -> str:
        if not self.client_id or not self.client_secret:
            logger.error("paypal: credentials not configured")
            raise ProcessorMisconfigured("PayPal credentials not configured.")

        resp = self._post(
            "/v1/oauth2/token",
            auth=(self.client_id, self.client_secret),
            headers={"Accept": "application/json"},
            data={"grant_type": "client_credentials"},
        )
        if not resp.ok:
            logger.error(
                "paypal: auth failed client_id=%s status=%s body=%s", mask(self.client_id), resp.status_code, _excerpt(resp)
            )
            raise ProcessorAuthFailed()
        try:
            return resp.json()["access_token"]
        except (ValueError, KeyError) as exc:
            raise ProcessorAuthFailed() from exc

    def _headers(self, token: str) -> Dict[str, str]:
        return {
            "Authorization": f"Bearer {token}",
            "Content-Type": "application/json",
        }

    def create_order(
        self,
        *,
        amount,
        plan: str,
        user_id,
        currency: str = "USD",
        return_base: Optional[str] = None,
    ) -> Dict[str, Any]:
        """Create a CAPTURE-intent order; ``{user_id, plan}`` rides along in custom_id."""
        token = self.access_token()
        unit: Dict[str, Any] = {
            "amount": {"currency_code": currency, "value": f"{amount:.2f}"},
            "description": f"{settings.BRAND_NAME} - Plan {plan}",
            "custom_id": json.dumps({"user_id": str(user_id), "plan": plan}),
        }
        body: Dict[str, Any] = {
            "intent": "CAPTURE",
            "purchase_units": [unit],
            "application_context": {
                "brand_name": settings.BRAND_NAME,
                "landing_page": "NO_PREFERENCE",
                "user_action": "PAY_NOW",
            },
        }
        if return_base:
            base = return_base.rstrip("/")
            body["application_context"]["return_url"] = f"{base}/checkout?success=true"
            body["application_context"]["cancel_url"] = f"{base}/checkout?canceled=true"

        resp = self._post("/v2/checkout/orders", headers=self._headers(token), json=body)
        if not resp.ok:
            logger.error("paypal: order creation failed status=%s body=%s", resp.status_code, _excerpt(resp))
            raise ProcessorUnavailable("Failed to create PayPal order.")
        return resp.json()

    def get_order(self, order_id: str, token: str | None = None) -> Dict[str, Any]:
        token = token or self.access_token()
        try:
            resp = self.session.get(
                f"{self.base_url}/v2/checkout/orders/{order_id}", headers=self._headers(token), timeout=self.timeout
            )
        except requests.RequestException as exc:
            logger.warning("paypal: transport error fetching order=%s err=%s", order_id, exc)
            raise ProcessorUnavailable() from exc
        if not resp.ok:
            logger.error("paypal: order lookup failed order=%s status=%s", order_id, resp.status_code)
            raise OrderCaptureRejected("PayPal order not found.")
        return resp.json()

    def capture_order(self, order_id: str) -> Dict[str, Any]:
        token = self.access_token()
        resp = self._post(f"/v2/checkout/orders/{order_id}/capture", headers=self._headers(token))
        if resp.status_code == 422 and "ORDER_ALREADY_CAPTURED" in resp.text:
            # money moved on an earlier attempt whose settlement rolled back; reuse that result
            logger.warning("paypal: order=%s already captured, loading order state", order_id)
            return self.get_order(order_id, token=token)
        if not resp.ok:
            logger.error(
                "paypal: capture rejected order=%s status=%s body=%s", order_id, resp.status_code, _excerpt(resp)
            )
            raise OrderCaptureRejected("Failed to capture PayPal payment.")
        return resp.json()

    def verify_webhook(self, headers, event: Dict[str, Any], webhook_id: str) -> bool:
        """Ask PayPal whether a webhook delivery is authentic."""
        token = self.access_token()
        body = {
            "auth_algo": headers.get("PAYPAL-AUTH-ALGO", ""),
            "cert_url": headers.get("PAYPAL-CERT-URL", ""),
            "transmission_id": headers.get("PAYPAL-TRANSMISSION-ID", ""),
            "transmission_sig": headers.get("PAYPAL-TRANSMISSION-SIG", ""),
            "transmission_time": headers.get("PAYPAL-TRANSMISSION-TIME", ""),
            "webhook_id": webhook_id,
            "webhook_event": event,
        }
        resp = self._post(
            "/v1/notifications/verify-webhook-signature", headers=self._headers(token), json=body
        )
        if not resp.ok:
            logger.warning("paypal: webhook verification call failed status=%s", resp.status_code)
            return False
        return (resp.json() or {}).get("verification_status") == "SUCCESS"


def extract_custom_id(capture: Dict[str, Any]) -> Optional[str]:
    """custom_id lives on the capture record, or on the purchase unit for older orders."""
    units = capture.get("purchase_units") or [{}]
    unit = units[0] or {}
    captures = ((unit.get("payments") or {}).get("captures")) or [{}]
    return (captures[0] or {}).get("custom_id") or unit.get("custom_id")
