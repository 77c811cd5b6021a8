import json
from decimal import Decimal
from unittest.mock import patch

from django.apps import apps
from django.contrib.auth import get_user_model
from django.test import Client, TestCase, override_settings
from kombu.exceptions import OperationalError
from rest_framework.test import APIClient

from billing.models import ApiKey, Payment, WebhookEvent
from billing.services import Settlement, provision_key
from billing.tasks import capture_approved_order as capture_task
from core.errors import PaymentNotCompleted, ProcessorUnavailable

from .test_services import paypal_capture

User = get_user_model()


class PaymentEndpointTests(TestCase):
    def setUp(self):
        apps.get_app_config("search").reset_limiters()
        self.user = User.objects.create_user(username="lea", email="lea@example.com", password="x")
        self.client = APIClient()
        self.client.force_authenticate(self.user)

        patcher = patch("billing.services.PayPalClient.from_settings")
        self.paypal = patcher.start().return_value
        self.addCleanup(patcher.stop)
        self.paypal.create_order.return_value = {"id": "ORDER-1", "status": "CREATED"}
        self.paypal.capture_order.return_value = paypal_capture(plan="pro")

    def test_create_order(self):
        resp = self.client.post(
            "/v1/payments/paypal/orders", {"plan": "pro", "price": 99}, format="json",
            HTTP_ORIGIN="https://portal.example.com",
        )

        self.assertEqual(resp.status_code, 200, resp.content)
        self.assertEqual(resp.json(), {"success": True, "orderId": "ORDER-1"})
        self.assertEqual(self.paypal.create_order.call_args.kwargs["return_base"], "https://portal.example.com")
        self.assertTrue(Payment.objects.filter(external_transaction_id="ORDER-1", status="pending").exists())

    def test_create_order_rejects_bad_plan_or_price(self):
        for payload in ({"plan": "pro"}, {"plan": "gold", "price": 10}, {"plan": "pro", "price": -1}):
            with self.subTest(payload=payload):
                resp = self.client.post("/v1/payments/paypal/orders", payload, format="json")
                self.assertEqual(resp.status_code, 400)
                self.assertEqual(resp.json()["reason"], "invalid_plan_or_price")
        self.paypal.create_order.assert_not_called()

    def test_create_order_requires_auth(self):
        resp = APIClient().post("/v1/payments/paypal/orders", {"plan": "pro", "price": 99}, format="json")
        self.assertEqual(resp.status_code, 401)

    def test_processor_outage_maps_to_bad_gateway(self):
        self.paypal.create_order.side_effect = ProcessorUnavailable()
        resp = self.client.post("/v1/payments/paypal/orders", {"plan": "pro", "price": 99}, format="json")
        self.assertEqual(resp.status_code, 502)
        self.assertEqual(resp.json()["reason"], "processor_unavailable")
        self.assertFalse(Payment.objects.exists())

    def test_capture_issues_key_then_rejects_replay(self):
        self.client.post("/v1/payments/paypal/orders", {"plan": "pro", "price": 99}, format="json")

        resp = self.client.post("/v1/payments/paypal/capture", {"orderId": "ORDER-1"}, format="json")

        self.assertEqual(resp.status_code, 200, resp.content)
        body = resp.json()
        key = ApiKey.objects.owned_by(self.user).active().get()
        self.assertEqual(body["apiKey"], key.key_value)
        self.assertEqual(body["plan"], "pro")
        self.assertEqual(body["expiresAt"], key.expires_at.isoformat())

        replay = self.client.post("/v1/payments/paypal/capture", {"orderId": "ORDER-1"}, format="json")
        self.assertEqual(replay.status_code, 409)
        self.assertEqual(replay.json()["reason"], "payment_already_captured")
        self.assertEqual(ApiKey.objects.owned_by(self.user).count(), 1)

    def test_capture_validation_and_unknown_order(self):
        resp = self.client.post("/v1/payments/paypal/capture", {"orderId": ""}, format="json")
        self.assertEqual(resp.status_code, 400)
        self.assertEqual(resp.json()["error"], "orderId: Order ID is required.")

        resp = self.client.post("/v1/payments/paypal/capture", {"orderId": "NOPE"}, format="json")
        self.assertEqual((resp.status_code, resp.json()["reason"]), (404, "unknown_order"))

    def test_capture_has_its_own_stricter_limit(self):
        codes = [
            self.client.post("/v1/payments/paypal/capture", {"orderId": "NOPE"}, format="json").status_code
            for _ in range(6)
        ]
        self.assertEqual(codes, [404] * 5 + [429])

    @override_settings(CRYPTO_WALLET="TXwallet123")
    def test_manual_transfer(self):
        resp = self.client.post("/v1/payments/manual", {"plan": "basic", "price": "29"}, format="json")

        self.assertEqual(resp.status_code, 200, resp.content)
        body = resp.json()
        self.assertEqual(body["wallet"], "TXwallet123")
        self.assertEqual(body["currency"], "USDT")
        self.assertEqual(body["amount"], "29.00")
        self.assertEqual(body["status"], "pending")
        self.assertEqual(Payment.objects.get(pk=body["paymentId"]).amount, Decimal("29.00"))

    def test_my_key(self):
        resp = self.client.get("/v1/keys/mine")
        self.assertEqual(resp.json(), {"success": True, "key": None})

        key = provision_key(self.user, "pro")
        data = self.client.get("/v1/keys/mine").json()["key"]
        self.assertEqual(data["apiKey"], key.key_value)
        self.assertEqual(data["remaining"], 1000)
        self.assertEqual(data["plan"], "pro")

    def test_expired_api_key_cannot_read_the_current_key(self):
        old = provision_key(self.user, "basic")
        ApiKey.objects.filter(pk=old.pk).update(status=ApiKey.Status.EXPIRED)
        provision_key(self.user, "pro")

        client = APIClient()
        client.credentials(HTTP_AUTHORIZATION=f"Bearer {old.key_value}")
        resp = client.get("/v1/keys/mine")
        self.assertEqual((resp.status_code, resp.json()["reason"]), (403, "key_expired"))


@override_settings(PAYPAL_WEBHOOK_ID="WH-ID")
class PayPalWebhookTests(TestCase):
    URL = "/webhooks/paypal"

    def setUp(self):
        self.client = Client()
        patcher = patch("billing.views.PayPalClient.from_settings")
        self.paypal = patcher.start().return_value
        self.addCleanup(patcher.stop)
        self.paypal.verify_webhook.return_value = True

        task_patcher = patch("billing.views.capture_approved_order")
        self.task = task_patcher.start()
        self.addCleanup(task_patcher.stop)

    def _deliver(self, event):
        return self.client.post(self.URL, data=json.dumps(event), content_type="application/json")

    def test_approved_order_is_queued_once(self):
        event = {"id": "WH-1", "event_type": "CHECKOUT.ORDER.APPROVED", "resource": {"id": "ORDER-1"}}

        self.assertEqual(self._deliver(event).status_code, 200)
        self.assertEqual(self._deliver(event).status_code, 200)

        self.task.delay.assert_called_once_with("ORDER-1")
        self.assertEqual(WebhookEvent.objects.count(), 1)

    def test_other_events_are_acknowledged(self):
        resp = self._deliver({"id": "WH-2", "event_type": "PAYMENT.CAPTURE.COMPLETED", "resource": {}})
        self.assertEqual(resp.status_code, 200)
        self.task.delay.assert_not_called()

    def test_unverified_delivery(self):
        self.paypal.verify_webhook.return_value = False
        resp = self._deliver({"id": "WH-3", "event_type": "CHECKOUT.ORDER.APPROVED", "resource": {"id": "O"}})
        self.assertEqual(resp.status_code, 400)
        self.assertFalse(WebhookEvent.objects.exists())

    def test_bad_json_and_wrong_method(self):
        resp = self.client.post(self.URL, data="{not json", content_type="application/json")
        self.assertEqual(resp.status_code, 400)
        self.assertEqual(self.client.get(self.URL).status_code, 405)

    def test_enqueue_failure_lets_paypal_redeliver(self):
        self.task.delay.side_effect = OperationalError("broker down")
        event = {"id": "WH-4", "event_type": "CHECKOUT.ORDER.APPROVED", "resource": {"id": "ORDER-4"}}

        self.assertEqual(self._deliver(event).status_code, 503)
        self.assertFalse(WebhookEvent.objects.filter(event_id="WH-4").exists())

    @override_settings(PAYPAL_WEBHOOK_ID="")
    def test_missing_webhook_id(self):
        self.assertEqual(self._deliver({"id": "WH-5"}).status_code, 400)


class CaptureTaskTests(TestCase):
    def test_returns_settled_plan(self):
        user = User.objects.create_user(username="max", email="max@example.com", password="x")
        key = provision_key(user, "enterprise")
        settlement = Settlement(api_key=key, plan="enterprise", expires_at=key.expires_at)
        with patch("billing.tasks._capture_approved_order", return_value=settlement):
            self.assertEqual(capture_task("ORDER-1"), "enterprise")

    def test_business_rejection_is_dropped(self):
        with patch("billing.tasks._capture_approved_order", side_effect=PaymentNotCompleted()):
            self.assertIsNone(capture_task("ORDER-1"))

    def test_processor_outage_is_retried(self):
        # outside a worker, retry re-raises the processor error
        with patch("billing.tasks._capture_approved_order", side_effect=ProcessorUnavailable()):
            with self.assertRaises(ProcessorUnavailable):
                capture_task("ORDER-1")
