from datetime import datetime, timezone as dt_timezone
from io import StringIO

from django.contrib.auth import get_user_model
from django.core.management import CommandError, call_command
from django.test import SimpleTestCase, TestCase
from rest_framework.exceptions import AuthenticationFailed
from rest_framework.test import APIRequestFactory

from billing.auth import ApiKeyAuthentication
from billing.models import ApiKey
from billing.services import provision_key, set_key_status
from billing.utils import add_one_month, make_api_key, mask, normalize_plan, plan_limit

User = get_user_model()


class KeyUtilsTests(SimpleTestCase):
    def test_generated_keys_are_prefixed_and_unique(self):
        keys = {make_api_key()[0] for _ in range(50)}
        self.assertEqual(len(keys), 50)
        plain, prefix = make_api_key()
        self.assertTrue(plain.startswith("osint_"))
        self.assertTrue(plain.startswith(prefix))
        self.assertEqual(len(prefix), 12)

    def test_add_one_month_clamps_to_month_end(self):
        utc = dt_timezone.utc
        cases = [
            (datetime(2024, 1, 31, 10, tzinfo=utc), datetime(2024, 2, 29, 10, tzinfo=utc)),
            (datetime(2023, 1, 31, tzinfo=utc), datetime(2023, 2, 28, tzinfo=utc)),
            (datetime(2024, 12, 15, tzinfo=utc), datetime(2025, 1, 15, tzinfo=utc)),
            (datetime(2024, 3, 31, tzinfo=utc), datetime(2024, 4, 30, tzinfo=utc)),
        ]
        for start, expected in cases:
            with self.subTest(start=start):
                self.assertEqual(add_one_month(start), expected)

    def test_plan_names(self):
        self.assertEqual(normalize_plan(" PRO "), "pro")
        self.assertEqual(normalize_plan("Básico"), "basic")
        self.assertEqual(normalize_plan("empresa"), "enterprise")
        self.assertIsNone(normalize_plan("gold"))
        self.assertIsNone(normalize_plan(None))
        self.assertEqual(plan_limit("basic"), 100)
        self.assertEqual(plan_limit("pro"), 1000)
        self.assertEqual(plan_limit("enterprise"), 999999)

    def test_mask(self):
        self.assertEqual(mask("osint_abcdef"), "osin…")
        self.assertEqual(mask(""), "")
        self.assertEqual(mask("abc"), "****")


class ApiKeyAuthenticationTests(TestCase):
    def setUp(self):
        self.user = User.objects.create_user(username="fay", email="fay@example.com", password="x")
        self.key = provision_key(self.user, "basic")
        self.auth = ApiKeyAuthentication()
        self.factory = APIRequestFactory()

    def _request(self, header):
        return self.factory.post("/v1/search", {}, HTTP_AUTHORIZATION=header)

    def test_active_key_authenticates_owner(self):
        user, row = self.auth.authenticate(self._request(f"Bearer {self.key.key_value}"))
        self.assertEqual(user, self.user)
        self.assertEqual(row, self.key)

    def test_other_bearer_tokens_are_left_to_jwt(self):
        self.assertIsNone(self.auth.authenticate(self._request("Bearer eyJhbGciOiJIUzI1NiJ9.x.y")))
        self.assertIsNone(self.auth.authenticate(self._request("Basic abc")))
        self.assertIsNone(self.auth.authenticate(self.factory.post("/v1/search")))

    def test_unknown_or_rotated_key_is_rejected(self):
        with self.assertRaises(AuthenticationFailed):
            self.auth.authenticate(self._request("Bearer osint_doesnotexist"))

        set_key_status(self.key, ApiKey.Status.INACTIVE)
        with self.assertRaises(AuthenticationFailed):
            self.auth.authenticate(self._request(f"Bearer {self.key.key_value}"))

    def test_expired_key_still_identifies_owner(self):
        ApiKey.objects.filter(pk=self.key.pk).update(status=ApiKey.Status.EXPIRED)
        user, row = self.auth.authenticate(self._request(f"Bearer {self.key.key_value}"))
        self.assertEqual(user, self.user)
        self.assertEqual(row.status, ApiKey.Status.EXPIRED)


class GrantKeyCommandTests(TestCase):
    def test_grants_by_email(self):
        user = User.objects.create_user(username="gus", email="gus@example.com", password="x")
        out = StringIO()

        call_command("grant_key", "GUS@example.com", "--plan", "pro", stdout=out)

        key = ApiKey.objects.owned_by(user).active().get()
        self.assertEqual(key.plan, "pro")
        self.assertIn(key.key_value, out.getvalue())

    def test_unknown_user(self):
        with self.assertRaises(CommandError):
            call_command("grant_key", "nobody", stdout=StringIO())
