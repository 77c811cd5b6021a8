from datetime import timedelta

from django.contrib.auth import get_user_model
from django.test import TestCase
from django.utils import timezone
from rest_framework.test import APIClient

from billing.models import ApiKey
from billing.services import provision_key
from reviews.models import Review

User = get_user_model()

MINE_URL = "/v1/reviews/mine"


class ReviewEndpointTests(TestCase):
    def setUp(self):
        self.user = User.objects.create_user(
            username="rio", email="rio@example.com", password="x", first_name="Rio", last_name="M.",
        )
        self.client = APIClient()
        self.client.force_authenticate(self.user)

    def _post(self, payload):
        return self.client.post(MINE_URL, payload, format="json")

    def test_key_holder_posts_trimmed_review_with_default_rating(self):
        provision_key(self.user, "basic")

        resp = self._post({"content": "   Found three old leaks in a minute.  "})

        self.assertEqual(resp.status_code, 201, resp.content)
        review = Review.objects.get()
        self.assertEqual(review.content, "Found three old leaks in a minute.")
        self.assertEqual(review.rating, 5)
        self.assertEqual(resp.json()["review"]["author"], "Rio M.")

    def test_posting_requires_an_active_key(self):
        resp = self._post({"content": "Great service, would buy again.", "rating": 4})
        self.assertEqual((resp.status_code, resp.json()["reason"]), (403, "no_active_key"))

        key = provision_key(self.user, "basic")
        ApiKey.objects.filter(pk=key.pk).update(status=ApiKey.Status.INACTIVE)
        resp = self._post({"content": "Great service, would buy again.", "rating": 4})
        self.assertEqual(resp.status_code, 403)
        self.assertFalse(Review.objects.exists())

    def test_invalid_reviews(self):
        provision_key(self.user, "basic")
        for payload in (
            {"content": "too short"},
            {"content": "          "},
            {"content": "Long enough review text", "rating": 0},
            {"content": "Long enough review text", "rating": 6},
            {"content": "x" * 501},
        ):
            with self.subTest(payload=payload):
                resp = self._post(payload)
                self.assertEqual(resp.status_code, 400)
                self.assertEqual(resp.json()["reason"], "invalid_input")
        self.assertFalse(Review.objects.exists())

    def test_anonymous_callers_cannot_post_or_list_their_own(self):
        anon = APIClient()
        self.assertEqual(anon.post(MINE_URL, {"content": "Anonymous praise here"}, format="json").status_code, 401)
        self.assertEqual(anon.get(MINE_URL).status_code, 401)

    def test_my_reviews_newest_first(self):
        other = User.objects.create_user(username="sol", email="sol@example.com", password="x")
        first = Review.objects.create(owner=self.user, content="First review text", rating=3)
        second = Review.objects.create(owner=self.user, content="Second review text", rating=5)
        Review.objects.filter(pk=first.pk).update(created_at=timezone.now() - timedelta(days=1))
        Review.objects.create(owner=other, content="Somebody else's words", rating=1)

        body = self.client.get(MINE_URL).json()

        self.assertEqual([r["id"] for r in body["reviews"]], [second.pk, first.pk])
        self.assertFalse(body["canReview"])

    def test_owner_deletes_only_their_own(self):
        mine = Review.objects.create(owner=self.user, content="Mine to remove later", rating=4)
        other = User.objects.create_user(username="tau", email="tau@example.com", password="x")
        theirs = Review.objects.create(owner=other, content="Not yours to remove", rating=2)

        resp = self.client.delete(f"/v1/reviews/{theirs.pk}")
        self.assertEqual((resp.status_code, resp.json()["reason"]), (404, "not_found"))

        resp = self.client.delete(f"/v1/reviews/{mine.pk}")
        self.assertEqual(resp.status_code, 200)
        self.assertEqual(list(Review.objects.values_list("pk", flat=True)), [theirs.pk])

    def test_public_listing_needs_no_credentials(self):
        anonymous = User.objects.create_user(username="uma", email="uma@example.com", password="x")
        for i in range(8):
            Review.objects.create(owner=anonymous, content=f"Review number {i} text", rating=5)

        resp = APIClient().get("/v1/reviews")

        self.assertEqual(resp.status_code, 200)
        reviews = resp.json()["reviews"]
        self.assertEqual(len(reviews), 6)
        self.assertEqual(reviews[0]["author"], "uma")
        self.assertNotIn("email", reviews[0])
