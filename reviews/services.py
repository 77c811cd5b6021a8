import logging

from rest_framework.exceptions import NotFound

from billing.models import ApiKey
from core.errors import NoActiveKey, Unauthenticated

from .models import Review

logger = logging.getLogger(__name__)

PUBLIC_LIMIT = 6


def can_review(principal) -> bool:
    """Only customers holding an active key may post."""
    return ApiKey.objects.owned_by(principal).active().exists()


def submit_review(principal, content: str, rating: int) -> Review:
    if principal is None or not getattr(principal, "is_authenticated", False):
        raise Unauthenticated()
    if not can_review(principal):
        logger.info("review refused: user=%s has no active key", principal.pk)
        raise NoActiveKey("Only customers with an active API key can leave reviews.")

    review = Review.objects.create(owner=principal, content=content, rating=rating)
    logger.info("review posted: id=%s user=%s rating=%d", review.pk, principal.pk, rating)
    return review


def delete_review(principal, review_id) -> None:
    """Owners delete their own reviews; anybody else's id is reported as missing."""
    deleted, _ = Review.objects.filter(pk=review_id, owner=principal).delete()
    if not deleted:
        raise NotFound("Review not found.")
    logger.info("review deleted: id=%s user=%s", review_id, principal.pk)


def latest_reviews(limit: int = PUBLIC_LIMIT):
    return Review.objects.select_related("owner")[:limit]
