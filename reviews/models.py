from django.conf import settings
from django.core.validators import MaxValueValidator, MinValueValidator
from django.db import models
from django.db.models import Q

MIN_RATING = 1
MAX_RATING = 5


class Review(models.Model):
    """Customer testimonial shown on the landing page. Only key holders may post."""

    owner = models.ForeignKey(
        settings.AUTH_USER_MODEL,
        on_delete=models.CASCADE,
        related_name="reviews",
    )
    content = models.TextField(max_length=500)
    rating = models.PositiveSmallIntegerField(
        default=MAX_RATING,
        validators=[MinValueValidator(MIN_RATING), MaxValueValidator(MAX_RATING)],
    )
    created_at = models.DateTimeField(auto_now_add=True)

    class Meta:
        ordering = ["-created_at", "-id"]
        constraints = [
            models.CheckConstraint(
                condition=Q(rating__gte=MIN_RATING, rating__lte=MAX_RATING),
                name="review_rating_range",
            ),
        ]

    def __str__(self):
        return f"{self.owner_id}: {self.rating}/{MAX_RATING} {self.content[:40]}"

    @property
    def author(self) -> str:
        user = self.owner
        return user.get_full_name() or (user.email or user.username).split("@")[0]
