from django.conf import settings
from django.db import models


class SearchLog(models.Model):
    """Append-only audit row, one per successfully forwarded search."""

    owner = models.ForeignKey(
        settings.AUTH_USER_MODEL,
        on_delete=models.CASCADE,
        related_name="search_logs",
    )
    api_key = models.ForeignKey(
        "billing.ApiKey",
        null=True, blank=True,
        on_delete=models.SET_NULL,
        related_name="search_logs",
    )
    query = models.TextField()
    results_count = models.PositiveIntegerField(default=0)
    created_at = models.DateTimeField(auto_now_add=True)

    class Meta:
        ordering = ["-created_at", "-id"]
        indexes = [
            models.Index(fields=["owner", "created_at"], name="searchlog_owner_created_idx"),
        ]

    def __str__(self):
        return f"{self.owner_id}: {self.query[:40]} ({self.results_count})"
