from django.conf import settings
from django.db import models
from django.db.models import Q
from django.utils import timezone


class Plan(models.TextChoices):
    BASIC = "basic", "Basic"
    PRO = "pro", "Pro"
    ENTERPRISE = "enterprise", "Enterprise"


class ApiKeyQuerySet(models.QuerySet):
    def owned_by(self, user):
        """Caller-scoped view: only rows belonging to ``user``."""
        return self.filter(owner=user)

    def active(self):
        return self.filter(status=ApiKey.Status.ACTIVE)


class ApiKey(models.Model):
    """
    Quota/plan/expiry record granting search access.
    At most one row per owner is ``active``; older keys are set ``inactive``
    instead of hard-deleted so rotation keeps history.
    """

    class Status(models.TextChoices):
        PENDING = "pending", "Pending"
        ACTIVE = "active", "Active"
        INACTIVE = "inactive", "Inactive"
        EXPIRED = "expired", "Expired"

    owner = models.ForeignKey(
        settings.AUTH_USER_MODEL,
        on_delete=models.CASCADE,
        related_name="api_keys",
    )

    key_value = models.CharField(max_length=64, unique=True)
    # What you can safely display
    key_prefix = models.CharField(max_length=16, db_index=True)

    plan = models.CharField(max_length=16, choices=Plan.choices, default=Plan.BASIC)
    status = models.CharField(max_length=16, choices=Status.choices, default=Status.ACTIVE)

    requests_used = models.PositiveIntegerField(default=0)
    requests_limit = models.PositiveIntegerField()

    expires_at = models.DateTimeField(null=True, blank=True)
    created_at = models.DateTimeField(auto_now_add=True)
    deactivated_at = models.DateTimeField(null=True, blank=True)

    objects = ApiKeyQuerySet.as_manager()

    class Meta:
        ordering = ["-created_at", "-id"]
        indexes = [
            models.Index(fields=["owner", "status"], name="apikey_owner_status_idx"),
        ]
        constraints = [
            models.UniqueConstraint(
                fields=["owner"],
                condition=Q(status="active"),
                name="one_active_key_per_owner",
            ),
            models.CheckConstraint(
                condition=Q(requests_limit__gt=0),
                name="requests_limit_positive",
            ),
        ]

    def __str__(self):
        return f"{self.key_prefix} ({self.plan}/{self.status})"

    @property
    def remaining(self) -> int:
        return max(self.requests_limit - self.requests_used, 0)

    def is_expired(self, now=None) -> bool:
        return self.expires_at is not None and self.expires_at <= (now or timezone.now())


class Payment(models.Model):
    """One purchase attempt. Immutable history once completed or failed."""

    class Method(models.TextChoices):
        PAYPAL = "paypal", "PayPal"
        MANUAL_TRANSFER = "manual_transfer", "Manual crypto transfer"

    class Status(models.TextChoices):
        PENDING = "pending", "Pending"
        COMPLETED = "completed", "Completed"
        FAILED = "failed", "Failed"

    owner = models.ForeignKey(
        settings.AUTH_USER_MODEL,
        on_delete=models.CASCADE,
        related_name="payments",
    )
    amount = models.DecimalField(max_digits=10, decimal_places=2)
    plan = models.CharField(max_length=16, choices=Plan.choices)
    method = models.CharField(max_length=16, choices=Method.choices)
    status = models.CharField(max_length=16, choices=Status.choices, default=Status.PENDING)

    # PayPal order id; empty for manual transfers until an admin records a tx hash
    external_transaction_id = models.CharField(max_length=128, unique=True, null=True, blank=True)
    currency = models.CharField(max_length=8, default="USD")

    created_at = models.DateTimeField(auto_now_add=True)
    completed_at = models.DateTimeField(null=True, blank=True)

    class Meta:
        ordering = ["-created_at", "-id"]
        indexes = [
            models.Index(fields=["owner", "status"], name="payment_owner_status_idx"),
        ]

    def __str__(self):
        return f"{self.method}:{self.external_transaction_id or self.pk} {self.amount} {self.currency} ({self.status})"

    @property
    def is_pending(self) -> bool:
        return self.status == self.Status.PENDING


class WebhookEvent(models.Model):
    event_id = models.CharField(max_length=255, unique=True)
    kind = models.CharField(max_length=64)
    received_at = models.DateTimeField(auto_now_add=True)

    def __str__(self):
        return f"{self.kind}:{self.event_id}"
