from django.contrib.auth.models import AbstractUser
from django.db import models


class User(AbstractUser):
    """The principal: search callers, key owners and payers."""

    email = models.EmailField(blank=True, null=True)
    paypal_payer_id = models.CharField(max_length=64, null=True, blank=True)

    REQUIRED_FIELDS = []  # keep default field set happy
