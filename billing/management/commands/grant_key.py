from django.conf import settings
from django.contrib.auth import get_user_model
from django.core.management.base import BaseCommand, CommandError

from billing.services import grant_key
from core.errors import BrokerError


class Command(BaseCommand):
    help = "Issue a fresh API key to a user without a payment (retires their current key)"

    def add_arguments(self, parser):
        parser.add_argument("user", help="Username or email")
        parser.add_argument("--plan", default=settings.DEFAULT_PLAN, choices=sorted(settings.PLAN_LIMITS))

    def handle(self, *args, **opts):
        User = get_user_model()
        ident = opts["user"]
        user = User.objects.filter(username=ident).first() or User.objects.filter(email__iexact=ident).first()
        if user is None:
            raise CommandError(f"No user matches {ident!r}")

        try:
            key = grant_key(user, opts["plan"])
        except BrokerError as exc:
            raise CommandError(str(exc.detail)) from exc

        self.stdout.write(self.style.SUCCESS(
            f"Key issued for {user.username}: {key.key_value} "
            f"(plan={key.plan}, limit={key.requests_limit}, expires={key.expires_at:%Y-%m-%d})"
        ))
