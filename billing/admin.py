from django.contrib import admin, messages

from core.errors import BrokerError
from . import services
from .models import ApiKey, Payment, WebhookEvent


@admin.register(ApiKey)
class ApiKeyAdmin(admin.ModelAdmin):
    list_display = ("key_prefix", "owner", "plan", "status", "requests_used", "requests_limit", "expires_at", "created_at")
    list_filter = ("status", "plan")
    list_select_related = ("owner",)
    search_fields = ("key_prefix", "owner__email", "owner__username")
    readonly_fields = ("key_value", "key_prefix", "requests_used", "created_at", "deactivated_at")
    actions = ["activate_keys", "deactivate_keys"]

    @admin.action(description="Activate selected keys (retires the owner's current key)")
    def activate_keys(self, request, queryset):
        for key in queryset.select_related("owner"):
            services.set_key_status(key, ApiKey.Status.ACTIVE)
        self.message_user(request, f"{queryset.count()} key(s) activated.")

    @admin.action(description="Deactivate selected keys")
    def deactivate_keys(self, request, queryset):
        for key in queryset.select_related("owner"):
            services.set_key_status(key, ApiKey.Status.INACTIVE)
        self.message_user(request, f"{queryset.count()} key(s) deactivated.")


@admin.register(Payment)
class PaymentAdmin(admin.ModelAdmin):
    list_display = ("id", "owner", "method", "plan", "amount", "currency", "status", "external_transaction_id", "created_at")
    list_filter = ("method", "status", "plan")
    list_select_related = ("owner",)
    search_fields = ("external_transaction_id", "owner__email", "owner__username")
    readonly_fields = ("owner", "amount", "plan", "method", "currency", "created_at", "completed_at")
    actions = ["confirm_manual_transfers", "reject_manual_transfers"]

    @admin.action(description="Confirm selected manual transfers and issue keys")
    def confirm_manual_transfers(self, request, queryset):
        done = 0
        for payment in queryset:
            try:
                services.confirm_manual_payment(payment)
                done += 1
            except BrokerError as exc:
                self.message_user(request, f"Payment {payment.pk}: {exc.detail}", level=messages.WARNING)
        if done:
            self.message_user(request, f"{done} payment(s) confirmed, keys issued.")

    @admin.action(description="Reject selected manual transfers")
    def reject_manual_transfers(self, request, queryset):
        for payment in queryset:
            try:
                services.reject_manual_payment(payment)
            except BrokerError as exc:
                self.message_user(request, f"Payment {payment.pk}: {exc.detail}", level=messages.WARNING)


@admin.register(WebhookEvent)
class WebhookEventAdmin(admin.ModelAdmin):
    list_display = ("event_id", "kind", "received_at")
    search_fields = ("event_id",)
