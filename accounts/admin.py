from django.contrib import admin
from django.contrib.auth.admin import UserAdmin as DjangoUserAdmin

from billing.models import ApiKey
from .models import User


class ApiKeyInline(admin.TabularInline):
    """Key history on the user page; status changes go through the ApiKey admin actions."""
    model = ApiKey
    extra = 0
    can_delete = False
    fields = ("key_prefix", "plan", "status", "requests_used", "requests_limit", "expires_at")
    readonly_fields = fields
    show_change_link = True

    def has_add_permission(self, request, obj=None):
        return False


@admin.register(User)
class UserAdmin(DjangoUserAdmin):
    fieldsets = DjangoUserAdmin.fieldsets + (
        ("PayPal", {"fields": ("paypal_payer_id",)}),
    )
    list_display = ("id", "username", "email", "paypal_payer_id", "date_joined")
    search_fields = ("username", "email", "paypal_payer_id")
    inlines = [ApiKeyInline]
