from django.contrib import admin

from .models import SearchLog


@admin.register(SearchLog)
class SearchLogAdmin(admin.ModelAdmin):
    list_display = ("created_at", "owner", "query", "results_count")
    list_select_related = ("owner",)
    search_fields = ("query", "owner__email", "owner__username")
    readonly_fields = ("owner", "api_key", "query", "results_count", "created_at")

    def has_add_permission(self, request):
        return False

    def has_change_permission(self, request, obj=None):
        return False
