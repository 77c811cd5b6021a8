from django.contrib import admin

from .models import Review


@admin.register(Review)
class ReviewAdmin(admin.ModelAdmin):
    list_display = ("created_at", "owner", "rating", "content")
    list_filter = ("rating",)
    list_select_related = ("owner",)
    search_fields = ("content", "owner__email", "owner__username")
    readonly_fields = ("owner", "created_at")

    def has_add_permission(self, request):
        return False
