"""Django admin configuration for the companies app."""
from django.contrib import admin

from companies.models import AuditLog, Company


@admin.register(Company)
class CompanyAdmin(admin.ModelAdmin):
    list_display = ("name", "domain", "is_active", "created_at")
    list_filter = ("is_active",)
    search_fields = ("name", "domain")
    readonly_fields = ("id", "created_at", "updated_at")
    list_per_page = 50


@admin.register(AuditLog)
class AuditLogAdmin(admin.ModelAdmin):
    list_display = ("created_at", "action", "entity_type", "entity_id", "actor", "company")
    list_filter = ("action", "entity_type")
    search_fields = ("entity_id", "actor__email", "company__name")
    list_select_related = ("actor", "company")
    readonly_fields = (
        "actor",
        "company",
        "action",
        "entity_type",
        "entity_id",
        "before_json",
        "after_json",
        "created_at",
    )

    def has_add_permission(self, request):
        return False

    def has_change_permission(self, request, obj=None):
        return False
