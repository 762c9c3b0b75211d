"""Django admin configuration for the pipelines app.

Stage history is read-only here: it is only written by the transition
service.
"""
from django.contrib import admin

from pipelines.models import Deal, DealStageHistory, Pipeline, PipelineStage


class PipelineStageInline(admin.TabularInline):
    model = PipelineStage
    extra = 0
    fields = ("name", "order", "position")
    ordering = ("order", "position")


@admin.register(Pipeline)
class PipelineAdmin(admin.ModelAdmin):
    list_display = ("name", "company", "created_at")
    list_filter = ("company",)
    search_fields = ("name", "company__name")
    list_select_related = ("company",)
    readonly_fields = ("id", "created_at", "updated_at")
    inlines = [PipelineStageInline]


class DealStageHistoryInline(admin.TabularInline):
    model = DealStageHistory
    extra = 0
    fields = ("sequence", "stage", "entered_at", "exited_at")
    readonly_fields = fields
    ordering = ("sequence",)
    can_delete = False

    def has_add_permission(self, request, obj=None):
        return False


@admin.register(Deal)
class DealAdmin(admin.ModelAdmin):
    list_display = ("title", "company", "pipeline", "stage", "status", "amount", "owner", "created_at")
    list_filter = ("status", "company", "pipeline")
    search_fields = ("title", "contact__first_name", "contact__last_name", "owner__email")
    list_select_related = ("company", "pipeline", "stage", "owner")
    readonly_fields = ("id", "pipeline", "stage", "version", "created_at", "updated_at")
    inlines = [DealStageHistoryInline]
