from django.contrib import admin

from contacts.models import Activity, Contact


@admin.register(Contact)
class ContactAdmin(admin.ModelAdmin):
    list_display = ("first_name", "last_name", "email", "company_name", "company", "owner", "created_at")
    list_filter = ("company",)
    search_fields = ("first_name", "last_name", "email", "company_name")
    list_select_related = ("company", "owner")
    readonly_fields = ("id", "created_at", "updated_at")


@admin.register(Activity)
class ActivityAdmin(admin.ModelAdmin):
    list_display = ("subject", "type", "status", "due_date", "contact", "deal", "company")
    list_filter = ("type", "status", "company")
    search_fields = ("subject",)
    list_select_related = ("company", "contact", "deal")
    readonly_fields = ("id", "created_at", "updated_at")
