from django.contrib import admin

from accounts.models import AgencyMembership

from .models import Agency


class AgencyMembershipInline(admin.TabularInline):
    model = AgencyMembership
    extra = 0


@admin.register(Agency)
class AgencyAdmin(admin.ModelAdmin):
    list_display = ("name", "slug", "contact_email", "is_active")
    list_filter = ("is_active",)
    search_fields = ("name", "slug", "contact_email")
    prepopulated_fields = {"slug": ("name",)}
    inlines = [AgencyMembershipInline]
