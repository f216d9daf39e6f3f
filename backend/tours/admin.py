from django.contrib import admin

from .models import TourPackage


@admin.register(TourPackage)
class TourPackageAdmin(admin.ModelAdmin):
    list_display = ("title", "agency", "destination", "price_per_person", "start_date", "is_active")
    list_filter = ("is_active", "agency")
    search_fields = ("title", "destination", "agency__name")
