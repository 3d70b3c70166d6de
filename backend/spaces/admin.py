from django.contrib import admin

from .models import Space, SpaceAllowedVehicleType, Vehicle


class AllowedVehicleTypeInline(admin.TabularInline):
    model = SpaceAllowedVehicleType
    extra = 0


@admin.register(Space)
class SpaceAdmin(admin.ModelAdmin):
    list_display = ("id", "title", "owner", "capacity", "price_per_hour", "price_per_day", "is_active")
    list_filter = ("is_active",)
    search_fields = ("title", "address", "owner__username")
    inlines = [AllowedVehicleTypeInline]


@admin.register(Vehicle)
class VehicleAdmin(admin.ModelAdmin):
    list_display = ("id", "owner", "type", "plate")
    list_filter = ("type",)
