"""
Clinic admin configuration.
"""

from django.contrib import admin

from clinic.models import Appointment, AppointmentServiceLine, ClinicService


class AppointmentServiceLineInline(admin.TabularInline):
    model = AppointmentServiceLine
    extra = 0
    autocomplete_fields = ["service"]


@admin.register(ClinicService)
class ClinicServiceAdmin(admin.ModelAdmin):
    list_display = ["name", "price", "is_active"]
    list_filter = ["is_active"]
    search_fields = ["name"]


@admin.register(Appointment)
class AppointmentAdmin(admin.ModelAdmin):
    list_display = ["id", "pet_name", "owner_name", "status", "scheduled_at"]
    list_filter = ["status"]
    search_fields = ["id", "pet_name", "owner_name", "owner_email"]
    readonly_fields = ["id", "created_at", "updated_at"]
    inlines = [AppointmentServiceLineInline]
