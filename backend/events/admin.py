from django.contrib import admin

from .models import AccreditationRequest, Area, Employee, Event, Provider, Zone


@admin.register(Event)
class EventAdmin(admin.ModelAdmin):
    list_display = ("name", "location", "start_date", "end_date", "is_active")
    list_filter = ("is_active",)
    search_fields = ("name", "location")


@admin.register(Area)
class AreaAdmin(admin.ModelAdmin):
    list_display = ("name",)
    search_fields = ("name",)


@admin.register(Provider)
class ProviderAdmin(admin.ModelAdmin):
    list_display = ("name", "area", "type", "is_active")
    list_filter = ("type", "is_active", "area")
    search_fields = ("name",)


@admin.register(Employee)
class EmployeeAdmin(admin.ModelAdmin):
    list_display = ("last_name", "first_name", "provider", "document_number")
    list_filter = ("provider",)
    search_fields = ("first_name", "last_name", "document_number")


@admin.register(Zone)
class ZoneAdmin(admin.ModelAdmin):
    list_display = ("code", "name")
    search_fields = ("name",)


@admin.register(AccreditationRequest)
class AccreditationRequestAdmin(admin.ModelAdmin):
    list_display = ("employee", "event", "status", "created_at")
    list_filter = ("status", "event")
    search_fields = ("employee__first_name", "employee__last_name")
