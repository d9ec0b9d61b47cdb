from django.contrib import admin
from simple_history.admin import SimpleHistoryAdmin  # pyright: ignore[reportMissingImports]

from .models import Credential, CredentialAuditLog, PrintBatch, Template


@admin.register(Template)
class TemplateAdmin(SimpleHistoryAdmin):
    list_display = ("name", "event", "version", "is_default", "updated_at")
    list_filter = ("is_default", "event")
    search_fields = ("name",)


@admin.register(Credential)
class CredentialAdmin(admin.ModelAdmin):
    list_display = ("qr_code", "accreditation_request", "status", "is_active", "printed_at")
    list_filter = ("status", "is_active")
    search_fields = (
        "qr_code",
        "accreditation_request__employee__first_name",
        "accreditation_request__employee__last_name",
    )
    readonly_fields = (
        "employee_snapshot",
        "template_snapshot",
        "event_snapshot",
        "zones_snapshot",
        "credential_image_path",
        "credential_pdf_path",
        "generated_at",
        "printed_at",
    )


@admin.register(PrintBatch)
class PrintBatchAdmin(admin.ModelAdmin):
    list_display = (
        "uuid",
        "event",
        "status",
        "processed_credentials",
        "total_credentials",
        "retry_count",
        "created_at",
    )
    list_filter = ("status", "event")
    readonly_fields = (
        "uuid",
        "filters_snapshot",
        "pdf_path",
        "artifact_size_bytes",
        "artifact_sha256",
        "execution_metadata",
        "started_at",
        "finished_at",
        "created_at",
    )


@admin.register(CredentialAuditLog)
class CredentialAuditLogAdmin(admin.ModelAdmin):
    list_display = ("action", "event", "credential", "print_batch", "created_at")
    list_filter = ("action",)
    search_fields = ("action", "message")

    def has_add_permission(self, request):
        return False

    def has_change_permission(self, request, obj=None):
        return False
