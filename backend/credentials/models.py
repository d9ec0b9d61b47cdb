from __future__ import annotations

from uuid import uuid4

from django.conf import settings
from django.db import models
from django.db.models import F, Q
from simple_history.models import HistoricalRecords  # pyright: ignore[reportMissingImports]

from events.models import AccreditationRequest, Event


class Template(models.Model):
    event = models.ForeignKey(Event, on_delete=models.CASCADE, related_name="credential_templates")
    name = models.CharField(max_length=120)
    file = models.ImageField(upload_to="credential_templates/")
    layout_meta = models.JSONField(default=dict, blank=True)
    version = models.PositiveIntegerField(default=1)  # pyright: ignore[reportArgumentType]
    is_default = models.BooleanField(default=False)  # pyright: ignore[reportArgumentType]
    created_by = models.ForeignKey(
        settings.AUTH_USER_MODEL,
        on_delete=models.SET_NULL,
        null=True,
        blank=True,
        related_name="credential_templates_created",
    )
    created_at = models.DateTimeField(auto_now_add=True)
    updated_at = models.DateTimeField(auto_now=True)
    history = HistoricalRecords()

    class Meta:
        ordering = ["event", "name"]
        constraints = [
            models.UniqueConstraint(
                fields=["event"],
                condition=Q(is_default=True),
                name="unique_default_template_per_event",
            )
        ]

    def __str__(self) -> str:
        return f"{self.name} (v{self.version})"


class PrintBatch(models.Model):
    class Status(models.TextChoices):
        QUEUED = "queued", "Queued"
        PROCESSING = "processing", "Processing"
        READY = "ready", "Ready"
        FAILED = "failed", "Failed"
        ARCHIVED = "archived", "Archived"

    uuid = models.UUIDField(default=uuid4, unique=True, editable=False)
    event = models.ForeignKey(Event, on_delete=models.PROTECT, related_name="print_batches")
    area_ids = models.JSONField(default=list, blank=True)
    provider_ids = models.JSONField(default=list, blank=True)
    generated_by = models.ForeignKey(
        settings.AUTH_USER_MODEL,
        on_delete=models.SET_NULL,
        null=True,
        blank=True,
        related_name="print_batches_generated",
    )
    status = models.CharField(max_length=20, choices=Status.choices, default=Status.QUEUED)
    filters_snapshot = models.JSONField(default=dict, blank=True)
    total_credentials = models.PositiveIntegerField(default=0)  # pyright: ignore[reportArgumentType]
    processed_credentials = models.PositiveIntegerField(default=0)  # pyright: ignore[reportArgumentType]
    pdf_path = models.CharField(max_length=255, null=True, blank=True)
    artifact_size_bytes = models.PositiveIntegerField(default=0)  # pyright: ignore[reportArgumentType]
    artifact_sha256 = models.CharField(max_length=64, blank=True)
    execution_metadata = models.JSONField(default=dict, blank=True)
    error_message = models.TextField(blank=True)
    retry_count = models.PositiveIntegerField(default=0)  # pyright: ignore[reportArgumentType]
    started_at = models.DateTimeField(null=True, blank=True)
    finished_at = models.DateTimeField(null=True, blank=True)
    created_at = models.DateTimeField(auto_now_add=True)
    updated_at = models.DateTimeField(auto_now=True)

    class Meta:
        ordering = ["-created_at"]
        indexes = [
            models.Index(fields=["event", "status", "-created_at"], name="prbatch_event_status_idx"),
            models.Index(fields=["status", "-created_at"], name="prbatch_status_created_idx"),
        ]
        constraints = [
            models.CheckConstraint(
                condition=Q(processed_credentials__lte=F("total_credentials")),
                name="prbatch_processed_lte_total",
            ),
            models.CheckConstraint(
                condition=(
                    Q(status="ready", pdf_path__isnull=False)
                    | (~Q(status="ready") & Q(pdf_path__isnull=True))
                ),
                name="prbatch_pdf_path_iff_ready",
            ),
        ]

    def __str__(self) -> str:
        return f"batch {self.uuid} ({self.status})"

    @property
    def progress_percentage(self) -> float:
        if not self.total_credentials:
            return 0.0
        return round(self.processed_credentials / self.total_credentials * 100, 1)

    @property
    def is_processing(self) -> bool:
        return self.status == self.Status.PROCESSING

    @property
    def is_ready(self) -> bool:
        return self.status == self.Status.READY

    @property
    def has_failed(self) -> bool:
        return self.status == self.Status.FAILED

    @property
    def can_be_retried(self) -> bool:
        return self.has_failed and self.retry_count < settings.PRINT_BATCH_MAX_RETRIES

    @property
    def download_filename(self) -> str:
        return f"credentials_batch_{self.uuid}.pdf"


class Credential(models.Model):
    class Status(models.TextChoices):
        PENDING = "pending", "Pending"
        GENERATING = "generating", "Generating"
        READY = "ready", "Ready"
        FAILED = "failed", "Failed"

    accreditation_request = models.OneToOneField(
        AccreditationRequest,
        on_delete=models.CASCADE,
        related_name="credential",
    )
    status = models.CharField(max_length=20, choices=Status.choices, default=Status.PENDING)
    qr_code = models.CharField(max_length=64, unique=True, null=True, blank=True)
    is_active = models.BooleanField(default=True)  # pyright: ignore[reportArgumentType]
    expires_at = models.DateTimeField(null=True, blank=True)
    generated_at = models.DateTimeField(null=True, blank=True)
    error_message = models.TextField(blank=True)
    print_batch = models.ForeignKey(
        PrintBatch,
        on_delete=models.SET_NULL,
        null=True,
        blank=True,
        related_name="printed_credentials",
    )
    printed_at = models.DateTimeField(null=True, blank=True)
    employee_snapshot = models.JSONField(default=dict, blank=True)
    template_snapshot = models.JSONField(null=True, blank=True)
    event_snapshot = models.JSONField(default=dict, blank=True)
    zones_snapshot = models.JSONField(default=list, blank=True)
    credential_image_path = models.CharField(max_length=255, null=True, blank=True)
    credential_pdf_path = models.CharField(max_length=255, null=True, blank=True)
    created_at = models.DateTimeField(auto_now_add=True)
    updated_at = models.DateTimeField(auto_now=True)

    class Meta:
        ordering = ["id"]
        indexes = [
            models.Index(fields=["status"], name="credential_status_idx"),
            models.Index(fields=["is_active", "printed_at"], name="credential_active_printed_idx"),
        ]

    def __str__(self) -> str:
        return str(self.qr_code or f"credential #{self.pk}")


class CredentialAuditLog(models.Model):
    action = models.CharField(max_length=100)
    message = models.TextField(blank=True)
    metadata = models.JSONField(default=dict, blank=True)
    actor = models.ForeignKey(
        settings.AUTH_USER_MODEL,
        on_delete=models.SET_NULL,
        null=True,
        blank=True,
        related_name="credential_audit_logs",
    )
    event = models.ForeignKey(
        Event, on_delete=models.SET_NULL, null=True, blank=True, related_name="credential_logs"
    )
    credential = models.ForeignKey(
        Credential, on_delete=models.SET_NULL, null=True, blank=True, related_name="audit_logs"
    )
    print_batch = models.ForeignKey(
        PrintBatch, on_delete=models.SET_NULL, null=True, blank=True, related_name="audit_logs"
    )
    created_at = models.DateTimeField(auto_now_add=True)

    class Meta:
        indexes = [
            models.Index(fields=["-created_at"], name="credlog_created_idx"),
            models.Index(
                fields=["action", "-created_at"],
                name="credlog_action_created_idx",
            ),
        ]

    def __str__(self):
        return f"{self.action} - {self.created_at:%Y-%m-%d}"
