from uuid import uuid4

from django.db import models


class Event(models.Model):
    uuid = models.UUIDField(default=uuid4, unique=True, editable=False)
    name = models.CharField(max_length=200)
    location = models.CharField(max_length=255, blank=True)
    start_date = models.DateField(null=True, blank=True)
    end_date = models.DateField(null=True, blank=True)
    is_active = models.BooleanField(default=True)  # pyright: ignore[reportArgumentType]
    zones = models.ManyToManyField("Zone", related_name="events", blank=True)
    created_at = models.DateTimeField(auto_now_add=True)
    updated_at = models.DateTimeField(auto_now=True)

    class Meta:
        ordering = ["name"]

    def __str__(self) -> str:
        return str(self.name)


class Area(models.Model):
    name = models.CharField(max_length=120)
    description = models.TextField(blank=True)
    created_at = models.DateTimeField(auto_now_add=True)
    updated_at = models.DateTimeField(auto_now=True)

    class Meta:
        ordering = ["name"]

    def __str__(self) -> str:
        return str(self.name)


class Provider(models.Model):
    class Type(models.TextChoices):
        INTERNAL = "internal", "Internal"
        EXTERNAL = "external", "External"

    name = models.CharField(max_length=200)
    area = models.ForeignKey(Area, on_delete=models.PROTECT, related_name="providers")
    type = models.CharField(max_length=20, choices=Type.choices, default=Type.EXTERNAL)
    is_active = models.BooleanField(default=True)  # pyright: ignore[reportArgumentType]
    created_at = models.DateTimeField(auto_now_add=True)
    updated_at = models.DateTimeField(auto_now=True)

    class Meta:
        ordering = ["name"]

    def __str__(self) -> str:
        return str(self.name)


class Employee(models.Model):
    provider = models.ForeignKey(Provider, on_delete=models.PROTECT, related_name="employees")
    first_name = models.CharField(max_length=120)
    last_name = models.CharField(max_length=120)
    document_type = models.CharField(max_length=20, blank=True)
    document_number = models.CharField(max_length=50, blank=True)
    function = models.CharField(max_length=120, blank=True)
    photo = models.ImageField(upload_to="employees/photos/", blank=True)
    is_active = models.BooleanField(default=True)  # pyright: ignore[reportArgumentType]
    created_at = models.DateTimeField(auto_now_add=True)
    updated_at = models.DateTimeField(auto_now=True)

    class Meta:
        ordering = ["last_name", "first_name"]

    @property
    def full_name(self) -> str:
        return f"{self.first_name} {self.last_name}".strip()

    def __str__(self) -> str:
        return self.full_name


class Zone(models.Model):
    code = models.PositiveIntegerField(unique=True)
    name = models.CharField(max_length=120)
    description = models.TextField(blank=True)

    class Meta:
        ordering = ["code"]

    def __str__(self) -> str:
        return f"{self.code} - {self.name}"


class AccreditationRequest(models.Model):
    class Status(models.TextChoices):
        DRAFT = "draft", "Draft"
        SUBMITTED = "submitted", "Submitted"
        APPROVED = "approved", "Approved"
        REJECTED = "rejected", "Rejected"
        SUSPENDED = "suspended", "Suspended"
        RETURNED = "returned", "Returned"

    uuid = models.UUIDField(default=uuid4, unique=True, editable=False)
    employee = models.ForeignKey(
        Employee,
        on_delete=models.PROTECT,
        related_name="accreditation_requests",
    )
    event = models.ForeignKey(
        Event,
        on_delete=models.PROTECT,
        related_name="accreditation_requests",
    )
    status = models.CharField(max_length=20, choices=Status.choices, default=Status.DRAFT)
    zones = models.ManyToManyField(Zone, related_name="accreditation_requests", blank=True)
    notes = models.TextField(blank=True)
    created_at = models.DateTimeField(auto_now_add=True)
    updated_at = models.DateTimeField(auto_now=True)

    class Meta:
        ordering = ["-created_at"]
        constraints = [
            models.UniqueConstraint(
                fields=["employee", "event"],
                name="unique_accreditation_request_per_event",
            )
        ]
        indexes = [
            models.Index(fields=["event", "status"], name="accreq_event_status_idx"),
        ]

    def __str__(self) -> str:
        return f"{self.employee} @ {self.event}"
