from __future__ import annotations

from functools import partial
import logging
import secrets
import string
from typing import Any

from django.conf import settings
from django.core.exceptions import ValidationError
from django.db import transaction
from django.db.models import Count
from django.utils import timezone

from events.models import AccreditationRequest, Event

from .exceptions import CredentialRenderError
from .history import audit_credential, log_credential_event
from .models import Credential
from .signals import accreditation_status_changed, credential_status_changed
from .templates import build_template_snapshot, get_default_template

logger = logging.getLogger(__name__)

QR_CODE_PREFIX = "CRD_"
QR_CODE_RANDOM_LENGTH = 12
QR_CODE_MAX_ATTEMPTS = 10
QR_CODE_ALPHABET = string.ascii_uppercase + string.digits


def generate_qr_code(credential_id: int) -> str:
    for _ in range(QR_CODE_MAX_ATTEMPTS):
        token = "".join(secrets.choice(QR_CODE_ALPHABET) for _ in range(QR_CODE_RANDOM_LENGTH))
        candidate = f"{QR_CODE_PREFIX}{token}_{credential_id}"
        if not Credential.objects.filter(qr_code=candidate).exists():
            return candidate
    raise CredentialRenderError(
        f"Could not generate a unique QR code for credential {credential_id}.",
        status_code=409,
    )


def ensure_qr_code(credential: Credential) -> Credential:
    if credential.qr_code:
        return credential
    credential.qr_code = generate_qr_code(credential.id)
    credential.save(update_fields=["qr_code", "updated_at"])
    return credential


def set_credential_status(
    credential: Credential,
    status: str,
    *,
    error_message: str = "",
) -> Credential:
    status_before = credential.status
    credential.status = status
    credential.error_message = error_message[:4000]
    update_fields = ["status", "error_message", "updated_at"]
    if status == Credential.Status.READY:
        credential.generated_at = timezone.now()
        update_fields.append("generated_at")
    credential.save(update_fields=update_fields)
    if status_before != status:
        credential_status_changed.send(
            sender=Credential,
            credential=credential,
            status_before=status_before,
            status_after=status,
        )
    return credential


def capture_snapshots(credential: Credential) -> Credential:
    """Freeze the employee, event, zone and template data the credential is rendered from."""
    accreditation = credential.accreditation_request
    employee = accreditation.employee
    event = accreditation.event
    captured_at = timezone.now().isoformat()

    try:
        template_snapshot = build_template_snapshot(get_default_template(event.id))
    except CredentialRenderError:
        template_snapshot = None

    credential.employee_snapshot = {
        "id": employee.id,
        "first_name": employee.first_name,
        "last_name": employee.last_name,
        "document_type": employee.document_type,
        "document_number": employee.document_number,
        "function": employee.function,
        "photo_path": employee.photo.name if employee.photo else "",
        "provider_id": employee.provider_id,
        "captured_at": captured_at,
    }
    credential.event_snapshot = {
        "id": event.id,
        "name": event.name,
        "location": event.location,
        "start_date": event.start_date.isoformat() if event.start_date else None,
        "end_date": event.end_date.isoformat() if event.end_date else None,
        "is_active": event.is_active,
        "captured_at": captured_at,
    }
    credential.zones_snapshot = [
        {"id": zone.id, "code": zone.code, "name": zone.name, "description": zone.description}
        for zone in accreditation.zones.order_by("code")
    ]
    credential.template_snapshot = template_snapshot
    credential.save(
        update_fields=[
            "employee_snapshot",
            "event_snapshot",
            "zones_snapshot",
            "template_snapshot",
            "updated_at",
        ]
    )
    return credential


def _enqueue_credential_generation(credential_id: int) -> None:
    from .tasks import generate_credential

    generate_credential.apply_async(args=[credential_id], queue=settings.CREDENTIAL_QUEUE)


def issue_credential(accreditation_request: AccreditationRequest, *, actor=None) -> Credential:
    if accreditation_request.status != AccreditationRequest.Status.APPROVED:
        raise ValidationError(
            {"accreditation_request": "Credentials can only be issued for approved requests."}
        )

    with transaction.atomic():
        credential, created = Credential.objects.get_or_create(
            accreditation_request=accreditation_request,
            defaults={"status": Credential.Status.PENDING, "is_active": True},
        )
        ensure_qr_code(credential)
        if created:
            capture_snapshots(credential)
            transaction.on_commit(partial(_enqueue_credential_generation, credential.id))
            audit_credential(
                credential,
                action="issued",
                message="Credential issued for approved accreditation.",
                actor=actor,
                event=accreditation_request.event,
                metadata={"accreditation_request_id": accreditation_request.id},
            )
    if created:
        logger.info(
            "Credential issued",
            extra={"credential_id": credential.id, "accreditation_request_id": accreditation_request.id},
        )
    return credential


def change_accreditation_status(
    accreditation_request: AccreditationRequest,
    status: str,
    *,
    actor=None,
) -> AccreditationRequest:
    status_before = accreditation_request.status
    if status not in AccreditationRequest.Status.values:
        raise ValidationError({"status": f"Unknown accreditation status '{status}'."})
    if status_before == status:
        return accreditation_request

    accreditation_request.status = status
    accreditation_request.save(update_fields=["status", "updated_at"])
    accreditation_status_changed.send(
        sender=AccreditationRequest,
        accreditation_request=accreditation_request,
        status_before=status_before,
        status_after=status,
        actor=actor,
    )
    if status == AccreditationRequest.Status.APPROVED:
        issue_credential(accreditation_request, actor=actor)
    return accreditation_request


def verify_credential_by_qr(qr_code: str) -> dict[str, Any]:
    code = str(qr_code or "").strip()
    if not code:
        return {"valid": False, "reason": "missing_code"}

    credential = (
        Credential.objects.select_related(
            "accreditation_request__employee__provider",
            "accreditation_request__event",
        )
        .filter(qr_code=code)
        .first()
    )
    if credential is None:
        return {"valid": False, "reason": "not_found"}

    accreditation = credential.accreditation_request
    result: dict[str, Any] = {
        "credential_id": credential.id,
        "employee": accreditation.employee.full_name,
        "provider": accreditation.employee.provider.name,
        "event": accreditation.event.name,
        "zones": [
            str(code) for code in accreditation.zones.order_by("code").values_list("code", flat=True)
        ],
    }
    if not credential.is_active:
        return {**result, "valid": False, "reason": "inactive"}
    if credential.expires_at is not None and credential.expires_at <= timezone.now():
        return {**result, "valid": False, "reason": "expired"}
    if accreditation.status != AccreditationRequest.Status.APPROVED:
        return {**result, "valid": False, "reason": "not_approved"}
    return {**result, "valid": True, "reason": ""}


def invalidate_event_credentials(event: Event, *, actor=None) -> int:
    now = timezone.now()
    with transaction.atomic():
        updated = Credential.objects.filter(
            accreditation_request__event=event,
            is_active=True,
        ).update(is_active=False, expires_at=now, updated_at=now)
        log_credential_event(
            action="credential.event_invalidated",
            message="Event credentials invalidated.",
            actor=actor,
            event=event,
            metadata={"event_id": event.id, "invalidated": updated},
        )
    logger.info("Event credentials invalidated", extra={"event_id": event.id, "invalidated": updated})
    return updated


def get_event_credential_stats(event_id: int) -> dict[str, int]:
    credentials = Credential.objects.filter(accreditation_request__event_id=event_id)
    stats = {status: 0 for status in Credential.Status.values}
    for row in credentials.values("status").annotate(total=Count("id")):
        stats[row["status"]] = row["total"]
    stats["total"] = sum(stats[status] for status in Credential.Status.values)
    stats["active"] = credentials.filter(is_active=True).count()
    stats["printed"] = credentials.filter(printed_at__isnull=False).count()
    return stats
