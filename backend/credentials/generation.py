"""Single-credential artifacts: PNG and one-page PDF stored per credential."""

from __future__ import annotations

import logging
from typing import Any

from django.conf import settings
from django.core.files.base import ContentFile
from django.core.files.storage import default_storage

from events.models import AccreditationRequest

from .credential_rendering import build_render_payload, render_credential_png, render_pages_pdf
from .exceptions import CredentialRenderError
from .history import audit_credential
from .models import Credential, Template
from .services import capture_snapshots, ensure_qr_code, set_credential_status
from .templates import build_template_snapshot

logger = logging.getLogger(__name__)

ARTIFACT_DIRECTORY = "credentials"


def _load_credential(credential_id: int) -> Credential | None:
    return (
        Credential.objects.select_related(
            "accreditation_request__event",
            "accreditation_request__employee__provider",
        )
        .filter(id=credential_id)
        .first()
    )


def _template_from_snapshot(credential: Credential) -> dict[str, Any]:
    snapshot = credential.template_snapshot
    if not snapshot:
        raise CredentialRenderError(
            f"Credential {credential.id} has no template to render from.",
            status_code=404,
        )
    try:
        with default_storage.open(snapshot["file_path"], "rb") as handle:
            background = handle.read()
    except FileNotFoundError as exc:
        raise CredentialRenderError(
            f"Template file '{snapshot['file_path']}' is missing from storage."
        ) from exc
    return {
        "id": snapshot.get("id"),
        "version": snapshot.get("version"),
        "layout_meta": snapshot.get("layout_meta") or {},
        "background": background,
    }


def _store_artifact(name: str, data: bytes) -> str:
    if default_storage.exists(name):
        default_storage.delete(name)
    return default_storage.save(name, ContentFile(data))


def _render_and_store(credential: Credential) -> Credential:
    template = _template_from_snapshot(credential)
    png_bytes = render_credential_png(template, build_render_payload(credential))
    pdf_bytes = render_pages_pdf([png_bytes])

    credential.credential_image_path = _store_artifact(
        f"{ARTIFACT_DIRECTORY}/credential_{credential.id}.png", png_bytes
    )
    credential.credential_pdf_path = _store_artifact(
        f"{ARTIFACT_DIRECTORY}/credential_{credential.id}.pdf", pdf_bytes
    )
    credential.save(update_fields=["credential_image_path", "credential_pdf_path", "updated_at"])
    return set_credential_status(credential, Credential.Status.READY)


def _run_generation(credential: Credential, *, action: str, steps) -> Credential:
    try:
        steps()
        _render_and_store(credential)
    except Exception as exc:
        detail = exc.detail if isinstance(exc, CredentialRenderError) else str(exc) or exc.__class__.__name__
        logger.exception(
            "Credential generation failed",
            extra={"credential_id": credential.id, "action": action},
        )
        set_credential_status(credential, Credential.Status.FAILED, error_message=detail)
        audit_credential(
            credential,
            action="generation_failed",
            message="Credential artifact generation failed.",
            event=credential.accreditation_request.event,
            metadata={"detail": detail[:1000], "attempted": action},
        )
        return credential

    audit_credential(
        credential,
        action=action,
        message="Credential artifacts generated.",
        event=credential.accreditation_request.event,
        metadata={
            "image_path": credential.credential_image_path,
            "pdf_path": credential.credential_pdf_path,
            "template_version": (credential.template_snapshot or {}).get("version"),
        },
    )
    logger.info(
        "Credential artifacts generated",
        extra={"credential_id": credential.id, "action": action},
    )
    return credential


def generate_credential_now(credential_id: int, *, force: bool = False) -> Credential | None:
    """Capture fresh snapshots, then render and store the credential's PNG and PDF."""
    credential = _load_credential(credential_id)
    if credential is None:
        logger.warning("Credential not found for generation", extra={"credential_id": credential_id})
        return None
    if credential.status == Credential.Status.READY and not force:
        logger.info("Credential already generated", extra={"credential_id": credential_id})
        return credential

    set_credential_status(credential, Credential.Status.GENERATING)

    def _prepare():
        capture_snapshots(credential)
        ensure_qr_code(credential)

    return _run_generation(credential, action="generated", steps=_prepare)


def regenerate_credential_now(
    credential_id: int,
    template_id: int,
    *,
    regenerate_qr: bool = False,
) -> Credential | None:
    """Re-render a credential against `template_id`, keeping its QR code unless asked otherwise."""
    credential = _load_credential(credential_id)
    if credential is None:
        logger.warning("Credential not found for regeneration", extra={"credential_id": credential_id})
        return None
    template = Template.objects.filter(id=template_id).first()
    if template is None:
        logger.warning(
            "Template not found for regeneration",
            extra={"credential_id": credential_id, "template_id": template_id},
        )
        return None

    credential.template_snapshot = build_template_snapshot(template)
    credential.generated_at = None
    credential.credential_image_path = None
    credential.credential_pdf_path = None
    update_fields = [
        "template_snapshot",
        "generated_at",
        "credential_image_path",
        "credential_pdf_path",
        "updated_at",
    ]
    if regenerate_qr:
        credential.qr_code = None
        update_fields.append("qr_code")
    credential.save(update_fields=update_fields)
    set_credential_status(credential, Credential.Status.GENERATING)

    return _run_generation(
        credential,
        action="regenerated",
        steps=lambda: ensure_qr_code(credential),
    )


def dispatch_event_regeneration(event_id: int, template_id: int) -> int:
    """Queue one regeneration task per credential of an approved request in the event."""
    from .tasks import regenerate_credential

    credential_ids = Credential.objects.filter(
        accreditation_request__event_id=event_id,
        accreditation_request__status=AccreditationRequest.Status.APPROVED,
    ).order_by("id").values_list("id", flat=True)

    dispatched = 0
    for credential_id in credential_ids.iterator(chunk_size=int(settings.CREDENTIAL_REGENERATION_CHUNK_SIZE)):
        regenerate_credential.apply_async(
            args=[credential_id, template_id],
            queue=settings.CREDENTIAL_QUEUE,
        )
        dispatched += 1

    logger.info(
        "Credential regeneration dispatched",
        extra={"event_id": event_id, "template_id": template_id, "dispatched": dispatched},
    )
    return dispatched
