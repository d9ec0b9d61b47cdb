from __future__ import annotations

from functools import partial
import logging
from typing import Any

from django.conf import settings
from django.core.exceptions import ValidationError
from django.core.files.storage import default_storage
from django.db import transaction
from django.utils import timezone

from events.models import Event

from .cache import TemplateCache
from .exceptions import CredentialRenderError
from .history import log_credential_event
from .layout_registry import validate_layout_meta
from .models import Template

logger = logging.getLogger(__name__)


def build_template_snapshot(template: Template) -> dict[str, Any]:
    return {
        "id": template.id,
        "name": template.name,
        "file_path": template.file.name,
        "layout_meta": template.layout_meta,
        "version": template.version,
        "captured_at": timezone.now().isoformat(),
    }


def _enqueue_event_regeneration(event_id: int, template_id: int) -> None:
    from .tasks import regenerate_event_credentials

    regenerate_event_credentials.apply_async(
        args=[event_id, template_id],
        queue=settings.CREDENTIAL_QUEUE,
    )


def create_template(
    *,
    event: Event,
    name: str,
    file,
    layout_meta: dict[str, Any],
    is_default: bool = False,
    actor=None,
) -> Template:
    validate_layout_meta(layout_meta)
    with transaction.atomic():
        template = Template.objects.create(
            event=event,
            name=name,
            file=file,
            layout_meta=layout_meta,
            created_by=actor if actor is not None and actor.is_authenticated else None,
        )
        if is_default:
            template = set_default_template(template, actor=actor)
        log_credential_event(
            action="template.created",
            message="Credential template created.",
            actor=actor,
            event=event,
            metadata={"template_id": template.id, "version": template.version},
        )
    TemplateCache.invalidate(event.id)
    return template


def revise_template_layout(template: Template, layout_meta: dict[str, Any], *, actor=None) -> Template:
    validate_layout_meta(layout_meta)
    with transaction.atomic():
        locked = Template.objects.select_for_update().get(id=template.id)
        locked.layout_meta = layout_meta
        locked.version = int(locked.version) + 1
        locked.save(update_fields=["layout_meta", "version", "updated_at"])
        log_credential_event(
            action="template.revised",
            message="Credential template layout revised.",
            actor=actor,
            event=locked.event,
            metadata={"template_id": locked.id, "version": locked.version},
        )
        if locked.is_default:
            transaction.on_commit(partial(_enqueue_event_regeneration, locked.event_id, locked.id))
    TemplateCache.invalidate(locked.event_id)
    logger.info(
        "Template layout revised",
        extra={"template_id": locked.id, "event_id": locked.event_id, "version": locked.version},
    )
    return locked


def set_default_template(template: Template, *, actor=None) -> Template:
    with transaction.atomic():
        list(Template.objects.select_for_update().filter(event_id=template.event_id))
        Template.objects.filter(event_id=template.event_id, is_default=True).exclude(
            id=template.id
        ).update(is_default=False)
        locked = Template.objects.get(id=template.id)
        if not locked.is_default:
            locked.is_default = True
            locked.save(update_fields=["is_default", "updated_at"])
            transaction.on_commit(partial(_enqueue_event_regeneration, locked.event_id, locked.id))
        log_credential_event(
            action="template.default_set",
            message="Default credential template changed.",
            actor=actor,
            event=locked.event,
            metadata={"template_id": locked.id},
        )
    TemplateCache.invalidate(locked.event_id)
    return locked


def get_default_template(event_id: int) -> Template:
    template = Template.objects.filter(event_id=event_id, is_default=True).first()
    if template is None:
        template = Template.objects.filter(event_id=event_id).order_by("-updated_at", "-id").first()
    if template is None:
        raise CredentialRenderError(f"Event {event_id} has no credential template.", status_code=404)
    return template


def get_default_template_snapshot(event_id: int) -> dict[str, Any]:
    """Cached layout of the event's default template plus the background bytes."""
    snapshot = TemplateCache.get(event_id)
    if snapshot is None:
        template = get_default_template(event_id)
        try:
            validate_layout_meta(template.layout_meta)
        except ValidationError as exc:
            raise CredentialRenderError(
                f"Template {template.id} has an invalid layout: {'; '.join(exc.messages)}"
            ) from exc
        snapshot = {
            "id": template.id,
            "version": template.version,
            "file_name": template.file.name,
            "layout_meta": template.layout_meta,
        }
        TemplateCache.set(event_id, snapshot)

    try:
        with default_storage.open(snapshot["file_name"], "rb") as handle:
            background = handle.read()
    except FileNotFoundError as exc:
        raise CredentialRenderError(
            f"Template file '{snapshot['file_name']}' is missing from storage."
        ) from exc
    return {**snapshot, "background": background}
