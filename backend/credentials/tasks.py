from __future__ import annotations

from celery import shared_task
from django.conf import settings

from events.models import Event

from .generation import dispatch_event_regeneration, generate_credential_now, regenerate_credential_now
from .print_batches import cleanup_old_batches, execute_print_batch_now
from .services import invalidate_event_credentials


@shared_task
def generate_print_batch(batch_id: int, credential_ids: list[int]) -> str | None:
    batch = execute_print_batch_now(batch_id=batch_id, credential_ids=credential_ids)
    if batch is None:
        return None
    return batch.status


@shared_task
def cleanup_old_print_batches(days_old: int | None = None) -> dict[str, int]:
    if days_old is None:
        days_old = int(settings.PRINT_BATCH_RETENTION_DAYS)
    return cleanup_old_batches(days_old=days_old)


@shared_task
def expire_event_credentials(event_id: int) -> int:
    event = Event.objects.filter(id=event_id).first()
    if event is None:
        return 0
    return invalidate_event_credentials(event)


@shared_task
def generate_credential(credential_id: int) -> str | None:
    credential = generate_credential_now(credential_id)
    if credential is None:
        return None
    return credential.status


@shared_task
def regenerate_credential(credential_id: int, template_id: int, regenerate_qr: bool = False) -> str | None:
    credential = regenerate_credential_now(credential_id, template_id, regenerate_qr=regenerate_qr)
    if credential is None:
        return None
    return credential.status


@shared_task
def regenerate_event_credentials(event_id: int, template_id: int) -> int:
    return dispatch_event_regeneration(event_id, template_id)
