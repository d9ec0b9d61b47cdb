from __future__ import annotations

from typing import Any

from .models import Credential, CredentialAuditLog, PrintBatch


def _actor_or_none(actor):
    if actor is None or not getattr(actor, "is_authenticated", False):
        return None
    return actor


def log_credential_event(
    *,
    action: str,
    message: str,
    actor=None,
    event=None,
    credential: Credential | None = None,
    print_batch: PrintBatch | None = None,
    metadata: dict[str, Any] | None = None,
) -> CredentialAuditLog:
    if event is None and print_batch is not None:
        event = print_batch.event
    return CredentialAuditLog.objects.create(
        action=action,
        message=message,
        actor=_actor_or_none(actor),
        event=event,
        credential=credential,
        print_batch=print_batch,
        metadata=metadata or {},
    )


def audit_print_batch(
    print_batch: PrintBatch,
    *,
    action: str,
    message: str,
    actor=None,
    metadata: dict[str, Any] | None = None,
) -> CredentialAuditLog:
    metadata_payload = {
        "print_batch_id": print_batch.id,
        "print_batch_uuid": str(print_batch.uuid),
        **(metadata or {}),
    }
    return log_credential_event(
        action=f"print_batch.{action}",
        message=message,
        actor=actor,
        event=print_batch.event,
        print_batch=print_batch,
        metadata=metadata_payload,
    )


def audit_credential(
    credential: Credential,
    *,
    action: str,
    message: str,
    actor=None,
    event=None,
    metadata: dict[str, Any] | None = None,
) -> CredentialAuditLog:
    return log_credential_event(
        action=f"credential.{action}",
        message=message,
        actor=actor,
        event=event,
        credential=credential,
        metadata={"credential_id": credential.id, **(metadata or {})},
    )
