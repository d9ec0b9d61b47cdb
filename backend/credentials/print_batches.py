from __future__ import annotations

from concurrent.futures import ThreadPoolExecutor
from datetime import timedelta
from functools import partial
from hashlib import sha256
import logging
import time
from typing import Any

from django.conf import settings
from django.core.files.base import ContentFile
from django.core.files.storage import default_storage
from django.db import transaction
from django.db.models import Count, Q, Sum
from django.utils import timezone

from .credential_rendering import build_render_payload, render_credential_png, render_pages_pdf
from .exceptions import (
    CredentialRenderError,
    PrintBatchError,
    PrintBatchValidationError,
    RetryNotAllowedError,
    StorageDriftError,
)
from .history import audit_print_batch
from .models import Credential, PrintBatch
from .selectors import get_credentials_for_printing
from .serializers import PrintBatchFiltersSerializer
from .services import ensure_qr_code, set_credential_status
from .templates import get_default_template_snapshot

logger = logging.getLogger(__name__)

PDF_DIRECTORY = "print_batches"
ERROR_MESSAGE_LIMIT = 4000


def _flatten_errors(errors: Any, prefix: str = "") -> list[str]:
    if isinstance(errors, dict):
        parts: list[str] = []
        for key, value in errors.items():
            path = f"{prefix}.{key}" if prefix else str(key)
            parts.extend(_flatten_errors(value, path))
        return parts
    if isinstance(errors, list):
        parts = []
        for value in errors:
            parts.extend(_flatten_errors(value, prefix))
        return parts
    return [f"{prefix}: {errors}" if prefix else str(errors)]


def validate_filters(filters: dict[str, Any] | None) -> dict[str, Any]:
    serializer = PrintBatchFiltersSerializer(data=filters or {})
    if not serializer.is_valid():
        raise PrintBatchValidationError("; ".join(_flatten_errors(serializer.errors)))
    validated = serializer.validated_data
    return {
        "event_id": int(validated["event_id"]),
        "area_id": list(validated.get("area_id") or []),
        "provider_id": list(validated.get("provider_id") or []),
        "only_unprinted": bool(validated.get("only_unprinted", True)),
    }


def _enqueue_print_batch(batch_id: int, credential_ids: list[int]) -> None:
    from .tasks import generate_print_batch

    generate_print_batch.apply_async(
        args=[batch_id, credential_ids],
        queue=settings.PRINT_BATCH_QUEUE,
    )


def queue_batch(filters: dict[str, Any] | None, user=None) -> PrintBatch:
    validated = validate_filters(filters)
    credentials = get_credentials_for_printing(validated)
    if not credentials:
        raise PrintBatchValidationError("No credentials found matching the selected criteria.")
    credential_ids = [credential.id for credential in credentials]
    actor = user if user is not None and user.is_authenticated else None

    with transaction.atomic():
        batch = PrintBatch.objects.create(
            event_id=validated["event_id"],
            area_ids=validated["area_id"],
            provider_ids=validated["provider_id"],
            generated_by=actor,
            status=PrintBatch.Status.QUEUED,
            filters_snapshot=validated,
            total_credentials=len(credential_ids),
        )
        audit_print_batch(
            batch,
            action="queued",
            message="Print batch queued.",
            actor=actor,
            metadata={"total_credentials": len(credential_ids), "filters": validated},
        )

    _enqueue_print_batch(batch.id, credential_ids)
    logger.info(
        "Print batch queued",
        extra={
            "batch_id": batch.id,
            "batch_uuid": str(batch.uuid),
            "event_id": validated["event_id"],
            "total_credentials": len(credential_ids),
        },
    )
    return PrintBatch.objects.select_related("event", "generated_by").get(id=batch.id)


def retry_batch(batch: PrintBatch, *, actor=None) -> PrintBatch:
    max_retries = int(settings.PRINT_BATCH_MAX_RETRIES)
    with transaction.atomic():
        locked = PrintBatch.objects.select_for_update().get(id=batch.id)
        if locked.status != PrintBatch.Status.FAILED:
            raise RetryNotAllowedError("Only failed batches can be retried.")
        if locked.retry_count >= max_retries:
            raise RetryNotAllowedError(f"Batch has reached the retry limit of {max_retries}.")

        snapshot = dict(locked.filters_snapshot or {})
        credential_ids = [credential.id for credential in get_credentials_for_printing(snapshot)]
        if not credential_ids:
            raise PrintBatchValidationError("No credentials found matching the stored criteria.")

        locked.status = PrintBatch.Status.QUEUED
        locked.retry_count = int(locked.retry_count) + 1
        locked.total_credentials = len(credential_ids)
        locked.processed_credentials = 0
        locked.error_message = ""
        locked.started_at = None
        locked.finished_at = None
        locked.save(
            update_fields=[
                "status",
                "retry_count",
                "total_credentials",
                "processed_credentials",
                "error_message",
                "started_at",
                "finished_at",
                "updated_at",
            ]
        )
        audit_print_batch(
            locked,
            action="retried",
            message="Print batch re-queued after failure.",
            actor=actor,
            metadata={"retry_count": locked.retry_count, "total_credentials": len(credential_ids)},
        )

    _enqueue_print_batch(locked.id, credential_ids)
    logger.info(
        "Print batch retried",
        extra={"batch_id": locked.id, "retry_count": locked.retry_count},
    )
    return locked


def _delete_artifact(batch_id: int, pdf_path: str) -> None:
    if default_storage.exists(pdf_path):
        default_storage.delete(pdf_path)
    logger.info("Print batch PDF deleted", extra={"batch_id": batch_id, "pdf_path": pdf_path})


def cleanup_old_batches(days_old: int = 90, *, dry_run: bool = False) -> dict[str, int]:
    """Archive ready/failed batches created before the cutoff and delete their PDFs."""
    cutoff = timezone.now() - timedelta(days=int(days_old))
    candidates = PrintBatch.objects.select_related("event").filter(
        status__in=[PrintBatch.Status.READY, PrintBatch.Status.FAILED],
        created_at__lt=cutoff,
    ).order_by("id")

    cleaned_files = 0
    archived_batches = 0
    total_processed = 0
    for batch in list(candidates):
        total_processed += 1
        pdf_path = batch.pdf_path
        file_exists = bool(pdf_path) and default_storage.exists(pdf_path)
        if dry_run:
            cleaned_files += int(file_exists)
            archived_batches += 1
            continue

        with transaction.atomic():
            locked = PrintBatch.objects.select_for_update().select_related("event").get(id=batch.id)
            if locked.status not in {PrintBatch.Status.READY, PrintBatch.Status.FAILED}:
                continue
            if file_exists:
                transaction.on_commit(partial(_delete_artifact, locked.id, pdf_path))
                cleaned_files += 1
            locked.status = PrintBatch.Status.ARCHIVED
            locked.pdf_path = None
            locked.execution_metadata = {
                **dict(locked.execution_metadata or {}),
                "archived_at": timezone.now().isoformat(),
                "archived_days_threshold": int(days_old),
            }
            locked.save(update_fields=["status", "pdf_path", "execution_metadata", "updated_at"])
            audit_print_batch(
                locked,
                action="archived",
                message="Print batch archived by cleanup.",
                metadata={"days_threshold": int(days_old), "file_deleted": file_exists},
            )
            archived_batches += 1

    logger.info(
        "Print batch cleanup finished",
        extra={
            "days_old": int(days_old),
            "dry_run": dry_run,
            "cleaned_files": cleaned_files,
            "archived_batches": archived_batches,
        },
    )
    return {
        "cleaned_files": cleaned_files,
        "archived_batches": archived_batches,
        "total_processed": total_processed,
    }


def download_batch(batch: PrintBatch):
    """Open the batch PDF for reading; the caller closes the handle."""
    if batch.status != PrintBatch.Status.READY or not batch.pdf_path:
        raise PrintBatchError("Print batch PDF is not available for download.")
    if not default_storage.exists(batch.pdf_path):
        logger.error(
            "Print batch PDF missing from storage",
            extra={"batch_id": batch.id, "pdf_path": batch.pdf_path},
        )
        raise StorageDriftError("Print batch PDF file was not found in storage.")
    return default_storage.open(batch.pdf_path, "rb")


def get_batch_progress(batch_id: int) -> dict[str, Any] | None:
    batch = PrintBatch.objects.filter(id=batch_id).first()
    if batch is None:
        return None
    return {
        "id": batch.id,
        "uuid": str(batch.uuid),
        "status": batch.status,
        "processed_credentials": batch.processed_credentials,
        "total_credentials": batch.total_credentials,
        "progress_percentage": batch.progress_percentage,
        "error_message": batch.error_message,
    }


def get_processing_batches(event_id: int | None = None) -> list[PrintBatch]:
    queryset = PrintBatch.objects.select_related("event", "generated_by").filter(
        status__in=[PrintBatch.Status.QUEUED, PrintBatch.Status.PROCESSING]
    )
    if event_id is not None:
        queryset = queryset.filter(event_id=event_id)
    return list(queryset.order_by("-created_at"))


def get_batch_stats(event_id: int | None = None) -> dict[str, int]:
    queryset = PrintBatch.objects.all()
    if event_id is not None:
        queryset = queryset.filter(event_id=event_id)
    aggregates = {
        status: Count("id", filter=Q(status=status)) for status in PrintBatch.Status.values
    }
    stats = queryset.aggregate(
        total=Count("id"),
        credentials_printed=Sum(
            "processed_credentials", filter=Q(status=PrintBatch.Status.READY)
        ),
        **aggregates,
    )
    stats["credentials_printed"] = int(stats["credentials_printed"] or 0)
    return stats


def _format_failures(failures: list[tuple[int, str]]) -> str:
    lines = [f"credential {credential_id}: {detail}" for credential_id, detail in failures]
    return (f"{len(failures)} credential(s) failed to render. " + "; ".join(lines))[:ERROR_MESSAGE_LIMIT]


def _render_job(template: dict[str, Any], job: tuple[int, dict[str, Any] | None, str]):
    credential_id, payload, error = job
    if payload is None:
        return credential_id, None, error
    try:
        return credential_id, render_credential_png(template, payload), ""
    except CredentialRenderError as exc:
        return credential_id, None, exc.detail
    except Exception as exc:
        logger.exception("Credential render raised", extra={"credential_id": credential_id})
        return credential_id, None, str(exc) or exc.__class__.__name__


def _fail_batch(
    batch_id: int,
    detail: str,
    *,
    started_monotonic: float,
    credential_ids: list[int],
) -> PrintBatch:
    failure_at = timezone.now()
    duration_ms = int(max(0.0, time.monotonic() - started_monotonic) * 1000)
    with transaction.atomic():
        batch = PrintBatch.objects.select_for_update().select_related("event").get(id=batch_id)
        batch.status = PrintBatch.Status.FAILED
        batch.pdf_path = None
        batch.finished_at = failure_at
        batch.error_message = str(detail)[:ERROR_MESSAGE_LIMIT]
        batch.execution_metadata = {
            **dict(batch.execution_metadata or {}),
            "last_attempt_finished_at": failure_at.isoformat(),
            "last_attempt_duration_ms": duration_ms,
            "last_attempt_status": "failed",
        }
        batch.save(
            update_fields=["status", "pdf_path", "finished_at", "error_message", "execution_metadata", "updated_at"]
        )
        Credential.objects.filter(
            id__in=credential_ids,
            status=Credential.Status.GENERATING,
        ).update(status=Credential.Status.FAILED, error_message=str(detail)[:1000], updated_at=failure_at)
        audit_print_batch(
            batch,
            action="failed",
            message="Print batch generation failed.",
            metadata={"detail": str(detail)[:1000]},
        )
    logger.error("Print batch failed", extra={"batch_id": batch_id, "detail": str(detail)[:1000]})
    return batch


def execute_print_batch_now(*, batch_id: int, credential_ids: list[int]) -> PrintBatch | None:
    """Render every credential of a queued batch into one PDF.

    Only a batch still in `queued` is claimed, so one enqueue yields at most
    one run. Rendering happens in a bounded thread pool on database-free
    payloads; results are consumed in selection order and the progress
    counter is written after every credential.
    """
    started_monotonic = time.monotonic()
    started_at = timezone.now()
    credential_ids = [int(credential_id) for credential_id in credential_ids]
    workers = max(1, int(settings.PRINT_BATCH_RENDER_WORKERS))

    with transaction.atomic():
        batch = PrintBatch.objects.select_for_update().select_related("event").filter(id=batch_id).first()
        if batch is None:
            logger.warning("Print batch not found", extra={"batch_id": batch_id})
            return None
        if batch.status != PrintBatch.Status.QUEUED:
            logger.info(
                "Print batch not claimable",
                extra={"batch_id": batch_id, "status": batch.status},
            )
            return batch

        queue_wait_ms = int(max(0.0, (started_at - batch.updated_at).total_seconds()) * 1000)
        batch.status = PrintBatch.Status.PROCESSING
        batch.started_at = started_at
        batch.finished_at = None
        batch.total_credentials = len(credential_ids)
        batch.processed_credentials = 0
        batch.error_message = ""
        batch.execution_metadata = {
            **dict(batch.execution_metadata or {}),
            "last_attempt_started_at": started_at.isoformat(),
            "last_attempt_status": "processing",
            "queue_wait_ms": queue_wait_ms,
            "execution_attempt": int(batch.retry_count) + 1,
            "render_workers": workers,
        }
        batch.save(
            update_fields=[
                "status",
                "started_at",
                "finished_at",
                "total_credentials",
                "processed_credentials",
                "error_message",
                "execution_metadata",
                "updated_at",
            ]
        )
        Credential.objects.filter(id__in=credential_ids).update(
            status=Credential.Status.GENERATING,
            updated_at=started_at,
        )
        audit_print_batch(
            batch,
            action="processing",
            message="Print batch generation started.",
            metadata={"total_credentials": len(credential_ids)},
        )
    logger.info(
        "Print batch processing started",
        extra={"batch_id": batch_id, "total_credentials": len(credential_ids), "workers": workers},
    )

    try:
        template = get_default_template_snapshot(batch.event_id)
        credentials_by_id = {
            credential.id: credential
            for credential in Credential.objects.select_related(
                "accreditation_request__event",
                "accreditation_request__employee__provider",
            ).filter(id__in=credential_ids)
        }

        jobs: list[tuple[int, dict[str, Any] | None, str]] = []
        for credential_id in credential_ids:
            credential = credentials_by_id.get(credential_id)
            if credential is None:
                jobs.append((credential_id, None, "Credential no longer exists."))
                continue
            try:
                ensure_qr_code(credential)
                jobs.append((credential_id, build_render_payload(credential), ""))
            except CredentialRenderError as exc:
                jobs.append((credential_id, None, exc.detail))
            except Exception as exc:
                logger.exception(
                    "Credential payload build raised",
                    extra={"batch_id": batch_id, "credential_id": credential_id},
                )
                jobs.append((credential_id, None, str(exc) or exc.__class__.__name__))

        pages: list[bytes] = []
        printed_ids: list[int] = []
        failures: list[tuple[int, str]] = []
        processed = 0
        with ThreadPoolExecutor(max_workers=workers, thread_name_prefix="credential-render") as executor:
            for credential_id, png, error in executor.map(lambda job: _render_job(template, job), jobs):
                processed += 1
                credential = credentials_by_id.get(credential_id)
                if png is not None:
                    pages.append(png)
                    printed_ids.append(credential_id)
                    if credential is not None:
                        set_credential_status(credential, Credential.Status.READY)
                else:
                    failures.append((credential_id, error))
                    if credential is not None:
                        set_credential_status(credential, Credential.Status.FAILED, error_message=error)
                    logger.warning(
                        "Credential render failed",
                        extra={"batch_id": batch_id, "credential_id": credential_id, "detail": error},
                    )
                PrintBatch.objects.filter(id=batch_id).update(
                    processed_credentials=processed,
                    updated_at=timezone.now(),
                )

        if not pages:
            return _fail_batch(
                batch_id,
                _format_failures(failures) if failures else "No credentials were rendered.",
                started_monotonic=started_monotonic,
                credential_ids=credential_ids,
            )

        pdf_bytes = render_pages_pdf(pages)
        pdf_name = f"{PDF_DIRECTORY}/batch_{batch.uuid}.pdf"
        if default_storage.exists(pdf_name):
            default_storage.delete(pdf_name)
        saved_name = default_storage.save(pdf_name, ContentFile(pdf_bytes))
    except Exception as exc:
        detail = exc.detail if isinstance(exc, CredentialRenderError) else str(exc)
        logger.exception("Print batch generation raised", extra={"batch_id": batch_id})
        return _fail_batch(
            batch_id,
            detail,
            started_monotonic=started_monotonic,
            credential_ids=credential_ids,
        )

    completed_at = timezone.now()
    duration_ms = int(max(0.0, time.monotonic() - started_monotonic) * 1000)
    with transaction.atomic():
        batch = PrintBatch.objects.select_for_update().select_related("event").get(id=batch_id)
        batch.status = PrintBatch.Status.READY
        batch.pdf_path = saved_name
        batch.artifact_size_bytes = len(pdf_bytes)
        batch.artifact_sha256 = sha256(pdf_bytes).hexdigest()
        batch.finished_at = completed_at
        batch.error_message = _format_failures(failures) if failures else ""
        batch.execution_metadata = {
            **dict(batch.execution_metadata or {}),
            "rendered_credentials": len(printed_ids),
            "failed_credentials": len(failures),
            "page_count": len(pages),
            "completed_at": completed_at.isoformat(),
            "last_attempt_finished_at": completed_at.isoformat(),
            "last_attempt_duration_ms": duration_ms,
            "last_attempt_status": "ready",
        }
        batch.save(
            update_fields=[
                "status",
                "pdf_path",
                "artifact_size_bytes",
                "artifact_sha256",
                "finished_at",
                "error_message",
                "execution_metadata",
                "updated_at",
            ]
        )
        Credential.objects.filter(id__in=printed_ids).update(
            print_batch=batch,
            printed_at=completed_at,
            updated_at=completed_at,
        )
        audit_print_batch(
            batch,
            action="ready",
            message="Print batch PDF generated.",
            metadata={
                "rendered_credentials": len(printed_ids),
                "failed_credentials": len(failures),
                "artifact_size_bytes": len(pdf_bytes),
            },
        )
    logger.info(
        "Print batch ready",
        extra={
            "batch_id": batch_id,
            "pdf_path": saved_name,
            "rendered_credentials": len(printed_ids),
            "failed_credentials": len(failures),
            "duration_ms": duration_ms,
        },
    )
    return batch
