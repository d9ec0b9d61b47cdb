from datetime import timedelta
import struct
from unittest import mock, skipIf
import zlib

from django.core.files.base import ContentFile
from django.core.files.storage import default_storage
from django.db import IntegrityError, transaction
from django.test import TestCase, override_settings
from django.utils import timezone

from events.models import Event

from . import credential_rendering
from .exceptions import (
    PrintBatchError,
    PrintBatchValidationError,
    RetryNotAllowedError,
    StorageDriftError,
)
from .models import Credential, CredentialAuditLog, PrintBatch
from .print_batches import (
    cleanup_old_batches,
    download_batch,
    execute_print_batch_now,
    get_batch_progress,
    get_batch_stats,
    get_processing_batches,
    queue_batch,
    retry_batch,
    validate_filters,
)
from .selectors import get_credentials_for_printing
from .services import set_credential_status
from .signals import credential_status_changed
from .tests import CredentialFixtureMixin

FAKE_PDF = b"%PDF-1.4\n% credential batch\n"


def _png_chunk(kind: bytes, data: bytes) -> bytes:
    return struct.pack(">I", len(data)) + kind + data + struct.pack(">I", zlib.crc32(kind + data) & 0xFFFFFFFF)


def build_png_header(width: int, height: int) -> bytes:
    """A PNG that declares the given size; only the header is valid."""
    header = struct.pack(">IIBBBBB", width, height, 1, 0, 0, 0, 0)
    return (
        b"\x89PNG\r\n\x1a\n"
        + _png_chunk(b"IHDR", header)
        + _png_chunk(b"IDAT", zlib.compress(b""))
        + _png_chunk(b"IEND", b"")
    )


class PrintBatchFiltersTests(CredentialFixtureMixin, TestCase):
    def test_validate_filters_normalises_and_dedupes(self):
        validated = validate_filters(
            {"event_id": self.event.id, "area_id": [self.area.id, self.area.id], "provider_id": []}
        )
        self.assertEqual(
            validated,
            {
                "event_id": self.event.id,
                "area_id": [self.area.id],
                "provider_id": [],
                "only_unprinted": True,
            },
        )

    def test_missing_event_is_rejected(self):
        with self.assertRaises(PrintBatchValidationError) as ctx:
            validate_filters({})
        self.assertIn("event_id", ctx.exception.detail)
        self.assertEqual(ctx.exception.status_code, 400)

    def test_unknown_event_area_and_provider_are_rejected(self):
        with self.assertRaises(PrintBatchValidationError):
            validate_filters({"event_id": self.event.id + 1000})
        with self.assertRaises(PrintBatchValidationError) as ctx:
            validate_filters({"event_id": self.event.id, "area_id": [self.area.id, 99999]})
        self.assertIn("99999", ctx.exception.detail)
        with self.assertRaises(PrintBatchValidationError):
            validate_filters({"event_id": self.event.id, "provider_id": [99999]})


class CredentialSelectorTests(CredentialFixtureMixin, TestCase):
    def test_filters_by_area_and_provider(self):
        catering = self.make_credential(index=1)
        security = self.make_credential(provider=self.other_provider, index=2)

        by_area = get_credentials_for_printing({"event_id": self.event.id, "area_id": [self.other_area.id]})
        self.assertEqual([credential.id for credential in by_area], [security.id])

        by_provider = get_credentials_for_printing(
            {"event_id": self.event.id, "provider_id": [self.provider.id]}
        )
        self.assertEqual([credential.id for credential in by_provider], [catering.id])

        both_areas = get_credentials_for_printing(
            {"event_id": self.event.id, "area_id": [self.area.id, self.other_area.id]}
        )
        self.assertEqual([credential.id for credential in both_areas], [catering.id, security.id])

    def test_only_unprinted_and_inactive_are_excluded(self):
        printed = self.make_credential(index=1)
        inactive = self.make_credential(index=2)
        fresh = self.make_credential(index=3)
        Credential.objects.filter(id=printed.id).update(printed_at=timezone.now())
        Credential.objects.filter(id=inactive.id).update(is_active=False)

        selected = get_credentials_for_printing({"event_id": self.event.id})
        self.assertEqual([credential.id for credential in selected], [fresh.id])

        selected = get_credentials_for_printing({"event_id": self.event.id, "only_unprinted": False})
        self.assertEqual([credential.id for credential in selected], [printed.id, fresh.id])

    def test_requests_that_are_not_approved_are_excluded(self):
        credential = self.make_credential()
        credential.accreditation_request.status = "suspended"
        credential.accreditation_request.save(update_fields=["status"])
        self.assertEqual(get_credentials_for_printing({"event_id": self.event.id}), [])


@override_settings(CREDENTIAL_IMAGE_MAX_SIZE=300, CREDENTIAL_FONT_PATH="", PRINT_BATCH_RENDER_WORKERS=3)
class QueueBatchTests(CredentialFixtureMixin, TestCase):
    def test_empty_selection_creates_no_batch(self):
        with mock.patch("credentials.print_batches._enqueue_print_batch") as enqueue:
            with self.assertRaises(PrintBatchValidationError) as ctx:
                queue_batch({"event_id": self.event.id}, self.user)
        self.assertIn("No credentials found", ctx.exception.detail)
        self.assertEqual(PrintBatch.objects.count(), 0)
        enqueue.assert_not_called()

    def test_invalid_filters_create_no_batch(self):
        self.make_credential()
        with mock.patch("credentials.print_batches._enqueue_print_batch") as enqueue:
            with self.assertRaises(PrintBatchValidationError):
                queue_batch({"event_id": self.event.id, "provider_id": [424242]}, self.user)
        self.assertEqual(PrintBatch.objects.count(), 0)
        enqueue.assert_not_called()

    def test_queue_batch_persists_and_dispatches_to_print_queue(self):
        first = self.make_credential(index=1)
        second = self.make_credential(index=2)
        self.make_credential(provider=self.other_provider, index=3)

        with mock.patch("credentials.tasks.generate_print_batch.apply_async") as apply_async:
            batch = queue_batch({"event_id": self.event.id, "area_id": [self.area.id]}, self.user)

        self.assertEqual(batch.status, PrintBatch.Status.QUEUED)
        self.assertEqual(batch.total_credentials, 2)
        self.assertEqual(batch.processed_credentials, 0)
        self.assertEqual(batch.area_ids, [self.area.id])
        self.assertEqual(batch.generated_by, self.user)
        self.assertEqual(batch.event, self.event)
        self.assertEqual(
            batch.filters_snapshot,
            {"event_id": self.event.id, "area_id": [self.area.id], "provider_id": [], "only_unprinted": True},
        )
        apply_async.assert_called_once_with(args=[batch.id, [first.id, second.id]], queue="print_batches")
        self.assertTrue(CredentialAuditLog.objects.filter(action="print_batch.queued", print_batch=batch).exists())


@override_settings(CREDENTIAL_IMAGE_MAX_SIZE=300, CREDENTIAL_FONT_PATH="", PRINT_BATCH_RENDER_WORKERS=3)
class BatchWorkerTests(CredentialFixtureMixin, TestCase):
    def _queue(self, filters=None) -> tuple[PrintBatch, list[int]]:
        with mock.patch("credentials.print_batches._enqueue_print_batch") as enqueue:
            batch = queue_batch(filters or {"event_id": self.event.id}, self.user)
        credential_ids = enqueue.call_args.args[1]
        return batch, credential_ids

    def _run(self, batch, credential_ids) -> PrintBatch:
        with mock.patch("credentials.print_batches.render_pages_pdf", return_value=FAKE_PDF) as render_pdf:
            result = execute_print_batch_now(batch_id=batch.id, credential_ids=credential_ids)
        self.render_pdf_calls = render_pdf.call_args_list
        return result

    def test_ten_credentials_with_two_failures(self):
        credentials = []
        for index in range(10):
            credentials.append(self.make_credential(with_photo=index not in (3, 7), index=index))
        failing_ids = {credentials[3].id, credentials[7].id}
        batch, credential_ids = self._queue()
        self.assertEqual(credential_ids, [credential.id for credential in credentials])

        result = self._run(batch, credential_ids)

        self.assertEqual(result.status, PrintBatch.Status.READY)
        self.assertEqual(result.total_credentials, 10)
        self.assertEqual(result.processed_credentials, 10)
        self.assertEqual(result.progress_percentage, 100.0)
        self.assertEqual(result.pdf_path, f"print_batches/batch_{batch.uuid}.pdf")
        self.assertTrue(default_storage.exists(result.pdf_path))
        self.assertEqual(result.artifact_size_bytes, len(FAKE_PDF))
        self.assertIsNotNone(result.started_at)
        self.assertIsNotNone(result.finished_at)
        self.assertIn("2 credential(s) failed", result.error_message)
        self.assertEqual(len(self.render_pdf_calls[0].args[0]), 8)

        for credential in Credential.objects.filter(id__in=credential_ids):
            if credential.id in failing_ids:
                self.assertEqual(credential.status, Credential.Status.FAILED)
                self.assertIn("photo", credential.error_message.lower())
                self.assertIsNone(credential.printed_at)
                self.assertIsNone(credential.print_batch_id)
            else:
                self.assertEqual(credential.status, Credential.Status.READY)
                self.assertEqual(credential.print_batch_id, batch.id)
                self.assertIsNotNone(credential.printed_at)
                self.assertIsNotNone(credential.generated_at)

    def test_pages_follow_selection_order(self):
        for index in range(4):
            self.make_credential(index=index)
        batch, credential_ids = self._queue()
        with mock.patch(
            "credentials.print_batches.render_credential_png",
            side_effect=lambda template, payload: str(payload["credential_id"]).encode(),
        ):
            self._run(batch, credential_ids)
        pages = self.render_pdf_calls[0].args[0]
        self.assertEqual(pages, [str(credential_id).encode() for credential_id in credential_ids])

    def test_progress_is_written_after_every_credential(self):
        for index in range(3):
            self.make_credential(index=index)
        batch, credential_ids = self._queue()
        observed = []

        def _record(credential, status, **kwargs):
            observed.append(PrintBatch.objects.get(id=batch.id).processed_credentials)
            return set_credential_status(credential, status, **kwargs)

        with mock.patch("credentials.print_batches.set_credential_status", side_effect=_record):
            self._run(batch, credential_ids)

        batch.refresh_from_db()
        self.assertEqual(batch.processed_credentials, 3)
        self.assertEqual(observed, [0, 1, 2])
        self.assertTrue(all(value <= batch.total_credentials for value in observed))

    def test_oversized_photo_fails_only_its_credential(self):
        good = [self.make_credential(index=index) for index in range(3)]
        oversized = self.make_credential(index=3)
        employee = oversized.accreditation_request.employee
        employee.photo.save("huge.png", ContentFile(build_png_header(14000, 14000)), save=True)
        batch, credential_ids = self._queue()

        result = self._run(batch, credential_ids)

        self.assertEqual(result.status, PrintBatch.Status.READY)
        self.assertEqual(result.processed_credentials, 4)
        self.assertEqual(len(self.render_pdf_calls[0].args[0]), 3)
        self.assertIn("1 credential(s) failed", result.error_message)
        self.assertIn(f"credential {oversized.id}", result.error_message)
        oversized.refresh_from_db()
        self.assertEqual(oversized.status, Credential.Status.FAILED)
        self.assertIn("too large", oversized.error_message)
        for credential in good:
            credential.refresh_from_db()
            self.assertEqual(credential.status, Credential.Status.READY)

    def test_unexpected_render_error_fails_only_its_credential(self):
        credentials = [self.make_credential(index=index) for index in range(3)]
        broken_id = credentials[1].id
        batch, credential_ids = self._queue()

        def _render(template, payload):
            if payload["credential_id"] == broken_id:
                raise PermissionError("photo storage denied")
            return b"png"

        with mock.patch("credentials.print_batches.render_credential_png", side_effect=_render):
            result = self._run(batch, credential_ids)

        self.assertEqual(result.status, PrintBatch.Status.READY)
        self.assertEqual(self.render_pdf_calls[0].args[0], [b"png", b"png"])
        self.assertIn("photo storage denied", result.error_message)
        self.assertEqual(Credential.objects.get(id=broken_id).status, Credential.Status.FAILED)

    def test_unexpected_payload_error_fails_only_its_credential(self):
        credentials = [self.make_credential(index=index) for index in range(2)]
        broken_id = credentials[0].id
        batch, credential_ids = self._queue()
        real_build = credential_rendering.build_render_payload

        def _build(credential):
            if credential.id == broken_id:
                raise ValueError("bad zone data")
            return real_build(credential)

        with mock.patch("credentials.print_batches.build_render_payload", side_effect=_build):
            result = self._run(batch, credential_ids)

        self.assertEqual(result.status, PrintBatch.Status.READY)
        self.assertEqual(len(self.render_pdf_calls[0].args[0]), 1)
        self.assertIn("bad zone data", result.error_message)
        self.assertEqual(Credential.objects.get(id=broken_id).status, Credential.Status.FAILED)

    def test_all_failures_fail_the_batch(self):
        for index in range(2):
            self.make_credential(with_photo=False, index=index)
        batch, credential_ids = self._queue()

        result = self._run(batch, credential_ids)

        self.assertEqual(result.status, PrintBatch.Status.FAILED)
        self.assertIsNone(result.pdf_path)
        self.assertIsNotNone(result.finished_at)
        self.assertEqual(result.processed_credentials, 2)
        self.assertIn("2 credential(s) failed", result.error_message)
        self.assertEqual(self.render_pdf_calls, [])
        self.assertFalse(
            Credential.objects.filter(id__in=credential_ids).exclude(status=Credential.Status.FAILED).exists()
        )

    def test_pdf_assembly_error_fails_the_batch(self):
        self.make_credential()
        batch, credential_ids = self._queue()
        with mock.patch(
            "credentials.print_batches.render_pages_pdf",
            side_effect=credential_rendering.CredentialRenderError("PDF rendering backend is unavailable."),
        ):
            result = execute_print_batch_now(batch_id=batch.id, credential_ids=credential_ids)
        self.assertEqual(result.status, PrintBatch.Status.FAILED)
        self.assertEqual(result.error_message, "PDF rendering backend is unavailable.")
        self.assertIsNotNone(result.finished_at)

    def test_missing_template_fails_the_batch(self):
        self.make_credential()
        batch, credential_ids = self._queue()
        self.template.delete()
        result = self._run(batch, credential_ids)
        self.assertEqual(result.status, PrintBatch.Status.FAILED)
        self.assertIn("no credential template", result.error_message)
        self.assertEqual(
            Credential.objects.get(id=credential_ids[0]).status,
            Credential.Status.FAILED,
        )

    def test_only_queued_batches_are_claimed(self):
        self.make_credential()
        batch, credential_ids = self._queue()
        self._run(batch, credential_ids)
        with mock.patch("credentials.print_batches.render_credential_png") as render_png:
            again = execute_print_batch_now(batch_id=batch.id, credential_ids=credential_ids)
        render_png.assert_not_called()
        self.assertEqual(again.status, PrintBatch.Status.READY)
        self.assertIsNone(execute_print_batch_now(batch_id=999999, credential_ids=[]))

    def test_status_change_signal_is_sent(self):
        self.make_credential()
        batch, credential_ids = self._queue()
        received = []

        def _receiver(sender, credential, status_before, status_after, **kwargs):
            received.append(status_after)

        credential_status_changed.connect(_receiver)
        self.addCleanup(credential_status_changed.disconnect, _receiver)
        self._run(batch, credential_ids)
        self.assertEqual(received, [Credential.Status.READY])

    def test_printed_credentials_are_not_selected_again(self):
        self.make_credential()
        batch, credential_ids = self._queue()
        self._run(batch, credential_ids)

        with mock.patch("credentials.print_batches._enqueue_print_batch"):
            with self.assertRaises(PrintBatchValidationError):
                queue_batch({"event_id": self.event.id}, self.user)
            reprint = queue_batch({"event_id": self.event.id, "only_unprinted": False}, self.user)
        self.assertEqual(reprint.total_credentials, 1)

    def test_processed_count_cannot_exceed_total(self):
        self.make_credential()
        batch, _ = self._queue()
        with self.assertRaises(IntegrityError):
            with transaction.atomic():
                PrintBatch.objects.filter(id=batch.id).update(processed_credentials=batch.total_credentials + 1)

    def test_ready_batch_requires_pdf_path(self):
        self.make_credential()
        batch, _ = self._queue()
        with self.assertRaises(IntegrityError):
            with transaction.atomic():
                PrintBatch.objects.filter(id=batch.id).update(status=PrintBatch.Status.READY)

    def test_progress_and_dashboard_reads(self):
        for index in range(2):
            self.make_credential(index=index)
        batch, credential_ids = self._queue()

        progress = get_batch_progress(batch.id)
        self.assertEqual(progress["status"], PrintBatch.Status.QUEUED)
        self.assertEqual(progress["progress_percentage"], 0.0)
        self.assertEqual([item.id for item in get_processing_batches()], [batch.id])
        self.assertIsNone(get_batch_progress(999999))

        self._run(batch, credential_ids)
        progress = get_batch_progress(batch.id)
        self.assertEqual(progress["status"], PrintBatch.Status.READY)
        self.assertEqual(progress["processed_credentials"], 2)
        self.assertEqual(progress["progress_percentage"], 100.0)
        self.assertEqual(get_processing_batches(), [])

        stats = get_batch_stats(event_id=self.event.id)
        self.assertEqual(stats["total"], 1)
        self.assertEqual(stats["ready"], 1)
        self.assertEqual(stats["queued"], 0)
        self.assertEqual(stats["credentials_printed"], 2)

    def test_progress_percentage_rounds_to_one_decimal(self):
        batch = PrintBatch(event=self.event, total_credentials=3, processed_credentials=1)
        self.assertEqual(batch.progress_percentage, 33.3)
        self.assertEqual(PrintBatch(event=self.event).progress_percentage, 0.0)

    @skipIf(credential_rendering.HTML is None, "WeasyPrint is not available")
    def test_real_pdf_is_generated(self):
        self.make_credential()
        batch, credential_ids = self._queue()
        result = execute_print_batch_now(batch_id=batch.id, credential_ids=credential_ids)
        self.assertEqual(result.status, PrintBatch.Status.READY)
        with download_batch(result) as handle:
            self.assertTrue(handle.read().startswith(b"%PDF"))


@override_settings(CREDENTIAL_IMAGE_MAX_SIZE=300, CREDENTIAL_FONT_PATH="", PRINT_BATCH_MAX_RETRIES=3)
class RetryBatchTests(CredentialFixtureMixin, TestCase):
    def _failed_batch(self, **overrides) -> PrintBatch:
        self.make_credential()
        snapshot = {"event_id": self.event.id, "area_id": [], "provider_id": [], "only_unprinted": True}
        values = {
            "event": self.event,
            "status": PrintBatch.Status.FAILED,
            "filters_snapshot": snapshot,
            "total_credentials": 1,
            "processed_credentials": 1,
            "error_message": "boom",
            "started_at": timezone.now(),
            "finished_at": timezone.now(),
        }
        values.update(overrides)
        return PrintBatch.objects.create(**values)

    def test_retry_requeues_from_stored_snapshot(self):
        batch = self._failed_batch()
        with mock.patch(
            "credentials.print_batches.get_credentials_for_printing",
            wraps=get_credentials_for_printing,
        ) as selector, mock.patch("credentials.print_batches._enqueue_print_batch") as enqueue:
            retried = retry_batch(batch)

        selector.assert_called_once_with(batch.filters_snapshot)
        enqueue.assert_called_once()
        self.assertEqual(retried.status, PrintBatch.Status.QUEUED)
        self.assertEqual(retried.retry_count, 1)
        self.assertEqual(retried.processed_credentials, 0)
        self.assertEqual(retried.error_message, "")
        self.assertIsNone(retried.started_at)
        self.assertIsNone(retried.finished_at)

    def test_retry_rejects_non_failed_batches(self):
        batch = self._failed_batch(status=PrintBatch.Status.QUEUED, processed_credentials=0)
        with self.assertRaises(RetryNotAllowedError) as ctx:
            retry_batch(batch)
        self.assertEqual(ctx.exception.status_code, 409)

    def test_retry_cap(self):
        batch = self._failed_batch(retry_count=3)
        self.assertFalse(batch.can_be_retried)
        with mock.patch("credentials.print_batches._enqueue_print_batch") as enqueue:
            with self.assertRaises(RetryNotAllowedError):
                retry_batch(batch)
        enqueue.assert_not_called()
        batch.refresh_from_db()
        self.assertEqual(batch.status, PrintBatch.Status.FAILED)

    def test_retried_batch_can_be_processed(self):
        batch = self._failed_batch()
        with mock.patch("credentials.print_batches._enqueue_print_batch") as enqueue:
            retry_batch(batch)
        credential_ids = enqueue.call_args.args[1]
        with mock.patch("credentials.print_batches.render_pages_pdf", return_value=FAKE_PDF):
            result = execute_print_batch_now(batch_id=batch.id, credential_ids=credential_ids)
        self.assertEqual(result.status, PrintBatch.Status.READY)
        self.assertEqual(result.retry_count, 1)


class CleanupAndDownloadTests(CredentialFixtureMixin, TestCase):
    def _batch(self, *, status, days_ago, with_file=False) -> PrintBatch:
        batch = PrintBatch.objects.create(
            event=self.event,
            status=PrintBatch.Status.QUEUED,
            total_credentials=1,
            processed_credentials=1,
        )
        pdf_path = None
        if with_file:
            pdf_path = default_storage.save(f"print_batches/batch_{batch.uuid}.pdf", ContentFile(FAKE_PDF))
        elif status == PrintBatch.Status.READY:
            pdf_path = f"print_batches/batch_{batch.uuid}.pdf"
        PrintBatch.objects.filter(id=batch.id).update(
            status=status,
            pdf_path=pdf_path,
            created_at=timezone.now() - timedelta(days=days_ago),
        )
        batch.refresh_from_db()
        return batch

    def test_cleanup_archives_stale_batches(self):
        old_ready = self._batch(status=PrintBatch.Status.READY, days_ago=120, with_file=True)
        old_failed = self._batch(status=PrintBatch.Status.FAILED, days_ago=120)
        recent_ready = self._batch(status=PrintBatch.Status.READY, days_ago=10, with_file=True)
        old_pdf_path = old_ready.pdf_path

        with self.captureOnCommitCallbacks(execute=True):
            result = cleanup_old_batches(days_old=90)

        self.assertEqual(result, {"cleaned_files": 1, "archived_batches": 2, "total_processed": 2})
        old_ready.refresh_from_db()
        old_failed.refresh_from_db()
        recent_ready.refresh_from_db()
        self.assertEqual(old_ready.status, PrintBatch.Status.ARCHIVED)
        self.assertIsNone(old_ready.pdf_path)
        self.assertFalse(default_storage.exists(old_pdf_path))
        self.assertEqual(old_failed.status, PrintBatch.Status.ARCHIVED)
        self.assertEqual(recent_ready.status, PrintBatch.Status.READY)
        self.assertTrue(default_storage.exists(recent_ready.pdf_path))
        self.assertEqual(
            CredentialAuditLog.objects.filter(action="print_batch.archived").count(),
            2,
        )

    def test_cleanup_deletes_pdf_only_after_archive_commits(self):
        batch = self._batch(status=PrintBatch.Status.READY, days_ago=120, with_file=True)
        pdf_path = batch.pdf_path
        with self.captureOnCommitCallbacks() as callbacks:
            cleanup_old_batches(days_old=90)
        self.assertTrue(default_storage.exists(pdf_path))
        self.assertEqual(len(callbacks), 1)
        callbacks[0]()
        self.assertFalse(default_storage.exists(pdf_path))

    def test_failed_archive_keeps_pdf_in_storage(self):
        batch = self._batch(status=PrintBatch.Status.READY, days_ago=120, with_file=True)
        with self.captureOnCommitCallbacks(execute=True):
            with mock.patch(
                "credentials.print_batches.audit_print_batch",
                side_effect=RuntimeError("audit write failed"),
            ):
                with self.assertRaises(RuntimeError):
                    cleanup_old_batches(days_old=90)
        batch.refresh_from_db()
        self.assertEqual(batch.status, PrintBatch.Status.READY)
        self.assertTrue(default_storage.exists(batch.pdf_path))
        with download_batch(batch) as handle:
            self.assertEqual(handle.read(), FAKE_PDF)

    def test_cleanup_tolerates_missing_files_and_is_idempotent(self):
        drifted = self._batch(status=PrintBatch.Status.READY, days_ago=120)
        result = cleanup_old_batches(days_old=90)
        self.assertEqual(result, {"cleaned_files": 0, "archived_batches": 1, "total_processed": 1})
        drifted.refresh_from_db()
        self.assertEqual(drifted.status, PrintBatch.Status.ARCHIVED)
        self.assertEqual(
            cleanup_old_batches(days_old=90),
            {"cleaned_files": 0, "archived_batches": 0, "total_processed": 0},
        )

    def test_cleanup_dry_run_changes_nothing(self):
        batch = self._batch(status=PrintBatch.Status.READY, days_ago=120, with_file=True)
        result = cleanup_old_batches(days_old=90, dry_run=True)
        self.assertEqual(result, {"cleaned_files": 1, "archived_batches": 1, "total_processed": 1})
        batch.refresh_from_db()
        self.assertEqual(batch.status, PrintBatch.Status.READY)
        self.assertTrue(default_storage.exists(batch.pdf_path))

    def test_cleanup_task_uses_retention_setting(self):
        from .tasks import cleanup_old_print_batches

        self._batch(status=PrintBatch.Status.FAILED, days_ago=40)
        with override_settings(PRINT_BATCH_RETENTION_DAYS=30):
            result = cleanup_old_print_batches()
        self.assertEqual(result["archived_batches"], 1)

    def test_download_returns_pdf(self):
        batch = self._batch(status=PrintBatch.Status.READY, days_ago=1, with_file=True)
        with download_batch(batch) as handle:
            self.assertEqual(handle.read(), FAKE_PDF)
        self.assertEqual(batch.download_filename, f"credentials_batch_{batch.uuid}.pdf")

    def test_download_missing_file_is_storage_drift(self):
        batch = self._batch(status=PrintBatch.Status.READY, days_ago=1)
        with self.assertRaises(StorageDriftError) as ctx:
            download_batch(batch)
        self.assertEqual(ctx.exception.status_code, 409)

    def test_download_requires_ready_batch(self):
        batch = self._batch(status=PrintBatch.Status.FAILED, days_ago=1)
        with self.assertRaises(PrintBatchError):
            download_batch(batch)


class ExpireEventTaskTests(CredentialFixtureMixin, TestCase):
    def test_expire_event_credentials_task(self):
        from .tasks import expire_event_credentials

        credential = self.make_credential()
        self.assertEqual(expire_event_credentials(self.event.id), 1)
        credential.refresh_from_db()
        self.assertFalse(credential.is_active)
        self.assertEqual(expire_event_credentials(Event.objects.count() + 1000), 0)
