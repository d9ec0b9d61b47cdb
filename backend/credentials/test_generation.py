from unittest import mock

from django.core.files.storage import default_storage
from django.test import TestCase, override_settings

from events.models import AccreditationRequest, Employee

from .generation import (
    dispatch_event_regeneration,
    generate_credential_now,
    regenerate_credential_now,
)
from .models import Credential, CredentialAuditLog, Template
from .services import issue_credential
from .templates import revise_template_layout, set_default_template
from .tests import CredentialFixtureMixin, build_uploaded_png, sample_layout_meta

FAKE_PDF = b"%PDF-1.4\n% single credential\n"


class CredentialSnapshotTests(CredentialFixtureMixin, TestCase):
    def test_issue_captures_snapshots(self):
        credential = self.make_credential(index=4)
        self.assertEqual(credential.employee_snapshot["first_name"], "Ana4")
        self.assertEqual(credential.employee_snapshot["document_number"], "1004")
        self.assertEqual(credential.employee_snapshot["provider_id"], self.provider.id)
        self.assertTrue(credential.employee_snapshot["photo_path"].startswith("employees/photos/"))
        self.assertEqual(credential.event_snapshot["name"], "Summer Festival")
        self.assertEqual(credential.event_snapshot["location"], "Main Park")
        self.assertEqual([zone["code"] for zone in credential.zones_snapshot], [1, 2])
        self.assertEqual(credential.template_snapshot["id"], self.template.id)
        self.assertEqual(credential.template_snapshot["version"], 1)
        self.assertEqual(credential.template_snapshot["file_path"], self.template.file.name)

    def test_snapshots_do_not_follow_later_edits(self):
        credential = self.make_credential()
        employee = credential.accreditation_request.employee
        employee.first_name = "Changed"
        employee.save(update_fields=["first_name"])
        credential.refresh_from_db()
        self.assertEqual(credential.employee_snapshot["first_name"], "Ana0")

    def test_event_without_template_has_no_template_snapshot(self):
        self.template.delete()
        credential = self.make_credential()
        self.assertIsNone(credential.template_snapshot)

    def test_issue_queues_generation_after_commit(self):
        employee = Employee.objects.create(provider=self.provider, first_name="Luis", last_name="Diaz")
        accreditation = AccreditationRequest.objects.create(
            employee=employee,
            event=self.event,
            status=AccreditationRequest.Status.APPROVED,
        )
        with mock.patch("credentials.tasks.generate_credential.apply_async") as apply_async:
            with self.captureOnCommitCallbacks(execute=True):
                credential = issue_credential(accreditation)
            with self.captureOnCommitCallbacks(execute=True):
                issue_credential(accreditation)
        apply_async.assert_called_once_with(args=[credential.id], queue="credentials")


class CredentialGenerationTests(CredentialFixtureMixin, TestCase):
    def _generate(self, credential_id, **kwargs):
        with mock.patch("credentials.generation.render_pages_pdf", return_value=FAKE_PDF) as render_pdf:
            result = generate_credential_now(credential_id, **kwargs)
        self.render_pdf_calls = render_pdf.call_args_list
        return result

    def test_generation_stores_png_and_pdf(self):
        credential = self.make_credential()
        result = self._generate(credential.id)

        self.assertEqual(result.status, Credential.Status.READY)
        self.assertIsNotNone(result.generated_at)
        self.assertEqual(result.credential_image_path, f"credentials/credential_{credential.id}.png")
        self.assertEqual(result.credential_pdf_path, f"credentials/credential_{credential.id}.pdf")
        with default_storage.open(result.credential_image_path, "rb") as handle:
            png_bytes = handle.read()
        self.assertTrue(png_bytes.startswith(b"\x89PNG"))
        self.assertEqual(self.render_pdf_calls[0].args[0], [png_bytes])
        with default_storage.open(result.credential_pdf_path, "rb") as handle:
            self.assertEqual(handle.read(), FAKE_PDF)
        self.assertTrue(
            CredentialAuditLog.objects.filter(action="credential.generated", credential=credential).exists()
        )

    def test_ready_credential_is_skipped_unless_forced(self):
        credential = self.make_credential()
        self._generate(credential.id)
        self._generate(credential.id)
        self.assertEqual(self.render_pdf_calls, [])
        self._generate(credential.id, force=True)
        self.assertEqual(len(self.render_pdf_calls), 1)

    def test_missing_photo_marks_credential_failed(self):
        credential = self.make_credential(with_photo=False)
        result = self._generate(credential.id)
        self.assertEqual(result.status, Credential.Status.FAILED)
        self.assertIn("photo", result.error_message.lower())
        self.assertIsNone(result.credential_image_path)
        self.assertTrue(
            CredentialAuditLog.objects.filter(action="credential.generation_failed", credential=credential).exists()
        )

    def test_unexpected_error_marks_credential_failed(self):
        credential = self.make_credential()
        with mock.patch(
            "credentials.generation.render_credential_png",
            side_effect=RuntimeError("renderer crashed"),
        ):
            result = self._generate(credential.id)
        self.assertEqual(result.status, Credential.Status.FAILED)
        self.assertEqual(result.error_message, "renderer crashed")

    def test_event_without_template_fails_generation(self):
        credential = self.make_credential()
        self.template.delete()
        result = self._generate(credential.id)
        self.assertEqual(result.status, Credential.Status.FAILED)
        self.assertIsNone(result.template_snapshot)

    def test_unknown_credential_returns_none(self):
        self.assertIsNone(self._generate(999999))

    def test_generate_credential_task(self):
        from .tasks import generate_credential

        credential = self.make_credential()
        with mock.patch("credentials.generation.render_pages_pdf", return_value=FAKE_PDF):
            self.assertEqual(generate_credential(credential.id), Credential.Status.READY)
        self.assertIsNone(generate_credential(999999))


@override_settings(CREDENTIAL_REGENERATION_CHUNK_SIZE=2)
class CredentialRegenerationTests(CredentialFixtureMixin, TestCase):
    def _second_template(self) -> Template:
        return Template.objects.create(
            event=self.event,
            name="Alternative",
            file=build_uploaded_png("alt.png", color=(10, 10, 10)),
            layout_meta=sample_layout_meta(),
        )

    def test_revising_default_template_queues_event_regeneration(self):
        with mock.patch("credentials.tasks.regenerate_event_credentials.apply_async") as apply_async:
            with self.captureOnCommitCallbacks(execute=True):
                revise_template_layout(self.template, sample_layout_meta())
        apply_async.assert_called_once_with(args=[self.event.id, self.template.id], queue="credentials")

    def test_revising_other_template_does_not_queue_regeneration(self):
        second = self._second_template()
        with mock.patch("credentials.tasks.regenerate_event_credentials.apply_async") as apply_async:
            with self.captureOnCommitCallbacks(execute=True):
                revise_template_layout(second, sample_layout_meta())
        apply_async.assert_not_called()

    def test_changing_default_template_queues_event_regeneration(self):
        second = self._second_template()
        with mock.patch("credentials.tasks.regenerate_event_credentials.apply_async") as apply_async:
            with self.captureOnCommitCallbacks(execute=True):
                set_default_template(second)
            with self.captureOnCommitCallbacks(execute=True):
                set_default_template(second)
        apply_async.assert_called_once_with(args=[self.event.id, second.id], queue="credentials")

    def test_dispatch_queues_one_task_per_approved_credential(self):
        credentials = [self.make_credential(index=index) for index in range(3)]
        suspended = self.make_credential(index=9)
        AccreditationRequest.objects.filter(id=suspended.accreditation_request_id).update(
            status=AccreditationRequest.Status.SUSPENDED
        )
        with mock.patch("credentials.tasks.regenerate_credential.apply_async") as apply_async:
            dispatched = dispatch_event_regeneration(self.event.id, self.template.id)
        self.assertEqual(dispatched, 3)
        self.assertEqual(
            [call.kwargs["args"] for call in apply_async.call_args_list],
            [[credential.id, self.template.id] for credential in credentials],
        )

    def test_regeneration_uses_new_template_and_keeps_qr_code(self):
        credential = self.make_credential()
        qr_code = credential.qr_code
        second = self._second_template()
        with mock.patch("credentials.generation.render_pages_pdf", return_value=FAKE_PDF):
            generate_credential_now(credential.id)
            result = regenerate_credential_now(credential.id, second.id)

        self.assertEqual(result.status, Credential.Status.READY)
        self.assertEqual(result.template_snapshot["id"], second.id)
        self.assertEqual(result.qr_code, qr_code)
        self.assertTrue(default_storage.exists(result.credential_image_path))
        self.assertTrue(
            CredentialAuditLog.objects.filter(action="credential.regenerated", credential=credential).exists()
        )

    def test_regeneration_can_replace_qr_code(self):
        credential = self.make_credential()
        with mock.patch("credentials.generation.render_pages_pdf", return_value=FAKE_PDF):
            result = regenerate_credential_now(credential.id, self.template.id, regenerate_qr=True)
        self.assertEqual(result.status, Credential.Status.READY)
        self.assertNotEqual(result.qr_code, credential.qr_code)
        self.assertRegex(result.qr_code, rf"^CRD_[A-Z0-9]{{12}}_{credential.id}$")

    def test_regeneration_with_unknown_template_is_skipped(self):
        credential = self.make_credential()
        self.assertIsNone(regenerate_credential_now(credential.id, 999999))
        credential.refresh_from_db()
        self.assertEqual(credential.status, Credential.Status.PENDING)

    def test_regenerate_event_credentials_task(self):
        from .tasks import regenerate_event_credentials

        self.make_credential()
        with mock.patch("credentials.tasks.regenerate_credential.apply_async") as apply_async:
            self.assertEqual(regenerate_event_credentials(self.event.id, self.template.id), 1)
        self.assertEqual(apply_async.call_count, 1)
