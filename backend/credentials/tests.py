import re
import shutil
import tempfile
from datetime import timedelta
from io import BytesIO, StringIO

from django.contrib.auth import get_user_model
from django.core.cache import cache
from django.core.exceptions import ValidationError
from django.core.files.uploadedfile import SimpleUploadedFile
from django.core.management import call_command
from django.core.management.base import CommandError
from django.test import TestCase, override_settings
from django.utils import timezone
from PIL import Image

from events.models import AccreditationRequest, Area, Employee, Event, Provider, Zone

from .cache import TemplateCache
from .layout_registry import (
    GenericTextBlock,
    ZoneBlock,
    parse_text_block,
    resolve_field_key,
    validate_layout_meta,
)
from .models import Credential, CredentialAuditLog, PrintBatch, Template
from .services import (
    change_accreditation_status,
    generate_qr_code,
    get_event_credential_stats,
    invalidate_event_credentials,
    issue_credential,
    verify_credential_by_qr,
)
from .signals import accreditation_status_changed
from .templates import (
    get_default_template_snapshot,
    revise_template_layout,
    set_default_template,
)


def build_png_bytes(size=(200, 100), color=(240, 240, 240)) -> bytes:
    buffer = BytesIO()
    Image.new("RGB", size, color=color).save(buffer, format="PNG")
    return buffer.getvalue()


def build_uploaded_png(name="image.png", size=(200, 100), color=(240, 240, 240)) -> SimpleUploadedFile:
    return SimpleUploadedFile(name, build_png_bytes(size, color), content_type="image/png")


def sample_layout_meta() -> dict:
    return {
        "fold_mm": 0,
        "rect_photo": {"x": 10, "y": 10, "width": 40, "height": 50},
        "rect_qr": {"x": 150, "y": 10, "width": 40, "height": 40},
        "text_blocks": [
            {"id": "nombre", "x": 60, "y": 10, "width": 80, "height": 12, "font_size": 10, "alignment": "left"},
            {"id": "empresa", "x": 60, "y": 26, "width": 80, "height": 12, "font_size": 8, "alignment": "center"},
            {"id": "zones", "type": "zones", "x": 60, "y": 60, "width": 130, "height": 30},
        ],
    }


class CredentialFixtureMixin:
    """Builds an event with a default template and approved, credentialed employees."""

    def setUp(self):
        super().setUp()
        self.media_root = tempfile.mkdtemp()
        self.media_override = override_settings(MEDIA_ROOT=self.media_root)
        self.media_override.enable()
        cache.clear()
        self.user = get_user_model().objects.create_user(username="batch-operator", password="pass12345")
        self.event = Event.objects.create(name="Summer Festival", location="Main Park")
        self.area = Area.objects.create(name="Catering")
        self.other_area = Area.objects.create(name="Security")
        self.provider = Provider.objects.create(name="Food Co", area=self.area)
        self.other_provider = Provider.objects.create(name="Guard Co", area=self.other_area)
        self.zones = [Zone.objects.create(code=code, name=f"Zone {code}") for code in (1, 2, 3)]
        self.event.zones.set(self.zones)
        self.template = Template.objects.create(
            event=self.event,
            name="Default",
            file=build_uploaded_png("background.png"),
            layout_meta=sample_layout_meta(),
            is_default=True,
        )

    def tearDown(self):
        self.media_override.disable()
        shutil.rmtree(self.media_root, ignore_errors=True)
        super().tearDown()

    def make_credential(self, *, provider=None, with_photo=True, zone_count=2, index=0) -> Credential:
        provider = provider or self.provider
        employee = Employee.objects.create(
            provider=provider,
            first_name=f"Ana{index}",
            last_name="Lopez",
            document_type="CC",
            document_number=f"100{index}",
            function="Cook",
            photo=build_uploaded_png(f"photo-{index}.png", size=(60, 80), color=(30, 120, 200))
            if with_photo
            else "",
        )
        accreditation = AccreditationRequest.objects.create(
            employee=employee,
            event=self.event,
            status=AccreditationRequest.Status.APPROVED,
        )
        accreditation.zones.set(self.zones[:zone_count])
        return issue_credential(accreditation)


class LayoutRegistryTests(TestCase):
    def test_zone_block_does_not_require_font_size_or_alignment(self):
        block = parse_text_block({"id": "zones", "type": "zones", "x": 0, "y": 0, "width": 10, "height": 10})
        self.assertIsInstance(block, ZoneBlock)
        self.assertIsNone(block.gap)

    def test_generic_block_requires_font_size(self):
        with self.assertRaises(ValidationError) as ctx:
            parse_text_block({"id": "nombre", "x": 0, "y": 0, "width": 10, "height": 10, "alignment": "left"})
        self.assertIn("text_blocks[0].font_size", ctx.exception.message_dict)

    def test_generic_block_requires_known_alignment(self):
        with self.assertRaises(ValidationError):
            parse_text_block(
                {"id": "nombre", "x": 0, "y": 0, "width": 10, "height": 10, "font_size": 9, "alignment": "justify"}
            )

    def test_generic_block_parses(self):
        block = parse_text_block(
            {"id": "rol", "type": "text", "x": 1, "y": 2, "width": 10, "height": 10, "font_size": 9, "alignment": "right"}
        )
        self.assertIsInstance(block, GenericTextBlock)
        self.assertEqual(block.alignment, "right")

    def test_unknown_block_type_is_rejected(self):
        with self.assertRaises(ValidationError):
            parse_text_block({"id": "x", "type": "barcode", "x": 0, "y": 0, "width": 10, "height": 10})

    def test_layout_rejects_duplicate_ids_and_unknown_keys(self):
        layout = sample_layout_meta()
        layout["text_blocks"].append(dict(layout["text_blocks"][0]))
        with self.assertRaises(ValidationError):
            validate_layout_meta(layout)
        with self.assertRaises(ValidationError):
            validate_layout_meta({"elements": []})

    def test_sample_layout_is_valid(self):
        validate_layout_meta(sample_layout_meta())

    def test_field_aliases_resolve(self):
        self.assertEqual(resolve_field_key("nombre"), "name")
        self.assertEqual(resolve_field_key("cedula"), "identification")
        self.assertEqual(resolve_field_key("Empresa"), "company")
        self.assertEqual(resolve_field_key("proveedor"), "provider")
        self.assertIsNone(resolve_field_key("unknown"))


class CredentialServiceTests(CredentialFixtureMixin, TestCase):
    def test_issue_credential_assigns_qr_code(self):
        credential = self.make_credential()
        self.assertEqual(credential.status, Credential.Status.PENDING)
        self.assertTrue(credential.is_active)
        self.assertRegex(credential.qr_code, rf"^CRD_[A-Z0-9]{{12}}_{credential.id}$")
        self.assertTrue(
            CredentialAuditLog.objects.filter(action="credential.issued", credential=credential).exists()
        )

    def test_issue_credential_is_idempotent(self):
        credential = self.make_credential()
        again = issue_credential(credential.accreditation_request)
        self.assertEqual(again.id, credential.id)
        self.assertEqual(again.qr_code, credential.qr_code)

    def test_issue_credential_requires_approved_request(self):
        employee = Employee.objects.create(provider=self.provider, first_name="Luis", last_name="Diaz")
        accreditation = AccreditationRequest.objects.create(employee=employee, event=self.event)
        with self.assertRaises(ValidationError):
            issue_credential(accreditation)
        self.assertFalse(Credential.objects.filter(accreditation_request=accreditation).exists())

    def test_generate_qr_code_format(self):
        self.assertIsNotNone(re.match(r"^CRD_[A-Z0-9]{12}_42$", generate_qr_code(42)))

    def test_approving_request_issues_credential_and_sends_signal(self):
        received = []

        def _receiver(sender, accreditation_request, status_before, status_after, **kwargs):
            received.append((status_before, status_after))

        accreditation_status_changed.connect(_receiver)
        self.addCleanup(accreditation_status_changed.disconnect, _receiver)

        employee = Employee.objects.create(provider=self.provider, first_name="Luis", last_name="Diaz")
        accreditation = AccreditationRequest.objects.create(
            employee=employee,
            event=self.event,
            status=AccreditationRequest.Status.SUBMITTED,
        )
        change_accreditation_status(accreditation, AccreditationRequest.Status.APPROVED, actor=self.user)

        self.assertEqual(received, [("submitted", "approved")])
        self.assertTrue(Credential.objects.filter(accreditation_request=accreditation).exists())

    def test_verify_credential_by_qr(self):
        credential = self.make_credential()
        result = verify_credential_by_qr(credential.qr_code)
        self.assertTrue(result["valid"])
        self.assertEqual(result["employee"], "Ana0 Lopez")
        self.assertEqual(result["zones"], ["1", "2"])

        self.assertEqual(verify_credential_by_qr("CRD_NOPE")["reason"], "not_found")
        self.assertEqual(verify_credential_by_qr("")["reason"], "missing_code")

        credential.is_active = False
        credential.save(update_fields=["is_active"])
        self.assertEqual(verify_credential_by_qr(credential.qr_code)["reason"], "inactive")

    def test_verify_rejects_expired_credential(self):
        credential = self.make_credential()
        credential.expires_at = timezone.now() - timedelta(minutes=1)
        credential.save(update_fields=["expires_at"])
        result = verify_credential_by_qr(credential.qr_code)
        self.assertFalse(result["valid"])
        self.assertEqual(result["reason"], "expired")

    def test_invalidate_event_credentials(self):
        first = self.make_credential(index=1)
        second = self.make_credential(index=2)
        updated = invalidate_event_credentials(self.event, actor=self.user)
        self.assertEqual(updated, 2)
        for credential in (first, second):
            credential.refresh_from_db()
            self.assertFalse(credential.is_active)
            self.assertIsNotNone(credential.expires_at)
        self.assertTrue(
            CredentialAuditLog.objects.filter(action="credential.event_invalidated", event=self.event).exists()
        )

    def test_event_credential_stats(self):
        self.make_credential(index=1)
        self.make_credential(index=2)
        stats = get_event_credential_stats(self.event.id)
        self.assertEqual(stats["total"], 2)
        self.assertEqual(stats["pending"], 2)
        self.assertEqual(stats["active"], 2)
        self.assertEqual(stats["printed"], 0)


class TemplateServiceTests(CredentialFixtureMixin, TestCase):
    def test_set_default_template_keeps_single_default(self):
        second = Template.objects.create(
            event=self.event,
            name="Alternative",
            file=build_uploaded_png("alt.png"),
            layout_meta=sample_layout_meta(),
        )
        set_default_template(second)
        self.template.refresh_from_db()
        second.refresh_from_db()
        self.assertFalse(self.template.is_default)
        self.assertTrue(second.is_default)
        self.assertEqual(Template.objects.filter(event=self.event, is_default=True).count(), 1)

    def test_revise_layout_increments_version_and_records_history(self):
        history_before = self.template.history.count()
        layout = sample_layout_meta()
        layout["text_blocks"][0]["font_size"] = 14
        revised = revise_template_layout(self.template, layout)
        self.assertEqual(revised.version, 2)
        self.assertEqual(revised.layout_meta["text_blocks"][0]["font_size"], 14)
        self.assertEqual(self.template.history.count(), history_before + 1)

    def test_revise_layout_rejects_invalid_layout(self):
        layout = sample_layout_meta()
        del layout["text_blocks"][0]["alignment"]
        with self.assertRaises(ValidationError):
            revise_template_layout(self.template, layout)
        self.template.refresh_from_db()
        self.assertEqual(self.template.version, 1)

    def test_snapshot_is_cached_and_invalidated_on_write(self):
        snapshot = get_default_template_snapshot(self.event.id)
        self.assertEqual(snapshot["version"], 1)
        self.assertTrue(snapshot["background"].startswith(b"\x89PNG"))
        self.assertIsNotNone(TemplateCache.get(self.event.id))

        layout = sample_layout_meta()
        revise_template_layout(self.template, layout)
        self.assertIsNone(TemplateCache.get(self.event.id))
        self.assertEqual(get_default_template_snapshot(self.event.id)["version"], 2)


class ManagementCommandTests(CredentialFixtureMixin, TestCase):
    def _old_ready_batch(self) -> PrintBatch:
        batch = PrintBatch.objects.create(
            event=self.event,
            status=PrintBatch.Status.FAILED,
            total_credentials=1,
            processed_credentials=1,
        )
        PrintBatch.objects.filter(id=batch.id).update(created_at=timezone.now() - timedelta(days=120))
        return batch

    def test_cleanup_command_archives_old_batches(self):
        batch = self._old_ready_batch()
        out = StringIO()
        call_command("cleanup_print_batches", "--days", "90", stdout=out)
        batch.refresh_from_db()
        self.assertEqual(batch.status, PrintBatch.Status.ARCHIVED)
        self.assertIn("Archived 1 batch(es)", out.getvalue())

    def test_cleanup_command_dry_run_keeps_batches(self):
        batch = self._old_ready_batch()
        out = StringIO()
        call_command("cleanup_print_batches", "--days", "90", "--dry-run", stdout=out)
        batch.refresh_from_db()
        self.assertEqual(batch.status, PrintBatch.Status.FAILED)
        self.assertIn("Dry run complete: 1 candidate(s)", out.getvalue())

    def test_cleanup_command_rejects_invalid_days(self):
        with self.assertRaises(CommandError):
            call_command("cleanup_print_batches", "--days", "0", stdout=StringIO())

    def test_manage_credentials_status(self):
        self.make_credential()
        out = StringIO()
        call_command("manage_credentials", "status", "--event", str(self.event.id), stdout=out)
        self.assertIn("Summer Festival", out.getvalue())
        self.assertIn("total: 1", out.getvalue())

    def test_manage_credentials_expire_event_requires_force(self):
        credential = self.make_credential()
        with self.assertRaises(CommandError):
            call_command("manage_credentials", "expire-event", "--event", str(self.event.id), stdout=StringIO())
        call_command(
            "manage_credentials", "expire-event", "--event", str(self.event.id), "--force", stdout=StringIO()
        )
        credential.refresh_from_db()
        self.assertFalse(credential.is_active)
