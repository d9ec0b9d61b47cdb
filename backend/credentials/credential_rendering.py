from __future__ import annotations

import base64
from io import BytesIO
import logging
from typing import Any
from urllib.parse import quote

from django.conf import settings
from django.core.exceptions import ValidationError
from PIL import Image, ImageDraw, ImageOps, UnidentifiedImageError

from .exceptions import CredentialRenderError
from .font_fitting import load_font
from .layout_registry import (
    GenericTextBlock,
    Rect,
    ZoneBlock,
    parse_rect,
    parse_text_blocks,
    resolve_field_key,
)
from .models import Credential
from .zone_layout import draw_zone_block, round_half_up

try:
    from weasyprint import HTML
except Exception:  # pragma: no cover - handled at runtime
    HTML = None

try:
    import qrcode
    from qrcode.constants import ERROR_CORRECT_H
except Exception:  # pragma: no cover - handled at runtime
    qrcode = None
    ERROR_CORRECT_H = None

logger = logging.getLogger(__name__)

TEXT_ANCHORS = {"left": "la", "center": "ma", "right": "ra"}


def _error_from_validation(exc: ValidationError) -> CredentialRenderError:
    if hasattr(exc, "message_dict"):
        parts: list[str] = []
        for key, values in exc.message_dict.items():
            parts.append(f"{key}: {', '.join(str(value) for value in values)}")
        return CredentialRenderError("; ".join(parts) or "Invalid template layout.")
    if hasattr(exc, "messages") and exc.messages:
        return CredentialRenderError("; ".join(str(message) for message in exc.messages))
    return CredentialRenderError("Invalid template layout.")


def build_verification_url(qr_code: str) -> str:
    base = str(settings.CREDENTIAL_VERIFICATION_BASE_URL).rstrip("/")
    return f"{base}?qr={quote(str(qr_code), safe='')}"


def _read_photo_bytes(employee) -> bytes | None:
    if not employee.photo:
        return None
    try:
        with employee.photo.open("rb") as handle:
            return handle.read()
    except FileNotFoundError as exc:
        raise CredentialRenderError(
            f"Photo file for employee {employee.id} is missing from storage."
        ) from exc
    except OSError as exc:
        raise CredentialRenderError(
            f"Photo file for employee {employee.id} could not be read: {exc}"
        ) from exc


def build_render_payload(credential: Credential) -> dict[str, Any]:
    """Snapshot everything rendering needs so it never touches the database."""
    accreditation = credential.accreditation_request
    employee = accreditation.employee
    provider = employee.provider
    event = accreditation.event
    zone_codes = [str(code) for code in accreditation.zones.order_by("code").values_list("code", flat=True)]
    if not credential.qr_code:
        raise CredentialRenderError(f"Credential {credential.id} has no QR code assigned.")

    return {
        "credential_id": credential.id,
        "qr_code": credential.qr_code,
        "verification_url": build_verification_url(credential.qr_code),
        "photo": _read_photo_bytes(employee),
        "zone_codes": zone_codes,
        "fields": {
            "name": employee.full_name,
            "role": employee.function,
            "company": provider.name,
            "identification": f"{employee.document_type} {employee.document_number}".strip(),
            "event": event.name,
            "location": event.location,
            "zones": ", ".join(zone_codes),
            "provider": provider.name,
        },
    }


def _open_image(data: bytes | None, *, label: str) -> Image.Image:
    if not data:
        raise CredentialRenderError(f"{label} is missing.")
    try:
        image = Image.open(BytesIO(data))
        image.load()
    except Image.DecompressionBombError as exc:
        raise CredentialRenderError(f"{label} is too large to decode: {exc}") from exc
    except (UnidentifiedImageError, OSError, ValueError) as exc:
        raise CredentialRenderError(f"{label} could not be decoded.") from exc
    return image


def _scale_factor(size: tuple[int, int]) -> float:
    longest_side = max(size)
    if longest_side <= 0:
        raise CredentialRenderError("Template background has no pixels.")
    return int(settings.CREDENTIAL_IMAGE_MAX_SIZE) / float(longest_side)


def _pixel_box(rect: Rect) -> tuple[int, int, int, int]:
    return (
        round_half_up(rect.x),
        round_half_up(rect.y),
        max(1, round_half_up(rect.width)),
        max(1, round_half_up(rect.height)),
    )


def build_qr_image(value: str, size: int) -> Image.Image:
    if qrcode is None:
        raise CredentialRenderError("QR code backend is unavailable.", status_code=503)
    try:
        qr_code = qrcode.QRCode(error_correction=ERROR_CORRECT_H, box_size=10, border=1)
        qr_code.add_data(value)
        qr_code.make(fit=True)
        image = qr_code.make_image(fill_color="black", back_color="white")
        buffer = BytesIO()
        image.save(buffer, format="PNG")
    except Exception as exc:
        raise CredentialRenderError(f"QR code could not be encoded: {exc}") from exc
    buffer.seek(0)
    qr_image = Image.open(buffer).convert("RGBA")
    return qr_image.resize((size, size), Image.Resampling.NEAREST)


def _draw_photo(canvas: Image.Image, photo_bytes: bytes | None, rect: Rect) -> None:
    x, y, width, height = _pixel_box(rect)
    photo = _open_image(photo_bytes, label="Employee photo").convert("RGBA")
    fitted = ImageOps.fit(photo, (width, height), Image.Resampling.LANCZOS)
    canvas.alpha_composite(fitted, (x, y))


def _draw_qr(canvas: Image.Image, verification_url: str, rect: Rect) -> None:
    x, y, width, height = _pixel_box(rect)
    size = min(width, height)
    qr_image = build_qr_image(verification_url, size)
    canvas.alpha_composite(qr_image, (x + (width - size) // 2, y + (height - size) // 2))


def _draw_text_block(
    canvas: Image.Image,
    block: GenericTextBlock,
    rect: Rect,
    value: str,
    *,
    font_size: int,
    font_path: str,
) -> None:
    if not value:
        return
    x, y, width, _ = _pixel_box(rect)
    if block.alignment == "center":
        anchor_x = x + width / 2
    elif block.alignment == "right":
        anchor_x = x + width
    else:
        anchor_x = x
    try:
        ImageDraw.Draw(canvas).text(
            (anchor_x, y),
            value,
            font=load_font(font_path, font_size),
            fill=block.color,
            anchor=TEXT_ANCHORS[block.alignment],
        )
    except ValueError as exc:
        raise CredentialRenderError(f"Text block '{block.id}' could not be drawn: {exc}") from exc


def render_credential_image(template: dict[str, Any], payload: dict[str, Any]) -> Image.Image:
    """Compose background, photo, QR code and text blocks into one credential image.

    `template` is a snapshot from `templates.get_default_template_snapshot` and
    `payload` comes from `build_render_payload`.
    """
    background = _open_image(template.get("background"), label="Template background")
    canvas = background.convert("RGBA")
    factor = _scale_factor(canvas.size)
    if factor != 1:
        canvas = canvas.resize(
            (
                max(1, round_half_up(canvas.width * factor)),
                max(1, round_half_up(canvas.height * factor)),
            ),
            Image.Resampling.LANCZOS,
        )

    layout_meta = template.get("layout_meta") or {}
    try:
        blocks = parse_text_blocks(layout_meta)
        photo_rect = (
            parse_rect(layout_meta["rect_photo"], path="layout_meta.rect_photo")
            if layout_meta.get("rect_photo")
            else None
        )
        qr_rect = (
            parse_rect(layout_meta["rect_qr"], path="layout_meta.rect_qr")
            if layout_meta.get("rect_qr")
            else None
        )
    except ValidationError as exc:
        raise _error_from_validation(exc) from exc

    font_path = str(settings.CREDENTIAL_FONT_PATH or "")
    if photo_rect is not None:
        _draw_photo(canvas, payload.get("photo"), photo_rect.scaled(factor))
    if qr_rect is not None:
        _draw_qr(canvas, payload["verification_url"], qr_rect.scaled(factor))

    fields = payload.get("fields") or {}
    for block in blocks:
        rect = block.rect.scaled(factor)
        if isinstance(block, ZoneBlock):
            draw_zone_block(
                canvas,
                block,
                payload.get("zone_codes") or [],
                rect=rect,
                font_path=font_path,
            )
            continue
        field_key = resolve_field_key(block.id)
        value = str(fields.get(field_key, "")) if field_key else ""
        _draw_text_block(
            canvas,
            block,
            rect,
            value,
            font_size=max(1, round_half_up(block.font_size * factor)),
            font_path=font_path,
        )

    return canvas.convert("RGB")


def render_credential_png(template: dict[str, Any], payload: dict[str, Any]) -> bytes:
    image = render_credential_image(template, payload)
    buffer = BytesIO()
    image.save(buffer, format="PNG")
    return buffer.getvalue()


def _render_pdf(html: str, *, base_url: str | None = None) -> bytes:
    if HTML is None:
        raise CredentialRenderError("PDF rendering backend is unavailable.", status_code=503)
    return HTML(string=html, base_url=base_url).write_pdf()


def render_pages_pdf(pages: list[bytes], *, dpi: int | None = None) -> bytes:
    """One credential image per page; page size comes from the first image."""
    if not pages:
        raise CredentialRenderError("No credential pages were rendered.")
    dpi = int(dpi or settings.PRINT_BATCH_PDF_DPI)
    first_page = _open_image(pages[0], label="First credential page")
    width_in = f"{first_page.width / dpi:.4f}"
    height_in = f"{first_page.height / dpi:.4f}"

    pages_markup: list[str] = []
    for page in pages:
        data_uri = f"data:image/png;base64,{base64.b64encode(page).decode('ascii')}"
        pages_markup.append(
            '<div class="print-page">'
            f'<img src="{data_uri}" alt="">'
            "</div>"
        )

    html = (
        "<!doctype html>"
        "<html><head><meta charset='utf-8'>"
        "<style>"
        f"@page {{ size: {width_in}in {height_in}in; margin: 0; }}"
        "html,body{margin:0;padding:0;}"
        f".print-page{{width:{width_in}in;height:{height_in}in;overflow:hidden;page-break-after:always;}}"
        ".print-page:last-child{page-break-after:auto;}"
        ".print-page img{display:block;width:100%;height:100%;}"
        "</style>"
        "</head><body>"
        f"{''.join(pages_markup)}"
        "</body></html>"
    )
    pdf_bytes = _render_pdf(html)
    logger.debug("Assembled credential PDF", extra={"page_count": len(pages), "dpi": dpi})
    return pdf_bytes
