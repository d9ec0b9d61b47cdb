from __future__ import annotations

from dataclasses import dataclass
from typing import Any

from django.core.exceptions import ValidationError


TEXT_BLOCK_FIELD_REGISTRY = [
    {
        "key": "name",
        "aliases": ["name", "nombre", "full_name"],
        "label": "Employee name",
        "description": "First and last name of the accredited employee.",
    },
    {
        "key": "role",
        "aliases": ["role", "rol", "position", "function"],
        "label": "Role",
        "description": "Function the employee performs at the event.",
    },
    {
        "key": "company",
        "aliases": ["company", "empresa"],
        "label": "Company",
        "description": "Name of the employee's provider company.",
    },
    {
        "key": "identification",
        "aliases": ["identification", "cedula", "document"],
        "label": "Identification",
        "description": "Document type and number of the employee.",
    },
    {
        "key": "event",
        "aliases": ["event", "evento"],
        "label": "Event",
        "description": "Name of the event.",
    },
    {
        "key": "location",
        "aliases": ["location", "lugar"],
        "label": "Location",
        "description": "Venue of the event.",
    },
    {
        "key": "zones",
        "aliases": ["zones", "zona", "zonas"],
        "label": "Zones",
        "description": "Comma separated zone codes granted by the accreditation.",
    },
    {
        "key": "provider",
        "aliases": ["provider", "proveedor"],
        "label": "Provider",
        "description": "Name of the provider that requested the accreditation.",
    },
]

FIELD_ALIASES = {
    alias: field["key"] for field in TEXT_BLOCK_FIELD_REGISTRY for alias in field["aliases"]
}
ALLOWED_ALIGNMENTS = {"left", "center", "right"}
ZONE_BLOCK_TYPE = "zones"
TEXT_BLOCK_TYPE = "text"


@dataclass(frozen=True)
class Rect:
    x: float
    y: float
    width: float
    height: float

    def scaled(self, factor: float) -> "Rect":
        return Rect(
            x=self.x * factor,
            y=self.y * factor,
            width=self.width * factor,
            height=self.height * factor,
        )


@dataclass(frozen=True)
class GenericTextBlock:
    id: str
    rect: Rect
    font_size: int
    alignment: str
    color: str = "#000000"


@dataclass(frozen=True)
class ZoneBlock:
    id: str
    rect: Rect
    gap: int | None = None
    padding: int | None = None
    corner_radius: int | None = None
    border_width: int | None = None
    fill_color: str = "#FFFFFF"
    border_color: str = "#000000"
    text_color: str = "#000000"


TextBlock = GenericTextBlock | ZoneBlock


def resolve_field_key(block_id: str) -> str | None:
    return FIELD_ALIASES.get(str(block_id or "").strip().lower())


def _to_number(value: Any, *, path: str, positive: bool = False) -> float:
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        raise ValidationError({path: "Must be a number."})
    if positive and value <= 0:
        raise ValidationError({path: "Must be greater than 0."})
    if not positive and value < 0:
        raise ValidationError({path: "Must be greater than or equal to 0."})
    return float(value)


def _to_optional_int(raw: dict[str, Any], key: str, *, path: str) -> int | None:
    value = raw.get(key)
    if value is None:
        return None
    if isinstance(value, bool) or not isinstance(value, int) or value < 0:
        raise ValidationError({f"{path}.{key}": "Must be a non-negative integer."})
    return value


def _to_color(raw: dict[str, Any], key: str, default: str, *, path: str) -> str:
    value = raw.get(key)
    if value is None or value == "":
        return default
    if not isinstance(value, str):
        raise ValidationError({f"{path}.{key}": "Must be a color string."})
    return value


def parse_rect(raw: Any, *, path: str) -> Rect:
    if not isinstance(raw, dict):
        raise ValidationError({path: "Must be an object with x, y, width and height."})
    missing_keys = {"x", "y", "width", "height"} - set(raw.keys())
    if missing_keys:
        raise ValidationError({path: "Missing key(s): " + ", ".join(sorted(missing_keys))})
    return Rect(
        x=_to_number(raw["x"], path=f"{path}.x"),
        y=_to_number(raw["y"], path=f"{path}.y"),
        width=_to_number(raw["width"], path=f"{path}.width", positive=True),
        height=_to_number(raw["height"], path=f"{path}.height", positive=True),
    )


def parse_text_block(raw: Any, *, path: str = "text_blocks[0]") -> TextBlock:
    if not isinstance(raw, dict):
        raise ValidationError({path: "Each text block must be an object."})
    block_id = str(raw.get("id") or "").strip()
    if not block_id:
        raise ValidationError({f"{path}.id": "This field is required."})
    rect = parse_rect(raw, path=path)
    block_type = raw.get("type") or TEXT_BLOCK_TYPE

    if block_type == ZONE_BLOCK_TYPE:
        return ZoneBlock(
            id=block_id,
            rect=rect,
            gap=_to_optional_int(raw, "gap", path=path),
            padding=_to_optional_int(raw, "padding", path=path),
            corner_radius=_to_optional_int(raw, "corner_radius", path=path),
            border_width=_to_optional_int(raw, "border_width", path=path),
            fill_color=_to_color(raw, "fill_color", "#FFFFFF", path=path),
            border_color=_to_color(raw, "border_color", "#000000", path=path),
            text_color=_to_color(raw, "text_color", "#000000", path=path),
        )
    if block_type != TEXT_BLOCK_TYPE:
        raise ValidationError({f"{path}.type": f"Unsupported block type '{block_type}'."})

    font_size = raw.get("font_size")
    if isinstance(font_size, bool) or not isinstance(font_size, int) or font_size < 1:
        raise ValidationError({f"{path}.font_size": "Must be a positive integer."})
    alignment = raw.get("alignment")
    if alignment not in ALLOWED_ALIGNMENTS:
        raise ValidationError(
            {f"{path}.alignment": "Must be one of: " + ", ".join(sorted(ALLOWED_ALIGNMENTS)) + "."}
        )
    return GenericTextBlock(
        id=block_id,
        rect=rect,
        font_size=font_size,
        alignment=alignment,
        color=_to_color(raw, "color", "#000000", path=path),
    )


def parse_text_blocks(layout_meta: dict[str, Any]) -> list[TextBlock]:
    raw_blocks = layout_meta.get("text_blocks") or []
    if not isinstance(raw_blocks, list):
        raise ValidationError({"layout_meta.text_blocks": "Must be a list."})
    return [
        parse_text_block(raw, path=f"layout_meta.text_blocks[{index}]")
        for index, raw in enumerate(raw_blocks)
    ]


def validate_layout_meta(layout_meta: Any) -> None:
    if not isinstance(layout_meta, dict):
        raise ValidationError({"layout_meta": "Layout must be a JSON object."})

    allowed_keys = {"fold_mm", "rect_photo", "rect_qr", "text_blocks"}
    unknown_keys = set(layout_meta.keys()) - allowed_keys
    if unknown_keys:
        raise ValidationError(
            {"layout_meta": "Unknown top-level key(s): " + ", ".join(sorted(unknown_keys))}
        )

    if layout_meta.get("fold_mm") is not None:
        _to_number(layout_meta["fold_mm"], path="layout_meta.fold_mm")
    for rect_key in ("rect_photo", "rect_qr"):
        if layout_meta.get(rect_key) is not None:
            parse_rect(layout_meta[rect_key], path=f"layout_meta.{rect_key}")

    seen_ids: set[str] = set()
    for index, block in enumerate(parse_text_blocks(layout_meta)):
        if block.id in seen_ids:
            raise ValidationError(
                {f"layout_meta.text_blocks[{index}].id": f"Duplicate block id '{block.id}'."}
            )
        seen_ids.add(block.id)
