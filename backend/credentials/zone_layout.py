"""Uniform grid of zone number boxes inside a template text block."""

from __future__ import annotations

from dataclasses import dataclass
import math
from typing import Sequence

from django.conf import settings
from PIL import Image, ImageDraw

from .box_drawing import make_rounded_rect_layer, parse_color
from .font_fitting import MAX_FONT_SIZE, fit_uniform_font_size, load_font
from .layout_registry import Rect, ZoneBlock

SINGLE_ZONE_BOX_MARGIN = 8
SINGLE_ZONE_NUMBER_PADDING = 2
SINGLE_ZONE_FONT_BOOST = 1.06
SINGLE_ZONE_MIN_RADIUS = 16
SINGLE_ZONE_RADIUS_RATIO = 0.16
SINGLE_ZONE_STROKE_WIDTH = 5
MULTI_ZONE_MIN_BOX_MARGIN = 4
MULTI_ZONE_NUMBER_PADDING = 6
MULTI_ZONE_RADIUS_RATIO = 0.18


def round_half_up(value: float) -> int:
    return int(math.floor(value + 0.5))


@dataclass(frozen=True)
class ZoneCell:
    code: str
    x: int
    y: int
    width: int
    height: int


@dataclass(frozen=True)
class ZoneLayout:
    columns: int
    rows: int
    box_width: int
    box_height: int
    box_margin: int
    number_padding: int
    allowed_text_width: int
    allowed_text_height: int
    font_size: int
    corner_radius: int
    stroke_width: int
    cells: tuple[ZoneCell, ...]


def grid_dimensions(count: int, width: float, height: float) -> tuple[int, int]:
    if count <= 0:
        return 0, 0
    ratio = float(width) / max(float(height), 1.0)
    columns = int(math.ceil(math.sqrt(count * ratio)))
    columns = min(max(columns, 1), count)
    rows = int(math.ceil(count / columns))
    return columns, rows


def compute_zone_layout(
    rect: Rect,
    zone_codes: Sequence[str],
    *,
    gap: int,
    padding: int,
    font_path: str | None,
    corner_radius: int | None = None,
    border_width: int | None = None,
) -> ZoneLayout | None:
    codes = [str(code) for code in zone_codes]
    count = len(codes)
    if count == 0:
        return None

    width = int(rect.width)
    height = int(rect.height)
    gap = max(0, int(gap))
    padding = max(0, int(padding))
    columns, rows = grid_dimensions(count, width, height)
    box_width = max(1, (width - 2 * padding - (columns - 1) * gap) // columns)
    box_height = max(1, (height - 2 * padding - (rows - 1) * gap) // rows)

    single = count == 1
    if single:
        box_margin = SINGLE_ZONE_BOX_MARGIN
        number_padding = SINGLE_ZONE_NUMBER_PADDING
    else:
        box_margin = max(MULTI_ZONE_MIN_BOX_MARGIN, gap // 3)
        number_padding = MULTI_ZONE_NUMBER_PADDING

    draw_width = max(1, box_width - 2 * box_margin)
    draw_height = max(1, box_height - 2 * box_margin)
    allowed_text_width = max(1, draw_width - 2 * number_padding)
    allowed_text_height = max(1, draw_height - 2 * number_padding)

    font_size = fit_uniform_font_size(
        codes,
        font_path,
        allowed_text_width,
        allowed_text_height,
        upper_bound=MAX_FONT_SIZE,
    )
    if single:
        font_size = int(math.floor(font_size * SINGLE_ZONE_FONT_BOOST))
    font_size = max(1, font_size)

    if single:
        radius = max(SINGLE_ZONE_MIN_RADIUS, round_half_up(draw_height * SINGLE_ZONE_RADIUS_RATIO))
        stroke_width = SINGLE_ZONE_STROKE_WIDTH
    else:
        radius = (
            int(corner_radius)
            if corner_radius is not None
            else round_half_up(draw_height * MULTI_ZONE_RADIUS_RATIO)
        )
        stroke_width = (
            int(border_width)
            if border_width is not None
            else int(settings.CREDENTIAL_ZONE_BORDER_WIDTH)
        )

    cells = []
    for index, code in enumerate(codes):
        row, column = divmod(index, columns)
        cells.append(
            ZoneCell(
                code=code,
                x=padding + column * (box_width + gap) + box_margin,
                y=padding + row * (box_height + gap) + box_margin,
                width=draw_width,
                height=draw_height,
            )
        )

    return ZoneLayout(
        columns=columns,
        rows=rows,
        box_width=box_width,
        box_height=box_height,
        box_margin=box_margin,
        number_padding=number_padding,
        allowed_text_width=allowed_text_width,
        allowed_text_height=allowed_text_height,
        font_size=font_size,
        corner_radius=radius,
        stroke_width=stroke_width,
        cells=tuple(cells),
    )


def draw_zone_block(
    image: Image.Image,
    block: ZoneBlock,
    zone_codes: Sequence[str],
    *,
    rect: Rect | None = None,
    font_path: str | None = None,
) -> ZoneLayout | None:
    """Draw the zone boxes of `block` onto `image` (RGBA) and return the layout used."""
    rect = rect or block.rect
    layout = compute_zone_layout(
        rect,
        zone_codes,
        gap=block.gap if block.gap is not None else settings.CREDENTIAL_ZONE_GAP,
        padding=block.padding if block.padding is not None else settings.CREDENTIAL_ZONE_PADDING,
        font_path=font_path,
        corner_radius=block.corner_radius,
        border_width=block.border_width,
    )
    if layout is None:
        return None

    origin_x = int(rect.x)
    origin_y = int(rect.y)
    font = load_font(font_path, layout.font_size)
    text_color = parse_color(block.text_color, field_name="text_color")
    for cell in layout.cells:
        box = make_rounded_rect_layer(
            cell.width,
            cell.height,
            layout.corner_radius,
            block.fill_color,
            block.border_color,
            layout.stroke_width,
            with_shadow=False,
        )
        image.alpha_composite(box, (origin_x + cell.x, origin_y + cell.y))
        ImageDraw.Draw(image).text(
            (origin_x + cell.x + cell.width / 2, origin_y + cell.y + cell.height / 2),
            cell.code,
            font=font,
            fill=text_color,
            anchor="mm",
        )
    return layout
