from __future__ import annotations

from PIL import Image, ImageColor, ImageDraw, ImageFilter

from .exceptions import CredentialRenderError

SUPERSAMPLE = 4


def parse_color(value: str | tuple, *, field_name: str = "color") -> tuple[int, int, int, int]:
    if isinstance(value, tuple):
        if len(value) == 3:
            return (*value, 255)
        return value
    try:
        return ImageColor.getcolor(str(value), "RGBA")
    except ValueError as exc:
        raise CredentialRenderError(f"{field_name} '{value}' is not a valid color.") from exc


def shadow_padding(shadow_offset: tuple[int, int], shadow_blur: int) -> int:
    return int(shadow_blur) * 2 + max(abs(int(shadow_offset[0])), abs(int(shadow_offset[1])))


def make_rounded_rect_layer(
    width: int,
    height: int,
    corner_radius: int,
    fill_color,
    border_color,
    stroke_width: int,
    *,
    with_shadow: bool = False,
    shadow_offset: tuple[int, int] = (4, 4),
    shadow_blur: int = 6,
    shadow_color=(0, 0, 0, 96),
) -> Image.Image:
    """Anti-aliased rounded rectangle as an RGBA layer.

    Drawn at SUPERSAMPLE times the target size and downsampled with Lanczos.
    With a shadow the layer grows by `shadow_padding()` on every side and the
    box sits at that offset.
    """
    width = max(1, int(width))
    height = max(1, int(height))
    fill = parse_color(fill_color, field_name="fill_color")
    border = parse_color(border_color, field_name="border_color")

    big_width = width * SUPERSAMPLE
    big_height = height * SUPERSAMPLE
    radius = min(max(0, int(corner_radius)) * SUPERSAMPLE, min(big_width, big_height) // 2)
    stroke = max(0, int(stroke_width)) * SUPERSAMPLE

    box = Image.new("RGBA", (big_width, big_height), (0, 0, 0, 0))
    draw = ImageDraw.Draw(box)
    draw.rounded_rectangle(
        (0, 0, big_width - 1, big_height - 1),
        radius=radius,
        fill=fill,
        outline=border if stroke else None,
        width=stroke,
    )
    box = box.resize((width, height), Image.Resampling.LANCZOS)
    if not with_shadow:
        return box

    padding = shadow_padding(shadow_offset, shadow_blur)
    shade = parse_color(shadow_color, field_name="shadow_color")
    shadow = Image.new("RGBA", box.size, shade[:3] + (0,))
    shadow.putalpha(box.getchannel("A").point(lambda value: value * shade[3] // 255))

    layer = Image.new("RGBA", (width + 2 * padding, height + 2 * padding), (0, 0, 0, 0))
    layer.alpha_composite(
        shadow,
        (padding + int(shadow_offset[0]), padding + int(shadow_offset[1])),
    )
    if shadow_blur > 0:
        layer = layer.filter(ImageFilter.GaussianBlur(shadow_blur))
    layer.alpha_composite(box, (padding, padding))
    return layer
