"""Font size fitting for text drawn inside bounded boxes."""

from __future__ import annotations

from functools import lru_cache
from typing import Iterable

from PIL import ImageFont

from .exceptions import CredentialRenderError

MAX_FONT_SIZE = 400


@lru_cache(maxsize=1024)
def _load_font(font_path: str, size: int) -> ImageFont.FreeTypeFont:
    if not font_path:
        return ImageFont.load_default(size=size)
    return ImageFont.truetype(font_path, size)


def load_font(font_path: str | None, size: int) -> ImageFont.FreeTypeFont:
    """Return a memoised font at `size`; an empty path selects Pillow's bundled font."""
    try:
        return _load_font(str(font_path or ""), max(1, int(size)))
    except OSError as exc:
        raise CredentialRenderError(f"Font file '{font_path}' could not be loaded.") from exc


def measure_text(text: str, font: ImageFont.FreeTypeFont) -> tuple[int, int]:
    left, top, right, bottom = font.getbbox(text)
    return int(right - left), int(bottom - top)


def find_max_font_size(
    text: str,
    font_path: str | None,
    max_width: int,
    max_height: int,
    *,
    upper_bound: int = MAX_FONT_SIZE,
) -> int:
    """Largest integer size whose bounding box of `text` fits `max_width` x `max_height`.

    The box is probed with a binary search over [1, upper_bound]. Non-positive
    dimensions are treated as 1 and the result is never below 1.
    """
    max_width = max(1, int(max_width))
    max_height = max(1, int(max_height))
    low, high = 1, max(1, int(upper_bound))
    best = 1
    while low <= high:
        middle = (low + high) // 2
        width, height = measure_text(text, load_font(font_path, middle))
        if width <= max_width and height <= max_height:
            best = middle
            low = middle + 1
        else:
            high = middle - 1
    return max(1, best)


def fit_uniform_font_size(
    texts: Iterable[str],
    font_path: str | None,
    max_width: int,
    max_height: int,
    *,
    upper_bound: int = MAX_FONT_SIZE,
) -> int:
    size = max(1, int(upper_bound))
    for text in texts:
        size = min(
            size,
            find_max_font_size(text, font_path, max_width, max_height, upper_bound=upper_bound),
        )
    return max(1, size)
