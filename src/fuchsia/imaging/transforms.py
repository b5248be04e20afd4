"""Per-frame pixel transforms and the resize / circlize entry points."""

from __future__ import annotations

import math
from typing import TYPE_CHECKING

import numpy as np
from PIL import Image

from fuchsia.imaging.editor import DEFAULT_DECODE_LIMIT, DEFAULT_FRAME_LIMIT, Editor

if TYPE_CHECKING:
    from collections.abc import Iterable

    from numpy.typing import NDArray

    from fuchsia.imaging.editor import EditResult
    from fuchsia.imaging.formats import ImageFormat
    from fuchsia.imaging.frames import PixelBuffer


def scale_dims(dimensions: tuple[int, int], largest: int) -> tuple[int, int]:
    """Scale ``dimensions`` so the larger side becomes ``largest``.

    Each side is floored, then clamped to at least one pixel.
    """
    width, height = dimensions
    ratio = largest / max(width, height)
    return max(1, math.floor(width * ratio)), max(1, math.floor(height * ratio))


def resize_frame(buffer: PixelBuffer, width: int, height: int) -> PixelBuffer:
    """Nearest-neighbour resize of an RGBA buffer."""
    image = Image.fromarray(buffer)
    return np.array(image.resize((width, height), Image.Resampling.NEAREST), dtype=np.uint8)


def to_cartesian(
    x: NDArray[np.intp], y: NDArray[np.intp], width: int, height: int
) -> tuple[NDArray[np.intp], NDArray[np.intp]]:
    """Translate image coordinates to an origin at the centre with +y up."""
    return x - width // 2, height // 2 - y


def circlize_frame(buffer: PixelBuffer) -> PixelBuffer:
    """Clear alpha outside the inscribed circle of a square buffer, in place."""
    size = buffer.shape[0]
    rows, cols = np.ogrid[:size, :size]
    x_cart, y_cart = to_cartesian(cols, rows, size, size)
    outside = x_cart**2 + y_cart**2 > (size / 2) ** 2
    buffer[outside, 3] = 0
    return buffer


def resize_img(
    data: bytes,
    width: int,
    height: int,
    frame_limit: int = DEFAULT_FRAME_LIMIT,
    keep_aspect: bool = False,
    *,
    accepted_formats: Iterable[ImageFormat] | None = None,
    decode_limit: int = DEFAULT_DECODE_LIMIT,
) -> EditResult:
    """Resize every frame of ``data``.

    With ``keep_aspect`` the larger of ``width`` and ``height`` becomes a
    bounding box, and each frame is scaled from its own dimensions.
    """
    editor = Editor(accepted_formats, frame_limit, decode_limit)
    bounding_box = max(width, height)

    def _resize(buffer: PixelBuffer) -> PixelBuffer:
        if keep_aspect:
            target = scale_dims((buffer.shape[1], buffer.shape[0]), bounding_box)
        else:
            target = (width, height)
        return resize_frame(buffer, *target)

    editor.set_transform(_resize)
    return editor.process(data)


def circlize_img(
    data: bytes,
    diameter: int,
    frame_limit: int = DEFAULT_FRAME_LIMIT,
    *,
    accepted_formats: Iterable[ImageFormat] | None = None,
    decode_limit: int = DEFAULT_DECODE_LIMIT,
) -> EditResult:
    """Resize every frame of ``data`` to a square and mask it to a circle."""
    editor = Editor(accepted_formats, frame_limit, decode_limit)
    editor.set_transform(lambda buffer: circlize_frame(resize_frame(buffer, diameter, diameter)))
    return editor.process(data)
