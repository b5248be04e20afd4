"""Frame sources: decode an input container into a sequence of RGBA frames.

Three variants share the FrameSource protocol so the editor runs a single
code path regardless of input shape:

    StillSource   PNG / JPEG / static WebP, exactly one frame
    GifSource     lazy, stops quietly at the first frame that fails to decode
    WebPSource    eager, any failure aborts the whole request

Every decoded frame is checked against a decode limit (bytes of RGBA pixel
data for one frame). The canvas size is checked against that limit from the
container header before any pixel data is decoded; the frame cap bounds how
many frames a request decodes.
"""

from __future__ import annotations

import io
import logging
from dataclasses import dataclass
from typing import TYPE_CHECKING, Protocol

import numpy as np
from numpy.typing import NDArray
from PIL import Image

from fuchsia.imaging.errors import DecodeError
from fuchsia.imaging.formats import ImageFormat

if TYPE_CHECKING:
    from collections.abc import Iterator

logger = logging.getLogger(__name__)

PixelBuffer = NDArray[np.uint8]
"""RGBA pixels, shape (height, width, 4)."""

BYTES_PER_PIXEL = 4

_PIL_FORMATS: dict[ImageFormat, str] = {
    ImageFormat.PNG: "PNG",
    ImageFormat.JPEG: "JPEG",
    ImageFormat.WEBP: "WEBP",
    ImageFormat.GIF: "GIF",
}

# Errors Pillow raises for malformed or truncated image data.
_CODEC_ERRORS = (EOFError, OSError, ValueError, SyntaxError, Image.DecompressionBombError)


@dataclass(frozen=True)
class Frame:
    """One displayable image plus its placement and timing within an animation."""

    buffer: PixelBuffer
    left: int = 0
    top: int = 0
    delay: int = 0  # milliseconds
    index: int = 0  # display order

    @property
    def width(self) -> int:
        return int(self.buffer.shape[1])

    @property
    def height(self) -> int:
        return int(self.buffer.shape[0])

    @property
    def dimensions(self) -> tuple[int, int]:
        return self.width, self.height


class FrameSource(Protocol):
    """Protocol for a decoded input, one variant per container shape."""

    @property
    def animated(self) -> bool:
        """Whether the output should be written as an animation."""
        ...

    def frames(self) -> Iterator[Frame]:
        """Yield decoded frames in display order."""
        ...

    def close(self) -> None:
        """Release the underlying decoder."""
        ...


class DecodeLimit:
    """Ceiling on the RGBA bytes a single decoded frame may allocate."""

    def __init__(self, max_bytes: int) -> None:
        self.max_bytes = max_bytes

    def check(self, size: tuple[int, int]) -> None:
        """Raise if decoding a frame of ``size`` would exceed the limit."""
        width, height = size
        if width * height * BYTES_PER_PIXEL > self.max_bytes:
            raise DecodeError(
                f"Decoding a {width}x{height} frame would exceed the {self.max_bytes} byte decode limit"
            )


def _to_buffer(image: Image.Image) -> PixelBuffer:
    # np.array copies, so every frame owns its pixels.
    return np.array(image.convert("RGBA"), dtype=np.uint8)


def _frame_delay(image: Image.Image) -> int:
    return int(image.info.get("duration", 0) or 0)


class StillSource:
    """A single still image."""

    animated = False

    def __init__(self, image: Image.Image, limit: DecodeLimit) -> None:
        self._image = image
        self._limit = limit

    def frames(self) -> Iterator[Frame]:
        try:
            self._limit.check(self._image.size)
            buffer = _to_buffer(self._image)
        except _CODEC_ERRORS as exc:
            raise DecodeError("Image data could not be decoded") from exc
        yield Frame(buffer=buffer)

    def close(self) -> None:
        self._image.close()


class GifSource:
    """An animated (or single-frame) GIF, decoded lazily frame by frame.

    Pillow composites every GIF frame onto the full logical screen, so each
    yielded frame covers the whole canvas and is placed at the origin.
    """

    animated = True

    def __init__(self, image: Image.Image, limit: DecodeLimit) -> None:
        self._image = image
        self._limit = limit

    def frames(self) -> Iterator[Frame]:
        index = 0
        while True:
            try:
                if index > 0:
                    self._image.seek(index)
                self._limit.check(self._image.size)
                buffer = _to_buffer(self._image)
            except EOFError:
                return
            except (DecodeError, *_CODEC_ERRORS) as exc:
                if index == 0:
                    raise DecodeError("GIF has no decodable frames") from exc
                logger.warning("GIF frame %d failed to decode, ending animation early: %s", index, exc)
                return

            yield Frame(buffer=buffer, delay=_frame_delay(self._image), index=index)
            index += 1

    def close(self) -> None:
        self._image.close()


class WebPSource:
    """An animated WebP, decoded eagerly up to the frame limit."""

    animated = True

    def __init__(self, image: Image.Image, limit: DecodeLimit, frame_limit: int) -> None:
        self._image = image
        self._limit = limit
        self._frame_limit = frame_limit

    def frames(self) -> Iterator[Frame]:
        decoded: list[Frame] = []
        try:
            frame_count = min(self._frame_limit, getattr(self._image, "n_frames", 1))
            for index in range(frame_count):
                self._image.seek(index)
                self._limit.check(self._image.size)
                decoded.append(
                    Frame(buffer=_to_buffer(self._image), delay=_frame_delay(self._image), index=index)
                )
        except _CODEC_ERRORS as exc:
            raise DecodeError("WebP animation could not be decoded") from exc

        yield from decoded

    def close(self) -> None:
        self._image.close()


def open_source(
    data: bytes,
    fmt: ImageFormat,
    *,
    frame_limit: int,
    decode_limit: int,
) -> FrameSource:
    """Open ``data`` as ``fmt`` and return the matching frame source.

    Only the container header is parsed here; pixel data is decoded when the
    source's frames are iterated.

    Raises:
        DecodeError: If the container cannot be parsed or its canvas alone
            exceeds ``decode_limit``.
    """
    pil_format = _PIL_FORMATS.get(fmt)
    if pil_format is None:
        raise DecodeError(f"No decoder for format {fmt.value}")

    try:
        image = Image.open(io.BytesIO(data), formats=[pil_format])
    except _CODEC_ERRORS as exc:
        raise DecodeError(f"Could not parse {fmt.value} container") from exc

    limit = DecodeLimit(decode_limit)
    try:
        limit.check(image.size)
    except DecodeError:
        image.close()
        raise

    if fmt == ImageFormat.GIF:
        return GifSource(image, limit)
    if fmt == ImageFormat.WEBP and getattr(image, "is_animated", False):
        return WebPSource(image, limit, frame_limit)
    return StillSource(image, limit)
