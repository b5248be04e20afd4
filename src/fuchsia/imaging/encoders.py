"""Encoder selection and container writers for transformed frames.

Both animated writers emit exactly one output frame per transformed frame,
repeats included. Pillow's ``save_all`` merges a frame identical to its
predecessor, so the GIF stream is written block by block and the WebP
animation is assembled from per-frame lossless bitstreams.
"""

from __future__ import annotations

import io
import logging
import struct
from typing import TYPE_CHECKING, Protocol

import numpy as np
from PIL import GifImagePlugin, Image

from fuchsia.imaging.errors import EncodeError
from fuchsia.imaging.formats import ImageFormat, media_type

if TYPE_CHECKING:
    from collections.abc import Iterator, Sequence

    from fuchsia.imaging.frames import Frame

logger = logging.getLogger(__name__)

LOOP_FOREVER = 0

# GIF has 1-bit transparency: frames are quantised to 255 colours and this
# palette slot marks pixels whose alpha is below the threshold.
TRANSPARENT_INDEX = 255
ALPHA_THRESHOLD = 128
GIF_DISPOSE_TO_BACKGROUND = 2
GIF_TRAILER = b";"

# WebP extended-format flags (VP8X) and ANMF frame flags.
VP8X_ALPHA = 0x10
VP8X_ANIMATION = 0x02
ANMF_NO_BLEND = 0x02
MAX_WEBP_DURATION = 0xFFFFFF
_WEBP_BITSTREAM_CHUNKS = frozenset({b"ALPH", b"VP8 ", b"VP8L"})


class FrameEncoder(Protocol):
    """Protocol for writing a transformed frame sequence to a container."""

    @property
    def media_type(self) -> str:
        """Content type of the encoded output."""
        ...

    def encode(self, frames: Sequence[Frame], dimensions: tuple[int, int]) -> bytes:
        """Serialise ``frames`` into a single byte buffer."""
        ...


def _to_image(frame: Frame) -> Image.Image:
    buffer = frame.buffer
    if buffer.dtype != np.uint8 or buffer.ndim != 3 or buffer.shape[2] != 4:
        raise ValueError(f"Expected an RGBA uint8 buffer, got shape {buffer.shape} dtype {buffer.dtype}")
    return Image.fromarray(buffer)


class PngEncoder:
    """Writes the single transformed frame of a still input as PNG."""

    media_type = media_type(ImageFormat.PNG, animated=False)

    def encode(self, frames: Sequence[Frame], dimensions: tuple[int, int]) -> bytes:
        out = io.BytesIO()
        try:
            _to_image(frames[0]).save(out, format="PNG")
        except (IndexError, OSError, TypeError, ValueError) as exc:
            raise EncodeError("Could not encode PNG") from exc
        return out.getvalue()


class GifEncoder:
    """Writes an infinitely looping GIF, keeping each frame's offset and delay."""

    media_type = media_type(ImageFormat.GIF, animated=True)

    def encode(self, frames: Sequence[Frame], dimensions: tuple[int, int]) -> bytes:
        try:
            images = [self._to_palette(self._place(frame, dimensions)) for frame in frames]
            if not images:
                raise ValueError("No frames to encode")
            header, _ = GifImagePlugin.getheader(images[0].copy(), info={"loop": LOOP_FOREVER})
            blocks = list(header)
            for frame, image in zip(frames, images):
                params: dict[str, int | bool] = {
                    "duration": frame.delay,
                    "disposal": GIF_DISPOSE_TO_BACKGROUND,
                    "include_color_table": True,
                }
                if "transparency" in image.info:
                    params["transparency"] = image.info["transparency"]
                blocks.extend(GifImagePlugin.getdata(image, **params))
        except (OSError, TypeError, ValueError) as exc:
            raise EncodeError("Could not encode GIF") from exc
        blocks.append(GIF_TRAILER)
        return b"".join(blocks)

    @staticmethod
    def _place(frame: Frame, dimensions: tuple[int, int]) -> Image.Image:
        """Return the frame as a full-canvas image."""
        image = _to_image(frame)
        if frame.left == 0 and frame.top == 0 and image.size == dimensions:
            return image
        canvas = Image.new("RGBA", dimensions, (0, 0, 0, 0))
        canvas.paste(image, (frame.left, frame.top))
        return canvas

    @staticmethod
    def _to_palette(image: Image.Image) -> Image.Image:
        paletted = image.convert("RGB").quantize(colors=TRANSPARENT_INDEX, method=Image.Quantize.MEDIANCUT)
        # Pad to 256 entries so the reserved index is inside the colour table.
        palette = paletted.getpalette() or []
        paletted.putpalette(palette + [0] * (256 * 3 - len(palette)))
        transparent = image.getchannel("A").point(lambda a: 255 if a < ALPHA_THRESHOLD else 0)
        if transparent.getbbox() is not None:
            paletted.paste(TRANSPARENT_INDEX, mask=transparent)
            paletted.info["transparency"] = TRANSPARENT_INDEX
        return paletted


def _uint24(value: int) -> bytes:
    return value.to_bytes(3, "little")


def _riff_chunk(fourcc: bytes, payload: bytes) -> bytes:
    padding = b"\x00" if len(payload) % 2 else b""
    return fourcc + struct.pack("<I", len(payload)) + payload + padding


def _iter_riff_chunks(data: bytes) -> Iterator[tuple[bytes, bytes]]:
    """Yield ``(fourcc, payload)`` for each top-level chunk of a WebP file."""
    if len(data) < 12 or data[:4] != b"RIFF" or data[8:12] != b"WEBP":
        raise ValueError("Not a WebP container")
    offset = 12
    while offset + 8 <= len(data):
        fourcc = data[offset : offset + 4]
        (size,) = struct.unpack("<I", data[offset + 4 : offset + 8])
        start = offset + 8
        payload = data[start : start + size]
        if len(payload) != size:
            raise ValueError(f"Truncated WebP chunk {fourcc!r}")
        yield fourcc, payload
        offset = start + size + (size & 1)


def _webp_bitstream(image: Image.Image) -> bytes:
    """Compress one frame as lossless WebP and return its bitstream chunks."""
    out = io.BytesIO()
    image.save(out, format="WEBP", lossless=True, exact=True)
    chunks = [
        _riff_chunk(fourcc, payload)
        for fourcc, payload in _iter_riff_chunks(out.getvalue())
        if fourcc in _WEBP_BITSTREAM_CHUNKS
    ]
    if not chunks:
        raise ValueError("WebP encoder produced no image data")
    return b"".join(chunks)


class WebPEncoder:
    """Writes an infinitely looping animated WebP on a fixed-size canvas.

    Frames that cannot be placed on the canvas are dropped individually; the
    request only fails if nothing is left or the container cannot be written.
    """

    media_type = media_type(ImageFormat.WEBP, animated=True)

    def encode(self, frames: Sequence[Frame], dimensions: tuple[int, int]) -> bytes:
        width, height = dimensions
        animation_frames: list[bytes] = []
        for frame in sorted(frames, key=lambda f: f.index):
            try:
                image = _to_image(frame)
            except (TypeError, ValueError) as exc:
                logger.warning("Skipping WebP frame %d: %s", frame.index, exc)
                continue
            if image.size != dimensions:
                logger.warning(
                    "Skipping WebP frame %d: size %s does not match canvas %s",
                    frame.index,
                    image.size,
                    dimensions,
                )
                continue
            try:
                bitstream = _webp_bitstream(image)
            except (OSError, ValueError) as exc:
                raise EncodeError("Could not encode animated WebP") from exc
            header = (
                _uint24(0)
                + _uint24(0)
                + _uint24(width - 1)
                + _uint24(height - 1)
                + _uint24(min(max(frame.delay, 0), MAX_WEBP_DURATION))
                + bytes([ANMF_NO_BLEND])
            )
            animation_frames.append(_riff_chunk(b"ANMF", header + bitstream))

        if not animation_frames:
            raise EncodeError("No WebP frames could be encoded")

        vp8x = bytes([VP8X_ALPHA | VP8X_ANIMATION]) + b"\x00" * 3 + _uint24(width - 1) + _uint24(height - 1)
        # Transparent background (BGRA), then the loop count.
        anim = b"\x00" * 4 + struct.pack("<H", LOOP_FOREVER)
        body = b"WEBP" + _riff_chunk(b"VP8X", vp8x) + _riff_chunk(b"ANIM", anim) + b"".join(animation_frames)
        return b"RIFF" + struct.pack("<I", len(body)) + body


def select_encoder(fmt: ImageFormat, *, animated: bool) -> FrameEncoder:
    """Pick the output container for a detected input format."""
    if fmt == ImageFormat.GIF:
        return GifEncoder()
    if fmt == ImageFormat.WEBP and animated:
        return WebPEncoder()
    return PngEncoder()
