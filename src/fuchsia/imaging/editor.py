"""Single-use editor: detect, decode, transform each frame, re-encode.

Lifecycle:
    Editor(...)            unconfigured
    .set_transform(fn)     configured
    .process(data)         consumed; returns an EditResult or raises
"""

from __future__ import annotations

import logging
from collections.abc import Callable, Iterable
from contextlib import closing
from dataclasses import dataclass, replace
from itertools import islice

from fuchsia.imaging.encoders import select_encoder
from fuchsia.imaging.errors import DecodeError, UnsupportedFormatError
from fuchsia.imaging.formats import DEFAULT_ACCEPTED_FORMATS, ImageFormat, detect_format
from fuchsia.imaging.frames import Frame, PixelBuffer, open_source

logger = logging.getLogger(__name__)

FrameTransform = Callable[[PixelBuffer], PixelBuffer]
"""Called once per admitted frame; may mutate its argument, returns the replacement."""

DEFAULT_FRAME_LIMIT = 250
DEFAULT_DECODE_LIMIT = 256 * 1024 * 1024


@dataclass(frozen=True)
class EditResult:
    """Encoded output plus what the HTTP layer needs to describe it."""

    data: bytes
    format: ImageFormat
    dimensions: tuple[int, int]
    media_type: str


class Editor:
    """Drives one input through a registered per-frame transform."""

    def __init__(
        self,
        accepted_formats: Iterable[ImageFormat] | None = None,
        frame_limit: int = DEFAULT_FRAME_LIMIT,
        decode_limit: int = DEFAULT_DECODE_LIMIT,
    ) -> None:
        if frame_limit < 1:
            raise ValueError(f"frame_limit must be positive, got {frame_limit}")
        if decode_limit < 1:
            raise ValueError(f"decode_limit must be positive, got {decode_limit}")
        self._accepted = frozenset(DEFAULT_ACCEPTED_FORMATS if accepted_formats is None else accepted_formats)
        self._frame_limit = frame_limit
        self._decode_limit = decode_limit
        self._transform: FrameTransform | None = None
        self._consumed = False

    def set_transform(self, transform: FrameTransform) -> None:
        """Register the transform applied to every frame."""
        self._transform = transform

    def process(self, data: bytes) -> EditResult:
        """Transform ``data`` and return the re-encoded image.

        Raises:
            RuntimeError: If no transform is registered or the editor was
                already used.
            UnsupportedFormatError: If the input format is not accepted.
            DecodeError: If the input cannot be decoded.
            EncodeError: If the output cannot be encoded.
        """
        transform = self._transform
        if transform is None:
            raise RuntimeError("Called process without setting a transform")
        if self._consumed:
            raise RuntimeError("Editor has already processed an image")
        self._consumed = True

        fmt = detect_format(data)
        if fmt == ImageFormat.UNSUPPORTED or fmt not in self._accepted:
            raise UnsupportedFormatError(fmt)

        source = open_source(data, fmt, frame_limit=self._frame_limit, decode_limit=self._decode_limit)
        dimensions: tuple[int, int] | None = None
        transformed: list[Frame] = []
        with closing(source):
            for frame in islice(source.frames(), self._frame_limit):
                buffer = transform(frame.buffer)
                if dimensions is None:
                    dimensions = (int(buffer.shape[1]), int(buffer.shape[0]))
                transformed.append(replace(frame, buffer=buffer))

        if dimensions is None:
            raise DecodeError("Input produced no frames")

        encoder = select_encoder(fmt, animated=source.animated)
        output = encoder.encode(transformed, dimensions)
        logger.debug(
            "Processed %s input: %d frame(s) -> %dx%d %s",
            fmt.value,
            len(transformed),
            dimensions[0],
            dimensions[1],
            encoder.media_type,
        )
        return EditResult(data=output, format=fmt, dimensions=dimensions, media_type=encoder.media_type)
