"""Magic-byte format detection."""

from __future__ import annotations

from enum import StrEnum


class ImageFormat(StrEnum):
    PNG = "png"
    JPEG = "jpeg"
    WEBP = "webp"
    GIF = "gif"
    UNSUPPORTED = "unsupported"


DEFAULT_ACCEPTED_FORMATS: tuple[ImageFormat, ...] = (
    ImageFormat.PNG,
    ImageFormat.JPEG,
    ImageFormat.WEBP,
    ImageFormat.GIF,
)

_SIGNATURES: tuple[tuple[bytes, ImageFormat], ...] = (
    (b"\x89PNG\r\n\x1a\n", ImageFormat.PNG),
    (b"\xff\xd8\xff", ImageFormat.JPEG),
    (b"GIF87a", ImageFormat.GIF),
    (b"GIF89a", ImageFormat.GIF),
)


def detect_format(data: bytes) -> ImageFormat:
    """Classify a buffer by its leading bytes.

    Only the header is inspected; unrecognised input maps to UNSUPPORTED
    rather than raising.
    """
    for magic, fmt in _SIGNATURES:
        if data.startswith(magic):
            return fmt

    # RIFF <size:4> WEBP
    if len(data) >= 12 and data[:4] == b"RIFF" and data[8:12] == b"WEBP":
        return ImageFormat.WEBP

    return ImageFormat.UNSUPPORTED


def media_type(fmt: ImageFormat, *, animated: bool) -> str:
    """Return the response content type for output produced from ``fmt``."""
    if fmt == ImageFormat.GIF:
        return "image/gif"
    if fmt == ImageFormat.WEBP and animated:
        return "image/webp"
    return "image/png"
