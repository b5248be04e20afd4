"""Exception hierarchy for the imaging pipeline.

Every recoverable failure inherits from ImagingError so the HTTP layer can
catch the whole family with a single except clause.
"""

from __future__ import annotations

from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from fuchsia.imaging.formats import ImageFormat


class ImagingError(Exception):
    """Base exception for all imaging errors."""


class UnsupportedFormatError(ImagingError):
    """Raised when the input format is unrecognised or not accepted."""

    def __init__(self, fmt: ImageFormat) -> None:
        super().__init__(f"Unsupported image format: {fmt.value}")
        self.format = fmt


class DecodeError(ImagingError):
    """Raised when a container cannot be decoded or a frame exceeds the decode limit."""


class EncodeError(ImagingError):
    """Raised when transformed frames cannot be serialised."""
