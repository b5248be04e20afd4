"""Shared fixtures: build still and animated images in memory."""

from __future__ import annotations

from collections.abc import Callable

import pytest

from .images import encode_animated_webp, encode_gif, encode_still


@pytest.fixture()
def png_bytes() -> bytes:
    return encode_still((400, 200), "PNG")


@pytest.fixture()
def jpeg_bytes() -> bytes:
    return encode_still((120, 80), "JPEG")


@pytest.fixture()
def static_webp_bytes() -> bytes:
    return encode_still((64, 48), "WEBP")


@pytest.fixture()
def make_gif() -> Callable[..., bytes]:
    return encode_gif


@pytest.fixture()
def make_webp() -> Callable[..., bytes]:
    return encode_animated_webp
