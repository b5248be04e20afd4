"""Tests for the fuchsia HTTP API."""

from __future__ import annotations

import io
import os
from typing import TYPE_CHECKING
from unittest.mock import AsyncMock, patch

if TYPE_CHECKING:
    from collections.abc import AsyncIterator

import httpx
import pytest
from fastapi import FastAPI, status
from PIL import Image

from fuchsia.api.routes import MAX_DIMENSION
from fuchsia.config import get_settings
from fuchsia.imaging.worker import ProcessingPool
from fuchsia.main import create_app

from .images import encode_gif, encode_still, read_frames


def _init_app_state(app: FastAPI, **env_overrides: str) -> None:
    """Manually initialize app state (ASGITransport does not trigger lifespan)."""
    with patch.dict(os.environ, env_overrides):
        settings = get_settings()
    app.state.settings = settings
    app.state.processing_pool = ProcessingPool(settings.max_concurrent)


async def _make_client(app: FastAPI) -> AsyncIterator[httpx.AsyncClient]:
    async with httpx.AsyncClient(
        transport=httpx.ASGITransport(app=app),
        base_url="http://testserver",
    ) as ac:
        yield ac
    pool: ProcessingPool = app.state.processing_pool
    pool.shutdown()


def _upload(data: bytes, name: str = "image") -> dict[str, tuple[str, io.BytesIO, str]]:
    return {"file": (name, io.BytesIO(data), "application/octet-stream")}


@pytest.fixture()
def app() -> FastAPI:
    """Create a fresh app instance with default settings."""
    application = create_app()
    _init_app_state(application)
    return application


@pytest.fixture()
async def client(app: FastAPI) -> AsyncIterator[httpx.AsyncClient]:
    """Async HTTP client for testing the app."""
    async for ac in _make_client(app):
        yield ac


class TestHealthEndpoint:
    async def test_health_returns_ok(self, client: httpx.AsyncClient) -> None:
        response = await client.get("/health")
        assert response.status_code == status.HTTP_200_OK
        data = response.json()
        assert data["status"] == "ok"
        assert data["concurrent_requests"] == 0
        assert data["queue_depth"] == 0
        assert data["accepted_formats"] == ["png", "jpeg", "webp", "gif"]


class TestResizeEndpoint:
    async def test_resize_png(self, client: httpx.AsyncClient) -> None:
        response = await client.post(
            "/actions/resize",
            params={"width": 100, "height": 100, "keep_aspect": "true"},
            files=_upload(encode_still((400, 200), "PNG")),
        )
        assert response.status_code == status.HTTP_200_OK
        assert response.headers["content-type"] == "image/png"
        assert response.headers["x-width"] == "100"
        assert response.headers["x-height"] == "50"
        with Image.open(io.BytesIO(response.content)) as image:
            assert image.size == (100, 50)

    async def test_resize_jpeg_returns_png(self, client: httpx.AsyncClient) -> None:
        response = await client.post(
            "/actions/resize",
            params={"width": 12, "height": 8},
            files=_upload(encode_still((120, 80), "JPEG")),
        )
        assert response.status_code == status.HTTP_200_OK
        assert response.headers["content-type"] == "image/png"

    async def test_resize_gif(self, client: httpx.AsyncClient) -> None:
        response = await client.post(
            "/actions/resize",
            params={"width": 8, "height": 8, "frames": 3},
            files=_upload(encode_gif(5)),
        )
        assert response.status_code == status.HTTP_200_OK
        assert response.headers["content-type"] == "image/gif"
        assert len(read_frames(response.content)) == 3

    async def test_default_frame_limit_from_settings(self) -> None:
        app = create_app()
        _init_app_state(app, FUCHSIA_DEFAULT_FRAME_LIMIT="2")
        async for ac in _make_client(app):
            response = await ac.post(
                "/actions/resize",
                params={"width": 8, "height": 8},
                files=_upload(encode_gif(5)),
            )
            assert response.status_code == status.HTTP_200_OK
            assert len(read_frames(response.content)) == 2

    async def test_missing_dimensions_rejected(self, client: httpx.AsyncClient) -> None:
        response = await client.post(
            "/actions/resize",
            params={"width": 10},
            files=_upload(encode_still((10, 10), "PNG")),
        )
        assert response.status_code == status.HTTP_422_UNPROCESSABLE_ENTITY

    async def test_zero_width_rejected(self, client: httpx.AsyncClient) -> None:
        response = await client.post(
            "/actions/resize",
            params={"width": 0, "height": 10},
            files=_upload(encode_still((10, 10), "PNG")),
        )
        assert response.status_code == status.HTTP_422_UNPROCESSABLE_ENTITY

    @pytest.mark.parametrize(
        ("path", "params"),
        [
            ("/actions/resize", {"width": MAX_DIMENSION + 1, "height": 10}),
            ("/actions/resize", {"width": 10, "height": 100_000}),
            ("/actions/circlize", {"dim": MAX_DIMENSION + 1}),
        ],
    )
    async def test_oversized_dimensions_rejected(
        self, client: httpx.AsyncClient, path: str, params: dict[str, int]
    ) -> None:
        with patch("fuchsia.imaging.transforms.Editor") as editor:
            response = await client.post(path, params=params, files=_upload(encode_still((10, 10), "PNG")))
        assert response.status_code == status.HTTP_422_UNPROCESSABLE_ENTITY
        editor.assert_not_called()

    async def test_largest_dimension_accepted(self, client: httpx.AsyncClient) -> None:
        response = await client.post(
            "/actions/resize",
            params={"width": MAX_DIMENSION, "height": 1},
            files=_upload(encode_still((10, 10), "PNG")),
        )
        assert response.status_code == status.HTTP_200_OK
        assert response.headers["x-width"] == str(MAX_DIMENSION)


class TestCirclizeEndpoint:
    async def test_circlize_png(self, client: httpx.AsyncClient) -> None:
        response = await client.post(
            "/actions/circlize",
            params={"dim": 20},
            files=_upload(encode_still((64, 32), "PNG")),
        )
        assert response.status_code == status.HTTP_200_OK
        assert response.headers["content-type"] == "image/png"
        assert response.headers["x-width"] == "20"
        assert response.headers["x-height"] == "20"
        with Image.open(io.BytesIO(response.content)) as image:
            rgba = image.convert("RGBA")
            assert rgba.getpixel((0, 0))[3] == 0
            assert rgba.getpixel((10, 10))[3] == 255

    async def test_circlize_gif(self, client: httpx.AsyncClient) -> None:
        response = await client.post(
            "/actions/circlize",
            params={"dim": 10},
            files=_upload(encode_gif(2)),
        )
        assert response.status_code == status.HTTP_200_OK
        assert response.headers["content-type"] == "image/gif"


class TestErrorMapping:
    async def test_unsupported_format(self, client: httpx.AsyncClient) -> None:
        response = await client.post(
            "/actions/resize",
            params={"width": 10, "height": 10},
            files=_upload(b"this is not an image"),
        )
        assert response.status_code == status.HTTP_503_SERVICE_UNAVAILABLE
        assert response.json()["detail"] == "Only PNG, JPEG, WEBP, and GIF images are supported"

    async def test_accepted_formats_from_settings(self) -> None:
        app = create_app()
        _init_app_state(app, FUCHSIA_ACCEPTED_FORMATS='["png"]')
        async for ac in _make_client(app):
            response = await ac.post(
                "/actions/circlize",
                params={"dim": 10},
                files=_upload(encode_gif(2)),
            )
            assert response.status_code == status.HTTP_503_SERVICE_UNAVAILABLE
            assert response.json()["detail"] == "Only PNG images are supported"

    async def test_corrupt_image(self, client: httpx.AsyncClient) -> None:
        response = await client.post(
            "/actions/resize",
            params={"width": 10, "height": 10},
            files=_upload(b"\x89PNG\r\n\x1a\n" + b"\x00" * 64),
        )
        assert response.status_code == status.HTTP_503_SERVICE_UNAVAILABLE
        detail = response.json()["detail"]
        assert detail == "Something went wrong when trying to process the image, sorry!"

    async def test_upload_too_large(self) -> None:
        app = create_app()
        _init_app_state(app, FUCHSIA_MAX_FILE_SIZE="100")
        async for ac in _make_client(app):
            response = await ac.post(
                "/actions/resize",
                params={"width": 10, "height": 10},
                files=_upload(encode_still((400, 200), "PNG")),
            )
            assert response.status_code == status.HTTP_413_REQUEST_ENTITY_TOO_LARGE
            assert response.json()["detail"] == "Cannot upload more than 100 bytes at once"

    async def test_busy_pool(self, app: FastAPI, client: httpx.AsyncClient) -> None:
        pool: ProcessingPool = app.state.processing_pool
        with patch.object(pool, "run", AsyncMock(side_effect=TimeoutError)):
            response = await client.post(
                "/actions/resize",
                params={"width": 10, "height": 10},
                files=_upload(encode_still((20, 20), "PNG")),
            )
        assert response.status_code == status.HTTP_503_SERVICE_UNAVAILABLE
        assert response.json()["detail"] == "Server is busy, try again later"


class TestOriginCheck:
    async def test_local_peer_allowed_by_default(self, client: httpx.AsyncClient) -> None:
        response = await client.get("/health")
        assert response.status_code == status.HTTP_200_OK

    async def test_foreign_peer_rejected(self) -> None:
        app = create_app()
        _init_app_state(app, FUCHSIA_ALLOWED_ORIGIN="10.0.")
        async for ac in _make_client(app):
            response = await ac.post(
                "/actions/resize",
                params={"width": 10, "height": 10},
                files=_upload(encode_still((20, 20), "PNG")),
            )
            assert response.status_code == status.HTTP_401_UNAUTHORIZED
            assert response.json()["detail"] == "Go away"

    async def test_empty_prefix_allows_everyone(self) -> None:
        app = create_app()
        _init_app_state(app, FUCHSIA_ALLOWED_ORIGIN="")
        async for ac in _make_client(app):
            response = await ac.get("/health")
            assert response.status_code == status.HTTP_200_OK
