"""API route definitions."""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING, Annotated, Any

from fastapi import APIRouter, Depends, Query, Request, Response, UploadFile, status
from fastapi.responses import JSONResponse

from fuchsia.api.middleware import verify_origin
from fuchsia.api.schemas import ErrorResponse, HealthResponse
from fuchsia.imaging.errors import ImagingError, UnsupportedFormatError
from fuchsia.imaging.transforms import circlize_img, resize_img

if TYPE_CHECKING:
    from collections.abc import Callable, Sequence

    from fuchsia.config import Settings
    from fuchsia.imaging.editor import EditResult
    from fuchsia.imaging.formats import ImageFormat
    from fuchsia.imaging.worker import ProcessingPool

logger = logging.getLogger(__name__)

router = APIRouter(dependencies=[Depends(verify_origin)])

_UPLOAD_CHUNK_SIZE = 64 * 1024

# Largest width, height or diameter a request may ask for.
MAX_DIMENSION = 4096

_PROCESSING_FAILED = "Something went wrong when trying to process the image, sorry!"
_SERVER_BUSY = "Server is busy, try again later"

_IMAGE_RESPONSES: dict[int | str, dict[str, Any]] = {
    status.HTTP_200_OK: {
        "content": {"image/png": {}, "image/gif": {}, "image/webp": {}},
        "description": "The transformed image",
    },
    status.HTTP_413_REQUEST_ENTITY_TOO_LARGE: {"model": ErrorResponse},
    status.HTTP_503_SERVICE_UNAVAILABLE: {"model": ErrorResponse},
}


def _get_settings(request: Request) -> Settings:
    settings: Settings = request.app.state.settings
    return settings


def _get_processing_pool(request: Request) -> ProcessingPool:
    pool: ProcessingPool = request.app.state.processing_pool
    return pool


def _error(status_code: int, detail: str) -> JSONResponse:
    return JSONResponse(status_code=status_code, content={"detail": detail})


def _unsupported_message(formats: Sequence[ImageFormat]) -> str:
    names = [fmt.value.upper() for fmt in formats]
    if len(names) == 1:
        listed = names[0]
    elif len(names) == 2:
        listed = f"{names[0]} and {names[1]}"
    else:
        listed = f"{', '.join(names[:-1])}, and {names[-1]}"
    return f"Only {listed} images are supported"


async def _read_upload(file: UploadFile, limit: int) -> bytes | None:
    """Buffer an upload in memory, or return None once it passes ``limit`` bytes."""
    chunks: list[bytes] = []
    size = 0
    while chunk := await file.read(_UPLOAD_CHUNK_SIZE):
        size += len(chunk)
        if size > limit:
            return None
        chunks.append(chunk)
    return b"".join(chunks)


async def _edit(
    request: Request,
    file: UploadFile,
    operation: Callable[..., EditResult],
    *args: object,
    **kwargs: object,
) -> Response:
    settings = _get_settings(request)
    data = await _read_upload(file, settings.max_file_size)
    if data is None:
        return _error(
            status.HTTP_413_REQUEST_ENTITY_TOO_LARGE,
            f"Cannot upload more than {settings.max_file_size} bytes at once",
        )

    pool = _get_processing_pool(request)
    try:
        result = await pool.run(
            operation,
            data,
            *args,
            accepted_formats=settings.accepted_formats,
            decode_limit=settings.decode_limit,
            **kwargs,
        )
    except UnsupportedFormatError as exc:
        logger.info("Rejected upload %r: %s", file.filename, exc)
        return _error(status.HTTP_503_SERVICE_UNAVAILABLE, _unsupported_message(settings.accepted_formats))
    except ImagingError:
        logger.warning("Processing failed for upload %r", file.filename, exc_info=True)
        return _error(status.HTTP_503_SERVICE_UNAVAILABLE, _PROCESSING_FAILED)
    except TimeoutError:
        logger.warning("No worker available within timeout")
        return _error(status.HTTP_503_SERVICE_UNAVAILABLE, _SERVER_BUSY)

    width, height = result.dimensions
    return Response(
        content=result.data,
        media_type=result.media_type,
        headers={"X-Width": str(width), "X-Height": str(height)},
    )


@router.post(
    "/actions/resize",
    response_class=Response,
    responses=_IMAGE_RESPONSES,
    summary="Resize an image",
)
async def resize(
    request: Request,
    file: UploadFile,
    width: Annotated[int, Query(ge=1, le=MAX_DIMENSION)],
    height: Annotated[int, Query(ge=1, le=MAX_DIMENSION)],
    frames: Annotated[int | None, Query(ge=1)] = None,
    keep_aspect: bool = False,
) -> Response:
    """Resize every frame of an uploaded image, optionally keeping its aspect ratio."""
    frame_limit = frames if frames is not None else _get_settings(request).default_frame_limit
    return await _edit(request, file, resize_img, width, height, frame_limit, keep_aspect)


@router.post(
    "/actions/circlize",
    response_class=Response,
    responses=_IMAGE_RESPONSES,
    summary="Crop an image to a circle",
)
async def circlize(
    request: Request,
    file: UploadFile,
    dim: Annotated[int, Query(ge=1, le=MAX_DIMENSION, description="Diameter of the output circle")],
    frames: Annotated[int | None, Query(ge=1)] = None,
) -> Response:
    """Resize every frame to ``dim`` x ``dim`` and mask it to a circle."""
    frame_limit = frames if frames is not None else _get_settings(request).default_frame_limit
    return await _edit(request, file, circlize_img, dim, frame_limit)


@router.get(
    "/health",
    response_model=HealthResponse,
    summary="Health check",
)
async def health(request: Request) -> HealthResponse:
    """Return service health status."""
    settings = _get_settings(request)
    pool = _get_processing_pool(request)
    return HealthResponse(
        status="ok",
        concurrent_requests=pool.active_count,
        queue_depth=pool.queue_depth,
        accepted_formats=[fmt.value for fmt in settings.accepted_formats],
    )
