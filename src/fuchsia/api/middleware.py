"""Middleware: peer-address allow-list."""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING

from fastapi import HTTPException, Request, status

if TYPE_CHECKING:
    from fuchsia.config import Settings

logger = logging.getLogger(__name__)


def _get_settings_from_request(request: Request) -> Settings:
    settings: Settings = request.app.state.settings
    return settings


async def verify_origin(request: Request) -> None:
    """Reject peers whose IP address does not start with the configured prefix.

    The check uses the socket peer address, not any forwarded header. An empty
    FUCHSIA_ALLOWED_ORIGIN admits every peer.
    """
    settings = _get_settings_from_request(request)
    peer = request.client.host if request.client is not None else ""
    if not settings.allowed_origin or (peer and peer.startswith(settings.allowed_origin)):
        return

    logger.warning("Rejected request from %s", peer or "<unknown peer>")
    raise HTTPException(
        status_code=status.HTTP_401_UNAUTHORIZED,
        detail="Go away",
    )
