"""Pydantic response schemas for the fuchsia API."""

from __future__ import annotations

from pydantic import BaseModel, Field


class HealthResponse(BaseModel):
    """Health check response."""

    status: str = "ok"
    concurrent_requests: int
    queue_depth: int
    accepted_formats: list[str] = Field(description="Input formats the editor will decode")


class ErrorResponse(BaseModel):
    """Standard error response."""

    detail: str
