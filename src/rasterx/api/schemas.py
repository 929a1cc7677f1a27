"""Pydantic request/response schemas for the RasterX API."""

from __future__ import annotations

from pydantic import BaseModel, ConfigDict, Field


class TransformEnvelope(BaseModel):
    """Pipeline response: metrics plus either ``outputKey`` or ``error``.

    Metric fields vary by run and are passed through as extra keys.
    """

    model_config = ConfigDict(extra="allow")

    outputKey: str | None = Field(default=None, description="Key of the written object on success")  # noqa: N815
    error: str | None = Field(default=None, description="Human-readable failure message")
    errorKind: str | None = Field(default=None, description="Failure category, e.g. 'NotFound'")  # noqa: N815
    runtimeMs: float = Field(description="Wall-clock duration of the run")  # noqa: N815


class HealthResponse(BaseModel):
    """Health check response."""

    status: str = "ok"
    transform: str = Field(description="Deployed transform: 'grayscale', 'rotate', or 'resize'")
    output_prefix: str
    concurrent_requests: int
    queue_depth: int


class ErrorResponse(BaseModel):
    """Standard error response."""

    detail: str
