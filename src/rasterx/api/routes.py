"""API route definitions."""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING, Annotated, Any

from fastapi import APIRouter, Body, Depends, Request, status
from fastapi.responses import JSONResponse

from rasterx.api.middleware import verify_api_key
from rasterx.api.schemas import ErrorResponse, HealthResponse, TransformEnvelope

if TYPE_CHECKING:
    from rasterx.config import Settings
    from rasterx.pipeline import Pipeline
    from rasterx.worker import TransformPool

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/v1", dependencies=[Depends(verify_api_key)])

# Starlette renamed its 422 constant; the literal reads the same on every release.
HTTP_422_UNPROCESSABLE: int = 422

ERROR_STATUS: dict[str, int] = {
    "ValidationError": status.HTTP_400_BAD_REQUEST,
    "NotFound": status.HTTP_404_NOT_FOUND,
    "UnsupportedFormat": status.HTTP_415_UNSUPPORTED_MEDIA_TYPE,
    "InvalidImage": HTTP_422_UNPROCESSABLE,
    "EncodeUnsupported": HTTP_422_UNPROCESSABLE,
    "StorageError": status.HTTP_502_BAD_GATEWAY,
    "InternalError": status.HTTP_500_INTERNAL_SERVER_ERROR,
}


def _get_settings(request: Request) -> Settings:
    settings: Settings = request.app.state.settings
    return settings


def _get_pipeline(request: Request) -> Pipeline:
    pipeline: Pipeline = request.app.state.pipeline
    return pipeline


def _get_pool(request: Request) -> TransformPool:
    pool: TransformPool = request.app.state.transform_pool
    return pool


@router.post(
    "/transform",
    response_model=TransformEnvelope,
    responses={
        status.HTTP_400_BAD_REQUEST: {"model": TransformEnvelope},
        status.HTTP_404_NOT_FOUND: {"model": TransformEnvelope},
        status.HTTP_415_UNSUPPORTED_MEDIA_TYPE: {"model": TransformEnvelope},
        HTTP_422_UNPROCESSABLE: {"model": TransformEnvelope},
        status.HTTP_502_BAD_GATEWAY: {"model": TransformEnvelope},
        status.HTTP_503_SERVICE_UNAVAILABLE: {"model": ErrorResponse},
    },
    summary="Transform a stored image",
)
async def transform(request: Request, payload: Annotated[dict[str, Any], Body()]) -> JSONResponse:
    """Apply the deployed transform to ``bucket``/``key`` and store the result."""
    pipeline = _get_pipeline(request)
    pool = _get_pool(request)
    try:
        envelope = await pool.run(pipeline.run, payload)
    except TimeoutError:
        logger.warning("Transform pool saturated, rejecting request")
        return JSONResponse(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            content={"detail": "Server busy, retry later"},
        )

    error_kind = envelope.get("errorKind")
    status_code = status.HTTP_200_OK if error_kind is None else ERROR_STATUS.get(str(error_kind), 500)
    return JSONResponse(status_code=status_code, content=envelope)


@router.get(
    "/health",
    response_model=HealthResponse,
    summary="Health check",
)
async def health(request: Request) -> HealthResponse:
    """Return service health status."""
    settings = _get_settings(request)
    pipeline = _get_pipeline(request)
    pool = _get_pool(request)
    return HealthResponse(
        status="ok",
        transform=settings.transform,
        output_prefix=pipeline.transform.prefix,
        concurrent_requests=pool.active_count,
        queue_depth=pool.queue_depth,
    )
