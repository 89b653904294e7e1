"""Admin API for operators and Cloud Scheduler.

Implements:
- POST /admin/renew-channels - Renew channels nearing expiry
- POST /admin/force-resync - Stop everything and register fresh channels
- GET /admin/channels/status - Channel expiry overview and health
- POST /admin/reload-mappings - Refresh identity mappings now
"""

from typing import Optional

from fastapi import APIRouter, Depends
from fastapi.responses import JSONResponse

from calendar_sync.api.dependencies import get_context
from calendar_sync.context import ServiceContext
from calendar_sync.logging_config import get_logger
from calendar_sync.models.api import (
    ReloadMappingsResponse,
    RenewalRequest,
    RenewalResponse,
    ResyncRequest,
    ResyncResponse,
    StatusResponse,
)
from calendar_sync.repositories.subscription_store import StoreError
from calendar_sync.services.mapping_loader import MappingLoadError

logger = get_logger(__name__)
router = APIRouter(tags=["Admin API"], prefix="/admin")


@router.post(
    "/renew-channels",
    response_model=RenewalResponse,
    summary="Renew expiring watch channels",
)
def renew_channels(
    request: Optional[RenewalRequest] = None,
    context: ServiceContext = Depends(get_context),
):
    """Renew every active channel expiring within the threshold.

    Args:
        request: Optional dryRun flag and expirationThreshold (ms, default 24h)

    Returns:
        Per-channel renewed/skipped/failed lists plus a summary

    Raises:
        503: Store query failed (same structure with ``error`` set)
    """
    request = request or RenewalRequest()
    logger.info(
        "renew_channels_request",
        dry_run=request.dry_run,
        expiration_threshold=request.expiration_threshold,
    )

    try:
        return context.renewal_service.renew_expiring(
            threshold_ms=request.expiration_threshold,
            dry_run=request.dry_run,
        )
    except StoreError as e:
        logger.error("renew_channels_store_unavailable", error=str(e))
        body = RenewalResponse(error=f"Store unavailable: {e}")
        return JSONResponse(status_code=503, content=body.model_dump(by_alias=True))


@router.post(
    "/force-resync",
    response_model=ResyncResponse,
    summary="Stop all channels and register fresh ones",
)
def force_resync(
    request: Optional[ResyncRequest] = None,
    context: ServiceContext = Depends(get_context),
) -> ResyncResponse:
    """Stop every known channel and register one per mapped primary user."""
    reason = request.reason if request else None
    logger.warning("force_resync_request", reason=reason)
    return context.watch_manager.force_resync(reason=reason)


@router.get(
    "/channels/status",
    response_model=StatusResponse,
    summary="Channel expiry overview",
)
def channels_status(context: ServiceContext = Depends(get_context)) -> StatusResponse:
    """All channels with time to expiry, categorized, plus a health block."""
    return context.status_service.get_status()


@router.post(
    "/reload-mappings",
    response_model=ReloadMappingsResponse,
    summary="Reload identity mappings",
)
def reload_mappings(context: ServiceContext = Depends(get_context)):
    """Re-read the mapping sheet or file now.

    Raises:
        500: Source could not be read (previous mapping kept)
    """
    logger.info("reload_mappings_request")
    try:
        count = context.reload_mappings()
    except MappingLoadError as e:
        return JSONResponse(
            status_code=500,
            content={"status": "error", "mappingCount": context.mapping_store.size(), "error": str(e)},
        )
    return ReloadMappingsResponse(status="ok", mapping_count=count)
