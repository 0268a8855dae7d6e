"""
Admin API endpoints - directory cache invalidation and store reset.
"""

import logging

from fastapi import APIRouter, Depends, HTTPException, status

from ..services import Services, get_services
from ..storage import StorageError
from ..utils.auth import require_admin

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/admin", tags=["admin"], dependencies=[Depends(require_admin)])


@router.post("/cache/clear")
async def clear_cache(services: Services = Depends(get_services)):
    """Force a directory refresh."""
    snapshot = await services.resolver.force_refresh()
    logger.info(f"Directory cache cleared by admin; {len(snapshot)} entries loaded")
    return {"success": True, "entries": len(snapshot)}


@router.post("/reset-db")
async def reset_db(services: Services = Depends(get_services)):
    """Delete every session and message."""
    try:
        cleared = await services.store.reset()
    except StorageError as e:
        logger.exception("Database reset failed")
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail=f"Reset failed: {e}"
        )
    return {"success": True, "cleared": cleared}
