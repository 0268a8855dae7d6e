"""
Directory API endpoints - public and administrative user metadata.
"""

from fastapi import APIRouter, Depends

from ..core.identity import IdentityResolver
from ..services import fresh_resolver
from ..utils.auth import require_admin

router = APIRouter(prefix="/api", tags=["directory"])


@router.get("/user-metadata")
async def get_user_metadata(resolver: IdentityResolver = Depends(fresh_resolver)):
    """Display names and guest/host flags, keyed by lowercase display name."""
    safe = resolver.safe_metadata()
    return {"byOriginal": safe, "byDisplay": safe}


@router.get("/user-metadata/admin", dependencies=[Depends(require_admin)])
async def get_admin_user_metadata(resolver: IdentityResolver = Depends(fresh_resolver)):
    """Full directory view including internal names."""
    return resolver.admin_metadata()
