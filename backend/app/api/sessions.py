"""
Sessions API endpoints - session lists, details, status, stale-session repair
and public profiles.
"""

import logging
from datetime import timedelta

from fastapi import APIRouter, Depends, HTTPException, status

from ..config import settings
from ..core.identity import IdentityResolver
from ..core.sanitizer import (
    enrich_session, sanitize_profile_page, sanitize_session, sanitize_session_row
)
from ..models import SessionStatus, StatusUpdate
from ..services import Services, get_services, fresh_resolver
from ..storage import StorageError
from ..utils.auth import require_admin

logger = logging.getLogger(__name__)

router = APIRouter(tags=["sessions"])


@router.get("/sessions")
async def list_session_ids(services: Services = Depends(get_services)):
    """Session ids, newest first."""
    records = await services.store.list_sessions()
    return [record.session_id for record in records]


@router.get("/sessions-list")
async def list_sessions(
    services: Services = Depends(get_services),
    resolver: IdentityResolver = Depends(fresh_resolver),
):
    """Session rows with the author replaced by its display name."""
    records = await services.store.list_sessions()
    return [sanitize_session_row(record, resolver) for record in records]


@router.get("/sessions-details")
async def list_session_details(
    services: Services = Depends(get_services),
    resolver: IdentityResolver = Depends(fresh_resolver),
):
    """Enriched session summaries, most recent activity first."""
    details = await services.store.list_session_details()
    return [enrich_session(item, resolver) for item in details]


@router.get("/session/{session_id}")
async def get_session(
    session_id: str,
    services: Services = Depends(get_services),
    resolver: IdentityResolver = Depends(fresh_resolver),
):
    """Sanitized summary of one session."""
    details = await services.store.get_session_details(session_id)
    if details is None:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Session not found")
    return sanitize_session(details, resolver)


async def _apply_status(session_id: str, update: StatusUpdate, services: Services) -> dict:
    """
    Validate, persist and broadcast a status change.

    Raises:
        HTTPException: 400 for an unknown status, 404 for an unknown session
    """
    valid = SessionStatus.values()
    if not update.status or update.status not in valid:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail=f"Invalid status. Must be one of: {', '.join(valid)}"
        )

    record = await services.store.get_session(session_id)
    if record is None:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Session not found")

    new_status = SessionStatus(update.status)
    try:
        await services.store.save_session(session_id, status=new_status)
    except StorageError as e:
        logger.exception(f"Error updating session {session_id} status")
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail=f"Error updating session status: {e}"
        )

    logger.info(
        f"Session {session_id} status set to {new_status.value}",
        extra={"extra_fields": {"session_id": session_id, "status": new_status.value}}
    )
    await services.events.session_update(session_id)

    return {
        "success": True,
        "message": f"Session {session_id} status updated to {new_status.value}",
        "session_id": session_id,
        "status": new_status.value,
    }


@router.put("/session/{session_id}/status")
async def update_session_status(
    session_id: str,
    update: StatusUpdate,
    services: Services = Depends(get_services),
):
    """Administratively change a session's status."""
    return await _apply_status(session_id, update, services)


@router.post("/api/fix-session/{session_id}", dependencies=[Depends(require_admin)])
async def fix_session(
    session_id: str,
    update: StatusUpdate,
    services: Services = Depends(get_services),
):
    """Force a session into the given status."""
    return await _apply_status(session_id, update, services)


def _max_idle() -> timedelta:
    return timedelta(seconds=settings.stale_session_timeout_seconds)


@router.get("/check-sessions")
async def check_sessions(services: Services = Depends(get_services)):
    """Report active sessions idle past the timeout, without changing them."""
    records = await services.store.list_sessions()
    stale = await services.store.find_stale_sessions(_max_idle())
    return {
        "success": True,
        "message": f"Checked {len(records)} sessions, {len(stale)} idle past the timeout",
        "checked": len(records),
        "stale": stale,
    }


@router.post("/api/fix-all-sessions", dependencies=[Depends(require_admin)])
async def fix_all_sessions(services: Services = Depends(get_services)):
    """
    Complete every active session idle past the timeout.

    Operators still attached to a completed session drop back to idle on
    their next message.
    """
    records = await services.store.list_sessions()
    if not records:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="No sessions found")

    updated = []
    for session_id in await services.store.find_stale_sessions(_max_idle()):
        try:
            await services.store.save_session(session_id, status=SessionStatus.COMPLETED)
        except StorageError:
            logger.exception(f"Failed to complete stale session {session_id}")
            continue
        updated.append(session_id)
        await services.events.session_update(session_id)

    logger.info(
        f"Stale session sweep completed {len(updated)} of {len(records)} sessions",
        extra={"extra_fields": {"updated": updated}}
    )
    return {
        "success": True,
        "message": f"Checked {len(records)} sessions, updated {len(updated)} to completed status",
        "total": len(records),
        "updated": len(updated),
        "session_ids": updated,
    }


@router.get("/profile/{display_name}")
async def get_profile(
    display_name: str,
    services: Services = Depends(get_services),
    resolver: IdentityResolver = Depends(fresh_resolver),
):
    """
    Public directory page for a display name.

    The display name is mapped back to the internal name before the lookup;
    the response never carries the internal name.
    """
    internal_name = resolver.reverse(display_name)
    if internal_name is None or services.directory is None:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Profile not found")

    page = await services.directory.get_page_by_title(internal_name)
    profile = sanitize_profile_page(page)
    if profile is None:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Profile not found")
    return profile
