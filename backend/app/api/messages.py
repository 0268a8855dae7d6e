"""
Messages API endpoints - transcript reads for the web tier.
"""

import logging
from typing import Optional

from fastapi import APIRouter, Depends, HTTPException, Query, status

from ..core.identity import IdentityResolver
from ..core.sanitizer import sanitize_message, sanitize_session
from ..services import Services, get_services, fresh_resolver
from ..storage import StorageError

logger = logging.getLogger(__name__)

router = APIRouter(tags=["messages"])


@router.get("/messages")
async def get_messages(
    session_id: Optional[str] = Query(None, description="Return one session's transcript"),
    chat_id: str = Query("all", description="Filter unscoped messages by chat"),
    services: Services = Depends(get_services),
    resolver: IdentityResolver = Depends(fresh_resolver),
):
    """
    Get sanitized messages.

    With `session_id`, returns that session's full transcript in persistence
    order plus its summary; otherwise the latest 100 messages.

    Returns:
        dict: session, messages and public user metadata
    """
    store = services.store
    try:
        if session_id:
            messages = await store.get_messages_by_session(session_id)
            details = await store.get_session_details(session_id)
            session = sanitize_session(details, resolver)
        else:
            messages = await store.get_messages(chat_id)
            session = None
    except StorageError as e:
        logger.exception("Error retrieving messages")
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail=f"Error retrieving messages: {e}"
        )

    return {
        "session": session,
        "messages": [sanitize_message(m, resolver) for m in messages],
        "userMetadata": resolver.safe_metadata(),
    }


@router.get("/chat_ids")
async def get_chat_ids(services: Services = Depends(get_services)):
    """Unique chat ids that have messages."""
    return await services.store.get_chat_ids()
