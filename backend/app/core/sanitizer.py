"""
Payload sanitization - replaces internal identities with display identities
before anything leaves the process (REST responses and realtime events).
"""

import re
from typing import Any, Dict, List, Optional

from ..models import MessageRecord, SessionDetails, SessionRecord
from .identity import IdentityResolver


def _iso(value) -> Optional[str]:
    return value.isoformat() if value is not None else None


def replace_usernames_in_text(text: Optional[str], resolver: IdentityResolver) -> Optional[str]:
    """Replace mentions of known guests/hosts in free text with their display names."""
    if not text:
        return text

    result = text
    for entry in resolver.snapshot.entries.values():
        if not (entry.is_guest or entry.is_host):
            continue
        display = entry.display_name
        for candidate in {entry.original_name, entry.override}:
            if not candidate:
                continue
            escaped = re.escape(candidate)
            pattern = re.compile(rf"(?:<{escaped}>|\b{escaped}\b)", re.IGNORECASE)
            result = pattern.sub(lambda _: display, result)
    return result


def sanitize_message(message: MessageRecord, resolver: IdentityResolver) -> Dict[str, Any]:
    """Public form of a message; the `message:new` payload and REST item."""
    identity = resolver.resolve(message.username)
    return {
        "id": message.id,
        "session_id": message.session_id,
        "text": replace_usernames_in_text(message.message, resolver),
        "displayName": identity.display_name,
        "isGuest": identity.is_guest,
        "isHost": identity.is_host,
        "date": _iso(message.date),
    }


def sanitize_session(details: Optional[SessionDetails], resolver: IdentityResolver) -> Optional[Dict[str, Any]]:
    """Public session summary; the `session:new` / `session:update` payload."""
    if details is None:
        return None

    author = resolver.resolve(details.author) if details.author else None
    return {
        "session_id": details.session_id,
        "title": details.title,
        "status": details.status.value,
        "start_date": _iso(details.start_date),
        "end_date": _iso(details.end_date),
        "message_count": details.message_count,
        "participants": [resolver.resolve(p).display_name for p in details.participants],
        "author": author.display_name if author else None,
        "author_is_guest": author.is_guest if author else False,
        "author_is_host": author.is_host if author else False,
    }


def enrich_session(details: SessionDetails, resolver: IdentityResolver) -> Dict[str, Any]:
    """Session summary plus per-participant guest flags, for list views."""
    summary = sanitize_session(details, resolver)
    participants: List[Dict[str, Any]] = []
    for name in details.participants:
        identity = resolver.resolve(name)
        participants.append({
            "display": identity.display_name,
            "isGuest": identity.is_guest,
        })
    summary["authorDisplay"] = summary["author"]
    summary["participantsEnriched"] = participants
    return summary


def sanitize_session_row(record: SessionRecord, resolver: IdentityResolver) -> Dict[str, Any]:
    """Bare session row with the author replaced by its display name."""
    return {
        "session_id": record.session_id,
        "title": record.title,
        "status": record.status.value,
        "created_at": _iso(record.created_at),
        "author": resolver.resolve(record.author).display_name if record.author else None,
    }


def sanitize_profile_page(page: Optional[Dict[str, Any]]) -> Optional[Dict[str, Any]]:
    """
    Public form of a directory page. The page title is the internal name,
    so it is replaced by the Override property (or "Guest").
    """
    if not page:
        return None

    props = page.get("properties") or {}
    override = None
    for key, value in props.items():
        if key.lower() == "override" and value:
            override = value[0] if isinstance(value, list) else str(value)

    return {
        "id": page.get("id"),
        "title": override or "Guest",
        "properties": {
            "Date": props.get("Date"),
            "URL": props.get("URL"),
            "Media": props.get("Media") or [],
            "Status": props.get("Status") or [],
            "Description": props.get("Description") or "",
            "Override": override,
        },
        "cover": page.get("cover"),
        "icon": page.get("icon"),
        "lastEdited": page.get("last_edited"),
    }
