"""
Notion directory integration.
Reads guest/host metadata and profile pages from a Notion database.
"""

import logging
from typing import Dict, Any, Optional, List

import httpx

from ..core.identity import DirectoryError, DirectorySource
from ..models import DirectoryEntry

logger = logging.getLogger(__name__)


class NotionDirectory(DirectorySource):
    """
    Notion database client used as the identity directory.
    Each page is a person; the page title is the internal username.
    """

    API_BASE = "https://api.notion.com/v1"
    NOTION_VERSION = "2022-06-28"
    PAGE_SIZE = 100

    TITLE_PROPERTIES = ["Name", "title", "Title"]
    MEDIA_PROPERTIES = ["Media", "Files & media"]
    UPCOMING_CHAT_PAGE_NAME = "upcoming-chat"
    GUEST = "Guest"
    HOST = "Host"
    PERSON_ROLE = "person"

    def __init__(self, token: str, database_id: str, timeout: float = 30.0):
        """
        Initialize Notion directory client.

        Args:
            token: Notion integration token
            database_id: Database holding one page per person
            timeout: HTTP timeout in seconds
        """
        self.token = token
        self.database_id = database_id
        self.timeout = timeout

    def _get_headers(self) -> Dict[str, str]:
        return {
            "Authorization": f"Bearer {self.token}",
            "Notion-Version": self.NOTION_VERSION,
            "Content-Type": "application/json",
        }

    async def query_database(self) -> List[Dict[str, Any]]:
        """
        Fetch every page of the database, following pagination cursors.

        Raises:
            DirectoryError: On HTTP or transport failure
        """
        url = f"{self.API_BASE}/databases/{self.database_id}/query"
        results: List[Dict[str, Any]] = []
        cursor: Optional[str] = None

        try:
            async with httpx.AsyncClient(timeout=self.timeout) as client:
                while True:
                    body: Dict[str, Any] = {"page_size": self.PAGE_SIZE}
                    if cursor:
                        body["start_cursor"] = cursor
                    resp = await client.post(url, json=body, headers=self._get_headers())
                    resp.raise_for_status()
                    data = resp.json()

                    results.extend(data.get("results") or [])
                    if not data.get("has_more"):
                        break
                    cursor = data.get("next_cursor")
        except httpx.HTTPError as e:
            raise DirectoryError(f"Notion query failed: {e}") from e

        logger.debug(f"Notion: fetched {len(results)} pages from database")
        return results

    @classmethod
    def get_page_title(cls, page: Dict[str, Any]) -> Optional[str]:
        """Title property value of a page, or None."""
        properties = page.get("properties") or {}
        for prop_name in cls.TITLE_PROPERTIES:
            title_prop = properties.get(prop_name) or {}
            parts = title_prop.get("title") or []
            if parts:
                return "".join(part.get("plain_text", "") for part in parts)
        return None

    @staticmethod
    def extract_properties(properties: Dict[str, Any]) -> Dict[str, Any]:
        """Flatten Notion typed property values into plain Python values."""
        result: Dict[str, Any] = {}
        for key, value in (properties or {}).items():
            prop_type = value.get("type")
            if prop_type in ("title", "rich_text"):
                result[key] = "".join(t.get("plain_text", "") for t in value.get(prop_type) or [])
            elif prop_type == "select":
                result[key] = (value.get("select") or {}).get("name")
            elif prop_type == "multi_select":
                result[key] = [s.get("name") for s in value.get("multi_select") or []]
            elif prop_type == "date":
                result[key] = (value.get("date") or {}).get("start")
            elif prop_type == "files":
                urls = []
                for f in value.get("files") or []:
                    url = (f.get("external") or {}).get("url") or (f.get("file") or {}).get("url")
                    if url:
                        urls.append(url)
                result[key] = urls
            elif prop_type in ("number", "checkbox", "url", "email", "phone_number"):
                result[key] = value.get(prop_type)
        return result

    @staticmethod
    def _cover_url(page: Dict[str, Any]) -> Optional[str]:
        cover = page.get("cover") or {}
        return (cover.get("external") or {}).get("url") or (cover.get("file") or {}).get("url")

    async def get_user_metadata(self) -> Dict[str, DirectoryEntry]:
        """
        Build the directory from the database.

        Only pages that look like people are kept: a Status containing
        Guest or Host, or a Role/Type of "person".
        """
        pages = await self.query_database()
        entries: Dict[str, DirectoryEntry] = {}

        for page in pages:
            name = self.get_page_title(page)
            if not name or name.lower() == self.UPCOMING_CHAT_PAGE_NAME:
                continue

            props = self.extract_properties(page.get("properties") or {})
            status = props.get("Status")
            status = status if isinstance(status, list) else ([status] if status else [])
            role = props.get("Role") or props.get("Type")

            is_guest = self.GUEST in status
            is_host = self.HOST in status
            is_person = bool(role) and str(role).lower() == self.PERSON_ROLE
            if not (is_guest or is_host or is_person):
                continue

            entries[name.lower()] = DirectoryEntry(
                original_name=name,
                override=props.get("Override") or None,
                is_guest=is_guest,
                is_host=is_host,
                status=status,
            )

        return entries

    async def get_page_by_title(self, title: str) -> Optional[Dict[str, Any]]:
        """
        Find a page by its title (case-insensitive).

        Returns:
            Page properties and media, or None when nothing matches or
            Notion is unreachable
        """
        if not title or not title.strip():
            return None

        try:
            pages = await self.query_database()
        except DirectoryError as e:
            logger.warning(f"Notion lookup for {title!r} failed: {e}")
            return None

        for page in pages:
            page_title = self.get_page_title(page)
            if page_title and page_title.lower() == title.lower():
                props = self.extract_properties(page.get("properties") or {})
                media = None
                for prop_name in self.MEDIA_PROPERTIES:
                    if props.get(prop_name):
                        media = props[prop_name][0]
                        break
                icon = page.get("icon") or {}
                return {
                    "id": page.get("id"),
                    "title": page_title,
                    "properties": props,
                    "cover": self._cover_url(page),
                    "icon": icon.get("emoji") or (icon.get("external") or {}).get("url"),
                    "media": media or self._cover_url(page),
                    "last_edited": page.get("last_edited_time"),
                }

        logger.info(f"Notion: no page found for {title!r}")
        return None
