"""
Authentication utilities - admin API key and admin bot users.
"""

import hmac
from typing import Iterable, Optional, Union

from fastapi import Depends, HTTPException, status
from fastapi.security import APIKeyHeader

from ..config import settings

# Admin key header
admin_key_header = APIKeyHeader(name="X-Admin-Key", auto_error=False)


def verify_admin_key(provided: Optional[str], expected: Optional[str]) -> bool:
    """Constant-time key comparison; an unset key rejects everything."""
    if not expected or not provided:
        return False
    return hmac.compare_digest(provided.encode('utf-8'), expected.encode('utf-8'))


async def require_admin(api_key: Optional[str] = Depends(admin_key_header)) -> None:
    """
    Dependency guarding administrative endpoints.

    Raises:
        HTTPException: If the key is missing or wrong
    """
    if not verify_admin_key(api_key, settings.admin_api_key):
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Invalid or missing admin key",
        )


def is_admin_user(user_id: Union[int, str], admin_users: Optional[Iterable[int]] = None) -> bool:
    """Whether a Telegram user id is in the admin list."""
    if admin_users is None:
        admin_users = settings.admin_telegram_users
    return str(user_id) in {str(u) for u in admin_users}
