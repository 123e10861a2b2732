"""
Request dependencies: caller identity and admin access.

Authentication happens upstream (the web app); requests arrive with the
owner id in ``X-Owner-Id``.
"""

import secrets
from typing import Optional

from fastapi import Header, HTTPException, status

from voxe_kb.core.config import settings


async def get_owner_id(x_owner_id: Optional[str] = Header(None)) -> str:
    """Owner id of the caller."""
    owner_id = (x_owner_id or "").strip()
    if owner_id:
        return owner_id
    # development mode without the upstream app
    if settings.DISABLE_AUTH:
        return settings.DEFAULT_OWNER_ID
    raise HTTPException(
        status_code=status.HTTP_401_UNAUTHORIZED,
        detail="Missing X-Owner-Id header",
    )


async def require_admin(x_admin_key: Optional[str] = Header(None)) -> None:
    expected = settings.ADMIN_API_KEY
    if not expected or not x_admin_key or not secrets.compare_digest(x_admin_key, expected):
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail="Admin access required",
        )
