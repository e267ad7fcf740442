from __future__ import annotations

import logging
from typing import Optional

from fastapi import Depends, Header, HTTPException, status

from tenant_rag import Settings
from tenant_rag.crypto import secure_compare

from .dependencies import get_settings_dep

logger = logging.getLogger(__name__)


async def require_admin_key(
    x_admin_key: Optional[str] = Header(None, alias="X-Admin-Key"),
    settings: Settings = Depends(get_settings_dep),
) -> None:
    """Guard document mutations when an admin key is configured."""

    if not settings.admin_api_key:
        return None
    if not secure_compare(x_admin_key, settings.admin_api_key):
        logger.warning("rejected admin request with invalid key")
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Invalid or missing admin key",
            headers={"WWW-Authenticate": "X-Admin-Key"},
        )
    return None
