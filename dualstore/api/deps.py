import secrets
from typing import Optional

from fastapi import Depends, HTTPException, Request, status
from fastapi.security import APIKeyHeader

from dualstore.core.config import settings
from dualstore.services.dual_write import DualWriteCoordinator
from dualstore.services.user_sync import UserSyncService

# Admin key header name
ADMIN_KEY_HEADER = "X-Admin-Key"

admin_key_header = APIKeyHeader(name=ADMIN_KEY_HEADER, auto_error=False)


def get_coordinator(request: Request) -> DualWriteCoordinator:
    """The coordinator built in the app lifespan."""
    coordinator = getattr(request.app.state, "coordinator", None)
    if coordinator is None:
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail="Storage not initialised",
        )
    return coordinator


def get_user_sync(request: Request) -> UserSyncService:
    user_sync = getattr(request.app.state, "user_sync", None)
    if user_sync is None:
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail="User sync unavailable: Store B not configured",
        )
    return user_sync


def require_admin(api_key: Optional[str] = Depends(admin_key_header)) -> None:
    """
    Verify the X-Admin-Key header.

    Admin routes are disabled entirely while ADMIN_API_KEY is empty.
    """
    expected = settings.ADMIN_API_KEY
    if not expected or not api_key or not secrets.compare_digest(api_key, expected):
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail="Not enough permissions",
        )
