"""
Storage health endpoints.
"""

from typing import Any, Dict

from fastapi import APIRouter, Depends

from dualstore.api import deps
from dualstore.core.health_check import StorageHealth
from dualstore.services.dual_write import DualWriteCoordinator

router = APIRouter()


@router.get("/storage")
async def storage_health(coordinator: DualWriteCoordinator = Depends(deps.get_coordinator)) -> Dict[str, Any]:
    """
    Per-backend health: live probe plus circuit breaker state.

    Always returns 200; callers read the status field.
    """
    return await StorageHealth.check(coordinator)
