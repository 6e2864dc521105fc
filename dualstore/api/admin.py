"""
Admin API endpoints for storage maintenance: breaker resets and user sync.
Protected by the X-Admin-Key header.
"""

from typing import Any, Dict

from fastapi import APIRouter, Depends, HTTPException, Query
import structlog

from dualstore.api import deps
from dualstore.schemas import SyncResult
from dualstore.services.dual_write import DualWriteCoordinator
from dualstore.services.response import build_error, build_success
from dualstore.services.user_sync import UserSyncService

logger = structlog.get_logger(__name__)

router = APIRouter(dependencies=[Depends(deps.require_admin)])


@router.post("/circuits/{backend}/reset")
def reset_circuit(
    backend: str,
    coordinator: DualWriteCoordinator = Depends(deps.get_coordinator),
) -> Dict[str, Any]:
    """Force a backend's breaker back to CLOSED."""
    breaker = coordinator.breakers.get(backend)
    if breaker is None:
        raise HTTPException(status_code=404, detail=f"Unknown backend: {backend}")

    previous = breaker.state.value
    coordinator.registry.reset(breaker.name)
    logger.warning("Circuit manually reset", backend=backend, previous_state=previous)
    return {"backend": backend, "previous_state": previous, "circuit": breaker.snapshot()}


def _sync_envelope(result: SyncResult) -> Dict[str, Any]:
    data = result.model_dump(mode="json", exclude={"write"})
    if result.success:
        return build_success(data, result.write).to_dict()
    envelope = build_error("; ".join(result.errors) or "User sync failed", result.write)
    envelope.data = data
    return envelope.to_dict()


@router.post("/users/{user_id}/sync")
async def sync_user(
    user_id: str,
    create_if_missing: bool = Query(default=True),
    force_update: bool = Query(default=False),
    user_sync: UserSyncService = Depends(deps.get_user_sync),
) -> Dict[str, Any]:
    result = await user_sync.sync_user(user_id, create_if_missing=create_if_missing, force_update=force_update)
    return _sync_envelope(result)


@router.get("/users/{user_id}/sync-status")
async def sync_status(
    user_id: str,
    user_sync: UserSyncService = Depends(deps.get_user_sync),
) -> Dict[str, Any]:
    status = await user_sync.get_sync_status(user_id)
    return build_success(status.model_dump(mode="json")).to_dict()
