"""
Storage health check.

Combines a live probe of each backend with its circuit breaker state.

Per backend:
- healthy:  probe passes, breaker CLOSED with no recorded failures
- degraded: probe passes but the breaker is not CLOSED or has failures
- failed:   probe fails
- disabled: Store B switched off by configuration

Usage:
    from dualstore.core.health_check import StorageHealth

    report = await StorageHealth.check(coordinator)
    # Returns: {"status": "degraded", "degradationMode": "storeB-circuit-open", "backends": {...}}
"""

from typing import Any, Dict

import structlog

from dualstore.core.circuit_breaker import CircuitBreaker, CircuitState
from dualstore.services.dual_write import DualWriteCoordinator

logger = structlog.get_logger(__name__)

__all__ = ["StorageHealth"]

HEALTHY = "healthy"
DEGRADED = "degraded"
FAILED = "failed"
DISABLED = "disabled"


class StorageHealth:
    @staticmethod
    def backend_status(reachable: bool, breaker: CircuitBreaker) -> str:
        if not reachable:
            return FAILED
        if breaker.state != CircuitState.CLOSED or breaker.failure_count > 0:
            return DEGRADED
        return HEALTHY

    @staticmethod
    def overall_status(statuses: Dict[str, str]) -> str:
        values = set(statuses.values())
        if values == {HEALTHY}:
            return HEALTHY
        if values <= {FAILED, DISABLED}:
            return FAILED
        return DEGRADED

    @staticmethod
    async def check(coordinator: DualWriteCoordinator) -> Dict[str, Any]:
        """Probe both backends and fold in breaker state."""
        probes = await coordinator.health()

        backends: Dict[str, Dict[str, Any]] = {}
        statuses: Dict[str, str] = {}
        for backend, reachable in probes.items():
            breaker = coordinator.breakers[backend]
            if coordinator.is_enabled(backend):
                status = StorageHealth.backend_status(reachable, breaker)
            else:
                status = DISABLED
            statuses[backend] = status
            backends[backend] = {
                "status": status,
                "reachable": reachable,
                "circuit": breaker.snapshot(),
            }

        overall = StorageHealth.overall_status(statuses)
        if overall != HEALTHY:
            logger.warning("Storage health degraded", status=overall, backends=statuses)

        return {
            "status": overall,
            "degradationMode": coordinator.degradation_mode().value,
            "backends": backends,
        }
