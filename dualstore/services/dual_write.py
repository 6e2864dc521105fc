"""
Dual write coordinator.

Writes one logical record to Store A and Store B, each guarded by its own
circuit breaker, and classifies the combined outcome:

- full:    both backends attempted and succeeded
- partial: exactly one backend succeeded (success=True, degraded)
- failed:  neither succeeded or neither was attempted (success=False)

Both adapter calls run concurrently under the caller's deadline. Each
backend gets exactly one attempt per call; a backend whose breaker is OPEN
is skipped without an attempt.

Usage:
    coordinator = DualWriteCoordinator(store_a, store_b, registry)
    result = await coordinator.write(WriteRecord(collection="stories", payload={...}))
    envelope = build_success(result.data, result) if result.success else build_error("save failed", result)
"""

import asyncio
import time
from typing import Any, Awaitable, Callable, Dict, Optional, Tuple, TypeVar

import structlog

from dualstore.core.circuit_breaker import CircuitBreaker, CircuitBreakerRegistry
from dualstore.core.config import settings
from dualstore.core.context import bind_write_context
from dualstore.core.errors import (
    BackendUnavailable,
    DualStoreError,
    WriteTimeout,
    capture_exception,
    capture_message,
)
from dualstore.schemas import (
    BackendOutcome,
    Consistency,
    ConsistencyReport,
    DegradationMode,
    DualStorageResult,
    ReadResult,
    StorageDetails,
    StoreBUser,
    UserRole,
    WriteOutcome,
    WriteRecord,
)
from dualstore.services.adapters import BACKENDS, STORE_A, STORE_B, BackendAdapter
from dualstore.services.consistency import ConsistencyScorer
from dualstore.services.identity_contract import transform_a_to_b, transform_b_to_a
from dualstore.services.store_a import USER_COLLECTION

logger = structlog.get_logger(__name__)

T = TypeVar("T")

PROFILE_COLLECTION = "profiles"
STORE_B_DISABLED_ERROR = "Store B disabled"


def classify_consistency(store_a: BackendOutcome, store_b: BackendOutcome) -> Consistency:
    succeeded = sum(1 for outcome in (store_a, store_b) if outcome.attempted and outcome.success)
    if succeeded == 2:
        return Consistency.FULL
    if succeeded == 1:
        return Consistency.PARTIAL
    return Consistency.FAILED


class DualWriteCoordinator:
    def __init__(
        self,
        store_a: BackendAdapter,
        store_b: BackendAdapter,
        registry: CircuitBreakerRegistry,
        service: str = "default",
        store_b_enabled: bool = True,
        timeout: Optional[float] = None,
        scorer: Optional[ConsistencyScorer] = None,
        profile_collection: str = PROFILE_COLLECTION,
    ):
        self.adapters: Dict[str, BackendAdapter] = {STORE_A: store_a, STORE_B: store_b}
        self.registry = registry
        self.breakers: Dict[str, CircuitBreaker] = {name: registry.get(name, service) for name in BACKENDS}
        self.store_b_enabled = store_b_enabled
        self.timeout = timeout if timeout is not None else settings.WRITE_TIMEOUT_SECONDS
        self.scorer = scorer or ConsistencyScorer()
        self.profile_collection = profile_collection

    def degradation_mode(self) -> DegradationMode:
        """Standing health of the backends, independent of any single write."""
        if not self.store_b_enabled:
            return DegradationMode.STORE_B_DISABLED
        if self.breakers[STORE_A].is_open:
            return DegradationMode.STORE_A_CIRCUIT_OPEN
        if self.breakers[STORE_B].is_open:
            return DegradationMode.STORE_B_CIRCUIT_OPEN
        return DegradationMode.NONE

    def breaker_states(self) -> Dict[str, str]:
        return {name: breaker.state.value for name, breaker in self.breakers.items()}

    def is_enabled(self, backend: str) -> bool:
        return backend != STORE_B or self.store_b_enabled

    async def _call(
        self,
        backend: str,
        operation: Callable[[BackendAdapter], Awaitable[T]],
        timeout: float,
    ) -> Tuple[BackendOutcome, Optional[T]]:
        """One guarded attempt against one backend."""
        if not self.is_enabled(backend):
            return BackendOutcome(attempted=False, error=STORE_B_DISABLED_ERROR), None

        breaker = self.breakers[backend]
        if not breaker.can_execute():
            skipped = BackendUnavailable(backend)
            logger.info("Skipping backend, circuit open", backend=backend)
            return BackendOutcome(attempted=False, error=str(skipped)), None

        started = time.perf_counter()
        error: Optional[BaseException] = None
        value: Optional[T] = None
        try:
            value = await asyncio.wait_for(operation(self.adapters[backend]), timeout=timeout)
        except asyncio.TimeoutError:
            error = WriteTimeout(backend)
        except DualStoreError as e:
            error = e
        except Exception as e:
            capture_exception(e, context={"backend": backend})
            error = e
        timing_ms = int((time.perf_counter() - started) * 1000)

        if error is None:
            breaker.on_success()
            return BackendOutcome(attempted=True, success=True, timing_ms=timing_ms), value

        breaker.on_failure()
        logger.warning("Backend call failed", backend=backend, error=str(error), timing_ms=timing_ms)
        return BackendOutcome(attempted=True, success=False, error=str(error) or type(error).__name__, timing_ms=timing_ms), None

    async def _write(self, records: Dict[str, WriteRecord], timeout: Optional[float]) -> DualStorageResult:
        deadline = self.timeout if timeout is None else timeout
        record_id = records[STORE_A].id
        started = time.perf_counter()
        mode = self.degradation_mode()

        with bind_write_context(record_id):
            (outcome_a, written_a), (outcome_b, written_b) = await asyncio.gather(
                self._call(STORE_A, lambda adapter: adapter.write(records[STORE_A]), deadline),
                self._call(STORE_B, lambda adapter: adapter.write(records[STORE_B]), deadline),
            )

            consistency = classify_consistency(outcome_a, outcome_b)
            error = None
            if consistency == Consistency.FAILED:
                error = "; ".join(
                    f"{name}: {outcome.error or 'not attempted'}"
                    for name, outcome in ((STORE_A, outcome_a), (STORE_B, outcome_b))
                )

            data = _written_data(written_a) or _written_data(written_b)
            result = DualStorageResult(
                id=record_id,
                success=consistency != Consistency.FAILED,
                error=error,
                details=StorageDetails(store_a=outcome_a, store_b=outcome_b),
                consistency=consistency,
                degradation_mode=mode,
                data=data,
                total_time_ms=int((time.perf_counter() - started) * 1000),
            )

            log_context = {
                "collection": records[STORE_A].collection,
                "consistency": consistency.value,
                "degradation_mode": mode.value,
                "total_time_ms": result.total_time_ms,
            }
            if consistency == Consistency.FULL:
                logger.info("Dual write completed", **log_context)
            elif consistency == Consistency.PARTIAL:
                logger.warning("Dual write degraded", **log_context)
            else:
                capture_message("Dual write failed", level="error", context={"error": error, **log_context})

        return result

    async def write(self, record: WriteRecord, timeout: Optional[float] = None) -> DualStorageResult:
        """Write the same record to both backends."""
        return await self._write({STORE_A: record, STORE_B: record}, timeout)

    async def write_identity(
        self,
        identity: Any,
        timeout: Optional[float] = None,
        role: Optional[UserRole] = None,
    ) -> DualStorageResult:
        """
        Sync a Store B auth identity into both stores' profile tables.

        role overrides the role derived from the identity; Store A owns roles,
        so callers pass the existing one when the identity carries none.

        Raises:
            SchemaViolation: the identity is malformed; no backend is called.
        """
        store_a_user = transform_b_to_a(identity)
        if role is not None:
            store_a_user = store_a_user.model_copy(update={"role": role})
        store_b_profile = transform_a_to_b(store_a_user)

        records = {
            STORE_A: WriteRecord(
                id=store_a_user.id,
                collection=USER_COLLECTION,
                payload=store_a_user.model_dump(mode="json"),
            ),
            STORE_B: WriteRecord(
                id=store_a_user.id,
                collection=self.profile_collection,
                payload=profile_row(store_b_profile),
            ),
        }
        return await self._write(records, timeout)

    async def read(self, collection: str, record_id: str, timeout: Optional[float] = None) -> ReadResult:
        """Read from Store A first, falling back to Store B."""
        deadline = self.timeout if timeout is None else timeout
        errors = []
        for backend in BACKENDS:
            outcome, data = await self._call(backend, lambda adapter: adapter.read(collection, record_id), deadline)
            if outcome.success and data is not None:
                if errors:
                    logger.info("Read served by fallback backend", backend=backend, record_id=record_id)
                return ReadResult(data=data, source=backend, errors=errors)
            if not outcome.success:
                errors.append(f"{backend}: {outcome.error}")
        return ReadResult(errors=errors)

    async def check_consistency(
        self, collection: str, record_id: str, timeout: Optional[float] = None
    ) -> ConsistencyReport:
        """Read one record from both stores and diff the two copies."""
        deadline = self.timeout if timeout is None else timeout
        (outcome_a, data_a), (outcome_b, data_b) = await asyncio.gather(
            self._call(STORE_A, lambda adapter: adapter.read(collection, record_id), deadline),
            self._call(STORE_B, lambda adapter: adapter.read(collection, record_id), deadline),
        )

        failed = [
            f"{name} read failed: {outcome.error}"
            for name, outcome in ((STORE_A, outcome_a), (STORE_B, outcome_b))
            if not outcome.success
        ]
        if failed:
            return ConsistencyReport(
                consistent=False,
                differences=failed,
                recommendations=["retry the check once both stores are reachable"],
                store_a_data=data_a,
                store_b_data=data_b,
            )
        return self.scorer.compare_records(data_a, data_b)

    async def health(self) -> Dict[str, bool]:
        """Run both adapters' health checks concurrently (bypasses the breakers)."""

        async def probe(backend: str) -> bool:
            if not self.is_enabled(backend):
                return False
            try:
                return await asyncio.wait_for(self.adapters[backend].health_check(), timeout=self.timeout)
            except asyncio.TimeoutError:
                logger.warning("Health check timed out", backend=backend)
                return False

        results = await asyncio.gather(*(probe(backend) for backend in BACKENDS))
        return dict(zip(BACKENDS, results))


def _written_data(outcome: Optional[WriteOutcome]) -> Optional[Dict[str, Any]]:
    return outcome.data if outcome else None


def profile_row(user: StoreBUser) -> Dict[str, Any]:
    """Flatten a Store B identity into the columns of its profile table."""
    dumped = user.model_dump(mode="json", exclude={"id", "user_metadata", "app_metadata", "phone"})
    return {**user.user_metadata, **{k: v for k, v in dumped.items() if v is not None}}
