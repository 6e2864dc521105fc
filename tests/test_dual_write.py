"""
Tests for the dual write coordinator.

Covers the consistency classification (full / partial / failed), breaker
gating, deadlines, Store B disabled mode, identity writes, reads with
fallback and consistency checks.
"""

import time
from unittest.mock import patch

import pytest

from dualstore.core.circuit_breaker import BreakerStateStore, CircuitBreakerRegistry, CircuitState
from dualstore.core.errors import SchemaViolation
from dualstore.schemas import (
    BackendOutcome,
    Consistency,
    DegradationMode,
    StorageStatus,
    UserRole,
    WriteRecord,
)
from dualstore.services.adapters import STORE_A, STORE_B
from dualstore.services.dual_write import DualWriteCoordinator, classify_consistency
from dualstore.services.response import (
    ALL_BACKENDS_FAILED_WARNING,
    STORE_B_FAILURE_WARNING,
    build_from_result,
)
from dualstore.services.store_a import USER_COLLECTION


@pytest.fixture
def record() -> WriteRecord:
    return WriteRecord(collection="stories", payload={"title": "Dragon", "chapters": 3}, user_id="u-1")


def open_store_b(coordinator: DualWriteCoordinator) -> None:
    breaker = coordinator.breakers[STORE_B]
    for _ in range(breaker.failure_threshold):
        breaker.on_failure()
    assert breaker.state == CircuitState.OPEN


class TestScenarios:
    @pytest.mark.asyncio
    async def test_both_backends_succeed(self, coordinator, fake_store_a, fake_store_b, record):
        fake_store_a.delay = 0.05
        fake_store_b.delay = 0.08

        result = await coordinator.write(record)
        envelope = build_from_result(result)

        assert result.consistency == Consistency.FULL
        assert result.success is True
        assert result.degraded is False
        assert result.error is None
        assert result.details.store_a.attempted and result.details.store_a.success
        assert result.details.store_b.attempted and result.details.store_b.success
        assert result.details.store_b.timing_ms is not None
        assert envelope.warnings == []
        assert envelope.degraded is False
        assert result.data["title"] == "Dragon"

    @pytest.mark.asyncio
    async def test_store_b_circuit_open(self, coordinator, fake_store_b, record):
        open_store_b(coordinator)

        result = await coordinator.write(record)
        envelope = build_from_result(result)

        assert result.details.store_b.attempted is False
        assert result.details.store_b.error == "storeB circuit open"
        assert result.details.store_b.timing_ms is None
        assert result.consistency == Consistency.PARTIAL
        assert result.success is True
        assert result.degraded is True
        assert result.degradation_mode == DegradationMode.STORE_B_CIRCUIT_OPEN
        assert envelope.warnings == [STORE_B_FAILURE_WARNING]
        assert envelope.storage_status.store_b == StorageStatus.FAILED
        assert fake_store_b.calls == []

    @pytest.mark.asyncio
    async def test_both_backends_fail(self, coordinator, fake_store_a, fake_store_b, record):
        fake_store_a.fail = True
        fake_store_b.fail = True

        result = await coordinator.write(record)
        envelope = build_from_result(result)

        assert result.consistency == Consistency.FAILED
        assert result.success is False
        assert result.error == "storeA: storeA unavailable; storeB: storeB unavailable"
        assert envelope.success is False
        assert envelope.storage_status.store_a == StorageStatus.FAILED
        assert envelope.storage_status.store_b == StorageStatus.FAILED
        assert envelope.warnings[0] == ALL_BACKENDS_FAILED_WARNING

    @pytest.mark.asyncio
    async def test_malformed_identity_calls_no_adapter(self, coordinator, fake_store_a, fake_store_b, auth_identity):
        auth_identity["id"] = "not-a-uuid"

        with pytest.raises(SchemaViolation):
            await coordinator.write_identity(auth_identity)

        assert fake_store_a.calls == []
        assert fake_store_b.calls == []

    @pytest.mark.asyncio
    async def test_breaker_opens_after_threshold_and_skips_backend(self, fake_store_a, fake_store_b, clock, record):
        registry = CircuitBreakerRegistry(failure_threshold=5, open_timeout=60.0, clock=clock)
        coordinator = DualWriteCoordinator(fake_store_a, fake_store_b, registry, timeout=1.0)
        fake_store_b.fail = True

        for _ in range(5):
            result = await coordinator.write(record)
            assert result.details.store_b.attempted is True

        assert coordinator.breakers[STORE_B].state == CircuitState.OPEN

        result = await coordinator.write(record)

        assert result.details.store_b.attempted is False
        assert len([c for c in fake_store_b.calls if c[0] == "write"]) == 5

    @pytest.mark.asyncio
    async def test_breaker_probe_after_timeout_closes_on_success(self, fake_store_a, fake_store_b, clock, record):
        registry = CircuitBreakerRegistry(failure_threshold=1, open_timeout=60.0, clock=clock)
        coordinator = DualWriteCoordinator(fake_store_a, fake_store_b, registry, timeout=1.0)
        fake_store_b.fail = True
        await coordinator.write(record)
        assert coordinator.degradation_mode() == DegradationMode.STORE_B_CIRCUIT_OPEN

        fake_store_b.fail = False
        clock.advance(60)
        result = await coordinator.write(record)

        assert result.details.store_b.attempted is True
        assert result.consistency == Consistency.FULL
        assert coordinator.breakers[STORE_B].state == CircuitState.CLOSED
        assert coordinator.degradation_mode() == DegradationMode.NONE


class TestDeadlines:
    @pytest.mark.asyncio
    async def test_slow_backend_times_out(self, coordinator, fake_store_b, record):
        fake_store_b.delay = 0.5

        result = await coordinator.write(record, timeout=0.05)

        assert result.details.store_b.attempted is True
        assert result.details.store_b.success is False
        assert result.details.store_b.error == "timeout"
        assert result.consistency == Consistency.PARTIAL
        assert coordinator.breakers[STORE_B].failure_count == 1

    @pytest.mark.asyncio
    async def test_backends_are_written_concurrently(self, coordinator, fake_store_a, fake_store_b, record):
        fake_store_a.delay = 0.2
        fake_store_b.delay = 0.2

        result = await coordinator.write(record)

        assert result.consistency == Consistency.FULL
        assert result.total_time_ms < 390

    @pytest.mark.asyncio
    async def test_slow_state_store_does_not_stall_the_write(self, test_engine, fake_store_a, fake_store_b, clock, record):
        class SlowStore(BreakerStateStore):
            def _save(self, *args):
                time.sleep(1.0)
                super()._save(*args)

        store = SlowStore(test_engine)
        registry = CircuitBreakerRegistry(failure_threshold=1, open_timeout=60.0, store=store, clock=clock)
        coordinator = DualWriteCoordinator(fake_store_a, fake_store_b, registry, timeout=0.2)
        fake_store_a.fail = True
        fake_store_b.delay = 0.05

        started = time.perf_counter()
        result = await coordinator.write(record)
        elapsed = time.perf_counter() - started

        assert elapsed < 0.5
        assert result.consistency == Consistency.PARTIAL
        assert result.details.store_b.timing_ms < 500
        assert coordinator.breakers[STORE_A].state == CircuitState.OPEN
        store.close()


class TestErrorHandling:
    @pytest.mark.asyncio
    async def test_unexpected_adapter_error_is_captured(self, coordinator, fake_store_a, record):
        fake_store_a.fail = True
        fake_store_a.error = RuntimeError("kaboom")

        with patch("dualstore.services.dual_write.capture_exception") as mock_capture:
            result = await coordinator.write(record)

        mock_capture.assert_called_once()
        assert result.details.store_a.error == "kaboom"
        assert result.consistency == Consistency.PARTIAL

    @pytest.mark.asyncio
    async def test_expected_adapter_error_is_not_captured(self, coordinator, fake_store_a, record):
        fake_store_a.fail = True

        with patch("dualstore.services.dual_write.capture_exception") as mock_capture:
            await coordinator.write(record)

        mock_capture.assert_not_called()


class TestDegradationMode:
    @pytest.mark.asyncio
    async def test_store_b_disabled(self, fake_store_a, fake_store_b, registry, record):
        coordinator = DualWriteCoordinator(fake_store_a, fake_store_b, registry, store_b_enabled=False)

        result = await coordinator.write(record)

        assert result.degradation_mode == DegradationMode.STORE_B_DISABLED
        assert result.details.store_b.attempted is False
        assert result.details.store_b.error == "Store B disabled"
        assert result.consistency == Consistency.PARTIAL
        assert fake_store_b.calls == []

    def test_store_a_open_takes_precedence(self, coordinator):
        open_store_b(coordinator)
        breaker_a = coordinator.breakers[STORE_A]
        for _ in range(breaker_a.failure_threshold):
            breaker_a.on_failure()

        assert coordinator.degradation_mode() == DegradationMode.STORE_A_CIRCUIT_OPEN

    def test_breaker_states(self, coordinator):
        open_store_b(coordinator)

        assert coordinator.breaker_states() == {STORE_A: "closed", STORE_B: "open"}


class TestWriteIdentity:
    @pytest.mark.asyncio
    async def test_writes_profile_to_both_stores(self, coordinator, fake_store_a, fake_store_b, auth_identity, user_id):
        result = await coordinator.write_identity(auth_identity)

        assert result.consistency == Consistency.FULL
        store_a_row = fake_store_a.records[(USER_COLLECTION, user_id)]
        store_b_row = fake_store_b.records[("profiles", user_id)]
        assert store_a_row["username"] == "ada"
        assert store_a_row["role"] == "user"
        assert store_b_row["email"] == "ada@example.com"
        assert store_b_row["full_name"] == "Ada Lovelace"
        assert "role" not in store_b_row

    @pytest.mark.asyncio
    async def test_role_override(self, coordinator, fake_store_a, auth_identity, user_id):
        await coordinator.write_identity(auth_identity, role=UserRole.ADMIN)

        assert fake_store_a.records[(USER_COLLECTION, user_id)]["role"] == "admin"


class TestRead:
    @pytest.mark.asyncio
    async def test_reads_from_store_a_first(self, coordinator, fake_store_a, fake_store_b, record):
        await coordinator.write(record)

        result = await coordinator.read("stories", record.id)

        assert result.source == STORE_A
        assert result.data["title"] == "Dragon"
        assert not any(c[0] == "read" for c in fake_store_b.calls)

    @pytest.mark.asyncio
    async def test_falls_back_to_store_b(self, coordinator, fake_store_a, record):
        await coordinator.write(record)
        fake_store_a.fail = True

        result = await coordinator.read("stories", record.id)

        assert result.source == STORE_B
        assert result.errors == ["storeA: storeA unavailable"]

    @pytest.mark.asyncio
    async def test_missing_everywhere(self, coordinator):
        result = await coordinator.read("stories", "nope")

        assert result.data is None
        assert result.source is None
        assert result.errors == []


class TestCheckConsistency:
    @pytest.mark.asyncio
    async def test_consistent_after_full_write(self, coordinator, record):
        await coordinator.write(record)

        report = await coordinator.check_consistency("stories", record.id)

        assert report.consistent is True

    @pytest.mark.asyncio
    async def test_partial_write_is_reported(self, coordinator, fake_store_b, record):
        fake_store_b.fail = True
        await coordinator.write(record)
        fake_store_b.fail = False

        report = await coordinator.check_consistency("stories", record.id)

        assert report.consistent is False
        assert report.differences == ["record present in only one store"]

    @pytest.mark.asyncio
    async def test_unreachable_store(self, coordinator, fake_store_a, record):
        await coordinator.write(record)
        fake_store_a.fail = True

        report = await coordinator.check_consistency("stories", record.id)

        assert report.consistent is False
        assert report.differences == ["storeA read failed: storeA unavailable"]


class TestHealth:
    @pytest.mark.asyncio
    async def test_probes_both_backends(self, coordinator, fake_store_b):
        fake_store_b.healthy = False

        assert await coordinator.health() == {STORE_A: True, STORE_B: False}

    @pytest.mark.asyncio
    async def test_health_ignores_open_breakers(self, coordinator):
        open_store_b(coordinator)

        assert await coordinator.health() == {STORE_A: True, STORE_B: True}


def test_classify_consistency():
    ok = BackendOutcome(attempted=True, success=True)
    failed = BackendOutcome(attempted=True, success=False, error="x")
    skipped = BackendOutcome(attempted=False, error="storeB circuit open")

    assert classify_consistency(ok, ok) == Consistency.FULL
    assert classify_consistency(ok, skipped) == Consistency.PARTIAL
    assert classify_consistency(failed, ok) == Consistency.PARTIAL
    assert classify_consistency(failed, skipped) == Consistency.FAILED
    assert classify_consistency(skipped, skipped) == Consistency.FAILED
