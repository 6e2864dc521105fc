"""
Tests for the Store A (SQLModel) adapter over in-memory SQLite.
"""

import asyncio
import time
from unittest.mock import patch

import pytest
from sqlalchemy.exc import OperationalError
from sqlmodel import Session

from dualstore.core.errors import BackendWriteError
from dualstore.models.planning_record import PlanningRecord
from dualstore.models.user_profile import UserProfile
from dualstore.schemas import Consistency, UserRole, WriteRecord
from dualstore.services.adapters import STORE_A, BackendAdapter
from dualstore.services.identity_contract import transform_b_to_a
from dualstore.services.dual_write import DualWriteCoordinator
from dualstore.services.store_a import USER_COLLECTION, StoreAAdapter


@pytest.fixture
def adapter(test_engine) -> StoreAAdapter:
    return StoreAAdapter(test_engine)


def test_satisfies_adapter_protocol(adapter):
    assert isinstance(adapter, BackendAdapter)
    assert adapter.name == STORE_A


class TestRecords:
    @pytest.mark.asyncio
    async def test_write_and_read_record(self, adapter, test_session):
        record = WriteRecord(collection="stories", payload={"title": "Dragon"}, user_id="u-1")

        outcome = await adapter.write(record)
        data = await adapter.read("stories", record.id)

        assert outcome.backend == STORE_A
        assert outcome.record_id == record.id
        assert data["payload"] == {"title": "Dragon"}
        assert data["user_id"] == "u-1"
        row = test_session.get(PlanningRecord, record.id)
        assert row.collection == "stories"

    @pytest.mark.asyncio
    async def test_write_is_an_upsert(self, adapter):
        record = WriteRecord(collection="stories", payload={"title": "v1"})
        first = await adapter.write(record)

        second = await adapter.write(WriteRecord(id=record.id, collection="stories", payload={"title": "v2"}))

        assert second.data["payload"] == {"title": "v2"}
        assert second.data["created_at"] == first.data["created_at"]

    @pytest.mark.asyncio
    async def test_read_missing_returns_none(self, adapter):
        assert await adapter.read("stories", "missing") is None

    @pytest.mark.asyncio
    async def test_read_checks_collection(self, adapter):
        record = WriteRecord(collection="stories", payload={})
        await adapter.write(record)

        assert await adapter.read("prompts", record.id) is None

    @pytest.mark.asyncio
    async def test_database_errors_become_backend_write_errors(self, adapter):
        with patch("dualstore.services.store_a.Session", side_effect=OperationalError("stmt", {}, Exception("db down"))):
            with pytest.raises(BackendWriteError) as exc_info:
                await adapter.write(WriteRecord(collection="stories", payload={}))

        assert exc_info.value.backend == STORE_A


class TestUsers:
    @pytest.mark.asyncio
    async def test_write_user_profile(self, adapter, auth_identity, user_id, test_session):
        user = transform_b_to_a(auth_identity)

        await adapter.write(WriteRecord(id=user.id, collection=USER_COLLECTION, payload=user.model_dump(mode="json")))

        row = test_session.get(UserProfile, user_id)
        assert row.username == "ada"
        assert row.role == "user"
        assert row.is_email_verified is True

    @pytest.mark.asyncio
    async def test_get_user(self, adapter, auth_identity, user_id):
        user = transform_b_to_a(auth_identity).model_copy(update={"role": UserRole.ADMIN})
        await adapter.write(WriteRecord(id=user.id, collection=USER_COLLECTION, payload=user.model_dump(mode="json")))

        stored = await adapter.get_user(user_id)

        assert stored.id == user_id
        assert stored.email == "ada@example.com"
        assert stored.role == UserRole.ADMIN

    @pytest.mark.asyncio
    async def test_get_missing_user(self, adapter, user_id):
        assert await adapter.get_user(user_id) is None

    @pytest.mark.asyncio
    async def test_invalid_user_payload_is_rejected(self, adapter, user_id):
        with pytest.raises(BackendWriteError):
            await adapter.write(WriteRecord(id=user_id, collection=USER_COLLECTION, payload={"username": ""}))

        with Session(adapter.engine) as session:
            assert session.get(UserProfile, user_id) is None


class TestHealth:
    @pytest.mark.asyncio
    async def test_health_check(self, adapter):
        assert await adapter.health_check() is True

    @pytest.mark.asyncio
    async def test_health_check_failure(self, adapter):
        with patch("dualstore.services.store_a.Session", side_effect=OperationalError("stmt", {}, Exception("db down"))):
            assert await adapter.health_check() is False


class TestDeadline:
    @pytest.mark.asyncio
    async def test_timed_out_write_may_still_commit(self, adapter, fake_store_b, registry):
        coordinator = DualWriteCoordinator(adapter, fake_store_b, registry, timeout=0.05)
        original = adapter._write_sync

        def slow_write(record):
            time.sleep(0.2)
            return original(record)

        record = WriteRecord(collection="stories", payload={"title": "Dragon"})
        with patch.object(adapter, "_write_sync", side_effect=slow_write):
            result = await coordinator.write(record)

            assert result.details.store_a.error == "timeout"
            assert result.consistency == Consistency.PARTIAL

            await asyncio.sleep(0.4)

        assert (await adapter.read("stories", record.id))["payload"] == {"title": "Dragon"}
        report = await coordinator.check_consistency("stories", record.id)
        assert report.store_a_data is not None
