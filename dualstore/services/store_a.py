"""
Store A adapter: relational store through SQLModel.

ORM work is synchronous, so each call runs in a worker thread to keep the
coordinator's event loop free while both backends are written concurrently.

A worker thread cannot be cancelled. When the coordinator's deadline expires
the write is reported as "timeout", but the thread keeps running and its
commit may still land afterwards. Writes are upserts keyed by id, so
re-sending the same record is safe, and `DualWriteCoordinator.check_consistency`
shows what actually reached each store.
"""

import asyncio
from typing import Any, Dict, Optional, Type

import structlog
from sqlalchemy.engine import Engine
from pydantic import ValidationError
from sqlalchemy.exc import SQLAlchemyError
from sqlmodel import Session, SQLModel, text

from dualstore.core.errors import BackendWriteError
from dualstore.core.typing import utc_now
from dualstore.models.planning_record import PlanningRecord
from dualstore.models.user_profile import UserProfile
from dualstore.schemas import StoreAUser, WriteOutcome, WriteRecord
from dualstore.services.adapters import STORE_A

logger = structlog.get_logger(__name__)

USER_COLLECTION = "user_profiles"


class StoreAAdapter:
    name = STORE_A

    def __init__(self, engine: Engine):
        self.engine = engine

    async def write(self, record: WriteRecord) -> WriteOutcome:
        return await asyncio.to_thread(self._write_sync, record)

    async def read(self, collection: str, record_id: str) -> Optional[Dict[str, Any]]:
        return await asyncio.to_thread(self._read_sync, collection, record_id)

    async def health_check(self) -> bool:
        return await asyncio.to_thread(self._ping)

    async def get_user(self, user_id: str) -> Optional[StoreAUser]:
        data = await self.read(USER_COLLECTION, user_id)
        return StoreAUser.model_validate(data) if data else None

    def _model_for(self, collection: str) -> Type[SQLModel]:
        return UserProfile if collection == USER_COLLECTION else PlanningRecord

    def _to_row(self, record: WriteRecord, existing: Optional[SQLModel]) -> SQLModel:
        now = utc_now()
        if record.collection == USER_COLLECTION:
            user = StoreAUser.model_validate({**record.payload, "id": record.id})
            values = user.model_dump(exclude={"created_at", "updated_at"})
            values["role"] = user.role.value
            created_at = getattr(existing, "created_at", None) or user.created_at or now
            return UserProfile(**values, created_at=created_at, updated_at=now)

        created_at = getattr(existing, "created_at", None) or now
        return PlanningRecord(
            id=record.id,
            collection=record.collection,
            user_id=record.user_id,
            payload=record.payload,
            created_at=created_at,
            updated_at=now,
        )

    def _write_sync(self, record: WriteRecord) -> WriteOutcome:
        model = self._model_for(record.collection)
        try:
            with Session(self.engine) as session:
                existing = session.get(model, record.id)
                row = session.merge(self._to_row(record, existing))
                session.commit()
                session.refresh(row)
                data = row.model_dump(mode="json")
        except (SQLAlchemyError, ValidationError) as e:
            logger.warning("Store A write failed", record_id=record.id, collection=record.collection, error=str(e))
            raise BackendWriteError(STORE_A, f"Store A write failed: {e}") from e

        return WriteOutcome(backend=STORE_A, record_id=record.id, data=data)

    def _read_sync(self, collection: str, record_id: str) -> Optional[Dict[str, Any]]:
        model = self._model_for(collection)
        try:
            with Session(self.engine) as session:
                row = session.get(model, record_id)
                if row is None:
                    return None
                if isinstance(row, PlanningRecord) and row.collection != collection:
                    return None
                return row.model_dump(mode="json")
        except SQLAlchemyError as e:
            raise BackendWriteError(STORE_A, f"Store A read failed: {e}") from e

    def _ping(self) -> bool:
        try:
            with Session(self.engine) as session:
                session.execute(text("SELECT 1"))
            return True
        except SQLAlchemyError as e:
            logger.warning("Store A health check failed", error=str(e))
            return False
