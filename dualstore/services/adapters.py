"""
Backend adapter contract.

Each backend (Store A: relational store via SQLModel, Store B: hosted
backend-as-a-service over REST) is wrapped by an adapter exposing the same
three async calls. Adapters make exactly one attempt per call and raise
BackendWriteError on failure; retries belong to the adapter's transport, not
to the coordinator.
"""

from typing import Any, Dict, Optional, Protocol, runtime_checkable

from dualstore.schemas import WriteOutcome, WriteRecord

STORE_A = "storeA"
STORE_B = "storeB"

BACKENDS = (STORE_A, STORE_B)


@runtime_checkable
class BackendAdapter(Protocol):
    name: str

    async def write(self, record: WriteRecord) -> WriteOutcome: ...

    async def read(self, collection: str, record_id: str) -> Optional[Dict[str, Any]]: ...

    async def health_check(self) -> bool: ...
