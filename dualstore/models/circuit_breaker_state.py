"""
Circuit breaker state persistence model.

Stores breaker states in Store A so a restart does not immediately
hammer a backend that was OPEN before the deploy.
"""

from typing import Optional
from sqlmodel import Field, SQLModel
from datetime import datetime

from dualstore.core.typing import utc_now


class CircuitBreakerState(SQLModel, table=True):
    """Persisted circuit breaker state."""

    __tablename__ = "circuit_breaker_state"

    id: Optional[int] = Field(default=None, primary_key=True)
    name: str = Field(unique=True, index=True)  # "{backend}:{service}", e.g. "storeB:planning"
    state: str = Field(default="closed")  # "closed", "open", "half_open"
    failure_count: int = Field(default=0)
    last_failure_at: Optional[datetime] = Field(default=None)
    updated_at: datetime = Field(default_factory=utc_now)
