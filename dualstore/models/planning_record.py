from typing import Any, Dict, Optional
from sqlalchemy import Column, JSON
from sqlmodel import Field, SQLModel
from datetime import datetime

from dualstore.core.typing import utc_now


class PlanningRecord(SQLModel, table=True):
    """
    Generic Store A row for dual-written content (stories, scenarios,
    prompts, video generations). The collection name mirrors the Store B
    table the same record lands in.
    """

    __tablename__ = "planning_record"

    id: str = Field(primary_key=True, max_length=36)
    collection: str = Field(index=True)  # "stories", "scenarios", "prompts", ...
    user_id: Optional[str] = Field(default=None, nullable=True, index=True)
    payload: Dict[str, Any] = Field(default_factory=dict, sa_column=Column(JSON))
    created_at: datetime = Field(default_factory=utc_now)
    updated_at: datetime = Field(default_factory=utc_now)
