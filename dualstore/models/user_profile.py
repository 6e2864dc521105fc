from typing import Any, Dict, Optional
from sqlalchemy import Column, JSON
from sqlmodel import Field, SQLModel
from datetime import datetime

from dualstore.core.typing import utc_now


class UserProfile(SQLModel, table=True):
    """Store A representation of a user; id mirrors the Store B auth identity."""

    __tablename__ = "user_profile"

    id: str = Field(primary_key=True, max_length=36)  # UUID from Store B auth
    email: Optional[str] = Field(default=None, nullable=True, index=True)
    username: str = Field(index=True)
    full_name: Optional[str] = Field(default=None, nullable=True)
    avatar_url: Optional[str] = Field(default=None, nullable=True)
    role: str = Field(default="user")  # "admin", "user", "guest"
    is_email_verified: bool = Field(default=False)
    preferences: Dict[str, Any] = Field(default_factory=dict, sa_column=Column(JSON))

    last_sign_in_at: Optional[datetime] = Field(default=None, nullable=True)
    created_at: datetime = Field(default_factory=utc_now)
    updated_at: datetime = Field(default_factory=utc_now)
