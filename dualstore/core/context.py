"""
Request and write context for log correlation.

Uses contextvars so the ids follow a logical write across the two
concurrent backend calls.

Usage:
    set_request_id(generate_request_id())
    with bind_write_context(record.id):
        ...  # every structlog event carries request_id and write_id
"""

from contextlib import contextmanager
from contextvars import ContextVar
from typing import Iterator, Optional
import uuid

import structlog

__all__ = [
    "set_request_id",
    "get_request_id",
    "generate_request_id",
    "set_user_id",
    "get_user_id",
    "get_write_id",
    "bind_write_context",
    "clear_context",
    "get_context_dict",
]

_request_id: ContextVar[Optional[str]] = ContextVar("request_id", default=None)
_user_id: ContextVar[Optional[str]] = ContextVar("user_id", default=None)
_write_id: ContextVar[Optional[str]] = ContextVar("write_id", default=None)


def generate_request_id() -> str:
    """
    Generate a new request ID.

    Format: req_{16 hex chars}
    """
    return f"req_{uuid.uuid4().hex[:16]}"


def set_request_id(request_id: str) -> None:
    _request_id.set(request_id)


def get_request_id() -> Optional[str]:
    return _request_id.get()


def set_user_id(user_id: str) -> None:
    """Set user ID (Store B identity UUID) for the current context."""
    _user_id.set(user_id)


def get_user_id() -> Optional[str]:
    return _user_id.get()


def get_write_id() -> Optional[str]:
    return _write_id.get()


@contextmanager
def bind_write_context(write_id: str) -> Iterator[None]:
    """Tag every log event inside the block with the logical write id."""
    token = _write_id.set(write_id)
    with structlog.contextvars.bound_contextvars(write_id=write_id):
        try:
            yield
        finally:
            _write_id.reset(token)


def clear_context() -> None:
    """Clear all context variables."""
    _request_id.set(None)
    _user_id.set(None)
    _write_id.set(None)


def get_context_dict() -> dict:
    """All context variables as a dict, for enriching error reports."""
    return {
        "request_id": get_request_id(),
        "user_id": get_user_id(),
        "write_id": get_write_id(),
    }
