"""
Identity contract between Store B auth identities and Store A users.

Store B is authoritative for identity; the Store A user is derived from it on
first sync and refreshed on every later login/update. Both shapes are
validated here, at the boundary, so the transforms below can rely on typed
fields.

Usage:
    store_a_user = transform_b_to_a(raw_auth_user)      # raises SchemaViolation
    partial = transform_a_to_b(store_a_user)
    result = validate_sync_contract(SyncDirection.STORE_B_TO_A, raw_auth_user, store_a_user)
    if not result.is_valid:
        logger.warning("sync contract violated", violations=result.violations)
"""

from typing import Any, Dict, List, Optional, Tuple, Type, TypeVar, Union

import structlog
from pydantic import BaseModel, ValidationError

from dualstore.core.errors import SchemaViolation
from dualstore.core.typing import utc_now
from dualstore.schemas import (
    StoreAUser,
    StoreBUser,
    SyncContractResult,
    SyncDirection,
    UserRole,
)

logger = structlog.get_logger(__name__)

__all__ = [
    "transform_b_to_a",
    "transform_a_to_b",
    "validate_sync_contract",
    "parse_store_a_user",
    "parse_store_b_user",
    "derive_username",
    "derive_role",
    "ID_MISMATCH_PENALTY",
    "EMAIL_MISMATCH_PENALTY",
    "ROLE_MISMATCH_PENALTY",
]

ID_MISMATCH_PENALTY = 30
EMAIL_MISMATCH_PENALTY = 20
ROLE_MISMATCH_PENALTY = 15

M = TypeVar("M", bound=BaseModel)

StoreBInput = Union[StoreBUser, Dict[str, Any]]
StoreAInput = Union[StoreAUser, Dict[str, Any], Any]


def _format_errors(exc: ValidationError) -> List[str]:
    return [f"{'.'.join(str(p) for p in err['loc']) or 'record'}: {err['msg']}" for err in exc.errors()]


def _parse(model: Type[M], value: Any, label: str) -> M:
    if isinstance(value, model):
        return value
    try:
        if isinstance(value, dict):
            return model.model_validate(value)
        # ORM rows (UserProfile) and other attribute carriers
        return model.model_validate(value, from_attributes=True)
    except ValidationError as e:
        errors = _format_errors(e)
        raise SchemaViolation(f"{label} failed schema validation: {'; '.join(errors)}", errors) from e


def parse_store_b_user(value: StoreBInput) -> StoreBUser:
    return _parse(StoreBUser, value, "Store B identity")


def parse_store_a_user(value: StoreAInput) -> StoreAUser:
    return _parse(StoreAUser, value, "Store A user")


def _metadata_value(metadata: Dict[str, Any], *keys: str) -> Optional[Any]:
    for key in keys:
        value = metadata.get(key)
        if value not in (None, ""):
            return value
    return None


def derive_username(user: StoreBUser) -> str:
    """metadata.username, else the email local part, else user_<first 8 of id>."""
    username = _metadata_value(user.user_metadata, "username", "user_name")
    if username:
        return str(username)
    if user.email:
        return user.email.split("@", 1)[0]
    return f"user_{user.id[:8]}"


def derive_role(user: StoreBUser) -> Optional[UserRole]:
    """
    Role advertised by Store B metadata, or None when it carries none.

    Unknown role strings are treated as absent.
    """
    raw = _metadata_value(user.user_metadata, "role", "appRole") or _metadata_value(user.app_metadata, "role")
    if raw is None:
        return None
    try:
        return UserRole(str(raw).lower())
    except ValueError:
        logger.info("Ignoring unknown role in identity metadata", user_id=user.id, role=raw)
        return None


def transform_b_to_a(store_b: StoreBInput) -> StoreAUser:
    """
    Convert a Store B auth identity into the Store A user shape.

    Raises:
        SchemaViolation: id is not a UUID, email is malformed, or the derived
            Store A record does not satisfy its own schema.
    """
    user = parse_store_b_user(store_b)
    metadata = user.user_metadata

    preferences = metadata.get("preferences")
    candidate = {
        "id": user.id,
        "email": user.email,
        "username": derive_username(user),
        "full_name": _metadata_value(metadata, "full_name", "fullName", "name"),
        "avatar_url": _metadata_value(metadata, "avatar_url", "avatarUrl"),
        "role": derive_role(user) or UserRole.USER,
        "is_email_verified": user.email_confirmed_at is not None,
        "preferences": preferences if isinstance(preferences, dict) else {},
        "last_sign_in_at": user.last_sign_in_at,
        "created_at": user.created_at,
        "updated_at": user.updated_at,
    }
    return parse_store_a_user(candidate)


def transform_a_to_b(store_a: StoreAInput) -> StoreBUser:
    """
    Convert a Store A user into the subset of fields Store B stores.

    Role is not carried over: in Store B it is advisory only and assigned
    from Store A, so A -> B -> A yields the default role.
    """
    user = parse_store_a_user(store_a)

    metadata: Dict[str, Any] = {"username": user.username}
    if user.full_name:
        metadata["full_name"] = user.full_name
    if user.avatar_url:
        metadata["avatar_url"] = user.avatar_url
    if user.preferences:
        metadata["preferences"] = dict(user.preferences)

    confirmed_at = None
    if user.is_email_verified:
        confirmed_at = user.updated_at or user.created_at or utc_now()

    return StoreBUser(
        id=user.id,
        email=user.email,
        email_confirmed_at=confirmed_at,
        user_metadata=metadata,
        created_at=user.created_at,
        updated_at=user.updated_at,
        last_sign_in_at=user.last_sign_in_at,
    )


def _identity_fields(user: Union[StoreAUser, StoreBUser]) -> Tuple[str, Optional[str], Optional[UserRole]]:
    if isinstance(user, StoreBUser):
        return user.id, user.email, derive_role(user)
    return user.id, user.email, user.role


def validate_sync_contract(
    direction: Union[SyncDirection, str],
    source: Any,
    target: Any,
) -> SyncContractResult:
    """
    Score how well two representations of the same identity agree.

    Penalties: id mismatch -30, email mismatch -20, role mismatch -15 (only
    when both sides carry a role). Any schema failure yields score 0 with a
    single violation describing it.
    """
    try:
        direction = SyncDirection(direction)
        if direction == SyncDirection.STORE_B_TO_A:
            src: Union[StoreAUser, StoreBUser] = parse_store_b_user(source)
            dst: Union[StoreAUser, StoreBUser] = parse_store_a_user(target)
        else:
            src = parse_store_a_user(source)
            dst = parse_store_b_user(target)
    except (SchemaViolation, ValueError) as e:
        return SyncContractResult(is_valid=False, violations=[f"schema error: {e}"], score=0)

    src_id, src_email, src_role = _identity_fields(src)
    dst_id, dst_email, dst_role = _identity_fields(dst)

    score = 100
    violations: List[str] = []

    if src_id != dst_id:
        score -= ID_MISMATCH_PENALTY
        violations.append(f"id mismatch: {src_id} != {dst_id}")

    if (src_email or None) != (dst_email or None):
        score -= EMAIL_MISMATCH_PENALTY
        violations.append(f"email mismatch: {src_email} != {dst_email}")

    if src_role is not None and dst_role is not None and src_role != dst_role:
        score -= ROLE_MISMATCH_PENALTY
        violations.append(f"role mismatch: {src_role.value} != {dst_role.value}")

    score = max(0, score)
    return SyncContractResult(is_valid=not violations, violations=violations, score=score)
