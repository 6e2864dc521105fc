import re
import uuid
from enum import Enum
from typing import Annotated, Any, Dict, List, Optional
from datetime import datetime

from pydantic import AfterValidator, BaseModel, ConfigDict, Field, field_validator

from dualstore.core.config import settings
from dualstore.core.typing import epoch_ms, utc_now

EMAIL_PATTERN = re.compile(r"^[^@\s]+@[^@\s]+\.[^@\s]+$")
UUID_PATTERN = re.compile(r"[0-9a-fA-F]{8}-[0-9a-fA-F]{4}-[0-9a-fA-F]{4}-[0-9a-fA-F]{4}-[0-9a-fA-F]{12}")


def _check_uuid(value: str) -> str:
    # Hyphenated 8-4-4-4-12 only; no braces, urn: prefix or bare hex
    if not isinstance(value, str) or not UUID_PATTERN.fullmatch(value):
        raise ValueError(f"id must be a UUID, got {value!r}")
    return value


def _check_email(value: str) -> str:
    if not EMAIL_PATTERN.match(value):
        raise ValueError(f"malformed email {value!r}")
    return value


UUIDStr = Annotated[str, AfterValidator(_check_uuid)]
EmailStr = Annotated[str, AfterValidator(_check_email)]


class CamelModel(BaseModel):
    """Serializes with camelCase aliases, accepts either spelling on input."""

    model_config = ConfigDict(populate_by_name=True)

    def to_dict(self) -> Dict[str, Any]:
        return self.model_dump(mode="json", by_alias=True, exclude_none=True)


# ============================================
# Identity records
# ============================================


class UserRole(str, Enum):
    ADMIN = "admin"
    USER = "user"
    GUEST = "guest"


class StoreBUser(BaseModel):
    """Auth identity as held by Store B (authoritative for identity)."""

    id: UUIDStr
    email: Optional[EmailStr] = None
    phone: Optional[str] = None
    email_confirmed_at: Optional[datetime] = None
    user_metadata: Dict[str, Any] = Field(default_factory=dict)
    app_metadata: Dict[str, Any] = Field(default_factory=dict)
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None
    last_sign_in_at: Optional[datetime] = None

    model_config = ConfigDict(extra="ignore")

    @field_validator("user_metadata", "app_metadata", mode="before")
    @classmethod
    def _none_to_empty(cls, value: Any) -> Any:
        return {} if value is None else value


class StoreAUser(BaseModel):
    """Domain user as held by Store A; id equals the Store B identity id."""

    id: UUIDStr
    email: Optional[EmailStr] = None
    username: str = Field(min_length=1, max_length=100)
    full_name: Optional[str] = None
    avatar_url: Optional[str] = None
    role: UserRole = UserRole.USER
    is_email_verified: bool = False
    preferences: Dict[str, Any] = Field(default_factory=dict)
    last_sign_in_at: Optional[datetime] = None
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None

    model_config = ConfigDict(extra="ignore", from_attributes=True)


class SyncDirection(str, Enum):
    STORE_B_TO_A = "storeB-to-storeA"
    STORE_A_TO_B = "storeA-to-storeB"


class SyncContractResult(BaseModel):
    is_valid: bool
    violations: List[str] = Field(default_factory=list)
    score: int = Field(ge=0, le=100)


class DataQualityReport(BaseModel):
    score: int = Field(ge=0, le=100)
    issues: List[str] = Field(default_factory=list)
    recommendations: List[str] = Field(default_factory=list)


class ConsistencyReport(BaseModel):
    consistent: bool
    differences: List[str] = Field(default_factory=list)
    recommendations: List[str] = Field(default_factory=list)
    store_a_data: Optional[Dict[str, Any]] = None
    store_b_data: Optional[Dict[str, Any]] = None


# ============================================
# Dual write
# ============================================


class WriteRecord(BaseModel):
    """A logical record to be written to both backends."""

    id: str = Field(default_factory=lambda: str(uuid.uuid4()))
    collection: str = Field(min_length=1)
    payload: Dict[str, Any] = Field(default_factory=dict)
    user_id: Optional[str] = None


class WriteOutcome(BaseModel):
    """What an adapter returns on a successful write."""

    backend: str
    record_id: str
    data: Optional[Dict[str, Any]] = None


class BackendOutcome(CamelModel):
    attempted: bool = False
    success: bool = False
    error: Optional[str] = None
    timing_ms: Optional[int] = Field(default=None, ge=0, alias="timingMs")


class StorageDetails(CamelModel):
    store_a: BackendOutcome = Field(default_factory=BackendOutcome, alias="storeA")
    store_b: BackendOutcome = Field(default_factory=BackendOutcome, alias="storeB")


class Consistency(str, Enum):
    FULL = "full"
    PARTIAL = "partial"
    FAILED = "failed"


class DegradationMode(str, Enum):
    NONE = "none"
    STORE_B_DISABLED = "storeB-disabled"
    STORE_A_CIRCUIT_OPEN = "storeA-circuit-open"
    STORE_B_CIRCUIT_OPEN = "storeB-circuit-open"


class DualStorageResult(CamelModel):
    id: str
    success: bool
    error: Optional[str] = None
    details: StorageDetails = Field(default_factory=StorageDetails)
    consistency: Consistency
    degradation_mode: DegradationMode = Field(default=DegradationMode.NONE, alias="degradationMode")
    data: Optional[Dict[str, Any]] = None
    timestamp: datetime = Field(default_factory=utc_now)
    total_time_ms: int = Field(default=0, ge=0, alias="totalTimeMs")

    @property
    def degraded(self) -> bool:
        return self.consistency != Consistency.FULL


class ReadResult(BaseModel):
    data: Optional[Dict[str, Any]] = None
    source: Optional[str] = None  # "storeA", "storeB" or None when not found
    errors: List[str] = Field(default_factory=list)


# ============================================
# Response envelope
# ============================================


class StorageStatus(str, Enum):
    HEALTHY = "healthy"
    DEGRADED = "degraded"
    FAILED = "failed"


class StorageStatusMap(CamelModel):
    store_a: StorageStatus = Field(default=StorageStatus.HEALTHY, alias="storeA")
    store_b: StorageStatus = Field(default=StorageStatus.HEALTHY, alias="storeB")


class ResponseEnvelope(CamelModel):
    success: bool
    data: Any = None
    degraded: bool = False
    warnings: List[str] = Field(default_factory=list)
    storage_status: StorageStatusMap = Field(default_factory=StorageStatusMap, alias="storageStatus")
    timestamp: int = Field(default_factory=epoch_ms)
    version: str = Field(default_factory=lambda: settings.RESPONSE_VERSION)

    def to_dict(self) -> Dict[str, Any]:
        # data may legitimately be None; keep every envelope key present
        return self.model_dump(mode="json", by_alias=True)


# ============================================
# User sync
# ============================================


class SyncOperation(str, Enum):
    CREATE = "create"
    UPDATE = "update"
    SKIP = "skip"
    ERROR = "error"


class SyncResult(BaseModel):
    success: bool
    operation: SyncOperation
    user_id: str
    changes: Optional[Dict[str, Any]] = None
    errors: List[str] = Field(default_factory=list)
    quality_score: int = Field(default=0, ge=0, le=100)
    recommendations: List[str] = Field(default_factory=list)
    write: Optional[DualStorageResult] = None
    execution_time_ms: int = Field(default=0, ge=0)
    timestamp: datetime = Field(default_factory=utc_now)


class SyncHealth(str, Enum):
    HEALTHY = "healthy"
    MISSING = "missing"
    CONFLICT = "conflict"
    OUTDATED = "outdated"


class UserSyncStatus(BaseModel):
    user_id: str
    store_a_exists: bool
    store_b_exists: bool
    is_in_sync: bool
    sync_health: SyncHealth
    sync_errors: List[str] = Field(default_factory=list)
    data_quality_score: int = Field(default=0, ge=0, le=100)
    recommendations: List[str] = Field(default_factory=list)


class BatchSyncSummary(BaseModel):
    total_processed: int
    successful: int
    failed: int
    results: List[SyncResult] = Field(default_factory=list)
    summary: str
