"""
Consistency scoring for identities and dual-written records.

- score_identity: 0-100 data quality of a single Store B identity
- score_pair: sync contract score between the two representations of a user
- compare_records: field-by-field diff of one record read from both stores
"""

from typing import Any, Dict, Iterable, List, Optional, Union

import structlog

from dualstore.core.errors import SchemaViolation
from dualstore.schemas import (
    ConsistencyReport,
    DataQualityReport,
    StoreBUser,
    SyncContractResult,
    SyncDirection,
)
from dualstore.services.identity_contract import parse_store_b_user, validate_sync_contract

logger = structlog.get_logger(__name__)

# Columns each store manages on its own; never compared
IGNORED_FIELDS = frozenset({"created_at", "updated_at", "collection"})

# (penalty, issue, recommendation)
QUALITY_RULES = {
    "email": (20, "email missing", "collect an email address for account recovery"),
    "email_confirmed": (10, "email not verified", "ask the user to confirm their email"),
    "username": (10, "username missing from metadata", "store an explicit username in user metadata"),
    "full_name": (5, "full name missing", "prompt for a display name during onboarding"),
    "avatar_url": (5, "avatar missing", None),
    "last_sign_in": (10, "user has never signed in", "verify the account is still in use"),
}

LOW_QUALITY_THRESHOLD = 70


def flatten_store_a_row(data: Dict[str, Any]) -> Dict[str, Any]:
    """Store A keeps content in a payload column; Store B keeps it as columns."""
    if "payload" in data and isinstance(data["payload"], dict):
        flat = {k: v for k, v in data.items() if k != "payload"}
        return {**data["payload"], **flat}
    return dict(data)


class ConsistencyScorer:
    def __init__(self, ignored_fields: Iterable[str] = IGNORED_FIELDS):
        self.ignored_fields = frozenset(ignored_fields)

    def score_identity(self, user: Union[StoreBUser, Dict[str, Any]]) -> DataQualityReport:
        try:
            identity = parse_store_b_user(user)
        except SchemaViolation as e:
            return DataQualityReport(score=0, issues=[str(e)], recommendations=["fix the identity record in Store B"])

        metadata = identity.user_metadata
        checks = {
            "email": bool(identity.email),
            "email_confirmed": identity.email_confirmed_at is not None,
            "username": bool(metadata.get("username")),
            "full_name": bool(metadata.get("full_name") or metadata.get("fullName") or metadata.get("name")),
            "avatar_url": bool(metadata.get("avatar_url") or metadata.get("avatarUrl")),
            "last_sign_in": identity.last_sign_in_at is not None,
        }

        score = 100
        issues: List[str] = []
        recommendations: List[str] = []
        for key, passed in checks.items():
            if passed:
                continue
            penalty, issue, recommendation = QUALITY_RULES[key]
            score -= penalty
            issues.append(issue)
            if recommendation:
                recommendations.append(recommendation)

        score = max(0, score)
        if score < LOW_QUALITY_THRESHOLD:
            logger.info("Low identity data quality", user_id=identity.id, score=score, issues=issues)

        return DataQualityReport(score=score, issues=issues, recommendations=recommendations)

    def score_pair(
        self,
        source: Any,
        target: Any,
        direction: Union[SyncDirection, str] = SyncDirection.STORE_B_TO_A,
    ) -> SyncContractResult:
        return validate_sync_contract(direction, source, target)

    def compare_records(
        self,
        store_a_data: Optional[Dict[str, Any]],
        store_b_data: Optional[Dict[str, Any]],
    ) -> ConsistencyReport:
        if store_a_data is None and store_b_data is None:
            return ConsistencyReport(
                consistent=False,
                differences=["record missing from both stores"],
                recommendations=["check the record id"],
            )

        if store_a_data is None or store_b_data is None:
            return ConsistencyReport(
                consistent=False,
                differences=["record present in only one store"],
                recommendations=["sync the record into the store that is missing it"],
                store_a_data=store_a_data,
                store_b_data=store_b_data,
            )

        left = flatten_store_a_row(store_a_data)
        right = dict(store_b_data)

        differences: List[str] = []
        for key in sorted((set(left) | set(right)) - self.ignored_fields):
            a_value, b_value = left.get(key), right.get(key)
            # a column missing on one side only counts when the other side holds data
            if a_value is None and b_value is None:
                continue
            if a_value != b_value:
                differences.append(f"{key} mismatch: {a_value!r} != {b_value!r}")

        recommendations = ["run a sync to restore consistency between stores"] if differences else []
        return ConsistencyReport(
            consistent=not differences,
            differences=differences,
            recommendations=recommendations,
            store_a_data=store_a_data,
            store_b_data=store_b_data,
        )
