"""
User Sync Service

Keeps Store A user profiles in step with Store B auth identities.

Flow for one user:
- fetch the identity from Store B auth (source of truth)
- score its data quality
- transform it to the Store A shape and diff against the existing profile
- skip when nothing changed, otherwise dual-write through the coordinator
- validate the sync contract against what Store A now holds
"""

import asyncio
import time
from typing import Any, Dict, List, Optional

import structlog

from dualstore.core.context import set_user_id
from dualstore.core.errors import BackendWriteError, SchemaViolation
from dualstore.schemas import (
    BatchSyncSummary,
    Consistency,
    StoreAUser,
    SyncDirection,
    SyncHealth,
    SyncOperation,
    SyncResult,
    UserSyncStatus,
)
from dualstore.services.consistency import ConsistencyScorer
from dualstore.services.dual_write import DualWriteCoordinator
from dualstore.services.identity_contract import (
    derive_role,
    parse_store_b_user,
    transform_b_to_a,
    validate_sync_contract,
)
from dualstore.services.store_a import StoreAAdapter
from dualstore.services.store_b import StoreBAdapter

logger = structlog.get_logger(__name__)

# Profile fields compared when deciding between update and skip
SYNCED_FIELDS = ("email", "username", "full_name", "avatar_url", "role", "is_email_verified")

OUTDATED_QUALITY_THRESHOLD = 80
BATCH_PAUSE_SECONDS = 0.1


def diff_profiles(existing: Optional[StoreAUser], incoming: StoreAUser) -> Dict[str, Any]:
    """Fields whose value changes; every synced field when there is no profile yet."""
    new_values = incoming.model_dump(mode="json", include=set(SYNCED_FIELDS))
    if existing is None:
        return new_values
    old_values = existing.model_dump(mode="json", include=set(SYNCED_FIELDS))
    return {
        field: {"from": old_values.get(field), "to": value}
        for field, value in new_values.items()
        if old_values.get(field) != value
    }


def _elapsed_ms(started: float) -> int:
    return int((time.perf_counter() - started) * 1000)


class UserSyncService:
    def __init__(
        self,
        coordinator: DualWriteCoordinator,
        store_a: StoreAAdapter,
        store_b: StoreBAdapter,
        scorer: Optional[ConsistencyScorer] = None,
    ):
        self.coordinator = coordinator
        self.store_a = store_a
        self.store_b = store_b
        self.scorer = scorer or coordinator.scorer

    async def sync_user(
        self,
        user_id: str,
        create_if_missing: bool = True,
        force_update: bool = False,
    ) -> SyncResult:
        """Sync one Store B identity into both profile tables."""
        started = time.perf_counter()
        try:
            identity = await self.store_b.get_auth_user(user_id)
        except BackendWriteError as e:
            return self._error(user_id, [str(e)], started)

        if identity is None:
            return self._error(user_id, ["user not found in Store B"], started)

        return await self._sync_identity(identity, create_if_missing, force_update, started)

    async def _sync_identity(
        self,
        identity: Dict[str, Any],
        create_if_missing: bool,
        force_update: bool,
        started: float,
    ) -> SyncResult:
        user_id = str(identity.get("id", "unknown"))
        set_user_id(user_id)
        quality = self.scorer.score_identity(identity)

        try:
            incoming = transform_b_to_a(identity)
        except SchemaViolation as e:
            return self._error(user_id, e.errors or [str(e)], started, quality.score)

        try:
            existing = await self.store_a.get_user(user_id)
        except BackendWriteError as e:
            return self._error(user_id, [str(e)], started, quality.score)

        if existing is None and not create_if_missing:
            return self._error(user_id, ["user missing from Store A and creation disabled"], started, quality.score)

        # Store A owns roles; an identity without one keeps the stored role
        preserved_role = None
        if existing is not None and derive_role(parse_store_b_user(identity)) is None:
            preserved_role = existing.role
            incoming = incoming.model_copy(update={"role": existing.role})

        operation = SyncOperation.CREATE if existing is None else SyncOperation.UPDATE
        changes = diff_profiles(existing, incoming)

        if existing is not None and not changes and not force_update:
            return SyncResult(
                success=True,
                operation=SyncOperation.SKIP,
                user_id=user_id,
                quality_score=quality.score,
                recommendations=quality.recommendations,
                execution_time_ms=_elapsed_ms(started),
            )

        write = await self.coordinator.write_identity(identity, role=preserved_role)
        recommendations = list(quality.recommendations)

        if not write.success:
            logger.error("User sync write failed", user_id=user_id, error=write.error)
            return SyncResult(
                success=False,
                operation=SyncOperation.ERROR,
                user_id=user_id,
                errors=[write.error or "write failed"],
                quality_score=quality.score,
                recommendations=recommendations,
                write=write,
                execution_time_ms=_elapsed_ms(started),
            )

        errors: List[str] = []
        if write.details.store_a.success:
            try:
                stored = await self.store_a.get_user(user_id)
            except BackendWriteError as e:
                logger.warning("Could not read back synced profile", user_id=user_id, error=str(e))
                stored = None
            contract = validate_sync_contract(SyncDirection.STORE_B_TO_A, identity, stored or incoming)
            errors.extend(contract.violations)
        if write.consistency == Consistency.PARTIAL:
            lagging = "Store A" if not write.details.store_a.success else "Store B"
            recommendations.append(f"re-run sync once {lagging} recovers")

        logger.info(
            "User synced",
            user_id=user_id,
            operation=operation.value,
            consistency=write.consistency.value,
            changed_fields=sorted(changes),
        )
        return SyncResult(
            success=not errors,
            operation=operation,
            user_id=user_id,
            changes=changes,
            errors=errors,
            quality_score=quality.score,
            recommendations=recommendations,
            write=write,
            execution_time_ms=_elapsed_ms(started),
        )

    def _error(self, user_id: str, errors: List[str], started: float, quality_score: int = 0) -> SyncResult:
        logger.warning("User sync failed", user_id=user_id, errors=errors)
        return SyncResult(
            success=False,
            operation=SyncOperation.ERROR,
            user_id=user_id,
            errors=errors,
            quality_score=quality_score,
            execution_time_ms=_elapsed_ms(started),
        )

    async def get_sync_status(self, user_id: str) -> UserSyncStatus:
        errors: List[str] = []
        identity: Optional[Dict[str, Any]] = None
        profile: Optional[StoreAUser] = None

        try:
            identity = await self.store_b.get_auth_user(user_id)
        except BackendWriteError as e:
            errors.append(str(e))
        try:
            profile = await self.store_a.get_user(user_id)
        except BackendWriteError as e:
            errors.append(str(e))

        quality_score = 0
        recommendations: List[str] = []
        is_in_sync = False

        if identity is not None:
            quality = self.scorer.score_identity(identity)
            quality_score = quality.score
            recommendations.extend(quality.recommendations)

        if identity is not None and profile is not None:
            contract = validate_sync_contract(SyncDirection.STORE_B_TO_A, identity, profile)
            is_in_sync = contract.is_valid
            errors.extend(contract.violations)

        if identity is None or profile is None:
            health = SyncHealth.MISSING
            recommendations.append("run sync_user to create the missing record")
        elif not is_in_sync:
            health = SyncHealth.CONFLICT
            recommendations.append("run sync_user with force_update to resolve the conflict")
        elif quality_score < OUTDATED_QUALITY_THRESHOLD:
            health = SyncHealth.OUTDATED
        else:
            health = SyncHealth.HEALTHY

        return UserSyncStatus(
            user_id=user_id,
            store_a_exists=profile is not None,
            store_b_exists=identity is not None,
            is_in_sync=is_in_sync,
            sync_health=health,
            sync_errors=errors,
            data_quality_score=quality_score,
            recommendations=recommendations,
        )

    async def batch_sync(
        self,
        batch_size: int = 50,
        skip_errors: bool = True,
        quality_threshold: int = 0,
        pause: float = BATCH_PAUSE_SECONDS,
    ) -> BatchSyncSummary:
        """
        Sync every Store B identity, one page at a time.

        Identities are synced one at a time and pages are spaced by pause
        seconds to keep load on both stores low. Identities scoring below
        quality_threshold are reported as failed without being written.
        With skip_errors=False the run stops after the first page that
        contains a failure.
        """
        results: List[SyncResult] = []
        page = 1

        while True:
            identities = await self.store_b.list_auth_users(page=page, per_page=batch_size)
            if not identities:
                break

            page_results = [await self._sync_batch_member(identity, quality_threshold) for identity in identities]
            results.extend(page_results)

            if not skip_errors and any(not r.success for r in page_results):
                logger.warning("Batch sync stopped on error", page=page)
                break
            if len(identities) < batch_size:
                break

            page += 1
            if pause:
                await asyncio.sleep(pause)

        successful = sum(1 for r in results if r.success)
        failed = len(results) - successful
        summary = f"Processed {len(results)} users: {successful} successful, {failed} failed"
        logger.info("Batch sync complete", total=len(results), successful=successful, failed=failed)

        return BatchSyncSummary(
            total_processed=len(results),
            successful=successful,
            failed=failed,
            results=results,
            summary=summary,
        )

    async def _sync_batch_member(self, identity: Dict[str, Any], quality_threshold: int) -> SyncResult:
        started = time.perf_counter()
        if quality_threshold:
            quality = self.scorer.score_identity(identity)
            if quality.score < quality_threshold:
                return self._error(
                    str(identity.get("id", "unknown")),
                    [f"quality score {quality.score} below threshold {quality_threshold}"],
                    started,
                    quality.score,
                )
        return await self._sync_identity(identity, create_if_missing=True, force_update=False, started=started)
