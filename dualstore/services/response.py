"""
Standard response envelope for dual-store operations.

Every envelope carries success, data, degraded, warnings, storageStatus
(storeA/storeB), timestamp and version. Warnings are emitted in a fixed
order:

1. Store A failure (Store A failed while Store B succeeded)
2. Store B failure (Store B failed while Store A succeeded)
3. all-backends-failed, when consistency is "failed"
4. the result's error string, then the explicit error message

Usage:
    return build_success(story, result).to_dict()
    return build_error("Could not save story", result).to_dict()
"""

from typing import Any, List, Optional

from dualstore.schemas import (
    BackendOutcome,
    Consistency,
    DualStorageResult,
    ResponseEnvelope,
    StorageStatus,
    StorageStatusMap,
)

STORE_A_FAILURE_WARNING = "Store A write failed: data saved to Store B only"
STORE_B_FAILURE_WARNING = "Store B write failed: data saved to Store A only"
ALL_BACKENDS_FAILED_WARNING = "All backends failed: data was not saved"


def _backend_status(outcome: BackendOutcome) -> StorageStatus:
    # Not attempted means the breaker was open (or the backend disabled): nothing landed there
    if outcome.attempted and outcome.success:
        return StorageStatus.HEALTHY
    return StorageStatus.FAILED


def storage_status(result: Optional[DualStorageResult]) -> StorageStatusMap:
    if result is None:
        return StorageStatusMap()
    return StorageStatusMap(
        store_a=_backend_status(result.details.store_a),
        store_b=_backend_status(result.details.store_b),
    )


def build_warnings(result: Optional[DualStorageResult], error: Optional[str] = None) -> List[str]:
    warnings: List[str] = []
    if result is not None:
        a_ok = result.details.store_a.attempted and result.details.store_a.success
        b_ok = result.details.store_b.attempted and result.details.store_b.success
        if b_ok and not a_ok:
            warnings.append(STORE_A_FAILURE_WARNING)
        if a_ok and not b_ok:
            warnings.append(STORE_B_FAILURE_WARNING)
        if result.consistency == Consistency.FAILED:
            warnings.append(ALL_BACKENDS_FAILED_WARNING)
        if result.error:
            warnings.append(result.error)
    if error:
        warnings.append(error)
    return warnings


def build_success(data: Any, result: Optional[DualStorageResult] = None) -> ResponseEnvelope:
    """
    Envelope for an operation the caller considers done.

    With a result attached, success follows the result: a partial write is
    still a success but flagged degraded, a failed write is never reported
    as success.
    """
    return ResponseEnvelope(
        success=result.success if result is not None else True,
        data=data,
        degraded=result.degraded if result is not None else False,
        warnings=build_warnings(result),
        storage_status=storage_status(result),
    )


def build_error(message: str, result: Optional[DualStorageResult] = None) -> ResponseEnvelope:
    return ResponseEnvelope(
        success=False,
        data=None,
        degraded=result.degraded if result is not None else False,
        warnings=build_warnings(result, message),
        storage_status=storage_status(result),
    )


def build_from_result(result: DualStorageResult, error_message: str = "Save failed") -> ResponseEnvelope:
    """Pick success or error envelope from the write outcome."""
    if result.success:
        return build_success(result.data, result)
    return build_error(error_message, result)
