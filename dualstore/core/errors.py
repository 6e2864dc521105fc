"""
Error taxonomy and error reporting for the dual-store layer.

Exceptions:
- SchemaViolation: malformed identity record, rejected before any write
- BackendUnavailable: breaker is OPEN, the backend is skipped
- BackendWriteError: adapter call failed
- WriteTimeout: deadline exceeded (classified as a BackendWriteError)

Reporting:
    capture_exception(exc, context={"backend": "storeB"})

Every capture is logged through structlog. When Sentry is initialized
(SENTRY_DSN set and sentry-sdk installed) events are forwarded as well.
"""

from typing import Optional, Any, Dict, List
from datetime import datetime, timezone
import structlog

from dualstore.core.context import get_request_id, get_user_id, get_context_dict

logger = structlog.get_logger(__name__)

__all__ = [
    "DualStoreError",
    "SchemaViolation",
    "BackendUnavailable",
    "BackendWriteError",
    "WriteTimeout",
    "init_sentry",
    "capture_exception",
    "capture_message",
    "is_sentry_enabled",
]


class DualStoreError(Exception):
    """Base class for errors raised by the dual-store layer."""


class SchemaViolation(DualStoreError):
    """An identity record failed schema validation at the contract boundary."""

    def __init__(self, message: str, errors: Optional[List[str]] = None):
        super().__init__(message)
        self.errors = errors or [message]


class BackendUnavailable(DualStoreError):
    """The backend's circuit breaker is OPEN; no attempt was made."""

    def __init__(self, backend: str):
        super().__init__(f"{backend} circuit open")
        self.backend = backend


class BackendWriteError(DualStoreError):
    """A backend adapter call returned an error."""

    def __init__(self, backend: str, message: str, status_code: Optional[int] = None):
        super().__init__(message)
        self.backend = backend
        self.status_code = status_code


class WriteTimeout(BackendWriteError):
    """The caller-supplied deadline expired before the backend answered."""

    def __init__(self, backend: str):
        super().__init__(backend, "timeout")


_sentry_initialized: bool = False


def init_sentry(
    dsn: str,
    environment: str = "production",
    traces_sample_rate: float = 0.0,
    release: Optional[str] = None,
) -> bool:
    """
    Initialize Sentry SDK for error tracking.

    Returns:
        True if initialization successful, False otherwise
    """
    global _sentry_initialized

    if not dsn:
        logger.info("Sentry disabled (no DSN provided)")
        return False

    try:
        import sentry_sdk
        from sentry_sdk.integrations.sqlalchemy import SqlalchemyIntegration
        from sentry_sdk.integrations.httpx import HttpxIntegration

        sentry_sdk.init(
            dsn=dsn,
            environment=environment,
            traces_sample_rate=traces_sample_rate,
            release=release,
            integrations=[SqlalchemyIntegration(), HttpxIntegration()],
            ignore_errors=[KeyboardInterrupt, SystemExit],
            before_send=_before_send,
        )

        _sentry_initialized = True
        logger.info("Sentry initialized", environment=environment, release=release)
        return True

    except ImportError:
        logger.warning("Sentry SDK not installed, error tracking disabled")
        return False
    except Exception as e:
        logger.error("Failed to initialize Sentry", error=str(e))
        return False


def _before_send(event: Dict[str, Any], hint: Dict[str, Any]) -> Optional[Dict[str, Any]]:
    """Tag events with request and user context."""
    request_id = get_request_id()
    if request_id:
        event.setdefault("tags", {})["request_id"] = request_id

    user_id = get_user_id()
    if user_id:
        event.setdefault("user", {})["id"] = user_id

    return event


def is_sentry_enabled() -> bool:
    return _sentry_initialized


def capture_exception(
    exc: BaseException,
    context: Optional[Dict[str, Any]] = None,
    level: str = "error",
    tags: Optional[Dict[str, str]] = None,
) -> Optional[str]:
    """
    Capture an exception with structured logging and Sentry.

    Args:
        exc: Exception to capture
        context: Additional context dict (e.g., {"backend": "storeA"})
        level: Severity level
        tags: Additional tags for filtering in Sentry

    Returns:
        Sentry event ID or None if not sent
    """
    enriched_context = {
        **get_context_dict(),
        "timestamp": datetime.now(timezone.utc).isoformat(),
        "error_type": type(exc).__name__,
        **(context or {}),
    }

    logger.error("Exception captured", exc_info=exc, **enriched_context)

    if _sentry_initialized:
        try:
            import sentry_sdk

            with sentry_sdk.push_scope() as scope:
                for key, value in enriched_context.items():
                    if value is not None:
                        scope.set_extra(key, value)
                if tags:
                    for key, value in tags.items():
                        scope.set_tag(key, value)
                scope.level = level
                return sentry_sdk.capture_exception(exc)
        except Exception as e:
            logger.warning("Failed to send exception to Sentry", error=str(e))

    return None


def capture_message(
    message: str,
    level: str = "info",
    context: Optional[Dict[str, Any]] = None,
) -> Optional[str]:
    """
    Capture a non-exception event, e.g. a circuit breaker state change
    or a degraded write.
    """
    enriched_context = {
        **get_context_dict(),
        **(context or {}),
    }

    log_func = getattr(logger, level, logger.info)
    log_func(message, **enriched_context)

    if _sentry_initialized:
        try:
            import sentry_sdk

            with sentry_sdk.push_scope() as scope:
                for key, value in enriched_context.items():
                    if value is not None:
                        scope.set_extra(key, value)
                scope.level = level
                return sentry_sdk.capture_message(message, level=level)
        except Exception as e:
            logger.warning("Failed to send message to Sentry", error=str(e))

    return None
