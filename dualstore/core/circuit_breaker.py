from datetime import datetime
from enum import Enum
from dataclasses import dataclass, field
from concurrent.futures import Future, ThreadPoolExecutor, wait
from threading import Lock
from typing import Any, Callable, Dict, Optional
import logging

from sqlalchemy.engine import Engine

from dualstore.core.typing import as_utc, utc_now

logger = logging.getLogger(__name__)

# (name, old_state, new_state) - return value is ignored
StateChangeCallback = Callable[[str, str, str], Any]


class CircuitState(Enum):
    CLOSED = "closed"  # Normal operation
    OPEN = "open"  # Failing, skip the backend
    HALF_OPEN = "half_open"  # Probing whether the backend recovered


class BreakerStateStore:
    """
    Persists breaker state in Store A so it survives restarts.

    Saves run on a single background thread, in submission order, so a slow
    or unreachable Store A never stalls the caller recording the outcome.
    """

    def __init__(self, engine: Engine):
        self.engine = engine
        self._executor = ThreadPoolExecutor(max_workers=1, thread_name_prefix="BreakerState")
        self._pending: Optional[Future] = None

    def save(self, name: str, state: str, failure_count: int, last_failure_at: Optional[datetime]) -> Future:
        """Queue a save and return immediately."""
        self._pending = self._executor.submit(self._save, name, state, failure_count, last_failure_at)
        return self._pending

    def flush(self, timeout: Optional[float] = None) -> None:
        """Block until every queued save has been written."""
        pending = self._pending
        if pending is not None:
            wait([pending], timeout=timeout)

    def close(self) -> None:
        self._executor.shutdown(wait=True)

    def _save(self, name: str, state: str, failure_count: int, last_failure_at: Optional[datetime]) -> None:
        try:
            from sqlmodel import Session, select
            from dualstore.models.circuit_breaker_state import CircuitBreakerState

            with Session(self.engine) as session:
                db_state = session.exec(select(CircuitBreakerState).where(CircuitBreakerState.name == name)).first()

                if db_state:
                    db_state.state = state
                    db_state.failure_count = failure_count
                    db_state.last_failure_at = last_failure_at
                    db_state.updated_at = utc_now()
                else:
                    db_state = CircuitBreakerState(
                        name=name,
                        state=state,
                        failure_count=failure_count,
                        last_failure_at=last_failure_at,
                    )
                session.add(db_state)
                session.commit()
        except Exception as e:
            # Persistence failures must not break the breaker itself
            logger.warning(f"Failed to persist circuit breaker state for {name}: {e}")

    def load(self, name: str) -> Optional[Dict[str, Any]]:
        try:
            from sqlmodel import Session, select
            from dualstore.models.circuit_breaker_state import CircuitBreakerState

            with Session(self.engine) as session:
                db_state = session.exec(select(CircuitBreakerState).where(CircuitBreakerState.name == name)).first()

                if db_state:
                    return {
                        "state": db_state.state,
                        "failure_count": db_state.failure_count,
                        "last_failure_at": as_utc(db_state.last_failure_at),
                    }
        except Exception as e:
            logger.warning(f"Failed to load circuit breaker state for {name}: {e}")
        return None


@dataclass
class CircuitBreaker:
    """
    Per-backend health tracker.

    All transitions are evaluated lazily inside can_execute/on_success/
    on_failure; there is no background timer. Several concurrent callers may
    pass can_execute while HALF_OPEN, which at worst costs one extra failed
    probe.
    """

    name: str
    failure_threshold: int = 5
    open_timeout: float = 60.0  # seconds
    store: Optional[BreakerStateStore] = None
    on_state_change: Optional[StateChangeCallback] = None
    clock: Callable[[], datetime] = utc_now

    _state: CircuitState = field(default=CircuitState.CLOSED, init=False)
    _failure_count: int = field(default=0, init=False)
    _last_failure_time: datetime | None = field(default=None, init=False)
    _lock: Lock = field(default_factory=Lock, init=False)

    def __post_init__(self):
        """Restore state from Store A when a state store is configured."""
        if self.store:
            saved = self.store.load(self.name)
            if saved:
                try:
                    self._state = CircuitState(saved.get("state", "closed"))
                except ValueError:
                    self._state = CircuitState.CLOSED
                self._failure_count = saved.get("failure_count", 0)
                self._last_failure_time = saved.get("last_failure_at")
                logger.info(f"Circuit {self.name}: restored state={self._state.value}, failures={self._failure_count}")

    @property
    def state(self) -> CircuitState:
        """Current state without evaluating the OPEN timeout. Use can_execute() for transitions."""
        return self._state

    @property
    def failure_count(self) -> int:
        return self._failure_count

    @property
    def last_failure_time(self) -> datetime | None:
        return self._last_failure_time

    @property
    def is_open(self) -> bool:
        """True while the breaker would reject a call (OPEN and timeout not yet elapsed)."""
        with self._lock:
            return self._state == CircuitState.OPEN and not self._open_timeout_elapsed()

    def _open_timeout_elapsed(self) -> bool:
        if self._last_failure_time is None:
            # OPEN without a recorded failure has never been probed
            return True
        elapsed = (self.clock() - self._last_failure_time).total_seconds()
        return elapsed >= self.open_timeout

    def _transition(self, new_state: CircuitState, reason: str) -> None:
        """Must be called while holding self._lock."""
        old_state = self._state
        self._state = new_state
        message = f"Circuit {self.name}: {old_state.name} -> {new_state.name} ({reason})"
        if new_state == CircuitState.OPEN:
            logger.warning(message)
        else:
            logger.info(message)
        if self.on_state_change:
            try:
                self.on_state_change(self.name, old_state.value, new_state.value)
            except Exception as e:
                logger.error(f"Circuit breaker notification failed: {e}")

    def _persist(self) -> None:
        if self.store:
            self.store.save(self.name, self._state.value, self._failure_count, self._last_failure_time)

    def can_execute(self) -> bool:
        state_changed = False
        with self._lock:
            if self._state == CircuitState.OPEN:
                if not self._open_timeout_elapsed():
                    return False
                self._transition(CircuitState.HALF_OPEN, "open timeout elapsed")
                state_changed = True
        # Persist outside lock to avoid holding it during a DB round trip
        if state_changed:
            self._persist()
        return True

    def on_success(self) -> None:
        state_changed = False
        with self._lock:
            if self._state == CircuitState.HALF_OPEN:
                self._failure_count = 0
                self._transition(CircuitState.CLOSED, "probe succeeded")
                state_changed = True
            elif self._state == CircuitState.CLOSED:
                self._failure_count = 0
            # OPEN: a late success from a call started before opening changes nothing
        if state_changed:
            self._persist()

    def on_failure(self) -> None:
        state_changed = False
        with self._lock:
            self._failure_count += 1
            self._last_failure_time = self.clock()

            if self._state == CircuitState.HALF_OPEN:
                self._transition(CircuitState.OPEN, "failure during probe")
                state_changed = True
            elif self._state == CircuitState.CLOSED and self._failure_count >= self.failure_threshold:
                self._transition(CircuitState.OPEN, "threshold reached")
                state_changed = True
        if state_changed:
            self._persist()

    def reset(self) -> None:
        """Administrative reset back to CLOSED."""
        with self._lock:
            self._failure_count = 0
            self._last_failure_time = None
            if self._state != CircuitState.CLOSED:
                self._transition(CircuitState.CLOSED, "manual reset")
        self._persist()

    def snapshot(self) -> Dict[str, Any]:
        with self._lock:
            return {
                "name": self.name,
                "state": self._state.value,
                "failure_count": self._failure_count,
                "last_failure_at": self._last_failure_time.isoformat() if self._last_failure_time else None,
                "failure_threshold": self.failure_threshold,
                "open_timeout": self.open_timeout,
            }


class CircuitBreakerRegistry:
    """
    Holds one breaker per (backend, service) pair.

    Constructed once at process start and passed to whoever needs it;
    tests build their own instance.
    """

    def __init__(
        self,
        failure_threshold: int = 5,
        open_timeout: float = 60.0,
        store: Optional[BreakerStateStore] = None,
        on_state_change: Optional[StateChangeCallback] = None,
        clock: Callable[[], datetime] = utc_now,
    ):
        self.failure_threshold = failure_threshold
        self.open_timeout = open_timeout
        self.store = store
        self.on_state_change = on_state_change
        self.clock = clock
        self._breakers: Dict[str, CircuitBreaker] = {}
        self._lock = Lock()

    @staticmethod
    def key(backend: str, service: str = "default") -> str:
        return f"{backend}:{service}"

    def get(self, backend: str, service: str = "default", **kwargs) -> CircuitBreaker:
        name = self.key(backend, service)
        with self._lock:
            if name not in self._breakers:
                params: Dict[str, Any] = {
                    "failure_threshold": self.failure_threshold,
                    "open_timeout": self.open_timeout,
                    "store": self.store,
                    "on_state_change": self.on_state_change,
                    "clock": self.clock,
                }
                params.update(kwargs)
                self._breakers[name] = CircuitBreaker(name=name, **params)
            return self._breakers[name]

    def find(self, name: str) -> Optional[CircuitBreaker]:
        with self._lock:
            return self._breakers.get(name)

    def reset(self, name: str) -> bool:
        breaker = self.find(name)
        if breaker is None:
            return False
        breaker.reset()
        return True

    def get_all_states(self) -> Dict[str, str]:
        with self._lock:
            breakers = dict(self._breakers)
        return {name: cb.state.value for name, cb in breakers.items()}
