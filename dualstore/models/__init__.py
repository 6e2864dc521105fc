from .circuit_breaker_state import CircuitBreakerState
from .planning_record import PlanningRecord
from .user_profile import UserProfile

__all__ = [
    "CircuitBreakerState",
    "PlanningRecord",
    "UserProfile",
]
