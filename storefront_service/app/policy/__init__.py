"""
Order policy engine: status transitions and cancellation rules.
"""

from .cancellation import (
    AllowedActions,
    CancellationDetails,
    CancellationOutcome,
    CancellationPolicy,
    CancellationPolicyConfig,
    CancellationStage,
    RefundDescriptor,
    TimeRemaining,
    allowed_actions,
    evaluate_cancellation,
    execute_cancellation,
)
from .state_machine import (
    CANONICAL_SEQUENCE,
    InvalidTransitionError,
    apply_transition,
    can_transition,
    is_terminal,
    next_statuses,
)

__all__ = [
    # Cancellation
    "AllowedActions",
    "CancellationDetails",
    "CancellationOutcome",
    "CancellationPolicy",
    "CancellationPolicyConfig",
    "CancellationStage",
    "RefundDescriptor",
    "TimeRemaining",
    "allowed_actions",
    "evaluate_cancellation",
    "execute_cancellation",
    # State machine
    "CANONICAL_SEQUENCE",
    "InvalidTransitionError",
    "apply_transition",
    "can_transition",
    "is_terminal",
    "next_statuses",
]
