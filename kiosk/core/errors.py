"""
Error taxonomy for the scan flow.

FormatError and DomainRejection never leave the state machine; they become
terminal states. TransientError and ExecutionFailure are shown to the operator
with enough detail to retry or reconcile. QueueFailure ends the cycle as an
error and is never reported as "queued".
"""
from typing import Any, Dict, List, Optional


class KioskError(Exception):
    category = "error"
    retryable = False

    def __init__(self, message: str, detail: Optional[Dict[str, Any]] = None):
        super().__init__(message)
        self.message = message
        self.detail = detail or {}

    def to_dict(self) -> Dict[str, Any]:
        return {
            "category": self.category,
            "message": self.message,
            "retryable": self.retryable,
            "detail": self.detail,
        }


class FormatError(KioskError):
    category = "format"


class DomainRejection(KioskError):
    category = "rejected"


class TransientError(KioskError):
    category = "transient"
    retryable = True


class ExecutionFailure(KioskError):
    """A mutation failed, possibly after earlier steps were applied."""
    category = "execution"
    retryable = True

    def __init__(self, message: str, completed_steps: Optional[List[str]] = None, detail: Optional[Dict[str, Any]] = None):
        super().__init__(message, detail)
        self.completed_steps = list(completed_steps or [])
        self.detail.setdefault("completedSteps", self.completed_steps)

    @property
    def partially_applied(self) -> bool:
        return bool(self.completed_steps)


class QueueFailure(KioskError):
    category = "queue"


class GuardStateError(RuntimeError):
    """Raised when the submission guard is released without being held."""


class InvalidTransitionError(RuntimeError):
    def __init__(self, from_state: str, to_state: str, reason: str = ""):
        self.from_state = from_state
        self.to_state = to_state
        self.reason = reason
        super().__init__(
            f"Invalid transition {from_state} -> {to_state}"
            + (f" (reason: {reason})" if reason else "")
        )
