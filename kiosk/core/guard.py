from typing import Optional
import uuid

from kiosk.core.errors import GuardStateError
from kiosk.observability.logging import log


class SubmissionGuard:
    """
    Compare-and-set lock for one flow session. There is no waiting: a caller
    that loses try_acquire() drops its submission. Each acquired cycle must be
    released exactly once; releasing an unheld guard is a defect and raises.
    """

    def __init__(self, name: str = ""):
        self.name = name
        self._token: Optional[str] = None

    @property
    def held(self) -> bool:
        return self._token is not None

    def try_acquire(self) -> bool:
        if self._token is not None:
            return False
        self._token = uuid.uuid4().hex
        return True

    def release(self) -> None:
        if self._token is None:
            log(event="guard_release_without_hold", guard=self.name, anomaly=True)
            raise GuardStateError(f"Submission guard {self.name!r} released while not held")
        self._token = None
