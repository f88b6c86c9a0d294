import asyncio
from dataclasses import dataclass, field
from typing import List, Optional, Tuple

from kiosk.core import state_machine as sm
from kiosk.observability.logging import log


@dataclass
class ExecutionTicket:
    """Progress of one execute() call, readable while it is still running."""
    path: Optional[str] = None  # "online" | "offline"
    queuedId: Optional[str] = None
    completedSteps: List[str] = field(default_factory=list)

    @property
    def durably_queued(self) -> bool:
        return self.path == "offline" and bool(self.queuedId)


class StuckOperationWatchdog:
    """
    One-shot timer attached to the Executing state. The state machine races
    `expired` against the executor; whichever finishes first decides the
    terminal state and the other is cancelled.
    """

    def __init__(self, surface: str = "", kiosk_id: str = ""):
        self.surface = surface
        self.kiosk_id = kiosk_id
        self._handle: Optional[asyncio.TimerHandle] = None
        self.expired: Optional[asyncio.Future] = None
        self.bound_sec: float = 0.0

    @property
    def armed(self) -> bool:
        return self._handle is not None

    def arm(self, bound_sec: float) -> asyncio.Future:
        self.disarm()
        loop = asyncio.get_running_loop()
        self.bound_sec = float(bound_sec)
        self.expired = loop.create_future()
        self._handle = loop.call_later(self.bound_sec, self._fire)
        return self.expired

    def disarm(self) -> None:
        if self._handle is not None:
            self._handle.cancel()
        self._handle = None
        if self.expired is not None and not self.expired.done():
            self.expired.cancel()
        self.expired = None

    def _fire(self) -> None:
        self._handle = None
        if self.expired is not None and not self.expired.done():
            self.expired.set_result(True)

    def forced_resolution(self, ticket: ExecutionTicket, operation_kind: str = "") -> Tuple[str, str]:
        """
        Decide the terminal state when the executor did not answer in time.
        Success is only claimed when the offline write was acknowledged.
        """
        if ticket.durably_queued:
            state, message = sm.SUCCESS_TERMINAL, "Saved offline. It will sync when the connection returns."
        else:
            state, message = sm.ERROR_TERMINAL, "The operation did not complete in time. Please check with staff."
        log(
            event="watchdog_forced_resolution",
            anomaly=True,
            surface=self.surface,
            kioskId=self.kiosk_id,
            operationKind=operation_kind,
            boundSec=self.bound_sec,
            path=ticket.path or "",
            queuedId=ticket.queuedId or "",
            completedSteps=list(ticket.completedSteps),
            resolvedTo=state,
        )
        return state, message
