from dataclasses import asdict, dataclass, field
from typing import Any, Dict, List, Optional, Union
import uuid

from kiosk.utils.time import now_ms


@dataclass(frozen=True)
class EventContext:
    """Selected graduation event a kiosk is serving (injected, never global)."""
    eventId: str
    eventName: str = ""


@dataclass(frozen=True)
class ScanEvent:
    text: str
    timestampMs: int
    deltaLen: int


# --- Lookup results -------------------------------------------------------

@dataclass(frozen=True)
class Found:
    record: Dict[str, Any]
    kind = "found"


@dataclass(frozen=True)
class NotFound:
    kind = "not_found"


@dataclass(frozen=True)
class WrongEvent:
    eventName: str
    kind = "wrong_event"


@dataclass(frozen=True)
class AlreadyAssigned:
    message: str = "This gown is already assigned."
    kind = "already_assigned"


@dataclass(frozen=True)
class NotReturnable:
    message: str = "This gown was purchased and should not be returned."
    kind = "not_returnable"


@dataclass(frozen=True)
class Late:
    record: Dict[str, Any]
    kind = "late"


LookupResult = Union[Found, NotFound, WrongEvent, AlreadyAssigned, NotReturnable, Late]


# --- Operations & outcomes ------------------------------------------------

@dataclass(frozen=True)
class OperationStep:
    """One backend mutation call, e.g. ("release", {...}) or ("assign", {...})."""
    action: str
    params: Dict[str, Any] = field(default_factory=dict)


@dataclass
class Operation:
    kind: str
    payload: Dict[str, Any]
    steps: List[OperationStep]
    # Idempotency key shared by the live attempt and any offline replay
    operationKey: str = field(default_factory=lambda: uuid.uuid4().hex)
    # Terminal checkout: success arrives later on the realtime status stream
    awaitsStatus: bool = False
    # Payment and print actions need the live backend; they are never queued
    offlineCapable: bool = True

    def queue_payload(self) -> Dict[str, Any]:
        return {
            "data": dict(self.payload),
            "steps": [{"action": s.action, "params": dict(s.params)} for s in self.steps],
        }


@dataclass(frozen=True)
class Online:
    result: Dict[str, Any]
    kind = "online"


@dataclass(frozen=True)
class Queued:
    pendingOperationId: str
    kind = "queued"


@dataclass(frozen=True)
class Failed:
    reason: str
    error: Optional[Exception] = None
    kind = "failed"


Outcome = Union[Online, Queued, Failed]


# --- Offline queue entries ------------------------------------------------

PENDING = "pending"
REPLAYED = "replayed"
FAILED = "failed"


@dataclass
class PendingOperation:
    id: str
    kind: str
    payload: Dict[str, Any]
    operationKey: str = ""
    enqueuedAt: int = field(default_factory=now_ms)
    status: str = PENDING  # pending/replayed/failed
    attempts: int = 0
    error: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "PendingOperation":
        allowed = {f for f in cls.__dataclass_fields__}
        return cls(**{k: v for k, v in data.items() if k in allowed})


# --- Flow session ---------------------------------------------------------

@dataclass
class FlowSession:
    state: str
    sessionId: str = field(default_factory=lambda: uuid.uuid4().hex)
    currentIdentifier: Optional[str] = None
    currentRecord: Optional[Dict[str, Any]] = None
    attemptCount: int = 0

    # Per input cycle
    text: str = ""
    classification: Optional[str] = None
    # Identity of the validate->execute cycle; responses for older cycles are dropped
    cycleId: Optional[str] = None
    lookupKind: Optional[str] = None
    confirmFraming: Optional[str] = None  # "standard" | "create_new"
    message: Optional[str] = None
    error: Optional[Dict[str, Any]] = None
    outcome: Optional[Dict[str, Any]] = None
    transactionId: Optional[str] = None
    forced: bool = False

    def clear(self, state: str) -> None:
        """Reset everything but the session identity."""
        self.state = state
        self.currentIdentifier = None
        self.currentRecord = None
        self.text = ""
        self.classification = None
        self.cycleId = None
        self.lookupKind = None
        self.confirmFraming = None
        self.message = None
        self.error = None
        self.outcome = None
        self.transactionId = None
        self.forced = False

    def snapshot(self) -> Dict[str, Any]:
        return asdict(self)


# --- Realtime transaction statuses ----------------------------------------

TXN_PENDING = "PENDING"
TXN_COMPLETED = "COMPLETED"
TXN_CANCELED = "CANCELED"
TXN_STATUSES = (TXN_PENDING, TXN_COMPLETED, TXN_CANCELED)
