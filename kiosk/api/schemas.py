from typing import Any, Dict, List, Literal, Optional
from pydantic import BaseModel, Field

TransactionStatus = Literal["PENDING", "COMPLETED", "CANCELED"]


class AssignedGown(BaseModel):
    # Current booking on the gown-change surface
    bookingId: str
    rfid: str
    ean: Optional[str] = None


class OpenRequest(BaseModel):
    eventId: Optional[str] = None
    eventName: Optional[str] = None
    assigned: Optional[AssignedGown] = None


class InputRequest(BaseModel):
    text: str = ""
    timestampMs: Optional[int] = None


class SubmitRequest(BaseModel):
    text: Optional[str] = None


class ConfirmRequest(BaseModel):
    imageIds: List[str] = Field(default_factory=list)
    deviceId: Optional[str] = None
    ean: Optional[str] = None

    def extra(self) -> Dict[str, Any]:
        return self.model_dump(exclude_none=True, exclude_defaults=True)


class TransactionStatusRequest(BaseModel):
    status: TransactionStatus


class ConnectivityRequest(BaseModel):
    offline: bool


class FlowStateResponse(BaseModel):
    surface: str
    kioskId: str
    eventId: str = ""
    state: str
    sessionId: str
    currentIdentifier: Optional[str] = None
    attemptCount: int = 0
    text: str = ""
    classification: Optional[str] = None
    lookupKind: Optional[str] = None
    confirmFraming: Optional[str] = None
    message: Optional[str] = None
    error: Optional[Dict[str, Any]] = None
    outcome: Optional[Dict[str, Any]] = None
    transactionId: Optional[str] = None
    forced: bool = False
    guardHeld: bool = False
    exitRequested: bool = False
