"""
Surface profiles
----------------
The flow state machine is the same on every kiosk surface; what differs is
captured here: settle window, which record the lookup returns, how that
record is interpreted, whether Found needs a confirmation, and which backend
steps the confirmed action performs.

Backend records use these fields:
  gown:    {rfid, ean, inStock}
  booking: {bookingId, eventId, eventName, contactId, fullName, rfid, ean,
            inStock, orderType, bookingStatus, dueDate, images:[{imageId, printReady}]}
"""
from typing import Any, Dict, List, Optional

from kiosk.backend.lookup import BOOKING, GOWN
from kiosk.core.classifier import IDENTIFIER_LENGTH
from kiosk.core.models import (
    AlreadyAssigned,
    EventContext,
    Found,
    Late,
    LookupResult,
    NotFound,
    NotReturnable,
    Operation,
    OperationStep,
    WrongEvent,
)
from kiosk.settings import settings
from kiosk.utils.time import parse_timestamp_ms

STANDARD = "standard"
CREATE_NEW = "create_new"


def _same_event(record: Dict[str, Any], event_context: EventContext) -> bool:
    record_event = record.get("eventId")
    if record_event in (None, "") or not event_context.eventId:
        return True
    return str(record_event) == str(event_context.eventId)


class SurfaceProfile:
    name = ""
    lookup_resource = BOOKING
    # Found goes straight to Executing
    preapproved = False
    # NotFound offers a create-new confirmation instead of a rejection
    allow_create = False
    # A cache miss while offline is answered as NotFound
    offline_miss_is_not_found = False
    # The scanned identifier must differ from the one already assigned
    rejects_same_resource = False
    not_found_message = "No booking found for this gown."
    success_message = "Done."

    @property
    def settle_ms(self) -> int:
        raise NotImplementedError

    def should_auto_submit(self, text: str, is_scan: bool) -> bool:
        return is_scan and len((text or "").strip()) == IDENTIFIER_LENGTH

    def interpret(self, record: Optional[Dict[str, Any]], event_context: EventContext, now: int) -> LookupResult:
        raise NotImplementedError

    def build_operation(self, identifier: str, record: Optional[Dict[str, Any]], *,
                        assigned: Optional[Dict[str, Any]] = None,
                        extra: Optional[Dict[str, Any]] = None,
                        framing: str = STANDARD) -> Operation:
        raise NotImplementedError

    def build_follow_on(self, record: Dict[str, Any], extra: Dict[str, Any], transaction_id: str) -> Optional[Operation]:
        return None


class ReturnsProfile(SurfaceProfile):
    name = "returns"
    success_message = "Gown checked in. Thank you!"

    @property
    def settle_ms(self) -> int:
        return settings.SETTLE_MS_RETURNS

    def interpret(self, record, event_context, now):
        if record is None:
            return NotFound()
        if not _same_event(record, event_context):
            return WrongEvent(eventName=str(record.get("eventName") or ""))
        if str(record.get("orderType") or "").upper() == "PURCHASE":
            return NotReturnable("This gown was purchased and should not be returned.")
        if record.get("inStock"):
            return AlreadyAssigned("This gown is already checked in.")
        due = parse_timestamp_ms(record.get("dueDate"))
        if str(record.get("bookingStatus") or "").lower() == "late" or (due is not None and due < now):
            return Late(record)
        return Found(record)

    def build_operation(self, identifier, record, *, assigned=None, extra=None, framing=STANDARD):
        data = {"bookingId": record["bookingId"], "rfid": identifier}
        return Operation(
            kind="CHECK_IN_GOWN",
            payload=data,
            steps=[OperationStep("release", dict(data))],
        )


class GownChangeProfile(SurfaceProfile):
    name = "gown_change"
    lookup_resource = GOWN
    allow_create = True
    offline_miss_is_not_found = True
    rejects_same_resource = True
    success_message = "Gown changed."

    @property
    def settle_ms(self) -> int:
        return settings.SETTLE_MS_GOWN_CHANGE

    def interpret(self, record, event_context, now):
        if record is None:
            return NotFound()
        if not record.get("inStock", True):
            return AlreadyAssigned("This gown is already checked out to another student.")
        return Found(record)

    def build_operation(self, identifier, record, *, assigned=None, extra=None, framing=STANDARD):
        assigned = assigned or {}
        booking_id = assigned.get("bookingId")
        old_rfid = assigned.get("rfid")
        if not booking_id or not old_rfid:
            raise ValueError("gown_change needs the current booking and its assigned RFID")
        ean = (record or {}).get("ean") or (extra or {}).get("ean") or assigned.get("ean")
        assign_params = {"bookingId": booking_id, "rfid": identifier}
        if ean:
            assign_params["ean"] = ean
        if framing == CREATE_NEW:
            assign_params["createIfMissing"] = True
        return Operation(
            kind="CHANGE_GOWN",
            payload={"bookingId": booking_id, "oldRfid": old_rfid, "newRfid": identifier, "ean": ean},
            steps=[
                OperationStep("release", {"bookingId": booking_id, "rfid": old_rfid, "skipRfidCheck": True}),
                OperationStep("assign", assign_params),
            ],
        )


class StageQueueProfile(SurfaceProfile):
    name = "stage_queue"
    preapproved = True
    not_found_message = "No student found for this gown."
    success_message = "You're in the queue!"

    @property
    def settle_ms(self) -> int:
        return settings.SETTLE_MS_STAGE_QUEUE

    def interpret(self, record, event_context, now):
        if record is None:
            return NotFound()
        if not _same_event(record, event_context):
            return WrongEvent(eventName=str(record.get("eventName") or ""))
        return Found(record)

    def build_operation(self, identifier, record, *, assigned=None, extra=None, framing=STANDARD):
        data = {"contactId": record.get("contactId"), "bookingId": record.get("bookingId"), "rfid": identifier}
        return Operation(
            kind="MARK_PHOTO_START",
            payload=data,
            steps=[OperationStep("mark_photo_start", {"contactId": data["contactId"]})],
        )


class GalleryProfile(SurfaceProfile):
    name = "gallery"
    not_found_message = "No student found for this gown."
    success_message = "Your prints are on the way!"

    @property
    def settle_ms(self) -> int:
        return settings.SETTLE_MS_GALLERY

    def interpret(self, record, event_context, now):
        if record is None:
            return NotFound()
        if not _same_event(record, event_context):
            return WrongEvent(eventName=str(record.get("eventName") or ""))
        return Found(record)

    @staticmethod
    def _selected_images(record: Dict[str, Any], extra: Dict[str, Any]) -> List[str]:
        ids = [str(i) for i in (extra.get("imageIds") or [])]
        if ids:
            return ids
        return [str(img.get("imageId")) for img in (record.get("images") or []) if img.get("imageId")]

    def _print_orders(self, record: Dict[str, Any], image_ids: List[str], transaction_id: Optional[str]) -> Operation:
        params = {"imageIds": image_ids, "contactId": record.get("contactId")}
        if transaction_id:
            params["transactionId"] = transaction_id
        return Operation(
            kind="CREATE_PRINT_ORDERS",
            payload=dict(params),
            steps=[OperationStep("create_print_orders", params)],
            offlineCapable=False,
        )

    def build_operation(self, identifier, record, *, assigned=None, extra=None, framing=STANDARD):
        extra = extra or {}
        image_ids = self._selected_images(record, extra)
        if not image_ids:
            raise ValueError("Select at least one photo.")
        ready = {str(img.get("imageId")) for img in (record.get("images") or []) if img.get("printReady")}
        if all(i in ready for i in image_ids):
            return self._print_orders(record, image_ids, None)
        params = {
            "contactId": record.get("contactId"),
            "imageIds": image_ids,
            "deviceId": extra.get("deviceId"),
            "quantity": len(image_ids),
        }
        return Operation(
            kind="TERMINAL_CHECKOUT",
            payload=dict(params),
            steps=[OperationStep("terminal_checkout", params)],
            awaitsStatus=True,
            offlineCapable=False,
        )

    def build_follow_on(self, record, extra, transaction_id):
        return self._print_orders(record, self._selected_images(record, extra or {}), transaction_id)


PROFILES = {
    p.name: p
    for p in (ReturnsProfile(), GownChangeProfile(), StageQueueProfile(), GalleryProfile())
}


def get_profile(name: str) -> SurfaceProfile:
    try:
        return PROFILES[name]
    except KeyError:
        raise KeyError(f"Unknown kiosk surface: {name}") from None
