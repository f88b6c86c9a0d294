import pytest

from kiosk.core.models import (
    AlreadyAssigned,
    EventContext,
    Found,
    Late,
    NotFound,
    NotReturnable,
    WrongEvent,
)
from kiosk.surfaces.profiles import CREATE_NEW, PROFILES, get_profile
from kiosk.utils.time import now_ms

CTX = EventContext(eventId="evt-1", eventName="Spring Graduation")


def test_all_surfaces_registered():
    assert set(PROFILES) == {"returns", "gown_change", "stage_queue", "gallery"}
    with pytest.raises(KeyError):
        get_profile("lobby")


def test_auto_submit_needs_a_full_scan():
    profile = get_profile("returns")
    assert profile.should_auto_submit("AB12CD34", True)
    assert not profile.should_auto_submit("AB12CD34", False)
    assert not profile.should_auto_submit("AB12CD3", True)


@pytest.mark.parametrize(
    "overrides, expected",
    [
        ({"eventId": "evt-2", "eventName": "Winter"}, WrongEvent),
        ({"orderType": "PURCHASE"}, NotReturnable),
        ({"inStock": True}, AlreadyAssigned),
        ({"bookingStatus": "late"}, Late),
        ({"dueDate": "2001-01-01T00:00:00Z"}, Late),
        ({}, Found),
    ],
)
def test_returns_interpretation(booking_record, overrides, expected):
    result = get_profile("returns").interpret(booking_record(**overrides), CTX, now_ms())
    assert isinstance(result, expected)


def test_returns_missing_booking_is_not_found():
    assert isinstance(get_profile("returns").interpret(None, CTX, now_ms()), NotFound)


def test_wrong_event_carries_event_name(booking_record):
    result = get_profile("stage_queue").interpret(booking_record(eventId="evt-9", eventName="Winter"), CTX, now_ms())
    assert result == WrongEvent(eventName="Winter")


def test_returns_operation(booking_record):
    op = get_profile("returns").build_operation("AB12CD34", booking_record())
    assert op.kind == "CHECK_IN_GOWN"
    assert [(s.action, s.params) for s in op.steps] == [("release", {"bookingId": "bk-100", "rfid": "AB12CD34"})]
    assert op.offlineCapable is True


def test_gown_change_rejects_gown_in_use():
    result = get_profile("gown_change").interpret({"rfid": "NEW00001", "inStock": False}, CTX, now_ms())
    assert isinstance(result, AlreadyAssigned)


def test_gown_change_operation_releases_then_assigns():
    assigned = {"bookingId": "bk-1", "rfid": "OLD00001", "ean": "999"}
    op = get_profile("gown_change").build_operation(
        "NEW00001", None, assigned=assigned, extra={"ean": "123"}, framing=CREATE_NEW
    )
    assert op.kind == "CHANGE_GOWN"
    release, assign = op.steps
    assert release.params == {"bookingId": "bk-1", "rfid": "OLD00001", "skipRfidCheck": True}
    assert assign.params == {"bookingId": "bk-1", "rfid": "NEW00001", "ean": "123", "createIfMissing": True}
    assert op.payload["newRfid"] == "NEW00001"


def test_gown_change_requires_assignment():
    with pytest.raises(ValueError):
        get_profile("gown_change").build_operation("NEW00001", {"inStock": True})


def test_stage_queue_marks_photo_start(booking_record):
    profile = get_profile("stage_queue")
    op = profile.build_operation("AB12CD34", booking_record())
    assert profile.preapproved is True
    assert op.steps[0].action == "mark_photo_start"
    assert op.steps[0].params == {"contactId": "ct-7"}


def test_gallery_checkout_then_print_orders(booking_record):
    profile = get_profile("gallery")
    record = booking_record(images=[{"imageId": "img-1", "printReady": False}, {"imageId": "img-2"}])
    op = profile.build_operation("AB12CD34", record, extra={"imageIds": ["img-2"], "deviceId": "term-1"})

    assert op.kind == "TERMINAL_CHECKOUT"
    assert op.awaitsStatus is True
    assert op.offlineCapable is False
    assert op.steps[0].params == {"contactId": "ct-7", "imageIds": ["img-2"], "deviceId": "term-1", "quantity": 1}

    follow_on = profile.build_follow_on(record, {"imageIds": ["img-2"]}, "tx-1")
    assert follow_on.kind == "CREATE_PRINT_ORDERS"
    assert follow_on.steps[0].params == {"imageIds": ["img-2"], "contactId": "ct-7", "transactionId": "tx-1"}


def test_gallery_print_ready_skips_payment(booking_record):
    record = booking_record(images=[{"imageId": "img-1", "printReady": True}])
    op = get_profile("gallery").build_operation("AB12CD34", record)
    assert op.kind == "CREATE_PRINT_ORDERS"
    assert op.awaitsStatus is False


def test_gallery_requires_a_selection(booking_record):
    with pytest.raises(ValueError):
        get_profile("gallery").build_operation("AB12CD34", booking_record(images=[]))
