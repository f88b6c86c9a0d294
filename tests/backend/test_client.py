import asyncio

import httpx
import pytest

from kiosk.backend.client import BackendClient, is_permanent_message
from kiosk.core.errors import DomainRejection, TransientError
from kiosk.core.models import EventContext, OperationStep


def _client(handler):
    return BackendClient(base_url="http://backend.test", api_key="k", timeout=1,
                         transport=httpx.MockTransport(handler))


def test_fetch_gown_404_is_none():
    client = _client(lambda request: httpx.Response(404, json={"message": "not found"}))
    assert asyncio.run(client.fetch_gown("AB12CD34")) is None


def test_fetch_booking_passes_event_and_api_key():
    seen = {}

    def handler(request):
        seen["url"] = str(request.url)
        seen["key"] = request.headers.get("x-api-key")
        return httpx.Response(200, json={"bookingId": "bk-1"})

    out = asyncio.run(_client(handler).fetch_booking_by_gown("AB12CD34", EventContext(eventId="evt-1")))
    assert out == {"bookingId": "bk-1"}
    assert seen["url"] == "http://backend.test/gowns/AB12CD34/booking?eventId=evt-1"
    assert seen["key"] == "k"


def test_server_error_is_transient():
    client = _client(lambda request: httpx.Response(503, json={"message": "Service unavailable"}))
    with pytest.raises(TransientError) as exc:
        asyncio.run(client.perform(OperationStep("release", {"bookingId": "bk-1"}), "op-1"))
    assert exc.value.detail["statusCode"] == 503


def test_conflict_is_domain_rejection():
    client = _client(lambda request: httpx.Response(409, json={"error": "Gown already checked out"}))
    with pytest.raises(DomainRejection) as exc:
        asyncio.run(client.assign_resource("bk-1", "AB12CD34", "op-1"))
    assert exc.value.message == "Gown already checked out"


def test_idempotency_key_is_scoped_to_the_action():
    seen = []

    def handler(request):
        seen.append((request.url.path, request.headers.get("Idempotency-Key")))
        return httpx.Response(200, json={"ok": True})

    client = _client(handler)

    async def scenario():
        await client.release_resource("bk-1", "OLD00001", "op-9", skip_rfid_check=True)
        await client.assign_resource("bk-1", "NEW00001", "op-9", ean="123")

    asyncio.run(scenario())
    assert seen == [("/gowns/checkin", "op-9:release"), ("/gowns/checkout", "op-9:assign")]


def test_transport_error_is_flagged_as_network():
    def handler(request):
        raise httpx.ConnectError("connection refused", request=request)

    with pytest.raises(TransientError) as exc:
        asyncio.run(_client(handler).fetch_gown("AB12CD34"))
    assert exc.value.detail["network"] is True


def test_unknown_action_is_a_programming_error():
    client = _client(lambda request: httpx.Response(200))
    with pytest.raises(ValueError):
        asyncio.run(client.perform(OperationStep("teleport", {}), "op-1"))


def test_health():
    assert asyncio.run(_client(lambda request: httpx.Response(200)).health()) is True


def test_permanent_messages():
    assert is_permanent_message("Booking does not exist")
    assert is_permanent_message("Gown ALREADY CHECKED IN")
    assert not is_permanent_message("Gateway timeout")


def test_html_body_on_success_is_transient():
    client = _client(lambda request: httpx.Response(200, text="<html>login</html>"))
    with pytest.raises(TransientError) as exc:
        asyncio.run(client.fetch_booking_by_gown("AB12CD34", EventContext(eventId="evt-1")))
    assert exc.value.detail["invalidBody"] is True
    assert "network" not in exc.value.detail


def test_non_object_body_is_transient():
    client = _client(lambda request: httpx.Response(200, json=["AB12CD34"]))
    with pytest.raises(TransientError):
        asyncio.run(client.fetch_gown("AB12CD34"))


def test_undecodable_response_is_transient():
    def handler(request):
        raise httpx.DecodingError("invalid gzip stream", request=request)

    with pytest.raises(TransientError) as exc:
        asyncio.run(_client(handler).perform(OperationStep("release", {"bookingId": "bk-1"}), "op-1"))
    assert exc.value.detail["errorType"] == "DecodingError"
    assert "network" not in exc.value.detail


def test_empty_success_body_on_a_step_is_accepted():
    client = _client(lambda request: httpx.Response(204))
    assert asyncio.run(client.perform(OperationStep("mark_photo_start", {"contactId": "ct-1"}), "op-1")) == {}
