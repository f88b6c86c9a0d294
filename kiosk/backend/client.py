"""
HTTP client for the bookings/inventory backend.

Every mutation carries an Idempotency-Key derived from the operation key and
the step action, so a live attempt and a later offline replay of the same
step are applied at most once by the backend.
"""
from typing import Any, Dict, Optional

import httpx

from kiosk.core.errors import DomainRejection, TransientError
from kiosk.core.models import EventContext, OperationStep
from kiosk.observability.logging import log
from kiosk.settings import settings

# Backend messages that mean "retrying will never help"
PERMANENT_MARKERS = ("already checked out", "already checked in", "not found", "invalid", "does not exist")

ACTION_PATHS = {
    "assign": "/gowns/checkout",
    "release": "/gowns/checkin",
    "mark_photo_start": "/stage-queue/photo-start",
    "terminal_checkout": "/terminal/checkout",
    "create_print_orders": "/print-orders",
}


def _error_message(resp: httpx.Response) -> str:
    try:
        body = resp.json()
    except ValueError:
        return (resp.text or "")[:300] or f"HTTP {resp.status_code}"
    if isinstance(body, dict):
        return str(body.get("message") or body.get("error") or body.get("detail") or f"HTTP {resp.status_code}")
    return f"HTTP {resp.status_code}"


def is_permanent_message(message: str) -> bool:
    m = (message or "").lower()
    return any(marker in m for marker in PERMANENT_MARKERS)


class BackendClient:
    def __init__(self, base_url: Optional[str] = None, api_key: Optional[str] = None,
                 timeout: Optional[float] = None, transport: Optional[httpx.AsyncBaseTransport] = None):
        self.base_url = (base_url or settings.BACKEND_BASE_URL).rstrip("/")
        self.api_key = settings.BACKEND_API_KEY if api_key is None else api_key
        self.timeout = float(timeout or settings.BACKEND_TIMEOUT_SEC)
        self._transport = transport

    def _client(self) -> httpx.AsyncClient:
        headers = {"Content-Type": "application/json"}
        if self.api_key:
            headers["x-api-key"] = self.api_key
        return httpx.AsyncClient(
            base_url=self.base_url,
            headers=headers,
            timeout=self.timeout,
            transport=self._transport,
        )

    async def _request(self, method: str, path: str, *, json: Any = None, params: Any = None,
                       headers: Optional[Dict[str, str]] = None) -> httpx.Response:
        try:
            async with self._client() as client:
                return await client.request(method, path, json=json, params=params, headers=headers)
        except httpx.TransportError as e:
            log(event="backend_transport_error", method=method, path=path, errorType=type(e).__name__)
            raise TransientError(
                "Could not reach the server.",
                {"network": True, "errorType": type(e).__name__},
            ) from e
        except httpx.HTTPError as e:
            # e.g. DecodingError: the server answered but the body could not be read
            log(event="backend_http_error", method=method, path=path, errorType=type(e).__name__)
            raise TransientError(
                "The server sent an unreadable response.",
                {"errorType": type(e).__name__},
            ) from e

    def _json_body(self, resp: httpx.Response, path: str, allow_empty: bool = False) -> Dict[str, Any]:
        """2xx body as a dict; anything else (captive portal HTML, a bare list) is transient."""
        if not resp.content and allow_empty:
            return {}
        try:
            body = resp.json()
        except ValueError as e:
            log(event="backend_invalid_body", path=path, statusCode=int(resp.status_code),
                contentType=resp.headers.get("content-type", ""))
            raise TransientError(
                "The server sent an unexpected response.",
                {"statusCode": resp.status_code, "invalidBody": True},
            ) from e
        if not isinstance(body, dict):
            log(event="backend_invalid_body", path=path, statusCode=int(resp.status_code), bodyType=type(body).__name__)
            raise TransientError(
                "The server sent an unexpected response.",
                {"statusCode": resp.status_code, "invalidBody": True},
            )
        return body

    def _raise_for_status(self, resp: httpx.Response, path: str) -> None:
        if 200 <= resp.status_code < 300:
            return
        message = _error_message(resp)
        log(event="backend_non2xx", path=path, statusCode=int(resp.status_code), message=message[:200])
        if resp.status_code >= 500 or resp.status_code in (408, 429):
            raise TransientError(message, {"statusCode": resp.status_code})
        raise DomainRejection(message, {"statusCode": resp.status_code, "permanent": True})

    async def fetch_gown(self, identifier: str) -> Optional[Dict[str, Any]]:
        """Gown inventory row ({rfid, ean, inStock, ...}) or None when unknown."""
        path = f"/gowns/{identifier}"
        resp = await self._request("GET", path)
        if resp.status_code == 404:
            return None
        self._raise_for_status(resp, path)
        return self._json_body(resp, path)

    async def fetch_booking_by_gown(self, identifier: str, event_context: EventContext) -> Optional[Dict[str, Any]]:
        """Booking joined with its gown and contact, or None when no booking holds this gown."""
        path = f"/gowns/{identifier}/booking"
        resp = await self._request("GET", path, params={"eventId": event_context.eventId})
        if resp.status_code == 404:
            return None
        self._raise_for_status(resp, path)
        return self._json_body(resp, path)

    async def perform(self, step: OperationStep, idempotency_key: str) -> Dict[str, Any]:
        path = ACTION_PATHS.get(step.action)
        if path is None:
            raise ValueError(f"Unknown backend action: {step.action}")
        headers = {"Idempotency-Key": f"{idempotency_key}:{step.action}"}
        resp = await self._request("POST", path, json=step.params, headers=headers)
        self._raise_for_status(resp, path)
        body = self._json_body(resp, path, allow_empty=True)
        log(event="backend_step_applied", action=step.action, idempotencyKey=headers["Idempotency-Key"])
        return body

    async def assign_resource(self, booking_id: str, identifier: str, idempotency_key: str,
                              ean: Optional[str] = None) -> Dict[str, Any]:
        params = {"bookingId": booking_id, "rfid": identifier}
        if ean:
            params["ean"] = ean
        return await self.perform(OperationStep("assign", params), idempotency_key)

    async def release_resource(self, booking_id: str, identifier: str, idempotency_key: str,
                               skip_rfid_check: bool = False) -> Dict[str, Any]:
        params = {"bookingId": booking_id, "rfid": identifier, "skipRfidCheck": bool(skip_rfid_check)}
        return await self.perform(OperationStep("release", params), idempotency_key)

    async def health(self) -> bool:
        try:
            resp = await self._request("GET", "/health")
        except TransientError:
            return False
        return 200 <= resp.status_code < 300
