from typing import Optional

from fastapi import APIRouter, Depends, HTTPException

from kiosk.api.auth import admin_confirmer, require_admin, require_api_key
from kiosk.api.deps import get_registry
from kiosk.api.schemas import (
    ConfirmRequest,
    FlowStateResponse,
    InputRequest,
    OpenRequest,
    SubmitRequest,
    TransactionStatusRequest,
)
from kiosk.core.flow import FlowStateMachine
from kiosk.core.models import EventContext
from kiosk.core.registry import SessionRegistry
from kiosk.realtime.status import publish_status
from kiosk.settings import settings
from kiosk.surfaces.profiles import PROFILES
from kiosk.observability.logging import log

router = APIRouter(dependencies=[Depends(require_api_key)])

KIOSK_PREFIX = "/kiosk/{surface}/{kiosk_id}"


def _state(machine: FlowStateMachine) -> FlowStateResponse:
    return FlowStateResponse.model_validate(machine.snapshot())


def _machine(surface: str, kiosk_id: str, registry: SessionRegistry) -> FlowStateMachine:
    if surface not in PROFILES:
        raise HTTPException(status_code=404, detail=f"Unknown kiosk surface: {surface}")
    machine = registry.get(surface, kiosk_id)
    if machine is None:
        raise HTTPException(status_code=404, detail="Kiosk is not open")
    return machine


@router.post(KIOSK_PREFIX + "/open", response_model=FlowStateResponse)
async def open_kiosk(surface: str, kiosk_id: str, req: Optional[OpenRequest] = None,
                     registry: SessionRegistry = Depends(get_registry)):
    req = req or OpenRequest()
    if surface not in PROFILES:
        raise HTTPException(status_code=404, detail=f"Unknown kiosk surface: {surface}")
    event_id = req.eventId or settings.KIOSK_EVENT_ID
    if not event_id:
        raise HTTPException(status_code=422, detail="No event selected")
    event_context = EventContext(eventId=str(event_id), eventName=req.eventName or settings.KIOSK_EVENT_NAME)
    assigned = req.assigned.model_dump(exclude_none=True) if req.assigned else None
    if surface == "gown_change" and not assigned:
        raise HTTPException(status_code=422, detail="gown_change needs the assigned gown")
    machine = await registry.open(surface, kiosk_id, event_context, assigned=assigned)
    return _state(machine)


@router.get(KIOSK_PREFIX + "/state", response_model=FlowStateResponse)
async def kiosk_state(surface: str, kiosk_id: str, registry: SessionRegistry = Depends(get_registry)):
    return _state(_machine(surface, kiosk_id, registry))


@router.post(KIOSK_PREFIX + "/input", response_model=FlowStateResponse)
async def kiosk_input(surface: str, kiosk_id: str, req: InputRequest,
                      registry: SessionRegistry = Depends(get_registry)):
    machine = _machine(surface, kiosk_id, registry)
    await machine.input(req.text, req.timestampMs)
    return _state(machine)


@router.post(KIOSK_PREFIX + "/submit", response_model=FlowStateResponse)
async def kiosk_submit(surface: str, kiosk_id: str, req: Optional[SubmitRequest] = None,
                       registry: SessionRegistry = Depends(get_registry)):
    req = req or SubmitRequest()
    machine = _machine(surface, kiosk_id, registry)
    await machine.submit(req.text)
    return _state(machine)


@router.post(KIOSK_PREFIX + "/confirm", response_model=FlowStateResponse)
async def kiosk_confirm(surface: str, kiosk_id: str, req: Optional[ConfirmRequest] = None,
                        registry: SessionRegistry = Depends(get_registry)):
    req = req or ConfirmRequest()
    machine = _machine(surface, kiosk_id, registry)
    await machine.confirm(req.extra())
    return _state(machine)


@router.post(KIOSK_PREFIX + "/cancel", response_model=FlowStateResponse)
async def kiosk_cancel(surface: str, kiosk_id: str, registry: SessionRegistry = Depends(get_registry)):
    machine = _machine(surface, kiosk_id, registry)
    await machine.cancel()
    return _state(machine)


@router.post(KIOSK_PREFIX + "/admin-approve", response_model=FlowStateResponse,
             dependencies=[Depends(require_admin)])
async def kiosk_admin_approve(surface: str, kiosk_id: str, registry: SessionRegistry = Depends(get_registry)):
    machine = _machine(surface, kiosk_id, registry)
    await machine.admin_approve()
    return _state(machine)


@router.post(KIOSK_PREFIX + "/title-tap", response_model=FlowStateResponse)
async def kiosk_title_tap(surface: str, kiosk_id: str, registry: SessionRegistry = Depends(get_registry)):
    machine = _machine(surface, kiosk_id, registry)
    await machine.title_tap()
    return _state(machine)


@router.post(KIOSK_PREFIX + "/exit", dependencies=[Depends(require_admin)])
async def kiosk_exit(surface: str, kiosk_id: str, registry: SessionRegistry = Depends(get_registry)):
    machine = _machine(surface, kiosk_id, registry)
    exited = await machine.request_exit(admin_confirmer())
    if exited:
        await registry.close(surface, kiosk_id)
    return {"exited": exited, "state": machine.state}


@router.post("/transactions/{transaction_id}/status")
async def transaction_status_webhook(transaction_id: str, req: TransactionStatusRequest,
                                     registry: SessionRegistry = Depends(get_registry)):
    """
    Payment terminal webhook. Delivered directly when this process owns the
    transaction, otherwise published for the process that does.
    """
    machine = registry.find_by_transaction(transaction_id)
    if machine is not None:
        await machine.transaction_status(transaction_id, req.status)
        return {"delivered": "local", "state": machine.state}
    receivers = await publish_status(transaction_id, req.status)
    log(event="transaction_status_published", transactionId=transaction_id, status=req.status, receivers=receivers)
    return {"delivered": "published", "receivers": receivers}
