"""
Connectivity-aware executor
---------------------------
Online: run the operation's steps in order against the backend.
Offline: write the operation to the durable queue and report Queued only
after the write is acknowledged.

Hybrid mode (default) bounds the online attempt with a deadline; when the
deadline passes or the transport fails before any step was applied, the
attempt is cancelled and the operation is queued instead. Both paths share
the operation key, so the backend sees one idempotent mutation.
"""
import asyncio
import time
from typing import Optional

from kiosk.core.connectivity import ConnectivityMonitor
from kiosk.core.errors import ExecutionFailure, KioskError, QueueFailure, TransientError
from kiosk.core.models import Failed, Online, Operation, Outcome, Queued
from kiosk.core.watchdog import ExecutionTicket
from kiosk.observability.logging import log
from kiosk.settings import settings
import kiosk.observability.metrics as metrics


def _is_network_error(e: Exception) -> bool:
    return isinstance(e, TransientError) and bool(e.detail.get("network"))


class ConnectivityAwareExecutor:
    def __init__(self, backend, queue, connectivity: ConnectivityMonitor,
                 mode: Optional[str] = None, online_deadline_sec: Optional[float] = None):
        self.backend = backend
        self.queue = queue
        self.connectivity = connectivity
        self.mode = (mode or settings.EXECUTION_MODE or "hybrid").lower()
        self.online_deadline_sec = float(online_deadline_sec or settings.ONLINE_ATTEMPT_DEADLINE_SEC)

    def planned_path(self) -> str:
        return "online" if self.connectivity.is_online() else "offline"

    async def execute(self, operation: Operation, ticket: Optional[ExecutionTicket] = None) -> Outcome:
        ticket = ticket if ticket is not None else ExecutionTicket()
        t0 = time.monotonic()
        try:
            if not self.connectivity.is_online():
                outcome = await self._enqueue(operation, ticket)
            elif self.mode == "hybrid" and operation.offlineCapable:
                outcome = await self._hybrid(operation, ticket)
            else:
                outcome = await self._run_online(operation, ticket)
        except asyncio.CancelledError:
            log(event="execution_cancelled", kind=operation.kind, operationKey=operation.operationKey,
                path=ticket.path or "", completedSteps=list(ticket.completedSteps))
            raise

        log(
            event="execution_outcome",
            kind=operation.kind,
            operationKey=operation.operationKey,
            outcome=outcome.kind,
            path=ticket.path or "",
            reason=getattr(outcome, "reason", ""),
        )
        await metrics.emit(metrics.record_execution, outcome.kind, int((time.monotonic() - t0) * 1000))
        return outcome

    async def _hybrid(self, operation: Operation, ticket: ExecutionTicket) -> Outcome:
        attempt = asyncio.ensure_future(self._run_online(operation, ticket))
        try:
            done, _ = await asyncio.wait({attempt}, timeout=self.online_deadline_sec)
        except asyncio.CancelledError:
            attempt.cancel()
            raise

        if attempt in done:
            outcome = attempt.result()
            if isinstance(outcome, Failed) and _is_network_error(outcome.error) and not ticket.completedSteps:
                log(event="online_attempt_fallback", kind=operation.kind, reason="network")
                return await self._enqueue(operation, ticket)
            return outcome

        attempt.cancel()
        log(
            event="online_attempt_abandoned",
            kind=operation.kind,
            operationKey=operation.operationKey,
            deadlineSec=self.online_deadline_sec,
            completedSteps=list(ticket.completedSteps),
        )
        if ticket.completedSteps:
            err = ExecutionFailure(
                "The change was only partly applied. Please check with staff.",
                completed_steps=ticket.completedSteps,
                detail={"kind": operation.kind, "operationKey": operation.operationKey, "timedOut": True},
            )
            return Failed(reason=err.message, error=err)
        self.connectivity.mark_down("online_deadline")
        return await self._enqueue(operation, ticket)

    async def _run_online(self, operation: Operation, ticket: ExecutionTicket) -> Outcome:
        ticket.path = "online"
        results = []
        for step in operation.steps:
            try:
                results.append(await self.backend.perform(step, operation.operationKey))
            except KioskError as e:
                if _is_network_error(e):
                    self.connectivity.mark_down("execute")
                if ticket.completedSteps:
                    err = ExecutionFailure(
                        "The change was only partly applied. Please check with staff.",
                        completed_steps=ticket.completedSteps,
                        detail={
                            "kind": operation.kind,
                            "operationKey": operation.operationKey,
                            "failedStep": step.action,
                            "cause": e.to_dict(),
                        },
                    )
                    log(event="execution_partially_applied", anomaly=True, kind=operation.kind,
                        operationKey=operation.operationKey, completedSteps=list(ticket.completedSteps),
                        failedStep=step.action)
                    return Failed(reason=err.message, error=err)
                return Failed(reason=e.message, error=e)
            ticket.completedSteps.append(step.action)
        return Online(result={"steps": results, "last": results[-1] if results else {}})

    async def _enqueue(self, operation: Operation, ticket: ExecutionTicket) -> Outcome:
        ticket.path = "offline"
        if not operation.offlineCapable:
            err = TransientError("This action needs a network connection.", {"kind": operation.kind})
            return Failed(reason=err.message, error=err)
        try:
            pending_id = await self.queue.enqueue(operation.kind, operation.queue_payload(), operation.operationKey)
        except QueueFailure as e:
            return Failed(reason=e.message, error=e)
        ticket.queuedId = pending_id
        return Queued(pendingOperationId=pending_id)
