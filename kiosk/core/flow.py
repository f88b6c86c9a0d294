"""
Flow state machine
------------------
One instance drives one kiosk surface. Every external stimulus (keystroke
observation, settle, submit, confirm, cancel, admin approval, exit gesture,
transaction status, terminal auto-reset) enters through dispatch(); a
handler acts only when the current state accepts its event.

Cycle identity: each guarded validate->execute cycle gets a fresh cycleId.
Anything that resumes after an await (lookup answer, executor outcome,
transaction status, reset timer) checks it against the session before
touching state.
"""
import asyncio
import time
from dataclasses import dataclass
from typing import Any, Awaitable, Callable, Dict, List, Optional, Set
import uuid

from kiosk.core import state_machine as sm
from kiosk.core.classifier import InputTracker, normalize_identifier
from kiosk.core.debounce import DebounceGate
from kiosk.core.errors import DomainRejection, ExecutionFailure, FormatError, KioskError, TransientError
from kiosk.core.guard import SubmissionGuard
from kiosk.core.models import (
    AlreadyAssigned,
    EventContext,
    Failed,
    FlowSession,
    Found,
    Late,
    LookupResult,
    NotFound,
    NotReturnable,
    Online,
    Operation,
    Outcome,
    Queued,
    TXN_CANCELED,
    TXN_COMPLETED,
    WrongEvent,
)
from kiosk.core.watchdog import ExecutionTicket, StuckOperationWatchdog
from kiosk.observability.logging import log
from kiosk.settings import settings
from kiosk.surfaces.profiles import CREATE_NEW, STANDARD, SurfaceProfile
import kiosk.observability.metrics as metrics

ExitConfirmer = Callable[[], Awaitable[bool]]

EXIT_TAP_COUNT = 3
QUEUED_MESSAGE = "Saved offline. It will sync when the connection returns."


@dataclass
class FlowTiming:
    settle_ms: int
    success_display_sec: float
    error_display_sec: float
    rejection_display_sec: float
    watchdog_offline_sec: float
    watchdog_online_sec: float
    payment_status_timeout_sec: float
    lookup_timeout_sec: float
    exit_tap_window_sec: float

    @classmethod
    def for_profile(cls, profile: SurfaceProfile) -> "FlowTiming":
        return cls(
            settle_ms=profile.settle_ms,
            success_display_sec=settings.SUCCESS_DISPLAY_SEC,
            error_display_sec=settings.ERROR_DISPLAY_SEC,
            rejection_display_sec=settings.REJECTION_DISPLAY_SEC,
            watchdog_offline_sec=settings.WATCHDOG_OFFLINE_SEC,
            watchdog_online_sec=settings.WATCHDOG_ONLINE_SEC,
            payment_status_timeout_sec=settings.PAYMENT_STATUS_TIMEOUT_SEC,
            lookup_timeout_sec=settings.LOOKUP_TIMEOUT_SEC,
            exit_tap_window_sec=settings.EXIT_TAP_WINDOW_SEC,
        )


def _outcome_dict(outcome: Outcome) -> Dict[str, Any]:
    if isinstance(outcome, Online):
        return {"kind": outcome.kind, "result": outcome.result}
    if isinstance(outcome, Queued):
        return {"kind": outcome.kind, "pendingOperationId": outcome.pendingOperationId}
    return {"kind": outcome.kind, "reason": outcome.reason}


class FlowStateMachine:
    def __init__(
        self,
        profile: SurfaceProfile,
        event_context: EventContext,
        lookup,
        executor,
        *,
        kiosk_id: str = "default",
        assigned: Optional[Dict[str, Any]] = None,
        exit_confirmer: Optional[ExitConfirmer] = None,
        timing: Optional[FlowTiming] = None,
    ):
        self.profile = profile
        self.event_context = event_context
        self.lookup = lookup
        self.executor = executor
        self.kiosk_id = kiosk_id
        # Booking context for surfaces that swap an existing assignment
        self.assigned = dict(assigned or {})
        self.exit_confirmer = exit_confirmer
        self.timing = timing or FlowTiming.for_profile(profile)

        self.session = FlowSession(state=sm.IDLE)
        self.guard = SubmissionGuard(f"{profile.name}:{kiosk_id}")
        self.tracker = InputTracker()
        self.debounce = DebounceGate(self.timing.settle_ms, self._on_debounce_settled)
        self.watchdog = StuckOperationWatchdog(profile.name, kiosk_id)
        self.exit_requested = False

        self._extra: Dict[str, Any] = {}
        self._reset_handle: Optional[asyncio.TimerHandle] = None
        self._status_future: Optional[asyncio.Future] = None
        self._taps: List[float] = []
        self._background: Set[asyncio.Future] = set()

        self._handlers = {
            "input": self._on_input,
            "settled": self._on_settled,
            "submit": self._on_submit,
            "confirm": self._on_confirm,
            "cancel": self._on_cancel,
            "admin_approve": self._on_admin_approve,
            "title_tap": self._on_title_tap,
            "exit": self._on_exit,
            "transaction_status": self._on_transaction_status,
            "reset": self._on_reset,
        }

    # ------------------------------------------------------------------
    # Entry point
    # ------------------------------------------------------------------
    @property
    def state(self) -> str:
        return self.session.state

    async def dispatch(self, event: str, **data) -> Any:
        handler = self._handlers.get(event)
        if handler is None:
            raise ValueError(f"Unknown flow event: {event}")
        if self.session.state == sm.EXITED:
            log(event="flow_event_after_exit", surface=self.profile.name, kioskId=self.kiosk_id, flowEvent=event)
            return None
        return await handler(**data)

    async def input(self, text: str, timestamp_ms: Optional[int] = None) -> None:
        await self.dispatch("input", text=text, timestamp_ms=timestamp_ms)

    async def submit(self, text: Optional[str] = None) -> None:
        await self.dispatch("submit", text=text)

    async def confirm(self, extra: Optional[Dict[str, Any]] = None) -> None:
        await self.dispatch("confirm", extra=extra)

    async def cancel(self) -> None:
        await self.dispatch("cancel")

    async def admin_approve(self) -> None:
        await self.dispatch("admin_approve")

    async def title_tap(self) -> bool:
        return bool(await self.dispatch("title_tap"))

    async def request_exit(self, confirmer: Optional[ExitConfirmer] = None) -> bool:
        return bool(await self.dispatch("exit", confirmer=confirmer))

    async def transaction_status(self, transaction_id: str, status: str) -> None:
        await self.dispatch("transaction_status", transaction_id=transaction_id, status=status)

    async def wait_background(self) -> None:
        """Await spawned work (payment status waits, scheduled resets in flight)."""
        while self._background:
            await asyncio.gather(*list(self._background), return_exceptions=True)

    def snapshot(self) -> Dict[str, Any]:
        out = self.session.snapshot()
        out.update({
            "surface": self.profile.name,
            "kioskId": self.kiosk_id,
            "eventId": self.event_context.eventId,
            "guardHeld": self.guard.held,
            "exitRequested": self.exit_requested,
        })
        return out

    async def close(self) -> None:
        """Stop all timers and release what this instance holds (registry shutdown)."""
        self._teardown()
        for task in list(self._background):
            task.cancel()

    # ------------------------------------------------------------------
    # Input handling
    # ------------------------------------------------------------------
    async def _on_input(self, text: str, timestamp_ms: Optional[int] = None) -> None:
        if self.session.state not in sm.INPUT_STATES:
            log(event="input_ignored", surface=self.profile.name, kioskId=self.kiosk_id, state=self.session.state)
            return
        text = text or ""
        self.tracker.observe(text, timestamp_ms)
        self.session.text = text
        self.session.classification = self.tracker.classification.value if self.tracker.classification else None

        if not text:
            self.debounce.cancel()
            if self.session.state == sm.AWAITING_SETTLED_INPUT:
                self._to_idle("input_cleared")
            return

        self._transition(sm.AWAITING_SETTLED_INPUT, "input")
        self.debounce.on_change(text)

    async def _on_debounce_settled(self, text: str) -> None:
        await self.dispatch("settled", text=text)

    async def _on_settled(self, text: str) -> None:
        if self.session.state != sm.AWAITING_SETTLED_INPUT or text != self.session.text:
            return
        if not self.profile.should_auto_submit(text, self.tracker.is_scan):
            log(
                event="settled_awaiting_submit",
                surface=self.profile.name,
                kioskId=self.kiosk_id,
                classification=self.session.classification,
                length=len(text),
            )
            return
        await self._begin_cycle(text, "scan")

    async def _on_submit(self, text: Optional[str] = None) -> None:
        if text is not None and self.session.state in sm.INPUT_STATES and text != self.session.text:
            # Enter pressed with a value the field never reported
            self.tracker.observe(text)
            self.session.text = text
            if text:
                self._transition(sm.AWAITING_SETTLED_INPUT, "submit")
        await self._begin_cycle(self.session.text, "submit")

    # ------------------------------------------------------------------
    # Validate -> Resolve
    # ------------------------------------------------------------------
    async def _begin_cycle(self, text: str, trigger: str) -> None:
        if not self.guard.try_acquire():
            log(
                event="submission_rejected_guard_held",
                surface=self.profile.name,
                kioskId=self.kiosk_id,
                state=self.session.state,
                trigger=trigger,
            )
            await metrics.emit(metrics.increment_guard_rejected)
            return
        if self.session.state != sm.AWAITING_SETTLED_INPUT:
            self.guard.release()
            log(event="submission_ignored", surface=self.profile.name, kioskId=self.kiosk_id, state=self.session.state)
            return

        self.debounce.cancel()
        s = self.session
        cycle_id = uuid.uuid4().hex
        s.cycleId = cycle_id
        s.attemptCount += 1

        try:
            identifier = normalize_identifier(text)
        except FormatError as e:
            self._enter_terminal(sm.ERROR_TERMINAL, e.message, error=e, reason="format")
            return

        self._transition(sm.VALIDATING, trigger)
        s.currentIdentifier = identifier

        if self.profile.rejects_same_resource and identifier == str(self.assigned.get("rfid") or "").upper():
            err = DomainRejection("This is the gown that is already assigned.", {"reason": "same_resource"})
            self._enter_terminal(sm.ERROR_TERMINAL, err.message, error=err, reason="same_resource")
            return

        try:
            result = await asyncio.wait_for(
                self.lookup.lookup_by_identifier(identifier, self.event_context),
                timeout=self.timing.lookup_timeout_sec,
            )
        except asyncio.TimeoutError:
            result = TransientError("The lookup took too long. Please scan again.", {"timeout": True})
        except KioskError as e:
            result = e
        except Exception as e:
            log(event="lookup_unexpected_error", anomaly=True, surface=self.profile.name, kioskId=self.kiosk_id,
                errorType=type(e).__name__, error=str(e)[:200])
            result = TransientError("Something went wrong looking up this gown. Please scan again.",
                                    {"errorType": type(e).__name__})

        if not self._is_current(cycle_id):
            log(event="late_response_dropped", anomaly=True, stage="lookup",
                surface=self.profile.name, kioskId=self.kiosk_id)
            return
        if isinstance(result, KioskError):
            self._enter_terminal(sm.ERROR_TERMINAL, result.message, error=result, reason="lookup_failed")
            return

        self._transition(sm.RESOLVING, result.kind)
        await self._resolve(result)

    async def _resolve(self, result: LookupResult) -> None:
        s = self.session
        s.lookupKind = result.kind

        if isinstance(result, WrongEvent):
            msg = "This gown belongs to a different event"
            msg = f"{msg}: {result.eventName}." if result.eventName else f"{msg}."
            self._reject(msg, "wrong_event")
        elif isinstance(result, (AlreadyAssigned, NotReturnable)):
            self._reject(result.message, result.kind)
        elif isinstance(result, NotFound):
            if not self.profile.allow_create:
                self._reject(self.profile.not_found_message, "not_found")
                return
            s.confirmFraming = CREATE_NEW
            s.message = "This gown is not in the system yet. Create it and assign?"
            self._transition(sm.CONFIRM_REQUIRED, "not_found")
        elif isinstance(result, Late):
            s.currentRecord = result.record
            s.message = "This return is late. A staff member must approve it."
            self._transition(sm.LATE_REVIEW_REQUIRED, "late")
        elif isinstance(result, Found):
            s.currentRecord = result.record
            if self.profile.preapproved:
                await self._execute({})
                return
            s.confirmFraming = STANDARD
            self._transition(sm.CONFIRM_REQUIRED, "found")

    def _reject(self, message: str, reason: str) -> None:
        err = DomainRejection(message, {"reason": reason})
        self._enter_terminal(sm.REJECTION_TERMINAL, message, error=err, reason=reason)

    # ------------------------------------------------------------------
    # Operator decisions
    # ------------------------------------------------------------------
    async def _on_confirm(self, extra: Optional[Dict[str, Any]] = None) -> None:
        if self.session.state != sm.CONFIRM_REQUIRED:
            log(event="confirm_ignored", surface=self.profile.name, kioskId=self.kiosk_id, state=self.session.state)
            return
        await self._execute(extra or {})

    async def _on_admin_approve(self) -> None:
        if self.session.state != sm.LATE_REVIEW_REQUIRED:
            log(event="admin_approve_ignored", surface=self.profile.name, kioskId=self.kiosk_id, state=self.session.state)
            return
        log(event="late_return_approved", surface=self.profile.name, kioskId=self.kiosk_id,
            identifier=self.session.currentIdentifier)
        await self._execute({})

    async def _on_cancel(self) -> None:
        state = self.session.state
        if state in (sm.CONFIRM_REQUIRED, sm.LATE_REVIEW_REQUIRED, sm.AWAITING_SETTLED_INPUT):
            self._to_idle("cancel")
        elif state in sm.TERMINAL_STATES:
            self._to_idle("dismissed")
        else:
            log(event="cancel_ignored", surface=self.profile.name, kioskId=self.kiosk_id, state=state)

    # ------------------------------------------------------------------
    # Execution
    # ------------------------------------------------------------------
    async def _execute(self, extra: Dict[str, Any]) -> None:
        s = self.session
        cycle_id = s.cycleId
        self._extra = dict(extra)
        try:
            operation = self.profile.build_operation(
                s.currentIdentifier,
                s.currentRecord,
                assigned=self.assigned,
                extra=self._extra,
                framing=s.confirmFraming or STANDARD,
            )
        except ValueError as e:
            if s.state == sm.CONFIRM_REQUIRED:
                # stay on the confirmation so the operator can fix the selection
                s.message = str(e)
                log(event="operation_build_rejected", surface=self.profile.name, kioskId=self.kiosk_id, reason=str(e))
                return
            self._enter_terminal(sm.ERROR_TERMINAL, str(e), error=KioskError(str(e)), reason="build_failed")
            return
        except Exception as e:
            log(event="operation_build_failed", anomaly=True, surface=self.profile.name, kioskId=self.kiosk_id,
                errorType=type(e).__name__, error=str(e)[:200])
            err = KioskError("This record could not be processed. Please check with staff.",
                             {"errorType": type(e).__name__})
            self._enter_terminal(sm.ERROR_TERMINAL, err.message, error=err, reason="build_failed")
            return

        self._transition(sm.EXECUTING, operation.kind)
        outcome = await self._run_under_watchdog(operation)
        if outcome is None:
            return
        if not self._is_current(cycle_id):
            log(event="late_response_dropped", anomaly=True, stage="execute",
                surface=self.profile.name, kioskId=self.kiosk_id)
            return
        self._apply_outcome(operation, outcome, cycle_id)

    async def _run_under_watchdog(self, operation: Operation) -> Optional[Outcome]:
        """
        Race the executor against the watchdog. Returns the outcome, or None
        when the watchdog won and already forced the terminal state.
        """
        ticket = ExecutionTicket()
        offline = self.executor.planned_path() == "offline"
        bound = self.timing.watchdog_offline_sec if offline else self.timing.watchdog_online_sec
        expired = self.watchdog.arm(bound)
        task = asyncio.ensure_future(self.executor.execute(operation, ticket))
        await asyncio.wait({task, expired}, return_when=asyncio.FIRST_COMPLETED)

        if task.done():
            self.watchdog.disarm()
            try:
                return task.result()
            except KioskError as e:
                return Failed(reason=e.message, error=e)
            except Exception as e:
                log(event="execution_unexpected_error", anomaly=True, surface=self.profile.name,
                    kioskId=self.kiosk_id, kind=operation.kind, operationKey=operation.operationKey,
                    errorType=type(e).__name__, error=str(e)[:200], completedSteps=list(ticket.completedSteps))
                err = ExecutionFailure(
                    "Something went wrong while saving. Please check with staff.",
                    completed_steps=ticket.completedSteps,
                    detail={"kind": operation.kind, "operationKey": operation.operationKey,
                            "errorType": type(e).__name__},
                )
                return Failed(reason=err.message, error=err)

        task.cancel()
        log(
            event="execution_abandoned",
            anomaly=True,
            surface=self.profile.name,
            kioskId=self.kiosk_id,
            kind=operation.kind,
            operationKey=operation.operationKey,
        )
        state, message = self.watchdog.forced_resolution(ticket, operation.kind)
        self.watchdog.disarm()
        self.session.forced = True
        outcome = {"kind": "queued", "pendingOperationId": ticket.queuedId} if ticket.durably_queued else None
        err = None if ticket.durably_queued else TransientError(message, {"completedSteps": list(ticket.completedSteps)})
        self._enter_terminal(state, message, error=err, outcome=outcome, reason="watchdog")
        await metrics.emit(metrics.record_watchdog_forced, self.profile.name, self.kiosk_id)
        return None

    def _apply_outcome(self, operation: Operation, outcome: Outcome, cycle_id: Optional[str]) -> None:
        s = self.session
        if isinstance(outcome, Online):
            if operation.awaitsStatus:
                transaction_id = str((outcome.result.get("last") or {}).get("transactionId") or "")
                if not transaction_id:
                    err = KioskError("The payment terminal did not start a transaction.")
                    self._enter_terminal(sm.ERROR_TERMINAL, err.message, error=err, reason="no_transaction")
                    return
                s.transactionId = transaction_id
                s.message = "Complete the payment on the terminal."
                self._spawn(self._await_transaction_status(cycle_id, transaction_id))
                return
            self._enter_terminal(sm.SUCCESS_TERMINAL, self.profile.success_message,
                                 outcome=_outcome_dict(outcome), reason="online")
        elif isinstance(outcome, Queued):
            self._enter_terminal(sm.SUCCESS_TERMINAL, QUEUED_MESSAGE, outcome=_outcome_dict(outcome), reason="queued")
        else:
            err = outcome.error if isinstance(outcome.error, KioskError) else KioskError(outcome.reason)
            self._enter_terminal(sm.ERROR_TERMINAL, outcome.reason, error=err,
                                 outcome=_outcome_dict(outcome), reason=err.category)

    async def _await_transaction_status(self, cycle_id: Optional[str], transaction_id: str) -> None:
        loop = asyncio.get_running_loop()
        self._status_future = loop.create_future()
        status_future = self._status_future
        expired = self.watchdog.arm(self.timing.payment_status_timeout_sec)
        await asyncio.wait({status_future, expired}, return_when=asyncio.FIRST_COMPLETED)

        if not self._is_current(cycle_id):
            return
        if not status_future.done():
            status_future.cancel()
            self._status_future = None
            self.watchdog.disarm()
            log(event="transaction_status_timeout", anomaly=True, surface=self.profile.name,
                kioskId=self.kiosk_id, transactionId=transaction_id)
            self.session.forced = True
            err = TransientError("The payment was not confirmed in time. Please check with staff.",
                                 {"transactionId": transaction_id})
            self._enter_terminal(sm.ERROR_TERMINAL, err.message, error=err, reason="payment_timeout")
            await metrics.emit(metrics.record_watchdog_forced, self.profile.name, self.kiosk_id)
            return

        self.watchdog.disarm()
        self._status_future = None
        if status_future.cancelled():
            return
        if status_future.result() == TXN_CANCELED:
            self._reject("The checkout was canceled.", "payment_canceled")
            return

        try:
            follow_on = self.profile.build_follow_on(self.session.currentRecord or {}, self._extra, transaction_id)
        except Exception as e:
            log(event="operation_build_failed", anomaly=True, surface=self.profile.name, kioskId=self.kiosk_id,
                transactionId=transaction_id, errorType=type(e).__name__, error=str(e)[:200])
            err = ExecutionFailure("The payment went through but the prints could not be ordered. Please check with staff.",
                                   detail={"transactionId": transaction_id, "errorType": type(e).__name__})
            self._enter_terminal(sm.ERROR_TERMINAL, err.message, error=err, reason="build_failed")
            return
        if follow_on is None:
            self._enter_terminal(sm.SUCCESS_TERMINAL, self.profile.success_message, reason="payment_completed")
            return
        outcome = await self._run_under_watchdog(follow_on)
        if outcome is None or not self._is_current(cycle_id):
            return
        self._apply_outcome(follow_on, outcome, cycle_id)

    async def _on_transaction_status(self, transaction_id: str, status: str) -> None:
        status = str(status or "").upper()
        future = self._status_future
        if self.session.transactionId != transaction_id or future is None or future.done():
            log(event="transaction_status_ignored", surface=self.profile.name, kioskId=self.kiosk_id,
                transactionId=transaction_id, status=status)
            return
        if status in (TXN_COMPLETED, TXN_CANCELED):
            future.set_result(status)
        else:
            log(event="transaction_status_pending", transactionId=transaction_id, status=status)

    # ------------------------------------------------------------------
    # Terminals, reset, exit
    # ------------------------------------------------------------------
    def _enter_terminal(self, state: str, message: str, *, error: Optional[Exception] = None,
                        outcome: Optional[Dict[str, Any]] = None, reason: str = "") -> None:
        self.watchdog.disarm()
        self.debounce.cancel()
        self._transition(state, reason)
        s = self.session
        s.message = message
        if isinstance(error, KioskError):
            s.error = error.to_dict()
        elif error is not None:
            s.error = {"category": "error", "message": str(error)}
        s.outcome = outcome
        delay = {
            sm.SUCCESS_TERMINAL: self.timing.success_display_sec,
            sm.ERROR_TERMINAL: self.timing.error_display_sec,
            sm.REJECTION_TERMINAL: self.timing.rejection_display_sec,
        }[state]
        self._schedule_reset(s.cycleId, delay)

    def _schedule_reset(self, cycle_id: Optional[str], delay: float) -> None:
        self._cancel_reset()
        loop = asyncio.get_running_loop()
        self._reset_handle = loop.call_later(delay, self._fire_reset, cycle_id)

    def _cancel_reset(self) -> None:
        if self._reset_handle is not None:
            self._reset_handle.cancel()
        self._reset_handle = None

    def _fire_reset(self, cycle_id: Optional[str]) -> None:
        self._reset_handle = None
        self._spawn(self.dispatch("reset", cycle_id=cycle_id))

    async def _on_reset(self, cycle_id: Optional[str] = None) -> None:
        if self.session.state not in sm.TERMINAL_STATES:
            return
        if cycle_id is not None and self.session.cycleId != cycle_id:
            return
        self._to_idle("auto_reset")

    def _to_idle(self, reason: str) -> None:
        self._teardown()
        self._transition(sm.IDLE, reason)
        self.session.clear(sm.IDLE)

    async def _on_title_tap(self) -> bool:
        now = time.monotonic()
        window = self.timing.exit_tap_window_sec
        self._taps = [t for t in self._taps if now - t <= window]
        self._taps.append(now)
        if len(self._taps) < EXIT_TAP_COUNT:
            return False
        self._taps = []
        log(event="exit_gesture_detected", surface=self.profile.name, kioskId=self.kiosk_id)
        return await self._on_exit()

    async def _on_exit(self, confirmer: Optional[ExitConfirmer] = None) -> bool:
        if self.session.state == sm.EXECUTING:
            log(event="exit_rejected_executing", surface=self.profile.name, kioskId=self.kiosk_id)
            return False
        confirmer = confirmer or self.exit_confirmer
        if confirmer is None:
            self.exit_requested = True
            log(event="exit_confirmation_pending", surface=self.profile.name, kioskId=self.kiosk_id)
            return False
        confirmed = bool(await confirmer())
        if not confirmed:
            self.exit_requested = False
            log(event="exit_not_confirmed", surface=self.profile.name, kioskId=self.kiosk_id)
            return False
        if self.session.state in (sm.EXECUTING, sm.EXITED):
            log(event="exit_rejected_executing", surface=self.profile.name, kioskId=self.kiosk_id,
                state=self.session.state)
            return False
        self._teardown()
        self._transition(sm.EXITED, "exit")
        self.session.clear(sm.EXITED)
        self.exit_requested = False
        log(event="kiosk_exited", surface=self.profile.name, kioskId=self.kiosk_id)
        return True

    # ------------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------------
    def _transition(self, to_state: str, reason: str = "") -> None:
        from_state = self.session.state
        sm.check_transition(from_state, to_state, reason)
        self.session.state = to_state
        if from_state != to_state:
            log(
                event="flow_transition",
                surface=self.profile.name,
                kioskId=self.kiosk_id,
                sessionId=self.session.sessionId,
                fromState=from_state,
                toState=to_state,
                reason=reason,
            )

    def _is_current(self, cycle_id: Optional[str]) -> bool:
        return self.session.state != sm.EXITED and self.session.cycleId == cycle_id

    def _teardown(self) -> None:
        self.debounce.cancel()
        self._cancel_reset()
        self.watchdog.disarm()
        if self._status_future is not None and not self._status_future.done():
            self._status_future.cancel()
        self._status_future = None
        self.tracker.reset()
        self._taps = []
        if self.guard.held:
            self.guard.release()

    def _spawn(self, coro) -> asyncio.Future:
        task = asyncio.ensure_future(coro)
        self._background.add(task)
        task.add_done_callback(self._background.discard)
        return task
