import asyncio

from kiosk.core.connectivity import ConnectivityMonitor
from kiosk.core.errors import DomainRejection, ExecutionFailure, QueueFailure, TransientError
from kiosk.core.executor import ConnectivityAwareExecutor
from kiosk.core.models import Failed, Online, Operation, OperationStep, Queued
from kiosk.core.watchdog import ExecutionTicket


def _change_gown():
    return Operation(
        kind="CHANGE_GOWN",
        payload={"bookingId": "bk-1", "oldRfid": "OLD00001", "newRfid": "NEW00001"},
        steps=[
            OperationStep("release", {"bookingId": "bk-1", "rfid": "OLD00001", "skipRfidCheck": True}),
            OperationStep("assign", {"bookingId": "bk-1", "rfid": "NEW00001"}),
        ],
        operationKey="key-1",
    )


def _executor(fakes, offline=False, mode="online", deadline=0.1, backend=None, queue=None):
    backend = backend or fakes.Backend()
    queue = queue or fakes.Queue()
    conn = ConnectivityMonitor(forced_offline=offline)
    return ConnectivityAwareExecutor(backend, queue, conn, mode=mode, online_deadline_sec=deadline), backend, queue, conn


def test_online_runs_steps_in_order_with_shared_key(fakes):
    ex, backend, queue, _ = _executor(fakes)
    outcome = asyncio.run(ex.execute(_change_gown()))
    assert isinstance(outcome, Online)
    assert [c[0] for c in backend.calls] == ["release", "assign"]
    assert {c[2] for c in backend.calls} == {"key-1"}
    assert queue.entries == []


def test_partial_apply_reports_failed_with_completed_steps(fakes):
    ex, backend, _, _ = _executor(fakes)
    backend.errors["assign"] = DomainRejection("Gown already checked out")
    ticket = ExecutionTicket()
    outcome = asyncio.run(ex.execute(_change_gown(), ticket))
    assert isinstance(outcome, Failed)
    assert isinstance(outcome.error, ExecutionFailure)
    assert outcome.error.partially_applied
    assert outcome.error.completed_steps == ["release"]
    assert outcome.error.detail["failedStep"] == "assign"


def test_first_step_rejection_is_not_partial(fakes):
    ex, backend, _, _ = _executor(fakes)
    backend.errors["release"] = DomainRejection("not found")
    outcome = asyncio.run(ex.execute(_change_gown()))
    assert isinstance(outcome, Failed)
    assert isinstance(outcome.error, DomainRejection)
    assert len(backend.calls) == 1


def test_offline_enqueues_and_returns_acknowledged_id(fakes):
    ex, backend, queue, _ = _executor(fakes, offline=True)
    ticket = ExecutionTicket()
    outcome = asyncio.run(ex.execute(_change_gown(), ticket))
    assert outcome == Queued(pendingOperationId="op-1")
    assert ticket.durably_queued
    assert backend.calls == []
    entry = queue.entries[0]
    assert entry["kind"] == "CHANGE_GOWN"
    assert entry["operationKey"] == "key-1"
    assert [s["action"] for s in entry["payload"]["steps"]] == ["release", "assign"]


def test_queue_failure_is_failed_not_queued(fakes):
    queue = fakes.Queue(fail=QueueFailure("disk full"))
    ex, _, _, _ = _executor(fakes, offline=True, queue=queue)
    ticket = ExecutionTicket()
    outcome = asyncio.run(ex.execute(_change_gown(), ticket))
    assert isinstance(outcome, Failed)
    assert isinstance(outcome.error, QueueFailure)
    assert ticket.queuedId is None


def test_offline_refuses_online_only_operations(fakes):
    ex, _, queue, _ = _executor(fakes, offline=True)
    op = Operation(kind="TERMINAL_CHECKOUT", payload={}, steps=[OperationStep("terminal_checkout", {})],
                   offlineCapable=False)
    outcome = asyncio.run(ex.execute(op))
    assert isinstance(outcome, Failed)
    assert isinstance(outcome.error, TransientError)
    assert queue.entries == []


def test_hybrid_deadline_falls_back_to_queue(fakes):
    backend = fakes.Backend(delay=0.5)
    ex, _, queue, conn = _executor(fakes, mode="hybrid", deadline=0.05, backend=backend)
    op = Operation(kind="CHECK_IN_GOWN", payload={"bookingId": "bk-1", "rfid": "AB12CD34"},
                   steps=[OperationStep("release", {"bookingId": "bk-1", "rfid": "AB12CD34"})])
    outcome = asyncio.run(ex.execute(op))
    assert isinstance(outcome, Queued)
    assert queue.entries[0]["operationKey"] == op.operationKey
    assert conn.is_online() is False


def test_hybrid_network_error_falls_back_to_queue(fakes):
    ex, backend, queue, conn = _executor(fakes, mode="hybrid")
    backend.errors["release"] = TransientError("Could not reach the server.", {"network": True})
    op = Operation(kind="CHECK_IN_GOWN", payload={"bookingId": "bk-1", "rfid": "AB12CD34"},
                   steps=[OperationStep("release", {"bookingId": "bk-1", "rfid": "AB12CD34"})])
    outcome = asyncio.run(ex.execute(op))
    assert isinstance(outcome, Queued)
    assert len(queue.entries) == 1
    assert conn.network_down is True


def test_hybrid_domain_rejection_is_not_queued(fakes):
    ex, backend, queue, _ = _executor(fakes, mode="hybrid")
    backend.errors["release"] = DomainRejection("already checked in")
    op = Operation(kind="CHECK_IN_GOWN", payload={"bookingId": "bk-1", "rfid": "AB12CD34"},
                   steps=[OperationStep("release", {})])
    outcome = asyncio.run(ex.execute(op))
    assert isinstance(outcome, Failed)
    assert queue.entries == []
