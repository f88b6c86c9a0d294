import asyncio
from unittest.mock import patch

from kiosk.core import state_machine as sm
from kiosk.core.watchdog import ExecutionTicket, StuckOperationWatchdog


@patch("kiosk.core.watchdog.log")
def test_forced_success_requires_acknowledged_queue_write(mock_log):
    wd = StuckOperationWatchdog("returns", "k1")
    state, _ = wd.forced_resolution(ExecutionTicket(path="offline", queuedId="op-1"), "CHECK_IN_GOWN")
    assert state == sm.SUCCESS_TERMINAL
    assert mock_log.call_args.kwargs["anomaly"] is True


@patch("kiosk.core.watchdog.log")
def test_unacknowledged_offline_write_forces_error(mock_log):
    wd = StuckOperationWatchdog("returns", "k1")
    state, _ = wd.forced_resolution(ExecutionTicket(path="offline"), "CHECK_IN_GOWN")
    assert state == sm.ERROR_TERMINAL


@patch("kiosk.core.watchdog.log")
def test_online_path_forces_error(mock_log):
    wd = StuckOperationWatchdog("returns", "k1")
    state, _ = wd.forced_resolution(ExecutionTicket(path="online", completedSteps=["release"]))
    assert state == sm.ERROR_TERMINAL
    assert mock_log.call_args.kwargs["completedSteps"] == ["release"]


def test_arm_fires_and_disarm_cancels():
    async def scenario():
        wd = StuckOperationWatchdog()
        expired = wd.arm(0.02)
        await asyncio.sleep(0.05)
        fired = expired.done() and expired.result() is True

        second = wd.arm(0.02)
        wd.disarm()
        await asyncio.sleep(0.05)
        return fired, second.cancelled(), wd.armed

    fired, cancelled, armed = asyncio.run(scenario())
    assert fired is True
    assert cancelled is True
    assert armed is False
