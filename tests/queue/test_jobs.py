import asyncio
from unittest.mock import patch, MagicMock

from redis.exceptions import ConnectionError as RedisConnectionError

from kiosk.queue.jobs import enqueue_replay, replay_pending_operations_job


@patch("kiosk.queue.jobs.log")
@patch("kiosk.queue.jobs.BackendClient")
@patch("kiosk.queue.jobs.RedisOfflineQueue")
@patch("kiosk.queue.jobs.replay")
def test_replay_job_runs_one_pass(mock_replay, mock_queue_cls, mock_backend_cls, mock_log):
    async def fake_replay(queue, backend, limit=0):
        return {"total": 0, "replayed": 0, "failed": 0, "retry": 0, "errors": []}

    mock_replay.side_effect = fake_replay
    out = replay_pending_operations_job(25)

    assert out["total"] == 0
    assert mock_replay.call_args.kwargs["limit"] == 25
    assert mock_log.call_args_list[0].kwargs["event"] == "replay_job_start"


@patch("kiosk.queue.jobs.log")
@patch("kiosk.queue.jobs.get_queue")
def test_enqueue_replay(mock_get_queue, mock_log):
    mock_queue = MagicMock()
    mock_queue.enqueue.return_value = MagicMock(id="job-1")
    mock_get_queue.return_value = mock_queue

    assert enqueue_replay(10) == "job-1"
    mock_queue.enqueue.assert_called_once_with(replay_pending_operations_job, 10)


@patch("kiosk.main.enqueue_replay")
def test_recovery_hook_enqueues_a_replay(mock_enqueue):
    from kiosk.main import replay_on_recovery

    mock_enqueue.return_value = "job-2"
    asyncio.run(replay_on_recovery())
    mock_enqueue.assert_called_once_with()


@patch("kiosk.main.log")
@patch("kiosk.main.enqueue_replay")
def test_recovery_hook_logs_when_redis_is_down(mock_enqueue, mock_log):
    from kiosk.main import replay_on_recovery

    mock_enqueue.side_effect = RedisConnectionError("redis down")
    asyncio.run(replay_on_recovery())
    assert mock_log.call_args.kwargs["event"] == "replay_on_recovery_failed"
    assert mock_log.call_args.kwargs["errorType"] == "ConnectionError"


@patch("kiosk.main.enqueue_replay")
def test_backend_recovery_triggers_replay(mock_enqueue):
    from kiosk.core.connectivity import ConnectivityMonitor
    from kiosk.main import replay_on_recovery

    async def health():
        return True

    monitor = ConnectivityMonitor(forced_offline=False, health_check=health, recheck_sec=0)
    monitor.on_recovered.append(replay_on_recovery)
    monitor.mark_down("lookup")

    assert asyncio.run(monitor.recheck()) is True
    mock_enqueue.assert_called_once_with()
    # already online: no second replay
    asyncio.run(monitor.check())
    mock_enqueue.assert_called_once_with()
