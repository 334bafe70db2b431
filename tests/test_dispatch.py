"""
Tests for dispatch.py - bounded-concurrency work pool.

The Celery app is a MagicMock so publishing can be asserted without a
broker; the worker-side path runs against the in-process gate.
"""
from unittest.mock import MagicMock, patch

import pytest
import redis
from celery import states

from crm_enrichment.core.config import get_settings
from crm_enrichment.services.dispatch import (
    WAITING,
    WORK_ITEM_TASK,
    CeleryScheduler,
    DispatchConfig,
    DispatchQueue,
    LocalParallelismGate,
    RedisParallelismGate,
    RetryPolicy,
    WorkItem,
    WorkOutcome,
    WorkState,
    WorkStatus,
    _CeleryWorkReporter,
    work_status_from_state,
)

TARGET = "tests.target_task"


class RecordingReporter:
    def __init__(self):
        self.started_items = []
        self.resent = []

    def started(self, item):
        self.started_items.append(item)

    def resend(self, item, *, state, countdown, error=None):
        self.resent.append({"item": item, "state": state, "countdown": countdown, "error": error})


@pytest.fixture
def target():
    return MagicMock(name="target_task")


@pytest.fixture
def app(target):
    app = MagicMock(name="celery_app")
    app.tasks = {TARGET: target}
    return app


def make_queue(app, slots=3, **config):
    return DispatchQueue(DispatchConfig(max_parallelism=slots, **config), LocalParallelismGate(slots), app=app)


def make_item(**overrides):
    fields = {"handle": "h-1", "task_name": TARGET, "kwargs": {"record_id": "r-1"}}
    fields.update(overrides)
    return WorkItem(**fields)


# ---------------------------------------------------------------------------
# Configuration
# ---------------------------------------------------------------------------

class TestRetryPolicy:
    """Tests for backoff arithmetic and serialisation."""

    def test_default_backoff_doubles(self):
        policy = RetryPolicy()
        assert policy.max_attempts == 2
        assert policy.backoff_seconds(0) == 10.0
        assert policy.backoff_seconds(1) == 20.0
        assert policy.backoff_seconds(2) == 40.0

    def test_custom_base(self):
        policy = RetryPolicy(max_attempts=4, initial_backoff_ms=500, base=3)
        assert policy.backoff_seconds(2) == 4.5

    def test_dict_round_trip(self):
        policy = RetryPolicy(max_attempts=5, initial_backoff_ms=250, base=1.5)
        assert RetryPolicy.from_dict(policy.as_dict()) == policy


class TestDispatchConfig:
    def test_defaults_from_settings(self):
        config = DispatchConfig.from_settings(get_settings())
        assert config.max_parallelism == 3
        assert config.retry_by_default is True
        assert config.default_retry == RetryPolicy(max_attempts=2, initial_backoff_ms=10000, base=2.0)


# ---------------------------------------------------------------------------
# Producer side
# ---------------------------------------------------------------------------

class TestEnqueue:
    """Tests for publishing work items."""

    def test_enqueue_publishes_wrapper_with_handle_as_task_id(self, app):
        queue = make_queue(app)

        handle = queue.enqueue(TARGET, {"record_id": "r-1"})

        app.send_task.assert_called_once()
        args, kwargs = app.send_task.call_args
        assert args == (WORK_ITEM_TASK,)
        assert kwargs["task_id"] == handle
        assert kwargs["countdown"] is None
        assert kwargs["kwargs"] == {
            "handle": handle,
            "task_name": TARGET,
            "kwargs": {"record_id": "r-1"},
            "retry": None,
            "on_complete": None,
            "attempt": 0,
        }

    def test_enqueue_carries_retry_override_and_callback(self, app):
        queue = make_queue(app)

        queue.enqueue(TARGET, {}, retry=RetryPolicy(max_attempts=4), on_complete="tests.done")

        payload = app.send_task.call_args.kwargs["kwargs"]
        assert payload["retry"] == {"max_attempts": 4, "initial_backoff_ms": 10000, "base": 2.0}
        assert payload["on_complete"] == "tests.done"

    def test_unknown_target_is_rejected(self, app):
        queue = make_queue(app)

        with pytest.raises(ValueError):
            queue.enqueue("tests.missing", {})

        app.send_task.assert_not_called()

    def test_batch_returns_handles_in_input_order(self, app):
        queue = make_queue(app)
        producer = app.producer_or_acquire.return_value.__enter__.return_value

        handles = queue.enqueue_batch(TARGET, [{"record_id": "a"}, {"record_id": "b"}, {"record_id": "c"}])

        assert len(handles) == 3
        assert len(set(handles)) == 3
        published = [c.kwargs for c in app.send_task.call_args_list]
        assert [p["task_id"] for p in published] == handles
        assert [p["kwargs"]["kwargs"]["record_id"] for p in published] == ["a", "b", "c"]
        assert all(p["producer"] is producer for p in published)

    def test_batch_validates_before_publishing(self, app):
        queue = make_queue(app)
        app.tasks = {}

        with pytest.raises(ValueError):
            queue.enqueue_batch(TARGET, [{"record_id": "a"}])

        app.send_task.assert_not_called()

    def test_empty_batch(self, app):
        queue = make_queue(app)

        assert queue.enqueue_batch(TARGET, []) == []
        app.producer_or_acquire.assert_not_called()

    def test_cancel_revokes(self, app):
        queue = make_queue(app)

        queue.cancel_all(["h-1", "h-2"])

        assert [c.args for c in app.control.revoke.call_args_list] == [("h-1",), ("h-2",)]


class TestStatus:
    """Tests for mapping result-backend states."""

    @pytest.mark.parametrize("state", [states.SUCCESS, states.FAILURE, states.REVOKED])
    def test_ready_states_are_finished(self, state):
        assert work_status_from_state(state, None).state == WorkState.FINISHED

    def test_started_is_running_with_previous_attempts(self):
        assert work_status_from_state(states.STARTED, {"previous_attempts": 1}) == WorkStatus(
            state=WorkState.RUNNING, previous_attempts=1
        )

    def test_started_without_meta(self):
        # Celery's own STARTED meta carries pid/hostname only
        assert work_status_from_state(states.STARTED, {"pid": 12, "hostname": "w1"}).previous_attempts == 0

    @pytest.mark.parametrize("state", [states.PENDING, states.RECEIVED, states.RETRY, WAITING])
    def test_queued_states_are_pending(self, state):
        status = work_status_from_state(state, {"previous_attempts": 1})
        assert status.state == WorkState.PENDING
        assert status.previous_attempts == 1

    def test_status_reads_async_result(self, app):
        queue = make_queue(app)
        with patch("crm_enrichment.services.dispatch.AsyncResult") as async_result:
            async_result.return_value.state = states.RETRY
            async_result.return_value.info = {"previous_attempts": 1, "error": "boom"}

            statuses = queue.status_batch(["h-1"])

        async_result.assert_called_once_with("h-1", app=app)
        assert statuses == [WorkStatus(state=WorkState.PENDING, previous_attempts=1)]


# ---------------------------------------------------------------------------
# Worker side
# ---------------------------------------------------------------------------

class TestExecute:
    """Tests for running one work item under the gate and retry policy."""

    def test_success_runs_target_and_notifies(self, app, target):
        queue = make_queue(app)
        reporter = RecordingReporter()

        outcome = queue.execute(make_item(on_complete="tests.done"), reporter)

        assert outcome == WorkOutcome.COMPLETED
        target.assert_called_once_with(record_id="r-1")
        assert len(reporter.started_items) == 1
        app.send_task.assert_called_once_with(
            "tests.done", kwargs={"handle": "h-1", "outcome": "success", "error": None}
        )

    def test_no_free_slot_defers_without_counting_attempt(self, app, target):
        queue = make_queue(app, slots=1, slot_wait_seconds=5.0)
        reporter = RecordingReporter()

        with queue.gate.slot("someone-else") as held:
            assert held
            outcome = queue.execute(make_item(), reporter)

        assert outcome == WorkOutcome.DEFERRED
        target.assert_not_called()
        assert reporter.started_items == []
        assert reporter.resent[0]["state"] == WAITING
        assert reporter.resent[0]["countdown"] == 5.0
        assert reporter.resent[0]["item"].attempt == 0

    def test_failure_with_attempts_left_schedules_retry(self, app, target):
        target.side_effect = RuntimeError("agent down")
        queue = make_queue(app)
        reporter = RecordingReporter()

        outcome = queue.execute(make_item(), reporter)

        assert outcome == WorkOutcome.RETRY_SCHEDULED
        resent = reporter.resent[0]
        assert resent["state"] == states.RETRY
        assert resent["countdown"] == 10.0
        assert resent["item"].attempt == 1
        assert resent["item"].handle == "h-1"
        assert resent["error"] == "agent down"
        app.send_task.assert_not_called()

    def test_exhausted_retries_raise_and_notify_failure(self, app, target):
        target.side_effect = RuntimeError("agent down")
        queue = make_queue(app)
        reporter = RecordingReporter()

        with pytest.raises(RuntimeError):
            queue.execute(make_item(attempt=1, on_complete="tests.done"), reporter)

        assert reporter.resent == []
        app.send_task.assert_called_once_with(
            "tests.done", kwargs={"handle": "h-1", "outcome": "failed", "error": "agent down"}
        )

    def test_retry_disabled_runs_once(self, app, target):
        target.side_effect = RuntimeError("agent down")
        queue = make_queue(app, retry_by_default=False)

        with pytest.raises(RuntimeError):
            queue.execute(make_item(), RecordingReporter())

    def test_per_item_policy_overrides_default(self, app, target):
        target.side_effect = RuntimeError("agent down")
        queue = make_queue(app)
        reporter = RecordingReporter()
        item = make_item(retry=RetryPolicy(max_attempts=3).as_dict(), attempt=1)

        outcome = queue.execute(item, reporter)

        assert outcome == WorkOutcome.RETRY_SCHEDULED
        assert reporter.resent[0]["countdown"] == 20.0
        assert reporter.resent[0]["item"].attempt == 2

    def test_slot_released_after_failure(self, app, target):
        target.side_effect = RuntimeError("agent down")
        queue = make_queue(app, slots=1, retry_by_default=False)

        with pytest.raises(RuntimeError):
            queue.execute(make_item(), RecordingReporter())

        with queue.gate.slot("next") as held:
            assert held


class TestCeleryWorkReporter:
    def test_started_records_previous_attempts(self):
        task = MagicMock()

        _CeleryWorkReporter(task).started(make_item(attempt=1))

        task.update_state.assert_called_once_with(state=states.STARTED, meta={"previous_attempts": 1})

    def test_resend_republishes_under_same_id(self):
        task = MagicMock()
        item = make_item(attempt=1)

        _CeleryWorkReporter(task).resend(item, state=states.RETRY, countdown=20.0, error="boom")

        task.update_state.assert_called_once_with(
            state=states.RETRY, meta={"previous_attempts": 1, "error": "boom"}
        )
        task.app.send_task.assert_called_once_with(
            WORK_ITEM_TASK, kwargs=item.as_task_kwargs(), task_id="h-1", countdown=20.0
        )


class TestRedisParallelismGate:
    """Tests for the Redis slot leases."""

    def _gate_with_locks(self, acquired):
        client = MagicMock()
        locks = []
        for ok in acquired:
            lock = MagicMock()
            lock.acquire.return_value = ok
            locks.append(lock)
        client.lock.side_effect = locks
        gate = RedisParallelismGate("redis://localhost:6379/0", slots=len(acquired), lease_seconds=900)
        return gate, client, locks

    def test_takes_first_free_slot_and_releases(self):
        gate, client, locks = self._gate_with_locks([False, True, True])

        with patch("crm_enrichment.services.dispatch.redis.from_url", return_value=client):
            with gate.slot("h-1") as held:
                assert held

        assert client.lock.call_count == 2
        assert client.lock.call_args_list[1].args == ("crm_enrichment:dispatch:slot:1",)
        assert client.lock.call_args_list[1].kwargs == {"timeout": 900}
        locks[0].release.assert_not_called()
        locks[1].release.assert_called_once()
        client.close.assert_called_once()

    def test_all_slots_busy(self):
        gate, client, locks = self._gate_with_locks([False, False])

        with patch("crm_enrichment.services.dispatch.redis.from_url", return_value=client):
            with gate.slot("h-1") as held:
                assert not held

        assert all(not lock.release.called for lock in locks)
        client.close.assert_called_once()

    def test_expired_lease_on_release_is_tolerated(self):
        gate, client, locks = self._gate_with_locks([True])
        locks[0].release.side_effect = redis.exceptions.LockError("expired")

        with patch("crm_enrichment.services.dispatch.redis.from_url", return_value=client):
            with gate.slot("h-1") as held:
                assert held

        client.close.assert_called_once()


class TestCeleryScheduler:
    def test_run_after_uses_countdown(self):
        app = MagicMock()
        app.send_task.return_value.id = "t-1"

        task_id = CeleryScheduler(app).run_after(60, "tests.poll", {"poll_count": 1})

        assert task_id == "t-1"
        app.send_task.assert_called_once_with("tests.poll", kwargs={"poll_count": 1}, countdown=60)
