"""
Bounded-concurrency work pool on top of Celery.

A work item names a registered Celery task plus its keyword arguments. The
pool wraps every item in `run_work_item`, which:

- takes one of K parallelism slots (Redis leases, shared by all workers) or
  re-publishes itself with a short countdown when none is free,
- invokes the target task in-process,
- on failure re-publishes itself under the same task id with exponential
  backoff until the retry policy is exhausted, then abandons the item.

The work item handle is the Celery task id, so `status()` can be answered
from the result backend for the whole life of the item.
"""
from __future__ import annotations

from contextlib import contextmanager
from dataclasses import dataclass, field, replace
from functools import lru_cache
from typing import Any, ContextManager, Dict, Iterator, List, Optional, Protocol
from uuid import uuid4
import enum
import logging
import threading

import redis
from celery import Celery, states
from celery.exceptions import Ignore
from celery.result import AsyncResult

from ..core.celery_app import celery_app
from ..core.config import Settings, get_settings

logger = logging.getLogger(__name__)

WORK_ITEM_TASK = "crm_enrichment.services.dispatch.run_work_item"

# Custom backend state: the item is parked in the broker waiting for a slot
WAITING = "WAITING"


@dataclass(frozen=True)
class RetryPolicy:
    """
    `max_attempts` counts every run, the first one included.

    The delay after failed attempt n (0-based) is
    `initial_backoff_ms * base ** n` milliseconds.
    """

    max_attempts: int = 2
    initial_backoff_ms: int = 10_000
    base: float = 2.0

    def backoff_seconds(self, attempt: int) -> float:
        return self.initial_backoff_ms * (self.base ** attempt) / 1000.0

    def as_dict(self) -> Dict[str, Any]:
        return {
            "max_attempts": self.max_attempts,
            "initial_backoff_ms": self.initial_backoff_ms,
            "base": self.base,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> RetryPolicy:
        return cls(
            max_attempts=int(data["max_attempts"]),
            initial_backoff_ms=int(data["initial_backoff_ms"]),
            base=float(data["base"]),
        )


@dataclass(frozen=True)
class DispatchConfig:
    max_parallelism: int = 3
    retry_by_default: bool = True
    default_retry: RetryPolicy = field(default_factory=RetryPolicy)
    slot_wait_seconds: float = 5.0
    slot_lease_seconds: int = 900

    @classmethod
    def from_settings(cls, settings: Settings) -> DispatchConfig:
        return cls(
            max_parallelism=settings.ENRICHMENT_MAX_PARALLELISM,
            retry_by_default=settings.ENRICHMENT_RETRY_BY_DEFAULT,
            default_retry=RetryPolicy(
                max_attempts=settings.ENRICHMENT_RETRY_MAX_ATTEMPTS,
                initial_backoff_ms=settings.ENRICHMENT_RETRY_INITIAL_BACKOFF_MS,
                base=settings.ENRICHMENT_RETRY_BASE,
            ),
            slot_wait_seconds=settings.ENRICHMENT_SLOT_WAIT_SECONDS,
            slot_lease_seconds=settings.ENRICHMENT_SLOT_LEASE_SECONDS,
        )


class WorkState(str, enum.Enum):
    PENDING = "pending"
    RUNNING = "running"
    FINISHED = "finished"


@dataclass(frozen=True)
class WorkStatus:
    state: WorkState
    previous_attempts: int = 0


class WorkOutcome(str, enum.Enum):
    COMPLETED = "completed"
    RETRY_SCHEDULED = "retry_scheduled"
    DEFERRED = "deferred"


@dataclass(frozen=True)
class WorkItem:
    handle: str
    task_name: str
    kwargs: Dict[str, Any]
    retry: Optional[Dict[str, Any]] = None
    on_complete: Optional[str] = None
    attempt: int = 0

    def as_task_kwargs(self) -> Dict[str, Any]:
        return {
            "handle": self.handle,
            "task_name": self.task_name,
            "kwargs": self.kwargs,
            "retry": self.retry,
            "on_complete": self.on_complete,
            "attempt": self.attempt,
        }

    def next_attempt(self) -> WorkItem:
        return replace(self, attempt=self.attempt + 1)


def work_status_from_state(state: str, info: Any) -> WorkStatus:
    """
    Map a Celery result-backend state onto the pool's three-state view.

    SUCCESS, FAILURE and REVOKED all read as FINISHED; callers learn the
    outcome from the completion callback or from the job row.
    """
    meta = info if isinstance(info, dict) else {}
    previous = int(meta.get("previous_attempts") or 0)

    if state in states.READY_STATES:
        return WorkStatus(state=WorkState.FINISHED)
    if state == states.STARTED:
        return WorkStatus(state=WorkState.RUNNING, previous_attempts=previous)
    # PENDING, RECEIVED, RETRY and WAITING are all "queued"
    return WorkStatus(state=WorkState.PENDING, previous_attempts=previous)


# ---------------------------------------------------------------------------
# Parallelism gates
# ---------------------------------------------------------------------------

class ParallelismGate(Protocol):
    def slot(self, holder: str) -> ContextManager[bool]:
        """Yield True while a slot is held, False when none was free."""
        ...


class RedisParallelismGate:
    """
    K non-blocking Redis locks act as K slots shared by every worker.

    Each lock carries a lease timeout so a worker that dies mid-execution
    cannot hold a slot forever.
    """

    def __init__(
        self,
        redis_url: str,
        slots: int,
        lease_seconds: int = 900,
        name: str = "crm_enrichment:dispatch",
    ) -> None:
        self.redis_url = redis_url
        self.slots = slots
        self.lease_seconds = lease_seconds
        self.name = name

    def _get_redis(self) -> redis.Redis:
        return redis.from_url(
            self.redis_url,
            socket_timeout=5,
            socket_connect_timeout=5,
        )

    @contextmanager
    def slot(self, holder: str) -> Iterator[bool]:
        client = self._get_redis()
        lock = None
        try:
            for index in range(self.slots):
                candidate = client.lock(f"{self.name}:slot:{index}", timeout=self.lease_seconds)
                if candidate.acquire(blocking=False):
                    lock = candidate
                    break
            yield lock is not None
        finally:
            if lock is not None:
                try:
                    lock.release()
                except redis.exceptions.LockError:
                    logger.warning(
                        "Dispatch slot lease expired before release",
                        extra={"handle": holder, "step": "dispatch:slot"},
                    )
            client.close()


class LocalParallelismGate:
    """
    In-process gate for a single worker (eager mode, tests).
    """

    def __init__(self, slots: int) -> None:
        self._semaphore = threading.BoundedSemaphore(slots)

    @contextmanager
    def slot(self, holder: str) -> Iterator[bool]:
        acquired = self._semaphore.acquire(blocking=False)
        try:
            yield acquired
        finally:
            if acquired:
                self._semaphore.release()


# ---------------------------------------------------------------------------
# Queue
# ---------------------------------------------------------------------------

class WorkReporter(Protocol):
    def started(self, item: WorkItem) -> None:
        ...

    def resend(self, item: WorkItem, *, state: str, countdown: float, error: str | None = None) -> None:
        ...


class DispatchQueue:
    """
    Explicitly constructed work pool. One instance per process, built by
    `get_dispatch_queue()` and handed to whoever enqueues work.
    """

    def __init__(self, config: DispatchConfig, gate: ParallelismGate, app: Celery = celery_app) -> None:
        self.config = config
        self.gate = gate
        self.app = app

    # -- producer side -----------------------------------------------------

    def _build_item(
        self,
        task_name: str,
        kwargs: Dict[str, Any],
        retry: RetryPolicy | None,
        on_complete: str | None,
    ) -> WorkItem:
        if task_name not in self.app.tasks:
            raise ValueError(f"Unknown work target: {task_name}")
        return WorkItem(
            handle=str(uuid4()),
            task_name=task_name,
            kwargs=dict(kwargs),
            retry=retry.as_dict() if retry else None,
            on_complete=on_complete,
        )

    def _publish(self, item: WorkItem, countdown: float | None = None, producer: Any = None) -> None:
        self.app.send_task(
            WORK_ITEM_TASK,
            kwargs=item.as_task_kwargs(),
            task_id=item.handle,
            countdown=countdown,
            producer=producer,
        )

    def enqueue(
        self,
        task_name: str,
        kwargs: Dict[str, Any],
        *,
        retry: RetryPolicy | None = None,
        on_complete: str | None = None,
    ) -> str:
        item = self._build_item(task_name, kwargs, retry, on_complete)
        self._publish(item)
        logger.info(
            "Work item enqueued",
            extra={"handle": item.handle, "step": "dispatch:enqueue"},
        )
        return item.handle

    def enqueue_batch(
        self,
        task_name: str,
        items: List[Dict[str, Any]],
        *,
        retry: RetryPolicy | None = None,
        on_complete: str | None = None,
    ) -> List[str]:
        """
        Accept N items at once. Every item is validated before anything is
        published, then all messages go out over one broker connection.
        Handles come back in input order.
        """
        work_items = [self._build_item(task_name, kwargs, retry, on_complete) for kwargs in items]
        if not work_items:
            return []

        with self.app.producer_or_acquire() as producer:
            for item in work_items:
                self._publish(item, producer=producer)

        logger.info(
            "Enqueued %d work items",
            len(work_items),
            extra={"step": "dispatch:enqueue_batch"},
        )
        return [item.handle for item in work_items]

    def status(self, handle: str) -> WorkStatus:
        result = AsyncResult(handle, app=self.app)
        return work_status_from_state(result.state, result.info)

    def status_batch(self, handles: List[str]) -> List[WorkStatus]:
        return [self.status(handle) for handle in handles]

    def cancel(self, handle: str) -> None:
        self.app.control.revoke(handle)
        logger.info("Work item cancelled", extra={"handle": handle, "step": "dispatch:cancel"})

    def cancel_all(self, handles: List[str]) -> None:
        for handle in handles:
            self.cancel(handle)

    # -- worker side -------------------------------------------------------

    def _policy_for(self, item: WorkItem) -> RetryPolicy | None:
        if item.retry is not None:
            return RetryPolicy.from_dict(item.retry)
        if self.config.retry_by_default:
            return self.config.default_retry
        return None

    def _notify(self, item: WorkItem, outcome: str, error: str | None = None) -> None:
        if not item.on_complete:
            return
        self.app.send_task(
            item.on_complete,
            kwargs={"handle": item.handle, "outcome": outcome, "error": error},
        )

    def execute(self, item: WorkItem, reporter: WorkReporter) -> WorkOutcome:
        """
        Run one work item under the parallelism bound and retry policy.

        Returns DEFERRED / RETRY_SCHEDULED when the item was re-published
        through `reporter`, COMPLETED when the target ran successfully.
        Re-raises the target's error once the retry policy is exhausted.
        """
        target = self.app.tasks[item.task_name]
        log_extra = {"handle": item.handle, "attempt": item.attempt}

        with self.gate.slot(item.handle) as acquired:
            if not acquired:
                logger.info(
                    "No free dispatch slot; deferring work item",
                    extra={**log_extra, "step": "dispatch:deferred"},
                )
                reporter.resend(item, state=WAITING, countdown=self.config.slot_wait_seconds)
                return WorkOutcome.DEFERRED

            reporter.started(item)
            try:
                target(**item.kwargs)
            except Exception as e:
                policy = self._policy_for(item)
                max_attempts = policy.max_attempts if policy else 1
                if policy and item.attempt + 1 < max_attempts:
                    delay = policy.backoff_seconds(item.attempt)
                    logger.warning(
                        "Work item failed (attempt %d/%d); retrying in %.1fs: %s",
                        item.attempt + 1,
                        max_attempts,
                        delay,
                        e,
                        extra={**log_extra, "step": "dispatch:retry"},
                    )
                    reporter.resend(item.next_attempt(), state=states.RETRY, countdown=delay, error=str(e))
                    return WorkOutcome.RETRY_SCHEDULED

                logger.exception(
                    "Work item abandoned after %d attempt(s)",
                    item.attempt + 1,
                    extra={**log_extra, "step": "dispatch:abandoned"},
                )
                self._notify(item, "failed", error=str(e))
                raise

        self._notify(item, "success")
        return WorkOutcome.COMPLETED


class CeleryScheduler:
    """
    Delayed one-shot invocations. The countdown lives in the broker, so a
    scheduled call survives a restart of the process that scheduled it.
    """

    def __init__(self, app: Celery = celery_app) -> None:
        self.app = app

    def run_after(self, delay_seconds: float, task_name: str, kwargs: Dict[str, Any]) -> str:
        result = self.app.send_task(task_name, kwargs=kwargs, countdown=delay_seconds)
        return result.id


@lru_cache(maxsize=1)
def get_dispatch_queue() -> DispatchQueue:
    settings = get_settings()
    config = DispatchConfig.from_settings(settings)
    gate = RedisParallelismGate(
        settings.REDIS_URL,
        slots=config.max_parallelism,
        lease_seconds=config.slot_lease_seconds,
    )
    return DispatchQueue(config, gate)


# ---------------------------------------------------------------------------
# Celery entrypoint
# ---------------------------------------------------------------------------

class _CeleryWorkReporter:
    def __init__(self, task) -> None:
        self.task = task

    def started(self, item: WorkItem) -> None:
        self.task.update_state(state=states.STARTED, meta={"previous_attempts": item.attempt})

    def resend(self, item: WorkItem, *, state: str, countdown: float, error: str | None = None) -> None:
        meta: Dict[str, Any] = {"previous_attempts": item.attempt}
        if error:
            meta["error"] = error
        self.task.update_state(state=state, meta=meta)
        self.task.app.send_task(
            WORK_ITEM_TASK,
            kwargs=item.as_task_kwargs(),
            task_id=item.handle,
            countdown=countdown,
        )


@celery_app.task(name=WORK_ITEM_TASK, bind=True, queue="enrichment")
def run_work_item(
    self,
    handle: str,
    task_name: str,
    kwargs: Dict[str, Any],
    retry: Optional[Dict[str, Any]] = None,
    on_complete: Optional[str] = None,
    attempt: int = 0,
):
    item = WorkItem(
        handle=handle,
        task_name=task_name,
        kwargs=kwargs,
        retry=retry,
        on_complete=on_complete,
        attempt=attempt,
    )
    outcome = get_dispatch_queue().execute(item, _CeleryWorkReporter(self))
    if outcome is not WorkOutcome.COMPLETED:
        # Re-published under the same id; keep the state written by the reporter
        raise Ignore()
    return {"handle": handle, "attempts": attempt + 1}
