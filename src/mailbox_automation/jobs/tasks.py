"""Task queues that deliver continuation payloads.

A continuation is a deferred "run the next batch of job X" request. The
in-memory queue only records tasks so a caller (CLI, tests) can drain them;
the threading queue delivers them on a timer inside the current process.
"""

from __future__ import annotations

import threading
import uuid
from collections.abc import Callable
from dataclasses import dataclass
from typing import Any, Protocol

import structlog

from mailbox_automation.exceptions import (
    MailboxAutomationError,
    PersistenceError,
    UpstreamTransient,
)
from mailbox_automation.models import ContinuationPayload

logger = structlog.get_logger()

TaskHandler = Callable[[ContinuationPayload], Any]


class TaskQueue(Protocol):
    def enqueue(self, payload: ContinuationPayload, delay_seconds: float = 0) -> str:
        """Schedule delivery of `payload`; returns a handle for `cancel`."""

    def cancel(self, handle: str) -> bool:
        """Best-effort cancel of an undelivered task."""


def _new_handle(payload: ContinuationPayload) -> str:
    return f"{payload.job_id}-{payload.retry_count}-{uuid.uuid4().hex[:8]}"


@dataclass
class QueuedTask:
    handle: str
    payload: ContinuationPayload
    delay_seconds: float


class InMemoryTaskQueue:
    """Records tasks in FIFO order; nothing runs until `drain` is called."""

    def __init__(self) -> None:
        self._tasks: list[QueuedTask] = []
        self._lock = threading.Lock()

    def enqueue(self, payload: ContinuationPayload, delay_seconds: float = 0) -> str:
        handle = _new_handle(payload)
        with self._lock:
            self._tasks.append(QueuedTask(handle=handle, payload=payload, delay_seconds=delay_seconds))
        logger.debug("task_enqueued", handle=handle, job_id=payload.job_id, delay_seconds=delay_seconds)
        return handle

    def cancel(self, handle: str) -> bool:
        with self._lock:
            before = len(self._tasks)
            self._tasks = [t for t in self._tasks if t.handle != handle]
            return len(self._tasks) != before

    def pending(self) -> list[QueuedTask]:
        with self._lock:
            return list(self._tasks)

    def __len__(self) -> int:
        with self._lock:
            return len(self._tasks)

    def pop(self) -> QueuedTask | None:
        with self._lock:
            return self._tasks.pop(0) if self._tasks else None

    def drain(self, handler: TaskHandler, *, max_tasks: int | None = None) -> int:
        """Deliver queued tasks (including ones enqueued while draining).

        Returns:
            Number of tasks delivered.
        """

        delivered = 0
        while max_tasks is None or delivered < max_tasks:
            task = self.pop()
            if task is None:
                break
            handler(task.payload)
            delivered += 1
        return delivered


class ThreadingTaskQueue:
    """Deliver tasks on `threading.Timer` threads after their delay.

    Transient failures (upstream rate limits, a locked store) are redelivered
    with exponential backoff, up to `max_retries` times per task.
    """

    def __init__(
        self,
        handler: TaskHandler | None = None,
        *,
        max_retries: int = 3,
        backoff_seconds: float = 1.0,
    ) -> None:
        self._handler = handler
        self.max_retries = max_retries
        self.backoff_seconds = backoff_seconds
        self._timers: dict[str, threading.Timer] = {}
        self._lock = threading.Lock()

    def set_handler(self, handler: TaskHandler) -> None:
        self._handler = handler

    def enqueue(self, payload: ContinuationPayload, delay_seconds: float = 0) -> str:
        if self._handler is None:
            raise RuntimeError("ThreadingTaskQueue has no handler; call set_handler() first")
        handle = _new_handle(payload)
        self._schedule(handle, payload, delay_seconds, attempt=0)
        logger.debug("task_enqueued", handle=handle, job_id=payload.job_id, delay_seconds=delay_seconds)
        return handle

    def cancel(self, handle: str) -> bool:
        with self._lock:
            timer = self._timers.pop(handle, None)
        if timer is None:
            return False
        timer.cancel()
        return True

    def shutdown(self) -> None:
        with self._lock:
            timers = list(self._timers.values())
            self._timers.clear()
        for timer in timers:
            timer.cancel()

    def _schedule(self, handle: str, payload: ContinuationPayload, delay: float, *, attempt: int) -> None:
        timer = threading.Timer(max(0.0, delay), self._deliver, args=(handle, payload, attempt))
        timer.daemon = True
        with self._lock:
            self._timers[handle] = timer
        timer.start()

    def _deliver(self, handle: str, payload: ContinuationPayload, attempt: int) -> None:
        with self._lock:
            if self._timers.pop(handle, None) is None:
                return  # cancelled

        assert self._handler is not None
        try:
            self._handler(payload)
        except (UpstreamTransient, PersistenceError) as exc:
            if attempt >= self.max_retries:
                logger.error(
                    "task_retry_exhausted",
                    handle=handle,
                    job_id=payload.job_id,
                    attempts=attempt + 1,
                    error=str(exc),
                )
                return
            delay = self.backoff_seconds * (2**attempt)
            retry_after = getattr(exc, "retry_after", None)
            if retry_after:
                delay = max(delay, float(retry_after))
            logger.warning(
                "task_redelivery_scheduled",
                handle=handle,
                job_id=payload.job_id,
                attempt=attempt + 1,
                delay=delay,
                error=str(exc),
            )
            self._schedule(handle, payload, delay, attempt=attempt + 1)
        except MailboxAutomationError as exc:
            logger.error("task_failed", handle=handle, job_id=payload.job_id, error=str(exc))
        except Exception:  # noqa: BLE001
            # Nothing above this frame would see the error on a timer thread.
            logger.exception("task_crashed", handle=handle, job_id=payload.job_id)
