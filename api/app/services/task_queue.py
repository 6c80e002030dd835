"""RQ task queue wrapper with inline fallback for local/test runs."""

from __future__ import annotations

import asyncio
import logging
import time
from typing import Any, Callable

from redis import Redis
from rq import Queue

from app.core.config import settings
from app.utils.redaction import redact_secrets

logger = logging.getLogger("app.services.task_queue")


def _maybe_async(value: Any) -> Any:
    """Normalize callables/coroutines into an awaitable result."""
    if asyncio.iscoroutine(value):
        return value
    if callable(value):
        return value()
    return value


class QueuedJobIncomplete(RuntimeError):
    """An enqueued job did not finish; it may still run on a worker."""

    def __init__(self, job_id: str, reason: str) -> None:
        super().__init__(f"job {job_id} {reason}")
        self.job_id = job_id
        self.reason = reason


class TaskQueue:
    """Thin wrapper around RQ that can fall back to inline execution."""

    def __init__(self) -> None:
        self.queue_names: list[str] = settings.worker_queue_names or ["default"]
        self._connection: Redis | None = None
        self._enabled = False
        self._bootstrap()

    def _bootstrap(self) -> None:
        """Initialize Redis connectivity unless disabled for tests."""
        if settings.environment.lower() == "test":
            logger.info("Task queue disabled in test environment")
            return
        try:
            connection = Redis.from_url(settings.redis_url)
            connection.ping()
        except Exception as exc:  # pragma: no cover - network/redis specific
            logger.warning("Redis unavailable; running jobs inline: %s", redact_secrets(str(exc)))
            self._connection = None
            self._enabled = False
            return
        self._connection = connection
        self._enabled = True
        logger.info("Task queue ready (queues: %s)", ", ".join(self.queue_names))

    def get_queue(self, queue_name: str | None = None) -> Queue:
        """Return a configured queue instance for enqueuing jobs."""
        if not self._connection:
            raise RuntimeError("Queue connection not initialized")
        target = queue_name if queue_name in self.queue_names else self.queue_names[0]
        return Queue(target, connection=self._connection)

    async def enqueue_or_run(
        self,
        func: Callable[..., Any],
        *,
        fallback: Callable[[], Any] | None = None,
        queue_name: str | None = None,
        timeout_seconds: int = 60,
        description: str | None = None,
        **kwargs: Any,
    ) -> Any:
        """Enqueue a job and wait for its result.

        Runs inline only when the job could not be enqueued. Once enqueued, a job
        that fails or times out is cancelled and :class:`QueuedJobIncomplete` is
        raised instead, so the work never runs both on a worker and inline.
        """

        async def _run_fallback() -> Any:
            target = fallback or (lambda: func(**kwargs))
            result = _maybe_async(target)
            if asyncio.iscoroutine(result):
                return await result
            return result

        if not self._enabled or not self._connection:
            return await _run_fallback()

        def _enqueue() -> Any:
            queue = self.get_queue(queue_name)
            return queue.enqueue(func, kwargs=kwargs, job_timeout=timeout_seconds, description=description)

        try:
            job = await asyncio.to_thread(_enqueue)
        except Exception as exc:
            logger.warning("Falling back to inline execution after enqueue failure: %s", redact_secrets(str(exc)))
            return await _run_fallback()

        try:
            return await asyncio.to_thread(_wait_for_result, job, timeout_seconds)
        except QueuedJobIncomplete as exc:
            await asyncio.to_thread(_cancel_job, job)
            logger.warning("Queued job %s did not complete: %s", exc.job_id, exc.reason)
            raise

    def snapshot(self) -> dict[str, Any]:
        """Return a diagnostic snapshot of queue state."""
        if not self._connection:
            return {"status": "offline", "queues": []}
        queues = [
            {"name": name, "size": Queue(name, connection=self._connection).count} for name in self.queue_names
        ]
        return {"status": "online", "queues": queues}


def _wait_for_result(job: Any, timeout_seconds: int) -> Any:  # pragma: no cover - redis specific
    deadline = time.monotonic() + timeout_seconds
    while time.monotonic() < deadline:
        status = job.get_status(refresh=True)
        if status == "finished":
            return job.return_value()
        if status in {"failed", "stopped", "canceled"}:
            raise QueuedJobIncomplete(job.id, f"ended with status {status}")
        time.sleep(0.25)
    raise QueuedJobIncomplete(job.id, f"did not finish within {timeout_seconds}s")


def _cancel_job(job: Any) -> None:
    """Cancel a job so a worker never picks it up later; started jobs run to completion."""
    try:
        job.cancel()
    except Exception as exc:  # pragma: no cover - redis specific
        logger.warning("Could not cancel job %s: %s", job.id, redact_secrets(str(exc)))


task_queue = TaskQueue()
