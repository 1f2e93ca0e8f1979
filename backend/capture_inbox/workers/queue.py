"""
Capture Job Queue

Producer side (API) and bookkeeping side (worker) of the capture queue.

Job identity = capture id
─────────────────────────
Celery does not deduplicate task ids, so idempotent enqueue is enforced
with a Redis guard key:

    SET capture-jobs:active:<capture_id> <ts> NX EX <guard ttl>

  - guard acquired  → publish process_capture with task_id=<capture_id>
  - guard held      → a job for this capture is pending/active; no-op
  - publish fails   → guard released, QueueUnavailableError raised

The worker keeps the guard across its own retries and releases it when the
job completes or fails terminally. The TTL frees a guard left behind by a
worker that died mid-job.

Retention
─────────
Finished jobs are recorded in two Redis lists (<queue>:completed and
<queue>:failed), each trimmed to the newest `queue_retention` entries.
"""

from __future__ import annotations

import asyncio
import json
import logging
import time
import uuid
from dataclasses import dataclass

from celery import Celery
from redis import Redis
from redis.exceptions import RedisError

from capture_inbox.core.config import Settings
from capture_inbox.workers.celery_app import PROCESS_CAPTURE_TASK

logger = logging.getLogger(__name__)


class QueueUnavailableError(RuntimeError):
    """Broker or guard store unreachable; the job was not enqueued."""


# ---------------------------------------------------------------------------
# Retry policy
# ---------------------------------------------------------------------------

@dataclass(frozen=True)
class RetryPolicy:
    max_attempts: int   = 3
    base_delay:   float = 2.0   # seconds before the 2nd attempt

    def delay_for(self, attempt: int) -> float:
        """Delay before re-running after failed `attempt` (1-based)."""
        return self.base_delay * 2 ** (max(attempt, 1) - 1)

    def should_retry(self, attempt: int) -> bool:
        return attempt < self.max_attempts

    @classmethod
    def from_settings(cls, settings: Settings) -> "RetryPolicy":
        return cls(
            max_attempts=settings.queue_max_attempts,
            base_delay=settings.queue_backoff_seconds,
        )


# ---------------------------------------------------------------------------
# Queue
# ---------------------------------------------------------------------------

class CaptureQueue:
    """
    Thin wrapper over the Celery producer plus the Redis guard/ledger.

    redis-py and Celery publishing are blocking; async callers go through
    enqueue(), which runs the publish in the default thread executor.
    """

    def __init__(
        self,
        redis:      Redis,
        celery:     Celery,
        queue_name: str,
        *,
        guard_ttl_seconds: int = 3600,
        retention:         int = 1000,
    ) -> None:
        self._redis     = redis
        self._celery    = celery
        self._queue     = queue_name
        self._guard_ttl = guard_ttl_seconds
        self._retention = retention

    @classmethod
    def from_settings(cls, settings: Settings, celery: Celery) -> "CaptureQueue":
        return cls(
            Redis.from_url(settings.redis_url, decode_responses=True),
            celery,
            settings.queue_name,
            guard_ttl_seconds=settings.queue_guard_ttl_seconds,
            retention=settings.queue_retention,
        )

    # ------------------------------------------------------------------
    # Keys
    # ------------------------------------------------------------------

    def guard_key(self, capture_id: uuid.UUID | str) -> str:
        return f"{self._queue}:active:{capture_id}"

    @property
    def completed_key(self) -> str:
        return f"{self._queue}:completed"

    @property
    def failed_key(self) -> str:
        return f"{self._queue}:failed"

    # ------------------------------------------------------------------
    # Producer
    # ------------------------------------------------------------------

    async def enqueue(self, capture_id: uuid.UUID) -> bool:
        """
        Enqueue processing for `capture_id`.
        Returns False (no-op) when a job for it is already pending/active.
        """
        loop = asyncio.get_running_loop()
        return await loop.run_in_executor(None, self.enqueue_sync, capture_id)

    def enqueue_sync(self, capture_id: uuid.UUID | str) -> bool:
        key = self.guard_key(capture_id)

        try:
            acquired = self._redis.set(key, str(time.time()), nx=True, ex=self._guard_ttl)
        except RedisError as exc:
            logger.error("Queue guard unavailable | capture=%s error=%s", capture_id, exc)
            raise QueueUnavailableError(str(exc)) from exc

        if not acquired:
            logger.info("Job already queued, skipping | capture=%s", capture_id)
            return False

        try:
            self._celery.send_task(
                PROCESS_CAPTURE_TASK,
                kwargs={"capture_id": str(capture_id)},
                task_id=str(capture_id),
                queue=self._queue,
            )
        except Exception as exc:
            logger.error("Job publish failed | capture=%s error=%s", capture_id, exc)
            self.release(capture_id)
            raise QueueUnavailableError(str(exc) or exc.__class__.__name__) from exc

        logger.info("Job enqueued | capture=%s queue=%s", capture_id, self._queue)
        return True

    # ------------------------------------------------------------------
    # Worker bookkeeping (sync — called from Celery tasks)
    # ------------------------------------------------------------------

    def release(self, capture_id: uuid.UUID | str) -> None:
        try:
            self._redis.delete(self.guard_key(capture_id))
        except RedisError as exc:
            logger.warning("Guard release failed | capture=%s error=%s", capture_id, exc)

    def mark_completed(self, capture_id: uuid.UUID | str) -> None:
        self._record(self.completed_key, capture_id, error=None)
        self.release(capture_id)

    def mark_failed(self, capture_id: uuid.UUID | str, error: str) -> None:
        self._record(self.failed_key, capture_id, error=error)
        self.release(capture_id)

    def _record(self, ledger: str, capture_id: uuid.UUID | str, *, error: str | None) -> None:
        entry = json.dumps({
            "capture_id":  str(capture_id),
            "finished_at": time.time(),
            "error":       error,
        })
        try:
            self._redis.lpush(ledger, entry)
            self._redis.ltrim(ledger, 0, self._retention - 1)
        except RedisError as exc:
            logger.warning("Ledger write failed | ledger=%s capture=%s error=%s", ledger, capture_id, exc)

    def recent(self, ledger: str, count: int = 20) -> list[dict]:
        return [json.loads(raw) for raw in self._redis.lrange(ledger, 0, count - 1)]

    def check_health(self) -> dict:
        try:
            self._redis.ping()
            return {"status": "ok"}
        except RedisError as exc:
            return {"status": "error", "detail": str(exc)}
