"""
Celery Tasks — Capture Processing

Task: process_capture(capture_id)
  1. Run CaptureProcessor (see services.pipeline) for the capture
  2. DONE / SKIPPED          → ledger "completed", release enqueue guard
  3. FAILED / NOT_FOUND and attempts remain
                             → self.retry(countdown = 2s, 4s, …)
  4. attempts exhausted      → failure hooks (capture_id, error),
                               ledger "failed", release enqueue guard

The default failure hook writes status=FAILED with the error (≤500 chars).
That write is best-effort: if it fails the error is logged and swallowed,
and the capture may stay PROCESSING. No sweeper re-queues such captures.

Collaborators (record store, storage, OCR, queue) are built once per worker
process by get_worker_context() and reused across tasks.
"""

from __future__ import annotations

import asyncio
import concurrent.futures
import logging
import uuid
from dataclasses import dataclass, field
from functools import lru_cache
from typing import Any, Awaitable, Callable

from celery import Task

from capture_inbox.core.config import settings
from capture_inbox.services.pipeline import CaptureProcessor, PipelineOutcome, PipelineResult
from capture_inbox.services.records import CaptureRecordStore
from capture_inbox.workers.celery_app import PROCESS_CAPTURE_TASK, celery_app
from capture_inbox.workers.queue import CaptureQueue, RetryPolicy

logger = logging.getLogger(__name__)

FailureHook = Callable[[uuid.UUID, str], Awaitable[None]]


# ---------------------------------------------------------------------------
# Async task helper
# Run async coroutines inside Celery's synchronous task context.
# ---------------------------------------------------------------------------

def run_async(coro):
    """Execute an async coroutine from a synchronous Celery task."""
    try:
        asyncio.get_running_loop()
    except RuntimeError:
        return asyncio.run(coro)
    with concurrent.futures.ThreadPoolExecutor(max_workers=1) as pool:
        return pool.submit(asyncio.run, coro).result()


# ---------------------------------------------------------------------------
# Worker context
# ---------------------------------------------------------------------------

@dataclass
class WorkerContext:
    store:         CaptureRecordStore
    processor:     CaptureProcessor
    queue:         CaptureQueue
    policy:        RetryPolicy
    failure_hooks: list[FailureHook] = field(default_factory=list)


def mark_failed_hook(store: CaptureRecordStore) -> FailureHook:
    """Default terminal-failure hook: best-effort FAILED write."""

    async def _hook(capture_id: uuid.UUID, error: str) -> None:
        try:
            written = await store.mark_failed(capture_id, error)
        except Exception as exc:
            logger.error(
                "FAILED write failed; capture may stay PROCESSING | capture=%s error=%s",
                capture_id, exc,
            )
            return
        if not written:
            logger.warning("FAILED write matched no row | capture=%s", capture_id)

    return _hook


@lru_cache(maxsize=1)
def get_worker_context() -> WorkerContext:
    from capture_inbox.db.session import get_worker_session_factory
    from capture_inbox.processing.ocr import get_ocr_adapter
    from capture_inbox.storage.factory import get_storage

    store = CaptureRecordStore(get_worker_session_factory())
    processor = CaptureProcessor(store, get_storage(settings), get_ocr_adapter(settings))
    return WorkerContext(
        store=store,
        processor=processor,
        queue=CaptureQueue.from_settings(settings, celery_app),
        policy=RetryPolicy.from_settings(settings),
        failure_hooks=[mark_failed_hook(store)],
    )


def register_failure_hook(hook: FailureHook) -> None:
    """Add a terminal-failure hook, e.g. for alerting."""
    get_worker_context().failure_hooks.append(hook)


async def run_failure_hooks(hooks: list[FailureHook], capture_id: uuid.UUID, error: str) -> None:
    for hook in hooks:
        try:
            await hook(capture_id, error)
        except Exception:
            logger.exception("Failure hook raised | capture=%s hook=%r", capture_id, hook)


# ---------------------------------------------------------------------------
# Result → queue outcome mapping
# ---------------------------------------------------------------------------

def settle_job(
    task: Task,
    ctx: WorkerContext,
    result: PipelineResult,
    attempt: int,
) -> dict[str, Any]:
    """
    Map a pipeline result onto the queue: complete, retry, or fail terminally.
    Raises celery.exceptions.Retry (via task.retry) when retrying.
    """
    if result.succeeded:
        ctx.queue.mark_completed(result.capture_id)
        return result.as_dict()

    error = result.error or result.outcome.value

    if ctx.policy.should_retry(attempt):
        delay = ctx.policy.delay_for(attempt)
        logger.warning(
            "Attempt failed, retrying | capture=%s attempt=%d/%d delay_s=%.1f error=%s",
            result.capture_id, attempt, ctx.policy.max_attempts, delay, error,
        )
        raise task.retry(countdown=delay, max_retries=ctx.policy.max_attempts - 1)

    logger.error(
        "Job failed terminally | capture=%s attempts=%d outcome=%s error=%s",
        result.capture_id, attempt, result.outcome.value, error,
    )
    run_async(run_failure_hooks(ctx.failure_hooks, result.capture_id, error))
    ctx.queue.mark_failed(result.capture_id, error)
    return result.as_dict()


# ---------------------------------------------------------------------------
# Main processing task
# ---------------------------------------------------------------------------

@celery_app.task(
    name=PROCESS_CAPTURE_TASK,
    bind=True,
    acks_late=True,
    reject_on_worker_lost=True,
)
def process_capture(self: Task, *, capture_id: str) -> dict[str, Any]:
    ctx = get_worker_context()

    try:
        parsed_id = uuid.UUID(capture_id)
    except ValueError:
        logger.error("Malformed capture id, dropping job | capture=%s", capture_id)
        ctx.queue.release(capture_id)
        return {"capture_id": capture_id, "outcome": PipelineOutcome.NOT_FOUND.value, "error": "malformed id"}

    attempt = self.request.retries + 1
    result  = run_async(ctx.processor.run(parsed_id))
    return settle_job(self, ctx, result, attempt)
