"""
Celery Application Factory

Configures the Celery app for capture processing.
Broker: Redis in every environment (same instance as the enqueue guard).
Result backend: Redis (optional — capture status is tracked in the database).

Queue topology:
  capture-jobs   — one task type, process_capture, keyed by capture id

Payloads carry only the capture id; bytes are always loaded from storage
inside the worker.
"""

from __future__ import annotations

import logging

from celery import Celery
from celery.signals import after_setup_logger, task_failure, task_postrun, task_prerun
from kombu import Exchange, Queue

from capture_inbox.core.config import settings

logger = logging.getLogger(__name__)

PROCESS_CAPTURE_TASK = "capture_inbox.workers.tasks.process_capture"

# ---------------------------------------------------------------------------
# Queue and exchange definitions
# ---------------------------------------------------------------------------

CAPTURE_EXCHANGE = Exchange("captures", type="direct", durable=True)

TASK_QUEUES = (
    Queue(
        settings.queue_name,
        exchange=CAPTURE_EXCHANGE,
        routing_key=settings.queue_name,
        durable=True,
    ),
)

TASK_ROUTES = {
    PROCESS_CAPTURE_TASK: {"queue": settings.queue_name},
}

# ---------------------------------------------------------------------------
# Celery app factory
# ---------------------------------------------------------------------------

def create_celery_app() -> Celery:
    app = Celery("capture_inbox")

    app.conf.update(
        # --- Broker / Backend ---
        broker_url=settings.celery_broker_url,
        result_backend=settings.celery_result_backend,

        # --- Serialization (reject non-JSON messages) ---
        task_serializer="json",
        result_serializer="json",
        accept_content=["json"],
        event_serializer="json",

        # --- Queues ---
        task_queues=TASK_QUEUES,
        task_routes=TASK_ROUTES,
        task_default_queue=settings.queue_name,
        task_default_exchange=CAPTURE_EXCHANGE.name,
        task_default_routing_key=settings.queue_name,

        # --- Reliability ---
        task_acks_late=True,             # ack only after the task returns
        task_reject_on_worker_lost=True,
        worker_prefetch_multiplier=1,    # one reserved task per worker process

        # --- Timeouts ---
        task_soft_time_limit=120,
        task_time_limit=180,

        # --- Result TTL ---
        result_expires=3600,

        # --- Timezone ---
        timezone="UTC",
        enable_utc=True,

        # --- Worker ---
        worker_concurrency=settings.worker_concurrency,
        worker_max_tasks_per_child=200,
    )

    app.autodiscover_tasks(["capture_inbox.workers"])

    return app


celery_app = create_celery_app()


# ---------------------------------------------------------------------------
# Celery signals — structured task logging
# ---------------------------------------------------------------------------

@after_setup_logger.connect
def on_setup_logger(logger, *args, **kwargs):
    logger.setLevel(settings.log_level.upper())


@task_prerun.connect
def on_task_prerun(task_id, task, args, kwargs, **_):
    logger.info(
        "Task start | task_id=%s task=%s capture=%s",
        task_id, task.name, (kwargs or {}).get("capture_id", "?"),
    )


@task_postrun.connect
def on_task_postrun(task_id, task, args, kwargs, retval, state, **_):
    logger.info(
        "Task end | task_id=%s task=%s state=%s capture=%s",
        task_id, task.name, state, (kwargs or {}).get("capture_id", "?"),
    )


@task_failure.connect
def on_task_failure(task_id, exception, args, kwargs, traceback, einfo, **_):
    logger.error(
        "Task failed | task_id=%s capture=%s error=%s",
        task_id, (kwargs or {}).get("capture_id", "?"), exception,
        exc_info=True,
    )
