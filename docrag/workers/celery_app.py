# =============================================================================
# Celery Application Configuration
# =============================================================================
#
# Runs the document pipeline outside the API process:
#
# ┌──────────┐     ┌────────┐     ┌───────────────┐     ┌────────┐
# │ FastAPI  │────▶│ Redis  │────▶│ Celery worker │────▶│ Redis  │
# │ (upload) │     │ (db 0) │     │ (pipeline)    │     │ (db 1) │
# └──────────┘     └────────┘     └───────────────┘     └────────┘
#
# Start a worker with:
#   celery -A docrag.workers.celery_app worker --loglevel=info
#
# DESIGN DECISION: acks_late with prefetch 1. A worker that dies mid-run
# leaves the message on the queue; the redelivered task sees a status past
# UPLOADED and exits.
# =============================================================================

from celery import Celery

from docrag.config import settings

celery_app = Celery(
    "docrag.workers",
    broker=settings.celery_broker_url,
    backend=settings.celery_result_backend,
)

celery_app.conf.update(
    # JSON only; document ids travel as strings
    task_serializer="json",
    accept_content=["json"],
    result_serializer="json",

    # Acknowledge after the run so a crashed worker's task is redelivered.
    # A redelivered run finds the document past UPLOADED and exits.
    task_acks_late=True,
    task_reject_on_worker_lost=True,

    # One long-running document per worker process at a time
    worker_prefetch_multiplier=1,

    # Soft limit raises SoftTimeLimitExceeded inside the run, which the
    # pipeline records as FAILED; the hard limit kills the process.
    task_soft_time_limit=300,
    task_time_limit=600,

    result_expires=3600,

    include=["docrag.workers.tasks"],
)
