# =============================================================================
# Celery Task Definitions
# =============================================================================
#
# process_document_task is the queue entry point for the document pipeline
# (docrag.services.pipeline). It never retries: READY and FAILED are
# terminal, and a new run is started only by an explicit reprocess request.
#
# Celery workers are synchronous: the pipeline uses the sync engine and
# get_sync_session(), never the async session factory.
# =============================================================================

import logging
import uuid

from docrag.services.pipeline import process_document
from docrag.workers.celery_app import celery_app

logger = logging.getLogger(__name__)


@celery_app.task(bind=True, name="process_document")
def process_document_task(self, document_id: str) -> dict:
    """
    Run the processing pipeline for one document.

    Returns:
        {"document_id": ..., "status": <final status or None>} as the
        Celery result. Failures are recorded on the document, not raised.
    """
    logger.info(
        "Starting processing: document_id=%s, task_id=%s",
        document_id, self.request.id,
    )

    status = process_document(uuid.UUID(document_id))

    summary = {
        "document_id": document_id,
        "status": status.value if status is not None else None,
    }
    logger.info("[%s] Processing finished: %s", self.request.id, summary)
    return summary
