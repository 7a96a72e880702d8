# =============================================================================
# Unit Tests — Celery Task
# =============================================================================
# The task is run eagerly with apply(); no broker or worker is needed.
# =============================================================================

import uuid
from unittest.mock import patch

from docrag.db.models import DocumentStatus
from docrag.workers.tasks import process_document_task


class TestProcessDocumentTask:
    def test_runs_pipeline_and_reports_status(self):
        document_id = uuid.uuid4()

        with patch(
            "docrag.workers.tasks.process_document", return_value=DocumentStatus.READY,
        ) as pipeline:
            result = process_document_task.apply(args=[str(document_id)]).get()

        pipeline.assert_called_once_with(document_id)
        assert result == {"document_id": str(document_id), "status": "READY"}

    def test_skipped_run_reports_no_status(self):
        document_id = str(uuid.uuid4())

        with patch("docrag.workers.tasks.process_document", return_value=None):
            result = process_document_task.apply(args=[document_id]).get()

        assert result == {"document_id": document_id, "status": None}
