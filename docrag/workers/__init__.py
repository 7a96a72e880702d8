# =============================================================================
# Workers Package — Celery Background Tasks
# =============================================================================
#   - celery_app.py: Celery application configuration
#   - tasks.py: the document processing task
#
# Extraction and embedding are slow (CPU-bound parsing, network-bound API
# calls), so uploads return immediately and a worker drives the document to
# READY or FAILED. Clients poll the document status.
# =============================================================================
