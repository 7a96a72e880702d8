# =============================================================================
# Upload Storage — Raw Document Bytes on Disk
# =============================================================================
# Files live under settings.upload_dir with a generated name:
#   <uuid4 hex><original suffix>   e.g. 3f2a...c1.pdf
# so two tenants uploading "report.pdf" never collide.
# =============================================================================

from __future__ import annotations

import logging
import uuid
from pathlib import Path

from docrag.config import settings

logger = logging.getLogger(__name__)


def upload_path(stored_filename: str, upload_dir: str | Path | None = None) -> Path:
    return Path(upload_dir or settings.upload_dir) / stored_filename


def save_upload(
    data: bytes,
    original_name: str,
    upload_dir: str | Path | None = None,
) -> str:
    """Write bytes under a generated name and return that name."""
    suffix = Path(original_name).suffix.lower()[:16]
    stored_filename = f"{uuid.uuid4().hex}{suffix}"

    path = upload_path(stored_filename, upload_dir)
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_bytes(data)

    logger.info("Saved upload: %s (%d bytes) → %s", original_name, len(data), path)
    return stored_filename


def read_upload(stored_filename: str, upload_dir: str | Path | None = None) -> bytes:
    return upload_path(stored_filename, upload_dir).read_bytes()


def remove_upload(stored_filename: str, upload_dir: str | Path | None = None) -> None:
    """Delete a stored file. A missing file or OS error is logged, not raised."""
    path = upload_path(stored_filename, upload_dir)
    try:
        path.unlink(missing_ok=True)
    except OSError as exc:
        logger.warning("Could not remove stored file %s: %s", path, exc)
