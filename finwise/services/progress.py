"""Progress tracking for ingestion jobs (message syncs and statement uploads).

Entries live in memory, are guarded by a lock, and expire after a TTL so a
crashed or abandoned job never pins memory.
"""

import logging
import threading
import time
from datetime import datetime
from typing import Any

logger = logging.getLogger(__name__)

_job_progress: dict[str, dict[str, Any]] = {}
_progress_lock = threading.Lock()

# TTL for progress entries (15 minutes)
PROGRESS_TTL_SECONDS = 900


def _cleanup_stale_entries() -> None:
    """Remove progress entries older than TTL. Caller holds the lock."""
    current_time = time.time()
    stale = [job_id for job_id, data in _job_progress.items() if current_time - data["_created_at"] > PROGRESS_TTL_SECONDS]
    for job_id in stale:
        del _job_progress[job_id]
        logger.debug(f"Cleaned up stale progress entry: {job_id}")


def update_progress(
    job_id: str,
    status: str,
    processed: int,
    total: int,
    message: str,
    details: dict[str, Any] | None = None,
) -> None:
    """
    Record the state of a running job.

    Args:
        job_id: Unique identifier for the job
        status: "processing", "complete", "stopped" or "error"
        processed: Items handled so far
        total: Items in the job
        message: Human-readable status message
        details: Optional counters (added, duplicates, failed, ...)
    """
    percent = int(processed * 100 / total) if total else 100
    with _progress_lock:
        _cleanup_stale_entries()
        existing = _job_progress.get(job_id, {})
        _job_progress[job_id] = {
            "job_id": job_id,
            "status": status,
            "processed": processed,
            "total": total,
            "progress": percent,
            "message": message,
            "details": details or {},
            "timestamp": datetime.now().isoformat(),
            "_created_at": existing.get("_created_at", time.time()),
        }

    logger.info(f"[PROGRESS] {job_id}: {processed}/{total} ({percent}%) - {message}")


def get_progress(job_id: str) -> dict[str, Any] | None:
    """Current progress for a job, without internal fields, or None."""
    with _progress_lock:
        data = _job_progress.get(job_id)
        if data is None:
            return None
        return {k: v for k, v in data.items() if not k.startswith("_")}

