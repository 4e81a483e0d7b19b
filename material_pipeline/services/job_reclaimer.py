from __future__ import annotations

import logging

from sqlalchemy.orm import Session

from material_pipeline.models.job import Job, JobStatus
from material_pipeline.services.job_policy import is_lock_stale
from material_pipeline.services.job_store import JobStore

logger = logging.getLogger(__name__)

STALE_LOCK_RECLAIMED = "stale_lock_reclaimed"


def reclaim_stale_processing_jobs(store: JobStore, worker_id: str, *, limit: int | None = None) -> int:
    """
    Return processing jobs whose worker went away to the queue.
    Each candidate is re-validated inside its own transaction; returns how many were actually reclaimed.
    """
    now = store.now()
    lock_timeout = store.settings.lock_timeout
    scan_limit = limit if limit is not None else store.settings.stale_scan_limit

    candidates = store.query(
        status=JobStatus.PROCESSING,
        locked_before=now - lock_timeout,
        limit=scan_limit,
    )

    reclaimed = 0
    for candidate in candidates:

        def _reclaim(db: Session, job_id: str = candidate.id) -> bool:
            job = db.get(Job, job_id)
            if job is None or job.status != JobStatus.PROCESSING:
                return False
            if not is_lock_stale(job.locked_at, now, lock_timeout):
                return False

            previous_holder = job.locked_by
            job.status = JobStatus.QUEUED
            job.next_run_at = now
            job.locked_by = ""
            job.locked_at = None
            job.error_code = STALE_LOCK_RECLAIMED
            job.error_message = f"Reclaimed by {worker_id} from {previous_holder or 'unknown worker'}"
            job.updated_at = now
            return True

        if store.run_transaction(_reclaim):
            reclaimed += 1
            logger.info("reclaimed stale job %s (step=%s)", candidate.id, candidate.step)

    return reclaimed
