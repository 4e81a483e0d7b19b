from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import datetime, timedelta

from sqlalchemy import select
from sqlalchemy.orm import Session

from material_pipeline.models.job import Job, JobStatus
from material_pipeline.services.job_policy import (
    DuplicateAction,
    compute_backoff_seconds,
    is_lock_stale,
    resolve_duplicate_action,
)
from material_pipeline.services.job_reclaimer import reclaim_stale_processing_jobs
from material_pipeline.services.job_store import JobStore

logger = logging.getLogger(__name__)

DUPLICATE_JOB_SKIPPED = "duplicate_job_skipped"
DUPLICATE_PROCESSING_DETECTED = "duplicate_processing_detected"


@dataclass
class DispatchResult:
    reclaimed_stale_locks: int = 0
    locked_job_ids: list[str] = field(default_factory=list)


def _load_duplicates(db: Session, job: Job) -> list[Job]:
    # Row-lock the whole logical-key group so two dispatchers serialize on it (no-op on SQLite).
    job_type, target_id, pipeline_version = job.logical_key
    stmt = (
        select(Job)
        .where(
            Job.type == job_type,
            Job.target_id == target_id,
            Job.pipeline_version == pipeline_version,
            Job.id != job.id,
        )
        .with_for_update()
    )
    return list(db.scalars(stmt).all())


def _claim_in_transaction(
    db: Session,
    job_id: str,
    worker_id: str,
    now: datetime,
    store: JobStore,
    *,
    require_due: bool,
) -> str | None:
    """Returns the DuplicateAction applied, or None when the job is no longer claimable."""
    job = db.get(Job, job_id, with_for_update=True)
    if job is None:
        return None

    lock_timeout = store.settings.lock_timeout

    if require_due:
        if job.status != JobStatus.QUEUED or job.next_run_at > now:
            return None
    else:
        if job.status in (JobStatus.DONE, JobStatus.FAILED):
            return None
        if job.status == JobStatus.PROCESSING and not is_lock_stale(job.locked_at, now, lock_timeout):
            return None

    action = resolve_duplicate_action(_load_duplicates(db, job), now=now, lock_timeout=lock_timeout)

    if action == DuplicateAction.SKIP_DONE:
        job.status = JobStatus.DONE
        job.locked_by = ""
        job.locked_at = None
        job.error_code = DUPLICATE_JOB_SKIPPED
        job.error_message = "Another job for the same material and pipeline version is already done."
    elif action == DuplicateAction.DEFER:
        job.status = JobStatus.QUEUED
        job.locked_by = ""
        job.locked_at = None
        job.next_run_at = now + timedelta(seconds=compute_backoff_seconds(1, store.settings.backoff_base_seconds))
        job.error_code = DUPLICATE_PROCESSING_DETECTED
        job.error_message = "Another job for the same material and pipeline version is processing."
    else:
        job.status = JobStatus.PROCESSING
        job.locked_by = worker_id
        job.locked_at = now

    job.updated_at = now
    return action


def _log_action(job_id: str, action: str | None, worker_id: str) -> None:
    if action == DuplicateAction.CLAIM:
        logger.info("worker %s locked job %s", worker_id, job_id)
    elif action == DuplicateAction.SKIP_DONE:
        logger.info("job %s skipped: duplicate already done", job_id)
    elif action == DuplicateAction.DEFER:
        logger.info("job %s deferred: duplicate is processing", job_id)


def lock_due_jobs(store: JobStore, *, limit: int, worker_id: str) -> list[str]:
    """
    Claim up to `limit` queued jobs whose next_run_at has passed, oldest-due first.
    Each candidate is claimed in its own transaction so one conflict does not abort the batch.
    """
    if limit <= 0:
        return []

    now = store.now()
    candidates = store.query(status=JobStatus.QUEUED, due_before=now, limit=limit)

    locked: list[str] = []
    for candidate in candidates:
        if len(locked) >= limit:
            break
        action = store.run_transaction(
            lambda db, job_id=candidate.id: _claim_in_transaction(
                db, job_id, worker_id, now, store, require_due=True
            )
        )
        _log_action(candidate.id, action, worker_id)
        if action == DuplicateAction.CLAIM:
            locked.append(candidate.id)

    return locked


def lock_job_by_id(store: JobStore, job_id: str, *, worker_id: str) -> bool:
    """
    Claim one job regardless of next_run_at (synchronous runs).
    Refuses done/failed jobs and jobs held by a live lock.
    """
    now = store.now()
    action = store.run_transaction(
        lambda db: _claim_in_transaction(db, job_id, worker_id, now, store, require_due=False)
    )
    _log_action(job_id, action, worker_id)
    return action == DuplicateAction.CLAIM


def dispatch_jobs(store: JobStore, *, worker_id: str, limit: int | None = None) -> DispatchResult:
    """One dispatch cycle: reclaim stale locks, then claim due jobs."""
    batch = limit if limit is not None else store.settings.dispatch_batch_size

    reclaimed = reclaim_stale_processing_jobs(store, worker_id)
    locked = lock_due_jobs(store, limit=batch, worker_id=worker_id)

    if reclaimed or locked:
        logger.info("dispatch by %s: reclaimed=%s locked=%s", worker_id, reclaimed, len(locked))
    return DispatchResult(reclaimed_stale_locks=reclaimed, locked_job_ids=locked)
