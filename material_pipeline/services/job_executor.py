from __future__ import annotations

import logging
from datetime import datetime, timedelta

from sqlalchemy.orm import Session

from material_pipeline.models.job import Job, JobStatus, JobType
from material_pipeline.models.material import Material, MaterialStatus
from material_pipeline.services.job_dispatcher import lock_job_by_id
from material_pipeline.services.job_policy import (
    build_job_failure_details,
    build_pipeline_progress_state,
    compute_backoff_seconds,
)
from material_pipeline.services.job_store import JobStore
from material_pipeline.services.pipeline.context import PipelineContext
from material_pipeline.services.pipeline.providers import PipelineProviders, build_default_providers
from material_pipeline.services.pipeline.runner import StepFn, run_pipeline_step
from material_pipeline.services.pipeline.steps import last_step, next_step, previous_step, steps_for

logger = logging.getLogger(__name__)


class RunResult:
    DONE = "done"
    PROCESSING = "processing"
    FAILED = "failed"


class LockLost(Exception):
    """The job is no longer processing under the lock this invocation started with."""


def _held_job(db: Session, job_id: str, holder: str) -> Job:
    job = db.get(Job, job_id)
    if job is None or job.status != JobStatus.PROCESSING or job.locked_by != holder:
        raise LockLost(f"job {job_id} is no longer held by {holder or 'unknown worker'}")
    return job


def _pipeline_material(db: Session, job: Job) -> Material | None:
    if job.type != JobType.MATERIAL_PIPELINE:
        return None
    return db.get(Material, job.target_id)


def _release(job: Job) -> None:
    job.locked_by = ""
    job.locked_at = None


def _advance(db: Session, store: JobStore, job_id: str, holder: str, step: str, now: datetime) -> str:
    job = _held_job(db, job_id, holder)
    material = _pipeline_material(db, job)
    current_version = store.settings.pipeline_version

    # Another run already produced this material at this version.
    if (
        material is not None
        and material.status == MaterialStatus.READY
        and material.pipeline_version == job.pipeline_version == current_version
    ):
        job.status = JobStatus.DONE
        job.step = last_step(job.type)
        job.error_code = None
        job.error_message = None
        _release(job)
        job.updated_at = now
        material.pipeline_state = build_pipeline_progress_state(
            current_step=None,
            last_completed_step=job.step,
            status=MaterialStatus.READY,
            now=now,
        )
        material.updated_at = now
        logger.info("job %s done: material %s already ready", job_id, material.id)
        return RunResult.DONE

    nxt = next_step(step, job.type)
    job.error_code = None
    job.error_message = None
    job.updated_at = now

    if nxt is None:
        job.status = JobStatus.DONE
        _release(job)
        if material is not None:
            material.status = MaterialStatus.READY
            material.pipeline_version = job.pipeline_version
            material.pipeline_state = build_pipeline_progress_state(
                current_step=None,
                last_completed_step=step,
                status=MaterialStatus.READY,
                now=now,
            )
            material.updated_at = now
        logger.info("job %s done after step %s", job_id, step)
        return RunResult.DONE

    job.step = nxt
    # renew the lock so a long pipeline is not reclaimed between steps
    job.locked_at = now
    if material is not None:
        material.status = MaterialStatus.PROCESSING
        material.pipeline_state = build_pipeline_progress_state(
            current_step=nxt,
            last_completed_step=step,
            status=MaterialStatus.PROCESSING,
            now=now,
        )
        material.updated_at = now
    logger.debug("job %s advanced %s -> %s", job_id, step, nxt)
    return RunResult.PROCESSING


def _fail(db: Session, store: JobStore, job_id: str, holder: str, step: str, reason: str, now: datetime) -> str:
    job = _held_job(db, job_id, holder)
    material = _pipeline_material(db, job)

    details = build_job_failure_details(
        job_type=job.type,
        step=step,
        attempt=job.attempt + 1,
        max_attempts=store.settings.max_attempts,
        reason=reason,
    )

    job.attempt = details.attempt
    job.status = details.status
    job.error_code = details.error_code
    job.error_message = details.error_message
    _release(job)
    job.updated_at = now
    if not details.terminal:
        delay = compute_backoff_seconds(
            details.attempt,
            store.settings.backoff_base_seconds,
            store.settings.backoff_cap_seconds,
        )
        job.next_run_at = now + timedelta(seconds=delay)
        logger.info("job %s step %s failed (attempt %s), retry in %ss", job_id, step, details.attempt, delay)
    else:
        logger.info("job %s step %s failed permanently after %s attempts", job_id, step, details.attempt)

    if material is not None:
        material.status = MaterialStatus.FAILED if details.terminal else MaterialStatus.QUEUED
        # an unknown step still has to record the failure
        last_completed = previous_step(step, job.type) if step in steps_for(job.type) else None
        material.pipeline_state = build_pipeline_progress_state(
            current_step=step,
            last_completed_step=last_completed,
            status=material.status,
            now=now,
            error_code=details.error_code,
            error_message=details.error_message,
        )
        material.updated_at = now

    return RunResult.FAILED


def run_single_job(
    store: JobStore,
    job_id: str,
    *,
    providers: PipelineProviders | None = None,
    handlers: dict[str, StepFn] | None = None,
) -> str:
    """
    Execute exactly one step of a claimed job and record the outcome.

    Returns "processing" when more steps remain, "done" when the job finished, and "failed"
    when the job is missing, not claimed, lost its lock, or the step raised (the job is then
    either re-queued with backoff or permanently failed).
    """
    job = store.get(job_id)
    if job is None:
        logger.warning("job %s not found", job_id)
        return RunResult.FAILED
    if job.status != JobStatus.PROCESSING:
        logger.info("job %s is %s, not processing; nothing to run", job_id, job.status)
        return RunResult.FAILED

    holder = job.locked_by
    step = job.step
    ctx = PipelineContext(
        store=store,
        providers=providers or build_default_providers(store.settings),
        job_id=job.id,
        job_type=job.type,
        material_id=job.target_id,
        pipeline_version=job.pipeline_version,
        step=step,
    )

    try:
        run_pipeline_step(ctx, handlers)
    except Exception as e:
        logger.exception("job %s step %s raised", job_id, step)
        reason = str(e) or e.__class__.__name__
        try:
            return store.run_transaction(lambda db: _fail(db, store, job_id, holder, step, reason, store.now()))
        except LockLost as lost:
            logger.warning("%s; failure not recorded", lost)
            return RunResult.FAILED

    try:
        return store.run_transaction(lambda db: _advance(db, store, job_id, holder, step, store.now()))
    except LockLost as lost:
        logger.warning("%s; step %s result discarded", lost, step)
        return RunResult.FAILED


def run_job_to_completion(
    store: JobStore,
    job_id: str,
    *,
    worker_id: str,
    providers: PipelineProviders | None = None,
    max_iterations: int | None = None,
) -> str:
    """
    Synchronous path: claim the job by id and run steps until it finishes, fails, or the lock is lost.
    A job that cannot be claimed reports done or failed when it is finished, otherwise processing
    (deferred behind a duplicate, or held by another worker).
    """
    if not lock_job_by_id(store, job_id, worker_id=worker_id):
        job = store.get(job_id)
        if job is None or job.status == JobStatus.FAILED:
            return RunResult.FAILED
        if job.status == JobStatus.DONE:
            return RunResult.DONE
        return RunResult.PROCESSING

    job = store.get(job_id)
    providers = providers or build_default_providers(store.settings)
    limit = max_iterations if max_iterations is not None else len(steps_for(job.type)) + 2

    result = RunResult.PROCESSING
    for _ in range(limit):
        result = run_single_job(store, job_id, providers=providers)
        if result != RunResult.PROCESSING:
            break
    return result
