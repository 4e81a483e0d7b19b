import logging

from material_pipeline.services.job_dispatcher import dispatch_jobs
from material_pipeline.services.job_executor import RunResult, run_single_job
from material_pipeline.services.job_reclaimer import reclaim_stale_processing_jobs
from material_pipeline.services.job_store import JobStore
from material_pipeline.services.jobs import create_worker_id
from material_pipeline.worker.celery_app import celery_app

logger = logging.getLogger(__name__)


@celery_app.task(name="jobs.dispatch")
def dispatch(limit: int | None = None) -> dict:
    store = JobStore()
    worker_id = create_worker_id("celery")
    result = dispatch_jobs(store, worker_id=worker_id, limit=limit)
    for job_id in result.locked_job_ids:
        run_single.delay(job_id)
    return {
        "ok": True,
        "worker_id": worker_id,
        "reclaimed": result.reclaimed_stale_locks,
        "locked_job_ids": result.locked_job_ids,
    }


@celery_app.task(name="jobs.run_single")
def run_single(job_id: str) -> dict:
    result = run_single_job(JobStore(), job_id)
    if result == RunResult.PROCESSING:
        # one step per task; the next step goes back through the broker
        run_single.delay(job_id)
    return {"ok": True, "job_id": job_id, "result": result}


@celery_app.task(name="jobs.recover_stale")
def recover_stale() -> dict:
    recovered = reclaim_stale_processing_jobs(JobStore(), create_worker_id("celery"))
    return {"ok": True, "recovered": recovered}
