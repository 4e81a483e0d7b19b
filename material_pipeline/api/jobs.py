from fastapi import APIRouter, Depends, HTTPException
from pydantic import BaseModel, Field

from material_pipeline.api.deps import (
    get_providers,
    get_store,
    require_cron_or_worker_secret,
    require_worker_secret,
)
from material_pipeline.services.job_dispatcher import dispatch_jobs
from material_pipeline.services.job_executor import RunResult, run_single_job
from material_pipeline.services.job_reclaimer import reclaim_stale_processing_jobs
from material_pipeline.services.job_store import JobStore
from material_pipeline.services.jobs import create_worker_id
from material_pipeline.services.pipeline.providers import PipelineProviders

router = APIRouter(prefix="/worker", tags=["worker"])


class DispatchRequest(BaseModel):
    limit: int | None = Field(default=None, ge=1, le=20)


class JobRunResult(BaseModel):
    job_id: str
    result: str


class DispatchResponse(BaseModel):
    ok: bool
    worker_id: str
    reclaimed: int
    picked: int
    processed: int
    failed: int
    results: list[JobRunResult]


class RecoverResponse(BaseModel):
    ok: bool
    recovered: int


class RunJobRequest(BaseModel):
    job_id: str


class RunJobResponse(BaseModel):
    ok: bool
    job_id: str
    result: str


@router.post("/jobs/dispatch", response_model=DispatchResponse, dependencies=[Depends(require_cron_or_worker_secret)])
def dispatch(
    req: DispatchRequest | None = None,
    store: JobStore = Depends(get_store),
    providers: PipelineProviders = Depends(get_providers),
) -> DispatchResponse:
    worker_id = create_worker_id("cron")
    limit = req.limit if req is not None and req.limit is not None else store.settings.dispatch_batch_size
    outcome = dispatch_jobs(store, worker_id=worker_id, limit=limit)

    results = [
        JobRunResult(job_id=job_id, result=run_single_job(store, job_id, providers=providers))
        for job_id in outcome.locked_job_ids
    ]
    failed = sum(1 for r in results if r.result == RunResult.FAILED)
    return DispatchResponse(
        ok=True,
        worker_id=worker_id,
        reclaimed=outcome.reclaimed_stale_locks,
        picked=len(outcome.locked_job_ids),
        processed=len(results) - failed,
        failed=failed,
        results=results,
    )


@router.post("/jobs/recover-stale", response_model=RecoverResponse, dependencies=[Depends(require_cron_or_worker_secret)])
def recover_stale(store: JobStore = Depends(get_store)) -> RecoverResponse:
    recovered = reclaim_stale_processing_jobs(store, create_worker_id("cron"))
    return RecoverResponse(ok=True, recovered=recovered)


@router.post("/material-pipeline", response_model=RunJobResponse, dependencies=[Depends(require_worker_secret)])
def run_material_pipeline_job(
    req: RunJobRequest,
    store: JobStore = Depends(get_store),
    providers: PipelineProviders = Depends(get_providers),
) -> RunJobResponse:
    if not req.job_id.strip():
        raise HTTPException(status_code=400, detail="job_id is required")
    result = run_single_job(store, req.job_id, providers=providers)
    return RunJobResponse(ok=True, job_id=req.job_id, result=result)
