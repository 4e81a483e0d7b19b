from datetime import timedelta

from sqlalchemy import select

from material_pipeline.db.session import SessionLocal
from material_pipeline.models.expression import Expression
from material_pipeline.models.job import JobStatus, JobType
from material_pipeline.models.material import Material, MaterialStatus
from material_pipeline.services.glossary import glossary_hash
from material_pipeline.services.job_executor import RunResult, run_job_to_completion, run_single_job
from material_pipeline.services.jobs import enqueue_material_pipeline_job
from material_pipeline.services.pipeline.steps import MATERIAL_PIPELINE_STEPS


def _material(store, material_id="mat-1"):
    return store.run_transaction(lambda db: db.get(Material, material_id))


def _expressions(material_id="mat-1"):
    db = SessionLocal()
    try:
        return list(db.scalars(select(Expression).where(Expression.material_id == material_id)).all())
    finally:
        db.close()


def test_run_job_to_completion_produces_expressions(store, make_material, providers):
    make_material()
    job_id = enqueue_material_pipeline_job(store, "mat-1")

    assert run_job_to_completion(store, job_id, worker_id="api_test", providers=providers) == RunResult.DONE

    job = store.get(job_id)
    assert job.status == JobStatus.DONE
    assert job.step == "persist"
    assert job.locked_by == ""

    material = _material(store)
    assert material.status == MaterialStatus.READY
    assert material.pipeline_state["last_completed_step"] == "persist"

    texts = {e.expression_text for e in _expressions()}
    assert "take it for granted" in texts
    # URL-ish and stop-word noise never survives
    assert not any("www" in t for t in texts)
    assert "the" not in texts


def test_single_step_advances_cursor_and_renews_lock(store, clock, make_material, make_job, providers):
    make_material()
    job = make_job("mat-1", status=JobStatus.PROCESSING, locked_by="w1", locked_at=clock.now() - timedelta(minutes=9))
    clock.advance(minutes=1)

    assert run_single_job(store, job.id, providers=providers) == RunResult.PROCESSING

    job = store.get(job.id)
    assert job.step == "captions"
    assert job.status == JobStatus.PROCESSING
    assert job.locked_at == clock.now()
    material = _material(store)
    assert material.status == MaterialStatus.PROCESSING
    assert material.pipeline_state["current_step"] == "captions"
    assert material.pipeline_state["last_completed_step"] == "meta"


def test_job_not_processing_is_a_no_op(store, make_material, make_job, providers):
    make_material()
    job = make_job("mat-1")

    assert run_single_job(store, job.id, providers=providers) == RunResult.FAILED
    assert run_single_job(store, "missing", providers=providers) == RunResult.FAILED

    after = store.get(job.id)
    assert after.status == JobStatus.QUEUED
    assert after.row_version == job.row_version


def _boom(ctx):
    raise RuntimeError("provider exploded")


def test_step_failure_schedules_retry_with_backoff(store, clock, make_material, make_job, providers):
    make_material()
    job = make_job("mat-1", status=JobStatus.PROCESSING, step="captions", attempt=1, locked_by="w1", locked_at=clock.now())

    result = run_single_job(store, job.id, providers=providers, handlers={"captions": _boom})

    assert result == RunResult.FAILED
    job = store.get(job.id)
    assert job.status == JobStatus.QUEUED
    assert job.attempt == 2
    assert job.next_run_at == clock.now() + timedelta(seconds=60)
    assert job.locked_by == ""
    assert job.locked_at is None
    assert job.error_code == "material_pipeline_captions_retrying"
    assert "provider exploded" in job.error_message

    material = _material(store)
    assert material.status == MaterialStatus.QUEUED
    assert material.pipeline_state["error_code"] == "material_pipeline_captions_retrying"


def test_failure_at_max_attempts_is_terminal(store, clock, make_material, make_job, providers):
    make_material()
    original_next_run = clock.now() - timedelta(minutes=1)
    job = make_job(
        "mat-1",
        status=JobStatus.PROCESSING,
        step="captions",
        attempt=5,
        next_run_at=original_next_run,
        locked_by="w1",
        locked_at=clock.now(),
    )

    assert run_single_job(store, job.id, providers=providers, handlers={"captions": _boom}) == RunResult.FAILED

    job = store.get(job.id)
    assert job.status == JobStatus.FAILED
    assert job.attempt == 6
    assert job.next_run_at == original_next_run
    assert job.error_code == "material_pipeline_captions_failed"
    assert _material(store).status == MaterialStatus.FAILED


def test_retries_until_terminal_then_stops(store, clock, make_material, providers):
    make_material()
    job_id = enqueue_material_pipeline_job(store, "mat-1")
    handlers = {"meta": _boom}

    from material_pipeline.services.job_dispatcher import lock_due_jobs

    for attempt in range(1, 7):
        assert lock_due_jobs(store, limit=1, worker_id="w") == [job_id]
        run_single_job(store, job_id, providers=providers, handlers=handlers)
        job = store.get(job_id)
        assert job.attempt == attempt
        clock.advance(hours=2)

    assert store.get(job_id).status == JobStatus.FAILED
    assert lock_due_jobs(store, limit=1, worker_id="w") == []


def test_lost_lock_discards_step_result(store, clock, make_material, make_job, providers):
    make_material()
    job = make_job("mat-1", status=JobStatus.PROCESSING, step="meta", locked_by="w1", locked_at=clock.now())

    def _steal(ctx):
        store.update(ctx.job_id, {"locked_by": "w2"})

    assert run_single_job(store, job.id, providers=providers, handlers={"meta": _steal}) == RunResult.FAILED

    after = store.get(job.id)
    assert after.step == "meta"
    assert after.locked_by == "w2"
    assert after.attempt == 0


def test_ready_material_short_circuits_to_done(store, clock, make_material, make_job, providers):
    make_material(status=MaterialStatus.READY)
    job = make_job("mat-1", status=JobStatus.PROCESSING, step="captions", locked_by="w1", locked_at=clock.now())

    result = run_single_job(store, job.id, providers=providers, handlers={"captions": lambda ctx: None})

    assert result == RunResult.DONE
    job = store.get(job.id)
    assert job.status == JobStatus.DONE
    assert job.step == MATERIAL_PIPELINE_STEPS[-1]


def test_duplicate_done_never_runs_a_step(store, make_material, make_job, caption_provider, providers):
    make_material()
    make_job("mat-1", job_id="material_pipeline:mat-1:v1:old", status=JobStatus.DONE, step="persist")
    job_id = enqueue_material_pipeline_job(store, "mat-1")

    result = run_job_to_completion(store, job_id, worker_id="api_test", providers=providers)

    assert result == JobStatus.DONE
    assert store.get(job_id).error_code == "duplicate_job_skipped"
    assert caption_provider.calls == 0
    assert _expressions() == []


def test_persist_is_idempotent_and_keeps_created_at(store, clock, make_material, make_job, providers):
    make_material()
    job_id = enqueue_material_pipeline_job(store, "mat-1")
    run_job_to_completion(store, job_id, worker_id="w", providers=providers)
    first = {e.expression_id: e for e in _expressions()}
    assert glossary_hash("take it for granted") in first

    # re-run the last step under a new lock at a later time
    clock.advance(hours=1)
    store.update(
        job_id,
        {"status": JobStatus.PROCESSING, "step": "persist", "locked_by": "w2", "locked_at": clock.now()},
    )
    store.run_transaction(lambda db: setattr(db.get(Material, "mat-1"), "status", MaterialStatus.PROCESSING))
    assert run_single_job(store, job_id, providers=providers) == RunResult.DONE

    second = {e.expression_id: e for e in _expressions()}
    assert set(second) == set(first)
    for eid, expr in second.items():
        assert expr.created_at == first[eid].created_at
        assert expr.updated_at == clock.now()


def test_glossary_job_runs_single_step(store, make_material, providers):
    from material_pipeline.services.jobs import enqueue_glossary_job

    make_material()
    pipeline_job = enqueue_material_pipeline_job(store, "mat-1")
    run_job_to_completion(store, pipeline_job, worker_id="w", providers=providers)

    glossary_job = enqueue_glossary_job(store, "mat-1")
    assert glossary_job == f"{JobType.GLOSSARY_GENERATE}:mat-1:v1"
    assert run_job_to_completion(store, glossary_job, worker_id="w", providers=providers) == RunResult.DONE
    # glossary jobs never move the material status
    assert _material(store).status == MaterialStatus.READY


def test_ready_short_circuit_clears_error_and_completes_progress(store, clock, make_material, make_job, providers):
    make_material(status=MaterialStatus.READY)
    job = make_job("mat-1", status=JobStatus.PROCESSING, step="captions", locked_by="w1", locked_at=clock.now())
    store.update(
        job.id,
        {"error_code": "material_pipeline_captions_retrying", "error_message": "will retry on attempt 1/6"},
    )

    result = run_single_job(store, job.id, providers=providers, handlers={"captions": lambda ctx: None})

    assert result == RunResult.DONE
    job = store.get(job.id)
    assert job.error_code is None
    assert job.error_message is None
    state = _material(store).pipeline_state
    assert state["current_step"] is None
    assert state["last_completed_step"] == "persist"
    assert state["status"] == MaterialStatus.READY


def test_run_to_completion_behind_processing_duplicate_reports_processing(store, clock, make_material, make_job, providers):
    make_material()
    make_job(
        "mat-1",
        job_id="material_pipeline:mat-1:v1:legacy",
        status=JobStatus.PROCESSING,
        step="format",
        locked_by="other",
        locked_at=clock.now(),
    )
    job_id = enqueue_material_pipeline_job(store, "mat-1")

    result = run_job_to_completion(store, job_id, worker_id="api_test", providers=providers)

    assert result == RunResult.PROCESSING
    job = store.get(job_id)
    assert job.status == JobStatus.QUEUED
    assert job.error_code == "duplicate_processing_detected"


def test_run_to_completion_reports_finished_jobs(store, make_material, make_job, providers):
    make_material()
    done = make_job("mat-1", job_id="material_pipeline:mat-1:v1:a", status=JobStatus.DONE, step="persist")
    failed = make_job("mat-1", job_id="material_pipeline:mat-1:v1:b", status=JobStatus.FAILED, step="captions")

    assert run_job_to_completion(store, done.id, worker_id="w", providers=providers) == RunResult.DONE
    assert run_job_to_completion(store, failed.id, worker_id="w", providers=providers) == RunResult.FAILED
    assert run_job_to_completion(store, "missing", worker_id="w", providers=providers) == RunResult.FAILED


def test_unknown_step_still_counts_an_attempt(store, clock, make_material, make_job, providers):
    make_material()
    job = make_job("mat-1", status=JobStatus.PROCESSING, step="retired_step", locked_by="w1", locked_at=clock.now())

    assert run_single_job(store, job.id, providers=providers) == RunResult.FAILED

    job = store.get(job.id)
    assert job.status == JobStatus.QUEUED
    assert job.attempt == 1
    assert job.error_code == "material_pipeline_retired_step_retrying"
    state = _material(store).pipeline_state
    assert state["current_step"] == "retired_step"
    assert state["last_completed_step"] is None
