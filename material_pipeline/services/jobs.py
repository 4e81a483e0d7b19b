from __future__ import annotations

import logging
import uuid

from sqlalchemy.orm import Session

from material_pipeline.models.job import Job, JobStatus, JobType
from material_pipeline.models.material import Material, MaterialStatus
from material_pipeline.services.job_policy import build_job_id, build_pipeline_progress_state
from material_pipeline.services.job_store import JobStore
from material_pipeline.services.pipeline.material_steps import MaterialNotFound
from material_pipeline.services.pipeline.steps import first_step

logger = logging.getLogger(__name__)


def create_worker_id(prefix: str = "worker") -> str:
    return f"{prefix}_{uuid.uuid4().hex[:8]}"


def _new_job(store: JobStore, job_type: str, target_id: str, pipeline_version: str) -> Job:
    now = store.now()
    return Job(
        id=build_job_id(job_type, target_id, pipeline_version),
        type=job_type,
        target_id=target_id,
        pipeline_version=pipeline_version,
        status=JobStatus.QUEUED,
        step=first_step(job_type),
        attempt=0,
        next_run_at=now,
        locked_by="",
        locked_at=None,
        created_at=now,
        updated_at=now,
    )


def enqueue_material_pipeline_job(store: JobStore, material_id: str) -> str:
    """
    Create the pipeline job for the material at the current pipeline version if it does not exist.
    Calling it again returns the same id and writes nothing.
    """
    version = store.settings.pipeline_version
    job_id = build_job_id(JobType.MATERIAL_PIPELINE, material_id, version)

    def _enqueue(db: Session) -> bool:
        material = db.get(Material, material_id)
        if material is None:
            raise MaterialNotFound(f"material {material_id} not found")
        if db.get(Job, job_id) is not None:
            return False

        db.add(_new_job(store, JobType.MATERIAL_PIPELINE, material_id, version))

        already_ready = material.status == MaterialStatus.READY and material.pipeline_version == version
        if not already_ready:
            now = store.now()
            material.status = MaterialStatus.QUEUED
            material.pipeline_version = version
            material.pipeline_state = build_pipeline_progress_state(
                current_step=first_step(JobType.MATERIAL_PIPELINE),
                last_completed_step=None,
                status=MaterialStatus.QUEUED,
                now=now,
            )
            material.updated_at = now
        return True

    if store.run_transaction(_enqueue):
        logger.info("enqueued job %s", job_id)
    return job_id


def enqueue_glossary_job(store: JobStore, material_id: str) -> str:
    version = store.settings.pipeline_version
    job_id = build_job_id(JobType.GLOSSARY_GENERATE, material_id, version)

    def _exists(db: Session) -> bool:
        return db.get(Material, material_id) is not None

    if not store.run_transaction(_exists):
        raise MaterialNotFound(f"material {material_id} not found")

    if store.create(_new_job(store, JobType.GLOSSARY_GENERATE, material_id, version)):
        logger.info("enqueued job %s", job_id)
    return job_id
