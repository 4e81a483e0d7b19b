from celery import Celery

from material_pipeline.core.celery_settings import BROKER_URL, DISPATCH_INTERVAL_SEC, RESULT_BACKEND, is_test_env
from material_pipeline.core.logging import configure_logging

configure_logging()

# IMPORTANT: the variable name MUST be `celery_app`
celery_app = Celery(
    "material_pipeline",
    broker=BROKER_URL,
    backend=RESULT_BACKEND,
    include=["material_pipeline.worker.tasks"],
)

celery_app.conf.update(
    task_track_started=True,
    result_extended=True,
    task_serializer="json",
    result_serializer="json",
    accept_content=["json"],
    # redelivery is safe: the executor re-checks the job lock
    task_acks_late=True,
    worker_prefetch_multiplier=1,
    enable_utc=True,
    timezone="UTC",
    task_always_eager=is_test_env(),
    task_eager_propagates=is_test_env(),
    beat_schedule={
        "jobs-dispatch": {
            "task": "jobs.dispatch",
            "schedule": DISPATCH_INTERVAL_SEC,
        },
    },
)

__all__ = ["celery_app"]
