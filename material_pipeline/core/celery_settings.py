import os

from material_pipeline.core.config import settings


def is_test_env() -> bool:
    return os.getenv("ENV", settings.env) == "test"


def _env(name: str, default: str | None = None) -> str | None:
    v = os.getenv(name)
    return v if v and v.strip() else default


BROKER_URL = (
    _env("CELERY_BROKER_URL")
    or _env("REDIS_URL")
    or "redis://localhost:6379/0"
)

RESULT_BACKEND = _env("CELERY_RESULT_BACKEND") or BROKER_URL

# Beat cadence for the dispatch trigger
DISPATCH_INTERVAL_SEC = float(os.getenv("JOB_DISPATCH_INTERVAL_SEC", "60"))
