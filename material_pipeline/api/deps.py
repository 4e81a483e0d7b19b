from __future__ import annotations

import hmac

from fastapi import Header, HTTPException

from material_pipeline.core.config import settings
from material_pipeline.services.job_store import JobStore
from material_pipeline.services.pipeline.providers import PipelineProviders, build_default_providers


def get_store() -> JobStore:
    return JobStore()


def get_providers() -> PipelineProviders:
    return build_default_providers(settings)


def _bearer(authorization: str | None) -> str:
    if not authorization or not authorization.lower().startswith("bearer "):
        return ""
    return authorization[7:].strip()


def _matches(token: str, secret: str) -> bool:
    return bool(secret) and bool(token) and hmac.compare_digest(token, secret)


def require_worker_secret(authorization: str | None = Header(default=None)) -> None:
    if not _matches(_bearer(authorization), settings.worker_secret):
        raise HTTPException(status_code=401, detail="Unauthorized")


def require_cron_or_worker_secret(authorization: str | None = Header(default=None)) -> None:
    token = _bearer(authorization)
    if not (_matches(token, settings.cron_secret) or _matches(token, settings.worker_secret)):
        raise HTTPException(status_code=401, detail="Unauthorized")
