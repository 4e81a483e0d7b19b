from __future__ import annotations

from dataclasses import dataclass

from material_pipeline.core.config import Settings
from material_pipeline.services.job_store import JobStore
from material_pipeline.services.pipeline.providers import PipelineProviders


@dataclass
class PipelineContext:
    store: JobStore
    providers: PipelineProviders
    job_id: str
    job_type: str
    material_id: str
    pipeline_version: str
    step: str

    @property
    def settings(self) -> Settings:
        return self.store.settings
