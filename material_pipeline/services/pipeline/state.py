from __future__ import annotations

from typing import Any

from sqlalchemy.orm import Session

from material_pipeline.models.pipeline_state import MaterialPipelineState
from material_pipeline.services.job_store import JobStore


class PipelineStepOrderError(Exception):
    """A step ran before the step it depends on stored its output."""


# Scratch fields a step may write. Anything else is a programming error.
STATE_FIELDS = (
    "meta",
    "captions",
    "asr",
    "formatted_segment_count",
    "extracted",
    "filtered",
    "scored",
    "reevaluated",
    "accepted",
    "rejected",
    "examples",
    "persisted_count",
)


def read_pipeline_state(store: JobStore, material_id: str, pipeline_version: str) -> MaterialPipelineState | None:
    return store.run_transaction(lambda db: db.get(MaterialPipelineState, (material_id, pipeline_version)))


def require_state(
    state: MaterialPipelineState | None,
    field_name: str,
    *,
    step: str,
    requires: str,
) -> Any:
    value = getattr(state, field_name, None) if state is not None else None
    if value is None:
        raise PipelineStepOrderError(f"{requires} must run before {step} (missing {field_name})")
    return value


def write_pipeline_state(db: Session, store: JobStore, material_id: str, pipeline_version: str, **changes: Any) -> MaterialPipelineState:
    unknown = set(changes) - set(STATE_FIELDS)
    if unknown:
        raise ValueError(f"unknown pipeline state fields: {sorted(unknown)}")

    row = db.get(MaterialPipelineState, (material_id, pipeline_version))
    if row is None:
        row = MaterialPipelineState(material_id=material_id, pipeline_version=pipeline_version)
        db.add(row)
    for k, v in changes.items():
        setattr(row, k, v)
    row.updated_at = store.now()
    return row
