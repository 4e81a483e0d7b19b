from __future__ import annotations

from datetime import datetime
from typing import Any

from sqlalchemy import JSON, Integer, String
from sqlalchemy.orm import Mapped, mapped_column

from material_pipeline.db.base import Base
from material_pipeline.db.types import UTCDateTime


class MaterialPipelineState(Base):
    """Scratch record the pipeline steps hand results through. One row per material and version."""

    __tablename__ = "material_pipeline_states"

    material_id: Mapped[str] = mapped_column(String(64), primary_key=True)
    pipeline_version: Mapped[str] = mapped_column(String(32), primary_key=True)

    meta: Mapped[dict[str, Any] | None] = mapped_column(JSON, nullable=True)
    captions: Mapped[dict[str, Any] | None] = mapped_column(JSON, nullable=True)
    asr: Mapped[dict[str, Any] | None] = mapped_column(JSON, nullable=True)
    formatted_segment_count: Mapped[int | None] = mapped_column(Integer, nullable=True)

    # candidate lists (JSON arrays of candidate dicts)
    extracted: Mapped[list[dict[str, Any]] | None] = mapped_column(JSON, nullable=True)
    filtered: Mapped[list[dict[str, Any]] | None] = mapped_column(JSON, nullable=True)
    scored: Mapped[list[dict[str, Any]] | None] = mapped_column(JSON, nullable=True)
    reevaluated: Mapped[list[dict[str, Any]] | None] = mapped_column(JSON, nullable=True)
    accepted: Mapped[list[dict[str, Any]] | None] = mapped_column(JSON, nullable=True)
    rejected: Mapped[list[dict[str, Any]] | None] = mapped_column(JSON, nullable=True)
    examples: Mapped[list[dict[str, Any]] | None] = mapped_column(JSON, nullable=True)

    persisted_count: Mapped[int | None] = mapped_column(Integer, nullable=True)

    updated_at: Mapped[datetime] = mapped_column(UTCDateTime(), nullable=False)
