from __future__ import annotations

from datetime import datetime
from typing import Any

from sqlalchemy import JSON, Index, Integer, String, Text
from sqlalchemy.orm import Mapped, mapped_column

from material_pipeline.db.base import Base
from material_pipeline.db.types import UTCDateTime


class Expression(Base):
    __tablename__ = "expressions"

    material_id: Mapped[str] = mapped_column(String(64), primary_key=True)
    # sha256 of the normalized expression text
    expression_id: Mapped[str] = mapped_column(String(64), primary_key=True)

    expression_text: Mapped[str] = mapped_column(Text, nullable=False)
    score_final: Mapped[int] = mapped_column(Integer, nullable=False)
    axis_scores: Mapped[dict[str, Any]] = mapped_column(JSON, nullable=False, default=dict)
    flags: Mapped[list[str]] = mapped_column(JSON, nullable=False, default=list)
    decision_source: Mapped[str] = mapped_column(String(32), nullable=False)  # heuristic|openai|fallback

    meaning_ja: Mapped[str | None] = mapped_column(Text, nullable=True)
    reason_short: Mapped[str | None] = mapped_column(Text, nullable=True)
    scenario_example: Mapped[str | None] = mapped_column(Text, nullable=True)
    occurrences: Mapped[list[dict[str, Any]]] = mapped_column(JSON, nullable=False, default=list)

    created_at: Mapped[datetime] = mapped_column(UTCDateTime(), nullable=False)
    updated_at: Mapped[datetime] = mapped_column(UTCDateTime(), nullable=False)

    __table_args__ = (
        Index("ix_expressions_material_score", "material_id", "score_final"),
    )
