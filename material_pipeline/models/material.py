from __future__ import annotations

from datetime import datetime
from typing import Any

from sqlalchemy import JSON, Integer, String, Text
from sqlalchemy.orm import Mapped, mapped_column

from material_pipeline.db.base import Base
from material_pipeline.db.types import UTCDateTime


class MaterialStatus:
    QUEUED = "queued"
    PROCESSING = "processing"
    READY = "ready"
    FAILED = "failed"


class Material(Base):
    __tablename__ = "materials"

    id: Mapped[str] = mapped_column(String(64), primary_key=True)

    # source
    youtube_url: Mapped[str] = mapped_column(Text, nullable=False)
    youtube_id: Mapped[str] = mapped_column(String(32), nullable=False, index=True)

    # display/meta
    title: Mapped[str | None] = mapped_column(String(512), nullable=True)
    channel: Mapped[str | None] = mapped_column(String(256), nullable=True)
    duration_sec: Mapped[int | None] = mapped_column(Integer, nullable=True)

    status: Mapped[str] = mapped_column(String(32), nullable=False, default=MaterialStatus.QUEUED)
    pipeline_version: Mapped[str] = mapped_column(String(32), nullable=False)

    # {current_step, last_completed_step, status, updated_at, error_code, error_message}
    pipeline_state: Mapped[dict[str, Any] | None] = mapped_column(JSON, nullable=True)

    created_at: Mapped[datetime] = mapped_column(UTCDateTime(), nullable=False)
    updated_at: Mapped[datetime] = mapped_column(UTCDateTime(), nullable=False)

    row_version: Mapped[int] = mapped_column(Integer, nullable=False)

    __mapper_args__ = {"version_id_col": row_version}
