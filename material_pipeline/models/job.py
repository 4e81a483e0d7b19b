from __future__ import annotations

from datetime import datetime

from sqlalchemy import Index, Integer, String, Text
from sqlalchemy.orm import Mapped, mapped_column

from material_pipeline.db.base import Base
from material_pipeline.db.types import UTCDateTime


class JobStatus:
    QUEUED = "queued"
    PROCESSING = "processing"
    DONE = "done"
    FAILED = "failed"


class JobType:
    MATERIAL_PIPELINE = "material_pipeline"
    GLOSSARY_GENERATE = "glossary_generate"


class Job(Base):
    __tablename__ = "jobs"

    # "{type}:{target_id}:{pipeline_version}"
    id: Mapped[str] = mapped_column(String(255), primary_key=True)

    type: Mapped[str] = mapped_column(String(64), nullable=False)
    target_id: Mapped[str] = mapped_column(String(64), nullable=False)
    pipeline_version: Mapped[str] = mapped_column(String(32), nullable=False)

    status: Mapped[str] = mapped_column(String(32), nullable=False, default=JobStatus.QUEUED)  # queued|processing|done|failed
    step: Mapped[str] = mapped_column(String(32), nullable=False)
    attempt: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    next_run_at: Mapped[datetime] = mapped_column(UTCDateTime(), nullable=False)

    # "" when unlocked
    locked_by: Mapped[str] = mapped_column(String(128), nullable=False, default="")
    locked_at: Mapped[datetime | None] = mapped_column(UTCDateTime(), nullable=True)

    error_code: Mapped[str | None] = mapped_column(String(128), nullable=True)
    error_message: Mapped[str | None] = mapped_column(Text, nullable=True)

    created_at: Mapped[datetime] = mapped_column(UTCDateTime(), nullable=False)
    updated_at: Mapped[datetime] = mapped_column(UTCDateTime(), nullable=False)

    # optimistic concurrency: UPDATE ... WHERE row_version = :seen
    row_version: Mapped[int] = mapped_column(Integer, nullable=False)

    __mapper_args__ = {"version_id_col": row_version}

    __table_args__ = (
        Index("ix_jobs_status_next_run_at", "status", "next_run_at"),
        Index("ix_jobs_logical_key", "type", "target_id", "pipeline_version", "status"),
    )

    @property
    def logical_key(self) -> tuple[str, str, str]:
        return (self.type, self.target_id, self.pipeline_version)
