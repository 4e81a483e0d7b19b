from __future__ import annotations

from datetime import datetime

from sqlalchemy import String, Text
from sqlalchemy.orm import Mapped, mapped_column

from material_pipeline.db.base import Base
from material_pipeline.db.types import UTCDateTime


class GlossaryEntry(Base):
    __tablename__ = "glossary_entries"

    material_id: Mapped[str] = mapped_column(String(64), primary_key=True)
    hash: Mapped[str] = mapped_column(String(64), primary_key=True)

    surface_text: Mapped[str] = mapped_column(Text, nullable=False)  # normalized
    meaning_ja: Mapped[str] = mapped_column(Text, nullable=False)
    source: Mapped[str] = mapped_column(String(32), nullable=False)  # openai|expression|fallback

    created_at: Mapped[datetime] = mapped_column(UTCDateTime(), nullable=False)
