"""job queue and material pipeline tables

Revision ID: 0001
Revises:
Create Date: 2026-10-17 10:12:31.000000

"""
from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa


# revision identifiers, used by Alembic.
revision: str = "0001"
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def upgrade() -> None:
    op.create_table(
        "jobs",
        sa.Column("id", sa.String(length=255), primary_key=True, nullable=False),
        sa.Column("type", sa.String(length=64), nullable=False),
        sa.Column("target_id", sa.String(length=64), nullable=False),
        sa.Column("pipeline_version", sa.String(length=32), nullable=False),
        sa.Column("status", sa.String(length=32), nullable=False),
        sa.Column("step", sa.String(length=32), nullable=False),
        sa.Column("attempt", sa.Integer(), nullable=False),
        sa.Column("next_run_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("locked_by", sa.String(length=128), nullable=False, server_default=""),
        sa.Column("locked_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("error_code", sa.String(length=128), nullable=True),
        sa.Column("error_message", sa.Text(), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("row_version", sa.Integer(), nullable=False),
    )
    op.create_index("ix_jobs_status_next_run_at", "jobs", ["status", "next_run_at"])
    op.create_index("ix_jobs_logical_key", "jobs", ["type", "target_id", "pipeline_version", "status"])

    op.create_table(
        "materials",
        sa.Column("id", sa.String(length=64), primary_key=True, nullable=False),
        sa.Column("youtube_url", sa.Text(), nullable=False),
        sa.Column("youtube_id", sa.String(length=32), nullable=False),
        sa.Column("title", sa.String(length=512), nullable=True),
        sa.Column("channel", sa.String(length=256), nullable=True),
        sa.Column("duration_sec", sa.Integer(), nullable=True),
        sa.Column("status", sa.String(length=32), nullable=False),
        sa.Column("pipeline_version", sa.String(length=32), nullable=False),
        sa.Column("pipeline_state", sa.JSON(), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("row_version", sa.Integer(), nullable=False),
    )
    op.create_index("ix_materials_youtube_id", "materials", ["youtube_id"])

    op.create_table(
        "material_pipeline_states",
        sa.Column("material_id", sa.String(length=64), primary_key=True, nullable=False),
        sa.Column("pipeline_version", sa.String(length=32), primary_key=True, nullable=False),
        sa.Column("meta", sa.JSON(), nullable=True),
        sa.Column("captions", sa.JSON(), nullable=True),
        sa.Column("asr", sa.JSON(), nullable=True),
        sa.Column("formatted_segment_count", sa.Integer(), nullable=True),
        sa.Column("extracted", sa.JSON(), nullable=True),
        sa.Column("filtered", sa.JSON(), nullable=True),
        sa.Column("scored", sa.JSON(), nullable=True),
        sa.Column("reevaluated", sa.JSON(), nullable=True),
        sa.Column("accepted", sa.JSON(), nullable=True),
        sa.Column("rejected", sa.JSON(), nullable=True),
        sa.Column("examples", sa.JSON(), nullable=True),
        sa.Column("persisted_count", sa.Integer(), nullable=True),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=False),
    )

    op.create_table(
        "segments",
        sa.Column("material_id", sa.String(length=64), primary_key=True, nullable=False),
        sa.Column("segment_id", sa.String(length=32), primary_key=True, nullable=False),
        sa.Column("start_ms", sa.Integer(), nullable=False),
        sa.Column("end_ms", sa.Integer(), nullable=False),
        sa.Column("text", sa.Text(), nullable=False),
    )
    op.create_index("ix_segments_material_time", "segments", ["material_id", "start_ms", "end_ms"])

    op.create_table(
        "expressions",
        sa.Column("material_id", sa.String(length=64), primary_key=True, nullable=False),
        sa.Column("expression_id", sa.String(length=64), primary_key=True, nullable=False),
        sa.Column("expression_text", sa.Text(), nullable=False),
        sa.Column("score_final", sa.Integer(), nullable=False),
        sa.Column("axis_scores", sa.JSON(), nullable=False),
        sa.Column("flags", sa.JSON(), nullable=False),
        sa.Column("decision_source", sa.String(length=32), nullable=False),
        sa.Column("meaning_ja", sa.Text(), nullable=True),
        sa.Column("reason_short", sa.Text(), nullable=True),
        sa.Column("scenario_example", sa.Text(), nullable=True),
        sa.Column("occurrences", sa.JSON(), nullable=False),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=False),
    )
    op.create_index("ix_expressions_material_score", "expressions", ["material_id", "score_final"])

    op.create_table(
        "glossary_entries",
        sa.Column("material_id", sa.String(length=64), primary_key=True, nullable=False),
        sa.Column("hash", sa.String(length=64), primary_key=True, nullable=False),
        sa.Column("surface_text", sa.Text(), nullable=False),
        sa.Column("meaning_ja", sa.Text(), nullable=False),
        sa.Column("source", sa.String(length=32), nullable=False),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
    )


def downgrade() -> None:
    op.drop_table("glossary_entries")
    op.drop_index("ix_expressions_material_score", table_name="expressions")
    op.drop_table("expressions")
    op.drop_index("ix_segments_material_time", table_name="segments")
    op.drop_table("segments")
    op.drop_table("material_pipeline_states")
    op.drop_index("ix_materials_youtube_id", table_name="materials")
    op.drop_table("materials")
    op.drop_index("ix_jobs_logical_key", table_name="jobs")
    op.drop_index("ix_jobs_status_next_run_at", table_name="jobs")
    op.drop_table("jobs")
