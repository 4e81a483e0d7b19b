from __future__ import annotations

import logging
from typing import Any

from sqlalchemy import delete, select
from sqlalchemy.orm import Session

from material_pipeline.models.material import Material
from material_pipeline.models.segment import Segment
from material_pipeline.services.candidates import (
    candidates_from_dicts,
    candidates_to_dicts,
    extract_candidates,
    filter_candidates,
    score_candidates,
)
from material_pipeline.services.captions import CaptionFetchResult, format_caption_cues
from material_pipeline.services.examples import attach_scenario_examples
from material_pipeline.services.persist import upsert_expressions
from material_pipeline.services.pipeline.context import PipelineContext
from material_pipeline.services.pipeline.state import (
    read_pipeline_state,
    require_state,
    write_pipeline_state,
)
from material_pipeline.services.reeval import reevaluate_candidates

logger = logging.getLogger(__name__)


class MaterialNotFound(Exception):
    pass


class CaptionsUnavailable(Exception):
    pass


# ----------------------------
# Helpers
# ----------------------------

def _state(ctx: PipelineContext):
    return read_pipeline_state(ctx.store, ctx.material_id, ctx.pipeline_version)


def _write(ctx: PipelineContext, **changes: Any) -> None:
    ctx.store.run_transaction(
        lambda db: write_pipeline_state(db, ctx.store, ctx.material_id, ctx.pipeline_version, **changes)
    )


def load_segments(ctx: PipelineContext) -> list[dict[str, Any]]:
    def _load(db: Session) -> list[dict[str, Any]]:
        stmt = (
            select(Segment)
            .where(Segment.material_id == ctx.material_id)
            .order_by(Segment.start_ms, Segment.end_ms, Segment.segment_id)
        )
        return [
            {"segment_id": s.segment_id, "start_ms": s.start_ms, "end_ms": s.end_ms, "text": s.text}
            for s in db.scalars(stmt).all()
        ]

    return ctx.store.run_transaction(_load)


def _segment_text_by_id(ctx: PipelineContext) -> dict[str, str]:
    return {s["segment_id"]: s["text"] for s in load_segments(ctx)}


# ----------------------------
# Steps
# ----------------------------

def run_meta_step(ctx: PipelineContext) -> None:
    material = ctx.store.run_transaction(lambda db: db.get(Material, ctx.material_id))
    if material is None:
        raise MaterialNotFound(f"material {ctx.material_id} not found")
    if not material.youtube_id or not material.youtube_url:
        raise ValueError(f"material {ctx.material_id} has no YouTube video id")

    meta = {
        "youtube_id": material.youtube_id,
        "youtube_url": material.youtube_url,
        "title": material.title,
        "channel": material.channel,
        "duration_sec": material.duration_sec,
    }
    # a fresh run starts from empty scratch state
    _write(
        ctx,
        meta=meta,
        captions=None,
        asr=None,
        formatted_segment_count=None,
        extracted=None,
        filtered=None,
        scored=None,
        reevaluated=None,
        accepted=None,
        rejected=None,
        examples=None,
        persisted_count=None,
    )


def run_captions_step(ctx: PipelineContext) -> None:
    meta = require_state(_state(ctx), "meta", step="captions", requires="meta")

    result = ctx.providers.captions.fetch_captions(
        material_id=ctx.material_id,
        youtube_id=meta["youtube_id"],
        youtube_url=meta["youtube_url"],
    )
    logger.info(
        "captions for material %s: %s (%s cues)",
        ctx.material_id,
        result.status if result.is_fetched else f"{result.status}/{result.reason}",
        len(result.cues),
    )

    def _save(db: Session) -> None:
        write_pipeline_state(db, ctx.store, ctx.material_id, ctx.pipeline_version, captions=result.to_dict())
        if result.is_fetched and (result.title or result.channel or result.duration_sec):
            material = db.get(Material, ctx.material_id)
            if material is not None:
                material.title = result.title or material.title
                material.channel = result.channel or material.channel
                material.duration_sec = result.duration_sec or material.duration_sec
                material.updated_at = ctx.store.now()

    ctx.store.run_transaction(_save)


def run_asr_step(ctx: PipelineContext) -> None:
    state = _state(ctx)
    captions = CaptionFetchResult.from_dict(require_state(state, "captions", step="asr", requires="captions"))

    if captions.is_fetched:
        _write(ctx, asr={"status": "skipped", "reason": "captions_available"})
        return

    if ctx.providers.asr is None:
        raise CaptionsUnavailable(
            f"captions unavailable for material {ctx.material_id} "
            f"({captions.reason}: {captions.message}) and ASR is not configured"
        )

    cues = ctx.providers.asr.transcribe(state.meta["youtube_id"])
    transcribed = CaptionFetchResult.fetched(cues, source=ctx.providers.asr.source)
    _write(
        ctx,
        captions=transcribed.to_dict(),
        asr={"status": "transcribed", "cue_count": len(cues), "replaced_reason": captions.reason},
    )


def run_format_step(ctx: PipelineContext) -> None:
    state = _state(ctx)
    captions = CaptionFetchResult.from_dict(require_state(state, "captions", step="format", requires="captions"))
    require_state(state, "asr", step="format", requires="asr")
    if not captions.is_fetched:
        raise CaptionsUnavailable(f"no caption cues to format for material {ctx.material_id}")

    rows = format_caption_cues(captions.cues)

    def _replace(db: Session) -> None:
        db.execute(delete(Segment).where(Segment.material_id == ctx.material_id))
        db.add_all(
            Segment(
                material_id=ctx.material_id,
                segment_id=r["segment_id"],
                start_ms=r["start_ms"],
                end_ms=r["end_ms"],
                text=r["text"],
            )
            for r in rows
        )
        write_pipeline_state(db, ctx.store, ctx.material_id, ctx.pipeline_version, formatted_segment_count=len(rows))

    ctx.store.run_transaction(_replace)


def run_extract_step(ctx: PipelineContext) -> None:
    require_state(_state(ctx), "formatted_segment_count", step="extract", requires="format")
    cands = extract_candidates(load_segments(ctx))
    _write(ctx, extracted=candidates_to_dicts(cands))


def run_filter_step(ctx: PipelineContext) -> None:
    extracted = require_state(_state(ctx), "extracted", step="filter", requires="extract")
    kept = filter_candidates(candidates_from_dicts(extracted), max_candidates=ctx.settings.max_candidates)
    _write(ctx, filtered=candidates_to_dicts(kept))


def run_score_step(ctx: PipelineContext) -> None:
    filtered = require_state(_state(ctx), "filtered", step="score", requires="filter")
    scored = score_candidates(candidates_from_dicts(filtered), threshold=ctx.settings.score_accept_threshold)
    _write(ctx, scored=candidates_to_dicts(scored))


def run_reeval_step(ctx: PipelineContext) -> None:
    scored = require_state(_state(ctx), "scored", step="reeval", requires="score")
    ranked, accepted, rejected = reevaluate_candidates(
        candidates_from_dicts(scored),
        client=ctx.providers.text_generation,
        threshold=ctx.settings.score_accept_threshold,
        max_candidates=ctx.settings.reeval_max_candidates,
        max_workers=ctx.settings.llm_max_concurrency,
        segment_text_by_id=_segment_text_by_id(ctx),
    )
    _write(
        ctx,
        reevaluated=candidates_to_dicts(ranked),
        accepted=candidates_to_dicts(accepted),
        rejected=candidates_to_dicts(rejected),
    )


def run_examples_step(ctx: PipelineContext) -> None:
    accepted = require_state(_state(ctx), "accepted", step="examples", requires="reeval")
    with_examples = attach_scenario_examples(
        candidates_from_dicts(accepted),
        client=ctx.providers.text_generation,
        segment_text_by_id=_segment_text_by_id(ctx),
        max_workers=ctx.settings.llm_max_concurrency,
    )
    _write(ctx, examples=candidates_to_dicts(with_examples))


def run_persist_step(ctx: PipelineContext) -> None:
    examples = require_state(_state(ctx), "examples", step="persist", requires="examples")
    cands = candidates_from_dicts(examples)

    def _persist(db: Session) -> int:
        count = upsert_expressions(db, ctx.material_id, cands, now=ctx.store.now())
        write_pipeline_state(db, ctx.store, ctx.material_id, ctx.pipeline_version, persisted_count=count)
        return count

    count = ctx.store.run_transaction(_persist)
    logger.info("persisted %s expressions for material %s", count, ctx.material_id)
