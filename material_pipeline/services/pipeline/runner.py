from __future__ import annotations

import logging
from collections.abc import Callable

from material_pipeline.services.glossary import fill_glossary_for_material
from material_pipeline.services.pipeline import material_steps
from material_pipeline.services.pipeline.context import PipelineContext

logger = logging.getLogger(__name__)

StepFn = Callable[[PipelineContext], None]


def run_glossary_step(ctx: PipelineContext) -> None:
    fill_glossary_for_material(ctx.store, ctx.material_id, client=ctx.providers.text_generation)


STEP_HANDLERS: dict[str, StepFn] = {
    "meta": material_steps.run_meta_step,
    "captions": material_steps.run_captions_step,
    "asr": material_steps.run_asr_step,
    "format": material_steps.run_format_step,
    "extract": material_steps.run_extract_step,
    "filter": material_steps.run_filter_step,
    "score": material_steps.run_score_step,
    "reeval": material_steps.run_reeval_step,
    "examples": material_steps.run_examples_step,
    "persist": material_steps.run_persist_step,
    "glossary": run_glossary_step,
}


def run_pipeline_step(ctx: PipelineContext, handlers: dict[str, StepFn] | None = None) -> None:
    """Run exactly one step. Steps commit their own scratch writes; the job cursor is the executor's."""
    handlers = handlers or STEP_HANDLERS
    handler = handlers.get(ctx.step)
    if handler is None:
        raise ValueError(f"No handler for step {ctx.step!r}")
    logger.debug("job %s running step %s", ctx.job_id, ctx.step)
    handler(ctx)
