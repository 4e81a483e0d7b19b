from __future__ import annotations

from material_pipeline.models.job import JobType

MATERIAL_PIPELINE_STEPS: tuple[str, ...] = (
    "meta",
    "captions",
    "asr",
    "format",
    "extract",
    "filter",
    "score",
    "reeval",
    "examples",
    "persist",
)

GLOSSARY_STEPS: tuple[str, ...] = ("glossary",)

_STEPS_BY_JOB_TYPE: dict[str, tuple[str, ...]] = {
    JobType.MATERIAL_PIPELINE: MATERIAL_PIPELINE_STEPS,
    JobType.GLOSSARY_GENERATE: GLOSSARY_STEPS,
}


def steps_for(job_type: str) -> tuple[str, ...]:
    try:
        return _STEPS_BY_JOB_TYPE[job_type]
    except KeyError:
        raise ValueError(f"Unknown job type: {job_type}") from None


def first_step(job_type: str) -> str:
    return steps_for(job_type)[0]


def last_step(job_type: str) -> str:
    return steps_for(job_type)[-1]


def next_step(step: str, job_type: str = JobType.MATERIAL_PIPELINE) -> str | None:
    steps = steps_for(job_type)
    if step not in steps:
        raise ValueError(f"Unknown step {step!r} for job type {job_type}")
    ix = steps.index(step)
    return steps[ix + 1] if ix + 1 < len(steps) else None


def previous_step(step: str, job_type: str = JobType.MATERIAL_PIPELINE) -> str | None:
    steps = steps_for(job_type)
    if step not in steps:
        raise ValueError(f"Unknown step {step!r} for job type {job_type}")
    ix = steps.index(step)
    return steps[ix - 1] if ix > 0 else None
