"""
Pure queue policies: no I/O, no clock reads. Callers pass `now`.
"""
from __future__ import annotations

from collections.abc import Iterable
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Any, Protocol

from material_pipeline.models.job import JobStatus


class DuplicateAction:
    SKIP_DONE = "skip_done"
    DEFER = "defer"
    CLAIM = "claim"


class _JobLike(Protocol):
    status: str
    locked_at: datetime | None


# ----------------------------
# Backoff / staleness
# ----------------------------

def compute_backoff_seconds(attempt: int, base_seconds: int, max_seconds: int | None = None) -> int:
    """
    base * 2^(attempt-1) for attempt >= 1; attempts below 1 count as the first.
    Optional cap when max_seconds is given.
    """
    exponent = max(0, attempt - 1)
    delay = base_seconds * (2 ** exponent)
    if max_seconds is not None and max_seconds > 0:
        delay = min(delay, max_seconds)
    return delay


def is_lock_stale(locked_at: datetime | None, now: datetime, lock_timeout: timedelta) -> bool:
    if locked_at is None:
        return True
    return now - locked_at > lock_timeout


def build_job_id(job_type: str, target_id: str, pipeline_version: str) -> str:
    return f"{job_type}:{target_id}:{pipeline_version}"


# ----------------------------
# Duplicate suppression
# ----------------------------

def resolve_duplicate_action(
    duplicates: Iterable[_JobLike],
    *,
    now: datetime,
    lock_timeout: timedelta,
) -> str:
    """
    Decide what happens to a candidate given the other jobs sharing its logical key.
    done beats processing beats queued; a processing duplicate only blocks while its lock is fresh.
    """
    dups = list(duplicates)

    if any(d.status == JobStatus.DONE for d in dups):
        return DuplicateAction.SKIP_DONE

    if any(
        d.status == JobStatus.PROCESSING and not is_lock_stale(d.locked_at, now, lock_timeout)
        for d in dups
    ):
        return DuplicateAction.DEFER

    return DuplicateAction.CLAIM


# ----------------------------
# Failure / progress records
# ----------------------------

@dataclass(frozen=True)
class JobFailureDetails:
    attempt: int
    terminal: bool
    status: str
    error_code: str
    error_message: str


def build_job_failure_details(
    *,
    job_type: str,
    step: str,
    attempt: int,
    max_attempts: int,
    reason: str,
) -> JobFailureDetails:
    terminal = attempt >= max_attempts
    outcome = "failed" if terminal else "retrying"
    stage = "failed" if terminal else "will retry"
    return JobFailureDetails(
        attempt=attempt,
        terminal=terminal,
        status=JobStatus.FAILED if terminal else JobStatus.QUEUED,
        error_code=f"{job_type}_{step}_{outcome}",
        error_message=f'{job_type.replace("_", " ")} step "{step}" {stage} on attempt {attempt}/{max_attempts}: {reason}',
    )


def build_pipeline_progress_state(
    *,
    current_step: str | None,
    last_completed_step: str | None,
    status: str,
    now: datetime,
    error_code: str | None = None,
    error_message: str | None = None,
) -> dict[str, Any]:
    return {
        "current_step": current_step,
        "last_completed_step": last_completed_step,
        "status": status,
        "updated_at": now.isoformat(),
        "error_code": error_code,
        "error_message": error_message,
    }
