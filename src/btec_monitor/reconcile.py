"""Pure functions that fold remote data into a JobState.

Two sources feed the tracker: the coarse assignment list, which only gives
an assignment status and therefore a time based estimate, and the fine job
status (or push telemetry), which gives real numbers. Real numbers always
win over the estimate, and progress never goes backwards while a job is
queued or running.
"""

import math
from dataclasses import dataclass, replace
from datetime import datetime, timezone
from typing import Optional, Union

from .models import (
    ACTIVE_STATUSES,
    Assignment,
    AssignmentStatus,
    GenerationJob,
    JobState,
    JobStatus,
    ProgressSource,
    ProgressUpdate,
)

ESTIMATE_CAP = 95
DEFAULT_ESTIMATE_SECONDS = 120.0

GENERATING_STAGE = "Generating content..."
HUMANIZING_STAGE = "Humanizing content..."

# A pause keeps the run's progress floor when the job is resumed.
_MONOTONIC_FROM = ACTIVE_STATUSES | {JobStatus.AWAITING_APPROVAL}


@dataclass
class CoarseEstimate:
    """What the assignment list alone says about a job."""

    status: JobStatus
    progress: int
    current_stage: str
    job_id: Optional[str] = None
    created_at: Optional[datetime] = None


@dataclass
class Confirmed:
    """State backed by data received from the service."""

    state: JobState


@dataclass
class Optimistic:
    """State applied locally before the service confirmed it."""

    state: JobState
    rollback: JobState


TrackedState = Union[Confirmed, Optimistic]


def clamp_progress(value) -> int:
    """Clamp a progress figure to [0, 100]."""
    if value is None:
        return 0
    try:
        value = float(value)
    except (TypeError, ValueError):
        return 0
    if math.isnan(value):
        return 0
    return int(min(100, max(0, value)))


def estimate_progress(
    started: Optional[datetime],
    now: datetime,
    estimate_seconds: float = DEFAULT_ESTIMATE_SECONDS,
) -> int:
    """Wall-clock estimate: min(95, floor(elapsed_ms / estimate_ms * 100))."""
    if started is None or estimate_seconds <= 0:
        return 0
    elapsed_ms = (now - started).total_seconds() * 1000
    if elapsed_ms <= 0:
        return 0
    estimate = math.floor(elapsed_ms / (estimate_seconds * 1000) * 100)
    return min(ESTIMATE_CAP, estimate)


def estimate_from_assignment(
    assignment: Assignment,
    now: Optional[datetime] = None,
    estimate_seconds: float = DEFAULT_ESTIMATE_SECONDS,
) -> CoarseEstimate:
    """Derive a coarse job view from an assignment record."""
    now = now or datetime.now(timezone.utc)
    status = assignment.status

    if status is AssignmentStatus.COMPLETED:
        job_status, progress, stage = JobStatus.COMPLETED, 100, "Completed"
    elif status is AssignmentStatus.FAILED:
        job_status, progress, stage = JobStatus.FAILED, 0, "Failed"
    elif status in (AssignmentStatus.GENERATING, AssignmentStatus.HUMANIZING):
        job_status = JobStatus.PROCESSING
        progress = estimate_progress(assignment.created_at, now, estimate_seconds)
        stage = HUMANIZING_STAGE if status is AssignmentStatus.HUMANIZING else GENERATING_STAGE
    else:
        job_status, progress, stage = JobStatus.QUEUED, 0, "Waiting to start"

    return CoarseEstimate(
        status=job_status,
        progress=progress,
        current_stage=stage,
        job_id=assignment.current_job_id,
        created_at=assignment.created_at,
    )


def _progress_floor(previous: JobState, status: JobStatus, progress: int) -> int:
    if status in ACTIVE_STATUSES and previous.status in _MONOTONIC_FROM:
        return max(progress, previous.progress)
    return progress


def merge_state(
    previous: JobState,
    coarse: Optional[CoarseEstimate],
    fine: Optional[GenerationJob],
) -> JobState:
    """Combine the coarse estimate and the fine job status into one state.

    The fine source takes precedence whenever it exists. The coarse source
    fills in while nothing real has been reported; after that it can only
    move the status to a terminal one.
    """
    if coarse is None and fine is None:
        return previous

    if fine is not None:
        merged = replace(
            previous,
            job_id=fine.job_id,
            status=fine.status,
            progress=clamp_progress(fine.progress),
            current_stage=fine.current_stage or previous.current_stage,
            current_word_count=fine.current_word_count,
            target_word_count=fine.target_word_count,
            error_message=fine.error_message,
            created_at=fine.created_at or previous.created_at,
            started_at=fine.started_at or previous.started_at,
            source=ProgressSource.REPORTED,
        )
    elif previous.source is ProgressSource.REPORTED:
        # Never let the estimate replace a reported figure.
        status = coarse.status if coarse.status.is_terminal else previous.status
        merged = replace(previous, status=status, job_id=previous.job_id or coarse.job_id)
    else:
        merged = replace(
            previous,
            job_id=previous.job_id or coarse.job_id,
            status=coarse.status,
            progress=clamp_progress(coarse.progress),
            current_stage=coarse.current_stage,
            created_at=previous.created_at or coarse.created_at,
            source=ProgressSource.ESTIMATED,
        )

    progress = merged.progress
    if merged.status is JobStatus.COMPLETED:
        progress = 100
    progress = _progress_floor(previous, merged.status, progress)
    return replace(merged, progress=progress, updated_at=datetime.now(timezone.utc))


def apply_progress_update(state: JobState, update: ProgressUpdate) -> JobState:
    """Fold one push telemetry event into the state."""
    status = state.status
    if status in (JobStatus.LOADING, JobStatus.QUEUED):
        status = JobStatus.PROCESSING
    progress = _progress_floor(state, status, clamp_progress(update.progress))
    return replace(
        state,
        status=status,
        progress=progress,
        current_stage=update.stage or state.current_stage,
        current_word_count=update.words_generated or update.word_count or state.current_word_count,
        target_word_count=update.target_words or state.target_word_count,
        source=ProgressSource.REPORTED,
        live=update,
        updated_at=datetime.now(timezone.utc),
    )
