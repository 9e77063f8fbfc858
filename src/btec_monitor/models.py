"""Data models for the BTEC generation monitor."""

import logging
from dataclasses import dataclass, field, asdict
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, Optional

logger = logging.getLogger(__name__)

DEFAULT_TARGET_WORDS = 3000


def parse_timestamp(value: Any) -> Optional[datetime]:
    """Parse an ISO-8601 timestamp from the API. Naive values are taken as UTC."""
    if value is None or value == "":
        return None
    if isinstance(value, datetime):
        parsed = value
    else:
        parsed = datetime.fromisoformat(str(value).replace("Z", "+00:00"))
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed


def _format_timestamp(value: Optional[datetime]) -> Optional[str]:
    return value.isoformat() if value else None


class AssignmentStatus(Enum):
    """Lifecycle status of an assignment."""

    DRAFT = "DRAFT"
    GENERATING = "GENERATING"
    HUMANIZING = "HUMANIZING"
    COMPLETED = "COMPLETED"
    FAILED = "FAILED"

    @classmethod
    def from_backend(cls, value: Optional[str]) -> "AssignmentStatus":
        """Normalise a backend status string."""
        value = (value or "").upper()
        if value in ("BRIEF_UPLOADED", "PARSING"):
            return cls.DRAFT
        if value == "AWAITING_APPROVAL":
            return cls.GENERATING
        try:
            return cls(value)
        except ValueError:
            logger.debug(f"Unknown assignment status {value!r}, treating as DRAFT")
            return cls.DRAFT


ASSIGNMENT_TRANSITIONS = {
    AssignmentStatus.DRAFT: {AssignmentStatus.GENERATING},
    AssignmentStatus.GENERATING: {
        AssignmentStatus.HUMANIZING,
        AssignmentStatus.COMPLETED,
        AssignmentStatus.FAILED,
    },
    AssignmentStatus.HUMANIZING: {AssignmentStatus.COMPLETED, AssignmentStatus.FAILED},
    AssignmentStatus.COMPLETED: set(),
    AssignmentStatus.FAILED: set(),
}


class TargetGrade(Enum):
    PASS = "PASS"
    MERIT = "MERIT"
    DISTINCTION = "DISTINCTION"

    @classmethod
    def from_backend(cls, value: Optional[str]) -> "TargetGrade":
        """Accept both full names and the backend's P/M/D codes."""
        value = (value or "").upper()
        short = {"P": cls.PASS, "M": cls.MERIT, "D": cls.DISTINCTION}
        if value in short:
            return short[value]
        try:
            return cls(value)
        except ValueError:
            return cls.PASS


class JobStatus(Enum):
    """Generation job status. LOADING exists only on the client."""

    LOADING = "LOADING"
    QUEUED = "QUEUED"
    PROCESSING = "PROCESSING"
    AWAITING_APPROVAL = "AWAITING_APPROVAL"
    COMPLETED = "COMPLETED"
    FAILED = "FAILED"
    CANCELLED = "CANCELLED"

    @classmethod
    def parse(cls, value: Optional[str]) -> "JobStatus":
        value = (value or "").upper()
        # The status endpoint can echo the assignment status while humanizing.
        aliases = {
            "GENERATING": cls.PROCESSING,
            "HUMANIZING": cls.PROCESSING,
            "PAUSED": cls.AWAITING_APPROVAL,
        }
        if value in aliases:
            return aliases[value]
        return cls(value)

    @property
    def is_terminal(self) -> bool:
        return self in TERMINAL_STATUSES

    @property
    def is_active(self) -> bool:
        return self in ACTIVE_STATUSES


TERMINAL_STATUSES = frozenset({JobStatus.COMPLETED, JobStatus.FAILED, JobStatus.CANCELLED})
ACTIVE_STATUSES = frozenset({JobStatus.QUEUED, JobStatus.PROCESSING})


class ProgressSource(Enum):
    """Where the displayed progress figure came from."""

    NONE = "none"
    ESTIMATED = "estimated"
    REPORTED = "reported"


@dataclass
class Assignment:
    """A requested generated document and its metadata."""

    id: str
    status: AssignmentStatus
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None
    user_id: Optional[str] = None
    title: str = "Untitled Assignment"
    level: int = 3
    target_grade: TargetGrade = TargetGrade.PASS
    current_job_id: Optional[str] = None
    output_url: Optional[str] = None
    total_tokens_used: int = 0

    def can_transition_to(self, status: AssignmentStatus) -> bool:
        """Check the assignment lifecycle table."""
        return status in ASSIGNMENT_TRANSITIONS[self.status]

    @classmethod
    def from_dict(cls, d: Dict[str, Any]) -> "Assignment":
        """Create from an API payload."""
        snapshot = d.get("snapshot") or {}
        level = snapshot.get("level") or d.get("level") or 3
        if not 3 <= int(level) <= 6:
            level = 3
        current_job = d.get("currentJob") or {}
        return cls(
            id=d["id"],
            status=AssignmentStatus.from_backend(d.get("status")),
            created_at=parse_timestamp(d.get("createdAt")),
            updated_at=parse_timestamp(d.get("updatedAt")),
            user_id=d.get("userId"),
            title=snapshot.get("unitName") or d.get("title") or "Untitled Assignment",
            level=int(level),
            target_grade=TargetGrade.from_backend(d.get("grade") or d.get("targetGrade")),
            current_job_id=d.get("currentJobId") or current_job.get("id"),
            output_url=d.get("outputUrl") or d.get("docxUrl"),
            total_tokens_used=d.get("totalTokensUsed") or 0,
        )


@dataclass
class GenerationJob:
    """Remote execution record for one generation attempt."""

    job_id: str
    status: JobStatus
    progress: int = 0
    current_stage: str = ""
    current_word_count: int = 0
    target_word_count: int = DEFAULT_TARGET_WORDS
    error_message: Optional[str] = None
    assignment_id: Optional[str] = None
    created_at: Optional[datetime] = None
    started_at: Optional[datetime] = None
    completed_at: Optional[datetime] = None

    @classmethod
    def from_dict(cls, d: Dict[str, Any]) -> "GenerationJob":
        """Create from a status endpoint payload."""
        assignment = d.get("assignment") or {}
        return cls(
            job_id=d.get("jobId") or d["id"],
            status=JobStatus.parse(d.get("status")),
            progress=d.get("progress") or 0,
            current_stage=d.get("currentStage") or "",
            current_word_count=d.get("currentWordCount") or 0,
            target_word_count=d.get("targetWordCount") or DEFAULT_TARGET_WORDS,
            error_message=d.get("errorMessage"),
            assignment_id=d.get("assignmentId") or assignment.get("id"),
            created_at=parse_timestamp(d.get("createdAt")),
            started_at=parse_timestamp(d.get("startedAt")),
            completed_at=parse_timestamp(d.get("completedAt")),
        )


@dataclass
class ProgressUpdate:
    """Transient telemetry event from the push channel."""

    stage: str = ""
    progress: float = 0
    word_count: int = 0
    message: Optional[str] = None
    task_index: Optional[int] = None
    total_tasks: Optional[int] = None
    task_name: Optional[str] = None
    current_criteria: Optional[str] = None
    grade: Optional[str] = None
    words_generated: Optional[int] = None
    target_words: Optional[int] = None

    @classmethod
    def from_dict(cls, d: Dict[str, Any]) -> "ProgressUpdate":
        return cls(
            stage=d.get("stage") or "",
            progress=d.get("progress") or 0,
            word_count=d.get("wordCount") or 0,
            message=d.get("message"),
            task_index=d.get("taskIndex"),
            total_tasks=d.get("totalTasks"),
            task_name=d.get("taskName"),
            current_criteria=d.get("currentCriteria"),
            grade=d.get("grade"),
            words_generated=d.get("wordsGenerated"),
            target_words=d.get("targetWords"),
        )


@dataclass
class JobState:
    """The single projection of a generation job shown to the user."""

    assignment_id: str
    status: JobStatus = JobStatus.LOADING
    job_id: Optional[str] = None
    current_stage: str = ""
    progress: int = 0
    current_word_count: int = 0
    target_word_count: int = DEFAULT_TARGET_WORDS
    error_message: Optional[str] = None
    created_at: Optional[datetime] = None
    started_at: Optional[datetime] = None
    source: ProgressSource = ProgressSource.NONE
    live: Optional[ProgressUpdate] = None
    not_found: bool = False
    updated_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))

    @property
    def is_terminal(self) -> bool:
        return self.not_found or self.status.is_terminal

    @property
    def is_paused(self) -> bool:
        return self.status is JobStatus.AWAITING_APPROVAL

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary for JSON output."""
        d = asdict(self)
        d["status"] = self.status.value
        d["source"] = self.source.value
        d["created_at"] = _format_timestamp(self.created_at)
        d["started_at"] = _format_timestamp(self.started_at)
        d["updated_at"] = _format_timestamp(self.updated_at)
        return d
