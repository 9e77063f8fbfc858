"""btec-monitor - Follow BTEC assignment generation jobs."""

__version__ = "0.1.0"

from .client import GenerationClient
from .config import TrackerConfig
from .errors import (
    InvalidOperationError,
    NetworkError,
    NotFoundError,
    RemoteError,
    TrackerError,
    TransportUnavailable,
)
from .models import Assignment, GenerationJob, JobState, JobStatus, ProgressUpdate
from .tracker import JobTracker
