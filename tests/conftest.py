"""Shared fixtures for btec_monitor tests."""

from datetime import datetime, timedelta, timezone
from unittest.mock import AsyncMock

import pytest

from btec_monitor.client import GenerationClient
from btec_monitor.config import TrackerConfig
from btec_monitor.models import Assignment, GenerationJob, JobStatus

NOW = datetime(2026, 3, 1, 12, 0, 0, tzinfo=timezone.utc)


def make_assignment(status="GENERATING", job_id="J1", created_at=None, **extra):
    """Assignment as parsed from the API."""
    payload = {
        "id": "A1",
        "title": "Unit 4 Programming",
        "level": 3,
        "targetGrade": "M",
        "status": status,
        "createdAt": (created_at or NOW - timedelta(seconds=30)).isoformat(),
    }
    if job_id:
        payload["currentJobId"] = job_id
    payload.update(extra)
    return Assignment.from_dict(payload)


def make_job(status="PROCESSING", progress=0, job_id="J1", **extra):
    return GenerationJob(
        job_id=job_id,
        status=JobStatus.parse(status),
        progress=progress,
        current_stage=extra.pop("current_stage", "Generating content..."),
        **extra,
    )


@pytest.fixture
def config():
    """Tracker config with intervals short enough for tests."""
    return TrackerConfig(
        api_url="http://test/api",
        token="test-token",
        coarse_interval=0.01,
        fine_interval=0.01,
        reconnect_delay=0.01,
        completion_delay=0.01,
        cancel_delay=0.01,
    )


@pytest.fixture
def client():
    """Generation client with every call mocked."""
    mock = AsyncMock(spec=GenerationClient)
    mock.list_assignments.return_value = [make_assignment()]
    mock.get_status.return_value = make_job()
    return mock


@pytest.fixture
def clock():
    return lambda: NOW
