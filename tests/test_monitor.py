"""Tests for the monitor's display helpers."""

from unittest.mock import AsyncMock

import pytest

from btec_monitor.models import JobState, JobStatus, ProgressUpdate, TargetGrade
from btec_monitor.monitor import Monitor, current_message, generation_steps, status_display


def state(status=JobStatus.PROCESSING, progress=0, **kwargs):
    return JobState(assignment_id="A1", status=status, progress=progress, **kwargs)


class TestStatusDisplay:
    def test_labels(self):
        assert status_display(state(JobStatus.AWAITING_APPROVAL)) == ("Paused", "yellow")
        assert status_display(state(JobStatus.COMPLETED))[0] == "Completed"
        assert status_display(state(JobStatus.LOADING))[0] == "Loading..."

    def test_not_found(self):
        assert status_display(state(not_found=True)) == ("Assignment not found", "red")


class TestCurrentMessage:
    def test_prefers_task_name(self):
        live = ProgressUpdate(stage="writing", task_name="Writing P2")
        assert current_message(state(live=live, current_stage="ignored")) == "Writing P2"

    def test_falls_back_to_stage(self):
        assert current_message(state(live=ProgressUpdate(stage="outline"))) == "Stage: outline"
        assert current_message(state(current_stage="Generating content...")) == "Stage: Generating content..."
        assert current_message(state()) == "Processing..."


class TestGenerationSteps:
    def test_pass_hides_merit_and_distinction(self):
        titles = [t for t, _ in generation_steps(state(progress=5), TargetGrade.PASS)]
        assert titles == [
            "Planning Content Structure",
            "Generating Pass Content",
            "Building DOCX Document",
        ]

    def test_distinction_shows_all(self):
        titles = [t for t, _ in generation_steps(state(progress=5), TargetGrade.DISTINCTION)]
        assert "Generating Merit Content" in titles
        assert "Generating Distinction Content" in titles

    def test_merit_hides_distinction(self):
        titles = [t for t, _ in generation_steps(state(progress=5), TargetGrade.MERIT)]
        assert "Generating Merit Content" in titles
        assert "Generating Distinction Content" not in titles

    def test_step_states_follow_progress(self):
        steps = dict(generation_steps(state(progress=55), TargetGrade.DISTINCTION))
        assert steps["Planning Content Structure"] == "complete"
        assert steps["Generating Pass Content"] == "complete"
        assert steps["Generating Merit Content"] == "active"
        assert steps["Generating Distinction Content"] == "pending"
        assert steps["Building DOCX Document"] == "pending"

    def test_completed_finishes_docx(self):
        steps = dict(generation_steps(state(JobStatus.COMPLETED, 100), TargetGrade.MERIT))
        assert set(steps.values()) == {"complete"}


class TestMonitor:
    def test_navigation_stops_monitor(self, config):
        monitor = Monitor(config, "A1", client=AsyncMock())
        monitor.running = True

        monitor._on_navigate("review", "A1")
        assert monitor.destination == "review"
        assert not monitor.running

    def test_layout_renders(self, config):
        monitor = Monitor(config, "A1", client=AsyncMock())
        layout = monitor._create_layout()
        monitor._update_layout(layout)
        monitor.console.print(layout)

    @pytest.mark.asyncio
    async def test_start_returns_destination(self, config):
        client = AsyncMock()
        client.list_assignments.return_value = []
        monitor = Monitor(config, "A1", client=client)
        monitor.console.quiet = True

        destination = await monitor.start()
        assert destination == "dashboard"
        assert monitor.tracker.state.not_found
        client.close.assert_awaited_once()
