"""TUI monitor for a generation job."""

import asyncio
import logging
from datetime import datetime
from typing import List, Optional, Tuple

from rich.console import Console, Group
from rich.layout import Layout
from rich.live import Live
from rich.panel import Panel
from rich.progress_bar import ProgressBar
from rich.table import Table
from rich.text import Text

from .client import GenerationClient
from .config import TrackerConfig
from .models import JobState, JobStatus, TargetGrade
from .tracker import JobTracker

logger = logging.getLogger(__name__)

STATUS_DISPLAY = {
    JobStatus.LOADING: ("Loading...", "bright_black"),
    JobStatus.QUEUED: ("Queued", "dark_orange"),
    JobStatus.PROCESSING: ("Generating...", "blue"),
    JobStatus.AWAITING_APPROVAL: ("Paused", "yellow"),
    JobStatus.COMPLETED: ("Completed", "green"),
    JobStatus.FAILED: ("Failed", "red"),
    JobStatus.CANCELLED: ("Cancelled", "bright_black"),
}


def status_display(state: JobState) -> Tuple[str, str]:
    """Label and style for the header."""
    if state.not_found:
        return "Assignment not found", "red"
    return STATUS_DISPLAY[state.status]


def current_message(state: JobState) -> str:
    live = state.live
    if live and live.task_name:
        return live.task_name
    if live and live.stage:
        return f"Stage: {live.stage}"
    if state.current_stage:
        return f"Stage: {state.current_stage}"
    return "Processing..."


def generation_steps(state: JobState, grade: TargetGrade) -> List[Tuple[str, str]]:
    """(title, step state) pairs; step state is complete, active or pending."""
    p = state.progress
    completed = state.status is JobStatus.COMPLETED

    def step(done: bool, active: bool) -> str:
        if done:
            return "complete"
        return "active" if active else "pending"

    steps = [
        ("Planning Content Structure", step(p > 10, p <= 10 and not state.is_terminal)),
        ("Generating Pass Content", step(p > 40, 10 < p <= 40)),
    ]
    if grade is not TargetGrade.PASS:
        steps.append(("Generating Merit Content", step(p > 70, 40 < p <= 70)))
    if grade is TargetGrade.DISTINCTION:
        steps.append(("Generating Distinction Content", step(p > 85, 70 < p <= 85)))
    steps.append(("Building DOCX Document", step(completed, p > 85 and not completed)))
    return steps


class Monitor:
    """Real-time view of one assignment's generation."""

    def __init__(self, config: TrackerConfig, assignment_id: str, client: Optional[GenerationClient] = None):
        self.config = config
        self.client = client or GenerationClient(config)
        self.tracker = JobTracker(self.client, assignment_id, config, on_navigate=self._on_navigate)
        self.running = False
        self.destination: Optional[str] = None

        # Rich console
        self.console = Console()

    def _on_navigate(self, target: str, assignment_id: Optional[str]):
        self.destination = target
        self.running = False

    async def start(self) -> Optional[str]:
        """Run until the tracker hands off; returns the destination."""
        self.running = True
        try:
            async with self.tracker:
                await self._display_loop()
        finally:
            await self.client.close()
        return self.destination

    async def _display_loop(self):
        """Main display update loop."""
        layout = self._create_layout()

        with Live(layout, console=self.console, refresh_per_second=1):
            while self.running:
                self._update_layout(layout)
                if self.tracker.state.not_found:
                    self.destination = "dashboard"
                    break
                await asyncio.sleep(1)
            self._update_layout(layout)

    def _create_layout(self) -> Layout:
        """Create the display layout."""
        layout = Layout()

        layout.split_column(
            Layout(name="header", size=3),
            Layout(name="body"),
            Layout(name="footer", size=3),
        )

        layout["body"].split_row(
            Layout(name="job", ratio=1),
            Layout(name="log", ratio=1),
        )

        return layout

    def _update_layout(self, layout: Layout):
        """Update layout with current data."""
        state = self.tracker.state
        assignment = self.tracker.assignment
        label, style = status_display(state)
        title = assignment.title if assignment else self.tracker.assignment_id

        layout["header"].update(
            Panel(
                Text(f"{title} - {label}", style=f"bold {style}", justify="center"),
                border_style="bright_blue",
            )
        )
        layout["job"].update(Panel(self._job_panel(state), title="Generation", border_style=style))

        log_text = Text()
        for entry in self.tracker.log.recent(20):
            log_text.append(f"{entry.format()}\n", style="dim")
        if not len(self.tracker.log):
            log_text.append("Waiting for updates...", style="dim")
        layout["log"].update(Panel(log_text, title="Generation Log", border_style="blue"))

        source = self.tracker.transport.name if self.tracker.transport else "-"
        auto = "on" if self.tracker.auto_refresh else "off"
        layout["footer"].update(
            Panel(
                Text(
                    f"Updated: {datetime.now().strftime('%H:%M:%S')} | channel: {source} | "
                    f"auto-refresh: {auto} | Press Ctrl+C to exit",
                    justify="center",
                    style="dim",
                ),
                border_style="bright_black",
            )
        )

    def _job_panel(self, state: JobState) -> Group:
        if state.not_found:
            return Group(Text("Assignment not found, return to dashboard.", style="red"))

        table = Table(show_header=False, expand=True, box=None)
        table.add_column("Field")
        table.add_column("Value", style="cyan")
        table.add_row("Job ID", state.job_id or "-")
        table.add_row("Progress", f"{state.progress}%")
        words = state.current_word_count
        if state.live:
            words = state.live.words_generated or state.live.word_count or words
        table.add_row("Words", f"{words:,} / {state.target_word_count:,}")

        live = state.live
        if live and live.task_index is not None and not state.is_terminal:
            table.add_row("Micro-task", f"{live.task_index} / {live.total_tasks or '?'}")
        if live and live.current_criteria and not state.is_terminal:
            table.add_row("Criterion", live.current_criteria)
        if live and live.grade:
            table.add_row("Grade", live.grade)

        parts = [table]
        if state.status not in (JobStatus.FAILED, JobStatus.CANCELLED):
            parts.append(ProgressBar(total=100, completed=state.progress))
        parts.append(Text(current_message(state), style="bold"))

        if state.status is JobStatus.COMPLETED:
            parts.append(Text("Your assignment has been generated successfully!", style="green"))
            assignment = self.tracker.assignment
            if assignment and assignment.total_tokens_used:
                parts.append(Text(f"{assignment.total_tokens_used:,} tokens used"))
        elif state.status is JobStatus.FAILED:
            parts.append(Text(state.error_message or "An error occurred during generation", style="red"))
            parts.append(Text(f"Retry with: btec-monitor retry {state.job_id}", style="dim"))
        elif not state.is_terminal:
            grade = self.tracker.assignment.target_grade if self.tracker.assignment else TargetGrade.PASS
            marks = {"complete": "[green]✓[/green]", "active": "[yellow]…[/yellow]", "pending": " "}
            for title, step_state in generation_steps(state, grade):
                parts.append(Text.from_markup(f"{marks[step_state]} {title}"))

        return Group(*parts)
