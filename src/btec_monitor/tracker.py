"""Job tracker: follows one assignment's generation job to completion."""

import asyncio
import inspect
import logging
from dataclasses import replace
from datetime import datetime, timezone
from typing import Any, Callable, Dict, Optional, Set

from .client import GenerationClient
from .config import TrackerConfig
from .errors import InvalidOperationError, NotFoundError, TrackerError
from .models import (
    Assignment,
    AssignmentStatus,
    GenerationJob,
    JobState,
    JobStatus,
    ProgressSource,
    ProgressUpdate,
)
from .reconcile import (
    CoarseEstimate,
    Confirmed,
    Optimistic,
    TrackedState,
    apply_progress_update,
    estimate_from_assignment,
    merge_state,
)
from .transports import PollTransport, Transport, select_transport
from .utils.event_log import EventLog

logger = logging.getLogger(__name__)

NavigateCallback = Callable[[str, Optional[str]], Any]

_JOB_FIELDS = frozenset({"status", "progress", "current_stage", "error_message"})


class JobTracker:
    """Reconciles assignment and job data into a single JobState.

    A coarse loop re-lists assignments and a fine channel (polling or
    websocket push) follows the job itself. Both only ever read; pause,
    resume, cancel and retry are forwarded to the service. Use as an async
    context manager so every loop and timer is released on exit.
    """

    def __init__(
        self,
        client: GenerationClient,
        assignment_id: str,
        config: Optional[TrackerConfig] = None,
        on_navigate: Optional[NavigateCallback] = None,
        clock: Optional[Callable[[], datetime]] = None,
    ):
        self.client = client
        self.assignment_id = assignment_id
        self.config = config or TrackerConfig()
        self.on_navigate = on_navigate
        self.clock = clock or (lambda: datetime.now(timezone.utc))

        self.log = EventLog(self.config.log_size)
        self.tracked: TrackedState = Confirmed(
            JobState(assignment_id=assignment_id, target_word_count=self.config.default_target_words)
        )
        self.assignment: Optional[Assignment] = None
        self.auto_refresh = self.config.auto_refresh
        self.running = False
        self.transport: Optional[Transport] = None

        self._job_id: Optional[str] = None
        self._coarse: Optional[CoarseEstimate] = None
        self._fine: Optional[GenerationJob] = None
        self._terminal_observed = False
        self._completion_handled = False
        self._failure_logged = False
        self._progress_band = 0

        self._inflight: Dict[str, asyncio.Task] = {}
        self._coarse_task: Optional[asyncio.Task] = None
        self._channel_task: Optional[asyncio.Task] = None
        self._navigation_task: Optional[asyncio.Task] = None
        self._background: Set[asyncio.Task] = set()
        self._channel_lock = asyncio.Lock()

    @property
    def state(self) -> JobState:
        return self.tracked.state

    @property
    def is_optimistic(self) -> bool:
        return isinstance(self.tracked, Optimistic)

    @property
    def job_id(self) -> Optional[str]:
        return self._job_id

    @property
    def is_terminal(self) -> bool:
        """True once the service has reported a terminal state."""
        return self._terminal_observed

    @property
    def navigation_pending(self) -> bool:
        return self._navigation_task is not None and not self._navigation_task.done()

    # Lifecycle

    async def __aenter__(self) -> "JobTracker":
        await self.start()
        return self

    async def __aexit__(self, exc_type, exc, tb):
        await self.shutdown()

    async def start(self):
        """Load the initial state and start the refresh loops."""
        if self.running:
            return
        self.running = True
        self.log.add("Monitoring assignment generation...")

        await self._refresh_assignments()
        if self.job_id and not self.is_terminal:
            await self._refresh_job()
        await self._spawn_loops()

    async def shutdown(self):
        """Cancel every loop, channel and timer owned by the tracker."""
        self.running = False
        tasks = [self._coarse_task, self._channel_task, self._navigation_task]
        tasks += list(self._background) + list(self._inflight.values())
        tasks = [t for t in tasks if t is not None and not t.done()]

        for task in tasks:
            task.cancel()
        for task in tasks:
            try:
                await task
            except asyncio.CancelledError:
                pass
            except Exception as e:
                logger.error(f"Task error during shutdown: {e}")

        if self.transport is not None:
            await self.transport.close()
        logger.debug(f"Tracker for assignment {self.assignment_id} stopped")

    async def _spawn_loops(self):
        if not self.running or self.is_terminal:
            return
        if self._coarse_task is None or self._coarse_task.done():
            self._coarse_task = asyncio.create_task(self._coarse_loop())
        await self._ensure_channel()

    async def _ensure_channel(self):
        async with self._channel_lock:
            if not self.running or self.is_terminal:
                return
            if self._channel_task is not None and not self._channel_task.done():
                upgrade = (
                    self.config.ws_url
                    and self.job_id
                    and isinstance(self.transport, PollTransport)
                )
                if not upgrade:
                    return
                await self._cancel_task(self._channel_task)

            transport = await select_transport(self, self.config)
            if not self.running or self.is_terminal:
                await transport.close()
                return
            logger.info(f"Following job {self.job_id or '(pending)'} via {transport.name}")
            self.transport = transport
            self._channel_task = asyncio.create_task(transport.run())

    async def _coarse_loop(self):
        while self.running and not self.is_terminal:
            await asyncio.sleep(self.config.coarse_interval)
            if not self.running or self.is_terminal:
                break
            await self._refresh_assignments()

    @staticmethod
    async def _cancel_task(task: asyncio.Task):
        task.cancel()
        try:
            await task
        except asyncio.CancelledError:
            pass

    def _spawn_background(self, coro):
        task = asyncio.create_task(coro)
        self._background.add(task)
        task.add_done_callback(self._background.discard)

    def _halt_polling(self):
        current = asyncio.current_task()
        for task in (self._coarse_task, self._channel_task):
            if task is not None and task is not current and not task.done():
                task.cancel()

    # Fetching

    async def _single_flight(self, key: str, factory) -> JobState:
        """Run at most one fetch per source; concurrent callers share it."""
        task = self._inflight.get(key)
        if task is None or task.done():
            task = asyncio.create_task(factory())
            self._inflight[key] = task
        return await asyncio.shield(task)

    async def _refresh_assignments(self) -> JobState:
        return await self._single_flight("assignments", self._fetch_assignments)

    async def _refresh_job(self) -> JobState:
        return await self._single_flight("job", self._fetch_job)

    async def _fetch_assignments(self) -> JobState:
        try:
            assignments = await self.client.list_assignments()
        except TrackerError as e:
            self._read_failed("refresh assignments", e)
            return self.state

        assignment = next((a for a in assignments if a.id == self.assignment_id), None)
        if assignment is None:
            self._mark_not_found(f"Assignment {self.assignment_id} not found")
            return self.state

        self._observe_assignment(assignment)
        return self.state

    async def _fetch_job(self) -> JobState:
        job_id = self.job_id
        if not job_id:
            return self.state
        try:
            job = await self.client.get_status(job_id)
        except NotFoundError:
            self._mark_not_found(f"Job {job_id} not found")
            return self.state
        except TrackerError as e:
            self._read_failed("fetch job status", e)
            return self.state

        self._fine = job
        self._apply_remote()
        return self.state

    def _read_failed(self, action: str, error: Exception):
        # Polling retries on the next tick; keep the last known state.
        logger.warning(f"Failed to {action}: {error}")
        self.log.add(f"Failed to {action}: {error}")

    async def fetch_status(self, job_id: Optional[str] = None) -> JobState:
        """Read the job's current status. Read errors never raise."""
        if job_id:
            self._adopt_job_id(job_id)
        return await self._refresh_job()

    async def refresh(self) -> JobState:
        """Fetch both sources now, outside the timers."""
        await self._refresh()
        self.log.add("Status refreshed")
        return self.state

    async def _refresh(self):
        had_job = bool(self.job_id)
        if had_job:
            await self._refresh_job()
        await self._refresh_assignments()
        if not had_job and self.job_id and not self.state.not_found:
            await self._refresh_job()

    def set_auto_refresh(self, enabled: bool):
        self.auto_refresh = enabled
        self.log.add(f"Auto-refresh {'enabled' if enabled else 'disabled'}")

    # State updates

    def _observe_assignment(self, assignment: Assignment):
        previous = self.assignment
        if previous is not None and previous.status is not assignment.status:
            if not previous.can_transition_to(assignment.status):
                logger.warning(
                    f"Unexpected assignment transition "
                    f"{previous.status.value} -> {assignment.status.value}"
                )
        self.assignment = assignment
        self._coarse = estimate_from_assignment(
            assignment, self.clock(), self.config.estimate_duration
        )
        if assignment.current_job_id:
            self._adopt_job_id(assignment.current_job_id)
        self._apply_remote()

    def _adopt_job_id(self, job_id: str):
        if job_id == self._job_id:
            return
        logger.info(f"Tracking job {job_id} for assignment {self.assignment_id}")
        self._job_id = job_id
        if self._fine is not None and self._fine.job_id != job_id:
            self._fine = None
        self.tracked = Confirmed(replace(self.state, job_id=job_id))
        if self._channel_task is not None and self.running:
            self._spawn_background(self._ensure_channel())

    def _apply_remote(self):
        previous = self.state
        merged = merge_state(previous, self._coarse, self._fine)
        if self._job_id and merged.job_id != self._job_id:
            merged = replace(merged, job_id=self._job_id)
        self.tracked = Confirmed(merged)
        self._after_update(previous, merged)

    def _pin_fine(self, **changes):
        """Keep the cached job status in line with newer push or control data."""
        if self._fine is not None:
            self._fine = replace(self._fine, **changes)

    def _after_update(self, previous: JobState, current: JobState):
        status = current.status
        changed = status is not previous.status

        if changed and not status.is_terminal and status is not JobStatus.LOADING:
            self.log.add(f"Status changed: {status.value}")

        band = current.progress // 10
        if status.is_active and band != self._progress_band:
            self._progress_band = band
            self.log.add(f"Progress: {current.progress}% - {current.current_stage or 'Processing'}")

        if status is JobStatus.COMPLETED and not self._completion_handled:
            self._completion_handled = True
            self.log.add("Generation complete")
            logger.info(f"Generation complete for assignment {self.assignment_id}")
            self._schedule_navigation("review", self.config.completion_delay)
        elif status is JobStatus.FAILED and not self._failure_logged:
            self._failure_logged = True
            if current.error_message:
                self.log.add(f"Generation failed: {current.error_message}")
            else:
                self.log.add("Generation failed")
            logger.warning(f"Generation failed for assignment {self.assignment_id}")
        elif status is JobStatus.CANCELLED and changed:
            self.log.add("Generation cancelled")

        if status.is_terminal:
            self._observe_terminal()

    def _observe_terminal(self):
        if not self._terminal_observed:
            logger.debug(f"Terminal state reached for assignment {self.assignment_id}")
        self._terminal_observed = True
        self._halt_polling()

    def _mark_not_found(self, message: str):
        logger.warning(message)
        self.log.add(message)
        self.tracked = Confirmed(replace(self.state, not_found=True))
        self._observe_terminal()

    def handle_push_message(self, data: Dict[str, Any]):
        """Apply one event from the push channel."""
        msg_type = data.get("type")
        payload = data.get("payload") or {}

        if msg_type == "job:progress":
            previous = self.state
            current = apply_progress_update(previous, ProgressUpdate.from_dict(payload))
            self.tracked = Confirmed(current)
            self._pin_fine(
                status=current.status,
                progress=current.progress,
                current_stage=current.current_stage,
            )
            self._after_update(previous, current)
        elif msg_type == "job:stageComplete":
            self.log.add(f"Stage complete: {payload.get('stage', 'unknown')}")
        elif msg_type == "job:complete":
            self._apply_pushed_status(JobStatus.COMPLETED)
        elif msg_type == "job:error":
            if payload.get("recoverable"):
                self.log.add(f"Recoverable error: {payload.get('error')}")
            else:
                self._apply_pushed_status(JobStatus.FAILED, error_message=payload.get("error"))
        elif msg_type == "job:approvalRequired":
            self._apply_pushed_status(JobStatus.AWAITING_APPROVAL)
        else:
            logger.debug(f"Received message type: {msg_type}")

    def _apply_pushed_status(self, status: JobStatus, error_message: Optional[str] = None):
        previous = self.state
        changes: Dict[str, Any] = {"status": status, "source": ProgressSource.REPORTED}
        if status is JobStatus.COMPLETED:
            changes["progress"] = 100
        if error_message is not None:
            changes["error_message"] = error_message
        current = replace(previous, **changes)
        self.tracked = Confirmed(current)
        self._pin_fine(**{k: v for k, v in changes.items() if k in _JOB_FIELDS})
        self._after_update(previous, current)

    # Navigation

    def _schedule_navigation(self, target: str, delay: float):
        if self.navigation_pending:
            return
        self._navigation_task = asyncio.create_task(self._navigate_later(target, delay))

    async def _navigate_later(self, target: str, delay: float):
        await asyncio.sleep(delay)
        logger.debug(f"Navigating to {target}")
        if self.on_navigate is None:
            return
        result = self.on_navigate(target, self.assignment_id)
        if inspect.isawaitable(result):
            await result

    # Control operations

    async def start_generation(self) -> str:
        """Ask the service to generate a DRAFT assignment."""
        assignment = self.assignment
        if assignment is None:
            assignment = await self.client.get_assignment(self.assignment_id)
            self.assignment = assignment
        if not assignment.can_transition_to(AssignmentStatus.GENERATING):
            raise InvalidOperationError(
                f"Assignment is {assignment.status.value}; only DRAFT assignments can be generated"
            )

        try:
            job_id = await self.client.start(self.assignment_id)
        except TrackerError as e:
            self.log.add(f"Failed to start: {e}")
            raise

        self.assignment = replace(
            assignment, status=AssignmentStatus.GENERATING, current_job_id=job_id
        )
        self._adopt_job_id(job_id)
        self.log.add(f"Generation started (job {job_id})")
        await self._refresh_job()
        return job_id

    async def pause(self, job_id: Optional[str] = None):
        if not self.state.status.is_active:
            raise InvalidOperationError("Only a queued or running job can be paused")
        await self._control("pause", job_id, JobStatus.AWAITING_APPROVAL, optimistic=True)
        self.log.add("Job paused")
        await self._refresh()

    async def resume(self, job_id: Optional[str] = None):
        if not self.state.is_paused:
            raise InvalidOperationError("Only a paused job can be resumed")
        await self._control("resume", job_id, JobStatus.QUEUED, optimistic=True)
        self.log.add("Job resumed")
        await self._refresh()

    async def cancel(self, job_id: Optional[str] = None):
        if self.state.is_terminal:
            raise InvalidOperationError("The job has already finished")
        await self._control("cancel", job_id, JobStatus.CANCELLED)
        self.log.add("Job cancelled")
        self._schedule_navigation("dashboard", self.config.cancel_delay)
        await self._refresh()

    async def retry(self, job_id: Optional[str] = None):
        if self.state.status is not JobStatus.FAILED:
            raise InvalidOperationError("Only a failed job can be retried")
        await self._control(
            "retry",
            job_id,
            JobStatus.QUEUED,
            error_message=None,
            progress=0,
            live=None,
            source=ProgressSource.NONE,
        )
        # The assignment record can still say FAILED; the queued job outranks it.
        self._fine = GenerationJob(
            job_id=job_id or self.job_id,
            status=JobStatus.QUEUED,
            current_stage=self.state.current_stage,
            target_word_count=self.state.target_word_count,
        )
        self._terminal_observed = False
        self._failure_logged = False
        self._progress_band = 0
        self.log.add("Job retry queued")
        await self._spawn_loops()
        await self._refresh()

    async def _control(
        self,
        action: str,
        job_id: Optional[str],
        target: JobStatus,
        optimistic: bool = False,
        **extra,
    ):
        job_id = job_id or self.job_id
        if not job_id:
            raise InvalidOperationError(f"No generation job to {action}")

        changes: Dict[str, Any] = {"status": target, **extra}

        token = None
        if optimistic:
            token = Optimistic(replace(self.state, **changes), rollback=self.state)
            self.tracked = token

        try:
            await getattr(self.client, action)(job_id)
        except TrackerError as e:
            if token is not None and self.tracked is token:
                self.tracked = Confirmed(token.rollback)
            logger.error(f"Failed to {action} job {job_id}: {e}")
            self.log.add(f"Failed to {action}: {e}")
            raise

        self.tracked = Confirmed(replace(self.state, **changes))
        # A terminal status has to be reported by the service before polling stops.
        if not target.is_terminal:
            self._pin_fine(**{k: v for k, v in changes.items() if k in _JOB_FIELDS})
        logger.info(f"Job {job_id}: {action} accepted")
