"""App-level operations: status, stop, start and restart.

Each operation is a short sequential script of correlated calls on a connected
TruenasClient. Stop and start return a job id and then poll ``core.get_jobs``
at a fixed interval until the job reaches a terminal state or the timeout
elapses.
"""

import asyncio
import logging
import re
import time

from src.truenas.client import TruenasClient
from src.truenas.errors import (
    AppNotFoundError,
    ConfigurationError,
    MethodError,
    OperationFailedError,
    TruenasError,
)
from src.truenas.models import JobState, TruenasAppEntry, TruenasJobEntry

logger = logging.getLogger(__name__)

DEFAULT_JOB_TIMEOUT_SECONDS = 30.0
DEFAULT_POLL_INTERVAL_SECONDS = 2.0

# Server errors that mean the app is already in the requested state.
_ALREADY_STOPPED_RE = re.compile(r"already stopped|app is not running", re.IGNORECASE)
_ALREADY_RUNNING_RE = re.compile(r"already running|already started", re.IGNORECASE)


def _find_job(jobs: object, job_id: int) -> TruenasJobEntry | None:
    """Pick the entry with ``id == job_id`` out of a core.get_jobs result."""
    if not isinstance(jobs, list):
        return None
    for job in jobs:  # pyright: ignore[reportUnknownVariableType]
        if isinstance(job, dict) and job.get("id") == job_id:  # pyright: ignore[reportUnknownMemberType]
            return job  # type: ignore[return-value]  # pyright: ignore[reportUnknownVariableType]
    return None


def _format_progress(job: TruenasJobEntry) -> str | None:
    progress = job.get("progress")
    if not isinstance(progress, dict) or progress.get("percent") is None:
        return None
    desc = progress.get("description") or ""
    desc_str = f" - {desc}" if desc else ""
    return f"{progress.get('percent')}%{desc_str}"


class AppManager:
    """Status, stop, start and restart for TrueNAS SCALE apps."""

    def __init__(
        self,
        client: TruenasClient,
        job_timeout: float = DEFAULT_JOB_TIMEOUT_SECONDS,
        poll_interval: float = DEFAULT_POLL_INTERVAL_SECONDS,
    ) -> None:
        self.client = client
        self.job_timeout = job_timeout
        self.poll_interval = poll_interval

    async def get_app_status(self, app_name: str) -> str | None:
        """Return the app's state string, or None when it cannot be read.

        Not-found, permission and transport errors are logged, never raised:
        callers use None as the "unknown" sentinel for existence checks.
        """
        try:
            app: TruenasAppEntry | None = await self.client.call_method("app.get_instance", [app_name])
        except TruenasError as e:
            logger.warning("Failed to get status for app '%s': %s", app_name, e)
            return None
        if not isinstance(app, dict):
            logger.warning("Unexpected app.get_instance response for '%s': %r", app_name, app)
            return None
        state = app.get("state")
        return str(state) if state is not None else None

    async def wait_for_job(
        self,
        job_id: int,
        timeout: float | None = None,
        poll_interval: float | None = None,
    ) -> bool:
        """Poll a job until SUCCESS (True), FAILED/ABORTED (False) or timeout (False).

        A failed poll is logged and retried on the next tick; only the
        deadline ends the wait early.
        """
        timeout = self.job_timeout if timeout is None else timeout
        poll_interval = self.poll_interval if poll_interval is None else poll_interval
        if isinstance(job_id, bool) or not isinstance(job_id, int) or job_id <= 0:
            raise ConfigurationError(f"Job id must be a positive integer, got {job_id!r}")
        if timeout <= 0:
            raise ConfigurationError(f"Job timeout must be positive, got {timeout}")
        if poll_interval < 0:
            raise ConfigurationError(f"Poll interval cannot be negative, got {poll_interval}")
        logger.info("Waiting for job %d to complete (timeout %.0fs)", job_id, timeout)

        started = time.monotonic()
        polls = 0
        while time.monotonic() - started < timeout:
            polls += 1
            try:
                jobs = await self.client.call_method("core.get_jobs", [[["id", "=", job_id]]])
            except TruenasError as e:
                logger.warning("Error checking job %d status (poll %d): %s", job_id, polls, e)
            else:
                job = _find_job(jobs, job_id)
                state = job.get("state") if job is not None else None
                if job is None:
                    logger.debug("Job %d not visible yet (poll %d)", job_id, polls)
                elif state == JobState.SUCCESS:
                    logger.info("Job %d completed successfully", job_id)
                    return True
                elif state in (JobState.FAILED, JobState.ABORTED):
                    logger.error("Job %d %s: %s", job_id, str(state).lower(), job.get("error") or "no error detail")
                    return False
                elif state == JobState.RUNNING:
                    progress = _format_progress(job)
                    if progress:
                        logger.info("Job %d progress: %s", job_id, progress)
                else:
                    logger.debug("Job %d state: %s", job_id, state)

            await asyncio.sleep(poll_interval)

        logger.warning("Job %d timed out after %.0fs (%d polls)", job_id, timeout, polls)
        return False

    async def stop_app(self, app_name: str) -> int | None:
        """Stop an app and wait for the job. Returns the job id, or None if it was already stopped."""
        return await self._change_state(app_name, "stop", _ALREADY_STOPPED_RE)

    async def start_app(self, app_name: str) -> int | None:
        """Start an app and wait for the job. Returns the job id, or None if it was already running."""
        return await self._change_state(app_name, "start", _ALREADY_RUNNING_RE)

    async def _change_state(self, app_name: str, verb: str, already_re: re.Pattern[str]) -> int | None:
        status = await self.get_app_status(app_name)
        if status is None:
            raise AppNotFoundError(app_name)

        logger.info("Sending %s for app '%s' (current state %s)", verb, app_name, status)
        try:
            job_id = await self.client.call_method(f"app.{verb}", [app_name])
        except MethodError as e:
            if already_re.search(e.reason):
                logger.info("App '%s' needs no %s: %s", app_name, verb, e.reason)
                return None
            raise

        if isinstance(job_id, bool) or not isinstance(job_id, int) or job_id <= 0:
            raise OperationFailedError(f"app.{verb} for '{app_name}' returned no job id: {job_id!r}")
        logger.info("%s command accepted for app '%s' (job %d)", verb.capitalize(), app_name, job_id)

        if not await self.wait_for_job(job_id):
            raise OperationFailedError(f"{verb.capitalize()} operation for app '{app_name}' failed or timed out")
        return job_id

    async def restart_app(self, app_name: str) -> str | None:
        """Stop then start an app and return its final status.

        There is no rollback: when start fails after a successful stop the
        error propagates and the app stays stopped.
        """
        initial = await self.get_app_status(app_name)
        if initial is None:
            raise AppNotFoundError(app_name)
        logger.info("Restarting app '%s' (initial state %s)", app_name, initial)

        _ = await self.stop_app(app_name)
        logger.info("App '%s' state after stop: %s", app_name, await self.get_app_status(app_name))

        _ = await self.start_app(app_name)
        final = await self.get_app_status(app_name)
        logger.info("App '%s' final state: %s", app_name, final)
        return final
