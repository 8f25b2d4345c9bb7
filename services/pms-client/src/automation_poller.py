"""
Two-speed polling of PMS automation status.

A fast loop (about once a second) runs while something is known to be in
flight. A slow background loop (about every ten seconds) runs for the lifetime
of the tracker and only looks for a newly started job to promote into the fast
path. Both loops are strictly sequential: the next request is issued only after
the previous one has resolved and the interval has elapsed.
"""

from __future__ import annotations

import asyncio
import inspect
import logging
from typing import Any, Awaitable, Callable, Optional, Set

from gateway import GatewayError, PmsGateway
from payloads import AutomationStatus

logger = logging.getLogger(__name__)

ACTIVE_STATUSES = frozenset({"pending", "processing", "awaiting_approval"})
NO_POLL_STEPS = frozenset({"client_approval"})
TERMINAL_STATUSES = frozenset({"completed"})

DEFAULT_FAST_INTERVAL_SECONDS = 1.0
DEFAULT_BACKGROUND_INTERVAL_SECONDS = 10.0

Callback = Callable[[], Any]


def is_awaiting_client_approval(status: AutomationStatus | None) -> bool:
    return (
        status is not None
        and status.status == "awaiting_approval"
        and status.current_step in NO_POLL_STEPS
    )


def is_on_non_polling_step(status: AutomationStatus | None) -> bool:
    if status is None:
        return False
    return is_awaiting_client_approval(status) or status.status in TERMINAL_STATUSES


def should_fast_poll(referral_pending: bool, status: AutomationStatus | None) -> bool:
    if is_on_non_polling_step(status):
        return False
    return referral_pending or (status is not None and status.status in ACTIVE_STATUSES)


class CancelToken:
    """Flag checked before applying any result that arrives from an awaited call."""

    __slots__ = ("_cancelled",)

    def __init__(self) -> None:
        self._cancelled = False

    @property
    def cancelled(self) -> bool:
        return self._cancelled

    def cancel(self) -> None:
        self._cancelled = True


class PollingTask:
    """
    Cancellable sequential polling loop.

    Each iteration awaits `step(token)` to completion and then waits `interval`
    seconds (or until stopped). Requests are never cancelled mid-flight; a
    stopped loop lets the current step finish and the step is expected to
    discard its result when `token.cancelled` is set.
    """

    def __init__(
        self,
        step: Callable[[CancelToken], Awaitable[None]],
        interval: float,
        *,
        name: str,
        initial_delay: float = 0.0,
    ) -> None:
        if interval <= 0:
            raise ValueError("interval must be positive")
        self._step = step
        self._interval = interval
        self._name = name
        self._initial_delay = max(0.0, initial_delay)
        self._token: CancelToken | None = None
        self._stop_event: asyncio.Event | None = None
        self._tasks: Set[asyncio.Task[None]] = set()
        self.iterations = 0

    @property
    def name(self) -> str:
        return self._name

    @property
    def running(self) -> bool:
        return self._token is not None and not self._token.cancelled

    def start(self) -> None:
        if self.running:
            return
        token = CancelToken()
        stop_event = asyncio.Event()
        self._token, self._stop_event = token, stop_event
        task = asyncio.create_task(self._run(token, stop_event), name=self._name)
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)
        logger.debug({"event": "polling_started", "task": self._name})

    def request_stop(self) -> None:
        if self._token is None:
            return
        self._token.cancel()
        if self._stop_event is not None:
            self._stop_event.set()
        self._token, self._stop_event = None, None
        logger.debug({"event": "polling_stop_requested", "task": self._name})

    async def stop(self) -> None:
        """Request a stop and wait for every loop started by this handle to exit."""
        self.request_stop()
        current = asyncio.current_task()
        pending = [task for task in self._tasks if task is not current]
        if pending:
            await asyncio.gather(*pending, return_exceptions=True)

    async def _run(self, token: CancelToken, stop_event: asyncio.Event) -> None:
        if self._initial_delay and await _wait_or_stop(stop_event, self._initial_delay):
            return
        while not token.cancelled:
            try:
                await self._step(token)
            except asyncio.CancelledError:
                raise
            except Exception as exc:
                logger.error({"event": "polling_step_failed", "task": self._name, "error": str(exc)})
            self.iterations += 1
            if token.cancelled or await _wait_or_stop(stop_event, self._interval):
                break
        logger.debug({"event": "polling_stopped", "task": self._name, "iterations": self.iterations})


async def _wait_or_stop(stop_event: asyncio.Event, timeout: float) -> bool:
    try:
        await asyncio.wait_for(stop_event.wait(), timeout)
    except asyncio.TimeoutError:
        return False
    return True


class AutomationTracker:
    """
    Owns the fast and background polling loops for one domain.

    `referral_pending` and `automation_status` are the only inputs to the fast
    loop's on/off decision; every mutation goes through `reconcile()`.
    """

    def __init__(
        self,
        gateway: PmsGateway,
        domain: str,
        *,
        fast_interval: float = DEFAULT_FAST_INTERVAL_SECONDS,
        background_interval: float = DEFAULT_BACKGROUND_INTERVAL_SECONDS,
        on_completed: Optional[Callback] = None,
        on_client_approval: Optional[Callback] = None,
    ) -> None:
        self._gateway = gateway
        self.domain = domain
        self._on_completed = on_completed
        self._on_client_approval = on_client_approval
        self.referral_pending = False
        self.automation_status: AutomationStatus | None = None
        self.job_id: int | None = None
        self._closed = True
        self._lifecycle = CancelToken()
        self._fast = PollingTask(self.refresh_status, fast_interval, name=f"automation-fast:{domain}")
        self._background = PollingTask(
            self.detect_new_job,
            background_interval,
            name=f"automation-background:{domain}",
            initial_delay=background_interval,
        )

    @property
    def fast_polling(self) -> bool:
        return self._fast.running

    @property
    def background_polling(self) -> bool:
        return self._background.running

    async def start(self) -> None:
        self._closed = False
        self._lifecycle = CancelToken()
        await self.check_on_start(self._lifecycle)
        if self._closed:
            return
        self._background.start()
        self.reconcile()

    async def stop(self) -> None:
        self._closed = True
        self._lifecycle.cancel()
        await self._fast.stop()
        await self._background.stop()

    def set_referral_pending(self, pending: bool) -> None:
        self.referral_pending = pending
        self.reconcile()

    def set_automation_status(self, status: AutomationStatus | None, job_id: int | None = None) -> None:
        self.automation_status = status
        if job_id is not None:
            self.job_id = job_id
        self.reconcile()

    def reconcile(self) -> None:
        if not self._closed and should_fast_poll(self.referral_pending, self.automation_status):
            if not self._fast.running:
                logger.info(
                    {
                        "event": "fast_polling_enabled",
                        "domain": self.domain,
                        "referral_pending": self.referral_pending,
                        "status": getattr(self.automation_status, "status", None),
                        "current_step": getattr(self.automation_status, "current_step", None),
                    }
                )
            self._fast.start()
        elif self._fast.running:
            logger.info(
                {
                    "event": "fast_polling_disabled",
                    "domain": self.domain,
                    "status": getattr(self.automation_status, "status", None),
                    "current_step": getattr(self.automation_status, "current_step", None),
                }
            )
            self._fast.request_stop()

    async def check_on_start(self, token: CancelToken | None = None) -> None:
        """Adopt the newest active job, so a restart mid-automation resumes tracking."""
        token = token or self._lifecycle
        try:
            jobs = await self._gateway.fetch_active_automation_jobs(self.domain)
        except GatewayError as exc:
            logger.warning({"event": "automation_check_failed", "domain": self.domain, "error": exc.message})
            return
        if token.cancelled or not jobs or jobs[0].automation_status is None:
            return

        job = jobs[0]
        self.job_id = job.job_id
        self.automation_status = job.automation_status
        if job.automation_status.status in ACTIVE_STATUSES:
            self.referral_pending = True
        logger.info(
            {
                "event": "automation_adopted",
                "domain": self.domain,
                "job_id": job.job_id,
                "status": job.automation_status.status,
                "current_step": job.automation_status.current_step,
            }
        )
        self.reconcile()

    async def refresh_status(self, token: CancelToken) -> None:
        try:
            jobs = await self._gateway.fetch_active_automation_jobs(self.domain)
        except GatewayError as exc:
            if token.cancelled:
                return
            logger.error({"event": "automation_status_failed", "domain": self.domain, "error": exc.message})
            self.automation_status = None
            self.reconcile()
            return
        if token.cancelled:
            return

        job = jobs[0] if jobs else None
        if job is None or job.automation_status is None:
            was_tracking = self.automation_status is not None or self.referral_pending
            self._clear_tracking()
            if was_tracking:
                logger.info({"event": "automation_finished", "domain": self.domain, "reason": "no_active_job"})
                await self._notify(self._on_completed)
            return

        previous = self.automation_status
        status = job.automation_status
        self.job_id = job.job_id
        self.automation_status = status

        if status.status in TERMINAL_STATUSES:
            self._clear_tracking()
            logger.info({"event": "automation_finished", "domain": self.domain, "job_id": job.job_id})
            await self._notify(self._on_completed)
            return

        self.reconcile()
        if is_awaiting_client_approval(status) and not is_awaiting_client_approval(previous):
            logger.info({"event": "automation_awaiting_client", "domain": self.domain, "job_id": job.job_id})
            await self._notify(self._on_client_approval)

    async def detect_new_job(self, token: CancelToken) -> None:
        try:
            jobs = await self._gateway.fetch_active_automation_jobs(self.domain)
        except GatewayError as exc:
            logger.warning({"event": "automation_background_failed", "domain": self.domain, "error": exc.message})
            return
        if token.cancelled or not jobs or jobs[0].automation_status is None:
            return

        job = jobs[0]
        if job.automation_status.status not in ACTIVE_STATUSES:
            return
        if not self.referral_pending:
            logger.info(
                {
                    "event": "automation_detected",
                    "domain": self.domain,
                    "job_id": job.job_id,
                    "status": job.automation_status.status,
                }
            )
        self.job_id = job.job_id
        self.automation_status = job.automation_status
        self.referral_pending = True
        self.reconcile()

    def _clear_tracking(self) -> None:
        self.referral_pending = False
        self.automation_status = None
        self.reconcile()

    async def _notify(self, callback: Optional[Callback]) -> None:
        if callback is None or self._closed:
            return
        result = callback()
        if inspect.isawaitable(result):
            await result
