import asyncio
from typing import Callable, List

import pytest
from automation_poller import (
    AutomationTracker,
    CancelToken,
    PollingTask,
    is_on_non_polling_step,
    should_fast_poll,
)
from gateway import GatewayError
from payloads import AutomationStatus
from stubs import StubGateway, active_job


async def wait_until(predicate: Callable[[], bool], timeout: float = 2.0) -> None:
    loop = asyncio.get_running_loop()
    deadline = loop.time() + timeout
    while not predicate():
        if loop.time() > deadline:
            raise AssertionError("condition not reached before timeout")
        await asyncio.sleep(0.005)


def _status(status: str, step: str | None = None) -> AutomationStatus:
    return AutomationStatus(status=status, current_step=step)


def test_fast_poll_decision_table() -> None:
    assert should_fast_poll(True, None) is True
    assert should_fast_poll(False, None) is False
    assert should_fast_poll(False, _status("processing", "pms_parser")) is True
    assert should_fast_poll(False, _status("awaiting_approval", "admin_approval")) is True
    assert should_fast_poll(True, _status("awaiting_approval", "client_approval")) is False
    assert should_fast_poll(True, _status("completed", "complete")) is False
    assert is_on_non_polling_step(_status("awaiting_approval", "client_approval")) is True
    assert is_on_non_polling_step(_status("processing", "client_approval")) is False


@pytest.mark.anyio
async def test_polling_task_discards_results_after_stop() -> None:
    release = asyncio.Event()
    entered = asyncio.Event()
    applied: List[str] = []

    async def step(token: CancelToken) -> None:
        entered.set()
        await release.wait()
        if token.cancelled:
            return
        applied.append("result")

    task = PollingTask(step, 0.01, name="test")
    task.start()
    await entered.wait()

    task.request_stop()
    assert task.running is False
    release.set()
    await task.stop()

    assert applied == []
    assert task.iterations == 1


@pytest.mark.anyio
async def test_polling_task_keeps_running_after_step_error() -> None:
    calls = 0

    async def step(token: CancelToken) -> None:
        nonlocal calls
        calls += 1
        if calls == 1:
            raise RuntimeError("transient")

    task = PollingTask(step, 0.005, name="flaky")
    task.start()
    await wait_until(lambda: calls >= 3)
    await task.stop()

    assert calls >= 3


@pytest.mark.anyio
async def test_fast_poll_suspended_while_awaiting_client_approval() -> None:
    gateway = StubGateway()
    gateway.default_active_jobs = [active_job(5, "awaiting_approval", "client_approval")]
    tracker = AutomationTracker(gateway, "smile.com", fast_interval=0.005, background_interval=10)

    await tracker.start()
    await asyncio.sleep(0.05)

    assert tracker.referral_pending is True
    assert tracker.automation_status.current_step == "client_approval"
    assert tracker.fast_polling is False
    assert gateway.count("fetch_active_automation_jobs") == 1
    await tracker.stop()


@pytest.mark.anyio
async def test_sequential_poll_never_overlaps_slow_responses() -> None:
    class SlowGateway(StubGateway):
        def __init__(self) -> None:
            super().__init__()
            self.in_flight = 0
            self.max_in_flight = 0

        async def fetch_active_automation_jobs(self, domain: str):
            self.calls.append(("fetch_active_automation_jobs", (domain,)))
            self.in_flight += 1
            self.max_in_flight = max(self.max_in_flight, self.in_flight)
            await asyncio.sleep(0.03)
            self.in_flight -= 1
            return [active_job(8, "processing", "pms_parser")]

    gateway = SlowGateway()
    tracker = AutomationTracker(gateway, "smile.com", fast_interval=0.001, background_interval=10)

    await tracker.start()
    await wait_until(lambda: gateway.count("fetch_active_automation_jobs") >= 4)
    await tracker.stop()

    assert gateway.max_in_flight == 1


@pytest.mark.anyio
async def test_completion_clears_state_and_refetches_once() -> None:
    gateway = StubGateway()
    gateway.active_jobs = [
        [active_job(3, "processing", "pms_parser")],
        [active_job(3, "processing", "monthly_agents")],
        [active_job(3, "completed", "complete")],
    ]
    completed: List[bool] = []
    tracker = AutomationTracker(
        gateway,
        "smile.com",
        fast_interval=0.005,
        background_interval=10,
        on_completed=lambda: completed.append(True),
    )

    await tracker.start()
    await wait_until(lambda: bool(completed))
    calls_at_completion = gateway.count("fetch_active_automation_jobs")
    await asyncio.sleep(0.05)

    assert completed == [True]
    assert tracker.referral_pending is False
    assert tracker.automation_status is None
    assert tracker.fast_polling is False
    assert gateway.count("fetch_active_automation_jobs") == calls_at_completion
    await tracker.stop()


@pytest.mark.anyio
async def test_vanished_job_counts_as_completion() -> None:
    gateway = StubGateway()
    gateway.active_jobs = [[active_job(3, "processing", "pms_parser")], []]
    completed: List[bool] = []

    async def on_completed() -> None:
        completed.append(True)

    tracker = AutomationTracker(
        gateway, "smile.com", fast_interval=0.005, background_interval=10, on_completed=on_completed
    )

    await tracker.start()
    await wait_until(lambda: bool(completed))

    assert tracker.referral_pending is False
    assert tracker.automation_status is None
    await tracker.stop()


@pytest.mark.anyio
async def test_reaching_client_approval_notifies_once_and_stops_fast_poll() -> None:
    gateway = StubGateway()
    gateway.active_jobs = [[active_job(4, "processing", "admin_approval")]]
    gateway.default_active_jobs = [active_job(4, "awaiting_approval", "client_approval")]
    notified: List[bool] = []
    tracker = AutomationTracker(
        gateway,
        "smile.com",
        fast_interval=0.005,
        background_interval=10,
        on_client_approval=lambda: notified.append(True),
    )

    await tracker.start()
    await wait_until(lambda: bool(notified))
    await asyncio.sleep(0.05)

    assert notified == [True]
    assert tracker.fast_polling is False
    await tracker.stop()


@pytest.mark.anyio
async def test_background_poll_promotes_new_job_into_fast_path() -> None:
    gateway = StubGateway()
    tracker = AutomationTracker(gateway, "smile.com", fast_interval=0.005, background_interval=0.02)

    await tracker.start()
    assert tracker.fast_polling is False
    assert tracker.background_polling is True

    gateway.default_active_jobs = [active_job(9, "pending", "file_upload")]
    await wait_until(lambda: tracker.fast_polling)

    assert tracker.referral_pending is True
    assert tracker.job_id == 9
    await tracker.stop()
    assert tracker.background_polling is False


@pytest.mark.anyio
async def test_fetch_failure_clears_automation_status() -> None:
    gateway = StubGateway()
    gateway.default_active_jobs = [active_job(2, "processing", "pms_parser")]
    tracker = AutomationTracker(gateway, "smile.com", fast_interval=0.005, background_interval=10)

    await tracker.start()
    assert tracker.automation_status is not None
    gateway.active_jobs_error = GatewayError()
    await wait_until(lambda: tracker.automation_status is None)

    assert tracker.referral_pending is True
    await tracker.stop()


@pytest.mark.anyio
async def test_stop_prevents_further_requests() -> None:
    gateway = StubGateway()
    gateway.default_active_jobs = [active_job(2, "processing", "pms_parser")]
    tracker = AutomationTracker(gateway, "smile.com", fast_interval=0.005, background_interval=0.01)

    await tracker.start()
    await wait_until(lambda: gateway.count("fetch_active_automation_jobs") >= 3)
    await tracker.stop()
    calls = gateway.count("fetch_active_automation_jobs")
    await asyncio.sleep(0.05)

    assert gateway.count("fetch_active_automation_jobs") == calls
    assert tracker.fast_polling is False
