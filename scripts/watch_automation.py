#!/usr/bin/env python3
"""
Follow a domain's PMS automation from the command line.

Adopts the newest active job, prints the client-facing timeline whenever it
changes, and exits once the job completes or reaches the client approval step.
"""

import argparse
import asyncio
import logging
import sys
from pathlib import Path

REPO_ROOT = Path(__file__).resolve().parents[1]
sys.path.insert(0, str(REPO_ROOT / "services"))
sys.path.insert(0, str(REPO_ROOT / "services" / "pms-client" / "src"))

from automation_poller import AutomationTracker, is_awaiting_client_approval  # noqa: E402
from gateway import build_gateway  # noqa: E402
from payloads import AutomationStatus  # noqa: E402
from progress_timeline import has_skipped_steps, progress_fraction, timeline  # noqa: E402
from shared.client_settings import ClientSettingsError, load_client_settings  # noqa: E402
from shared.observability import (  # noqa: E402
    bind_request_context,
    get_tracer,
    new_request_id,
    reset_request_context,
    setup_telemetry,
)

STATE_MARKERS = {"completed": "✓", "current": "➜", "pending": "○"}


def render(status: AutomationStatus | None) -> str:
    lines = [f"Progress: {progress_fraction(status):.0%}"]
    for step, state in timeline(status):
        lines.append(f"  {STATE_MARKERS[state]} {step.label}")
    if has_skipped_steps(status):
        lines.append("  (manual entry: parsing and approvals skipped)")
    return "\n".join(lines)


async def watch(domain: str, timeout: float) -> int:
    settings = load_client_settings()
    gateway = build_gateway(settings)
    finished = asyncio.Event()

    tracker = AutomationTracker(
        gateway,
        domain,
        fast_interval=settings.fast_poll_seconds,
        background_interval=settings.background_poll_seconds,
        on_completed=finished.set,
        on_client_approval=finished.set,
    )
    await tracker.start()
    if tracker.automation_status is None and not tracker.referral_pending:
        print(f"No active automation for {domain}.")
        await tracker.stop()
        return 0

    last_rendered = None
    loop = asyncio.get_running_loop()
    deadline = loop.time() + timeout
    try:
        while not finished.is_set() and loop.time() < deadline:
            rendered = render(tracker.automation_status)
            if rendered != last_rendered:
                print(rendered)
                print()
                last_rendered = rendered
            if is_awaiting_client_approval(tracker.automation_status):
                break
            try:
                await asyncio.wait_for(finished.wait(), timeout=settings.fast_poll_seconds)
            except asyncio.TimeoutError:
                continue
    finally:
        await tracker.stop()

    if finished.is_set() or is_awaiting_client_approval(tracker.automation_status):
        print("Waiting on the practice to confirm." if tracker.automation_status else "Automation finished.")
        return 0
    print(f"Gave up after {timeout:.0f}s.")
    return 1


def main() -> int:
    parser = argparse.ArgumentParser(description="Watch PMS automation progress for one domain")
    parser.add_argument("domain", help="Practice domain, e.g. smile.com")
    parser.add_argument("--timeout", type=float, default=900.0, help="Give up after this many seconds")
    parser.add_argument("--verbose", action="store_true", help="Log every gateway call")
    args = parser.parse_args()

    setup_telemetry("pms-automation-watch", level=logging.DEBUG if args.verbose else logging.WARNING)
    # One correlation id for every gateway call made by this run.
    token = bind_request_context(new_request_id())
    try:
        with get_tracer(__name__).start_as_current_span("watch_automation"):
            return asyncio.run(watch(args.domain, args.timeout))
    except ClientSettingsError as exc:
        print(f"Configuration error: {exc}")
        return 2
    finally:
        reset_request_context(token)


if __name__ == "__main__":
    sys.exit(main())
