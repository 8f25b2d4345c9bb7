"""Client-facing view of the automation pipeline: five steps over seven backend steps."""

from __future__ import annotations

from dataclasses import dataclass
from typing import List, Literal, Tuple

from payloads import AutomationStatus

StepState = Literal["completed", "current", "pending"]

DONE_STEP_STATUSES = frozenset({"completed", "skipped"})
MANUAL_ENTRY_SKIPPABLE = ("pms_parser", "admin_approval", "client_approval")


@dataclass(frozen=True)
class ClientStep:
    id: str
    label: str
    description: str
    backend_steps: Tuple[str, ...]


CLIENT_STEPS: Tuple[ClientStep, ...] = (
    ClientStep(
        "data_entry",
        "Enter your PMS Data",
        "Upload your PMS export file or enter data manually",
        ("file_upload",),
    ),
    ClientStep(
        "parsing",
        "Data Parsing",
        "Extracting and organizing your referral data",
        ("pms_parser",),
    ),
    ClientStep(
        "validation",
        "Validating your data",
        "Reviewing the parsed data for accuracy",
        ("admin_approval",),
    ),
    ClientStep(
        "confirmation",
        "Your confirmation",
        "Review and confirm your referral data before analysis",
        ("client_approval",),
    ),
    ClientStep(
        "agents",
        "Insights",
        "Analyzing your data to generate actionable insights",
        ("monthly_agents", "task_creation", "complete"),
    ),
)


def get_client_step(step_id: str) -> ClientStep:
    for step in CLIENT_STEPS:
        if step.id == step_id:
            return step
    raise KeyError(f"unknown client step '{step_id}'")


def _backend_status(status: AutomationStatus, backend_step: str) -> str | None:
    detail = status.steps.get(backend_step)
    return detail.status if detail is not None else None


def step_state(step: ClientStep, status: AutomationStatus | None) -> StepState:
    if status is None:
        return "current" if step.id == "data_entry" else "pending"

    if all(_backend_status(status, name) in DONE_STEP_STATUSES for name in step.backend_steps):
        return "completed"

    if status.status == "awaiting_approval":
        if status.current_step == "admin_approval" and step.id == "validation":
            return "current"
        if status.current_step == "client_approval" and step.id == "confirmation":
            return "current"

    if any(
        status.current_step == name or _backend_status(status, name) == "processing"
        for name in step.backend_steps
    ):
        return "current"
    return "pending"


def timeline(status: AutomationStatus | None, *, not_started: bool = False) -> List[Tuple[ClientStep, StepState]]:
    if not_started:
        return [(step, "pending") for step in CLIENT_STEPS]
    return [(step, step_state(step, status)) for step in CLIENT_STEPS]


def has_skipped_steps(status: AutomationStatus | None) -> bool:
    """Manual entries skip parsing and both approvals."""
    if status is None:
        return False
    return any(_backend_status(status, name) == "skipped" for name in MANUAL_ENTRY_SKIPPABLE)


def progress_fraction(status: AutomationStatus | None) -> float:
    """Length of the completed prefix over the number of segments between steps, capped at 1."""
    if status is None:
        return 0.0
    completed = 0
    for step in CLIENT_STEPS:
        if step_state(step, status) != "completed":
            break
        completed += 1
    return min(completed / (len(CLIENT_STEPS) - 1), 1.0)
