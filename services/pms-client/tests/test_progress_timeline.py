import pytest
from payloads import AutomationStatus, StepDetail
from progress_timeline import (
    CLIENT_STEPS,
    get_client_step,
    has_skipped_steps,
    progress_fraction,
    step_state,
    timeline,
)


def _status(status: str, current_step: str, **steps: str) -> AutomationStatus:
    return AutomationStatus(
        status=status,
        current_step=current_step,
        steps={name: StepDetail(status=value) for name, value in steps.items()},
    )


def test_no_status_marks_data_entry_current() -> None:
    states = [state for _, state in timeline(None)]

    assert states == ["current", "pending", "pending", "pending", "pending"]
    assert progress_fraction(None) == 0.0


def test_not_started_marks_everything_pending() -> None:
    status = _status("processing", "pms_parser", file_upload="completed")

    assert {state for _, state in timeline(status, not_started=True)} == {"pending"}


def test_parsing_in_progress() -> None:
    status = _status("processing", "pms_parser", file_upload="completed", pms_parser="processing")

    states = dict((step.id, state) for step, state in timeline(status))

    assert states["data_entry"] == "completed"
    assert states["parsing"] == "current"
    assert states["validation"] == "pending"
    assert progress_fraction(status) == pytest.approx(0.25)


def test_awaiting_client_approval_highlights_confirmation() -> None:
    status = _status(
        "awaiting_approval",
        "client_approval",
        file_upload="completed",
        pms_parser="completed",
        admin_approval="completed",
        client_approval="pending",
    )

    assert step_state(get_client_step("confirmation"), status) == "current"
    assert step_state(get_client_step("agents"), status) == "pending"
    assert progress_fraction(status) == pytest.approx(0.75)


def test_agents_step_needs_every_backend_step_done() -> None:
    agents = get_client_step("agents")
    partial = _status("processing", "task_creation", monthly_agents="completed", task_creation="processing")
    done = _status(
        "completed",
        "complete",
        file_upload="completed",
        pms_parser="completed",
        admin_approval="completed",
        client_approval="completed",
        monthly_agents="completed",
        task_creation="completed",
        complete="completed",
    )

    assert step_state(agents, partial) == "current"
    assert step_state(agents, done) == "completed"
    assert progress_fraction(done) == 1.0


def test_manual_entry_reports_skipped_steps() -> None:
    status = _status(
        "processing",
        "monthly_agents",
        file_upload="completed",
        pms_parser="skipped",
        admin_approval="skipped",
        client_approval="skipped",
        monthly_agents="processing",
    )

    assert has_skipped_steps(status) is True
    assert [state for _, state in timeline(status)][:4] == ["completed"] * 4
    assert has_skipped_steps(_status("processing", "pms_parser")) is False


def test_unknown_step_id_raises() -> None:
    with pytest.raises(KeyError):
        get_client_step("billing")
    assert len(CLIENT_STEPS) == 5
