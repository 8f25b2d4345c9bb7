"""
Editor state machines for PMS month/source data.

`MonthGridEditor` holds the month tabs, the rows of each month and the
two-phase delete confirmation. The three variants differ only in how they are
opened and in their terminal action:

* `ManualEntrySession` starts from one empty month and submits to manual ingestion.
* `LatestJobReviewSession` starts from a job payload, saves it back and confirms approval.
* `ReadOnlyViewer` starts from a job payload and refuses every mutation.
"""

from __future__ import annotations

import inspect
import json
import logging
from dataclasses import dataclass
from datetime import date
from enum import Enum
from typing import Any, Callable, Dict, List, Literal, Optional

from entry_validation import (
    EntryIssue,
    validate_manual_months,
    validate_month_value,
    validate_review_months,
)
from event_bus import EventBus, PmsJobUploaded
from gateway import GatewayError, PmsGateway
from models import MonthBucket, MonthSummary, SourceRow
from payloads import MonthEntryForm, PayloadParseError, dump_month_entries, parse_job_payload
from pms_transform import (
    add_months,
    calculate_totals,
    coerce_number,
    number_to_text,
    previous_month,
    sanitize_number,
    transform_backend_to_ui,
    transform_ui_to_backend,
)
from shared.observability import describe_month_payload

logger = logging.getLogger(__name__)

NumericField = Literal["referrals", "production"]

AT_LEAST_ONE_MONTH = "At least one month is required"
MONTH_ALREADY_EXISTS = "This month already exists"
JOB_ID_MISSING = "Job ID missing"
SAVE_FAILED = "Something went wrong while saving"
SUBMISSION_FAILED = "Submission failed"


class EditorReadOnlyError(RuntimeError):
    """Raised when a mutation is attempted on a read-only editor."""


class ConfirmationState(str, Enum):
    IDLE = "idle"
    CONFIRMING_ROW = "confirming_row"
    CONFIRMING_MONTH = "confirming_month"


@dataclass
class DeleteConfirmation:
    """At most one row or one month can be armed for deletion at a time."""

    state: ConfirmationState = ConfirmationState.IDLE
    target_id: int | None = None

    def arm_row(self, row_id: int) -> None:
        self.state, self.target_id = ConfirmationState.CONFIRMING_ROW, row_id

    def arm_month(self, month_id: int) -> None:
        self.state, self.target_id = ConfirmationState.CONFIRMING_MONTH, month_id

    def reset(self) -> None:
        self.state, self.target_id = ConfirmationState.IDLE, None

    def is_row_armed(self, row_id: int) -> bool:
        return self.state is ConfirmationState.CONFIRMING_ROW and self.target_id == row_id

    def is_month_armed(self, month_id: int) -> bool:
        return self.state is ConfirmationState.CONFIRMING_MONTH and self.target_id == month_id


async def _maybe_await(callback: Optional[Callable[[], Any]]) -> None:
    if callback is None:
        return
    result = callback()
    if inspect.isawaitable(result):
        await result


class MonthGridEditor:
    referral_step = 1
    production_step = 1

    def __init__(self, *, read_only: bool = False) -> None:
        self.read_only = read_only
        self.months: List[MonthBucket] = []
        self.active_month_id: int | None = None
        self.error: str | None = None
        self.error_month_id: int | None = None
        self.confirmation = DeleteConfirmation()
        self.is_open = False
        self._initialized = False

    # -- lifecycle --------------------------------------------------------

    def _reset(self, months: List[MonthBucket]) -> None:
        self.months = months
        self.active_month_id = months[0].id if months else None
        self.error = None
        self.error_month_id = None
        self.confirmation.reset()

    def _begin_open(self) -> bool:
        """Mark the editor open; returns False when it was already initialised for this open."""
        self.is_open = True
        if self._initialized:
            return False
        self._initialized = True
        return True

    def close(self) -> None:
        self.is_open = False
        self._initialized = False
        self._reset([])

    # -- derived state ----------------------------------------------------

    @property
    def sorted_months(self) -> List[MonthBucket]:
        return sorted(self.months, key=lambda bucket: bucket.month)

    @property
    def active_month(self) -> MonthBucket | None:
        for bucket in self.months:
            if bucket.id == self.active_month_id:
                return bucket
        ordered = self.sorted_months
        return ordered[0] if ordered else None

    @property
    def rows(self) -> List[SourceRow]:
        active = self.active_month
        return active.rows if active else []

    @property
    def totals(self) -> MonthSummary:
        return calculate_totals(self.rows)

    def summaries(self) -> Dict[str, MonthSummary]:
        return {bucket.month: calculate_totals(bucket.rows) for bucket in self.sorted_months}

    def to_backend(self) -> List[MonthEntryForm]:
        return transform_ui_to_backend(self.months)

    # -- month management -------------------------------------------------

    def _ensure_writable(self) -> None:
        if self.read_only:
            raise EditorReadOnlyError(f"{type(self).__name__} is read-only")

    def _find_month(self, month_id: int) -> MonthBucket:
        for bucket in self.months:
            if bucket.id == month_id:
                return bucket
        raise KeyError(f"unknown month id {month_id}")

    def _find_row(self, row_id: int) -> SourceRow:
        for bucket in self.months:
            for row in bucket.rows:
                if row.id == row_id:
                    return row
        raise KeyError(f"unknown row id {row_id}")

    def select_month(self, month_id: int) -> None:
        self.active_month_id = self._find_month(month_id).id

    def add_month(self) -> MonthBucket:
        self._ensure_writable()
        ordered = self.sorted_months
        latest = ordered[-1].month if ordered else previous_month()
        existing = {bucket.month for bucket in self.months}
        candidate = add_months(latest, 1)
        while candidate in existing:
            candidate = add_months(candidate, 1)
        bucket = MonthBucket(month=candidate)
        self.months.append(bucket)
        self.active_month_id = bucket.id
        return bucket

    def change_month(self, ym: str) -> bool:
        """Commit a month picker value for the active month."""
        self._ensure_writable()
        active = self.active_month
        if active is None:
            return False
        issue = validate_month_value(ym)
        if issue is not None:
            self.error = issue.message
            return False
        if any(bucket.month == ym and bucket.id != active.id for bucket in self.months):
            self.error = MONTH_ALREADY_EXISTS
            return False
        active.month = ym
        return True

    def request_delete_month(self, month_id: int) -> None:
        self._ensure_writable()
        self.confirmation.arm_month(month_id)

    def confirm_delete_month(self) -> bool:
        self._ensure_writable()
        if self.confirmation.state is not ConfirmationState.CONFIRMING_MONTH or self.confirmation.target_id is None:
            return False
        return self.delete_month(self.confirmation.target_id)

    def delete_month(self, month_id: int) -> bool:
        self._ensure_writable()
        if len(self.months) == 1:
            self.error = AT_LEAST_ONE_MONTH
            return False
        bucket = self._find_month(month_id)
        self.months = [existing for existing in self.months if existing.id != bucket.id]
        self.confirmation.reset()
        ordered = self.sorted_months
        if ordered:
            self.active_month_id = ordered[0].id
        return True

    # -- row management ---------------------------------------------------

    def add_row(self) -> SourceRow:
        self._ensure_writable()
        active = self.active_month
        if active is None:
            active = self.add_month()
        row = SourceRow()
        active.rows.append(row)
        return row

    def update_source(self, row_id: int, value: str) -> None:
        self._ensure_writable()
        self._find_row(row_id).source = value

    def toggle_type(self, row_id: int) -> None:
        self._ensure_writable()
        row = self._find_row(row_id)
        row.type = "doctor" if row.type == "self" else "self"

    def set_referrals(self, row_id: int, value: str) -> None:
        self._ensure_writable()
        self._find_row(row_id).referrals = sanitize_number(value)

    def set_production(self, row_id: int, value: str) -> None:
        self._ensure_writable()
        self._find_row(row_id).production = sanitize_number(value)

    def increment(self, row_id: int, field: NumericField, delta: int) -> None:
        self._ensure_writable()
        if field not in ("referrals", "production"):
            raise ValueError(f"cannot increment field '{field}'")
        row = self._find_row(row_id)
        current = coerce_number(getattr(row, field))
        setattr(row, field, number_to_text(max(0, current + delta)))

    def step(self, row_id: int, field: NumericField, direction: int = 1) -> None:
        size = self.referral_step if field == "referrals" else self.production_step
        self.increment(row_id, field, size if direction >= 0 else -size)

    def request_delete_row(self, row_id: int) -> None:
        self._ensure_writable()
        self.confirmation.arm_row(row_id)

    def confirm_delete_row(self) -> bool:
        self._ensure_writable()
        if self.confirmation.state is not ConfirmationState.CONFIRMING_ROW or self.confirmation.target_id is None:
            return False
        self.delete_row(self.confirmation.target_id)
        return True

    def delete_row(self, row_id: int) -> None:
        self._ensure_writable()
        for bucket in self.months:
            bucket.rows = [row for row in bucket.rows if row.id != row_id]
        self.confirmation.reset()

    def cancel_delete(self) -> None:
        self.confirmation.reset()

    # -- error helpers ----------------------------------------------------

    def _apply_issue(self, issue: EntryIssue) -> None:
        self.error = issue.message
        self.error_month_id = issue.month_id
        if issue.month_id is not None:
            self.active_month_id = issue.month_id


class _JobPayloadEditor(MonthGridEditor):
    def open(self, raw_payload: Any) -> None:
        """Initialise from a raw job payload unless already initialised for this open."""
        if not self._begin_open():
            return
        try:
            parsed = parse_job_payload(raw_payload)
        except PayloadParseError as exc:
            logger.error({"event": "pms_payload_invalid", "editor": type(self).__name__, "error": str(exc)})
            self._reset([])
            self.error = str(exc)
            return
        self._reset(transform_backend_to_ui(parsed.months))
        logger.info(
            {
                "event": "pms_editor_opened",
                "editor": type(self).__name__,
                "payload_kind": parsed.kind.value,
                "month_count": len(self.months),
            }
        )


class ReadOnlyViewer(_JobPayloadEditor):
    def __init__(self) -> None:
        super().__init__(read_only=True)


class LatestJobReviewSession(_JobPayloadEditor):
    def __init__(
        self,
        gateway: PmsGateway,
        job_id: int | None,
        *,
        on_confirm_approval: Optional[Callable[[], Any]] = None,
        on_saved: Optional[Callable[[], Any]] = None,
    ) -> None:
        super().__init__()
        self._gateway = gateway
        self.job_id = job_id
        self._on_confirm_approval = on_confirm_approval
        self._on_saved = on_saved
        self.is_saving = False

    def validate(self) -> List[EntryIssue]:
        return validate_review_months(self.months)

    async def save_and_confirm(self) -> bool:
        """Save edits back to the job, then confirm approval. Returns True when the editor closed."""
        if not self.job_id:
            self.error = JOB_ID_MISSING
            return False

        issues = self.validate()
        if issues:
            self._apply_issue(issues[0])
            return False

        self.is_saving = True
        self.error = None
        self.error_month_id = None
        try:
            backend = dump_month_entries(self.to_backend())
            logger.info({"event": "pms_job_save", "job_id": self.job_id, **describe_month_payload(backend)})
            await self._gateway.update_job_response(self.job_id, json.dumps(backend, indent=2))
            await _maybe_await(self._on_confirm_approval)
            await _maybe_await(self._on_saved)
        except GatewayError as exc:
            logger.error({"event": "pms_job_save_failed", "job_id": self.job_id, "error": exc.message})
            self.error = exc.message or SAVE_FAILED
            return False
        except Exception as exc:
            logger.error({"event": "pms_job_save_failed", "job_id": self.job_id, "error": str(exc)})
            self.error = str(exc) or SAVE_FAILED
            return False
        finally:
            self.is_saving = False

        self.close()
        return True


class ManualEntrySession(MonthGridEditor):
    referral_step = 1
    production_step = 100

    def __init__(
        self,
        gateway: PmsGateway,
        domain: str,
        *,
        location_id: int | None = None,
        event_bus: EventBus | None = None,
        on_success: Optional[Callable[[], Any]] = None,
    ) -> None:
        super().__init__()
        self._gateway = gateway
        self.domain = domain
        self.location_id = location_id
        self._event_bus = event_bus
        self._on_success = on_success
        self.is_submitting = False
        self.submit_status: Literal["idle", "success", "error"] = "idle"

    def open(self, today: date | None = None) -> None:
        if not self._begin_open():
            return
        self._reset([MonthBucket(month=previous_month(today))])
        self.submit_status = "idle"

    def validate(self) -> List[EntryIssue]:
        return validate_manual_months(self.months)

    async def submit(self) -> bool:
        issues = self.validate()
        if issues:
            self.error = issues[0].message
            return False

        self.is_submitting = True
        self.error = None
        try:
            await self._gateway.submit_manual_data(self.domain, self.to_backend(), self.location_id)
        except GatewayError as exc:
            logger.error({"event": "pms_manual_submit_failed", "domain": self.domain, "error": exc.message})
            self.submit_status = "error"
            self.error = exc.message or SUBMISSION_FAILED
            return False
        finally:
            self.is_submitting = False

        self.submit_status = "success"
        try:
            if self._event_bus is not None:
                await self._event_bus.publish(PmsJobUploaded(client_id=self.domain, entry_type="manual"))
            await _maybe_await(self._on_success)
        except Exception as exc:
            logger.error({"event": "pms_manual_submit_followup_failed", "domain": self.domain, "error": str(exc)})
            self.error = str(exc) or SUBMISSION_FAILED
            return False
        self.close()
        return True
