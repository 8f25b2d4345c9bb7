"""
Pydantic schemas for every payload exchanged with the PMS gateway.

Raw job payloads arrive in several historical shapes. `parse_job_payload`
validates them into one strict internal schema up front and raises
`PayloadParseError` when the shape is unexpected, instead of silently
defaulting fields.
"""

from __future__ import annotations

import json
import math
from dataclasses import dataclass
from enum import Enum
from typing import Annotated, Any, Dict, List, Optional, Union

from pydantic import BaseModel, BeforeValidator, ConfigDict, Field, ValidationError
from pydantic.alias_generators import to_camel


class PayloadParseError(ValueError):
    """Raised when a gateway payload does not match any supported shape."""

    def __init__(self, message: str, *, location: str | None = None) -> None:
        super().__init__(message if location is None else f"{message} (at {location})")
        self.location = location


def _coerce_numeric(value: Any) -> Union[int, float]:
    if value is None:
        return 0
    if isinstance(value, bool):
        raise ValueError("boolean is not a numeric value")
    if isinstance(value, (int, float)):
        if isinstance(value, float) and not math.isfinite(value):
            return 0
        return value
    if isinstance(value, str):
        text = value.strip()
        if not text:
            return 0
        try:
            return int(text)
        except ValueError:
            pass
        try:
            parsed = float(text)
        except ValueError as exc:
            raise ValueError(f"'{value}' is not a numeric value") from exc
        return parsed if math.isfinite(parsed) else 0
    raise ValueError(f"{type(value).__name__} is not a numeric value")


Number = Annotated[Union[int, float], BeforeValidator(_coerce_numeric)]


# ---------------------------------------------------------------------------
# Month/source records (snake_case on the wire)
# ---------------------------------------------------------------------------


class SourceEntryForm(BaseModel):
    model_config = ConfigDict(extra="ignore")

    name: str = ""
    referrals: Number = 0
    production: Number = 0
    # Interpretation (fallback to "self") belongs to the transform layer.
    inferred_referral_type: Optional[str] = None


class MonthEntryForm(BaseModel):
    model_config = ConfigDict(extra="ignore")

    month: str
    self_referrals: Number = 0
    doctor_referrals: Number = 0
    total_referrals: Number = 0
    production_total: Number = 0
    sources: List[SourceEntryForm] = Field(default_factory=list)


def dump_month_entries(months: List[MonthEntryForm]) -> List[Dict[str, Any]]:
    return [month.model_dump() for month in months]


# ---------------------------------------------------------------------------
# Gateway responses (camelCase on the wire)
# ---------------------------------------------------------------------------


class _CamelModel(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, extra="ignore")


class KeyDataMonth(_CamelModel):
    month: str
    self_referrals: Number = 0
    doctor_referrals: Number = 0
    total_referrals: Number = 0
    production_total: Number = 0


class KeyDataSource(_CamelModel):
    rank: int = 0
    name: str = ""
    referrals: Number = 0
    production: Number = 0
    percentage: Number = 0


class KeyDataTotals(_CamelModel):
    total_referrals: Number = 0
    total_production: Number = 0


class KeyDataStats(_CamelModel):
    job_count: int = 0
    earliest_job_timestamp: Optional[str] = None
    latest_job_timestamp: Optional[str] = None
    distinct_months: int = 0
    latest_job_status: Optional[str] = None
    latest_job_is_approved: Optional[bool] = None
    latest_job_is_client_approved: Optional[bool] = None
    latest_job_id: Optional[int] = None


class KeyData(_CamelModel):
    domain: Optional[str] = None
    months: List[KeyDataMonth] = Field(default_factory=list)
    sources: List[KeyDataSource] = Field(default_factory=list)
    totals: Optional[KeyDataTotals] = None
    stats: KeyDataStats = Field(default_factory=KeyDataStats)
    latest_job_raw: Any = None

    @property
    def has_latest_job_raw(self) -> bool:
        raw = self.latest_job_raw
        if raw is None:
            return False
        if isinstance(raw, (list, dict, str)):
            return len(raw) > 0
        return True


class StepDetail(_CamelModel):
    status: str = "pending"
    started_at: Optional[str] = None
    completed_at: Optional[str] = None
    message: Optional[str] = None


class AutomationStatus(_CamelModel):
    status: str
    current_step: Optional[str] = None
    message: Optional[str] = None
    steps: Dict[str, StepDetail] = Field(default_factory=dict)
    started_at: Optional[str] = None
    completed_at: Optional[str] = None


class ActiveAutomationJob(_CamelModel):
    job_id: int
    automation_status: Optional[AutomationStatus] = None


class PmsJob(BaseModel):
    model_config = ConfigDict(extra="ignore")

    id: int
    time_elapsed: Optional[float] = None
    status: str
    response_log: Any = None
    timestamp: str
    is_approved: bool = False
    is_client_approved: bool = False
    domain: Optional[str] = None


class JobsPagination(_CamelModel):
    page: int = 1
    per_page: int = 0
    total: int = 0
    total_pages: int = 0
    has_next_page: bool = False


class JobsPage(BaseModel):
    jobs: List[PmsJob] = Field(default_factory=list)
    pagination: Optional[JobsPagination] = None


# ---------------------------------------------------------------------------
# Raw job payload parsing
# ---------------------------------------------------------------------------


class JobPayloadKind(str, Enum):
    """Which historical shape a raw job payload arrived in."""

    MONTHLY_ROLLUP = "monthly_rollup"
    REPORT_DATA = "report_data"
    BARE_LIST = "bare_list"
    EMPTY = "empty"


@dataclass(frozen=True)
class ParsedJobPayload:
    kind: JobPayloadKind
    months: List[MonthEntryForm]


def parse_job_payload(raw: Any) -> ParsedJobPayload:
    """
    Validate a raw job payload into month entries.

    Accepts the canonical `{"monthly_rollup": [...]}` container, the legacy
    `{"report_data": [...]}` container, a bare list of month entries, an empty
    value, or a JSON string holding any of those.
    """

    if isinstance(raw, str):
        if not raw.strip():
            return ParsedJobPayload(JobPayloadKind.EMPTY, [])
        try:
            raw = json.loads(raw)
        except json.JSONDecodeError as exc:
            raise PayloadParseError(f"job payload is not valid JSON: {exc.msg}") from exc

    if raw is None:
        return ParsedJobPayload(JobPayloadKind.EMPTY, [])

    if isinstance(raw, list):
        if not raw:
            return ParsedJobPayload(JobPayloadKind.EMPTY, [])
        return ParsedJobPayload(JobPayloadKind.BARE_LIST, _parse_entries(raw, "$"))

    if isinstance(raw, dict):
        if not raw:
            return ParsedJobPayload(JobPayloadKind.EMPTY, [])
        for kind in (JobPayloadKind.MONTHLY_ROLLUP, JobPayloadKind.REPORT_DATA):
            if kind.value in raw:
                entries = raw[kind.value]
                if not isinstance(entries, list):
                    raise PayloadParseError(f"'{kind.value}' must be a list", location=f"$.{kind.value}")
                return ParsedJobPayload(kind, _parse_entries(entries, f"$.{kind.value}"))
        keys = ", ".join(sorted(str(key) for key in raw))
        raise PayloadParseError(f"unrecognised job payload container with keys: {keys}", location="$")

    raise PayloadParseError(f"unsupported job payload type: {type(raw).__name__}", location="$")


def parse_month_entries(raw: Any) -> List[MonthEntryForm]:
    return parse_job_payload(raw).months


def _parse_entries(entries: List[Any], path: str) -> List[MonthEntryForm]:
    months: List[MonthEntryForm] = []
    for index, entry in enumerate(entries):
        location = f"{path}[{index}]"
        if not isinstance(entry, dict):
            raise PayloadParseError("month entry must be an object", location=location)
        try:
            months.append(MonthEntryForm.model_validate(entry))
        except ValidationError as exc:
            first = exc.errors()[0]
            field_path = ".".join(str(part) for part in first.get("loc", ()))
            raise PayloadParseError(first.get("msg", "invalid month entry"), location=f"{location}.{field_path}") from exc
    return months
