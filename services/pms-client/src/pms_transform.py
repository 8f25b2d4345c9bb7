"""
Conversions between the backend month/source records and the editor grid.

The backend stores referral counts as per-type aggregates plus a source list,
while the editors work on one row per source with the numbers held as text.
"""

from __future__ import annotations

import math
import re
from datetime import date
from typing import Any, Iterable, List, Sequence, Tuple, Union

from models import REFERRAL_TYPES, MonthBucket, MonthSummary, ReferralType, SourceRow
from payloads import MonthEntryForm, SourceEntryForm

_YM_PATTERN = re.compile(r"^(\d{4})-(\d{2})$")
_NON_DIGITS = re.compile(r"\D")

Numeric = Union[int, float]


def coerce_number(value: Any) -> Numeric:
    """Null-safe numeric coercion: anything that is not a finite number becomes 0."""

    if value is None or isinstance(value, bool):
        return 0
    if isinstance(value, (int, float)):
        return value if math.isfinite(value) else 0
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
        except ValueError:
            return 0
        return parsed if math.isfinite(parsed) else 0
    return 0


def _normalize(value: Numeric) -> Numeric:
    if isinstance(value, float) and value.is_integer():
        return int(value)
    return value


def number_to_text(value: Any) -> str:
    return str(_normalize(coerce_number(value)))


def _resolve_type(inferred: str | None) -> ReferralType:
    if inferred in REFERRAL_TYPES:
        return inferred  # type: ignore[return-value]
    return "self"


def transform_backend_to_ui(months: Sequence[MonthEntryForm]) -> List[MonthBucket]:
    buckets: List[MonthBucket] = []
    for entry in months:
        rows = [
            SourceRow(
                source=source.name,
                type=_resolve_type(source.inferred_referral_type),
                referrals=number_to_text(source.referrals),
                production=number_to_text(source.production),
            )
            for source in entry.sources
        ]
        buckets.append(MonthBucket(month=entry.month, rows=rows))
    return buckets


def transform_ui_to_backend(months: Sequence[MonthBucket]) -> List[MonthEntryForm]:
    entries: List[MonthEntryForm] = []
    for bucket in months:
        self_referrals: Numeric = 0
        doctor_referrals: Numeric = 0
        total_referrals: Numeric = 0
        production_total: Numeric = 0
        sources: List[SourceEntryForm] = []

        for row in bucket.rows:
            referrals = coerce_number(row.referrals)
            production = coerce_number(row.production)
            if row.type == "doctor":
                doctor_referrals += referrals
            else:
                self_referrals += referrals
            total_referrals += referrals
            production_total += production
            sources.append(
                SourceEntryForm(
                    name=row.source,
                    referrals=_normalize(referrals),
                    production=_normalize(production),
                    inferred_referral_type=row.type,
                )
            )

        entries.append(
            MonthEntryForm(
                month=bucket.month,
                self_referrals=_normalize(self_referrals),
                doctor_referrals=_normalize(doctor_referrals),
                total_referrals=_normalize(total_referrals),
                production_total=_normalize(production_total),
                sources=sources,
            )
        )
    return entries


def calculate_totals(rows: Iterable[SourceRow]) -> MonthSummary:
    self_referrals: Numeric = 0
    doctor_referrals: Numeric = 0
    production_total: Numeric = 0
    for row in rows:
        referrals = coerce_number(row.referrals)
        if row.type == "doctor":
            doctor_referrals += referrals
        else:
            self_referrals += referrals
        production_total += coerce_number(row.production)
    return MonthSummary(
        self_referrals=_normalize(self_referrals),
        doctor_referrals=_normalize(doctor_referrals),
        total_referrals=_normalize(self_referrals + doctor_referrals),
        production_total=_normalize(production_total),
    )


# ---------------------------------------------------------------------------
# Month arithmetic
# ---------------------------------------------------------------------------


def parse_ym(ym: str) -> Tuple[int, int]:
    match = _YM_PATTERN.match(ym or "")
    if not match:
        raise ValueError(f"'{ym}' is not a YYYY-MM month")
    year, month = int(match.group(1)), int(match.group(2))
    if not 1 <= month <= 12:
        raise ValueError(f"'{ym}' has an out-of-range month")
    return year, month


def to_ym(year: int, month: int) -> str:
    return f"{year:04d}-{month:02d}"


def add_months(ym: str, delta: int) -> str:
    year, month = parse_ym(ym)
    new_year, new_index = divmod(year * 12 + (month - 1) + delta, 12)
    return to_ym(new_year, new_index + 1)


def previous_month(today: date | None = None) -> str:
    today = today or date.today()
    return add_months(to_ym(today.year, today.month), -1)


# ---------------------------------------------------------------------------
# Input helpers
# ---------------------------------------------------------------------------


def sanitize_number(text: str) -> str:
    return _NON_DIGITS.sub("", text or "")


def format_money(text: str) -> str:
    """Add thousands separators to a numeric string for display; empty input stays empty."""

    if not (text or "").strip():
        return ""
    return f"{_normalize(coerce_number(text)):,}"
