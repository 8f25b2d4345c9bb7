from __future__ import annotations

from dataclasses import dataclass
from typing import Dict, Iterable, List

from models import MonthBucket
from pms_transform import coerce_number, parse_ym

MISSING_SOURCE_NAME = "missing_source_name"
NON_POSITIVE_REFERRALS = "non_positive_referrals"
UNNAMED_SOURCE_WITH_DATA = "unnamed_source_with_data"
NO_SOURCE_DATA = "no_source_data"
INVALID_MONTH = "invalid_month"

ISSUE_MESSAGES: Dict[str, str] = {
    MISSING_SOURCE_NAME: "All source names are required",
    NON_POSITIVE_REFERRALS: "All referral counts must be greater than 0",
    UNNAMED_SOURCE_WITH_DATA: "All sources must have a name",
    NO_SOURCE_DATA: "Please add at least one source with referrals or production data",
    INVALID_MONTH: "Please choose a valid month",
}


@dataclass(frozen=True)
class EntryIssue:
    month_id: int | None
    row_id: int | None
    reason: str
    detail: str

    @property
    def message(self) -> str:
        return ISSUE_MESSAGES.get(self.reason, self.detail)


def _has_data(referrals: str, production: str) -> bool:
    return coerce_number(referrals) > 0 or coerce_number(production) > 0


def validate_review_months(months: Iterable[MonthBucket]) -> List[EntryIssue]:
    """Every row needs a source name and a positive referral count."""

    issues: List[EntryIssue] = []
    for bucket in months:
        for row in bucket.rows:
            if not row.source.strip():
                issues.append(
                    EntryIssue(bucket.id, row.id, MISSING_SOURCE_NAME, f"{bucket.month}: row has no source name")
                )
            if coerce_number(row.referrals) <= 0:
                issues.append(
                    EntryIssue(
                        bucket.id,
                        row.id,
                        NON_POSITIVE_REFERRALS,
                        f"{bucket.month}: '{row.source}' has referrals={row.referrals!r}",
                    )
                )
    return issues


def validate_manual_months(months: Iterable[MonthBucket]) -> List[EntryIssue]:
    """
    Looser rules for manual entry.

    Unnamed rows carrying data are rejected first. Otherwise at least one named
    row with data must exist somewhere. Named rows with zero values pass.
    """

    buckets = list(months)
    issues: List[EntryIssue] = []
    has_named_data = False

    for bucket in buckets:
        for row in bucket.rows:
            if not _has_data(row.referrals, row.production):
                continue
            if row.source.strip():
                has_named_data = True
            else:
                issues.append(
                    EntryIssue(bucket.id, row.id, UNNAMED_SOURCE_WITH_DATA, f"{bucket.month}: row has data but no name")
                )

    if issues:
        return issues
    if not has_named_data:
        first_month = buckets[0].id if buckets else None
        issues.append(EntryIssue(first_month, None, NO_SOURCE_DATA, "no named source with referrals or production"))
    return issues


def validate_month_value(ym: str) -> EntryIssue | None:
    try:
        parse_ym(ym)
    except ValueError as exc:
        return EntryIssue(None, None, INVALID_MONTH, str(exc))
    return None
