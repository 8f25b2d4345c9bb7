from __future__ import annotations

import itertools
from dataclasses import dataclass, field
from typing import Literal

ReferralType = Literal["self", "doctor"]
REFERRAL_TYPES: tuple[ReferralType, ...] = ("self", "doctor")

_local_ids = itertools.count(1)


def next_local_id() -> int:
    """Creation-order token used to key rows and months inside one process; never persisted."""

    return next(_local_ids)


@dataclass(slots=True)
class SourceRow:
    """One referral source within one month, as held by an editor."""

    source: str = ""
    type: ReferralType = "self"
    # Numbers stay text while editing so empty/partial input is representable.
    referrals: str = ""
    production: str = ""
    id: int = field(default_factory=next_local_id)


@dataclass(slots=True)
class MonthBucket:
    """One calendar month (YYYY-MM) worth of source rows, in insertion order."""

    month: str
    rows: list[SourceRow] = field(default_factory=list)
    id: int = field(default_factory=next_local_id)


@dataclass(frozen=True, slots=True)
class MonthSummary:
    """Per-month aggregate recomputed from rows on demand."""

    self_referrals: float
    doctor_referrals: float
    total_referrals: float
    production_total: float
