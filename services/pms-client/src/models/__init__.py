"""In-memory editing model for PMS month/source data."""

from models.pms_grid import (
    REFERRAL_TYPES,
    MonthBucket,
    MonthSummary,
    ReferralType,
    SourceRow,
    next_local_id,
)

__all__ = [
    "REFERRAL_TYPES",
    "MonthBucket",
    "MonthSummary",
    "ReferralType",
    "SourceRow",
    "next_local_id",
]
