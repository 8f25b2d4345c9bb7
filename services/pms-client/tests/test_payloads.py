import json

import pytest
from payloads import (
    AutomationStatus,
    JobPayloadKind,
    KeyData,
    PayloadParseError,
    parse_job_payload,
    parse_month_entries,
)

MONTH = {
    "month": "2025-01",
    "self_referrals": 2,
    "doctor_referrals": "1",
    "total_referrals": 3,
    "production_total": None,
    "sources": [
        {"name": "Google", "referrals": "2", "production": 450.25, "inferred_referral_type": "self"},
        {"name": "Dr. Kim", "referrals": 1, "production": None},
    ],
}


@pytest.mark.parametrize(
    ("raw", "kind"),
    [
        ({"monthly_rollup": [MONTH]}, JobPayloadKind.MONTHLY_ROLLUP),
        ({"report_data": [MONTH]}, JobPayloadKind.REPORT_DATA),
        ([MONTH], JobPayloadKind.BARE_LIST),
        (json.dumps({"monthly_rollup": [MONTH]}), JobPayloadKind.MONTHLY_ROLLUP),
    ],
)
def test_parse_job_payload_accepts_known_shapes(raw, kind) -> None:
    parsed = parse_job_payload(raw)

    assert parsed.kind is kind
    assert len(parsed.months) == 1
    month = parsed.months[0]
    assert month.month == "2025-01"
    assert month.doctor_referrals == 1
    assert month.production_total == 0
    assert month.sources[0].referrals == 2
    assert month.sources[1].production == 0
    assert month.sources[1].inferred_referral_type is None


@pytest.mark.parametrize("raw", [None, {}, [], "", "   "])
def test_parse_job_payload_treats_empty_values_as_empty(raw) -> None:
    parsed = parse_job_payload(raw)

    assert parsed.kind is JobPayloadKind.EMPTY
    assert parsed.months == []


@pytest.mark.parametrize(
    "raw",
    [
        {"unexpected": []},
        {"monthly_rollup": {"month": "2025-01"}},
        [1, 2, 3],
        [{"sources": []}],
        [{"month": "2025-01", "self_referrals": "lots"}],
        42,
        "{not json",
    ],
)
def test_parse_job_payload_fails_loudly_on_unexpected_shapes(raw) -> None:
    with pytest.raises(PayloadParseError):
        parse_job_payload(raw)


def test_parse_error_reports_location() -> None:
    with pytest.raises(PayloadParseError) as excinfo:
        parse_month_entries({"report_data": [MONTH, {"month": "2025-02", "sources": [{"referrals": "x"}]}]})

    assert excinfo.value.location is not None
    assert excinfo.value.location.startswith("$.report_data[1]")


def test_key_data_parses_camel_case_gateway_response() -> None:
    key_data = KeyData.model_validate(
        {
            "domain": "smile.com",
            "months": [
                {"month": "2025-01", "selfReferrals": 4, "doctorReferrals": 2, "totalReferrals": 6, "productionTotal": 900}
            ],
            "sources": [{"rank": 1, "name": "Google", "referrals": 4, "production": 600, "percentage": 66.7}],
            "stats": {
                "jobCount": 2,
                "latestJobId": 12,
                "latestJobStatus": "completed",
                "latestJobIsApproved": True,
                "latestJobIsClientApproved": False,
                "earliestJobTimestamp": "2025-01-02T10:00:00Z",
            },
            "latestJobRaw": {"monthly_rollup": [MONTH]},
        }
    )

    assert key_data.months[0].self_referrals == 4
    assert key_data.stats.latest_job_id == 12
    assert key_data.stats.latest_job_is_client_approved is False
    assert key_data.has_latest_job_raw is True
    assert KeyData().has_latest_job_raw is False


def test_automation_status_reads_steps_and_current_step() -> None:
    status = AutomationStatus.model_validate(
        {
            "status": "awaiting_approval",
            "currentStep": "client_approval",
            "steps": {"file_upload": {"status": "completed"}, "pms_parser": {"status": "completed"}},
        }
    )

    assert status.current_step == "client_approval"
    assert status.steps["pms_parser"].status == "completed"
