import json
from typing import Any, Callable, Dict, List

import httpx
import pytest
from gateway import TECHNICAL_ERROR_MESSAGE, GatewayError, PmsGateway, build_gateway
from http_client import ResilientHttpClient
from payloads import MonthEntryForm, SourceEntryForm
from shared.client_settings import ClientSettings


def _gateway(handler: Callable[[httpx.Request], httpx.Response]) -> PmsGateway:
    client = ResilientHttpClient(
        "https://gateway.example.org/api",
        max_attempts=1,
        backoff_factor=0,
        transport=httpx.MockTransport(handler),
    )
    return PmsGateway(client)


def _recording(responses: Dict[str, Any], seen: List[httpx.Request]) -> Callable[[httpx.Request], httpx.Response]:
    def handler(request: httpx.Request) -> httpx.Response:
        seen.append(request)
        return httpx.Response(200, json=responses[request.url.path])

    return handler


@pytest.mark.anyio
async def test_fetch_key_data_unwraps_envelope_into_models() -> None:
    seen: List[httpx.Request] = []
    gateway = _gateway(
        _recording(
            {
                "/api/pms/keyData": {
                    "success": True,
                    "data": {
                        "domain": "smile.com",
                        "months": [{"month": "2025-01", "selfReferrals": 4, "doctorReferrals": "6", "totalReferrals": 10}],
                        "sources": [{"rank": 1, "name": "Dr. Lee", "referrals": 6, "production": 1500.5}],
                        "stats": {
                            "jobCount": 2,
                            "latestJobId": 17,
                            "latestJobStatus": "completed",
                            "latestJobIsApproved": True,
                            "latestJobIsClientApproved": False,
                        },
                        "latestJobRaw": {"monthly_rollup": []},
                    },
                }
            },
            seen,
        )
    )

    key_data = await gateway.fetch_key_data("smile.com")

    assert seen[0].url.params["domain"] == "smile.com"
    assert key_data.months[0].doctor_referrals == 6
    assert key_data.sources[0].production == 1500.5
    assert key_data.stats.latest_job_id == 17
    assert key_data.stats.latest_job_is_client_approved is False
    assert key_data.latest_job_raw == {"monthly_rollup": []}


@pytest.mark.anyio
async def test_success_false_raises_with_envelope_error_text() -> None:
    gateway = _gateway(lambda request: httpx.Response(200, json={"success": False, "error": "Job not found"}))

    with pytest.raises(GatewayError) as excinfo:
        await gateway.update_client_approval(42, True)

    assert excinfo.value.message == "Job not found"


@pytest.mark.anyio
async def test_http_error_prefers_envelope_message() -> None:
    gateway = _gateway(lambda request: httpx.Response(400, json={"success": False, "message": "Invalid month"}))

    with pytest.raises(GatewayError) as excinfo:
        await gateway.delete_job(3)

    assert excinfo.value.message == "Invalid month"
    assert excinfo.value.status_code == 400


@pytest.mark.anyio
async def test_http_error_without_body_uses_technical_message() -> None:
    gateway = _gateway(lambda request: httpx.Response(500, text="upstream exploded"))

    with pytest.raises(GatewayError) as excinfo:
        await gateway.fetch_key_data()

    assert excinfo.value.message == TECHNICAL_ERROR_MESSAGE
    assert excinfo.value.status_code == 500


@pytest.mark.anyio
async def test_network_failure_uses_technical_message() -> None:
    def handler(request: httpx.Request) -> httpx.Response:
        raise httpx.ConnectError("connection refused", request=request)

    gateway = _gateway(handler)

    with pytest.raises(GatewayError) as excinfo:
        await gateway.fetch_scopes()

    assert excinfo.value.message == TECHNICAL_ERROR_MESSAGE
    assert excinfo.value.status_code is None


@pytest.mark.anyio
async def test_non_object_body_is_rejected() -> None:
    gateway = _gateway(lambda request: httpx.Response(200, json=["unexpected"]))

    with pytest.raises(GatewayError):
        await gateway.fetch_properties()


@pytest.mark.anyio
async def test_active_jobs_are_validated() -> None:
    seen: List[httpx.Request] = []
    gateway = _gateway(
        _recording(
            {
                "/api/pms/automation/active": {
                    "success": True,
                    "data": {
                        "jobs": [
                            {
                                "jobId": 8,
                                "automationStatus": {
                                    "status": "processing",
                                    "currentStep": "pms_parser",
                                    "steps": {"file_upload": {"status": "completed"}},
                                },
                            }
                        ]
                    },
                }
            },
            seen,
        )
    )

    jobs = await gateway.fetch_active_automation_jobs("smile.com")

    assert len(jobs) == 1
    assert jobs[0].job_id == 8
    assert jobs[0].automation_status.current_step == "pms_parser"
    assert jobs[0].automation_status.steps["file_upload"].status == "completed"


@pytest.mark.anyio
async def test_invalid_payload_becomes_gateway_error() -> None:
    gateway = _gateway(
        lambda request: httpx.Response(200, json={"success": True, "data": {"jobs": [{"automationStatus": {}}]}})
    )

    with pytest.raises(GatewayError):
        await gateway.fetch_active_automation_jobs("smile.com")


@pytest.mark.anyio
async def test_missing_automation_status_returns_none() -> None:
    gateway = _gateway(lambda request: httpx.Response(200, json={"success": True, "data": {}}))

    assert await gateway.fetch_automation_status(12) is None


@pytest.mark.anyio
async def test_update_job_response_sends_patch_body() -> None:
    seen: List[httpx.Request] = []
    gateway = _gateway(_recording({"/api/pms/jobs/7/response": {"success": True, "data": {"id": 7}}}, seen))

    data = await gateway.update_job_response(7, '[{"month": "2025-01"}]')

    assert seen[0].method == "PATCH"
    assert json.loads(seen[0].content) == {"responseLog": '[{"month": "2025-01"}]'}
    assert data == {"id": 7}


@pytest.mark.anyio
async def test_submit_manual_data_serializes_months() -> None:
    seen: List[httpx.Request] = []
    gateway = _gateway(_recording({"/api/pms/upload/manual": {"success": True, "data": {"jobId": 55}}}, seen))
    month = MonthEntryForm(
        month="2025-02",
        self_referrals=1,
        doctor_referrals=2,
        total_referrals=3,
        production_total=900,
        sources=[
            SourceEntryForm(name="Walk-in", referrals=1, production=300, inferred_referral_type="self"),
            SourceEntryForm(name="Dr. Lee", referrals=2, production=600, inferred_referral_type="doctor"),
        ],
    )

    data = await gateway.submit_manual_data("smile.com", [month], location_id=4)

    body = json.loads(seen[0].content)
    assert seen[0].method == "POST"
    assert body["domain"] == "smile.com"
    assert body["locationId"] == 4
    assert body["monthlyData"][0]["month"] == "2025-02"
    assert body["monthlyData"][0]["sources"][1]["inferred_referral_type"] == "doctor"
    assert data == {"jobId": 55}


@pytest.mark.anyio
async def test_upload_file_posts_multipart_form() -> None:
    seen: List[httpx.Request] = []
    gateway = _gateway(_recording({"/api/pms/upload": {"success": True, "data": {"jobId": 3}}}, seen))

    await gateway.upload_file("smile.com", "export.csv", b"a,b\n1,2\n", "text/csv")

    request = seen[0]
    assert request.headers["content-type"].startswith("multipart/form-data")
    assert b'name="csvFile"; filename="export.csv"' in request.content
    assert b'name="pmsType"' in request.content
    assert b"auto-detect" in request.content


@pytest.mark.anyio
async def test_fetch_jobs_builds_filters() -> None:
    seen: List[httpx.Request] = []
    gateway = _gateway(
        _recording(
            {
                "/api/pms/jobs": {
                    "success": True,
                    "data": {
                        "jobs": [
                            {
                                "id": 1,
                                "status": "completed",
                                "timestamp": "2025-03-01T10:00:00Z",
                                "is_approved": True,
                                "is_client_approved": False,
                            }
                        ],
                        "pagination": {"page": 2, "perPage": 10, "total": 11, "totalPages": 2, "hasNextPage": False},
                    },
                }
            },
            seen,
        )
    )

    page = await gateway.fetch_jobs(page=2, statuses=["pending", "error"], is_approved=False, domain="smile.com")

    params = seen[0].url.params
    assert params["page"] == "2"
    assert params["status"] == "pending,error"
    assert params["isApproved"] == "0"
    assert params["domain"] == "smile.com"
    assert page.jobs[0].is_approved is True
    assert page.pagination.total_pages == 2


@pytest.mark.anyio
async def test_referral_engine_pending_and_list_shapes() -> None:
    gateway = _gateway(lambda request: httpx.Response(200, json={"success": True, "pending": True}))
    pending = await gateway.fetch_referral_engine_output(9)
    assert pending.pending is True
    assert pending.data is None

    gateway = _gateway(
        lambda request: httpx.Response(200, json={"success": True, "data": [{"summary": "first"}, {"summary": "second"}]})
    )
    result = await gateway.fetch_referral_engine_output(9)
    assert result.pending is False
    assert result.data == {"summary": "first"}


@pytest.mark.anyio
async def test_build_gateway_applies_settings() -> None:
    captured: Dict[str, str] = {}

    def handler(request: httpx.Request) -> httpx.Response:
        captured["url"] = str(request.url)
        captured["authorization"] = request.headers.get("authorization", "")
        return httpx.Response(200, json={"success": True, "properties": {"ga4": {"id": "G-1"}}})

    settings = ClientSettings(
        api_base_url="https://dashboard.example.org/api",
        api_token="secret",
        request_timeout_seconds=5.0,
        max_attempts=1,
        fast_poll_seconds=1.0,
        background_poll_seconds=10.0,
        state_db_url="sqlite:///:memory:",
    )
    gateway = build_gateway(settings, transport=httpx.MockTransport(handler))

    properties = await gateway.fetch_properties()

    assert captured["url"] == "https://dashboard.example.org/api/settings/properties"
    assert captured["authorization"] == "Bearer secret"
    assert properties == {"ga4": {"id": "G-1"}}


@pytest.mark.anyio
async def test_toggle_job_approval_patches_flag() -> None:
    seen: List[httpx.Request] = []
    gateway = _gateway(_recording({"/api/pms/jobs/5/approval": {"success": True, "data": {"isApproved": False}}}, seen))

    data = await gateway.toggle_job_approval(5, False)

    assert seen[0].method == "PATCH"
    assert json.loads(seen[0].content) == {"isApproved": False}
    assert data == {"isApproved": False}
