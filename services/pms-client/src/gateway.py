"""
Typed async wrapper around the PMS REST gateway.

Every gateway response is an envelope of the form
`{"success": bool, "data"?: ..., "error"?: str, "message"?: str}`. Successful
envelopes are unwrapped into the pydantic models from `payloads`; anything else
raises `GatewayError` with the most specific message available.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Any, Dict, Iterable, List, Optional, Sequence

import httpx
from pydantic import ValidationError

from http_client import ResilientHttpClient
from payloads import (
    ActiveAutomationJob,
    AutomationStatus,
    JobsPage,
    KeyData,
    MonthEntryForm,
    dump_month_entries,
)
from shared.client_settings import ClientSettings
from shared.observability import describe_month_payload, redact_fields

logger = logging.getLogger(__name__)

TECHNICAL_ERROR_MESSAGE = "A technical error occurred. Please try again."
DEFAULT_PMS_TYPE = "auto-detect"
_LOGGABLE_ENVELOPE_KEYS = ("success", "error", "message")


class GatewayError(Exception):
    """Raised when a gateway call fails or answers with `success: false`."""

    def __init__(self, message: str = TECHNICAL_ERROR_MESSAGE, *, status_code: int | None = None) -> None:
        super().__init__(message)
        self.message = message
        self.status_code = status_code


@dataclass(frozen=True)
class ReferralEngineResult:
    pending: bool
    data: Optional[Dict[str, Any]]


def _envelope_message(body: Any) -> str | None:
    if not isinstance(body, dict):
        return None
    for key in ("error", "message"):
        value = body.get(key)
        if isinstance(value, str) and value.strip():
            return value
    return None


class PmsGateway:
    def __init__(self, http_client: ResilientHttpClient) -> None:
        self._http = http_client

    async def _call(self, method: str, path: str, **kwargs: Any) -> Dict[str, Any]:
        try:
            response, _ = await self._http.request(method, path, **kwargs)
        except httpx.HTTPStatusError as exc:
            body = _safe_json(exc.response)
            message = _envelope_message(body) or TECHNICAL_ERROR_MESSAGE
            logger.error(
                {
                    "event": "pms_gateway_http_error",
                    "method": method,
                    "path": path,
                    "status_code": exc.response.status_code,
                    "body": redact_fields(body, _LOGGABLE_ENVELOPE_KEYS) if isinstance(body, dict) else None,
                }
            )
            raise GatewayError(message, status_code=exc.response.status_code) from exc
        except httpx.RequestError as exc:
            logger.warning({"event": "pms_gateway_unavailable", "method": method, "path": path, "error": str(exc)})
            raise GatewayError(TECHNICAL_ERROR_MESSAGE) from exc

        body = _safe_json(response)
        if not isinstance(body, dict):
            logger.error({"event": "pms_gateway_malformed_response", "method": method, "path": path})
            raise GatewayError(TECHNICAL_ERROR_MESSAGE, status_code=response.status_code)
        if body.get("success") is False:
            logger.info(
                {
                    "event": "pms_gateway_rejected",
                    "method": method,
                    "path": path,
                    "body": redact_fields(body, _LOGGABLE_ENVELOPE_KEYS),
                }
            )
            raise GatewayError(_envelope_message(body) or TECHNICAL_ERROR_MESSAGE, status_code=response.status_code)
        return body

    # -- key data / automation -------------------------------------------

    async def fetch_key_data(self, domain: str | None = None) -> KeyData:
        params = {"domain": domain} if domain else None
        body = await self._call("GET", "/pms/keyData", params=params)
        return _validate(KeyData, body.get("data") or {})

    async def fetch_active_automation_jobs(self, domain: str) -> List[ActiveAutomationJob]:
        body = await self._call("GET", "/pms/automation/active", params={"domain": domain})
        jobs = (body.get("data") or {}).get("jobs") or []
        return [_validate(ActiveAutomationJob, job) for job in jobs]

    async def fetch_automation_status(self, job_id: int) -> AutomationStatus | None:
        body = await self._call("GET", f"/pms/jobs/{job_id}/automation-status")
        status = (body.get("data") or {}).get("automationStatus")
        if not status:
            return None
        return _validate(AutomationStatus, status)

    # -- job mutations ----------------------------------------------------

    async def update_job_response(self, job_id: int, response_log: str | None) -> Dict[str, Any]:
        body = await self._call("PATCH", f"/pms/jobs/{job_id}/response", json={"responseLog": response_log})
        return body.get("data") or {}

    async def update_client_approval(self, job_id: int, approved: bool) -> Dict[str, Any]:
        body = await self._call(
            "PATCH", f"/pms/jobs/{job_id}/client-approval", json={"isClientApproved": approved}
        )
        return body.get("data") or {}

    async def toggle_job_approval(self, job_id: int, approved: bool) -> Dict[str, Any]:
        body = await self._call("PATCH", f"/pms/jobs/{job_id}/approval", json={"isApproved": approved})
        return body.get("data") or {}

    async def delete_job(self, job_id: int) -> None:
        await self._call("DELETE", f"/pms/jobs/{job_id}")

    # -- ingestion --------------------------------------------------------

    async def submit_manual_data(
        self,
        domain: str,
        months: Sequence[MonthEntryForm],
        location_id: int | None = None,
    ) -> Dict[str, Any]:
        monthly_data = dump_month_entries(list(months))
        logger.info({"event": "pms_manual_submit", "domain": domain, **describe_month_payload(monthly_data)})
        payload: Dict[str, Any] = {"domain": domain, "monthlyData": monthly_data}
        if location_id is not None:
            payload["locationId"] = location_id
        body = await self._call("POST", "/pms/upload/manual", json=payload)
        return body.get("data") or {}

    async def upload_file(
        self,
        domain: str,
        filename: str,
        content: bytes,
        content_type: str,
        pms_type: str = DEFAULT_PMS_TYPE,
    ) -> Dict[str, Any]:
        files = {"csvFile": (filename, content, content_type)}
        data = {"domain": domain, "pmsType": pms_type}
        body = await self._call("POST", "/pms/upload", files=files, data=data)
        return body.get("data") or {}

    # -- admin listing ----------------------------------------------------

    async def fetch_jobs(
        self,
        *,
        page: int = 1,
        statuses: Iterable[str] | None = None,
        is_approved: bool | None = None,
        domain: str | None = None,
    ) -> JobsPage:
        params: Dict[str, Any] = {"page": page}
        status_list = [status for status in (statuses or []) if status]
        if status_list:
            params["status"] = ",".join(status_list)
        if is_approved is not None:
            params["isApproved"] = "1" if is_approved else "0"
        if domain:
            params["domain"] = domain
        body = await self._call("GET", "/pms/jobs", params=params)
        return _validate(JobsPage, body.get("data") or {})

    # -- collaborators outside /pms ---------------------------------------

    async def fetch_referral_engine_output(self, organization_id: int) -> ReferralEngineResult:
        body = await self._call("GET", f"/agents/getLatestReferralEngineOutput/{organization_id}")
        if body.get("pending") is True:
            return ReferralEngineResult(pending=True, data=None)
        data = body.get("data")
        if isinstance(data, list):
            data = data[0] if data else None
        return ReferralEngineResult(pending=False, data=data or None)

    async def fetch_properties(self) -> Dict[str, Any]:
        body = await self._call("GET", "/settings/properties")
        return body.get("properties") or {}

    async def fetch_scopes(self) -> Dict[str, Any]:
        body = await self._call("GET", "/settings/scopes")
        return body.get("scopes") or {}


def _safe_json(response: httpx.Response) -> Any:
    try:
        return response.json()
    except ValueError:
        return None


def _validate(model: Any, payload: Any) -> Any:
    try:
        return model.model_validate(payload)
    except ValidationError as exc:
        logger.error({"event": "pms_gateway_invalid_payload", "model": model.__name__, "errors": exc.error_count()})
        raise GatewayError(TECHNICAL_ERROR_MESSAGE) from exc


def build_gateway(
    settings: ClientSettings,
    *,
    transport: httpx.AsyncBaseTransport | None = None,
) -> PmsGateway:
    """Wire a gateway from environment-derived settings."""
    client = ResilientHttpClient(
        settings.api_base_url,
        auth_token=settings.api_token,
        timeout=settings.request_timeout_seconds,
        max_attempts=settings.max_attempts,
        transport=transport,
    )
    return PmsGateway(client)
