"""
PMS export upload flow.

Files are checked locally before they are sent: the type must be a CSV/text
or Excel export and the file must contain at least one data row. Accepted
uploads record the per-domain processing flag and announce themselves on the
event bus so the dashboard and setup tracker can react.
"""

from __future__ import annotations

import csv
import io
import logging
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Callable, Dict, List, Optional

from openpyxl import load_workbook

from event_bus import EventBus, PmsJobUploaded
from gateway import DEFAULT_PMS_TYPE, GatewayError, PmsGateway
from persistence import ClientStateStore, mark_processing
from shared.observability import hash_payload

logger = logging.getLogger(__name__)

CSV_CONTENT_TYPES = {
    "text/csv",
    "application/csv",
    "text/plain",
}
XLSX_CONTENT_TYPES = {
    "application/vnd.openxmlformats-officedocument.spreadsheetml.sheet",
}
XLS_CONTENT_TYPES = {
    "application/vnd.ms-excel",
}
CSV_SUFFIXES = (".csv", ".txt")

UPLOAD_SUCCESS_MESSAGE = "We're processing your PMS data now. We'll notify you once it's ready."
UPLOAD_FAILED_MESSAGE = "Upload failed"
UNSUPPORTED_FILE_MESSAGE = "Unsupported file type. Please upload a .csv or .xlsx export."
EMPTY_FILE_MESSAGE = "The uploaded file is empty."
UNREADABLE_FILE_MESSAGE = "The uploaded spreadsheet could not be read."


class UploadRejected(ValueError):
    """Raised by the local preflight when a file must not be sent."""


@dataclass(frozen=True)
class UploadPreview:
    kind: str
    headers: List[str] = field(default_factory=list)
    data_rows: Optional[int] = None


@dataclass(frozen=True)
class UploadResult:
    success: bool
    message: str
    preview: Optional[UploadPreview] = None
    data: Dict[str, Any] = field(default_factory=dict)


def detect_upload_kind(filename: str | None, content_type: str | None) -> Optional[str]:
    content_type = (content_type or "").split(";")[0].strip().lower()
    filename = (filename or "").lower()

    if content_type in XLSX_CONTENT_TYPES or filename.endswith(".xlsx"):
        return "xlsx"
    if content_type in XLS_CONTENT_TYPES or filename.endswith(".xls"):
        return "xls"
    if content_type in CSV_CONTENT_TYPES or filename.endswith(CSV_SUFFIXES):
        return "csv"
    return None


def preview_upload(kind: str, content: bytes) -> UploadPreview:
    """Read just enough of the file to confirm it has a header and data rows."""

    if not content:
        raise UploadRejected(EMPTY_FILE_MESSAGE)
    if kind == "csv":
        return _preview_csv(content)
    if kind == "xlsx":
        return _preview_xlsx(content)
    # Legacy .xls workbooks are parsed server-side only.
    return UploadPreview(kind=kind)


def _preview_csv(content: bytes) -> UploadPreview:
    text = content.decode("utf-8-sig", errors="replace")
    rows = [row for row in csv.reader(io.StringIO(text)) if any(cell.strip() for cell in row)]
    if not rows:
        raise UploadRejected(EMPTY_FILE_MESSAGE)
    headers = [cell.strip() for cell in rows[0]]
    if len(rows) < 2:
        raise UploadRejected(EMPTY_FILE_MESSAGE)
    return UploadPreview(kind="csv", headers=headers, data_rows=len(rows) - 1)


def _preview_xlsx(content: bytes) -> UploadPreview:
    try:
        workbook = load_workbook(io.BytesIO(content), data_only=True, read_only=True)
    except Exception as exc:
        raise UploadRejected(UNREADABLE_FILE_MESSAGE) from exc
    try:
        sheet = workbook.active
        rows = [
            row
            for row in sheet.iter_rows(values_only=True)
            if any(value is not None and str(value).strip() for value in row)
        ]
    finally:
        workbook.close()
    if len(rows) < 2:
        raise UploadRejected(EMPTY_FILE_MESSAGE)
    headers = ["" if value is None else str(value).strip() for value in rows[0]]
    return UploadPreview(kind="xlsx", headers=headers, data_rows=len(rows) - 1)


class PmsUploader:
    def __init__(
        self,
        gateway: PmsGateway,
        store: ClientStateStore,
        *,
        event_bus: EventBus | None = None,
        clock: Callable[[], datetime] | None = None,
    ) -> None:
        self._gateway = gateway
        self._store = store
        self._event_bus = event_bus
        self._clock = clock or (lambda: datetime.now(timezone.utc))
        self.is_uploading = False

    async def upload_file(
        self,
        domain: str,
        filename: str,
        content: bytes,
        content_type: str | None = None,
        pms_type: str = DEFAULT_PMS_TYPE,
    ) -> UploadResult:
        kind = detect_upload_kind(filename, content_type)
        if kind is None:
            logger.info({"event": "pms_upload_rejected", "domain": domain, "reason": "unsupported_file_type"})
            return UploadResult(success=False, message=UNSUPPORTED_FILE_MESSAGE)
        try:
            preview = preview_upload(kind, content)
        except UploadRejected as exc:
            logger.info({"event": "pms_upload_rejected", "domain": domain, "kind": kind, "reason": str(exc)})
            return UploadResult(success=False, message=str(exc))

        self.is_uploading = True
        try:
            data = await self._gateway.upload_file(
                domain,
                filename,
                content,
                content_type or "application/octet-stream",
                pms_type,
            )
        except GatewayError as exc:
            logger.error({"event": "pms_upload_failed", "domain": domain, "error": exc.message})
            return UploadResult(success=False, message=exc.message or UPLOAD_FAILED_MESSAGE, preview=preview)
        finally:
            self.is_uploading = False

        logger.info(
            {
                "event": "pms_upload_accepted",
                "domain": domain,
                "kind": kind,
                "pms_type": pms_type,
                "data_rows": preview.data_rows,
                "content_sha256": hash_payload(content),
            }
        )
        mark_processing(self._store, domain, self._clock())
        if self._event_bus is not None:
            await self._event_bus.publish(PmsJobUploaded(client_id=domain))
        return UploadResult(success=True, message=UPLOAD_SUCCESS_MESSAGE, preview=preview, data=data)
