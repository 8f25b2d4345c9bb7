"""
State container for the PMS section of the practice dashboard.

Ties together key-data loading, the per-domain processing flag, the automation
tracker, the client approval banner and the editor sessions. Gateway failures
are caught here and turned into `error`/`banner_error` strings; nothing raised
by a collaborator escapes a public coroutine.
"""

from __future__ import annotations

import logging
from typing import Any, Callable, Dict, Optional

from automation_poller import (
    DEFAULT_BACKGROUND_INTERVAL_SECONDS,
    DEFAULT_FAST_INTERVAL_SECONDS,
    AutomationTracker,
)
from editor_session import LatestJobReviewSession, ManualEntrySession, ReadOnlyViewer
from event_bus import EventBus, PmsJobUploaded
from gateway import GatewayError, PmsGateway
from payloads import AutomationStatus, KeyData, KeyDataStats
from persistence import ClientStateStore, InMemoryClientStateStore, clear_processing, is_processing
from shared.client_settings import ClientSettings
from uploads import PmsUploader

logger = logging.getLogger(__name__)


class PmsDashboard:
    def __init__(
        self,
        gateway: PmsGateway,
        domain: str,
        *,
        organization_id: int | None = None,
        store: ClientStateStore | None = None,
        event_bus: EventBus | None = None,
        settings: ClientSettings | None = None,
    ) -> None:
        self._gateway = gateway
        self.domain = domain
        self.organization_id = organization_id
        self._store = store if store is not None else InMemoryClientStateStore()
        self._event_bus = event_bus if event_bus is not None else EventBus()
        self.tracker = AutomationTracker(
            gateway,
            domain,
            fast_interval=settings.fast_poll_seconds if settings else DEFAULT_FAST_INTERVAL_SECONDS,
            background_interval=(
                settings.background_poll_seconds if settings else DEFAULT_BACKGROUND_INTERVAL_SECONDS
            ),
            on_completed=self.load_referral_data,
            on_client_approval=self._reload_for_banner,
        )

        self.key_data: KeyData | None = None
        self.is_loading = True
        self.error: str | None = None
        self.local_processing = is_processing(self._store, domain)
        self.is_confirming = False
        self.banner_error: str | None = None
        self.referral_data: Optional[Dict[str, Any]] = None
        self.referral_loading = False
        self.review_editor: LatestJobReviewSession | None = None
        self.manual_entry: ManualEntrySession | None = None
        self._mounted = False
        self._unsubscribe: Callable[[], None] | None = None

    # -- lifecycle --------------------------------------------------------

    async def start(self) -> None:
        self._mounted = True
        self._unsubscribe = self._event_bus.subscribe(PmsJobUploaded, self._handle_job_uploaded)
        await self.load_key_data()
        await self.load_referral_data()
        await self.tracker.start()
        await self.ensure_job_automation_status()

    async def close(self) -> None:
        self._mounted = False
        if self._unsubscribe is not None:
            self._unsubscribe()
            self._unsubscribe = None
        for editor in (self.review_editor, self.manual_entry):
            if editor is not None:
                editor.close()
        await self.tracker.stop()

    # -- derived state ----------------------------------------------------

    @property
    def stats(self) -> KeyDataStats:
        return self.key_data.stats if self.key_data is not None else KeyDataStats()

    @property
    def latest_job_id(self) -> int | None:
        return self.stats.latest_job_id

    @property
    def referral_pending(self) -> bool:
        return self.tracker.referral_pending

    @property
    def automation_status(self) -> AutomationStatus | None:
        return self.tracker.automation_status

    @property
    def show_client_approval_banner(self) -> bool:
        stats = self.stats
        return (
            not self.is_loading
            and stats.latest_job_is_approved is True
            and stats.latest_job_is_client_approved is not True
            and stats.latest_job_id is not None
        )

    @property
    def show_processing_notice(self) -> bool:
        stats = self.stats
        return (
            not self.is_loading
            and not self.show_client_approval_banner
            and stats.latest_job_id is not None
            and stats.latest_job_is_approved is not True
            and (self.local_processing or (stats.latest_job_status or "").lower() == "pending")
        )

    # -- loaders ----------------------------------------------------------

    async def load_key_data(self, silent: bool = False) -> None:
        if not silent:
            self.is_loading = True
            self.error = None
        try:
            key_data = await self._gateway.fetch_key_data(self.domain)
        except GatewayError as exc:
            if not self._mounted:
                return
            logger.error({"event": "pms_key_data_failed", "domain": self.domain, "error": exc.message})
            self.key_data = None
            self.error = exc.message
        else:
            if not self._mounted:
                return
            self.key_data = key_data
            if not silent:
                logger.info(
                    {
                        "event": "pms_key_data_loaded",
                        "domain": self.domain,
                        "month_count": len(key_data.months),
                        "source_count": len(key_data.sources),
                        "latest_job_id": key_data.stats.latest_job_id,
                        "latest_job_status": key_data.stats.latest_job_status,
                    }
                )
        finally:
            if self._mounted and not silent:
                self.is_loading = False
        self._apply_job_flags()

    def _apply_job_flags(self) -> None:
        stats = self.stats
        if stats.latest_job_id is None or stats.latest_job_is_approved is True:
            clear_processing(self._store, self.domain)
            self.local_processing = False
        elif stats.latest_job_is_approved is False:
            self.local_processing = True
        if (stats.latest_job_status or "").lower() == "pending":
            self.local_processing = True

    async def load_referral_data(self) -> None:
        if self.organization_id is None:
            self.referral_loading = False
            return
        self.referral_loading = True
        try:
            result = await self._gateway.fetch_referral_engine_output(self.organization_id)
        except GatewayError as exc:
            if not self._mounted:
                return
            logger.error({"event": "referral_engine_failed", "organization_id": self.organization_id, "error": exc.message})
            self.referral_data = None
            self.tracker.set_referral_pending(False)
        else:
            if not self._mounted:
                return
            if result.pending:
                self.referral_data = None
                self.tracker.set_referral_pending(True)
            else:
                self.tracker.set_referral_pending(False)
                if result.data:
                    self.referral_data = result.data
        finally:
            self.referral_loading = False

    async def ensure_job_automation_status(self) -> None:
        """Fetch the latest job's status when the approval banner shows but nothing is tracked."""
        job_id = self.latest_job_id
        if not self.show_client_approval_banner or self.automation_status is not None or job_id is None:
            return
        try:
            status = await self._gateway.fetch_automation_status(job_id)
        except GatewayError as exc:
            logger.warning({"event": "job_automation_status_failed", "job_id": job_id, "error": exc.message})
            return
        if status is not None and self._mounted:
            self.tracker.set_automation_status(status, job_id=job_id)

    # -- actions ----------------------------------------------------------

    async def confirm_client_approval(self) -> bool:
        job_id = self.latest_job_id
        if job_id is None:
            return False

        self.is_confirming = True
        self.banner_error = None
        self.referral_data = None
        self.tracker.set_referral_pending(True)
        try:
            await self._gateway.update_client_approval(job_id, True)
            clear_processing(self._store, self.domain)
            await self.load_key_data()
        except GatewayError as exc:
            logger.error({"event": "client_approval_failed", "job_id": job_id, "error": exc.message})
            self.banner_error = exc.message
            self.tracker.set_referral_pending(False)
            return False
        finally:
            self.is_confirming = False
        logger.info({"event": "client_approval_confirmed", "domain": self.domain, "job_id": job_id})
        return True

    def open_review_editor(self) -> LatestJobReviewSession:
        if self.review_editor is not None and self.review_editor.is_open:
            return self.review_editor
        raw = self.key_data.latest_job_raw if self.key_data is not None else None
        editor = LatestJobReviewSession(
            self._gateway,
            self.latest_job_id,
            on_confirm_approval=self.confirm_client_approval,
            on_saved=self._handle_editor_saved,
        )
        editor.open(raw)
        self.review_editor = editor
        return editor

    def open_viewer(self) -> ReadOnlyViewer:
        viewer = ReadOnlyViewer()
        viewer.open(self.key_data.latest_job_raw if self.key_data is not None else None)
        return viewer

    def open_manual_entry(self, location_id: int | None = None) -> ManualEntrySession:
        session = ManualEntrySession(
            self._gateway,
            self.domain,
            location_id=location_id,
            event_bus=self._event_bus,
            on_success=self._handle_upload_success,
        )
        session.open()
        self.manual_entry = session
        return session

    def uploader(self) -> PmsUploader:
        return PmsUploader(self._gateway, self._store, event_bus=self._event_bus)

    # -- callbacks --------------------------------------------------------

    async def _handle_job_uploaded(self, event: PmsJobUploaded) -> None:
        if event.client_id is not None and event.client_id != self.domain:
            return
        self.local_processing = True
        await self.load_key_data(silent=True)

    async def _handle_editor_saved(self) -> None:
        self.review_editor = None
        await self.load_key_data()

    async def _handle_upload_success(self) -> None:
        self.manual_entry = None
        self.referral_data = None
        self.tracker.set_referral_pending(True)
        await self.load_key_data(silent=True)

    async def _reload_for_banner(self) -> None:
        await self.load_key_data(silent=True)
