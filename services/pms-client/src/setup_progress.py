"""
Onboarding setup tracker.

Three steps: connect the Google APIs, upload PMS data, and wait a day for the
first insights. Progress lives in the client state store so it survives
restarts. Local changes are saved optimistically and reconciled against the
server by a debounced refresh.
"""

from __future__ import annotations

import asyncio
import logging
from dataclasses import asdict, dataclass, fields
from datetime import datetime, timedelta, timezone
from typing import Any, Callable, Dict, Optional

from event_bus import EventBus, PmsJobUploaded
from gateway import GatewayError, PmsGateway
from payloads import KeyData
from persistence import ClientStateStore

logger = logging.getLogger(__name__)

SETUP_PROGRESS_KEY = "setupProgress"
INSIGHTS_DELAY = timedelta(hours=24)
DEFAULT_SYNC_DELAY_SECONDS = 2.0
REQUIRED_INTEGRATIONS = ("ga4", "gsc", "gbp")


@dataclass
class SetupProgress:
    step1_api_connected: bool = False
    step2_pms_uploaded: bool = False
    step2_pms_uploaded_at: Optional[str] = None
    step3_insights_ready: bool = False
    dismissed: bool = False
    completed: bool = False

    @classmethod
    def from_stored(cls, raw: Any) -> "SetupProgress":
        """Merge a stored dict over the defaults, ignoring unknown keys."""
        if not isinstance(raw, dict):
            return cls()
        known = {item.name for item in fields(cls)}
        return cls(**{key: value for key, value in raw.items() if key in known})

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


def _parse_timestamp(value: str) -> datetime:
    parsed = datetime.fromisoformat(value.replace("Z", "+00:00"))
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed


def insights_due(uploaded_at: Optional[str], now: datetime) -> bool:
    if not uploaded_at:
        return False
    try:
        uploaded = _parse_timestamp(uploaded_at)
    except ValueError:
        logger.warning({"event": "setup_progress_bad_timestamp", "value": uploaded_at})
        return False
    return now - uploaded >= INSIGHTS_DELAY


def _all_connected(properties: Dict[str, Any]) -> bool:
    gbp = properties.get("gbp")
    return bool(properties.get("ga4")) and bool(properties.get("gsc")) and bool(gbp) and len(gbp) > 0


def _all_scopes_granted(scopes: Dict[str, Any]) -> bool:
    return all(bool((scopes.get(name) or {}).get("granted")) for name in REQUIRED_INTEGRATIONS)


class SetupProgressTracker:
    def __init__(
        self,
        gateway: PmsGateway,
        store: ClientStateStore,
        *,
        domain: str | None = None,
        event_bus: EventBus | None = None,
        sync_delay: float = DEFAULT_SYNC_DELAY_SECONDS,
        clock: Callable[[], datetime] | None = None,
    ) -> None:
        self._gateway = gateway
        self._store = store
        self._domain = domain
        self._sync_delay = sync_delay
        self._clock = clock or (lambda: datetime.now(timezone.utc))
        self.progress = self._load()
        self.is_loading = True
        self.just_completed_step: int | None = None
        self._initial_load = True
        self._sync_task: asyncio.Task[None] | None = None
        self._unsubscribe = (
            event_bus.subscribe(PmsJobUploaded, self._handle_upload) if event_bus is not None else None
        )

    # -- storage ----------------------------------------------------------

    def _load(self) -> SetupProgress:
        return SetupProgress.from_stored(self._store.get(SETUP_PROGRESS_KEY))

    def _save(self, progress: SetupProgress) -> None:
        self.progress = progress
        self._store.set(SETUP_PROGRESS_KEY, progress.to_dict())

    # -- server reconciliation -------------------------------------------

    async def refresh(self, now: datetime | None = None) -> SetupProgress:
        now = now or self._clock()
        properties, scopes = await asyncio.gather(
            self._gateway.fetch_properties(),
            self._gateway.fetch_scopes(),
            return_exceptions=True,
        )
        for result in (properties, scopes):
            if isinstance(result, GatewayError):
                logger.error({"event": "setup_progress_refresh_failed", "error": result.message})
                self._finish_initial_load()
                return self.progress
            if isinstance(result, BaseException):
                raise result

        key_data: KeyData | None
        try:
            key_data = await self._gateway.fetch_key_data(self._domain)
        except GatewayError as exc:
            logger.warning({"event": "setup_progress_key_data_failed", "error": exc.message})
            key_data = None

        stored = self._load()
        step1 = _all_connected(properties) and _all_scopes_granted(scopes)
        uploaded_at = stored.step2_pms_uploaded_at
        if key_data is not None and key_data.stats.job_count > 0:
            step2 = True
            uploaded_at = uploaded_at or key_data.stats.earliest_job_timestamp
        elif key_data is None:
            step2 = stored.step2_pms_uploaded
        else:
            step2 = False
        step3 = step2 and insights_due(uploaded_at, now)

        updated = SetupProgress(
            step1_api_connected=step1,
            step2_pms_uploaded=step2,
            step2_pms_uploaded_at=uploaded_at,
            step3_insights_ready=step3,
            dismissed=stored.dismissed,
            completed=step1 and step2 and step3,
        )

        if not self._initial_load:
            previous = self.progress
            if not previous.step1_api_connected and step1:
                self.just_completed_step = 1
            elif not previous.step2_pms_uploaded and step2:
                self.just_completed_step = 2
            elif not previous.step3_insights_ready and step3:
                self.just_completed_step = 3

        self._save(updated)
        self._finish_initial_load()
        return updated

    def _finish_initial_load(self) -> None:
        if self._initial_load:
            self._initial_load = False
            self.is_loading = False

    def schedule_sync(self) -> None:
        """Refresh from the server after `sync_delay`; a newer call replaces a pending one."""
        if self._sync_task is not None and not self._sync_task.done():
            self._sync_task.cancel()
        self._sync_task = asyncio.create_task(self._delayed_refresh(), name="setup-progress-sync")

    async def _delayed_refresh(self) -> None:
        await asyncio.sleep(self._sync_delay)
        await self.refresh()

    async def wait_for_sync(self) -> None:
        task = self._sync_task
        if task is not None:
            await asyncio.gather(task, return_exceptions=True)

    async def close(self) -> None:
        if self._unsubscribe is not None:
            self._unsubscribe()
            self._unsubscribe = None
        if self._sync_task is not None and not self._sync_task.done():
            self._sync_task.cancel()
            await self.wait_for_sync()

    # -- local transitions ------------------------------------------------

    def _handle_upload(self, event: PmsJobUploaded) -> None:
        self.mark_pms_uploaded()

    def mark_pms_uploaded(self, now: datetime | None = None) -> None:
        now = now or self._clock()
        current = self.progress
        if not current.step2_pms_uploaded:
            self.just_completed_step = 2
        self._save(
            SetupProgress(
                **{
                    **current.to_dict(),
                    "step2_pms_uploaded": True,
                    "step2_pms_uploaded_at": current.step2_pms_uploaded_at or now.isoformat(),
                }
            )
        )
        self.schedule_sync()

    def check_insights_ready(self, now: datetime | None = None) -> bool:
        now = now or self._clock()
        current = self.progress
        if not current.step2_pms_uploaded or current.step3_insights_ready:
            return current.step3_insights_ready
        if not insights_due(current.step2_pms_uploaded_at, now):
            return False
        self._save(
            SetupProgress(
                **{
                    **current.to_dict(),
                    "step3_insights_ready": True,
                    "completed": current.step1_api_connected and current.step2_pms_uploaded,
                }
            )
        )
        return True

    def mark_api_connected(self) -> None:
        current = self.progress
        if not current.step1_api_connected:
            self.just_completed_step = 1
        self._save(SetupProgress(**{**current.to_dict(), "step1_api_connected": True}))

    def mark_api_disconnected(self) -> None:
        self._save(SetupProgress(**{**self.progress.to_dict(), "step1_api_connected": False, "completed": False}))

    def dismiss(self) -> None:
        self._save(SetupProgress(**{**self.progress.to_dict(), "dismissed": True}))

    def reset(self) -> None:
        self._save(SetupProgress())

    def clear_just_completed(self) -> None:
        self.just_completed_step = None
