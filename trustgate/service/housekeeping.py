"""Background sweep of expired recovery, email change and device rows.

Expiry of recovery and email change tokens is already enforced at read time;
this worker only reclaims storage. Active devices are never swept.
"""

from __future__ import annotations

import asyncio
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import TYPE_CHECKING, Optional

from trustgate.logging import get_logger, set_correlation_id
from trustgate.storage.models import utcnow

if TYPE_CHECKING:
    from trustgate.service.devices import DeviceTrustManager
    from trustgate.storage.base import Store

logger = get_logger(__name__)

DEFAULT_INTERVAL_SECONDS = 3600
MAX_BACKOFF_SECONDS = 6 * 3600


@dataclass(frozen=True)
class SweepReport:
    recoveries: int
    email_changes: int
    devices: int


class HousekeepingWorker:
    def __init__(
        self,
        store: "Store",
        devices: "DeviceTrustManager",
        *,
        interval: int = DEFAULT_INTERVAL_SECONDS,
        recovery_ttl: timedelta = timedelta(hours=1),
        email_change_ttl: timedelta = timedelta(hours=1),
        inactive_device_ttl: timedelta = timedelta(days=60),
    ) -> None:
        self.store = store
        self.devices = devices
        self.interval = interval
        self.recovery_ttl = recovery_ttl
        self.email_change_ttl = email_change_ttl
        self.inactive_device_ttl = inactive_device_ttl
        self._running = False
        self._task: Optional[asyncio.Task] = None

    @property
    def running(self) -> bool:
        return self._running

    async def start(self) -> None:
        if self._running:
            logger.warning("housekeeping_already_running")
            return
        self._running = True
        self._task = asyncio.create_task(self._run_loop())
        logger.info("housekeeping_started", interval=self.interval)

    async def stop(self) -> None:
        self._running = False
        if self._task:
            self._task.cancel()
            try:
                await self._task
            except asyncio.CancelledError:
                pass
            self._task = None
        logger.info("housekeeping_stopped")

    async def run_once(self, now: Optional[datetime] = None) -> SweepReport:
        now = now or utcnow()
        recoveries = self.store.delete_expired_recoveries(now - self.recovery_ttl)
        email_changes = self.store.delete_expired_email_changes(now - self.email_change_ttl)
        devices = await self.devices.sweep_stale(now - self.inactive_device_ttl)
        report = SweepReport(
            recoveries=recoveries, email_changes=email_changes, devices=len(devices)
        )
        logger.info(
            "housekeeping_sweep_complete",
            recoveries=report.recoveries,
            email_changes=report.email_changes,
            devices=report.devices,
        )
        return report

    async def _run_loop(self) -> None:
        consecutive_errors = 0
        while self._running:
            set_correlation_id()
            try:
                await self.run_once()
                consecutive_errors = 0
            except Exception as exc:
                consecutive_errors += 1
                logger.error(
                    "housekeeping_sweep_error",
                    error=str(exc),
                    error_type=type(exc).__name__,
                    consecutive_errors=consecutive_errors,
                )
            delay = self.interval
            if consecutive_errors > 3:
                delay = min(MAX_BACKOFF_SECONDS, self.interval * (2 ** (consecutive_errors - 3)))
            await asyncio.sleep(delay)
