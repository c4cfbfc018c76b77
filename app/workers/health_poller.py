"""Timer that drives the health event synchronization."""

from __future__ import annotations

import asyncio

from app.core.config import ConfigurationError, Settings
from app.core.logger import get_logger
from app.services.cache_store import CacheStoreError
from app.services.event_source import EventQueryError
from app.services.sync_engine import SyncResult, SyncService

logger = get_logger(component="HealthPoller")


class HealthPoller:
    """
    Runs one sync cycle per interval until shutdown is requested.

    Cycles run sequentially in a single task, so two cycles of the same
    process never overlap. A failed cycle is logged and the next tick retries
    from whatever snapshot is stored; nothing is written on failure.
    """

    def __init__(
        self,
        *,
        sync_service: SyncService,
        interval_seconds: float = 900,
        run_on_startup: bool = True,
    ) -> None:
        self._sync_service = sync_service
        self._interval_seconds = interval_seconds
        self._run_on_startup = run_on_startup
        self._running = False
        self._stop_event = asyncio.Event()
        self._shutdown_event = asyncio.Event()

    async def run_forever(self) -> None:
        """Start ticking and keep going until shutdown is requested."""
        self._running = not self._stop_event.is_set()
        logger.info("Starting health poller", interval_seconds=self._interval_seconds)

        try:
            if not self._run_on_startup:
                await self._sleep()
            while self._running:
                try:
                    await self.tick()
                except asyncio.CancelledError:
                    logger.info("Poller task cancelled, shutting down gracefully")
                    break
                except Exception as exc:
                    logger.exception("Unexpected error in poller loop", error=str(exc))
                await self._sleep()
        finally:
            logger.info("Health poller stopped")
            self._shutdown_event.set()

    async def shutdown(self) -> None:
        """Signal the poller to stop and wait for the current cycle to finish."""
        logger.info("Shutdown requested for health poller")
        self._running = False
        self._stop_event.set()
        await self._shutdown_event.wait()

    async def tick(self) -> SyncResult | None:
        """Run a single sync cycle. Expected failures are logged, not raised."""
        try:
            return await self._sync_service.run_once()
        except ConfigurationError as exc:
            logger.error("Health poller is not configured, skipping cycle", error=str(exc))
        except EventQueryError as exc:
            logger.error("Health event query failed, cache left unchanged", error=str(exc))
        except CacheStoreError as exc:
            logger.error("Cache storage failed, cache left unchanged", error=str(exc), error_type=type(exc).__name__)
        return None

    async def _sleep(self) -> None:
        if not self._running:
            return
        try:
            await asyncio.wait_for(self._stop_event.wait(), timeout=self._interval_seconds)
        except asyncio.TimeoutError:
            pass


def build_poller(settings: Settings, sync_service: SyncService) -> HealthPoller | None:
    """
    Build the poller from settings.

    Returns None if the poller is disabled or the subscription is not configured.
    """
    if not settings.enable_health_poller:
        logger.info("Health poller is disabled via ENABLE_HEALTH_POLLER")
        return None

    missing = settings.missing_settings()
    if missing:
        logger.warning("Health poller enabled but required settings are missing", missing=missing)
        if not settings.subscription_id:
            return None

    return HealthPoller(
        sync_service=sync_service,
        interval_seconds=settings.poll_interval_seconds,
        run_on_startup=settings.poll_on_startup,
    )
