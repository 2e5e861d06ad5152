"""
Scheduler Service for periodic full source syncs

Runs a full multi-agency sync whenever the last completed one is older than
full_sync_frequency_hours. Only one sync runs at a time.
"""

import asyncio
import logging
from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
from typing import Optional

from supabase import Client

from config.sync_config import get_config, SourceSyncConfig
from .source_sync_orchestrator import SourceSyncOrchestrator, FullSyncResult

logger = logging.getLogger(__name__)


@dataclass
class ScheduleStatus:
    """Current state of the full-sync schedule"""
    last_run_at: Optional[datetime] = None
    next_run_at: Optional[datetime] = None
    is_due: bool = False
    is_running: bool = False
    last_updated: datetime = field(default_factory=lambda: datetime.now(timezone.utc))


def _parse_started_at(value: str) -> datetime:
    started = datetime.fromisoformat(value.replace('Z', '+00:00'))
    if started.tzinfo is None:
        started = started.replace(tzinfo=timezone.utc)
    return started


class SchedulerService:
    """
    Service for scheduling full syncs.

    Manages:
    - Checking if a full sync is due
    - Preventing overlapping runs
    - Running continuously as a daemon
    """

    def __init__(
        self,
        supabase_client: Client,
        config: Optional[SourceSyncConfig] = None,
        orchestrator: Optional[SourceSyncOrchestrator] = None
    ):
        self.supabase = supabase_client
        self.config = config or get_config()
        self.orchestrator = orchestrator or SourceSyncOrchestrator(supabase_client, self.config)

        self._running = False
        self._lock = asyncio.Lock()

    async def get_schedule_status(self, now: Optional[datetime] = None) -> ScheduleStatus:
        """
        Work out when the last full sync ran and when the next one is due.

        Args:
            now: Reference time (defaults to current UTC time)
        """
        now = now or datetime.now(timezone.utc)
        status = ScheduleStatus(is_running=self._running, last_updated=now)

        last_run = await self.orchestrator.get_last_sync_run('full')
        if not last_run or not last_run.get('started_at'):
            status.next_run_at = now
            status.is_due = True
            return status

        try:
            status.last_run_at = _parse_started_at(last_run['started_at'])
        except ValueError:
            logger.error(f"Unparsable started_at on last sync run: {last_run.get('started_at')!r}")
            status.next_run_at = now
            status.is_due = True
            return status

        next_run = status.last_run_at + timedelta(hours=self.config.full_sync_frequency_hours)
        status.is_due = next_run <= now
        status.next_run_at = now if status.is_due else next_run
        return status

    async def should_run_full_sync(self, now: Optional[datetime] = None) -> bool:
        status = await self.get_schedule_status(now)
        if status.is_due:
            logger.info(f"Full sync is due (last run: {status.last_run_at or 'never'})")
        return status.is_due

    async def run_scheduled_sync(self, force: bool = False) -> Optional[FullSyncResult]:
        """
        Run a full sync if one is due (or forced) and none is running.

        Returns:
            FullSyncResult, or None when nothing ran
        """
        if self._lock.locked():
            logger.warning("Full sync already running, skipping")
            return None

        async with self._lock:
            if not force and not await self.should_run_full_sync():
                return None

            self._running = True
            try:
                return await self.orchestrator.sync_all_agencies()
            finally:
                self._running = False

    def is_running(self) -> bool:
        return self._running

    async def run_continuous(
        self,
        check_interval_seconds: int = 300,
        max_iterations: Optional[int] = None
    ):
        """
        Run the scheduler continuously, checking whether a full sync is due.

        Args:
            check_interval_seconds: Seconds between schedule checks
            max_iterations: Maximum number of check iterations (None = infinite)
        """
        logger.info(f"Starting continuous scheduler (check interval: {check_interval_seconds}s)")

        iteration = 0
        while max_iterations is None or iteration < max_iterations:
            try:
                result = await self.run_scheduled_sync()

                if result:
                    logger.info(f"Full sync {'succeeded' if result.success else 'failed'}: "
                                f"{result.properties_processed} properties")

                await asyncio.sleep(check_interval_seconds)

            except asyncio.CancelledError:
                logger.info("Scheduler cancelled, shutting down...")
                break
            except Exception as e:
                logger.error(f"Error in scheduler loop: {e}")
                await asyncio.sleep(check_interval_seconds)

            iteration += 1

        logger.info("Scheduler stopped")
