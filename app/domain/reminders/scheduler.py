"""In-process reminder scheduler with an explicit start/stop lifecycle"""

import asyncio
import logging
from datetime import datetime
from typing import Callable, Optional

from ...config import REMINDER_INTERVAL_MINUTES
from ...database import SessionLocal
from ...services.notification_service import NotificationDispatcher
from ...shared.timeutils import local_now
from .service import DoctorReminderService

logger = logging.getLogger(__name__)


class ReminderScheduler:
    """Runs both reminder passes every ``interval_minutes`` on the event loop"""

    def __init__(
        self,
        dispatcher: NotificationDispatcher,
        session_factory=SessionLocal,
        interval_minutes: int = REMINDER_INTERVAL_MINUTES,
        clock: Callable[[], datetime] = local_now,
    ):
        self.dispatcher = dispatcher
        self.session_factory = session_factory
        self.interval_minutes = interval_minutes
        self.clock = clock
        self.last_run: Optional[datetime] = None
        self.last_summary: Optional[dict] = None
        self._task: Optional[asyncio.Task] = None
        self._lock = asyncio.Lock()

    @property
    def running(self) -> bool:
        return self._task is not None and not self._task.done()

    def start(self) -> None:
        if self.running:
            logger.warning("⚠️ Reminder scheduler is already running")
            return
        self._task = asyncio.get_running_loop().create_task(self._loop())
        logger.info(f"🚀 Reminder scheduler started (runs every {self.interval_minutes} minutes)")

    async def stop(self) -> None:
        if not self.running:
            return
        self._task.cancel()
        try:
            await self._task
        except asyncio.CancelledError:
            pass
        self._task = None
        logger.info("🛑 Reminder scheduler stopped")

    async def _loop(self) -> None:
        while True:
            await asyncio.sleep(self.interval_minutes * 60)
            try:
                logger.info(f"⏰ Running reminder check at {self.clock().isoformat()}")
                await self.trigger_now()
            except Exception as e:
                logger.error(f"❌ Error in scheduled reminder check: {e}")

    def _run_once(self) -> dict:
        db = self.session_factory()
        try:
            return DoctorReminderService(db, self.dispatcher, self.clock).run_all()
        finally:
            db.close()

    async def trigger_now(self) -> dict:
        """Run both passes now and return the summary; runs never overlap"""
        async with self._lock:
            summary = await asyncio.to_thread(self._run_once)
        self.last_run = self.clock()
        self.last_summary = summary
        return summary

    def status(self) -> dict:
        return {
            "running": self.running,
            "intervalMinutes": self.interval_minutes,
            "lastRun": self.last_run.isoformat() if self.last_run else None,
            "lastSummary": self.last_summary,
        }
