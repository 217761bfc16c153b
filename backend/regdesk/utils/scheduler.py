# /regdesk/utils/scheduler.py

import logging
from datetime import datetime
from typing import Optional

from apscheduler.schedulers.asyncio import AsyncIOScheduler

from regdesk.config.settings import settings
from regdesk.services.session_store import SessionStore, session_store

# Periodic expiry of idle sessions, run inside the web process so it shares
# the in-memory store.

logger = logging.getLogger(__name__)


class SessionSweeper:
    def __init__(self, store: SessionStore, interval_seconds: int, ttl_seconds: int):
        self.store = store
        self.interval_seconds = interval_seconds
        self.ttl_seconds = ttl_seconds
        self.scheduler: Optional[AsyncIOScheduler] = None

    async def sweep(self) -> int:
        try:
            return await self.store.expire_stale(datetime.utcnow(), self.ttl_seconds)
        except Exception:
            logger.error("Idle session sweep failed.", exc_info=True)
            return 0

    def start(self):
        if self.scheduler is not None:
            return
        self.scheduler = AsyncIOScheduler(timezone="UTC")
        self.scheduler.add_job(
            self.sweep,
            'interval',
            seconds=self.interval_seconds,
            id="expire_idle_sessions_job",
            max_instances=1,
            coalesce=True,
            replace_existing=True,
        )
        self.scheduler.start()
        logger.info(f"Scheduled job: expire_idle_sessions (every {self.interval_seconds} seconds).")

    def stop(self):
        if self.scheduler is not None:
            self.scheduler.shutdown(wait=False)
            self.scheduler = None


# Globally accessible instance
session_sweeper = SessionSweeper(session_store, settings.session_sweep_interval_seconds, settings.session_ttl_seconds)
