"""
Scheduler service for periodic account refreshes.
Uses APScheduler; every run goes through the same cooldown gate as the UI.
"""
import logging
from datetime import datetime
from apscheduler.schedulers.asyncio import AsyncIOScheduler
from apscheduler.triggers.interval import IntervalTrigger

from database import SessionLocal, User
from core.config import settings
from services.tiktok_sync import SyncStatus, tiktok_sync

logger = logging.getLogger(__name__)


class AccountRefreshScheduler:
    """Refreshes every linked TikTok account on a fixed interval."""

    def __init__(self, session_factory=SessionLocal, sync_service=None):
        self.session_factory = session_factory
        self.sync_service = sync_service or tiktok_sync
        self.scheduler = AsyncIOScheduler()
        self.last_run: dict | None = None
        self._setup_jobs()

    def _setup_jobs(self):
        """Configure all scheduled jobs."""
        self.scheduler.add_job(
            self.refresh_linked_accounts,
            IntervalTrigger(minutes=settings.SCHEDULER_INTERVAL_MINUTES),
            id="account_refresh",
            name="Linked Account Refresh",
            replace_existing=True,
            max_instances=1,
            coalesce=True,
        )

    async def start(self):
        """Start the scheduler."""
        if settings.SCHEDULER_ENABLED:
            self.scheduler.start()
            logger.info(f"Scheduler started. Account refresh every {settings.SCHEDULER_INTERVAL_MINUTES} min")
        else:
            logger.info("Scheduler disabled via SCHEDULER_ENABLED=false")

    async def stop(self):
        """Stop the scheduler gracefully."""
        if self.scheduler.running:
            self.scheduler.shutdown(wait=True)
            logger.info("Scheduler stopped")

    async def refresh_linked_accounts(self) -> dict:
        """Refresh all active users with a linked username. Returns counts per status."""
        logger.info(f"Starting account refresh at {datetime.utcnow()}")
        counts: dict[str, int] = {}

        db = self.session_factory()
        try:
            users = (
                db.query(User)
                .filter(User.is_active == True, User.tiktok_username.isnot(None), User.tiktok_username != "")
                .order_by(User.id)
                .all()
            )
            for user in users:
                try:
                    outcome = await self.sync_service.refresh_account(db, user)
                    status = outcome.status.value
                except Exception as e:
                    db.rollback()
                    logger.error(f"Scheduled refresh crashed for user {user.id}: {e}")
                    status = SyncStatus.PROVIDER_ERROR.value
                counts[status] = counts.get(status, 0) + 1

            logger.info(f"Account refresh completed for {len(users)} user(s): {counts}")
        finally:
            db.close()

        self.last_run = {"at": datetime.utcnow().isoformat(), "counts": counts}
        return counts

    def get_status(self) -> dict:
        """Get scheduler status and job info."""
        jobs = []
        for job in self.scheduler.get_jobs():
            next_run = getattr(job, "next_run_time", None)
            jobs.append({
                "id": job.id,
                "name": job.name,
                "next_run": next_run.isoformat() if next_run else None,
            })
        return {
            "enabled": settings.SCHEDULER_ENABLED,
            "running": self.scheduler.running,
            "jobs": jobs,
            "last_run": self.last_run,
        }


scheduler = AccountRefreshScheduler()
