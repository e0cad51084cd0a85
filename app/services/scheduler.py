"""Scheduled maintenance jobs: nightly catalog refresh and daily health checks."""

import logging
from typing import Any, Callable, Optional

from apscheduler.schedulers.asyncio import AsyncIOScheduler
from apscheduler.triggers.cron import CronTrigger

from app.config import settings
from app.database.database import SessionLocal
from app.services.catalog_sync_service import CatalogSyncService
from app.services.encryption_service import EncryptionService
from app.services.health_service import HealthCheckService
from app.services.provider_service import ProviderService

logger = logging.getLogger(__name__)


async def run_catalog_sync() -> None:
    """Refresh the model catalog for all active providers."""
    db = SessionLocal()
    try:
        service = CatalogSyncService(ProviderService(EncryptionService()))
        summary = await service.refresh_catalog(db)
        logger.info(f"Scheduled catalog refresh processed {summary['providers_processed']} providers")
    except RuntimeError as e:
        logger.warning(f"Scheduled catalog refresh skipped: {e}")
    finally:
        db.close()


async def run_health_checks() -> None:
    """Probe every configured provider."""
    db = SessionLocal()
    try:
        service = HealthCheckService(ProviderService(EncryptionService()))
        result = await service.check_all(db)
        logger.info(f"Scheduled health check summary: {result['summary']}")
    finally:
        db.close()


class GatewayScheduler:
    """Thin wrapper around APScheduler's asyncio scheduler."""

    def __init__(self, timezone: Optional[str] = None):
        self.timezone = timezone or settings.scheduler_timezone
        self.scheduler = AsyncIOScheduler(timezone=self.timezone)
        self._started = False

    def add_cron_job(
        self,
        func: Callable[..., Any],
        hour: int,
        minute: int = 0,
        job_id: Optional[str] = None
    ) -> None:
        job_id = job_id or func.__name__
        self.scheduler.add_job(
            func,
            CronTrigger(hour=hour, minute=minute, timezone=self.timezone),
            id=job_id,
            name=job_id,
            replace_existing=True,
        )
        logger.info(f"Registered scheduled job {job_id} at {hour:02d}:{minute:02d} ({self.timezone})")

    def register_default_jobs(self) -> None:
        self.add_cron_job(
            run_catalog_sync,
            hour=settings.catalog_sync_hour,
            minute=settings.catalog_sync_minute,
            job_id="catalog_sync"
        )
        self.add_cron_job(run_health_checks, hour=settings.health_check_hour, job_id="daily_health_check")

    def start(self) -> None:
        if self._started:
            logger.warning("Scheduler already running")
            return
        self.scheduler.start()
        self._started = True
        logger.info(f"Scheduler started ({self.timezone})")

    def shutdown(self) -> None:
        if not self._started:
            return
        self.scheduler.shutdown(wait=False)
        self._started = False
        logger.info("Scheduler stopped")

    @property
    def running(self) -> bool:
        return self._started
