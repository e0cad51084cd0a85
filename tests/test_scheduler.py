"""Tests for scheduled maintenance jobs."""

import pytest
from unittest.mock import AsyncMock, MagicMock, patch

from app.services import scheduler as scheduler_module
from app.services.scheduler import GatewayScheduler, run_catalog_sync, run_health_checks


def test_register_default_jobs(monkeypatch):
    monkeypatch.setattr(scheduler_module.settings, "catalog_sync_hour", 2)
    monkeypatch.setattr(scheduler_module.settings, "catalog_sync_minute", 30)
    monkeypatch.setattr(scheduler_module.settings, "health_check_hour", 5)
    gateway_scheduler = GatewayScheduler(timezone="UTC")

    gateway_scheduler.register_default_jobs()

    jobs = {job.id: job for job in gateway_scheduler.scheduler.get_jobs()}
    assert set(jobs) == {"catalog_sync", "daily_health_check"}
    assert str(jobs["catalog_sync"].trigger.fields[5]) == "2"
    assert str(jobs["catalog_sync"].trigger.fields[6]) == "30"
    assert str(jobs["daily_health_check"].trigger.fields[5]) == "5"
    assert gateway_scheduler.running is False


def test_register_is_idempotent():
    gateway_scheduler = GatewayScheduler(timezone="UTC")

    gateway_scheduler.register_default_jobs()
    gateway_scheduler.register_default_jobs()

    assert len(gateway_scheduler.scheduler.get_jobs()) == 2


def test_shutdown_when_not_started():
    gateway_scheduler = GatewayScheduler(timezone="UTC")
    gateway_scheduler.shutdown()
    assert gateway_scheduler.running is False


@pytest.mark.asyncio
async def test_start_and_shutdown():
    gateway_scheduler = GatewayScheduler(timezone="UTC")

    gateway_scheduler.start()
    gateway_scheduler.start()
    assert gateway_scheduler.running is True

    gateway_scheduler.shutdown()
    assert gateway_scheduler.running is False


@pytest.mark.asyncio
async def test_catalog_job_skips_when_refresh_running():
    db = MagicMock()
    service = MagicMock()
    service.refresh_catalog = AsyncMock(side_effect=RuntimeError("A catalog refresh is already in progress"))

    with patch.object(scheduler_module, "SessionLocal", return_value=db), \
            patch.object(scheduler_module, "EncryptionService"), \
            patch.object(scheduler_module, "CatalogSyncService", return_value=service):
        await run_catalog_sync()

    service.refresh_catalog.assert_awaited_once_with(db)
    db.close.assert_called_once()


@pytest.mark.asyncio
async def test_health_job_closes_session():
    db = MagicMock()
    service = MagicMock()
    service.check_all = AsyncMock(return_value={"results": [], "summary": {"total_checked": 0}})

    with patch.object(scheduler_module, "SessionLocal", return_value=db), \
            patch.object(scheduler_module, "EncryptionService"), \
            patch.object(scheduler_module, "HealthCheckService", return_value=service):
        await run_health_checks()

    service.check_all.assert_awaited_once_with(db)
    db.close.assert_called_once()
