"""Tests for provider health checks."""

import pytest
from unittest.mock import AsyncMock, MagicMock

from app.models.audit_log import AuditLogEntry
from app.services.exceptions import VendorProtocolError
from app.services.health_service import HealthCheckService


@pytest.fixture
def adapter():
    adapter = MagicMock()
    adapter.probe = AsyncMock(return_value=["gpt-4o", "gpt-4o-mini"])
    return adapter


@pytest.fixture
def health_service(provider_service, adapter):
    return HealthCheckService(provider_service, adapter_lookup=lambda provider_type: adapter, delay_seconds=0)


class TestCheckProvider:
    """Single provider checks."""

    @pytest.mark.asyncio
    async def test_healthy_provider(self, health_service, adapter, make_provider, test_db):
        provider = make_provider("Main", is_healthy=False)

        result = await health_service.check_provider(test_db, provider.id)

        assert result["healthy"] is True
        assert result["error_message"] == ""
        assert result["available_models"] == ["gpt-4o", "gpt-4o-mini"]
        test_db.refresh(provider)
        assert provider.is_healthy is True
        assert provider.last_health_check is not None

        connection = adapter.probe.call_args.args[0]
        assert connection.api_key == "sk-test-key-1234567890"

        audit = test_db.query(AuditLogEntry).filter(AuditLogEntry.action == "health_check").one()
        assert audit.provider_id == provider.id
        assert audit.details["models_found"] == 2

    @pytest.mark.asyncio
    async def test_rejected_credentials_mark_unhealthy(self, health_service, adapter, make_provider, test_db):
        provider = make_provider("Main")
        adapter.probe.side_effect = VendorProtocolError("OpenAI API error: 401 - invalid key", status_code=401)

        result = await health_service.check_provider(test_db, provider.id)

        assert result["healthy"] is False
        assert "401" in result["error_message"]
        test_db.refresh(provider)
        assert provider.is_healthy is False

    @pytest.mark.asyncio
    async def test_provider_not_found(self, health_service, test_db):
        with pytest.raises(ValueError, match="not found"):
            await health_service.check_provider(test_db, 42)

    @pytest.mark.asyncio
    async def test_provider_without_key(self, health_service, make_provider, test_db):
        provider = make_provider("Keyless", api_key=None)

        with pytest.raises(ValueError, match="no API key"):
            await health_service.check_provider(test_db, provider.id)

    @pytest.mark.asyncio
    async def test_keyless_vendor_is_checked(self, health_service, make_provider, test_db):
        provider = make_provider("Local", provider_type="ollama", api_key=None)

        result = await health_service.check_provider(test_db, provider.id)

        assert result["healthy"] is True


class TestCheckAll:
    """Daily health sweep."""

    @pytest.mark.asyncio
    async def test_summary_and_audit(self, health_service, adapter, make_provider, test_db):
        make_provider("Good")
        make_provider("Bad", provider_type="anthropic")
        make_provider("NoKey", provider_type="mistral", api_key=None)

        async def probe(connection, client=None):
            if connection.name == "Bad":
                raise VendorProtocolError("Anthropic API error: 401", status_code=401)
            return ["model"]

        adapter.probe.side_effect = probe

        outcome = await health_service.check_all(test_db)

        assert outcome["summary"] == {"total_checked": 2, "healthy": 1, "unhealthy": 1, "failed": 0}
        assert [r["provider_name"] for r in outcome["results"]] == ["Good", "Bad"]

        audit = test_db.query(AuditLogEntry).filter(AuditLogEntry.action == "daily_health_check").one()
        assert audit.details["checked_providers"] == 2
        assert audit.details["healthy_providers"] == 1
