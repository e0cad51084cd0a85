"""Provider health checks."""

import asyncio
import logging
from datetime import datetime
from typing import Any, Callable, Dict, List, Optional

import httpx
from sqlalchemy.orm import Session

from app.models.audit_log import AuditLogEntry
from app.models.provider import Provider, ProviderType
from app.services.exceptions import ProviderError
from app.services.provider_service import ProviderService
from app.services.vendors import VendorAdapter, get_adapter

logger = logging.getLogger(__name__)

# vendors that run without credentials
KEYLESS_TYPES = (ProviderType.OLLAMA.value,)


class HealthCheckService:
    """Probe providers and keep their ``is_healthy`` flag current."""

    def __init__(
        self,
        provider_service: ProviderService,
        adapter_lookup: Callable[[str], VendorAdapter] = get_adapter,
        client: Optional[httpx.AsyncClient] = None,
        delay_seconds: float = 1.0
    ):
        """Initialize health check service.

        Args:
            provider_service: Provider service, used to decrypt credentials.
            adapter_lookup: Maps a provider type to its vendor adapter.
            client: Shared HTTP client for probes.
            delay_seconds: Pause between providers in ``check_all`` to avoid rate limits.
        """
        self.provider_service = provider_service
        self.adapter_lookup = adapter_lookup
        self.client = client
        self.delay_seconds = delay_seconds

    async def check_provider(self, db: Session, provider_id: int) -> Dict[str, Any]:
        """Probe one provider and record the outcome.

        Args:
            db: Database session.
            provider_id: Provider ID.

        Returns:
            Dictionary with ``healthy``, ``error_message``, ``available_models``
            and ``timestamp``.

        Raises:
            ValueError: If the provider does not exist or has no API key.
        """
        provider = self.provider_service.get_provider(db, provider_id)
        if not provider:
            raise ValueError(f"Provider {provider_id} not found")
        if not provider.api_key_encrypted and provider.provider_type not in KEYLESS_TYPES:
            raise ValueError("Provider has no API key configured")

        healthy = False
        error_message = ""
        available_models: List[str] = []

        try:
            connection = self.provider_service.to_connection(provider)
            adapter = self.adapter_lookup(provider.provider_type)
            available_models = await adapter.probe(connection, client=self.client)
            healthy = True
        except (ProviderError, ValueError, httpx.HTTPError) as e:
            logger.error(f"Health check failed for provider {provider_id}: {e}")
            error_message = str(e)

        now = datetime.utcnow()
        provider.is_healthy = healthy
        provider.last_health_check = now
        db.add(AuditLogEntry(
            provider_id=provider.id,
            action="health_check",
            details={
                "healthy": healthy,
                "error_message": error_message,
                "models_found": len(available_models),
                "models": available_models,
            }
        ))
        try:
            db.commit()
        except Exception as e:
            db.rollback()
            logger.error(f"Failed to update provider health for {provider_id}: {e}")

        logger.info(f"Health check for '{provider.name}': {'healthy' if healthy else 'unhealthy'}")
        return {
            "healthy": healthy,
            "error_message": error_message,
            "available_models": available_models,
            "timestamp": now.isoformat(),
        }

    async def check_all(self, db: Session) -> Dict[str, Any]:
        """Check every provider that can be probed and write a daily summary.

        Returns:
            Dictionary with per-provider ``results`` and a ``summary`` of counts.
        """
        providers = db.query(Provider).filter(
            (Provider.api_key_encrypted.isnot(None)) | (Provider.provider_type.in_(KEYLESS_TYPES))
        ).order_by(Provider.id).all()
        logger.info(f"Starting daily health check of {len(providers)} providers")

        results = []
        for index, provider in enumerate(providers):
            if index and self.delay_seconds:
                await asyncio.sleep(self.delay_seconds)
            try:
                outcome = await self.check_provider(db, provider.id)
                results.append({
                    "provider_id": provider.id,
                    "provider_name": provider.name,
                    "success": True,
                    "healthy": outcome["healthy"],
                    "models_count": len(outcome["available_models"]),
                })
            except ValueError as e:
                logger.error(f"Error checking provider {provider.name}: {e}")
                results.append({
                    "provider_id": provider.id,
                    "provider_name": provider.name,
                    "success": False,
                    "error": str(e),
                })

        summary = {
            "total_checked": len(results),
            "healthy": sum(1 for r in results if r["success"] and r["healthy"]),
            "unhealthy": sum(1 for r in results if r["success"] and not r["healthy"]),
            "failed": sum(1 for r in results if not r["success"]),
        }
        try:
            db.add(AuditLogEntry(
                action="daily_health_check",
                details={
                    "checked_providers": summary["total_checked"],
                    "healthy_providers": summary["healthy"],
                    "failed_checks": summary["failed"],
                    "results": results,
                }
            ))
            db.commit()
        except Exception as e:
            db.rollback()
            logger.error(f"Failed to write daily health check audit entry: {e}")

        logger.info(f"Daily health check completed: {summary}")
        return {"results": results, "summary": summary}
