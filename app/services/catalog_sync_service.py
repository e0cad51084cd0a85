"""Model catalog synchronization against vendor model listings."""

import asyncio
import logging
from datetime import datetime
from typing import Any, Callable, Dict, List, Optional

import httpx
from sqlalchemy.orm import Session

from app.models.audit_log import AuditLogEntry
from app.models.model_catalog import CapabilityTier, ModelCatalogEntry, Modality
from app.models.provider import Provider
from app.services.exceptions import CatalogProviderError, ProviderError
from app.services.provider_service import ProviderService
from app.services.vendors import ModelInfo, VendorAdapter, get_adapter

logger = logging.getLogger(__name__)

METADATA_FIELDS = (
    "display_name",
    "description",
    "max_context_length",
    "supports_vision",
    "supports_function_calling",
    "cost_per_1k_input_tokens",
    "cost_per_1k_output_tokens",
)


class CatalogSyncService:
    """Reconcile the stored model catalog with what each active provider offers."""

    # Class-level lock to prevent concurrent refresh runs
    _sync_lock = asyncio.Lock()
    _current_run_started_at: Optional[datetime] = None

    def __init__(
        self,
        provider_service: ProviderService,
        adapter_lookup: Callable[[str], VendorAdapter] = get_adapter,
        client: Optional[httpx.AsyncClient] = None
    ):
        """Initialize catalog sync service.

        Args:
            provider_service: Provider service, used to decrypt credentials.
            adapter_lookup: Maps a provider type to its vendor adapter.
            client: Shared HTTP client for listing calls.
        """
        self.provider_service = provider_service
        self.adapter_lookup = adapter_lookup
        self.client = client
        self._type_locks: Dict[str, asyncio.Lock] = {}

    async def refresh_catalog(self, db: Session, provider_ids: Optional[List[int]] = None) -> Dict[str, Any]:
        """Refresh the catalog for all active providers.

        Listings are fetched concurrently. A provider whose fetch fails is
        reported in its own result and does not affect the others.

        Args:
            db: Database session.
            provider_ids: Optional subset of providers to refresh.

        Returns:
            Summary with ``total_added``, ``total_updated``, ``total_deprecated``,
            ``providers_processed`` and per-provider ``results``.

        Raises:
            RuntimeError: If another refresh is already in progress.
        """
        if self._sync_lock.locked():
            logger.warning("Catalog refresh already in progress")
            raise RuntimeError("A catalog refresh is already in progress")

        async with self._sync_lock:
            CatalogSyncService._current_run_started_at = datetime.utcnow()
            try:
                query = db.query(Provider).filter(Provider.is_active.is_(True))
                if provider_ids:
                    query = query.filter(Provider.id.in_(provider_ids))
                providers = query.order_by(Provider.id).all()

                logger.info(f"Starting model catalog refresh for {len(providers)} providers")
                results = await asyncio.gather(*[self._refresh_provider(db, p) for p in providers])

                summary = {
                    "total_added": sum(r.get("added", 0) for r in results),
                    "total_updated": sum(r.get("updated", 0) for r in results),
                    "total_deprecated": sum(r.get("deprecated", 0) for r in results),
                    "providers_processed": len(providers),
                    "results": list(results),
                }
                self._audit(db, summary)

                logger.info(
                    f"Model refresh complete: {summary['total_added']} added, "
                    f"{summary['total_updated']} updated, {summary['total_deprecated']} deprecated"
                )
                return summary
            finally:
                CatalogSyncService._current_run_started_at = None

    async def _refresh_provider(self, db: Session, provider: Provider) -> Dict[str, Any]:
        result = {"provider": provider.name, "type": provider.provider_type}
        logger.info(f"Refreshing models for provider: {provider.name} ({provider.provider_type})")

        try:
            models = await self.fetch_models(provider)
            async with self._type_lock(provider.provider_type):
                stats = self.reconcile(db, provider.provider_type, models)
                provider.last_fetched_at = datetime.utcnow()
                db.commit()
        except CatalogProviderError as e:
            logger.error(f"Failed to refresh {provider.name}: {e}")
            result.update({"success": False, "error": str(e)})
            return result
        except Exception as e:
            db.rollback()
            logger.error(f"Failed to store models for {provider.name}: {e}")
            result.update({"success": False, "error": str(e)})
            return result

        logger.info(
            f"{provider.name}: +{stats['added']} added, ~{stats['updated']} updated, "
            f"-{stats['deprecated']} deprecated"
        )
        result.update(stats)
        result["success"] = True
        return result

    async def fetch_models(self, provider: Provider) -> List[ModelInfo]:
        """Fetch one provider's model listing.

        Raises:
            CatalogProviderError: If credentials cannot be decrypted or the vendor call fails.
        """
        try:
            connection = self.provider_service.to_connection(provider)
            adapter = self.adapter_lookup(provider.provider_type)
            return await adapter.list_models(connection, client=self.client)
        except (ProviderError, ValueError, httpx.HTTPError) as e:
            raise CatalogProviderError(str(e)) from e

    def reconcile(self, db: Session, provider_type: str, models: List[ModelInfo]) -> Dict[str, int]:
        """Apply a fresh listing to the stored catalog of one provider type.

        New models are inserted, existing ones refreshed (deprecated ones
        reactivated) and stored models missing from the listing flagged
        deprecated. Nothing is deleted. Changes are flushed, not committed.

        Returns:
            Counts of ``added``, ``updated`` and ``deprecated`` models.
        """
        existing = {
            entry.model_name: entry
            for entry in db.query(ModelCatalogEntry).filter(ModelCatalogEntry.provider_type == provider_type).all()
        }
        listed = {model.model_name for model in models}
        added = updated = deprecated = 0
        now = datetime.utcnow()

        for model in models:
            entry = existing.get(model.model_name)
            if entry is None:
                entry = ModelCatalogEntry(provider_type=provider_type, model_name=model.model_name, is_deprecated=False)
                self._apply_metadata(entry, model)
                db.add(entry)
                # duplicate names within one listing map to the same row
                existing[model.model_name] = entry
                added += 1
                continue

            if entry.is_deprecated:
                logger.info(f"Reactivating deprecated model {provider_type}/{model.model_name}")
            self._apply_metadata(entry, model)
            entry.is_deprecated = False
            entry.updated_at = now
            updated += 1

        for model_name, entry in existing.items():
            if model_name not in listed and not entry.is_deprecated:
                entry.is_deprecated = True
                entry.updated_at = now
                deprecated += 1

        db.flush()
        return {"added": added, "updated": updated, "deprecated": deprecated}

    def _apply_metadata(self, entry: ModelCatalogEntry, model: ModelInfo) -> None:
        for name in METADATA_FIELDS:
            setattr(entry, name, getattr(model, name))
        entry.capability_tier = model.capability_tier or entry.capability_tier or CapabilityTier.STANDARD.value
        entry.modality = model.modality or entry.modality or Modality.TEXT.value

    def _type_lock(self, provider_type: str) -> asyncio.Lock:
        if provider_type not in self._type_locks:
            self._type_locks[provider_type] = asyncio.Lock()
        return self._type_locks[provider_type]

    def _audit(self, db: Session, summary: Dict[str, Any]) -> None:
        try:
            db.add(AuditLogEntry(
                action="model_refresh",
                details={"timestamp": datetime.utcnow().isoformat(), **summary}
            ))
            db.commit()
        except Exception as e:
            db.rollback()
            logger.error(f"Failed to write model refresh audit entry: {e}")

    def get_refresh_status(self) -> Optional[Dict[str, Any]]:
        """Status of the running refresh, or None if idle."""
        started_at = self._current_run_started_at
        if not self._sync_lock.locked() or started_at is None:
            return None
        return {
            "status": "in_progress",
            "started_at": started_at.isoformat(),
            "duration_seconds": (datetime.utcnow() - started_at).total_seconds(),
        }

    def get_last_refresh(self, db: Session) -> Optional[AuditLogEntry]:
        """Most recent model refresh audit entry."""
        return db.query(AuditLogEntry).filter(
            AuditLogEntry.action == "model_refresh"
        ).order_by(AuditLogEntry.created_at.desc(), AuditLogEntry.id.desc()).first()

    def list_catalog(
        self,
        db: Session,
        provider_type: Optional[str] = None,
        include_deprecated: bool = False
    ) -> List[ModelCatalogEntry]:
        query = db.query(ModelCatalogEntry)
        if provider_type:
            query = query.filter(ModelCatalogEntry.provider_type == provider_type)
        if not include_deprecated:
            query = query.filter(ModelCatalogEntry.is_deprecated.is_(False))
        return query.order_by(ModelCatalogEntry.provider_type, ModelCatalogEntry.model_name).all()

    def is_refresh_in_progress(self) -> bool:
        return self._sync_lock.locked()
