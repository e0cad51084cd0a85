"""Model catalog API endpoints."""

from datetime import datetime
from typing import Any, Dict, List, Optional
from fastapi import APIRouter, Depends, HTTPException
from pydantic import BaseModel, ConfigDict
from sqlalchemy.orm import Session

from app.database.database import get_db
from app.services.catalog_sync_service import CatalogSyncService
from app.services.encryption_service import EncryptionService
from app.services.provider_service import ProviderService

router = APIRouter(prefix="/api/catalog", tags=["catalog"])


class CatalogEntryResponse(BaseModel):
    """Catalog entry response."""

    model_config = ConfigDict(from_attributes=True, protected_namespaces=())

    id: int
    provider_type: str
    model_name: str
    display_name: Optional[str] = None
    description: Optional[str] = None
    max_context_length: Optional[int] = None
    supports_vision: bool = False
    supports_function_calling: bool = False
    cost_per_1k_input_tokens: Optional[float] = None
    cost_per_1k_output_tokens: Optional[float] = None
    capability_tier: str
    modality: str
    is_deprecated: bool


class SyncRequest(BaseModel):
    provider_ids: Optional[List[int]] = None


class SyncStatusResponse(BaseModel):
    in_progress: bool
    current: Optional[Dict[str, Any]] = None
    last_refresh_at: Optional[datetime] = None
    last_refresh: Optional[Dict[str, Any]] = None


def get_catalog_service() -> CatalogSyncService:
    """Get catalog sync service instance."""
    return CatalogSyncService(ProviderService(EncryptionService()))


@router.get("", response_model=List[CatalogEntryResponse])
async def list_catalog(
    provider_type: Optional[str] = None,
    include_deprecated: bool = False,
    db: Session = Depends(get_db),
    service: CatalogSyncService = Depends(get_catalog_service)
):
    """List catalog models, optionally for one provider type."""
    return service.list_catalog(db, provider_type=provider_type, include_deprecated=include_deprecated)


@router.post("/sync")
async def sync_catalog(
    request: Optional[SyncRequest] = None,
    db: Session = Depends(get_db),
    service: CatalogSyncService = Depends(get_catalog_service)
):
    """Refresh the catalog from every active provider now.

    Returns 409 if a refresh is already running.
    """
    try:
        return await service.refresh_catalog(db, provider_ids=request.provider_ids if request else None)
    except RuntimeError as e:
        raise HTTPException(status_code=409, detail=str(e))


@router.get("/status", response_model=SyncStatusResponse)
async def catalog_status(
    db: Session = Depends(get_db),
    service: CatalogSyncService = Depends(get_catalog_service)
):
    """Current refresh state and the summary of the last run."""
    last = service.get_last_refresh(db)
    return SyncStatusResponse(
        in_progress=service.is_refresh_in_progress(),
        current=service.get_refresh_status(),
        last_refresh_at=last.created_at if last else None,
        last_refresh=last.details if last else None
    )
