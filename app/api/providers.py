"""Provider API endpoints."""

from datetime import datetime
from typing import Dict, List, Optional
from fastapi import APIRouter, Depends, HTTPException
from pydantic import BaseModel
from sqlalchemy.orm import Session

from app.database.database import get_db
from app.services.provider_service import ProviderService
from app.services.health_service import HealthCheckService
from app.services.encryption_service import EncryptionService

router = APIRouter(prefix="/api/providers", tags=["providers"])


class ProviderCreate(BaseModel):
    """Provider creation request."""

    name: str
    provider_type: str = "openai"
    api_key: Optional[str] = None
    base_url: Optional[str] = None
    organization_id: Optional[str] = None
    project_id: Optional[str] = None
    custom_headers: Optional[Dict[str, str]] = None
    validate_credentials: bool = True


class ProviderUpdate(BaseModel):
    """Provider update request."""

    name: Optional[str] = None
    api_key: Optional[str] = None
    base_url: Optional[str] = None
    is_active: Optional[bool] = None
    custom_headers: Optional[Dict[str, str]] = None


class ProviderResponse(BaseModel):
    """Provider response."""

    id: int
    name: str
    provider_type: str
    base_url: Optional[str] = None
    organization_id: Optional[str] = None
    project_id: Optional[str] = None
    api_key_masked: Optional[str] = None
    is_active: bool
    is_healthy: bool
    last_health_check: Optional[datetime] = None
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None
    last_fetched_at: Optional[datetime] = None


class HealthCheckResponse(BaseModel):
    """Provider health check response."""

    healthy: bool
    error_message: str
    available_models: List[str]
    timestamp: str


def get_provider_service() -> ProviderService:
    """Get provider service instance."""
    return ProviderService(EncryptionService())


@router.post("", response_model=ProviderResponse, status_code=201)
async def create_provider(
    provider: ProviderCreate,
    db: Session = Depends(get_db),
    service: ProviderService = Depends(get_provider_service)
):
    """Create a new provider.

    Credentials are probed against the vendor before storing unless
    ``validate_credentials`` is false. The API key is encrypted.
    """
    try:
        new_provider = await service.add_provider(
            db=db,
            name=provider.name,
            provider_type=provider.provider_type,
            api_key=provider.api_key,
            base_url=provider.base_url,
            organization_id=provider.organization_id,
            project_id=provider.project_id,
            custom_headers=provider.custom_headers,
            validate=provider.validate_credentials
        )
        return ProviderResponse(**service.provider_to_dict(new_provider))
    except ValueError as e:
        raise HTTPException(status_code=400, detail=str(e))
    except Exception as e:
        raise HTTPException(status_code=500, detail=f"Failed to create provider: {str(e)}")


@router.get("", response_model=List[ProviderResponse])
async def list_providers(
    db: Session = Depends(get_db),
    service: ProviderService = Depends(get_provider_service)
):
    """List all providers with masked API keys."""
    try:
        return [ProviderResponse(**p) for p in service.list_providers(db)]
    except Exception as e:
        raise HTTPException(status_code=500, detail=f"Failed to list providers: {str(e)}")


@router.get("/{provider_id}", response_model=ProviderResponse)
async def get_provider(
    provider_id: int,
    db: Session = Depends(get_db),
    service: ProviderService = Depends(get_provider_service)
):
    """Get provider details by ID."""
    provider = service.get_provider(db, provider_id)
    if not provider:
        raise HTTPException(status_code=404, detail=f"Provider {provider_id} not found")
    return ProviderResponse(**service.provider_to_dict(provider))


@router.put("/{provider_id}", response_model=ProviderResponse)
async def update_provider(
    provider_id: int,
    update: ProviderUpdate,
    db: Session = Depends(get_db),
    service: ProviderService = Depends(get_provider_service)
):
    """Update a provider's name, credentials, base URL, headers or active flag."""
    try:
        provider = service.update_provider(
            db,
            provider_id,
            name=update.name,
            api_key=update.api_key,
            base_url=update.base_url,
            is_active=update.is_active,
            custom_headers=update.custom_headers
        )
    except ValueError as e:
        raise HTTPException(status_code=400, detail=str(e))

    if not provider:
        raise HTTPException(status_code=404, detail=f"Provider {provider_id} not found")
    return ProviderResponse(**service.provider_to_dict(provider))


@router.delete("/{provider_id}", status_code=204)
async def delete_provider(
    provider_id: int,
    db: Session = Depends(get_db),
    service: ProviderService = Depends(get_provider_service)
):
    """Delete a provider. Chatbots referencing it lose that reference."""
    try:
        deleted = service.delete_provider(db, provider_id)
    except Exception as e:
        raise HTTPException(status_code=500, detail=f"Failed to delete provider: {str(e)}")
    if not deleted:
        raise HTTPException(status_code=404, detail=f"Provider {provider_id} not found")


@router.post("/{provider_id}/health-check", response_model=HealthCheckResponse)
async def check_provider_health(
    provider_id: int,
    db: Session = Depends(get_db),
    service: ProviderService = Depends(get_provider_service)
):
    """Probe a provider and update its health flag."""
    health_service = HealthCheckService(service)
    try:
        result = await health_service.check_provider(db, provider_id)
    except ValueError as e:
        status_code = 404 if "not found" in str(e) else 400
        raise HTTPException(status_code=status_code, detail=str(e))
    return HealthCheckResponse(**result)
