"""Main FastAPI application entry point."""

import logging
from fastapi import FastAPI, Depends, HTTPException
from fastapi.middleware.cors import CORSMiddleware
from sqlalchemy import func, text
from sqlalchemy.orm import Session
from pydantic import BaseModel
from typing import Optional

from app.config import settings
from app.database.database import init_db, get_db
from app.api.providers import router as providers_router
from app.api.chat import router as chat_router
from app.api.catalog import router as catalog_router
from app.api.usage import router as usage_router
from app.services.encryption_service import EncryptionService
from app.services.scheduler import GatewayScheduler
from app.models.provider import Provider
from app.models.model_catalog import ModelCatalogEntry
from app.models.usage_record import UsageRecord
from app.models.conversation import Conversation

logging.basicConfig(
    level=settings.log_level.upper(),
    format="%(asctime)s %(levelname)s [%(name)s] %(message)s"
)
logger = logging.getLogger(__name__)

app = FastAPI(
    title="AI Provider Gateway",
    description="Multi-vendor LLM chat gateway with streaming, failover and model catalog sync",
    version="0.1.0",
)

# Configure CORS
app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

# Include routers
app.include_router(chat_router)
app.include_router(providers_router)
app.include_router(catalog_router)
app.include_router(usage_router)

scheduler = GatewayScheduler()


class HealthResponse(BaseModel):
    """Health check response."""

    status: str
    database: str
    encryption: str
    scheduler: str
    message: Optional[str] = None


class StatsResponse(BaseModel):
    """System statistics response."""

    providers_count: int
    active_providers_count: int
    healthy_providers_count: int
    catalog_models_count: int
    deprecated_models_count: int
    conversations_count: int
    usage_records_count: int
    failed_requests_count: int


@app.on_event("startup")
async def startup_event():
    """Validate encryption, initialize the database and start scheduled jobs."""
    # Validate encryption service (will exit if key is invalid)
    EncryptionService()
    init_db()
    if settings.catalog_sync_enabled:
        scheduler.register_default_jobs()
        scheduler.start()


@app.on_event("shutdown")
async def shutdown_event():
    scheduler.shutdown()


@app.get("/")
async def root():
    return {"message": "AI Provider Gateway API", "version": "0.1.0"}


@app.get("/api/health", response_model=HealthResponse)
async def health_check(db: Session = Depends(get_db)):
    """Health check endpoint.

    Checks database connectivity and encryption key validity.
    """
    health_status = {
        "status": "healthy",
        "database": "connected",
        "encryption": "valid",
        "scheduler": "running" if scheduler.running else "stopped",
    }

    try:
        db.execute(text("SELECT 1"))
    except Exception as e:
        health_status["status"] = "unhealthy"
        health_status["database"] = "disconnected"
        health_status["message"] = str(e)
        return HealthResponse(**health_status)

    encryption_service = EncryptionService()
    if encryption_service.decrypt(encryption_service.encrypt("test")) != "test":
        health_status["encryption"] = "invalid"
        health_status["status"] = "unhealthy"
        health_status["message"] = "Encryption service validation failed"

    return HealthResponse(**health_status)


@app.get("/api/stats", response_model=StatsResponse)
async def get_stats(db: Session = Depends(get_db)):
    """Counts of providers, catalog models, conversations and usage records."""
    try:
        return StatsResponse(
            providers_count=db.query(func.count(Provider.id)).scalar(),
            active_providers_count=db.query(Provider).filter(Provider.is_active.is_(True)).count(),
            healthy_providers_count=db.query(Provider).filter(
                Provider.is_active.is_(True), Provider.is_healthy.is_(True)
            ).count(),
            catalog_models_count=db.query(ModelCatalogEntry).filter(
                ModelCatalogEntry.is_deprecated.is_(False)
            ).count(),
            deprecated_models_count=db.query(ModelCatalogEntry).filter(
                ModelCatalogEntry.is_deprecated.is_(True)
            ).count(),
            conversations_count=db.query(Conversation).count(),
            usage_records_count=db.query(UsageRecord).count(),
            failed_requests_count=db.query(UsageRecord).filter(UsageRecord.success.is_(False)).count()
        )
    except Exception as e:
        raise HTTPException(status_code=500, detail=f"Failed to get stats: {str(e)}")


if __name__ == "__main__":
    import uvicorn

    uvicorn.run("app.main:app", host=settings.app_host, port=settings.app_port)
