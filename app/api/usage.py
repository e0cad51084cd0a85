"""Usage analytics API endpoints."""

from datetime import datetime, timedelta
from fastapi import APIRouter, Depends, Query
from sqlalchemy.orm import Session

from app.database.database import get_db
from app.services.usage_service import UsageTelemetryRecorder

router = APIRouter(prefix="/api/usage", tags=["usage"])


@router.get("/summary")
async def usage_summary(
    days: int = Query(7, ge=1, le=365),
    db: Session = Depends(get_db)
):
    """Per-provider request counts, success rate, latency and token totals."""
    since = datetime.utcnow() - timedelta(days=days)
    return UsageTelemetryRecorder().summarize(db, since=since)
