"""Provider audit log database model."""

from datetime import datetime
from sqlalchemy import Column, Integer, String, DateTime, JSON, ForeignKey
from app.database.database import Base


class AuditLogEntry(Base):
    """Record of a gateway maintenance action (catalog refresh, health check, model mapping)."""

    __tablename__ = "ai_provider_audit_log"

    id = Column(Integer, primary_key=True, index=True)
    action = Column(String, nullable=False, index=True)
    provider_id = Column(Integer, ForeignKey("providers.id", ondelete="SET NULL"), nullable=True)
    details = Column(JSON, nullable=True)
    created_at = Column(DateTime, default=datetime.utcnow)
