"""Usage record database model."""

from datetime import datetime
from sqlalchemy import Column, Integer, String, Boolean, DateTime, Text, ForeignKey, Index
from app.database.database import Base


class UsageRecord(Base):
    """Append-only outcome of one chat invocation."""

    __tablename__ = "chatbot_usage"

    id = Column(Integer, primary_key=True, index=True)
    chatbot_id = Column(Integer, ForeignKey("chatbots.id", ondelete="SET NULL"), nullable=True)
    user_id = Column(String, nullable=True)
    provider_id = Column(Integer, ForeignKey("providers.id", ondelete="SET NULL"), nullable=True)
    model_used = Column(String, nullable=True)
    response_time_ms = Column(Integer, nullable=True)
    success = Column(Boolean, nullable=False)
    error_message = Column(Text, nullable=True)
    tokens_used = Column(Integer, nullable=True)
    failover_count = Column(Integer, default=0, nullable=False)
    created_at = Column(DateTime, default=datetime.utcnow)

    __table_args__ = (
        Index('ix_chatbot_usage_provider_created', 'provider_id', 'created_at'),
    )
