"""Chatbot configuration database models."""

from datetime import datetime
from sqlalchemy import Column, Integer, String, Boolean, DateTime, Float, Text, ForeignKey, UniqueConstraint
from sqlalchemy.orm import relationship
from app.database.database import Base


class Chatbot(Base):
    """Chatbot configuration: which providers answer, with which model and parameters."""

    __tablename__ = "chatbots"

    id = Column(Integer, primary_key=True, index=True)
    name = Column(String, nullable=False)
    primary_provider_id = Column(Integer, ForeignKey("providers.id", ondelete="SET NULL"), nullable=True)
    fallback_provider_id = Column(Integer, ForeignKey("providers.id", ondelete="SET NULL"), nullable=True)
    model_name = Column(String, nullable=True)
    fallback_model_name = Column(String, nullable=True)
    auto_map_fallback_model = Column(Boolean, default=True, nullable=False)
    system_prompt = Column(Text, nullable=True)
    temperature = Column(Float, nullable=True)
    max_tokens = Column(Integer, nullable=True)
    top_p = Column(Float, nullable=True)
    frequency_penalty = Column(Float, nullable=True)
    presence_penalty = Column(Float, nullable=True)
    is_active = Column(Boolean, default=True, nullable=False)
    created_at = Column(DateTime, default=datetime.utcnow)
    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)

    primary_provider = relationship("Provider", foreign_keys=[primary_provider_id])
    fallback_provider = relationship("Provider", foreign_keys=[fallback_provider_id])


class ChatbotKnowledge(Base):
    """Link between a chatbot and a knowledge base document."""

    __tablename__ = "chatbot_knowledge"

    id = Column(Integer, primary_key=True, index=True)
    chatbot_id = Column(Integer, ForeignKey("chatbots.id", ondelete="CASCADE"), nullable=False, index=True)
    document_id = Column(Integer, ForeignKey("documents.id", ondelete="CASCADE"), nullable=False)
    is_enabled = Column(Boolean, default=True, nullable=False)
    created_at = Column(DateTime, default=datetime.utcnow)

    document = relationship("Document")

    __table_args__ = (
        UniqueConstraint('chatbot_id', 'document_id', name='uq_chatbot_document'),
    )
