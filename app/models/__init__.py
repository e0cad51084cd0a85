"""Database models package."""

from app.models.provider import Provider, ProviderType
from app.models.chatbot import Chatbot, ChatbotKnowledge
from app.models.document import Document
from app.models.model_catalog import ModelCatalogEntry, CapabilityTier, Modality
from app.models.usage_record import UsageRecord
from app.models.conversation import Conversation, Message
from app.models.audit_log import AuditLogEntry

__all__ = [
    "Provider",
    "ProviderType",
    "Chatbot",
    "ChatbotKnowledge",
    "Document",
    "ModelCatalogEntry",
    "CapabilityTier",
    "Modality",
    "UsageRecord",
    "Conversation",
    "Message",
    "AuditLogEntry",
]
