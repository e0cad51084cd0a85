"""Provider database model."""

import enum
from datetime import datetime
from sqlalchemy import Column, Integer, String, Boolean, DateTime, JSON, CheckConstraint
from app.database.database import Base


class ProviderType(str, enum.Enum):
    """Supported upstream vendor types."""

    OPENAI = "openai"
    ANTHROPIC = "anthropic"
    GOOGLE = "google"
    MISTRAL = "mistral"
    META = "meta"
    XAI = "xai"
    OLLAMA = "ollama"
    CUSTOM = "custom"


PROVIDER_TYPE_VALUES = ", ".join(f"'{t.value}'" for t in ProviderType)


class Provider(Base):
    """Provider model for storing LLM vendor connection information."""

    __tablename__ = "providers"

    id = Column(Integer, primary_key=True, index=True)
    name = Column(String, nullable=False, unique=True)
    provider_type = Column(String, nullable=False, default=ProviderType.OPENAI.value)
    api_key_encrypted = Column(String, nullable=True)
    base_url = Column(String, nullable=True)
    organization_id = Column(String, nullable=True)
    project_id = Column(String, nullable=True)
    custom_headers = Column(JSON, nullable=True)
    is_active = Column(Boolean, default=True, nullable=False)
    is_healthy = Column(Boolean, default=True, nullable=False)
    last_health_check = Column(DateTime, nullable=True)
    created_at = Column(DateTime, default=datetime.utcnow)
    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)
    last_fetched_at = Column(DateTime, nullable=True)

    __table_args__ = (
        CheckConstraint(f"provider_type IN ({PROVIDER_TYPE_VALUES})", name='ck_provider_type'),
    )

    @property
    def is_usable(self) -> bool:
        """Whether the provider may be routed to."""
        return bool(self.is_active and self.is_healthy)
