"""Model catalog database model."""

import enum
from datetime import datetime
from sqlalchemy import Column, Integer, String, Boolean, DateTime, Float, Text, UniqueConstraint, Index
from app.database.database import Base


class CapabilityTier(str, enum.Enum):
    """Coarse cost/performance classification of a model."""

    FLAGSHIP = "flagship"
    STANDARD = "standard"
    FAST = "fast"
    LIGHTWEIGHT = "lightweight"


class Modality(str, enum.Enum):
    """Input modalities a model accepts."""

    TEXT = "text"
    VISION = "vision"
    MULTIMODAL = "multimodal"


class ModelCatalogEntry(Base):
    """One model offered by a provider type.

    Rows are written only by the catalog synchronizer. Models that disappear
    from a vendor listing are flagged deprecated, never deleted, so chatbot
    configurations referencing them stay resolvable.
    """

    __tablename__ = "provider_models"

    id = Column(Integer, primary_key=True, index=True)
    provider_type = Column(String, nullable=False)
    model_name = Column(String, nullable=False)
    display_name = Column(String, nullable=True)
    description = Column(Text, nullable=True)
    max_context_length = Column(Integer, nullable=True)
    supports_vision = Column(Boolean, default=False)
    supports_function_calling = Column(Boolean, default=False)
    cost_per_1k_input_tokens = Column(Float, nullable=True)
    cost_per_1k_output_tokens = Column(Float, nullable=True)
    capability_tier = Column(String, nullable=False, default=CapabilityTier.STANDARD.value)
    modality = Column(String, nullable=False, default=Modality.TEXT.value)
    is_deprecated = Column(Boolean, default=False, nullable=False)
    created_at = Column(DateTime, default=datetime.utcnow)
    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)

    __table_args__ = (
        UniqueConstraint('provider_type', 'model_name', name='uq_provider_type_model_name'),
        Index('ix_provider_models_provider_type', 'provider_type'),
    )
