"""Route resolution: which providers and models answer a chatbot's requests."""

import logging
from dataclasses import dataclass
from typing import List, Optional

from sqlalchemy.orm import Session

from app.config import settings
from app.models.audit_log import AuditLogEntry
from app.models.chatbot import Chatbot
from app.models.model_catalog import ModelCatalogEntry
from app.models.provider import Provider
from app.services.provider_service import ProviderService
from app.services.vendors import ProviderConnection

logger = logging.getLogger(__name__)

TIER_RANK = {"flagship": 4, "standard": 3, "fast": 2, "lightweight": 1}


@dataclass
class RouteTarget:
    """One provider plus the model to ask it for."""

    connection: ProviderConnection
    model: str

    @property
    def provider_id(self) -> Optional[int]:
        return self.connection.id

    @property
    def provider_name(self) -> str:
        return self.connection.name


@dataclass
class RoutePlan:
    """Resolved primary and fallback targets for one session.

    Either target may be missing: an unusable or incompatible primary leaves
    only the fallback, and a chatbot without usable providers leaves neither,
    in which case ``reason`` says why.
    """

    primary: Optional[RouteTarget] = None
    fallback: Optional[RouteTarget] = None
    chatbot_id: Optional[int] = None
    fallback_model_substituted: bool = False
    original_fallback_model: Optional[str] = None
    reason: Optional[str] = None

    @property
    def first_target(self) -> Optional[RouteTarget]:
        return self.primary or self.fallback


def score_candidate(requested: ModelCatalogEntry, candidate: ModelCatalogEntry) -> int:
    """Similarity of a candidate model to the requested one (max 185)."""
    score = 0

    if candidate.capability_tier == requested.capability_tier:
        score += 100
    else:
        distance = abs(TIER_RANK.get(requested.capability_tier, 0) - TIER_RANK.get(candidate.capability_tier, 0))
        score += max(0, 50 - distance * 15)

    if candidate.modality == requested.modality:
        score += 50
    elif requested.modality == "multimodal" and candidate.modality == "vision":
        score += 30

    if bool(candidate.supports_vision) == bool(requested.supports_vision):
        score += 25

    if bool(candidate.supports_function_calling) == bool(requested.supports_function_calling):
        score += 10

    return score


class RoutingService:
    """Turn chatbot configurations into route plans."""

    def __init__(self, provider_service: ProviderService):
        self.provider_service = provider_service

    def resolve_route(self, db: Session, chatbot: Chatbot) -> RoutePlan:
        """Resolve the primary and fallback targets for a chatbot.

        Only active and healthy providers are kept. A provider whose catalog
        does not list the requested model is dropped, except that the fallback
        model may be auto-mapped to the closest catalog model.

        Args:
            db: Database session.
            chatbot: Chatbot configuration.

        Returns:
            RoutePlan, possibly without any target.
        """
        primary_provider = self._usable_provider(db, chatbot.primary_provider_id)
        fallback_provider = self._usable_provider(db, chatbot.fallback_provider_id)

        model = chatbot.model_name or settings.default_model
        fallback_model = chatbot.fallback_model_name or model
        plan = RoutePlan(chatbot_id=chatbot.id)

        if primary_provider:
            if self.is_model_compatible(db, primary_provider.provider_type, model):
                plan.primary = self._target(primary_provider, model)
                logger.info(f"Primary provider '{primary_provider.name}' supports model {model}")
            else:
                supported = self.supported_models(db, primary_provider.provider_type)
                logger.warning(
                    f"Primary provider '{primary_provider.name}' does not support model {model}. "
                    f"Supported models: {', '.join(supported)}"
                )

        if fallback_provider:
            if self.is_model_compatible(db, fallback_provider.provider_type, fallback_model):
                plan.fallback = self._target(fallback_provider, fallback_model)
                logger.info(f"Fallback provider '{fallback_provider.name}' supports model {fallback_model}")
            elif chatbot.auto_map_fallback_model and primary_provider:
                closest = self.find_closest_model(
                    db, fallback_provider.provider_type, model, primary_provider.provider_type
                )
                if closest:
                    plan.fallback = self._target(fallback_provider, closest)
                    plan.fallback_model_substituted = True
                    plan.original_fallback_model = fallback_model
                    logger.info(f"Fallback model for chatbot {chatbot.id} mapped: {fallback_model} -> {closest}")
                else:
                    logger.warning(f"Could not find a suitable fallback model for '{fallback_provider.name}'")
            else:
                supported = self.supported_models(db, fallback_provider.provider_type)
                logger.warning(
                    f"Fallback provider '{fallback_provider.name}' does not support model {fallback_model}. "
                    f"Auto-mapping disabled. Supported models: {', '.join(supported)}"
                )

        if not plan.primary and not plan.fallback:
            if primary_provider or fallback_provider:
                plan.reason = (
                    f'No compatible providers available. Model "{model}" '
                    f'is not supported by the configured providers.'
                )
            else:
                plan.reason = "No active and healthy providers configured for this chatbot."
            logger.error(plan.reason)

        return plan

    def is_model_compatible(self, db: Session, provider_type: str, model_name: str) -> bool:
        """Whether a provider type can serve a model.

        A provider type with no catalog entries yet is assumed compatible.
        """
        entries = self._catalog_query(db, provider_type)
        if entries.count() == 0:
            return True
        return entries.filter(ModelCatalogEntry.model_name == model_name).first() is not None

    def supported_models(self, db: Session, provider_type: str) -> List[str]:
        return [entry.model_name for entry in self._catalog_query(db, provider_type).all()]

    def find_closest_model(
        self,
        db: Session,
        target_provider_type: str,
        requested_model_name: str,
        source_provider_type: str
    ) -> Optional[str]:
        """Pick the target provider's catalog model most similar to the requested one.

        Returns:
            The best scoring model name, or None when either side has no catalog metadata.
        """
        logger.info(
            f"Finding closest model for {target_provider_type} to match "
            f"{requested_model_name} from {source_provider_type}"
        )
        requested = db.query(ModelCatalogEntry).filter(
            ModelCatalogEntry.provider_type == source_provider_type,
            ModelCatalogEntry.model_name == requested_model_name
        ).first()
        if not requested:
            logger.warning(f"Could not find catalog metadata for requested model {requested_model_name}")
            return None

        candidates = self._catalog_query(db, target_provider_type).order_by(ModelCatalogEntry.id).all()
        if not candidates:
            logger.warning(f"No candidate models found for provider type {target_provider_type}")
            return None

        # max() keeps the first of equally scored candidates
        best = max(candidates, key=lambda c: score_candidate(requested, c))
        logger.info(f"Best match found: {best.model_name} (score {score_candidate(requested, best)}/185)")
        return best.model_name

    def record_model_substitution(
        self,
        db: Session,
        plan: RoutePlan,
        user_id: Optional[str] = None
    ) -> Optional[AuditLogEntry]:
        """Audit that an auto-mapped fallback model answered a request.

        Returns:
            The stored entry, or None when the plan has no substitution or the write failed.
        """
        if not plan.fallback_model_substituted or plan.fallback is None:
            return None

        logger.info(
            f"Auto-mapped fallback answered for chatbot {plan.chatbot_id}: "
            f"{plan.original_fallback_model} -> {plan.fallback.model}"
        )
        entry = AuditLogEntry(
            action="model_auto_mapped",
            provider_id=plan.fallback.provider_id,
            details={
                "chatbot_id": plan.chatbot_id,
                "user_id": user_id,
                "fallback_used": True,
                "model_substituted": True,
                "original_fallback_model": plan.original_fallback_model,
                "requested_model": plan.fallback.model,
                "provider_type": plan.fallback.connection.provider_type.value,
            }
        )
        try:
            db.add(entry)
            db.commit()
        except Exception as e:
            db.rollback()
            logger.error(f"Failed to write auto-mapping audit entry: {e}")
            return None
        return entry

    def _target(self, provider: Provider, model: str) -> Optional[RouteTarget]:
        try:
            return RouteTarget(self.provider_service.to_connection(provider), model)
        except ValueError as e:
            logger.error(f"Skipping provider '{provider.name}': {e}")
            return None

    def _usable_provider(self, db: Session, provider_id: Optional[int]) -> Optional[Provider]:
        if provider_id is None:
            return None
        return db.query(Provider).filter(
            Provider.id == provider_id,
            Provider.is_active.is_(True),
            Provider.is_healthy.is_(True)
        ).first()

    def _catalog_query(self, db: Session, provider_type: str):
        return db.query(ModelCatalogEntry).filter(
            ModelCatalogEntry.provider_type == provider_type,
            ModelCatalogEntry.is_deprecated.is_(False)
        )
