"""Provider service for managing upstream LLM vendors."""

import logging
from typing import Any, Dict, List, Optional
from datetime import datetime
from sqlalchemy.orm import Session
from sqlalchemy.exc import IntegrityError

from app.config import settings
from app.models.chatbot import Chatbot
from app.models.provider import Provider, ProviderType
from app.services.encryption_service import EncryptionService
from app.services.exceptions import ProviderError
from app.services.vendors import ProviderConnection, get_adapter

logger = logging.getLogger(__name__)


class ProviderService:
    """Service for storing providers and turning them into vendor connections."""

    def __init__(self, encryption_service: EncryptionService):
        """Initialize provider service.

        Args:
            encryption_service: Service for encrypting/decrypting API keys.
        """
        self.encryption_service = encryption_service

    async def add_provider(
        self,
        db: Session,
        name: str,
        provider_type: str,
        api_key: Optional[str] = None,
        base_url: Optional[str] = None,
        organization_id: Optional[str] = None,
        project_id: Optional[str] = None,
        custom_headers: Optional[Dict[str, str]] = None,
        validate: bool = True
    ) -> Provider:
        """Add a new provider, optionally validating its credentials first.

        Args:
            db: Database session.
            name: Provider display name.
            provider_type: Vendor type (openai, anthropic, ...).
            api_key: Vendor API key (will be encrypted). Optional for ollama.
            base_url: Override of the vendor's default API base URL.
            organization_id: OpenAI organization id.
            project_id: OpenAI project id.
            custom_headers: Extra headers sent with every request.
            validate: Probe the vendor before storing.

        Returns:
            The created Provider instance.

        Raises:
            ValueError: If the type is unknown, validation fails or the name already exists.
        """
        try:
            provider_type = ProviderType(provider_type).value
        except ValueError:
            raise ValueError(f"Unsupported provider type: {provider_type}")

        if provider_type == ProviderType.CUSTOM.value and not base_url:
            raise ValueError("Custom providers require a base URL")

        if validate:
            connection = ProviderConnection(
                name=name,
                provider_type=ProviderType(provider_type),
                api_key=api_key,
                base_url=base_url,
                organization_id=organization_id,
                project_id=project_id,
                custom_headers=custom_headers or {}
            )
            is_valid = await self.validate_provider(connection)
            if not is_valid:
                raise ValueError("Provider credential validation failed")

        provider = Provider(
            name=name,
            provider_type=provider_type,
            api_key_encrypted=self.encryption_service.encrypt(api_key) if api_key else None,
            base_url=base_url,
            organization_id=organization_id,
            project_id=project_id,
            custom_headers=custom_headers
        )

        try:
            db.add(provider)
            db.commit()
            db.refresh(provider)
            logger.info(f"Provider '{name}' ({provider_type}) added successfully")
            return provider
        except IntegrityError as e:
            db.rollback()
            logger.error(f"Failed to add provider '{name}': {e}")
            raise ValueError(f"Provider with name '{name}' already exists")

    async def validate_provider(self, connection: ProviderConnection) -> bool:
        """Validate provider credentials with the vendor's health probe.

        Returns:
            True if the vendor accepted the credentials, False otherwise.
        """
        try:
            models = await get_adapter(connection.provider_type).probe(connection)
            logger.info(f"Provider validation successful for '{connection.name}' ({len(models)} models)")
            return True
        except ProviderError as e:
            logger.warning(f"Provider validation failed for '{connection.name}': {e}")
            return False

    def list_providers(self, db: Session, include_masked_keys: bool = True) -> List[dict]:
        """List all providers with masked API keys.

        Args:
            db: Database session.
            include_masked_keys: Whether to include masked API keys in response.

        Returns:
            List of provider dictionaries.
        """
        providers = db.query(Provider).order_by(Provider.id).all()
        return [self.provider_to_dict(p, include_masked_keys) for p in providers]

    def provider_to_dict(self, provider: Provider, include_masked_keys: bool = True) -> Dict[str, Any]:
        provider_dict = {
            "id": provider.id,
            "name": provider.name,
            "provider_type": provider.provider_type,
            "base_url": provider.base_url,
            "organization_id": provider.organization_id,
            "project_id": provider.project_id,
            "is_active": provider.is_active,
            "is_healthy": provider.is_healthy,
            "last_health_check": provider.last_health_check,
            "created_at": provider.created_at,
            "updated_at": provider.updated_at,
            "last_fetched_at": provider.last_fetched_at,
        }

        if include_masked_keys:
            if not provider.api_key_encrypted:
                provider_dict["api_key_masked"] = None
            else:
                try:
                    decrypted_key = self.encryption_service.decrypt(provider.api_key_encrypted)
                    provider_dict["api_key_masked"] = self.encryption_service.mask(decrypted_key)
                except Exception as e:
                    logger.error(f"Failed to decrypt API key for provider {provider.id}: {e}")
                    provider_dict["api_key_masked"] = "***ERROR***"

        return provider_dict

    def get_provider(self, db: Session, provider_id: int) -> Optional[Provider]:
        """Get a provider by ID."""
        return db.query(Provider).filter(Provider.id == provider_id).first()

    def to_connection(self, provider: Provider) -> ProviderConnection:
        """Decrypt a stored provider into the connection handed to vendor adapters.

        Raises:
            ValueError: If the stored API key cannot be decrypted.
        """
        try:
            api_key = self.encryption_service.decrypt_optional(provider.api_key_encrypted)
        except Exception as e:
            logger.error(f"Failed to decrypt API key for provider {provider.id}: {e}")
            raise ValueError(f"Failed to decrypt API key for provider '{provider.name}'")

        return ProviderConnection(
            id=provider.id,
            name=provider.name,
            provider_type=ProviderType(provider.provider_type),
            api_key=api_key,
            base_url=provider.base_url,
            organization_id=provider.organization_id,
            project_id=provider.project_id,
            custom_headers=dict(provider.custom_headers or {})
        )

    def get_connection(self, db: Session, provider_id: int) -> Optional[ProviderConnection]:
        """Decrypted connection for a provider ID, or None if not found."""
        provider = self.get_provider(db, provider_id)
        if not provider:
            return None
        return self.to_connection(provider)

    @staticmethod
    def default_connection() -> ProviderConnection:
        """Built-in vendor used when a chat request names no chatbot."""
        return ProviderConnection(
            name=settings.default_provider_name,
            provider_type=ProviderType(settings.default_provider_type),
            api_key=settings.default_provider_api_key,
            base_url=settings.default_provider_base_url
        )

    def get_active_chatbot(self, db: Session, chatbot_id: int) -> Optional[Chatbot]:
        """Get an active chatbot configuration by ID."""
        return db.query(Chatbot).filter(
            Chatbot.id == chatbot_id,
            Chatbot.is_active.is_(True)
        ).first()

    def update_provider(
        self,
        db: Session,
        provider_id: int,
        name: Optional[str] = None,
        api_key: Optional[str] = None,
        base_url: Optional[str] = None,
        is_active: Optional[bool] = None,
        custom_headers: Optional[Dict[str, str]] = None
    ) -> Optional[Provider]:
        """Update a provider.

        Returns:
            Updated Provider instance or None if not found.

        Raises:
            ValueError: If the new name already exists.
        """
        provider = self.get_provider(db, provider_id)
        if not provider:
            return None

        if name:
            provider.name = name
        if api_key:
            provider.api_key_encrypted = self.encryption_service.encrypt(api_key)
        if base_url:
            provider.base_url = base_url
        if is_active is not None:
            provider.is_active = is_active
        if custom_headers is not None:
            provider.custom_headers = custom_headers

        provider.updated_at = datetime.utcnow()

        try:
            db.commit()
            db.refresh(provider)
            logger.info(f"Provider {provider_id} updated successfully")
            return provider
        except IntegrityError as e:
            db.rollback()
            logger.error(f"Failed to update provider {provider_id}: {e}")
            raise ValueError(f"Provider with name '{name}' already exists")

    def delete_provider(self, db: Session, provider_id: int) -> bool:
        """Delete a provider.

        Chatbots referencing it keep their rows with the provider reference
        cleared; usage records are kept.

        Returns:
            True if deleted, False if provider not found.
        """
        provider = self.get_provider(db, provider_id)
        if not provider:
            return False

        try:
            db.query(Chatbot).filter(Chatbot.primary_provider_id == provider_id).update(
                {Chatbot.primary_provider_id: None}, synchronize_session=False
            )
            db.query(Chatbot).filter(Chatbot.fallback_provider_id == provider_id).update(
                {Chatbot.fallback_provider_id: None}, synchronize_session=False
            )
            db.delete(provider)
            db.commit()
            logger.info(f"Provider {provider_id} deleted successfully")
            return True
        except Exception as e:
            db.rollback()
            logger.error(f"Failed to delete provider {provider_id}: {e}")
            raise
