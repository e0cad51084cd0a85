"""Shared test fixtures."""

from typing import Optional

import pytest
from cryptography.fernet import Fernet
from sqlalchemy.orm import sessionmaker

from app.database.database import Base, create_gateway_engine
from app.models.chatbot import Chatbot
from app.models.provider import Provider, ProviderType
from app.services.encryption_service import EncryptionService
from app.services.provider_service import ProviderService
from tests.fakes import FakeClock


@pytest.fixture
def test_db():
    """Create a test database."""
    engine = create_gateway_engine("sqlite:///:memory:")
    import app.models  # noqa: F401
    Base.metadata.create_all(engine)
    TestingSessionLocal = sessionmaker(bind=engine)
    db = TestingSessionLocal()
    yield db
    db.close()
    engine.dispose()


@pytest.fixture
def encryption_service():
    """Create encryption service with a fresh test key."""
    return EncryptionService(key=Fernet.generate_key().decode())


@pytest.fixture
def provider_service(encryption_service):
    return ProviderService(encryption_service)


@pytest.fixture
def make_provider(test_db, encryption_service):
    """Factory storing a provider with an encrypted key."""

    def _make(
        name: str,
        provider_type: str = ProviderType.OPENAI.value,
        api_key: Optional[str] = "sk-test-key-1234567890",
        is_active: bool = True,
        is_healthy: bool = True,
        base_url: Optional[str] = None
    ) -> Provider:
        provider = Provider(
            name=name,
            provider_type=provider_type,
            api_key_encrypted=encryption_service.encrypt(api_key) if api_key else None,
            base_url=base_url,
            is_active=is_active,
            is_healthy=is_healthy
        )
        test_db.add(provider)
        test_db.commit()
        test_db.refresh(provider)
        return provider

    return _make


@pytest.fixture
def make_chatbot(test_db):
    """Factory storing a chatbot configuration."""

    def _make(
        primary: Optional[Provider] = None,
        fallback: Optional[Provider] = None,
        model_name: str = "gpt-4o",
        **kwargs
    ) -> Chatbot:
        chatbot = Chatbot(
            name=kwargs.pop("name", "Support Bot"),
            primary_provider_id=primary.id if primary else None,
            fallback_provider_id=fallback.id if fallback else None,
            model_name=model_name,
            system_prompt=kwargs.pop("system_prompt", "You are a support assistant."),
            **kwargs
        )
        test_db.add(chatbot)
        test_db.commit()
        test_db.refresh(chatbot)
        return chatbot

    return _make


@pytest.fixture
def clock():
    return FakeClock()
