"""Application configuration."""

from typing import Optional
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Application settings."""

    model_config = SettingsConfigDict(env_file=".env", env_file_encoding="utf-8", extra="ignore")

    # Database
    database_url: str = "sqlite:///./data/gateway.db"

    # Encryption (validated at startup by EncryptionService)
    encryption_key: Optional[str] = None

    # Default provider, used when a chat request names no chatbot
    default_provider_type: str = "openai"
    default_provider_name: str = "OpenAI (Default)"
    default_provider_api_key: Optional[str] = None
    default_provider_base_url: Optional[str] = None
    default_model: str = "gpt-4o"
    default_system_prompt: str = "You are a helpful AI assistant."

    # Generation defaults
    default_max_tokens: int = 2000
    default_temperature: float = 0.7
    default_top_p: float = 1.0

    # Failover
    failover_budget_ms: int = 5000
    vendor_timeout_seconds: float = 60.0

    # Knowledge base
    knowledge_max_documents: int = 5
    knowledge_excerpt_chars: int = 500
    knowledge_snippet_chars: int = 200

    # Conversation history sent along with each request
    history_message_limit: int = 10

    # Scheduler
    catalog_sync_enabled: bool = True
    catalog_sync_hour: int = 3
    catalog_sync_minute: int = 0
    health_check_hour: int = 4
    scheduler_timezone: str = "UTC"

    # Application
    app_host: str = "0.0.0.0"
    app_port: int = 8000
    log_level: str = "INFO"


settings = Settings()
