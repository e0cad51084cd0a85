"""Vendor adapters.

Importing this package registers every adapter with the registry.
"""

from app.services.vendors.base import (
    ChatMessage,
    ChatRequest,
    ModelInfo,
    ProviderConnection,
    StreamEvent,
    StreamEventType,
    VendorAdapter,
    VendorResponse,
)
from app.services.vendors.registry import get_adapter, register_adapter, registered_types
from app.services.vendors import openai, mistral, compatible, anthropic, google, ollama  # noqa: F401

__all__ = [
    "ChatMessage",
    "ChatRequest",
    "ModelInfo",
    "ProviderConnection",
    "StreamEvent",
    "StreamEventType",
    "VendorAdapter",
    "VendorResponse",
    "get_adapter",
    "register_adapter",
    "registered_types",
]
