"""Adapters for the remaining OpenAI-compatible vendors: Together-hosted Llama, xAI and custom endpoints."""

from typing import Any, Dict

from app.models.provider import ProviderType
from app.services.vendors.base import ModelInfo, ProviderConnection, format_model_name
from app.services.vendors.openai import OpenAICompatibleAdapter
from app.services.vendors.registry import register_adapter


@register_adapter
class MetaAdapter(OpenAICompatibleAdapter):
    """Meta Llama models served through Together AI."""

    provider_type = ProviderType.META
    label = "Together AI"
    default_base_url = "https://api.together.xyz/v1"

    def include_model(self, model_id: str) -> bool:
        return 'llama' in model_id.lower()

    def describe_model(self, entry: Dict[str, Any]) -> ModelInfo:
        model_id = entry["id"]
        pricing = entry.get("pricing") or {}
        return ModelInfo(
            model_name=model_id,
            display_name=format_model_name(entry.get("display_name") or model_id),
            description=entry.get("description") or f"Meta {format_model_name(model_id)}",
            max_context_length=entry.get("context_length") or 128000,
            supports_vision='vision' in model_id.lower(),
            supports_function_calling=True,
            cost_per_1k_input_tokens=pricing.get("input") or 0.0002,
            cost_per_1k_output_tokens=pricing.get("output") or 0.0002,
        )


@register_adapter
class XaiAdapter(OpenAICompatibleAdapter):
    provider_type = ProviderType.XAI
    label = "xAI"
    default_base_url = "https://api.x.ai/v1"
    send_penalties = False

    def describe_model(self, entry: Dict[str, Any]) -> ModelInfo:
        info = super().describe_model(entry)
        info.max_context_length = info.max_context_length or 128000
        info.cost_per_1k_input_tokens = 0.005
        info.cost_per_1k_output_tokens = 0.015
        return info


@register_adapter
class CustomAdapter(OpenAICompatibleAdapter):
    """Any self-declared OpenAI-compatible endpoint; the provider must carry a base URL."""

    provider_type = ProviderType.CUSTOM
    label = "Custom provider"

    def build_headers(self, connection: ProviderConnection) -> Dict[str, str]:
        headers = super().build_headers(connection)
        headers.update(connection.custom_headers or {})
        return headers
