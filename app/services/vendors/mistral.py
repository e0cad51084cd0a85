"""Mistral chat-completions adapter."""

from typing import Any, Dict

from app.models.model_catalog import CapabilityTier, Modality
from app.models.provider import ProviderType
from app.services.vendors.base import ModelInfo, format_model_name
from app.services.vendors.openai import OpenAICompatibleAdapter
from app.services.vendors.registry import register_adapter


def mistral_costs(model_id: str) -> tuple:
    if 'large' in model_id:
        return (0.004, 0.012)
    if 'medium' in model_id:
        return (0.0027, 0.0081)
    if 'small' in model_id:
        return (0.001, 0.003)
    return (0.0, 0.0)


def mistral_capability(model_id: str) -> str:
    if 'large' in model_id:
        return CapabilityTier.FLAGSHIP.value
    if 'small' in model_id or 'ministral' in model_id:
        return CapabilityTier.FAST.value
    if 'tiny' in model_id:
        return CapabilityTier.LIGHTWEIGHT.value
    return CapabilityTier.STANDARD.value


@register_adapter
class MistralAdapter(OpenAICompatibleAdapter):
    provider_type = ProviderType.MISTRAL
    label = "Mistral"
    default_base_url = "https://api.mistral.ai/v1"
    send_penalties = False

    def describe_model(self, entry: Dict[str, Any]) -> ModelInfo:
        model_id = entry["id"]
        capabilities = entry.get("capabilities") or {}
        input_cost, output_cost = mistral_costs(model_id)
        vision = bool(capabilities.get("vision")) if isinstance(capabilities, dict) else False
        if isinstance(capabilities, dict) and "function_calling" in capabilities:
            function_calling = bool(capabilities["function_calling"])
        else:
            function_calling = True
        return ModelInfo(
            model_name=model_id,
            display_name=format_model_name(model_id),
            description=entry.get("description") or f"Mistral {format_model_name(model_id)}",
            max_context_length=entry.get("max_context_length") or 32000,
            supports_vision=vision,
            supports_function_calling=function_calling,
            cost_per_1k_input_tokens=input_cost,
            cost_per_1k_output_tokens=output_cost,
            capability_tier=mistral_capability(model_id),
            modality=Modality.MULTIMODAL.value if vision else Modality.TEXT.value,
        )
