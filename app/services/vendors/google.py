"""Google Gemini ``generateContent`` adapter."""

import logging
from typing import Any, Dict, List

from app.models.model_catalog import CapabilityTier, Modality
from app.models.provider import ProviderType
from app.services.vendors.base import (
    ChatRequest,
    ModelInfo,
    ProviderConnection,
    VendorAdapter,
    VendorHttpRequest,
    VendorResponse,
    drop_none,
    format_model_name,
)
from app.services.vendors.registry import register_adapter

logger = logging.getLogger(__name__)

VISION_MARKERS = ('vision', 'gemini-1.5', 'gemini-2.0', 'gemini-2.5')


def google_costs(model_name: str) -> tuple:
    if 'gemini-1.5-pro' in model_name:
        return (0.00125, 0.005)
    if 'gemini-1.5-flash' in model_name:
        return (0.000075, 0.0003)
    if 'gemini-2.0' in model_name:
        return (0.001, 0.004)
    return (0.0, 0.0)


def google_capability(model_name: str) -> str:
    if 'pro' in model_name:
        return CapabilityTier.FLAGSHIP.value
    if 'flash' in model_name and 'lite' not in model_name:
        return CapabilityTier.FAST.value
    if 'lite' in model_name or 'nano' in model_name:
        return CapabilityTier.LIGHTWEIGHT.value
    return CapabilityTier.STANDARD.value


@register_adapter
class GoogleAdapter(VendorAdapter):
    """Google Generative Language API.

    Auth is a ``key`` query parameter, the system prompt goes in
    ``systemInstruction`` and the assistant role is called ``model``.
    Answers are read as one whole document.
    """

    provider_type = ProviderType.GOOGLE
    label = "Google"
    default_base_url = "https://generativelanguage.googleapis.com/v1beta"
    supports_streaming = False

    def build_request(
        self,
        connection: ProviderConnection,
        request: ChatRequest,
        stream: bool
    ) -> VendorHttpRequest:
        contents = [
            {
                "role": "model" if m.role == "assistant" else "user",
                "parts": [{"text": m.content}],
            }
            for m in request.messages
            if m.role != "system"
        ]
        body = {
            "systemInstruction": {"parts": [{"text": request.system_prompt}]},
            "contents": contents,
            "generationConfig": drop_none({
                "temperature": request.temperature,
                "topP": request.top_p,
                "maxOutputTokens": request.max_tokens,
            }),
        }

        return VendorHttpRequest(
            method="POST",
            url=f"{self.resolve_base_url(connection)}/models/{request.model}:generateContent",
            headers={"Content-Type": "application/json", **(connection.custom_headers or {})},
            json=body,
            params={"key": connection.api_key or ""}
        )

    def parse_whole_response(self, data: Dict[str, Any], request: ChatRequest) -> VendorResponse:
        if data.get("usageMetadata"):
            logger.info(f"[Google] Token usage: {data['usageMetadata']}")
        parts = data["candidates"][0]["content"]["parts"]
        text = "".join(part.get("text", "") for part in parts)
        return VendorResponse(text=text, model_used=data.get("modelVersion") or request.model)

    def build_models_request(self, connection: ProviderConnection) -> VendorHttpRequest:
        return VendorHttpRequest(
            method="GET",
            url=f"{self.resolve_base_url(connection)}/models",
            headers={},
            params={"key": connection.api_key or ""}
        )

    def parse_models_response(self, data: Any) -> List[ModelInfo]:
        models = []
        for entry in data.get("models", []):
            if 'generateContent' not in (entry.get("supportedGenerationMethods") or []):
                continue
            model_name = entry["name"].replace("models/", "")
            vision = any(marker in entry["name"] for marker in VISION_MARKERS)
            display = format_model_name(entry.get("displayName") or entry["name"])
            input_cost, output_cost = google_costs(entry["name"])
            models.append(ModelInfo(
                model_name=model_name,
                display_name=display,
                description=entry.get("description") or f"Google {display}",
                max_context_length=entry.get("inputTokenLimit") or 32000,
                supports_vision=vision,
                supports_function_calling=True,
                cost_per_1k_input_tokens=input_cost,
                cost_per_1k_output_tokens=output_cost,
                capability_tier=google_capability(model_name),
                modality=Modality.MULTIMODAL.value if vision else Modality.TEXT.value,
            ))
        return models
