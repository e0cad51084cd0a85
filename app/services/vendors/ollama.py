"""Ollama local-server adapter."""

from typing import Any, Dict, List

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


@register_adapter
class OllamaAdapter(VendorAdapter):
    """Self-hosted Ollama server; no auth and no streaming."""

    provider_type = ProviderType.OLLAMA
    label = "Ollama"
    default_base_url = "http://localhost:11434"
    supports_streaming = False

    def build_request(
        self,
        connection: ProviderConnection,
        request: ChatRequest,
        stream: bool
    ) -> VendorHttpRequest:
        messages = [{"role": "system", "content": request.system_prompt}]
        messages.extend(
            {"role": m.role, "content": m.content}
            for m in request.messages
            if m.role != "system"
        )
        return VendorHttpRequest(
            method="POST",
            url=f"{self.resolve_base_url(connection)}/api/chat",
            headers={"Content-Type": "application/json", **(connection.custom_headers or {})},
            json={
                "model": request.model,
                "messages": messages,
                "stream": False,
                "options": drop_none({
                    "temperature": request.temperature,
                    "top_p": request.top_p,
                    "num_predict": request.max_tokens,
                }),
            }
        )

    def parse_whole_response(self, data: Dict[str, Any], request: ChatRequest) -> VendorResponse:
        return VendorResponse(
            text=data["message"]["content"] or "",
            model_used=data.get("model") or request.model
        )

    def build_models_request(self, connection: ProviderConnection) -> VendorHttpRequest:
        return VendorHttpRequest(
            method="GET",
            url=f"{self.resolve_base_url(connection)}/api/tags",
            headers={}
        )

    def parse_models_response(self, data: Any) -> List[ModelInfo]:
        return [
            ModelInfo(
                model_name=entry["name"],
                display_name=format_model_name(entry["name"]),
                description=f"Ollama {format_model_name(entry['name'])}",
                max_context_length=4096,
                supports_vision='vision' in entry["name"] or 'llava' in entry["name"],
                supports_function_calling=False,
                cost_per_1k_input_tokens=0.0,
                cost_per_1k_output_tokens=0.0,
            )
            for entry in data.get("models", [])
        ]
