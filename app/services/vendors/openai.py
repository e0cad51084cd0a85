"""OpenAI chat-completions adapter and the shared OpenAI-compatible wire format."""

import logging
from typing import Any, Dict, List, Optional

from app.models.model_catalog import CapabilityTier, Modality
from app.models.provider import ProviderType
from app.services.exceptions import VendorProtocolError
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

# (input, output) USD per 1k tokens; longest matching key wins
OPENAI_COSTS = {
    'gpt-4o-mini': (0.00015, 0.0006),
    'gpt-4o': (0.0025, 0.01),
    'gpt-4-turbo': (0.01, 0.03),
    'gpt-4': (0.03, 0.06),
    'gpt-3.5-turbo': (0.0005, 0.0015),
    'o1-preview': (0.015, 0.06),
    'o1-mini': (0.003, 0.012),
}

OPENAI_CHAT_PREFIXES = ('gpt', 'o1', 'o3', 'o4')


def error_text(error: Any) -> str:
    """Readable message from an OpenAI-style ``error`` object."""
    if isinstance(error, dict):
        return str(error.get("message") or error)
    return str(error)


class OpenAICompatibleAdapter(VendorAdapter):
    """Vendors speaking the OpenAI chat-completions protocol.

    The system prompt is the first message, auth is a bearer token, and
    streams are SSE ``choices[0].delta.content`` chunks ending with ``[DONE]``.
    """

    label = "OpenAI-compatible"
    send_penalties = True

    def build_headers(self, connection: ProviderConnection) -> Dict[str, str]:
        headers = {"Content-Type": "application/json"}
        if connection.api_key:
            headers["Authorization"] = f"Bearer {connection.api_key}"
        return headers

    def build_messages(self, request: ChatRequest) -> List[Dict[str, str]]:
        messages = [{"role": "system", "content": request.system_prompt}]
        messages.extend(
            {"role": m.role, "content": m.content}
            for m in request.messages
            if m.role != "system"
        )
        return messages

    def build_request(
        self,
        connection: ProviderConnection,
        request: ChatRequest,
        stream: bool
    ) -> VendorHttpRequest:
        body = {
            "model": request.model,
            "messages": self.build_messages(request),
            "stream": stream,
        }
        body.update(drop_none({
            "max_tokens": request.max_tokens,
            "temperature": request.temperature,
            "top_p": request.top_p,
        }))
        if self.send_penalties:
            body.update(drop_none({
                "frequency_penalty": request.frequency_penalty,
                "presence_penalty": request.presence_penalty,
            }))

        return VendorHttpRequest(
            method="POST",
            url=f"{self.resolve_base_url(connection)}/chat/completions",
            headers=self.build_headers(connection),
            json=body
        )

    def parse_stream_chunk(self, payload: Dict[str, Any]) -> Optional[str]:
        if "error" in payload:
            raise VendorProtocolError(f"{self.label} stream error: {error_text(payload['error'])}")
        choices = payload.get("choices") or []
        if not choices:
            return None
        delta = choices[0].get("delta") or {}
        return delta.get("content")

    def parse_whole_response(self, data: Dict[str, Any], request: ChatRequest) -> VendorResponse:
        if data.get("usage"):
            self._log_usage(data["usage"])
        return VendorResponse(
            text=data["choices"][0]["message"]["content"] or "",
            model_used=data.get("model") or request.model
        )

    def build_models_request(self, connection: ProviderConnection) -> Optional[VendorHttpRequest]:
        return VendorHttpRequest(
            method="GET",
            url=f"{self.resolve_base_url(connection)}/models",
            headers=self.build_headers(connection)
        )

    def parse_models_response(self, data: Any) -> List[ModelInfo]:
        entries = data.get("data", []) if isinstance(data, dict) else data
        return [
            self.describe_model(entry)
            for entry in entries
            if entry.get("id") and self.include_model(entry["id"])
        ]

    def include_model(self, model_id: str) -> bool:
        return True

    def describe_model(self, entry: Dict[str, Any]) -> ModelInfo:
        model_id = entry["id"]
        return ModelInfo(
            model_name=model_id,
            display_name=format_model_name(entry.get("display_name") or model_id),
            description=entry.get("description") or f"{self.label} {format_model_name(model_id)}",
            max_context_length=entry.get("context_length") or entry.get("max_context_length"),
            supports_vision='vision' in model_id,
            supports_function_calling=True,
        )

    def _log_usage(self, usage: Dict[str, Any]) -> None:
        logger.info(f"[{self.label}] Token usage: {usage}")


def openai_capability(model_id: str) -> str:
    if 'o3' in model_id or 'o4' in model_id or 'gpt-5' in model_id:
        return CapabilityTier.FLAGSHIP.value
    if 'gpt-4o-mini' in model_id or 'o1-mini' in model_id:
        return CapabilityTier.FAST.value
    if 'gpt-3.5' in model_id or 'nano' in model_id:
        return CapabilityTier.LIGHTWEIGHT.value
    return CapabilityTier.STANDARD.value


def openai_context_length(model_id: str) -> int:
    if 'gpt-4o' in model_id or 'gpt-4-turbo' in model_id:
        return 128000
    if 'gpt-4' in model_id:
        return 8192
    if 'gpt-3.5-turbo' in model_id:
        return 16385
    if 'o1' in model_id or 'o3' in model_id or 'o4' in model_id:
        return 200000
    return 4096


def openai_costs(model_id: str) -> tuple:
    for key in sorted(OPENAI_COSTS, key=len, reverse=True):
        if key in model_id:
            return OPENAI_COSTS[key]
    return (0.0, 0.0)


@register_adapter
class OpenAIAdapter(OpenAICompatibleAdapter):
    provider_type = ProviderType.OPENAI
    label = "OpenAI"
    default_base_url = "https://api.openai.com/v1"

    def build_headers(self, connection: ProviderConnection) -> Dict[str, str]:
        headers = super().build_headers(connection)
        if connection.organization_id:
            headers["OpenAI-Organization"] = connection.organization_id
        if connection.project_id:
            headers["OpenAI-Project"] = connection.project_id
        return headers

    def include_model(self, model_id: str) -> bool:
        return any(prefix in model_id for prefix in OPENAI_CHAT_PREFIXES)

    def describe_model(self, entry: Dict[str, Any]) -> ModelInfo:
        model_id = entry["id"]
        multimodal = any(k in model_id for k in ('vision', 'gpt-4o', 'gpt-4-turbo', 'o3', 'o4'))
        input_cost, output_cost = openai_costs(model_id)
        return ModelInfo(
            model_name=model_id,
            display_name=format_model_name(model_id),
            description=f"OpenAI {format_model_name(model_id)}",
            max_context_length=openai_context_length(model_id),
            supports_vision=multimodal,
            supports_function_calling=True,
            cost_per_1k_input_tokens=input_cost,
            cost_per_1k_output_tokens=output_cost,
            capability_tier=openai_capability(model_id),
            modality=Modality.MULTIMODAL.value if multimodal else Modality.TEXT.value,
        )
