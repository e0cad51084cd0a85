"""Anthropic Messages API adapter."""

import logging
from typing import Any, Dict, List, Optional

import httpx

from app.config import settings
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
    vendor_client,
)
from app.services.vendors.registry import register_adapter

logger = logging.getLogger(__name__)

ANTHROPIC_VERSION = "2023-06-01"
PROBE_MODEL = "claude-3-5-haiku-20241022"


def _claude(model_name, display_name, description, input_cost, output_cost, tier) -> ModelInfo:
    return ModelInfo(
        model_name=model_name,
        display_name=display_name,
        description=description,
        max_context_length=200000,
        supports_vision=True,
        supports_function_calling=True,
        cost_per_1k_input_tokens=input_cost,
        cost_per_1k_output_tokens=output_cost,
        capability_tier=tier.value,
        modality=Modality.MULTIMODAL.value,
    )


# Anthropic has no model listing endpoint usable with a plain API key
CLAUDE_MODELS = [
    ("claude-opus-4-1-20250805", "Claude Opus 4.1", "Most capable Claude model with superior reasoning",
     0.015, 0.075, CapabilityTier.FLAGSHIP),
    ("claude-sonnet-4-20250514", "Claude Sonnet 4", "High-performance model with exceptional reasoning",
     0.003, 0.015, CapabilityTier.FLAGSHIP),
    ("claude-3-5-sonnet-20241022", "Claude 3.5 Sonnet", "Most intelligent Claude 3 model",
     0.003, 0.015, CapabilityTier.STANDARD),
    ("claude-3-5-haiku-20241022", "Claude 3.5 Haiku", "Fast and efficient Claude",
     0.001, 0.005, CapabilityTier.FAST),
    ("claude-3-opus-20240229", "Claude 3 Opus", "Most powerful Claude 3 model",
     0.015, 0.075, CapabilityTier.FLAGSHIP),
    ("claude-3-sonnet-20240229", "Claude 3 Sonnet", "Balanced Claude 3 model",
     0.003, 0.015, CapabilityTier.STANDARD),
    ("claude-3-haiku-20240307", "Claude 3 Haiku", "Fastest Claude 3 model",
     0.00025, 0.00125, CapabilityTier.FAST),
]


@register_adapter
class AnthropicAdapter(VendorAdapter):
    """Anthropic Messages API.

    The system prompt is a top-level field, auth uses the ``x-api-key``
    header, and streams are ``content_block_delta`` events.
    """

    provider_type = ProviderType.ANTHROPIC
    label = "Anthropic"
    default_base_url = "https://api.anthropic.com/v1"

    def build_headers(self, connection: ProviderConnection) -> Dict[str, str]:
        return {
            "x-api-key": connection.api_key or "",
            "anthropic-version": ANTHROPIC_VERSION,
            "Content-Type": "application/json",
        }

    def build_request(
        self,
        connection: ProviderConnection,
        request: ChatRequest,
        stream: bool
    ) -> VendorHttpRequest:
        body = {
            "model": request.model,
            "system": request.system_prompt,
            "messages": [
                {"role": m.role, "content": m.content}
                for m in request.messages
                if m.role != "system"
            ],
            # max_tokens is mandatory for this API
            "max_tokens": request.max_tokens or settings.default_max_tokens,
            "stream": stream,
        }
        body.update(drop_none({
            "temperature": request.temperature,
            "top_p": request.top_p,
        }))

        return VendorHttpRequest(
            method="POST",
            url=f"{self.resolve_base_url(connection)}/messages",
            headers=self.build_headers(connection),
            json=body
        )

    def parse_stream_chunk(self, payload: Dict[str, Any]) -> Optional[str]:
        event_type = payload.get("type")
        if event_type == "error":
            error = payload.get("error") or {}
            message = error.get("message") if isinstance(error, dict) else error
            raise VendorProtocolError(f"Anthropic stream error: {message}")
        if event_type == "content_block_delta":
            return (payload.get("delta") or {}).get("text")
        return None

    def parse_whole_response(self, data: Dict[str, Any], request: ChatRequest) -> VendorResponse:
        if data.get("usage"):
            logger.info(f"[Anthropic] Token usage: {data['usage']}")
        text = "".join(
            block.get("text", "")
            for block in data["content"]
            if block.get("type") == "text"
        )
        return VendorResponse(text=text, model_used=data.get("model") or request.model)

    def static_models(self) -> List[ModelInfo]:
        return [_claude(*row) for row in CLAUDE_MODELS]

    async def probe(
        self,
        connection: ProviderConnection,
        client: Optional[httpx.AsyncClient] = None
    ) -> List[str]:
        """Send a one-token message; only rejected credentials count as unhealthy."""
        vendor_request = VendorHttpRequest(
            method="POST",
            url=f"{self.resolve_base_url(connection)}/messages",
            headers=self.build_headers(connection),
            json={
                "model": PROBE_MODEL,
                "max_tokens": 1,
                "messages": [{"role": "user", "content": "test"}],
            }
        )
        async with vendor_client(client) as http:
            try:
                await self._send(http, connection, vendor_request)
            except VendorProtocolError as e:
                if e.status_code in (401, 403):
                    raise
                logger.warning(f"[Anthropic] Probe for '{connection.name}' returned {e.status_code}, treating as reachable")

        return [name for name, *_ in CLAUDE_MODELS[2:5]]
