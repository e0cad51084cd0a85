"""Vendor adapter contract and shared HTTP plumbing.

Every upstream vendor gets one ``VendorAdapter`` subclass that knows how to
build that vendor's HTTP request and how to read its response, either as an
SSE stream of incremental deltas or as one whole JSON document. The base
class owns the network I/O so adapters stay pure translation.
"""

import dataclasses
import json
import logging
from abc import ABC, abstractmethod
from contextlib import asynccontextmanager
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, AsyncIterator, Dict, List, Optional

import httpx
from tenacity import retry, stop_after_attempt, wait_exponential, retry_if_exception_type

from app.config import settings
from app.models.provider import ProviderType
from app.services.exceptions import ProviderError, VendorProtocolError, VendorTransportError

logger = logging.getLogger(__name__)


@dataclass
class ChatMessage:
    """One turn of a conversation in vendor-neutral form."""

    role: str
    content: str


@dataclass
class ChatRequest:
    """Normalized chat request.

    ``messages`` holds prior turns followed by the final user turn; the system
    prompt is kept apart because vendors place it differently.
    """

    model: str
    system_prompt: str
    messages: List[ChatMessage]
    temperature: Optional[float] = None
    max_tokens: Optional[int] = None
    top_p: Optional[float] = None
    frequency_penalty: Optional[float] = None
    presence_penalty: Optional[float] = None

    def with_model(self, model: str) -> "ChatRequest":
        """Copy of this request targeting another model."""
        return dataclasses.replace(self, model=model)


@dataclass
class ProviderConnection:
    """Decrypted connection details for one provider."""

    name: str
    provider_type: ProviderType
    api_key: Optional[str] = None
    base_url: Optional[str] = None
    organization_id: Optional[str] = None
    project_id: Optional[str] = None
    custom_headers: Dict[str, str] = field(default_factory=dict)
    id: Optional[int] = None


class StreamEventType(str, Enum):
    """Normalized event kinds flowing from a vendor call to the session.

    Vendor failures are not events: adapters raise ``ProviderError`` and the
    orchestrator decides whether to fail over.
    """

    CONTENT = "content"
    FAILOVER = "failover"


@dataclass(frozen=True)
class StreamEvent:
    type: StreamEventType
    payload: str


@dataclass
class VendorResponse:
    """Whole (non-streamed) vendor answer."""

    text: str
    model_used: str


@dataclass
class VendorHttpRequest:
    method: str
    url: str
    headers: Dict[str, str]
    json: Optional[Dict[str, Any]] = None
    params: Optional[Dict[str, str]] = None


@dataclass
class ModelInfo:
    """Catalog metadata for one vendor model."""

    model_name: str
    display_name: str
    description: Optional[str] = None
    max_context_length: Optional[int] = None
    supports_vision: bool = False
    supports_function_calling: bool = False
    cost_per_1k_input_tokens: Optional[float] = None
    cost_per_1k_output_tokens: Optional[float] = None
    capability_tier: Optional[str] = None
    modality: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        return dataclasses.asdict(self)


def format_model_name(name: str) -> str:
    """Turn a model id such as ``gpt-4o-mini`` into ``Gpt 4o Mini``."""
    words = name.replace('-', ' ').replace('_', ' ').split(' ')
    return ' '.join(w[:1].upper() + w[1:] for w in words)


def drop_none(values: Dict[str, Any]) -> Dict[str, Any]:
    """Remove unset generation parameters so vendors apply their own defaults."""
    return {k: v for k, v in values.items() if v is not None}


def sse_data(line: str) -> Optional[str]:
    """Extract the payload of an SSE ``data:`` line, or None for other lines."""
    if not line.startswith("data:"):
        return None
    return line[5:].strip()


@asynccontextmanager
async def vendor_client(client: Optional[httpx.AsyncClient] = None):
    """Yield the given client, or a short-lived one owned by this call."""
    if client is not None:
        yield client
        return
    async with httpx.AsyncClient(timeout=settings.vendor_timeout_seconds) as owned:
        yield owned


class VendorAdapter(ABC):
    """Translate normalized requests to one vendor's wire protocol."""

    provider_type: ProviderType
    label: str = "Vendor"
    default_base_url: Optional[str] = None
    supports_streaming: bool = True

    def resolve_base_url(self, connection: ProviderConnection) -> str:
        """Provider override or vendor default, without trailing slash.

        Raises:
            VendorProtocolError: If neither is available.
        """
        base_url = connection.base_url or self.default_base_url
        if not base_url:
            raise VendorProtocolError(
                f"{self.label} provider '{connection.name}' requires a base URL",
                provider_name=connection.name
            )
        return base_url.rstrip('/')

    @abstractmethod
    def build_request(
        self,
        connection: ProviderConnection,
        request: ChatRequest,
        stream: bool
    ) -> VendorHttpRequest:
        """Build the vendor-specific chat HTTP request."""

    def parse_stream_chunk(self, payload: Dict[str, Any]) -> Optional[str]:
        """Extract the text fragment from one decoded stream chunk.

        Returns:
            The incremental text, or None if the chunk carries no text.

        Raises:
            VendorProtocolError: If the chunk is a vendor error event.
        """
        raise NotImplementedError(f"{self.label} does not stream")

    @abstractmethod
    def parse_whole_response(self, data: Dict[str, Any], request: ChatRequest) -> VendorResponse:
        """Extract the answer from a complete JSON response."""

    def build_models_request(self, connection: ProviderConnection) -> Optional[VendorHttpRequest]:
        """Model listing request, or None when the vendor has no listing API."""
        return None

    def parse_models_response(self, data: Any) -> List[ModelInfo]:
        return []

    def static_models(self) -> List[ModelInfo]:
        """Curated model table for vendors without a listing API."""
        return []

    async def invoke(
        self,
        connection: ProviderConnection,
        request: ChatRequest,
        client: Optional[httpx.AsyncClient] = None
    ) -> AsyncIterator[StreamEvent]:
        """Call the vendor and yield normalized content events.

        Vendors that cannot stream yield their whole answer as one event.

        Raises:
            VendorTransportError: On network failure or timeout.
            VendorProtocolError: On non-2xx status or vendor error events.
        """
        async with vendor_client(client) as http:
            if not self.supports_streaming:
                response = await self.complete(connection, request, client=http)
                if response.text:
                    yield StreamEvent(StreamEventType.CONTENT, response.text)
                return

            vendor_request = self.build_request(connection, request, stream=True)
            logger.info(f"[{self.label}] Streaming model {request.model} from provider '{connection.name}'")
            try:
                async with http.stream(
                    vendor_request.method,
                    vendor_request.url,
                    headers=vendor_request.headers,
                    json=vendor_request.json,
                    params=vendor_request.params
                ) as response:
                    if not response.is_success:
                        body = (await response.aread()).decode("utf-8", errors="replace")
                        raise self._status_error(connection, response.status_code, body)

                    async for line in response.aiter_lines():
                        data = sse_data(line)
                        if not data:
                            continue
                        if data == "[DONE]":
                            break
                        text = self._parse_chunk(connection, data)
                        if text:
                            yield StreamEvent(StreamEventType.CONTENT, text)
            except httpx.TimeoutException as e:
                raise VendorTransportError(
                    f"{self.label} request timed out", provider_name=connection.name
                ) from e
            except httpx.TransportError as e:
                raise VendorTransportError(
                    f"{self.label} request failed: {e}", provider_name=connection.name
                ) from e

    async def complete(
        self,
        connection: ProviderConnection,
        request: ChatRequest,
        client: Optional[httpx.AsyncClient] = None
    ) -> VendorResponse:
        """Call the vendor without streaming and return the whole answer."""
        vendor_request = self.build_request(connection, request, stream=False)
        logger.info(f"[{self.label}] Requesting model {request.model} from provider '{connection.name}'")
        async with vendor_client(client) as http:
            response = await self._send(http, connection, vendor_request)

        data = self._decode_json(connection, response)
        if not isinstance(data, dict):
            raise VendorProtocolError(
                f"Unexpected {self.label} response format: expected a JSON object",
                status_code=response.status_code,
                body=response.text,
                provider_name=connection.name
            )
        try:
            result = self.parse_whole_response(data, request)
        except (KeyError, IndexError, TypeError, AttributeError) as e:
            raise VendorProtocolError(
                f"Unexpected {self.label} response format: {e}",
                body=response.text,
                provider_name=connection.name
            ) from e

        if result.model_used != request.model:
            logger.warning(f"[{self.label}] Model mismatch - requested {request.model}, received {result.model_used}")
        return result

    async def list_models(
        self,
        connection: ProviderConnection,
        client: Optional[httpx.AsyncClient] = None
    ) -> List[ModelInfo]:
        """Current model listing with catalog metadata."""
        vendor_request = self.build_models_request(connection)
        if vendor_request is None:
            return self.static_models()

        async with vendor_client(client) as http:
            response = await self._fetch_listing(http, connection, vendor_request)

        data = self._decode_json(connection, response)
        try:
            models = self.parse_models_response(data)
        except (KeyError, TypeError, AttributeError) as e:
            raise VendorProtocolError(
                f"Unexpected {self.label} model listing format: {e}",
                provider_name=connection.name
            ) from e
        logger.info(f"[{self.label}] Fetched {len(models)} models for provider '{connection.name}'")
        return models

    async def probe(
        self,
        connection: ProviderConnection,
        client: Optional[httpx.AsyncClient] = None
    ) -> List[str]:
        """Check that the provider answers with these credentials.

        Returns:
            Names of the models the provider currently offers.

        Raises:
            ProviderError: If the provider is unreachable or rejects the credentials.
        """
        return [m.model_name for m in await self.list_models(connection, client=client)]

    @retry(
        stop=stop_after_attempt(3),
        wait=wait_exponential(multiplier=1, min=1, max=10),
        retry=retry_if_exception_type(VendorTransportError),
        reraise=True
    )
    async def _fetch_listing(
        self,
        http: httpx.AsyncClient,
        connection: ProviderConnection,
        vendor_request: VendorHttpRequest
    ) -> httpx.Response:
        return await self._send(http, connection, vendor_request)

    async def _send(
        self,
        http: httpx.AsyncClient,
        connection: ProviderConnection,
        vendor_request: VendorHttpRequest
    ) -> httpx.Response:
        try:
            response = await http.request(
                vendor_request.method,
                vendor_request.url,
                headers=vendor_request.headers,
                json=vendor_request.json,
                params=vendor_request.params
            )
        except httpx.TimeoutException as e:
            logger.error(f"[{self.label}] Timeout calling provider '{connection.name}'")
            raise VendorTransportError(
                f"{self.label} request timed out", provider_name=connection.name
            ) from e
        except httpx.TransportError as e:
            logger.error(f"[{self.label}] Request error calling provider '{connection.name}': {e}")
            raise VendorTransportError(
                f"{self.label} request failed: {e}", provider_name=connection.name
            ) from e

        if not response.is_success:
            raise self._status_error(connection, response.status_code, response.text)
        return response

    def _status_error(self, connection: ProviderConnection, status_code: int, body: str) -> ProviderError:
        logger.error(f"[{self.label}] API error {status_code} from provider '{connection.name}': {body[:500]}")
        if status_code == 403:
            logger.error(f"[{self.label}] 403 Forbidden - API key may not have access to the requested model")
        elif status_code == 429:
            logger.error(f"[{self.label}] 429 Rate Limit - quota exceeded or rate limit hit")
        return VendorProtocolError(
            f"{self.label} API error: {status_code} - {body}",
            status_code=status_code,
            body=body,
            provider_name=connection.name
        )

    def _decode_json(self, connection: ProviderConnection, response: httpx.Response) -> Any:
        try:
            return response.json()
        except ValueError as e:
            raise VendorProtocolError(
                f"{self.label} returned malformed JSON",
                status_code=response.status_code,
                body=response.text,
                provider_name=connection.name
            ) from e

    def _parse_chunk(self, connection: ProviderConnection, data: str) -> Optional[str]:
        try:
            payload = json.loads(data)
        except ValueError:
            logger.warning(f"[{self.label}] Skipping malformed stream chunk: {data[:200]}")
            return None
        if not isinstance(payload, dict):
            return None
        try:
            return self.parse_stream_chunk(payload)
        except VendorProtocolError as e:
            e.provider_name = connection.name
            raise
        except (KeyError, IndexError, TypeError, AttributeError) as e:
            logger.warning(f"[{self.label}] Skipping unexpected stream chunk ({e}): {data[:200]}")
            return None
