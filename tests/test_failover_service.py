"""Tests for the primary/fallback failover policy."""

import httpx
import pytest

from app.config import settings
from app.models.provider import ProviderType
from app.services.exceptions import FailoverExhaustedError, VendorProtocolError, VendorTransportError
from app.services.failover_service import FAILOVER_MESSAGE, FailoverOrchestrator
from app.services.routing_service import RoutePlan, RouteTarget
from app.services.vendors import ChatMessage, ChatRequest, ProviderConnection, StreamEventType, get_adapter
from tests.fakes import ScriptedAdapter, lookup


def target(provider_id, name, provider_type, model):
    return RouteTarget(
        connection=ProviderConnection(id=provider_id, name=name, provider_type=provider_type, api_key="k"),
        model=model
    )


PRIMARY = target(1, "Primary", ProviderType.OPENAI, "gpt-4o")
FALLBACK = target(2, "Fallback", ProviderType.ANTHROPIC, "claude-3-5-sonnet-20241022")


@pytest.fixture
def chat_request():
    return ChatRequest(model="gpt-4o", system_prompt="Be brief.", messages=[ChatMessage("user", "Hi")])


class EventLog:
    def __init__(self):
        self.events = []

    async def __call__(self, event):
        self.events.append(event)


@pytest.mark.asyncio
async def test_primary_success_never_touches_fallback(chat_request, clock):
    primary = ScriptedAdapter(chunks=["Hel", "lo"])
    fallback = ScriptedAdapter(chunks=["unused"])
    orchestrator = FailoverOrchestrator(lookup(openai=primary, anthropic=fallback), clock=clock)
    log = EventLog()

    result = await orchestrator.run(RoutePlan(primary=PRIMARY, fallback=FALLBACK), chat_request, log, clock())

    assert result.response == "Hello"
    assert result.provider_used is PRIMARY
    assert result.model_used == "gpt-4o"
    assert result.failover_count == 0
    assert [e.payload for e in log.events] == ["Hel", "lo"]
    assert fallback.calls == []


@pytest.mark.asyncio
async def test_fallback_uses_its_own_model(chat_request, clock):
    primary = ScriptedAdapter(error=VendorProtocolError("OpenAI API error: 500", status_code=500))
    fallback = ScriptedAdapter(chunks=["Hi there"])
    orchestrator = FailoverOrchestrator(lookup(openai=primary, anthropic=fallback), clock=clock)
    log = EventLog()

    result = await orchestrator.run(RoutePlan(primary=PRIMARY, fallback=FALLBACK), chat_request, log, clock())

    assert result.response == "Hi there"
    assert result.provider_used is FALLBACK
    assert result.failover_count == 1
    assert [e.type for e in log.events] == [StreamEventType.FAILOVER, StreamEventType.CONTENT]
    assert log.events[0].payload == FAILOVER_MESSAGE

    connection, sent = fallback.calls[0]
    assert connection.name == "Fallback"
    assert sent.model == "claude-3-5-sonnet-20241022"
    assert chat_request.model == "gpt-4o"


@pytest.mark.asyncio
async def test_primary_partial_output_then_failure(chat_request, clock):
    primary = ScriptedAdapter(chunks=["Half an"], error=VendorTransportError("connection reset"))
    fallback = ScriptedAdapter(chunks=["Whole answer"])
    orchestrator = FailoverOrchestrator(lookup(openai=primary, anthropic=fallback), clock=clock)
    log = EventLog()

    result = await orchestrator.run(RoutePlan(primary=PRIMARY, fallback=FALLBACK), chat_request, log, clock())

    assert result.response == "Whole answer"
    assert [e.type for e in log.events] == [
        StreamEventType.CONTENT, StreamEventType.FAILOVER, StreamEventType.CONTENT
    ]


@pytest.mark.asyncio
async def test_no_fallback_configured(chat_request, clock):
    primary = ScriptedAdapter(error=VendorProtocolError("OpenAI API error: 429 - rate limited", status_code=429))
    orchestrator = FailoverOrchestrator(lookup(openai=primary), clock=clock)

    with pytest.raises(FailoverExhaustedError, match="429") as exc_info:
        await orchestrator.run(RoutePlan(primary=PRIMARY), chat_request, EventLog(), clock())

    assert exc_info.value.failover_count == 0
    assert exc_info.value.provider_id == 1
    assert exc_info.value.provider_name == "Primary"


@pytest.mark.asyncio
async def test_both_fail(chat_request, clock):
    primary = ScriptedAdapter(error=VendorProtocolError("primary down"))
    fallback = ScriptedAdapter(error=VendorProtocolError("fallback down"))
    orchestrator = FailoverOrchestrator(lookup(openai=primary, anthropic=fallback), clock=clock)
    log = EventLog()

    with pytest.raises(FailoverExhaustedError, match="fallback down") as exc_info:
        await orchestrator.run(RoutePlan(primary=PRIMARY, fallback=FALLBACK), chat_request, log, clock())

    assert exc_info.value.failover_count == 1
    assert exc_info.value.provider_id == 2
    assert [e.type for e in log.events] == [StreamEventType.FAILOVER]


@pytest.mark.asyncio
async def test_budget_exhausted_skips_fallback(chat_request, clock):
    started_at = clock()

    primary = ScriptedAdapter(
        error=VendorTransportError("OpenAI request timed out"),
        on_call=lambda: clock.advance_ms(6000)
    )
    fallback = ScriptedAdapter(chunks=["too late"])
    orchestrator = FailoverOrchestrator(
        lookup(openai=primary, anthropic=fallback), clock=clock, budget_ms=5000
    )
    log = EventLog()

    with pytest.raises(FailoverExhaustedError, match="budget") as exc_info:
        await orchestrator.run(RoutePlan(primary=PRIMARY, fallback=FALLBACK), chat_request, log, started_at)

    assert exc_info.value.failover_count == 0
    assert fallback.calls == []
    assert log.events == []


@pytest.mark.asyncio
async def test_budget_measured_from_session_start(chat_request, clock):
    started_at = clock()
    clock.advance_ms(4000)
    primary = ScriptedAdapter(error=VendorTransportError("reset"), on_call=lambda: clock.advance_ms(999))
    fallback = ScriptedAdapter(chunks=["made it"])
    orchestrator = FailoverOrchestrator(
        lookup(openai=primary, anthropic=fallback), clock=clock, budget_ms=5000
    )

    result = await orchestrator.run(RoutePlan(primary=PRIMARY, fallback=FALLBACK), chat_request, EventLog(), started_at)

    assert result.response == "made it"
    assert result.failover_count == 1


@pytest.mark.asyncio
async def test_missing_primary_goes_straight_to_fallback(chat_request, clock):
    fallback = ScriptedAdapter(chunks=["from fallback"])
    orchestrator = FailoverOrchestrator(lookup(anthropic=fallback), clock=clock)
    log = EventLog()

    result = await orchestrator.run(RoutePlan(fallback=FALLBACK), chat_request, log, clock())

    assert result.failover_count == 1
    assert log.events[0].type == StreamEventType.FAILOVER


@pytest.mark.asyncio
async def test_empty_route(chat_request, clock):
    orchestrator = FailoverOrchestrator(lookup(), clock=clock)
    route = RoutePlan(reason="No active and healthy providers configured for this chatbot.")

    with pytest.raises(FailoverExhaustedError, match="No active and healthy providers"):
        await orchestrator.run(route, chat_request, EventLog(), clock())


def test_default_route_uses_injected_target(clock):
    orchestrator = FailoverOrchestrator(lookup(), clock=clock, default_target=FALLBACK)

    route = orchestrator.default_route()

    assert route.primary is FALLBACK
    assert route.fallback is None


def test_default_route_from_settings(clock, monkeypatch):
    monkeypatch.setattr(settings, "default_provider_type", "mistral")
    monkeypatch.setattr(settings, "default_provider_name", "Mistral (Default)")
    monkeypatch.setattr(settings, "default_model", "mistral-small-latest")

    route = FailoverOrchestrator(lookup(), clock=clock).default_route()

    assert route.primary.provider_name == "Mistral (Default)"
    assert route.primary.connection.provider_type == ProviderType.MISTRAL
    assert route.primary.model == "mistral-small-latest"


@pytest.mark.asyncio
@pytest.mark.parametrize("body", [[], None, "overloaded"])
async def test_malformed_whole_response_fails_over(chat_request, clock, body):
    google = target(3, "Gemini", ProviderType.GOOGLE, "gemini-1.5-pro")
    fallback = ScriptedAdapter(chunks=["Recovered"])
    async with httpx.AsyncClient(transport=httpx.MockTransport(lambda request: httpx.Response(200, json=body))) as client:
        orchestrator = FailoverOrchestrator(
            lookup(google=get_adapter("google"), anthropic=fallback), clock=clock, client=client
        )
        log = EventLog()

        result = await orchestrator.run(RoutePlan(primary=google, fallback=FALLBACK), chat_request, log, clock())

    assert result.failover_count == 1
    assert result.provider_used is FALLBACK
    assert result.response == "Recovered"
    assert [e.type for e in log.events] == [StreamEventType.FAILOVER, StreamEventType.CONTENT]
