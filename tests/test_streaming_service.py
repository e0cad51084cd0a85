"""Tests for streaming chat sessions."""

import asyncio
import json

import pytest

from app.config import settings
from app.models.audit_log import AuditLogEntry
from app.models.conversation import Conversation, Message
from app.models.document import Document
from app.models.model_catalog import ModelCatalogEntry
from app.models.provider import ProviderType
from app.models.usage_record import UsageRecord
from app.services.conversation_service import ConversationService
from app.services.exceptions import FailoverExhaustedError, TelemetryWriteError, VendorProtocolError
from app.services.failover_service import FAILOVER_MESSAGE, FailoverOrchestrator
from app.services.knowledge_service import CONTEXT_HEADER
from app.services.routing_service import RouteTarget, RoutingService
from app.services.streaming_service import (
    APOLOGY_MESSAGE,
    DISCONNECT_MESSAGE,
    ChatStreamRequest,
    StreamingSessionController,
)
from app.services.usage_service import UsageTelemetryRecorder
from app.services.vendors import ProviderConnection, StreamEvent, StreamEventType, VendorAdapter
from tests.fakes import ScriptedAdapter, lookup


class HangingAdapter(VendorAdapter):
    """Streams one chunk, then waits forever."""

    def __init__(self, first_chunk: str):
        self.first_chunk = first_chunk

    def build_request(self, connection, request, stream):
        raise NotImplementedError

    def parse_whole_response(self, data, request):
        raise NotImplementedError

    async def invoke(self, connection, request, client=None):
        yield StreamEvent(StreamEventType.CONTENT, self.first_chunk)
        await asyncio.Event().wait()


class FailingRecorder(UsageTelemetryRecorder):
    def _write(self, db, outcome):
        raise TelemetryWriteError("usage table unavailable")


@pytest.fixture
def make_controller(test_db, provider_service, clock):
    def _make(usage_recorder=None, default_target=None, **adapters):
        orchestrator = FailoverOrchestrator(lookup(**adapters), clock=clock, default_target=default_target)
        return StreamingSessionController(
            db=test_db,
            provider_service=provider_service,
            routing_service=RoutingService(provider_service),
            orchestrator=orchestrator,
            usage_recorder=usage_recorder
        )

    return _make


@pytest.fixture
def chatbot(make_provider, make_chatbot):
    primary = make_provider("Primary")
    fallback = make_provider("Fallback", provider_type="anthropic")
    return make_chatbot(primary=primary, fallback=fallback, model_name="gpt-4o",
                        fallback_model_name="claude-3-5-sonnet-20241022")


def decode(frame: str) -> dict:
    assert frame.startswith("data: ") and frame.endswith("\n\n")
    return json.loads(frame[len("data: "):])


async def run_session(controller, request):
    return [decode(frame) async for frame in controller.stream(request)]


def saved_messages(db):
    return db.query(Message).order_by(Message.id).all()


@pytest.mark.asyncio
async def test_successful_session(make_controller, chatbot, test_db):
    primary = ScriptedAdapter(chunks=["2+2 ", "is 4."])
    controller = make_controller(openai=primary, anthropic=ScriptedAdapter())

    frames = await run_session(controller, ChatStreamRequest(
        message="What is 2+2?", user_id="user-1", chatbot_id=chatbot.id
    ))

    assert [f["type"] for f in frames] == ["metadata", "content", "content", "done"]
    metadata = frames[0]
    assert metadata["provider"] == "Primary"
    assert metadata["model"] == "gpt-4o"
    assert metadata["sources"] == []
    assert metadata["session_id"]
    assert "".join(f["content"] for f in frames if f["type"] == "content") == "2+2 is 4."

    conversation = test_db.get(Conversation, metadata["conversation_id"])
    assert conversation.title == "What is 2+2?"
    assert conversation.chatbot_id == chatbot.id

    user_message, assistant_message = saved_messages(test_db)
    assert (user_message.role, user_message.content) == ("user", "What is 2+2?")
    assert assistant_message.content == "2+2 is 4."
    assert assistant_message.message_metadata["provider"] == "Primary"
    assert assistant_message.message_metadata["failover_count"] == 0

    record = test_db.query(UsageRecord).one()
    assert record.success is True
    assert record.provider_id == chatbot.primary_provider_id
    assert record.chatbot_id == chatbot.id
    assert record.user_id == "user-1"
    assert record.tokens_used == 3
    assert record.failover_count == 0


@pytest.mark.asyncio
async def test_failover_resets_buffer(make_controller, chatbot, test_db):
    primary = ScriptedAdapter(chunks=["I think"], error=VendorProtocolError("OpenAI API error: 503"))
    fallback = ScriptedAdapter(chunks=["The answer ", "is 4."])
    controller = make_controller(openai=primary, anthropic=fallback)

    frames = await run_session(controller, ChatStreamRequest(
        message="What is 2+2?", user_id="user-1", chatbot_id=chatbot.id
    ))

    assert [f["type"] for f in frames] == ["metadata", "content", "failover", "content", "content", "done"]
    assert frames[2]["message"] == FAILOVER_MESSAGE
    assert fallback.calls[0][1].model == "claude-3-5-sonnet-20241022"

    assistant_message = saved_messages(test_db)[-1]
    assert assistant_message.content == "The answer is 4."
    assert assistant_message.message_metadata["provider"] == "Fallback"
    assert assistant_message.message_metadata["failover_count"] == 1

    record = test_db.query(UsageRecord).one()
    assert record.success is True
    assert record.provider_id == chatbot.fallback_provider_id
    assert record.failover_count == 1


@pytest.mark.asyncio
async def test_all_providers_fail(make_controller, chatbot, test_db):
    controller = make_controller(
        openai=ScriptedAdapter(error=VendorProtocolError("primary down")),
        anthropic=ScriptedAdapter(error=VendorProtocolError("fallback down"))
    )

    frames = await run_session(controller, ChatStreamRequest(
        message="Hello", user_id="user-1", chatbot_id=chatbot.id
    ))

    assert [f["type"] for f in frames] == ["metadata", "failover", "error", "done"]
    assert frames[2]["content"] == "fallback down"

    assistant_message = saved_messages(test_db)[-1]
    assert assistant_message.content == APOLOGY_MESSAGE
    assert assistant_message.message_metadata["error"] == "fallback down"
    assert assistant_message.message_metadata["provider"] == "Fallback"

    record = test_db.query(UsageRecord).one()
    assert record.success is False
    assert record.error_message == "fallback down"
    assert record.provider_id == chatbot.fallback_provider_id
    assert record.failover_count == 1


@pytest.mark.asyncio
async def test_no_usable_providers(make_controller, make_provider, make_chatbot, test_db):
    primary = make_provider("Primary", is_active=False)
    chatbot = make_chatbot(primary=primary)
    controller = make_controller()

    frames = await run_session(controller, ChatStreamRequest(
        message="Hello", user_id="user-1", chatbot_id=chatbot.id
    ))

    assert [f["type"] for f in frames] == ["metadata", "error", "done"]
    assert frames[0]["model"] is None
    assert frames[1]["content"] == "No active and healthy providers configured for this chatbot."
    assert test_db.query(UsageRecord).one().success is False


@pytest.mark.asyncio
async def test_without_chatbot_uses_default_provider(make_controller, test_db, monkeypatch):
    monkeypatch.setattr(settings, "default_provider_type", "openai")
    monkeypatch.setattr(settings, "default_model", "gpt-4o-mini")
    adapter = ScriptedAdapter(chunks=["Hi!"])
    controller = make_controller(openai=adapter)

    frames = await run_session(controller, ChatStreamRequest(message="Hello", user_id="user-1"))

    assert frames[0]["provider"] == settings.default_provider_name
    assert frames[0]["model"] == "gpt-4o-mini"
    connection, sent = adapter.calls[0]
    assert connection.id is None
    assert sent.system_prompt == settings.default_system_prompt

    record = test_db.query(UsageRecord).one()
    assert record.provider_id is None
    assert record.chatbot_id is None


@pytest.mark.asyncio
async def test_inactive_chatbot_falls_back_to_default(make_controller, make_provider, make_chatbot, test_db):
    chatbot = make_chatbot(primary=make_provider("Primary"), is_active=False)
    controller = make_controller(openai=ScriptedAdapter(chunks=["ok"]))

    frames = await run_session(controller, ChatStreamRequest(
        message="Hello", user_id="user-1", chatbot_id=chatbot.id
    ))

    assert frames[0]["provider"] == settings.default_provider_name
    assert frames[-1]["type"] == "done"


@pytest.mark.asyncio
async def test_history_and_knowledge_are_sent(make_controller, chatbot, test_db):
    conversation = ConversationService().get_or_create(test_db, None, "user-1", chatbot.id, "Earlier")
    ConversationService().append_exchange(test_db, conversation.id, "user-1", "Earlier", "Earlier answer", {})
    test_db.add(Document(filename="refunds.md", file_url="https://kb/refunds", content="Refunds take 5 days.",
                         status="processed"))
    test_db.commit()
    adapter = ScriptedAdapter(chunks=["5 days"])
    controller = make_controller(openai=adapter, anthropic=ScriptedAdapter())

    frames = await run_session(controller, ChatStreamRequest(
        message="How long do refunds take?",
        user_id="user-1",
        chatbot_id=chatbot.id,
        conversation_id=conversation.id,
        use_knowledge_base=True
    ))

    assert frames[0]["conversation_id"] == conversation.id
    assert frames[0]["sources"][0]["title"] == "refunds.md"

    sent = adapter.calls[0][1]
    assert [(m.role, m.content) for m in sent.messages[:2]] == [
        ("user", "Earlier"), ("assistant", "Earlier answer")
    ]
    assert sent.messages[-1].content.startswith("How long do refunds take?" + CONTEXT_HEADER)
    assert "[refunds.md]: Refunds take 5 days." in sent.messages[-1].content

    user_message = saved_messages(test_db)[-2]
    assert user_message.content == "How long do refunds take?"
    assert saved_messages(test_db)[-1].message_metadata["sources"][0]["url"] == "https://kb/refunds"


@pytest.mark.asyncio
async def test_client_disconnect_saves_partial_answer(make_controller, chatbot, test_db):
    controller = make_controller(openai=HangingAdapter("Partial ans"), anthropic=ScriptedAdapter())
    stream = controller.stream(ChatStreamRequest(message="Hello", user_id="user-1", chatbot_id=chatbot.id))

    assert decode(await stream.__anext__())["type"] == "metadata"
    assert decode(await stream.__anext__())["content"] == "Partial ans"
    await stream.aclose()
    await asyncio.sleep(0)

    assistant_message = saved_messages(test_db)[-1]
    assert assistant_message.content == "Partial ans"
    assert assistant_message.message_metadata["interrupted"] is True

    record = test_db.query(UsageRecord).one()
    assert record.success is False
    assert record.error_message == DISCONNECT_MESSAGE
    assert record.provider_id == chatbot.primary_provider_id


@pytest.mark.asyncio
async def test_usage_write_failure_does_not_break_stream(make_controller, chatbot, test_db):
    controller = make_controller(
        usage_recorder=FailingRecorder(),
        openai=ScriptedAdapter(chunks=["fine"]),
        anthropic=ScriptedAdapter()
    )

    frames = await run_session(controller, ChatStreamRequest(
        message="Hello", user_id="user-1", chatbot_id=chatbot.id
    ))

    assert [f["type"] for f in frames] == ["metadata", "content", "done"]
    assert saved_messages(test_db)[-1].content == "fine"
    assert test_db.query(UsageRecord).count() == 0


@pytest.mark.asyncio
async def test_injected_default_target(make_controller, test_db):
    adapter = ScriptedAdapter(chunks=["local answer"])
    default_target = RouteTarget(
        connection=ProviderConnection(name="Local Llama", provider_type=ProviderType.OLLAMA),
        model="llama3"
    )
    controller = make_controller(default_target=default_target, ollama=adapter)

    frames = await run_session(controller, ChatStreamRequest(message="Hello", user_id="user-1"))

    assert frames[0]["provider"] == "Local Llama"
    assert frames[0]["model"] == "llama3"
    assert adapter.calls[0][1].model == "llama3"
    assert saved_messages(test_db)[-1].message_metadata["provider"] == "Local Llama"


@pytest.fixture
def mapped_chatbot(make_provider, make_chatbot, test_db):
    """Chatbot whose anthropic fallback gets an auto-mapped model."""
    for provider_type, model_name in [("openai", "gpt-4o"), ("anthropic", "claude-3-5-sonnet-20241022")]:
        test_db.add(ModelCatalogEntry(
            provider_type=provider_type,
            model_name=model_name,
            capability_tier="standard",
            modality="multimodal",
            supports_vision=True,
            supports_function_calling=True
        ))
    test_db.commit()
    return make_chatbot(
        primary=make_provider("Primary"),
        fallback=make_provider("Fallback", provider_type="anthropic"),
        model_name="gpt-4o"
    )


def auto_mapped_entries(db):
    return db.query(AuditLogEntry).filter(AuditLogEntry.action == "model_auto_mapped").all()


@pytest.mark.asyncio
async def test_mapped_fallback_answer_is_audited(make_controller, mapped_chatbot, test_db):
    controller = make_controller(
        openai=ScriptedAdapter(error=VendorProtocolError("primary down")),
        anthropic=ScriptedAdapter(chunks=["From Claude"])
    )

    await run_session(controller, ChatStreamRequest(
        message="Hello", user_id="user-1", chatbot_id=mapped_chatbot.id
    ))

    metadata = saved_messages(test_db)[-1].message_metadata
    assert metadata["fallback_used"] is True
    assert metadata["model_substituted"] is True
    assert metadata["original_fallback_model"] == "gpt-4o"

    entry, = auto_mapped_entries(test_db)
    assert entry.provider_id == mapped_chatbot.fallback_provider_id
    assert entry.details["original_fallback_model"] == "gpt-4o"
    assert entry.details["requested_model"] == "claude-3-5-sonnet-20241022"
    assert entry.details["user_id"] == "user-1"


@pytest.mark.asyncio
async def test_mapping_not_audited_when_primary_answers(make_controller, mapped_chatbot, test_db):
    controller = make_controller(openai=ScriptedAdapter(chunks=["From GPT"]), anthropic=ScriptedAdapter())

    await run_session(controller, ChatStreamRequest(
        message="Hello", user_id="user-1", chatbot_id=mapped_chatbot.id
    ))

    metadata = saved_messages(test_db)[-1].message_metadata
    assert metadata["fallback_used"] is False
    assert "model_substituted" not in metadata
    assert auto_mapped_entries(test_db) == []


class TestRespond:
    """Non-streaming sessions."""

    @pytest.mark.asyncio
    async def test_returns_whole_answer_and_persists(self, make_controller, chatbot, test_db):
        test_db.add(Document(filename="refunds.md", file_url="https://kb/refunds", content="Refunds take 5 days.",
                             status="processed"))
        test_db.commit()
        controller = make_controller(openai=ScriptedAdapter(chunks=["5 ", "days"]), anthropic=ScriptedAdapter())

        reply = await controller.respond(ChatStreamRequest(
            message="How long do refunds take?", user_id="user-1", chatbot_id=chatbot.id,
            use_knowledge_base=True
        ))

        assert reply.response == "5 days"
        assert reply.provider_name == "Primary"
        assert reply.model == "gpt-4o"
        assert reply.failover_count == 0
        assert reply.citations == [{"title": "refunds.md", "url": "https://kb/refunds"}]

        user_message, assistant_message = saved_messages(test_db)
        assert user_message.conversation_id == reply.conversation_id
        assert assistant_message.content == "5 days"
        assert test_db.query(UsageRecord).one().success is True

    @pytest.mark.asyncio
    async def test_failover_keeps_only_fallback_text(self, make_controller, chatbot, test_db):
        controller = make_controller(
            openai=ScriptedAdapter(chunks=["half"], error=VendorProtocolError("primary down")),
            anthropic=ScriptedAdapter(chunks=["Full answer"])
        )

        reply = await controller.respond(ChatStreamRequest(
            message="Hello", user_id="user-1", chatbot_id=chatbot.id
        ))

        assert reply.response == "Full answer"
        assert reply.provider_name == "Fallback"
        assert reply.failover_count == 1
        assert test_db.query(UsageRecord).one().failover_count == 1

    @pytest.mark.asyncio
    async def test_total_failure_raises_after_persisting(self, make_controller, chatbot, test_db):
        controller = make_controller(
            openai=ScriptedAdapter(error=VendorProtocolError("primary down")),
            anthropic=ScriptedAdapter(error=VendorProtocolError("fallback down"))
        )

        with pytest.raises(FailoverExhaustedError, match="fallback down"):
            await controller.respond(ChatStreamRequest(
                message="Hello", user_id="user-1", chatbot_id=chatbot.id
            ))

        assert saved_messages(test_db)[-1].content == APOLOGY_MESSAGE
        record = test_db.query(UsageRecord).one()
        assert record.success is False
        assert record.error_message == "fallback down"
