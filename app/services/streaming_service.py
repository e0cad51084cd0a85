"""Client-facing chat streaming sessions.

A session runs the failover orchestrator as a producer task that pushes
normalized events onto an ``asyncio.Queue``. The controller consumes the
queue, relays frames to the client as server-sent events, accumulates the
answer and persists the transcript and usage once the session ends.
"""

import asyncio
import json
import logging
import uuid
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, AsyncIterator, Callable, Dict, List, Optional, Tuple

from sqlalchemy.orm import Session

from app.config import settings
from app.models.chatbot import Chatbot
from app.services.conversation_service import ConversationService
from app.services.exceptions import FailoverExhaustedError
from app.services.failover_service import FailoverOrchestrator, FailoverResult
from app.services.knowledge_service import KnowledgeContextInjector
from app.services.provider_service import ProviderService
from app.services.routing_service import RoutePlan, RoutingService
from app.services.usage_service import UsageOutcome, UsageTelemetryRecorder, estimate_tokens
from app.services.vendors import ChatMessage, ChatRequest, StreamEvent, StreamEventType

logger = logging.getLogger(__name__)

APOLOGY_MESSAGE = "I apologize, but I encountered an error. Please try again."
DISCONNECT_MESSAGE = "Client disconnected"


class SessionState(str, Enum):
    INITIATED = "initiated"
    METADATA_SENT = "metadata_sent"
    STREAMING = "streaming"
    FAILOVER_NOTICE = "failover_notice"
    COMPLETED = "completed"
    ERRORED = "errored"


TERMINAL_STATES = (SessionState.COMPLETED, SessionState.ERRORED)


@dataclass
class ChatStreamRequest:
    message: str
    user_id: str
    chatbot_id: Optional[int] = None
    conversation_id: Optional[int] = None
    use_knowledge_base: bool = False


@dataclass
class StreamFrame:
    """One protocol frame sent to the client."""

    type: str
    fields: Dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> Dict[str, Any]:
        return {"type": self.type, **self.fields}

    def to_sse(self) -> str:
        return f"data: {json.dumps(self.to_dict(), default=str)}\n\n"


@dataclass
class ChatReply:
    """Whole answer of a non-streaming session."""

    response: str
    provider_name: str
    model: str
    response_time_ms: int
    conversation_id: int
    failover_count: int = 0
    citations: List[Dict[str, Any]] = field(default_factory=list)


@dataclass
class StreamingSession:
    """In-memory state of one streaming exchange."""

    session_id: str
    user_id: str
    message: str
    route: RoutePlan
    conversation_id: int
    started_at: float
    chatbot: Optional[Chatbot] = None
    state: SessionState = SessionState.INITIATED
    buffer: List[str] = field(default_factory=list)
    failover_count: int = 0
    sources: List[Dict[str, Any]] = field(default_factory=list)

    @property
    def chatbot_id(self) -> Optional[int]:
        return self.chatbot.id if self.chatbot else None

    @property
    def text(self) -> str:
        return "".join(self.buffer)

    def transition(self, state: SessionState) -> None:
        logger.debug(f"Session {self.session_id}: {self.state.value} -> {state.value}")
        self.state = state


class StreamingSessionController:
    """Drive streaming sessions end to end."""

    def __init__(
        self,
        db: Session,
        provider_service: ProviderService,
        routing_service: RoutingService,
        orchestrator: FailoverOrchestrator,
        knowledge_injector: Optional[KnowledgeContextInjector] = None,
        usage_recorder: Optional[UsageTelemetryRecorder] = None,
        conversation_service: Optional[ConversationService] = None,
        clock: Optional[Callable[[], float]] = None
    ):
        self.db = db
        self.provider_service = provider_service
        self.routing_service = routing_service
        self.orchestrator = orchestrator
        self.knowledge_injector = knowledge_injector or KnowledgeContextInjector()
        self.usage_recorder = usage_recorder or UsageTelemetryRecorder()
        self.conversation_service = conversation_service or ConversationService()
        # session timestamps must share the orchestrator clock
        self.clock = clock or orchestrator.clock

    async def stream(self, request: ChatStreamRequest) -> AsyncIterator[str]:
        """Run one session, yielding SSE-encoded frames.

        The last frame is always ``done``. If the consumer goes away before
        that, the producer is cancelled and the partial transcript is saved.
        """
        session, chat_request = self._open_session(request)
        queue: asyncio.Queue = asyncio.Queue()

        async def on_event(event: StreamEvent) -> None:
            await queue.put(event)

        async def produce() -> None:
            try:
                await queue.put(await self.orchestrator.run(session.route, chat_request, on_event, session.started_at))
            except asyncio.CancelledError:
                raise
            except Exception as e:
                await queue.put(e)

        producer = None
        try:
            yield self._metadata_frame(session).to_sse()
            session.transition(SessionState.METADATA_SENT)

            producer = asyncio.create_task(produce())
            while True:
                item = await queue.get()

                if isinstance(item, StreamEvent):
                    frame = self._relay(session, item)
                    if frame is not None:
                        yield frame.to_sse()
                    continue

                if isinstance(item, FailoverResult):
                    self._complete(session, item)
                else:
                    yield StreamFrame("error", {"content": str(item)}).to_sse()
                    self._fail(session, item)
                yield StreamFrame("done").to_sse()
                break
        except (asyncio.CancelledError, GeneratorExit):
            if session.state not in TERMINAL_STATES:
                self._interrupt(session)
            raise
        finally:
            if producer is not None and not producer.done():
                producer.cancel()

    async def respond(self, request: ChatStreamRequest) -> ChatReply:
        """Run one session without streaming and return the whole answer.

        Persistence and usage recording match ``stream``.

        Raises:
            FailoverExhaustedError: If no provider produced an answer.
        """
        session, chat_request = self._open_session(request)
        session.transition(SessionState.METADATA_SENT)

        async def on_event(event: StreamEvent) -> None:
            self._relay(session, event)

        try:
            result = await self.orchestrator.run(session.route, chat_request, on_event, session.started_at)
        except Exception as e:
            self._fail(session, e)
            raise
        return self._complete(session, result)

    def _open_session(self, request: ChatStreamRequest) -> Tuple[StreamingSession, ChatRequest]:
        started_at = self.clock()
        chatbot = self._load_chatbot(request.chatbot_id)
        route = self.routing_service.resolve_route(self.db, chatbot) if chatbot else self.orchestrator.default_route()
        conversation = self.conversation_service.get_or_create(
            self.db, request.conversation_id, request.user_id, chatbot.id if chatbot else None, request.message
        )
        history = self.conversation_service.recent_history(self.db, conversation.id)

        session = StreamingSession(
            session_id=str(uuid.uuid4()),
            user_id=request.user_id,
            message=request.message,
            route=route,
            conversation_id=conversation.id,
            started_at=started_at,
            chatbot=chatbot
        )
        augmented = self.knowledge_injector.augment(
            self.db, request.message, request.use_knowledge_base, session.chatbot_id
        )
        session.sources = augmented.sources

        logger.info(
            f"Session {session.session_id} started (chatbot={session.chatbot_id}, "
            f"conversation={session.conversation_id}, user={session.user_id})"
        )
        return session, self._build_chat_request(chatbot, route, history, augmented.prompt_text)

    def _relay(self, session: StreamingSession, event: StreamEvent) -> Optional[StreamFrame]:
        if event.type == StreamEventType.CONTENT:
            if session.state != SessionState.STREAMING:
                session.transition(SessionState.STREAMING)
            session.buffer.append(event.payload)
            return StreamFrame("content", {"content": event.payload})

        if event.type == StreamEventType.FAILOVER:
            if session.failover_count:
                return None
            session.transition(SessionState.FAILOVER_NOTICE)
            session.failover_count = 1
            # the fallback regenerates the whole answer
            session.buffer.clear()
            return StreamFrame("failover", {"message": event.payload})

        return None

    def _complete(self, session: StreamingSession, result: FailoverResult) -> ChatReply:
        response_time_ms = self._elapsed_ms(session)
        text = session.text
        route = session.route
        fallback_used = route.fallback is not None and result.provider_used is route.fallback
        logger.info(
            f"Session {session.session_id} complete: provider='{result.provider_used.provider_name}', "
            f"model={result.model_used}, {response_time_ms}ms, {len(text)} chars"
        )
        metadata = {
            "provider": result.provider_used.provider_name,
            "model": result.model_used,
            "response_time_ms": response_time_ms,
            "failover_count": result.failover_count,
            "fallback_used": fallback_used,
            "sources": session.sources,
        }
        if fallback_used and route.fallback_model_substituted:
            metadata["model_substituted"] = True
            metadata["original_fallback_model"] = route.original_fallback_model
            self.routing_service.record_model_substitution(self.db, route, session.user_id)

        self._save_exchange(session, text, metadata)
        self.usage_recorder.record(self.db, UsageOutcome(
            success=True,
            chatbot_id=session.chatbot_id,
            user_id=session.user_id,
            provider_id=result.provider_used.provider_id,
            model_used=result.model_used,
            response_time_ms=response_time_ms,
            tokens_used=estimate_tokens(text),
            failover_count=result.failover_count
        ))
        session.transition(SessionState.COMPLETED)
        return ChatReply(
            response=text,
            provider_name=result.provider_used.provider_name,
            model=result.model_used,
            response_time_ms=response_time_ms,
            conversation_id=session.conversation_id,
            failover_count=result.failover_count,
            citations=[{"title": s.get("title"), "url": s.get("url")} for s in session.sources]
        )

    def _fail(self, session: StreamingSession, error: Exception) -> None:
        response_time_ms = self._elapsed_ms(session)
        error_message = str(error) or error.__class__.__name__
        failover_count = getattr(error, "failover_count", session.failover_count)
        if isinstance(error, FailoverExhaustedError):
            logger.error(f"Session {session.session_id} failed: {error_message}")
        else:
            logger.exception(f"Session {session.session_id} failed unexpectedly: {error_message}")

        target = session.route.first_target
        self._save_exchange(session, APOLOGY_MESSAGE, {
            "error": error_message,
            "provider": getattr(error, "provider_name", None) or (target.provider_name if target else None),
            "failover_count": failover_count,
        })
        self.usage_recorder.record(self.db, UsageOutcome(
            success=False,
            chatbot_id=session.chatbot_id,
            user_id=session.user_id,
            provider_id=getattr(error, "provider_id", None),
            model_used=target.model if target else None,
            response_time_ms=response_time_ms,
            error_message=error_message,
            failover_count=failover_count
        ))
        session.transition(SessionState.ERRORED)

    def _interrupt(self, session: StreamingSession) -> None:
        logger.warning(f"Session {session.session_id}: client disconnected in state {session.state.value}")
        target = session.route.first_target
        self._save_exchange(session, session.text, {
            "provider": target.provider_name if target else None,
            "model": target.model if target else None,
            "failover_count": session.failover_count,
            "sources": session.sources,
            "interrupted": True,
        })
        self.usage_recorder.record(self.db, UsageOutcome(
            success=False,
            chatbot_id=session.chatbot_id,
            user_id=session.user_id,
            provider_id=target.provider_id if target else None,
            model_used=target.model if target else None,
            response_time_ms=self._elapsed_ms(session),
            error_message=DISCONNECT_MESSAGE,
            tokens_used=estimate_tokens(session.text),
            failover_count=session.failover_count
        ))
        session.transition(SessionState.ERRORED)

    def _save_exchange(self, session: StreamingSession, assistant_text: str, metadata: Dict[str, Any]) -> None:
        try:
            self.conversation_service.append_exchange(
                self.db, session.conversation_id, session.user_id, session.message, assistant_text, metadata
            )
        except Exception as e:
            logger.error(f"Session {session.session_id}: transcript not saved: {e}")

    def _metadata_frame(self, session: StreamingSession) -> StreamFrame:
        target = session.route.first_target
        return StreamFrame("metadata", {
            "provider": target.provider_name if target else settings.default_provider_name,
            "model": target.model if target else None,
            "sources": session.sources,
            "conversation_id": session.conversation_id,
            "session_id": session.session_id,
        })

    def _load_chatbot(self, chatbot_id: Optional[int]) -> Optional[Chatbot]:
        if chatbot_id is None:
            return None
        chatbot = self.provider_service.get_active_chatbot(self.db, chatbot_id)
        if not chatbot:
            logger.warning(f"Chatbot {chatbot_id} not found or inactive, using default provider")
        return chatbot

    def _build_chat_request(
        self,
        chatbot: Optional[Chatbot],
        route: RoutePlan,
        history: List[ChatMessage],
        prompt_text: str
    ) -> ChatRequest:
        target = route.first_target
        messages = list(history) + [ChatMessage(role="user", content=prompt_text)]
        if chatbot is None:
            return ChatRequest(
                model=target.model if target else settings.default_model,
                system_prompt=settings.default_system_prompt,
                messages=messages,
                temperature=settings.default_temperature,
                max_tokens=settings.default_max_tokens,
                top_p=settings.default_top_p
            )

        return ChatRequest(
            model=target.model if target else (chatbot.model_name or settings.default_model),
            system_prompt=chatbot.system_prompt or settings.default_system_prompt,
            messages=messages,
            temperature=chatbot.temperature if chatbot.temperature is not None else settings.default_temperature,
            max_tokens=chatbot.max_tokens or settings.default_max_tokens,
            top_p=chatbot.top_p if chatbot.top_p is not None else settings.default_top_p,
            frequency_penalty=chatbot.frequency_penalty,
            presence_penalty=chatbot.presence_penalty
        )

    def _elapsed_ms(self, session: StreamingSession) -> int:
        return int((self.clock() - session.started_at) * 1000)
