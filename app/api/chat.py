"""Chat API endpoints."""

import logging
import time
from typing import List, Optional
from fastapi import APIRouter, Depends, HTTPException
from fastapi.responses import StreamingResponse
from pydantic import BaseModel, Field
from sqlalchemy.orm import Session

from app.config import settings
from app.database.database import SessionLocal, get_db
from app.services.encryption_service import EncryptionService
from app.services.exceptions import FailoverExhaustedError, ProviderError
from app.services.failover_service import FailoverOrchestrator
from app.services.provider_service import ProviderService
from app.services.routing_service import RoutingService
from app.services.streaming_service import ChatStreamRequest, StreamingSessionController
from app.services.usage_service import UsageOutcome, UsageTelemetryRecorder, estimate_tokens
from app.services.vendors import ChatMessage, ChatRequest, get_adapter

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/chat", tags=["chat"])


class ChatBody(BaseModel):
    """Chat request for the streaming and non-streaming endpoints."""

    message: str = Field(..., min_length=1)
    user_id: str
    chatbot_id: Optional[int] = None
    conversation_id: Optional[int] = None
    use_knowledge_base: bool = False


class Citation(BaseModel):
    title: str
    url: Optional[str] = None


class ChatResponse(BaseModel):
    """Non-streaming chat answer."""

    response: str
    provider_name: str
    model: str
    response_time_ms: int
    conversation_id: int
    failover_count: int = 0
    citations: List[Citation] = []


class TestMessage(BaseModel):
    role: str
    content: str


class ChatTestBody(BaseModel):
    """Non-streaming provider test request."""

    provider_id: int
    model: str
    messages: List[TestMessage]
    system_prompt: Optional[str] = None
    max_tokens: Optional[int] = None
    temperature: Optional[float] = None


class ChatTestResponse(BaseModel):
    response: str
    model: str
    provider: str


def build_controller(db: Session) -> StreamingSessionController:
    provider_service = ProviderService(EncryptionService())
    return StreamingSessionController(
        db=db,
        provider_service=provider_service,
        routing_service=RoutingService(provider_service),
        orchestrator=FailoverOrchestrator()
    )


def to_session_request(body: ChatBody) -> ChatStreamRequest:
    return ChatStreamRequest(
        message=body.message,
        user_id=body.user_id,
        chatbot_id=body.chatbot_id,
        conversation_id=body.conversation_id,
        use_knowledge_base=body.use_knowledge_base
    )


@router.post("", response_model=ChatResponse)
async def chat(body: ChatBody, db: Session = Depends(get_db)):
    """Answer a chat message in one response, with the same failover and persistence as streaming."""
    try:
        reply = await build_controller(db).respond(to_session_request(body))
    except FailoverExhaustedError as e:
        raise HTTPException(status_code=502, detail=str(e))
    return ChatResponse(
        response=reply.response,
        provider_name=reply.provider_name,
        model=reply.model,
        response_time_ms=reply.response_time_ms,
        conversation_id=reply.conversation_id,
        failover_count=reply.failover_count,
        citations=[Citation(**c) for c in reply.citations]
    )


@router.post("/stream")
async def stream_chat(body: ChatBody):
    """Stream a chat answer as server-sent events.

    Frames: ``metadata``, ``content``*, optional ``failover``, then ``done``,
    or ``error`` followed by ``done``.
    """
    request = to_session_request(body)

    async def event_stream():
        # the session outlives request dependencies, so it owns its DB session
        db = SessionLocal()
        try:
            async for frame in build_controller(db).stream(request):
                yield frame
        finally:
            db.close()

    return StreamingResponse(
        event_stream(),
        media_type="text/event-stream",
        headers={"Cache-Control": "no-cache", "X-Accel-Buffering": "no"}
    )


@router.post("/test", response_model=ChatTestResponse)
async def test_chat(body: ChatTestBody, db: Session = Depends(get_db)):
    """Send one non-streaming request to a provider and return its answer."""
    service = ProviderService(EncryptionService())
    try:
        connection = service.get_connection(db, body.provider_id)
    except ValueError as e:
        raise HTTPException(status_code=400, detail=str(e))
    if connection is None:
        raise HTTPException(status_code=404, detail=f"Provider {body.provider_id} not found")

    request = ChatRequest(
        model=body.model,
        system_prompt=body.system_prompt or settings.default_system_prompt,
        messages=[ChatMessage(role=m.role, content=m.content) for m in body.messages],
        temperature=body.temperature if body.temperature is not None else settings.default_temperature,
        max_tokens=body.max_tokens or settings.default_max_tokens
    )

    recorder = UsageTelemetryRecorder()
    started_at = time.monotonic()
    try:
        result = await get_adapter(connection.provider_type).complete(connection, request)
    except ProviderError as e:
        recorder.record(db, UsageOutcome(
            success=False,
            provider_id=connection.id,
            model_used=body.model,
            response_time_ms=int((time.monotonic() - started_at) * 1000),
            error_message=str(e)
        ))
        raise HTTPException(status_code=502, detail=str(e))

    recorder.record(db, UsageOutcome(
        success=True,
        provider_id=connection.id,
        model_used=result.model_used,
        response_time_ms=int((time.monotonic() - started_at) * 1000),
        tokens_used=estimate_tokens(result.text)
    ))
    logger.info(f"Test chat via '{connection.name}' answered with model {result.model_used}")
    return ChatTestResponse(response=result.text, model=result.model_used, provider=connection.name)
