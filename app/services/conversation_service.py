"""Conversation transcript storage."""

import logging
from typing import Any, Dict, List, Optional

from sqlalchemy.orm import Session

from app.config import settings
from app.models.conversation import Conversation, Message
from app.services.vendors import ChatMessage

logger = logging.getLogger(__name__)

TITLE_LENGTH = 50


class ConversationService:
    """Create conversations, load history and append immutable messages."""

    def get_or_create(
        self,
        db: Session,
        conversation_id: Optional[int],
        user_id: str,
        chatbot_id: Optional[int],
        first_message: str
    ) -> Conversation:
        """Load a conversation, creating one when the ID is missing or unknown.

        New conversations are titled after the first characters of the message.
        """
        if conversation_id is not None:
            conversation = db.query(Conversation).filter(Conversation.id == conversation_id).first()
            if conversation:
                return conversation
            logger.warning(f"Conversation {conversation_id} not found, starting a new one")

        conversation = Conversation(
            user_id=user_id,
            chatbot_id=chatbot_id,
            title=first_message[:TITLE_LENGTH]
        )
        db.add(conversation)
        db.commit()
        db.refresh(conversation)
        logger.info(f"Created conversation {conversation.id} for user {user_id}")
        return conversation

    def recent_history(self, db: Session, conversation_id: int, limit: Optional[int] = None) -> List[ChatMessage]:
        """Latest messages of a conversation in chronological order."""
        limit = limit or settings.history_message_limit
        messages = (
            db.query(Message)
            .filter(Message.conversation_id == conversation_id)
            .order_by(Message.id.desc())
            .limit(limit)
            .all()
        )
        return [ChatMessage(role=m.role, content=m.content) for m in reversed(messages)]

    def append_exchange(
        self,
        db: Session,
        conversation_id: int,
        user_id: str,
        user_content: str,
        assistant_content: str,
        metadata: Dict[str, Any]
    ) -> List[Message]:
        """Persist a user message and the assistant reply in one transaction."""
        messages = [
            Message(conversation_id=conversation_id, user_id=user_id, role="user", content=user_content),
            Message(
                conversation_id=conversation_id,
                user_id=user_id,
                role="assistant",
                content=assistant_content,
                message_metadata=metadata
            ),
        ]
        try:
            db.add_all(messages)
            db.commit()
        except Exception as e:
            db.rollback()
            logger.error(f"Failed to save messages for conversation {conversation_id}: {e}")
            raise
        return messages

    def list_messages(self, db: Session, conversation_id: int) -> List[Message]:
        return db.query(Message).filter(Message.conversation_id == conversation_id).order_by(Message.id).all()
