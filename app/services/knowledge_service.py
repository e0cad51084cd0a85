"""Knowledge base context injection."""

import logging
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from app.config import settings
from app.models.chatbot import ChatbotKnowledge
from app.models.document import Document
from app.services.exceptions import KnowledgeRetrievalError

logger = logging.getLogger(__name__)

CONTEXT_HEADER = "\n\nRelevant context from knowledge base:\n"


@dataclass
class AugmentedPrompt:
    """User message with any knowledge context appended, plus citations."""

    prompt_text: str
    sources: List[Dict[str, Any]] = field(default_factory=list)


class KnowledgeContextInjector:
    """Append excerpts of stored documents to a user message.

    Augmentation is best-effort: retrieval problems are logged and the
    message goes out unaugmented.
    """

    def __init__(
        self,
        max_documents: Optional[int] = None,
        excerpt_chars: Optional[int] = None,
        snippet_chars: Optional[int] = None
    ):
        self.max_documents = max_documents or settings.knowledge_max_documents
        self.excerpt_chars = excerpt_chars or settings.knowledge_excerpt_chars
        self.snippet_chars = snippet_chars or settings.knowledge_snippet_chars

    def augment(
        self,
        db: Session,
        message: str,
        enabled: bool,
        chatbot_id: Optional[int] = None
    ) -> AugmentedPrompt:
        """Build the prompt text sent to the vendor and its citation sources.

        Args:
            db: Database session.
            message: The user's message.
            enabled: Whether the caller asked for knowledge augmentation.
            chatbot_id: Chatbot whose linked documents take precedence.

        Returns:
            AugmentedPrompt; unchanged message and no sources when disabled,
            when nothing is found, or when retrieval fails.
        """
        if not enabled:
            return AugmentedPrompt(prompt_text=message)

        try:
            documents = self.retrieve_documents(db, chatbot_id)
        except KnowledgeRetrievalError as e:
            logger.error(f"Knowledge base retrieval error: {e}")
            return AugmentedPrompt(prompt_text=message)

        if not documents:
            return AugmentedPrompt(prompt_text=message)

        context = CONTEXT_HEADER + "\n".join(
            f"[{doc.filename}]: {(doc.content or '')[:self.excerpt_chars]}"
            for doc in documents
        )
        sources = [self.to_source(doc) for doc in documents]
        logger.info(f"Injected {len(documents)} knowledge base documents into prompt")
        return AugmentedPrompt(prompt_text=message + context, sources=sources)

    def retrieve_documents(self, db: Session, chatbot_id: Optional[int] = None) -> List[Document]:
        """Processed documents to inject, chatbot-linked ones first.

        Raises:
            KnowledgeRetrievalError: If the document store query fails.
        """
        try:
            if chatbot_id is not None:
                linked = (
                    db.query(Document)
                    .join(ChatbotKnowledge, ChatbotKnowledge.document_id == Document.id)
                    .filter(
                        ChatbotKnowledge.chatbot_id == chatbot_id,
                        ChatbotKnowledge.is_enabled.is_(True),
                        Document.status == "processed"
                    )
                    .order_by(Document.id)
                    .limit(self.max_documents)
                    .all()
                )
                if linked:
                    return linked

            return (
                db.query(Document)
                .filter(Document.status == "processed")
                .order_by(Document.id)
                .limit(self.max_documents)
                .all()
            )
        except SQLAlchemyError as e:
            db.rollback()
            raise KnowledgeRetrievalError(str(e)) from e

    def to_source(self, doc: Document) -> Dict[str, Any]:
        return {
            "title": doc.filename,
            "url": doc.file_url or "#",
            "snippet": (doc.content or "")[:self.snippet_chars],
            "confidence": "medium",
            "type": "document",
            "is_knowledge_base": True,
        }
