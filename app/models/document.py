"""Knowledge base document database model."""

from datetime import datetime
from sqlalchemy import Column, Integer, String, DateTime, Text, CheckConstraint
from app.database.database import Base


class Document(Base):
    """Uploaded document whose extracted text can be injected as chat context."""

    __tablename__ = "documents"

    id = Column(Integer, primary_key=True, index=True)
    filename = Column(String, nullable=False)
    file_url = Column(String, nullable=True)
    content = Column(Text, nullable=True)
    status = Column(String, nullable=False, default="pending")  # pending, processed, failed
    created_at = Column(DateTime, default=datetime.utcnow)

    __table_args__ = (
        CheckConstraint("status IN ('pending', 'processed', 'failed')", name='ck_document_status'),
    )
