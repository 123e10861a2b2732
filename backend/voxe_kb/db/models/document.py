"""
Document model
"""

import enum

from sqlalchemy import Column, Integer, BigInteger, String, DateTime, Text, ForeignKey
from sqlalchemy.orm import relationship
from sqlalchemy.sql import func

from voxe_kb.db.database import Base


class DocumentStatus(enum.Enum):
    """Processing status"""
    PENDING = "PENDING"          # waiting for a worker
    PROCESSING = "PROCESSING"    # claimed by exactly one run
    COMPLETED = "COMPLETED"      # chunks and vectors persisted
    FAILED = "FAILED"            # see error_message


class FileType(enum.Enum):
    PDF = "pdf"
    DOCX = "docx"
    TXT = "txt"
    MD = "md"


class Document(Base):
    """One uploaded file inside a knowledge base."""
    __tablename__ = "documents"

    id = Column(Integer, primary_key=True, index=True)

    knowledge_base_id = Column(
        Integer,
        ForeignKey("knowledge_bases.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )

    # File
    filename = Column(String(255), nullable=False)  # stored name
    original_name = Column(String(255), nullable=False)
    file_type = Column(String(10), nullable=False)
    mime_type = Column(String(255))
    file_size = Column(BigInteger, nullable=False)
    file_path = Column(String(500), nullable=False)

    # Processing
    status = Column(String(20), default=DocumentStatus.PENDING.value, nullable=False, index=True)
    error_message = Column(Text)
    chunk_size = Column(Integer, nullable=False)
    chunk_overlap = Column(Integer, nullable=False)

    # Extraction results
    page_count = Column(Integer)
    word_count = Column(Integer)
    total_chunks = Column(Integer, default=0, nullable=False)
    total_tokens = Column(Integer, default=0, nullable=False)

    created_at = Column(DateTime(timezone=True), server_default=func.now())
    updated_at = Column(DateTime(timezone=True), onupdate=func.now())
    processed_at = Column(DateTime(timezone=True))

    knowledge_base = relationship("KnowledgeBase", back_populates="documents")
    chunks = relationship(
        "DocumentChunk",
        back_populates="document",
        cascade="all, delete-orphan",
        passive_deletes=True,
        order_by="DocumentChunk.chunk_index",
    )
