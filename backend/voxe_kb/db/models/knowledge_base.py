"""
Knowledge base model
"""

import enum

from sqlalchemy import (
    Column,
    Integer,
    BigInteger,
    String,
    Boolean,
    DateTime,
    Text,
)
from sqlalchemy.orm import relationship
from sqlalchemy.sql import func

from voxe_kb.db.database import Base


class KnowledgeBaseType(enum.Enum):
    USER = "USER"
    WORKFLOW = "WORKFLOW"
    DEMO = "DEMO"


class KnowledgeBase(Base):
    """A named, owned collection of documents."""

    __tablename__ = "knowledge_bases"

    id = Column(Integer, primary_key=True, index=True)

    name = Column(String(100), nullable=False)
    description = Column(Text)
    type = Column(String(20), default=KnowledgeBaseType.USER.value, nullable=False)

    # Tenant / user that owns the collection
    owner_id = Column(String(64), nullable=False, index=True)

    is_active = Column(Boolean, default=True, nullable=False)

    # Aggregates, only ever changed with SQL-side increments
    total_documents = Column(Integer, default=0, nullable=False)
    total_chunks = Column(Integer, default=0, nullable=False)
    total_tokens = Column(BigInteger, default=0, nullable=False)
    last_synced_at = Column(DateTime(timezone=True))

    created_at = Column(DateTime(timezone=True), server_default=func.now())
    updated_at = Column(DateTime(timezone=True), onupdate=func.now())

    documents = relationship(
        "Document",
        back_populates="knowledge_base",
        cascade="all, delete-orphan",
        passive_deletes=True,
    )
    workflow_links = relationship(
        "WorkflowKnowledgeBase",
        back_populates="knowledge_base",
        cascade="all, delete-orphan",
        passive_deletes=True,
    )
