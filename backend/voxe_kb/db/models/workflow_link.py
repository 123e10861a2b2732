"""
Links between downstream workflows and the knowledge bases they retrieve from.
"""

from sqlalchemy import (
    Column,
    Integer,
    Float,
    String,
    Boolean,
    DateTime,
    ForeignKey,
    UniqueConstraint,
)
from sqlalchemy.orm import relationship
from sqlalchemy.sql import func

from voxe_kb.db.database import Base


class WorkflowKnowledgeBase(Base):
    __tablename__ = "workflow_knowledge_bases"

    id = Column(Integer, primary_key=True, index=True)

    # Workflows are owned by the automation side; only the id is known here
    workflow_id = Column(String(64), nullable=False, index=True)
    knowledge_base_id = Column(
        Integer,
        ForeignKey("knowledge_bases.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )

    priority = Column(Integer, default=1, nullable=False)  # lower first
    retrieval_limit = Column(Integer, default=5, nullable=False)
    similarity_threshold = Column(Float, default=0.4, nullable=False)
    is_active = Column(Boolean, default=True, nullable=False)

    created_at = Column(DateTime(timezone=True), server_default=func.now())

    knowledge_base = relationship("KnowledgeBase", back_populates="workflow_links")

    __table_args__ = (
        UniqueConstraint("workflow_id", "knowledge_base_id", name="uq_workflow_kb"),
    )
