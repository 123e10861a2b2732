"""
Database models package
"""

from voxe_kb.db.database import Base
from .knowledge_base import KnowledgeBase, KnowledgeBaseType
from .document import Document, DocumentStatus, FileType
from .document_chunk import DocumentChunk
from .workflow_link import WorkflowKnowledgeBase
from .tenant import Tenant, TierLimit, SubscriptionTier

__all__ = [
    "Base",
    "KnowledgeBase",
    "KnowledgeBaseType",
    "Document",
    "DocumentStatus",
    "FileType",
    "DocumentChunk",
    "WorkflowKnowledgeBase",
    "Tenant",
    "TierLimit",
    "SubscriptionTier",
]
