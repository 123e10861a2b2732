"""
Knowledge base CRUD, aggregate counters and workflow links.
"""

from datetime import datetime, timezone
from typing import List, Optional, Tuple

import structlog
from sqlalchemy import func
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from voxe_kb.core.exceptions import ConflictError, NotFoundError
from voxe_kb.db.models import (
    Document,
    DocumentChunk,
    KnowledgeBase,
    WorkflowKnowledgeBase,
)
from voxe_kb.schemas.knowledge_base import (
    KnowledgeBaseCreate,
    KnowledgeBaseStats,
    KnowledgeBaseUpdate,
    WorkflowLinkCreate,
)
from voxe_kb.services.storage_service import StorageService, storage_service
from voxe_kb.services.tier_limit_service import TierLimitService, tier_limit_service

logger = structlog.get_logger(__name__)


def adjust_knowledge_base_counters(
    db: Session,
    knowledge_base_id: int,
    documents: int = 0,
    chunks: int = 0,
    tokens: int = 0,
    synced: bool = False,
) -> None:
    """Apply deltas to the aggregate columns as SQL expressions.

    Does not commit; the caller's transaction decides.
    """
    values = {}
    if documents:
        values[KnowledgeBase.total_documents] = KnowledgeBase.total_documents + documents
    if chunks:
        values[KnowledgeBase.total_chunks] = KnowledgeBase.total_chunks + chunks
    if tokens:
        values[KnowledgeBase.total_tokens] = KnowledgeBase.total_tokens + tokens
    if synced:
        values[KnowledgeBase.last_synced_at] = datetime.now(timezone.utc)
    if not values:
        return
    db.query(KnowledgeBase).filter(KnowledgeBase.id == knowledge_base_id).update(
        values, synchronize_session=False
    )


class KnowledgeBaseService:
    def __init__(
        self,
        storage: Optional[StorageService] = None,
        tier_limits: Optional[TierLimitService] = None,
    ):
        self.storage = storage or storage_service
        self.tier_limits = tier_limits or tier_limit_service

    def get_owned(
        self,
        db: Session,
        owner_id: str,
        knowledge_base_id: int,
        active_only: bool = False,
    ) -> KnowledgeBase:
        query = db.query(KnowledgeBase).filter(
            KnowledgeBase.id == knowledge_base_id,
            KnowledgeBase.owner_id == owner_id,
        )
        if active_only:
            query = query.filter(KnowledgeBase.is_active.is_(True))
        kb = query.first()
        if kb is None:
            raise NotFoundError(
                "Knowledge base not found", {"knowledge_base_id": knowledge_base_id}
            )
        return kb

    def create(self, db: Session, owner_id: str, data: KnowledgeBaseCreate) -> KnowledgeBase:
        tier = self.tier_limits.resolve_tier(db, owner_id)
        limit = self.tier_limits.get_limits(db, tier).max_knowledge_bases
        current = db.query(KnowledgeBase).filter(KnowledgeBase.owner_id == owner_id).count()
        self.tier_limits.ensure_within(current, limit, "knowledge base", tier)

        kb = KnowledgeBase(
            owner_id=owner_id,
            name=data.name,
            description=data.description,
            type=data.type,
        )
        db.add(kb)
        db.commit()
        db.refresh(kb)
        logger.info("Knowledge base created", knowledge_base_id=kb.id, owner_id=owner_id)
        return kb

    def list(self, db: Session, owner_id: str) -> Tuple[List[KnowledgeBase], KnowledgeBaseStats]:
        kbs = (
            db.query(KnowledgeBase)
            .filter(KnowledgeBase.owner_id == owner_id)
            .order_by(KnowledgeBase.created_at.desc(), KnowledgeBase.id.desc())
            .all()
        )
        stats = KnowledgeBaseStats(
            total_knowledge_bases=len(kbs),
            active_knowledge_bases=sum(1 for kb in kbs if kb.is_active),
            total_documents=sum(kb.total_documents or 0 for kb in kbs),
            total_tokens=sum(kb.total_tokens or 0 for kb in kbs),
        )
        return kbs, stats

    def update(
        self, db: Session, owner_id: str, knowledge_base_id: int, data: KnowledgeBaseUpdate
    ) -> KnowledgeBase:
        kb = self.get_owned(db, owner_id, knowledge_base_id)
        changes = data.model_dump(exclude_unset=True, exclude_none=True)
        if "name" in changes:
            changes["name"] = changes["name"].strip() or kb.name
        for key, value in changes.items():
            setattr(kb, key, value)
        db.commit()
        db.refresh(kb)
        return kb

    def delete(self, db: Session, owner_id: str, knowledge_base_id: int) -> None:
        """Delete the knowledge base with its documents, chunks, links and files."""
        kb = self.get_owned(db, owner_id, knowledge_base_id)
        document_ids = db.query(Document.id).filter(Document.knowledge_base_id == kb.id)
        file_paths = [
            path
            for (path,) in db.query(Document.file_path).filter(Document.knowledge_base_id == kb.id)
        ]

        try:
            db.query(DocumentChunk).filter(
                DocumentChunk.document_id.in_(document_ids.scalar_subquery())
            ).delete(synchronize_session=False)
            db.query(Document).filter(Document.knowledge_base_id == kb.id).delete(
                synchronize_session=False
            )
            db.query(WorkflowKnowledgeBase).filter(
                WorkflowKnowledgeBase.knowledge_base_id == kb.id
            ).delete(synchronize_session=False)
            db.delete(kb)
            db.commit()
        except Exception:
            db.rollback()
            raise

        for path in file_paths:
            self.storage.delete_quietly(path)
        logger.info(
            "Knowledge base deleted",
            knowledge_base_id=knowledge_base_id,
            documents=len(file_paths),
        )

    def link_workflow(
        self, db: Session, owner_id: str, knowledge_base_id: int, data: WorkflowLinkCreate
    ) -> WorkflowKnowledgeBase:
        kb = self.get_owned(db, owner_id, knowledge_base_id)
        existing = (
            db.query(WorkflowKnowledgeBase)
            .filter(
                WorkflowKnowledgeBase.workflow_id == data.workflow_id,
                WorkflowKnowledgeBase.knowledge_base_id == kb.id,
            )
            .first()
        )
        if existing is not None:
            raise ConflictError(
                "Knowledge base is already linked to this workflow",
                {"workflow_id": data.workflow_id, "knowledge_base_id": kb.id},
            )

        link = WorkflowKnowledgeBase(
            workflow_id=data.workflow_id,
            knowledge_base_id=kb.id,
            priority=data.priority,
            retrieval_limit=data.retrieval_limit,
            similarity_threshold=data.similarity_threshold,
        )
        db.add(link)
        try:
            db.commit()
        except IntegrityError as e:
            db.rollback()
            raise ConflictError(
                "Knowledge base is already linked to this workflow",
                {"workflow_id": data.workflow_id, "knowledge_base_id": kb.id},
            ) from e
        db.refresh(link)
        return link

    def unlink_workflow(
        self, db: Session, owner_id: str, knowledge_base_id: int, workflow_id: str
    ) -> None:
        kb = self.get_owned(db, owner_id, knowledge_base_id)
        deleted = (
            db.query(WorkflowKnowledgeBase)
            .filter(
                WorkflowKnowledgeBase.workflow_id == workflow_id,
                WorkflowKnowledgeBase.knowledge_base_id == kb.id,
            )
            .delete(synchronize_session=False)
        )
        if not deleted:
            db.rollback()
            raise NotFoundError(
                "Workflow link not found",
                {"workflow_id": workflow_id, "knowledge_base_id": kb.id},
            )
        db.commit()

    def list_links(
        self, db: Session, owner_id: str, knowledge_base_id: int
    ) -> List[WorkflowKnowledgeBase]:
        kb = self.get_owned(db, owner_id, knowledge_base_id)
        return (
            db.query(WorkflowKnowledgeBase)
            .filter(WorkflowKnowledgeBase.knowledge_base_id == kb.id)
            .order_by(WorkflowKnowledgeBase.priority.asc(), WorkflowKnowledgeBase.id.asc())
            .all()
        )

    def count_owner_documents(self, db: Session, owner_id: str) -> int:
        return (
            db.query(func.count(Document.id))
            .join(KnowledgeBase, Document.knowledge_base_id == KnowledgeBase.id)
            .filter(KnowledgeBase.owner_id == owner_id)
            .scalar()
            or 0
        )


knowledge_base_service = KnowledgeBaseService()
