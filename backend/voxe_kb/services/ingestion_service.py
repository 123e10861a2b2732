"""
Upload ingestion: validate, store, record and queue a new document.

Validation happens before anything is written, so a rejected upload never
leaves a stored file or a document row behind.
"""

import os
from typing import Optional

import structlog
from sqlalchemy.orm import Session

from voxe_kb.core.config import settings
from voxe_kb.core.exceptions import PayloadTooLarge, UnsupportedFileType, ValidationError
from voxe_kb.db.models import Document, DocumentStatus, KnowledgeBase
from voxe_kb.services.document_service import DocumentService, document_service
from voxe_kb.services.knowledge_base_service import (
    KnowledgeBaseService,
    adjust_knowledge_base_counters,
    knowledge_base_service,
)
from voxe_kb.services.storage_service import StorageService, storage_service
from voxe_kb.services.tier_limit_service import TierLimitService, tier_limit_service
from voxe_kb.utils.file_utils import build_storage_key, get_extension, mime_matches_extension

logger = structlog.get_logger(__name__)


def format_size(size: int) -> str:
    return f"{size / 1024 / 1024:.1f}MB"


class IngestionService:
    def __init__(
        self,
        storage: Optional[StorageService] = None,
        tier_limits: Optional[TierLimitService] = None,
        knowledge_bases: Optional[KnowledgeBaseService] = None,
        documents: Optional[DocumentService] = None,
    ):
        self.storage = storage or storage_service
        self.tier_limits = tier_limits or tier_limit_service
        self.knowledge_bases = knowledge_bases or knowledge_base_service
        self.documents = documents or document_service

    def prepare(self, db: Session, owner_id: str, knowledge_base_id: int) -> KnowledgeBase:
        """Checks that do not need the file: KB ownership and the document quota."""
        kb = self.knowledge_bases.get_owned(db, owner_id, knowledge_base_id, active_only=True)
        tier = self.tier_limits.resolve_tier(db, owner_id)
        limit = self.tier_limits.get_limits(db, tier).max_documents
        current = self.knowledge_bases.count_owner_documents(db, owner_id)
        self.tier_limits.ensure_within(current, limit, "document", tier)
        return kb

    def get_size_limit(self, db: Session, owner_id: str) -> int:
        return self.tier_limits.get_document_size_limit(db, owner_id)

    def size_error(self, size: int, limit: int) -> PayloadTooLarge:
        return PayloadTooLarge(
            f"File size exceeds the {format_size(limit)} limit of your plan",
            usage={"resource": "document size", "current": size, "limit": limit},
        )

    def validate_file(
        self,
        filename: str,
        content_type: Optional[str],
        size: int,
        size_limit: int,
    ) -> str:
        """Return the file type (extension) or raise."""
        if not filename:
            raise ValidationError("No file provided")
        if size == 0:
            raise ValidationError("File is empty", {"filename": filename})
        if size > size_limit:
            raise self.size_error(size, size_limit)

        file_type = get_extension(filename)
        allowed = settings.get_supported_file_types()
        if file_type not in allowed:
            raise UnsupportedFileType(
                f"File type .{file_type or '?'} not supported. Allowed types: {', '.join(allowed)}",
                {"filename": filename, "allowed_types": allowed},
            )
        if not mime_matches_extension(content_type, file_type):
            raise UnsupportedFileType(
                f"Content type {content_type} does not match .{file_type} file",
                {"filename": filename, "content_type": content_type},
            )
        return file_type

    async def ingest(
        self,
        db: Session,
        owner_id: str,
        knowledge_base_id: int,
        filename: str,
        content_type: Optional[str],
        content: bytes,
        knowledge_base: Optional[KnowledgeBase] = None,
    ) -> Document:
        """Validate and store an upload, create its PENDING document and queue it.

        ``knowledge_base`` is the result of an earlier ``prepare`` call for the
        same request; the ownership and quota checks are not repeated.
        """
        kb = knowledge_base or self.prepare(db, owner_id, knowledge_base_id)
        original_name = os.path.basename(filename or "")[:255]
        file_type = self.validate_file(
            original_name, content_type, len(content), self.get_size_limit(db, owner_id)
        )
        chunk_config = self.tier_limits.get_chunk_config(db, owner_id)

        key = build_storage_key(owner_id, kb.id, original_name)
        await self.storage.save_bytes(content, key, content_type)

        document = Document(
            knowledge_base_id=kb.id,
            filename=os.path.basename(key),
            original_name=original_name,
            file_type=file_type,
            mime_type=content_type,
            file_size=len(content),
            file_path=key,
            status=DocumentStatus.PENDING.value,
            chunk_size=chunk_config.chunk_size,
            chunk_overlap=chunk_config.chunk_overlap,
        )
        try:
            db.add(document)
            adjust_knowledge_base_counters(db, kb.id, documents=1)
            db.commit()
        except Exception:
            db.rollback()
            self.storage.delete_quietly(key)
            raise
        db.refresh(document)

        logger.info(
            "Document uploaded",
            document_id=document.id,
            knowledge_base_id=kb.id,
            owner_id=owner_id,
            file_type=file_type,
            size=document.file_size,
        )

        if not await self.documents.enqueue_processing(document.id):
            db.refresh(document)
        return document


ingestion_service = IngestionService()
