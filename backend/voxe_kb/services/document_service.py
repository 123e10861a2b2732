"""
Document processing pipeline and document lifecycle.

``process_document`` is what a queue worker runs for one document id:

    claim (PENDING|FAILED -> PROCESSING)
      -> read stored file -> extract text -> chunk -> embed
      -> persist chunks + COMPLETED + KB counters in one transaction

A run that fails at any step leaves no chunks behind and records the error
on the document. Sessions are short-lived and never held across awaits;
the database steps of a run execute in worker threads like extraction does.
"""

import asyncio
from datetime import datetime, timezone
from typing import Any, Callable, Dict, List, Optional

import structlog
from sqlalchemy import func
from sqlalchemy.orm import Session, selectinload

from voxe_kb.core.exceptions import (
    ConflictError,
    NotFoundError,
    TierLimitExceeded,
)
from voxe_kb.db.database import SessionLocal
from voxe_kb.db.models import Document, DocumentChunk, DocumentStatus, KnowledgeBase
from voxe_kb.services import parser_service
from voxe_kb.services.chunking_service import (
    ChunkConfig,
    ChunkingService,
    TextChunk,
    chunking_service,
)
from voxe_kb.services.embedding_service import EmbeddingProvider, get_embedding_provider
from voxe_kb.services.knowledge_base_service import (
    KnowledgeBaseService,
    adjust_knowledge_base_counters,
    knowledge_base_service,
)
from voxe_kb.services.storage_service import StorageService, storage_service
from voxe_kb.services.tier_limit_service import (
    TierLimitService,
    UNLIMITED,
    tier_limit_service,
)
from voxe_kb.tasks.queue import get_task_queue

logger = structlog.get_logger(__name__)

QUEUE_FULL_MESSAGE = "Processing queue is full; reprocess the document to try again"
MAX_ERROR_LENGTH = 2000

CLAIMABLE_STATUSES = (DocumentStatus.PENDING.value, DocumentStatus.FAILED.value)
REPROCESSABLE_STATUSES = (
    DocumentStatus.PENDING.value,
    DocumentStatus.FAILED.value,
    DocumentStatus.COMPLETED.value,
)


class DocumentService:
    def __init__(
        self,
        storage: Optional[StorageService] = None,
        chunker: Optional[ChunkingService] = None,
        tier_limits: Optional[TierLimitService] = None,
        knowledge_bases: Optional[KnowledgeBaseService] = None,
        embedding_provider: Optional[EmbeddingProvider] = None,
        session_factory: Callable[[], Session] = SessionLocal,
    ):
        self.storage = storage or storage_service
        self.chunker = chunker or chunking_service
        self.tier_limits = tier_limits or tier_limit_service
        self.knowledge_bases = knowledge_bases or knowledge_base_service
        self._embedding_provider = embedding_provider
        self.session_factory = session_factory

    @property
    def embedding_provider(self) -> EmbeddingProvider:
        if self._embedding_provider is None:
            self._embedding_provider = get_embedding_provider()
        return self._embedding_provider

    # ------------------------------------------------------------------
    # Processing
    # ------------------------------------------------------------------

    def _claim(self, document_id: int) -> Optional[Dict[str, Any]]:
        """Move the document to PROCESSING if nobody else has; return what the run needs."""
        with self.session_factory() as db:
            claimed = (
                db.query(Document)
                .filter(Document.id == document_id, Document.status.in_(CLAIMABLE_STATUSES))
                .update(
                    {
                        Document.status: DocumentStatus.PROCESSING.value,
                        Document.error_message: None,
                    },
                    synchronize_session=False,
                )
            )
            db.commit()
            if claimed != 1:
                return None

            row = (
                db.query(Document, KnowledgeBase.owner_id)
                .join(KnowledgeBase, Document.knowledge_base_id == KnowledgeBase.id)
                .filter(Document.id == document_id)
                .first()
            )
            if row is None:
                return None
            document, owner_id = row
            return {
                "owner_id": owner_id,
                "knowledge_base_id": document.knowledge_base_id,
                "file_path": document.file_path,
                "file_type": document.file_type,
                "config": ChunkConfig(document.chunk_size, document.chunk_overlap),
            }

    def _check_chunk_limit(self, owner_id: str, chunk_count: int) -> None:
        with self.session_factory() as db:
            tier = self.tier_limits.resolve_tier(db, owner_id)
            limit = self.tier_limits.get_limits(db, tier).max_chunks_per_document
        if limit != UNLIMITED and chunk_count > limit:
            raise TierLimitExceeded(
                f"Document produced {chunk_count} chunks, your {tier} plan allows {limit}",
                usage={"resource": "chunks per document", "current": chunk_count, "limit": limit, "tier": tier},
            )

    def _persist(
        self,
        document_id: int,
        extracted: parser_service.ExtractedText,
        chunks: List[TextChunk],
        vectors: List[List[float]],
    ) -> bool:
        model = self.embedding_provider.model
        dimensions = self.embedding_provider.dimensions
        with self.session_factory() as db:
            try:
                document = (
                    db.query(Document)
                    .filter(Document.id == document_id)
                    .with_for_update()
                    .first()
                )
                if document is None or document.status != DocumentStatus.PROCESSING.value:
                    logger.warning(
                        "Document changed during processing, discarding results",
                        document_id=document_id,
                        status=document.status if document else None,
                    )
                    db.rollback()
                    return False

                total_tokens = sum(chunk.token_count for chunk in chunks)
                db.add_all(
                    [
                        DocumentChunk(
                            document_id=document_id,
                            chunk_index=chunk.sequence_index,
                            content=chunk.content,
                            token_count=chunk.token_count,
                            char_start=chunk.char_start,
                            char_end=chunk.char_end,
                            page_number=chunk.page_number,
                            section=chunk.section,
                            embedding=vector,
                            embedding_model=model,
                            embedding_dimensions=dimensions,
                        )
                        for chunk, vector in zip(chunks, vectors)
                    ]
                )

                document.status = DocumentStatus.COMPLETED.value
                document.error_message = None
                document.page_count = extracted.page_count
                document.word_count = extracted.word_count
                document.total_chunks = len(chunks)
                document.total_tokens = total_tokens
                document.processed_at = datetime.now(timezone.utc)

                adjust_knowledge_base_counters(
                    db,
                    document.knowledge_base_id,
                    chunks=len(chunks),
                    tokens=total_tokens,
                    synced=True,
                )
                db.commit()
            except Exception:
                db.rollback()
                raise
        return True

    def _mark_failed(self, document_id: int, message: str, from_status: str) -> None:
        with self.session_factory() as db:
            db.query(Document).filter(
                Document.id == document_id, Document.status == from_status
            ).update(
                {
                    Document.status: DocumentStatus.FAILED.value,
                    Document.error_message: message[:MAX_ERROR_LENGTH],
                },
                synchronize_session=False,
            )
            db.commit()

    async def process_document(self, document_id: int) -> bool:
        """Run the whole pipeline for one document. Returns True when COMPLETED."""
        log = logger.bind(document_id=document_id)
        job = await asyncio.to_thread(self._claim, document_id)
        if job is None:
            log.info("Document not claimable, skipping")
            return False

        try:
            content = await asyncio.to_thread(self.storage.read_bytes, job["file_path"])
            extracted = await asyncio.to_thread(
                parser_service.extract, content, job["file_type"]
            )
            chunks = await asyncio.to_thread(
                self.chunker.chunk_text,
                extracted.text,
                job["config"],
                extracted.page_offsets,
                extracted.sections,
            )
            await asyncio.to_thread(self._check_chunk_limit, job["owner_id"], len(chunks))

            vectors = await self.embedding_provider.embed([c.content for c in chunks]) if chunks else []
            if len(vectors) != len(chunks):
                raise RuntimeError(
                    f"Embedding count mismatch: {len(chunks)} chunks, {len(vectors)} vectors"
                )

            if not await asyncio.to_thread(self._persist, document_id, extracted, chunks, vectors):
                return False
        except Exception as e:
            log.error("Document processing failed", error=str(e), exc_info=True)
            await asyncio.to_thread(
                self._mark_failed,
                document_id,
                getattr(e, "message", None) or str(e) or e.__class__.__name__,
                DocumentStatus.PROCESSING.value,
            )
            return False

        log.info(
            "Document processed",
            knowledge_base_id=job["knowledge_base_id"],
            chunks=len(chunks),
            pages=extracted.page_count,
            words=extracted.word_count,
        )
        return True

    async def enqueue_processing(self, document_id: int) -> bool:
        """Queue a PENDING document; mark it FAILED when the queue stays full."""
        queued = await get_task_queue().enqueue(document_id)
        if not queued:
            await asyncio.to_thread(
                self._mark_failed, document_id, QUEUE_FULL_MESSAGE, DocumentStatus.PENDING.value
            )
        return queued

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    def get_owned(self, db: Session, owner_id: str, document_id: int, with_chunks: bool = False) -> Document:
        query = (
            db.query(Document)
            .join(KnowledgeBase, Document.knowledge_base_id == KnowledgeBase.id)
            .filter(Document.id == document_id, KnowledgeBase.owner_id == owner_id)
        )
        if with_chunks:
            query = query.options(selectinload(Document.chunks))
        document = query.first()
        if document is None:
            raise NotFoundError("Document not found", {"document_id": document_id})
        return document

    def get_document(self, db: Session, owner_id: str, document_id: int) -> Document:
        return self.get_owned(db, owner_id, document_id, with_chunks=True)

    def get_status(self, db: Session, owner_id: str, document_id: int) -> Document:
        return self.get_owned(db, owner_id, document_id)

    def list_documents(self, db: Session, owner_id: str, knowledge_base_id: int) -> List[Document]:
        kb = self.knowledge_bases.get_owned(db, owner_id, knowledge_base_id)
        return (
            db.query(Document)
            .filter(Document.knowledge_base_id == kb.id)
            .order_by(Document.created_at.desc(), Document.id.desc())
            .all()
        )

    def _delete_chunks(self, db: Session, document: Document) -> None:
        """Delete a document's chunks and take them off the KB counters (no commit)."""
        count, tokens = (
            db.query(func.count(DocumentChunk.id), func.coalesce(func.sum(DocumentChunk.token_count), 0))
            .filter(DocumentChunk.document_id == document.id)
            .one()
        )
        if count:
            db.query(DocumentChunk).filter(DocumentChunk.document_id == document.id).delete(
                synchronize_session=False
            )
        adjust_knowledge_base_counters(
            db, document.knowledge_base_id, chunks=-int(count), tokens=-int(tokens)
        )

    async def request_reprocess(
        self,
        db: Session,
        owner_id: str,
        document_id: int,
        chunk_size: Optional[int] = None,
        chunk_overlap: Optional[int] = None,
    ) -> Dict[str, Any]:
        """Drop existing chunks, reset to PENDING and queue the document again."""
        document = self.get_owned(db, owner_id, document_id)
        if document.status == DocumentStatus.PROCESSING.value:
            raise ConflictError("Document is currently processing", {"document_id": document_id})

        config = ChunkConfig(
            chunk_size if chunk_size is not None else document.chunk_size,
            chunk_overlap if chunk_overlap is not None else document.chunk_overlap,
        ).validate()
        tier = self.tier_limits.resolve_tier(db, owner_id)
        max_chunk_size = self.tier_limits.get_limits(db, tier).chunk_size
        if config.chunk_size > max_chunk_size:
            raise TierLimitExceeded(
                f"Chunk size {config.chunk_size} exceeds the {max_chunk_size} token limit of your {tier} plan",
                usage={"resource": "chunk size", "current": config.chunk_size, "limit": max_chunk_size, "tier": tier},
            )

        try:
            reset = (
                db.query(Document)
                .filter(Document.id == document.id, Document.status.in_(REPROCESSABLE_STATUSES))
                .update(
                    {
                        Document.status: DocumentStatus.PENDING.value,
                        Document.error_message: None,
                        Document.chunk_size: config.chunk_size,
                        Document.chunk_overlap: config.chunk_overlap,
                        Document.total_chunks: 0,
                        Document.total_tokens: 0,
                        Document.processed_at: None,
                    },
                    synchronize_session=False,
                )
            )
            if reset != 1:
                raise ConflictError("Document is currently processing", {"document_id": document_id})
            self._delete_chunks(db, document)
            db.commit()
        except Exception:
            db.rollback()
            raise

        logger.info(
            "Document reprocess requested",
            document_id=document_id,
            chunk_size=config.chunk_size,
            chunk_overlap=config.chunk_overlap,
        )
        await self.enqueue_processing(document_id)
        return {"status": "started", "document_id": document_id}

    def delete_document(self, db: Session, owner_id: str, document_id: int) -> None:
        document = self.get_owned(db, owner_id, document_id)
        file_path = document.file_path
        knowledge_base_id = document.knowledge_base_id
        try:
            self._delete_chunks(db, document)
            db.query(Document).filter(Document.id == document.id).delete(synchronize_session=False)
            adjust_knowledge_base_counters(db, knowledge_base_id, documents=-1)
            db.commit()
        except Exception:
            db.rollback()
            raise

        self.storage.delete_quietly(file_path)
        logger.info("Document deleted", document_id=document_id, knowledge_base_id=knowledge_base_id)


document_service = DocumentService()
