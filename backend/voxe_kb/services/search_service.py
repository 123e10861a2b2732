"""
Semantic search over stored chunks.

Every chunk of every COMPLETED document in scope is scored against the query
vector (cosine similarity, numpy). This is a full scan; it is fine for the
per-tenant volumes the tier limits allow and would need a vector index
beyond that.
"""

from typing import List, Optional, Tuple

import numpy as np
import structlog
from sqlalchemy.orm import Session

from voxe_kb.core.config import settings
from voxe_kb.core.exceptions import EmbeddingModelMismatch, ValidationError
from voxe_kb.db.models import (
    Document,
    DocumentChunk,
    DocumentStatus,
    KnowledgeBase,
    WorkflowKnowledgeBase,
)
from voxe_kb.schemas.search import SearchMetadata, SearchRequest, SearchResponse, SearchResult
from voxe_kb.services.embedding_service import EmbeddingProvider, get_embedding_provider

logger = structlog.get_logger(__name__)

EMPTY_SCOPE_MESSAGE = "No knowledge bases found to search"


def cosine_similarity(query: np.ndarray, vectors: np.ndarray) -> np.ndarray:
    """Cosine similarity of ``query`` against each row; zero-norm rows score 0."""
    if vectors.size == 0:
        return np.zeros(0)
    query_norm = np.linalg.norm(query)
    norms = np.linalg.norm(vectors, axis=1)
    denominator = norms * query_norm
    dots = vectors @ query
    scores = np.zeros(len(vectors))
    np.divide(dots, denominator, out=scores, where=denominator > 0)
    return scores


class SearchService:
    def __init__(self, embedding_provider: Optional[EmbeddingProvider] = None):
        self._embedding_provider = embedding_provider

    @property
    def embedding_provider(self) -> EmbeddingProvider:
        if self._embedding_provider is None:
            self._embedding_provider = get_embedding_provider()
        return self._embedding_provider

    def resolve_scope(
        self, db: Session, owner_id: str, request: SearchRequest
    ) -> Tuple[List[KnowledgeBase], Optional[WorkflowKnowledgeBase]]:
        """Knowledge bases to search, plus the top workflow link when scoped by workflow."""
        base = db.query(KnowledgeBase).filter(
            KnowledgeBase.owner_id == owner_id,
            KnowledgeBase.is_active.is_(True),
        )

        if request.workflow_id:
            links = (
                db.query(WorkflowKnowledgeBase)
                .join(KnowledgeBase, WorkflowKnowledgeBase.knowledge_base_id == KnowledgeBase.id)
                .filter(
                    WorkflowKnowledgeBase.workflow_id == request.workflow_id,
                    WorkflowKnowledgeBase.is_active.is_(True),
                    KnowledgeBase.owner_id == owner_id,
                    KnowledgeBase.is_active.is_(True),
                )
                .order_by(WorkflowKnowledgeBase.priority.asc(), WorkflowKnowledgeBase.id.asc())
                .all()
            )
            return [link.knowledge_base for link in links], (links[0] if links else None)

        # an explicit empty list searches nothing
        if request.knowledge_base_ids is not None:
            if not request.knowledge_base_ids:
                return [], None
            kbs = base.filter(KnowledgeBase.id.in_(request.knowledge_base_ids)).all()
            return kbs, None

        return base.order_by(KnowledgeBase.id.asc()).all(), None

    async def search(self, db: Session, owner_id: str, request: SearchRequest) -> SearchResponse:
        query_text = (request.query or "").strip()
        if not query_text:
            raise ValidationError("Query is required")

        kbs, top_link = self.resolve_scope(db, owner_id, request)
        if not kbs:
            return SearchResponse(results=[], message=EMPTY_SCOPE_MESSAGE)

        limit = request.limit
        threshold = request.similarity_threshold
        if top_link is not None:
            limit = limit if limit is not None else top_link.retrieval_limit
            threshold = threshold if threshold is not None else top_link.similarity_threshold
        limit = min(limit if limit is not None else settings.SEARCH_DEFAULT_LIMIT, settings.SEARCH_MAX_LIMIT)
        threshold = threshold if threshold is not None else settings.SEARCH_DEFAULT_THRESHOLD

        provider = self.embedding_provider
        # interactive path, no retries
        query_vector = np.asarray((await provider.embed([query_text], retry=False))[0], dtype=float)

        kb_by_id = {kb.id: kb for kb in kbs}
        rows = (
            db.query(DocumentChunk, Document.original_name, Document.knowledge_base_id)
            .join(Document, DocumentChunk.document_id == Document.id)
            .filter(
                Document.knowledge_base_id.in_(list(kb_by_id)),
                Document.status == DocumentStatus.COMPLETED.value,
                DocumentChunk.embedding_model == provider.model,
            )
            .all()
        )

        for chunk, _, _ in rows:
            if len(chunk.embedding) != len(query_vector):
                raise EmbeddingModelMismatch(
                    "Stored chunk vectors do not match the query embedding",
                    {
                        "chunk_id": chunk.id,
                        "expected_dimensions": len(query_vector),
                        "chunk_dimensions": len(chunk.embedding),
                    },
                )

        matrix = np.asarray([chunk.embedding for chunk, _, _ in rows], dtype=float)
        scores = cosine_similarity(query_vector, matrix) if rows else np.zeros(0)

        scored = [
            (float(score), row)
            for score, row in zip(scores, rows)
            if score >= threshold
        ]
        scored.sort(key=lambda item: (-item[0], item[1][0].document_id, item[1][0].chunk_index))
        scored = scored[:limit]

        results = []
        for score, (chunk, document_name, knowledge_base_id) in scored:
            kb = kb_by_id[knowledge_base_id]
            results.append(
                SearchResult(
                    chunk_id=chunk.id,
                    document_id=chunk.document_id,
                    document_name=document_name,
                    knowledge_base_id=kb.id,
                    knowledge_base_name=kb.name,
                    content=chunk.content,
                    similarity=score,
                    chunk_index=chunk.chunk_index,
                    token_count=chunk.token_count,
                    page_number=chunk.page_number,
                    section=chunk.section,
                )
            )

        logger.info(
            "Search completed",
            owner_id=owner_id,
            knowledge_bases=len(kbs),
            chunks_searched=len(rows),
            results=len(results),
            threshold=threshold,
        )
        return SearchResponse(
            results=results,
            metadata=SearchMetadata(
                query=query_text,
                total_chunks_searched=len(rows),
                knowledge_bases_searched=len(kbs),
                results_returned=len(results),
                similarity_threshold=threshold,
            ),
        )


search_service = SearchService()
