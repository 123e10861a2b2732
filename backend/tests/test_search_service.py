"""
Tests for similarity search
"""

import numpy as np
import pytest

from voxe_kb.core.exceptions import EmbeddingModelMismatch, ValidationError
from voxe_kb.db.models import Document, DocumentChunk, DocumentStatus
from voxe_kb.schemas.knowledge_base import WorkflowLinkCreate
from voxe_kb.schemas.search import SearchRequest
from voxe_kb.services.knowledge_base_service import knowledge_base_service
from voxe_kb.services.search_service import EMPTY_SCOPE_MESSAGE, cosine_similarity, search_service


@pytest.fixture
async def corpus(make_kb, ingest_and_process):
    """One knowledge base with three single-chunk documents."""
    kb = make_kb()
    refund = await ingest_and_process(kb, "refund policy: a refund takes five days", name="refund.txt")
    mixed = await ingest_and_process(kb, "refund and shipping questions", name="mixed.txt")
    password = await ingest_and_process(kb, "password reset steps", name="password.txt")
    return kb, refund, mixed, password


class TestCosineSimilarity:
    def test_scores(self):
        query = np.array([1.0, 0.0])
        vectors = np.array([[2.0, 0.0], [0.0, 3.0], [1.0, 1.0]])

        scores = cosine_similarity(query, vectors)

        assert scores[0] == pytest.approx(1.0)
        assert scores[1] == pytest.approx(0.0)
        assert scores[2] == pytest.approx(1 / np.sqrt(2))

    def test_zero_norm_rows_score_zero(self):
        scores = cosine_similarity(np.array([1.0, 0.0]), np.array([[0.0, 0.0]]))

        assert scores.tolist() == [0.0]

    def test_zero_query_scores_zero(self):
        scores = cosine_similarity(np.zeros(2), np.array([[1.0, 1.0]]))

        assert scores.tolist() == [0.0]


class TestSearch:
    @pytest.mark.parametrize("query", [None, "", "   "])
    async def test_query_is_required(self, db, query):
        with pytest.raises(ValidationError):
            await search_service.search(db, "owner-1", SearchRequest(query=query))

    async def test_empty_scope_skips_embedding(self, db, embeddings):
        response = await search_service.search(db, "owner-1", SearchRequest(query="refund"))

        assert response.results == []
        assert response.message == EMPTY_SCOPE_MESSAGE
        assert response.metadata is None
        assert embeddings.calls == []

    async def test_results_ranked_and_thresholded(self, db, corpus):
        kb, refund, mixed, _ = corpus

        response = await search_service.search(
            db, kb.owner_id, SearchRequest(query="refund", similarity_threshold=0.5)
        )

        assert [r.document_id for r in response.results] == [refund.id, mixed.id]
        assert response.results[0].similarity == pytest.approx(1.0)
        assert response.results[1].similarity == pytest.approx(1 / np.sqrt(2))
        assert response.results[0].document_name == "refund.txt"
        assert response.results[0].knowledge_base_name == kb.name
        assert response.metadata.total_chunks_searched == 3
        assert response.metadata.knowledge_bases_searched == 1
        assert response.metadata.results_returned == 2
        assert response.metadata.similarity_threshold == 0.5

    async def test_threshold_is_inclusive(self, db, corpus):
        kb, refund, _, _ = corpus

        response = await search_service.search(
            db, kb.owner_id, SearchRequest(query="refund", similarity_threshold=1.0)
        )

        assert [r.document_id for r in response.results] == [refund.id]

    async def test_limit_truncates(self, db, corpus):
        kb, refund, _, _ = corpus

        response = await search_service.search(
            db, kb.owner_id, SearchRequest(query="refund", limit=1, similarity_threshold=0.0)
        )

        assert [r.document_id for r in response.results] == [refund.id]

    async def test_ties_ordered_by_document(self, db, make_kb, ingest_and_process):
        kb = make_kb()
        first = await ingest_and_process(kb, "pricing", name="a.txt")
        second = await ingest_and_process(kb, "pricing", name="b.txt")

        response = await search_service.search(
            db, kb.owner_id, SearchRequest(query="pricing", similarity_threshold=0.0)
        )

        assert [r.document_id for r in response.results] == [first.id, second.id]

    async def test_query_embedded_without_retries(self, db, corpus, embeddings, monkeypatch):
        kb = corpus[0]
        seen = {}
        original = embeddings.embed

        async def embed(texts, retry=True):
            seen["retry"] = retry
            return await original(texts, retry=retry)

        monkeypatch.setattr(embeddings, "embed", embed)
        await search_service.search(db, kb.owner_id, SearchRequest(query="refund"))

        assert seen["retry"] is False

    async def test_only_completed_documents_are_searched(self, db, corpus):
        kb, refund, mixed, _ = corpus
        db.get(Document, refund.id).status = DocumentStatus.PROCESSING.value
        db.commit()

        response = await search_service.search(
            db, kb.owner_id, SearchRequest(query="refund", similarity_threshold=0.5)
        )

        assert [r.document_id for r in response.results] == [mixed.id]
        assert response.metadata.total_chunks_searched == 2

    async def test_chunks_from_other_models_are_ignored(self, db, corpus):
        kb, refund, mixed, _ = corpus
        chunk = db.query(DocumentChunk).filter(DocumentChunk.document_id == refund.id).one()
        chunk.embedding_model = "some-other-model"
        db.commit()

        response = await search_service.search(
            db, kb.owner_id, SearchRequest(query="refund", similarity_threshold=0.5)
        )

        assert [r.document_id for r in response.results] == [mixed.id]

    async def test_dimension_mismatch_raises(self, db, corpus):
        kb, refund, _, _ = corpus
        chunk = db.query(DocumentChunk).filter(DocumentChunk.document_id == refund.id).one()
        chunk.embedding = [1.0, 0.0, 0.0]
        db.commit()

        with pytest.raises(EmbeddingModelMismatch):
            await search_service.search(db, kb.owner_id, SearchRequest(query="refund"))

    async def test_other_owners_knowledge_bases_are_excluded(self, db, corpus):
        kb = corpus[0]

        response = await search_service.search(
            db, "owner-2", SearchRequest(query="refund", knowledge_base_ids=[kb.id])
        )

        assert response.results == []
        assert response.message == EMPTY_SCOPE_MESSAGE

    async def test_inactive_knowledge_bases_are_excluded(self, db, corpus):
        kb = corpus[0]
        kb.is_active = False
        db.commit()

        response = await search_service.search(db, kb.owner_id, SearchRequest(query="refund"))

        assert response.message == EMPTY_SCOPE_MESSAGE

    async def test_explicit_empty_scope_searches_nothing(self, db, corpus, embeddings):
        kb = corpus[0]
        calls_before = len(embeddings.calls)

        response = await search_service.search(
            db, kb.owner_id, SearchRequest(query="refund", knowledge_base_ids=[], similarity_threshold=0.0)
        )

        assert response.results == []
        assert response.message == EMPTY_SCOPE_MESSAGE
        assert len(embeddings.calls) == calls_before

    async def test_workflow_scope_takes_precedence_over_explicit_ids(
        self, db, corpus, make_kb, ingest_and_process
    ):
        kb = corpus[0]
        linked = make_kb(name="Linked")
        linked_doc = await ingest_and_process(linked, "refund desk", name="linked.txt")
        knowledge_base_service.link_workflow(
            db,
            linked.owner_id,
            linked.id,
            WorkflowLinkCreate(workflow_id="wf-1", retrieval_limit=3, similarity_threshold=0.2),
        )

        response = await search_service.search(
            db,
            kb.owner_id,
            SearchRequest(query="refund", workflow_id="wf-1", knowledge_base_ids=[kb.id]),
        )

        assert [r.document_id for r in response.results] == [linked_doc.id]
        assert response.metadata.knowledge_bases_searched == 1
        assert response.metadata.similarity_threshold == 0.2

    async def test_explicit_scope(self, db, corpus, make_kb, ingest_and_process):
        kb = corpus[0]
        other = make_kb(name="Billing")
        billing = await ingest_and_process(other, "refund invoices", name="billing.txt")

        response = await search_service.search(
            db, kb.owner_id, SearchRequest(query="refund", knowledge_base_ids=[other.id])
        )

        assert [r.document_id for r in response.results] == [billing.id]
        assert response.metadata.knowledge_bases_searched == 1

    async def test_workflow_scope_uses_link_defaults(self, db, corpus):
        kb, refund, _, _ = corpus
        knowledge_base_service.link_workflow(
            db,
            kb.owner_id,
            kb.id,
            WorkflowLinkCreate(workflow_id="wf-1", retrieval_limit=1, similarity_threshold=0.9),
        )

        response = await search_service.search(
            db, kb.owner_id, SearchRequest(query="refund", workflow_id="wf-1")
        )

        assert [r.document_id for r in response.results] == [refund.id]
        assert response.metadata.similarity_threshold == 0.9

    async def test_request_overrides_workflow_defaults(self, db, corpus):
        kb = corpus[0]
        knowledge_base_service.link_workflow(
            db,
            kb.owner_id,
            kb.id,
            WorkflowLinkCreate(workflow_id="wf-1", retrieval_limit=1, similarity_threshold=0.9),
        )

        response = await search_service.search(
            db,
            kb.owner_id,
            SearchRequest(query="refund", workflow_id="wf-1", limit=5, similarity_threshold=0.5),
        )

        assert len(response.results) == 2

    async def test_unknown_workflow_has_empty_scope(self, db, corpus):
        kb = corpus[0]

        response = await search_service.search(
            db, kb.owner_id, SearchRequest(query="refund", workflow_id="missing")
        )

        assert response.message == EMPTY_SCOPE_MESSAGE
