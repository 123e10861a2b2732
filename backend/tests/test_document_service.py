"""
Tests for document processing, reprocessing and deletion
"""

import threading

import pytest

from voxe_kb.core.exceptions import (
    ConflictError,
    InvalidChunkConfig,
    NotFoundError,
    TierLimitExceeded,
)
from voxe_kb.db.models import Document, DocumentChunk, DocumentStatus, KnowledgeBase
from voxe_kb.services.document_service import document_service

OTHER_OWNER = "owner-2"

POLICY = (
    "Refund requests are accepted within thirty days of purchase. "
    "Shipping costs are not covered by the refund. "
    "To reset your password open the account page and follow the link we email you."
)


def chunks_of(db, document_id):
    return (
        db.query(DocumentChunk)
        .filter(DocumentChunk.document_id == document_id)
        .order_by(DocumentChunk.chunk_index)
        .all()
    )


def kb_counters(db, kb_id):
    db.expire_all()
    kb = db.get(KnowledgeBase, kb_id)
    return kb.total_documents, kb.total_chunks, kb.total_tokens


class TestProcessDocument:
    async def test_completed_document_has_contiguous_chunks(self, db, make_kb, ingest_and_process, embeddings):
        kb = make_kb()
        document = await ingest_and_process(kb, POLICY, chunk_size=8, chunk_overlap=2)

        chunks = chunks_of(db, document.id)
        assert document.status == DocumentStatus.COMPLETED.value
        assert document.error_message is None
        assert document.processed_at is not None
        assert document.total_chunks == len(chunks) > 1
        assert [c.chunk_index for c in chunks] == list(range(len(chunks)))
        assert all(c.token_count <= 8 for c in chunks)
        assert document.total_tokens == sum(c.token_count for c in chunks)
        assert document.word_count == len(POLICY.split())
        assert all(c.embedding_model == "fake-embedding" for c in chunks)
        assert all(len(c.embedding) == c.embedding_dimensions == 4 for c in chunks)
        assert embeddings.calls[-1] == [c.content for c in chunks]

    async def test_knowledge_base_counters_follow_processing(self, db, make_kb, ingest_and_process):
        kb = make_kb()
        first = await ingest_and_process(kb, POLICY, chunk_size=8, chunk_overlap=2)
        second = await ingest_and_process(kb, "pricing starts at ten dollars", name="pricing.txt")

        documents, chunks, tokens = kb_counters(db, kb.id)
        assert documents == 2
        assert chunks == first.total_chunks + second.total_chunks
        assert tokens == first.total_tokens + second.total_tokens
        assert db.get(KnowledgeBase, kb.id).last_synced_at is not None

    async def test_empty_text_completes_with_no_chunks(self, db, make_kb, ingest_and_process, embeddings):
        kb = make_kb()
        document = await ingest_and_process(kb, "   \n\n  ")

        assert document.status == DocumentStatus.COMPLETED.value
        assert document.total_chunks == 0
        assert chunks_of(db, document.id) == []
        assert embeddings.calls == []

    async def test_database_steps_run_in_worker_threads(self, make_kb, upload_text, monkeypatch):
        kb = make_kb()
        document = await upload_text(kb, POLICY)
        loop_thread = threading.get_ident()
        seen = {}

        for name in ("_claim", "_check_chunk_limit", "_persist"):
            original = getattr(document_service, name)

            def recording(*args, _name=name, _original=original):
                seen[_name] = threading.get_ident()
                return _original(*args)

            monkeypatch.setattr(document_service, name, recording)

        assert await document_service.process_document(document.id) is True
        assert set(seen) == {"_claim", "_check_chunk_limit", "_persist"}
        assert loop_thread not in seen.values()

    async def test_already_claimed_document_is_skipped(self, db, make_kb, ingest_and_process):
        kb = make_kb()
        document = await ingest_and_process(kb, POLICY)

        assert await document_service.process_document(document.id) is False
        assert len(chunks_of(db, document.id)) == document.total_chunks

    async def test_unknown_document_is_skipped(self):
        assert await document_service.process_document(99999) is False

    async def test_extraction_failure_marks_failed(self, db, make_kb):
        from voxe_kb.services.ingestion_service import ingestion_service

        kb = make_kb()
        document = await ingestion_service.ingest(
            db,
            kb.owner_id,
            kb.id,
            "broken.docx",
            "application/vnd.openxmlformats-officedocument.wordprocessingml.document",
            b"not a zip archive",
        )

        assert await document_service.process_document(document.id) is False

        db.expire_all()
        document = db.get(Document, document.id)
        assert document.status == DocumentStatus.FAILED.value
        assert document.error_message
        assert chunks_of(db, document.id) == []
        assert kb_counters(db, kb.id) == (1, 0, 0)

    async def test_missing_stored_file_marks_failed(self, db, make_kb, upload_text):
        kb = make_kb()
        document = await upload_text(kb, POLICY)
        document_service.storage.delete(document.file_path)

        assert await document_service.process_document(document.id) is False

        db.expire_all()
        assert db.get(Document, document.id).status == DocumentStatus.FAILED.value

    async def test_embedding_failure_writes_no_chunks(self, db, make_kb, upload_text, embeddings):
        kb = make_kb()
        document = await upload_text(kb, POLICY)

        def fail():
            raise RuntimeError("provider down")

        embeddings.before_return = fail
        assert await document_service.process_document(document.id) is False

        db.expire_all()
        failed = db.get(Document, document.id)
        assert failed.status == DocumentStatus.FAILED.value
        assert "provider down" in failed.error_message
        assert chunks_of(db, document.id) == []

    async def test_failed_document_can_be_claimed_again(self, db, make_kb, upload_text, embeddings):
        kb = make_kb()
        document = await upload_text(kb, POLICY)

        def flaky():
            raise RuntimeError("flaky")

        embeddings.before_return = flaky
        assert await document_service.process_document(document.id) is False

        embeddings.before_return = None
        assert await document_service.process_document(document.id) is True

    async def test_chunk_limit_exceeded_marks_failed(self, db, make_kb, upload_text):
        kb = make_kb()
        words = " ".join(f"w{i}" for i in range(60))
        document = await upload_text(kb, words, chunk_size=1, chunk_overlap=0)

        # FREE allows 50 chunks per document
        assert await document_service.process_document(document.id) is False

        db.expire_all()
        failed = db.get(Document, document.id)
        assert failed.status == DocumentStatus.FAILED.value
        assert "50" in failed.error_message
        assert chunks_of(db, document.id) == []

    async def test_document_deleted_mid_run_is_discarded(self, db, make_kb, upload_text, embeddings):
        kb = make_kb()
        document = await upload_text(kb, POLICY)
        document_id = document.id

        embeddings.before_return = lambda: document_service.delete_document(db, kb.owner_id, document_id)
        assert await document_service.process_document(document_id) is False

        assert db.query(DocumentChunk).count() == 0
        assert kb_counters(db, kb.id) == (0, 0, 0)


class TestReprocess:
    async def test_reprocess_is_idempotent(self, db, make_kb, ingest_and_process, task_queue):
        kb = make_kb()
        document = await ingest_and_process(kb, POLICY, chunk_size=8, chunk_overlap=2)
        before_chunks = [(c.chunk_index, c.content) for c in chunks_of(db, document.id)]
        before_counters = kb_counters(db, kb.id)

        result = await document_service.request_reprocess(db, kb.owner_id, document.id)

        assert result == {"status": "started", "document_id": document.id}
        assert task_queue.enqueued[-1] == document.id
        db.expire_all()
        pending = db.get(Document, document.id)
        assert pending.status == DocumentStatus.PENDING.value
        assert chunks_of(db, document.id) == []
        assert kb_counters(db, kb.id) == (1, 0, 0)

        assert await document_service.process_document(document.id) is True
        assert [(c.chunk_index, c.content) for c in chunks_of(db, document.id)] == before_chunks
        assert kb_counters(db, kb.id) == before_counters

    async def test_reprocess_with_new_config(self, db, make_kb, ingest_and_process):
        kb = make_kb()
        document = await ingest_and_process(kb, POLICY, chunk_size=8, chunk_overlap=2)
        old_count = document.total_chunks

        await document_service.request_reprocess(db, kb.owner_id, document.id, chunk_size=4, chunk_overlap=0)
        assert await document_service.process_document(document.id) is True

        db.expire_all()
        document = db.get(Document, document.id)
        assert (document.chunk_size, document.chunk_overlap) == (4, 0)
        assert document.total_chunks > old_count

    async def test_reprocess_while_processing_conflicts(self, db, make_kb, upload_text):
        kb = make_kb()
        document = await upload_text(kb, POLICY)
        document.status = DocumentStatus.PROCESSING.value
        db.commit()

        with pytest.raises(ConflictError):
            await document_service.request_reprocess(db, kb.owner_id, document.id)

    @pytest.mark.parametrize("size,overlap", [(0, 0), (10, 10), (10, -1)])
    async def test_reprocess_rejects_invalid_config(self, db, make_kb, ingest_and_process, size, overlap, task_queue):
        kb = make_kb()
        document = await ingest_and_process(kb, POLICY)
        queued = list(task_queue.enqueued)

        with pytest.raises(InvalidChunkConfig):
            await document_service.request_reprocess(
                db, kb.owner_id, document.id, chunk_size=size, chunk_overlap=overlap
            )

        db.expire_all()
        assert db.get(Document, document.id).status == DocumentStatus.COMPLETED.value
        assert task_queue.enqueued == queued

    async def test_reprocess_chunk_size_capped_by_tier(self, db, make_kb, ingest_and_process):
        kb = make_kb()
        document = await ingest_and_process(kb, POLICY)

        with pytest.raises(TierLimitExceeded):
            await document_service.request_reprocess(db, kb.owner_id, document.id, chunk_size=1001, chunk_overlap=0)

    async def test_reprocess_other_owners_document_not_found(self, db, make_kb, ingest_and_process):
        kb = make_kb()
        document = await ingest_and_process(kb, POLICY)

        with pytest.raises(NotFoundError):
            await document_service.request_reprocess(db, OTHER_OWNER, document.id)

    async def test_reprocess_marks_failed_when_queue_full(self, db, make_kb, ingest_and_process, task_queue):
        kb = make_kb()
        document = await ingest_and_process(kb, POLICY)
        task_queue.accept = False

        await document_service.request_reprocess(db, kb.owner_id, document.id)

        db.expire_all()
        document = db.get(Document, document.id)
        assert document.status == DocumentStatus.FAILED.value
        assert "queue" in document.error_message.lower()


class TestDeleteDocument:
    async def test_delete_cascades_and_decrements_counters(self, db, make_kb, ingest_and_process, upload_dir):
        kb = make_kb()
        keep = await ingest_and_process(kb, "pricing page text", name="pricing.txt")
        keep_chunks, keep_tokens = keep.total_chunks, keep.total_tokens
        doomed = await ingest_and_process(kb, POLICY, chunk_size=8, chunk_overlap=2)
        doomed_id = doomed.id
        stored = upload_dir / doomed.file_path
        assert stored.exists()

        document_service.delete_document(db, kb.owner_id, doomed_id)

        assert db.query(DocumentChunk).filter(DocumentChunk.document_id == doomed_id).count() == 0
        assert db.get(Document, doomed_id) is None
        assert kb_counters(db, kb.id) == (1, keep_chunks, keep_tokens)
        assert not stored.exists()

    async def test_delete_ten_chunk_document_zeroes_counters(self, db, make_kb, ingest_and_process):
        kb = make_kb()
        words = " ".join(f"w{i}" for i in range(10))
        document = await ingest_and_process(kb, words, chunk_size=1, chunk_overlap=0)
        document_id = document.id
        assert document.total_chunks == 10
        assert kb_counters(db, kb.id) == (1, 10, document.total_tokens)

        document_service.delete_document(db, kb.owner_id, document_id)

        assert db.query(DocumentChunk).filter(DocumentChunk.document_id == document_id).count() == 0
        assert kb_counters(db, kb.id) == (0, 0, 0)

    async def test_delete_survives_missing_file(self, db, make_kb, ingest_and_process):
        kb = make_kb()
        document = await ingest_and_process(kb, POLICY)
        document_service.storage.delete(document.file_path)

        document_service.delete_document(db, kb.owner_id, document.id)

        assert kb_counters(db, kb.id) == (0, 0, 0)

    async def test_delete_other_owners_document_not_found(self, db, make_kb, ingest_and_process):
        kb = make_kb()
        document = await ingest_and_process(kb, POLICY)

        with pytest.raises(NotFoundError):
            document_service.delete_document(db, OTHER_OWNER, document.id)


class TestReadOperations:
    async def test_get_document_includes_ordered_chunks(self, db, make_kb, ingest_and_process):
        kb = make_kb()
        document = await ingest_and_process(kb, POLICY, chunk_size=8, chunk_overlap=2)
        db.expire_all()

        loaded = document_service.get_document(db, kb.owner_id, document.id)

        assert [c.chunk_index for c in loaded.chunks] == list(range(document.total_chunks))

    async def test_list_documents_requires_owned_kb(self, db, make_kb, ingest_and_process):
        kb = make_kb()
        await ingest_and_process(kb, POLICY)

        assert len(document_service.list_documents(db, kb.owner_id, kb.id)) == 1
        with pytest.raises(NotFoundError):
            document_service.list_documents(db, OTHER_OWNER, kb.id)
