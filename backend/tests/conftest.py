"""
Pytest configuration and fixtures.

Environment is set before the package is imported so settings, the engine
and the module-level services all pick up the test configuration.
"""

import os

os.environ.setdefault("DATABASE_URL", "sqlite://")
os.environ.setdefault("TOKENIZER", "word")
os.environ.setdefault("EMBEDDING_PROVIDER", "openai")
os.environ.setdefault("OPENAI_API_KEY", "test-key")
os.environ.setdefault("EMBEDDING_RETRY_BASE_DELAY", "0")
os.environ.setdefault("EMBEDDING_RETRY_MAX_DELAY", "0")
os.environ.setdefault("DISABLE_AUTH", "false")
os.environ.setdefault("ADMIN_API_KEY", "admin-secret")
os.environ.setdefault("USE_CELERY", "false")

from typing import List  # noqa: E402

import pytest  # noqa: E402

from voxe_kb.db.database import SessionLocal, engine  # noqa: E402
from voxe_kb.db.models import Base, Document, KnowledgeBase, Tenant  # noqa: E402
from voxe_kb.services.document_service import document_service  # noqa: E402
from voxe_kb.services.embedding_service import EmbeddingProvider  # noqa: E402
from voxe_kb.services.ingestion_service import ingestion_service  # noqa: E402
from voxe_kb.services.search_service import search_service  # noqa: E402
from voxe_kb.services.storage_service import storage_service  # noqa: E402
from voxe_kb.services.tier_limit_service import tier_limit_service  # noqa: E402
from voxe_kb.tasks.queue import TaskQueue, set_task_queue  # noqa: E402

OWNER = "owner-1"
OTHER_OWNER = "owner-2"

KEYWORDS = ["refund", "shipping", "password", "pricing"]


class KeywordEmbeddingProvider(EmbeddingProvider):
    """Deterministic vectors: one dimension per keyword, value = occurrences."""

    model = "fake-embedding"
    dimensions = len(KEYWORDS)

    def __init__(self):
        self.calls: List[List[str]] = []
        self.before_return = None

    async def embed(self, texts, retry=True):
        self.calls.append(list(texts))
        vectors = []
        for text in texts:
            lowered = text.lower()
            vectors.append([float(lowered.count(word)) for word in KEYWORDS])
        if self.before_return is not None:
            self.before_return()
        return vectors


class RecordingQueue(TaskQueue):
    def __init__(self):
        self.enqueued: List[int] = []
        self.accept = True

    async def enqueue(self, document_id: int) -> bool:
        if not self.accept:
            return False
        self.enqueued.append(document_id)
        return True


@pytest.fixture(autouse=True)
def database():
    Base.metadata.create_all(bind=engine)
    yield
    Base.metadata.drop_all(bind=engine)


@pytest.fixture(autouse=True)
def upload_dir(tmp_path, monkeypatch):
    root = tmp_path / "uploads"
    root.mkdir()
    monkeypatch.setattr(storage_service, "root_dir", str(root))
    return root


@pytest.fixture(autouse=True)
def fresh_tier_cache():
    tier_limit_service.cache.invalidate()
    yield
    tier_limit_service.cache.invalidate()


@pytest.fixture(autouse=True)
def embeddings(monkeypatch):
    provider = KeywordEmbeddingProvider()
    monkeypatch.setattr(document_service, "_embedding_provider", provider)
    monkeypatch.setattr(search_service, "_embedding_provider", provider)
    return provider


@pytest.fixture(autouse=True)
def task_queue():
    queue = RecordingQueue()
    set_task_queue(queue)
    yield queue
    set_task_queue(None)


@pytest.fixture
def db():
    session = SessionLocal()
    try:
        yield session
    finally:
        session.close()


@pytest.fixture
def make_kb(db):
    def _make_kb(owner_id=OWNER, name="Support", is_active=True, tier=None):
        if tier is not None and db.get(Tenant, owner_id) is None:
            db.add(Tenant(id=owner_id, name=owner_id, tier=tier))
        kb = KnowledgeBase(owner_id=owner_id, name=name, is_active=is_active)
        db.add(kb)
        db.commit()
        db.refresh(kb)
        return kb

    return _make_kb


@pytest.fixture
def upload_text(db):
    """Ingest a text file, optionally with a smaller chunk config, without processing it."""

    async def _upload_text(kb, text, name="notes.txt", chunk_size=None, chunk_overlap=None):
        document = await ingestion_service.ingest(
            db, kb.owner_id, kb.id, name, "text/plain", text.encode("utf-8")
        )
        if chunk_size is not None:
            document.chunk_size = chunk_size
            document.chunk_overlap = chunk_overlap if chunk_overlap is not None else 0
            db.commit()
        return document

    return _upload_text


@pytest.fixture
def ingest_and_process(db, upload_text):
    async def _ingest_and_process(kb, text, **kwargs):
        document = await upload_text(kb, text, **kwargs)
        assert await document_service.process_document(document.id) is True
        db.expire_all()
        return db.get(Document, document.id)

    return _ingest_and_process
