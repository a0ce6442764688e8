"""
Shared Test Fixtures for Knowledge Chat Tests

This file contains:
- Environment setup so settings load without a .env file
- In-memory fakes for the embedder, generator, chat model and document store
- FastAPI TestClient wired to the fakes through dependency overrides
- Mock Supabase client for adapter tests
"""
import os
import sys
from typing import Generator, List, Optional
from unittest.mock import Mock

import pytest
import pytest_asyncio

# Add project root to path
sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

os.environ.setdefault("GEMINI_API_KEY", "test-gemini-key")
os.environ.setdefault("SUPABASE_URL", "https://test-project.supabase.co")
os.environ.setdefault("SUPABASE_SERVICE_KEY", "test-service-key")

from fastapi.testclient import TestClient
from httpx import ASGITransport, AsyncClient

from knowledge_chat.main import app
from knowledge_chat.models.results import EmbeddingResult
from knowledge_chat.models.schemas import ChatHistoryEntry, Document, DocumentMatch
from knowledge_chat.services.document_store import get_document_store
from knowledge_chat.services.embedding_service import get_embedding_service
from knowledge_chat.services.generation_service import get_generator
from knowledge_chat.services.ollama_service import get_ollama_chat_model


# ═══════════════════════════════════════════════════════════════
# FAKE CAPABILITIES
# ═══════════════════════════════════════════════════════════════

class FakeEmbedder:
    """Returns a fixed vector; selected calls (1-based) degrade or raise."""

    def __init__(self, vector: Optional[List[float]] = None, degrade_calls=(), raise_calls=()):
        self.vector = vector or [1.0, 0.0, 0.0]
        self.dimensions = len(self.vector)
        self.degrade_calls = set(degrade_calls)
        self.raise_calls = set(raise_calls)
        self.calls: List[str] = []

    async def embed(self, text: str) -> EmbeddingResult:
        self.calls.append(text)
        call_number = len(self.calls)
        if call_number in self.raise_calls:
            raise RuntimeError("embedding client crashed")
        if call_number in self.degrade_calls:
            return EmbeddingResult(vector=[0.001] * self.dimensions, degraded=True, error="quota exceeded")
        return EmbeddingResult(vector=list(self.vector))


class FakeGenerator:
    """Records prompts and returns a canned answer, or raises."""

    def __init__(self, response: str = "Mocked answer", error: Optional[Exception] = None, supports_images: bool = True):
        self.response = response
        self.error = error
        self.supports_images = supports_images
        self.calls: List[list] = []

    async def generate(self, parts: list) -> str:
        self.calls.append(parts)
        if self.error:
            raise self.error
        return self.response


class FakeChatModel:
    """Records message lists and returns a canned reply, or raises."""

    supports_images = False

    def __init__(self, response: str = "Local answer", error: Optional[Exception] = None):
        self.response = response
        self.error = error
        self.calls: List[list] = []

    async def chat(self, messages: list) -> str:
        self.calls.append(messages)
        if self.error:
            raise self.error
        return self.response


class InMemoryDocumentStore:
    """Document store double. Assign an exception to an ``*_error`` attribute to make that call fail."""

    def __init__(self, documents: Optional[List[Document]] = None, indexed_matches: Optional[List[DocumentMatch]] = None):
        self.documents: List[Document] = list(documents or [])
        self.indexed_matches: List[DocumentMatch] = list(indexed_matches or [])
        self.history: List[ChatHistoryEntry] = []
        self.indexed_error: Optional[Exception] = None
        self.scan_error: Optional[Exception] = None
        self.scan_any_error: Optional[Exception] = None
        self.history_error: Optional[Exception] = None
        self.update_errors: set = set()
        self.calls: List[str] = []

    async def search_indexed(self, vector, threshold, count):
        self.calls.append("search_indexed")
        if self.indexed_error:
            raise self.indexed_error
        return [m for m in self.indexed_matches if m.similarity >= threshold][:count]

    async def scan_with_embeddings(self):
        self.calls.append("scan_with_embeddings")
        if self.scan_error:
            raise self.scan_error
        return [d for d in self.documents if d.embedding is not None]

    async def scan_any(self, limit):
        self.calls.append("scan_any")
        if self.scan_any_error:
            raise self.scan_any_error
        return self.documents[:limit]

    async def append_history(self, entry):
        self.calls.append("append_history")
        if self.history_error:
            raise self.history_error
        self.history.append(entry)

    async def insert_document(self, document):
        self.calls.append("insert_document")
        stored = document.model_copy(update={"id": document.id or f"doc-{len(self.documents) + 1}"})
        self.documents.append(stored)
        return stored.model_dump(exclude={"embedding"})

    async def list_documents(self):
        return [d.model_dump(exclude={"embedding"}) for d in reversed(self.documents)]

    async def find_document_by_title(self, title):
        for d in self.documents:
            if d.title == title:
                return {"id": d.id}
        return None

    async def documents_missing_embeddings(self):
        return [d for d in self.documents if d.embedding is None]

    async def update_embedding(self, document_id, embedding):
        if document_id in self.update_errors:
            raise RuntimeError(f"update failed for {document_id}")
        for i, d in enumerate(self.documents):
            if d.id == document_id:
                self.documents[i] = d.model_copy(update={"embedding": embedding})

    async def ping(self):
        if self.scan_any_error:
            raise self.scan_any_error


# ═══════════════════════════════════════════════════════════════
# FAKE FIXTURES
# ═══════════════════════════════════════════════════════════════

@pytest.fixture
def fake_embedder() -> FakeEmbedder:
    return FakeEmbedder()


@pytest.fixture
def fake_generator() -> FakeGenerator:
    return FakeGenerator()


@pytest.fixture
def fake_chat_model() -> FakeChatModel:
    return FakeChatModel()


@pytest.fixture
def fake_store() -> InMemoryDocumentStore:
    return InMemoryDocumentStore()


# ═══════════════════════════════════════════════════════════════
# FASTAPI CLIENT FIXTURES
# ═══════════════════════════════════════════════════════════════

@pytest.fixture
def client(fake_store, fake_embedder, fake_generator, fake_chat_model) -> Generator[TestClient, None, None]:
    """FastAPI test client with every provider replaced by a fake."""
    app.dependency_overrides[get_document_store] = lambda: fake_store
    app.dependency_overrides[get_embedding_service] = lambda: fake_embedder
    app.dependency_overrides[get_generator] = lambda: fake_generator
    app.dependency_overrides[get_ollama_chat_model] = lambda: fake_chat_model
    with TestClient(app) as c:
        yield c
    app.dependency_overrides.clear()


@pytest.fixture
def error_client(client) -> TestClient:
    """Same overrides as ``client``, but unhandled errors come back as responses."""
    return TestClient(app, raise_server_exceptions=False)


@pytest.fixture
def mock_supabase() -> Mock:
    """Mock Supabase client for document store adapter tests."""
    mock = Mock()
    mock.rpc.return_value.execute.return_value.data = []
    mock.table.return_value.select.return_value.limit.return_value.execute.return_value.data = []
    mock.table.return_value.select.return_value.not_.is_.return_value.execute.return_value.data = []
    mock.table.return_value.select.return_value.is_.return_value.execute.return_value.data = []
    mock.table.return_value.select.return_value.order.return_value.execute.return_value.data = []
    mock.table.return_value.select.return_value.order.return_value.limit.return_value.execute.return_value.data = []
    mock.table.return_value.insert.return_value.execute.return_value.data = [{"id": "test-uuid"}]
    mock.table.return_value.update.return_value.eq.return_value.execute.return_value.data = [{}]
    return mock


# ═══════════════════════════════════════════════════════════════
# TEST DATA FIXTURES
# ═══════════════════════════════════════════════════════════════

@pytest.fixture
def sample_session_id() -> str:
    return "k3x9a1"


@pytest.fixture
def working_hours_match() -> DocumentMatch:
    return DocumentMatch(
        id="doc-hours",
        title="勤務時間について",
        content="通常勤務時間は平日9:00-18:00です。フレックスタイム制度もあり、コアタイムは10:00-15:00です。",
        source="FAQ",
        similarity=0.82,
    )


@pytest.fixture
def sample_documents() -> List[Document]:
    """Documents without embeddings, as left behind by a failed ingestion."""
    return [
        Document(id="doc-1", title="勤務時間について", content="通常勤務時間は平日9:00-18:00です。", source="FAQ"),
        Document(id="doc-2", title="有給休暇の取得方法", content="有給休暇は入社6ヶ月後から取得可能です。", source="FAQ"),
        Document(id="doc-3", title="経費精算について", content="経費精算は月末締めで翌月25日支払いです。", source="FAQ"),
    ]


@pytest_asyncio.fixture
async def async_client():
    """Async client against the real app, for integration and e2e suites."""
    async with AsyncClient(transport=ASGITransport(app=app), base_url="http://test") as ac:
        yield ac
