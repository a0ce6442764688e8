"""
Capability interfaces consumed by the chat pipeline.

Production implementations talk to Gemini, Ollama and Supabase; tests swap in
in-memory fakes through FastAPI dependency overrides.
"""
from typing import Any, Dict, List, Optional, Protocol, Union, runtime_checkable

from knowledge_chat.models.results import EmbeddingResult
from knowledge_chat.models.schemas import ChatHistoryEntry, Document, DocumentMatch, ImageAttachment

# A prompt is plain text, optionally followed by image attachments
PromptPart = Union[str, ImageAttachment]
ChatMessage = Dict[str, str]


@runtime_checkable
class Embedder(Protocol):
    """Turns text into a fixed-length vector. Never raises."""

    dimensions: int

    async def embed(self, text: str) -> EmbeddingResult: ...


@runtime_checkable
class Generator(Protocol):
    """Single-prompt generative model. May raise on provider failure."""

    supports_images: bool

    async def generate(self, parts: List[PromptPart]) -> str: ...


@runtime_checkable
class ChatModel(Protocol):
    """Chat-completion model fed role-tagged messages. May raise."""

    supports_images: bool

    async def chat(self, messages: List[ChatMessage]) -> str: ...


@runtime_checkable
class DocumentStore(Protocol):
    """Persistence for documents and chat history."""

    async def search_indexed(self, vector: List[float], threshold: float, count: int) -> List[DocumentMatch]: ...

    async def scan_with_embeddings(self) -> List[Document]: ...

    async def scan_any(self, limit: int) -> List[Document]: ...

    async def append_history(self, entry: ChatHistoryEntry) -> None: ...

    async def insert_document(self, document: Document) -> Dict[str, Any]: ...

    async def list_documents(self) -> List[Dict[str, Any]]: ...

    async def find_document_by_title(self, title: str) -> Optional[Dict[str, Any]]: ...

    async def documents_missing_embeddings(self) -> List[Document]: ...

    async def update_embedding(self, document_id: str, embedding: List[float]) -> None: ...

    async def ping(self) -> None: ...
