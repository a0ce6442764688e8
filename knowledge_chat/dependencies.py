"""
FastAPI dependency providers.

Provider clients are injected rather than imported as globals so tests can
replace them via ``app.dependency_overrides``.
"""
from fastapi import Depends

from knowledge_chat.services.answer_service import AnswerService
from knowledge_chat.services.chat_pipeline import ChatPipeline
from knowledge_chat.services.document_service import DocumentService
from knowledge_chat.services.document_store import get_document_store
from knowledge_chat.services.embedding_service import get_embedding_service
from knowledge_chat.services.generation_service import get_generator
from knowledge_chat.services.history_sink import HistorySink
from knowledge_chat.services.ollama_service import get_ollama_chat_model
from knowledge_chat.services.protocols import ChatModel, DocumentStore, Embedder, Generator
from knowledge_chat.services.search_strategies import build_tiered_search


def get_chat_pipeline(
    store: DocumentStore = Depends(get_document_store),
    embedder: Embedder = Depends(get_embedding_service),
    generator: Generator = Depends(get_generator),
    local_chat_model: ChatModel = Depends(get_ollama_chat_model),
) -> ChatPipeline:
    return ChatPipeline(
        embedder=embedder,
        search=build_tiered_search(store),
        answer_service=AnswerService(generator, local_chat_model),
        history_sink=HistorySink(store),
    )


def get_document_service(
    store: DocumentStore = Depends(get_document_store),
    embedder: Embedder = Depends(get_embedding_service),
) -> DocumentService:
    return DocumentService(store, embedder)
