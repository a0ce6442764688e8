"""
Document Store Service
Persists documents and chat history in Supabase (Postgres + pgvector).
"""
import asyncio
import json
from typing import Any, Dict, List, Optional

import structlog
from supabase import Client, create_client
from tenacity import retry, stop_after_attempt, wait_exponential

from knowledge_chat.config import get_settings
from knowledge_chat.models.schemas import ChatHistoryEntry, Document, DocumentMatch

logger = structlog.get_logger()


def _parse_embedding(value: Any) -> Optional[List[float]]:
    """PostgREST returns pgvector columns as text such as '[0.1,0.2]'."""
    if value is None:
        return None
    if isinstance(value, str):
        value = json.loads(value)
    return [float(x) for x in value]


class SupabaseDocumentStore:
    """Reads and writes the documents and chat_history tables."""

    def __init__(self, client: Optional[Client] = None):
        self.settings = get_settings()
        self.client = client or create_client(self.settings.supabase_url, self.settings.supabase_service_key)

        logger.info(
            "Document store initialized",
            documents_table=self.settings.documents_table,
            history_table=self.settings.chat_history_table
        )

    def _documents(self):
        return self.client.table(self.settings.documents_table)

    @staticmethod
    async def _execute(query):
        # supabase-py is synchronous; keep its round trips off the event loop
        return await asyncio.to_thread(query.execute)

    @staticmethod
    def _to_document(row: Dict[str, Any]) -> Document:
        return Document(
            id=row.get("id"),
            title=row.get("title") or "Untitled",
            content=row.get("content") or "",
            source=row.get("source") or "unknown",
            embedding=_parse_embedding(row.get("embedding")),
            created_at=row.get("created_at"),
        )

    # ─────────────────────────────────────────────────────────────
    # Retrieval
    # ─────────────────────────────────────────────────────────────

    async def search_indexed(
        self,
        vector: List[float],
        threshold: float,
        count: int
    ) -> List[DocumentMatch]:
        """
        Similarity search through the database's match function.

        Args:
            vector: Query embedding
            threshold: Minimum similarity
            count: Maximum number of matches

        Returns:
            Matches ordered by descending similarity
        """
        result = await self._execute(self.client.rpc(
            self.settings.match_function,
            {
                "query_embedding": vector,
                "match_threshold": threshold,
                "match_count": count,
            }
        ))

        return [
            DocumentMatch(
                id=row.get("id"),
                title=row.get("title") or "Untitled",
                content=row.get("content") or "",
                source=row.get("source") or "unknown",
                similarity=row["similarity"],
            )
            for row in (result.data or [])
        ]

    async def scan_with_embeddings(self) -> List[Document]:
        """Fetch every document that has a stored embedding."""
        result = await self._execute(
            self._documents()
            .select("id, title, content, source, embedding")
            .not_.is_("embedding", "null")
        )
        return [self._to_document(row) for row in (result.data or [])]

    async def scan_any(self, limit: int) -> List[Document]:
        """Fetch a small unfiltered page of documents."""
        result = await self._execute(self._documents().select("*").limit(limit))
        return [self._to_document(row) for row in (result.data or [])]

    # ─────────────────────────────────────────────────────────────
    # Chat history
    # ─────────────────────────────────────────────────────────────

    async def append_history(self, entry: ChatHistoryEntry) -> None:
        """Insert one chat history row. Errors propagate to the caller."""
        await self._execute(self.client.table(self.settings.chat_history_table).insert(entry.to_record()))

    # ─────────────────────────────────────────────────────────────
    # Document maintenance
    # ─────────────────────────────────────────────────────────────

    async def insert_document(self, document: Document) -> Dict[str, Any]:
        """
        Insert a document.

        Returns:
            The stored row as returned by the database
        """
        result = await self._execute(self._documents().insert({
            "title": document.title,
            "content": document.content,
            "source": document.source,
            "embedding": document.embedding,
        }))

        row = result.data[0] if result.data else {}
        logger.info("Document inserted", document_id=row.get("id"), title=document.title)
        return row

    async def list_documents(self) -> List[Dict[str, Any]]:
        """List documents newest first, without embeddings."""
        result = await self._execute(
            self._documents()
            .select("id, title, content, source, created_at")
            .order("created_at", desc=True)
        )
        return result.data or []

    async def find_document_by_title(self, title: str) -> Optional[Dict[str, Any]]:
        result = await self._execute(self._documents().select("id").eq("title", title).limit(1))
        return result.data[0] if result.data else None

    async def documents_missing_embeddings(self) -> List[Document]:
        """Documents whose embedding still needs to be generated."""
        result = await self._execute(
            self._documents()
            .select("id, title, content, source")
            .is_("embedding", "null")
        )
        return [self._to_document(row) for row in (result.data or [])]

    @retry(
        stop=stop_after_attempt(3),
        wait=wait_exponential(multiplier=1, min=2, max=10)
    )
    async def update_embedding(self, document_id: str, embedding: List[float]) -> None:
        await self._execute(self._documents().update({"embedding": embedding}).eq("id", document_id))

    async def ping(self) -> None:
        """Raise if the documents table cannot be queried."""
        await self._execute(self._documents().select("id").limit(1))

    async def status_report(self, dimensions: int) -> Dict[str, Any]:
        """
        Collect diagnostics about the tables and the match function.

        Args:
            dimensions: Embedding dimensionality used to probe the match function

        Returns:
            Status dictionary for the /status endpoint
        """
        documents: List[Dict[str, Any]] = []
        history: List[Dict[str, Any]] = []
        errors: Dict[str, Optional[str]] = {"documents": None, "chat_history": None}

        try:
            documents = (await self._execute(
                self._documents()
                .select("id, title, source, created_at, embedding")
                .order("created_at", desc=True)
            )).data or []
        except Exception as e:
            logger.error("Status: documents query failed", error=str(e))
            errors["documents"] = str(e)

        try:
            history = (await self._execute(
                self.client.table(self.settings.chat_history_table)
                .select("id, session_id, question, created_at")
                .order("created_at", desc=True)
                .limit(10)
            )).data or []
        except Exception as e:
            logger.error("Status: chat history query failed", error=str(e))
            errors["chat_history"] = str(e)

        try:
            await self.search_indexed([0.0] * dimensions, self.settings.match_threshold, 1)
            functions_available = True
        except Exception as e:
            logger.warning("Status: match function unavailable", error=str(e))
            functions_available = False

        return {
            "database_status": "connected",
            "documents": {
                "count": len(documents),
                "has_embeddings": sum(1 for d in documents if d.get("embedding") is not None),
                "sample": [
                    {
                        "id": d.get("id"),
                        "title": d.get("title"),
                        "source": d.get("source"),
                        "has_embedding": d.get("embedding") is not None,
                    }
                    for d in documents[:3]
                ],
            },
            "chat_history": {"count": len(history)},
            "functions": {"match_documents_available": functions_available},
            "errors": errors,
        }


# Singleton instance
_document_store: Optional[SupabaseDocumentStore] = None


def get_document_store() -> SupabaseDocumentStore:
    """Get singleton document store instance."""
    global _document_store
    if _document_store is None:
        _document_store = SupabaseDocumentStore()
    return _document_store
