"""
Document Service
Document submission, listing, embedding backfill and sample-data seeding.
"""
import asyncio
from typing import Any, Dict, List, Optional

import structlog

from knowledge_chat.config import get_settings
from knowledge_chat.exceptions import DocumentFieldsRequiredError, StoreSetupRequiredError
from knowledge_chat.models.schemas import Document, DocumentCreate
from knowledge_chat.services.protocols import DocumentStore, Embedder

logger = structlog.get_logger()


SAMPLE_DOCUMENTS = [
    {
        "title": "勤務時間について",
        "content": "通常勤務時間は平日9:00-18:00です。フレックスタイム制度もあり、コアタイムは10:00-15:00です。リモートワークも週3日まで可能です。",
        "source": "FAQ",
    },
    {
        "title": "有給休暇の取得方法",
        "content": "有給休暇は入社6ヶ月後から取得可能です。申請は勤怠システムから最低3日前までに行ってください。年末年始やGWなどの繁忙期は事前相談が必要です。",
        "source": "FAQ",
    },
    {
        "title": "経費精算について",
        "content": "経費精算は月末締めで翌月25日支払いです。領収書は必ず保管し、精算システムに画像をアップロードしてください。交通費は定期券区間外のみ申請可能です。",
        "source": "FAQ",
    },
]


class DocumentService:
    """Maintains the document collection and its embeddings."""

    def __init__(
        self,
        store: DocumentStore,
        embedder: Embedder,
        batch_delay: Optional[float] = None,
        seed_delay: Optional[float] = None,
    ):
        settings = get_settings()
        self.store = store
        self.embedder = embedder
        self.batch_delay = settings.embedding_batch_delay_seconds if batch_delay is None else batch_delay
        self.seed_delay = settings.seed_delay_seconds if seed_delay is None else seed_delay

    async def add_document(self, payload: DocumentCreate) -> Dict[str, Any]:
        """
        Create a document and embed its content.

        A degraded embedding is not stored; the document is saved without one
        so the regenerate job can backfill it later.

        Raises:
            DocumentFieldsRequiredError: If title or content is blank
        """
        if not payload.title or not payload.title.strip() or not payload.content or not payload.content.strip():
            raise DocumentFieldsRequiredError()

        embedding = await self.embedder.embed(payload.content)
        if embedding.degraded:
            logger.warning("Storing document without embedding", title=payload.title, error=embedding.error)

        document = Document(
            title=payload.title,
            content=payload.content,
            source=payload.source or "manual",
            embedding=None if embedding.degraded else embedding.vector,
        )
        return await self.store.insert_document(document)

    async def list_documents(self) -> List[Dict[str, Any]]:
        return await self.store.list_documents()

    async def regenerate_missing_embeddings(self) -> Dict[str, Any]:
        """
        Backfill embeddings for documents that have none.

        Documents are processed one at a time with a pause between provider
        calls. A failure on one document skips it and the batch continues.

        Returns:
            {"message", "updated", "total"}
        """
        documents = await self.store.documents_missing_embeddings()
        if not documents:
            return {"message": "No documents need embedding generation", "updated": 0, "total": 0}

        logger.info("Regenerating embeddings", total=len(documents))
        updated = 0

        for document in documents:
            try:
                embedding = await self.embedder.embed(document.content)
                if embedding.degraded:
                    logger.warning("Skipping document, embedding failed", document_id=document.id, error=embedding.error)
                else:
                    await self.store.update_embedding(document.id, embedding.vector)
                    updated += 1
            except Exception as e:
                logger.error("Failed to update embedding", document_id=document.id, error=str(e))

            await asyncio.sleep(self.batch_delay)

        logger.info("Embedding regeneration finished", updated=updated, total=len(documents))
        return {
            "message": f"Successfully updated {updated} documents",
            "updated": updated,
            "total": len(documents),
        }

    async def seed_sample_documents(self) -> Dict[str, Any]:
        """
        Insert the sample FAQ documents that are not present yet.

        Raises:
            StoreSetupRequiredError: If the documents table cannot be queried
        """
        try:
            await self.store.ping()
        except Exception as e:
            logger.error("Documents table not reachable", error=str(e))
            raise StoreSetupRequiredError(details=str(e))

        success_count = 0
        errors: List[str] = []

        for sample in SAMPLE_DOCUMENTS:
            try:
                if await self.store.find_document_by_title(sample["title"]):
                    logger.info("Sample document already exists", title=sample["title"])
                    continue

                embedding = await self.embedder.embed(sample["content"])
                await self.store.insert_document(Document(
                    title=sample["title"],
                    content=sample["content"],
                    source=sample["source"],
                    embedding=None if embedding.degraded else embedding.vector,
                ))
                success_count += 1

                await asyncio.sleep(self.seed_delay)
            except Exception as e:
                errors.append(f'Failed to add "{sample["title"]}": {e}')

        logger.info("Sample documents seeded", added=success_count, failed=len(errors))
        return {
            "message": f"Initialization completed. {success_count} documents added.",
            "success_count": success_count,
            "errors": errors or None,
        }
