"""
Search Strategies
Tiered document search: indexed similarity, manual scan, keyword match.

Each strategy returns either SearchMatches (the tier ran, possibly with zero
hits) or SearchUnavailable (the tier could not run). TieredSearch tries them
in order and stops at the first tier that ran.
"""
from typing import List, Optional, Sequence

import structlog

from knowledge_chat.config import get_settings
from knowledge_chat.models.results import SearchMatches, SearchOutcome, SearchUnavailable
from knowledge_chat.models.schemas import DocumentMatch
from knowledge_chat.services.protocols import DocumentStore
from knowledge_chat.services.similarity import cosine_similarity

logger = structlog.get_logger()


class IndexedSearch:
    """Delegates to the store's native similarity search."""

    name = "indexed"

    def __init__(self, store: DocumentStore, threshold: float, count: int):
        self.store = store
        self.threshold = threshold
        self.count = count

    async def try_fetch(self, question: str, vector: List[float]) -> SearchOutcome:
        try:
            matches = await self.store.search_indexed(vector, self.threshold, self.count)
        except Exception as e:
            logger.warning("Indexed search unavailable, falling back", error=str(e))
            return SearchUnavailable(tier=self.name, reason=str(e))
        return SearchMatches(documents=matches[:self.count], tier=self.name)


class ManualScanSearch:
    """Scores every embedded document client-side with cosine similarity."""

    name = "manual_scan"

    def __init__(self, store: DocumentStore, count: int):
        self.store = store
        self.count = count

    async def try_fetch(self, question: str, vector: List[float]) -> SearchOutcome:
        try:
            documents = await self.store.scan_with_embeddings()
        except Exception as e:
            logger.warning("Manual scan failed, falling back", error=str(e))
            return SearchUnavailable(tier=self.name, reason=str(e))

        if not documents:
            # Nothing to score against; the keyword tier can still help
            return SearchUnavailable(tier=self.name, reason="no documents with embeddings")

        matches = [
            DocumentMatch(
                id=doc.id,
                title=doc.title,
                content=doc.content,
                source=doc.source,
                similarity=cosine_similarity(vector, doc.embedding),
            )
            for doc in documents
        ]
        # sorted() is stable, so equal scores keep store order
        matches = sorted(matches, key=lambda m: m.similarity, reverse=True)
        return SearchMatches(documents=matches[:self.count], tier=self.name)


class KeywordSearch:
    """Case-insensitive substring match of the question against document content."""

    name = "keyword"

    def __init__(self, store: DocumentStore, scan_limit: int, count: int, similarity: float):
        self.store = store
        self.scan_limit = scan_limit
        self.count = count
        self.similarity = similarity

    async def try_fetch(self, question: str, vector: List[float]) -> SearchOutcome:
        try:
            documents = await self.store.scan_any(self.scan_limit)
        except Exception as e:
            logger.error("Basic document fetch failed", error=str(e))
            return SearchUnavailable(tier=self.name, reason=str(e))

        needle = question.lower()
        matches = [
            DocumentMatch(
                id=doc.id,
                title=doc.title or "Untitled",
                content=doc.content or "",
                source=doc.source or "unknown",
                similarity=self.similarity,
            )
            for doc in documents
            if doc.content and needle in doc.content.lower()
        ]
        return SearchMatches(documents=matches[:self.count], tier=self.name)


class TieredSearch:
    """Runs search strategies in order until one of them is able to run."""

    def __init__(self, strategies: Sequence):
        self.strategies = list(strategies)

    async def search(self, question: str, vector: List[float]) -> SearchOutcome:
        """
        Search for documents relevant to a question.

        Args:
            question: The user's question (used by the keyword tier)
            vector: The question's embedding

        Returns:
            SearchMatches from the first tier that ran, or SearchUnavailable
            from the last tier when none could run (the store is unusable)
        """
        outcome: Optional[SearchOutcome] = None
        for strategy in self.strategies:
            outcome = await strategy.try_fetch(question, vector)
            if isinstance(outcome, SearchMatches):
                logger.info("Search tier completed", tier=outcome.tier, count=len(outcome.documents))
                return outcome

        if outcome is None:
            outcome = SearchUnavailable(tier="none", reason="no search strategies configured")
        logger.error("All search tiers unavailable", tier=outcome.tier, reason=outcome.reason)
        return outcome


def build_tiered_search(store: DocumentStore) -> TieredSearch:
    """Default tier order: indexed search, manual scan, keyword match."""
    settings = get_settings()
    return TieredSearch([
        IndexedSearch(store, settings.match_threshold, settings.match_count),
        ManualScanSearch(store, settings.fallback_match_count),
        KeywordSearch(
            store,
            scan_limit=settings.keyword_scan_limit,
            count=settings.fallback_match_count,
            similarity=settings.keyword_match_similarity,
        ),
    ])
