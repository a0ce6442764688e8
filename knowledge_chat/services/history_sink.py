"""
Chat history persistence. Best effort: failures are logged and swallowed.
"""
import structlog

from knowledge_chat.models.schemas import ChatHistoryEntry
from knowledge_chat.services.protocols import DocumentStore

logger = structlog.get_logger()


class HistorySink:
    """Appends chat history entries without ever failing the request."""

    def __init__(self, store: DocumentStore):
        self.store = store

    async def append(self, entry: ChatHistoryEntry) -> bool:
        """
        Persist one exchange.

        Returns:
            True if the entry was stored, False if the write failed
        """
        try:
            await self.store.append_history(entry)
        except Exception as e:
            logger.error("Failed to save chat history", session_id=entry.session_id, error=str(e))
            return False
        return True
