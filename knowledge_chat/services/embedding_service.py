"""
Embedding Service
Generates vector embeddings using Gemini's text-embedding-004 model.
"""
from typing import List, Optional

import numpy as np
import structlog
from google import genai

from knowledge_chat.config import get_settings
from knowledge_chat.models.results import EmbeddingResult

logger = structlog.get_logger()


class GeminiEmbeddingService:
    """Generates embeddings using Gemini, degrading to a placeholder vector on failure."""

    # Magnitude of the placeholder vector used when the provider fails
    PLACEHOLDER_SCALE = 0.01

    def __init__(self, client: Optional[genai.Client] = None):
        self.settings = get_settings()
        self.client = client or genai.Client(api_key=self.settings.gemini_api_key)
        self.dimensions = self.settings.embedding_dimensions

    async def embed(self, text: str) -> EmbeddingResult:
        """
        Generate embedding for a single text.

        Args:
            text: Text to embed

        Returns:
            EmbeddingResult carrying the vector. When the provider call fails
            the vector is a random low-magnitude placeholder and
            ``degraded`` is set.
        """
        try:
            response = await self.client.aio.models.embed_content(
                model=self.settings.embedding_model,
                contents=text,
            )
            vector = list(response.embeddings[0].values)
        except Exception as e:
            logger.error("Embedding generation failed, using placeholder", error=str(e))
            return self._placeholder(str(e))

        if len(vector) != self.dimensions:
            logger.error(
                "Embedding has unexpected dimensionality, using placeholder",
                expected=self.dimensions,
                actual=len(vector)
            )
            return self._placeholder(f"expected {self.dimensions} dimensions, got {len(vector)}")

        return EmbeddingResult(vector=vector)

    def _placeholder(self, error: str) -> EmbeddingResult:
        vector: List[float] = (np.random.default_rng().random(self.dimensions) * self.PLACEHOLDER_SCALE).tolist()
        return EmbeddingResult(vector=vector, degraded=True, error=error)


# Singleton instance
_embedding_service = None


def get_embedding_service() -> GeminiEmbeddingService:
    """Get singleton embedding service instance."""
    global _embedding_service
    if _embedding_service is None:
        _embedding_service = GeminiEmbeddingService()
    return _embedding_service
