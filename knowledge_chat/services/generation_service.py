"""
Generation Service
Calls Gemini with a text prompt, optionally interleaved with images.
"""
from typing import List, Optional

import structlog
from google import genai
from google.genai import types

from knowledge_chat.config import get_settings
from knowledge_chat.models.schemas import ImageAttachment
from knowledge_chat.services.protocols import PromptPart

logger = structlog.get_logger()


class GeminiGenerator:
    """Generates text with a Gemini model. Provider errors propagate to the caller."""

    supports_images = True

    def __init__(self, client: Optional[genai.Client] = None):
        self.settings = get_settings()
        self.client = client or genai.Client(api_key=self.settings.gemini_api_key)

    async def generate(self, parts: List[PromptPart]) -> str:
        """
        Generate a response for a prompt.

        Args:
            parts: Prompt text followed by any image attachments

        Returns:
            The model's text output
        """
        contents = [self._to_content(part) for part in parts]
        image_count = sum(1 for part in parts if isinstance(part, ImageAttachment))

        logger.info("Calling Gemini", model=self.settings.gemini_model, images=image_count)

        response = await self.client.aio.models.generate_content(
            model=self.settings.gemini_model,
            contents=contents,
        )
        return response.text or ""

    async def list_models(self) -> List[dict]:
        """List the generative models visible to the configured API key."""
        models = []
        pager = await self.client.aio.models.list()
        async for model in pager:
            models.append({
                "name": model.name,
                "displayName": model.display_name,
                "supportedActions": list(model.supported_actions or []),
            })
        return models

    @staticmethod
    def _to_content(part: PromptPart):
        if isinstance(part, ImageAttachment):
            return types.Part.from_bytes(data=part.to_bytes(), mime_type=part.mime_type)
        return part


# Singleton instance
_generator: Optional[GeminiGenerator] = None


def get_generator() -> GeminiGenerator:
    """Get singleton Gemini generator instance."""
    global _generator
    if _generator is None:
        _generator = GeminiGenerator()
    return _generator
