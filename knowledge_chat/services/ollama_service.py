"""
Ollama Service
Talks to a locally hosted model through Ollama's OpenAI-compatible API.
"""
from typing import List, Optional

import structlog
from openai import AsyncOpenAI

from knowledge_chat.config import get_settings
from knowledge_chat.services.protocols import ChatMessage

logger = structlog.get_logger()


class OllamaChatModel:
    """Chat completions against a local Ollama model. Text only."""

    supports_images = False

    def __init__(self, client: Optional[AsyncOpenAI] = None):
        self.settings = get_settings()
        # Ollama ignores the key, but the OpenAI client requires one
        self.client = client or AsyncOpenAI(api_key="ollama", base_url=self.settings.ollama_base_url)

    async def chat(self, messages: List[ChatMessage]) -> str:
        """
        Generate a reply for a role-tagged conversation.

        Args:
            messages: System preamble, history turns and the current question

        Returns:
            The assistant's reply, or an empty string if the model returned none
        """
        logger.info("Calling Ollama", model=self.settings.ollama_model, messages=len(messages))

        response = await self.client.chat.completions.create(
            model=self.settings.ollama_model,
            messages=messages,
        )

        if not response.choices:
            return ""
        content = response.choices[0].message.content
        return content if isinstance(content, str) else ""


# Singleton
_ollama_chat_model: Optional[OllamaChatModel] = None


def get_ollama_chat_model() -> OllamaChatModel:
    """Get singleton Ollama chat model instance."""
    global _ollama_chat_model
    if _ollama_chat_model is None:
        _ollama_chat_model = OllamaChatModel()
    return _ollama_chat_model
