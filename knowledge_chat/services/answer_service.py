"""
Answer Service
Builds prompts from retrieved documents and conversation history and calls
the generative model. Provider failures become a fixed apology message.
"""
from typing import Dict, List, Literal, Optional, Sequence

import structlog

from knowledge_chat.config import get_settings
from knowledge_chat.models.results import GenerationResult
from knowledge_chat.models.schemas import ConversationTurn, ImageAttachment
from knowledge_chat.services.protocols import ChatMessage, ChatModel, Generator, PromptPart

logger = structlog.get_logger()

ModelType = Literal["gemini", "ollama"]


def trim_history(history: Sequence[ConversationTurn], limit: int) -> List[ConversationTurn]:
    """Keep the most recent ``limit`` turns, dropping the oldest first."""
    if limit <= 0:
        return []
    return list(history)[-limit:]


class AnswerService:
    """Synthesizes grounded and direct answers."""

    GROUNDED_PREAMBLE = (
        "あなたは社内ナレッジベースの専門アシスタントです。"
        "以下の関連文書と会話履歴を参考にして、ユーザーの質問に正確で親切な回答をしてください。"
    )

    GROUNDED_GUIDELINES = """## 回答指針:
- 関連文書の情報のみを使用して回答してください
- 会話履歴がある場合は、文脈を考慮して回答してください
- 具体的で実用的な回答を心がけてください
- 情報が不足している場合は、その旨を明記してください
- 丁寧で分かりやすい日本語で回答してください"""

    DIRECT_PREAMBLE = (
        "あなたは親切で知識豊富なAIアシスタントです。"
        "ユーザーの質問に対して、適切で役立つ回答をしてください。"
    )

    DIRECT_GUIDELINES = """## 回答指針:
- 質問に対して正確で役立つ情報を提供してください
- 分からないことは正直に「分からない」と答えてください
- 丁寧で分かりやすい日本語で回答してください
- 会話履歴がある場合は、文脈を考慮して回答してください"""

    GROUNDED_APOLOGY = (
        "申し訳ございませんが、現在AIサービスに問題が発生しています。"
        "関連文書の情報を参考にしてください。"
    )

    DIRECT_APOLOGY = (
        "申し訳ございませんが、現在AIサービスに問題が発生しています。"
        "しばらく経ってから再度お試しください。"
    )

    def __init__(
        self,
        generator: Generator,
        local_chat_model: Optional[ChatModel] = None,
        history_turns: Optional[int] = None,
    ):
        self.generator = generator
        self.local_chat_model = local_chat_model
        self.history_turns = history_turns if history_turns is not None else get_settings().prompt_history_turns

    # ─────────────────────────────────────────────────────────────
    # Prompt construction
    # ─────────────────────────────────────────────────────────────

    @staticmethod
    def format_context(documents: Sequence[Dict[str, str]]) -> str:
        return "\n\n".join(
            f"[{doc['title']}]({doc['source']})\n{doc['content']}" for doc in documents
        )

    def format_history(self, history: Sequence[ConversationTurn]) -> str:
        turns = trim_history(history, self.history_turns)
        return "\n\n".join(
            f"{index}. Q: {turn.question}\n   A: {turn.answer}"
            for index, turn in enumerate(turns, start=1)
        )

    def build_grounded_prompt(
        self,
        question: str,
        documents: Sequence[Dict[str, str]],
        history: Sequence[ConversationTurn] = (),
    ) -> str:
        """
        Build the document-grounded prompt.

        Args:
            question: Current question
            documents: Matched documents as {title, content, source}
            history: Prior turns; only the most recent few are included

        Returns:
            Prompt text
        """
        sections = [self.GROUNDED_PREAMBLE, f"## 関連文書:\n{self.format_context(documents)}"]

        history_block = self.format_history(history)
        if history_block:
            sections.append(f"## 会話履歴:\n{history_block}")

        sections.append(f"## 現在の質問:\n{question}")
        sections.append(self.GROUNDED_GUIDELINES)
        sections.append("回答:")
        return "\n\n".join(sections)

    def build_direct_prompt(self, question: str, history: Sequence[ConversationTurn] = ()) -> str:
        sections = [self.DIRECT_PREAMBLE]

        history_block = self.format_history(history)
        if history_block:
            sections.append(f"## 会話履歴:\n{history_block}")

        sections.append(f"## 現在の質問:\n{question}")
        sections.append(self.DIRECT_GUIDELINES)
        sections.append("回答:")
        return "\n\n".join(sections)

    def build_direct_messages(
        self,
        question: str,
        history: Sequence[ConversationTurn] = (),
    ) -> List[ChatMessage]:
        """Role-tagged messages for chat-completion models."""
        messages: List[ChatMessage] = [
            {"role": "system", "content": f"{self.DIRECT_PREAMBLE}\n\n{self.DIRECT_GUIDELINES}"}
        ]
        for turn in trim_history(history, self.history_turns):
            if turn.question:
                messages.append({"role": "user", "content": turn.question})
            if turn.answer:
                messages.append({"role": "assistant", "content": turn.answer})
        messages.append({"role": "user", "content": question})
        return messages

    # ─────────────────────────────────────────────────────────────
    # Generation
    # ─────────────────────────────────────────────────────────────

    async def generate_contextual_answer(
        self,
        question: str,
        documents: Sequence[Dict[str, str]],
        history: Sequence[ConversationTurn] = (),
        images: Sequence[ImageAttachment] = (),
    ) -> GenerationResult:
        """
        Answer a question using only the matched documents.

        Returns:
            GenerationResult with the model's text, or the apology text
            with ``degraded`` set when the model call failed
        """
        prompt = self.build_grounded_prompt(question, documents, history)
        parts = self._with_images(prompt, images, self.generator.supports_images)

        try:
            text = await self.generator.generate(parts)
        except Exception as e:
            logger.error("Contextual answer generation failed", error=str(e))
            return GenerationResult(text=self.GROUNDED_APOLOGY, degraded=True, error=str(e))

        return GenerationResult(text=text)

    async def generate_direct_answer(
        self,
        question: str,
        history: Sequence[ConversationTurn] = (),
        images: Sequence[ImageAttachment] = (),
        model_type: ModelType = "gemini",
    ) -> GenerationResult:
        """
        Answer from general knowledge and conversation history, without retrieval.

        Args:
            question: Current question
            history: Prior turns
            images: Optional attachments; dropped for models without image support
            model_type: "gemini" for the primary provider, "ollama" for the local model

        Returns:
            GenerationResult with the model's text or the apology text
        """
        try:
            if model_type == "ollama":
                if self.local_chat_model is None:
                    raise RuntimeError("local chat model is not configured")
                if images and not self.local_chat_model.supports_images:
                    logger.warning("Local model does not support images, dropping attachments", count=len(images))
                text = await self.local_chat_model.chat(self.build_direct_messages(question, history))
            else:
                prompt = self.build_direct_prompt(question, history)
                text = await self.generator.generate(
                    self._with_images(prompt, images, self.generator.supports_images)
                )
        except Exception as e:
            logger.error("Direct answer generation failed", model_type=model_type, error=str(e))
            return GenerationResult(text=self.DIRECT_APOLOGY, degraded=True, error=str(e))

        return GenerationResult(text=text)

    @staticmethod
    def _with_images(prompt: str, images: Sequence[ImageAttachment], supported: bool) -> List[PromptPart]:
        if not images:
            return [prompt]
        if not supported:
            logger.warning("Generator does not support images, dropping attachments", count=len(images))
            return [prompt]
        return [prompt, *images]
