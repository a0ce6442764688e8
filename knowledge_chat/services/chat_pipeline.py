"""
Chat Pipeline
Retrieval-augmented answering: embed the question, search documents through
the tiered fallback, answer from the matches and record the exchange.
"""
from typing import Dict, List, Optional

import structlog

from knowledge_chat.config import get_settings
from knowledge_chat.exceptions import QuestionRequiredError
from knowledge_chat.models.results import SearchUnavailable
from knowledge_chat.models.schemas import (
    ChatHistoryEntry,
    ChatRequest,
    ChatResponse,
    DirectChatResponse,
    RelevantDocument,
)
from knowledge_chat.services.answer_service import AnswerService, trim_history
from knowledge_chat.services.history_sink import HistorySink
from knowledge_chat.services.protocols import Embedder
from knowledge_chat.services.search_strategies import TieredSearch

logger = structlog.get_logger()


class ChatPipeline:
    """Handles one question per call; holds no per-request state."""

    NO_MATCH_MESSAGE = (
        "申し訳ございませんが、ご質問に関連する情報が見つかりませんでした。"
        "別の言葉で質問し直していただくか、より具体的な内容でお尋ねください。"
    )

    SETUP_REQUIRED_MESSAGE = (
        "データベースの設定が完了していません。管理者にお問い合わせください。\n\n"
        "手順:\n"
        "1. Supabaseプロジェクトで提供されたsupabase-schema.sqlを実行してください\n"
        "2. /init エンドポイントでサンプルデータを初期化してください"
    )

    def __init__(
        self,
        embedder: Embedder,
        search: TieredSearch,
        answer_service: AnswerService,
        history_sink: HistorySink,
        request_history_turns: Optional[int] = None,
    ):
        self.embedder = embedder
        self.search = search
        self.answer_service = answer_service
        self.history_sink = history_sink
        self.request_history_turns = (
            request_history_turns if request_history_turns is not None
            else get_settings().request_history_turns
        )

    @staticmethod
    def _validate(request: ChatRequest) -> str:
        if not request.question or not request.question.strip():
            raise QuestionRequiredError()
        return request.question

    @staticmethod
    def _image_metadata(request: ChatRequest) -> Optional[List[Dict[str, str]]]:
        if not request.images:
            return None
        return [{"mimeType": image.mime_type} for image in request.images]

    async def answer(self, request: ChatRequest) -> ChatResponse:
        """
        Answer a question from the knowledge base.

        Args:
            request: Question, session id, prior turns and optional images

        Returns:
            ChatResponse with the answer and the documents it was grounded on

        Raises:
            QuestionRequiredError: If the question is missing or blank
        """
        question = self._validate(request)
        history = trim_history(request.chat_history, self.request_history_turns)

        logger.info("Stage: Embedding question", session_id=request.session_id)
        embedding = await self.embedder.embed(question)
        if embedding.degraded:
            logger.warning("Searching with placeholder embedding", error=embedding.error)

        logger.info("Stage: Searching documents")
        outcome = await self.search.search(question, embedding.vector)

        if isinstance(outcome, SearchUnavailable):
            logger.error("Stage: Document store unavailable", reason=outcome.reason)
            return ChatResponse(answer=self.SETUP_REQUIRED_MESSAGE, relevant_documents=[])

        matches = outcome.documents
        image_metadata = self._image_metadata(request)

        if not matches:
            logger.info("Stage: No relevant documents found", tier=outcome.tier)
            await self.history_sink.append(ChatHistoryEntry(
                session_id=request.session_id,
                question=question,
                answer=self.NO_MATCH_MESSAGE,
                relevant_documents=[],
                image_attachments=image_metadata,
            ))
            return ChatResponse(answer=self.NO_MATCH_MESSAGE, relevant_documents=[])

        logger.info("Stage: Generating answer", tier=outcome.tier, documents=len(matches))
        result = await self.answer_service.generate_contextual_answer(
            question,
            [match.to_context() for match in matches],
            history,
            request.images,
        )

        await self.history_sink.append(ChatHistoryEntry(
            session_id=request.session_id,
            question=question,
            answer=result.text,
            relevant_documents=[match.to_reference() for match in matches],
            image_attachments=image_metadata,
        ))

        return ChatResponse(
            answer=result.text,
            relevant_documents=[
                RelevantDocument(title=match.title, source=match.source or "unknown", similarity=match.similarity)
                for match in matches
            ],
        )

    async def direct_answer(self, request: ChatRequest) -> DirectChatResponse:
        """Answer without retrieval, from general knowledge and history."""
        question = self._validate(request)
        history = trim_history(request.chat_history, self.request_history_turns)

        logger.info("Stage: Direct answer", model_type=request.model_type, session_id=request.session_id)
        result = await self.answer_service.generate_direct_answer(
            question,
            history,
            request.images,
            model_type=request.model_type,
        )

        await self.history_sink.append(ChatHistoryEntry(
            session_id=request.session_id,
            question=question,
            answer=result.text,
            relevant_documents={"mode": "direct", "model": request.model_type},
            image_attachments=self._image_metadata(request),
        ))

        return DirectChatResponse(answer=result.text)
