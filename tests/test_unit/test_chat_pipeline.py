"""
Unit Tests for the Chat Pipeline

Exercises the request state machine with fake providers:
validation, store unavailable, no match, grounded answer, history persistence.
"""
import base64

import pytest

from conftest import FakeChatModel, FakeEmbedder, FakeGenerator, InMemoryDocumentStore
from knowledge_chat.exceptions import QuestionRequiredError
from knowledge_chat.models.schemas import ChatRequest, ConversationTurn, Document, DocumentMatch
from knowledge_chat.services.answer_service import AnswerService
from knowledge_chat.services.chat_pipeline import ChatPipeline
from knowledge_chat.services.history_sink import HistorySink
from knowledge_chat.services.search_strategies import build_tiered_search


def _pipeline(store, embedder=None, generator=None, chat_model=None, request_history_turns=6):
    embedder = embedder or FakeEmbedder()
    generator = generator or FakeGenerator()
    return ChatPipeline(
        embedder=embedder,
        search=build_tiered_search(store),
        answer_service=AnswerService(generator, chat_model or FakeChatModel(), history_turns=3),
        history_sink=HistorySink(store),
        request_history_turns=request_history_turns,
    )


class TestValidation:

    @pytest.mark.asyncio
    @pytest.mark.parametrize("question", [None, "", "   "])
    async def test_missing_question_rejected_before_any_call(self, question):
        store = InMemoryDocumentStore()
        embedder = FakeEmbedder()
        generator = FakeGenerator()
        pipeline = _pipeline(store, embedder, generator)

        with pytest.raises(QuestionRequiredError):
            await pipeline.answer(ChatRequest(question=question))

        assert embedder.calls == []
        assert generator.calls == []
        assert store.calls == []

    def test_non_string_question_treated_as_missing(self):
        assert ChatRequest.model_validate({"question": 42}).question is None


class TestAnswer:

    @pytest.mark.asyncio
    async def test_grounded_answer_with_history_entry(self, working_hours_match, sample_session_id):
        store = InMemoryDocumentStore(indexed_matches=[working_hours_match])
        generator = FakeGenerator(response="平日9:00-18:00です。")
        pipeline = _pipeline(store, generator=generator)

        response = await pipeline.answer(ChatRequest(question="勤務時間は？", session_id=sample_session_id))

        assert response.answer == "平日9:00-18:00です。"
        assert len(response.relevant_documents) == 1
        assert response.relevant_documents[0].title == "勤務時間について"
        assert response.relevant_documents[0].similarity == 0.82

        assert len(store.history) == 1
        entry = store.history[0]
        assert entry.session_id == sample_session_id
        assert entry.relevant_documents == [
            {"id": "doc-hours", "title": "勤務時間について", "source": "FAQ", "similarity": 0.82}
        ]

    @pytest.mark.asyncio
    async def test_no_match_skips_model_and_records_empty_entry(self):
        store = InMemoryDocumentStore(indexed_matches=[])
        generator = FakeGenerator()
        pipeline = _pipeline(store, generator=generator)

        response = await pipeline.answer(ChatRequest(question="社食のメニューは？"))

        assert response.answer == ChatPipeline.NO_MATCH_MESSAGE
        assert response.relevant_documents == []
        assert generator.calls == []
        assert len(store.history) == 1
        assert store.history[0].relevant_documents == []

    @pytest.mark.asyncio
    async def test_store_unavailable_returns_setup_message(self):
        store = InMemoryDocumentStore()
        store.indexed_error = RuntimeError("no rpc")
        store.scan_error = RuntimeError("no table")
        store.scan_any_error = RuntimeError("no table")
        generator = FakeGenerator()
        pipeline = _pipeline(store, generator=generator)

        response = await pipeline.answer(ChatRequest(question="勤務時間は？"))

        assert response.answer == ChatPipeline.SETUP_REQUIRED_MESSAGE
        assert response.relevant_documents == []
        assert generator.calls == []
        assert "append_history" not in store.calls

    @pytest.mark.asyncio
    async def test_history_failure_does_not_fail_request(self, working_hours_match):
        store = InMemoryDocumentStore(indexed_matches=[working_hours_match])
        store.history_error = RuntimeError("insert failed")
        pipeline = _pipeline(store, generator=FakeGenerator(response="ok"))

        response = await pipeline.answer(ChatRequest(question="勤務時間は？"))

        assert response.answer == "ok"
        assert store.calls.count("append_history") == 1

    @pytest.mark.asyncio
    async def test_generation_failure_still_persists_history(self, working_hours_match):
        store = InMemoryDocumentStore(indexed_matches=[working_hours_match])
        pipeline = _pipeline(store, generator=FakeGenerator(error=RuntimeError("model down")))

        response = await pipeline.answer(ChatRequest(question="勤務時間は？"))

        assert response.answer == AnswerService.GROUNDED_APOLOGY
        assert store.history[0].answer == AnswerService.GROUNDED_APOLOGY
        assert len(store.history[0].relevant_documents) == 1

    @pytest.mark.asyncio
    async def test_degraded_embedding_still_reaches_keyword_tier(self):
        store = InMemoryDocumentStore(documents=[
            Document(id="d1", title="経費精算について", content="経費精算は月末締めです。", source="FAQ"),
        ])
        store.indexed_error = RuntimeError("no rpc")
        pipeline = _pipeline(store, embedder=FakeEmbedder(degrade_calls={1}))

        response = await pipeline.answer(ChatRequest(question="経費精算"))

        assert [d.similarity for d in response.relevant_documents] == [0.5]

    @pytest.mark.asyncio
    async def test_history_trimmed_before_synthesis(self, working_hours_match):
        store = InMemoryDocumentStore(indexed_matches=[working_hours_match])
        generator = FakeGenerator()
        pipeline = _pipeline(store, generator=generator)
        history = [ConversationTurn(question=f"old {i}", answer=f"reply {i}") for i in range(1, 11)]

        await pipeline.answer(ChatRequest(question="勤務時間は？", chat_history=history))

        prompt = generator.calls[0][0]
        assert "old 8" in prompt and "old 9" in prompt and "old 10" in prompt
        assert "old 7\n" not in prompt

    @pytest.mark.asyncio
    async def test_image_metadata_recorded_without_bytes(self, working_hours_match):
        store = InMemoryDocumentStore(indexed_matches=[working_hours_match])
        generator = FakeGenerator()
        pipeline = _pipeline(store, generator=generator)
        data = base64.b64encode(b"jpeg bytes").decode()

        await pipeline.answer(ChatRequest.model_validate({
            "question": "この画像は？",
            "images": [{"mimeType": "image/jpeg", "data": data}],
        }))

        assert store.history[0].image_attachments == [{"mimeType": "image/jpeg"}]
        assert len(generator.calls[0]) == 2


class TestMatchOrdering:

    @pytest.mark.asyncio
    async def test_manual_scan_results_ordered_in_response(self):
        store = InMemoryDocumentStore(documents=[
            Document(id="a", title="A", content="x", source="FAQ", embedding=[0.3, 0.9539392014169456]),
            Document(id="b", title="B", content="y", source="FAQ", embedding=[0.7, 0.714142842854285]),
        ])
        store.indexed_error = RuntimeError("no rpc")
        pipeline = _pipeline(store, embedder=FakeEmbedder(vector=[1.0, 0.0]))

        response = await pipeline.answer(ChatRequest(question="anything"))

        assert [d.title for d in response.relevant_documents] == ["B", "A"]


class TestDirectAnswer:

    @pytest.mark.asyncio
    async def test_records_mode_marker(self, sample_session_id):
        store = InMemoryDocumentStore()
        pipeline = _pipeline(store, generator=FakeGenerator(response="direct answer"))

        response = await pipeline.direct_answer(ChatRequest(question="こんにちは", session_id=sample_session_id))

        assert response.answer == "direct answer"
        assert response.mode == "direct"
        assert store.history[0].relevant_documents == {"mode": "direct", "model": "gemini"}
        assert "search_indexed" not in store.calls

    @pytest.mark.asyncio
    async def test_routes_to_local_model(self):
        store = InMemoryDocumentStore()
        chat_model = FakeChatModel(response="from gemma")
        pipeline = _pipeline(store, chat_model=chat_model)

        response = await pipeline.direct_answer(ChatRequest(question="hi", model_type="ollama"))

        assert response.answer == "from gemma"
        assert len(chat_model.calls) == 1
        assert store.history[0].relevant_documents["model"] == "ollama"

    @pytest.mark.asyncio
    async def test_missing_question_rejected(self):
        with pytest.raises(QuestionRequiredError):
            await _pipeline(InMemoryDocumentStore()).direct_answer(ChatRequest(question=""))
