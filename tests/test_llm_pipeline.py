"""Tests for the completion client and the response orchestrator."""

import asyncio
import uuid

import pytest
from langchain_core.messages import AIMessage, HumanMessage

from reading_companion.api.llm_pipeline import (
    FALLBACK_APOLOGY,
    CompletionClient,
    CompletionError,
    MessageNotFoundError,
)
from reading_companion.api.models import ContextType, RAGContext, UserTier
from reading_companion.api.prompt_utilities import compute_token_budget

from conftest import FakeCompletion, FakeEmbeddingClient


def _context(**overrides):
    values = {"book_id": 1, "reader_id": "reader-1", "current_section_index": 4, "tier": UserTier.PREMIUM}
    values.update(overrides)
    return RAGContext(**values)


class FakeChatModel:
    def __init__(self, content="", delay=0.0, **kwargs):
        self.content = content
        self.delay = delay
        self.kwargs = kwargs

    async def ainvoke(self, messages):
        await asyncio.sleep(self.delay)
        return AIMessage(content=self.content)


class TestCompletionClient:

    @pytest.mark.asyncio
    async def test_builds_model_per_call_and_returns_text(self):
        built = []

        def factory(**kwargs):
            built.append(kwargs)
            return FakeChatModel(content="  An answer.  ", **kwargs)

        client = CompletionClient(api_key="sk-test", llm_factory=factory)
        text = await client.complete([HumanMessage(content="hi")], "model-pro", 1200)

        assert text == "An answer."
        assert built[0]["model"] == "model-pro"
        assert built[0]["max_tokens"] == 1200
        assert built[0]["temperature"] == 0.7
        assert built[0]["top_p"] == 0.9

    @pytest.mark.asyncio
    async def test_timeout_raises_completion_error(self):
        client = CompletionClient(
            api_key="sk-test", timeout_seconds=0.01, llm_factory=lambda **kw: FakeChatModel("late", delay=1.0)
        )

        with pytest.raises(CompletionError):
            await client.complete([HumanMessage(content="hi")], "model-free", 300)

    @pytest.mark.asyncio
    async def test_empty_completion_gets_an_apology(self):
        client = CompletionClient(api_key="sk-test", llm_factory=lambda **kw: FakeChatModel(""))

        text = await client.complete([HumanMessage(content="hi")], "model-free", 300)

        assert text.startswith("I apologize")


class TestGenerateResponse:

    @pytest.mark.asyncio
    async def test_full_exchange_is_persisted(self, make_orchestrator, add_chunks, store, profiles):
        await add_chunks(1, {4: "Call me Ishmael."})
        completion = FakeCompletion("Ishmael is the narrator.")
        orchestrator = make_orchestrator(
            embedding=FakeEmbeddingClient([{"book_id": 1, "chunk_index": 8, "content": "The Pequod sails."}]),
            completion=completion,
        )

        result = await orchestrator.generate_response("Who is the narrator of this chapter?", _context())

        assert result.response == "Ishmael is the narrator."
        uuid.UUID(result.session_id)
        history = await store.get_history(result.session_id)
        assert [(m.role, m.content) for m in history] == [
            ("user", "Who is the narrator of this chapter?"),
            ("assistant", "Ishmael is the narrator."),
        ]
        assistant = history[-1]
        assert str(assistant.id) == result.message_id
        assert assistant.context_metadata["query_complexity"] == "simple"
        assert assistant.context_metadata["passages"] == [4, 8]
        assert assistant.confidence_score == pytest.approx(0.75)
        assert history[0].context_metadata == {"reading_mode": "fiction", "knowledge_lens": "literary", "tier": "PREMIUM"}

        assert completion.calls[0]["model"] == "model-premium"
        assert completion.calls[0]["max_tokens"] == compute_token_budget("PREMIUM", "simple", "balanced")

        progress = await store.get_context_entry(result.session_id, ContextType.READING_PROGRESS)
        assert progress.payload["last_question_about"] == "Who is the narrator of this chapter?"
        assert progress.confidence_score == pytest.approx(0.8)
        assert (await profiles.get_or_create("reader-1")).total_interactions == 1
        assert result.memory_snapshot is not None

    @pytest.mark.asyncio
    async def test_topics_accumulate_across_exchanges(self, make_orchestrator, store):
        orchestrator = make_orchestrator(completion=FakeCompletion("It is about fate."))

        first = await orchestrator.generate_response("What drives the protagonist?", _context())
        second = await orchestrator.generate_response("Explain the symbolism", _context())

        assert first.session_id == second.session_id
        topics = await store.get_context_entry(second.session_id, ContextType.TOPICS_DISCUSSED)
        assert topics.payload["topics"][:2] == ["character", "theme"]
        assert second.memory_snapshot.recent_topics == ["character"]
        assert second.memory_snapshot.relationship_context.conversation_count == 2

    @pytest.mark.asyncio
    async def test_embedding_failure_still_answers(self, make_orchestrator):
        orchestrator = make_orchestrator(embedding=FakeEmbeddingClient(fail=True))

        result = await orchestrator.generate_response("Who is Ahab?", _context(current_section_index=None))

        assert result.response
        uuid.UUID(result.session_id)
        assert not result.message_id.startswith("fallback-")

    @pytest.mark.asyncio
    async def test_completion_failure_falls_back(self, make_orchestrator, store, completion_error):
        completion = FakeCompletion(completion_error, "A basic answer.")
        orchestrator = make_orchestrator(completion=completion)

        result = await orchestrator.generate_response("Who is Ahab?", _context())

        assert result.response == "A basic answer."
        assert result.session_id == "fallback"
        assert result.message_id.startswith("fallback-")
        assert result.memory_snapshot is None
        assert len(completion.calls[1]["messages"]) == 2

        active = (await store.get_recent_sessions("reader-1"))[0]
        history = await store.get_history(active.id)
        assert [m.role for m in history] == ["user"]

    @pytest.mark.asyncio
    async def test_fallback_keeps_caller_session_id(self, make_orchestrator, completion_error):
        orchestrator = make_orchestrator(completion=FakeCompletion(completion_error, "ok"))

        result = await orchestrator.generate_response("Who is Ahab?", _context(session_id="client-session"))

        assert result.session_id == "client-session"

    @pytest.mark.asyncio
    async def test_everything_failing_returns_apology(self, make_orchestrator, completion_error):
        orchestrator = make_orchestrator(completion=FakeCompletion(completion_error))

        result = await orchestrator.generate_response("Who is Ahab?", _context())

        assert result.response == FALLBACK_APOLOGY
        assert result.session_id == "fallback"


class TestRecordFeedback:

    @pytest.mark.asyncio
    async def test_feedback_adapts_profile_once(self, make_orchestrator, store, profiles):
        orchestrator = make_orchestrator()
        result = await orchestrator.generate_response("Tell me about the plot", _context())

        first = await orchestrator.record_feedback("reader-1", result.message_id, "too_long")
        again = await orchestrator.record_feedback("reader-1", result.message_id, "too_long")

        assert first.success and again.success
        profile = await profiles.get_or_create("reader-1")
        assert profile.response_style == "concise"
        assert profile.feedback_count == 1
        preferences = await store.get_context_entry(result.session_id, ContextType.USER_PREFERENCES)
        assert preferences.payload["response_style"] == "concise"
        assert (await store.get_message(result.message_id)).feedback == "too_long"

    @pytest.mark.asyncio
    async def test_helpful_feedback_uses_recorded_complexity(self, make_orchestrator, profiles):
        orchestrator = make_orchestrator()
        result = await orchestrator.generate_response("Compare Ahab and Starbuck", _context())

        await orchestrator.record_feedback("reader-1", result.message_id, "helpful")

        assert (await profiles.get_or_create("reader-1")).complexity_preference == "advanced"

    @pytest.mark.asyncio
    async def test_feedback_counts_towards_satisfaction(self, make_orchestrator):
        orchestrator = make_orchestrator()
        first = await orchestrator.generate_response("Tell me about the plot", _context())
        await orchestrator.record_feedback("reader-1", first.message_id, "off_topic")

        second = await orchestrator.generate_response("And the ending?", _context())

        assert second.memory_snapshot.relationship_context.satisfaction_score == pytest.approx(0.3)

    @pytest.mark.asyncio
    async def test_unknown_message_raises(self, make_orchestrator):
        orchestrator = make_orchestrator()

        with pytest.raises(MessageNotFoundError):
            await orchestrator.record_feedback("reader-1", str(uuid.uuid4()), "helpful")
        with pytest.raises(MessageNotFoundError):
            await orchestrator.record_feedback("reader-1", "fallback-123", "helpful")
