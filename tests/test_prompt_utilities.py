"""Tests for prompt composition and token budgeting."""

from types import SimpleNamespace

import pytest
from langchain_core.messages import AIMessage, HumanMessage, SystemMessage

from reading_companion.api.models import (
    ComplexityLevel,
    ConversationMemory,
    KnowledgeLens,
    RAGContext,
    ReadingMode,
    RelationshipContext,
    ResponseStyle,
    UserTier,
)
from reading_companion.api.prompt_utilities import (
    TIER_TOKEN_RANGES,
    UNAVAILABLE_CONTENT_NOTE,
    PromptComposer,
    compute_token_budget,
    fallback_token_limit,
)
from reading_companion.api.retrieval import RetrievedPassage

PROFILE = SimpleNamespace(response_style="balanced", complexity_preference="moderate", top_topics=["theme"])


def _context(**overrides):
    values = {"book_id": 1, "reader_id": "reader-1", "tier": UserTier.PREMIUM}
    values.update(overrides)
    return RAGContext(**values)


def _history(count):
    return [
        SimpleNamespace(role="user" if i % 2 == 0 else "assistant", content=f"message {i}?")
        for i in range(count)
    ]


class TestTokenBudget:

    @pytest.mark.parametrize("tier", list(UserTier))
    @pytest.mark.parametrize("style", list(ResponseStyle))
    def test_monotonic_in_complexity(self, tier, style):
        budgets = [compute_token_budget(tier, c, style) for c in ComplexityLevel]

        assert budgets == sorted(budgets)

    @pytest.mark.parametrize("tier", list(UserTier))
    @pytest.mark.parametrize("complexity", list(ComplexityLevel))
    def test_monotonic_in_style(self, tier, complexity):
        budgets = [compute_token_budget(tier, complexity, s) for s in ResponseStyle]

        assert budgets == sorted(budgets)

    @pytest.mark.parametrize("tier", list(UserTier))
    def test_within_tier_bounds(self, tier):
        low, high = TIER_TOKEN_RANGES[tier]
        for complexity in ComplexityLevel:
            for style in ResponseStyle:
                assert low <= compute_token_budget(tier, complexity, style) <= high

    def test_known_values(self):
        assert compute_token_budget("FREE", "simple", "concise") == 300
        assert compute_token_budget("PREMIUM", "moderate", "detailed") == 800
        assert compute_token_budget("PRO", "advanced", "comprehensive") == 1500

    def test_fallback_limit_follows_query_shape(self):
        assert fallback_token_limit("Summarize this", "FREE") == 240
        assert fallback_token_limit("Analyze the themes", "PRO") == 800
        assert fallback_token_limit("List the main points", "PREMIUM") == 450
        assert fallback_token_limit("Tell me more", "PREMIUM") == 500


class TestPromptComposer:

    def test_message_order(self):
        passages = [RetrievedPassage(section_index=2, text="Some text")]
        memory = ConversationMemory(recent_topics=["plot"])

        prompt = PromptComposer().compose("Why?", _context(), passages, PROFILE, memory, _history(4))

        kinds = [type(m) for m in prompt.messages]
        assert kinds[:3] == [SystemMessage, SystemMessage, SystemMessage]
        assert prompt.messages[2].content.startswith("**Our Conversation So Far:**")
        assert kinds[3:] == [HumanMessage, AIMessage, HumanMessage, AIMessage, HumanMessage]
        assert prompt.messages[-1].content == "Why?"
        assert prompt.max_tokens == compute_token_budget("PREMIUM", "moderate", "balanced")

    def test_empty_passages_produce_unavailable_note(self):
        prompt = PromptComposer().compose("What happens here?", _context(), [], PROFILE, ConversationMemory())

        assert prompt.messages[1].content == UNAVAILABLE_CONTENT_NOTE
        assert isinstance(prompt.messages[-1], HumanMessage)

    def test_no_summary_below_four_turns(self):
        prompt = PromptComposer().compose("Why?", _context(), [], PROFILE, ConversationMemory(), _history(3))

        assert not any("Our Conversation So Far" in m.content for m in prompt.messages)

    def test_only_recent_turns_are_replayed(self):
        prompt = PromptComposer(recent_turns=6).compose(
            "Why?", _context(), [], PROFILE, ConversationMemory(), _history(10)
        )

        replayed = [m.content for m in prompt.messages if isinstance(m, (HumanMessage, AIMessage))][:-1]
        assert replayed == [f"message {i}?" for i in range(4, 10)]

    def test_persona_carries_personalization(self):
        memory = ConversationMemory(
            recent_topics=["character"],
            relationship_context=RelationshipContext(conversation_count=25, user_engagement="high"),
        )
        context = _context(reading_mode=ReadingMode.NON_FICTION, knowledge_lens=KnowledgeLens.KNOWLEDGE)

        persona = PromptComposer(assistant_name="Lio").compose("Why?", context, [], PROFILE, memory).messages[0].content

        assert persona.startswith("You are Lio")
        assert "concepts, arguments" in persona
        assert "25 exchanges" in persona
        assert "highly engaged" in persona
        assert "theme" in persona and "character" in persona

    def test_memory_disabled_drops_history_and_personalization(self):
        context = _context(include_conversation_memory=False)

        prompt = PromptComposer().compose("Why?", context, [], PROFILE, ConversationMemory(), _history(8))

        assert "Your Relationship with This Reader" not in prompt.messages[0].content
        assert len(prompt.messages) == 3

    def test_fallback_prompt_is_memory_free(self):
        passages = [RetrievedPassage(section_index=4, text="Current text", is_current=True)]

        prompt = PromptComposer().compose_fallback("Summarize this", _context(tier=UserTier.FREE), passages)

        assert len(prompt.messages) == 2
        assert "[Current Section 4]" in prompt.messages[0].content
        assert "Response Structure" in prompt.messages[0].content
        assert prompt.max_tokens == 240
