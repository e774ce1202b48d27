"""
Prompt Composition & Token Budgeting
====================================

Purpose
-------
Turns a reader query, its retrieved passages, the reader's learning profile and
the session memory into the ordered LangChain message sequence sent to the
completion service, together with a per-request output-token budget.

Message order
-------------
1. System: persona (tier × reading mode × lens) with personalization clauses.
2. System: retrieved passages labelled by section, or an "unavailable content" note.
3. System: short conversation summary (only with at least 4 prior turns).
4. The last ``recent_turns`` raw history turns.
5. Human: the new query.

Key Functions
-------------
- compute_token_budget : Tier range × complexity position × style factor, clamped.
- fallback_token_limit : Tier base limit adjusted by query keywords (memory-free path).
- build_base_system_prompt : Persona without any memory (fallback path).
- PromptComposer       : Builds full and fallback prompts.

Dependencies
------------
LangChain core message types; models from `reading_companion.api.models`.
"""

import logging
from dataclasses import dataclass
from typing import Iterable, List, Optional, Sequence

from langchain_core.messages import AIMessage, BaseMessage, HumanMessage, SystemMessage

from reading_companion.api.models import (
    ComplexityLevel,
    ConversationMemory,
    Engagement,
    KnowledgeLens,
    RAGContext,
    ReadingMode,
    ResponseStyle,
    UserTier,
)
from reading_companion.api.query_analysis import classify_complexity
from reading_companion.api.retrieval import RetrievedPassage

logger = logging.getLogger(__name__)

TIER_TOKEN_RANGES = {
    UserTier.FREE: (300, 600),
    UserTier.PREMIUM: (500, 1000),
    UserTier.PRO: (800, 1500),
}
"""Per-tier [min, max] output-token range."""

COMPLEXITY_POSITIONS = {
    ComplexityLevel.SIMPLE: 0.0,
    ComplexityLevel.MODERATE: 0.6,
    ComplexityLevel.ADVANCED: 0.8,
}
"""Where in the tier range a query of each complexity lands."""

STYLE_FACTORS = {
    ResponseStyle.CONCISE: 0.8,
    ResponseStyle.BALANCED: 0.9,
    ResponseStyle.DETAILED: 1.0,
    ResponseStyle.COMPREHENSIVE: 1.3,
}

FALLBACK_BASE_LIMITS = {
    UserTier.FREE: 300,
    UserTier.PREMIUM: 500,
    UserTier.PRO: 800,
}

SUMMARY_MIN_HISTORY = 4
SUMMARY_QUESTION_CHARS = 60

TIER_GUIDANCE = {
    UserTier.FREE: "Keep answers concise but complete: one or two short paragraphs, two or three key points at most.",
    UserTier.PREMIUM: "Offer richer detail: two or three paragraphs or three to five well-developed points.",
    UserTier.PRO: "Go as deep as the question deserves: layered analysis, critical perspectives and nuanced interpretation.",
}

TIER_STRUCTURE = {
    UserTier.FREE: "Response Structure: Provide a focused answer in 1-2 short paragraphs. If listing points, limit to 2-3 key items.",
    UserTier.PREMIUM: "Response Structure: Organize your answer in 2-3 paragraphs or 3-5 key points. Ensure each section is complete.",
    UserTier.PRO: "Response Structure: Provide a comprehensive analysis in 3-4 well-developed paragraphs or 4-6 detailed points.",
}

MODE_LENS_GUIDANCE = {
    (ReadingMode.FICTION, KnowledgeLens.LITERARY): (
        "You are reading a work of fiction through a literary lens: focus on characters, motivation, "
        "themes, symbolism, narrative structure and the author's craft."
    ),
    (ReadingMode.FICTION, KnowledgeLens.KNOWLEDGE): (
        "You are reading a work of fiction for what it teaches: draw out the wisdom, life lessons and "
        "ideas the story lets a reader carry into the real world."
    ),
    (ReadingMode.NON_FICTION, KnowledgeLens.LITERARY): (
        "You are reading a non-fiction work through a literary lens: focus on rhetorical structure, "
        "the author's voice, persuasion techniques and how the argument is built."
    ),
    (ReadingMode.NON_FICTION, KnowledgeLens.KNOWLEDGE): (
        "You are reading a non-fiction work for knowledge: focus on concepts, arguments, frameworks, "
        "evidence and practical takeaways, and evaluate them critically."
    ),
}

STYLE_GUIDANCE = {
    ResponseStyle.CONCISE: "Keep your responses focused and to the point, as this reader prefers brevity.",
    ResponseStyle.BALANCED: "Provide thoughtful responses with a good balance of depth and clarity.",
    ResponseStyle.DETAILED: "This reader enjoys thorough explanations, so feel free to elaborate.",
    ResponseStyle.COMPREHENSIVE: "This reader loves in-depth analysis, so provide rich, scholarly insights.",
}

COMPLEXITY_GUIDANCE = {
    ComplexityLevel.SIMPLE: "Explain ideas in plain language and define any technical terms you use.",
    ComplexityLevel.MODERATE: "Pitch explanations at a curious general reader.",
    ComplexityLevel.ADVANCED: "The reader is comfortable with advanced vocabulary and nuanced argument.",
}

ENGAGEMENT_GUIDANCE = {
    Engagement.HIGH: "This reader is highly engaged: pose thought-provoking questions and make connections.",
    Engagement.MEDIUM: "This reader is moderately engaged: provide helpful insights while encouraging exploration.",
    Engagement.LOW: "This reader may be new to deep discussion of books: be encouraging and accessible.",
}

UNAVAILABLE_CONTENT_NOTE = (
    "Note: I don't have access to the specific content the reader is currently reading. "
    "Ask the reader to provide some context or quote the specific passage they would like to discuss."
)

COMPLETENESS_RULE = (
    "Always structure your response to be complete within your length limit: prioritize the most "
    "important points and never end mid-sentence."
)


@dataclass
class ComposedPrompt:
    messages: List[BaseMessage]
    max_tokens: int
    complexity: ComplexityLevel


def compute_token_budget(tier, complexity, style) -> int:
    """
    Output-token budget of one request.

    Starts at the tier's [min, max] range, moves within it by query complexity
    (simple → min, moderate → 60%, advanced → 80% of the range), multiplies by the
    style factor and clamps back into the range.
    """
    low, high = TIER_TOKEN_RANGES[UserTier(tier)]
    position = COMPLEXITY_POSITIONS[ComplexityLevel(complexity)]
    factor = STYLE_FACTORS[ResponseStyle(style)]
    budget = round((low + position * (high - low)) * factor)
    return int(max(low, min(high, budget)))


def fallback_token_limit(query: str, tier) -> int:
    """Tier base limit adjusted by the shape of the query (memory-free path)."""
    base = FALLBACK_BASE_LIMITS[UserTier(tier)]
    lowered = query.lower()
    if any(marker in lowered for marker in ("summarize", "what is", "who is")):
        return max(200, int(base * 0.8))
    if any(marker in lowered for marker in ("analyze", "compare", "explain why", "themes")):
        return base
    if any(marker in lowered for marker in ("list", "main points", "key concepts")):
        return int(base * 0.9)
    return base


def build_base_system_prompt(context: RAGContext, assistant_name: str = "Lio") -> str:
    """Persona with tier and mode × lens guidance, without any memory."""
    tier = UserTier(context.tier)
    parts = [
        f"You are {assistant_name}, an AI reading companion helping a reader understand and enjoy a book.",
        TIER_GUIDANCE[tier],
        MODE_LENS_GUIDANCE[(ReadingMode(context.reading_mode), KnowledgeLens(context.knowledge_lens))],
        "Use the provided excerpts from the book to answer accurately and mention which section a point "
        "comes from. If you don't have enough context, say so clearly.",
        COMPLETENESS_RULE,
    ]
    return " ".join(parts)


def render_passages(passages: Sequence[RetrievedPassage]) -> str:
    """Passages message content; the unavailable-content note when there are none."""
    if not passages:
        return UNAVAILABLE_CONTENT_NOTE
    content = "**Current Book Content:**\n\n" + "\n\n---\n\n".join(p.render() for p in passages)
    current = next((p for p in passages if p.is_current), None)
    if current is not None:
        content += (
            f"\n\n{current.label} is the section the reader has open right now. "
            "It takes priority for questions about what is happening now or about 'this chapter' or 'this section'."
        )
    return content


def _truncate(text: str, limit: int = SUMMARY_QUESTION_CHARS) -> str:
    return text[:limit] + ("..." if len(text) > limit else "")


class PromptComposer:
    """
    Builds the message sequence and token budget of a request.

    Args:
        assistant_name (str): Persona name.
        recent_turns (int): Raw history turns replayed verbatim.
    """

    def __init__(self, assistant_name: str = "Lio", recent_turns: int = 6):
        self.assistant_name = assistant_name
        self.recent_turns = recent_turns

    def compose(
        self,
        query: str,
        context: RAGContext,
        passages: Sequence[RetrievedPassage],
        profile,
        memory: Optional[ConversationMemory] = None,
        history: Sequence = (),
    ) -> ComposedPrompt:
        """
        Full prompt: persona, passages, summary, recent turns, query.

        Args:
            profile: Learning profile (``response_style``, ``complexity_preference``, ``top_topics``).
            memory (ConversationMemory | None): Session memory; None disables personalization.
            history: Prior messages of the session, oldest first (``role``, ``content``).
        """
        use_memory = context.include_conversation_memory and memory is not None
        history = list(history) if context.include_conversation_memory else []

        messages: List[BaseMessage] = [
            SystemMessage(content=self.build_persona(context, profile, memory if use_memory else None)),
            SystemMessage(content=render_passages(passages)),
        ]

        if use_memory:
            summary = self.build_conversation_summary(history, memory)
            if summary:
                messages.append(SystemMessage(content=f"**Our Conversation So Far:**\n{summary}"))

        messages.extend(self.history_messages(history))
        messages.append(HumanMessage(content=query))

        complexity = classify_complexity(query)
        max_tokens = compute_token_budget(context.tier, complexity, profile.response_style)
        logger.debug("Composed %d messages, budget %d tokens (%s)", len(messages), max_tokens, complexity.value)
        return ComposedPrompt(messages=messages, max_tokens=max_tokens, complexity=complexity)

    def compose_fallback(self, query: str, context: RAGContext, passages: Sequence[RetrievedPassage]) -> ComposedPrompt:
        """Memory-free prompt: base persona + passages + tier structure, then the query."""
        system = "\n\n".join(
            [
                build_base_system_prompt(context, self.assistant_name),
                render_passages(passages),
                TIER_STRUCTURE[UserTier(context.tier)],
            ]
        )
        return ComposedPrompt(
            messages=[SystemMessage(content=system), HumanMessage(content=query)],
            max_tokens=fallback_token_limit(query, context.tier),
            complexity=classify_complexity(query),
        )

    def build_persona(self, context: RAGContext, profile, memory: Optional[ConversationMemory]) -> str:
        base = build_base_system_prompt(context, self.assistant_name)
        if memory is None:
            return base

        clauses = []
        relationship = memory.relationship_context
        if relationship.conversation_count > 5:
            clauses.append(
                f"You've had {relationship.conversation_count} exchanges with this reader, "
                "so you know their interests and style well."
            )
        clauses.append(STYLE_GUIDANCE[ResponseStyle(profile.response_style)])
        clauses.append(COMPLEXITY_GUIDANCE[ComplexityLevel(profile.complexity_preference)])
        affinities = list(getattr(profile, "top_topics", []) or [])
        if affinities:
            clauses.append(f"Across books this reader is most drawn to: {', '.join(affinities)}.")
        if memory.recent_topics:
            clauses.append(
                f"You've been discussing: {', '.join(memory.recent_topics[:3])}. Build on these conversations naturally."
            )
        clauses.append(ENGAGEMENT_GUIDANCE[Engagement(relationship.user_engagement)])

        return f"{base}\n\n**Your Relationship with This Reader:**\n" + "\n".join(clauses)

    def build_conversation_summary(self, history: Sequence, memory: ConversationMemory) -> Optional[str]:
        """Last 3 reader questions and the top topics; None below 4 prior turns."""
        if len(history) < SUMMARY_MIN_HISTORY:
            return None
        questions = [m.content for m in history if m.role == "user"][-3:]
        lines = "\n".join(f'- "{_truncate(q)}"' for q in questions)
        topics = ", ".join(memory.recent_topics[:4]) or "none recorded yet"
        return f"Recent questions from this reader:\n{lines}\n\nMain topics we've explored: {topics}"

    def history_messages(self, history: Iterable) -> List[BaseMessage]:
        turns = [m for m in history if m.role in ("user", "assistant")][-self.recent_turns:]
        return [
            HumanMessage(content=m.content) if m.role == "user" else AIMessage(content=m.content)
            for m in turns
        ]
