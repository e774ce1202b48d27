"""
Reading Companion RAG Workflow: Session • Retrieval • Memory • Completion • Feedback
====================================================================================

Overview
--------
This module wires the whole question-answering flow behind one entry point,
`ResponseOrchestrator.generate_response`:

1. resolve (or atomically create) the reader's active session for the book;
2. read or lazily create the reader's learning profile;
3. retrieve grounded context (current section + similar passages);
4. append the reader's message (before the completion call);
5. compose the prompt and its token budget;
6. call the completion service with the tier's model, under a timeout;
7. append the assistant's message with a confidence estimate;
8. best-effort: update context entries (topics, reading progress) and the profile.

If anything in steps 1-7 fails, the orchestrator answers through a memory-free
fallback prompt instead of raising; the fallback response carries the caller's
session id (or ``"fallback"``) and a ``fallback-<ms>`` message id.

Main Components
---------------
- CompletionError      : Completion-service failure or timeout.
- CompletionClient     : LangChain ChatOpenAI wrapper (per-call model and max_tokens).
- ResponseOrchestrator : The caller-facing pipeline and the feedback flow.
"""

import asyncio
import logging
import time
from datetime import datetime, timezone
from typing import Callable, List, Mapping, Optional

from langchain_core.messages import BaseMessage
from langchain_openai import ChatOpenAI

from reading_companion.api.models import (
    ContextType,
    ConversationMemory,
    FeedbackLabel,
    FeedbackResult,
    MessageKind,
    MessageRole,
    RAGContext,
    RAGResponse,
    ReadingProgress,
    RelationshipContext,
    UserPreferences,
)
from reading_companion.api.prompt_utilities import PromptComposer
from reading_companion.api.query_analysis import (
    engagement_for,
    estimate_confidence,
    extract_topics,
    mentions_progress,
    recent_questions,
    satisfaction_score,
)
from reading_companion.api.retrieval import ContextRetriever, RetrievedPassage
from reading_companion.database.core.conversation_store import ConversationStore
from reading_companion.database.core.learning_profile import LearningProfileManager

logger = logging.getLogger(__name__)

EMPTY_COMPLETION_TEXT = (
    "I apologize, but I was unable to generate a response. Please try rephrasing your question."
)
FALLBACK_APOLOGY = (
    "I'm sorry, I'm having trouble answering right now. Please try again in a moment."
)
TOPICS_CAP = 20
MEMORY_TOPIC_WINDOW = 10


class CompletionError(Exception):
    """The completion service failed, returned nothing usable or timed out."""


class MessageNotFoundError(LookupError):
    """Feedback was given for a message that does not exist."""


class CompletionClient:
    """
    Text completion through LangChain's ChatOpenAI.

    A chat model is built per call because model and ``max_tokens`` change with
    the reader's tier and the computed budget.

    Args:
        api_key (str | None): OpenAI API key.
        timeout_seconds (float): Upper bound of one completion call.
        temperature, top_p, frequency_penalty, presence_penalty: Sampling parameters.
        llm_factory (callable | None): Builds the chat model from keyword arguments;
            defaults to ``ChatOpenAI``.
    """

    def __init__(
        self,
        api_key: Optional[str],
        timeout_seconds: float = 45.0,
        temperature: float = 0.7,
        top_p: float = 0.9,
        frequency_penalty: float = 0.1,
        presence_penalty: float = 0.1,
        llm_factory: Optional[Callable[..., ChatOpenAI]] = None,
    ):
        self.api_key = api_key
        self.timeout_seconds = timeout_seconds
        self.temperature = temperature
        self.top_p = top_p
        self.frequency_penalty = frequency_penalty
        self.presence_penalty = presence_penalty
        self.llm_factory = llm_factory or ChatOpenAI

    @classmethod
    def from_settings(cls, settings) -> "CompletionClient":
        return cls(
            api_key=settings.OPENAI_API_KEY,
            timeout_seconds=settings.COMPLETION_TIMEOUT_SECONDS,
            temperature=settings.TEMPERATURE,
            top_p=settings.TOP_P,
            frequency_penalty=settings.FREQUENCY_PENALTY,
            presence_penalty=settings.PRESENCE_PENALTY,
        )

    def build_model(self, model: str, max_tokens: int):
        return self.llm_factory(
            model=model,
            api_key=self.api_key,
            temperature=self.temperature,
            top_p=self.top_p,
            max_tokens=max_tokens,
            frequency_penalty=self.frequency_penalty,
            presence_penalty=self.presence_penalty,
        )

    async def complete(self, messages: List[BaseMessage], model: str, max_tokens: int) -> str:
        """
        Run one completion.

        Raises:
            CompletionError: On any client error or when `timeout_seconds` elapses.
        """
        llm = self.build_model(model, max_tokens)
        try:
            response = await asyncio.wait_for(llm.ainvoke(messages), timeout=self.timeout_seconds)
        except asyncio.TimeoutError as e:
            raise CompletionError(f"Completion timed out after {self.timeout_seconds}s") from e
        except Exception as e:
            raise CompletionError(f"Completion failed: {e}") from e
        content = str(response.content or "").strip()
        return content or EMPTY_COMPLETION_TEXT


class ResponseOrchestrator:
    """
    Caller-facing RAG pipeline with persistent, adaptive conversation memory.

    Args:
        store (ConversationStore): Sessions, messages and context entries.
        profiles (LearningProfileManager): Reader learning profiles.
        retriever (ContextRetriever): Grounded context.
        composer (PromptComposer): Prompt and token budget.
        completion (CompletionClient): Completion service.
        tier_models (Mapping[str, str]): Tier → model lookup table.
        history_window (int): Messages loaded to build conversation memory.
    """

    def __init__(
        self,
        store: ConversationStore,
        profiles: LearningProfileManager,
        retriever: ContextRetriever,
        composer: PromptComposer,
        completion: CompletionClient,
        tier_models: Mapping[str, str],
        history_window: int = 20,
    ):
        self.store = store
        self.profiles = profiles
        self.retriever = retriever
        self.composer = composer
        self.completion = completion
        self.tier_models = dict(tier_models)
        self.history_window = history_window

    def model_for(self, tier) -> str:
        key = getattr(tier, "value", tier)
        return self.tier_models.get(key) or next(iter(self.tier_models.values()))

    async def generate_response(self, query: str, context: RAGContext) -> RAGResponse:
        """
        Answer `query` for the reader and book described by `context`.

        Never raises: any failure of the primary chain returns the fallback response.
        """
        passages: Optional[List[RetrievedPassage]] = None
        try:
            active = await self.store.get_or_create_active_session(
                context.reader_id, context.book_id, context.reading_mode, context.knowledge_lens, context.tier
            )
            profile = await self.profiles.get_or_create(context.reader_id)
            passages = await self.retriever.retrieve(query, context)

            history = []
            if context.include_conversation_memory:
                history = await self.store.get_history(active.id, limit=self.history_window)
            memory = await self.build_memory(active.id, history, profile, context)

            await self.store.append_message(
                active.id,
                MessageRole.USER,
                query,
                section_index=context.current_section_index,
                metadata={
                    "reading_mode": context.reading_mode.value,
                    "knowledge_lens": context.knowledge_lens.value,
                    "tier": context.tier.value,
                },
                message_kind=MessageKind.CHAT,
            )

            prompt = self.composer.compose(query, context, passages, profile, memory, history)
            text = await self.completion.complete(prompt.messages, self.model_for(context.tier), prompt.max_tokens)

            confidence = estimate_confidence(len(passages), any(p.is_current for p in passages))
            assistant = await self.store.append_message(
                active.id,
                MessageRole.ASSISTANT,
                text,
                section_index=context.current_section_index,
                metadata={
                    "query_complexity": prompt.complexity.value,
                    "passages": [p.section_index for p in passages],
                    "max_tokens": prompt.max_tokens,
                    "generated_at": datetime.now(timezone.utc).isoformat(),
                    "conversation_memory": memory.model_dump(mode="json"),
                },
                message_kind=MessageKind.CHAT,
                confidence_score=confidence,
            )
        except Exception:
            logger.exception("Response generation failed for reader %s; using fallback", context.reader_id[:8])
            return await self.fallback(query, context, passages)

        await self.update_conversation_insights(active.id, query, text, memory, context)
        await self.profiles.update_from_exchange(context.reader_id, query, text)

        return RAGResponse(
            response=text,
            session_id=str(active.id),
            message_id=str(assistant.id),
            memory_snapshot=memory,
        )

    async def fallback(
        self, query: str, context: RAGContext, passages: Optional[List[RetrievedPassage]] = None
    ) -> RAGResponse:
        """Memory-free RAG answer: passages + query, no history, no personalization."""
        if passages is None:
            try:
                passages = await self.retriever.retrieve(query, context)
            except Exception:
                logger.exception("Fallback retrieval failed for book %s", context.book_id)
                passages = []

        prompt = self.composer.compose_fallback(query, context, passages)
        try:
            text = await self.completion.complete(prompt.messages, self.model_for(context.tier), prompt.max_tokens)
        except Exception:
            logger.exception("Fallback completion failed for reader %s", context.reader_id[:8])
            text = FALLBACK_APOLOGY

        return RAGResponse(
            response=text,
            session_id=context.session_id or "fallback",
            message_id=f"fallback-{int(time.time() * 1000)}",
            memory_snapshot=None,
        )

    async def build_memory(self, session_id, history, profile, context: RAGContext) -> ConversationMemory:
        """
        Synthesize the session memory from history, context entries and the profile.
        """
        entries = {entry.context_type: entry.payload for entry in await self.store.get_context_entries(session_id)}
        reader_messages = [m.content for m in history if m.role == MessageRole.USER.value]

        recorded_topics = (entries.get(ContextType.TOPICS_DISCUSSED.value) or {}).get("topics")
        if recorded_topics:
            recent_topics = list(recorded_topics)
        else:
            recent_topics = extract_topics(" ".join(reader_messages[-MEMORY_TOPIC_WINDOW:]))

        progress = entries.get(ContextType.READING_PROGRESS.value) or {}
        insights = entries.get(ContextType.LEARNING_INSIGHTS.value) or {}
        message_count = await self.store.count_messages(session_id)

        return ConversationMemory(
            recent_topics=recent_topics,
            user_preferences=UserPreferences(
                response_style=profile.response_style,
                complexity_level=profile.complexity_preference,
                interests=list(profile.top_topics),
            ),
            reading_progress=ReadingProgress(
                current_section=context.current_section_index
                if context.current_section_index is not None
                else progress.get("current_section"),
                key_insights=list(insights.get("insights") or progress.get("key_insights") or []),
                questions_asked=recent_questions(reader_messages),
            ),
            relationship_context=RelationshipContext(
                conversation_count=message_count,
                user_engagement=engagement_for(message_count),
                satisfaction_score=satisfaction_score(await self.store.get_feedback_labels(session_id)),
            ),
        )

    async def update_conversation_insights(
        self, session_id, query: str, response: str, memory: ConversationMemory, context: RAGContext
    ) -> None:
        """Best-effort upserts of the topics and reading-progress context entries."""
        try:
            topics = list(memory.recent_topics)
            for topic in extract_topics(f"{query} {response}"):
                if topic not in topics:
                    topics.append(topic)
            await self.store.upsert_context_entry(
                session_id, ContextType.TOPICS_DISCUSSED, {"topics": topics[:TOPICS_CAP]}, 0.85
            )

            if mentions_progress(query):
                payload = memory.reading_progress.model_dump(mode="json")
                payload["last_question_about"] = query
                payload["timestamp"] = datetime.now(timezone.utc).isoformat()
                await self.store.upsert_context_entry(session_id, ContextType.READING_PROGRESS, payload, 0.80)
        except Exception:
            logger.exception("Could not update conversation insights for session %s", session_id)

    async def record_feedback(self, reader_id: str, message_id: str, label) -> FeedbackResult:
        """
        Attach a feedback label to an assistant message and adapt the reader's profile.

        Re-applying the label a message already carries changes nothing.

        Raises:
            MessageNotFoundError: If `message_id` does not name a stored message.
        """
        label = FeedbackLabel(label)
        message = await self.store.get_message(message_id)
        if message is None:
            raise MessageNotFoundError(message_id)

        try:
            previous = await self.store.attach_feedback(message.id, label)
        except Exception:
            logger.exception("Could not record feedback on message %s", message_id)
            return FeedbackResult(success=False, feedback=label, timestamp=datetime.now(timezone.utc))

        if previous != label.value:
            complexity = (message.context_metadata or {}).get("query_complexity")
            profile = await self.profiles.update_from_feedback(reader_id, label, complexity)
            if profile is not None:
                try:
                    await self.store.upsert_context_entry(
                        message.session_id,
                        ContextType.USER_PREFERENCES,
                        {
                            "response_style": profile.response_style,
                            "complexity_level": profile.complexity_preference,
                            "interests": list(profile.top_topics),
                        },
                        0.85,
                    )
                except Exception:
                    logger.exception("Could not store preferences for session %s", message.session_id)
        else:
            logger.info("Feedback %s already recorded on message %s", label.value, message_id)

        return FeedbackResult(success=True, feedback=label, timestamp=datetime.now(timezone.utc))
