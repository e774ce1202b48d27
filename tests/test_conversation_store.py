"""Tests for the conversation store: session lifecycle, history and context entries."""

import asyncio
import uuid

import pytest
from sqlalchemy import func, select
from sqlalchemy.exc import NoResultFound

from reading_companion.api.models import ContextType, KnowledgeLens, ReadingMode, UserTier
from reading_companion.database.entities.context_entries import ConversationContextEntry
from reading_companion.database.entities.sessions import ConversationSession


async def _count(session_factory, entity, *criteria):
    async with session_factory() as session:
        query = select(func.count()).select_from(entity)
        if criteria:
            query = query.where(*criteria)
        return (await session.execute(query)).scalar_one()


async def _session(store, reader="reader-1", book=7, tier=UserTier.FREE, mode=ReadingMode.FICTION):
    return await store.get_or_create_active_session(reader, book, mode, KnowledgeLens.LITERARY, tier)


class TestActiveSession:
    """get_or_create_active_session and friends."""

    @pytest.mark.asyncio
    async def test_repeated_calls_reuse_the_active_session(self, store, session_factory):
        first = await _session(store)
        second = await _session(store)

        assert first.id == second.id
        assert first.is_active
        assert await _count(session_factory, ConversationSession) == 1

    @pytest.mark.asyncio
    async def test_concurrent_calls_create_exactly_one_session(self, store, session_factory):
        results = await asyncio.gather(*[_session(store) for _ in range(5)])

        assert len({s.id for s in results}) == 1
        assert await _count(session_factory, ConversationSession, ConversationSession.is_active.is_(True)) == 1

    @pytest.mark.asyncio
    async def test_different_books_get_different_sessions(self, store):
        a = await _session(store, book=1)
        b = await _session(store, book=2)

        assert a.id != b.id

    @pytest.mark.asyncio
    async def test_tier_change_updates_in_place_and_bumps_last_interaction(self, store, session_factory):
        created = await _session(store)
        unchanged = await _session(store)
        assert unchanged.last_interaction_at == created.last_interaction_at

        upgraded = await _session(store, tier=UserTier.PRO, mode=ReadingMode.NON_FICTION)

        assert upgraded.id == created.id
        assert upgraded.tier == "PRO"
        assert upgraded.reading_mode == "non-fiction"
        assert upgraded.last_interaction_at > created.last_interaction_at
        assert await _count(session_factory, ConversationSession) == 1

    @pytest.mark.asyncio
    async def test_closed_session_is_kept_and_replaced(self, store):
        old = await _session(store)
        assert await store.close_session(old.id) is True
        assert await store.close_session(old.id) is False

        new = await _session(store)
        recent = await store.get_recent_sessions("reader-1")

        assert new.id != old.id
        assert [s.id for s in recent] == [new.id, old.id]
        assert [s.is_active for s in recent] == [True, False]

    @pytest.mark.asyncio
    async def test_unknown_session_raises(self, store):
        with pytest.raises(NoResultFound):
            await store.get_session(uuid.uuid4())


class TestMessages:
    """append_message / get_history / feedback."""

    @pytest.mark.asyncio
    async def test_history_is_oldest_first_and_scoped_to_the_session(self, store):
        mine = await _session(store, book=1)
        other = await _session(store, book=2)
        for i in range(4):
            await store.append_message(mine.id, "user" if i % 2 == 0 else "assistant", f"turn {i}")
        await store.append_message(other.id, "user", "elsewhere")

        history = await store.get_history(mine.id)

        assert [m.content for m in history] == ["turn 0", "turn 1", "turn 2", "turn 3"]
        assert all(m.session_id == mine.id for m in history)
        assert all(a.created_at <= b.created_at for a, b in zip(history, history[1:]))

    @pytest.mark.asyncio
    async def test_history_limit_keeps_latest_turns(self, store):
        active = await _session(store)
        for i in range(6):
            await store.append_message(active.id, "user", f"q{i}")

        history = await store.get_history(active.id, limit=3)

        assert [m.content for m in history] == ["q3", "q4", "q5"]

    @pytest.mark.asyncio
    async def test_system_messages_are_hidden_unless_requested(self, store):
        active = await _session(store)
        await store.append_message(active.id, "system", "session started", message_kind="system")
        await store.append_message(active.id, "user", "Who is Ahab?")

        assert [m.role for m in await store.get_history(active.id)] == ["user"]
        assert [m.role for m in await store.get_history(active.id, include_system=True)] == ["system", "user"]

    @pytest.mark.asyncio
    async def test_append_bumps_session_last_interaction(self, store):
        active = await _session(store)
        await store.append_message(active.id, "user", "hello")

        refreshed = await store.get_session(active.id)

        assert refreshed.last_interaction_at > active.last_interaction_at

    @pytest.mark.asyncio
    async def test_attach_feedback_returns_previous_label(self, store):
        active = await _session(store)
        message = await store.append_message(active.id, "assistant", "An answer")

        assert await store.attach_feedback(message.id, "too_long") is None
        assert await store.attach_feedback(message.id, "too_long") == "too_long"
        assert (await store.get_message(str(message.id))).feedback == "too_long"
        assert await store.get_feedback_labels(active.id) == ["too_long"]

    @pytest.mark.asyncio
    async def test_feedback_on_unknown_message_raises(self, store):
        with pytest.raises(NoResultFound):
            await store.attach_feedback(uuid.uuid4(), "helpful")

    @pytest.mark.asyncio
    async def test_non_uuid_message_id_is_not_found(self, store):
        assert await store.get_message("fallback-1700000000000") is None


class TestContextEntries:
    """upsert_context_entry keeps one row per (session, type)."""

    @pytest.mark.asyncio
    async def test_upsert_overwrites_with_latest_payload(self, store, session_factory):
        active = await _session(store)

        first = await store.upsert_context_entry(active.id, ContextType.TOPICS_DISCUSSED, {"topics": ["plot"]}, 0.85)
        second = await store.upsert_context_entry(
            active.id, ContextType.TOPICS_DISCUSSED, {"topics": ["plot", "theme"]}, 0.9
        )

        assert second.id == first.id
        assert second.payload == {"topics": ["plot", "theme"]}
        assert second.confidence_score == 0.9
        assert await _count(session_factory, ConversationContextEntry) == 1

    @pytest.mark.asyncio
    async def test_entries_of_different_types_coexist(self, store):
        active = await _session(store)
        await store.upsert_context_entry(active.id, ContextType.TOPICS_DISCUSSED, {"topics": []})
        await store.upsert_context_entry(active.id, ContextType.READING_PROGRESS, {"current_section": 3})

        entries = await store.get_context_entries(active.id)

        assert {e.context_type for e in entries} == {"topics_discussed", "reading_progress"}
        progress = await store.get_context_entry(active.id, ContextType.READING_PROGRESS)
        assert progress.payload == {"current_section": 3}
