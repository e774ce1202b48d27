"""
Conversation Store - session lifecycle, message history and context entries.

Every public coroutine is wrapped with the async `@transactional` decorator,
which opens a session from ``self.session_factory`` (or reuses the one already
bound to the current task) and commits on success. Each method accepts (and
uses) the injected ``session`` keyword argument.

Two operations carry the concurrency guarantees of the store:

- `get_or_create_active_session` is one atomic upsert against the partial
  unique index on active sessions; concurrent callers for the same
  (reader, book) receive the same row.
- `upsert_context_entry` replaces the single entry of a (session, type) pair.
"""

import logging
from datetime import datetime, timezone
from enum import Enum
from typing import List, Optional
from uuid import UUID, uuid4

from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from reading_companion.database.daos.conversation_context_dao import ConversationContextDao
from reading_companion.database.daos.conversation_message_dao import ConversationMessageDao
from reading_companion.database.daos.conversation_session_dao import ConversationSessionDao
from reading_companion.database.entities.context_entries import ConversationContextEntry
from reading_companion.database.entities.messages import ConversationMessage
from reading_companion.database.entities.sessions import ConversationSession
from reading_companion.database.helpers.transactionManagement import transactional

logger = logging.getLogger(__name__)


def _value(item):
    return item.value if isinstance(item, Enum) else item


def as_uuid(identifier) -> Optional[UUID]:
    """Parse an id coming from a caller; None when it is not a UUID (e.g. fallback ids)."""
    if isinstance(identifier, UUID):
        return identifier
    try:
        return UUID(str(identifier))
    except (TypeError, ValueError):
        return None


class ConversationStore:
    """
    Service over the conversation DAOs.

    Parameters
    ----------
    session_factory : async_sessionmaker[AsyncSession]
        Factory used by `@transactional` to open a unit of work.
    """

    def __init__(self, session_factory: async_sessionmaker[AsyncSession]):
        self.session_factory = session_factory
        self.session_dao = ConversationSessionDao()
        self.message_dao = ConversationMessageDao()
        self.context_dao = ConversationContextDao()

    # ------------------------------------------------------------------
    # Sessions
    # ------------------------------------------------------------------
    @transactional
    async def get_or_create_active_session(
        self,
        reader_id: str,
        book_id: int,
        reading_mode,
        knowledge_lens,
        tier,
        session: AsyncSession = None,
    ) -> ConversationSession:
        """
        Return the reader's active session for the book, creating it if needed.

        When an active session exists with a different mode, lens or tier it is
        updated in place and its last-interaction time is bumped.
        """
        active = await self.session_dao.upsertActiveSession(
            session,
            reader_id=reader_id,
            book_id=book_id,
            reading_mode=_value(reading_mode),
            knowledge_lens=_value(knowledge_lens),
            tier=_value(tier),
        )
        logger.debug("Active session %s for reader %s / book %s", active.id, reader_id[:8], book_id)
        return active

    @transactional
    async def get_session(self, session_id, session: AsyncSession = None) -> ConversationSession:
        """Raises `NoResultFound` for an unknown id."""
        return await self.session_dao.fetchSessionById(session, as_uuid(session_id))

    @transactional
    async def close_session(self, session_id, session: AsyncSession = None) -> bool:
        """Soft-close a session; it stays readable but is no longer the active thread."""
        closed = await self.session_dao.deactivateSession(session, as_uuid(session_id))
        if closed:
            logger.info("Closed session %s", session_id)
        return closed

    @transactional
    async def get_recent_sessions(
        self, reader_id: str, limit: int = 10, session: AsyncSession = None
    ) -> List[ConversationSession]:
        return await self.session_dao.fetchSessionsByReaderId(session, reader_id, limit)

    # ------------------------------------------------------------------
    # Messages
    # ------------------------------------------------------------------
    @transactional
    async def append_message(
        self,
        session_id,
        role,
        content: str,
        section_index: Optional[int] = None,
        metadata: Optional[dict] = None,
        message_kind="chat",
        confidence_score: Optional[float] = None,
        quick_action_id: Optional[str] = None,
        session: AsyncSession = None,
    ) -> ConversationMessage:
        """
        Append one message to a session and bump the session's last interaction.

        Returns
        -------
        ConversationMessage
            The stored message (flushed, so its id and timestamp are final).
        """
        now = datetime.now(timezone.utc)
        sid = as_uuid(session_id)
        message = ConversationMessage(
            message_id=uuid4(),
            session_id=sid,
            role=_value(role),
            content=content,
            created_at=now,
            section_index=section_index,
            context_metadata=metadata or {},
            message_kind=_value(message_kind),
            quick_action_id=quick_action_id,
            confidence_score=confidence_score,
        )
        await self.message_dao.createMessage(session, message)
        await session.flush()
        await self.session_dao.updateLastInteraction(session, sid, now)
        return message

    @transactional
    async def get_history(
        self,
        session_id,
        limit: Optional[int] = None,
        include_system: bool = False,
        session: AsyncSession = None,
    ) -> List[ConversationMessage]:
        """The latest `limit` messages of the session, oldest first."""
        return await self.message_dao.fetchMessagesBySessionId(
            session, as_uuid(session_id), limit=limit, include_system=include_system
        )

    @transactional
    async def get_message(self, message_id, session: AsyncSession = None) -> Optional[ConversationMessage]:
        message_uuid = as_uuid(message_id)
        if message_uuid is None:
            return None
        return await self.message_dao.fetchMessageById(session, message_uuid)

    @transactional
    async def attach_feedback(self, message_id, label, session: AsyncSession = None) -> Optional[str]:
        """
        Set the feedback label of a message (idempotent).

        Returns the label the message carried before, so callers can skip
        side effects of a repeated label. Raises `NoResultFound` for unknown ids.
        """
        return await self.message_dao.updateMessageFeedback(session, as_uuid(message_id), _value(label))

    @transactional
    async def count_messages(self, session_id, session: AsyncSession = None) -> int:
        return await self.message_dao.countMessagesBySessionId(session, as_uuid(session_id))

    @transactional
    async def get_feedback_labels(self, session_id, session: AsyncSession = None) -> List[str]:
        return await self.message_dao.fetchFeedbackBySessionId(session, as_uuid(session_id))

    # ------------------------------------------------------------------
    # Context entries
    # ------------------------------------------------------------------
    @transactional
    async def upsert_context_entry(
        self,
        session_id,
        context_type,
        payload: dict,
        confidence: float = 0.8,
        session: AsyncSession = None,
    ) -> ConversationContextEntry:
        """Replace the single entry for (session, type); last writer wins."""
        return await self.context_dao.upsertContextEntry(
            session, as_uuid(session_id), _value(context_type), payload, confidence
        )

    @transactional
    async def get_context_entry(
        self, session_id, context_type, session: AsyncSession = None
    ) -> Optional[ConversationContextEntry]:
        return await self.context_dao.fetchContextEntry(session, as_uuid(session_id), _value(context_type))

    @transactional
    async def get_context_entries(
        self, session_id, session: AsyncSession = None
    ) -> List[ConversationContextEntry]:
        return await self.context_dao.fetchContextEntries(session, as_uuid(session_id))
