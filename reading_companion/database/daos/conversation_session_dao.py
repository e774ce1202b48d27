"""
Conversation Session DAO

Purpose
-------
Thin data-access layer for the `ConversationSession` ORM entity:
- Atomic get-or-create of the active session for a (reader, book) pair
- Query by id, by reader (most recent first) or the active one for a book
- Soft-close (unset `is_active`) and bump `last_interaction_at`

Design
------
- Requires an active `AsyncSession` supplied by the caller (no session creation
  inside the DAO). Transaction boundaries live in the service layer
  (`@transactional`).
- `upsertActiveSession` is a single `INSERT .. ON CONFLICT DO UPDATE` against the
  partial unique index on ``(reader_id, book_id) WHERE is_active``; it never does a
  read-then-write, so two concurrent callers end up on the same row.

Usage
-----
.. code-block:: python

    dao = ConversationSessionDao()
    async with session_factory() as session:
        active = await dao.upsertActiveSession(
            session, reader_id="r-1", book_id=7, reading_mode="fiction",
            knowledge_lens="literary", tier="FREE",
        )
        await session.commit()

Error Handling
--------------
- Methods catch generic `Exception`, log the error message, and re-raise.
- `fetchSessionById` uses `.scalar_one()`, which raises `NoResultFound`.
"""

import logging
from datetime import datetime, timezone
from typing import List, Optional
from uuid import UUID, uuid4

from sqlalchemy import case, desc, or_, select, text, update
from sqlalchemy.ext.asyncio import AsyncSession

from reading_companion.database.entities.sessions import ACTIVE_SESSION_PREDICATES, ConversationSession
from reading_companion.database.helpers.upserts import dialect_insert, dialect_name

logger = logging.getLogger(__name__)


class ConversationSessionDao:
    """
    Data Access Object (DAO) for managing ConversationSession entities.
    """

    async def upsertActiveSession(
        self,
        session: AsyncSession,
        reader_id: str,
        book_id: int,
        reading_mode: str,
        knowledge_lens: str,
        tier: str,
    ) -> ConversationSession:
        """
        Get or create the active session of (reader, book) in one statement.

        If an active row exists, mode/lens/tier are overwritten with the given
        values and `last_interaction_at` is bumped only when one of them changed.
        Otherwise a new active row is inserted.

        Parameters
        ----------
        session : AsyncSession
            Active SQLAlchemy session.
        reader_id, book_id :
            Session identity.
        reading_mode, knowledge_lens, tier :
            Values the session must run under after the call.

        Returns
        -------
        ConversationSession
            The (single) active row, freshly re-read.
        """
        try:
            now = datetime.now(timezone.utc)
            stmt = dialect_insert(session, ConversationSession).values(
                id=uuid4(),
                reader_id=reader_id,
                book_id=book_id,
                reading_mode=reading_mode,
                knowledge_lens=knowledge_lens,
                tier=tier,
                is_active=True,
                last_interaction_at=now,
                created_at=now,
            )
            excluded = stmt.excluded
            changed = or_(
                ConversationSession.reading_mode != excluded.reading_mode,
                ConversationSession.knowledge_lens != excluded.knowledge_lens,
                ConversationSession.tier != excluded.tier,
            )
            stmt = stmt.on_conflict_do_update(
                index_elements=[ConversationSession.reader_id, ConversationSession.book_id],
                index_where=text(ACTIVE_SESSION_PREDICATES[dialect_name(session)]),
                set_={
                    "reading_mode": excluded.reading_mode,
                    "knowledge_lens": excluded.knowledge_lens,
                    "tier": excluded.tier,
                    "last_interaction_at": case(
                        (changed, excluded.last_interaction_at),
                        else_=ConversationSession.last_interaction_at,
                    ),
                },
            )
            await session.execute(stmt)
            return await self.fetchActiveSession(session, reader_id, book_id)
        except Exception as e:
            logger.error("Error in ConversationSessionDao.upsertActiveSession. Error: %s", e)
            raise e

    async def fetchActiveSession(
        self, session: AsyncSession, reader_id: str, book_id: int
    ) -> Optional[ConversationSession]:
        """
        Fetch the active session of (reader, book), or None.

        `populate_existing` refreshes an instance already held by the identity map,
        since the upsert bypasses the ORM.
        """
        try:
            result = await session.execute(
                select(ConversationSession)
                .where(
                    ConversationSession.reader_id == reader_id,
                    ConversationSession.book_id == book_id,
                    ConversationSession.is_active.is_(True),
                )
                .execution_options(populate_existing=True)
            )
            return result.scalar_one_or_none()
        except Exception as e:
            logger.error("Error in ConversationSessionDao.fetchActiveSession. Error: %s", e)
            raise e

    async def fetchSessionById(self, session: AsyncSession, session_id: UUID) -> ConversationSession:
        """
        Fetch a session by primary key.

        Raises
        ------
        NoResultFound
            If no session has that id.
        """
        try:
            result = await session.execute(
                select(ConversationSession).where(ConversationSession.id == session_id)
            )
            return result.scalar_one()
        except Exception as e:
            logger.error("Error in ConversationSessionDao.fetchSessionById. Error: %s", e)
            raise e

    async def fetchSessionsByReaderId(
        self, session: AsyncSession, reader_id: str, limit: int = 10
    ) -> List[ConversationSession]:
        """
        Fetch the sessions of a reader, most recently used first.
        """
        try:
            result = await session.execute(
                select(ConversationSession)
                .where(ConversationSession.reader_id == reader_id)
                .order_by(desc(ConversationSession.last_interaction_at))
                .limit(limit)
            )
            return list(result.scalars().all())
        except Exception as e:
            logger.error("Error in ConversationSessionDao.fetchSessionsByReaderId. Error: %s", e)
            raise e

    async def deactivateSession(self, session: AsyncSession, session_id: UUID) -> bool:
        """
        Soft-close a session. Returns True when an active row was closed.
        """
        try:
            result = await session.execute(
                update(ConversationSession)
                .where(ConversationSession.id == session_id, ConversationSession.is_active.is_(True))
                .values(is_active=False)
            )
            return result.rowcount > 0
        except Exception as e:
            logger.error("Error in ConversationSessionDao.deactivateSession. Error: %s", e)
            raise e

    async def updateLastInteraction(self, session: AsyncSession, session_id: UUID, timestamp: datetime):
        try:
            await session.execute(
                update(ConversationSession)
                .where(ConversationSession.id == session_id)
                .values(last_interaction_at=timestamp)
            )
        except Exception as e:
            logger.error("Error in ConversationSessionDao.updateLastInteraction. Error: %s", e)
            raise e
