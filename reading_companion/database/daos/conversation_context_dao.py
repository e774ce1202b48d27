"""
Conversation Context DAO

Data-access layer for `ConversationContextEntry`. Writes are upserts keyed on the
``(session_id, context_type)`` unique constraint: last writer wins, no merging.
Requires an active `AsyncSession` provided by the caller; errors are logged and re-raised.
"""

import logging
from datetime import datetime, timezone
from typing import List, Optional
from uuid import UUID, uuid4

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from reading_companion.database.entities.context_entries import ConversationContextEntry
from reading_companion.database.helpers.upserts import dialect_insert

logger = logging.getLogger(__name__)


class ConversationContextDao:
    """
    Data Access Object (DAO) for typed conversation context entries.
    """

    async def upsertContextEntry(
        self,
        session: AsyncSession,
        session_id: UUID,
        context_type: str,
        payload: dict,
        confidence_score: float,
    ) -> ConversationContextEntry:
        """
        Insert or replace the single entry of (session, type).

        Returns
        -------
        ConversationContextEntry
            The stored row after the write.
        """
        try:
            stmt = dialect_insert(session, ConversationContextEntry).values(
                id=uuid4(),
                session_id=session_id,
                context_type=context_type,
                payload=payload,
                confidence_score=confidence_score,
                last_updated=datetime.now(timezone.utc),
            )
            stmt = stmt.on_conflict_do_update(
                index_elements=[ConversationContextEntry.session_id, ConversationContextEntry.context_type],
                set_={
                    "payload": stmt.excluded.payload,
                    "confidence_score": stmt.excluded.confidence_score,
                    "last_updated": stmt.excluded.last_updated,
                },
            )
            await session.execute(stmt)
            return await self.fetchContextEntry(session, session_id, context_type)
        except Exception as e:
            logger.error("Error in ConversationContextDao.upsertContextEntry. Error: %s", e)
            raise e

    async def fetchContextEntry(
        self, session: AsyncSession, session_id: UUID, context_type: str
    ) -> Optional[ConversationContextEntry]:
        try:
            result = await session.execute(
                select(ConversationContextEntry)
                .where(
                    ConversationContextEntry.session_id == session_id,
                    ConversationContextEntry.context_type == context_type,
                )
                .execution_options(populate_existing=True)
            )
            return result.scalar_one_or_none()
        except Exception as e:
            logger.error("Error in ConversationContextDao.fetchContextEntry. Error: %s", e)
            raise e

    async def fetchContextEntries(self, session: AsyncSession, session_id: UUID) -> List[ConversationContextEntry]:
        """All entries of a session, most recently updated first."""
        try:
            result = await session.execute(
                select(ConversationContextEntry)
                .where(ConversationContextEntry.session_id == session_id)
                .order_by(ConversationContextEntry.last_updated.desc())
                .execution_options(populate_existing=True)
            )
            return list(result.scalars().all())
        except Exception as e:
            logger.error("Error in ConversationContextDao.fetchContextEntries. Error: %s", e)
            raise e
