"""
Conversation Messages DAO

Purpose
-------
Data-access layer for the `ConversationMessage` ORM entity. Provides:
- Message creation (append-only)
- Retrieval by session (chronological, bounded to the latest N)
- Feedback updates (the only mutable column)
- Counting and feedback aggregation per session

Design
------
- Requires an active `AsyncSession` provided by the caller.
- Retrieval uses a subquery for "latest-first then re-order ascending" semantics,
  so a bounded window always holds the most recent turns, oldest-first.

Error Handling
--------------
- Methods catch generic `Exception`, log a message, and re-raise.
- `updateMessageFeedback` uses `.scalar_one()` which raises `NoResultFound`
  if the message doesn't exist.
"""

import logging
from typing import List, Optional
from uuid import UUID

from sqlalchemy import asc, desc, func, select
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm import aliased

from reading_companion.database.entities.messages import ConversationMessage

logger = logging.getLogger(__name__)


class ConversationMessageDao:
    """
    Data Access Object (DAO) for managing conversation messages.
    Provides methods to create, fetch, and update messages within sessions.
    """

    async def createMessage(self, session: AsyncSession, message: ConversationMessage) -> ConversationMessage:
        """
        Stage a new message record.

        Parameters
        ----------
        session : AsyncSession
            Active SQLAlchemy session.
        message : ConversationMessage
            Message entity instance to be added.

        Returns
        -------
        ConversationMessage
            The message object that was added.
        """
        try:
            session.add(message)
            return message
        except Exception as e:
            logger.error("Error in ConversationMessageDao.createMessage. Error: %s", e)
            raise e

    async def fetchMessageById(self, session: AsyncSession, message_id: UUID) -> Optional[ConversationMessage]:
        """Return the message with that id, or None."""
        try:
            result = await session.execute(
                select(ConversationMessage).where(ConversationMessage.id == message_id)
            )
            return result.scalar_one_or_none()
        except Exception as e:
            logger.error("Error in ConversationMessageDao.fetchMessageById (id=%s). Error: %s", message_id, e)
            raise e

    async def fetchMessagesBySessionId(
        self,
        session: AsyncSession,
        session_id: UUID,
        limit: Optional[int] = None,
        include_system: bool = False,
    ) -> List[ConversationMessage]:
        """
        Fetch the latest `limit` messages of a session, ordered by creation time (ascending).
        Internally, retrieves the latest messages first via a subquery,
        then re-orders them chronologically.

        Parameters
        ----------
        session : AsyncSession
            Active SQLAlchemy session.
        session_id : UUID
            Owning session.
        limit : int | None
            Window size; None returns the whole session.
        include_system : bool
            Keep ``system`` role messages.

        Returns
        -------
        list[ConversationMessage]
            Messages of that session only, oldest first.
        """
        try:
            query = select(ConversationMessage).where(ConversationMessage.session_id == session_id)
            if not include_system:
                query = query.where(ConversationMessage.role != "system")
            query = query.order_by(desc(ConversationMessage.created_at))
            if limit is not None:
                query = query.limit(limit)
            subq = query.subquery()

            recentMessages = aliased(ConversationMessage, subq)

            result = await session.execute(
                select(recentMessages).order_by(asc(recentMessages.created_at))
            )
            return list(result.scalars().all())
        except Exception as e:
            logger.error("Error in ConversationMessageDao.fetchMessagesBySessionId. Error: %s", e)
            raise e

    async def updateMessageFeedback(
        self, session: AsyncSession, message_id: UUID, feedback: str
    ) -> Optional[str]:
        """
        Set the feedback label of a message.

        Returns
        -------
        str | None
            The label held before the update, so callers can tell a repeat.

        Raises
        ------
        NoResultFound
            If the message doesn't exist.
        """
        try:
            result = await session.execute(
                select(ConversationMessage).where(ConversationMessage.id == message_id)
            )
            message = result.scalar_one()
            previous = message.feedback
            message.feedback = feedback
            return previous
        except Exception as e:
            logger.error("Error in ConversationMessageDao.updateMessageFeedback. Error: %s", e)
            raise e

    async def countMessagesBySessionId(self, session: AsyncSession, session_id: UUID) -> int:
        try:
            result = await session.execute(
                select(func.count(ConversationMessage.id)).where(ConversationMessage.session_id == session_id)
            )
            return int(result.scalar_one())
        except Exception as e:
            logger.error("Error in ConversationMessageDao.countMessagesBySessionId. Error: %s", e)
            raise e

    async def fetchFeedbackBySessionId(self, session: AsyncSession, session_id: UUID) -> List[str]:
        """All non-null feedback labels recorded in a session."""
        try:
            result = await session.execute(
                select(ConversationMessage.feedback).where(
                    ConversationMessage.session_id == session_id,
                    ConversationMessage.feedback.is_not(None),
                )
            )
            return list(result.scalars().all())
        except Exception as e:
            logger.error("Error in ConversationMessageDao.fetchFeedbackBySessionId. Error: %s", e)
            raise e
