"""
Learning Profile DAO

Data-access layer for `LearningProfile`: lazy creation (idempotent under
concurrent first requests via ``ON CONFLICT (reader_id) DO NOTHING``) and lookup
by reader. Incremental updates mutate the loaded ORM instance; the surrounding
`@transactional` unit flushes and commits them.
"""

import logging
from datetime import datetime, timezone
from typing import Optional
from uuid import uuid4

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from reading_companion.database.entities.learning_profile import LearningProfile
from reading_companion.database.helpers.upserts import dialect_insert

logger = logging.getLogger(__name__)


class LearningProfileDao:
    """
    Data Access Object (DAO) for reader learning profiles.
    """

    async def fetchProfileByReaderId(self, session: AsyncSession, reader_id: str) -> Optional[LearningProfile]:
        try:
            result = await session.execute(
                select(LearningProfile)
                .where(LearningProfile.reader_id == reader_id)
                .execution_options(populate_existing=True)
            )
            return result.scalar_one_or_none()
        except Exception as e:
            logger.error("Error in LearningProfileDao.fetchProfileByReaderId. Error: %s", e)
            raise e

    async def createProfileIfMissing(
        self,
        session: AsyncSession,
        reader_id: str,
        response_style: str,
        complexity_preference: str,
    ) -> LearningProfile:
        """
        Create the reader's profile with the given defaults unless one exists.

        Returns
        -------
        LearningProfile
            The existing or newly created profile.
        """
        try:
            now = datetime.now(timezone.utc)
            stmt = dialect_insert(session, LearningProfile).values(
                id=uuid4(),
                reader_id=reader_id,
                response_style=response_style,
                complexity_preference=complexity_preference,
                topic_affinities=[],
                total_interactions=0,
                feedback_count=0,
                created_at=now,
                updated_at=now,
            )
            await session.execute(stmt.on_conflict_do_nothing(index_elements=[LearningProfile.reader_id]))
            return await self.fetchProfileByReaderId(session, reader_id)
        except Exception as e:
            logger.error("Error in LearningProfileDao.createProfileIfMissing. Error: %s", e)
            raise e
