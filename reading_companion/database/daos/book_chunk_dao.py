"""
Book Chunk DAO

Read-only lookups of section text produced by the ingestion pipeline.
"""

import logging
from typing import Optional

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from reading_companion.database.entities.book_chunks import BookChunk

logger = logging.getLogger(__name__)


class BookChunkDao:

    async def fetchChunkContent(self, session: AsyncSession, book_id: int, chunk_index: int) -> Optional[str]:
        """Return the text of section `chunk_index` of `book_id`, or None when absent."""
        try:
            result = await session.execute(
                select(BookChunk.content).where(
                    BookChunk.book_id == book_id,
                    BookChunk.chunk_index == chunk_index,
                )
            )
            return result.scalar_one_or_none()
        except Exception as e:
            logger.error("Error in BookChunkDao.fetchChunkContent. Error: %s", e)
            raise e
