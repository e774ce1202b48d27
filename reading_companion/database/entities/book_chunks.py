"""
BookChunk ORM Model
===================

Read-only view of the ``book_chunk`` table filled by the ingestion pipeline:
one row per ``(book_id, chunk_index)`` holding the literal section text.
"""

from sqlalchemy import TEXT, Integer, UniqueConstraint
from sqlalchemy.orm import Mapped, mapped_column

from reading_companion.database.config.connection_engine import declarativeBase


class BookChunk(declarativeBase):
    """
    ORM model for the `book_chunk` table.

    Attributes
    ----------
    book_id : int
        Book the chunk belongs to.
    chunk_index : int
        Zero-based position of the section within the book.
    content : str
        Literal section text.
    """

    __tablename__ = "book_chunk"
    __table_args__ = (UniqueConstraint("book_id", "chunk_index", name="uq_book_chunk_book_index"),)

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    book_id: Mapped[int] = mapped_column(Integer, nullable=False)
    chunk_index: Mapped[int] = mapped_column(Integer, nullable=False)
    content: Mapped[str] = mapped_column(TEXT, nullable=False)
