"""
ConversationSession ORM Model
=============================

The ``ConversationSession`` ORM model represents one ongoing dialogue thread
between a reader and the assistant about a specific book, stored in the
``conversation_session`` table.

Key features
~~~~~~~~~~~~
- UUID primary key (``id``)
- Reader / book identity (``reader_id``, ``book_id``)
- Reading mode, interpretive lens and subscription tier the session runs under
- Soft-close flag (``is_active``); sessions are never hard-deleted
- Timezone-aware ``last_interaction_at`` timestamp (UTC)

Integrity
~~~~~~~~~
A partial unique index over ``(reader_id, book_id) WHERE is_active`` guarantees
at most one active session per reader and book. The conversation store relies on
it as the conflict target of its atomic get-or-create upsert; the predicate text
for each dialect is exported as ``ACTIVE_SESSION_PREDICATES``.
"""

from datetime import datetime, timezone
from uuid import UUID

from sqlalchemy import TEXT, Boolean, DateTime, Index, Integer, Uuid, text
from sqlalchemy.orm import Mapped, mapped_column

from reading_companion.database.config.connection_engine import declarativeBase

ACTIVE_SESSION_PREDICATES = {
    "postgresql": "is_active",
    "sqlite": "is_active = 1",
}
"""Dialect-specific predicate of the partial unique index on active sessions."""


class ConversationSession(declarativeBase):
    """
    ORM model for the `conversation_session` table.

    Attributes
    ----------
    id : UUID
        Primary key.
    reader_id : str
        Owner of the session.
    book_id : int
        Book the conversation is about.
    reading_mode : str
        ``fiction`` or ``non-fiction``.
    knowledge_lens : str
        ``literary`` or ``knowledge``.
    tier : str
        ``FREE`` / ``PREMIUM`` / ``PRO``.
    session_title : str | None
        Optional human-readable title.
    is_active : bool
        True while the session is the reader's current thread for the book.
    last_interaction_at : datetime
        Bumped when mode/lens/tier change and on every appended message.
    created_at : datetime
        Creation time (UTC).
    """

    __tablename__ = "conversation_session"
    __table_args__ = (
        Index(
            "uq_conversation_session_active_reader_book",
            "reader_id",
            "book_id",
            unique=True,
            postgresql_where=text(ACTIVE_SESSION_PREDICATES["postgresql"]),
            sqlite_where=text(ACTIVE_SESSION_PREDICATES["sqlite"]),
        ),
        Index("ix_conversation_session_reader_last", "reader_id", "last_interaction_at"),
    )

    id: Mapped[UUID] = mapped_column(Uuid(as_uuid=True), primary_key=True)
    reader_id: Mapped[str] = mapped_column(TEXT, nullable=False)
    book_id: Mapped[int] = mapped_column(Integer, nullable=False)
    reading_mode: Mapped[str] = mapped_column(TEXT, nullable=False)
    knowledge_lens: Mapped[str] = mapped_column(TEXT, nullable=False)
    tier: Mapped[str] = mapped_column(TEXT, nullable=False)
    session_title: Mapped[str] = mapped_column(TEXT, nullable=True)
    is_active: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)
    last_interaction_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=lambda: datetime.now(timezone.utc)
    )
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=lambda: datetime.now(timezone.utc)
    )

    def __init__(
        self,
        session_id: UUID,
        reader_id: str,
        book_id: int,
        reading_mode: str,
        knowledge_lens: str,
        tier: str,
        is_active: bool = True,
        last_interaction_at: datetime | None = None,
        session_title: str | None = None,
    ):
        now = datetime.now(timezone.utc)
        self.id = session_id
        self.reader_id = reader_id
        self.book_id = book_id
        self.reading_mode = reading_mode
        self.knowledge_lens = knowledge_lens
        self.tier = tier
        self.is_active = is_active
        self.session_title = session_title
        self.last_interaction_at = last_interaction_at or now
        self.created_at = now

    def __str__(self) -> str:
        return (
            f"Session: id:{self.id}, reader: {self.reader_id}, book: {self.book_id}, "
            f"mode: {self.reading_mode}/{self.knowledge_lens}, tier: {self.tier}, active: {self.is_active}"
        )
