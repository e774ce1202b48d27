"""
ConversationContextEntry ORM Model
==================================

A typed fact synthesized from a conversation (topics discussed, reader
preferences, reading progress, learning insights), stored apart from the raw
messages in the ``conversation_context`` table.

The unique constraint on ``(session_id, context_type)`` makes every write an
upsert: one row per session and type, always holding the latest synthesis.
"""

from datetime import datetime, timezone
from uuid import UUID

from sqlalchemy import JSON, TEXT, DateTime, Float, ForeignKey, UniqueConstraint, Uuid
from sqlalchemy.dialects.postgresql import JSONB
from sqlalchemy.orm import Mapped, mapped_column

from reading_companion.database.config.connection_engine import declarativeBase


class ConversationContextEntry(declarativeBase):
    """
    ORM model for the `conversation_context` table.

    Attributes
    ----------
    id : UUID
        Primary key (kept from the first insert; upserts never replace it).
    session_id : UUID
        Owning session.
    context_type : str
        ``topics_discussed`` / ``user_preferences`` / ``reading_progress`` / ``learning_insights``.
    payload : dict
        Structured payload of the latest synthesis.
    confidence_score : float
        Confidence of the synthesis.
    last_updated : datetime
        Time of the last upsert (UTC).
    """

    __tablename__ = "conversation_context"
    __table_args__ = (UniqueConstraint("session_id", "context_type", name="uq_conversation_context_session_type"),)

    id: Mapped[UUID] = mapped_column(Uuid(as_uuid=True), primary_key=True)
    session_id: Mapped[UUID] = mapped_column(
        Uuid(as_uuid=True), ForeignKey("conversation_session.id", ondelete="CASCADE"), nullable=False
    )
    context_type: Mapped[str] = mapped_column(TEXT, nullable=False)
    payload: Mapped[dict] = mapped_column(JSON().with_variant(JSONB, "postgresql"), nullable=False, default=dict)
    confidence_score: Mapped[float] = mapped_column(Float, nullable=False, default=0.8)
    last_updated: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=lambda: datetime.now(timezone.utc)
    )

    def __str__(self) -> str:
        return f"Context: session:{self.session_id}, type: {self.context_type}, confidence: {self.confidence_score}"
