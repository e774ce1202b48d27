"""
ConversationMessage ORM Model
=============================

The ``ConversationMessage`` ORM model represents a single turn within a
conversation session. Messages are append-only: the text content is never
updated, only the optional ``feedback`` label may be attached later.

Key features
~~~~~~~~~~~~
- UUID primary key (``id``)
- Foreign key reference to ``conversation_session.id`` (``session_id``), cascading on delete
- Sender role (``user`` | ``assistant`` | ``system``) and message kind
- Optional section-index context and free-form JSON metadata
- Optional feedback label and assistant confidence score
- Timezone-aware ``created_at`` timestamp (UTC), the ordering key of the history
"""

from datetime import datetime, timezone
from uuid import UUID

from sqlalchemy import JSON, TEXT, DateTime, Float, ForeignKey, Index, Integer, Uuid
from sqlalchemy.dialects.postgresql import JSONB
from sqlalchemy.orm import Mapped, mapped_column

from reading_companion.database.config.connection_engine import declarativeBase


class ConversationMessage(declarativeBase):
    """
    ORM model for the `conversation_message` table.

    Attributes
    ----------
    id : UUID
        Primary key.
    session_id : UUID
        Owning session.
    role : str
        ``user``, ``assistant`` or ``system``.
    content : str
        Message text (immutable).
    section_index : int | None
        Section the reader had open when the message was written.
    context_metadata : dict
        Free-form metadata (mode/lens/tier for reader turns; complexity,
        passages and memory snapshot for assistant turns).
    message_kind : str
        ``chat``, ``quick_action``, ``feedback`` or ``system``.
    quick_action_id : str | None
        Id of the quick action that produced the message, if any.
    feedback : str | None
        ``helpful`` / ``too_long`` / ``too_short`` / ``off_topic``.
    confidence_score : float | None
        Best-effort confidence of an assistant answer.
    created_at : datetime
        Creation time (UTC).
    """

    __tablename__ = "conversation_message"
    __table_args__ = (Index("ix_conversation_message_session_created", "session_id", "created_at"),)

    id: Mapped[UUID] = mapped_column(Uuid(as_uuid=True), primary_key=True)
    session_id: Mapped[UUID] = mapped_column(
        Uuid(as_uuid=True), ForeignKey("conversation_session.id", ondelete="CASCADE"), nullable=False
    )
    role: Mapped[str] = mapped_column(TEXT, nullable=False)
    content: Mapped[str] = mapped_column(TEXT, nullable=False)
    section_index: Mapped[int] = mapped_column(Integer, nullable=True)
    context_metadata: Mapped[dict] = mapped_column(JSON().with_variant(JSONB, "postgresql"), nullable=False, default=dict)
    message_kind: Mapped[str] = mapped_column(TEXT, nullable=False, default="chat")
    quick_action_id: Mapped[str] = mapped_column(TEXT, nullable=True)
    feedback: Mapped[str] = mapped_column(TEXT, nullable=True)
    confidence_score: Mapped[float] = mapped_column(Float, nullable=True)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=lambda: datetime.now(timezone.utc)
    )

    def __init__(
        self,
        message_id: UUID,
        session_id: UUID,
        role: str,
        content: str,
        created_at,
        section_index: int | None = None,
        context_metadata: dict | None = None,
        message_kind: str = "chat",
        quick_action_id: str | None = None,
        confidence_score: float | None = None,
        feedback: str | None = None,
    ):
        """
        Initialize a new ConversationMessage object.

        Parameters
        ----------
        created_at : datetime | str
            Creation timestamp. Accepts datetime or ISO8601 string.
        """
        self.id = message_id
        self.session_id = session_id
        self.role = role
        self.content = content
        self.section_index = section_index
        self.context_metadata = context_metadata or {}
        self.message_kind = message_kind
        self.quick_action_id = quick_action_id
        self.confidence_score = confidence_score
        self.feedback = feedback
        if isinstance(created_at, str):
            self.created_at = datetime.fromisoformat(created_at)
        else:
            self.created_at = created_at

    def __str__(self) -> str:
        return (
            f"Session: id:{self.session_id}, "
            f"role: {self.role}, "
            f"message: {self.content}, "
            f"time_created: {self.created_at}"
        )
