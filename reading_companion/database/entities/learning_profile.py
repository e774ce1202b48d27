"""
LearningProfile ORM Model
=========================

Reader-scoped (not session-scoped) adaptive record stored in the
``learning_profile`` table: one row per reader, created lazily with neutral
defaults and mutated incrementally after every exchange and every feedback.

``topic_affinities`` is a JSON list of ``{"topic", "count", "last_seen"}``
objects, kept to the top 5 by count (ties: most recent ``last_seen`` first).
"""

from datetime import datetime, timezone
from uuid import UUID

from sqlalchemy import JSON, TEXT, DateTime, Integer, Uuid
from sqlalchemy.dialects.postgresql import JSONB
from sqlalchemy.orm import Mapped, mapped_column

from reading_companion.database.config.connection_engine import declarativeBase


class LearningProfile(declarativeBase):
    """
    ORM model for the `learning_profile` table.

    Attributes
    ----------
    reader_id : str
        Unique owner of the profile.
    response_style : str
        ``concise`` / ``balanced`` / ``detailed`` / ``comprehensive``.
    complexity_preference : str
        ``simple`` / ``moderate`` / ``advanced``.
    topic_affinities : list[dict]
        Bounded top-N topic list.
    total_interactions : int
        Completed exchanges.
    feedback_count : int
        Explicit feedback events applied.
    """

    __tablename__ = "learning_profile"

    id: Mapped[UUID] = mapped_column(Uuid(as_uuid=True), primary_key=True)
    reader_id: Mapped[str] = mapped_column(TEXT, nullable=False, unique=True)
    response_style: Mapped[str] = mapped_column(TEXT, nullable=False, default="balanced")
    complexity_preference: Mapped[str] = mapped_column(TEXT, nullable=False, default="moderate")
    topic_affinities: Mapped[list] = mapped_column(
        JSON().with_variant(JSONB, "postgresql"), nullable=False, default=list
    )
    total_interactions: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    feedback_count: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=lambda: datetime.now(timezone.utc)
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=lambda: datetime.now(timezone.utc)
    )

    @property
    def top_topics(self) -> list[str]:
        return [item["topic"] for item in self.topic_affinities or []]

    def __str__(self) -> str:
        return (
            f"Profile: reader:{self.reader_id}, style: {self.response_style}, "
            f"complexity: {self.complexity_preference}, topics: {self.top_topics}"
        )
