"""
Entities Package - SQLAlchemy 2.0 ORM Models (UUID + UTC)
=========================================================

The `entities` package defines the ORM models of the application, mapping
database tables to Python classes using SQLAlchemy 2.0-typed mappings.
These classes are consumed by DAOs (`daos` package).

Tech Stack & Conventions
------------------------
- PostgreSQL in production (JSONB variants), SQLite in tests
- Generic `Uuid` identifiers, timezone-aware timestamps (UTC)
- SQLAlchemy 2.0 style `Mapped[...]` + `mapped_column(...)`

Contents
--------
- ConversationSession
    One dialogue thread per (reader, book); at most one active at a time
    (partial unique index).
- ConversationMessage
    Append-only turn within a session; optional feedback label.
- ConversationContextEntry
    Typed synthesized fact; unique per (session, context_type).
- LearningProfile
    Reader-scoped adaptive preferences and counters.
- BookChunk
    Literal section text produced by ingestion (read-only here).
"""

from reading_companion.database.entities.book_chunks import BookChunk
from reading_companion.database.entities.context_entries import ConversationContextEntry
from reading_companion.database.entities.learning_profile import LearningProfile
from reading_companion.database.entities.messages import ConversationMessage
from reading_companion.database.entities.sessions import ConversationSession

__all__ = [
    "BookChunk",
    "ConversationContextEntry",
    "ConversationMessage",
    "ConversationSession",
    "LearningProfile",
]
