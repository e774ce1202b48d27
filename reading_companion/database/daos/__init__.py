"""
DAOs Package - Data Access Layer (SQLAlchemy 2.0, asyncio)
==========================================================

The `daos` package provides the Data Access Layer for the application.
It encapsulates all interactions with SQLAlchemy ORM entities, providing
clean CRUD APIs for the service layer while hiding direct query details.

Conventions
-----------
- SQLAlchemy 2.0 typed mappings (Mapped[...] / mapped_column)
- Every method takes an `AsyncSession`; its lifecycle (open/commit/rollback)
  is handled by callers (`@transactional`)
- DAOs surface exceptions so upper layers decide error policy
- Upserts go through the dialect `insert(...).on_conflict_*` constructs

Contents
--------
- ConversationSessionDao
    * Atomic get-or-create of the active (reader, book) session
    * Fetch by id / by reader, soft-close, bump last interaction

- ConversationMessageDao
    * Appends messages
    * Fetches the latest N messages of a session (chronological order)
    * Updates message feedback labels, counts and aggregates them

- ConversationContextDao
    * Upserts one typed entry per (session, context_type)

- LearningProfileDao
    * Lazily creates and fetches a reader's profile

- BookChunkDao
    * Reads the literal text of one book section
"""
