"""
The `helpers` package provides utility functions and decorators
that support database operations and cross-cutting concerns.

Contents
--------
- transactionManagement
    Provides tools for database transaction management:
        - Context variable (`db_session_context`) for propagating the active session across coroutine calls without explicit passing
        - `@transactional` decorator for wrapping service methods in a managed transaction:
            - Reuses an existing session if one is active in context
            - Creates, commits, and closes a new session otherwise
            - Rolls back the session on errors
- upserts
    Picks the PostgreSQL or SQLite `insert` construct from the session's dialect,
    so DAOs can issue `INSERT .. ON CONFLICT` statements on both backends.
"""
