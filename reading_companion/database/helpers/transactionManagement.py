"""
Database Transaction Management
===============================

Async unit-of-work helper for the store classes. A context variable carries
the active `AsyncSession`, so nested store calls made by one coroutine share
a single transaction instead of each opening their own.

Key features
~~~~~~~~~~~~
- Active session kept per asyncio task
- Nested calls join the outer transaction
- Commit on success, rollback and re-raise on error
- Session factory taken from the owning object (``self.session_factory``)

"""

import contextvars
from functools import wraps

# --------------------------------------------------------------------
# Context variable to store the current database session.
# asyncio tasks copy the context on creation, so concurrent requests
# never share a session.
# --------------------------------------------------------------------
db_session_context = contextvars.ContextVar("db_session_context", default=None)
"""Context variable storing the active SQLAlchemy AsyncSession."""


def transactional(func):
    """
    Decorator to wrap service coroutines in a managed SQLAlchemy transaction.

    Ensures that:
    - If a session already exists in context, it is reused.
    - Otherwise, a new session is created from ``self.session_factory``,
      committed, and closed.
    - On errors, the session is rolled back and closed, and the error re-raised.

    Parameters
    ----------
    func : coroutine function
        A method of a service object exposing ``session_factory``. It must accept
        a `session` keyword argument.

    Returns
    -------
    coroutine function
        The wrapped method, executed within a database transaction.

    Example
    -------
    >>> class Store:
    ...     def __init__(self, session_factory):
    ...         self.session_factory = session_factory
    ...
    ...     @transactional
    ...     async def add(self, row, session=None):
    ...         session.add(row)
    ...         return row
    """
    @wraps(func)
    async def wrap_func(self, *args, **kwargs):
        # Try to get an existing session from context
        session = db_session_context.get()
        if session is not None:
            return await func(self, *args, session=session, **kwargs)

        # Create a new session if none exists
        session = self.session_factory()
        token = db_session_context.set(session)

        try:
            result = await func(self, *args, session=session, **kwargs)
            await session.flush()   # Push pending changes
            await session.commit()  # Commit transaction
        except Exception:
            await session.rollback()
            raise
        finally:
            await session.close()
            db_session_context.reset(token)

        return result

    return wrap_func
