"""Pytest fixtures for the reading companion tests."""

from typing import List, Optional

import pytest
import pytest_asyncio
from sqlalchemy import event

from reading_companion.api.llm_pipeline import CompletionError, ResponseOrchestrator
from reading_companion.api.prompt_utilities import PromptComposer
from reading_companion.api.retrieval import ChunkStoreAccessor, ContextRetriever, RetrievalError, ScoredChunk
from reading_companion.database.config.connection_engine import build_engine, build_session_factory, init_models
from reading_companion.database.core.conversation_store import ConversationStore
from reading_companion.database.core.learning_profile import LearningProfileManager
from reading_companion.database.entities.book_chunks import BookChunk

TIER_MODELS = {"FREE": "model-free", "PREMIUM": "model-premium", "PRO": "model-pro"}


class FakeEmbeddingClient:
    """In-memory stand-in for `EmbeddingClient.search`, scoped by book like the real one."""

    def __init__(self, chunks: Optional[List[dict]] = None, fail: bool = False):
        self.chunks = chunks or []
        self.fail = fail
        self.calls = []

    async def search(self, text, book_id, top_k, reader_id=None):
        self.calls.append({"text": text, "book_id": book_id, "top_k": top_k, "reader_id": reader_id})
        if self.fail:
            raise RetrievalError("embedding service unavailable")
        matches = [c for c in self.chunks if c["book_id"] == book_id]
        return [
            ScoredChunk(id=f"{c['book_id']}-{c['chunk_index']}", score=1.0 - 0.1 * i, metadata=dict(c))
            for i, c in enumerate(matches[:top_k])
        ]


class FakeCompletion:
    """Completion service returning scripted outcomes (text, or an exception to raise)."""

    def __init__(self, *outcomes):
        self.outcomes = list(outcomes) or ["A grounded answer about the book."]
        self.calls = []

    async def complete(self, messages, model, max_tokens):
        self.calls.append({"messages": messages, "model": model, "max_tokens": max_tokens})
        outcome = self.outcomes.pop(0) if len(self.outcomes) > 1 else self.outcomes[0]
        if isinstance(outcome, Exception):
            raise outcome
        return outcome


@pytest_asyncio.fixture
async def engine(tmp_path):
    """File-backed SQLite engine; BEGIN IMMEDIATE makes concurrent sessions serialize."""
    engine = build_engine(f"sqlite+aiosqlite:///{tmp_path / 'companion.db'}")

    @event.listens_for(engine.sync_engine, "connect")
    def _disable_driver_transactions(dbapi_connection, connection_record):
        dbapi_connection.isolation_level = None

    @event.listens_for(engine.sync_engine, "begin")
    def _begin_immediate(conn):
        conn.exec_driver_sql("BEGIN IMMEDIATE")

    await init_models(engine)
    yield engine
    await engine.dispose()


@pytest.fixture
def session_factory(engine):
    return build_session_factory(engine)


@pytest.fixture
def store(session_factory):
    return ConversationStore(session_factory)


@pytest.fixture
def profiles(session_factory):
    return LearningProfileManager(session_factory)


@pytest.fixture
def chunk_store(session_factory):
    return ChunkStoreAccessor(session_factory)


@pytest.fixture
def add_chunks(session_factory):
    """Insert `{index: text}` sections of a book into the chunk table."""

    async def _add(book_id: int, sections: dict):
        async with session_factory() as session:
            session.add_all(
                [BookChunk(book_id=book_id, chunk_index=index, content=text) for index, text in sections.items()]
            )
            await session.commit()

    return _add


@pytest.fixture
def make_orchestrator(store, profiles, chunk_store):
    """Build an orchestrator over the test database with fake external services."""

    def _make(embedding=None, completion=None, max_chunks: int = 5):
        retriever = ContextRetriever(chunk_store, embedding or FakeEmbeddingClient(), max_chunks=max_chunks)
        return ResponseOrchestrator(
            store=store,
            profiles=profiles,
            retriever=retriever,
            composer=PromptComposer("Lio", recent_turns=6),
            completion=completion or FakeCompletion(),
            tier_models=TIER_MODELS,
            history_window=20,
        )

    return _make


@pytest.fixture
def completion_error():
    return CompletionError("model endpoint down")
