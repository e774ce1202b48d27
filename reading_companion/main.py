"""
FastAPI application bootstrap with: \n
- Lifespan-managed construction of every collaborator (engine, store, profiles,
  retriever, completion client, orchestrator), attached to ``app.state`` \n
- CORS configured for the frontend \n

Environment contract (from `settings`): \n
- DATABASE_URL: async SQLAlchemy URL. \n
- CREATE_TABLES: if True, create missing tables during startup (dev only). \n
- VECTOR_INDEX_DIR: persisted LlamaIndex storage directory. \n
- FRONTEND_URL: allowed CORS origin. \n
"""

import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from reading_companion.api.fast_api import router
from reading_companion.api.llm_pipeline import CompletionClient, ResponseOrchestrator
from reading_companion.api.prompt_utilities import PromptComposer
from reading_companion.api.retrieval import ChunkStoreAccessor, ContextRetriever, EmbeddingClient
from reading_companion.database.config.config import settings
from reading_companion.database.config.connection_engine import build_engine, build_session_factory, init_models
from reading_companion.database.core.conversation_store import ConversationStore
from reading_companion.database.core.learning_profile import LearningProfileManager

logger = logging.getLogger("uvicorn")
"""Logger instance for capturing and emitting Uvicorn server logs."""


def build_orchestrator(session_factory, embedding_client, completion_client) -> ResponseOrchestrator:
    """Wire the pipeline from `settings` around the given external clients."""
    store = ConversationStore(session_factory)
    return ResponseOrchestrator(
        store=store,
        profiles=LearningProfileManager(session_factory, settings.COMPLEXITY_ADAPTATION_MAX_STEP),
        retriever=ContextRetriever(
            ChunkStoreAccessor(session_factory),
            embedding_client,
            max_chunks=settings.MAX_CONTEXT_CHUNKS,
            personalized=settings.PERSONALIZED_INDEX,
        ),
        composer=PromptComposer(settings.ASSISTANT_NAME, settings.RECENT_TURNS),
        completion=completion_client,
        tier_models={tier: settings.model_for_tier(tier) for tier in ("FREE", "PREMIUM", "PRO")},
        history_window=settings.HISTORY_WINDOW,
    )


@asynccontextmanager
async def lifespan(app: FastAPI):
    """
    App lifespan manager.

    Notes
    ------------
    - On startup (before yielding): build the async engine and session factory,
      optionally create tables, load the vector index and construct the orchestrator.
    - On shutdown (after yielding): dispose of the engine's connection pool.
    """
    engine = build_engine(settings.DATABASE_URL, pool_pre_ping=True)
    if settings.CREATE_TABLES:
        await init_models(engine)
        logger.info("Database tables ensured.")

    session_factory = build_session_factory(engine)
    logger.info("Loading vector index...")
    orchestrator = build_orchestrator(
        session_factory,
        EmbeddingClient.from_settings(settings),
        CompletionClient.from_settings(settings),
    )
    app.state.store = orchestrator.store
    app.state.orchestrator = orchestrator
    logger.info("Reading companion pipeline ready.")

    try:
        yield
    finally:
        await engine.dispose()
        logger.info("Database engine disposed.")


# Instantiate the FastAPI app with lifespan handler
app = FastAPI(title="Reading Companion", lifespan=lifespan)
"""FastAPI application object; the lifespan handler builds the pipeline on startup."""

# -----------------------
# CORS configuration
# -----------------------
app.add_middleware(
    CORSMiddleware,
    allow_origins=[settings.FRONTEND_URL],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

# -----------------------
# API routes
# -----------------------
app.include_router(router)
