"""
FastAPI Router - Chat • Feedback • Session History
==================================================

Purpose
-------
Thin HTTP surface over the reading companion core:
- ``POST /chat``: answer a reader question (`ResponseOrchestrator.generate_response`)
- ``POST /feedback``: rate an assistant message (`ResponseOrchestrator.record_feedback`)
- ``GET /sessions/{session_id}/messages``: message history + context entries of a session
- ``GET /readers/{reader_id}/sessions``: the reader's most recent sessions

Key Notes
---------
- Input validation via Pydantic models in `reading_companion.api.models` (422 on error).
- Collaborators are read from ``app.state`` through small dependency functions,
  which tests replace with ``app.dependency_overrides``.
- No authentication: callers are trusted to pass the right reader id.
"""

import logging
from typing import List

from fastapi import APIRouter, Depends, HTTPException, Query, Request
from sqlalchemy.exc import NoResultFound

from reading_companion.api.llm_pipeline import MessageNotFoundError, ResponseOrchestrator
from reading_companion.api.models import (
    ChatRequest,
    ContextEntryOut,
    FeedbackRequest,
    FeedbackResult,
    MessageOut,
    RAGResponse,
    SessionHistory,
    SessionOut,
)
from reading_companion.database.core.conversation_store import ConversationStore, as_uuid

logger = logging.getLogger(__name__)

router = APIRouter()
"""Creates the FastAPI router in which we define its routes"""


def get_orchestrator(request: Request) -> ResponseOrchestrator:
    return request.app.state.orchestrator


def get_store(request: Request) -> ConversationStore:
    return request.app.state.store


def to_message_out(message) -> MessageOut:
    return MessageOut(
        id=str(message.id),
        role=message.role,
        content=message.content,
        section_index=message.section_index,
        message_kind=message.message_kind,
        feedback=message.feedback,
        confidence_score=message.confidence_score,
        created_at=message.created_at,
    )


def to_session_out(conversation) -> SessionOut:
    return SessionOut(
        id=str(conversation.id),
        book_id=conversation.book_id,
        reading_mode=conversation.reading_mode,
        knowledge_lens=conversation.knowledge_lens,
        tier=conversation.tier,
        is_active=conversation.is_active,
        last_interaction_at=conversation.last_interaction_at,
    )


@router.post("/chat", response_model=RAGResponse)
async def chat(data: ChatRequest, orchestrator: ResponseOrchestrator = Depends(get_orchestrator)):
    """Answer a reader question.

    Request body:
        ChatRequest {query, book_id, reader_id, current_section_index?, tier, reading_mode,
        knowledge_lens, session_id?, include_conversation_memory}

    Response:
        200: RAGResponse. Failures of the model or the database still answer 200
        with the fallback response (``session_id`` "fallback" or the caller's id).
    """
    return await orchestrator.generate_response(data.query, data.to_context())


@router.post("/feedback", response_model=FeedbackResult)
async def feedback(data: FeedbackRequest, orchestrator: ResponseOrchestrator = Depends(get_orchestrator)):
    """Attach a feedback label to an assistant message; 404 for unknown messages."""
    try:
        return await orchestrator.record_feedback(data.reader_id, data.message_id, data.feedback)
    except MessageNotFoundError:
        raise HTTPException(status_code=404, detail="Message not found")


@router.get("/sessions/{session_id}/messages", response_model=SessionHistory)
async def session_messages(
    session_id: str,
    limit: int = Query(default=50, ge=1, le=500),
    include_system: bool = False,
    store: ConversationStore = Depends(get_store),
):
    """Message history (oldest first) and context entries of one session."""
    if as_uuid(session_id) is None:
        raise HTTPException(status_code=404, detail="Session not found")
    try:
        await store.get_session(session_id)
    except NoResultFound:
        raise HTTPException(status_code=404, detail="Session not found")

    messages = await store.get_history(session_id, limit=limit, include_system=include_system)
    entries = await store.get_context_entries(session_id)
    return SessionHistory(
        session_id=session_id,
        messages=[to_message_out(m) for m in messages],
        context=[
            ContextEntryOut(
                context_type=e.context_type,
                payload=e.payload,
                confidence_score=e.confidence_score,
                last_updated=e.last_updated,
            )
            for e in entries
        ],
    )


@router.get("/readers/{reader_id}/sessions", response_model=List[SessionOut])
async def reader_sessions(
    reader_id: str,
    limit: int = Query(default=10, ge=1, le=100),
    store: ConversationStore = Depends(get_store),
):
    """The reader's sessions, most recently used first."""
    sessions = await store.get_recent_sessions(reader_id, limit=limit)
    return [to_session_out(s) for s in sessions]
