"""
Pydantic models and enumerations used across the reading companion.

Each class defines the structure of data passed through the RAG pipeline or
exposed by API endpoints, ensuring validation and automatic OpenAPI schema
generation. The ordered enumerations (`ResponseStyle`, `ComplexityLevel`) are
declared shortest/simplest first; their declaration order is the scale used by
the learning profile transitions.
"""

from datetime import datetime
from enum import Enum
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, Field


class ReadingMode(str, Enum):
    FICTION = "fiction"
    NON_FICTION = "non-fiction"


class KnowledgeLens(str, Enum):
    LITERARY = "literary"
    KNOWLEDGE = "knowledge"


class UserTier(str, Enum):
    FREE = "FREE"
    PREMIUM = "PREMIUM"
    PRO = "PRO"


class MessageRole(str, Enum):
    """Sender of a conversation message; the reader is stored as ``user``."""
    USER = "user"
    ASSISTANT = "assistant"
    SYSTEM = "system"


class MessageKind(str, Enum):
    CHAT = "chat"
    QUICK_ACTION = "quick_action"
    FEEDBACK = "feedback"
    SYSTEM = "system"


class FeedbackLabel(str, Enum):
    HELPFUL = "helpful"
    TOO_LONG = "too_long"
    TOO_SHORT = "too_short"
    OFF_TOPIC = "off_topic"


class ContextType(str, Enum):
    TOPICS_DISCUSSED = "topics_discussed"
    USER_PREFERENCES = "user_preferences"
    READING_PROGRESS = "reading_progress"
    LEARNING_INSIGHTS = "learning_insights"


class ResponseStyle(str, Enum):
    CONCISE = "concise"
    BALANCED = "balanced"
    DETAILED = "detailed"
    COMPREHENSIVE = "comprehensive"


class ComplexityLevel(str, Enum):
    SIMPLE = "simple"
    MODERATE = "moderate"
    ADVANCED = "advanced"


class Engagement(str, Enum):
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"


class RAGContext(BaseModel):
    """
    Ephemeral request context passed through the pipeline (never persisted).
    """
    book_id: int
    """Book the reader is asking about; every retrieval is scoped to it."""
    reader_id: str
    """Identifier of the reader."""
    current_section_index: Optional[int] = None
    """Section (chunk) the reader currently has open, if known."""
    tier: UserTier = UserTier.FREE
    """Subscription tier of the reader."""
    reading_mode: ReadingMode = ReadingMode.FICTION
    """Fiction or non-fiction reading."""
    knowledge_lens: KnowledgeLens = KnowledgeLens.LITERARY
    """Interpretive lens: literary craft or knowledge extraction."""
    session_id: Optional[str] = None
    """Session id known to the caller; echoed back by the fallback path."""
    include_conversation_memory: bool = True
    """When False the prompt omits history, summary and personalization."""


class UserPreferences(BaseModel):
    response_style: ResponseStyle = ResponseStyle.BALANCED
    complexity_level: ComplexityLevel = ComplexityLevel.MODERATE
    interests: List[str] = Field(default_factory=list)


class ReadingProgress(BaseModel):
    current_section: Optional[int] = None
    key_insights: List[str] = Field(default_factory=list)
    questions_asked: List[str] = Field(default_factory=list)


class RelationshipContext(BaseModel):
    conversation_count: int = 0
    user_engagement: Engagement = Engagement.LOW
    satisfaction_score: float = 0.75


class ConversationMemory(BaseModel):
    """
    Synthesized memory snapshot of a session, used to personalize the prompt
    and returned to the caller alongside the response.
    """
    recent_topics: List[str] = Field(default_factory=list)
    user_preferences: UserPreferences = Field(default_factory=UserPreferences)
    reading_progress: ReadingProgress = Field(default_factory=ReadingProgress)
    relationship_context: RelationshipContext = Field(default_factory=RelationshipContext)


class RAGResponse(BaseModel):
    """
    Result of `generate_response`: the only contract the rest of the application needs.
    """
    response: str
    """Assistant text shown to the reader."""
    session_id: str
    """Active session id, or the caller's id / ``"fallback"`` on the degraded path."""
    message_id: str
    """Id of the persisted assistant message, or ``"fallback-<ms>"``."""
    memory_snapshot: Optional[ConversationMemory] = None
    """Memory used for this answer; None on the fallback path."""


class ChatRequest(BaseModel):
    """
    Body of ``POST /chat``.
    """
    query: str = Field(..., min_length=1)
    """The reader's question."""
    book_id: int
    reader_id: str
    current_section_index: Optional[int] = None
    tier: UserTier = UserTier.FREE
    reading_mode: ReadingMode = ReadingMode.FICTION
    knowledge_lens: KnowledgeLens = KnowledgeLens.LITERARY
    session_id: Optional[str] = None
    include_conversation_memory: bool = True

    def to_context(self) -> RAGContext:
        return RAGContext(**self.model_dump(exclude={"query"}))


class FeedbackRequest(BaseModel):
    """
    Body of ``POST /feedback``.
    """
    reader_id: str
    """Reader giving the feedback (owner of the learning profile)."""
    message_id: str
    """Assistant message being rated."""
    feedback: FeedbackLabel
    """One of helpful / too_long / too_short / off_topic."""


class FeedbackResult(BaseModel):
    success: bool
    feedback: FeedbackLabel
    timestamp: datetime


class MessageOut(BaseModel):
    id: str
    role: MessageRole
    content: str
    section_index: Optional[int] = None
    message_kind: MessageKind = MessageKind.CHAT
    feedback: Optional[FeedbackLabel] = None
    confidence_score: Optional[float] = None
    created_at: datetime


class ContextEntryOut(BaseModel):
    context_type: ContextType
    payload: Dict[str, Any]
    confidence_score: float
    last_updated: datetime


class SessionOut(BaseModel):
    id: str
    book_id: int
    reading_mode: ReadingMode
    knowledge_lens: KnowledgeLens
    tier: UserTier
    is_active: bool
    last_interaction_at: datetime


class SessionHistory(BaseModel):
    session_id: str
    messages: List[MessageOut]
    context: List[ContextEntryOut]
