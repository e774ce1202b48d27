"""
Lightweight keyword heuristics over reader queries.

Everything here is pure and synchronous: complexity classification, topic
tagging with a small replaceable taxonomy, reading-progress detection, and the
scores derived from conversation state (satisfaction, engagement, confidence).
"""

from typing import Dict, Iterable, List

from reading_companion.api.models import ComplexityLevel, Engagement, FeedbackLabel

SIMPLE_MARKERS = ("what is", "who is", "summarize")
ADVANCED_MARKERS = ("analyze", "compare", "evaluate", "critique", "interpret", "significance")

TOPIC_TAXONOMY: Dict[str, tuple] = {
    "character": ("character", "protagonist", "antagonist", "personality", "motivation"),
    "theme": ("theme", "meaning", "message", "symbolism", "metaphor"),
    "plot": ("plot", "story", "narrative", "events", "sequence"),
    "style": ("style", "writing", "language", "tone", "voice"),
    "context": ("context", "historical", "background", "setting", "period"),
    "analysis": ("analyze", "examine", "evaluate", "critique", "interpret"),
    "concept": ("concept", "idea", "argument", "theory", "framework"),
}
"""Topic tag → trigger keywords. Order is the order tags are reported in."""

PROGRESS_MARKERS = ("chapter", "section")

FEEDBACK_SCORES = {
    FeedbackLabel.HELPFUL: 1.0,
    FeedbackLabel.TOO_LONG: 0.6,
    FeedbackLabel.TOO_SHORT: 0.7,
    FeedbackLabel.OFF_TOPIC: 0.3,
}
DEFAULT_SATISFACTION = 0.75


def classify_complexity(query: str) -> ComplexityLevel:
    """
    Classify a query into simple / moderate / advanced.

    Simple markers win over advanced ones ("what is the significance ..." is simple).
    """
    lowered = query.lower()
    if any(marker in lowered for marker in SIMPLE_MARKERS):
        return ComplexityLevel.SIMPLE
    if any(marker in lowered for marker in ADVANCED_MARKERS):
        return ComplexityLevel.ADVANCED
    return ComplexityLevel.MODERATE


def extract_topics(text: str) -> List[str]:
    """Return the taxonomy tags whose keywords occur in `text`."""
    lowered = text.lower()
    return [
        topic
        for topic, keywords in TOPIC_TAXONOMY.items()
        if any(keyword in lowered for keyword in keywords)
    ]


def mentions_progress(query: str) -> bool:
    lowered = query.lower()
    return any(marker in lowered for marker in PROGRESS_MARKERS)


def satisfaction_score(labels: Iterable[str]) -> float:
    """Mean feedback score of a session; the neutral default when nothing was rated."""
    scores = []
    for label in labels:
        try:
            scores.append(FEEDBACK_SCORES[FeedbackLabel(label)])
        except ValueError:
            continue
    if not scores:
        return DEFAULT_SATISFACTION
    return round(sum(scores) / len(scores), 4)


def engagement_for(message_count: int) -> Engagement:
    if message_count > 20:
        return Engagement.HIGH
    if message_count >= 10:
        return Engagement.MEDIUM
    return Engagement.LOW


def recent_questions(reader_messages: Iterable[str], limit: int = 5) -> List[str]:
    """Last `limit` reader messages that are questions, oldest first."""
    questions = [text for text in reader_messages if "?" in text]
    return questions[-limit:]


def estimate_confidence(passage_count: int, current_section_found: bool) -> float:
    """
    Best-effort answer confidence from retrieval coverage.

    0.5 with no passages, +0.1 per passage (up to 4), +0.05 when the current
    section was included, capped at 0.95.
    """
    score = 0.5 + 0.1 * min(passage_count, 4)
    if current_section_found:
        score += 0.05
    return round(min(score, 0.95), 2)
