"""
Learning Profile Manager - per-reader adaptive preferences.

The profile is created lazily with neutral defaults (balanced / moderate) and
mutated incrementally:

- after every completed exchange: topic affinities and interaction counter;
- after explicit feedback: response style and complexity preference, through
  the transition functions below.

Transitions are table-driven over the ordered enums ``ResponseStyle`` and
``ComplexityLevel`` so the step size and the bounds are explicit:

=============  ==================================================
feedback       effect
=============  ==================================================
too_long       style one notch shorter (clamped at ``concise``)
too_short      style one notch longer (clamped at ``comprehensive``)
helpful        complexity one notch toward the query's complexity,
               only if it is within ``max_step`` of the preference
off_topic      no change
=============  ==================================================

Every public method is best-effort: persistence errors are logged and
swallowed, never surfaced to the response path.
"""

import logging
from datetime import datetime, timezone
from typing import Dict, Iterable, List, Optional

from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from reading_companion.api.models import ComplexityLevel, FeedbackLabel, ResponseStyle
from reading_companion.api.query_analysis import extract_topics
from reading_companion.database.daos.learning_profile_dao import LearningProfileDao
from reading_companion.database.entities.learning_profile import LearningProfile
from reading_companion.database.helpers.transactionManagement import transactional

logger = logging.getLogger(__name__)

TOPIC_AFFINITY_LIMIT = 5

STYLE_SCALE: List[ResponseStyle] = list(ResponseStyle)
COMPLEXITY_SCALE: List[ComplexityLevel] = list(ComplexityLevel)

STYLE_STEPS: Dict[FeedbackLabel, int] = {
    FeedbackLabel.TOO_LONG: -1,
    FeedbackLabel.TOO_SHORT: +1,
    FeedbackLabel.HELPFUL: 0,
    FeedbackLabel.OFF_TOPIC: 0,
}
"""Feedback label → move on the style scale (negative is shorter)."""

COMPLEXITY_ADAPTING_FEEDBACK = frozenset({FeedbackLabel.HELPFUL})


def _clamp(index: int, size: int) -> int:
    return max(0, min(size - 1, index))


def next_response_style(current: str, label: str) -> ResponseStyle:
    """Apply one feedback label to a response style; never leaves the scale."""
    style = ResponseStyle(current)
    step = STYLE_STEPS[FeedbackLabel(label)]
    position = _clamp(STYLE_SCALE.index(style) + step, len(STYLE_SCALE))
    return STYLE_SCALE[position]


def next_complexity(current: str, observed: Optional[str], label: str, max_step: int = 1) -> ComplexityLevel:
    """
    Move the complexity preference one notch toward `observed`.

    Only ``helpful`` feedback adapts, and only when `observed` lies within
    `max_step` positions of the current preference.
    """
    preference = ComplexityLevel(current)
    if observed is None or FeedbackLabel(label) not in COMPLEXITY_ADAPTING_FEEDBACK:
        return preference
    here = COMPLEXITY_SCALE.index(preference)
    target = COMPLEXITY_SCALE.index(ComplexityLevel(observed))
    distance = abs(target - here)
    if distance == 0 or distance > max_step:
        return preference
    step = 1 if target > here else -1
    return COMPLEXITY_SCALE[_clamp(here + step, len(COMPLEXITY_SCALE))]


def merge_topic_affinities(
    affinities: Iterable[dict], topics: Iterable[str], sequence: int, limit: int = TOPIC_AFFINITY_LIMIT
) -> List[dict]:
    """
    Count `topics` into `affinities` and keep the top `limit`.

    Ordering is by count, ties broken by the most recent ``last_seen`` sequence.
    Returns a new list; the input is not mutated.
    """
    merged = {item["topic"]: dict(item) for item in affinities}
    for topic in topics:
        entry = merged.setdefault(topic, {"topic": topic, "count": 0, "last_seen": sequence})
        entry["count"] += 1
        entry["last_seen"] = sequence
    ranked = sorted(merged.values(), key=lambda item: (-item["count"], -item["last_seen"]))
    return ranked[:limit]


def default_profile(reader_id: str) -> LearningProfile:
    """Transient neutral profile used when the stored one cannot be read."""
    return LearningProfile(
        reader_id=reader_id,
        response_style=ResponseStyle.BALANCED.value,
        complexity_preference=ComplexityLevel.MODERATE.value,
        topic_affinities=[],
        total_interactions=0,
        feedback_count=0,
    )


class LearningProfileManager:
    """
    Reads and incrementally updates reader learning profiles.

    Parameters
    ----------
    session_factory : async_sessionmaker[AsyncSession]
        Factory used by `@transactional`.
    complexity_max_step : int
        Largest distance on the complexity scale a helpful feedback may bridge.
    """

    def __init__(self, session_factory: async_sessionmaker[AsyncSession], complexity_max_step: int = 1):
        self.session_factory = session_factory
        self.complexity_max_step = complexity_max_step
        self.profile_dao = LearningProfileDao()

    async def get_or_create(self, reader_id: str) -> LearningProfile:
        """Return the reader's profile, creating it with neutral defaults on first use."""
        try:
            return await self._get_or_create(reader_id)
        except Exception:
            logger.exception("Could not load learning profile for reader %s; using defaults", reader_id[:8])
            return default_profile(reader_id)

    async def update_from_exchange(self, reader_id: str, query: str, response: str = "") -> Optional[LearningProfile]:
        """Record one completed exchange: topic affinities and the interaction counter."""
        try:
            return await self._apply_exchange(reader_id, query)
        except Exception:
            logger.exception("Learning profile update failed for reader %s", reader_id[:8])
            return None

    async def update_from_feedback(
        self, reader_id: str, label, query_complexity: Optional[str] = None
    ) -> Optional[LearningProfile]:
        """Adapt style and complexity from one explicit feedback label."""
        try:
            return await self._apply_feedback(reader_id, FeedbackLabel(label), query_complexity)
        except Exception:
            logger.exception("Learning profile feedback update failed for reader %s", reader_id[:8])
            return None

    @transactional
    async def _get_or_create(self, reader_id: str, session: AsyncSession = None) -> LearningProfile:
        profile = await self.profile_dao.fetchProfileByReaderId(session, reader_id)
        if profile is None:
            profile = await self.profile_dao.createProfileIfMissing(
                session,
                reader_id,
                response_style=ResponseStyle.BALANCED.value,
                complexity_preference=ComplexityLevel.MODERATE.value,
            )
            logger.info("Created learning profile for reader %s", reader_id[:8])
        return profile

    @transactional
    async def _apply_exchange(self, reader_id: str, query: str, session: AsyncSession = None) -> LearningProfile:
        profile = await self._get_or_create(reader_id)
        sequence = profile.total_interactions + 1
        profile.topic_affinities = merge_topic_affinities(
            profile.topic_affinities or [], extract_topics(query), sequence
        )
        profile.total_interactions = sequence
        profile.updated_at = datetime.now(timezone.utc)
        return profile

    @transactional
    async def _apply_feedback(
        self,
        reader_id: str,
        label: FeedbackLabel,
        query_complexity: Optional[str],
        session: AsyncSession = None,
    ) -> LearningProfile:
        profile = await self._get_or_create(reader_id)
        style = next_response_style(profile.response_style, label)
        complexity = next_complexity(
            profile.complexity_preference, query_complexity, label, self.complexity_max_step
        )
        if style.value != profile.response_style or complexity.value != profile.complexity_preference:
            logger.info(
                "Reader %s profile adapted on %s: style %s -> %s, complexity %s -> %s",
                reader_id[:8], label.value, profile.response_style, style.value,
                profile.complexity_preference, complexity.value,
            )
        profile.response_style = style.value
        profile.complexity_preference = complexity.value
        profile.feedback_count = profile.feedback_count + 1
        profile.updated_at = datetime.now(timezone.utc)
        return profile
