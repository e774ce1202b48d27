"""Tests for the query heuristics."""

import pytest

from reading_companion.api.models import ComplexityLevel, Engagement
from reading_companion.api.query_analysis import (
    classify_complexity,
    engagement_for,
    estimate_confidence,
    extract_topics,
    mentions_progress,
    recent_questions,
    satisfaction_score,
)


class TestComplexity:

    @pytest.mark.parametrize(
        "query, expected",
        [
            ("What is a whale line?", ComplexityLevel.SIMPLE),
            ("Summarize this chapter", ComplexityLevel.SIMPLE),
            ("Who is Queequeg?", ComplexityLevel.SIMPLE),
            ("Compare Ahab and Starbuck", ComplexityLevel.ADVANCED),
            ("Critique the narrator's reliability", ComplexityLevel.ADVANCED),
            ("Why does Ishmael go to sea?", ComplexityLevel.MODERATE),
        ],
    )
    def test_keyword_classification(self, query, expected):
        assert classify_complexity(query) == expected

    def test_simple_markers_take_precedence(self):
        assert classify_complexity("What is the significance of the doubloon?") == ComplexityLevel.SIMPLE


class TestTopics:

    def test_extracts_taxonomy_tags_in_order(self):
        topics = extract_topics("How does the narrative voice shape the protagonist?")

        assert topics == ["character", "plot", "style"]

    def test_no_match_returns_empty_list(self):
        assert extract_topics("Hello there") == []

    def test_progress_mentions(self):
        assert mentions_progress("What happens in Chapter 3?")
        assert mentions_progress("explain this section")
        assert not mentions_progress("Who is Ahab?")


class TestScores:

    def test_satisfaction_defaults_when_unrated(self):
        assert satisfaction_score([]) == 0.75

    def test_satisfaction_is_mean_of_feedback_scores(self):
        assert satisfaction_score(["helpful", "off_topic"]) == pytest.approx(0.65)

    def test_unknown_labels_are_ignored(self):
        assert satisfaction_score(["helpful", "bogus"]) == 1.0

    @pytest.mark.parametrize(
        "count, expected",
        [(0, Engagement.LOW), (9, Engagement.LOW), (10, Engagement.MEDIUM), (20, Engagement.MEDIUM), (21, Engagement.HIGH)],
    )
    def test_engagement_tiers(self, count, expected):
        assert engagement_for(count) == expected

    def test_confidence_grows_with_coverage_and_is_capped(self):
        assert estimate_confidence(0, False) == 0.5
        assert estimate_confidence(2, False) == 0.7
        assert estimate_confidence(4, True) == 0.95
        assert estimate_confidence(10, True) == 0.95

    def test_recent_questions_keeps_last_five(self):
        messages = [f"question {i}?" for i in range(7)] + ["not a question"]

        assert recent_questions(messages) == [f"question {i}?" for i in range(2, 7)]
