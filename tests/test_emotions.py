"""
Tests for prosody ranking on transcript messages.
"""

import fakes  # noqa: F401  (puts src on sys.path)
import pytest

from session.emotions import extract_top_emotions
from session.models import EmotionScore


def test_top_three_descending():
    scores = {"joy": 0.91, "calm": 0.40, "anger": 0.12, "sadness": 0.05}

    top = extract_top_emotions(scores)

    assert top == [
        EmotionScore("joy", 0.91),
        EmotionScore("calm", 0.40),
        EmotionScore("anger", 0.12),
    ]


def test_formatted_two_decimals():
    top = extract_top_emotions({"joy": 0.9149, "calm": 0.4})

    assert [e.formatted for e in top] == ["0.91", "0.40"]


@pytest.mark.parametrize("magnitude, expected", [(0.125, "0.13"), (0.625, "0.63"), (0.5, "0.50")])
def test_formatted_rounds_half_up(magnitude, expected):
    assert EmotionScore("joy", magnitude).formatted == expected


def test_fewer_scores_than_limit():
    assert extract_top_emotions({"interest": 0.3}) == [EmotionScore("interest", 0.3)]


def test_ties_keep_input_order():
    scores = {"awe": 0.5, "calm": 0.5, "joy": 0.5, "pride": 0.5}

    top = extract_top_emotions(scores)

    assert [e.label for e in top] == ["awe", "calm", "joy"]


def test_missing_or_empty_scores():
    assert extract_top_emotions(None) == []
    assert extract_top_emotions({}) == []


def test_custom_limit():
    scores = {"joy": 0.9, "calm": 0.4, "anger": 0.1}

    assert [e.label for e in extract_top_emotions(scores, limit=1)] == ["joy"]
    assert extract_top_emotions(scores, limit=0) == []
