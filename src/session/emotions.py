"""Top-N prosody extraction for transcript messages."""

from collections.abc import Mapping

from .models import EmotionScore


def extract_top_emotions(scores: Mapping[str, float] | None, limit: int = 3) -> list[EmotionScore]:
    """
    Rank emotion scores by descending magnitude and keep the first ``limit``.

    Ties keep the mapping's iteration order (stable sort).

    Args:
        scores: label -> magnitude mapping (may be None or empty)
        limit: maximum number of scores to return

    Returns:
        List of EmotionScore, strongest first
    """
    if not scores or limit <= 0:
        return []

    ranked = sorted(scores.items(), key=lambda item: item[1], reverse=True)
    return [EmotionScore(label, float(magnitude)) for label, magnitude in ranked[:limit]]
