"""Trend Comparator: three-state momentum versus the previous cached score."""

from __future__ import annotations

from src.app.health.schemas import Trend


def compare_trend(new_score: int, previous_score: int | None) -> Trend:
    """Classify momentum of ``new_score`` against ``previous_score``.

    Returns FLAT when there is no previous score (first computation, or the
    cache read failed) and when the scores are equal. Callers that want the
    magnitude must read both scores themselves.
    """
    if previous_score is None or new_score == previous_score:
        return Trend.FLAT
    if new_score > previous_score:
        return Trend.UP
    return Trend.DOWN
