"""Composite client health scorer with grade banding.

Combines the four factor scores into a deterministic 0-100 composite and
buckets it into a letter grade and health tier.

IMPORTANT: Do NOT use the LLM for score computation. The score is advisory
arithmetic over recent records; the text-generation service only explains it.

Exports:
    ClientHealthScorer: Configurable weighted scorer with grade banding.
    DEFAULT_WEIGHTS: Factor weights (delivery 0.30, on-time 0.25,
        payment 0.25, engagement 0.20).
    DEFAULT_GRADE_THRESHOLDS: Ordered (threshold, grade) table.
"""

from __future__ import annotations

from collections.abc import Mapping, Sequence
from decimal import Decimal

from src.app.health.factors import round_half_up
from src.app.health.schemas import (
    GRADE_TIERS,
    FactorCounts,
    FactorExtraction,
    FactorScores,
    Grade,
    HealthFactor,
    HealthScore,
    HealthTier,
)

DEFAULT_WEIGHTS: dict[str, Decimal] = {
    "delivery_rate": Decimal("0.30"),
    "on_time_score": Decimal("0.25"),
    "payment_score": Decimal("0.25"),
    "engagement_score": Decimal("0.20"),
}

DEFAULT_GRADE_THRESHOLDS: tuple[tuple[int, Grade], ...] = (
    (90, Grade.A),
    (75, Grade.B),
    (60, Grade.C),
    (40, Grade.D),
    (0, Grade.F),
)

FACTOR_LABELS: dict[str, str] = {
    "delivery_rate": "Delivery Rate",
    "on_time_score": "On-Time Delivery",
    "payment_score": "Payment Health",
    "engagement_score": "Engagement",
}


def _plural(count: int, noun: str) -> str:
    return f"{count} {noun}{'' if count == 1 else 's'}"


def factor_detail(key: str, counts: FactorCounts) -> str:
    """Human-readable evidence line for one factor."""
    if key == "delivery_rate":
        return f"{counts.completed_deliverables}/{counts.total_deliverables} completed"
    if key == "on_time_score":
        return f"{_plural(counts.overdue_count, 'overdue item')}"
    if key == "payment_score":
        return (
            f"{counts.paid_invoices} paid, {counts.overdue_invoices} overdue "
            f"of {counts.total_invoices}"
        )
    if key == "engagement_score":
        if counts.recent_activity:
            return f"{_plural(counts.recent_activity, 'item')} updated recently"
        return "No recent activity"
    raise KeyError(key)


class ClientHealthScorer:
    """Compute a composite health score (0-100, higher = healthier).

    Composite = half-up round of the weighted sum of the four factors. Factor
    scores are already clamped to [0, 100] and the weights sum to 1, so the
    composite is always an integer in [0, 100].

    Grade banding walks an ordered threshold table and returns the first band
    whose threshold the score meets. Thresholds must be strictly descending
    and end at 0, so the table partitions [0, 100] with no gaps and a higher
    score can never land in a worse band.

    Args:
        weights: Factor name -> weight. Must cover exactly the four factors
            and sum to 1.
        grade_thresholds: Ordered (minimum score, grade) pairs, best first.

    Raises:
        ValueError: If weights or thresholds are inconsistent.
    """

    def __init__(
        self,
        *,
        weights: Mapping[str, Decimal | float | str] | None = None,
        grade_thresholds: Sequence[tuple[int, Grade]] | None = None,
    ) -> None:
        raw_weights = weights if weights is not None else DEFAULT_WEIGHTS
        self._weights = {k: Decimal(str(v)) for k, v in raw_weights.items()}
        self._thresholds = tuple(
            grade_thresholds if grade_thresholds is not None else DEFAULT_GRADE_THRESHOLDS
        )
        self._validate()

    def _validate(self) -> None:
        expected = set(FactorScores.model_fields)
        if set(self._weights) != expected:
            raise ValueError(
                f"Weights must cover exactly {sorted(expected)}, got {sorted(self._weights)}"
            )
        if any(w < 0 for w in self._weights.values()):
            raise ValueError("Weights must be non-negative")
        if sum(self._weights.values()) != Decimal(1):
            raise ValueError(
                f"Weights must sum to 1, got {sum(self._weights.values())}"
            )

        if not self._thresholds:
            raise ValueError("Grade thresholds must not be empty")
        cutoffs = [threshold for threshold, _ in self._thresholds]
        if any(a <= b for a, b in zip(cutoffs, cutoffs[1:])):
            raise ValueError(f"Grade thresholds must be strictly descending: {cutoffs}")
        if cutoffs[-1] != 0:
            raise ValueError("Lowest grade threshold must be 0")
        if cutoffs[0] > 100:
            raise ValueError("Grade thresholds must lie within [0, 100]")
        grades = [grade for _, grade in self._thresholds]
        if any(a.rank >= b.rank for a, b in zip(grades, grades[1:])):
            raise ValueError("Grades must get strictly worse as thresholds descend")

    @property
    def weights(self) -> dict[str, Decimal]:
        return dict(self._weights)

    # ── Banding ──────────────────────────────────────────────────────────

    def grade_for(self, score: int) -> Grade:
        """Map a composite score to its grade band."""
        for threshold, grade in self._thresholds:
            if score >= threshold:
                return grade
        return self._thresholds[-1][1]

    @staticmethod
    def tier_for(grade: Grade) -> HealthTier:
        return GRADE_TIERS[grade]

    # ── Composite ────────────────────────────────────────────────────────

    def composite(self, factors: FactorScores) -> int:
        """Weighted sum of the factors, rounded half-up."""
        total = sum(
            Decimal(getattr(factors, key)) * weight
            for key, weight in self._weights.items()
        )
        return max(0, min(100, round_half_up(total)))

    def score(self, extraction: FactorExtraction) -> HealthScore:
        """Score a client from its extracted factors.

        Args:
            extraction: Factor Extractor output for one client.

        Returns:
            HealthScore with composite score, grade, tier and breakdown.
        """
        composite = self.composite(extraction.factors)
        grade = self.grade_for(composite)

        breakdown = [
            HealthFactor(
                key=key,
                name=FACTOR_LABELS[key],
                score=getattr(extraction.factors, key),
                weight=float(weight),
                detail=factor_detail(key, extraction.counts),
            )
            for key, weight in self._weights.items()
        ]

        return HealthScore(
            client_id=extraction.client_id,
            score=composite,
            grade=grade,
            tier=self.tier_for(grade),
            factors=extraction.factors,
            counts=extraction.counts,
            breakdown=breakdown,
        )


__all__ = [
    "DEFAULT_GRADE_THRESHOLDS",
    "DEFAULT_WEIGHTS",
    "ClientHealthScorer",
    "factor_detail",
]
