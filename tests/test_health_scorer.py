"""Deterministic scoring tests for ClientHealthScorer.

Uses the real scorer (no mocking) since the composite is pure arithmetic.

Covers:
    - Composite of 90/100/100/100 with default weights is 97, grade A
    - Half-up rounding of the weighted sum
    - Grade band boundaries and the tier each grade maps to
    - Grade banding is monotonic over the whole 0-100 range
    - Breakdown carries every factor with its weight and detail text
    - Inconsistent weights or thresholds are rejected at construction
"""

from __future__ import annotations

from decimal import Decimal

import pytest

from src.app.health.schemas import (
    FactorCounts,
    FactorExtraction,
    FactorScores,
    Grade,
    HealthTier,
)
from src.app.health.scorer import (
    DEFAULT_WEIGHTS,
    ClientHealthScorer,
    factor_detail,
)


def _extraction(
    delivery: int = 100,
    on_time: int = 100,
    payment: int = 100,
    engagement: int = 100,
    counts: FactorCounts | None = None,
) -> FactorExtraction:
    return FactorExtraction(
        client_id="client-1",
        factors=FactorScores(
            delivery_rate=delivery,
            on_time_score=on_time,
            payment_score=payment,
            engagement_score=engagement,
        ),
        counts=counts or FactorCounts(),
    )


# -- Composite ----------------------------------------------------------------


class TestComposite:
    def test_nine_of_ten_example(self) -> None:
        """round(90*0.3 + 100*0.25 + 100*0.25 + 100*0.2) = 97."""
        counts = FactorCounts(
            total_deliverables=10,
            completed_deliverables=9,
            total_invoices=4,
            paid_invoices=4,
            recent_activity=3,
        )
        result = ClientHealthScorer().score(_extraction(delivery=90, counts=counts))

        assert result.score == 97
        assert result.grade == Grade.A
        assert result.tier == HealthTier.HEALTHY

    def test_half_rounds_up(self) -> None:
        """85*0.3 + 100*0.25 + 100*0.25 + 40*0.2 = 83.5, which rounds to 84."""
        scorer = ClientHealthScorer()
        assert scorer.composite(_extraction(delivery=85, engagement=40).factors) == 84

    def test_all_zero(self) -> None:
        result = ClientHealthScorer().score(_extraction(0, 0, 0, 0))
        assert result.score == 0
        assert result.grade == Grade.F
        assert result.tier == HealthTier.CRITICAL

    def test_all_full(self) -> None:
        assert ClientHealthScorer().score(_extraction()).score == 100

    def test_custom_weights(self) -> None:
        scorer = ClientHealthScorer(
            weights={
                "delivery_rate": "1",
                "on_time_score": "0",
                "payment_score": "0",
                "engagement_score": "0",
            }
        )
        assert scorer.composite(_extraction(delivery=42, on_time=0).factors) == 42


# -- Banding ------------------------------------------------------------------


class TestGradeBanding:
    @pytest.mark.parametrize(
        "score, grade",
        [
            (100, Grade.A),
            (90, Grade.A),
            (89, Grade.B),
            (75, Grade.B),
            (74, Grade.C),
            (60, Grade.C),
            (59, Grade.D),
            (40, Grade.D),
            (39, Grade.F),
            (0, Grade.F),
        ],
    )
    def test_band_boundaries(self, score: int, grade: Grade) -> None:
        assert ClientHealthScorer().grade_for(score) == grade

    def test_monotonic(self) -> None:
        scorer = ClientHealthScorer()
        for score in range(100):
            assert scorer.grade_for(score + 1).rank <= scorer.grade_for(score).rank

    @pytest.mark.parametrize(
        "grade, tier",
        [
            (Grade.A, HealthTier.HEALTHY),
            (Grade.B, HealthTier.HEALTHY),
            (Grade.C, HealthTier.AT_RISK),
            (Grade.D, HealthTier.AT_RISK),
            (Grade.F, HealthTier.CRITICAL),
        ],
    )
    def test_tiers(self, grade: Grade, tier: HealthTier) -> None:
        assert ClientHealthScorer.tier_for(grade) == tier


# -- Breakdown ----------------------------------------------------------------


class TestBreakdown:
    def test_every_factor_present(self) -> None:
        counts = FactorCounts(
            total_deliverables=4,
            completed_deliverables=3,
            overdue_deliverables=1,
            total_invoices=2,
            paid_invoices=1,
            overdue_invoices=1,
        )
        result = ClientHealthScorer().score(
            _extraction(delivery=75, on_time=75, payment=30, engagement=40, counts=counts)
        )

        by_key = {factor.key: factor for factor in result.breakdown}
        assert set(by_key) == set(DEFAULT_WEIGHTS)
        assert by_key["delivery_rate"].detail == "3/4 completed"
        assert by_key["on_time_score"].detail == "1 overdue item"
        assert by_key["payment_score"].detail == "1 paid, 1 overdue of 2"
        assert by_key["engagement_score"].detail == "No recent activity"
        assert sum(f.weight for f in result.breakdown) == pytest.approx(1.0)

    def test_detail_pluralizes(self) -> None:
        counts = FactorCounts(overdue_deliverables=2, overdue_tasks=1, recent_activity=2)
        assert factor_detail("on_time_score", counts) == "3 overdue items"
        assert factor_detail("engagement_score", counts) == "2 items updated recently"


# -- Validation ---------------------------------------------------------------


class TestValidation:
    def test_weights_must_sum_to_one(self) -> None:
        weights = dict(DEFAULT_WEIGHTS, delivery_rate=Decimal("0.50"))
        with pytest.raises(ValueError, match="sum to 1"):
            ClientHealthScorer(weights=weights)

    def test_weights_must_cover_every_factor(self) -> None:
        weights = {k: v for k, v in DEFAULT_WEIGHTS.items() if k != "engagement_score"}
        with pytest.raises(ValueError, match="cover exactly"):
            ClientHealthScorer(weights=weights)

    def test_negative_weight_rejected(self) -> None:
        weights = {
            "delivery_rate": "1.2",
            "on_time_score": "-0.2",
            "payment_score": "0",
            "engagement_score": "0",
        }
        with pytest.raises(ValueError, match="non-negative"):
            ClientHealthScorer(weights=weights)

    def test_thresholds_must_descend(self) -> None:
        with pytest.raises(ValueError, match="descending"):
            ClientHealthScorer(
                grade_thresholds=[(75, Grade.A), (90, Grade.B), (0, Grade.F)]
            )

    def test_lowest_threshold_must_be_zero(self) -> None:
        with pytest.raises(ValueError, match="must be 0"):
            ClientHealthScorer(grade_thresholds=[(90, Grade.A), (50, Grade.F)])

    def test_grades_must_worsen(self) -> None:
        with pytest.raises(ValueError, match="strictly worse"):
            ClientHealthScorer(grade_thresholds=[(90, Grade.B), (0, Grade.A)])
