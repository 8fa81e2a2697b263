"""Unit tests for PipelineAggregator and the deal schema it folds over.

Tests cover:
- Empty pipeline yields all-zero statistics
- closed_lost bucketed but excluded from totals and win rate
- Win rate bounds and the zero-deal case
- "Closing this month" for negotiation deals
- Unknown stages left out of the buckets but kept in the totals
- Deal coercion: tcv fill-in, lenient numbers and timestamps
"""

from __future__ import annotations

import random
from datetime import datetime, timedelta, timezone

import pytest

from src.salesboost.deals.aggregator import PipelineAggregator
from src.salesboost.deals.schemas import (
    ALL_STAGES,
    Deal,
    DealStage,
    StageBucket,
    compute_tcv,
    parse_stage,
)

NOW = datetime(2026, 10, 19, 12, 0, 0)


def _make_deal(deal_id: int = 1, **overrides) -> Deal:
    data = {"id": deal_id, "name": f"Deal {deal_id}", "tcv": 100, "stage": "prospecting"}
    data.update(overrides)
    return Deal.model_validate(data)


@pytest.fixture
def aggregator() -> PipelineAggregator:
    return PipelineAggregator()


# ── Totals ──────────────────────────────────────────────────────────────────


class TestTotals:
    """Totals, averages, and win rate."""

    def test_empty_pipeline(self, aggregator) -> None:
        """No deals means zeros everywhere, including every stage bucket."""
        stats = aggregator.compute([], now=NOW)

        assert stats.total_value == 0
        assert stats.average_deal_size == 0
        assert stats.win_rate == 0
        assert stats.deals_closing_this_month == 0
        assert stats.total_deals == 0
        assert set(stats.stage_stats) == set(ALL_STAGES)
        assert all(bucket == StageBucket() for bucket in stats.stage_stats.values())

    def test_closed_lost_excluded_from_totals(self, aggregator) -> None:
        """negotiation + closed_won count; closed_lost only shows in its bucket."""
        deals = [
            _make_deal(1, tcv=100, stage="negotiation"),
            _make_deal(2, tcv=50, stage="closed_won"),
            _make_deal(3, tcv=900, stage="closed_lost"),
        ]

        stats = aggregator.compute(deals, now=NOW)

        assert stats.total_value == 150
        assert stats.total_deals == 2
        assert stats.won_deals == 1
        assert stats.win_rate == 50
        assert stats.average_deal_size == 75
        assert stats.stage_stats[DealStage.CLOSED_LOST] == StageBucket(count=1, value=900)
        assert stats.stage_stats[DealStage.NEGOTIATION] == StageBucket(count=1, value=100)

    def test_adding_lost_deal_never_changes_total(self, aggregator) -> None:
        base = [_make_deal(1, tcv=250, stage="proposal"), _make_deal(2, tcv=75, stage="closed_won")]
        before = aggregator.compute(base, now=NOW)
        after = aggregator.compute([*base, _make_deal(3, tcv=10_000, stage="closed_lost")], now=NOW)

        assert after.total_value == before.total_value
        assert after.win_rate == before.win_rate

    def test_only_lost_deals(self, aggregator) -> None:
        """All-lost pipelines have no counted deals, so win rate is 0."""
        stats = aggregator.compute([_make_deal(1, stage="closed_lost")], now=NOW)

        assert stats.total_deals == 0
        assert stats.win_rate == 0
        assert stats.average_deal_size == 0

    def test_all_won(self, aggregator) -> None:
        stats = aggregator.compute(
            [_make_deal(i, stage="closed_won") for i in range(1, 4)], now=NOW
        )
        assert stats.win_rate == 100

    def test_total_matches_sum_of_non_lost(self, aggregator) -> None:
        """Randomized pipelines obey the exclusion rule and the win-rate bounds."""
        rng = random.Random(20261019)
        stage_names = [s.value for s in ALL_STAGES] + ["on_hold"]
        for _ in range(50):
            deals = [
                _make_deal(i, tcv=rng.randint(0, 5000), stage=rng.choice(stage_names))
                for i in range(rng.randint(0, 12))
            ]
            stats = aggregator.compute(deals, now=NOW)

            expected = sum(d.tcv for d in deals if d.stage != "closed_lost")
            assert stats.total_value == pytest.approx(expected)
            assert 0 <= stats.win_rate <= 100
            bucketed = [d for d in deals if d.stage != "on_hold"]
            assert sum(b.count for b in stats.stage_stats.values()) == len(bucketed)

    def test_compute_does_not_mutate_input(self, aggregator) -> None:
        deals = [_make_deal(1, tcv=10, stage="proposal")]
        snapshot = [d.model_dump() for d in deals]

        aggregator.compute(deals, now=NOW)

        assert [d.model_dump() for d in deals] == snapshot


# ── Stage handling ──────────────────────────────────────────────────────────


class TestStageHandling:
    def test_unknown_stage_counts_toward_totals_only(self, aggregator) -> None:
        """A stage outside the six gets no bucket but is still open pipeline."""
        deals = [_make_deal(1, tcv=100, stage="on_hold"), _make_deal(2, tcv=40, stage="proposal")]

        stats = aggregator.compute(deals, now=NOW)

        assert stats.total_value == 140
        assert stats.total_deals == 2
        assert stats.average_deal_size == 70
        assert stats.win_rate == 0
        assert sum(b.count for b in stats.stage_stats.values()) == 1
        assert stats.stage_stats[DealStage.PROPOSAL].value == 40

    def test_stage_case_insensitive(self, aggregator) -> None:
        stats = aggregator.compute([_make_deal(1, stage="Closed_Won")], now=NOW)
        assert stats.won_deals == 1

    def test_parse_stage(self) -> None:
        assert parse_stage("NEGOTIATION") is DealStage.NEGOTIATION
        assert parse_stage(DealStage.PROPOSAL) is DealStage.PROPOSAL
        assert parse_stage("won") is None
        assert parse_stage(None) is None


# ── Closing this month ──────────────────────────────────────────────────────


class TestClosingThisMonth:
    """Negotiation deals last touched in the current calendar month."""

    def test_counts_negotiation_updated_this_month(self, aggregator) -> None:
        deals = [
            _make_deal(1, stage="negotiation", updatedAt="2026-10-02T09:00:00"),
            _make_deal(2, stage="negotiation", updatedAt="2026-09-30T09:00:00"),
            _make_deal(3, stage="proposal", updatedAt="2026-10-05T09:00:00"),
            _make_deal(4, stage="negotiation"),
        ]

        stats = aggregator.compute(deals, now=NOW)

        assert stats.deals_closing_this_month == 1

    def test_same_month_other_year_not_counted(self, aggregator) -> None:
        deals = [_make_deal(1, stage="negotiation", updatedAt="2025-10-19T09:00:00")]
        assert aggregator.compute(deals, now=NOW).deals_closing_this_month == 0

    def test_aware_timestamps_use_local_month(self, aggregator) -> None:
        """Offsets are converted to local time before comparing months."""
        moment = datetime(2026, 10, 15, 12, tzinfo=timezone.utc)
        deals = [_make_deal(1, stage="negotiation", updatedAt=moment.isoformat())]
        now = moment.astimezone() + timedelta(hours=1)

        assert aggregator.compute(deals, now=now).deals_closing_this_month == 1

    def test_unparseable_timestamp_is_ignored(self, aggregator) -> None:
        deal = _make_deal(1, stage="negotiation", updatedAt="not a date")
        assert deal.updated_at is None
        assert aggregator.compute([deal], now=NOW).deals_closing_this_month == 0


# ── Deal schema ─────────────────────────────────────────────────────────────


class TestDealSchema:
    """Wire parsing for deals."""

    def test_tcv_computed_when_missing(self) -> None:
        """mrc * contractLength + nrc."""
        deal = Deal.model_validate({"id": 1, "mrc": 100, "nrc": 250, "contractLength": 24})
        assert deal.tcv == 2650

    def test_tcv_defaults_to_twelve_months(self) -> None:
        deal = Deal.model_validate({"id": 1, "mrc": 100, "nrc": 0, "contractLength": 0})
        assert deal.tcv == 1200
        assert compute_tcv(10, 5, None) == 125

    def test_supplied_tcv_kept(self) -> None:
        deal = Deal.model_validate({"id": 1, "mrc": 100, "tcv": 7})
        assert deal.tcv == 7

    @pytest.mark.parametrize("raw", ["abc", None, float("nan"), True])
    def test_non_numeric_money_becomes_zero(self, raw) -> None:
        deal = Deal.model_validate({"id": 1, "tcv": raw})
        assert deal.tcv == 0

    def test_numeric_strings_accepted(self) -> None:
        deal = Deal.model_validate({"id": 1, "tcv": "1500.5", "daysInStage": "4"})
        assert deal.tcv == 1500.5
        assert deal.days_in_stage == 4

    def test_camel_case_aliases(self) -> None:
        deal = Deal.model_validate(
            {
                "id": 7,
                "clientType": "enterprise",
                "updatedAt": "2026-10-01T10:00:00Z",
                "user": {"id": 3, "name": "Rae"},
                "customer": {"name": "Acme"},
                "unknownField": "ignored",
            }
        )
        assert deal.client_type == "enterprise"
        assert deal.updated_at is not None and deal.updated_at.month == 10
        assert deal.user is not None and deal.user.id == 3
        assert deal.customer is not None and deal.customer.name == "Acme"
