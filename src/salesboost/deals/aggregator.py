"""Pipeline aggregation -- summary statistics as a pure fold over deals.

Rules:
- Every deal with a recognized stage lands in its stage bucket, closed_lost
  included, so the stage distribution shows lost business too.
- closed_lost never counts toward total pipeline value or the win-rate
  denominator.
- Deals with an unrecognized stage get no bucket but still count toward
  total value and total deals, since they are not closed_lost.
- "Closing this month" means: in negotiation and last updated in the
  current local calendar month.

There is no subscription mechanism. Whoever mutates the deal collection
calls compute() again.
"""

from __future__ import annotations

from collections.abc import Iterable
from datetime import datetime

import structlog

from src.salesboost.deals.schemas import (
    ALL_STAGES,
    Deal,
    DealStage,
    PipelineStats,
    StageBucket,
    as_number,
    parse_stage,
)

logger = structlog.get_logger(__name__)


def _local_month(moment: datetime) -> tuple[int, int]:
    if moment.tzinfo is not None:
        moment = moment.astimezone()
    return moment.year, moment.month


class PipelineAggregator:
    """Derives PipelineStats from a deal collection without mutating it."""

    def compute(self, deals: Iterable[Deal], now: datetime | None = None) -> PipelineStats:
        """Aggregate deals into PipelineStats.

        Args:
            deals: The full, unfiltered deal collection.
            now: Reference time for "closing this month"; defaults to the
                local clock.

        Returns:
            PipelineStats. An empty collection yields all zeros.
        """
        current_month = _local_month(now or datetime.now())
        buckets: dict[DealStage, StageBucket] = {stage: StageBucket() for stage in ALL_STAGES}

        total_value = 0.0
        won_deals = 0
        total_deals = 0
        closing_this_month = 0
        unbucketed = 0

        for deal in deals:
            stage = parse_stage(deal.stage)
            deal_value = as_number(deal.tcv)
            if stage is None:
                unbucketed += 1
            else:
                bucket = buckets[stage]
                bucket.count += 1
                bucket.value += deal_value

            if stage is DealStage.CLOSED_LOST:
                continue

            total_value += deal_value
            total_deals += 1
            if stage is DealStage.CLOSED_WON:
                won_deals += 1
            elif (
                stage is DealStage.NEGOTIATION
                and deal.updated_at is not None
                and _local_month(deal.updated_at) == current_month
            ):
                closing_this_month += 1

        if unbucketed:
            logger.debug("pipeline.unknown_stages_unbucketed", count=unbucketed)

        return PipelineStats(
            total_value=total_value,
            average_deal_size=total_value / total_deals if total_deals else 0.0,
            win_rate=won_deals / total_deals * 100 if total_deals else 0.0,
            deals_closing_this_month=closing_this_month,
            won_deals=won_deals,
            total_deals=total_deals,
            stage_stats=buckets,
        )
