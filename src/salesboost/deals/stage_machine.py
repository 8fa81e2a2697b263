"""Deal stage machine -- suggests and applies stage transitions.

Stage changes are confirmed before they are applied: the deal store must
acknowledge the new stage before the local collection shows it. A failed
request leaves the local deal in its last known-good stage and the error
goes to the caller.

The UI only offers forward moves through the open stages plus closing as
won or lost. Terminal stages get no suggested moves, but transition() itself
does not forbid leaving them; the server is the authority on what it
accepts.

Concurrency: requests for the same deal are neither serialized nor
deduplicated. Whichever server response is applied last wins. is_pending()
lets callers disable resubmission while a request is in flight.
"""

from __future__ import annotations

from collections import Counter
from enum import Enum

import structlog

from src.salesboost.core.mutations import confirm_then_apply
from src.salesboost.deals.collection import DealCollection
from src.salesboost.deals.schemas import (
    OPEN_STAGES,
    TERMINAL_STAGES,
    Deal,
    DealStage,
    parse_stage,
)
from src.salesboost.deals.store import DealStore

logger = structlog.get_logger(__name__)


class InvalidStageError(ValueError):
    """Raised when a target stage is not one of the pipeline stages."""

    def __init__(self, stage: object, message: str | None = None) -> None:
        self.stage = stage
        super().__init__(
            message
            or f"Invalid stage: {stage!r}. Valid stages: {', '.join(s.value for s in DealStage)}"
        )


class StageAction(str, Enum):
    """Stage moves offered for a deal."""

    ADVANCE = "advance"
    CLOSE_WON = "close_won"
    CLOSE_LOST = "close_lost"


def next_stage(current: str | DealStage | None) -> DealStage | None:
    """Next open stage, or None at negotiation, terminal, or unknown stages."""
    stage = parse_stage(current)
    if stage is None or stage not in OPEN_STAGES:
        return None
    idx = OPEN_STAGES.index(stage)
    if idx >= len(OPEN_STAGES) - 1:
        return None
    return OPEN_STAGES[idx + 1]


def available_actions(current: str | DealStage | None) -> list[StageAction]:
    """Moves to offer for a deal in current. Terminal and unknown stages get none."""
    stage = parse_stage(current)
    if stage is None or stage in TERMINAL_STAGES:
        return []
    actions: list[StageAction] = []
    if next_stage(stage) is not None:
        actions.append(StageAction.ADVANCE)
    actions.extend([StageAction.CLOSE_WON, StageAction.CLOSE_LOST])
    return actions


class DealStageMachine:
    """Applies server-confirmed stage transitions to a shared deal collection.

    Does not recompute pipeline statistics; the caller re-derives them from
    the collection after a successful transition.

    Args:
        deals: The session's deal collection (mutated in place).
        store: Server-side deal persistence.
    """

    def __init__(self, deals: DealCollection, store: DealStore) -> None:
        self._deals = deals
        self._store = store
        self._pending: Counter[int] = Counter()

    next_stage = staticmethod(next_stage)
    available_actions = staticmethod(available_actions)

    def is_pending(self, deal_id: int) -> bool:
        return self._pending[deal_id] > 0

    async def transition(self, deal_id: int, target: str | DealStage) -> Deal:
        """Persist target for deal_id, then apply it locally.

        Returns:
            The updated local deal.

        Raises:
            InvalidStageError: target is not a pipeline stage (no request sent).
            DealStoreError: the server failed or refused; local deal unchanged.
        """
        stage = parse_stage(target)
        if stage is None:
            raise InvalidStageError(target)

        previous = self._deals.get(deal_id).stage if deal_id in self._deals else None
        logger.info(
            "deal.stage_transition_requested",
            deal_id=deal_id,
            from_stage=previous,
            to_stage=stage.value,
        )

        self._pending[deal_id] += 1
        try:
            updated = await confirm_then_apply(
                lambda: self._store.update_stage(deal_id, stage),
                lambda confirmed: self._apply(deal_id, stage, confirmed),
                operation="stage_transition",
            )
        finally:
            self._pending[deal_id] -= 1
            if self._pending[deal_id] <= 0:
                del self._pending[deal_id]

        logger.info(
            "deal.stage_transition_applied",
            deal_id=deal_id,
            from_stage=previous,
            to_stage=updated.stage,
        )
        return updated

    async def advance(self, deal_id: int) -> Deal:
        """Move a deal to its next open stage."""
        current = self._deals.get(deal_id).stage
        target = next_stage(current)
        if target is None:
            raise InvalidStageError(current, f"Deal {deal_id} has no next stage after {current}")
        return await self.transition(deal_id, target)

    async def close_won(self, deal_id: int) -> Deal:
        return await self.transition(deal_id, DealStage.CLOSED_WON)

    async def close_lost(self, deal_id: int) -> Deal:
        return await self.transition(deal_id, DealStage.CLOSED_LOST)

    def _apply(self, deal_id: int, requested: DealStage, confirmed: Deal) -> Deal:
        # The server's stage is authoritative; fall back to the requested
        # stage if the echoed deal carries something unrecognizable.
        confirmed_stage = parse_stage(confirmed.stage) or requested
        fields: dict = {"stage": confirmed_stage.value}
        if confirmed.updated_at is not None:
            fields["updated_at"] = confirmed.updated_at
        if deal_id not in self._deals:
            # Removed (or never loaded) while the request was in flight.
            logger.info("deal.stage_transition_untracked", deal_id=deal_id, to_stage=confirmed_stage.value)
            return confirmed
        return self._deals.update(deal_id, **fields)
