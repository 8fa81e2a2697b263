"""In-memory deal collection owned by one client session.

Single writer: only the session's event loop mutates it, so there is no
locking. Updates replace the stored Deal with a copy rather than mutating a
model other code may still hold.
"""

from __future__ import annotations

from collections.abc import Iterable, Iterator
from typing import Any

import structlog

from src.salesboost.deals.schemas import Deal

logger = structlog.get_logger(__name__)


class DealNotFoundError(KeyError):
    """Raised when a deal id is not in the local collection."""

    def __init__(self, deal_id: int) -> None:
        self.deal_id = deal_id
        super().__init__(f"Deal {deal_id} is not in the pipeline")


class DealCollection:
    """Ordered deals keyed by id, insertion order preserved."""

    def __init__(self, deals: Iterable[Deal] = ()) -> None:
        self._deals: dict[int, Deal] = {}
        self.replace_all(deals)

    def replace_all(self, deals: Iterable[Deal]) -> None:
        """Swap in a freshly fetched pipeline."""
        self._deals = {deal.id: deal for deal in deals}

    def add(self, deal: Deal) -> None:
        if deal.id in self._deals:
            logger.warning("pipeline.duplicate_deal_replaced", deal_id=deal.id)
        self._deals[deal.id] = deal

    def get(self, deal_id: int) -> Deal:
        try:
            return self._deals[deal_id]
        except KeyError:
            raise DealNotFoundError(deal_id) from None

    def update(self, deal_id: int, **fields: Any) -> Deal:
        """Merge fields into the stored deal and return the new version.

        Field names are the snake_case attribute names (stage, tcv, ...).
        """
        current = self.get(deal_id)
        updated = current.model_copy(update=fields)
        self._deals[deal_id] = updated
        logger.debug("pipeline.deal_updated", deal_id=deal_id, fields=sorted(fields))
        return updated

    def remove(self, deal_id: int) -> Deal:
        try:
            return self._deals.pop(deal_id)
        except KeyError:
            raise DealNotFoundError(deal_id) from None

    def __contains__(self, deal_id: object) -> bool:
        return deal_id in self._deals

    def __iter__(self) -> Iterator[Deal]:
        return iter(list(self._deals.values()))

    def __len__(self) -> int:
        return len(self._deals)
