"""Deal store collaborator -- abstract interface plus the HTTP implementation.

HttpDealStore speaks the pipeline JSON API:

- GET   /api/pipeline              -> [Deal]
- PATCH /api/deals/{id}/stage {stage} -> Deal

Both calls are idempotent, so connection errors and timeouts are retried
(tenacity, exponential backoff) before surfacing as DealStoreError.
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from typing import Any

import httpx
import structlog
from pydantic import ValidationError
from tenacity import retry, retry_if_exception_type, stop_after_attempt, wait_exponential

from src.salesboost.deals.schemas import Deal, DealStage

logger = structlog.get_logger(__name__)

PIPELINE_PATH = "/api/pipeline"
STAGE_PATH = "/api/deals/{deal_id}/stage"

# Status codes meaning "the server understood and said no".
_REJECTION_STATUSES = frozenset({400, 403, 404, 409, 422})

_transport_retry = retry(
    stop=stop_after_attempt(3),
    wait=wait_exponential(multiplier=0.2, min=0.2, max=2),
    retry=retry_if_exception_type((httpx.ConnectError, httpx.TimeoutException)),
    reraise=True,
)


class DealStoreError(Exception):
    """The deal store could not complete the request."""


class StageTransitionRejectedError(DealStoreError):
    """The server refused a stage change (invalid stage, not owner, unknown deal)."""

    def __init__(self, deal_id: int, stage: str, status_code: int, message: str) -> None:
        self.deal_id = deal_id
        self.stage = stage
        self.status_code = status_code
        super().__init__(message)


class DealStore(ABC):
    """Abstract interface for server-side deal persistence.

    Methods:
        list: Full pipeline visible to the current user.
        update_stage: Persist a new stage and return the server's deal.
    """

    @abstractmethod
    async def list(self) -> list[Deal]:
        ...

    @abstractmethod
    async def update_stage(self, deal_id: int, stage: DealStage) -> Deal:
        ...

    async def aclose(self) -> None:
        """Release transport resources. No-op by default."""


def _error_message(response: httpx.Response, default: str) -> str:
    try:
        body = response.json()
    except ValueError:
        return default
    if isinstance(body, dict):
        return str(body.get("message") or body.get("error") or default)
    return default


class HttpDealStore(DealStore):
    """DealStore over HTTP+JSON.

    Args:
        base_url: Server root.
        timeout: Per-request timeout in seconds.
        client: Shared httpx.AsyncClient. Pass the auth service's client so
            the session cookie rides along; owned by the caller when given.
    """

    def __init__(
        self,
        base_url: str = "",
        *,
        timeout: float = 10.0,
        client: httpx.AsyncClient | None = None,
    ) -> None:
        self._owns_client = client is None
        self._client = client or httpx.AsyncClient(base_url=base_url, timeout=timeout)

    async def list(self) -> list[Deal]:
        try:
            response = await self._get_pipeline()
        except httpx.HTTPError as exc:
            raise DealStoreError(f"Failed to fetch pipeline data: {exc}") from exc

        if response.is_error:
            raise DealStoreError(_error_message(response, "Failed to fetch pipeline data"))

        try:
            body: Any = response.json()
        except ValueError as exc:
            raise DealStoreError("Invalid JSON response from pipeline") from exc
        if not isinstance(body, list):
            raise DealStoreError("Pipeline response is not a list of deals")

        deals: list[Deal] = []
        for item in body:
            try:
                deals.append(Deal.model_validate(item))
            except ValidationError as exc:
                logger.warning(
                    "deal_store.malformed_deal_skipped",
                    deal_id=item.get("id") if isinstance(item, dict) else None,
                    error_count=exc.error_count(),
                )
        logger.debug("deal_store.pipeline_fetched", count=len(deals))
        return deals

    async def update_stage(self, deal_id: int, stage: DealStage) -> Deal:
        stage_value = DealStage(stage).value
        try:
            response = await self._patch_stage(deal_id, stage_value)
        except httpx.HTTPError as exc:
            raise DealStoreError(f"Failed to update deal stage: {exc}") from exc

        if response.status_code in _REJECTION_STATUSES:
            message = _error_message(response, "Failed to update deal stage")
            logger.info(
                "deal_store.stage_rejected",
                deal_id=deal_id,
                stage=stage_value,
                status_code=response.status_code,
            )
            raise StageTransitionRejectedError(deal_id, stage_value, response.status_code, message)
        if response.is_error:
            raise DealStoreError(_error_message(response, "Failed to update deal stage"))

        try:
            return Deal.model_validate(response.json())
        except (ValueError, ValidationError) as exc:
            raise DealStoreError("Stage update returned an unreadable deal") from exc

    @_transport_retry
    async def _get_pipeline(self) -> httpx.Response:
        return await self._client.get(PIPELINE_PATH)

    @_transport_retry
    async def _patch_stage(self, deal_id: int, stage: str) -> httpx.Response:
        return await self._client.patch(
            STAGE_PATH.format(deal_id=deal_id),
            json={"stage": stage},
            headers={"Cache-Control": "no-cache, no-store, must-revalidate"},
        )

    async def aclose(self) -> None:
        if self._owns_client:
            await self._client.aclose()
