"""Pydantic schemas for deals and derived pipeline statistics.

Defines:
- DealStage: the six pipeline stages (four open, two terminal)
- Deal: one pipeline entry as served by the deal store (camelCase on the wire)
- StageBucket / PipelineStats: aggregation output, never stored
- compute_tcv: total contract value formula applied at creation time

Deal.stage stays a plain string. Servers have been known to return stages
outside the six, and aggregation must skip those rather than refuse the
whole pipeline.
"""

from __future__ import annotations

import math
from datetime import datetime
from enum import Enum
from typing import Any

from pydantic import (
    BaseModel,
    ConfigDict,
    Field,
    ValidationError,
    ValidatorFunctionWrapHandler,
    field_validator,
    model_validator,
)

DEFAULT_CONTRACT_LENGTH = 12  # months


# ── Stages ──────────────────────────────────────────────────────────────────


class DealStage(str, Enum):
    """Sales pipeline stage for a deal."""

    PROSPECTING = "prospecting"
    QUALIFICATION = "qualification"
    PROPOSAL = "proposal"
    NEGOTIATION = "negotiation"
    CLOSED_WON = "closed_won"
    CLOSED_LOST = "closed_lost"


# Natural pipeline order of the open stages.
OPEN_STAGES: tuple[DealStage, ...] = (
    DealStage.PROSPECTING,
    DealStage.QUALIFICATION,
    DealStage.PROPOSAL,
    DealStage.NEGOTIATION,
)

TERMINAL_STAGES: frozenset[DealStage] = frozenset({DealStage.CLOSED_WON, DealStage.CLOSED_LOST})

ALL_STAGES: tuple[DealStage, ...] = (*OPEN_STAGES, DealStage.CLOSED_WON, DealStage.CLOSED_LOST)


def parse_stage(raw: str | DealStage | None) -> DealStage | None:
    """Case-insensitive stage lookup. Returns None for anything unrecognized."""
    if raw is None:
        return None
    if isinstance(raw, DealStage):
        return raw
    try:
        return DealStage(str(raw).strip().lower())
    except ValueError:
        return None


def compute_tcv(mrc: float, nrc: float, contract_length: int | None) -> float:
    """Total contract value: monthly charge over the contract plus one-off charge."""
    return mrc * (contract_length or DEFAULT_CONTRACT_LENGTH) + nrc


def as_number(value: Any) -> float:
    """Coerce to a finite float; anything non-numeric becomes 0."""
    if isinstance(value, bool):
        return 0.0
    try:
        number = float(value)
    except (TypeError, ValueError):
        return 0.0
    return number if math.isfinite(number) else 0.0


# ── Deal ────────────────────────────────────────────────────────────────────


class DealOwner(BaseModel):
    """Sales rep a deal belongs to."""

    model_config = ConfigDict(extra="ignore")

    id: int
    name: str = ""


class DealCustomer(BaseModel):
    model_config = ConfigDict(extra="ignore")

    name: str = ""


class Deal(BaseModel):
    """A pipeline deal.

    Money fields are coerced to finite floats (unparseable -> 0). updatedAt
    that cannot be parsed becomes None. A deal arriving without tcv gets it
    computed from mrc/nrc/contractLength; after that tcv is never recomputed
    unless an edit supplies it.
    """

    model_config = ConfigDict(populate_by_name=True, extra="ignore")

    id: int
    name: str = ""
    mrc: float = 0.0
    nrc: float = 0.0
    tcv: float = 0.0
    value: float = 0.0
    category: str = ""
    stage: str = DealStage.PROSPECTING.value
    client_type: str = Field(default="", alias="clientType")
    contract_length: int = Field(default=DEFAULT_CONTRACT_LENGTH, alias="contractLength")
    days_in_stage: int = Field(default=0, alias="daysInStage")
    updated_at: datetime | None = Field(default=None, alias="updatedAt")
    user: DealOwner | None = None
    customer: DealCustomer | None = None

    @model_validator(mode="before")
    @classmethod
    def _fill_tcv(cls, data: Any) -> Any:
        if isinstance(data, dict) and data.get("tcv") is None:
            data = dict(data)
            contract_length = data.get("contractLength", data.get("contract_length"))
            data["tcv"] = compute_tcv(
                as_number(data.get("mrc")),
                as_number(data.get("nrc")),
                int(as_number(contract_length)) or None,
            )
        return data

    @field_validator("mrc", "nrc", "tcv", "value", mode="before")
    @classmethod
    def _coerce_money(cls, v: Any) -> float:
        return as_number(v)

    @field_validator("contract_length", "days_in_stage", mode="before")
    @classmethod
    def _coerce_count(cls, v: Any) -> int:
        return int(as_number(v))

    @field_validator("updated_at", mode="wrap")
    @classmethod
    def _lenient_timestamp(cls, v: Any, handler: ValidatorFunctionWrapHandler) -> datetime | None:
        try:
            return handler(v)
        except ValidationError:
            return None

    @property
    def stage_enum(self) -> DealStage | None:
        return parse_stage(self.stage)


# ── Pipeline statistics ─────────────────────────────────────────────────────


class StageBucket(BaseModel):
    count: int = 0
    value: float = 0.0


def _empty_buckets() -> dict[DealStage, StageBucket]:
    return {stage: StageBucket() for stage in ALL_STAGES}


class PipelineStats(BaseModel):
    """Summary of a deal collection. Always derived, never edited."""

    model_config = ConfigDict(frozen=True)

    total_value: float = 0.0
    average_deal_size: float = 0.0
    win_rate: float = Field(default=0.0, ge=0.0, le=100.0)
    deals_closing_this_month: int = 0
    won_deals: int = 0
    total_deals: int = 0
    stage_stats: dict[DealStage, StageBucket] = Field(default_factory=_empty_buckets)
