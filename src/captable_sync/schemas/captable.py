"""Cap table summary Pydantic schemas."""
from __future__ import annotations

from decimal import Decimal

from pydantic import BaseModel, Field

ZERO = Decimal(0)


class CapTableRow(BaseModel):
    """One stock class row of the common or preferred section."""

    name: str
    stock_class_id: str | None = None
    shares_authorized: Decimal | None = None
    outstanding_shares: Decimal = ZERO
    fully_diluted_shares: Decimal = ZERO
    fully_diluted_percentage: Decimal = ZERO
    liquidation: Decimal = ZERO
    voting_power: Decimal = ZERO
    voting_power_percentage: Decimal = ZERO


class PlanRow(BaseModel):
    """Fully-diluted-only row: plan grants, availability, warrants and non-plan awards."""

    name: str
    stock_plan_id: str | None = None
    fully_diluted_shares: Decimal = ZERO
    fully_diluted_percentage: Decimal = ZERO


class FounderPreferred(BaseModel):
    """Preferred shares issued as founders' stock, kept out of the class rows."""

    shares_authorized: Decimal = ZERO
    outstanding_shares: Decimal = ZERO
    fully_diluted_shares: Decimal = ZERO
    fully_diluted_percentage: Decimal = ZERO
    liquidation: Decimal = ZERO
    voting_power: Decimal = ZERO
    voting_power_percentage: Decimal = ZERO


class CapTableSection(BaseModel):
    rows: list[CapTableRow] = Field(default_factory=list)


class PlanSection(BaseModel):
    rows: list[PlanRow] = Field(default_factory=list)


class CapTableTotals(BaseModel):
    total_shares_authorized: Decimal = ZERO
    total_outstanding_shares: Decimal = ZERO
    total_fully_diluted_shares: Decimal = ZERO
    total_fully_diluted_percentage: Decimal = ZERO
    total_liquidation: Decimal = ZERO
    total_voting_power: Decimal = ZERO
    total_voting_power_percentage: Decimal = ZERO


class CapTableSummary(BaseModel):
    """Aggregated ownership summary derived from an issuer's transaction history."""

    issuer_id: str
    is_cap_table_empty: bool = Field(True, description="No issuance has been recorded yet")
    common: CapTableSection = Field(default_factory=CapTableSection)
    preferred: CapTableSection = Field(default_factory=CapTableSection)
    founder_preferred: FounderPreferred | None = None
    warrants_and_non_plan_awards: PlanSection = Field(default_factory=PlanSection)
    stock_plans: PlanSection = Field(default_factory=PlanSection)
    totals: CapTableTotals = Field(default_factory=CapTableTotals)
