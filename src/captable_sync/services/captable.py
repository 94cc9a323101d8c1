"""Cap table projection.

The summary is re-derived from scratch on every call by folding the issuer's
ordered transaction history over an initial state built from the current
stock classes and plans. Nothing is cached between calls.

All arithmetic uses ``Decimal``; percentages are rounded only when the output
models are built.
"""

from __future__ import annotations

import logging
from collections.abc import Iterable, Sequence
from dataclasses import dataclass, field
from decimal import ROUND_HALF_UP, Decimal, InvalidOperation
from typing import Any

from sqlalchemy.orm import Session

from captable_sync.core.settings import settings
from captable_sync.models import (
    EquityCompensationIssuance,
    Issuer,
    IssuerAuthorizedSharesAdjustment,
    LedgerTransaction,
    StockClass,
    StockClassAuthorizedSharesAdjustment,
    StockClassType,
    StockIssuance,
    StockIssuanceType,
    StockPlan,
    StockPlanPoolAdjustment,
    WarrantIssuance,
)
from captable_sync.repositories.issuer_repo import IssuerRepository
from captable_sync.repositories.transaction_repo import TransactionRepository
from captable_sync.schemas.captable import (
    CapTableRow,
    CapTableSection,
    CapTableSummary,
    CapTableTotals,
    FounderPreferred,
    PlanRow,
    PlanSection,
)
from captable_sync.services.errors import ProjectionError, ProjectionReferenceError

logger = logging.getLogger(__name__)

ZERO = Decimal(0)
AVAILABLE_FOR_GRANTS = "Available for Grants"


@dataclass
class _ClassRow:
    name: str
    stock_class_id: str
    class_type: str
    outstanding: Decimal = ZERO
    fully_diluted: Decimal = ZERO
    liquidation: Decimal = ZERO
    voting_power: Decimal = ZERO


@dataclass
class _Founder:
    shares_authorized: Decimal = ZERO
    outstanding: Decimal = ZERO
    fully_diluted: Decimal = ZERO
    liquidation: Decimal = ZERO
    voting_power: Decimal = ZERO


@dataclass
class _DilutedRow:
    name: str
    stock_plan_id: str | None = None
    fully_diluted: Decimal = ZERO


@dataclass
class ProjectionState:
    """Mutable accumulator of one projection run."""

    issuer_shares_authorized: Decimal
    classes: dict[str, StockClass]
    plans: dict[str, StockPlan]
    class_authorized: dict[str, Decimal]
    plan_reserved: dict[str, Decimal]
    class_rows: dict[tuple[str, str], _ClassRow] = field(default_factory=dict)
    founder_preferred: _Founder | None = None
    award_rows: dict[str, _DilutedRow] = field(default_factory=dict)
    plan_rows: dict[tuple[str, str], _DilutedRow] = field(default_factory=dict)
    available_for_grants: dict[str, Decimal] = field(default_factory=dict)

    def issued_from_plan(self, stock_plan_id: str) -> Decimal:
        return sum(
            (row.fully_diluted for (plan_id, _), row in self.plan_rows.items() if plan_id == stock_plan_id),
            ZERO,
        )

    def recompute_available(self, stock_plan_id: str) -> None:
        available = self.plan_reserved.get(stock_plan_id, ZERO) - self.issued_from_plan(stock_plan_id)
        if available > 0:
            self.available_for_grants[stock_plan_id] = available
        else:
            self.available_for_grants.pop(stock_plan_id, None)


def initial_state(
    issuer: Issuer, classes: Iterable[StockClass], plans: Iterable[StockPlan]
) -> ProjectionState:
    class_map = {stock_class.id: stock_class for stock_class in classes}
    plan_map = {plan.id: plan for plan in plans}
    state = ProjectionState(
        issuer_shares_authorized=Decimal(issuer.shares_authorized or 0),
        classes=class_map,
        plans=plan_map,
        class_authorized={
            class_id: Decimal(stock_class.shares_authorized or 0)
            for class_id, stock_class in class_map.items()
        },
        plan_reserved={plan_id: Decimal(plan.shares_reserved or 0) for plan_id, plan in plan_map.items()},
    )
    for plan_id in plan_map:
        state.recompute_available(plan_id)
    return state


def _require_class(state: ProjectionState, stock_class_id: str | None, tx: LedgerTransaction) -> StockClass:
    stock_class = state.classes.get(stock_class_id) if stock_class_id else None
    if stock_class is None:
        raise ProjectionReferenceError("StockClass", stock_class_id, f"{tx.kind} {tx.id}")
    return stock_class


def _require_plan(state: ProjectionState, stock_plan_id: str | None, tx: LedgerTransaction) -> StockPlan:
    plan = state.plans.get(stock_plan_id) if stock_plan_id else None
    if plan is None:
        raise ProjectionReferenceError("StockPlan", stock_plan_id, f"{tx.kind} {tx.id}")
    return plan


def _quantity(value: Any) -> Decimal:
    if value is None:
        return ZERO
    try:
        return Decimal(str(value))
    except InvalidOperation as exc:
        raise ProjectionError(f"Invalid quantity {value!r}") from exc


def _compensation_label(compensation_type: str | None) -> str:
    if not compensation_type:
        return "Awards"
    return f"{compensation_type.capitalize()}s"


def apply_stock_issuance(state: ProjectionState, tx: StockIssuance) -> None:
    stock_class = _require_class(state, tx.stock_class_id, tx)
    shares = _quantity(tx.quantity)
    price = tx.share_price if tx.share_price is not None else stock_class.price_per_share
    multiple = stock_class.liquidation_preference_multiple
    liquidation = shares * Decimal(price or 0) * Decimal(1 if multiple is None else multiple)
    voting_power = Decimal(stock_class.votes_per_share or 0) * shares

    if (
        stock_class.class_type == StockClassType.PREFERRED.value
        and tx.issuance_type == StockIssuanceType.FOUNDERS_STOCK.value
    ):
        founder = state.founder_preferred or _Founder()
        founder.shares_authorized += shares
        founder.outstanding += shares
        founder.fully_diluted += shares
        founder.liquidation += liquidation
        founder.voting_power += voting_power
        state.founder_preferred = founder
        return

    key = (stock_class.class_type, stock_class.name)
    row = state.class_rows.get(key)
    if row is None:
        row = _ClassRow(
            name=stock_class.name, stock_class_id=stock_class.id, class_type=stock_class.class_type
        )
        state.class_rows[key] = row
    row.outstanding += shares
    row.fully_diluted += shares
    row.liquidation += liquidation
    row.voting_power += voting_power


def apply_issuer_adjustment(state: ProjectionState, tx: IssuerAuthorizedSharesAdjustment) -> None:
    state.issuer_shares_authorized = _quantity(tx.new_shares_authorized)


def apply_stock_class_adjustment(
    state: ProjectionState, tx: StockClassAuthorizedSharesAdjustment
) -> None:
    stock_class = _require_class(state, tx.stock_class_id, tx)
    state.class_authorized[stock_class.id] = _quantity(tx.new_shares_authorized)


def apply_plan_pool_adjustment(state: ProjectionState, tx: StockPlanPoolAdjustment) -> None:
    plan = _require_plan(state, tx.stock_plan_id, tx)
    state.plan_reserved[plan.id] = _quantity(tx.shares_reserved)
    state.recompute_available(plan.id)


def apply_equity_compensation_issuance(
    state: ProjectionState, tx: EquityCompensationIssuance
) -> None:
    shares = _quantity(tx.quantity)
    label = _compensation_label(tx.compensation_type)

    if not tx.stock_plan_id:
        if tx.stock_class_id:
            owner = _require_class(state, tx.stock_class_id, tx).name
        else:
            owner = "Non-Plan"
        name = f"{owner} {label}"
        row = state.award_rows.setdefault(name, _DilutedRow(name=name))
        row.fully_diluted += shares
        return

    plan = _require_plan(state, tx.stock_plan_id, tx)
    name = f"{plan.plan_name} {label}"
    row = state.plan_rows.setdefault((plan.id, name), _DilutedRow(name=name, stock_plan_id=plan.id))
    row.fully_diluted += shares
    state.recompute_available(plan.id)


def _warrant_terms(tx: WarrantIssuance) -> tuple[str | None, Decimal]:
    triggers = tx.exercise_triggers or []
    if not triggers:
        return None, ZERO
    conversion_right = triggers[0].get("conversion_right") or {}
    mechanism = conversion_right.get("conversion_mechanism") or {}
    return (
        conversion_right.get("converts_to_stock_class_id"),
        _quantity(mechanism.get("converts_to_quantity")),
    )


def apply_warrant_issuance(state: ProjectionState, tx: WarrantIssuance) -> None:
    target_class_id, shares = _warrant_terms(tx)
    target_class_id = target_class_id or tx.stock_class_id
    if target_class_id:
        name = f"{_require_class(state, target_class_id, tx).name} Warrants"
    else:
        name = "Warrants"
    row = state.award_rows.setdefault(name, _DilutedRow(name=name))
    row.fully_diluted += shares


def apply_transaction(state: ProjectionState, tx: LedgerTransaction) -> None:
    """Fold one transaction into ``state``.

    Kinds without a rule (acceptance, transfer, exercise, convertible, ...) do
    not move any cap table figure.
    """
    if isinstance(tx, StockIssuance):
        apply_stock_issuance(state, tx)
    elif isinstance(tx, IssuerAuthorizedSharesAdjustment):
        apply_issuer_adjustment(state, tx)
    elif isinstance(tx, StockClassAuthorizedSharesAdjustment):
        apply_stock_class_adjustment(state, tx)
    elif isinstance(tx, StockPlanPoolAdjustment):
        apply_plan_pool_adjustment(state, tx)
    elif isinstance(tx, EquityCompensationIssuance):
        apply_equity_compensation_issuance(state, tx)
    elif isinstance(tx, WarrantIssuance):
        apply_warrant_issuance(state, tx)


def history_order_key(tx: LedgerTransaction) -> tuple[Any, ...]:
    """Ledger rows by provenance first, then off-ledger rows by date and creation."""
    if tx.block_number is not None:
        return (0, tx.block_number, tx.tx_index or 0, tx.log_index or 0, "", "", tx.id)
    date = tx.date.isoformat() if tx.date else "9999-12-31"
    created = tx.created_at.isoformat() if tx.created_at else ""
    return (1, 0, 0, 0, date, created, tx.id)


def _ratio(numerator: Decimal, denominator: Decimal, places: int) -> Decimal:
    quantum = Decimal(1).scaleb(-places)
    if denominator == 0:
        return ZERO.quantize(quantum)
    return (numerator / denominator).quantize(quantum, rounding=ROUND_HALF_UP)


def build_summary(issuer_id: str, state: ProjectionState, decimal_places: int) -> CapTableSummary:
    """Turn a folded state into the output models, computing percentages."""
    plan_rows: list[_DilutedRow] = list(state.plan_rows.values())
    for plan_id in state.plans:
        available = state.available_for_grants.get(plan_id)
        if available is not None and available > 0:
            plan_rows.append(
                _DilutedRow(name=AVAILABLE_FOR_GRANTS, stock_plan_id=plan_id, fully_diluted=available)
            )
    award_rows = list(state.award_rows.values())
    class_rows = list(state.class_rows.values())
    founder = state.founder_preferred

    total_outstanding = sum((row.outstanding for row in class_rows), ZERO)
    total_voting = sum((row.voting_power for row in class_rows), ZERO)
    total_liquidation = sum((row.liquidation for row in class_rows), ZERO)
    total_fully_diluted = sum((row.fully_diluted for row in class_rows), ZERO)
    total_fully_diluted += sum((row.fully_diluted for row in award_rows + plan_rows), ZERO)
    if founder is not None:
        total_outstanding += founder.outstanding
        total_voting += founder.voting_power
        total_liquidation += founder.liquidation
        total_fully_diluted += founder.fully_diluted

    def class_row(row: _ClassRow) -> CapTableRow:
        return CapTableRow(
            name=row.name,
            stock_class_id=row.stock_class_id,
            shares_authorized=state.class_authorized.get(row.stock_class_id),
            outstanding_shares=row.outstanding,
            fully_diluted_shares=row.fully_diluted,
            fully_diluted_percentage=_ratio(row.fully_diluted, total_outstanding, decimal_places),
            liquidation=row.liquidation,
            voting_power=row.voting_power,
            voting_power_percentage=_ratio(row.voting_power, total_voting, decimal_places),
        )

    def diluted_row(row: _DilutedRow) -> PlanRow:
        return PlanRow(
            name=row.name,
            stock_plan_id=row.stock_plan_id,
            fully_diluted_shares=row.fully_diluted,
            fully_diluted_percentage=_ratio(row.fully_diluted, total_outstanding, decimal_places),
        )

    founder_out: FounderPreferred | None = None
    if founder is not None:
        founder_out = FounderPreferred(
            shares_authorized=founder.shares_authorized,
            outstanding_shares=founder.outstanding,
            fully_diluted_shares=founder.fully_diluted,
            fully_diluted_percentage=_ratio(founder.fully_diluted, total_outstanding, decimal_places),
            liquidation=founder.liquidation,
            voting_power=founder.voting_power,
            voting_power_percentage=_ratio(founder.voting_power, total_voting, decimal_places),
        )

    is_empty = not (class_rows or award_rows or state.plan_rows or founder is not None)
    return CapTableSummary(
        issuer_id=issuer_id,
        is_cap_table_empty=is_empty,
        common=CapTableSection(
            rows=[class_row(r) for r in class_rows if r.class_type == StockClassType.COMMON.value]
        ),
        preferred=CapTableSection(
            rows=[class_row(r) for r in class_rows if r.class_type != StockClassType.COMMON.value]
        ),
        founder_preferred=founder_out,
        warrants_and_non_plan_awards=PlanSection(rows=[diluted_row(r) for r in award_rows]),
        stock_plans=PlanSection(rows=[diluted_row(r) for r in plan_rows]),
        totals=CapTableTotals(
            total_shares_authorized=state.issuer_shares_authorized,
            total_outstanding_shares=total_outstanding,
            total_fully_diluted_shares=total_fully_diluted,
            total_fully_diluted_percentage=_ratio(
                total_fully_diluted, total_outstanding, decimal_places
            ),
            total_liquidation=total_liquidation,
            total_voting_power=total_voting,
            total_voting_power_percentage=_ratio(total_voting, total_voting, decimal_places),
        ),
    )


def project_cap_table(
    issuer: Issuer,
    classes: Sequence[StockClass],
    plans: Sequence[StockPlan],
    transactions: Iterable[LedgerTransaction],
    decimal_places: int | None = None,
) -> CapTableSummary:
    """Fold ``transactions`` into a cap table summary.

    Pure with respect to its arguments: the history is re-sorted into apply
    order and nothing is written back.

    Raises:
        ProjectionReferenceError: a transaction references a stock class or
            plan that is not among ``classes`` / ``plans``.
    """
    places = settings.captable_decimal_places if decimal_places is None else decimal_places
    state = initial_state(issuer, classes, plans)
    for tx in sorted(transactions, key=history_order_key):
        apply_transaction(state, tx)
    return build_summary(issuer.id, state, places)


def compute_summary(
    session: Session, issuer_id: str, decimal_places: int | None = None
) -> CapTableSummary:
    """Read a snapshot of the issuer's history and project its cap table."""
    issuers = IssuerRepository(session)
    issuer = issuers.get(issuer_id)
    if issuer is None:
        raise ProjectionReferenceError("Issuer", issuer_id)

    classes = issuers.list_stock_classes(issuer_id)
    plans = issuers.list_stock_plans(issuer_id)
    history = TransactionRepository(session).list_history(issuer_id)
    logger.debug(
        "Projecting cap table for issuer %s from %d transactions", issuer_id, len(history)
    )
    return project_cap_table(issuer, classes, plans, history, decimal_places)
