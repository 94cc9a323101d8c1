"""SQLAlchemy models for the cap table transaction history.

Every transaction kind shares one table (single-table inheritance keyed on
``kind``). Ledger-sourced rows carry their provenance
``(block_number, tx_index, log_index)``; off-ledger rows leave it NULL.
Rows are upserted by id and never duplicated.
"""

from __future__ import annotations

import datetime
from decimal import Decimal
from enum import Enum
from typing import Any

from sqlalchemy import JSON, BigInteger, Boolean, Date, DateTime, ForeignKey, Integer, String, Text
from sqlalchemy.orm import Mapped, mapped_column

from captable_sync.db.session import Base
from captable_sync.db.time import utcnow
from captable_sync.db.types import DecimalText


class TransactionKind(str, Enum):
    """Object types of every stored transaction variant."""

    ISSUER_AUTHORIZED_SHARES_ADJUSTMENT = "TX_ISSUER_AUTHORIZED_SHARES_ADJUSTMENT"
    STOCK_CLASS_AUTHORIZED_SHARES_ADJUSTMENT = "TX_STOCK_CLASS_AUTHORIZED_SHARES_ADJUSTMENT"
    STOCK_ACCEPTANCE = "TX_STOCK_ACCEPTANCE"
    STOCK_CANCELLATION = "TX_STOCK_CANCELLATION"
    STOCK_ISSUANCE = "TX_STOCK_ISSUANCE"
    STOCK_REISSUANCE = "TX_STOCK_REISSUANCE"
    STOCK_REPURCHASE = "TX_STOCK_REPURCHASE"
    STOCK_RETRACTION = "TX_STOCK_RETRACTION"
    STOCK_TRANSFER = "TX_STOCK_TRANSFER"
    # Off-ledger kinds consumed by the cap table projection.
    STOCK_PLAN_POOL_ADJUSTMENT = "TX_STOCK_PLAN_POOL_ADJUSTMENT"
    EQUITY_COMPENSATION_ISSUANCE = "TX_EQUITY_COMPENSATION_ISSUANCE"
    EQUITY_COMPENSATION_EXERCISE = "TX_EQUITY_COMPENSATION_EXERCISE"
    WARRANT_ISSUANCE = "TX_WARRANT_ISSUANCE"
    CONVERTIBLE_ISSUANCE = "TX_CONVERTIBLE_ISSUANCE"


class StockIssuanceType(str, Enum):
    """Issuance designations that change how an issuance is aggregated."""

    FOUNDERS_STOCK = "FOUNDERS_STOCK"
    RSA = "RSA"


class LedgerTransaction(Base):
    """Common columns of every transaction variant."""

    __tablename__ = "ledger_transaction"

    id: Mapped[str] = mapped_column(String(36), primary_key=True)
    kind: Mapped[str] = mapped_column(String(64), nullable=False, index=True)
    issuer_id: Mapped[str] = mapped_column(
        String(36), ForeignKey("issuer.id"), nullable=False, index=True
    )
    security_id: Mapped[str | None] = mapped_column(String(36), nullable=True, index=True)
    date: Mapped[datetime.date | None] = mapped_column(Date, nullable=True)
    comments: Mapped[list[str] | None] = mapped_column(JSON, nullable=True)

    # Provenance on the ledger; NULL for rows not (yet) confirmed on-chain.
    block_number: Mapped[int | None] = mapped_column(BigInteger, nullable=True)
    tx_index: Mapped[int | None] = mapped_column(Integer, nullable=True)
    log_index: Mapped[int | None] = mapped_column(Integer, nullable=True)
    is_onchain_synced: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)

    created_at: Mapped[datetime.datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=utcnow
    )

    # Type-specific payload; each variant uses a subset.
    stakeholder_id: Mapped[str | None] = mapped_column(String(36), nullable=True)
    stock_class_id: Mapped[str | None] = mapped_column(String(36), nullable=True)
    stock_plan_id: Mapped[str | None] = mapped_column(String(36), nullable=True)
    quantity: Mapped[Decimal | None] = mapped_column(DecimalText, nullable=True)
    share_price: Mapped[Decimal | None] = mapped_column(DecimalText, nullable=True)
    share_price_currency: Mapped[str | None] = mapped_column(String(3), nullable=True)
    issuance_type: Mapped[str | None] = mapped_column(String(32), nullable=True)
    compensation_type: Mapped[str | None] = mapped_column(String(32), nullable=True)
    new_shares_authorized: Mapped[Decimal | None] = mapped_column(DecimalText, nullable=True)
    shares_reserved: Mapped[Decimal | None] = mapped_column(DecimalText, nullable=True)
    board_approval_date: Mapped[str | None] = mapped_column(String(32), nullable=True)
    stockholder_approval_date: Mapped[str | None] = mapped_column(String(32), nullable=True)
    balance_security_id: Mapped[str | None] = mapped_column(String(36), nullable=True)
    resulting_security_ids: Mapped[list[str] | None] = mapped_column(JSON, nullable=True)
    reason_text: Mapped[str | None] = mapped_column(Text, nullable=True)
    consideration_text: Mapped[str | None] = mapped_column(Text, nullable=True)
    exercise_triggers: Mapped[list[dict[str, Any]] | None] = mapped_column(JSON, nullable=True)
    investment_amount: Mapped[Decimal | None] = mapped_column(DecimalText, nullable=True)
    convertible_type: Mapped[str | None] = mapped_column(String(32), nullable=True)

    __mapper_args__ = {"polymorphic_on": "kind"}

    @property
    def provenance(self) -> tuple[int, int, int] | None:
        """Ledger position of the row, or None when not confirmed on-chain."""
        if self.block_number is None:
            return None
        return (self.block_number, self.tx_index or 0, self.log_index or 0)


class IssuerAuthorizedSharesAdjustment(LedgerTransaction):
    __mapper_args__ = {"polymorphic_identity": TransactionKind.ISSUER_AUTHORIZED_SHARES_ADJUSTMENT.value}


class StockClassAuthorizedSharesAdjustment(LedgerTransaction):
    __mapper_args__ = {
        "polymorphic_identity": TransactionKind.STOCK_CLASS_AUTHORIZED_SHARES_ADJUSTMENT.value
    }


class StockAcceptance(LedgerTransaction):
    __mapper_args__ = {"polymorphic_identity": TransactionKind.STOCK_ACCEPTANCE.value}


class StockCancellation(LedgerTransaction):
    __mapper_args__ = {"polymorphic_identity": TransactionKind.STOCK_CANCELLATION.value}


class StockIssuance(LedgerTransaction):
    """Originating record of a security's lifecycle.

    Later lifecycle transactions reference it by ``security_id``.
    """

    __mapper_args__ = {"polymorphic_identity": TransactionKind.STOCK_ISSUANCE.value}


class StockReissuance(LedgerTransaction):
    __mapper_args__ = {"polymorphic_identity": TransactionKind.STOCK_REISSUANCE.value}


class StockRepurchase(LedgerTransaction):
    __mapper_args__ = {"polymorphic_identity": TransactionKind.STOCK_REPURCHASE.value}


class StockRetraction(LedgerTransaction):
    __mapper_args__ = {"polymorphic_identity": TransactionKind.STOCK_RETRACTION.value}


class StockTransfer(LedgerTransaction):
    __mapper_args__ = {"polymorphic_identity": TransactionKind.STOCK_TRANSFER.value}


class StockPlanPoolAdjustment(LedgerTransaction):
    __mapper_args__ = {"polymorphic_identity": TransactionKind.STOCK_PLAN_POOL_ADJUSTMENT.value}


class EquityCompensationIssuance(LedgerTransaction):
    """Option/RSU grant; ``stock_plan_id`` is NULL for non-plan awards."""

    __mapper_args__ = {"polymorphic_identity": TransactionKind.EQUITY_COMPENSATION_ISSUANCE.value}


class EquityCompensationExercise(LedgerTransaction):
    __mapper_args__ = {"polymorphic_identity": TransactionKind.EQUITY_COMPENSATION_EXERCISE.value}


class WarrantIssuance(LedgerTransaction):
    """Warrant; its share count lives in ``exercise_triggers``."""

    __mapper_args__ = {"polymorphic_identity": TransactionKind.WARRANT_ISSUANCE.value}


class ConvertibleIssuance(LedgerTransaction):
    __mapper_args__ = {"polymorphic_identity": TransactionKind.CONVERTIBLE_ISSUANCE.value}
