"""SQLAlchemy model for stock classes."""

from __future__ import annotations

from decimal import Decimal
from enum import Enum

from sqlalchemy import Boolean, ForeignKey, String, Text
from sqlalchemy.orm import Mapped, mapped_column

from captable_sync.db.session import Base
from captable_sync.db.types import DecimalText


class StockClassType(str, Enum):
    """Kinds of equity class."""

    COMMON = "COMMON"
    PREFERRED = "PREFERRED"


class StockClass(Base):
    """A class of equity with class-wide economic and voting terms."""

    __tablename__ = "stock_class"

    id: Mapped[str] = mapped_column(String(36), primary_key=True)
    issuer_id: Mapped[str] = mapped_column(
        String(36), ForeignKey("issuer.id"), nullable=False, index=True
    )
    name: Mapped[str] = mapped_column(Text, nullable=False)
    class_type: Mapped[str] = mapped_column(
        String(16), nullable=False, default=StockClassType.COMMON.value
    )
    votes_per_share: Mapped[Decimal] = mapped_column(DecimalText, nullable=False, default=Decimal(1))
    # Reference price; issuances fall back to it when they carry no share price.
    price_per_share: Mapped[Decimal | None] = mapped_column(DecimalText, nullable=True)
    liquidation_preference_multiple: Mapped[Decimal] = mapped_column(
        DecimalText, nullable=False, default=Decimal(1)
    )
    initial_shares_authorized: Mapped[Decimal] = mapped_column(
        DecimalText, nullable=False, default=Decimal(0)
    )
    # Current value; moved by class authorized-shares adjustments.
    shares_authorized: Mapped[Decimal] = mapped_column(
        DecimalText, nullable=False, default=Decimal(0)
    )
    is_onchain_synced: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
