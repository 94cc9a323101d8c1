"""SQLAlchemy model for equity compensation plans."""

from __future__ import annotations

from decimal import Decimal

from sqlalchemy import Boolean, ForeignKey, String, Text
from sqlalchemy.orm import Mapped, mapped_column

from captable_sync.db.session import Base
from captable_sync.db.types import DecimalText


class StockPlan(Base):
    """A reserved share pool for equity compensation grants."""

    __tablename__ = "stock_plan"

    id: Mapped[str] = mapped_column(String(36), primary_key=True)
    issuer_id: Mapped[str] = mapped_column(
        String(36), ForeignKey("issuer.id"), nullable=False, index=True
    )
    plan_name: Mapped[str] = mapped_column(Text, nullable=False)
    stock_class_id: Mapped[str | None] = mapped_column(String(36), nullable=True)
    initial_shares_reserved: Mapped[Decimal] = mapped_column(
        DecimalText, nullable=False, default=Decimal(0)
    )
    shares_reserved: Mapped[Decimal] = mapped_column(
        DecimalText, nullable=False, default=Decimal(0)
    )
    is_onchain_synced: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
