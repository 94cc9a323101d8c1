"""SQLAlchemy model for issuers and their sync checkpoint."""

from __future__ import annotations

import datetime
from decimal import Decimal

from sqlalchemy import BigInteger, Boolean, DateTime, Integer, String, Text
from sqlalchemy.orm import Mapped, mapped_column

from captable_sync.db.session import Base
from captable_sync.db.time import utcnow
from captable_sync.db.types import DecimalText


class Issuer(Base):
    """An entity whose equity is tracked on the ledger.

    ``last_processed_block`` is the sync checkpoint: ``None`` means the issuer has
    never been synced. It only ever moves forward, and only in the same database
    transaction as the ledger transactions it covers.
    """

    __tablename__ = "issuer"

    id: Mapped[str] = mapped_column(String(36), primary_key=True)
    legal_name: Mapped[str] = mapped_column(Text, nullable=False)
    chain_id: Mapped[int | None] = mapped_column(BigInteger, nullable=True)
    # Address of the deployed cap table contract; NULL until deployment.
    deployed_to: Mapped[str | None] = mapped_column(String(42), nullable=True)
    # Deployment transaction hash, used to locate the first block to scan.
    tx_hash: Mapped[str | None] = mapped_column(String(66), nullable=True)

    initial_shares_authorized: Mapped[Decimal] = mapped_column(
        DecimalText, nullable=False, default=Decimal(0)
    )
    shares_authorized: Mapped[Decimal] = mapped_column(
        DecimalText, nullable=False, default=Decimal(0)
    )

    last_processed_block: Mapped[int | None] = mapped_column(BigInteger, nullable=True)
    deployment_block: Mapped[int | None] = mapped_column(BigInteger, nullable=True)
    is_onchain_synced: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)

    # Failure bookkeeping for the bounded-retry policy.
    sync_failures: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    quarantined: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)

    created_at: Mapped[datetime.datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=utcnow
    )
