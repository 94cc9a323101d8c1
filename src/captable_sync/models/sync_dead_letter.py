"""SQLAlchemy model for batches that were set aside after repeated failures."""

from __future__ import annotations

import datetime

from sqlalchemy import BigInteger, DateTime, ForeignKey, Integer, String, Text
from sqlalchemy.orm import Mapped, mapped_column

from captable_sync.db.session import Base
from captable_sync.db.time import utcnow


class SyncDeadLetter(Base):
    """Record of the block range that wedged an issuer's sync."""

    __tablename__ = "sync_dead_letter"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    issuer_id: Mapped[str] = mapped_column(
        String(36), ForeignKey("issuer.id"), nullable=False, index=True
    )
    start_block: Mapped[int | None] = mapped_column(BigInteger, nullable=True)
    end_block: Mapped[int | None] = mapped_column(BigInteger, nullable=True)
    error_type: Mapped[str] = mapped_column(String(64), nullable=False)
    error_message: Mapped[str] = mapped_column(Text, nullable=False)
    created_at: Mapped[datetime.datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=utcnow
    )
