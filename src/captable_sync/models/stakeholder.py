"""SQLAlchemy model for stakeholders."""

from sqlalchemy import Boolean, ForeignKey, String, Text
from sqlalchemy.orm import Mapped, mapped_column

from captable_sync.db.session import Base


class Stakeholder(Base):
    """A holder of securities issued by an issuer."""

    __tablename__ = "stakeholder"

    id: Mapped[str] = mapped_column(String(36), primary_key=True)
    issuer_id: Mapped[str] = mapped_column(
        String(36), ForeignKey("issuer.id"), nullable=False, index=True
    )
    name: Mapped[str] = mapped_column(Text, nullable=False)
    current_relationship: Mapped[str | None] = mapped_column(String(32), nullable=True)
    is_onchain_synced: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
