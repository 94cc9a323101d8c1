"""Data access helpers for issuers and their reference entities."""
from __future__ import annotations

from sqlalchemy import select
from sqlalchemy.orm import Session

from captable_sync.models import Issuer, Stakeholder, StockClass, StockPlan
from captable_sync.services.errors import CheckpointRegressionError

__all__ = ["IssuerRepository"]


class IssuerRepository:
    """Thin wrapper around database access for issuers, classes, plans and stakeholders."""

    def __init__(self, session: Session) -> None:
        """Initialize the repository with a SQLAlchemy session."""
        self.session = session

    def get(self, issuer_id: str) -> Issuer | None:
        """Return an issuer by identifier."""
        return self.session.get(Issuer, issuer_id)

    def list_syncable(self) -> list[Issuer]:
        """Return deployed, non-quarantined issuers in a stable order."""
        stmt = (
            select(Issuer)
            .where(Issuer.deployed_to.is_not(None), Issuer.quarantined.is_(False))
            .order_by(Issuer.created_at, Issuer.id)
        )
        return list(self.session.scalars(stmt))

    # Reference lookups are scoped to one issuer; another issuer's entity is "missing".
    def get_stock_class(self, issuer_id: str, stock_class_id: str) -> StockClass | None:
        stmt = select(StockClass).where(
            StockClass.id == stock_class_id, StockClass.issuer_id == issuer_id
        )
        return self.session.scalars(stmt).first()

    def get_stock_plan(self, issuer_id: str, stock_plan_id: str) -> StockPlan | None:
        stmt = select(StockPlan).where(StockPlan.id == stock_plan_id, StockPlan.issuer_id == issuer_id)
        return self.session.scalars(stmt).first()

    def get_stakeholder(self, issuer_id: str, stakeholder_id: str) -> Stakeholder | None:
        stmt = select(Stakeholder).where(
            Stakeholder.id == stakeholder_id, Stakeholder.issuer_id == issuer_id
        )
        return self.session.scalars(stmt).first()

    def list_stock_classes(self, issuer_id: str) -> list[StockClass]:
        stmt = select(StockClass).where(StockClass.issuer_id == issuer_id).order_by(StockClass.id)
        return list(self.session.scalars(stmt))

    def list_stock_plans(self, issuer_id: str) -> list[StockPlan]:
        stmt = select(StockPlan).where(StockPlan.issuer_id == issuer_id).order_by(StockPlan.id)
        return list(self.session.scalars(stmt))

    def advance_checkpoint(self, issuer: Issuer, block: int) -> None:
        """Move ``last_processed_block`` forward to ``block``.

        Raises:
            CheckpointRegressionError: if ``block`` is behind the stored checkpoint.
        """
        current = issuer.last_processed_block
        if current is not None and block < current:
            raise CheckpointRegressionError(
                f"Checkpoint for issuer {issuer.id} cannot move from {current} to {block}"
            )
        issuer.last_processed_block = block
        self.session.flush()
