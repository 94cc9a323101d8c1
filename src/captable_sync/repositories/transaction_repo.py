"""Data access helpers for the transaction history."""
from __future__ import annotations

from typing import Any

from sqlalchemy import func, select
from sqlalchemy.orm import Session

from captable_sync.models import LedgerTransaction
from captable_sync.services.errors import TransactionConflictError

__all__ = ["TransactionRepository"]


class TransactionRepository:
    """Thin wrapper around database access for transaction records."""

    def __init__(self, session: Session) -> None:
        """Initialize the repository with a SQLAlchemy session."""
        self.session = session

    def get_by_id(self, transaction_id: str) -> LedgerTransaction | None:
        """Return a transaction of any kind by identifier."""
        return self.session.get(LedgerTransaction, transaction_id)

    def upsert(
        self,
        model: type[LedgerTransaction],
        transaction_id: str,
        **fields: Any,
    ) -> LedgerTransaction:
        """Insert or update a transaction by id; never creates a duplicate.

        Fields are written onto an existing row in place, so off-ledger
        metadata attached before confirmation survives unless overwritten.

        Raises:
            TransactionConflictError: if the id is stored as a different kind.
        """
        existing = self.get_by_id(transaction_id)
        if existing is None:
            record = model(id=transaction_id, **fields)
            self.session.add(record)
            self.session.flush()
            return record

        if not isinstance(existing, model):
            raise TransactionConflictError(
                f"Transaction {transaction_id} is stored as {existing.kind}, "
                f"not {model.__name__}"
            )
        for key, value in fields.items():
            setattr(existing, key, value)
        self.session.flush()
        return existing

    def list_history(self, issuer_id: str) -> list[LedgerTransaction]:
        """Return an issuer's transactions in projection order.

        Ledger-confirmed rows come first by ``(block_number, tx_index,
        log_index)``; rows without provenance follow by date and creation time.
        """
        stmt = (
            select(LedgerTransaction)
            .where(LedgerTransaction.issuer_id == issuer_id)
            .order_by(
                LedgerTransaction.block_number.is_(None),
                LedgerTransaction.block_number,
                LedgerTransaction.tx_index,
                LedgerTransaction.log_index,
                LedgerTransaction.date.is_(None),
                LedgerTransaction.date,
                LedgerTransaction.created_at,
                LedgerTransaction.id,
            )
        )
        return list(self.session.scalars(stmt))

    def count_for_issuer(self, issuer_id: str) -> int:
        """Return how many transactions are stored for an issuer."""
        stmt = (
            select(func.count())
            .select_from(LedgerTransaction)
            .where(LedgerTransaction.issuer_id == issuer_id)
        )
        return self.session.scalar(stmt) or 0
