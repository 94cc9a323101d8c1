"""Mapping checks for the cap table models."""

import datetime
from decimal import Decimal

from sqlalchemy import inspect
from sqlalchemy.orm import Session

from captable_sync.models import (
    Issuer,
    LedgerTransaction,
    StockClass,
    StockIssuance,
    StockTransfer,
    TransactionKind,
)
from ledger_factories import uid


def test_table_names():
    assert Issuer.__tablename__ == "issuer"
    assert StockClass.__tablename__ == "stock_class"
    assert StockIssuance.__table__ is LedgerTransaction.__table__


def test_polymorphic_kind_is_set_on_construction():
    tx = StockTransfer(id=uid(1), issuer_id=uid(2))
    assert tx.kind == TransactionKind.STOCK_TRANSFER.value


def test_provenance_only_for_ledger_rows():
    assert StockIssuance(id=uid(1), block_number=12, tx_index=3, log_index=4).provenance == (12, 3, 4)
    assert StockIssuance(id=uid(2), date=datetime.date(2024, 1, 1)).provenance is None


def test_decimal_amounts_round_trip_exactly(db_session: Session, issuer: Issuer, common_class: StockClass):
    db_session.add(
        StockIssuance(
            id=uid(500),
            issuer_id=issuer.id,
            stock_class_id=common_class.id,
            quantity=Decimal("123456789012345678.0123456789"),
            share_price=Decimal("0.0000000001"),
        )
    )
    db_session.commit()
    db_session.expire_all()

    stored = db_session.get(LedgerTransaction, uid(500))
    assert isinstance(stored, StockIssuance)
    assert stored.quantity == Decimal("123456789012345678.0123456789")
    assert stored.share_price == Decimal("0.0000000001")
    assert stored.created_at is not None


def test_issuer_defaults(db_session: Session, issuer: Issuer):
    state = inspect(issuer)
    assert state.persistent
    assert issuer.sync_failures == 0
    assert issuer.quarantined is False
