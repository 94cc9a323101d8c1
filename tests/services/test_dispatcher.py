from decimal import Decimal

import pytest
from sqlalchemy.orm import Session

from captable_sync.models import Issuer, Stakeholder, StockClass, StockIssuance, StockTransfer
from captable_sync.services.decoder import NormalizedEvent, decode_event
from captable_sync.services.dispatcher import (
    ENTITY_HANDLERS,
    TX_HANDLERS,
    Dispatcher,
    registry_is_total,
)
from captable_sync.services.errors import DispatchError, ReferenceEntityMissingError
from captable_sync.services.handlers import HandlerContext, handle_stock_issuance
from captable_sync.services.structs import EntityKind, TxType
from ledger_factories import (
    BASE_TIMESTAMP,
    class_adjustment_values,
    entity_created_log,
    issuance_values,
    issuer_adjustment_values,
    transfer_values,
    tx_created_log,
    uid,
)


def as_event(log) -> NormalizedEvent:
    event = decode_event(log, BASE_TIMESTAMP + log.block_number * 12)
    assert event is not None
    return event


def test_registry_covers_every_tag_and_entity_kind() -> None:
    assert registry_is_total()
    assert TxType.INVALID not in TX_HANDLERS
    assert set(ENTITY_HANDLERS) == set(EntityKind)


def test_missing_handler_raises_dispatch_error(db_session: Session, issuer: Issuer) -> None:
    registry = {tag: handler for tag, handler in TX_HANDLERS.items() if tag is not TxType.STOCK_TRANSFER}
    dispatcher = Dispatcher(tx_handlers=registry)
    event = as_event(
        tx_created_log(TxType.STOCK_TRANSFER, transfer_values(uid(600), security_id=uid(500), quantity=1), block=101)
    )

    with pytest.raises(DispatchError):
        dispatcher.dispatch(HandlerContext(db_session, issuer), event)


def test_issuance_is_upserted_with_provenance(
    db_session: Session, issuer: Issuer, common_class: StockClass
) -> None:
    dispatcher = Dispatcher()
    event = as_event(
        tx_created_log(
            TxType.STOCK_ISSUANCE,
            issuance_values(uid(500), stock_class_id=common_class.id, quantity=100, share_price=2),
            block=101,
            tx_index=1,
            log_index=2,
        )
    )
    ctx = HandlerContext(db_session, issuer)

    dispatcher.dispatch(ctx, event)
    dispatcher.dispatch(ctx, event)
    db_session.commit()

    rows = db_session.query(StockIssuance).all()
    assert len(rows) == 1
    row = rows[0]
    assert row.id == uid(500)
    assert row.provenance == (101, 1, 2)
    assert row.is_onchain_synced is True
    assert row.quantity == Decimal(100)
    assert row.date == event.date


def test_issuance_for_unknown_class_is_rejected(db_session: Session, issuer: Issuer) -> None:
    event = as_event(
        tx_created_log(TxType.STOCK_ISSUANCE, issuance_values(uid(500), stock_class_id=uid(99)), block=101)
    )

    with pytest.raises(ReferenceEntityMissingError):
        Dispatcher().dispatch(HandlerContext(db_session, issuer), event)


def test_class_adjustment_updates_reference_value(
    db_session: Session, issuer: Issuer, common_class: StockClass
) -> None:
    event = as_event(
        tx_created_log(
            TxType.STOCK_CLASS_AUTHORIZED_SHARES_ADJUSTMENT,
            class_adjustment_values(uid(700), stock_class_id=common_class.id, new_shares_authorized=7_000_000),
            block=102,
        )
    )

    Dispatcher().dispatch(HandlerContext(db_session, issuer), event)
    db_session.commit()

    db_session.refresh(common_class)
    assert common_class.shares_authorized == Decimal(7_000_000)


def test_issuer_adjustment_replaces_authorized_shares(db_session: Session, issuer: Issuer) -> None:
    first = as_event(
        tx_created_log(TxType.ISSUER_AUTHORIZED_SHARES_ADJUSTMENT,
                       issuer_adjustment_values(uid(701), new_shares_authorized=20_000_000), block=102)
    )
    second = as_event(
        tx_created_log(TxType.ISSUER_AUTHORIZED_SHARES_ADJUSTMENT,
                       issuer_adjustment_values(uid(702), new_shares_authorized=15_000_000), block=103)
    )
    ctx = HandlerContext(db_session, issuer)
    dispatcher = Dispatcher()

    dispatcher.dispatch(ctx, first)
    dispatcher.dispatch(ctx, second)

    assert issuer.shares_authorized == Decimal(15_000_000)


def test_transfer_references_but_does_not_replace_issuance(
    db_session: Session, issuer: Issuer, common_class: StockClass
) -> None:
    dispatcher = Dispatcher()
    ctx = HandlerContext(db_session, issuer)
    dispatcher.dispatch(ctx, as_event(tx_created_log(
        TxType.STOCK_ISSUANCE, issuance_values(uid(500), stock_class_id=common_class.id), block=101)))
    dispatcher.dispatch(ctx, as_event(tx_created_log(
        TxType.STOCK_TRANSFER,
        transfer_values(uid(600), security_id=uid(500), quantity=40, resulting=[uid(501)]),
        block=102,
    )))
    db_session.commit()

    assert db_session.get(StockIssuance, uid(500)) is not None
    transfer = db_session.get(StockTransfer, uid(600))
    assert transfer is not None
    assert transfer.security_id == uid(500)
    assert transfer.resulting_security_ids == [uid(501)]


def test_entity_created_marks_stakeholder_synced(
    db_session: Session, issuer: Issuer, stakeholder: Stakeholder
) -> None:
    event = as_event(entity_created_log(EntityKind.STAKEHOLDER, stakeholder.id, block=101))

    Dispatcher().dispatch(HandlerContext(db_session, issuer), event)
    db_session.commit()

    db_session.refresh(stakeholder)
    assert stakeholder.is_onchain_synced is True


def test_entity_created_for_missing_entity_fails(db_session: Session, issuer: Issuer) -> None:
    event = as_event(entity_created_log(EntityKind.STOCK_PLAN, uid(404), block=101))

    with pytest.raises(ReferenceEntityMissingError) as excinfo:
        Dispatcher().dispatch(HandlerContext(db_session, issuer), event)
    assert excinfo.value.entity == "StockPlan"


@pytest.fixture()
def other_issuer(db_session: Session) -> Issuer:
    other = Issuer(
        id=uid(2),
        legal_name="Globex Holdings",
        deployed_to="0x" + "0b" * 20,
        tx_hash="0x" + "cd" * 32,
        initial_shares_authorized=Decimal(1_000_000),
        shares_authorized=Decimal(1_000_000),
        last_processed_block=100,
        deployment_block=80,
    )
    db_session.add(other)
    db_session.commit()
    return other


def test_issuance_referencing_another_issuers_class_is_rejected(
    db_session: Session, issuer: Issuer, other_issuer: Issuer
) -> None:
    foreign_class = StockClass(
        id=uid(12),
        issuer_id=other_issuer.id,
        name="Globex Common",
        initial_shares_authorized=Decimal(1_000_000),
        shares_authorized=Decimal(1_000_000),
    )
    db_session.add(foreign_class)
    db_session.commit()
    event = as_event(
        tx_created_log(TxType.STOCK_ISSUANCE, issuance_values(uid(500), stock_class_id=foreign_class.id), block=101)
    )

    with pytest.raises(ReferenceEntityMissingError) as excinfo:
        Dispatcher().dispatch(HandlerContext(db_session, issuer), event)
    assert excinfo.value.entity_id == foreign_class.id
    db_session.rollback()
    assert db_session.get(StockIssuance, uid(500)) is None


def test_entity_created_for_another_issuers_stakeholder_fails(
    db_session: Session, other_issuer: Issuer, stakeholder: Stakeholder
) -> None:
    event = as_event(entity_created_log(EntityKind.STAKEHOLDER, stakeholder.id, block=101))

    with pytest.raises(ReferenceEntityMissingError):
        Dispatcher().dispatch(HandlerContext(db_session, other_issuer), event)
    db_session.rollback()
    db_session.refresh(stakeholder)
    assert stakeholder.is_onchain_synced is False


def test_handler_rejects_mismatched_payload(db_session: Session, issuer: Issuer) -> None:
    event = as_event(
        tx_created_log(TxType.STOCK_TRANSFER, transfer_values(uid(600), security_id=uid(500), quantity=1), block=101)
    )

    with pytest.raises(DispatchError, match="expected StockIssuanceData"):
        handle_stock_issuance(HandlerContext(db_session, issuer), event)
