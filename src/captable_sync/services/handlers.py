"""Apply/persist handlers for decoded ledger events.

Every handler runs inside the coordinator's transaction and only touches the
database through the session it is given. Transactions are upserted by id, so
replaying an event converges on the same row.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Any, TypeVar, assert_never

from sqlalchemy.orm import Session

from captable_sync.models import (
    Issuer,
    IssuerAuthorizedSharesAdjustment,
    LedgerTransaction,
    StockAcceptance,
    StockCancellation,
    StockClassAuthorizedSharesAdjustment,
    StockIssuance,
    StockReissuance,
    StockRepurchase,
    StockRetraction,
    StockTransfer,
)
from captable_sync.repositories.issuer_repo import IssuerRepository
from captable_sync.repositories.transaction_repo import TransactionRepository
from captable_sync.services.decoder import NormalizedEvent
from captable_sync.services.errors import DispatchError, ReferenceEntityMissingError
from captable_sync.services.structs import (
    EntityCreatedData,
    EntityKind,
    IssuerAuthorizedSharesAdjustmentData,
    StockAcceptanceData,
    StockCancellationData,
    StockClassAuthorizedSharesAdjustmentData,
    StockIssuanceData,
    StockReissuanceData,
    StockRepurchaseData,
    StockRetractionData,
    StockTransferData,
    TxPayload,
)

logger = logging.getLogger(__name__)

P = TypeVar("P")


@dataclass
class HandlerContext:
    """Per-batch state shared by handlers: the open session and the issuer."""

    session: Session
    issuer: Issuer

    @property
    def transactions(self) -> TransactionRepository:
        return TransactionRepository(self.session)

    @property
    def issuers(self) -> IssuerRepository:
        return IssuerRepository(self.session)


def _payload_fields(payload: TxPayload) -> tuple[type[LedgerTransaction], dict[str, Any]]:
    """Map a decoded payload onto its model class and column values."""
    match payload:
        case IssuerAuthorizedSharesAdjustmentData():
            return IssuerAuthorizedSharesAdjustment, {
                "new_shares_authorized": payload.new_shares_authorized,
                "board_approval_date": payload.board_approval_date,
                "stockholder_approval_date": payload.stockholder_approval_date,
            }
        case StockClassAuthorizedSharesAdjustmentData():
            return StockClassAuthorizedSharesAdjustment, {
                "stock_class_id": payload.stock_class_id,
                "new_shares_authorized": payload.new_shares_authorized,
                "board_approval_date": payload.board_approval_date,
                "stockholder_approval_date": payload.stockholder_approval_date,
            }
        case StockAcceptanceData():
            return StockAcceptance, {"security_id": payload.security_id}
        case StockCancellationData():
            return StockCancellation, {
                "security_id": payload.security_id,
                "quantity": payload.quantity,
                "reason_text": payload.reason_text,
                "balance_security_id": payload.balance_security_id,
            }
        case StockIssuanceData():
            return StockIssuance, {
                "security_id": payload.security_id,
                "stakeholder_id": payload.stakeholder_id,
                "stock_class_id": payload.stock_class_id,
                "stock_plan_id": payload.stock_plan_id,
                "share_price": payload.share_price,
                "share_price_currency": "USD",
                "quantity": payload.quantity,
                "issuance_type": payload.issuance_type,
            }
        case StockReissuanceData():
            return StockReissuance, {
                "security_id": payload.security_id,
                "resulting_security_ids": list(payload.resulting_security_ids),
                "reason_text": payload.reason_text,
            }
        case StockRepurchaseData():
            return StockRepurchase, {
                "security_id": payload.security_id,
                "share_price": payload.price,
                "share_price_currency": "USD",
                "quantity": payload.quantity,
                "consideration_text": payload.consideration_text,
                "balance_security_id": payload.balance_security_id,
            }
        case StockRetractionData():
            return StockRetraction, {
                "security_id": payload.security_id,
                "reason_text": payload.reason_text,
            }
        case StockTransferData():
            return StockTransfer, {
                "security_id": payload.security_id,
                "quantity": payload.quantity,
                "consideration_text": payload.consideration_text,
                "balance_security_id": payload.balance_security_id,
                "resulting_security_ids": list(payload.resulting_security_ids),
            }
        case _:
            assert_never(payload)


def _expect_payload(event: NormalizedEvent, payload_type: type[P]) -> P:
    payload = event.payload
    if not isinstance(payload, payload_type):
        raise DispatchError(
            f"{event.type.name} handler received {type(payload).__name__}, "
            f"expected {payload_type.__name__}"
        )
    return payload


def persist_transaction(ctx: HandlerContext, event: NormalizedEvent) -> LedgerTransaction:
    """Upsert the transaction carried by ``event`` with its ledger provenance."""
    payload = event.payload
    if isinstance(payload, EntityCreatedData):
        raise DispatchError(f"{payload.kind.value} is not a transaction event")

    model, fields = _payload_fields(payload)
    record = ctx.transactions.upsert(
        model,
        payload.id,
        issuer_id=ctx.issuer.id,
        date=event.date,
        comments=list(payload.comments),
        block_number=event.origin.block,
        tx_index=event.origin.tx_index,
        log_index=event.origin.log_index,
        is_onchain_synced=True,
        **fields,
    )
    logger.debug("Persisted %s %s at %s", model.__name__, record.id, event.origin)
    return record


def handle_issuer_authorized_shares_adjustment(ctx: HandlerContext, event: NormalizedEvent) -> None:
    record = persist_transaction(ctx, event)
    if record.new_shares_authorized is not None:
        ctx.issuer.shares_authorized = record.new_shares_authorized


def handle_stock_class_authorized_shares_adjustment(
    ctx: HandlerContext, event: NormalizedEvent
) -> None:
    payload = _expect_payload(event, StockClassAuthorizedSharesAdjustmentData)
    stock_class = ctx.issuers.get_stock_class(ctx.issuer.id, payload.stock_class_id)
    if stock_class is None:
        raise ReferenceEntityMissingError(
            "StockClass", payload.stock_class_id, f"adjustment {payload.id}"
        )
    persist_transaction(ctx, event)
    stock_class.shares_authorized = payload.new_shares_authorized


def handle_stock_issuance(ctx: HandlerContext, event: NormalizedEvent) -> None:
    payload = _expect_payload(event, StockIssuanceData)
    if ctx.issuers.get_stock_class(ctx.issuer.id, payload.stock_class_id) is None:
        raise ReferenceEntityMissingError(
            "StockClass", payload.stock_class_id, f"issuance {payload.id}"
        )
    persist_transaction(ctx, event)


def handle_lifecycle_transaction(ctx: HandlerContext, event: NormalizedEvent) -> None:
    """Acceptance, cancellation, reissuance, repurchase, retraction and transfer."""
    persist_transaction(ctx, event)


def _mark_synced(ctx: HandlerContext, event: NormalizedEvent, kind: EntityKind) -> None:
    payload = _expect_payload(event, EntityCreatedData)
    entity: Any
    match kind:
        case EntityKind.STAKEHOLDER:
            entity = ctx.issuers.get_stakeholder(ctx.issuer.id, payload.entity_id)
        case EntityKind.STOCK_CLASS:
            entity = ctx.issuers.get_stock_class(ctx.issuer.id, payload.entity_id)
        case EntityKind.STOCK_PLAN:
            entity = ctx.issuers.get_stock_plan(ctx.issuer.id, payload.entity_id)
        case _:
            assert_never(kind)

    if entity is None:
        raise ReferenceEntityMissingError(kind.name.title().replace("_", ""), payload.entity_id)
    entity.is_onchain_synced = True
    logger.debug("%s %s confirmed on-chain", kind.value, payload.entity_id)


def handle_stakeholder_created(ctx: HandlerContext, event: NormalizedEvent) -> None:
    _mark_synced(ctx, event, EntityKind.STAKEHOLDER)


def handle_stock_class_created(ctx: HandlerContext, event: NormalizedEvent) -> None:
    _mark_synced(ctx, event, EntityKind.STOCK_CLASS)


def handle_stock_plan_created(ctx: HandlerContext, event: NormalizedEvent) -> None:
    _mark_synced(ctx, event, EntityKind.STOCK_PLAN)
