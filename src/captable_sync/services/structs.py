"""On-ledger wire structures for cap table transactions.

The cap table contract emits two kinds of records that we consume:

- ``TxCreated(uint256 length, uint8 txType, bytes txData)``: a generic
  container whose ``txData`` is the ABI encoding of the struct registered for
  ``txType`` (see ``TX_LAYOUTS``).
- ``StakeholderCreated(bytes16)`` / ``StockClassCreated(bytes16)`` /
  ``StockPlanCreated(bytes16)``: lifecycle notifications carrying only the
  16-byte id of a newly created reference entity.

Amounts travel as fixed-point integers scaled by ``DECIMAL_SCALE``.
"""

from __future__ import annotations

import uuid
from collections.abc import Callable, Sequence
from dataclasses import dataclass
from decimal import Decimal
from enum import Enum, IntEnum
from typing import Any, TypeAlias

from eth_utils import keccak

DECIMAL_SCALE = Decimal(10) ** 10
ZERO_ID = b"\x00" * 16


class TxType(IntEnum):
    """Type tags of the generic transaction container (wire-exact)."""

    INVALID = 0
    ISSUER_AUTHORIZED_SHARES_ADJUSTMENT = 1
    STOCK_CLASS_AUTHORIZED_SHARES_ADJUSTMENT = 2
    STOCK_ACCEPTANCE = 3
    STOCK_CANCELLATION = 4
    STOCK_ISSUANCE = 5
    STOCK_REISSUANCE = 6
    STOCK_REPURCHASE = 7
    STOCK_RETRACTION = 8
    STOCK_TRANSFER = 9


class EntityKind(str, Enum):
    """Reference entities announced by lifecycle notifications."""

    STAKEHOLDER = "StakeholderCreated"
    STOCK_CLASS = "StockClassCreated"
    STOCK_PLAN = "StockPlanCreated"


TX_CREATED_SIGNATURE = "TxCreated(uint256,uint8,bytes)"
ISSUER_CREATED_SIGNATURE = "IssuerCreated(bytes16)"
TX_CREATED_ARGS = ("uint256", "uint8", "bytes")


def event_topic(signature: str) -> str:
    """Return the topic0 hash (0x-prefixed hex) of an event signature."""
    return "0x" + keccak(text=signature).hex()


TX_CREATED_TOPIC = event_topic(TX_CREATED_SIGNATURE)
ISSUER_CREATED_TOPIC = event_topic(ISSUER_CREATED_SIGNATURE)
ENTITY_CREATED_TOPICS: dict[str, EntityKind] = {
    event_topic(f"{kind.value}(bytes16)"): kind for kind in EntityKind
}


def bytes16_to_uuid(value: bytes) -> str:
    """Convert a 16-byte ledger identifier to its canonical UUID string."""
    if len(value) != 16:
        raise ValueError(f"expected 16-byte identifier, got {len(value)} bytes")
    return str(uuid.UUID(bytes=bytes(value)))


def uuid_to_bytes16(value: str) -> bytes:
    """Inverse of :func:`bytes16_to_uuid`."""
    return uuid.UUID(value).bytes


def _optional_id(value: bytes) -> str | None:
    if bytes(value) == ZERO_ID:
        return None
    return bytes16_to_uuid(value)


def _amount(value: int) -> Decimal:
    return Decimal(value) / DECIMAL_SCALE


def _text(value: str) -> str | None:
    return value or None


# --- Decoded payloads -------------------------------------------------------------


@dataclass(frozen=True)
class IssuerAuthorizedSharesAdjustmentData:
    id: str
    new_shares_authorized: Decimal
    comments: tuple[str, ...]
    board_approval_date: str | None
    stockholder_approval_date: str | None

    @classmethod
    def from_abi(cls, values: Sequence[Any]) -> IssuerAuthorizedSharesAdjustmentData:
        tx_id, _object_type, new_shares, comments, board_date, holder_date = values
        return cls(
            id=bytes16_to_uuid(tx_id),
            new_shares_authorized=_amount(new_shares),
            comments=tuple(comments),
            board_approval_date=_text(board_date),
            stockholder_approval_date=_text(holder_date),
        )


@dataclass(frozen=True)
class StockClassAuthorizedSharesAdjustmentData:
    id: str
    stock_class_id: str
    new_shares_authorized: Decimal
    comments: tuple[str, ...]
    board_approval_date: str | None
    stockholder_approval_date: str | None

    @classmethod
    def from_abi(cls, values: Sequence[Any]) -> StockClassAuthorizedSharesAdjustmentData:
        tx_id, _object_type, class_id, new_shares, comments, board_date, holder_date = values
        return cls(
            id=bytes16_to_uuid(tx_id),
            stock_class_id=bytes16_to_uuid(class_id),
            new_shares_authorized=_amount(new_shares),
            comments=tuple(comments),
            board_approval_date=_text(board_date),
            stockholder_approval_date=_text(holder_date),
        )


@dataclass(frozen=True)
class StockAcceptanceData:
    id: str
    security_id: str
    comments: tuple[str, ...]

    @classmethod
    def from_abi(cls, values: Sequence[Any]) -> StockAcceptanceData:
        tx_id, _object_type, security_id, comments = values
        return cls(
            id=bytes16_to_uuid(tx_id),
            security_id=bytes16_to_uuid(security_id),
            comments=tuple(comments),
        )


@dataclass(frozen=True)
class StockCancellationData:
    id: str
    security_id: str
    quantity: Decimal
    comments: tuple[str, ...]
    reason_text: str | None
    balance_security_id: str | None

    @classmethod
    def from_abi(cls, values: Sequence[Any]) -> StockCancellationData:
        tx_id, _object_type, quantity, comments, security_id, reason, balance_id = values
        return cls(
            id=bytes16_to_uuid(tx_id),
            security_id=bytes16_to_uuid(security_id),
            quantity=_amount(quantity),
            comments=tuple(comments),
            reason_text=_text(reason),
            balance_security_id=_optional_id(balance_id),
        )


@dataclass(frozen=True)
class StockIssuanceData:
    id: str
    security_id: str
    stakeholder_id: str | None
    stock_class_id: str
    stock_plan_id: str | None
    share_price: Decimal
    quantity: Decimal
    issuance_type: str | None
    comments: tuple[str, ...]
    custom_id: str | None

    @classmethod
    def from_abi(cls, values: Sequence[Any]) -> StockIssuanceData:
        (
            tx_id,
            _object_type,
            security_id,
            stakeholder_id,
            class_id,
            plan_id,
            share_price,
            quantity,
            issuance_type,
            comments,
            custom_id,
        ) = values
        return cls(
            id=bytes16_to_uuid(tx_id),
            security_id=bytes16_to_uuid(security_id),
            stakeholder_id=_optional_id(stakeholder_id),
            stock_class_id=bytes16_to_uuid(class_id),
            stock_plan_id=_optional_id(plan_id),
            share_price=_amount(share_price),
            quantity=_amount(quantity),
            issuance_type=_text(issuance_type),
            comments=tuple(comments),
            custom_id=_text(custom_id),
        )


@dataclass(frozen=True)
class StockReissuanceData:
    id: str
    security_id: str
    comments: tuple[str, ...]
    resulting_security_ids: tuple[str, ...]
    reason_text: str | None

    @classmethod
    def from_abi(cls, values: Sequence[Any]) -> StockReissuanceData:
        tx_id, _object_type, comments, security_id, resulting_ids, reason = values
        return cls(
            id=bytes16_to_uuid(tx_id),
            security_id=bytes16_to_uuid(security_id),
            comments=tuple(comments),
            resulting_security_ids=tuple(bytes16_to_uuid(s) for s in resulting_ids),
            reason_text=_text(reason),
        )


@dataclass(frozen=True)
class StockRepurchaseData:
    id: str
    security_id: str
    comments: tuple[str, ...]
    price: Decimal
    quantity: Decimal
    consideration_text: str | None
    balance_security_id: str | None

    @classmethod
    def from_abi(cls, values: Sequence[Any]) -> StockRepurchaseData:
        (
            tx_id,
            _object_type,
            comments,
            security_id,
            price,
            quantity,
            consideration,
            balance_id,
        ) = values
        return cls(
            id=bytes16_to_uuid(tx_id),
            security_id=bytes16_to_uuid(security_id),
            comments=tuple(comments),
            price=_amount(price),
            quantity=_amount(quantity),
            consideration_text=_text(consideration),
            balance_security_id=_optional_id(balance_id),
        )


@dataclass(frozen=True)
class StockRetractionData:
    id: str
    security_id: str
    comments: tuple[str, ...]
    reason_text: str | None

    @classmethod
    def from_abi(cls, values: Sequence[Any]) -> StockRetractionData:
        tx_id, _object_type, comments, security_id, reason = values
        return cls(
            id=bytes16_to_uuid(tx_id),
            security_id=bytes16_to_uuid(security_id),
            comments=tuple(comments),
            reason_text=_text(reason),
        )


@dataclass(frozen=True)
class StockTransferData:
    id: str
    security_id: str
    quantity: Decimal
    comments: tuple[str, ...]
    consideration_text: str | None
    balance_security_id: str | None
    resulting_security_ids: tuple[str, ...]

    @classmethod
    def from_abi(cls, values: Sequence[Any]) -> StockTransferData:
        (
            tx_id,
            _object_type,
            quantity,
            comments,
            security_id,
            consideration,
            balance_id,
            resulting_ids,
        ) = values
        return cls(
            id=bytes16_to_uuid(tx_id),
            security_id=bytes16_to_uuid(security_id),
            quantity=_amount(quantity),
            comments=tuple(comments),
            consideration_text=_text(consideration),
            balance_security_id=_optional_id(balance_id),
            resulting_security_ids=tuple(bytes16_to_uuid(s) for s in resulting_ids),
        )


@dataclass(frozen=True)
class EntityCreatedData:
    """Payload of a lifecycle notification."""

    kind: EntityKind
    entity_id: str


TxPayload: TypeAlias = (
    IssuerAuthorizedSharesAdjustmentData
    | StockClassAuthorizedSharesAdjustmentData
    | StockAcceptanceData
    | StockCancellationData
    | StockIssuanceData
    | StockReissuanceData
    | StockRepurchaseData
    | StockRetractionData
    | StockTransferData
)


@dataclass(frozen=True)
class TxLayout:
    """ABI tuple type for one tag and the builder for its payload."""

    abi_type: str
    build: Callable[[Sequence[Any]], TxPayload]


TX_LAYOUTS: dict[TxType, TxLayout] = {
    TxType.ISSUER_AUTHORIZED_SHARES_ADJUSTMENT: TxLayout(
        "(bytes16,string,uint256,string[],string,string)",
        IssuerAuthorizedSharesAdjustmentData.from_abi,
    ),
    TxType.STOCK_CLASS_AUTHORIZED_SHARES_ADJUSTMENT: TxLayout(
        "(bytes16,string,bytes16,uint256,string[],string,string)",
        StockClassAuthorizedSharesAdjustmentData.from_abi,
    ),
    TxType.STOCK_ACCEPTANCE: TxLayout(
        "(bytes16,string,bytes16,string[])",
        StockAcceptanceData.from_abi,
    ),
    TxType.STOCK_CANCELLATION: TxLayout(
        "(bytes16,string,uint256,string[],bytes16,string,bytes16)",
        StockCancellationData.from_abi,
    ),
    TxType.STOCK_ISSUANCE: TxLayout(
        "(bytes16,string,bytes16,bytes16,bytes16,bytes16,uint256,uint256,string,string[],string)",
        StockIssuanceData.from_abi,
    ),
    TxType.STOCK_REISSUANCE: TxLayout(
        "(bytes16,string,string[],bytes16,bytes16[],string)",
        StockReissuanceData.from_abi,
    ),
    TxType.STOCK_REPURCHASE: TxLayout(
        "(bytes16,string,string[],bytes16,uint256,uint256,string,bytes16)",
        StockRepurchaseData.from_abi,
    ),
    TxType.STOCK_RETRACTION: TxLayout(
        "(bytes16,string,string[],bytes16,string)",
        StockRetractionData.from_abi,
    ),
    TxType.STOCK_TRANSFER: TxLayout(
        "(bytes16,string,uint256,string[],bytes16,string,bytes16,bytes16[])",
        StockTransferData.from_abi,
    ),
}
