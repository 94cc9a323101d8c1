"""Decode raw ledger records into normalized, typed events."""

from __future__ import annotations

import datetime
import logging
from collections.abc import Iterable
from dataclasses import dataclass
from typing import NamedTuple, TypeAlias

from eth_abi import decode
from eth_abi.exceptions import DecodingError

from captable_sync.db.time import ledger_date
from captable_sync.services.errors import DecodeError
from captable_sync.services.ledger import LedgerClient, RawEvent
from captable_sync.services.structs import (
    ENTITY_CREATED_TOPICS,
    TX_CREATED_ARGS,
    TX_CREATED_TOPIC,
    TX_LAYOUTS,
    EntityCreatedData,
    EntityKind,
    TxPayload,
    TxType,
    bytes16_to_uuid,
)

logger = logging.getLogger(__name__)

EventType: TypeAlias = TxType | EntityKind
EventPayload: TypeAlias = TxPayload | EntityCreatedData

_DECODE_FAILURES = (DecodingError, ValueError, TypeError, OverflowError)


class EventOrigin(NamedTuple):
    """Ledger position of an event; tuples sort in global apply order."""

    block: int
    tx_index: int
    log_index: int


@dataclass(frozen=True)
class NormalizedEvent:
    type: EventType
    timestamp: int
    payload: EventPayload
    origin: EventOrigin

    @property
    def date(self) -> datetime.date:
        return ledger_date(self.timestamp)


class BlockTimestamps:
    """Block timestamp lookups for one cycle; each block is fetched once."""

    def __init__(self, ledger: LedgerClient) -> None:
        self._ledger = ledger
        self._cache: dict[int, int] = {}

    async def get(self, block_number: int) -> int:
        if block_number not in self._cache:
            block = await self._ledger.get_block(block_number)
            self._cache[block_number] = block.timestamp
        return self._cache[block_number]


def decode_tx_created(data: bytes) -> tuple[TxType, TxPayload]:
    """Decode a ``TxCreated`` container and the struct registered for its tag.

    Raises:
        DecodeError: unknown or reserved tag, or a payload that does not
            match the tag's layout.
    """
    try:
        _length, tag, tx_data = decode(list(TX_CREATED_ARGS), data)
    except _DECODE_FAILURES as exc:
        raise DecodeError(f"Malformed TxCreated envelope: {exc}") from exc

    try:
        tx_type = TxType(tag)
    except ValueError as exc:
        raise DecodeError(f"Unknown transaction type tag {tag}") from exc

    layout = TX_LAYOUTS.get(tx_type)
    if layout is None:
        raise DecodeError(f"Transaction type tag {tag} ({tx_type.name}) has no wire layout")

    try:
        (values,) = decode([layout.abi_type], tx_data)
        return tx_type, layout.build(values)
    except _DECODE_FAILURES as exc:
        raise DecodeError(f"Malformed {tx_type.name} payload: {exc}") from exc


def decode_entity_created(kind: EntityKind, data: bytes) -> EntityCreatedData:
    try:
        (entity_id,) = decode(["bytes16"], data)
        return EntityCreatedData(kind=kind, entity_id=bytes16_to_uuid(entity_id))
    except _DECODE_FAILURES as exc:
        raise DecodeError(f"Malformed {kind.value} notification: {exc}") from exc


def decode_issuer_created(data: bytes) -> str:
    """Return the issuer id carried by the genesis ``IssuerCreated`` event."""
    try:
        (issuer_id,) = decode(["bytes16"], data)
        return bytes16_to_uuid(issuer_id)
    except _DECODE_FAILURES as exc:
        raise DecodeError(f"Malformed IssuerCreated event: {exc}") from exc


def decode_event(raw: RawEvent, timestamp: int) -> NormalizedEvent | None:
    """Decode one raw record; returns None for records we do not consume."""

    origin = EventOrigin(raw.block_number, raw.tx_index, raw.log_index)
    topic0 = raw.topic0

    event_type: EventType
    payload: EventPayload
    if topic0 == TX_CREATED_TOPIC:
        event_type, payload = decode_tx_created(raw.data)
    elif topic0 in ENTITY_CREATED_TOPICS:
        event_type = ENTITY_CREATED_TOPICS[topic0]
        payload = decode_entity_created(event_type, raw.data)
    else:
        logger.debug("Skipping unrelated log %s at %s", topic0, origin)
        return None

    return NormalizedEvent(type=event_type, timestamp=timestamp, payload=payload, origin=origin)


async def decode_events(
    raw_events: Iterable[RawEvent], timestamps: BlockTimestamps
) -> list[NormalizedEvent]:
    """Decode every consumable record of a scan range, in input order."""

    events: list[NormalizedEvent] = []
    for raw in raw_events:
        if raw.removed:
            logger.debug(
                "Skipping removed log at block %d (tx %d, log %d)",
                raw.block_number,
                raw.tx_index,
                raw.log_index,
            )
            continue
        if raw.topic0 != TX_CREATED_TOPIC and raw.topic0 not in ENTITY_CREATED_TOPICS:
            continue
        timestamp = await timestamps.get(raw.block_number)
        event = decode_event(raw, timestamp)
        if event is not None:
            events.append(event)
    return events
