"""Route normalized events to their apply/persist handlers."""

from __future__ import annotations

import logging
from collections.abc import Callable, Mapping
from types import MappingProxyType
from typing import TypeAlias

from captable_sync.services import handlers
from captable_sync.services.decoder import NormalizedEvent
from captable_sync.services.errors import DispatchError
from captable_sync.services.handlers import HandlerContext
from captable_sync.services.structs import EntityKind, TxType

logger = logging.getLogger(__name__)

Handler: TypeAlias = Callable[[HandlerContext, NormalizedEvent], None]

TX_HANDLERS: Mapping[TxType, Handler] = MappingProxyType(
    {
        TxType.ISSUER_AUTHORIZED_SHARES_ADJUSTMENT: handlers.handle_issuer_authorized_shares_adjustment,
        TxType.STOCK_CLASS_AUTHORIZED_SHARES_ADJUSTMENT: (
            handlers.handle_stock_class_authorized_shares_adjustment
        ),
        TxType.STOCK_ACCEPTANCE: handlers.handle_lifecycle_transaction,
        TxType.STOCK_CANCELLATION: handlers.handle_lifecycle_transaction,
        TxType.STOCK_ISSUANCE: handlers.handle_stock_issuance,
        TxType.STOCK_REISSUANCE: handlers.handle_lifecycle_transaction,
        TxType.STOCK_REPURCHASE: handlers.handle_lifecycle_transaction,
        TxType.STOCK_RETRACTION: handlers.handle_lifecycle_transaction,
        TxType.STOCK_TRANSFER: handlers.handle_lifecycle_transaction,
    }
)

ENTITY_HANDLERS: Mapping[EntityKind, Handler] = MappingProxyType(
    {
        EntityKind.STAKEHOLDER: handlers.handle_stakeholder_created,
        EntityKind.STOCK_CLASS: handlers.handle_stock_class_created,
        EntityKind.STOCK_PLAN: handlers.handle_stock_plan_created,
    }
)


class Dispatcher:
    """Static registry of handlers keyed by transaction tag and entity kind.

    Registries are injectable so tests can exercise an incomplete registry.
    """

    def __init__(
        self,
        tx_handlers: Mapping[TxType, Handler] | None = None,
        entity_handlers: Mapping[EntityKind, Handler] | None = None,
    ) -> None:
        self.tx_handlers = TX_HANDLERS if tx_handlers is None else tx_handlers
        self.entity_handlers = ENTITY_HANDLERS if entity_handlers is None else entity_handlers

    def resolve(self, event: NormalizedEvent) -> Handler:
        """Return the handler for ``event``.

        Raises:
            DispatchError: if no handler is registered for the event type.
        """
        handler: Handler | None
        if isinstance(event.type, TxType):
            handler = self.tx_handlers.get(event.type)
        else:
            handler = self.entity_handlers.get(event.type)
        if handler is None:
            raise DispatchError(f"No handler registered for {event.type!r} at {event.origin}")
        return handler

    def dispatch(self, ctx: HandlerContext, event: NormalizedEvent) -> None:
        handler = self.resolve(event)
        logger.debug("Dispatching %s at %s", event.type, event.origin)
        handler(ctx, event)


def registry_is_total() -> bool:
    """True when every non-reserved tag and every entity kind has a handler."""
    tags = {tag for tag in TxType if tag is not TxType.INVALID}
    return tags <= set(TX_HANDLERS) and set(EntityKind) <= set(ENTITY_HANDLERS)
