"""Exception hierarchy for ledger synchronisation and cap table projection."""

from __future__ import annotations


class SyncError(RuntimeError):
    """Base exception for failures while syncing or projecting an issuer."""

    # Inclusive block range of the batch that failed, when known.
    block_range: tuple[int, int] | None = None


class LedgerError(SyncError):
    """Transient failure talking to the ledger (network, timeout, RPC error).

    No state changes; the cycle is retried on the next sweep.
    """


class LedgerUnavailableError(LedgerError):
    """Raised once reconnect attempts are exhausted; the client is unusable."""


class DecodeError(SyncError):
    """A raw record could not be decoded (unknown type tag or bad payload).

    Signals schema drift between the ledger and this decoder, so the batch
    is aborted instead of skipping the record.
    """


class DispatchError(SyncError):
    """A decoded event has no registered handler.

    Not retryable: the handler registry itself is incomplete.
    """


class ReferenceEntityMissingError(SyncError):
    """A transaction references an entity that does not exist in the store."""

    def __init__(self, entity: str, entity_id: str | None, context: str | None = None) -> None:
        message = f"{entity} {entity_id!r} not found"
        if context:
            message = f"{message} ({context})"
        super().__init__(message)
        self.entity = entity
        self.entity_id = entity_id


class BootstrapError(SyncError):
    """The ledger's genesis event is missing, duplicated or does not match."""


class CheckpointRegressionError(SyncError):
    """An attempt was made to move an issuer checkpoint backwards."""


class ProjectionError(SyncError):
    """The cap table could not be derived from the stored history."""


class ProjectionReferenceError(ProjectionError, ReferenceEntityMissingError):
    """A historical transaction references a missing stock class or plan."""


class TransactionConflictError(SyncError):
    """A transaction id is already stored under a different transaction kind."""
