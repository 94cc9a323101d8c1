"""All-or-nothing persistence of one issuer's batch and its checkpoint."""

from __future__ import annotations

import logging
from collections.abc import Callable, Sequence

from sqlalchemy.orm import Session

from captable_sync.models import Issuer
from captable_sync.repositories.issuer_repo import IssuerRepository
from captable_sync.services.decoder import NormalizedEvent
from captable_sync.services.dispatcher import Dispatcher
from captable_sync.services.errors import ReferenceEntityMissingError
from captable_sync.services.handlers import HandlerContext

logger = logging.getLogger(__name__)

SessionFactory = Callable[[], Session]
UnitOfWork = Callable[[Session, Issuer], None]


class PersistenceCoordinator:
    """Commits a batch's handler effects and checkpoint advance as one unit.

    Idempotency comes from upsert-by-id in the handlers, not from this class:
    a rolled-back batch is simply re-scanned on the next cycle. Side effects
    a handler performs outside the database are not covered by the rollback.
    """

    def __init__(self, session_factory: SessionFactory, dispatcher: Dispatcher | None = None) -> None:
        self._session_factory = session_factory
        self._dispatcher = dispatcher or Dispatcher()

    def run_atomic(self, issuer_id: str, work: UnitOfWork) -> None:
        """Run ``work`` against the issuer inside a single database transaction."""
        with self._session_factory() as session, session.begin():
            issuer = IssuerRepository(session).get(issuer_id)
            if issuer is None:
                raise ReferenceEntityMissingError("Issuer", issuer_id)
            work(session, issuer)

    def commit_batch(
        self, issuer_id: str, events: Sequence[NormalizedEvent], checkpoint: int
    ) -> None:
        """Apply ``events`` in order, then move the checkpoint to ``checkpoint``.

        Any exception rolls the whole unit back and leaves the checkpoint as it was.
        """

        def apply(session: Session, issuer: Issuer) -> None:
            ctx = HandlerContext(session=session, issuer=issuer)
            for event in events:
                self._dispatcher.dispatch(ctx, event)
            IssuerRepository(session).advance_checkpoint(issuer, checkpoint)

        self.run_atomic(issuer_id, apply)
        logger.info(
            "Committed %d events for issuer %s; checkpoint now %d",
            len(events),
            issuer_id,
            checkpoint,
        )
