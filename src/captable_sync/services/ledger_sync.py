"""Background synchronisation of issuer ledgers into the local store.

This module provides the LedgerSyncWorker class that polls the ledger for every
deployed issuer and applies new events through the decode, order, dispatch and
commit pipeline. Each issuer moves through three states:

- UNSYNCED: no checkpoint yet; waits for the deployment receipt to settle
- BOOTSTRAPPING: verifies the genesis event and seeds the checkpoint
- STEADY: scans ``checkpoint + 1 .. min(checkpoint + max_blocks, head)``
"""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass
from enum import Enum
from typing import Any

from sqlalchemy import update
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from captable_sync.core.settings import settings
from captable_sync.db.session import SessionLocal
from captable_sync.db.time import utcnow
from captable_sync.models import Issuer, SyncDeadLetter
from captable_sync.repositories.issuer_repo import IssuerRepository
from captable_sync.services.coordinator import PersistenceCoordinator, SessionFactory
from captable_sync.services.decoder import BlockTimestamps, decode_events, decode_issuer_created
from captable_sync.services.errors import (
    BootstrapError,
    DispatchError,
    LedgerError,
    LedgerUnavailableError,
    ReferenceEntityMissingError,
    SyncError,
)
from captable_sync.services.ledger import LedgerClient, get_ledger_client
from captable_sync.services.ordering import trim_events
from captable_sync.services.structs import ISSUER_CREATED_TOPIC

logger = logging.getLogger(__name__)

# Errors that abort one issuer's batch without stopping the sweep.
BATCH_FAILURES = (SyncError, SQLAlchemyError, ValueError, TypeError, KeyError, AttributeError)


class SyncState(str, Enum):
    UNSYNCED = "unsynced"
    BOOTSTRAPPING = "bootstrapping"
    STEADY = "steady"


@dataclass(frozen=True)
class IssuerSnapshot:
    """Fields of an issuer a cycle needs, read before any ledger call."""

    id: str
    deployed_to: str
    tx_hash: str | None
    last_processed_block: int | None


@dataclass(frozen=True)
class CycleResult:
    """Outcome of one issuer cycle."""

    issuer_id: str
    state: SyncState
    start_block: int | None = None
    end_block: int | None = None
    event_count: int = 0
    checkpoint: int | None = None
    committed: bool = False
    reason: str | None = None


class IssuerSyncCycle:
    """Runs one poll cycle for one issuer.

    The events of a cycle live only in the ``run`` call that fetched them;
    nothing is shared between cycles or issuers.
    """

    def __init__(
        self,
        ledger: LedgerClient,
        coordinator: PersistenceCoordinator,
        session_factory: SessionFactory = SessionLocal,
        *,
        max_blocks: int | None = None,
        max_events: int | None = None,
        finalized_only: bool | None = None,
        required_confirmations: int | None = None,
    ) -> None:
        self.ledger = ledger
        self.coordinator = coordinator
        self._session_factory = session_factory
        self.max_blocks = max(1, max_blocks if max_blocks is not None else settings.sync_max_blocks)
        self.max_events = max(
            1, max_events if max_events is not None else settings.sync_max_events
        )
        self.finalized_only = (
            settings.sync_finalized_only if finalized_only is None else finalized_only
        )
        self.required_confirmations = max(
            1,
            settings.ledger_required_confirmations
            if required_confirmations is None
            else required_confirmations,
        )

    async def run(self, issuer_id: str) -> CycleResult:
        snapshot = await asyncio.to_thread(self._load, issuer_id)
        checkpoint = snapshot.last_processed_block
        if checkpoint is None:
            return await self._bootstrap(snapshot)
        return await self._advance(snapshot, checkpoint)

    def _load(self, issuer_id: str) -> IssuerSnapshot:
        with self._session_factory() as session:
            issuer = IssuerRepository(session).get(issuer_id)
            if issuer is None:
                raise ReferenceEntityMissingError("Issuer", issuer_id)
            if not issuer.deployed_to:
                raise BootstrapError(f"Issuer {issuer_id} has no deployed contract address")
            return IssuerSnapshot(
                id=issuer.id,
                deployed_to=issuer.deployed_to,
                tx_hash=issuer.tx_hash,
                last_processed_block=issuer.last_processed_block,
            )

    async def head_block(self) -> int:
        """Current head under the configured finality policy."""
        block = await self.ledger.get_block("finalized" if self.finalized_only else "latest")
        return block.number

    async def _bootstrap(self, snapshot: IssuerSnapshot) -> CycleResult:
        if not snapshot.tx_hash:
            raise BootstrapError(f"Issuer {snapshot.id} has no deployment transaction")

        receipt = await self.ledger.get_receipt(snapshot.tx_hash)
        if receipt is None:
            logger.warning(
                "Deployment receipt %s for issuer %s not found yet", snapshot.tx_hash, snapshot.id
            )
            return CycleResult(snapshot.id, SyncState.UNSYNCED, reason="receipt pending")

        head = await self.head_block()
        deployment_block = receipt.block_number
        if deployment_block + self.required_confirmations - 1 > head:
            logger.debug(
                "Deployment block %d for issuer %s not final (head %d)",
                deployment_block,
                snapshot.id,
                head,
            )
            return CycleResult(snapshot.id, SyncState.UNSYNCED, reason="awaiting finality")

        checkpoint = deployment_block - 1
        try:
            await self._verify_genesis(snapshot, deployment_block)
            await asyncio.to_thread(self._seed, snapshot.id, deployment_block, checkpoint)
        except SyncError as exc:
            exc.block_range = (deployment_block, deployment_block)
            raise

        logger.info(
            "Bootstrapped issuer %s at deployment block %d", snapshot.id, deployment_block
        )
        return CycleResult(
            snapshot.id,
            SyncState.BOOTSTRAPPING,
            start_block=deployment_block,
            end_block=deployment_block,
            checkpoint=checkpoint,
            committed=True,
        )

    async def _verify_genesis(self, snapshot: IssuerSnapshot, block: int) -> None:
        raw_events = await self.ledger.get_events(snapshot.deployed_to, block, block)
        genesis = [
            raw for raw in raw_events if not raw.removed and raw.topic0 == ISSUER_CREATED_TOPIC
        ]
        if len(genesis) != 1:
            raise BootstrapError(
                f"Expected exactly one IssuerCreated event in block {block} "
                f"for issuer {snapshot.id}, found {len(genesis)}"
            )
        ledger_issuer_id = decode_issuer_created(genesis[0].data)
        if ledger_issuer_id != snapshot.id:
            raise BootstrapError(
                f"IssuerCreated carries {ledger_issuer_id}, expected {snapshot.id}"
            )

    def _seed(self, issuer_id: str, deployment_block: int, checkpoint: int) -> None:
        def seed(session: Session, issuer: Issuer) -> None:
            issuer.deployment_block = deployment_block
            issuer.is_onchain_synced = True
            IssuerRepository(session).advance_checkpoint(issuer, checkpoint)

        self.coordinator.run_atomic(issuer_id, seed)

    async def _advance(self, snapshot: IssuerSnapshot, checkpoint: int) -> CycleResult:
        start_block = checkpoint + 1
        head = await self.head_block()
        end_block = min(start_block + self.max_blocks - 1, head)
        if start_block > end_block:
            return CycleResult(
                snapshot.id,
                SyncState.STEADY,
                start_block=start_block,
                end_block=end_block,
                checkpoint=checkpoint,
                reason="up to date",
            )

        raw_events = await self.ledger.get_events(snapshot.deployed_to, start_block, end_block)
        try:
            events = await decode_events(raw_events, BlockTimestamps(self.ledger))
            batch, new_checkpoint = trim_events(events, self.max_events, end_block)
            await asyncio.to_thread(
                self.coordinator.commit_batch, snapshot.id, batch, new_checkpoint
            )
        except LedgerError:
            raise
        except SyncError as exc:
            exc.block_range = (start_block, end_block)
            raise

        if len(batch) < len(events):
            logger.info(
                "Trimmed issuer %s batch to %d of %d events (checkpoint %d, scanned to %d)",
                snapshot.id,
                len(batch),
                len(events),
                new_checkpoint,
                end_block,
            )
        return CycleResult(
            snapshot.id,
            SyncState.STEADY,
            start_block=start_block,
            end_block=end_block,
            event_count=len(batch),
            checkpoint=new_checkpoint,
            committed=True,
        )


class LedgerSyncWorker:
    """Periodically sweeps every deployed issuer and syncs its ledger.

    Failures are isolated per issuer. A transient ledger error leaves the
    issuer untouched for the next sweep; batch failures are counted and, once
    ``max_batch_failures`` consecutive failures accumulate, the issuer is
    quarantined with a dead-letter record. A missing handler quarantines at
    once. Exhausted reconnects stop the worker.
    """

    def __init__(
        self,
        ledger: LedgerClient | None = None,
        session_factory: SessionFactory = SessionLocal,
        *,
        cycle: IssuerSyncCycle | None = None,
        poll_interval: float | None = None,
        concurrency: int | None = None,
        max_batch_failures: int | None = None,
    ) -> None:
        """Initialize the ledger sync worker.

        Args:
            ledger: Optional ledger client. If None, uses the global client.
            session_factory: Factory for database sessions.
            cycle: Optional pre-built cycle (tests inject tuned limits here).
            poll_interval: Seconds between sweeps.
            concurrency: Maximum issuers synced at once within a sweep.
            max_batch_failures: Consecutive failures before quarantine; 0 disables.
        """
        self.ledger = ledger or get_ledger_client()
        self._session_factory = session_factory
        self.cycle = cycle or IssuerSyncCycle(
            self.ledger, PersistenceCoordinator(session_factory), session_factory
        )
        self.poll_interval = max(
            0.1,
            float(settings.sync_poll_interval_seconds if poll_interval is None else poll_interval),
        )
        self.concurrency = max(1, settings.sync_concurrency if concurrency is None else concurrency)
        self.max_batch_failures = (
            settings.sync_max_batch_failures if max_batch_failures is None else max_batch_failures
        )
        self._task: asyncio.Task[None] | None = None
        self._stopping = asyncio.Event()
        self._issuer_locks: dict[str, asyncio.Lock] = {}
        self.last_sweep_at: str | None = None
        self.stopped_reason: str | None = None

    @property
    def running(self) -> bool:
        return self._task is not None and not self._task.done()

    async def start(self) -> None:
        """Start the background synchronisation loop."""

        if self._task is None or self._task.done():
            self._stopping.clear()
            self.stopped_reason = None
            self._task = asyncio.create_task(self._run())

    async def stop(self) -> None:
        """Stop the loop after the in-flight sweep has drained."""

        if self._task is None:
            return

        self._stopping.set()
        await self._task
        self._task = None

    async def _run(self) -> None:
        while not self._stopping.is_set():
            try:
                await self.run_sweep()
            except LedgerUnavailableError as exc:
                logger.error("LedgerSyncWorker stopping: %s", exc)
                self.stopped_reason = str(exc)
                return
            except SQLAlchemyError as exc:
                logger.error("LedgerSyncWorker could not list issuers: %s", exc, exc_info=True)

            try:
                await asyncio.wait_for(self._stopping.wait(), timeout=self.poll_interval)
            except TimeoutError:
                continue

    async def run_sweep(self) -> list[CycleResult]:
        """Run one cycle for every syncable issuer.

        Raises:
            LedgerUnavailableError: if the ledger client has given up reconnecting.
        """
        issuer_ids = await asyncio.to_thread(self._list_issuer_ids)
        semaphore = asyncio.Semaphore(self.concurrency)

        async def bounded(issuer_id: str) -> CycleResult | None:
            async with semaphore:
                return await self.sync_issuer(issuer_id)

        outcomes = await asyncio.gather(
            *(bounded(issuer_id) for issuer_id in issuer_ids), return_exceptions=True
        )
        self.last_sweep_at = utcnow().isoformat()

        results: list[CycleResult] = []
        for issuer_id, outcome in zip(issuer_ids, outcomes):
            if isinstance(outcome, (LedgerUnavailableError, asyncio.CancelledError)):
                raise outcome
            if isinstance(outcome, BaseException):
                logger.error(
                    "Sync of issuer %s aborted: %s",
                    issuer_id,
                    outcome,
                    exc_info=(type(outcome), outcome, outcome.__traceback__),
                )
                continue
            if outcome is not None:
                results.append(outcome)
        return results

    def _list_issuer_ids(self) -> list[str]:
        with self._session_factory() as session:
            return [issuer.id for issuer in IssuerRepository(session).list_syncable()]

    async def sync_issuer(self, issuer_id: str) -> CycleResult | None:
        """Run one cycle for ``issuer_id`` and apply the failure policy.

        Returns None when the cycle failed; the failure has been logged and
        recorded by then.
        """
        lock = self._issuer_locks.setdefault(issuer_id, asyncio.Lock())
        async with lock:
            try:
                result = await self.cycle.run(issuer_id)
            except LedgerUnavailableError:
                raise
            except LedgerError as exc:
                logger.warning("Ledger error syncing issuer %s: %s", issuer_id, exc)
                return None
            except DispatchError as exc:
                logger.error("Unroutable event for issuer %s: %s", issuer_id, exc)
                await asyncio.to_thread(self._record_failure, issuer_id, exc, True)
                return None
            except BATCH_FAILURES as exc:
                logger.error(
                    "Batch failed for issuer %s (%s): %s",
                    issuer_id,
                    type(exc).__name__,
                    exc,
                    exc_info=not isinstance(exc, SyncError),
                )
                await asyncio.to_thread(self._record_failure, issuer_id, exc, False)
                return None
            except Exception as exc:
                logger.error(
                    "Unexpected error syncing issuer %s: %s", issuer_id, exc, exc_info=True
                )
                await asyncio.to_thread(self._record_failure, issuer_id, exc, False)
                return None

            if result.committed:
                await asyncio.to_thread(self._reset_failures, issuer_id)
            return result

    def _record_failure(self, issuer_id: str, exc: BaseException, immediate: bool) -> bool:
        """Count a failed batch; quarantine the issuer when the policy says so.

        Runs in its own transaction, after the batch itself was rolled back.
        """
        with self._session_factory() as session, session.begin():
            issuer = IssuerRepository(session).get(issuer_id)
            if issuer is None:
                return False
            issuer.sync_failures = (issuer.sync_failures or 0) + 1
            limit = self.max_batch_failures
            if not immediate and (limit <= 0 or issuer.sync_failures < limit):
                return False

            block_range = exc.block_range if isinstance(exc, SyncError) else None
            issuer.quarantined = True
            session.add(
                SyncDeadLetter(
                    issuer_id=issuer_id,
                    start_block=block_range[0] if block_range else None,
                    end_block=block_range[1] if block_range else None,
                    error_type=type(exc).__name__,
                    error_message=str(exc),
                )
            )
        logger.error(
            "Issuer %s quarantined after %s; sync suspended until released",
            issuer_id,
            type(exc).__name__,
        )
        return True

    def _reset_failures(self, issuer_id: str) -> None:
        with self._session_factory() as session, session.begin():
            session.execute(
                update(Issuer)
                .where(Issuer.id == issuer_id, Issuer.sync_failures != 0)
                .values(sync_failures=0)
            )

    def status(self) -> dict[str, Any]:
        """Worker state for health reporting."""
        return {
            "running": self.running,
            "last_sweep_at": self.last_sweep_at,
            "stopped_reason": self.stopped_reason,
            "concurrency": self.concurrency,
        }


def release_quarantine(issuer_id: str, session_factory: SessionFactory = SessionLocal) -> bool:
    """Resume syncing a quarantined issuer after the cause has been fixed.

    Returns False when the issuer does not exist or was not quarantined.
    """
    with session_factory() as session, session.begin():
        issuer = IssuerRepository(session).get(issuer_id)
        if issuer is None or not issuer.quarantined:
            return False
        issuer.quarantined = False
        issuer.sync_failures = 0
    logger.info("Released quarantine for issuer %s", issuer_id)
    return True
