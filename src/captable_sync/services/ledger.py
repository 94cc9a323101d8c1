"""Ledger adapter: JSON-RPC client for the cap table contract's event log.

This module provides:

- ``LedgerClient``, the protocol the sync pipeline consumes
- ``JsonRpcLedgerClient``, an httpx-based implementation speaking Ethereum
  JSON-RPC with request metrics and an explicit reconnect state machine
- ``wait_for_confirmations``, an explicit confirmation-wait step for callers
  that submit transactions and need them settled before continuing
"""

from __future__ import annotations

import asyncio
import logging
import time
from collections import defaultdict
from collections.abc import Awaitable, Callable, Sequence
from dataclasses import dataclass, field
from typing import Any, Protocol, TypeAlias

import httpx
from eth_utils import to_bytes, to_int

from captable_sync.core.settings import settings
from captable_sync.services.errors import LedgerError, LedgerUnavailableError

logger = logging.getLogger(__name__)

BlockTag: TypeAlias = int | str
SleepFn: TypeAlias = Callable[[float], Awaitable[None]]

HTTP_INTERNAL_SERVER_ERROR = 500


@dataclass(frozen=True)
class RawEvent:
    """One log record as returned by ``eth_getLogs``."""

    address: str
    topics: tuple[str, ...]
    data: bytes
    block_number: int
    tx_index: int
    log_index: int
    tx_hash: str | None = None
    removed: bool = False

    @property
    def topic0(self) -> str | None:
        return self.topics[0].lower() if self.topics else None


@dataclass(frozen=True)
class BlockInfo:
    number: int
    timestamp: int


@dataclass(frozen=True)
class Receipt:
    tx_hash: str
    block_number: int
    status: int = 1


class LedgerClient(Protocol):
    """Read-only view of the ledger consumed by the sync pipeline."""

    async def get_events(self, address: str, from_block: int, to_block: int) -> list[RawEvent]:
        ...

    async def get_block(self, block: BlockTag) -> BlockInfo:
        ...

    async def get_receipt(self, tx_hash: str) -> Receipt | None:
        ...


# --- Reconnect state machine -------------------------------------------------------


@dataclass(frozen=True)
class Connected:
    pass


@dataclass(frozen=True)
class Reconnecting:
    attempt: int
    next_delay: float


@dataclass(frozen=True)
class Failed:
    reason: str


ConnectionState: TypeAlias = Connected | Reconnecting | Failed


@dataclass
class LedgerMetrics:
    """Request metrics for ledger RPC calls."""

    request_count: int = 0
    success_count: int = 0
    error_count: int = 0
    reconnect_count: int = 0
    total_response_time: float = 0.0
    error_counts_by_type: dict[str, int] = field(default_factory=lambda: defaultdict(int))
    method_counts: dict[str, int] = field(default_factory=lambda: defaultdict(int))

    def record_request(
        self, method: str, response_time: float, success: bool, error_type: str | None = None
    ) -> None:
        """Record a request metric."""
        self.request_count += 1
        self.total_response_time += response_time
        self.method_counts[method] += 1

        if success:
            self.success_count += 1
        else:
            self.error_count += 1
            if error_type:
                self.error_counts_by_type[error_type] += 1

    def get_average_response_time(self) -> float:
        """Get average response time."""
        return self.total_response_time / self.request_count if self.request_count > 0 else 0.0


@dataclass(frozen=True)
class LedgerConfig:
    """Immutable configuration for ledger operations."""

    enabled: bool
    rpc_url: str | None
    timeout_seconds: float
    reconnect_max_attempts: int
    reconnect_base_delay_seconds: float


def load_ledger_config() -> LedgerConfig:
    """Build configuration object from global settings."""

    return LedgerConfig(
        enabled=bool(settings.ledger_enabled and settings.ledger_rpc_url),
        rpc_url=settings.ledger_rpc_url,
        timeout_seconds=float(settings.ledger_http_timeout_seconds),
        reconnect_max_attempts=settings.ledger_reconnect_max_attempts,
        reconnect_base_delay_seconds=float(settings.ledger_reconnect_base_delay_seconds),
    )


def _block_param(block: BlockTag) -> str:
    if isinstance(block, int):
        return hex(block)
    return block


class JsonRpcLedgerClient:
    """httpx wrapper for an Ethereum JSON-RPC endpoint.

    Transport failures drive the connection through
    ``Connected -> Reconnecting(attempt, next_delay) -> ... -> Failed``. Each
    reconnect attempt waits ``base_delay * 2 ** (attempt - 1)`` seconds before
    retrying the same call. Once ``reconnect_max_attempts`` is exhausted the
    client is ``Failed`` and every call raises ``LedgerUnavailableError``.

    JSON-RPC error objects and non-2xx responses are not connection losses:
    they raise ``LedgerError`` straight away and the state stays unchanged.
    """

    def __init__(
        self,
        config: LedgerConfig | None = None,
        *,
        transport: httpx.AsyncBaseTransport | None = None,
        sleep: SleepFn = asyncio.sleep,
    ) -> None:
        self.config = config or load_ledger_config()
        self._transport = transport
        self._sleep = sleep
        self._client: httpx.AsyncClient | None = None
        self._client_lock = asyncio.Lock()
        self._state: ConnectionState = Connected()
        self._metrics = LedgerMetrics()
        self._request_id = 0

    @property
    def enabled(self) -> bool:
        return self.config.enabled and bool(self.config.rpc_url)

    @property
    def state(self) -> ConnectionState:
        return self._state

    async def _ensure_client(self) -> httpx.AsyncClient:
        async with self._client_lock:
            if self._client is None:
                self._client = httpx.AsyncClient(
                    base_url=self.config.rpc_url or "",
                    timeout=httpx.Timeout(self.config.timeout_seconds),
                    transport=self._transport,
                )
        return self._client

    async def _post(self, method: str, params: Sequence[Any]) -> Any:
        client = await self._ensure_client()
        self._request_id += 1
        body = {"jsonrpc": "2.0", "id": self._request_id, "method": method, "params": list(params)}

        start_time = time.time()
        success = False
        error_type: str | None = None
        try:
            response = await client.post("", json=body)
            if response.status_code >= HTTP_INTERNAL_SERVER_ERROR:
                error_type = f"http_{response.status_code}"
                raise LedgerError(f"Ledger responded with {response.status_code} to {method}")
            if not response.is_success:
                error_type = f"http_{response.status_code}"
                raise LedgerError(f"Ledger rejected {method} with {response.status_code}")

            payload = response.json()
            if payload.get("error"):
                error_type = "rpc_error"
                error = payload["error"]
                raise LedgerError(f"{method} failed: {error.get('message', error)}")
            success = True
            return payload.get("result")
        except httpx.TransportError:
            error_type = "network_error"
            raise
        except ValueError as exc:
            error_type = "invalid_response"
            raise LedgerError(f"Malformed response to {method}: {exc}") from exc
        finally:
            self._metrics.record_request(method, time.time() - start_time, success, error_type)

    async def _call(self, method: str, params: Sequence[Any]) -> Any:
        # Attempts are counted per call; concurrent callers only share the published state.
        attempt = 0
        while True:
            state = self._state
            if isinstance(state, Failed):
                raise LedgerUnavailableError(f"Ledger unavailable: {state.reason}")

            try:
                result = await self._post(method, params)
            except httpx.TransportError as exc:
                attempt += 1
                await self._on_transport_error(method, exc, attempt)
                continue

            current = self._state
            if isinstance(current, Failed):
                return result
            if not isinstance(current, Connected):
                logger.info("Ledger connection restored")
            self._state = Connected()
            return result

    async def _on_transport_error(self, method: str, exc: httpx.TransportError, attempt: int) -> None:
        if attempt > self.config.reconnect_max_attempts:
            self._state = Failed(f"{method}: {exc}")
            logger.error(
                "Ledger reconnect attempts exhausted after %d tries: %s",
                self.config.reconnect_max_attempts,
                exc,
            )
            return

        delay = self.config.reconnect_base_delay_seconds * (2 ** (attempt - 1))
        self._state = Reconnecting(attempt=attempt, next_delay=delay)
        self._metrics.reconnect_count += 1
        logger.warning(
            "Ledger transport error on %s (%s); reconnect attempt %d in %.1fs",
            method,
            exc,
            attempt,
            delay,
        )
        await self._sleep(delay)

    async def get_events(self, address: str, from_block: int, to_block: int) -> list[RawEvent]:
        """Return every log emitted by ``address`` within the inclusive block range."""

        logs = await self._call(
            "eth_getLogs",
            [{"address": address, "fromBlock": hex(from_block), "toBlock": hex(to_block)}],
        )
        return [self._parse_log(entry) for entry in logs or []]

    async def get_block(self, block: BlockTag) -> BlockInfo:
        result = await self._call("eth_getBlockByNumber", [_block_param(block), False])
        if result is None:
            raise LedgerError(f"Block {block!r} not found")
        return BlockInfo(
            number=to_int(hexstr=result["number"]),
            timestamp=to_int(hexstr=result["timestamp"]),
        )

    async def get_receipt(self, tx_hash: str) -> Receipt | None:
        result = await self._call("eth_getTransactionReceipt", [tx_hash])
        if result is None:
            return None
        status = result.get("status")
        return Receipt(
            tx_hash=tx_hash,
            block_number=to_int(hexstr=result["blockNumber"]),
            status=to_int(hexstr=status) if status is not None else 1,
        )

    @staticmethod
    def _parse_log(entry: dict[str, Any]) -> RawEvent:
        try:
            return RawEvent(
                address=entry["address"],
                topics=tuple(entry.get("topics") or ()),
                data=to_bytes(hexstr=entry.get("data") or "0x"),
                block_number=to_int(hexstr=entry["blockNumber"]),
                tx_index=to_int(hexstr=entry["transactionIndex"]),
                log_index=to_int(hexstr=entry["logIndex"]),
                tx_hash=entry.get("transactionHash"),
                removed=bool(entry.get("removed", False)),
            )
        except (KeyError, TypeError, ValueError) as exc:
            raise LedgerError(f"Malformed log entry: {exc}") from exc

    def get_connection_status(self) -> dict[str, Any]:
        """Describe the reconnect state machine for health reporting."""
        state = self._state
        if isinstance(state, Connected):
            return {"state": "connected"}
        if isinstance(state, Reconnecting):
            return {"state": "reconnecting", "attempt": state.attempt, "next_delay": state.next_delay}
        return {"state": "failed", "reason": state.reason}

    def get_metrics(self) -> dict[str, Any]:
        """Get ledger RPC metrics."""
        return {
            "request_count": self._metrics.request_count,
            "success_count": self._metrics.success_count,
            "error_count": self._metrics.error_count,
            "reconnect_count": self._metrics.reconnect_count,
            "average_response_time": self._metrics.get_average_response_time(),
            "error_counts_by_type": dict(self._metrics.error_counts_by_type),
            "method_counts": dict(self._metrics.method_counts),
        }

    async def close(self) -> None:
        """Clean up underlying HTTP client resources."""

        async with self._client_lock:
            if self._client is not None:
                await self._client.aclose()
                self._client = None


async def wait_for_confirmations(
    client: LedgerClient,
    tx_hash: str,
    confirmations: int | None = None,
    *,
    poll_interval: float = 1.0,
    timeout: float = 120.0,
    sleep: SleepFn = asyncio.sleep,
) -> Receipt:
    """Block until ``tx_hash`` is mined and buried under ``confirmations`` blocks.

    A transaction mined in the current head block has one confirmation.

    Raises:
        LedgerError: if the transaction reverted or the timeout elapsed.
    """
    required = settings.ledger_required_confirmations if confirmations is None else confirmations
    required = max(1, required)
    waited = 0.0

    while True:
        receipt = await client.get_receipt(tx_hash)
        if receipt is not None:
            if receipt.status == 0:
                raise LedgerError(f"Transaction {tx_hash} reverted")
            head = await client.get_block("latest")
            if head.number - receipt.block_number + 1 >= required:
                return receipt

        if waited >= timeout:
            raise LedgerError(
                f"Transaction {tx_hash} not confirmed ({required} blocks) within {timeout}s"
            )
        await sleep(poll_interval)
        waited += poll_interval


class _LedgerClientSingleton:
    """Singleton wrapper for JsonRpcLedgerClient."""

    _instance: JsonRpcLedgerClient | None = None

    @classmethod
    def get_instance(cls) -> JsonRpcLedgerClient:
        """Get or create the singleton JsonRpcLedgerClient instance."""
        if cls._instance is None:
            cls._instance = JsonRpcLedgerClient()
        return cls._instance


def get_ledger_client() -> JsonRpcLedgerClient:
    """Return a singleton ledger client instance."""
    return _LedgerClientSingleton.get_instance()
