# src/captable_sync/main.py
"""Main entry point for the cap table sync service."""

from __future__ import annotations

import logging
from typing import Any

from fastapi import FastAPI

from captable_sync.core.settings import settings
from captable_sync.services.ledger import get_ledger_client
from captable_sync.services.ledger_sync import LedgerSyncWorker

logging.basicConfig(
    level=getattr(logging, settings.log_level.upper(), logging.INFO),
    format="%(asctime)s %(levelname)s [%(name)s] %(message)s",
)
logger = logging.getLogger(__name__)

# Initialize FastAPI app
app = FastAPI(
    title=settings.app_name,
    description="Ledger-to-database cap table synchronisation service",
    version=settings.app_version,
)


def ledger_enabled() -> bool:
    """Return True if ledger polling is configured."""
    return get_ledger_client().enabled


@app.on_event("startup")
async def on_startup() -> None:
    if ledger_enabled():
        worker = LedgerSyncWorker(get_ledger_client())
        await worker.start()
        app.state.sync_worker = worker
        logger.info("Ledger sync worker started against %s", settings.ledger_rpc_url)
    else:
        app.state.sync_worker = None
        logger.info("Ledger sync disabled")


@app.on_event("shutdown")
async def on_shutdown() -> None:
    worker: LedgerSyncWorker | None = getattr(app.state, "sync_worker", None)
    if worker:
        await worker.stop()
    if ledger_enabled():
        await get_ledger_client().close()


@app.get("/health")
async def health_check() -> dict[str, Any]:
    """Liveness check plus the state of the ledger sync worker."""
    worker: LedgerSyncWorker | None = getattr(app.state, "sync_worker", None)
    if worker is None:
        return {"status": "ok", "sync": {"enabled": False}}

    client = get_ledger_client()
    return {
        "status": "ok" if worker.running else "degraded",
        "sync": {
            "enabled": True,
            **worker.status(),
            "ledger": client.get_connection_status(),
            "metrics": client.get_metrics(),
        },
    }


if __name__ == "__main__":
    import uvicorn
    uvicorn.run("captable_sync.main:app", host="0.0.0.0", port=8000, reload=settings.debug)
