# tests/test_health.py
from fastapi import FastAPI
from fastapi.testclient import TestClient
from sqlalchemy.orm import Session, sessionmaker

from captable_sync.services.ledger_sync import LedgerSyncWorker
from ledger_factories import FakeLedger


def test_health_without_ledger(client: TestClient) -> None:
    """With no RPC endpoint configured the service is healthy and sync is off."""
    r = client.get("/health")
    assert r.status_code == 200
    assert r.json() == {"status": "ok", "sync": {"enabled": False}}


def test_health_reports_stopped_worker_as_degraded(
    app: FastAPI, client: TestClient, session_factory: sessionmaker[Session]
) -> None:
    worker = LedgerSyncWorker(FakeLedger(), session_factory, poll_interval=1.0)
    app.state.sync_worker = worker
    try:
        r = client.get("/health")
    finally:
        app.state.sync_worker = None

    body = r.json()
    assert body["status"] == "degraded"
    assert body["sync"]["enabled"] is True
    assert body["sync"]["running"] is False
    assert body["sync"]["ledger"] == {"state": "connected"}
    assert "request_count" in body["sync"]["metrics"]
