# tests/conftest.py
from __future__ import annotations

import os
from collections.abc import Generator, Iterator
from decimal import Decimal

import pytest
from fastapi import FastAPI
from fastapi.testclient import TestClient
from sqlalchemy import create_engine
from sqlalchemy.engine import Engine
from sqlalchemy.orm import Session, sessionmaker
from sqlalchemy.pool import StaticPool

os.environ.setdefault("PYTEST_RUNNING", "true")
os.environ.setdefault("LEDGER_ENABLED", "false")

from captable_sync.db.session import Base, create_tables, drop_tables
from captable_sync.main import app as fastapi_app
from captable_sync.models import Issuer, Stakeholder, StockClass, StockClassType, StockPlan
from ledger_factories import CONTRACT, FakeLedger, uid

TEST_DB_URL = "sqlite://"

ISSUER_ID = uid(1)
COMMON_CLASS_ID = uid(10)
PREFERRED_CLASS_ID = uid(11)
PLAN_ID = uid(20)
STAKEHOLDER_ID = uid(30)
DEPLOY_TX = "0x" + "ab" * 32


@pytest.fixture(scope="session")
def engine() -> Generator[Engine, None, None]:
    engine = create_engine(
        TEST_DB_URL,
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    create_tables(engine)
    try:
        yield engine
    finally:
        drop_tables(engine)
        engine.dispose()


@pytest.fixture()
def session_factory(engine: Engine) -> Iterator[sessionmaker[Session]]:
    """Session factory bound to the test engine; tables are emptied afterwards."""
    factory = sessionmaker(bind=engine, autocommit=False, autoflush=False, expire_on_commit=False)
    try:
        yield factory
    finally:
        with engine.begin() as cleanup_conn:
            for table in reversed(Base.metadata.sorted_tables):
                cleanup_conn.execute(table.delete())


@pytest.fixture()
def db_session(session_factory: sessionmaker[Session]) -> Iterator[Session]:
    session = session_factory()
    try:
        yield session
    finally:
        session.close()


@pytest.fixture()
def issuer(db_session: Session) -> Issuer:
    """A deployed issuer whose checkpoint sits at block 100."""
    issuer = Issuer(
        id=ISSUER_ID,
        legal_name="Acme Robotics, Inc.",
        chain_id=31337,
        deployed_to=CONTRACT,
        tx_hash=DEPLOY_TX,
        initial_shares_authorized=Decimal(10_000_000),
        shares_authorized=Decimal(10_000_000),
        last_processed_block=100,
        deployment_block=90,
        is_onchain_synced=True,
    )
    db_session.add(issuer)
    db_session.commit()
    return issuer


@pytest.fixture()
def common_class(db_session: Session, issuer: Issuer) -> StockClass:
    stock_class = StockClass(
        id=COMMON_CLASS_ID,
        issuer_id=issuer.id,
        name="Series A",
        class_type=StockClassType.COMMON.value,
        votes_per_share=Decimal(1),
        price_per_share=Decimal("1.50"),
        liquidation_preference_multiple=Decimal(1),
        initial_shares_authorized=Decimal(5_000_000),
        shares_authorized=Decimal(5_000_000),
    )
    db_session.add(stock_class)
    db_session.commit()
    return stock_class


@pytest.fixture()
def preferred_class(db_session: Session, issuer: Issuer) -> StockClass:
    stock_class = StockClass(
        id=PREFERRED_CLASS_ID,
        issuer_id=issuer.id,
        name="Seed Preferred",
        class_type=StockClassType.PREFERRED.value,
        votes_per_share=Decimal(2),
        price_per_share=Decimal("3.00"),
        liquidation_preference_multiple=Decimal("1.5"),
        initial_shares_authorized=Decimal(1_000_000),
        shares_authorized=Decimal(1_000_000),
    )
    db_session.add(stock_class)
    db_session.commit()
    return stock_class


@pytest.fixture()
def stock_plan(db_session: Session, common_class: StockClass) -> StockPlan:
    plan = StockPlan(
        id=PLAN_ID,
        issuer_id=common_class.issuer_id,
        plan_name="2024 Equity Incentive Plan",
        stock_class_id=common_class.id,
        initial_shares_reserved=Decimal(1000),
        shares_reserved=Decimal(1000),
    )
    db_session.add(plan)
    db_session.commit()
    return plan


@pytest.fixture()
def stakeholder(db_session: Session, issuer: Issuer) -> Stakeholder:
    holder = Stakeholder(
        id=STAKEHOLDER_ID,
        issuer_id=issuer.id,
        name="Ada Lovelace",
        current_relationship="FOUNDER",
    )
    db_session.add(holder)
    db_session.commit()
    return holder


@pytest.fixture()
def fake_ledger() -> FakeLedger:
    return FakeLedger(head=100)


@pytest.fixture(scope="session")
def app() -> FastAPI:
    return fastapi_app


@pytest.fixture()
def client(app: FastAPI) -> Iterator[TestClient]:
    with TestClient(app, base_url="http://test") as test_client:
        yield test_client
