"""Shared fixtures: in-memory SQLite store and JSON-RPC/REST mock transports."""

import json
import os

os.environ.setdefault("POSTGRES_DSN", "sqlite://")
os.environ.setdefault("API_KEY", "test-api-key")
os.environ.setdefault("OTEL_SDK_DISABLED", "true")

import httpx
import pytest
from sqlalchemy import create_engine, event
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

from railpay.common.config import CommonSettings
from railpay.common.db import Base
from railpay.services.purchases import models  # noqa: F401  (registers tables)


BUYER = "0x1111111111111111111111111111111111111111"
TREASURY = "0x2222222222222222222222222222222222222222"
TX_HASH = "0x" + "ab" * 32


@pytest.fixture
def session_factory():
    engine = create_engine(
        "sqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    Base.metadata.create_all(engine)
    factory = sessionmaker(bind=engine, autoflush=False, autocommit=False, expire_on_commit=False)
    yield factory
    engine.dispose()


@pytest.fixture
def file_session_factory(tmp_path):
    """File-backed SQLite where each thread gets its own connection.

    Transactions start with BEGIN IMMEDIATE so concurrent writers queue on the
    database lock instead of failing with SQLITE_BUSY.
    """

    engine = create_engine(
        f"sqlite:///{tmp_path / 'railpay.db'}",
        connect_args={"check_same_thread": False, "timeout": 30},
    )

    @event.listens_for(engine, "connect")
    def _driver_autocommit(dbapi_connection, connection_record):
        dbapi_connection.isolation_level = None

    @event.listens_for(engine, "begin")
    def _begin_immediate(conn):
        conn.exec_driver_sql("BEGIN IMMEDIATE")

    Base.metadata.create_all(engine)
    factory = sessionmaker(bind=engine, autoflush=False, autocommit=False, expire_on_commit=False)
    yield factory
    engine.dispose()


@pytest.fixture
def config():
    return CommonSettings(
        postgres_dsn="sqlite://",
        api_key="test-api-key",
        evm_rpc_urls={1: "http://evm.test"},
        btc_rpc_url="http://btc.test",
        btc_rpc_user="rpc",
        btc_rpc_password="secret",
        xrpl_rpc_url="http://xrpl.test",
        pi_api_base="http://pi.test/v2",
        pi_api_key="pi-key",
        verify_timeout_seconds=5,
    )


def rpc_transport(handlers: dict, calls: list | None = None) -> httpx.MockTransport:
    """Mock JSON-RPC endpoint.

    `handlers` maps method name to either a result value or a callable taking
    the params list and returning the result. Unknown methods answer a
    JSON-RPC error.
    """

    def handle(request: httpx.Request) -> httpx.Response:
        body = json.loads(request.content)
        method = body["method"]
        if calls is not None:
            calls.append(body)
        if method not in handlers:
            return httpx.Response(200, json={"id": body.get("id"), "error": {"code": -32601, "message": "not found"}})
        handler = handlers[method]
        result = handler(body["params"]) if callable(handler) else handler
        return httpx.Response(200, json={"id": body.get("id"), "result": result})

    return httpx.MockTransport(handle)


def evm_handlers(
    *,
    block_number: int = 100,
    head: int = 105,
    sender: str = BUYER,
    to: str | None = TREASURY,
    value: int = 10**18,
    status: str = "0x1",
    logs: list | None = None,
) -> dict:
    receipt = {"status": status, "blockNumber": hex(block_number), "logs": logs or []}
    tx = {"hash": TX_HASH, "from": sender, "to": to, "value": hex(value)}
    return {
        "eth_getTransactionReceipt": receipt,
        "eth_getTransactionByHash": tx,
        "eth_blockNumber": hex(head),
    }


def seed_rail(
    session_factory,
    rail="eth",
    chain_id=1,
    currency="eth",
    treasury=TREASURY,
    min_confirmations=2,
    enabled=True,
    meta=None,
):
    from railpay.services.purchases import store

    with session_factory() as db:
        row = store.upsert_rail(
            db,
            rail=rail,
            chain_id=chain_id,
            currency=currency,
            treasury=treasury,
            rpc_url=None,
            enabled=enabled,
            min_confirmations=min_confirmations,
            meta=meta,
        )
        db.commit()
        return row


def seed_price(session_factory, listing_id="listing-1", currency="eth", amount=10**18, active=True):
    from railpay.services.purchases.models import ListingPrice

    with session_factory() as db:
        price = ListingPrice(listing_id=listing_id, currency=currency, amount_int=amount, active=active)
        db.add(price)
        db.commit()
        return price
