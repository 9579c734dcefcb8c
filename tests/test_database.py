import asyncio
import threading
import time
from datetime import datetime, timezone
from decimal import Decimal

import pytest
from psycopg2.pool import PoolError

from remixrite.core import database as database_module
from remixrite.core.database import Database, PostgresContentStore, PostgresSettlementStore
from remixrite.core.memory import InMemoryLedgerClient, InMemoryStorage, StaticTagGenerator
from remixrite.services.container import store_thread_budget, wire_services

from conftest import ALICE

class FakeCursor:
    def __init__(self, rows_for):
        self.rows_for = rows_for
        self.rows = []

    def __enter__(self):
        return self

    def __exit__(self, *exc):
        return False

    def execute(self, sql, params=()):
        time.sleep(0.01)
        self.rows = self.rows_for(sql, params)

    def fetchall(self):
        return self.rows

    def fetchone(self):
        return self.rows[0] if self.rows else None

class FakeConnection:
    def __init__(self, rows_for):
        self.rows_for = rows_for

    def cursor(self, cursor_factory=None):
        return FakeCursor(self.rows_for)

    def commit(self):
        pass

    def rollback(self):
        pass

class FakePool:
    """Hands out at most ``maxconn`` connections, like psycopg2's pools."""

    def __init__(self, maxconn, rows_for):
        self.maxconn = maxconn
        self.rows_for = rows_for
        self.lock = threading.Lock()
        self.in_use = 0
        self.peak = 0

    def getconn(self):
        with self.lock:
            if self.in_use >= self.maxconn:
                raise PoolError("connection pool exhausted")
            self.in_use += 1
            self.peak = max(self.peak, self.in_use)
        return FakeConnection(self.rows_for)

    def putconn(self, conn):
        with self.lock:
            self.in_use -= 1

    def closeall(self):
        pass

def clip_row(clip_id):
    return {
        "id": clip_id,
        "title": clip_id,
        "source_url": f"memory://{clip_id}",
        "metadata": {"kind": "audio"},
        "owner_address": ALICE,
        "ledger_asset_id": f"asset-{clip_id}",
        "license_terms": None,
        "created_at": None,
    }

def remix_row(remix_id, clip_ids):
    return {
        "id": remix_id,
        "creator_id": "creator-1",
        "original_clip_ids": clip_ids,
        "output_url": f"memory://{remix_id}",
        "ledger_tx_hash": f"tx-{remix_id}",
        "ledger_asset_id": None,
        "title": None,
        "content_hash": None,
        "tags": [],
        "fee": Decimal("0.50"),
        "created_at": datetime.now(timezone.utc),
    }

@pytest.fixture
def pools(monkeypatch):
    remixes = [remix_row(f"remix-{n}", [f"clip-{n}-{p}" for p in range(8)]) for n in range(10)]

    def rows_for(sql, params):
        if "FROM remixes" in sql:
            return remixes
        if "FROM clips" in sql:
            return [clip_row(params[0])]
        return []

    created = []

    def factory(minconn, maxconn, dsn):
        pool = FakePool(maxconn, rows_for)
        created.append(pool)
        return pool

    monkeypatch.setattr(database_module, "ThreadedConnectionPool", factory)
    return created

def test_listing_resolves_every_parent_through_a_small_pool(pools):
    database = Database(dsn="postgresql://test", max_connections=6)
    services = wire_services(PostgresContentStore(database), PostgresSettlementStore(database),
                             InMemoryStorage(), InMemoryLedgerClient(), StaticTagGenerator(),
                             database=database, backend="postgres", resolver_concurrency=3)
    try:
        listed = asyncio.run(services.queries.list_remixes())
    finally:
        services.close()

    assert [len(remix.original_clips) for remix in listed] == [8] * 10
    assert pools[0].peak <= 6

def test_store_threads_fit_inside_the_pool():
    assert store_thread_budget(20, 8) == 12
    with pytest.raises(ValueError):
        store_thread_budget(8, 8)

def test_wiring_rejects_pool_smaller_than_lookup_cap(content_store, settlement_store, storage, ledger, tagger):
    with pytest.raises(ValueError):
        wire_services(content_store, settlement_store, storage, ledger, tagger,
                      max_connections=4, resolver_concurrency=4)
