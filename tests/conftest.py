from decimal import Decimal

import pytest

from remixrite.core.memory import (
    InMemoryContentStore,
    InMemoryDatabase,
    InMemoryLedgerClient,
    InMemorySettlementStore,
    InMemoryStorage,
    StaticTagGenerator,
    seed_clip,
)
from remixrite.services.container import wire_services

ALICE = "0x" + "a1" * 20
BOB = "0x" + "b2" * 20
CAROL = "0x" + "c3" * 20

@pytest.fixture
def memory_db():
    return InMemoryDatabase()

@pytest.fixture
def content_store(memory_db):
    return InMemoryContentStore(memory_db)

@pytest.fixture
def settlement_store(memory_db):
    return InMemorySettlementStore(memory_db)

@pytest.fixture
def ledger():
    return InMemoryLedgerClient()

@pytest.fixture
def storage():
    return InMemoryStorage()

@pytest.fixture
def tagger():
    return StaticTagGenerator()

@pytest.fixture
def clips(memory_db):
    """Three clips with distinct owners, inserted in a known order."""
    return [
        seed_clip(memory_db, "Morning Loop", ALICE, kind="audio", clip_id="clip-1"),
        seed_clip(memory_db, "City Lights", BOB, kind="video", clip_id="clip-2"),
        seed_clip(memory_db, "Bass Drop", CAROL, kind="audio", clip_id="clip-3"),
    ]

@pytest.fixture
def services(content_store, settlement_store, storage, ledger, tagger, clips):
    container = wire_services(content_store, settlement_store, storage, ledger, tagger)
    yield container
    container.close()

@pytest.fixture
def fee():
    return Decimal("0.50")
