import asyncio
import threading
import time
from decimal import Decimal

import pytest

from remixrite.core.errors import PersistenceError, RemixNotFoundError
from remixrite.models.api import RemixRequest

from conftest import ALICE, BOB

def create(services, clip_ids, creator="creator-1"):
    return asyncio.run(services.pipeline.create_remix(RemixRequest(clipIds=clip_ids, creatorId=creator)))

def test_list_remixes_filters_by_creator(services):
    create(services, ["clip-1"], creator="alice")
    create(services, ["clip-2"], creator="bob")

    everything = asyncio.run(services.queries.list_remixes())
    alices = asyncio.run(services.queries.list_remixes("alice"))

    assert len(everything) == 2
    assert [r.creator_id for r in alices] == ["alice"]
    assert alices[0].original_clips[0].id == "clip-1"
    assert alices[0].royalty_distributions[0].amount == Decimal("0.50")

def test_enrichment_tolerates_parents_that_no_longer_resolve(services, memory_db):
    remix = create(services, ["clip-1", "clip-2"])
    del memory_db.clips["clip-2"]

    fetched = asyncio.run(services.queries.get_remix(remix.id))

    assert fetched.original_clip_ids == ["clip-1", "clip-2"]
    assert [c.id for c in fetched.original_clips] == ["clip-1"]
    assert len(fetched.royalty_distributions) == 2

def test_distribution_fetch_failure_fails_listing(services, settlement_store):
    create(services, ["clip-1"])
    settlement_store.fail_distribution_reads = True
    with pytest.raises(PersistenceError):
        asyncio.run(services.queries.list_remixes())

def test_store_failure_fails_listing(services, content_store):
    content_store.unavailable = True
    with pytest.raises(PersistenceError):
        asyncio.run(services.queries.list_remixes())

def test_get_unknown_remix(services):
    with pytest.raises(RemixNotFoundError):
        asyncio.run(services.queries.get_remix("missing"))

def test_owner_earnings_sum_across_remixes(services):
    create(services, ["clip-1", "clip-2"])
    create(services, ["clip-1"])

    earnings = asyncio.run(services.queries.owner_earnings(ALICE.upper().replace("0X", "0x")))
    assert earnings.total == Decimal("0.75")
    assert len(earnings.distributions) == 2

    bob = asyncio.run(services.queries.owner_earnings(BOB))
    assert bob.total == Decimal("0.25")

def test_empty_listing(services):
    assert asyncio.run(services.queries.list_remixes()) == []

def test_listing_enriches_a_bounded_number_of_remixes_at_once(services, settlement_store):
    for n in range(6):
        create(services, ["clip-1", "clip-2"], creator=f"creator-{n}")

    lock = threading.Lock()
    in_flight = 0
    peak = 0
    original = settlement_store.distributions_for

    def tracked(remix_id):
        nonlocal in_flight, peak
        with lock:
            in_flight += 1
            peak = max(peak, in_flight)
        time.sleep(0.05)
        with lock:
            in_flight -= 1
        return original(remix_id)

    settlement_store.distributions_for = tracked
    services.queries.concurrency = 2

    listed = asyncio.run(services.queries.list_remixes())

    assert len(listed) == 6
    assert all(len(remix.royalty_distributions) == 2 for remix in listed)
    assert peak <= 2
