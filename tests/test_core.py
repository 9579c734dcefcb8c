import asyncio
import time

import pytest

from remixrite.core.concurrency import bounded_gather, call_with_timeout
from remixrite.core.errors import LedgerRegistrationError, PartialSettlementError, ValidationError
from remixrite.core.utils import (
    calculate_content_hash,
    dedupe_ids,
    is_valid_owner_address,
    media_kind_for,
    new_id,
    sanitize_filename,
)

def test_new_id_unique():
    ids = {new_id() for _ in range(5)}
    assert len(ids) == 5

def test_dedupe_ids_keeps_first_seen_order():
    assert dedupe_ids(["b", "a", "b", " ", "", "c", "a"]) == ["b", "a", "c"]

def test_owner_address_validation():
    assert is_valid_owner_address("0x" + "aB" * 20)
    assert not is_valid_owner_address("0x123")
    assert not is_valid_owner_address("ab" * 21)
    assert not is_valid_owner_address(None)

def test_content_hash_is_stable():
    assert calculate_content_hash(b"remix") == calculate_content_hash(b"remix")
    assert calculate_content_hash(b"remix") != calculate_content_hash(b"remixes")

def test_media_kind_for():
    assert media_kind_for("audio/mpeg") == "audio"
    assert media_kind_for("video/mp4") == "video"
    assert media_kind_for(None, "clip.MOV") == "video"
    assert media_kind_for("image/png", "photo.png") is None

def test_sanitize_filename_strips_path_characters():
    cleaned = sanitize_filename("../../etc/pass wd.mp3")
    assert "/" not in cleaned
    assert cleaned.endswith(".mp3")

def test_error_bodies_carry_stage():
    assert ValidationError("bad").to_dict() == {"error": "bad", "stage": "validation"}

    body = LedgerRegistrationError("boom", step="derivative_linked", last_completed="asset_registered").to_dict()
    assert body["stage"] == "ledger"
    assert body["failed_step"] == "derivative_linked"
    assert body["last_completed_step"] == "asset_registered"

    partial = PartialSettlementError("half", remix=None, distributions=[], failed=[{"clip_id": "x"}])
    assert partial.status_code == 207
    assert partial.to_dict()["failed_distributions"] == [{"clip_id": "x"}]

def test_bounded_gather_respects_limit_and_order():
    in_flight = 0
    peak = 0

    async def worker(item):
        nonlocal in_flight, peak
        in_flight += 1
        peak = max(peak, in_flight)
        await asyncio.sleep(0.01)
        in_flight -= 1
        return item * 2

    results = asyncio.run(bounded_gather(list(range(10)), worker, limit=3))
    assert results == [i * 2 for i in range(10)]
    assert peak <= 3

def test_bounded_gather_propagates_first_error():
    async def worker(item):
        if item == 2:
            raise ValueError("bad item")
        await asyncio.sleep(0.01)
        return item

    with pytest.raises(ValueError):
        asyncio.run(bounded_gather([1, 2, 3], worker, limit=2))

def test_call_with_timeout_raises_on_slow_call():
    with pytest.raises(asyncio.TimeoutError):
        asyncio.run(call_with_timeout(time.sleep, 0.5, timeout=0.05))
