import asyncio
import base64
import json
import threading
import time
from decimal import Decimal

import pytest

from remixrite.core.errors import (
    LedgerOutcomeUnknownError,
    LedgerRegistrationError,
    PartialSettlementError,
    RemixNotFoundError,
    ResolutionError,
    UploadError,
    ValidationError,
)
from remixrite.models.api import RemixRequest

def request(clip_ids, creator="creator-1", **extra):
    return RemixRequest(clipIds=clip_ids, creatorId=creator, **extra)

def test_three_parent_remix_splits_fee(services, memory_db):
    remix = asyncio.run(services.pipeline.create_remix(request(["clip-1", "clip-2", "clip-3"])))

    assert remix.original_clip_ids == ["clip-1", "clip-2", "clip-3"]
    assert [c.id for c in remix.original_clips] == ["clip-1", "clip-2", "clip-3"]
    assert [d.amount for d in remix.royalty_distributions] == [Decimal("0.16"), Decimal("0.16"), Decimal("0.18")]
    assert remix.fee == Decimal("0.50")
    assert remix.ledger_tx_hash.startswith("0x")
    assert list(memory_db.remixes) == [remix.id]

def test_empty_clip_list_is_rejected_before_any_call(services, ledger, storage, content_store):
    with pytest.raises(ValidationError):
        asyncio.run(services.pipeline.create_remix(request([])))
    assert content_store.lookups == []
    assert storage.objects == {}
    assert ledger.calls == {}

def test_missing_creator_is_rejected(services):
    with pytest.raises(ValidationError):
        asyncio.run(services.pipeline.create_remix(request(["clip-1"], creator="  ")))

def test_partially_resolved_remix_pays_full_fee_to_resolved_parent(services):
    remix = asyncio.run(services.pipeline.create_remix(request(["clip-1", "missing"])))

    assert remix.original_clip_ids == ["clip-1"]
    assert len(remix.royalty_distributions) == 1
    assert remix.royalty_distributions[0].amount == Decimal("0.50")

def test_nothing_resolves(services, ledger):
    with pytest.raises(ResolutionError):
        asyncio.run(services.pipeline.create_remix(request(["missing-1", "missing-2"])))
    assert ledger.calls == {}

def test_ledger_link_failure_persists_nothing(services, ledger, memory_db):
    ledger.fail_steps.add("register_derivative")

    with pytest.raises(LedgerRegistrationError) as exc_info:
        asyncio.run(services.pipeline.create_remix(request(["clip-1", "clip-2"])))

    assert exc_info.value.step == "derivative_linked"
    assert "derivative_linked" in exc_info.value.message
    assert memory_db.remixes == {}
    assert memory_db.distributions == {}

def test_upload_failure_stops_before_ledger(services, storage, ledger, memory_db):
    storage.fail = True
    with pytest.raises(UploadError):
        asyncio.run(services.pipeline.create_remix(request(["clip-1"])))
    assert ledger.calls == {}
    assert memory_db.remixes == {}

def test_tagger_failure_falls_back(services, tagger):
    tagger.fail = True
    remix = asyncio.run(services.pipeline.create_remix(request(["clip-1"], style="lofi")))

    assert remix.title == "Remix of Morning Loop"
    assert remix.tags[:2] == ["video", "remix"]

def test_generated_title_and_tags_are_used(services):
    remix = asyncio.run(services.pipeline.create_remix(request(["clip-1"])))
    assert remix.title == "Generated Remix"
    assert remix.tags == ["remix", "mashup"]

def test_explicit_title_wins(services):
    remix = asyncio.run(services.pipeline.create_remix(request(["clip-1"], title="My Cut")))
    assert remix.title == "My Cut"

def test_base64_payload_is_uploaded_verbatim(services, storage):
    payload = b"\x00\x01rendered-bytes"
    remix = asyncio.run(services.pipeline.create_remix(
        request(["clip-1"], remixData=base64.b64encode(payload).decode("ascii"))))
    assert storage.objects[remix.content_hash] == payload

def test_manifest_is_uploaded_without_payload(services, storage):
    remix = asyncio.run(services.pipeline.create_remix(request(["clip-2", "clip-1"], mood="dark")))
    manifest = json.loads(storage.objects[remix.content_hash])
    assert [clip["id"] for clip in manifest["originalClips"]] == ["clip-2", "clip-1"]
    assert manifest["mood"] == "dark"

def test_ledger_timeout_reports_pending_step(services, ledger, memory_db):
    original = ledger.register_derivative

    def slow_link(*args):
        time.sleep(0.3)
        return original(*args)

    ledger.register_derivative = slow_link
    services.pipeline.ledger_timeout = 0.05

    with pytest.raises(LedgerRegistrationError) as exc_info:
        asyncio.run(services.pipeline.create_remix(request(["clip-1"])))

    assert exc_info.value.step == "derivative_linked"
    assert exc_info.value.last_completed == "asset_registered"
    assert memory_db.remixes == {}

def test_cancelled_request_lets_the_ledger_call_finish(services, ledger, memory_db):
    original = ledger.register_derivative
    started = threading.Event()
    finished = threading.Event()

    def slow_link(*args):
        started.set()
        time.sleep(0.2)
        try:
            return original(*args)
        finally:
            finished.set()

    ledger.register_derivative = slow_link

    async def cancel_mid_link():
        task = asyncio.ensure_future(services.pipeline.create_remix(request(["clip-1"])))
        while not started.is_set():
            await asyncio.sleep(0.01)
        task.cancel()
        with pytest.raises(LedgerOutcomeUnknownError) as exc_info:
            await task
        return exc_info.value

    error = asyncio.run(cancel_mid_link())

    assert error.status_code == 504
    assert error.step == "derivative_linked"
    assert error.last_completed == "asset_registered"
    assert finished.wait(1)
    assert len(ledger.links) == 1
    assert memory_db.remixes == {}

def test_partial_settlement_then_reconcile(services, settlement_store, memory_db):
    settlement_store.failing_distribution_clip_ids.add("clip-2")

    with pytest.raises(PartialSettlementError) as exc_info:
        asyncio.run(services.pipeline.create_remix(request(["clip-1", "clip-2", "clip-3"])))

    remix = exc_info.value.remix
    assert [c.id for c in remix.original_clips] == ["clip-1", "clip-2", "clip-3"]
    assert len(remix.royalty_distributions) == 2

    settlement_store.failing_distribution_clip_ids.clear()
    reconciled = asyncio.run(services.pipeline.reconcile(remix.id))

    assert reconciled.id == remix.id
    assert len(memory_db.remixes) == 1
    assert sorted(d.clip_id for d in reconciled.royalty_distributions) == ["clip-1", "clip-2", "clip-3"]
    assert sum(d.amount for d in reconciled.royalty_distributions) == Decimal("0.50")

def test_reconcile_unknown_remix(services):
    with pytest.raises(RemixNotFoundError):
        asyncio.run(services.pipeline.reconcile("no-such-remix"))

def test_reconcile_requires_every_parent(services, memory_db):
    remix = asyncio.run(services.pipeline.create_remix(request(["clip-1", "clip-2"])))
    del memory_db.clips["clip-2"]
    with pytest.raises(ResolutionError):
        asyncio.run(services.pipeline.reconcile(remix.id))
