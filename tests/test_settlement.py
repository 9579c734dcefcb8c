import asyncio
import time
from decimal import Decimal

import pytest

from remixrite.core.errors import PartialSettlementError, PersistenceError, PersistenceOutcomeUnknownError
from remixrite.core.utils import new_id
from remixrite.models.remix import RemixDraft
from remixrite.services.royalty import RoyaltyCalculator
from remixrite.services.settlement import SettlementRecorder

def make_draft(clips, fee=Decimal("0.50")):
    return RemixDraft(
        id=new_id(),
        creator_id="creator-1",
        original_clip_ids=[clip.id for clip in clips],
        output_url="memory://artifact",
        ledger_tx_hash="0xtx",
        ledger_asset_id="0xasset",
        fee=fee,
    )

def test_commit_writes_remix_and_one_row_per_parent(settlement_store, clips, fee):
    draft = make_draft(clips)
    shares = RoyaltyCalculator().split(clips, fee)

    settlement = asyncio.run(SettlementRecorder(settlement_store).commit(draft, shares))

    assert settlement.remix.id == draft.id
    assert [d.clip_id for d in settlement.distributions] == ["clip-1", "clip-2", "clip-3"]
    assert sum(d.amount for d in settlement.distributions) == fee

def test_remix_insert_failure_writes_nothing(settlement_store, clips, fee):
    settlement_store.fail_remix_insert = True
    draft = make_draft(clips)
    with pytest.raises(PersistenceError):
        asyncio.run(SettlementRecorder(settlement_store).commit(draft, RoyaltyCalculator().split(clips, fee)))
    assert settlement_store.database.remixes == {}
    assert settlement_store.database.distributions == {}

def test_partial_failure_keeps_remix_and_reports_missing_rows(settlement_store, clips, fee):
    settlement_store.failing_distribution_clip_ids.add("clip-2")
    draft = make_draft(clips)

    with pytest.raises(PartialSettlementError) as exc_info:
        asyncio.run(SettlementRecorder(settlement_store).commit(draft, RoyaltyCalculator().split(clips, fee)))

    error = exc_info.value
    assert error.remix.id == draft.id
    assert [d.clip_id for d in error.distributions] == ["clip-1", "clip-3"]
    assert [f["clip_id"] for f in error.failed] == ["clip-2"]
    assert draft.id in settlement_store.database.remixes

def test_retry_after_partial_failure_fills_only_missing_rows(settlement_store, clips, fee):
    recorder = SettlementRecorder(settlement_store)
    shares = RoyaltyCalculator().split(clips, fee)
    draft = make_draft(clips)

    settlement_store.failing_distribution_clip_ids.add("clip-3")
    with pytest.raises(PartialSettlementError):
        asyncio.run(recorder.commit(draft, shares))
    assert settlement_store.distribution_inserts == 2

    settlement_store.failing_distribution_clip_ids.clear()
    settlement = asyncio.run(recorder.commit(draft, shares))

    assert len(settlement_store.database.remixes) == 1
    assert settlement_store.distribution_inserts == 3
    assert len(settlement.distributions) == 3
    assert sum(d.amount for d in settlement.distributions) == fee

def test_distribution_write_timeout_is_reported(settlement_store, clips, fee):
    original_insert = settlement_store.insert_distribution

    def slow_insert(row):
        if row.clip_id == "clip-1":
            time.sleep(0.3)
        return original_insert(row)

    settlement_store.insert_distribution = slow_insert
    recorder = SettlementRecorder(settlement_store, timeout=0.05)

    with pytest.raises(PartialSettlementError) as exc_info:
        asyncio.run(recorder.commit(make_draft(clips), RoyaltyCalculator().split(clips, fee)))
    assert exc_info.value.failed[0]["clip_id"] == "clip-1"
    assert exc_info.value.failed[0]["error"] == "TimeoutError"

def test_remix_insert_timeout_reports_the_remix_id(settlement_store, clips, fee):
    original_insert = settlement_store.insert_remix

    def slow_insert(draft):
        time.sleep(0.2)
        return original_insert(draft)

    settlement_store.insert_remix = slow_insert
    recorder = SettlementRecorder(settlement_store, timeout=0.05)
    draft = make_draft(clips)
    shares = RoyaltyCalculator().split(clips, fee)

    with pytest.raises(PersistenceOutcomeUnknownError) as exc_info:
        asyncio.run(recorder.commit(draft, shares))
    assert exc_info.value.details == {"remix_id": draft.id}
    assert exc_info.value.status_code == 504

    # the abandoned write still lands; committing again fills in the distributions
    time.sleep(0.3)
    assert draft.id in settlement_store.database.remixes
    settlement_store.insert_remix = original_insert
    settlement = asyncio.run(recorder.commit(draft, shares))
    assert len(settlement.distributions) == 3
