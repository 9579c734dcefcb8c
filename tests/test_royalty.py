from decimal import Decimal

import pytest

from remixrite.core.errors import InvalidFeeError
from remixrite.core.memory import InMemoryDatabase, seed_clip
from remixrite.models.remix import RoyaltyShare
from remixrite.services.royalty import (
    EqualSplitStrategy,
    LicenseWeightedStrategy,
    RoyaltyCalculator,
    merge_by_owner,
)

def make_clips(count, rates=None):
    db = InMemoryDatabase()
    return [
        seed_clip(db, f"Clip {i}", "0x" + f"{i:040x}", clip_id=f"clip-{i}",
                  royalty_rate=rates[i] if rates else None)
        for i in range(count)
    ]

FEES = [Decimal(f) for f in ("0.01", "0.07", "0.50", "1.00", "3.33", "12.34", "100.00")]

@pytest.mark.parametrize("fee", FEES)
def test_shares_always_sum_to_fee(fee):
    calculator = RoyaltyCalculator()
    for count in range(1, 51):
        shares = calculator.split(make_clips(count), fee)
        assert len(shares) == count
        assert sum(share.amount for share in shares) == fee
        assert all(share.amount >= 0 for share in shares)

def test_shares_positive_when_fee_covers_every_parent():
    calculator = RoyaltyCalculator()
    for count in (1, 7, 50):
        fee = Decimal("0.01") * count
        shares = calculator.split(make_clips(count), fee)
        assert all(share.amount > 0 for share in shares)

def test_three_way_split_gives_remainder_to_last():
    shares = RoyaltyCalculator().split(make_clips(3), Decimal("0.50"))
    assert [share.amount for share in shares] == [Decimal("0.16"), Decimal("0.16"), Decimal("0.18")]
    assert [share.clip_id for share in shares] == ["clip-0", "clip-1", "clip-2"]

def test_single_parent_gets_full_fee():
    shares = RoyaltyCalculator().split(make_clips(1), Decimal("0.50"))
    assert shares[0].amount == Decimal("0.50")

def test_same_owner_on_two_clips_gets_two_shares():
    db = InMemoryDatabase()
    owner = "0x" + "1" * 40
    parents = [seed_clip(db, "A", owner, clip_id="a"), seed_clip(db, "B", owner, clip_id="b")]
    shares = RoyaltyCalculator().split(parents, Decimal("0.50"))
    assert [share.clip_id for share in shares] == ["a", "b"]
    assert {share.owner_address for share in shares} == {owner}

@pytest.mark.parametrize("fee", [Decimal("0"), Decimal("-1"), Decimal("0.005"), "abc", Decimal("NaN")])
def test_invalid_fee_rejected(fee):
    with pytest.raises(InvalidFeeError):
        RoyaltyCalculator().split(make_clips(2), fee)

def test_zero_parents_rejected():
    with pytest.raises(InvalidFeeError):
        RoyaltyCalculator().split([], Decimal("0.50"))

def test_finer_precision_is_configurable():
    calculator = RoyaltyCalculator(EqualSplitStrategy(Decimal("0.0001")), precision=Decimal("0.0001"))
    shares = calculator.split(make_clips(3), Decimal("0.50"))
    assert [share.amount for share in shares] == [Decimal("0.1666"), Decimal("0.1666"), Decimal("0.1668")]

def test_license_weighted_split():
    parents = make_clips(2, rates=[Decimal("30"), Decimal("10")])
    calculator = RoyaltyCalculator(LicenseWeightedStrategy())
    shares = calculator.split(parents, Decimal("1.00"))
    assert [share.amount for share in shares] == [Decimal("0.75"), Decimal("0.25")]

def test_license_weighted_all_zero_rates_falls_back_to_equal():
    parents = make_clips(2, rates=[Decimal("0"), Decimal("0")])
    shares = RoyaltyCalculator(LicenseWeightedStrategy()).split(parents, Decimal("1.00"))
    assert [share.amount for share in shares] == [Decimal("0.50"), Decimal("0.50")]

def test_merge_by_owner_collapses_case_insensitively():
    shares = [
        RoyaltyShare(clip_id="a", owner_address="0x" + "AB" * 20, amount=Decimal("0.10")),
        RoyaltyShare(clip_id="b", owner_address="0x" + "ab" * 20, amount=Decimal("0.20")),
        RoyaltyShare(clip_id="c", owner_address="0x" + "cd" * 20, amount=Decimal("0.20")),
    ]
    merged = merge_by_owner(shares)
    assert len(merged) == 2
    assert merged[0].amount == Decimal("0.30")
