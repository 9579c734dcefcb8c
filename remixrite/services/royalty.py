"""
Royalty splitting.

A strategy turns the resolved parent clips and a fee into one share per
parent clip. Every strategy rounds each share down to the currency precision
and hands the remainder to the last parent, so the shares always sum to the
fee exactly.
"""

import structlog
from decimal import ROUND_DOWN, Decimal
from typing import Dict, List, Optional, Protocol, Sequence

from remixrite import config
from remixrite.core.errors import InvalidFeeError
from remixrite.models.clip import Clip
from remixrite.models.remix import RoyaltyShare

logger = structlog.get_logger()

class RoyaltyStrategy(Protocol):
    def split(self, parents: Sequence[Clip], total_fee: Decimal) -> List[RoyaltyShare]: ...

def _shares_from_weights(parents: Sequence[Clip], total_fee: Decimal, weights: Sequence[Decimal],
                         precision: Decimal) -> List[RoyaltyShare]:
    total_weight = sum(weights, Decimal("0"))
    shares = []
    allocated = Decimal("0")
    for clip, weight in zip(parents[:-1], weights[:-1]):
        amount = (total_fee * weight / total_weight).quantize(precision, rounding=ROUND_DOWN)
        allocated += amount
        shares.append(RoyaltyShare(clip_id=clip.id, owner_address=clip.owner_address, amount=amount))

    last = parents[-1]
    shares.append(RoyaltyShare(clip_id=last.id, owner_address=last.owner_address, amount=total_fee - allocated))
    return shares

class EqualSplitStrategy:
    """Baseline: every parent clip gets the same floor share; the last takes the remainder."""

    def __init__(self, precision: Decimal = config.CURRENCY_PRECISION):
        self.precision = precision

    def split(self, parents: Sequence[Clip], total_fee: Decimal) -> List[RoyaltyShare]:
        return _shares_from_weights(parents, total_fee, [Decimal("1")] * len(parents), self.precision)

class LicenseWeightedStrategy:
    """
    Weight each parent by the royalty rate in its license terms.

    Clips without terms count at ``default_rate``. If every rate is zero the
    split falls back to equal shares.
    """

    def __init__(self, precision: Decimal = config.CURRENCY_PRECISION,
                 default_rate: Decimal = config.DEFAULT_ROYALTY_RATE):
        self.precision = precision
        self.default_rate = default_rate

    def split(self, parents: Sequence[Clip], total_fee: Decimal) -> List[RoyaltyShare]:
        weights = [
            clip.license_terms.royalty_rate if clip.license_terms else self.default_rate
            for clip in parents
        ]
        if not any(weights):
            weights = [Decimal("1")] * len(parents)
        return _shares_from_weights(parents, total_fee, weights, self.precision)

class RoyaltyCalculator:
    """Validates the inputs, delegates to a strategy and checks the shares add up."""

    def __init__(self, strategy: Optional[RoyaltyStrategy] = None,
                 precision: Decimal = config.CURRENCY_PRECISION):
        self.precision = precision
        self.strategy = strategy or EqualSplitStrategy(precision)

    def validate_fee(self, total_fee: Decimal) -> Decimal:
        try:
            fee = Decimal(total_fee)
        except (ArithmeticError, TypeError, ValueError) as e:
            raise InvalidFeeError(f"Fee is not a number: {total_fee!r}") from e
        if not fee.is_finite() or fee <= 0:
            raise InvalidFeeError(f"Fee must be positive, got {fee}")
        if fee != fee.quantize(self.precision, rounding=ROUND_DOWN):
            raise InvalidFeeError(f"Fee {fee} is finer than the currency precision {self.precision}")
        return fee

    def split(self, parents: Sequence[Clip], total_fee: Decimal) -> List[RoyaltyShare]:
        fee = self.validate_fee(total_fee)
        if not parents:
            raise InvalidFeeError("Cannot split a fee across zero parent clips")

        shares = self.strategy.split(list(parents), fee)

        distributed = sum((share.amount for share in shares), Decimal("0"))
        if distributed != fee or any(share.amount < 0 for share in shares):
            raise ArithmeticError(f"Royalty split does not add up: {distributed} != {fee}")

        logger.debug("Royalty split computed",
                    strategy=type(self.strategy).__name__,
                    recipients=len(shares),
                    fee=str(fee))
        return shares

def merge_by_owner(shares: Sequence[RoyaltyShare]) -> List[RoyaltyShare]:
    """Collapse shares paying the same owner into one. Not applied by default."""
    merged: Dict[str, Decimal] = {}
    for share in shares:
        key = share.owner_address.lower()
        merged[key] = merged.get(key, Decimal("0")) + share.amount
    return [RoyaltyShare(owner_address=owner, amount=amount) for owner, amount in merged.items()]
