"""
Pydantic models for remixes and their royalty distributions.
"""

from datetime import datetime
from decimal import Decimal
from typing import List, Optional

from pydantic import BaseModel, Field, field_serializer

from .clip import Clip

class RoyaltyShare(BaseModel):
    """One (owner, amount) pair produced by a royalty split, tied to the parent clip it pays for."""
    clip_id: Optional[str] = Field(None, description="Parent clip this share pays for")
    owner_address: str
    amount: Decimal = Field(..., ge=0)

class RemixDraft(BaseModel):
    """A remix as handed to the settlement store. The id is assigned before the write."""
    id: str
    creator_id: str
    original_clip_ids: List[str] = Field(..., min_length=1)
    output_url: str
    ledger_tx_hash: str
    ledger_asset_id: Optional[str] = None
    title: Optional[str] = None
    content_hash: Optional[str] = None
    tags: List[str] = Field(default_factory=list)
    fee: Decimal = Field(..., gt=0)

    @field_serializer("fee", when_used="json")
    def _fee_as_number(self, value: Decimal) -> float:
        return float(value)

class Remix(RemixDraft):
    """A persisted remix. Append-only."""
    created_at: datetime

class DistributionDraft(BaseModel):
    remix_id: str
    clip_id: str
    owner_address: str
    amount: Decimal = Field(..., ge=0)

    @field_serializer("amount", when_used="json")
    def _amount_as_number(self, value: Decimal) -> float:
        return float(value)

class RoyaltyDistribution(DistributionDraft):
    """A persisted settlement row."""
    id: str
    timestamp: datetime

class EnrichedRemix(Remix):
    """A remix joined with its resolved parent clips and distribution rows."""
    original_clips: List[Clip] = Field(default_factory=list)
    royalty_distributions: List[RoyaltyDistribution] = Field(default_factory=list)
