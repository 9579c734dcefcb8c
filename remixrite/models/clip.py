"""
Pydantic models for clips and the license terms attached to their ledger assets.
"""

from datetime import datetime
from decimal import Decimal
from enum import Enum
from typing import List, Optional

from pydantic import BaseModel, ConfigDict, Field

NATIVE_CURRENCY = "0x0000000000000000000000000000000000000000"

class MediaKind(str, Enum):
    """Enumeration of supported clip media kinds."""
    AUDIO = "audio"
    VIDEO = "video"

class LicenseTerms(BaseModel):
    """License terms attached to a clip's ledger asset at upload time."""
    royalty_rate: Decimal = Field(default=Decimal("10"), ge=0, le=100, description="Royalty rate in percent")
    commercial_use: bool = Field(default=True)
    derivatives_allowed: bool = Field(default=True)
    transferable: bool = Field(default=True)
    commercial_attribution: bool = Field(default=True)
    minting_fee: Decimal = Field(default=Decimal("0"), ge=0)
    currency: str = Field(default=NATIVE_CURRENCY, description="Payment token address")

    @classmethod
    def default(cls, royalty_rate: Decimal = Decimal("10")) -> "LicenseTerms":
        return cls(royalty_rate=royalty_rate)

class ClipMetadata(BaseModel):
    """Descriptive metadata stored alongside a clip."""
    model_config = ConfigDict(extra="allow", use_enum_values=True)

    duration: str = Field(default="0:00", description="Duration as m:ss")
    kind: MediaKind = Field(..., description="audio or video")
    artist: Optional[str] = Field(None, description="Credited artist")
    tags: List[str] = Field(default_factory=list)

class Clip(BaseModel):
    """A ledger-registered content item that can feed a remix."""
    id: str = Field(..., description="Clip identifier")
    title: str = Field(..., description="Clip title")
    source_url: str = Field(..., description="Where the clip artifact lives")
    metadata: ClipMetadata
    owner_address: str = Field(..., description="Owner wallet address")
    ledger_asset_id: str = Field(..., description="Asset identifier on the provenance ledger")
    license_terms: Optional[LicenseTerms] = Field(None)
    created_at: Optional[datetime] = Field(None)
