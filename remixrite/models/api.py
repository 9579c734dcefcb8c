"""
Pydantic models for API requests and responses.
"""

from decimal import Decimal
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, ConfigDict, Field, field_serializer

from .clip import Clip
from .remix import EnrichedRemix, RoyaltyDistribution

class RemixRequest(BaseModel):
    """Body of POST /remix. Emptiness checks happen in the pipeline so they surface as 400s."""
    model_config = ConfigDict(populate_by_name=True)

    clip_ids: List[str] = Field(default_factory=list, alias="clipIds")
    creator_id: Optional[str] = Field(None, alias="creatorId")
    title: Optional[str] = None
    description: Optional[str] = None
    style: Optional[str] = None
    mood: Optional[str] = None
    remix_data: Optional[str] = Field(None, alias="remixData", description="Base64 artifact or processing instructions")

class RemixResponse(BaseModel):
    success: bool = True
    remix: EnrichedRemix

class RemixListResponse(BaseModel):
    success: bool = True
    remixes: List[EnrichedRemix] = Field(default_factory=list)

class ClipResponse(BaseModel):
    success: bool = True
    clip: Clip

class ClipListResponse(BaseModel):
    success: bool = True
    clips: List[Clip] = Field(default_factory=list)

class EarningsResponse(BaseModel):
    """Royalty earnings for one owner address."""
    owner_address: str
    total: Decimal
    distributions: List[RoyaltyDistribution] = Field(default_factory=list)

    @field_serializer("total", when_used="json")
    def _total_as_number(self, value: Decimal) -> float:
        return float(value)

class ErrorResponse(BaseModel):
    """Error response model."""
    error: str = Field(..., description="Error message")
    stage: Optional[str] = Field(None, description="Pipeline stage that failed")
    details: Optional[Dict[str, Any]] = Field(None, description="Additional error details")

class HealthResponse(BaseModel):
    """Health check response model."""
    status: str = Field(..., description="Overall service status")
    version: str = Field(..., description="API version")
    components: Dict[str, Any] = Field(..., description="Component health status")
