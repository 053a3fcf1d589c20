"""
Request and response models for the Invites Service API.
"""

from datetime import datetime
from typing import List, Optional

from pydantic import BaseModel, Field


class IssueInviteRequest(BaseModel):
    """Issue a token for a property the caller owns."""
    property_id: str = Field(..., min_length=1, max_length=64)
    max_uses: Optional[int] = Field(default=None, description="Clamped to the configured bounds")
    ttl_days: Optional[int] = Field(default=None, description="Days until the token expires")


class IssueInviteResponse(BaseModel):
    """The plaintext token appears in this response only."""
    token: str
    token_id: str
    property_id: str
    max_uses: int
    expires_at: datetime


class InviteTokenRequest(BaseModel):
    """Body for validate and accept."""
    token: str = Field(..., min_length=1, max_length=128)


class RevokeInviteResponse(BaseModel):
    success: bool = True


class TokenSummaryResponse(BaseModel):
    token_id: str
    max_uses: int
    use_count: int
    uses_remaining: int
    expires_at: datetime
    revoked_at: Optional[datetime] = None
    created_at: datetime
    status: str


class TokenListResponse(BaseModel):
    property_id: str
    tokens: List[TokenSummaryResponse]
