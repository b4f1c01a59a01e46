"""Agent review models. One review per order, rating 1 to 5."""

from datetime import datetime
from typing import Optional

from pydantic import BaseModel, Field

from agentbuy.models.common import utcnow

COMPLETED_ORDER_STATUS = "amjilttai_zahialga"
CANCELLED_ORDER_STATUS = "tsutsalsan_zahialga"


class AgentReviewCreate(BaseModel):
    rating: int = Field(..., ge=1, le=5, description="Star rating from 1 to 5")
    comment: Optional[str] = Field(None, max_length=500)


class AgentReviewDocument(BaseModel):
    agent_id: str
    user_id: str
    order_id: str
    rating: int = Field(..., ge=1, le=5)
    comment: Optional[str] = Field(None, max_length=500)
    is_approved: bool = True
    is_visible: bool = True
    created_at: datetime = Field(default_factory=utcnow)
    updated_at: datetime = Field(default_factory=utcnow)


class ReviewApprovalRequest(BaseModel):
    approved: bool
