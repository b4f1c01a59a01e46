"""
# User Models

Accounts, roles and the public agent profile.

A user document lives in `users`; contact details the user edits themselves live in
`profiles` keyed by `user_id`. Agents additionally carry an embedded `agent_profile`
that drives the public agent directory and ranking.

| Field | Notes |
|---|---|
| `email` | unique, trimmed and lower-cased before storage |
| `role` | `user`, `agent` or `admin` |
| `is_approved` | agents are customer-facing only when true |
| `approved_at` / `approved_by` | stamped on approval, cleared on revocation |
| `agent_points` | agent reward balance, never negative |
| `research_cards` | cached research-card balance mirrored by the ledger |
"""

from datetime import datetime
from enum import Enum
import re
from typing import List, Optional

from pydantic import BaseModel, EmailStr, Field, field_validator

from agentbuy.models.common import utcnow

PHONE_PATTERN = re.compile(r"^[\d\s\-+()]+$")


class UserRole(str, Enum):
    USER = "user"
    AGENT = "agent"
    ADMIN = "admin"


class AvailabilityStatus(str, Enum):
    ONLINE = "online"
    BUSY = "busy"
    OFFLINE = "offline"


def parse_role(value: Optional[str]) -> Optional[UserRole]:
    """
    Parse a role string coming from a token claim or request body.

    An empty value means the default `user` role. Unknown values yield `None`.
    """
    if value is None or not str(value).strip():
        return UserRole.USER
    normalized = str(value).strip().lower()
    try:
        return UserRole(normalized)
    except ValueError:
        return None


class AgentProfile(BaseModel):
    """Public-facing agent directory data embedded in the user document."""

    display_name: Optional[str] = Field(None, description="Name shown in the agent directory")
    avatar_url: Optional[str] = Field(None, description="Avatar image URL")
    bio: Optional[str] = Field(None, max_length=500, description="Short biography")
    specialties: List[str] = Field(default_factory=list, description="Specialty names")
    experience_years: Optional[int] = Field(None, ge=0, description="Years of experience")
    rank: int = Field(999, ge=1, description="Directory rank, 1 is first")
    is_top_agent: bool = Field(False, description="Shown in the top agents carousel")
    total_transactions: int = Field(0, ge=0, description="Completed orders")
    success_rate: int = Field(0, ge=0, le=100, description="Success rate percentage")
    languages: List[str] = Field(default_factory=list)
    response_time: Optional[str] = Field(None, description="Typical response time, free text")
    featured: bool = False
    availability_status: AvailabilityStatus = AvailabilityStatus.OFFLINE
    working_hours: Optional[str] = None
    verified_at: Optional[datetime] = None


class UserDocument(BaseModel):
    """Shape of a document in the `users` collection."""

    email: EmailStr = Field(..., description="Unique, lower-cased e-mail address")
    role: UserRole = Field(UserRole.USER, description="Account role")
    is_approved: bool = Field(False, description="Agent approval flag")
    approved_at: Optional[datetime] = None
    approved_by: Optional[str] = None
    agent_points: int = Field(0, ge=0, description="Agent reward points")
    research_cards: int = Field(0, ge=0, description="Cached research-card balance")
    agent_profile: Optional[AgentProfile] = None
    created_at: datetime = Field(default_factory=utcnow)
    updated_at: datetime = Field(default_factory=utcnow)

    @field_validator("email", mode="before")
    @classmethod
    def normalize_email(cls, v):
        return str(v).strip().lower() if v is not None else v


class ProfileDocument(BaseModel):
    """Shape of a document in the `profiles` collection."""

    user_id: str = Field(..., description="Owning user id")
    name: str = Field(..., min_length=1)
    phone: str = Field(..., min_length=1, description="Phone number, used to address card gifts")
    email: Optional[EmailStr] = None
    cargo: Optional[str] = Field(None, description="Preferred cargo category name")
    account_number: Optional[str] = None


class ProfileUpdateRequest(BaseModel):
    """Body of `PUT /api/profile`; the profile is created on first save."""

    name: str = Field(..., min_length=1, max_length=100)
    phone: str = Field(..., description="Digits, spaces, dashes, parentheses and +; at least 8 digits")
    email: EmailStr
    cargo: Optional[str] = None
    account_number: Optional[str] = Field(None, description="Payout account, used by agents")

    @field_validator("name", "phone", "cargo", "account_number", mode="before")
    @classmethod
    def strip_text(cls, v):
        return v.strip() if isinstance(v, str) else v

    @field_validator("phone")
    @classmethod
    def validate_phone(cls, v: str) -> str:
        if not PHONE_PATTERN.match(v) or sum(c.isdigit() for c in v) < 8:
            raise ValueError("Invalid phone number format")
        return v

    @field_validator("email", mode="after")
    @classmethod
    def lower_email(cls, v):
        return v.lower()


class RegisterRequest(BaseModel):
    email: EmailStr
    role: Optional[str] = Field(None, description="Requested role; defaults to user")


class AddAgentRequest(BaseModel):
    email: EmailStr


class ApproveAgentRequest(BaseModel):
    approved: bool = True


class UpdateAgentRankRequest(BaseModel):
    rank: int = Field(..., ge=1)
