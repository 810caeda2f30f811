"""Member/invitation request/response schemas."""

import uuid
from datetime import datetime

from pydantic import BaseModel, EmailStr, Field


class MemberResponse(BaseModel):
    id: uuid.UUID
    user_id: uuid.UUID
    email: str | None = None
    full_name: str | None = None
    role: str
    status: str
    invited_by: uuid.UUID | None = None
    invited_at: datetime | None = None
    joined_at: datetime | None = None


class MemberUpdate(BaseModel):
    # "owner" is accepted here so the service can reject it with a specific error.
    role: str = Field(..., pattern=r"^(owner|editor|viewer)$")


class InvitationCreate(BaseModel):
    email: EmailStr
    role: str = Field(default="viewer", pattern=r"^(owner|editor|viewer)$")


class InvitationResponse(BaseModel):
    id: uuid.UUID
    project_id: uuid.UUID
    email: str
    role: str
    invited_by: uuid.UUID
    token: str
    invite_url: str
    expires_at: datetime
    created_at: datetime
    used_at: datetime | None = None


class ProjectSummary(BaseModel):
    id: uuid.UUID
    title: str
    goal: str

    model_config = {"from_attributes": True}


class RedeemResponse(BaseModel):
    success: bool
    project: ProjectSummary | None = None
    error: str | None = None
    message: str | None = None
