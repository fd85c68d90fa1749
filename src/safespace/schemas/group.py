"""Pydantic schemas for support groups and membership."""

from datetime import datetime
from typing import Optional

from pydantic import BaseModel, Field

from safespace.schemas.user import UserBrief


class GroupCreate(BaseModel):
    name: str = Field(..., min_length=1, max_length=100)
    description: Optional[str] = Field(default=None, max_length=2000)


class GroupMemberCreate(BaseModel):
    user_id: int
    role: str = Field(default="member", pattern=r"^(admin|member)$")


class GroupMemberRead(BaseModel):
    user_id: int
    user: Optional[UserBrief] = None
    role: str
    joined_at: datetime

    model_config = {"from_attributes": True}


class GroupRead(BaseModel):
    id: int
    name: str
    description: Optional[str] = None
    created_by: Optional[int] = None
    created_at: datetime
    members: list[GroupMemberRead] = []

    model_config = {"from_attributes": True}


class MemberAddResponse(BaseModel):
    member: GroupMemberRead
    # None when nothing changed (already a member)
    broadcast_success: Optional[bool] = None


class MemberRemoveResponse(BaseModel):
    removed: bool = True
    broadcast_success: bool
