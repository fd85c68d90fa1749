"""Pydantic schemas for direct and group messages.

Learn: Send responses carry `broadcast_success`. The message is stored
either way; False tells the client that other participants will only
see it after a refresh.
"""

from datetime import datetime
from typing import Optional

from pydantic import BaseModel, Field

from safespace.schemas.user import UserBrief


class DirectMessageCreate(BaseModel):
    recipient_id: int
    content: str = Field(..., min_length=1, max_length=5000)
    message_type: str = Field(default="text", pattern=r"^(text|image|file|system)$")


class GroupMessageCreate(BaseModel):
    content: str = Field(..., min_length=1, max_length=5000)
    message_type: str = Field(default="text", pattern=r"^(text|image|file|system)$")


class MessageRead(BaseModel):
    id: int
    sender_id: int
    sender: Optional[UserBrief] = None
    recipient_id: Optional[int] = None
    group_id: Optional[int] = None
    content: str
    message_type: str
    is_read: bool
    is_flagged: bool
    created_at: datetime

    model_config = {"from_attributes": True}


class MessageSendResponse(BaseModel):
    message: MessageRead
    broadcast_success: bool
