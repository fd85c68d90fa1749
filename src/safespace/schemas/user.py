"""Pydantic schemas for users.

Learn: Separate "Create" schemas (input) from "Read" schemas (output).
Read schemas use from_attributes so route handlers can return ORM rows.
"""

from datetime import datetime
from typing import Optional

from pydantic import BaseModel, Field


class UserCreate(BaseModel):
    name: str = Field(..., min_length=1, max_length=100)
    email: str = Field(..., min_length=3, max_length=255, pattern=r"^[^@\s]+@[^@\s]+$")
    roles: list[str] = Field(..., min_length=1)
    guardian_id: Optional[int] = None


class UserRead(BaseModel):
    id: int
    name: str
    email: str
    roles: list[str]
    status: str
    guardian_id: Optional[int] = None
    created_at: datetime

    model_config = {"from_attributes": True}


class UserBrief(BaseModel):
    """Just enough to render a name next to something."""
    id: int
    name: str

    model_config = {"from_attributes": True}

