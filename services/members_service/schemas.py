"""Pydantic schemas for members service."""

import uuid
from datetime import datetime
from typing import Optional

from pydantic import BaseModel, ConfigDict, Field


class UserResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: uuid.UUID
    auth_id: str
    email: str
    full_name: Optional[str] = None
    is_verified: bool
    last_login_at: Optional[datetime] = None
    created_at: datetime


class VerificationRequestResponse(BaseModel):
    email: str
    expires_at: datetime


class VerifyEmailRequest(BaseModel):
    token: str = Field(..., min_length=1, max_length=128)
