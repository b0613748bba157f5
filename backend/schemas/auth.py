from __future__ import annotations

import uuid
from datetime import datetime

from pydantic import BaseModel, Field


class LoginRequest(BaseModel):
    email: str = Field(min_length=3, max_length=255)
    # bcrypt only looks at the first 72 bytes.
    password: str = Field(min_length=1, max_length=72)


class LoginResponse(BaseModel):
    ok: bool = True
    access_token: str
    token_type: str = "bearer"


class RoomLoginRequest(BaseModel):
    code: str = Field(min_length=1, max_length=64)


class RoomLoginResponse(LoginResponse):
    room_number: str
    provisioned: bool = False


class MeResponse(BaseModel):
    id: uuid.UUID
    email: str
    role: str
    room_number: str | None = None
    display_name: str | None = None
    is_active: bool
    created_at: datetime
