from __future__ import annotations

import uuid
from datetime import datetime

from pydantic import BaseModel, ConfigDict, Field


class RoomCodeOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: uuid.UUID
    room_number: str
    code: str
    is_active: bool
    resident_name: str | None = None
    created_at: datetime
    deactivated_at: datetime | None = None
    created_by: uuid.UUID | None = None


class IssueCodeRequest(BaseModel):
    resident_name: str | None = Field(default=None, max_length=200)


class RotateCodeRequest(BaseModel):
    resident_name: str | None = Field(default=None, max_length=200)


class RotateCodeResponse(BaseModel):
    ok: bool = True
    code: RoomCodeOut
    # False when the room had no account yet (first login provisions it).
    account_synced: bool = False


class IssueMissingResponse(BaseModel):
    ok: bool = True
    issued: list[RoomCodeOut] = Field(default_factory=list)


class RoomOverviewOut(BaseModel):
    room_number: str
    has_code: bool
    code: RoomCodeOut | None = None


class LoginUrlOut(BaseModel):
    room_number: str
    code: str
    login_url: str
