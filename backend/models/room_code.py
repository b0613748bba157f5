from __future__ import annotations

import uuid

from sqlalchemy import Boolean, CheckConstraint, Column, DateTime, Index, String, Text, UniqueConstraint, Uuid, text
from sqlalchemy.sql import func

from models.base import Base, utcnow


class RoomCode(Base):
    """One issued access code for one room.

    Rows are never deleted: a room accumulates a linear history of codes, of
    which at most one is active. Deactivation is terminal.
    """

    __tablename__ = "room_codes"

    id = Column(Uuid(as_uuid=True), primary_key=True, default=uuid.uuid4)
    room_number = Column(String(20), nullable=False)
    code = Column(String(16), nullable=False)
    is_active = Column(Boolean, nullable=False, default=True)
    resident_name = Column(Text, nullable=True)
    created_at = Column(DateTime(timezone=True), nullable=False, default=utcnow, server_default=func.now())
    deactivated_at = Column(DateTime(timezone=True), nullable=True)
    created_by = Column(Uuid(as_uuid=True), nullable=True)

    __table_args__ = (
        # Codes are never reused, not even after deactivation.
        UniqueConstraint("code", name="uq_room_codes_code"),
        CheckConstraint(
            "(is_active AND deactivated_at IS NULL) OR (NOT is_active AND deactivated_at IS NOT NULL)",
            name="ck_room_codes_deactivated_at",
        ),
        # At most one active code per room, enforced by the datastore.
        Index(
            "ux_room_codes_active_room",
            "room_number",
            unique=True,
            postgresql_where=text("is_active"),
            sqlite_where=text("is_active = 1"),
        ),
        Index("ix_room_codes_room_number", "room_number"),
    )

    def __repr__(self) -> str:
        state = "active" if self.is_active else "inactive"
        return f"<RoomCode room={self.room_number!r} {state}>"
