from __future__ import annotations

from sqlalchemy import Column, DateTime, ForeignKey, String, Text, Uuid
from sqlalchemy.orm import relationship
from sqlalchemy.sql import func

from models.base import Base, utcnow


class Profile(Base):
    __tablename__ = "profiles"

    id = Column(Uuid(as_uuid=True), ForeignKey("users.id", ondelete="CASCADE"), primary_key=True)
    full_name = Column(Text, nullable=True)
    display_name = Column(Text, nullable=True)
    # Always a normalized core.roles.Role value.
    role = Column(String(20), nullable=False, default="RESIDENT")
    room_number = Column(String(20), nullable=True, index=True)
    created_at = Column(DateTime(timezone=True), nullable=False, default=utcnow, server_default=func.now())
    updated_at = Column(DateTime(timezone=True), nullable=True, onupdate=utcnow)

    user = relationship("User", back_populates="profile")
