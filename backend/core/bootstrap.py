from __future__ import annotations

import logging

from sqlalchemy import func, select
from sqlalchemy.engine import Engine
from sqlalchemy.orm import Session

from core.config import settings
from core.database import ENGINE
from core.roles import Role
from core.security import hash_password
from models import Profile, User
from models.base import Base


logger = logging.getLogger(__name__)


def _seed_admin_if_configured(db: Session) -> None:
    email = settings.seed_admin_email
    password = settings.seed_admin_password
    if not email or not password:
        return

    existing = db.execute(select(User.id).where(func.lower(User.email) == email)).first()
    if existing is not None:
        return

    user = User(email=email, password_hash=hash_password(password), is_active=True)
    db.add(user)
    db.flush()
    db.add(Profile(id=user.id, full_name="Administrator", display_name="Administrator", role=Role.ADMIN.value))
    db.commit()

    logger.warning(
        "Seeded initial admin user from env (email=%r). Change the password after first login.",
        email,
    )


def bootstrap_schema(engine: Engine | None = None) -> None:
    """Best-effort schema bootstrap.

    - Creates missing tables and indexes, including the partial unique index
      that allows one active code per room.
    - Optionally seeds an admin if SEED_ADMIN_EMAIL + SEED_ADMIN_PASSWORD are set.

    Safe to run on every startup. Existing Postgres databases with legacy
    duplicate active rows must go through migrations/001_create_room_codes.py first.
    """

    engine = engine or ENGINE
    Base.metadata.create_all(engine)
    with Session(engine) as db:
        _seed_admin_if_configured(db)
