from __future__ import annotations

import logging
import threading
import time
import uuid
from collections.abc import Mapping
from dataclasses import dataclass
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Protocol

from sqlalchemy import func, select
from sqlalchemy.exc import IntegrityError, OperationalError, SQLAlchemyError
from sqlalchemy.orm import Session

from core.database import is_transient_db_connectivity_error
from core.roles import Role, normalize_role
from core.security import create_access_token, hash_password, verify_password
from models.profile import Profile
from models.user import User


logger = logging.getLogger(__name__)


class AuthErrorKind(str, Enum):
    USER_NOT_FOUND = "USER_NOT_FOUND"
    INVALID_CREDENTIALS = "INVALID_CREDENTIALS"
    USER_DISABLED = "USER_DISABLED"
    PROFILE_MISSING = "PROFILE_MISSING"
    USER_EXISTS = "USER_EXISTS"
    PROVISIONING_FAILED = "PROVISIONING_FAILED"


class AuthError(Exception):
    def __init__(self, kind: AuthErrorKind, detail: str | None = None) -> None:
        super().__init__(f"{kind.value}: {detail}" if detail else kind.value)
        self.kind = kind
        self.detail = detail


@dataclass(frozen=True)
class AuthSession:
    access_token: str
    token_id: str
    user_id: uuid.UUID
    email: str
    role: Role
    room_number: str | None
    display_name: str | None
    expires_at: datetime


class AuthBackend(Protocol):
    """Password-based authentication collaborator used by room login."""

    def sign_in(self, email: str, secret: str) -> AuthSession: ...

    def sign_up(self, email: str, secret: str, metadata: Mapping[str, Any]) -> AuthSession: ...

    def sign_out(self, session: AuthSession) -> None: ...

    def set_secret(self, email: str, secret: str, *, commit: bool = True) -> bool: ...


class TokenRevocationList:
    """In-process deny-list of signed-out token ids, kept until they expire.

    NOTE: per-worker. Multi-worker deployments only revoke on the worker that
    handled the logout; the cookie is deleted client-side regardless.
    """

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._revoked: dict[str, float] = {}

    def revoke(self, token_id: str, expires_at: float) -> None:
        with self._lock:
            self._purge(time.time())
            self._revoked[token_id] = expires_at

    def is_revoked(self, token_id: str | None) -> bool:
        if not token_id:
            return False
        with self._lock:
            self._purge(time.time())
            return token_id in self._revoked

    def clear(self) -> None:
        with self._lock:
            self._revoked.clear()

    def _purge(self, now: float) -> None:
        expired = [k for k, exp in self._revoked.items() if exp <= now]
        for k in expired:
            del self._revoked[k]


REVOKED_TOKENS = TokenRevocationList()


def _normalize_email(email: str) -> str:
    return (email or "").strip().lower()


class DatabaseAuthBackend:
    """AuthBackend over the ``users``/``profiles`` tables with bcrypt + JWT."""

    def __init__(self, db: Session, *, revocations: TokenRevocationList = REVOKED_TOKENS) -> None:
        self.db = db
        self.revocations = revocations

    def _find_user(self, email: str) -> User | None:
        q = select(User).where(func.lower(User.email) == _normalize_email(email))
        return self.db.execute(q).unique().scalar_one_or_none()

    def _session_for(self, user: User) -> AuthSession:
        profile = user.profile
        if profile is None:
            raise AuthError(AuthErrorKind.PROFILE_MISSING, f"user_id={user.id}")
        role = normalize_role(profile.role)
        token, payload = create_access_token(
            user_id=str(user.id),
            email=user.email,
            role=role.value,
            room_number=profile.room_number,
        )
        return AuthSession(
            access_token=token,
            token_id=payload["jti"],
            user_id=user.id,
            email=user.email,
            role=role,
            room_number=profile.room_number,
            display_name=profile.display_name,
            expires_at=datetime.fromtimestamp(payload["exp"], tz=timezone.utc),
        )

    def sign_in(self, email: str, secret: str) -> AuthSession:
        user = self._find_user(email)
        if user is None:
            raise AuthError(AuthErrorKind.USER_NOT_FOUND)
        if not user.is_active:
            raise AuthError(AuthErrorKind.USER_DISABLED)
        if not verify_password(secret, user.password_hash):
            raise AuthError(AuthErrorKind.INVALID_CREDENTIALS)
        return self._session_for(user)

    def sign_up(self, email: str, secret: str, metadata: Mapping[str, Any]) -> AuthSession:
        """Create account + profile as one unit. Nothing survives a failure."""

        email = _normalize_email(email)
        try:
            role = normalize_role(metadata.get("role"))
        except ValueError as exc:
            raise AuthError(AuthErrorKind.PROVISIONING_FAILED, str(exc)) from exc

        if self._find_user(email) is not None:
            raise AuthError(AuthErrorKind.USER_EXISTS, email)

        user = User(email=email, password_hash=hash_password(secret), is_active=True)
        try:
            self.db.add(user)
            self.db.flush()
            profile = Profile(
                id=user.id,
                full_name=metadata.get("full_name"),
                display_name=metadata.get("display_name"),
                role=role.value,
                room_number=metadata.get("room_number"),
            )
            self.db.add(profile)
            self.db.commit()
        except IntegrityError as exc:
            self.db.rollback()
            if self._find_user(email) is not None:
                raise AuthError(AuthErrorKind.USER_EXISTS, email) from exc
            raise AuthError(AuthErrorKind.PROVISIONING_FAILED, str(exc.orig)) from exc
        except OperationalError as exc:
            self.db.rollback()
            if is_transient_db_connectivity_error(exc):
                raise
            raise AuthError(AuthErrorKind.PROVISIONING_FAILED, str(exc)) from exc
        except SQLAlchemyError as exc:
            self.db.rollback()
            raise AuthError(AuthErrorKind.PROVISIONING_FAILED, str(exc)) from exc

        self.db.refresh(user)
        logger.info("Provisioned account email=%s role=%s", email, role.value)
        return self._session_for(user)

    def sign_out(self, session: AuthSession) -> None:
        self.revocations.revoke(session.token_id, session.expires_at.timestamp())

    def set_secret(self, email: str, secret: str, *, commit: bool = True) -> bool:
        """Replace the account password. With ``commit=False`` the change is only flushed."""

        user = self._find_user(email)
        if user is None:
            return False
        user.password_hash = hash_password(secret)
        if commit:
            self.db.commit()
        else:
            self.db.flush()
        return True
