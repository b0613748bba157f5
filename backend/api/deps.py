from __future__ import annotations

import uuid

from fastapi import Depends, HTTPException, Request
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from sqlalchemy.orm import Session

from core.config import settings
from core.database import get_db
from core.roles import Role, normalize_role
from core.security import decode_token
from models.user import User
from services.auth_backend import REVOKED_TOKENS, DatabaseAuthBackend
from services.room_codes import RoomCodeRegistry
from services.room_login import RoomLoginResolver


bearer_scheme = HTTPBearer(auto_error=False)


def _extract_token(request: Request, creds: HTTPAuthorizationCredentials | None) -> str | None:
    if creds is not None and creds.credentials:
        return creds.credentials
    cookie_token = request.cookies.get("access_token")
    return cookie_token or None


def get_current_user(
    request: Request,
    creds: HTTPAuthorizationCredentials | None = Depends(bearer_scheme),
    db: Session = Depends(get_db),
) -> User:
    cached = getattr(request.state, "current_user", None)
    if isinstance(cached, User):
        return cached

    token = _extract_token(request, creds)
    if not token:
        raise HTTPException(status_code=401, detail="NOT_AUTHENTICATED")
    try:
        payload = decode_token(token)
    except Exception:
        raise HTTPException(status_code=401, detail="INVALID_TOKEN")

    if REVOKED_TOKENS.is_revoked(payload.get("jti")):
        raise HTTPException(status_code=401, detail="INVALID_TOKEN")

    user_id = payload.get("sub")
    if not user_id:
        raise HTTPException(status_code=401, detail="INVALID_TOKEN")

    try:
        user_uuid = uuid.UUID(str(user_id))
    except Exception:
        raise HTTPException(status_code=401, detail="INVALID_TOKEN")

    user = db.get(User, user_uuid)
    if user is None:
        raise HTTPException(status_code=401, detail="INVALID_TOKEN")
    if not user.is_active:
        raise HTTPException(status_code=403, detail="USER_DISABLED")

    request.state.current_user = user
    request.state.auth_payload = payload
    return user


def current_role(user: User) -> Role:
    profile = user.profile
    if profile is None:
        raise HTTPException(status_code=403, detail="PROFILE_MISSING")
    try:
        return normalize_role(profile.role)
    except ValueError:
        raise HTTPException(status_code=403, detail="NOT_AUTHORIZED")


def require_staff(current_user: User = Depends(get_current_user)) -> User:
    if not current_role(current_user).is_staff:
        raise HTTPException(status_code=403, detail="NOT_AUTHORIZED")
    return current_user


def require_admin(current_user: User = Depends(get_current_user)) -> User:
    if current_role(current_user) != Role.ADMIN:
        raise HTTPException(status_code=403, detail="NOT_AUTHORIZED")
    return current_user


def get_registry(db: Session = Depends(get_db)) -> RoomCodeRegistry:
    return RoomCodeRegistry(db)


def get_auth_backend(db: Session = Depends(get_db)) -> DatabaseAuthBackend:
    return DatabaseAuthBackend(db)


def get_room_login_resolver(
    registry: RoomCodeRegistry = Depends(get_registry),
    auth: DatabaseAuthBackend = Depends(get_auth_backend),
) -> RoomLoginResolver:
    return RoomLoginResolver(registry, auth, email_domain=settings.room_email_domain)
