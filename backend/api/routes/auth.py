from __future__ import annotations

import logging
import time
from typing import Any

from fastapi import APIRouter, Depends, HTTPException, Request, Response

from api.deps import current_role, get_auth_backend, get_current_user, get_room_login_resolver
from core.config import settings
from core.errors import AuthenticationFailed, InvalidOrExpiredCode
from core.security import decode_token
from models.user import User
from schemas.auth import LoginRequest, LoginResponse, MeResponse, RoomLoginRequest, RoomLoginResponse
from services.auth_backend import AuthError, AuthErrorKind, DatabaseAuthBackend
from services.room_login import RoomLoginResolver


router = APIRouter()

logger = logging.getLogger(__name__)


# Simple in-memory rate limiting for login.
# NOTE: In multi-worker deployments this is per-worker. For stricter limiting,
# put this behind a reverse proxy or use a shared store.
_LOGIN_WINDOW_SECONDS = 60
_LOGIN_MAX_ATTEMPTS_PER_KEY = 12
_login_attempts: dict[str, list[float]] = {}

# Room login only counts failures: a whole building scans from one NAT address.
_ROOM_LOGIN_MAX_FAILURES_PER_IP = 12
_room_login_failures: dict[str, list[float]] = {}


def _client_ip(request: Request) -> str:
    return request.client.host if request.client else "unknown"


def _rate_limit_key(request: Request, subject: str) -> str:
    return f"{_client_ip(request)}:{subject.lower().strip()}"


def _recent(store: dict[str, list[float]], key: str, now: float) -> list[float]:
    history = [t for t in store.get(key, []) if now - t < _LOGIN_WINDOW_SECONDS]
    store[key] = history
    return history


def enforce_login_rate_limit(request: Request, subject: str) -> None:
    now = time.time()
    history = _recent(_login_attempts, _rate_limit_key(request, subject), now)
    history.append(now)
    if len(history) > _LOGIN_MAX_ATTEMPTS_PER_KEY:
        raise HTTPException(status_code=429, detail="RATE_LIMITED")


def room_login_blocked(request: Request) -> bool:
    failures = _recent(_room_login_failures, _client_ip(request), time.time())
    return len(failures) >= _ROOM_LOGIN_MAX_FAILURES_PER_IP


def record_room_login_failure(request: Request) -> None:
    now = time.time()
    _recent(_room_login_failures, _client_ip(request), now).append(now)


def reset_login_rate_limits() -> None:
    _login_attempts.clear()
    _room_login_failures.clear()


def set_auth_cookie(response: Response, token: str) -> None:
    samesite = (settings.cookie_samesite or "lax").lower().strip()
    if samesite not in {"lax", "strict", "none"}:
        raise HTTPException(status_code=500, detail="INVALID_COOKIE_SAMESITE")
    response.set_cookie(
        key="access_token",
        value=token,
        httponly=True,
        secure=settings.is_production,
        samesite=samesite,
        max_age=settings.access_token_expire_minutes * 60,
        path="/",
    )


@router.post("/login", response_model=LoginResponse)
def login(
    payload: LoginRequest,
    request: Request,
    response: Response,
    auth: DatabaseAuthBackend = Depends(get_auth_backend),
) -> LoginResponse:
    """Email/password login for staff and admin accounts."""

    email = str(payload.email or "").strip().lower()
    enforce_login_rate_limit(request, email)
    ip = _client_ip(request)

    try:
        session = auth.sign_in(email, payload.password)
    except AuthError as exc:
        logger.warning("Login failed ip=%s email=%r reason=%s", ip, email, exc.kind.value)
        if exc.kind == AuthErrorKind.USER_DISABLED:
            raise HTTPException(status_code=403, detail="USER_DISABLED")
        raise HTTPException(status_code=401, detail="INVALID_CREDENTIALS")

    set_auth_cookie(response, session.access_token)
    logger.info("Login success ip=%s email=%r role=%s", ip, email, session.role.value)
    return LoginResponse(ok=True, access_token=session.access_token)


@router.post("/room-login", response_model=RoomLoginResponse)
def room_login(
    payload: RoomLoginRequest,
    request: Request,
    response: Response,
    resolver: RoomLoginResolver = Depends(get_room_login_resolver),
) -> RoomLoginResponse:
    """JSON variant of the QR login entry point (used by the mobile wrapper)."""

    if room_login_blocked(request):
        raise HTTPException(status_code=429, detail="RATE_LIMITED")
    try:
        result = resolver.login(payload.code)
    except (InvalidOrExpiredCode, AuthenticationFailed):
        record_room_login_failure(request)
        raise
    set_auth_cookie(response, result.session.access_token)
    return RoomLoginResponse(
        ok=True,
        access_token=result.session.access_token,
        room_number=result.room_number,
        provisioned=result.provisioned,
    )


@router.post("/logout")
def logout(request: Request, response: Response, auth: DatabaseAuthBackend = Depends(get_auth_backend)) -> dict[str, Any]:
    # Best-effort: revoke the token if one was presented, always clear the cookie.
    token = request.cookies.get("access_token")
    header = request.headers.get("authorization") or ""
    if header.lower().startswith("bearer "):
        token = header[7:].strip() or token
    if token:
        try:
            claims = decode_token(token)
        except Exception:
            claims = None
        if claims and claims.get("jti") and claims.get("exp"):
            auth.revocations.revoke(str(claims["jti"]), float(claims["exp"]))

    response.delete_cookie(key="access_token", path="/")
    return {"ok": True}


@router.get("/me", response_model=MeResponse)
def me(current_user: User = Depends(get_current_user)) -> MeResponse:
    profile = current_user.profile
    return MeResponse(
        id=current_user.id,
        email=current_user.email,
        role=current_role(current_user).value,
        room_number=getattr(profile, "room_number", None),
        display_name=getattr(profile, "display_name", None),
        is_active=current_user.is_active,
        created_at=current_user.created_at,
    )
