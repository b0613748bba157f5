from __future__ import annotations

from fastapi import APIRouter, Depends, Query, Request
from fastapi.responses import HTMLResponse, RedirectResponse
from starlette.responses import Response

from api.deps import get_room_login_resolver
from api.routes.auth import record_room_login_failure, room_login_blocked, set_auth_cookie
from core.config import settings
from core.errors import AuthenticationFailed, InvalidOrExpiredCode, RoomAccessError
from services.qr_print import render_login_failed
from services.room_login import RoomLoginResolver


router = APIRouter()

RATE_LIMITED_MESSAGE = "Too many failed attempts. Please wait a minute and scan again."


def _failure_page(message: str, status_code: int) -> HTMLResponse:
    html = render_login_failed(message=message, retry_url=settings.home_path)
    return HTMLResponse(content=html, status_code=status_code)


@router.get("/login", include_in_schema=False)
def qr_login(
    request: Request,
    code: str | None = Query(default=None, max_length=64),
    resolver: RoomLoginResolver = Depends(get_room_login_resolver),
) -> Response:
    """Target of the printed QR codes: ``<origin>/login?code=<code>``."""

    if room_login_blocked(request):
        return _failure_page(RATE_LIMITED_MESSAGE, 429)

    try:
        if not code:
            raise InvalidOrExpiredCode()
        result = resolver.login(code)
    except RoomAccessError as exc:
        if isinstance(exc, (InvalidOrExpiredCode, AuthenticationFailed)):
            record_room_login_failure(request)
        return _failure_page(exc.message, exc.status_code)

    response = RedirectResponse(url=settings.home_path, status_code=303)
    set_auth_cookie(response, result.session.access_token)
    return response
