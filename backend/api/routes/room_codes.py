from __future__ import annotations

import logging

from fastapi import APIRouter, Body, Depends, HTTPException, Query
from fastapi.responses import HTMLResponse, Response

from api.deps import get_auth_backend, get_registry, require_admin, require_staff
from core.config import settings
from core.errors import NoActiveCode
from models.room_code import RoomCode
from models.user import User
from schemas.room_code import (
    IssueCodeRequest,
    IssueMissingResponse,
    LoginUrlOut,
    RoomCodeOut,
    RoomOverviewOut,
    RotateCodeRequest,
    RotateCodeResponse,
)
from services.auth_backend import DatabaseAuthBackend
from services.qr_print import login_url, render_print_card, render_print_sheet, render_qr_png
from services.room_codes import RoomCodeRegistry
from services.room_login import RoomSecretSync


logger = logging.getLogger(__name__)


router = APIRouter()


def _active_or_404(registry: RoomCodeRegistry, room_number: str) -> RoomCode:
    room_code = registry.get_active_for_room(room_number)
    if room_code is None:
        raise NoActiveCode(room_number=room_number)
    return room_code


@router.get("/", response_model=list[RoomCodeOut])
def list_active_codes(registry: RoomCodeRegistry = Depends(get_registry)) -> list[RoomCode]:
    return registry.list_active()


@router.get("/overview", response_model=list[RoomOverviewOut])
def room_overview(registry: RoomCodeRegistry = Depends(get_registry)) -> list[RoomOverviewOut]:
    entries = registry.room_overview(settings.room_number_list())
    return [
        RoomOverviewOut(
            room_number=e.room_number,
            has_code=e.has_code,
            code=RoomCodeOut.model_validate(e.active) if e.active is not None else None,
        )
        for e in entries
    ]


@router.get("/print", response_class=HTMLResponse)
def print_all(registry: RoomCodeRegistry = Depends(get_registry)) -> HTMLResponse:
    return HTMLResponse(render_print_sheet(registry.list_active(), origin=settings.login_origin))


@router.post("/issue-missing", response_model=IssueMissingResponse)
def issue_missing(
    current_user: User = Depends(require_admin),
    registry: RoomCodeRegistry = Depends(get_registry),
) -> IssueMissingResponse:
    issued = registry.issue_missing(settings.room_number_list(), created_by=current_user.id)
    logger.info("Bulk issued %d room codes by=%s", len(issued), current_user.id)
    return IssueMissingResponse(ok=True, issued=[RoomCodeOut.model_validate(r) for r in issued])


@router.get("/{room_number}", response_model=RoomCodeOut)
def get_active_code(room_number: str, registry: RoomCodeRegistry = Depends(get_registry)) -> RoomCode:
    return _active_or_404(registry, room_number)


@router.get("/{room_number}/history", response_model=list[RoomCodeOut])
def code_history(room_number: str, registry: RoomCodeRegistry = Depends(get_registry)) -> list[RoomCode]:
    return registry.history_for_room(room_number)


@router.post("/{room_number}", response_model=RoomCodeOut, status_code=201)
def issue_code(
    room_number: str,
    payload: IssueCodeRequest | None = Body(default=None),
    current_user: User = Depends(require_staff),
    registry: RoomCodeRegistry = Depends(get_registry),
) -> RoomCode:
    resident_name = payload.resident_name if payload is not None else None
    return registry.issue_code(room_number, resident_name=resident_name, created_by=current_user.id)


@router.post("/{room_number}/rotate", response_model=RotateCodeResponse)
def rotate_code(
    room_number: str,
    payload: RotateCodeRequest | None = Body(default=None),
    confirm: bool = Query(default=False),
    current_user: User = Depends(require_staff),
    registry: RoomCodeRegistry = Depends(get_registry),
    auth: DatabaseAuthBackend = Depends(get_auth_backend),
) -> RotateCodeResponse:
    current = _active_or_404(registry, room_number)
    if not confirm:
        raise HTTPException(
            status_code=409,
            detail={
                "code": "ROTATION_CONFIRM_REQUIRED",
                "errors": [
                    f"Generate a new QR code for room {current.room_number}?",
                    "The old code will stop working immediately.",
                    "Retry with ?confirm=true to confirm.",
                ],
            },
        )

    resident_name = payload.resident_name if payload is not None else None
    # Registry and auth backend share the request session, so the password
    # update commits in the rotation's transaction.
    sync = RoomSecretSync(auth, email_domain=settings.room_email_domain) if settings.sync_room_password_on_rotate else None
    new_code = registry.rotate_code(
        room_number,
        resident_name=resident_name,
        created_by=current_user.id,
        on_rotated=sync,
    )

    synced = sync.synced if sync is not None else False
    return RotateCodeResponse(ok=True, code=RoomCodeOut.model_validate(new_code), account_synced=synced)


@router.get("/{room_number}/login-url", response_model=LoginUrlOut)
def get_login_url(room_number: str, registry: RoomCodeRegistry = Depends(get_registry)) -> LoginUrlOut:
    room_code = _active_or_404(registry, room_number)
    return LoginUrlOut(
        room_number=room_code.room_number,
        code=room_code.code,
        login_url=login_url(settings.login_origin, room_code.code),
    )


@router.get("/{room_number}/qr.png")
def get_qr_png(room_number: str, registry: RoomCodeRegistry = Depends(get_registry)) -> Response:
    room_code = _active_or_404(registry, room_number)
    png = render_qr_png(login_url(settings.login_origin, room_code.code))
    # The image embeds a live credential.
    return Response(content=png, media_type="image/png", headers={"Cache-Control": "no-store"})


@router.get("/{room_number}/print", response_class=HTMLResponse)
def print_one(room_number: str, registry: RoomCodeRegistry = Depends(get_registry)) -> HTMLResponse:
    room_code = _active_or_404(registry, room_number)
    return HTMLResponse(render_print_card(room_code, origin=settings.login_origin))
