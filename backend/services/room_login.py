from __future__ import annotations

import logging
from dataclasses import dataclass

from core.errors import AuthenticationFailed, InvalidOrExpiredCode, ProvisioningFailed
from core.logging import mask_code
from core.roles import Role
from models.room_code import RoomCode
from services.auth_backend import AuthBackend, AuthError, AuthErrorKind, AuthSession
from services.room_codes import RoomCodeRegistry


logger = logging.getLogger(__name__)


def room_email(room_number: str, domain: str) -> str:
    """Backend identity shared by everyone living in ``room_number``."""

    return f"room{room_number}@{domain}"


def room_display_name(room_code: RoomCode) -> str:
    return room_code.resident_name or f"Room {room_code.room_number}"


@dataclass(frozen=True)
class RoomLoginResult:
    session: AuthSession
    room_number: str
    provisioned: bool


class RoomLoginResolver:
    """Turns a scanned room code into an authenticated session.

    The code is checked against the registry before the auth backend is
    contacted at all, so provisioning is only reachable with an active code.
    """

    def __init__(self, registry: RoomCodeRegistry, auth: AuthBackend, *, email_domain: str) -> None:
        self.registry = registry
        self.auth = auth
        self.email_domain = email_domain

    def login(self, code: str | None) -> RoomLoginResult:
        room_code = self.registry.resolve_code(code)
        if room_code is None:
            logger.info("Room login rejected (no active code) code=%s", mask_code((code or "").strip().upper()))
            raise InvalidOrExpiredCode()

        room_number = room_code.room_number
        email = room_email(room_number, self.email_domain)
        secret = room_code.code

        try:
            session = self.auth.sign_in(email, secret)
        except AuthError as exc:
            if exc.kind != AuthErrorKind.USER_NOT_FOUND:
                logger.warning("Room login failed room=%s email=%s reason=%s", room_number, email, exc)
                raise AuthenticationFailed(room_number=room_number) from exc
        else:
            logger.info("Room login room=%s email=%s", room_number, email)
            return RoomLoginResult(session=session, room_number=room_number, provisioned=False)

        return self._provision(room_code, email, secret)

    def _provision(self, room_code: RoomCode, email: str, secret: str) -> RoomLoginResult:
        room_number = room_code.room_number
        metadata = {
            "room_number": room_number,
            "role": Role.RESIDENT.value,
            "display_name": room_display_name(room_code),
        }
        try:
            session = self.auth.sign_up(email, secret, metadata)
        except AuthError as exc:
            if exc.kind == AuthErrorKind.USER_EXISTS:
                # Another device of the same room provisioned first; use its account.
                return self._sign_in_after_race(room_number, email, secret)
            logger.error("Room account provisioning failed room=%s email=%s reason=%s", room_number, email, exc)
            raise ProvisioningFailed(room_number=room_number) from exc

        logger.info("Room account provisioned room=%s email=%s", room_number, email)
        return RoomLoginResult(session=session, room_number=room_number, provisioned=True)

    def _sign_in_after_race(self, room_number: str, email: str, secret: str) -> RoomLoginResult:
        try:
            session = self.auth.sign_in(email, secret)
        except AuthError as exc:
            logger.warning("Room login failed after provisioning race room=%s reason=%s", room_number, exc)
            raise AuthenticationFailed(room_number=room_number) from exc
        return RoomLoginResult(session=session, room_number=room_number, provisioned=False)


def sync_room_secret(auth: AuthBackend, room_code: RoomCode, *, email_domain: str, commit: bool = True) -> bool:
    """Point the room account's password at ``room_code``.

    Returns False when the room has no account yet; its first login will
    provision one with the current code. Pass ``commit=False`` from inside a
    rotation (see ``RoomSecretSync``) so both writes commit together.
    """

    email = room_email(room_code.room_number, email_domain)
    updated = auth.set_secret(email, room_code.code, commit=commit)
    if updated:
        logger.info("Room account password synced room=%s", room_code.room_number)
    return updated


class RoomSecretSync:
    """``on_rotated`` hook for RoomCodeRegistry.rotate_code.

    The auth backend must share the registry's session. ``synced`` tells
    whether an existing room account was updated.
    """

    def __init__(self, auth: AuthBackend, *, email_domain: str) -> None:
        self.auth = auth
        self.email_domain = email_domain
        self.synced = False

    def __call__(self, room_code: RoomCode) -> None:
        self.synced = sync_room_secret(self.auth, room_code, email_domain=self.email_domain, commit=False)
