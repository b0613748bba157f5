from __future__ import annotations

import logging
import re
import uuid
from collections.abc import Callable, Iterable
from dataclasses import dataclass

from sqlalchemy import select, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from core.errors import (
    CodeGenerationFailed,
    DuplicateActiveCode,
    InvalidRoomNumber,
    NoActiveCode,
    RoomAlreadyHasActiveCode,
    RotationConflict,
)
from core.logging import mask_code
from models.base import utcnow
from models.room_code import RoomCode
from services.code_generator import generate_code, normalize_code


logger = logging.getLogger(__name__)


_ROOM_NUMBER_RE = re.compile(r"^[A-Za-z0-9-]{1,20}$")

# One regeneration after a code collision; a second collision is reported.
_CODE_COLLISION_ATTEMPTS = 2


@dataclass(frozen=True)
class RoomOverviewEntry:
    room_number: str
    active: RoomCode | None

    @property
    def has_code(self) -> bool:
        return self.active is not None


def normalize_room_number(raw: str | int | None) -> str:
    room_number = str(raw if raw is not None else "").strip()
    if not _ROOM_NUMBER_RE.match(room_number):
        raise InvalidRoomNumber(room_number=room_number or None)
    return room_number


def room_sort_key(room_number: str) -> tuple[int, int, str]:
    # Numeric rooms first in numeric order ("2" < "10"), then the rest alphabetically.
    if room_number.isdigit():
        return (0, int(room_number), room_number)
    return (1, 0, room_number)


def _violated_constraint(exc: IntegrityError) -> str | None:
    orig = getattr(exc, "orig", None)
    diag = getattr(orig, "diag", None)
    name = (getattr(diag, "constraint_name", None) or "").lower()
    msg = f"{name}\n{orig or exc}".lower()

    if "uq_room_codes_code" in msg or "room_codes.code" in msg:
        return "code"
    if "ux_room_codes_active_room" in msg or "room_codes.room_number" in msg:
        return "active_room"
    return None


class RoomCodeRegistry:
    """Authoritative store of room access codes.

    Each mutating call is one transaction on the session it was given. The
    one-active-code-per-room rule is enforced by the ``ux_room_codes_active_room``
    partial unique index; the checks made here only produce nicer errors.
    """

    def __init__(self, db: Session, *, code_factory: Callable[[], str] = generate_code) -> None:
        self.db = db
        self._code_factory = code_factory

    # Reads

    def resolve_code(self, code: str | None) -> RoomCode | None:
        """Return the active record for ``code``.

        Deactivated codes resolve to None exactly like codes that never existed.
        """

        normalized = normalize_code(code)
        if normalized is None:
            return None
        q = select(RoomCode).where(RoomCode.code == normalized, RoomCode.is_active.is_(True))
        return self.db.execute(q).scalars().first()

    def get_active_for_room(self, room_number: str) -> RoomCode | None:
        room_number = normalize_room_number(room_number)
        q = select(RoomCode).where(RoomCode.room_number == room_number, RoomCode.is_active.is_(True))
        return self.db.execute(q).scalars().first()

    def list_active(self) -> list[RoomCode]:
        rows = self.db.execute(select(RoomCode).where(RoomCode.is_active.is_(True))).scalars().all()
        return sorted(rows, key=lambda r: room_sort_key(r.room_number))

    def history_for_room(self, room_number: str) -> list[RoomCode]:
        room_number = normalize_room_number(room_number)
        q = (
            select(RoomCode)
            .where(RoomCode.room_number == room_number)
            .order_by(RoomCode.is_active.desc(), RoomCode.created_at.desc())
        )
        return list(self.db.execute(q).scalars().all())

    def room_overview(self, room_numbers: Iterable[str]) -> list[RoomOverviewEntry]:
        by_room = {r.room_number: r for r in self.list_active()}
        rooms = [normalize_room_number(n) for n in room_numbers]
        # Rooms outside the configured list still show up if they hold a code.
        extra = [n for n in by_room if n not in set(rooms)]
        ordered = rooms + sorted(extra, key=room_sort_key)
        return [RoomOverviewEntry(room_number=n, active=by_room.get(n)) for n in ordered]

    # Writes

    def issue_code(
        self,
        room_number: str,
        *,
        resident_name: str | None = None,
        created_by: uuid.UUID | None = None,
    ) -> RoomCode:
        """Issue the first active code for a room that has none.

        Issuing while a code is active is rejected; use rotate_code.
        """

        room_number = normalize_room_number(room_number)
        resident_name = (resident_name or "").strip() or None

        for attempt in range(_CODE_COLLISION_ATTEMPTS):
            if self.get_active_for_room(room_number) is not None:
                raise RoomAlreadyHasActiveCode(room_number=room_number)

            row = RoomCode(
                room_number=room_number,
                code=self._code_factory(),
                is_active=True,
                resident_name=resident_name,
                created_by=created_by,
            )
            self.db.add(row)
            try:
                self.db.commit()
            except IntegrityError as exc:
                self.db.rollback()
                self._handle_integrity_error(exc, room_number=room_number, attempt=attempt, op="issue")
                continue

            self.db.refresh(row)
            logger.info("Issued room code room=%s code=%s by=%s", room_number, mask_code(row.code), created_by)
            return row

        raise CodeGenerationFailed(room_number=room_number)

    def rotate_code(
        self,
        room_number: str,
        *,
        resident_name: str | None = None,
        created_by: uuid.UUID | None = None,
        on_rotated: Callable[[RoomCode], object] | None = None,
    ) -> RoomCode:
        """Replace the active code of a room with a fresh one.

        The old record is deactivated and the new one inserted in the same
        transaction, so readers see either the old or the new code active,
        never both and never neither.

        ``on_rotated`` runs with the new row flushed but not committed. It must
        write through this registry's session and must not commit; its writes
        commit or roll back together with the rotation, ordered by the row lock.
        """

        room_number = normalize_room_number(room_number)
        resident_name = (resident_name or "").strip() or None

        for attempt in range(_CODE_COLLISION_ATTEMPTS):
            current = self.db.execute(
                select(RoomCode)
                .where(RoomCode.room_number == room_number, RoomCode.is_active.is_(True))
                .with_for_update()
            ).scalars().first()
            if current is None:
                self.db.rollback()
                raise NoActiveCode(room_number=room_number)

            # Conditional write: only flips the row if nobody else did first.
            res = self.db.execute(
                update(RoomCode)
                .where(RoomCode.id == current.id, RoomCode.is_active.is_(True))
                .values(is_active=False, deactivated_at=utcnow())
                .execution_options(synchronize_session=False)
            )
            if res.rowcount != 1:
                self.db.rollback()
                logger.warning("Concurrent rotation detected room=%s", room_number)
                raise RotationConflict(room_number=room_number)

            row = RoomCode(
                room_number=room_number,
                code=self._code_factory(),
                is_active=True,
                resident_name=resident_name if resident_name is not None else current.resident_name,
                created_by=created_by,
            )
            self.db.add(row)
            try:
                self.db.flush()
            except IntegrityError as exc:
                self.db.rollback()
                self._handle_integrity_error(exc, room_number=room_number, attempt=attempt, op="rotate")
                continue

            try:
                if on_rotated is not None:
                    on_rotated(row)
                self.db.commit()
            except Exception:
                # Neither the new code nor the hook's writes survive.
                self.db.rollback()
                logger.warning("Rotation rolled back room=%s", room_number, exc_info=True)
                raise

            self.db.refresh(row)
            logger.info(
                "Rotated room code room=%s old=%s new=%s by=%s",
                room_number,
                mask_code(current.code),
                mask_code(row.code),
                created_by,
            )
            return row

        raise CodeGenerationFailed(room_number=room_number)

    def issue_missing(
        self,
        room_numbers: Iterable[str],
        *,
        created_by: uuid.UUID | None = None,
    ) -> list[RoomCode]:
        """Issue a code for every listed room that has no active one."""

        issued: list[RoomCode] = []
        for room_number in room_numbers:
            if self.get_active_for_room(room_number) is not None:
                continue
            try:
                issued.append(self.issue_code(room_number, created_by=created_by))
            except (RoomAlreadyHasActiveCode, DuplicateActiveCode):
                # Another writer issued it in the meantime; that is the desired end state.
                logger.info("Room already issued concurrently room=%s", room_number)
                continue
        return issued

    def _handle_integrity_error(self, exc: IntegrityError, *, room_number: str, attempt: int, op: str) -> None:
        kind = _violated_constraint(exc)
        if kind == "code":
            logger.warning("Room code collision room=%s op=%s attempt=%d", room_number, op, attempt + 1)
            if attempt + 1 >= _CODE_COLLISION_ATTEMPTS:
                raise CodeGenerationFailed(room_number=room_number) from exc
            return
        if kind == "active_room":
            # Reported at ERROR by the API handler if it reaches a client.
            logger.warning("Active code race lost room=%s op=%s", room_number, op)
            raise DuplicateActiveCode(room_number=room_number) from exc
        raise exc
