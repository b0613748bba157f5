from __future__ import annotations

import itertools
import random

import pytest
from sqlalchemy import func, select
from sqlalchemy.exc import IntegrityError

from conftest import InterleavedRotation
from core.errors import (
    CodeGenerationFailed,
    DuplicateActiveCode,
    InvalidRoomNumber,
    NoActiveCode,
    RoomAlreadyHasActiveCode,
    RotationConflict,
)
from models.room_code import RoomCode
from services.room_codes import RoomCodeRegistry


def _active_count(db, room_number: str) -> int:
    q = select(func.count()).select_from(RoomCode).where(
        RoomCode.room_number == room_number, RoomCode.is_active.is_(True)
    )
    return db.execute(q).scalar_one()


def _scripted_codes(*codes: str):
    it = iter(codes)
    return lambda: next(it)


def test_issue_creates_single_active_code(registry, db):
    rc = registry.issue_code("12", resident_name="  Anna  ")

    assert rc.room_number == "12"
    assert rc.is_active
    assert rc.deactivated_at is None
    assert rc.resident_name == "Anna"
    assert registry.get_active_for_room("12").id == rc.id
    assert _active_count(db, "12") == 1


def test_issue_rejects_room_with_active_code(registry, db):
    first = registry.issue_code("3")
    with pytest.raises(RoomAlreadyHasActiveCode):
        registry.issue_code("3")

    assert registry.get_active_for_room("3").code == first.code
    assert _active_count(db, "3") == 1


def test_issue_rejects_invalid_room(registry):
    with pytest.raises(InvalidRoomNumber):
        registry.issue_code("12; drop table")


def test_resolve_code_is_case_and_whitespace_insensitive(registry):
    rc = registry.issue_code("4")
    resolved = registry.resolve_code(f"  {rc.code.lower()} ")
    assert resolved is not None
    assert resolved.room_number == "4"


def test_resolve_unknown_code(registry):
    registry.issue_code("4")
    assert registry.resolve_code("ZZZZZZZZ") is None
    assert registry.resolve_code("") is None
    assert registry.resolve_code(None) is None


def test_rotate_replaces_active_code(registry, db):
    old = registry.issue_code("7", resident_name="Bo")
    old_code = old.code

    new = registry.rotate_code("7")

    assert new.code != old_code
    assert new.resident_name == "Bo"
    assert registry.resolve_code(old_code) is None
    assert registry.resolve_code(new.code).id == new.id
    assert _active_count(db, "7") == 1

    db.expire_all()
    previous = db.execute(select(RoomCode).where(RoomCode.code == old_code)).scalar_one()
    assert not previous.is_active
    assert previous.deactivated_at is not None


def test_rotate_can_change_resident_name(registry):
    registry.issue_code("7", resident_name="Bo")
    assert registry.rotate_code("7", resident_name="Carl").resident_name == "Carl"


def test_rotate_without_active_code(registry):
    with pytest.raises(NoActiveCode):
        registry.rotate_code("8")


def test_deactivated_codes_are_never_reactivated(registry, db):
    registry.issue_code("9")
    codes = [registry.get_active_for_room("9").code]
    for _ in range(3):
        codes.append(registry.rotate_code("9").code)

    assert len(set(codes)) == 4
    for code in codes[:-1]:
        assert registry.resolve_code(code) is None
    assert registry.resolve_code(codes[-1]) is not None


def test_history_lists_active_first(registry):
    registry.issue_code("5")
    registry.rotate_code("5")
    latest = registry.rotate_code("5")

    history = registry.history_for_room("5")
    assert len(history) == 3
    assert history[0].id == latest.id
    assert [h.is_active for h in history] == [True, False, False]


def test_list_active_sorted_numerically(registry):
    for room in ["10", "2", "1"]:
        registry.issue_code(room)
    assert [r.room_number for r in registry.list_active()] == ["1", "2", "10"]


def test_room_overview_includes_rooms_without_code(registry):
    registry.issue_code("2")
    registry.issue_code("99")

    overview = registry.room_overview(["1", "2", "3"])

    assert [e.room_number for e in overview] == ["1", "2", "3", "99"]
    assert [e.has_code for e in overview] == [False, True, False, True]


def test_issue_missing_only_fills_gaps(registry, db):
    existing = registry.issue_code("2")

    issued = registry.issue_missing(["1", "2", "3"])

    assert sorted(r.room_number for r in issued) == ["1", "3"]
    assert registry.get_active_for_room("2").code == existing.code
    assert registry.issue_missing(["1", "2", "3"]) == []


def test_issue_missing_skips_rooms_issued_concurrently(registry, db, monkeypatch):
    taken = registry.issue_code("2")
    # Every existence check misses, as if another writer committed right after it.
    monkeypatch.setattr(registry, "get_active_for_room", lambda room_number: None)

    issued = registry.issue_missing(["1", "2", "3"])

    assert sorted(r.room_number for r in issued) == ["1", "3"]
    assert RoomCodeRegistry(db).get_active_for_room("2").code == taken.code
    assert _active_count(db, "2") == 1


def test_code_collision_is_regenerated_once(db):
    RoomCodeRegistry(db, code_factory=_scripted_codes("AAAA2222")).issue_code("1")

    registry = RoomCodeRegistry(db, code_factory=_scripted_codes("AAAA2222", "BBBB3333"))
    rc = registry.issue_code("2")

    assert rc.code == "BBBB3333"
    assert _active_count(db, "2") == 1


def test_second_code_collision_fails(db):
    RoomCodeRegistry(db, code_factory=_scripted_codes("AAAA2222")).issue_code("1")

    registry = RoomCodeRegistry(db, code_factory=_scripted_codes("AAAA2222", "AAAA2222"))
    with pytest.raises(CodeGenerationFailed):
        registry.issue_code("2")
    assert registry.get_active_for_room("2") is None


def test_rotation_collision_keeps_old_code_active(db):
    RoomCodeRegistry(db, code_factory=_scripted_codes("AAAA2222")).issue_code("1")
    registry = RoomCodeRegistry(db, code_factory=_scripted_codes("CCCC4444", "AAAA2222", "AAAA2222"))
    registry.issue_code("2")

    with pytest.raises(CodeGenerationFailed):
        registry.rotate_code("2")

    assert registry.get_active_for_room("2").code == "CCCC4444"
    assert _active_count(db, "2") == 1


def test_codes_of_retired_rooms_are_not_reused(db):
    registry = RoomCodeRegistry(db, code_factory=_scripted_codes("AAAA2222", "DDDD5555", "AAAA2222", "EEEE6666"))
    registry.issue_code("1")
    registry.rotate_code("1")

    # "AAAA2222" is deactivated but still taken.
    assert registry.issue_code("2").code == "EEEE6666"


def test_datastore_rejects_second_active_code(registry, db):
    registry.issue_code("6")
    db.add(RoomCode(room_number="6", code="ZZZZ9999", is_active=True))
    with pytest.raises(IntegrityError):
        db.commit()
    db.rollback()
    assert _active_count(db, "6") == 1


def test_datastore_rejects_inconsistent_deactivation(db):
    db.add(RoomCode(room_number="6", code="ZZZZ9999", is_active=False))
    with pytest.raises(IntegrityError):
        db.commit()
    db.rollback()


def test_concurrent_issue_reports_duplicate_active_code(registry, db, monkeypatch):
    registry.issue_code("11")
    # Simulate a second writer that checked before the first one committed.
    monkeypatch.setattr(registry, "get_active_for_room", lambda room_number: None)

    with pytest.raises(DuplicateActiveCode):
        registry.issue_code("11")
    assert _active_count(db, "11") == 1


def test_concurrent_rotation_reports_conflict(db):
    original = RoomCodeRegistry(db).issue_code("12")
    original_code = original.code

    registry = RoomCodeRegistry(InterleavedRotation(db, "12"))
    with pytest.raises(RotationConflict):
        registry.rotate_code("12")

    # The losing transaction was rolled back as a whole.
    survivor = RoomCodeRegistry(db).get_active_for_room("12")
    assert survivor is not None
    assert survivor.code == original_code


@pytest.mark.parametrize("seed", [1, 7, 42, 1234])
def test_random_operation_sequences_keep_one_active_code(db, seed):
    rng = random.Random(seed)
    counter = itertools.count()
    registry = RoomCodeRegistry(db, code_factory=lambda: f"C{next(counter):07d}")
    rooms = ["1", "2", "3"]
    all_codes: dict[str, str] = {}

    for _ in range(40):
        room = rng.choice(rooms)
        op = rng.choice(["issue", "rotate"])
        try:
            if op == "issue":
                rc = registry.issue_code(room)
            else:
                rc = registry.rotate_code(room)
        except (RoomAlreadyHasActiveCode, NoActiveCode):
            continue
        all_codes[rc.code] = room

        for r in rooms:
            assert _active_count(db, r) <= 1

    active = {rc.code for rc in registry.list_active()}
    for code, room in all_codes.items():
        resolved = registry.resolve_code(code)
        if code in active:
            assert resolved is not None and resolved.room_number == room
        else:
            assert resolved is None
