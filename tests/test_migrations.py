from __future__ import annotations

import importlib.util

from core.config import BACKEND_DIR


def _load_migration(name: str):
    module_spec = importlib.util.spec_from_file_location(f"migration_{name}", BACKEND_DIR / "migrations" / f"{name}.py")
    module = importlib.util.module_from_spec(module_spec)
    module_spec.loader.exec_module(module)
    return module


def test_room_codes_migration_is_documented_and_ordered():
    migration = _load_migration("001_create_room_codes")

    assert migration.__doc__ is not None
    assert "one active code per room" in migration.__doc__
    # The partial unique index can only be created after duplicates are gone.
    assert "ux_room_codes_active_room" in migration.CONSTRAINT_STATEMENTS[-1]
    assert "row_number()" in migration.DEDUPE_ACTIVE
