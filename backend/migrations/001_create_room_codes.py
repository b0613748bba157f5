"""Create the room access tables on Postgres and enforce one active code per room.

Safe to run multiple times. Databases that were written without the partial
unique index may hold several active codes for one room; all but the newest
are deactivated before the index is created.
"""

from __future__ import annotations

import argparse
import sys
from pathlib import Path

# Allow running this script from any working directory.
BACKEND_DIR = Path(__file__).resolve().parents[1]
if str(BACKEND_DIR) not in sys.path:
    sys.path.insert(0, str(BACKEND_DIR))

from sqlalchemy import text

from core.database import ENGINE, is_postgres


SCHEMA_STATEMENTS = [
    "CREATE EXTENSION IF NOT EXISTS pgcrypto;",
    """
    CREATE TABLE IF NOT EXISTS users (
        id UUID PRIMARY KEY DEFAULT gen_random_uuid(),
        email VARCHAR(255) UNIQUE NOT NULL,
        password_hash TEXT NOT NULL,
        is_active BOOLEAN NOT NULL DEFAULT TRUE,
        created_at TIMESTAMPTZ NOT NULL DEFAULT now()
    );
    """,
    """
    CREATE TABLE IF NOT EXISTS profiles (
        id UUID PRIMARY KEY REFERENCES users(id) ON DELETE CASCADE,
        full_name TEXT,
        display_name TEXT,
        role VARCHAR(20) NOT NULL DEFAULT 'RESIDENT',
        room_number VARCHAR(20),
        created_at TIMESTAMPTZ NOT NULL DEFAULT now(),
        updated_at TIMESTAMPTZ
    );
    """,
    "CREATE INDEX IF NOT EXISTS ix_profiles_room_number ON profiles (room_number);",
    """
    CREATE TABLE IF NOT EXISTS room_codes (
        id UUID PRIMARY KEY DEFAULT gen_random_uuid(),
        room_number VARCHAR(20) NOT NULL,
        code VARCHAR(16) NOT NULL,
        is_active BOOLEAN NOT NULL DEFAULT TRUE,
        resident_name TEXT,
        created_at TIMESTAMPTZ NOT NULL DEFAULT now(),
        deactivated_at TIMESTAMPTZ,
        created_by UUID
    );
    """,
    # Legacy compatibility: older tables lack the audit columns.
    "ALTER TABLE room_codes ADD COLUMN IF NOT EXISTS resident_name TEXT;",
    "ALTER TABLE room_codes ADD COLUMN IF NOT EXISTS deactivated_at TIMESTAMPTZ;",
    "ALTER TABLE room_codes ADD COLUMN IF NOT EXISTS created_by UUID;",
    "CREATE INDEX IF NOT EXISTS ix_room_codes_room_number ON room_codes (room_number);",
]

# Roles written by older clients used Danish labels.
ROLE_BACKFILL = """
UPDATE profiles
SET role = CASE lower(role)
    WHEN 'beboer' THEN 'RESIDENT'
    WHEN 'resident' THEN 'RESIDENT'
    WHEN 'personale' THEN 'STAFF'
    WHEN 'staff' THEN 'STAFF'
    WHEN 'admin' THEN 'ADMIN'
    WHEN 'administrator' THEN 'ADMIN'
    ELSE role
END
WHERE role NOT IN ('RESIDENT', 'STAFF', 'ADMIN');
"""

DEDUPE_ACTIVE = """
WITH ranked AS (
    SELECT id,
           row_number() OVER (PARTITION BY room_number ORDER BY created_at DESC, id DESC) AS rn
    FROM room_codes
    WHERE is_active
)
UPDATE room_codes rc
SET is_active = FALSE,
    deactivated_at = COALESCE(rc.deactivated_at, now())
FROM ranked
WHERE rc.id = ranked.id AND ranked.rn > 1
RETURNING rc.room_number;
"""

CONSTRAINT_STATEMENTS = [
    # Stamp rows deactivated before deactivated_at existed.
    "UPDATE room_codes SET deactivated_at = created_at WHERE NOT is_active AND deactivated_at IS NULL;",
    "UPDATE room_codes SET deactivated_at = NULL WHERE is_active AND deactivated_at IS NOT NULL;",
    """
    DO $$
    BEGIN
        IF NOT EXISTS (SELECT 1 FROM pg_constraint WHERE conname = 'uq_room_codes_code') THEN
            ALTER TABLE room_codes ADD CONSTRAINT uq_room_codes_code UNIQUE (code);
        END IF;
        IF NOT EXISTS (SELECT 1 FROM pg_constraint WHERE conname = 'ck_room_codes_deactivated_at') THEN
            ALTER TABLE room_codes ADD CONSTRAINT ck_room_codes_deactivated_at CHECK (
                (is_active AND deactivated_at IS NULL) OR (NOT is_active AND deactivated_at IS NOT NULL)
            );
        END IF;
    END $$;
    """,
    "CREATE UNIQUE INDEX IF NOT EXISTS ux_room_codes_active_room ON room_codes (room_number) WHERE is_active;",
]


def main() -> None:
    parser = argparse.ArgumentParser()
    parser.add_argument("--yes", action="store_true", help="Actually apply changes")
    args = parser.parse_args()

    if not is_postgres(ENGINE):
        raise SystemExit("This migration targets Postgres. Other databases are created by core.bootstrap.")

    if not args.yes:
        print("Dry run. Re-run with --yes to apply.")
        for s in [*SCHEMA_STATEMENTS, ROLE_BACKFILL, DEDUPE_ACTIVE, *CONSTRAINT_STATEMENTS]:
            print("---")
            print(s.strip())
        return

    with ENGINE.begin() as conn:
        for s in SCHEMA_STATEMENTS:
            conn.execute(text(s))
        conn.execute(text(ROLE_BACKFILL))
        deduped = [r[0] for r in conn.execute(text(DEDUPE_ACTIVE)).all()]
        for s in CONSTRAINT_STATEMENTS:
            conn.execute(text(s))

    if deduped:
        print(f"Deactivated {len(deduped)} superseded active code(s) for rooms: {sorted(set(deduped))}")
    print("OK: ensured room access schema and one-active-code-per-room index.")


if __name__ == "__main__":
    main()
