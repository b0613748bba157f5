from __future__ import annotations

import argparse
import sys
from pathlib import Path

# Allow running this script from any working directory.
BACKEND_DIR = Path(__file__).resolve().parents[0]
if str(BACKEND_DIR) not in sys.path:
    sys.path.insert(0, str(BACKEND_DIR))

from core.config import parse_room_numbers, settings
from core.database import SessionLocal
from core.errors import RoomAccessError
from services.auth_backend import DatabaseAuthBackend
from services.qr_print import login_url
from services.room_codes import RoomCodeRegistry
from services.room_login import RoomSecretSync


def main() -> None:
    parser = argparse.ArgumentParser(
        description="Issue codes for rooms without an active code, or rotate the codes of given rooms."
    )
    parser.add_argument(
        "--rooms",
        default=None,
        help='Rooms to act on, e.g. "1-40" or "3,7,12" (default: ROOM_NUMBERS setting)',
    )
    parser.add_argument("--rotate", action="store_true", help="Rotate existing codes instead of issuing missing ones")
    parser.add_argument("--yes", action="store_true", help="Actually apply changes")
    args = parser.parse_args()

    rooms = parse_room_numbers(args.rooms) if args.rooms else settings.room_number_list()
    if not rooms:
        raise SystemExit("No rooms selected")

    with SessionLocal() as db:
        registry = RoomCodeRegistry(db)
        active = {n: registry.get_active_for_room(n) for n in rooms}

        if args.rotate:
            targets = [n for n in rooms if active[n] is not None]
            verb = "rotate"
        else:
            targets = [n for n in rooms if active[n] is None]
            verb = "issue"

        if not args.yes:
            print("Dry run. Re-run with --yes to apply.")
            print(f"Would {verb} codes for {len(targets)} room(s): {targets}")
            return

        auth = DatabaseAuthBackend(db)
        failures = 0
        for room_number in targets:
            try:
                if args.rotate:
                    sync = RoomSecretSync(auth, email_domain=settings.room_email_domain) if settings.sync_room_password_on_rotate else None
                    rc = registry.rotate_code(room_number, on_rotated=sync)
                else:
                    rc = registry.issue_code(room_number)
            except RoomAccessError as exc:
                failures += 1
                print({"room_number": room_number, "error": exc.code})
                continue
            print({"room_number": rc.room_number, "code": rc.code, "login_url": login_url(settings.login_origin, rc.code)})

    if failures:
        raise SystemExit(f"{failures} room(s) failed")


if __name__ == "__main__":
    main()
