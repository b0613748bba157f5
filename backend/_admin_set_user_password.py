from __future__ import annotations

import argparse
import getpass
import sys
from pathlib import Path

# Allow running this script from any working directory.
BACKEND_DIR = Path(__file__).resolve().parents[0]
if str(BACKEND_DIR) not in sys.path:
    sys.path.insert(0, str(BACKEND_DIR))

from core.config import settings
from core.database import SessionLocal
from services.auth_backend import DatabaseAuthBackend


def main() -> None:
    parser = argparse.ArgumentParser(description="Reset the password of a staff or admin account.")
    parser.add_argument("email", help="Email of the account to update")
    parser.add_argument("--yes", action="store_true", help="Actually apply changes")
    args = parser.parse_args()

    email = (args.email or "").strip().lower()
    if not email:
        raise SystemExit("Email is required")
    if email.endswith("@" + settings.room_email_domain):
        raise SystemExit("Room accounts log in with their room code; rotate the code instead.")

    if not args.yes:
        print("Dry run. Re-run with --yes to apply.")
        print(f"Would set password for email={email!r}")
        return

    pw1 = getpass.getpass("New password: ")
    pw2 = getpass.getpass("Confirm password: ")
    if pw1 != pw2:
        raise SystemExit("Passwords do not match")
    if not pw1:
        raise SystemExit("Password cannot be empty")

    with SessionLocal() as db:
        if not DatabaseAuthBackend(db).set_secret(email, pw1):
            raise SystemExit(f"No such user: {email!r}")

    print({"email": email, "password": "updated"})


if __name__ == "__main__":
    main()
