from __future__ import annotations

import argparse
import sys
from pathlib import Path

# Allow running this script from any working directory.
BACKEND_DIR = Path(__file__).resolve().parents[0]
if str(BACKEND_DIR) not in sys.path:
    sys.path.insert(0, str(BACKEND_DIR))

from sqlalchemy import func, select

from core.database import SessionLocal
from core.roles import normalize_role
from models import Profile, User


def main() -> None:
    parser = argparse.ArgumentParser(description="Promote or demote an account (RESIDENT/STAFF/ADMIN).")
    parser.add_argument("email", help="Email of the account to update")
    parser.add_argument("--role", default="STAFF", help="RESIDENT, STAFF or ADMIN; Danish labels accepted (default: STAFF)")
    parser.add_argument("--yes", action="store_true", help="Actually apply changes")
    args = parser.parse_args()

    email = args.email.strip().lower()
    if not email:
        raise SystemExit("Email is required")
    try:
        role = normalize_role(args.role)
    except ValueError:
        raise SystemExit("Invalid --role. Use RESIDENT, STAFF or ADMIN.")

    with SessionLocal() as db:
        profile = db.execute(
            select(Profile).join(User, User.id == Profile.id).where(func.lower(User.email) == email)
        ).scalar_one_or_none()
        if profile is None:
            raise SystemExit(f"No such user (or user has no profile): {email!r}")

        if not args.yes:
            print("Dry run. Re-run with --yes to apply.")
            print(f"Would change role {profile.role} -> {role.value} for email={email!r}")
            return

        profile.role = role.value
        db.commit()
        print({"id": str(profile.id), "email": email, "role": profile.role})


if __name__ == "__main__":
    main()
