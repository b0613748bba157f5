from __future__ import annotations

import os

from fastapi.testclient import TestClient

from main import app


def _check(resp, label: str, expected: int) -> None:
    if resp.status_code != expected:
        raise SystemExit(f"FAIL {label}: expected {expected}, got {resp.status_code} {resp.text}")
    print(f"OK   {label}: {resp.status_code}")


def main() -> None:
    """Issue/login/rotate round trip against the configured database.

    Uses a scratch room (SMOKE_ROOM, default "999") so real rooms are untouched.
    The scratch room's codes stay in the history table afterwards.
    """

    email = os.environ.get("SMOKE_EMAIL") or os.environ.get("SEED_ADMIN_EMAIL")
    password = os.environ.get("SMOKE_PASSWORD") or os.environ.get("SEED_ADMIN_PASSWORD")
    room = os.environ.get("SMOKE_ROOM", "999")
    if not email or not password:
        raise SystemExit(
            "Missing credentials. Set SMOKE_EMAIL+SMOKE_PASSWORD (or SEED_ADMIN_EMAIL+SEED_ADMIN_PASSWORD) to run this smoke test."
        )

    staff = TestClient(app)
    _check(staff.post("/api/auth/login", json={"email": email, "password": password}), "staff login", 200)

    current = staff.get(f"/api/room-codes/{room}")
    if current.status_code == 404:
        _check(staff.post(f"/api/room-codes/{room}"), "issue", 201)
        current = staff.get(f"/api/room-codes/{room}")
    _check(current, "active code", 200)
    old_code = current.json()["code"]

    resident = TestClient(app)
    _check(resident.post("/api/auth/room-login", json={"code": old_code}), "room login", 200)
    _check(resident.get("/api/auth/me"), "resident /me", 200)

    rotated = staff.post(f"/api/room-codes/{room}/rotate?confirm=true")
    _check(rotated, "rotate", 200)
    new_code = rotated.json()["code"]["code"]

    _check(TestClient(app).post("/api/auth/room-login", json={"code": old_code}), "old code rejected", 401)
    _check(TestClient(app).post("/api/auth/room-login", json={"code": new_code}), "new code login", 200)

    print("Smoke OK")


if __name__ == "__main__":
    main()
