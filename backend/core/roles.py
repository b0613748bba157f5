from __future__ import annotations

from enum import Enum


class Role(str, Enum):
    RESIDENT = "RESIDENT"
    STAFF = "STAFF"
    ADMIN = "ADMIN"

    @property
    def is_staff(self) -> bool:
        return self in (Role.STAFF, Role.ADMIN)


# Legacy and Danish labels seen in stored profiles and auth metadata.
_ROLE_SYNONYMS: dict[str, Role] = {
    "resident": Role.RESIDENT,
    "beboer": Role.RESIDENT,
    "staff": Role.STAFF,
    "personale": Role.STAFF,
    "admin": Role.ADMIN,
    "administrator": Role.ADMIN,
}


def normalize_role(value: str | Role | None) -> Role:
    """Map any accepted role label onto the closed Role enum.

    Raises ValueError for unknown labels.
    """

    if isinstance(value, Role):
        return value
    key = (value or "").strip().lower()
    try:
        return _ROLE_SYNONYMS[key]
    except KeyError:
        raise ValueError(f"Unknown role: {value!r}") from None
