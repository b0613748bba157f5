from __future__ import annotations

import secrets
from collections.abc import Container


# Uppercase letters and digits without the look-alikes 0/O and 1/I.
ROOM_CODE_ALPHABET = "ABCDEFGHJKLMNPQRSTUVWXYZ23456789"
ROOM_CODE_LENGTH = 8

MAX_CODE_LENGTH = 16

_MAX_EXCLUSION_DRAWS = 16


def generate_code(
    length: int = ROOM_CODE_LENGTH,
    alphabet: str = ROOM_CODE_ALPHABET,
    exclude: Container[str] | None = None,
) -> str:
    """Draw one candidate access code.

    32 symbols ** 8 positions is ~1.1e12 codes, so a collision with the few
    hundred codes of a facility is negligible. The registry still enforces
    uniqueness; `exclude` only lets callers skip codes they already know about.
    """

    if length <= 0:
        raise ValueError("length must be positive")
    if not alphabet:
        raise ValueError("alphabet must not be empty")

    for _ in range(_MAX_EXCLUSION_DRAWS):
        code = "".join(secrets.choice(alphabet) for _ in range(length))
        if exclude is None or code not in exclude:
            return code
    raise RuntimeError("could not draw a code outside the exclusion set")


def normalize_code(raw: str | None) -> str | None:
    """Canonical form of a scanned/typed code, or None if it cannot be a code.

    Only shape is checked, not the alphabet: codes issued by the older hex
    generator (e.g. "B412A27D") must keep resolving until they are rotated.
    """

    code = (raw or "").strip().upper()
    if not code or len(code) > MAX_CODE_LENGTH or not code.isascii() or not code.isalnum():
        return None
    return code
