from __future__ import annotations

from pathlib import Path

from pydantic import Field, field_validator
from pydantic.aliases import AliasChoices
from pydantic_settings import BaseSettings, SettingsConfigDict


BACKEND_DIR = Path(__file__).resolve().parents[1]


class Settings(BaseSettings):
    model_config = SettingsConfigDict(env_file=BACKEND_DIR / ".env", env_file_encoding="utf-8")

    database_url: str

    # Auth
    jwt_secret_key: str = Field(
        validation_alias=AliasChoices("jwt_secret_key", "jwt_secret", "JWT_SECRET_KEY", "JWT_SECRET")
    )
    jwt_algorithm: str = Field(default="HS256", validation_alias=AliasChoices("jwt_algorithm", "JWT_ALGORITHM"))
    access_token_expire_minutes: int = Field(
        default=60 * 24 * 30,
        validation_alias=AliasChoices("access_token_expire_minutes", "ACCESS_TOKEN_EXPIRE_MINUTES"),
    )

    cookie_samesite: str = Field(
        default="lax",
        validation_alias=AliasChoices("cookie_samesite", "COOKIE_SAMESITE"),
    )

    # Optional production bootstrap: seed an initial admin account.
    # Only used if BOTH email + password are provided.
    seed_admin_email: str | None = Field(
        default=None,
        validation_alias=AliasChoices("seed_admin_email", "SEED_ADMIN_EMAIL", "ADMIN_SEED_EMAIL"),
    )
    seed_admin_password: str | None = Field(
        default=None,
        validation_alias=AliasChoices("seed_admin_password", "SEED_ADMIN_PASSWORD", "ADMIN_SEED_PASSWORD"),
    )

    # Room access codes
    room_email_domain: str = Field(
        default="overmark.local",
        validation_alias=AliasChoices("room_email_domain", "ROOM_EMAIL_DOMAIN"),
    )
    # Rooms shown in the admin overview and used by bulk issuance, e.g. "1-40" or "1-20,101,102".
    room_numbers: str = Field(
        default="1-40",
        validation_alias=AliasChoices("room_numbers", "ROOM_NUMBERS"),
    )
    sync_room_password_on_rotate: bool = Field(
        default=True,
        validation_alias=AliasChoices("sync_room_password_on_rotate", "SYNC_ROOM_PASSWORD_ON_ROTATE"),
    )

    # Runtime
    environment: str = Field(default="development", validation_alias=AliasChoices("environment", "ENVIRONMENT"))
    frontend_origin: str = Field(
        default="http://localhost:3000",
        validation_alias=AliasChoices("frontend_origin", "FRONTEND_ORIGIN"),
    )
    # Origin embedded in printed login URLs. Falls back to frontend_origin.
    public_origin: str | None = Field(
        default=None,
        validation_alias=AliasChoices("public_origin", "PUBLIC_ORIGIN", "APP_URL"),
    )
    home_path: str = Field(default="/", validation_alias=AliasChoices("home_path", "HOME_PATH"))

    @field_validator("frontend_origin")
    @classmethod
    def _normalize_frontend_origin(cls, v: str) -> str:
        # Starlette CORS expects the Origin to match exactly (no trailing slash).
        return v.strip().rstrip("/")

    @field_validator("public_origin")
    @classmethod
    def _normalize_public_origin(cls, v: str | None) -> str | None:
        if v is None:
            return None
        v = v.strip().rstrip("/")
        return v or None

    @field_validator("cookie_samesite")
    @classmethod
    def _normalize_cookie_samesite(cls, v: str) -> str:
        return (v or "lax").strip().lower()

    @field_validator("room_email_domain")
    @classmethod
    def _normalize_room_email_domain(cls, v: str) -> str:
        v = (v or "").strip().lstrip("@").lower()
        if not v:
            raise ValueError("ROOM_EMAIL_DOMAIN must not be empty")
        return v

    @field_validator("room_numbers")
    @classmethod
    def _validate_room_numbers(cls, v: str) -> str:
        parse_room_numbers(v)
        return v.strip()

    @field_validator("seed_admin_email")
    @classmethod
    def _normalize_seed_admin_email(cls, v: str | None) -> str | None:
        if v is None:
            return None
        v = v.strip().lower()
        return v or None

    @field_validator("seed_admin_password")
    @classmethod
    def _normalize_seed_admin_password(cls, v: str | None) -> str | None:
        if v is None:
            return None
        # Intentionally do not strip whitespace here: passwords can contain spaces.
        return v

    @property
    def is_production(self) -> bool:
        return self.environment.lower().strip() == "production"

    @property
    def login_origin(self) -> str:
        return self.public_origin or self.frontend_origin

    def room_number_list(self) -> list[str]:
        return parse_room_numbers(self.room_numbers)


def parse_room_numbers(rooms: str) -> list[str]:
    """Expand "1-40,101" style room lists, preserving order and dropping duplicates."""

    out: list[str] = []
    seen: set[str] = set()
    for part in (rooms or "").split(","):
        part = part.strip()
        if not part:
            continue
        if "-" in part:
            lo_s, hi_s = (p.strip() for p in part.split("-", 1))
            if not lo_s.isdigit() or not hi_s.isdigit():
                raise ValueError(f"Invalid room range: {part!r}")
            lo, hi = int(lo_s), int(hi_s)
            if lo > hi:
                raise ValueError(f"Invalid room range: {part!r}")
            items = [str(n) for n in range(lo, hi + 1)]
        else:
            items = [part]
        for item in items:
            if item not in seen:
                seen.add(item)
                out.append(item)
    return out


settings = Settings()
