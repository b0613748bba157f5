from __future__ import annotations

import time
from typing import Iterable

from sqlalchemy import create_engine, text
from sqlalchemy.engine import Engine, make_url
from sqlalchemy.exc import ArgumentError, OperationalError
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

from core.config import settings


class DatabaseUnavailableError(RuntimeError):
    """Raised when the database is temporarily unreachable (transient connectivity failure)."""


_RETRY_DELAYS_SECONDS: list[float] = [0.2, 0.5, 1.0]

# Substrings (lower-cased) of driver errors that mean "try again later":
# DNS failures, refused/reset connections and timeouts.
_TRANSIENT_MARKERS = (
    "getaddrinfo failed",
    "could not translate host name",
    "name or service not known",
    "connection refused",
    "actively refused",
    "connection reset",
    "server closed the connection unexpectedly",
    "timeout",
    "timed out",
)

_PSYCOPG2_PREFIXES = ("postgresql://", "postgres://", "postgresql+psycopg://")

_IN_MEMORY_SQLITE = {"sqlite://", "sqlite:///:memory:"}

_SSL_REQUIRED_HOST_SUFFIXES = ("supabase.com", "supabase.co")


def _iter_exception_messages(exc: BaseException) -> Iterable[str]:
    seen: set[int] = set()
    cur: BaseException | None = exc
    while cur is not None and id(cur) not in seen:
        seen.add(id(cur))
        msg = str(cur)
        if msg:
            yield msg
        cur = getattr(cur, "__cause__", None) or getattr(cur, "__context__", None)


def is_transient_db_connectivity_error(exc: BaseException) -> bool:
    """Heuristically detect transient DB connectivity failures.

    Constraint violations are never transient: a duplicate active code must
    not be retried into a 503.
    """

    joined = "\n".join(m.lower() for m in _iter_exception_messages(exc))
    return any(marker in joined for marker in _TRANSIENT_MARKERS)


def normalize_database_url(url: str) -> str:
    url = url.strip()
    for prefix in _PSYCOPG2_PREFIXES:
        if url.startswith(prefix):
            return "postgresql+psycopg2://" + url.removeprefix(prefix)
    return url


def _postgres_connect_args(url: str) -> dict[str, object]:
    # connect_timeout keeps outages from hanging requests (used by retries and /health).
    connect_args: dict[str, object] = {"connect_timeout": 3}
    try:
        parsed = make_url(url)
    except ArgumentError:
        return connect_args
    host = (parsed.host or "").lower()
    if host.endswith(_SSL_REQUIRED_HOST_SUFFIXES) and "sslmode" not in (parsed.query or {}):
        connect_args["sslmode"] = "require"
    return connect_args


def get_engine(database_url: str | None = None) -> Engine:
    url = normalize_database_url(database_url or settings.database_url)

    if url.startswith("sqlite"):
        # Local development and tests. An in-memory database lives in one connection.
        if url in _IN_MEMORY_SQLITE:
            return create_engine(url, connect_args={"check_same_thread": False}, poolclass=StaticPool)
        return create_engine(url, connect_args={"check_same_thread": False})

    return create_engine(url, pool_pre_ping=True, connect_args=_postgres_connect_args(url))


ENGINE = get_engine()
SessionLocal = sessionmaker(bind=ENGINE, autoflush=False, autocommit=False)


def is_postgres(engine: Engine) -> bool:
    return engine.dialect.name == "postgresql"


def get_db():
    last_exc: BaseException | None = None

    # Ping before handing out the session so outages surface as 503, not as endpoint errors.
    for attempt in range(len(_RETRY_DELAYS_SECONDS) + 1):
        db = SessionLocal()
        try:
            db.execute(text("SELECT 1"))
        except OperationalError as exc:
            last_exc = exc
            db.close()
            if not is_transient_db_connectivity_error(exc) or attempt >= len(_RETRY_DELAYS_SECONDS):
                break
            time.sleep(_RETRY_DELAYS_SECONDS[attempt])
            continue

        # The endpoint's own exceptions (409/401/...) must propagate unchanged.
        try:
            yield db
        finally:
            db.close()
        return

    raise DatabaseUnavailableError("Database temporarily unavailable") from last_exc
