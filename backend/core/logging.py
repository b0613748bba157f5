from __future__ import annotations

import logging
import logging.handlers

from core.config import BACKEND_DIR


LOG_DIR = BACKEND_DIR / "logs"
LOG_FILE = "room_access.log"

_LOG_FORMAT = "%(asctime)s %(levelname)s %(name)s %(message)s"
_DATE_FORMAT = "%Y-%m-%dT%H:%M:%S%z"

# Third-party loggers pinned to a fixed level; None follows the app level.
_LIBRARY_LEVELS: dict[str, int | None] = {
    "uvicorn": None,
    "uvicorn.error": None,
    "uvicorn.access": None,
    # SQL echo would put codes into the log.
    "sqlalchemy.engine": logging.WARNING,
    "PIL": logging.INFO,
}


def _with_format(handler: logging.Handler, level: int) -> logging.Handler:
    handler.setLevel(level)
    handler.setFormatter(logging.Formatter(fmt=_LOG_FORMAT, datefmt=_DATE_FORMAT))
    return handler


def setup_logging(*, environment: str) -> None:
    """Console logging everywhere, plus a rotating file in production.

    DEBUG outside production, INFO in production. A second call is a no-op.
    """

    root = logging.getLogger()
    if root.handlers:
        return

    production = (environment or "development").lower().strip() == "production"
    level = logging.INFO if production else logging.DEBUG

    handlers = [_with_format(logging.StreamHandler(), level)]
    if production:
        LOG_DIR.mkdir(parents=True, exist_ok=True)
        rotating = logging.handlers.RotatingFileHandler(
            LOG_DIR / LOG_FILE,
            maxBytes=10 * 1024 * 1024,
            backupCount=5,
            encoding="utf-8",
        )
        handlers.append(_with_format(rotating, level))

    logging.basicConfig(level=level, handlers=handlers)

    for name, pinned in _LIBRARY_LEVELS.items():
        logging.getLogger(name).setLevel(level if pinned is None else pinned)


def mask_code(code: str | None) -> str:
    """Render an access code for logs without disclosing it."""

    if not code:
        return "<none>"
    return code[:2] + "*" * max(len(code) - 2, 0)
