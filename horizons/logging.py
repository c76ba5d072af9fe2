import logging
from typing import Optional

from horizons.config import settings

LOG_FORMAT = "%(asctime)s %(levelname)s %(name)s: %(message)s"
ROOT_NAME = "horizons"


def _level(name: Optional[str]) -> int:
    level = logging.getLevelName((name or "INFO").strip().upper())
    return level if isinstance(level, int) else logging.INFO


def _add_handler(logger: logging.Logger, handler: logging.Handler) -> None:
    handler.setFormatter(logging.Formatter(LOG_FORMAT))
    logger.addHandler(handler)


def _configure_root() -> logging.Logger:
    root = logging.getLogger(ROOT_NAME)
    if root.handlers:
        return root

    root.setLevel(_level(settings.log_level))
    root.propagate = False
    _add_handler(root, logging.StreamHandler())
    if settings.log_file:
        try:
            _add_handler(root, logging.FileHandler(settings.log_file, encoding="utf-8"))
        except OSError as exc:
            root.warning("Cannot open log file %s (%s), logging to stderr only", settings.log_file, exc)
    return root


def get_logger(name: str) -> logging.Logger:
    """Child of the ``horizons`` logger; LOG_LEVEL and LOG_FILE come from settings."""
    _configure_root()
    return logging.getLogger(f"{ROOT_NAME}.{name}")
