import logging
from pathlib import Path

from wishfund.core.config import settings

LOG_FORMAT = "%(asctime)s %(levelname)s %(name)s %(message)s"
ROOT_LOGGER = "wishfund"

# Third-party loggers that drown out request logs at INFO.
NOISY_LOGGERS = ("httpx", "httpcore", "sqlalchemy.engine", "passlib")


def _level(name: str | None, default: int = logging.INFO) -> int:
    level = logging.getLevelName((name or "").strip().upper())
    return level if isinstance(level, int) else default


def parse_area_levels(value: str) -> dict[str, int]:
    """Parse ``"payments=DEBUG,db=WARNING"`` into ``{"wishfund.payments": 10, ...}``.

    Entries without ``=`` or with an unknown level are skipped.
    """
    levels: dict[str, int] = {}
    for entry in (value or "").split(","):
        area, sep, level_name = entry.partition("=")
        area = area.strip()
        if not sep or not area:
            continue
        level = _level(level_name, default=-1)
        if level < 0:
            continue
        name = area if area.startswith(f"{ROOT_LOGGER}.") else f"{ROOT_LOGGER}.{area}"
        levels[name] = level
    return levels


def _file_handler(log_file: str, root: logging.Logger) -> logging.Handler | None:
    log_path = Path(log_file)
    log_path.parent.mkdir(parents=True, exist_ok=True)
    target = str(log_path.resolve())
    for handler in root.handlers:
        if isinstance(handler, logging.FileHandler) and handler.baseFilename == target:
            return None
    return logging.FileHandler(log_path, encoding="utf-8")


def configure_logging() -> logging.Logger:
    """Attach handlers once and apply the base and per-area levels."""
    level = _level(settings.log_level)
    root = logging.getLogger()
    formatter = logging.Formatter(LOG_FORMAT)

    new_handlers: list[logging.Handler] = []
    if not root.handlers:
        new_handlers.append(logging.StreamHandler())
    if settings.log_file:
        handler = _file_handler(settings.log_file, root)
        if handler is not None:
            new_handlers.append(handler)
    for handler in new_handlers:
        handler.setFormatter(formatter)
        root.addHandler(handler)
    root.setLevel(level)

    quiet = logging.DEBUG if level <= logging.DEBUG else logging.WARNING
    for name in NOISY_LOGGERS:
        logging.getLogger(name).setLevel(quiet)

    logger = logging.getLogger(ROOT_LOGGER)
    logger.setLevel(level)
    for name, area_level in parse_area_levels(settings.log_area_levels).items():
        logging.getLogger(name).setLevel(area_level)
    return logger
