from __future__ import annotations

import logging
import os
from pathlib import Path
from typing import Any

from .config import RelayRuntimeConfig

PACKAGE_LOGGER = "chatrelayd"

# Loggers the relay writes to; [logging.levels] keys name these.
COMPONENTS = ("server", "session", "registry", "client", "stats")

DEFAULT_FORMAT = "%(asctime)s %(levelname)s %(name)s: %(message)s"


def parse_level(value: Any, default: int) -> int:
    if isinstance(value, int):
        return value
    text = str(value or "").strip().upper()
    if not text:
        return default
    if text == "WARN":
        text = "WARNING"

    known = logging.getLevelNamesMapping()
    if text in known:
        return known[text]
    if text.isdigit():
        return int(text)
    return default


def component_logger(name: str) -> logging.Logger:
    """Return the logger for a relay component given by short or full name."""

    name = name.strip()
    if name == PACKAGE_LOGGER or name.startswith(PACKAGE_LOGGER + "."):
        return logging.getLogger(name)
    return logging.getLogger(f"{PACKAGE_LOGGER}.{name}")


def resolve_log_file(cfg: RelayRuntimeConfig, override: str | None) -> Path | None:
    """An override of "" turns file logging off even if the config sets one."""

    raw = override if override is not None else cfg.log_file
    if raw is None or not str(raw).strip():
        return None
    return Path(os.path.expanduser(str(raw)))


def _file_handler(path: Path) -> logging.Handler:
    path.parent.mkdir(parents=True, exist_ok=True)
    handler = logging.FileHandler(path, encoding="utf-8")
    try:
        os.chmod(path, 0o600)
    except OSError:
        pass
    return handler


def configure_logging(
    cfg: RelayRuntimeConfig,
    *,
    override_level: str | None = None,
    override_file: str | None = None,
) -> list[logging.Handler]:
    """Install the relay's handlers on the root logger.

    The root and ``chatrelayd`` loggers take the configured level, then each
    ``log_levels`` entry sets its component logger. Existing root handlers
    are replaced. Returns the installed handlers.
    """

    level = parse_level(override_level or cfg.log_level, logging.INFO)

    handlers: list[logging.Handler] = []
    if cfg.log_console:
        handlers.append(logging.StreamHandler())
    log_path = resolve_log_file(cfg, override_file)
    if log_path is not None:
        handlers.append(_file_handler(log_path))

    formatter = logging.Formatter(
        fmt=str(cfg.log_format).strip() or DEFAULT_FORMAT,
        datefmt=cfg.log_datefmt or None,
    )
    for h in handlers:
        h.setFormatter(formatter)

    root = logging.getLogger()
    for h in list(root.handlers):
        root.removeHandler(h)
    for h in handlers:
        root.addHandler(h)
    root.setLevel(level)

    logging.getLogger(PACKAGE_LOGGER).setLevel(level)
    for name in COMPONENTS:
        component_logger(name).setLevel(logging.NOTSET)
    for name, value in cfg.log_levels:
        component_logger(name).setLevel(parse_level(value, level))

    logging.captureWarnings(True)
    return handlers
