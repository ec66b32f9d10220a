"""Centralized logging configuration for Achievement Cache.

Every module logs through a child of the ``achievecache`` logger
(``achievecache.database``, ``achievecache.schema``, ...). Host applications
call :func:`setup_logging` once; library use without it stays silent apart
from Python's last-resort handler.

The level can come from the caller, from ``ACHIEVEMENT_CACHE_LOG_LEVEL``
(also read from ``.env``) or defaults to INFO. Single components can be made
louder or quieter, e.g. ``setup_logging(components={"schema": "DEBUG"})``
while chasing a migration problem.
"""

from __future__ import annotations

import logging
import os
import sys
from collections.abc import Mapping
from pathlib import Path

from dotenv import load_dotenv

__all__ = ["LOG_LEVEL_ENV", "logger", "resolve_level", "setup_logging"]

LOG_LEVEL_ENV = "ACHIEVEMENT_CACHE_LOG_LEVEL"

logger = logging.getLogger("achievecache")


def resolve_level(level: int | str | None) -> int:
    """Turn a level number, a level name or None into a level number.

    None falls back to ``ACHIEVEMENT_CACHE_LOG_LEVEL``, then INFO. Unknown
    names also give INFO.
    """
    if level is None:
        load_dotenv()
        level = os.getenv(LOG_LEVEL_ENV) or logging.INFO
    if isinstance(level, int):
        return level
    text = str(level).strip()
    if text.isdigit():
        return int(text)
    resolved = getattr(logging, text.upper(), None)
    return resolved if isinstance(resolved, int) else logging.INFO


def setup_logging(
    level: int | str | None = None,
    log_file: Path | None = None,
    components: Mapping[str, int | str] | None = None,
) -> None:
    """Configure the package root logger.

    Calling it again only changes levels; handlers are added once.

    Args:
        level: Console level as number or name; see :func:`resolve_level`.
        log_file: Optional path to a log file. If provided, logs are also
            written there at DEBUG level.
        components: Per-component levels keyed by the part after
            ``achievecache.`` (``"database"``, ``"legacy_import"``, ...).
    """
    resolved = resolve_level(level)
    component_levels = {name: resolve_level(value) for name, value in (components or {}).items()}
    logger.setLevel(resolved)
    # Component records reach the console handler through propagation
    console_level = min([resolved, *component_levels.values()])

    for name, component_level in component_levels.items():
        logging.getLogger(f"{logger.name}.{name}").setLevel(component_level)

    if logger.handlers:
        for handler in logger.handlers:
            if not isinstance(handler, logging.FileHandler):
                handler.setLevel(console_level)
        return

    formatter = logging.Formatter(
        fmt="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
        datefmt="%H:%M:%S",
    )

    console_handler = logging.StreamHandler(sys.stdout)
    console_handler.setLevel(console_level)
    console_handler.setFormatter(formatter)
    logger.addHandler(console_handler)

    if log_file is not None:
        log_file.parent.mkdir(parents=True, exist_ok=True)
        file_handler = logging.FileHandler(log_file, encoding="utf-8")
        file_handler.setLevel(logging.DEBUG)
        file_handler.setFormatter(formatter)
        logger.addHandler(file_handler)
