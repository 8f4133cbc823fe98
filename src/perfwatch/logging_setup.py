"""Idempotent stderr logging setup."""

from __future__ import annotations

import logging
import os
import sys

from perfwatch.errors import ConfigError

_CONFIGURED = False

LEVEL_ENV = "PERFWATCH_LOG_LEVEL"

# Third-party loggers that log every webhook request at INFO
_QUIET = ("httpx", "httpcore")


def resolve_level(level: int | str | None, default: int = logging.INFO) -> int:
    """Explicit level, else PERFWATCH_LOG_LEVEL, else ``default``.

    Names are case-insensitive (``"debug"``, ``"WARNING"``).
    """
    if level is None:
        level = os.environ.get(LEVEL_ENV) or default
    if isinstance(level, int):
        return level
    value = logging.getLevelName(level.strip().upper())
    if not isinstance(value, int):
        raise ConfigError(f"Unknown log level {level!r}")
    return value


def setup_logging(level: int | str | None = None, default: int = logging.INFO) -> None:
    """Configure perfwatch logging to stderr. Safe to call multiple times."""
    global _CONFIGURED  # noqa: PLW0603
    if _CONFIGURED:
        return

    resolved = resolve_level(level, default)
    handler = logging.StreamHandler(sys.stderr)
    handler.setFormatter(
        logging.Formatter("%(asctime)s [%(levelname)s] %(name)s: %(message)s")
    )

    logger = logging.getLogger("perfwatch")
    logger.setLevel(resolved)
    logger.addHandler(handler)
    logger.propagate = False

    if resolved > logging.DEBUG:
        for name in _QUIET:
            logging.getLogger(name).setLevel(logging.WARNING)

    _CONFIGURED = True
