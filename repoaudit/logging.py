"""Logging setup shared by the repoaudit CLI and HTTP service."""

from __future__ import annotations

import logging
import os
from pathlib import Path

ROOT_LOGGER = "repoaudit"
LEVEL_ENV_KEY = "REPOAUDIT_LOG_LEVEL"

_CONSOLE_FORMAT = "[repoaudit] %(levelname)s %(message)s"
_DETAILED_FORMAT = "%(asctime)s %(levelname)s %(name)s: %(message)s"

# HTTP client libraries log every request at INFO.
_CHATTY_LIBRARIES = ("httpx", "httpcore")


def get_logger(component: str | None = None) -> logging.Logger:
    """Return ``repoaudit.<component>``, or the package root logger."""
    return logging.getLogger(f"{ROOT_LOGGER}.{component}" if component else ROOT_LOGGER)


def _resolve_level(verbose: bool) -> int:
    if verbose:
        return logging.DEBUG
    configured = os.getenv(LEVEL_ENV_KEY, "").strip().upper()
    if not configured:
        return logging.INFO
    level = logging.getLevelName(configured)
    return level if isinstance(level, int) else logging.INFO


def configure_logging(
    *,
    verbose: bool = False,
    log_file: Path | None = None,
    detailed: bool = False,
) -> logging.Logger:
    """Attach console and optional file handlers to the repoaudit logger.

    ``detailed`` adds timestamps and logger names to console lines; service mode
    uses it so concurrent audits stay distinguishable. Without ``verbose`` the
    level comes from ``REPOAUDIT_LOG_LEVEL`` (default INFO).
    """
    level = _resolve_level(verbose)
    logger = logging.getLogger(ROOT_LOGGER)
    logger.setLevel(level)
    logger.propagate = False

    # Repeated CLI invocations in one process must not stack handlers.
    for handler in list(logger.handlers):
        logger.removeHandler(handler)
        handler.close()

    console = logging.StreamHandler()
    console.setFormatter(logging.Formatter(_DETAILED_FORMAT if detailed else _CONSOLE_FORMAT))
    logger.addHandler(console)

    if log_file is not None:
        log_file.parent.mkdir(parents=True, exist_ok=True)
        sink = logging.FileHandler(log_file, encoding="utf-8")
        sink.setFormatter(logging.Formatter(_DETAILED_FORMAT))
        logger.addHandler(sink)

    for name in _CHATTY_LIBRARIES:
        logging.getLogger(name).setLevel(logging.DEBUG if verbose else logging.WARNING)

    return logger


def mask_secret(value: str | None) -> str:
    """Return a log-safe rendition of a credential."""
    if not value:
        return "none"
    if len(value) <= 8:
        return f"{value[0]}***{value[-1]}"
    return f"{value[:4]}***{value[-4:]}"


__all__ = ["LEVEL_ENV_KEY", "configure_logging", "get_logger", "mask_secret"]
