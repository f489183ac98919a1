"""Logging helpers shared by every authorization server module.

``configure_logging()`` installs the root handler once; ``get_logger()``
hands out loggers under the ``mcp_authz`` namespace so ``set_package_level``
can tune the whole package from ``LOG_LEVEL`` without touching the root.
Credentials never reach a log line in full: pass them through ``redact()``.
"""

from __future__ import annotations

import logging
from typing import Final

from beartype import beartype

__all__: Final = [
    "PACKAGE_LOGGER",
    "configure_logging",
    "get_logger",
    "redact",
    "set_package_level",
]

PACKAGE_LOGGER: Final = "mcp_authz"
_LOG_FORMAT: Final = "%(asctime)s - %(name)s - %(levelname)s - %(message)s"
_configured: bool = False


@beartype
def configure_logging(*, level: int | str = logging.INFO, fmt: str = _LOG_FORMAT) -> None:
    """Install the root handler; later calls are no-ops."""
    global _configured
    if _configured:
        return
    logging.basicConfig(level=level, format=fmt)
    _configured = True


@beartype
def get_logger(name: str | None = None) -> logging.Logger:
    """Return a logger, configuring the root handler on first use."""
    configure_logging()
    return logging.getLogger(name or PACKAGE_LOGGER)


@beartype
def set_package_level(level: int | str) -> None:
    """Apply a level to every ``mcp_authz.*`` logger."""
    logging.getLogger(PACKAGE_LOGGER).setLevel(level)


@beartype
def redact(value: str | None, *, keep: int = 8) -> str:
    """Return a loggable prefix of a secret value."""
    if not value:
        return "<none>"
    return f"{value[:keep]}..."
