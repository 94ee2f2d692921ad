# Copyright 2025 Softwell S.r.l. - SPDX-License-Identifier: Apache-2.0
"""Logging helper for claptrap-listen.

Handlers, level and format are configured once by the command line entry
point through ``logging.basicConfig()``; modules only ask for a named logger.
"""

import logging

DEFAULT_LOGGER_NAME = "claptrap_listen"
LOG_FORMAT = "[%(asctime)s] [%(levelname)s] %(message)s"
LOG_DATE_FORMAT = "%Y-%m-%d %H:%M:%S"


def get_logger(name: str = DEFAULT_LOGGER_NAME) -> logging.Logger:
    """Return the logger bound to ``name`` without touching its handlers."""
    return logging.getLogger(name)


def configure_logging(level: str | None = None) -> None:
    """Install the root handler using ``level`` (falls back to INFO)."""
    resolved = getattr(logging, (level or "INFO").upper(), logging.INFO)
    logging.basicConfig(
        level=resolved,
        format=LOG_FORMAT,
        datefmt=LOG_DATE_FORMAT,
        force=True,
    )
