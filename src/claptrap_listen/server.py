# Copyright 2025 Softwell S.r.l. - SPDX-License-Identifier: Apache-2.0
"""ASGI application entry point for uvicorn.

Builds the HTTP listener from :func:`~claptrap_listen.config.load_settings`
at import time.

Usage:
    uvicorn claptrap_listen.server:app --host 0.0.0.0 --port 8080
"""

from __future__ import annotations

import os

from .api import create_app
from .config import load_settings
from .dispatcher import MailDispatcher
from .logger import configure_logging

configure_logging(os.getenv("CLAPTRAP_LOG_LEVEL"))

_settings = load_settings()
_dispatcher = MailDispatcher(_settings)

app = create_app(_dispatcher)
