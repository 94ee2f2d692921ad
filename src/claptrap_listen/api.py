# Copyright 2025 Softwell S.r.l. - SPDX-License-Identifier: Apache-2.0
"""FastAPI application factory for the HTTP listener.

Routes:
    - ``PUT /send``: raw body forwarded to the dispatcher, empty ``200`` reply.
    - ``GET /health``: liveness probe for containers.
    - ``GET /metrics``: Prometheus metrics collected by the dispatcher.

There is no authentication. A request whose body cannot be read (the client
went away mid-upload) is logged and answered with an empty ``400``.

Example:
    Serving the listener::

        dispatcher = MailDispatcher(load_settings())
        app = create_app(dispatcher)
        uvicorn.run(app, host="0.0.0.0", port=8080)
"""

from __future__ import annotations

import logging
from collections.abc import Callable
from typing import AsyncContextManager

from fastapi import FastAPI, Request, status
from fastapi.responses import Response
from starlette.requests import ClientDisconnect

from .dispatcher import MailDispatcher

logger = logging.getLogger(__name__)

METRICS_MEDIA_TYPE = "text/plain; version=0.0.4"


def create_app(
    dispatcher: MailDispatcher,
    lifespan: Callable[[FastAPI], AsyncContextManager] | None = None,
) -> FastAPI:
    """Create the HTTP listener application.

    Parameters
    ----------
    dispatcher:
        The :class:`~claptrap_listen.dispatcher.MailDispatcher` every
        ``PUT /send`` body is handed to.
    lifespan:
        Optional lifespan context manager for startup/shutdown events.

    Returns
    -------
    FastAPI
        An application ready to be served by uvicorn.
    """
    api = FastAPI(title="claptrap-listen", lifespan=lifespan)
    api.state.dispatcher = dispatcher

    @api.get("/health")
    async def health():
        """Health check endpoint for container monitoring."""
        return {"status": "ok"}

    @api.get("/metrics")
    async def metrics():
        """Expose Prometheus metrics collected by the dispatcher."""
        return Response(content=dispatcher.metrics.generate_latest(), media_type=METRICS_MEDIA_TYPE)

    @api.put("/send")
    async def send(request: Request) -> Response:
        """Forward the request body to the mail command."""
        try:
            body = await request.body()
        except ClientDisconnect:
            logger.error("Failed to read body of request: client disconnected")
            return Response(status_code=status.HTTP_400_BAD_REQUEST)
        await dispatcher.dispatch(body, "http")
        return Response(status_code=status.HTTP_200_OK)

    return api
