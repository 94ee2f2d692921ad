# Copyright 2025 Softwell S.r.l. - SPDX-License-Identifier: Apache-2.0
"""Command-line entry point for claptrap-listen.

Usage:
    claptrap-listen --web
    claptrap-listen --rabbitmq

Exactly one listener runs per process. ``--web`` serves ``PUT /send`` with
uvicorn; ``--rabbitmq`` consumes the queue named by ``RABBITMQ_TOPIC`` until
SIGINT/SIGTERM. Startup errors (missing broker variables, unreachable
broker) are printed to stderr and exit with status 1.

Environment variables:
    CLAPTRAP_LOG_LEVEL - Logging level (default: INFO)
    RABBITMQ_USERNAME, RABBITMQ_PASSWORD, RABBITMQ_HOST, RABBITMQ_PORT,
    RABBITMQ_VHOST, RABBITMQ_TOPIC - Broker settings for ``--rabbitmq``

See :mod:`claptrap_listen.config` for the mail and HTTP settings.
"""

from __future__ import annotations

import asyncio
import os
import signal
import sys

import click
import uvicorn
from rich.console import Console

from .api import create_app
from .config import BrokerConfig, Settings, load_settings
from .consumer import QueueListener
from .dispatcher import MailDispatcher
from .errors import BrokerConnectionError, ConfigurationError
from .logger import configure_logging, get_logger

err_console = Console(stderr=True)
logger = get_logger("claptrap_listen.cli")


def print_error(message: str) -> None:
    """Print an error message to stderr."""
    err_console.print(f"[red]Error:[/red] {message}", markup=True, highlight=False)


def run_async(coro):
    """Run an async coroutine synchronously."""
    return asyncio.run(coro)


def run_web(settings: Settings, dispatcher: MailDispatcher) -> None:
    """Serve the HTTP listener until uvicorn exits."""
    app = create_app(dispatcher)
    logger.info("Listening for PUT /send on %s:%s", settings.http_host, settings.http_port)
    uvicorn.run(app, host=settings.http_host, port=settings.http_port)


async def serve_queue(broker: BrokerConfig, dispatcher: MailDispatcher) -> None:
    """Run the queue listener, stopping cleanly on SIGINT or SIGTERM."""
    listener = QueueListener(broker, dispatcher)
    loop = asyncio.get_running_loop()
    for sig in (signal.SIGINT, signal.SIGTERM):
        loop.add_signal_handler(sig, listener.request_stop)
    try:
        await listener.run()
    finally:
        for sig in (signal.SIGINT, signal.SIGTERM):
            loop.remove_signal_handler(sig)


def run_rabbitmq(dispatcher: MailDispatcher) -> None:
    """Validate broker settings, then consume until stopped.

    Exits with status 1 before any connection attempt when a required
    ``RABBITMQ_*`` variable is blank, and after logging when the broker
    cannot be reached or drops the connection.
    """
    try:
        broker = BrokerConfig.from_env()
    except ConfigurationError as exc:
        logger.error("%s", exc)
        print_error(str(exc))
        sys.exit(1)

    try:
        run_async(serve_queue(broker, dispatcher))
    except BrokerConnectionError as exc:
        logger.error("%s", exc)
        print_error(str(exc))
        sys.exit(1)


@click.command(context_settings={"help_option_names": ["-h", "--help"]})
@click.option("--web", is_flag=True, help="Accept messages on PUT /send.")
@click.option("--rabbitmq", is_flag=True, help="Consume messages from the RABBITMQ_TOPIC queue.")
@click.pass_context
def main(ctx: click.Context, web: bool, rabbitmq: bool) -> None:
    """Forward inbound messages to the local mail-transport command."""
    if web == rabbitmq:
        raise click.UsageError("Exactly one of --web or --rabbitmq is required.", ctx=ctx)

    configure_logging(os.getenv("CLAPTRAP_LOG_LEVEL"))
    try:
        settings = load_settings()
        dispatcher = MailDispatcher(settings)
    except ConfigurationError as exc:
        logger.error("%s", exc)
        print_error(str(exc))
        sys.exit(1)

    if web:
        run_web(settings, dispatcher)
    else:
        run_rabbitmq(dispatcher)
