# Copyright 2025 Softwell S.r.l. - SPDX-License-Identifier: Apache-2.0
"""Normalize inbound payloads and hand them to the mail-transport command.

Both listeners funnel raw bytes into :meth:`MailDispatcher.dispatch`, which:

1. parses the bytes as an :class:`~claptrap_listen.models.InboundMessage`,
   or builds the malformed-message notice when parsing fails;
2. renders the subject/from/body text block;
3. runs the mail command (``msmtp <recipient>`` by default) in the
   configured working directory with the text on stdin;
4. logs the message and whatever the command printed.

Delivery is attempted once. Failures are logged and reported through the
returned :class:`DispatchResult`; nothing is raised to the listener.

Example:
    Dispatching a payload by hand::

        dispatcher = MailDispatcher(Settings(recipient="ops@example.com"))
        result = await dispatcher.dispatch(b'{"Subject": "Hi", "Body": "test"}')
        assert result.ok
"""

from __future__ import annotations

import asyncio
import logging
import shlex
from dataclasses import dataclass

from pydantic import ValidationError

from .config import Settings
from .errors import ConfigurationError
from .logger import get_logger
from .metrics import DispatchMetrics
from .models import InboundMessage, describe_validation_error


@dataclass
class DispatchResult:
    """Outcome of one dispatch, mainly for tests and metrics."""

    message: InboundMessage
    malformed: bool = False
    returncode: int | None = None
    stdout: str = ""
    stderr: str = ""
    error: str | None = None

    @property
    def ok(self) -> bool:
        return self.error is None and self.returncode == 0


def parse_message(raw: bytes) -> tuple[InboundMessage, bool]:
    """Parse ``raw`` into a message, falling back to the malformed notice.

    Returns the message and whether the fallback was used. Never raises.
    """
    try:
        return InboundMessage.model_validate_json(raw), False
    except ValidationError as exc:
        return InboundMessage.malformed(describe_validation_error(exc), raw), True


class MailDispatcher:
    """Turns raw payloads into mail command invocations.

    Stateless apart from read-only settings and metrics counters, so
    concurrent ``dispatch`` calls from the HTTP listener are safe.
    """

    def __init__(
        self,
        settings: Settings,
        logger: logging.Logger | None = None,
        metrics: DispatchMetrics | None = None,
    ):
        self.settings = settings
        self.logger = logger or get_logger("claptrap_listen.dispatcher")
        self.metrics = metrics or DispatchMetrics()
        try:
            command = shlex.split(settings.mail_command)
        except ValueError as exc:
            raise ConfigurationError(f"Mail command {settings.mail_command!r} is invalid: {exc}") from exc
        if not command:
            raise ConfigurationError("Mail command can't be blank")
        self._argv = [*command, settings.recipient]

    @property
    def command(self) -> list[str]:
        """Full argv of the mail command, recipient last."""
        return list(self._argv)

    async def dispatch(self, raw: bytes, source: str = "http") -> DispatchResult:
        """Parse, format and deliver ``raw``; always returns, never raises."""
        self.metrics.inc_received(source)
        message, malformed = parse_message(raw)
        if malformed:
            self.metrics.inc_malformed(source)
            self.logger.warning("Malformed %s payload (%d bytes), sending notice instead", source, len(raw))

        result = DispatchResult(message=message, malformed=malformed)
        self.logger.info("Message received: %s", message.render())
        await self._run_command(message.encode(), result)

        if result.ok:
            self.metrics.inc_delivered(source)
        else:
            self.metrics.inc_failed(source)
        return result

    async def _run_command(self, payload: bytes, result: DispatchResult) -> None:
        try:
            process = await asyncio.create_subprocess_exec(
                *self._argv,
                cwd=self.settings.workdir,
                stdin=asyncio.subprocess.PIPE,
                stdout=asyncio.subprocess.PIPE,
                stderr=asyncio.subprocess.PIPE,
            )
            stdout, stderr = await process.communicate(payload)
        except OSError as exc:
            result.error = f"could not run {self._argv[0]!r}: {exc}"
            self.logger.error("Error in transmission: %s", result.error)
            return

        result.returncode = process.returncode
        result.stdout = stdout.decode("utf-8", errors="replace")
        result.stderr = stderr.decode("utf-8", errors="replace")
        if process.returncode != 0:
            result.error = f"{self._argv[0]} exited with status {process.returncode}"
            self.logger.error("Error in transmission: %s", result.error)
        if result.stdout:
            self.logger.info("%s stdout: %s", self._argv[0], result.stdout)
        if result.stderr:
            self.logger.warning("%s stderr: %s", self._argv[0], result.stderr)
