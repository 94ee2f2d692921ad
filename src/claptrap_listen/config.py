# Copyright 2025 Softwell S.r.l. - SPDX-License-Identifier: Apache-2.0
"""Process-wide configuration.

Settings are built once at startup and passed to the dispatcher and
listeners; nothing reads the environment after that.

Mail and HTTP settings come from an INI file (default: ``config.ini``) with
``CLAPTRAP_*`` environment variables as fallbacks::

    [mail]
    recipient = ops@example.com
    command = msmtp
    workdir = /srv/claptrap

    [server]
    host = 0.0.0.0
    port = 8080

Environment variables:
    CLAPTRAP_CONFIG - Path to the INI file (default: config.ini)
    CLAPTRAP_RECIPIENT - Address passed to the mail command (default: root@localhost)
    CLAPTRAP_MAIL_COMMAND - Mail-transport command line (default: msmtp)
    CLAPTRAP_WORKDIR - Directory the mail command runs in (default: .)
    CLAPTRAP_HOST - HTTP bind address (default: 0.0.0.0)
    CLAPTRAP_PORT - HTTP port (default: 8080)

Broker settings are read only from the ``RABBITMQ_*`` variables, see
:meth:`BrokerConfig.from_env`.
"""

from __future__ import annotations

import configparser
import os
from collections.abc import Mapping
from dataclasses import dataclass
from pathlib import Path

from .errors import ConfigurationError

DEFAULT_RECIPIENT = "root@localhost"
DEFAULT_MAIL_COMMAND = "msmtp"
DEFAULT_WORKDIR = "."
DEFAULT_HTTP_HOST = "0.0.0.0"
DEFAULT_HTTP_PORT = 8080


@dataclass(frozen=True)
class Settings:
    """Mail delivery and HTTP settings.

    Attributes:
        recipient: Fixed address appended as the last argument of the mail command.
        mail_command: Command line of the mail-transport program, split with shlex.
        workdir: Working directory the mail command runs in.
        http_host: Bind address for the HTTP listener.
        http_port: Port for the HTTP listener.
    """

    recipient: str = DEFAULT_RECIPIENT
    mail_command: str = DEFAULT_MAIL_COMMAND
    workdir: str = DEFAULT_WORKDIR
    http_host: str = DEFAULT_HTTP_HOST
    http_port: int = DEFAULT_HTTP_PORT


def load_settings(
    config_path: str | os.PathLike[str] | None = None,
    environ: Mapping[str, str] | None = None,
) -> Settings:
    """Load :class:`Settings` from the INI file with environment fallbacks.

    INI values win over environment variables, which win over defaults.
    A missing INI file is not an error.
    """
    env = os.environ if environ is None else environ
    path = Path(config_path or env.get("CLAPTRAP_CONFIG", "config.ini"))
    parser = configparser.ConfigParser()
    parser.read(path)

    def get(section: str, option: str, fallback: str | None = None) -> str | None:
        if parser.has_option(section, option):
            return parser.get(section, option)
        return fallback

    port_value = get("server", "port", env.get("CLAPTRAP_PORT"))
    try:
        http_port = int(port_value) if port_value not in (None, "") else DEFAULT_HTTP_PORT
    except ValueError as exc:
        raise ConfigurationError(f"HTTP port must be an integer, got {port_value!r}") from exc

    recipient = (get("mail", "recipient", env.get("CLAPTRAP_RECIPIENT")) or DEFAULT_RECIPIENT).strip()
    mail_command = (get("mail", "command", env.get("CLAPTRAP_MAIL_COMMAND")) or DEFAULT_MAIL_COMMAND).strip()
    workdir = get("mail", "workdir", env.get("CLAPTRAP_WORKDIR")) or DEFAULT_WORKDIR

    return Settings(
        recipient=recipient,
        mail_command=mail_command,
        workdir=os.path.expanduser(workdir),
        http_host=get("server", "host", env.get("CLAPTRAP_HOST")) or DEFAULT_HTTP_HOST,
        http_port=http_port,
    )


@dataclass(frozen=True)
class BrokerConfig:
    """Connection parameters for the RabbitMQ listener."""

    username: str
    password: str
    host: str
    port: int
    virtual_host: str
    topic: str

    @classmethod
    def from_env(cls, environ: Mapping[str, str] | None = None) -> BrokerConfig:
        """Build the broker configuration from ``RABBITMQ_*`` variables.

        Every variable except ``RABBITMQ_PASSWORD`` is required. The first
        blank one raises :class:`ConfigurationError`, so the caller can fail
        before any connection is attempted.
        """
        env = os.environ if environ is None else environ
        required = (
            ("RABBITMQ_USERNAME", "Username"),
            ("RABBITMQ_HOST", "Host"),
            ("RABBITMQ_PORT", "Port"),
            ("RABBITMQ_VHOST", "Virtual host"),
            ("RABBITMQ_TOPIC", "Topic"),
        )
        values: dict[str, str] = {}
        for variable, label in required:
            value = env.get(variable, "")
            if not value:
                raise ConfigurationError(f"{label} can't be blank; no environment variable {variable} found")
            values[variable] = value

        try:
            port = int(values["RABBITMQ_PORT"])
        except ValueError as exc:
            raise ConfigurationError(
                f"Port must be an integer, got {values['RABBITMQ_PORT']!r}"
            ) from exc

        return cls(
            username=values["RABBITMQ_USERNAME"],
            password=env.get("RABBITMQ_PASSWORD", ""),
            host=values["RABBITMQ_HOST"],
            port=port,
            virtual_host=values["RABBITMQ_VHOST"],
            topic=values["RABBITMQ_TOPIC"],
        )

    def redacted(self) -> str:
        """Connection target for log lines, without credentials."""
        return f"{self.host}:{self.port}/{self.virtual_host} queue={self.topic}"
