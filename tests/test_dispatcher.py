import asyncio
import logging
import shlex
import sys
from typing import Any, Dict, List

import pytest

from claptrap_listen.config import Settings
from claptrap_listen.dispatcher import MailDispatcher, parse_message
from claptrap_listen.errors import ConfigurationError
from claptrap_listen.metrics import DispatchMetrics

MALFORMED_PREFIX = b"Subject: claptrap-listen: A malformed message was received\n\nFrom: Unknown\n"


class DummyProcess:
    def __init__(self, returncode=0, stdout=b"", stderr=b""):
        self.returncode = returncode
        self._stdout = stdout
        self._stderr = stderr
        self.stdin_data: bytes | None = None

    async def communicate(self, data=None):
        self.stdin_data = data
        return self._stdout, self._stderr


class DummyExec:
    def __init__(self, process: DummyProcess | None = None, error: Exception | None = None):
        self.process = process or DummyProcess()
        self.error = error
        self.calls: List[Dict[str, Any]] = []

    async def __call__(self, *argv, **kwargs):
        self.calls.append({"argv": list(argv), **kwargs})
        if self.error:
            raise self.error
        return self.process


@pytest.fixture
def settings(tmp_path):
    return Settings(recipient="ops@example.com", mail_command="msmtp", workdir=str(tmp_path))


@pytest.fixture
def fake_exec(monkeypatch):
    runner = DummyExec()
    monkeypatch.setattr("claptrap_listen.dispatcher.asyncio.create_subprocess_exec", runner)
    return runner


def test_parse_message_structured():
    msg, malformed = parse_message(b'{"From":"a@b.com","Subject":"Hi","Body":"test"}')
    assert malformed is False
    assert msg.render() == "Subject: Hi\n\nFrom: a@b.com\ntest"


def test_parse_message_fallback_carries_error():
    msg, malformed = parse_message(b"not json")
    assert malformed is True
    assert msg.body.startswith("Error message: ")
    assert msg.body.endswith("\nFirst 10KB: not json")


def test_parse_message_empty_input_falls_back():
    _, malformed = parse_message(b"")
    assert malformed is True


def test_command_appends_recipient(settings):
    dispatcher = MailDispatcher(settings)
    assert dispatcher.command == ["msmtp", "ops@example.com"]


def test_command_with_extra_arguments():
    dispatcher = MailDispatcher(Settings(recipient="r@x", mail_command="msmtp -a 'work account'"))
    assert dispatcher.command == ["msmtp", "-a", "work account", "r@x"]


def test_blank_command_is_rejected():
    with pytest.raises(ConfigurationError):
        MailDispatcher(Settings(mail_command="  "))


def test_unbalanced_quotes_in_command_are_rejected():
    with pytest.raises(ConfigurationError, match="Mail command .* is invalid"):
        MailDispatcher(Settings(mail_command="msmtp -a 'x"))


@pytest.mark.asyncio
async def test_dispatch_pipes_formatted_text(settings, fake_exec, caplog):
    caplog.set_level(logging.INFO)
    dispatcher = MailDispatcher(settings)

    result = await dispatcher.dispatch(b'{"From":"a@b.com","Subject":"Hi","Body":"test"}')

    assert result.ok
    assert result.malformed is False
    assert fake_exec.calls[0]["argv"] == ["msmtp", "ops@example.com"]
    assert fake_exec.calls[0]["cwd"] == settings.workdir
    assert fake_exec.calls[0]["stdin"] == asyncio.subprocess.PIPE
    assert fake_exec.process.stdin_data == b"Subject: Hi\n\nFrom: a@b.com\ntest"
    assert "Message received: Subject: Hi" in caplog.text


@pytest.mark.asyncio
async def test_dispatch_malformed_notice(settings, fake_exec):
    result = await MailDispatcher(settings).dispatch(b"not json")

    assert result.malformed is True
    assert fake_exec.process.stdin_data.startswith(MALFORMED_PREFIX)
    assert fake_exec.process.stdin_data.endswith(b"\nFirst 10KB: not json")


@pytest.mark.asyncio
async def test_dispatch_truncates_large_malformed_payload(settings, fake_exec):
    raw = b"<" + b"#" * 30000
    await MailDispatcher(settings).dispatch(raw)

    preview = fake_exec.process.stdin_data.split(b"First 10KB: ", 1)[1]
    assert preview == raw[:10240]
    assert len(preview) == 10240


@pytest.mark.asyncio
async def test_dispatch_keeps_raw_bytes_of_invalid_utf8(settings, fake_exec):
    raw = b"\x80\x81garbage\xff"
    await MailDispatcher(settings).dispatch(raw)

    assert fake_exec.process.stdin_data.split(b"First 10KB: ", 1)[1] == raw


@pytest.mark.asyncio
async def test_dispatch_logs_command_output(settings, fake_exec, caplog):
    caplog.set_level(logging.INFO)
    fake_exec.process = DummyProcess(stdout=b"queued", stderr=b"tls warning")

    result = await MailDispatcher(settings).dispatch(b"{}")

    assert result.ok
    assert result.stdout == "queued"
    assert result.stderr == "tls warning"
    assert "msmtp stdout: queued" in caplog.text
    assert "msmtp stderr: tls warning" in caplog.text


@pytest.mark.asyncio
async def test_dispatch_reports_nonzero_exit(settings, fake_exec, caplog):
    fake_exec.process = DummyProcess(returncode=78, stderr=b"account not found")
    metrics = DispatchMetrics()

    result = await MailDispatcher(settings, metrics=metrics).dispatch(b"{}", source="rabbitmq")

    assert result.ok is False
    assert result.returncode == 78
    assert "exited with status 78" in result.error
    assert "Error in transmission" in caplog.text
    assert b'claptrap_failed_total{source="rabbitmq"} 1.0' in metrics.generate_latest()


@pytest.mark.asyncio
async def test_dispatch_survives_missing_command(settings, monkeypatch, caplog):
    runner = DummyExec(error=FileNotFoundError(2, "No such file or directory"))
    monkeypatch.setattr("claptrap_listen.dispatcher.asyncio.create_subprocess_exec", runner)

    result = await MailDispatcher(settings).dispatch(b'{"Subject":"x"}')

    assert result.ok is False
    assert result.returncode is None
    assert "could not run 'msmtp'" in result.error
    assert "Error in transmission" in caplog.text


@pytest.mark.asyncio
async def test_dispatch_updates_metrics(settings, fake_exec):
    metrics = DispatchMetrics()
    dispatcher = MailDispatcher(settings, metrics=metrics)

    await dispatcher.dispatch(b'{"Subject":"ok"}', source="http")
    await dispatcher.dispatch(b"broken", source="http")

    output = metrics.generate_latest()
    assert b'claptrap_received_total{source="http"} 2.0' in output
    assert b'claptrap_malformed_total{source="http"} 1.0' in output
    assert b'claptrap_delivered_total{source="http"} 2.0' in output


@pytest.mark.asyncio
async def test_dispatch_runs_real_command(tmp_path):
    script = "import sys; sys.stdout.write(sys.argv[1] + '|' + sys.stdin.read())"
    command = f"{shlex.quote(sys.executable)} -c {shlex.quote(script)}"
    dispatcher = MailDispatcher(Settings(recipient="ops@example.com", mail_command=command, workdir=str(tmp_path)))

    result = await dispatcher.dispatch(b'{"From":"a@b.com","Subject":"Hi","Body":"test"}')

    assert result.ok
    assert result.stdout == "ops@example.com|Subject: Hi\n\nFrom: a@b.com\ntest"
