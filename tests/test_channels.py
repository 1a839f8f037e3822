import asyncio
import queue
import socket

import paramiko
import pytest
import serial

from portsurvey.exceptions import (
    AuthenticationError,
    CommandExecutionError,
    SessionConnectionError,
)
from portsurvey.session import channels
from portsurvey.session.channels import SerialChannel, SSHChannel, TelnetChannel
from portsurvey.session.session import SerialSession, SSHSession, TelnetSession

CLOCK = "*10:15:02.123 UTC Mon Oct 19 2026"


# =============================================================================
# Telnet against a local socket
# =============================================================================

async def _expect(reader, token):
    """Read until ``token`` shows up; negotiation bytes are ignored."""
    seen = b""
    while token not in seen:
        chunk = await reader.read(1024)
        if not chunk:
            raise ConnectionError(f"client went away before sending {token!r}")
        seen += chunk


def _telnet_device(drop_on=None):
    async def handle(reader, writer):
        writer.write(b"\r\nUser Access Verification\r\n\r\nUsername: ")
        await _expect(reader, b"admin")
        writer.write(b"\r\nPassword: ")
        await _expect(reader, b"secret")
        writer.write(b"\r\nSwitch#")

        await _expect(reader, b"terminal length 0")
        writer.write(b"terminal length 0\r\nSwitch#")

        if drop_on is not None:
            await _expect(reader, drop_on)
            writer.close()
            return

        await _expect(reader, b"show clock")
        writer.write(f"show clock\r\n{CLOCK}\r\nSwitch#".encode())

        # Hold the line until the client hangs up
        await reader.read()
        writer.close()

    return handle


def _run_against(handler, scenario):
    async def main():
        server = await asyncio.start_server(handler, "127.0.0.1", 0)
        port = server.sockets[0].getsockname()[1]
        try:
            return await scenario(port)
        finally:
            server.close()
            await server.wait_closed()

    return asyncio.run(main())


def _telnet_session(port):
    channel = TelnetChannel("127.0.0.1", port=port, connect_minwait=0.05, connect_timeout=5.0)
    return TelnetSession(
        channel,
        username="admin",
        password="secret",
        timeout=10.0,
        quiet_period=0.05,
    )


def test_telnet_login_and_command():
    async def scenario(port):
        session = _telnet_session(port)
        await session.connect()
        try:
            return session, await session.execute_command("show clock")
        finally:
            await session.disconnect()

    session, result = _run_against(_telnet_device(), scenario)

    assert result.output == CLOCK
    assert result.prompt == "Switch#"
    assert session.paging_disabled
    assert session.channel.is_closed


def test_telnet_remote_hangup_fails_command():
    async def scenario(port):
        session = _telnet_session(port)
        await session.connect()
        try:
            with pytest.raises(CommandExecutionError):
                await session.execute_command("show tech-support")
        finally:
            await session.disconnect()

    _run_against(_telnet_device(drop_on=b"show tech"), scenario)


def test_telnet_refused_port():
    # Bind then release a port so nothing listens on it
    sock = socket.socket()
    sock.bind(("127.0.0.1", 0))
    port = sock.getsockname()[1]
    sock.close()

    channel = TelnetChannel("127.0.0.1", port=port, connect_minwait=0.05, connect_timeout=2.0)
    with pytest.raises(SessionConnectionError):
        asyncio.run(channel.open())


# =============================================================================
# SSH over a stand-in paramiko client
# =============================================================================

class FakeShell:
    """paramiko.Channel stand-in: answers each command with echo + prompt."""

    def __init__(self, outputs, drop_on=None):
        self.outputs = outputs
        self.drop_on = drop_on
        self.inbox = queue.Queue()
        self.sent = []
        self.closed = False

    def settimeout(self, timeout):
        self.timeout = timeout

    def recv(self, size):
        try:
            return self.inbox.get(timeout=0.05)
        except queue.Empty:
            raise socket.timeout()

    def sendall(self, data):
        text = data.decode()
        self.sent.append(text)
        command = text.rstrip("\r\n")
        if self.drop_on and command.startswith(self.drop_on):
            self.inbox.put(b"")
            return
        output = self.outputs.get(command)
        body = f"{output}\r\n" if output else ""
        self.inbox.put(f"{command}\r\n{body}Switch#".encode())

    def close(self):
        self.closed = True
        self.inbox.put(b"")


class _ClientList(list):
    """Clients built during a test, plus the patched class as ``client_class``."""


@pytest.fixture
def fake_ssh(monkeypatch):
    """Patch paramiko.SSHClient; returns the list of clients created."""
    created = _ClientList()

    class FakeSSHClient:
        connect_error = None
        outputs = {"show clock": CLOCK}
        drop_on = None

        def __init__(self):
            self.connect_kwargs = None
            self.closed = False
            self.shell = FakeShell(self.outputs, self.drop_on)
            created.append(self)

        def set_missing_host_key_policy(self, policy):
            self.policy = policy

        def connect(self, **kwargs):
            self.connect_kwargs = kwargs
            if self.connect_error is not None:
                raise self.connect_error

        def invoke_shell(self, **kwargs):
            self.shell_kwargs = kwargs
            self.shell.inbox.put(b"\r\nSwitch#")
            return self.shell

        def close(self):
            self.closed = True

    monkeypatch.setattr(channels.paramiko, "SSHClient", FakeSSHClient)
    created.client_class = FakeSSHClient
    return created


def _ssh_session(**kwargs):
    channel = SSHChannel("10.0.0.1", username="admin", password="secret", **kwargs)
    return SSHSession(channel, timeout=5.0, quiet_period=0.05)


def test_ssh_shell_round_trip(fake_ssh):
    session = _ssh_session(legacy_mode=True)

    async def run():
        await session.connect()
        try:
            return await session.execute_command("show clock")
        finally:
            await session.disconnect()

    result = asyncio.run(run())

    client = fake_ssh[0]
    assert result.output == CLOCK
    assert session.privileged
    assert client.connect_kwargs["username"] == "admin"
    assert client.connect_kwargs["look_for_keys"] is False
    assert client.connect_kwargs["disabled_algorithms"] == {
        "pubkeys": ["rsa-sha2-512", "rsa-sha2-256"],
    }
    assert client.shell.sent == ["terminal length 0\n", "show clock\n"]
    assert client.shell.closed
    assert client.closed


def test_ssh_modern_algorithms_by_default(fake_ssh):
    channel = SSHChannel("10.0.0.1", username="admin", password="secret")

    async def run():
        await channel.open()
        await channel.close()

    asyncio.run(run())
    assert "disabled_algorithms" not in fake_ssh[0].connect_kwargs


def test_ssh_transport_error_is_wrapped_and_client_closed(fake_ssh):
    fake_ssh.client_class.connect_error = EOFError()
    channel = SSHChannel("10.0.0.1", username="admin", password="secret")

    with pytest.raises(SessionConnectionError, match="EOFError"):
        asyncio.run(channel.open())

    assert fake_ssh[0].closed


def test_ssh_rejected_credentials(fake_ssh):
    fake_ssh.client_class.connect_error = paramiko.AuthenticationException("Authentication failed.")
    session = _ssh_session()

    with pytest.raises(AuthenticationError):
        asyncio.run(session.connect())

    assert fake_ssh[0].closed
    assert not session.connected


def test_ssh_remote_hangup_fails_command(fake_ssh):
    fake_ssh.client_class.drop_on = "show tech"
    session = _ssh_session()

    async def run():
        await session.connect()
        try:
            with pytest.raises(CommandExecutionError):
                await session.execute_command("show tech-support")
        finally:
            await session.disconnect()

    asyncio.run(run())
    assert session.channel.is_closed


# =============================================================================
# Serial over a patched pyserial-asyncio
# =============================================================================

class FakeSerialWriter:
    """Wakes on CR LF, answers commands, hangs up on ``drop_on``."""

    def __init__(self, reader, drop_on=None):
        self.reader = reader
        self.drop_on = drop_on
        self.written = []
        self.closed = False

    def write(self, data):
        self.written.append(data)
        if data == b"\r\n":
            self.reader.feed_data(b"\r\nSwitch>")
            return
        command = data.decode().rstrip("\r\n")
        if self.drop_on and command.startswith(self.drop_on):
            self.reader.feed_eof()
            return
        self.reader.feed_data(f"{command}\r\nSwitch>".encode())

    async def drain(self):
        pass

    def close(self):
        self.closed = True


@pytest.fixture
def fake_serial(monkeypatch):
    opened = []

    async def open_serial_connection(**kwargs):
        reader = asyncio.StreamReader()
        writer = FakeSerialWriter(reader)
        opened.append((kwargs, writer))
        return reader, writer

    monkeypatch.setattr(channels.serial_asyncio, "open_serial_connection", open_serial_connection)
    return opened


def _serial_session():
    channel = SerialChannel("/dev/ttyUSB0", baud_rate=115200)
    return SerialSession(channel, wake_interval=0.2, timeout=5.0, quiet_period=0.05)


def test_serial_console_wakes_and_runs_commands(fake_serial):
    session = _serial_session()

    async def run():
        await session.connect()
        try:
            await session.execute_command("show clock")
        finally:
            await session.disconnect()

    asyncio.run(run())

    kwargs, writer = fake_serial[0]
    assert kwargs == {"url": "/dev/ttyUSB0", "baudrate": 115200, "rtscts": True}
    assert writer.written[0] == b"\r\n"
    assert b"show clock\n" in writer.written
    assert session.last_prompt == "Switch>"
    assert writer.closed


def test_serial_port_unavailable(monkeypatch):
    async def open_serial_connection(**kwargs):
        raise serial.SerialException("could not open port /dev/ttyUSB9")

    monkeypatch.setattr(channels.serial_asyncio, "open_serial_connection", open_serial_connection)
    session = SerialSession(SerialChannel("/dev/ttyUSB9"), timeout=1.0)

    with pytest.raises(SessionConnectionError, match="ttyUSB9"):
        asyncio.run(session.connect())


def test_serial_cable_pulled_mid_command(fake_serial):
    session = _serial_session()

    async def run():
        await session.connect()
        fake_serial[0][1].drop_on = "show tech"
        try:
            with pytest.raises(CommandExecutionError):
                await session.execute_command("show tech-support")
        finally:
            await session.disconnect()

    asyncio.run(run())
