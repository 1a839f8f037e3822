"""
Port Survey - Channel primitives.

A channel is a duplex character stream to one device: an SSH shell
(paramiko), a Telnet socket (telnetlib3) or a serial console
(pyserial-asyncio). Channels know nothing about prompts; they deliver
decoded chunks to whoever is subscribed and write text back.

Reads go through scoped subscriptions:

    with channel.subscribe() as sub:
        await channel.write("show version\\n")
        chunk = await sub.read(timeout=0.4)

The subscription is registered on enter and always removed on exit, so an
operation that fails or times out never leaves a dangling reader behind.
Chunks that arrive while nobody is subscribed are dropped.
"""

import asyncio
import logging
import socket
import threading
from typing import List, Optional, Union

import paramiko
import serial
import serial_asyncio
import telnetlib3

from ..exceptions import (
    AuthenticationError,
    CommandExecutionError,
    SessionConnectionError,
)

logger = logging.getLogger(__name__)


class _ChannelClosed:
    """Queue sentinel pushed when the remote end goes away."""

    def __init__(self, error: Optional[BaseException] = None):
        self.error = error


class ReadSubscription:
    """Scoped read cursor on a channel."""

    def __init__(self, channel: 'Channel'):
        self._channel = channel
        self._queue: asyncio.Queue = asyncio.Queue()

    def __enter__(self) -> 'ReadSubscription':
        self._channel._attach(self)
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        self._channel._detach(self)

    def push(self, item) -> None:
        self._queue.put_nowait(item)

    async def read(self, timeout: Optional[float] = None) -> str:
        """
        Wait for the next chunk.

        Raises:
            asyncio.TimeoutError: No data within ``timeout`` seconds.
            CommandExecutionError: The channel was closed by the far end.
        """
        if timeout is None:
            item = await self._queue.get()
        else:
            item = await asyncio.wait_for(self._queue.get(), timeout)

        if isinstance(item, _ChannelClosed):
            # Keep the sentinel for any further read on this cursor
            self._queue.put_nowait(item)
            detail = f": {item.error}" if item.error else ""
            raise CommandExecutionError(f"Channel to {self._channel.name} closed{detail}")
        return item


class Channel:
    """
    Base duplex channel.

    Subclasses implement ``open``, ``write`` and ``close`` and call
    ``_feed`` / ``_mark_closed`` from the event loop thread.
    """

    encoding = "utf-8"

    def __init__(self, name: str):
        self.name = name
        self._subscriptions: List[ReadSubscription] = []
        self._closed: Optional[_ChannelClosed] = None

    @property
    def is_closed(self) -> bool:
        return self._closed is not None

    def subscribe(self) -> ReadSubscription:
        return ReadSubscription(self)

    async def open(self) -> None:
        raise NotImplementedError

    async def write(self, data: str) -> None:
        raise NotImplementedError

    async def close(self) -> None:
        raise NotImplementedError

    # =========================================================================
    # Fan-out
    # =========================================================================

    def _attach(self, subscription: ReadSubscription) -> None:
        self._subscriptions.append(subscription)
        if self._closed is not None:
            subscription.push(self._closed)

    def _detach(self, subscription: ReadSubscription) -> None:
        if subscription in self._subscriptions:
            self._subscriptions.remove(subscription)

    def _feed(self, data: Union[bytes, str]) -> None:
        if isinstance(data, bytes):
            data = data.decode(self.encoding, errors="replace")
        if not data:
            return
        logger.debug("[%s] <~ %r", self.name, data)
        for subscription in list(self._subscriptions):
            subscription.push(data)

    def _mark_closed(self, error: Optional[BaseException] = None) -> None:
        if self._closed is not None:
            return
        self._closed = _ChannelClosed(error)
        for subscription in list(self._subscriptions):
            subscription.push(self._closed)


# =============================================================================
# SSH (paramiko)
# =============================================================================

class SSHChannel(Channel):
    """
    Interactive shell over paramiko.

    paramiko is blocking: connect runs in the default executor and a daemon
    thread polls ``recv()``, handing chunks to the loop thread-safely.
    """

    RECV_SIZE = 4096
    POLL_INTERVAL = 0.5

    def __init__(
        self,
        host: str,
        port: int = 22,
        username: Optional[str] = None,
        password: Optional[str] = None,
        timeout: float = 20.0,
        legacy_mode: bool = False,
        key_file: Optional[str] = None,
    ):
        super().__init__(f"{host}:{port}")
        self.host = host
        self.port = port
        self.username = username
        self.password = password
        self.timeout = timeout
        self.legacy_mode = legacy_mode
        self.key_file = key_file

        self._client: Optional[paramiko.SSHClient] = None
        self._shell: Optional[paramiko.Channel] = None
        self._reader: Optional[threading.Thread] = None
        self._stop = threading.Event()
        self._loop: Optional[asyncio.AbstractEventLoop] = None

    async def open(self) -> None:
        self._loop = asyncio.get_running_loop()
        await self._loop.run_in_executor(None, self._connect)
        self._reader = threading.Thread(
            target=self._read_loop,
            name=f"ssh-reader-{self.name}",
            daemon=True,
        )
        self._reader.start()

    def _connect(self) -> None:
        client = paramiko.SSHClient()
        client.set_missing_host_key_policy(paramiko.AutoAddPolicy())

        connect_kwargs = {
            "hostname": self.host,
            "port": self.port,
            "username": self.username,
            "password": self.password,
            "timeout": self.timeout,
            "banner_timeout": self.timeout,
            "auth_timeout": self.timeout,
            "allow_agent": False,
            "look_for_keys": False,
        }
        if self.key_file:
            connect_kwargs["key_filename"] = self.key_file
        if self.legacy_mode:
            # Old IOS images only understand plain ssh-rsa signatures
            connect_kwargs["disabled_algorithms"] = {
                "pubkeys": ["rsa-sha2-512", "rsa-sha2-256"],
            }

        try:
            client.connect(**connect_kwargs)
            shell = client.invoke_shell(term="vt100", width=511, height=1000)
            shell.settimeout(self.POLL_INTERVAL)
        except paramiko.AuthenticationException as e:
            client.close()
            raise AuthenticationError(f"SSH authentication failed for {self.name}: {e}") from e
        except Exception as e:
            client.close()
            detail = str(e) or type(e).__name__
            raise SessionConnectionError(f"SSH connection to {self.name} failed: {detail}") from e

        if self._stop.is_set():
            # close() ran while we were still connecting (open timed out)
            client.close()
            raise SessionConnectionError(f"SSH connection to {self.name} abandoned")

        self._client = client
        self._shell = shell

    def _read_loop(self) -> None:
        shell = self._shell
        while not self._stop.is_set():
            try:
                data = shell.recv(self.RECV_SIZE)
            except socket.timeout:
                continue
            except Exception as e:
                self._call_in_loop(self._mark_closed, e)
                return
            if not data:
                self._call_in_loop(self._mark_closed)
                return
            self._call_in_loop(self._feed, data)

    def _call_in_loop(self, callback, *args) -> None:
        try:
            self._loop.call_soon_threadsafe(callback, *args)
        except RuntimeError:
            # Loop already closed during interpreter teardown
            self._stop.set()

    async def write(self, data: str) -> None:
        if self._shell is None or self.is_closed:
            raise CommandExecutionError(f"SSH channel to {self.name} is not open")
        try:
            await self._loop.run_in_executor(None, self._shell.sendall, data.encode(self.encoding))
        except (paramiko.SSHException, socket.error) as e:
            raise CommandExecutionError(f"Write to {self.name} failed: {e}") from e

    async def close(self) -> None:
        self._stop.set()
        if self._shell is not None:
            self._shell.close()
        if self._client is not None:
            self._client.close()
        if self._reader is not None and self._reader.is_alive():
            await self._loop.run_in_executor(None, self._reader.join, self.POLL_INTERVAL * 2)
        self._mark_closed()


# =============================================================================
# Telnet (telnetlib3)
# =============================================================================

class TelnetChannel(Channel):
    """Raw Telnet socket; login is handled by the session automaton."""

    RECV_SIZE = 4096

    def __init__(
        self,
        host: str,
        port: int = 23,
        connect_minwait: float = 0.5,
        connect_timeout: Optional[float] = 20.0,
    ):
        super().__init__(f"{host}:{port}")
        self.host = host
        self.port = port
        self.connect_minwait = connect_minwait
        self.connect_timeout = connect_timeout
        self._reader = None
        self._writer = None
        self._task: Optional[asyncio.Task] = None

    async def open(self) -> None:
        try:
            self._reader, self._writer = await telnetlib3.open_connection(
                self.host,
                self.port,
                encoding="utf8",
                connect_minwait=self.connect_minwait,
                connect_timeout=self.connect_timeout,
            )
        except (OSError, asyncio.TimeoutError) as e:
            raise SessionConnectionError(f"Telnet connection to {self.name} failed: {e}") from e
        self._task = asyncio.ensure_future(self._read_loop())

    async def _read_loop(self) -> None:
        try:
            while True:
                data = await self._reader.read(self.RECV_SIZE)
                if not data:
                    self._mark_closed()
                    return
                self._feed(data)
        except asyncio.CancelledError:
            raise
        except Exception as e:
            self._mark_closed(e)

    async def write(self, data: str) -> None:
        if self._writer is None or self.is_closed:
            raise CommandExecutionError(f"Telnet channel to {self.name} is not open")
        try:
            self._writer.write(data)
        except (OSError, RuntimeError) as e:
            raise CommandExecutionError(f"Write to {self.name} failed: {e}") from e

    async def close(self) -> None:
        if self._writer is not None:
            self._writer.close()
        if self._task is not None and not self._task.done():
            self._task.cancel()
            try:
                await self._task
            except asyncio.CancelledError:
                pass
        self._mark_closed()


# =============================================================================
# Serial console (pyserial-asyncio)
# =============================================================================

class SerialChannel(Channel):
    """Console port; no login handshake, the far end may be idle."""

    RECV_SIZE = 1024

    def __init__(self, device: str, baud_rate: int = 9600, rtscts: bool = True):
        super().__init__(device)
        self.device = device
        self.baud_rate = baud_rate
        self.rtscts = rtscts
        self._reader: Optional[asyncio.StreamReader] = None
        self._writer: Optional[asyncio.StreamWriter] = None
        self._task: Optional[asyncio.Task] = None

    async def open(self) -> None:
        try:
            self._reader, self._writer = await serial_asyncio.open_serial_connection(
                url=self.device,
                baudrate=self.baud_rate,
                rtscts=self.rtscts,
            )
        except (serial.SerialException, OSError) as e:
            raise SessionConnectionError(f"Failed to open serial port {self.device}: {e}") from e
        self._task = asyncio.ensure_future(self._read_loop())

    async def _read_loop(self) -> None:
        try:
            while True:
                data = await self._reader.read(self.RECV_SIZE)
                if not data:
                    self._mark_closed()
                    return
                self._feed(data)
        except asyncio.CancelledError:
            raise
        except Exception as e:
            self._mark_closed(e)

    async def write(self, data: str) -> None:
        if self._writer is None or self.is_closed:
            raise CommandExecutionError(f"Serial port {self.device} is not open")
        try:
            self._writer.write(data.encode(self.encoding))
            await self._writer.drain()
        except (serial.SerialException, OSError) as e:
            raise CommandExecutionError(f"Write to {self.device} failed: {e}") from e

    async def close(self) -> None:
        if self._writer is not None:
            self._writer.close()
        if self._task is not None and not self._task.done():
            self._task.cancel()
            try:
                await self._task
            except asyncio.CancelledError:
                pass
        self._mark_closed()
