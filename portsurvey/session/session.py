"""
Port Survey - Interactive terminal session.

Drives a prompt-terminated, echoing, paginating CLI over a Channel.

Lifecycle:
    session = create_session(config, "10.0.0.1")
    await session.connect()
    await session.enable(secret)
    result = await session.execute_command("show version")
    await session.disconnect()

Command framing is quiescence based: the buffer is only tested after the
device has been silent for ``quiet_period`` seconds. A buffer ending in a
pagination banner gets one space keystroke and collection continues; a
buffer ending in the expected prompt completes the command.
"""

import asyncio
import logging
import re
from dataclasses import dataclass
from typing import Optional, Sequence, Union

from ..exceptions import (
    AuthenticationError,
    CommandExecutionError,
    CommandTimeoutError,
    ConfigError,
    PrivilegeError,
    ProtocolError,
    SessionConnectionError,
    SessionError,
)
from .channels import Channel, ReadSubscription, SerialChannel, SSHChannel, TelnetChannel
from .patterns import (
    AUTH_FAILED,
    DEFAULT_PROMPT,
    ENABLE_PROMPT,
    INVALID_INPUT,
    LOGIN_PROMPT,
    MORE_AT_END,
    PASSWORD_PROMPT,
    PromptPattern,
    is_password_prompt,
    is_privileged_prompt,
    is_user_prompt,
    strip_pagination,
)

logger = logging.getLogger(__name__)

PAGING_COMMANDS = (
    "terminal length 0",
    "terminal pager disable",
    "terminal datadump",
)


@dataclass
class CommandResult:
    """Cleaned command output plus the prompt that terminated it."""
    output: str
    prompt: str


class InteractiveSession:
    """
    Transport-agnostic session protocol.

    Subclasses only provide the connection handshake; enable, command
    execution and pagination handling are shared.
    """

    line_terminator = "\n"
    continuation_key = " "

    def __init__(
        self,
        channel: Channel,
        timeout: float = 20.0,
        quiet_period: float = 0.4,
        probe_timeout: float = 5.0,
        prompt: Union[str, PromptPattern] = DEFAULT_PROMPT,
        paging_commands: Sequence[str] = PAGING_COMMANDS,
    ):
        self.channel = channel
        self.timeout = timeout
        self.quiet_period = quiet_period
        self.probe_timeout = probe_timeout
        self.prompt = _as_pattern(prompt)
        self.paging_commands = tuple(paging_commands)

        self.connected = False
        self.privileged = False
        self.last_prompt: Optional[str] = None
        self.paging_disabled = False
        self._paging_attempted = False
        self._lock = asyncio.Lock()

    def __repr__(self) -> str:
        return f"{self.__class__.__name__}({self.channel.name})"

    # =========================================================================
    # Connection
    # =========================================================================

    async def connect(self) -> None:
        """
        Open the channel and wait for the first shell prompt. Opening and
        the handshake share one ``timeout`` deadline.

        Raises:
            SessionConnectionError: Channel failure or no prompt before timeout
            AuthenticationError: Credentials rejected
        """
        logger.debug("Connecting %s", self)
        try:
            with self.channel.subscribe() as sub:
                prompt = await asyncio.wait_for(self._open_and_handshake(sub), self.timeout)
        except asyncio.TimeoutError as e:
            await self._close_channel()
            raise SessionConnectionError(
                f"No prompt from {self.channel.name} within {self.timeout}s"
            ) from e
        except CommandExecutionError as e:
            await self._close_channel()
            raise SessionConnectionError(f"Connection to {self.channel.name} lost: {e}") from e
        except SessionError:
            await self._close_channel()
            raise
        except OSError as e:
            await self._close_channel()
            raise SessionConnectionError(f"Failed to connect to {self.channel.name}: {e}") from e

        self.connected = True
        self.last_prompt = prompt
        self.privileged = is_privileged_prompt(prompt)
        logger.info("Connected to %s (prompt %r)", self.channel.name, prompt)

    async def _open_and_handshake(self, sub: ReadSubscription) -> str:
        await self.channel.open()
        return await self._handshake(sub)

    async def _handshake(self, sub: ReadSubscription) -> str:
        """Return the first prompt seen. Transport specific."""
        raise NotImplementedError

    async def _wait_for_prompt(self, sub: ReadSubscription, buffer: str = "") -> str:
        while True:
            prompt = self.prompt.trailing_match(buffer)
            if prompt:
                return prompt
            buffer += await sub.read()

    async def disconnect(self) -> None:
        """Close the channel. Safe to call repeatedly."""
        if self.connected:
            logger.debug("Disconnecting %s", self)
        self.connected = False
        await self._close_channel()

    async def _close_channel(self) -> None:
        try:
            await self.channel.close()
        except Exception as e:
            logger.debug("Error closing %s: %s", self.channel.name, e)

    # =========================================================================
    # Privilege escalation
    # =========================================================================

    async def enable(self, secret: Optional[str] = None) -> None:
        """
        Enter privileged mode.

        The outcome is read from the prompt returned by 'enable', never
        from the command body.
        """
        async with self._lock:
            self._require_connected()
            if self.privileged:
                return

            result = await self._exchange("enable", ENABLE_PROMPT)
            prompt = result.prompt

            if is_privileged_prompt(prompt):
                self.privileged = True
            elif is_password_prompt(prompt):
                if not secret:
                    raise AuthenticationError(
                        "Device prompted for a password, but no enable secret was provided"
                    )
                result = await self._exchange(secret, ENABLE_PROMPT, sensitive=True)
                if not is_privileged_prompt(result.prompt):
                    raise AuthenticationError(
                        "Failed to enter enable mode, the enable secret may be incorrect"
                    )
                self.privileged = True
            elif is_user_prompt(prompt):
                raise PrivilegeError(
                    "Failed to enter enable mode, rejected by device (check user privileges)"
                )
            else:
                raise ProtocolError(f"Unexpected response to enable: {prompt!r}")

            logger.info("Privileged mode active on %s", self.channel.name)

    # =========================================================================
    # Commands
    # =========================================================================

    async def execute_command(
        self,
        command: str,
        end_prompt: Optional[Union[str, PromptPattern]] = None,
    ) -> CommandResult:
        """
        Run one command and return its cleaned output.

        Raises:
            CommandTimeoutError: End prompt not seen before the session timeout
            CommandExecutionError: Write failed or channel closed
        """
        async with self._lock:
            self._require_connected()
            if not self._paging_attempted:
                await self._disable_paging()
            pattern = _as_pattern(end_prompt) if end_prompt is not None else self.prompt
            return await self._exchange(command, pattern)

    async def _disable_paging(self) -> None:
        self._paging_attempted = True
        for probe in self.paging_commands:
            try:
                result = await self._exchange(probe, self.prompt, timeout=self.probe_timeout)
            except CommandTimeoutError:
                logger.debug("Paging probe %r timed out on %s", probe, self.channel.name)
                continue
            if INVALID_INPUT.matches(result.output):
                logger.debug("Paging probe %r rejected by %s", probe, self.channel.name)
                continue
            self.paging_disabled = True
            logger.debug("Pagination disabled on %s with %r", self.channel.name, probe)
            return
        logger.debug("No paging command accepted by %s, relying on continuation", self.channel.name)

    async def _exchange(
        self,
        command: str,
        end_prompt: PromptPattern,
        timeout: Optional[float] = None,
        sensitive: bool = False,
    ) -> CommandResult:
        shown = "********" if sensitive else command
        logger.debug("[%s] >> %s", self.channel.name, shown)

        timeout = timeout or self.timeout
        with self.channel.subscribe() as sub:
            await self.channel.write(command + self.line_terminator)
            raw = await self._collect(sub, end_prompt, timeout, shown)

        return self._finalize(command, raw, end_prompt, sensitive)

    async def _collect(
        self,
        sub: ReadSubscription,
        end_prompt: PromptPattern,
        timeout: float,
        label: str,
    ) -> str:
        loop = asyncio.get_running_loop()
        deadline = loop.time() + timeout
        buffer = ""
        armed = False

        while True:
            remaining = deadline - loop.time()
            if remaining <= 0:
                raise CommandTimeoutError(
                    f"Command {label!r} on {self.channel.name} timed out after {timeout}s"
                )

            # Quiet timer only runs once data has arrived since the last decision
            wait = min(self.quiet_period, remaining) if armed else remaining
            try:
                chunk = await sub.read(timeout=wait)
            except asyncio.TimeoutError:
                if not armed:
                    continue
                armed = False
                if MORE_AT_END.matches(buffer):
                    await self.channel.write(self.continuation_key)
                elif end_prompt.matches(buffer):
                    return buffer
                continue

            buffer += chunk
            armed = True

    def _finalize(
        self,
        command: str,
        raw: str,
        end_prompt: PromptPattern,
        sensitive: bool,
    ) -> CommandResult:
        text = strip_pagination(raw)
        prompt = end_prompt.trailing_match(text) or ""
        text = end_prompt.strip(text)
        if not sensitive:
            text = _strip_echo(command, text)
        text = text.replace("\r\n", "\n").replace("\r", "\n").strip()

        self.last_prompt = prompt
        if is_privileged_prompt(prompt):
            self.privileged = True
        elif is_user_prompt(prompt):
            self.privileged = False
        return CommandResult(output=text, prompt=prompt)

    def _require_connected(self) -> None:
        if not self.connected:
            raise CommandExecutionError(f"Session to {self.channel.name} is not connected")


class SSHSession(InteractiveSession):
    """SSH shell: authentication already happened in the transport."""

    async def _handshake(self, sub: ReadSubscription) -> str:
        return await self._wait_for_prompt(sub)


class TelnetSession(InteractiveSession):
    """Telnet: in-band login automaton."""

    line_terminator = "\r\n"

    def __init__(
        self,
        channel: Channel,
        username: Optional[str] = None,
        password: Optional[str] = None,
        **kwargs,
    ):
        super().__init__(channel, **kwargs)
        self.username = username
        self.password = password

    async def _handshake(self, sub: ReadSubscription) -> str:
        buffer = ""
        while True:
            buffer += await sub.read()

            if AUTH_FAILED.matches(buffer):
                raise AuthenticationError(f"Telnet login to {self.channel.name} rejected")

            if LOGIN_PROMPT.matches(buffer):
                if not self.username:
                    raise AuthenticationError(
                        f"{self.channel.name} asked for a username but none is configured"
                    )
                await self.channel.write(self.username + self.line_terminator)
                buffer = ""
                continue

            if PASSWORD_PROMPT.matches(buffer):
                logger.debug("[%s] >> ********", self.channel.name)
                await self.channel.write((self.password or "") + self.line_terminator)
                buffer = ""
                continue

            prompt = self.prompt.trailing_match(buffer)
            if prompt:
                return prompt


class SerialSession(InteractiveSession):
    """
    Console port: nudge the line until a prompt shows up.

    The wake probe goes out every ``wake_interval`` seconds whether or not
    the console is printing, since log chatter is not an answer.
    """

    wake_probe = "\r\n"

    def __init__(self, channel: Channel, wake_interval: float = 1.0, **kwargs):
        super().__init__(channel, **kwargs)
        self.wake_interval = wake_interval

    async def _handshake(self, sub: ReadSubscription) -> str:
        loop = asyncio.get_running_loop()
        buffer = ""
        await self.channel.write(self.wake_probe)
        next_probe = loop.time() + self.wake_interval

        while True:
            wait = next_probe - loop.time()
            if wait <= 0:
                logger.debug("No prompt yet on %s, sending wake probe", self.channel.name)
                await self.channel.write(self.wake_probe)
                next_probe = loop.time() + self.wake_interval
                continue
            try:
                buffer += await sub.read(timeout=wait)
            except asyncio.TimeoutError:
                continue
            prompt = self.prompt.trailing_match(buffer)
            if prompt:
                return prompt


def create_session(config, target: str) -> InteractiveSession:
    """
    Build the session for one target from a DiscoveryConfig.

    ``target`` is ``host`` / ``host:port`` for SSH and Telnet, or the serial
    device path in serial mode.
    """
    common = {
        "timeout": config.timeout,
        "quiet_period": config.quiet_period,
    }

    if config.mode == "ssh":
        host, port = config.split_target(target)
        channel = SSHChannel(
            host,
            port=port,
            username=config.username,
            password=config.password,
            timeout=config.timeout,
            legacy_mode=config.legacy_ssh,
            key_file=config.key_file,
        )
        return SSHSession(channel, **common)

    if config.mode == "telnet":
        host, port = config.split_target(target)
        channel = TelnetChannel(host, port=port, connect_timeout=config.timeout)
        return TelnetSession(
            channel,
            username=config.username,
            password=config.password,
            **common,
        )

    if config.mode == "serial":
        channel = SerialChannel(target, baud_rate=config.baud_rate)
        return SerialSession(channel, **common)

    raise ConfigError(f"Unknown connection mode: {config.mode}")


def _as_pattern(prompt: Union[str, PromptPattern]) -> PromptPattern:
    if isinstance(prompt, PromptPattern):
        return prompt
    return PromptPattern(prompt)


def _strip_echo(command: str, text: str) -> str:
    echo = re.compile(r"\A\s*" + re.escape(command) + r"[ \t]*\r*\n?")
    return echo.sub("", text, count=1)
