"""
Shared fixtures: an in-memory Channel that replays scripted device output.
"""

import asyncio

import pytest

from portsurvey.config import DiscoveryConfig
from portsurvey.exceptions import CommandExecutionError
from portsurvey.session.channels import Channel
from portsurvey.session.session import SSHSession

SILENT = object()


class ScriptedChannel(Channel):
    """
    Fake device.

    ``responses`` maps a command (without line terminator) to either
      - a str: command output; echo and prompt are added around it
      - a list of str: raw chunks, the first sent right away and each
        following one after a continuation keystroke
      - SILENT: no answer at all
    Unknown commands answer with echo + prompt and no output.
    """

    SILENT = SILENT

    def __init__(self, responses=None, banner="Switch#", prompt="Switch#", open_error=None):
        super().__init__("scripted")
        self.responses = dict(responses or {})
        self.banner = banner
        self.prompt = prompt
        self.open_error = open_error
        self.writes = []
        self.open_count = 0
        self.close_count = 0
        self._pages = []

    def _send(self, chunk):
        asyncio.get_running_loop().call_soon(self._feed, chunk)

    async def open(self):
        self.open_count += 1
        if self.open_error is not None:
            raise self.open_error
        if self.banner is not None:
            self._send(self.banner)

    async def write(self, data):
        if self.is_closed:
            raise CommandExecutionError("channel closed")
        self.writes.append(data)

        if data == " " and self._pages:
            self._send(self._pages.pop(0))
            return

        command = data.rstrip("\r\n")
        response = self.responses.get(command)
        if response is SILENT:
            return
        if response is None:
            self._send(f"{command}\r\n{self.prompt}")
        elif isinstance(response, list):
            self._send(response[0])
            self._pages = list(response[1:])
        else:
            self._send(f"{command}\r\n{response}\r\n{self.prompt}")

    async def close(self):
        self.close_count += 1
        self._mark_closed()

    @property
    def commands(self):
        return [w.rstrip("\r\n") for w in self.writes if w != " "]


@pytest.fixture
def scripted_channel():
    return ScriptedChannel


@pytest.fixture
def ssh_session():
    """Build a fast SSHSession around a ScriptedChannel."""
    def factory(channel, **kwargs):
        kwargs.setdefault("timeout", 2.0)
        kwargs.setdefault("quiet_period", 0.02)
        kwargs.setdefault("probe_timeout", 0.5)
        return SSHSession(channel, **kwargs)
    return factory


@pytest.fixture
def config(tmp_path):
    return DiscoveryConfig(
        mode="ssh",
        targets="10.0.0.1",
        username="admin",
        password="secret",
        timeout=2.0,
        quiet_period=0.02,
        output_dir=str(tmp_path / "output"),
    )
