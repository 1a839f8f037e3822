"""
Port Survey - Interactive session layer.

Channels move bytes; sessions understand prompts, privilege levels,
pagination and command framing.
"""

from .channels import Channel, ReadSubscription, SerialChannel, SSHChannel, TelnetChannel
from .patterns import DEFAULT_PROMPT, ENABLE_PROMPT, PromptPattern
from .session import (
    CommandResult,
    InteractiveSession,
    SerialSession,
    SSHSession,
    TelnetSession,
    create_session,
)

__all__ = [
    'Channel',
    'ReadSubscription',
    'SSHChannel',
    'TelnetChannel',
    'SerialChannel',
    'PromptPattern',
    'DEFAULT_PROMPT',
    'ENABLE_PROMPT',
    'CommandResult',
    'InteractiveSession',
    'SSHSession',
    'TelnetSession',
    'SerialSession',
    'create_session',
]
