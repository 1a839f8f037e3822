"""
Port Survey - Exception hierarchy.

Session errors are raised by the interactive session layer and never
retried there. The discovery engine downgrades them per command, or fails
the whole target when they happen during connect/enable.
"""


class DiscoveryError(Exception):
    """Base exception for port survey operations."""
    pass


class ConfigError(DiscoveryError):
    """Invalid or incomplete discovery configuration."""
    pass


class SessionError(DiscoveryError):
    """Base exception for interactive session failures."""
    pass


class SessionConnectionError(SessionError):
    """Channel could not be opened or no prompt was seen before the timeout."""
    pass


class AuthenticationError(SessionError):
    """Login or enable secret rejected."""
    pass


class PrivilegeError(SessionError):
    """Device refused privileged mode for this account."""
    pass


class ProtocolError(SessionError):
    """Device answered with something the session cannot interpret."""
    pass


class CommandTimeoutError(SessionError):
    """Command did not reach its end prompt before the deadline."""
    pass


class CommandExecutionError(SessionError):
    """Transport read/write failure while running a command."""
    pass


class PersistenceError(DiscoveryError):
    """Writing discovery output to disk failed."""
    pass
