"""
Port Survey - switch port and neighbor discovery.

Opens interactive CLI sessions (SSH, Telnet or serial console) to Cisco
style switches, runs a fixed command sequence and writes a per-port
inventory: status, VLANs, PoE, learned MACs and CDP/LLDP neighbors.

Usage:
    import asyncio
    from portsurvey import DiscoveryConfig, DiscoveryEngine

    config = DiscoveryConfig(targets="10.0.0.1", username="admin", password="...")
    result = asyncio.run(DiscoveryEngine(config).run())
"""

from .config import DiscoveryConfig, build_config
from .engine import DiscoveryEngine
from .events import ConsoleEventPrinter, DiscoveryEvent, EventEmitter, EventType
from .exceptions import (
    AuthenticationError,
    CommandExecutionError,
    CommandTimeoutError,
    ConfigError,
    DiscoveryError,
    PersistenceError,
    PrivilegeError,
    ProtocolError,
    SessionConnectionError,
    SessionError,
)
from .models import (
    CommandRecord,
    Device,
    DiscoveryResult,
    Interface,
    InterfaceUpdate,
    MergedNeighbor,
    Neighbor,
    NeighborProtocol,
    Platform,
    PortRecord,
)
from .normalize import InterfaceNormalizer, normalize_interface_name

__version__ = "1.0.0"

__all__ = [
    # Config / engine
    'DiscoveryConfig',
    'build_config',
    'DiscoveryEngine',
    # Events
    'EventEmitter',
    'EventType',
    'DiscoveryEvent',
    'ConsoleEventPrinter',
    # Models
    'Device',
    'Interface',
    'InterfaceUpdate',
    'Neighbor',
    'MergedNeighbor',
    'NeighborProtocol',
    'Platform',
    'PortRecord',
    'CommandRecord',
    'DiscoveryResult',
    'InterfaceNormalizer',
    'normalize_interface_name',
    # Exceptions
    'DiscoveryError',
    'ConfigError',
    'SessionError',
    'SessionConnectionError',
    'AuthenticationError',
    'PrivilegeError',
    'ProtocolError',
    'CommandTimeoutError',
    'CommandExecutionError',
    'PersistenceError',
]
