"""
Port Survey - Data Models.

Per-device inventory assembled from CLI output: interfaces keyed by
canonical port name, CDP/LLDP neighbors attached to their local port, and
the flattened per-port rows handed to the writers.

Design Principles:
- Interfaces are created lazily by the first partial that names them
- Later partials overwrite only the fields they carry
- Neighbors are immutable; the merged view is derived, never edited
- Serializable to JSON for export
"""

from dataclasses import asdict, dataclass, field, fields
from datetime import datetime
from enum import Enum
from typing import Any, Callable, Dict, Iterable, List, Optional
import json
import logging

from .normalize import normalize_interface_name

logger = logging.getLogger(__name__)

UNKNOWN_HOSTNAME = "UnknownHostname"
NOT_AVAILABLE = "N/A"


class Platform(str, Enum):
    """Device OS family, classified from 'show version'."""
    IOS = "IOS"
    IOS_XE = "IOS-XE"
    NX_OS = "NX-OS"
    SMB = "SMB"
    UNKNOWN = "Unknown"


class PortStatus(str, Enum):
    """Port state column of 'show interfaces status'."""
    CONNECTED = "connected"
    NOTCONNECT = "notconnect"
    DISABLED = "disabled"
    ERR_DISABLED = "err-disabled"
    INACTIVE = "inactive"
    OTHER = "other"


class PortMode(str, Enum):
    """Switchport administrative mode."""
    ACCESS = "access"
    TRUNK = "trunk"
    ROUTED = "routed"
    NA = "N/A"


class PoeStatus(str, Enum):
    """Power over Ethernet state."""
    AUTO = "Auto"
    OFF = "off"
    FAULTY = "faulty"
    NA = "N/A"


class NeighborProtocol(str, Enum):
    """Neighbor discovery protocol."""
    CDP = "CDP"
    LLDP = "LLDP"
    BOTH = "Both"


@dataclass(frozen=True)
class Neighbor:
    """
    Adjacent device seen on one local port.

    CDP fills platform from the 'Platform:' line, LLDP from the system
    description. Ports are stored in canonical form.
    """
    local_port: str                              # Our interface
    device_id: str                               # Remote hostname / chassis id
    remote_port: str                             # Remote interface
    platform: str = NOT_AVAILABLE                # Remote model / OS string

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


@dataclass(frozen=True)
class MergedNeighbor:
    """Reported neighbor view with the protocol it came from."""
    local_port: str
    device_id: str
    remote_port: str
    platform: str
    source: NeighborProtocol

    @classmethod
    def from_neighbor(cls, neighbor: Neighbor, source: NeighborProtocol) -> 'MergedNeighbor':
        return cls(
            local_port=neighbor.local_port,
            device_id=neighbor.device_id,
            remote_port=neighbor.remote_port,
            platform=neighbor.platform,
            source=source,
        )

    def to_dict(self) -> Dict[str, Any]:
        d = asdict(self)
        d['source'] = self.source.value
        return d


@dataclass
class InterfaceUpdate:
    """
    Partial interface data produced by one parser.

    Every field except port_name is optional; None means "not reported".
    """
    port_name: str
    description: Optional[str] = None
    status: Optional[PortStatus] = None
    mode: Optional[PortMode] = None
    access_vlan: Optional[str] = None
    trunk_vlans: Optional[str] = None
    poe_status: Optional[PoeStatus] = None
    mac_addresses: Optional[List[str]] = None


@dataclass
class Interface:
    """Switch port and everything learned about it."""
    port_name: str
    description: str = NOT_AVAILABLE
    status: PortStatus = PortStatus.NOTCONNECT
    mode: PortMode = PortMode.NA
    access_vlan: str = NOT_AVAILABLE
    trunk_vlans: str = NOT_AVAILABLE
    poe_status: PoeStatus = PoeStatus.NA
    mac_addresses: List[str] = field(default_factory=list)

    cdp_neighbor: Optional[Neighbor] = None
    lldp_neighbor: Optional[Neighbor] = None
    merged_neighbor: Optional[MergedNeighbor] = None

    _MERGE_FIELDS = (
        'description',
        'status',
        'mode',
        'access_vlan',
        'trunk_vlans',
        'poe_status',
    )

    def apply(self, update: InterfaceUpdate) -> None:
        """Overwrite only the fields the update carries."""
        for name in self._MERGE_FIELDS:
            value = getattr(update, name)
            if value is not None:
                setattr(self, name, value)
        if update.mac_addresses is not None:
            self.mac_addresses = list(update.mac_addresses)

    def to_dict(self) -> Dict[str, Any]:
        return {
            'port_name': self.port_name,
            'description': self.description,
            'status': self.status.value,
            'mode': self.mode.value,
            'access_vlan': self.access_vlan,
            'trunk_vlans': self.trunk_vlans,
            'poe_status': self.poe_status.value,
            'mac_addresses': list(self.mac_addresses),
            'cdp_neighbor': self.cdp_neighbor.to_dict() if self.cdp_neighbor else None,
            'lldp_neighbor': self.lldp_neighbor.to_dict() if self.lldp_neighbor else None,
            'merged_neighbor': self.merged_neighbor.to_dict() if self.merged_neighbor else None,
        }


def merge_neighbor(interface: Interface) -> Optional[MergedNeighbor]:
    """
    Derive the reported neighbor for one interface.

    CDP wins when both protocols saw a neighbor; the LLDP entry stays on
    the interface but is not reported.
    """
    if interface.cdp_neighbor is not None:
        merged = MergedNeighbor.from_neighbor(interface.cdp_neighbor, NeighborProtocol.CDP)
    elif interface.lldp_neighbor is not None:
        merged = MergedNeighbor.from_neighbor(interface.lldp_neighbor, NeighborProtocol.LLDP)
    else:
        merged = None
    interface.merged_neighbor = merged
    return merged


@dataclass
class PortRecord:
    """One persisted row per interface."""
    host: str
    port: str
    description: str
    status: str
    mode: str
    access_vlan: str
    trunk_vlans: str
    poe_status: str
    mac_count: int
    mac_list: str
    neighbor_device: Optional[str] = None
    neighbor_port: Optional[str] = None
    neighbor_platform: Optional[str] = None
    neighbor_source: Optional[str] = None

    @classmethod
    def columns(cls) -> List[str]:
        return [f.name for f in fields(cls)]

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


@dataclass
class CommandRecord:
    """Raw command log entry."""
    command: str
    output: str
    error: bool = False

    @classmethod
    def failed(cls, command: str, message: str) -> 'CommandRecord':
        return cls(command=command, output=f"ERROR: {message}", error=True)

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


VendorLookup = Callable[[str], str]


class Device:
    """
    Discovered switch.

    Interfaces live in an insertion-ordered dict keyed by canonical port
    name, so the persisted rows follow the order the device listed them.
    """

    def __init__(self, hostname: str, platform: Platform = Platform.UNKNOWN):
        self.hostname = hostname
        self.platform = platform
        self.interfaces: Dict[str, Interface] = {}
        self.discovered_at = datetime.now()

    def __repr__(self) -> str:
        return f"Device({self.hostname!r}, {self.platform.value}, {len(self.interfaces)} interfaces)"

    def get_interface(self, port_name: str) -> Optional[Interface]:
        return self.interfaces.get(normalize_interface_name(port_name))

    def add_or_update_interface(self, update: InterfaceUpdate) -> Optional[Interface]:
        """Create the interface on first sight, else merge present fields."""
        port_name = normalize_interface_name(update.port_name)
        if not port_name:
            logger.debug("Ignoring interface update without a port name on %s", self.hostname)
            return None

        iface = self.interfaces.get(port_name)
        if iface is None:
            iface = Interface(port_name=port_name)
            self.interfaces[port_name] = iface
        iface.apply(update)
        return iface

    def add_cdp_neighbors(self, neighbors: Iterable[Neighbor]) -> int:
        return self._attach_neighbors(neighbors, NeighborProtocol.CDP)

    def add_lldp_neighbors(self, neighbors: Iterable[Neighbor]) -> int:
        return self._attach_neighbors(neighbors, NeighborProtocol.LLDP)

    def _attach_neighbors(self, neighbors: Iterable[Neighbor], protocol: NeighborProtocol) -> int:
        attached = 0
        for neighbor in neighbors:
            iface = self.get_interface(neighbor.local_port)
            if iface is None:
                logger.debug(
                    "Dropping %s neighbor %s on unknown port %s",
                    protocol.value, neighbor.device_id, neighbor.local_port,
                )
                continue
            if protocol == NeighborProtocol.CDP:
                iface.cdp_neighbor = neighbor
            else:
                iface.lldp_neighbor = neighbor
            attached += 1
        return attached

    def merge_neighbors(self) -> None:
        for iface in self.interfaces.values():
            merge_neighbor(iface)

    @property
    def neighbor_count(self) -> int:
        return sum(1 for i in self.interfaces.values() if i.merged_neighbor is not None)

    def to_records(self, vendor_lookup: Optional[VendorLookup] = None) -> List[PortRecord]:
        """Flatten into one row per interface, in insertion order."""
        records = []
        for iface in self.interfaces.values():
            if vendor_lookup is not None:
                macs = [f"{mac} ({vendor_lookup(mac)})" for mac in iface.mac_addresses]
            else:
                macs = list(iface.mac_addresses)

            merged = iface.merged_neighbor
            records.append(PortRecord(
                host=self.hostname,
                port=iface.port_name,
                description=iface.description,
                status=iface.status.value,
                mode=iface.mode.value,
                access_vlan=iface.access_vlan,
                trunk_vlans=iface.trunk_vlans,
                poe_status=iface.poe_status.value,
                mac_count=len(iface.mac_addresses),
                mac_list=", ".join(macs),
                neighbor_device=merged.device_id if merged else None,
                neighbor_port=merged.remote_port if merged else None,
                neighbor_platform=merged.platform if merged else None,
                neighbor_source=merged.source.value if merged else None,
            ))
        return records

    def to_dict(self) -> Dict[str, Any]:
        return {
            'hostname': self.hostname,
            'platform': self.platform.value,
            'discovered_at': self.discovered_at.isoformat(),
            'interfaces': [i.to_dict() for i in self.interfaces.values()],
        }

    def to_json(self, indent: int = 2) -> str:
        return json.dumps(self.to_dict(), indent=indent)


@dataclass
class DiscoveryResult:
    """
    Result of a discovery batch.

    Contains per-target outcome and summary statistics.
    """
    targets: List[str] = field(default_factory=list)
    successful: int = 0
    failed: int = 0

    # target -> hostname for successes, target -> error text for failures
    hostnames: Dict[str, str] = field(default_factory=dict)
    errors: Dict[str, str] = field(default_factory=dict)

    # Timing
    started_at: Optional[datetime] = None
    completed_at: Optional[datetime] = None

    @property
    def duration_seconds(self) -> Optional[float]:
        """Get batch duration in seconds."""
        if self.started_at and self.completed_at:
            return (self.completed_at - self.started_at).total_seconds()
        return None

    @property
    def total_attempted(self) -> int:
        return self.successful + self.failed

    def record_success(self, target: str, hostname: str) -> None:
        self.successful += 1
        self.hostnames[target] = hostname

    def record_failure(self, target: str, error: str) -> None:
        self.failed += 1
        self.errors[target] = error

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary for JSON serialization."""
        return {
            'targets': self.targets,
            'total_attempted': self.total_attempted,
            'successful': self.successful,
            'failed': self.failed,
            'hostnames': self.hostnames,
            'errors': self.errors,
            'started_at': self.started_at.isoformat() if self.started_at else None,
            'completed_at': self.completed_at.isoformat() if self.completed_at else None,
            'duration_seconds': self.duration_seconds,
        }

    def to_json(self, indent: int = 2) -> str:
        """Serialize to JSON string."""
        return json.dumps(self.to_dict(), indent=indent)
