"""
Port Survey - CLI output parsers.

Regex extraction for the Cisco command set used by the discovery
pipeline. Every parser is a pure function of its text input and never
raises: output it cannot make sense of (an error banner, an empty string,
another vendor's format) yields None or an empty result.
"""

import re
import logging
from typing import List, Optional

from .models import (
    InterfaceUpdate,
    Neighbor,
    NOT_AVAILABLE,
    Platform,
    PoeStatus,
    PortMode,
    PortStatus,
)
from .normalize import normalize_interface_name

logger = logging.getLogger(__name__)


# =============================================================================
# Identity
# =============================================================================

HOSTNAME_CONFIG_PATTERN = re.compile(r'^hostname\s+(\S.*?)\s*$', re.MULTILINE)
HOSTNAME_PROMPT_PATTERN = re.compile(r'^\s*([^\s>#()]+)(?:\([^)]*\))?[>#]\s*$')
HOSTNAME_VERSION_PATTERN = re.compile(r'^\s*(\S+)\s+uptime is', re.MULTILINE | re.IGNORECASE)

# Checked in order; first match wins
PLATFORM_SIGNATURES = [
    (Platform.IOS_XE, re.compile(r'Cisco IOS Software, C2960S Software|IOS XE Software', re.IGNORECASE)),
    (Platform.IOS, re.compile(r'Cisco IOS Software', re.IGNORECASE)),
    (Platform.NX_OS, re.compile(r'Cisco Nexus Operating System \(NX-OS\) Software', re.IGNORECASE)),
]
SMB_VERSION_PATTERN = re.compile(r'SW-Version', re.IGNORECASE)
SMB_MODEL_PATTERN = re.compile(r'\b(?:SG|SF)\d+', re.IGNORECASE)


def parse_hostname_from_config(output: str) -> Optional[str]:
    """'show run | i ^hostname' -> hostname."""
    match = HOSTNAME_CONFIG_PATTERN.search(output or "")
    return match.group(1) if match else None


def parse_hostname_from_prompt(prompt: str) -> Optional[str]:
    """'Switch#' / 'Switch>' / 'Switch(config)#' -> 'Switch'."""
    match = HOSTNAME_PROMPT_PATTERN.match(prompt or "")
    return match.group(1) if match else None


def parse_hostname_from_version(output: str) -> Optional[str]:
    """'<name> uptime is ...' line of 'show version'."""
    match = HOSTNAME_VERSION_PATTERN.search(output or "")
    return match.group(1) if match else None


def classify_platform(output: str) -> Platform:
    output = output or ""
    for platform, signature in PLATFORM_SIGNATURES:
        if signature.search(output):
            return platform
    if SMB_VERSION_PATTERN.search(output) and SMB_MODEL_PATTERN.search(output):
        return Platform.SMB
    return Platform.UNKNOWN


# =============================================================================
# Interface inventory
# =============================================================================

STATUS_LINE_PATTERN = re.compile(
    r'^(?P<port>\S+)\s+(?P<desc>.*?)\s*\b'
    r'(?P<status>connected|notconnect|disabled|err-disabled|inactive)\s+'
)
SMB_DESCRIPTION_PATTERN = re.compile(
    r'^(?P<port>(?:gi|fa|te)\d+(?:/\d+)*)\s+(?P<state>Up|Down)\s+\S+\s+\S+\s+\S+\s*(?P<desc>.*)$',
    re.IGNORECASE,
)


def parse_interface_status(output: str) -> List[InterfaceUpdate]:
    """
    Parse 'show interfaces status' (IOS / IOS-XE / NX-OS) or the SMB
    'show interface description' table into partial interfaces.
    """
    updates = []
    for line in (output or "").splitlines():
        line = line.rstrip()
        if not line:
            continue

        match = STATUS_LINE_PATTERN.match(line)
        if match:
            updates.append(InterfaceUpdate(
                port_name=normalize_interface_name(match.group('port')),
                description=match.group('desc').strip() or NOT_AVAILABLE,
                status=PortStatus(match.group('status')),
            ))
            continue

        match = SMB_DESCRIPTION_PATTERN.match(line)
        if match:
            connected = match.group('state').lower() == 'up'
            updates.append(InterfaceUpdate(
                port_name=normalize_interface_name(match.group('port')),
                description=match.group('desc').strip() or NOT_AVAILABLE,
                status=PortStatus.CONNECTED if connected else PortStatus.NOTCONNECT,
            ))

    return updates


# =============================================================================
# Neighbors
# =============================================================================

CDP_ENTRY_SEPARATOR = '-------------------------'
CDP_DEVICE_ID = re.compile(r'Device ID:\s*(.+)')
CDP_LOCAL_PORT = re.compile(r'Interface:\s*([^,]+),')
CDP_REMOTE_PORT = re.compile(r'Port ID \(outgoing port\):\s*(.+)')
CDP_PLATFORM = re.compile(r'Platform:\s*([^,]+),')

LLDP_ENTRY_SPLIT = re.compile(r'Local Intf:|Local Interface:')
LLDP_PLATFORM_MAX = 40


def parse_cdp_neighbors(output: str) -> List[Neighbor]:
    """Parse 'show cdp neighbors detail'."""
    neighbors = []
    for entry in (output or "").split(CDP_ENTRY_SEPARATOR):
        if not entry.strip():
            continue

        device_id = CDP_DEVICE_ID.search(entry)
        local_port = CDP_LOCAL_PORT.search(entry)
        remote_port = CDP_REMOTE_PORT.search(entry)
        if not (device_id and local_port and remote_port):
            continue

        platform = CDP_PLATFORM.search(entry)
        neighbors.append(Neighbor(
            local_port=normalize_interface_name(local_port.group(1)),
            device_id=device_id.group(1).strip(),
            remote_port=normalize_interface_name(remote_port.group(1)),
            platform=platform.group(1).strip() if platform else NOT_AVAILABLE,
        ))
    return neighbors


def _lldp_field(lines: List[str], label: str) -> Optional[str]:
    prefix = label.lower() + ':'
    for line in lines:
        stripped = line.strip()
        if stripped.lower().startswith(prefix):
            value = stripped[len(prefix):].strip()
            return value or None
    return None


def _lldp_description(lines: List[str]) -> Optional[str]:
    # IOS prints the description on the line after the label
    for index, line in enumerate(lines):
        stripped = line.strip()
        if not stripped.startswith('System Description:'):
            continue
        value = stripped[len('System Description:'):].strip()
        if value:
            return value
        for following in lines[index + 1:]:
            if following.strip():
                return following.strip()
        return None
    return None


def parse_lldp_neighbors(output: str) -> List[Neighbor]:
    """
    Parse 'show lldp neighbors detail'.

    The system name identifies the neighbor when advertised, the chassis
    id otherwise.
    """
    neighbors = []
    for entry in LLDP_ENTRY_SPLIT.split(output or "")[1:]:
        if 'Port id:' not in entry:
            continue

        lines = entry.strip().splitlines()
        if not lines:
            continue
        local_port = normalize_interface_name(lines[0])

        device_id = _lldp_field(lines, 'System Name') or _lldp_field(lines, 'Chassis id')
        remote_port = _lldp_field(lines, 'Port id')
        if not (local_port and device_id and remote_port):
            continue

        description = _lldp_description(lines)
        neighbors.append(Neighbor(
            local_port=local_port,
            device_id=device_id,
            remote_port=normalize_interface_name(remote_port),
            platform=description[:LLDP_PLATFORM_MAX] if description else NOT_AVAILABLE,
        ))
    return neighbors


# =============================================================================
# Per-port detail
# =============================================================================

SWITCHPORT_DISABLED = re.compile(r'Switchport:\s*Disabled', re.IGNORECASE)
SWITCHPORT_MODE = re.compile(r'Administrative Mode:\s*(.*?)\s*$', re.MULTILINE)
SWITCHPORT_ACCESS_VLAN = re.compile(r'Access Mode VLAN:\s*(\d+)', re.MULTILINE)
SWITCHPORT_TRUNK_VLANS = re.compile(r'Trunking VLANs Enabled:\s*(.*?)\s*$', re.MULTILINE)

POE_DATA_LINE = re.compile(r'^\s*[A-Za-z][A-Za-z-]*\d[\d/.]*\s')
POE_PRECEDENCE = [
    (PoeStatus.FAULTY, re.compile(r'\bfaulty\b', re.IGNORECASE)),
    (PoeStatus.OFF, re.compile(r'\boff\b', re.IGNORECASE)),
    (PoeStatus.AUTO, re.compile(r'\bauto\b', re.IGNORECASE)),
]


def parse_switchport(output: str, port_name: str) -> InterfaceUpdate:
    """Parse 'show interfaces <port> switchport'."""
    update = InterfaceUpdate(port_name=port_name)
    output = output or ""

    if SWITCHPORT_DISABLED.search(output):
        update.mode = PortMode.ROUTED
        return update

    mode = SWITCHPORT_MODE.search(output)
    if mode:
        text = mode.group(1).lower()
        if 'trunk' in text:
            update.mode = PortMode.TRUNK
        elif 'static access' in text:
            update.mode = PortMode.ACCESS

    access_vlan = SWITCHPORT_ACCESS_VLAN.search(output)
    if access_vlan:
        update.access_vlan = access_vlan.group(1)

    trunk_vlans = SWITCHPORT_TRUNK_VLANS.search(output)
    if trunk_vlans and trunk_vlans.group(1):
        vlans = trunk_vlans.group(1)
        update.trunk_vlans = '1-4094' if vlans.upper() == 'ALL' else vlans

    return update


def parse_poe(output: str, port_name: str) -> InterfaceUpdate:
    """Parse 'show power inline <port>'; only interface rows are considered."""
    data = [line for line in (output or "").splitlines() if POE_DATA_LINE.match(line)]
    text = '\n'.join(data)

    update = InterfaceUpdate(port_name=port_name)
    for status, pattern in POE_PRECEDENCE:
        if pattern.search(text):
            update.poe_status = status
            break
    return update


MAC_MODERN = re.compile(r'^\s*\d+\s+([0-9a-fA-F.:-]+)\s+\w+\s+\S+')
MAC_LEGACY = re.compile(r'^\s*([0-9a-fA-F.:-]+)\s+\w+\s+\S+')
MAC_HEX = re.compile(r'^[0-9a-f]{12}$')


def normalize_mac(mac: str) -> Optional[str]:
    """'0011.22AA.bbcc' / '00:11:22:aa:bb:cc' -> '001122aabbcc'."""
    mac = re.sub(r'[.:-]', '', mac or '').lower()
    return mac if MAC_HEX.match(mac) else None


def parse_mac_table(output: str) -> List[str]:
    """Parse 'show mac address-table interface <port>' (modern and legacy layouts)."""
    macs = []
    for line in (output or "").splitlines():
        match = MAC_MODERN.match(line) or MAC_LEGACY.match(line)
        if not match:
            continue
        mac = normalize_mac(match.group(1))
        if mac:
            macs.append(mac)
    return macs
