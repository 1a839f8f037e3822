import re
from typing import Dict, Optional


class InterfaceNormalizer:
    """
    Expands abbreviated interface names to their canonical long form.

    'Gi1/0/1', 'gi1/0/1' and 'GE1/0/1' all become 'GigabitEthernet1/0/1'.
    Names that are already canonical, carry an unknown prefix or do not
    look like '<letters><digits/./>' are returned trimmed but unchanged.
    """

    STANDARD_INTERFACES = {
        'Gi': 'GigabitEthernet',
        'GE': 'GigabitEthernet',
        'Fa': 'FastEthernet',
        'Te': 'TenGigabitEthernet',
        'Tw': 'TwoGigabitEthernet',
        'Twe': 'TwentyFiveGigE',
        'Fo': 'FortyGigabitEthernet',
        'Hu': 'HundredGigE',
        'Et': 'Ethernet',
        'Eth': 'Ethernet',
        'Po': 'Port-channel',
        'Vl': 'Vlan',
        'Lo': 'Loopback',
    }

    INTERFACE_PATTERN = re.compile(r'^([A-Za-z]+)([\d/.]+)$')

    _lookup: Optional[Dict[str, str]] = None

    @classmethod
    def _prefixes(cls) -> Dict[str, str]:
        if cls._lookup is None:
            lookup = {short.lower(): full for short, full in cls.STANDARD_INTERFACES.items()}
            # Long forms map onto themselves so lowercase variants get fixed up too
            for full in cls.STANDARD_INTERFACES.values():
                lookup[full.lower()] = full
            cls._lookup = lookup
        return cls._lookup

    @classmethod
    def normalize(cls, interface: Optional[str]) -> str:
        if not interface:
            return ""

        interface = interface.strip()
        match = cls.INTERFACE_PATTERN.match(interface)
        if not match:
            return interface

        prefix, rest = match.groups()
        full = cls._prefixes().get(prefix.lower())
        if full is None:
            return interface
        return full + rest


def normalize_interface_name(interface: Optional[str]) -> str:
    return InterfaceNormalizer.normalize(interface)
