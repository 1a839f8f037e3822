"""
Port Survey - Offline MAC vendor lookup.

Resolves the OUI (first three octets) of a MAC address against a local
copy of the IEEE registry (https://standards-oui.ieee.org/oui/oui.txt).

Only the '(hex)' lines of that file are used:

    00-00-0C   (hex)		Cisco Systems, Inc
"""

import logging
import re
from pathlib import Path
from typing import Dict, Optional, Union

logger = logging.getLogger(__name__)

UNKNOWN_VENDOR = "Unknown Vendor"

OUI_LINE_PATTERN = re.compile(r'^([0-9A-Fa-f]{2}-[0-9A-Fa-f]{2}-[0-9A-Fa-f]{2})\s+\(hex\)\s+(.*)$')


class OuiCache:
    """
    Prefix -> vendor table.

    Filled once and kept for the life of the process.
    """

    def __init__(self):
        self._vendors: Dict[str, str] = {}
        self.loaded = False
        self.source: Optional[Path] = None

    def __len__(self) -> int:
        return len(self._vendors)

    def __contains__(self, prefix: str) -> bool:
        return prefix in self._vendors

    def get(self, prefix: str) -> Optional[str]:
        return self._vendors.get(prefix)

    def load(self, path: Union[str, Path]) -> int:
        """Parse an oui.txt file. Returns the number of prefixes loaded."""
        path = Path(path)
        count = 0
        with path.open(encoding='utf-8', errors='replace') as fh:
            for line in fh:
                match = OUI_LINE_PATTERN.match(line.strip())
                if not match:
                    continue
                prefix = match.group(1).replace('-', '').upper()
                vendor = match.group(2).strip()
                if vendor:
                    self._vendors[prefix] = vendor
                    count += 1
        self.loaded = True
        self.source = path
        return count


class OfflineOuiResolver:
    """
    Vendor lookup backed by an OuiCache.

    Usage:
        resolver = OfflineOuiResolver("assets/oui.txt")
        resolver.resolve("0000.0c12.3456")   # 'Cisco Systems, Inc'
    """

    def __init__(self, oui_file: Union[str, Path, None] = None, cache: Optional[OuiCache] = None):
        self.oui_file = Path(oui_file) if oui_file else None
        self.cache = cache if cache is not None else OuiCache()

    def initialize(self) -> None:
        """Load the database once. A missing file leaves every lookup unknown."""
        if self.cache.loaded:
            return
        if self.oui_file is None or not self.oui_file.is_file():
            logger.error("Offline MAC vendor database not found at %s", self.oui_file)
            self.cache.loaded = True
            return

        count = self.cache.load(self.oui_file)
        logger.info("Loaded %d OUI prefixes from %s", count, self.oui_file)

    def resolve(self, mac: str) -> str:
        if not self.cache.loaded:
            self.initialize()
        prefix = re.sub(r'[.:-]', '', mac or '')[:6].upper()
        return self.cache.get(prefix) or UNKNOWN_VENDOR

    __call__ = resolve
