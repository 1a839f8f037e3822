"""
Port Survey - Output writers.

Per device, under <output_dir>/<sanitized hostname>/:

    ports.json          flat per-port records
    ports.xlsx          same rows, one 'Ports' sheet
    raw/commands.json   command log (only with raw capture on)

Files are first written next to their destination with a '.tmp' suffix.
Once every file is written, the previous set is moved aside ('.bak') and
the new set renamed into place; any failure puts the previous set back,
so a failed target never leaves a partial or mixed set behind.
"""

import asyncio
import json
import logging
import os
import re
from pathlib import Path
from typing import Any, Dict, List, Optional, Sequence, Tuple, Union

import aiofiles
from openpyxl import Workbook
from openpyxl.styles import Alignment, Border, Font, PatternFill, Side
from openpyxl.utils import get_column_letter

from .exceptions import PersistenceError
from .models import CommandRecord, Device, PortRecord, VendorLookup

logger = logging.getLogger(__name__)

INVALID_FILENAME_CHARS = re.compile(r'[<>:"/\\|?*]')
STAGING_SUFFIX = '.tmp'
BACKUP_SUFFIX = '.bak'

PORTS_JSON = 'ports.json'
PORTS_XLSX = 'ports.xlsx'
RAW_DIR = 'raw'
RAW_JSON = 'commands.json'


def sanitize_filename(name: str) -> str:
    """Replace characters that are invalid in file names on any OS with '_'."""
    return INVALID_FILENAME_CHARS.sub('_', name)


class JsonWriter:
    """Pretty-printed JSON via aiofiles."""

    def __init__(self, indent: int = 2):
        self.indent = indent

    async def write(self, data: Any, filepath: Union[str, Path]) -> None:
        content = json.dumps(data, indent=self.indent)
        async with aiofiles.open(filepath, 'w', encoding='utf-8') as f:
            await f.write(content)


class ExcelWriter:
    """Single-sheet workbook with a styled, frozen header row."""

    SHEET_TITLE = 'Ports'
    MIN_WIDTH = 10
    MAX_WIDTH = 80

    header_fill = PatternFill('solid', fgColor='1F2937')
    header_font = Font(bold=True, color='FFFFFF')
    thin_border = Border(
        left=Side(style='thin'),
        right=Side(style='thin'),
        top=Side(style='thin'),
        bottom=Side(style='thin')
    )

    async def write(self, rows: Sequence[Dict[str, Any]], filepath: Union[str, Path]) -> bool:
        """Returns False without touching disk when there is nothing to write."""
        if not rows:
            return False
        loop = asyncio.get_running_loop()
        await loop.run_in_executor(None, self._write_sync, list(rows), Path(filepath))
        return True

    def _write_sync(self, rows: List[Dict[str, Any]], filepath: Path) -> None:
        wb = Workbook()
        ws = wb.active
        ws.title = self.SHEET_TITLE

        headers = list(rows[0].keys())
        for col, header in enumerate(headers, 1):
            cell = ws.cell(row=1, column=col, value=header)
            cell.fill = self.header_fill
            cell.font = self.header_font
            cell.alignment = Alignment(horizontal='center')
            cell.border = self.thin_border

        for row_num, row in enumerate(rows, 2):
            for col, header in enumerate(headers, 1):
                ws.cell(row=row_num, column=col, value=row.get(header))

        # Column widths sized to content
        for col, header in enumerate(headers, 1):
            width = max(
                [len(header)] + [len(str(r.get(header) or '')) for r in rows]
            )
            width = min(max(width + 2, self.MIN_WIDTH), self.MAX_WIDTH)
            ws.column_dimensions[get_column_letter(col)].width = width

        ws.freeze_panes = 'A2'
        ws.auto_filter.ref = f"A1:{get_column_letter(len(headers))}{len(rows) + 1}"

        wb.save(filepath)


class DeviceWriter:
    """
    Persists one device's records all-or-nothing.

    Usage:
        writer = DeviceWriter("./output", save_raw=True)
        paths = await writer.write(device, command_log)
    """

    def __init__(
        self,
        output_dir: Union[str, Path] = "./output",
        save_raw: bool = False,
        vendor_lookup: Optional[VendorLookup] = None,
        json_writer: Optional[JsonWriter] = None,
        excel_writer: Optional[ExcelWriter] = None,
    ):
        self.output_dir = Path(output_dir)
        self.save_raw = save_raw
        self.vendor_lookup = vendor_lookup
        self.json_writer = json_writer or JsonWriter()
        self.excel_writer = excel_writer or ExcelWriter()
        self._claimed: Dict[str, Optional[str]] = {}

    def device_dir(self, hostname: str, target: Optional[str] = None) -> Path:
        """
        Output directory for a device.

        The first target to resolve a hostname owns ``<hostname>/`` for the
        life of this writer; another target with the same hostname gets
        ``<hostname>_<target>/``.
        """
        name = sanitize_filename(hostname)
        owner = self._claimed.setdefault(name, target)
        if target is not None and owner != target:
            name = sanitize_filename(f"{hostname}_{target}")
            self._claimed.setdefault(name, target)
        return self.output_dir / name

    async def write(
        self,
        device: Device,
        commands: Optional[Sequence[CommandRecord]] = None,
        target: Optional[str] = None,
    ) -> List[Path]:
        """
        Write the device files and return their final paths.

        Outputs of an earlier run that this run does not produce are
        removed, so the directory always holds one consistent set.

        Raises:
            PersistenceError: Any write or rename failed; the previous set
                is restored and staged files are removed.
        """
        device_dir = self.device_dir(device.hostname, target)
        records: List[PortRecord] = device.to_records(self.vendor_lookup)
        rows = [r.to_dict() for r in records]

        staged: List[Path] = []
        final: List[Path] = []
        backups: List[Tuple[Path, Path]] = []
        committed: List[Path] = []
        try:
            device_dir.mkdir(parents=True, exist_ok=True)

            target_path = device_dir / PORTS_JSON
            staged.append(self._staging(target_path))
            await self.json_writer.write(rows, staged[-1])
            final.append(target_path)

            target_path = device_dir / PORTS_XLSX
            staged.append(self._staging(target_path))
            if await self.excel_writer.write(rows, staged[-1]):
                final.append(target_path)
            else:
                staged.pop()

            if self.save_raw and commands is not None:
                raw_dir = device_dir / RAW_DIR
                raw_dir.mkdir(exist_ok=True)
                target_path = raw_dir / RAW_JSON
                staged.append(self._staging(target_path))
                await self.json_writer.write([c.to_dict() for c in commands], staged[-1])
                final.append(target_path)

            # Set aside the previous set, then move the new one in
            for existing in self._outputs(device_dir):
                if existing.exists():
                    backup = existing.with_name(existing.name + BACKUP_SUFFIX)
                    os.replace(existing, backup)
                    backups.append((backup, existing))

            for tmp, dest in zip(staged, final):
                os.replace(tmp, dest)
                committed.append(dest)

        except Exception as e:
            self._discard(staged + committed)
            self._restore(backups)
            raise PersistenceError(f"Failed to write output for {device.hostname}: {e}") from e

        self._discard([backup for backup, _ in backups])
        logger.info("Wrote %d records for %s to %s", len(rows), device.hostname, device_dir)
        return final

    @staticmethod
    def _outputs(device_dir: Path) -> List[Path]:
        return [device_dir / PORTS_JSON, device_dir / PORTS_XLSX, device_dir / RAW_DIR / RAW_JSON]

    @staticmethod
    def _staging(path: Path) -> Path:
        return path.with_name(path.name + STAGING_SUFFIX)

    @staticmethod
    def _restore(backups: Sequence[Tuple[Path, Path]]) -> None:
        for backup, original in backups:
            try:
                os.replace(backup, original)
            except OSError as e:
                logger.error("Could not restore %s from %s: %s", original, backup, e)

    @staticmethod
    def _discard(paths: Sequence[Path]) -> None:
        for path in paths:
            try:
                path.unlink()
            except FileNotFoundError:
                pass
            except OSError as e:
                logger.warning("Could not remove staged file %s: %s", path, e)
