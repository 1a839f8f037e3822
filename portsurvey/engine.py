"""
Port Survey - Discovery Engine.

Drives one interactive session per target through a fixed command
sequence and assembles the answers into a Device.

Features:
- SSH, Telnet or serial console transport per batch
- Per-command isolation: a failing command is logged and treated as empty
- Per-target isolation: a failing target never stops the batch
- All-or-nothing persistence after a complete pipeline
- Bounded concurrency (default: one target at a time)
- Structured event emission for the console printer or other listeners
"""

import asyncio
import logging
from datetime import datetime
from typing import Callable, Iterable, List, Optional, Tuple

from .config import DiscoveryConfig
from .events import EventEmitter
from .exceptions import SessionError
from .models import (
    CommandRecord,
    Device,
    DiscoveryResult,
    InterfaceUpdate,
    Platform,
    UNKNOWN_HOSTNAME,
)
from .parsers import (
    classify_platform,
    parse_cdp_neighbors,
    parse_hostname_from_config,
    parse_hostname_from_prompt,
    parse_hostname_from_version,
    parse_interface_status,
    parse_lldp_neighbors,
    parse_mac_table,
    parse_poe,
    parse_switchport,
)
from .session import CommandResult, InteractiveSession, create_session
from .vendors import OfflineOuiResolver
from .writers import DeviceWriter

logger = logging.getLogger(__name__)

SessionFactory = Callable[[DiscoveryConfig, str], InteractiveSession]

CMD_HOSTNAME = "show run | i ^hostname"
CMD_VERSION = "show version"
CMD_INTERFACE_STATUS = "show interfaces status"
CMD_INTERFACE_DESCRIPTION = "show interface description"
CMD_CDP = "show cdp neighbors detail"
CMD_LLDP = "show lldp neighbors detail"
CMD_SWITCHPORT = "show interfaces {port} switchport"
CMD_MAC_TABLE = "show mac address-table interface {port}"
CMD_POWER_INLINE = "show power inline {port}"


class DiscoveryEngine:
    """
    Port discovery orchestrator.

    Usage:
        config = build_config(cli_overrides={"targets": "10.0.0.1,10.0.0.2"})
        engine = DiscoveryEngine(config)

        printer = ConsoleEventPrinter(verbose=True)
        engine.events.subscribe(printer.handle_event)

        result = await engine.run()
        print(f"{result.successful} ok, {result.failed} failed")
    """

    def __init__(
        self,
        config: DiscoveryConfig,
        writer: Optional[DeviceWriter] = None,
        event_emitter: Optional[EventEmitter] = None,
        session_factory: Optional[SessionFactory] = None,
    ):
        """
        Initialize discovery engine.

        Args:
            config: Validated discovery configuration
            writer: Output writer (built from config if not provided)
            event_emitter: Event sink (created if not provided)
            session_factory: Builds a session per target (create_session by default)
        """
        self.config = config
        self.writer = writer or self._default_writer(config)
        self.events = event_emitter or EventEmitter()
        self.session_factory = session_factory or create_session
        self.max_concurrent = max(1, config.max_concurrent)

    @staticmethod
    def _default_writer(config: DiscoveryConfig) -> DeviceWriter:
        vendor_lookup = None
        if config.oui_file:
            vendor_lookup = OfflineOuiResolver(config.oui_file)
        return DeviceWriter(
            config.output_dir,
            save_raw=config.save_raw,
            vendor_lookup=vendor_lookup,
        )

    # =========================================================================
    # Batch
    # =========================================================================

    async def run(self, targets: Optional[Iterable[str]] = None) -> DiscoveryResult:
        """
        Discover every target and persist the successful ones.

        Args:
            targets: Overrides the configured target list

        Returns:
            DiscoveryResult with per-target outcome
        """
        targets = list(targets) if targets is not None else self.config.target_list()
        total = len(targets)

        result = DiscoveryResult(targets=targets, started_at=datetime.now())
        self.events.batch_started(total)
        logger.info("Starting discovery of %d target(s) via %s", total, self.config.mode)

        semaphore = asyncio.Semaphore(self.max_concurrent)

        async def guarded(index: int, target: str) -> None:
            async with semaphore:
                await self._process_target(index, total, target, result)

        await asyncio.gather(*(guarded(i, t) for i, t in enumerate(targets, 1)))

        result.completed_at = datetime.now()
        self.events.batch_complete(
            success=result.successful,
            errors=result.failed,
            duration_seconds=result.duration_seconds or 0.0,
        )
        logger.info(
            "Discovery complete: %d succeeded, %d failed in %.1fs",
            result.successful, result.failed, result.duration_seconds or 0.0,
        )
        return result

    async def _process_target(
        self,
        index: int,
        total: int,
        target: str,
        result: DiscoveryResult,
    ) -> None:
        self.events.progress(f"Processing device {index}/{total}: {target}", target)
        try:
            device, commands = await self.discover_device(target)
            self.events.progress(f"Writing output for {device.hostname}", target)
            await self.writer.write(device, commands, target=target)
        except asyncio.CancelledError:
            raise
        except Exception as e:
            error = str(e) or type(e).__name__
            logger.exception("Discovery of %s failed", target)
            result.record_failure(target, error)
            self.events.target_failed(target, error)
            return

        result.record_success(target, device.hostname)
        self.events.target_complete(target, device.hostname)

    # =========================================================================
    # Single target
    # =========================================================================

    async def discover_device(self, target: str) -> Tuple[Device, List[CommandRecord]]:
        """
        Run the full command pipeline against one target.

        Session open and privilege failures propagate; individual command
        failures are recorded and treated as empty output.

        Returns:
            The populated Device and the ordered command log
        """
        session = self.session_factory(self.config, target)
        commands: List[CommandRecord] = []

        async def run(command: str) -> CommandResult:
            return await self._execute(session, target, command, commands)

        try:
            self.events.progress(f"Connecting to {target}", target)
            await session.connect()

            if self.config.enable_secret:
                self.events.progress(f"Entering privileged mode on {target}", target)
                await session.enable(self.config.enable_secret)

            # Identity
            self.events.progress(f"Identifying {target}", target)
            hostname_result = await run(CMD_HOSTNAME)
            hostname = parse_hostname_from_config(hostname_result.output)
            if not hostname:
                hostname = parse_hostname_from_prompt(
                    hostname_result.prompt or session.last_prompt or ""
                )

            version_result = await run(CMD_VERSION)
            if not hostname:
                hostname = parse_hostname_from_version(version_result.output)
            hostname = hostname or UNKNOWN_HOSTNAME

            platform = classify_platform(version_result.output)
            device = Device(hostname, platform)
            logger.info("%s is %s (%s)", target, hostname, platform.value)

            # Interface inventory
            self.events.progress(f"Collecting interfaces on {hostname}", target)
            status_command = (
                CMD_INTERFACE_DESCRIPTION if platform == Platform.SMB else CMD_INTERFACE_STATUS
            )
            status_result = await run(status_command)
            for update in parse_interface_status(status_result.output):
                device.add_or_update_interface(update)

            # Neighbors
            self.events.progress(f"Collecting neighbors on {hostname}", target)
            cdp_result = await run(CMD_CDP)
            device.add_cdp_neighbors(parse_cdp_neighbors(cdp_result.output))
            lldp_result = await run(CMD_LLDP)
            device.add_lldp_neighbors(parse_lldp_neighbors(lldp_result.output))

            # Per-port detail
            for iface in list(device.interfaces.values()):
                port = iface.port_name
                self.events.progress(f"Fetching details for {port} on {hostname}", target)

                switchport = await run(CMD_SWITCHPORT.format(port=port))
                device.add_or_update_interface(parse_switchport(switchport.output, port))

                mac_table = await run(CMD_MAC_TABLE.format(port=port))
                device.add_or_update_interface(InterfaceUpdate(
                    port_name=port,
                    mac_addresses=parse_mac_table(mac_table.output),
                ))

                poe = await run(CMD_POWER_INLINE.format(port=port))
                device.add_or_update_interface(parse_poe(poe.output, port))

            device.merge_neighbors()
            logger.info(
                "Collected %d interfaces and %d neighbors from %s",
                len(device.interfaces), device.neighbor_count, hostname,
            )
            return device, commands

        finally:
            await session.disconnect()

    async def _execute(
        self,
        session: InteractiveSession,
        target: str,
        command: str,
        commands: List[CommandRecord],
    ) -> CommandResult:
        try:
            result = await session.execute_command(command)
        except SessionError as e:
            logger.warning("Command '%s' failed on %s: %s", command, target, e)
            commands.append(CommandRecord.failed(command, str(e)))
            return CommandResult(output="", prompt="")

        commands.append(CommandRecord(command=command, output=result.output))
        return result
