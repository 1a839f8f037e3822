#!/usr/bin/env python3
"""
Port Survey - Command line interface.

Usage:
    # SSH to two switches, enable with a secret
    port-survey --targets 10.0.0.1,10.0.0.2 --username admin --enable-secret s3cret

    # Telnet on a non-standard port, keep the raw command log
    port-survey --mode telnet --targets 10.0.0.5:2323 --save-raw

    # Console cable
    port-survey --mode serial --serial-port /dev/ttyUSB0 --baud-rate 9600

    # Settings from a file, password from PS_PASSWORD
    port-survey --yaml survey.yaml -v --timestamps

Exit status: 0 when every target succeeded, 1 when any failed, 2 on a
configuration error.
"""

import argparse
import asyncio
import getpass
import json
import logging
import sys
from datetime import datetime
from pathlib import Path
from typing import List, Optional

from .config import MODES, DiscoveryConfig, build_config
from .engine import DiscoveryEngine
from .events import ConsoleEventPrinter, EventEmitter
from .exceptions import ConfigError
from .models import DiscoveryResult

logger = logging.getLogger(__name__)

LOG_FORMAT = '%(asctime)s [%(levelname)s] %(name)s: %(message)s'

EXIT_OK = 0
EXIT_TARGET_FAILED = 1
EXIT_CONFIG_ERROR = 2


def create_parser() -> argparse.ArgumentParser:
    """Create argument parser."""
    parser = argparse.ArgumentParser(
        prog='port-survey',
        description='Switch port and neighbor discovery over SSH, Telnet or serial console',
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="Credentials can also come from PS_USERNAME, PS_PASSWORD and PS_ENABLE_SECRET.",
    )

    parser.add_argument('--yaml', type=Path, help='YAML config file')

    conn = parser.add_argument_group('connection')
    conn.add_argument('--mode', choices=MODES, type=str.lower, help='Transport (default: ssh)')
    conn.add_argument('--targets', help='Comma separated hosts, host or host:port')
    conn.add_argument('--serial-port', help='Serial device for serial mode (e.g. /dev/ttyUSB0, COM3)')
    conn.add_argument('--baud-rate', type=int, help='Serial baud rate (default: 9600)')
    conn.add_argument('--port', type=int, help='TCP port (default: 22 for SSH, 23 for Telnet)')
    conn.add_argument('--timeout', type=float, help='Connection and command timeout in seconds (default: 20)')
    conn.add_argument('--legacy-ssh', action='store_true', default=None,
                      help='Allow legacy ssh-rsa signatures for old devices')
    conn.add_argument('--key-file', help='SSH private key file')
    conn.add_argument('--concurrency', dest='max_concurrent', type=int,
                      help='Targets processed in parallel (default: 1)')

    creds = parser.add_argument_group('credentials')
    creds.add_argument('--username', help='Login username')
    creds.add_argument('--password', help='Login password (prompted when missing)')
    creds.add_argument('--enable-secret', help='Enable secret for privileged mode')

    out = parser.add_argument_group('output')
    out.add_argument('--output-dir', help='Output directory (default: ./output)')
    out.add_argument('--save-raw', action='store_true', default=None,
                     help='Also write raw/commands.json per device')
    out.add_argument('--oui-file', help='IEEE oui.txt for MAC vendor names')
    out.add_argument('-v', '--verbose', action='store_true', default=None, help='Debug logging')
    out.add_argument('--no-color', action='store_true', help='Disable colored output')
    out.add_argument('--timestamps', action='store_true', help='Show timestamps on events')

    return parser


def setup_logging(verbose: bool, output_dir: str) -> Path:
    """Console logging plus a per-run log file. Returns the run directory."""
    level = logging.DEBUG if verbose else logging.INFO
    logging.basicConfig(level=level, format=LOG_FORMAT)

    timestamp = datetime.now().strftime("%Y%m%d_%H%M%S")
    session_dir = Path(output_dir) / f"session-{timestamp}"
    session_dir.mkdir(parents=True, exist_ok=True)

    file_handler = logging.FileHandler(session_dir / 'session.log', encoding='utf-8')
    file_handler.setLevel(level)
    file_handler.setFormatter(logging.Formatter(LOG_FORMAT))
    logging.getLogger().addHandler(file_handler)

    # paramiko is chatty at DEBUG
    logging.getLogger('paramiko').setLevel(logging.INFO if verbose else logging.WARNING)
    return session_dir


def print_summary(result: DiscoveryResult) -> None:
    print(f"Targets: {result.total_attempted}")
    for target, hostname in result.hostnames.items():
        print(f"  OK      {target} -> {hostname}")
    for target, error in result.errors.items():
        print(f"  FAILED  {target}: {error}")


async def run_discovery(config: DiscoveryConfig, args: argparse.Namespace) -> DiscoveryResult:
    emitter = EventEmitter()
    printer = ConsoleEventPrinter(
        verbose=config.verbose,
        color=not args.no_color,
        show_timestamps=args.timestamps,
    )
    emitter.subscribe(printer.handle_event)

    engine = DiscoveryEngine(config, event_emitter=emitter)
    try:
        return await engine.run()
    finally:
        emitter.clear()


def main(argv: Optional[List[str]] = None) -> int:
    """Main entry point."""
    parser = create_parser()
    args = parser.parse_args(argv)

    overrides = {
        k: v for k, v in vars(args).items()
        if k not in ('yaml', 'no_color', 'timestamps')
    }
    try:
        config = build_config(args.yaml, overrides)
        config.validate()
    except ConfigError as e:
        print(f"ERROR: {e}", file=sys.stderr)
        return EXIT_CONFIG_ERROR

    if config.mode != 'serial' and not config.password:
        config.password = getpass.getpass(f"Password for {config.username or 'device'}: ")

    session_dir = setup_logging(config.verbose, config.output_dir)
    logger.debug("Configuration: %r", config)

    try:
        result = asyncio.run(run_discovery(config, args))
    except KeyboardInterrupt:
        print("\nInterrupted")
        return EXIT_TARGET_FAILED

    summary_file = session_dir / 'summary.json'
    with open(summary_file, 'w') as f:
        json.dump(result.to_dict(), f, indent=2)

    print_summary(result)
    print(f"\nLog and summary saved to: {session_dir}")

    return EXIT_OK if result.failed == 0 else EXIT_TARGET_FAILED


if __name__ == '__main__':
    sys.exit(main())
