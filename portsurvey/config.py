"""
Port Survey - Configuration.

Settings are layered, lowest to highest precedence:

    dataclass defaults -> YAML file (--yaml) -> environment -> CLI flags

Example YAML:

    mode: ssh
    targets: 10.0.0.1, 10.0.0.2:2222
    username: admin
    timeout: 30
    output_dir: ./output
    save_raw: true
"""

import logging
import os
from dataclasses import asdict, dataclass
from pathlib import Path
from typing import Any, Dict, List, Mapping, Optional, Tuple

import yaml

from .exceptions import ConfigError

logger = logging.getLogger(__name__)

MODES = ("ssh", "telnet", "serial")
DEFAULT_PORTS = {"ssh": 22, "telnet": 23}

ENV_VARS = {
    'username': 'PS_USERNAME',
    'password': 'PS_PASSWORD',
    'enable_secret': 'PS_ENABLE_SECRET',
}

SECRET_FIELDS = ('password', 'enable_secret')


@dataclass
class DiscoveryConfig:
    """Everything one discovery batch needs."""
    mode: str = "ssh"
    targets: Optional[str] = None                # "host, host:port, ..."
    serial_port: Optional[str] = None            # e.g. /dev/ttyUSB0, COM3
    baud_rate: int = 9600
    port: Optional[int] = None                   # None -> 22 / 23 by mode

    username: Optional[str] = None
    password: Optional[str] = None
    enable_secret: Optional[str] = None

    timeout: float = 20.0
    quiet_period: float = 0.4
    legacy_ssh: bool = False
    key_file: Optional[str] = None
    max_concurrent: int = 1

    output_dir: str = "./output"
    save_raw: bool = False
    oui_file: Optional[str] = None
    verbose: bool = False

    def __repr__(self) -> str:
        shown = {
            k: ('********' if k in SECRET_FIELDS and v else v)
            for k, v in asdict(self).items()
        }
        args = ", ".join(f"{k}={v!r}" for k, v in shown.items())
        return f"DiscoveryConfig({args})"

    def merged(self, overrides: Mapping[str, Any]) -> 'DiscoveryConfig':
        """Return a copy with every non-None override applied."""
        values = asdict(self)
        known = set(values)
        for key, value in overrides.items():
            if value is None:
                continue
            if key not in known:
                logger.warning("Ignoring unknown configuration key: %s", key)
                continue
            values[key] = value
        return DiscoveryConfig(**values)

    @property
    def default_port(self) -> Optional[int]:
        return self.port or DEFAULT_PORTS.get(self.mode)

    def target_list(self) -> List[str]:
        """Comma separated hosts, or the serial device in serial mode."""
        if self.mode == "serial":
            return [self.serial_port] if self.serial_port else []
        if not self.targets:
            return []
        if isinstance(self.targets, (list, tuple)):
            items = self.targets
        else:
            items = str(self.targets).split(',')
        return [t.strip() for t in items if str(t).strip()]

    def split_target(self, target: str) -> Tuple[str, int]:
        """'host' or 'host:port' -> (host, port)."""
        host, sep, port = target.rpartition(':')
        # Bare IPv6 addresses contain colons but no port
        if sep and host and port.isdigit() and ':' not in host:
            return host, int(port)
        return target, self.default_port

    def validate(self) -> None:
        if self.mode not in MODES:
            raise ConfigError(f"Unknown mode '{self.mode}', expected one of: {', '.join(MODES)}")
        if self.mode == "serial":
            if not self.serial_port:
                raise ConfigError("Serial mode requires a serial port (--serial-port)")
        elif not self.target_list():
            raise ConfigError(f"{self.mode.upper()} mode requires at least one target (--targets)")
        if self.timeout <= 0:
            raise ConfigError(f"Timeout must be positive, got {self.timeout}")
        if self.quiet_period <= 0:
            raise ConfigError(f"Quiet period must be positive, got {self.quiet_period}")
        if self.max_concurrent < 1:
            raise ConfigError(f"Concurrency must be at least 1, got {self.max_concurrent}")
        if self.baud_rate <= 0:
            raise ConfigError(f"Baud rate must be positive, got {self.baud_rate}")


def load_yaml_config(yaml_path: Path) -> Dict[str, Any]:
    try:
        with open(yaml_path) as f:
            data = yaml.safe_load(f) or {}
    except OSError as e:
        raise ConfigError(f"Cannot read config file {yaml_path}: {e}") from e
    except yaml.YAMLError as e:
        raise ConfigError(f"Invalid YAML in {yaml_path}: {e}") from e

    if not isinstance(data, dict):
        raise ConfigError(f"Config file {yaml_path} must contain a mapping")

    if isinstance(data.get('targets'), list):
        data['targets'] = ','.join(str(t) for t in data['targets'])
    if 'output_dir' in data:
        data['output_dir'] = str(Path(data['output_dir']).expanduser())
    if 'mode' in data and isinstance(data['mode'], str):
        data['mode'] = data['mode'].lower()
    return data


def get_credentials_from_env(environ: Optional[Mapping[str, str]] = None) -> Dict[str, str]:
    """Credentials from PS_* environment variables; unset ones are omitted."""
    environ = os.environ if environ is None else environ
    return {
        key: environ[var]
        for key, var in ENV_VARS.items()
        if environ.get(var)
    }


def build_config(
    yaml_path: Optional[Path] = None,
    cli_overrides: Optional[Mapping[str, Any]] = None,
    environ: Optional[Mapping[str, str]] = None,
) -> DiscoveryConfig:
    """Layer defaults, YAML, environment and CLI flags into one config."""
    config = DiscoveryConfig()
    if yaml_path:
        config = config.merged(load_yaml_config(yaml_path))
        logger.debug("Loaded configuration from %s", yaml_path)
    config = config.merged(get_credentials_from_env(environ))
    if cli_overrides:
        config = config.merged(cli_overrides)
    return config
