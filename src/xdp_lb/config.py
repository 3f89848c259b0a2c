"""
XDP Load Balancer Configuration
"""
import json
import logging
from dataclasses import asdict, dataclass
from typing import Optional

from .errors import ConfigError

# Shared table capacities, fixed by the XDP program's map definitions
MAX_BACKENDS = 16
RING_SIZE = 256

STATS_INTERVAL = 3.0


@dataclass
class ControlPlaneConfig:
    """Launch options for the control plane (runtime state is never stored)"""
    interface: str = "lo"
    port: Optional[int] = None  # prompted for at startup when unset
    stats_interval: float = STATS_INTERVAL
    program_path: str = "lb.c"
    program_function: str = "lb_main"
    simulate: bool = False
    log_level: str = "INFO"

    def validate(self):
        """Raise ConfigError if any option is unusable"""
        if not self.interface:
            raise ConfigError("Interface name must not be empty")
        if self.port is not None:
            validate_port(self.port)
        if self.stats_interval <= 0:
            raise ConfigError(f"Stats interval must be positive, got {self.stats_interval}")
        if not isinstance(logging.getLevelName(str(self.log_level).upper()), int):
            raise ConfigError(f"Unknown log level: {self.log_level!r}")

    @classmethod
    def from_json(cls, config_path: str) -> 'ControlPlaneConfig':
        """Load configuration from JSON file"""
        try:
            with open(config_path, 'r') as f:
                data = json.load(f)
        except (OSError, ValueError) as e:
            raise ConfigError(f"Cannot read config {config_path}: {e}") from e

        try:
            config = cls(**data)
        except TypeError as e:
            raise ConfigError(f"Invalid config {config_path}: {e}") from e

        config.validate()
        return config

    def to_json(self, config_path: str):
        """Save configuration to JSON file"""
        with open(config_path, 'w') as f:
            json.dump(asdict(self), f, indent=2)


def validate_port(port: int) -> int:
    """Check that port is a usable TCP destination port"""
    if isinstance(port, bool) or not isinstance(port, int) or not 0 < port <= 0xFFFF:
        raise ConfigError(f"Invalid port: {port!r}")
    return port


def parse_port(text: str) -> int:
    """Parse an operator-typed port number"""
    try:
        port = int(text.strip())
    except (AttributeError, ValueError):
        raise ConfigError(f"Invalid port: {text!r}") from None
    return validate_port(port)


# Default configuration
DEFAULT_CONFIG = ControlPlaneConfig()
