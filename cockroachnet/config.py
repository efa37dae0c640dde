"""
Run configuration
"""

from dataclasses import dataclass, field
from pathlib import Path
from typing import Iterable, Optional, Union

from .errors import ConfigurationError
from .models import Target, Thresholds


DEFAULT_PORTS = (8080,)
DEFAULT_TEST_DURATION = 3600  # seconds
DEFAULT_LOG_DIR = Path('/var/log/CockroachNET-tests')
DEFAULT_INTERVAL = 60  # seconds
DEFAULT_PING_INTERVAL = 5  # seconds
DEFAULT_LATENCY_THRESHOLD_MS = 100.0
DEFAULT_PACKET_LOSS_THRESHOLD = 1.0
DEFAULT_RETRANSMISSION_THRESHOLD = 100
DEFAULT_CAPTURE_SECONDS = 30


def split_list(value: Union[str, Iterable[str], None]) -> list[str]:
    """Split a comma separated option (or several of them) into items"""
    if value is None:
        return []
    if isinstance(value, str):
        value = [value]
    items = []
    for chunk in value:
        items.extend(part.strip() for part in chunk.split(','))
    return [item for item in items if item]


def parse_ports(value: Union[str, Iterable, None]) -> tuple[int, ...]:
    """Parse and validate a port list, keeping order and dropping duplicates"""
    if value is None:
        return DEFAULT_PORTS

    raw = split_list(value) if isinstance(value, str) else list(value)
    ports: list[int] = []
    for item in raw:
        try:
            port = int(str(item).strip())
        except ValueError:
            raise ConfigurationError(f"Invalid port '{item}'")
        if not 1 <= port <= 65535:
            raise ConfigurationError(f"Port out of range (1-65535): {port}")
        if port not in ports:
            ports.append(port)
    if not ports:
        raise ConfigurationError("No ports specified")
    return tuple(ports)


@dataclass(frozen=True)
class RunConfig:
    """
    Immutable configuration for one test run.

    Built once at startup and shared read-only by every component.
    """
    targets: tuple[Target, ...]
    ports: tuple[int, ...] = DEFAULT_PORTS
    duration: float = DEFAULT_TEST_DURATION
    log_dir: Path = DEFAULT_LOG_DIR
    interval: float = DEFAULT_INTERVAL
    ping_interval: float = DEFAULT_PING_INTERVAL
    thresholds: Thresholds = field(default_factory=Thresholds)
    capture_seconds: float = DEFAULT_CAPTURE_SECONDS
    json_path: Optional[Path] = None

    def __post_init__(self):
        self.validate()

    def validate(self):
        """Raise ConfigurationError if the configuration cannot be run"""
        if not self.targets:
            raise ConfigurationError(
                "No target nodes specified. Use --nodes option."
            )

        addresses = [t.address for t in self.targets]
        if len(set(addresses)) != len(addresses):
            raise ConfigurationError("Target addresses must be unique")

        if not self.ports:
            raise ConfigurationError("No ports specified")

        for name in ('duration', 'interval', 'ping_interval'):
            if getattr(self, name) <= 0:
                raise ConfigurationError(f"{name} must be positive")

        if self.capture_seconds < 0:
            raise ConfigurationError("capture_seconds must not be negative")

        if self.thresholds.latency_ms < 0:
            raise ConfigurationError("Latency threshold must not be negative")

        if not 0 <= self.thresholds.packet_loss_percent <= 100:
            raise ConfigurationError("Packet loss threshold must be within 0-100")

    @property
    def addresses(self) -> tuple[str, ...]:
        return tuple(t.address for t in self.targets)

    @classmethod
    def from_options(
        cls,
        nodes: Union[str, Iterable[str], None],
        ports: Union[str, Iterable, None] = None,
        duration: float = DEFAULT_TEST_DURATION,
        log_dir: Union[str, Path] = DEFAULT_LOG_DIR,
        interval: float = DEFAULT_INTERVAL,
        ping_interval: float = DEFAULT_PING_INTERVAL,
        latency_threshold: float = DEFAULT_LATENCY_THRESHOLD_MS,
        loss_threshold: float = DEFAULT_PACKET_LOSS_THRESHOLD,
        capture_seconds: float = DEFAULT_CAPTURE_SECONDS,
        json_path: Union[str, Path, None] = None,
    ) -> 'RunConfig':
        """
        Build a config from raw command line values.

        Args:
            nodes: Comma separated node addresses (required)
            ports: Comma separated ports (default: 8080)

        Raises:
            ConfigurationError: On any invalid value
        """
        addresses: list[str] = []
        for address in split_list(nodes):
            if address not in addresses:
                addresses.append(address)

        port_list = parse_ports(ports)
        targets = tuple(Target(address=a, ports=port_list) for a in addresses)

        thresholds = Thresholds(
            latency_ms=float(latency_threshold),
            packet_loss_percent=float(loss_threshold),
            retransmission_count=DEFAULT_RETRANSMISSION_THRESHOLD,
        )

        return cls(
            targets=targets,
            ports=port_list,
            duration=duration,
            log_dir=Path(log_dir),
            interval=interval,
            ping_interval=ping_interval,
            thresholds=thresholds,
            capture_seconds=capture_seconds,
            json_path=Path(json_path) if json_path else None,
        )
