"""
Data models for CockroachNET
"""

import itertools
from dataclasses import dataclass, field
from enum import Enum
from types import MappingProxyType
from typing import Mapping, Optional


class ProbeKind(Enum):
    """Kinds of network diagnostics"""
    PING = "ping"
    PORT_CHECK = "port_check"
    THROUGHPUT = "throughput"
    TRACEROUTE = "traceroute"
    SOCKET_STATS = "socket_stats"
    TCP_METRICS = "tcp_metrics"
    PACKET_CAPTURE = "packet_capture"

    @property
    def is_local(self) -> bool:
        """True for probes that only inspect the local node"""
        return self in (ProbeKind.SOCKET_STATS, ProbeKind.TCP_METRICS,
                        ProbeKind.PACKET_CAPTURE)


class Cadence(Enum):
    """Schedule that issued a probe"""
    COMPREHENSIVE = "comprehensive"
    CONTINUOUS = "continuous"


class ErrorKind(Enum):
    """Why a probe result is not successful"""
    TIMEOUT = "timeout"
    EXECUTION = "execution"
    PARSE = "parse"


class AlertKind(Enum):
    """Alert categories"""
    UNREACHABLE = "unreachable"
    HIGH_PACKET_LOSS = "high_packet_loss"
    HIGH_LATENCY = "high_latency"
    PORT_CLOSED = "port_closed"
    THROUGHPUT_FAILED = "throughput_failed"
    HIGH_RETRANSMISSION = "high_retransmission"
    PATH_TIMEOUT = "path_timeout"


@dataclass(frozen=True)
class Target:
    """A node to probe"""
    address: str
    ports: tuple[int, ...] = ()

    def __str__(self) -> str:
        return self.address


@dataclass(frozen=True)
class Thresholds:
    """Alert thresholds, read-only after start"""
    latency_ms: float = 100.0
    packet_loss_percent: float = 1.0
    retransmission_count: int = 100


_request_ids = itertools.count(1)


def next_request_id() -> int:
    return next(_request_ids)


@dataclass(frozen=True)
class ProbeRequest:
    """A single probe dispatch. Never reused."""
    kind: ProbeKind
    target: Target
    issued_at: float
    timeout: Optional[float] = None
    cadence: Cadence = Cadence.COMPREHENSIVE
    request_id: int = field(default_factory=next_request_id)

    @property
    def single_shot(self) -> bool:
        return self.kind is ProbeKind.PING and self.cadence is Cadence.CONTINUOUS


@dataclass(frozen=True)
class ProbeResult:
    """Outcome of one ProbeRequest"""
    request: ProbeRequest
    success: bool
    raw_output: str = ""
    metrics: Mapping[str, float] = field(default_factory=dict)
    error: Optional[ErrorKind] = None
    finished_at: float = 0.0
    source: str = ""
    detail: Optional[str] = None

    def __post_init__(self):
        object.__setattr__(self, 'metrics', MappingProxyType(dict(self.metrics)))

    @property
    def kind(self) -> ProbeKind:
        return self.request.kind

    @property
    def target(self) -> Target:
        return self.request.target

    @property
    def latency_ms(self) -> Optional[float]:
        """Round-trip time carried by a ping result, if any"""
        if self.kind is not ProbeKind.PING:
            return None
        if 'rtt_ms' in self.metrics:
            return self.metrics['rtt_ms']
        return self.metrics.get('avg_rtt_ms')


@dataclass(frozen=True)
class Alert:
    """Threshold breach or failure event"""
    timestamp: float
    target: Target
    kind: AlertKind
    detail: str
    measured_value: Optional[float] = None
    source: str = ""
    port: Optional[int] = None

    @property
    def message(self) -> str:
        return f"ALERT: {self.detail}"


@dataclass(frozen=True)
class TimeWindow:
    """Inclusive time range in epoch seconds"""
    start: float
    end: float

    def contains(self, ts: float) -> bool:
        return self.start <= ts <= self.end


@dataclass(frozen=True)
class TargetStats:
    """Per-target statistics over a window"""
    address: str
    probes: int = 0
    ping_failures: int = 0
    port_failures: int = 0
    throughput_runs: int = 0
    throughput_failures: int = 0
    alerts: int = 0
    average_latency_ms: Optional[float] = None
    average_throughput_mbps: Optional[float] = None


@dataclass(frozen=True)
class AggregateSnapshot:
    """Point-in-time aggregate of the event log"""
    window_start: Optional[float]
    window_end: Optional[float]
    per_target: Mapping[Target, TargetStats] = field(default_factory=dict)
    alert_counts: Mapping[AlertKind, int] = field(default_factory=dict)
    alert_messages: tuple[tuple[str, int], ...] = ()
    overall_average_latency_ms: Optional[float] = None
    overall_average_throughput_mbps: Optional[float] = None
    total_results: int = 0
    total_alerts: int = 0

    @property
    def ping_failures(self) -> int:
        return sum(s.ping_failures for s in self.per_target.values())

    @property
    def port_failures(self) -> int:
        return sum(s.port_failures for s in self.per_target.values())

    @property
    def throughput_runs(self) -> int:
        return sum(s.throughput_runs for s in self.per_target.values())

    @property
    def throughput_failures(self) -> int:
        return sum(s.throughput_failures for s in self.per_target.values())


@dataclass(frozen=True)
class RunMetadata:
    """Run information the summary report needs besides the snapshot"""
    started_at: float
    finished_at: float
    duration: float
    targets: tuple[str, ...] = ()
    ports: tuple[int, ...] = ()
    event_log_path: Optional[str] = None
    ping_log_path: Optional[str] = None
