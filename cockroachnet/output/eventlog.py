"""
Append-only text event logs
"""

import threading
import time
from datetime import datetime
from pathlib import Path
from typing import Optional, Protocol, Sequence

from ..errors import SinkError
from ..models import Alert, Cadence, ProbeKind, ProbeResult


TIMESTAMP_FORMAT = '%Y-%m-%d %H:%M:%S'

PROBE_LABELS = {
    ProbeKind.PING: "basic connectivity",
    ProbeKind.PORT_CHECK: "port connectivity",
    ProbeKind.THROUGHPUT: "network throughput",
    ProbeKind.TRACEROUTE: "network path",
    ProbeKind.SOCKET_STATS: "socket statistics",
    ProbeKind.TCP_METRICS: "TCP metrics",
    ProbeKind.PACKET_CAPTURE: "traffic capture",
}


def format_timestamp(ts: float) -> str:
    return datetime.fromtimestamp(ts).strftime(TIMESTAMP_FORMAT)


class LineSink(Protocol):
    """Anything that accepts ordered text lines"""

    def write_line(self, line: str) -> None:
        ...


class MemorySink:
    """In-memory line sink"""

    def __init__(self):
        self.lines: list[str] = []
        self._lock = threading.Lock()

    def write_line(self, line: str) -> None:
        with self._lock:
            self.lines.append(line)

    def read_lines(self) -> list[str]:
        with self._lock:
            return list(self.lines)


class EventLog:
    """
    File-backed append-only line sink.

    The file is opened on construction so an unwritable location fails
    before any probing starts.
    """

    def __init__(self, path: Path):
        self.path = Path(path)
        self._lock = threading.Lock()
        try:
            self.path.parent.mkdir(parents=True, exist_ok=True)
            self._file = open(self.path, 'a', encoding='utf-8')
        except OSError as e:
            raise SinkError(f"Cannot open log file {self.path}: {e}") from e

    def write_line(self, line: str) -> None:
        with self._lock:
            if self._file is None:
                return
            self._file.write(line.rstrip('\n') + '\n')
            self._file.flush()

    def read_lines(self) -> list[str]:
        with self._lock:
            return self.path.read_text(encoding='utf-8').splitlines()

    def close(self):
        with self._lock:
            if self._file is not None:
                self._file.close()
                self._file = None

    def __enter__(self):
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        self.close()
        return False


def run_log_paths(log_dir: Path, stamp: Optional[str] = None) -> dict[str, Path]:
    """File names for one run's logs and summary"""
    stamp = stamp or time.strftime('%Y%m%d_%H%M%S')
    log_dir = Path(log_dir)
    return {
        'events': log_dir / f"network_test_{stamp}.log",
        'ping': log_dir / f"ping_monitoring_{stamp}.log",
        'summary': log_dir / f"network_test_summary_{stamp}.txt",
        'json': log_dir / f"network_test_{stamp}.json",
    }


class EventLogWriter:
    """
    Recording channel listener that writes probe activity as text.

    Comprehensive and local probes go to the main log; continuous pings
    go to the ping log, with their alerts copied to the main log.
    """

    def __init__(self, events: LineSink, pings: Optional[LineSink] = None):
        self.events = events
        self.pings = pings or events

    def on_event(self, result: ProbeResult, alerts: Sequence[Alert]) -> None:
        ts = format_timestamp(result.finished_at)

        if result.request.cadence is Cadence.CONTINUOUS:
            self._write_ping(ts, result, alerts)
            return

        label = PROBE_LABELS[result.kind]
        if result.kind.is_local:
            self.events.write_line(f"[{ts}] Checking {label} on {result.target}...")
        else:
            self.events.write_line(
                f"[{ts}] Testing {label} from {result.source} to {result.target}...")

        if result.raw_output:
            for line in result.raw_output.rstrip('\n').splitlines():
                self.events.write_line(line)

        self.events.write_line(f"[{ts}] {self._status_line(result)}")
        for alert in alerts:
            self.events.write_line(f"[{ts}] {alert.message}")

    def _write_ping(self, ts: str, result: ProbeResult, alerts: Sequence[Alert]):
        rtt = result.metrics.get('rtt_ms')
        if result.success and rtt is not None:
            self.pings.write_line(f"[{ts}] Ping to {result.target}: {rtt}ms")
        for alert in alerts:
            line = f"[{ts}] {alert.message}"
            self.pings.write_line(line)
            if self.pings is not self.events:
                self.events.write_line(line)

    def _status_line(self, result: ProbeResult) -> str:
        target = result.target.address
        metrics = result.metrics

        if not result.success:
            reason = result.detail or (result.error.value if result.error else "failed")
            return f"{PROBE_LABELS[result.kind].capitalize()} check for {target} failed: {reason}"

        if result.kind is ProbeKind.PING:
            return f"Basic connectivity test passed for {target}"
        if result.kind is ProbeKind.PORT_CHECK:
            ports = ', '.join(k[len('port_'):] for k in metrics if k.startswith('port_'))
            return f"Port {ports} connectivity test passed for {target}"
        if result.kind is ProbeKind.THROUGHPUT:
            return (f"Throughput: {metrics['throughput_mbps']:.2f} Mbps "
                    f"from {result.source} to {target}")
        if result.kind is ProbeKind.TRACEROUTE:
            return f"Path to {target} has {int(metrics['hop_count'])} hops"
        if result.kind is ProbeKind.SOCKET_STATS:
            return ("Established connections on monitored ports: "
                    f"{int(metrics.get('established_connections', 0))}")
        if result.kind is ProbeKind.TCP_METRICS:
            count = metrics.get('retransmitted_segments')
            return f"TCP retransmitted segments: {int(count) if count is not None else 'N/A'}"
        packets = metrics.get('packets_captured')
        return f"Traffic capture completed ({int(packets) if packets is not None else 'unknown'} packets)"
