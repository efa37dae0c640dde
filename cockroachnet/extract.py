"""
Metric extraction from raw diagnostic output

Every parser is a pure function of the text it is given. Missing or
malformed fields are omitted from the returned mapping; ParseFailure is
raised only when a probe produced none of the fields it must have.
"""

import re
from typing import Callable, Iterable, Optional

from .errors import ParseFailure
from .models import ProbeKind


PACKET_LOSS_RE = re.compile(r'(\d+)(?:\.\d+)?% packet loss')
RTT_SUMMARY_RE = re.compile(r'min/avg/max(?:/\w+)?\s*=\s*([^/\s]+)/([^/\s]+)/')
SINGLE_RTT_RE = re.compile(r'time[=<]\s*([0-9.]+)')
BITS_PER_SECOND_RE = re.compile(r'"bits_per_second":\s*([0-9.]+(?:[eE][-+]?[0-9]+)?)')
HOP_LINE_RE = re.compile(r'^[ \t]*(\d+)[ \t]+(.*)$', re.MULTILINE)
TIMEOUT_HOP_RE = re.compile(r'^(\*\s*)+$')
RETRANSMIT_RE = re.compile(r'(\d+) segments retransmit+ed')
CAPTURED_RE = re.compile(r'(\d+) packets captured')

PORT_OPEN_RE = re.compile(r'succeeded|\bopen\b|Connected to', re.IGNORECASE)
PORT_CLOSED_RE = re.compile(r'refused|timed out|failed|No route', re.IGNORECASE)


def _to_float(value: str) -> Optional[float]:
    try:
        return float(value)
    except (TypeError, ValueError):
        return None


def parse_ping(output: str) -> dict[str, float]:
    """Packet loss (integer percent) and average RTT from a batch ping"""
    metrics: dict[str, float] = {}

    loss = PACKET_LOSS_RE.search(output)
    if loss:
        metrics['packet_loss_percent'] = int(loss.group(1))

    rtt = RTT_SUMMARY_RE.search(output)
    if rtt:
        avg = _to_float(rtt.group(2))
        if avg is not None:
            metrics['avg_rtt_ms'] = avg

    if not metrics:
        raise ParseFailure("No packet loss or rtt summary in ping output")
    return metrics


def parse_single_ping(output: str) -> dict[str, float]:
    """Round-trip time of a single echo reply"""
    match = SINGLE_RTT_RE.search(output)
    rtt = _to_float(match.group(1)) if match else None
    if rtt is None:
        raise ParseFailure("No reply time in ping output")
    return {'rtt_ms': rtt}


def parse_port_check(output: str, exit_status: int = 0) -> bool:
    """True if a single port connect attempt succeeded"""
    if PORT_CLOSED_RE.search(output):
        return False
    if PORT_OPEN_RE.search(output):
        return True
    return exit_status == 0


def summarize_ports(states: Iterable[tuple[int, bool]]) -> dict[str, float]:
    """
    Combine per-port connect results.

    Args:
        states: (port, connected) pairs in probe order

    Returns:
        port_<n> flags, ports_checked and failed_port (first refused port)
    """
    metrics: dict[str, float] = {}
    checked = 0
    for port, connected in states:
        checked += 1
        metrics[f'port_{port}'] = 1.0 if connected else 0.0
        if not connected and 'failed_port' not in metrics:
            metrics['failed_port'] = port
    metrics['ports_checked'] = checked
    return metrics


def parse_throughput(output: str) -> dict[str, float]:
    """Bits per second (last reported value) and Mbps at full precision"""
    values = BITS_PER_SECOND_RE.findall(output)
    bps = _to_float(values[-1]) if values else None
    if bps is None:
        raise ParseFailure("No bits_per_second in iperf3 output")
    return {
        'throughput_bps': bps,
        'throughput_mbps': bps / 1_000_000,
    }


def parse_traceroute(output: str) -> dict[str, float]:
    """Hop count and number of hops where every probe timed out"""
    hops = 0
    timeouts = 0
    for match in HOP_LINE_RE.finditer(output):
        hops += 1
        if TIMEOUT_HOP_RE.match(match.group(2).strip()):
            timeouts += 1

    if hops == 0:
        raise ParseFailure("No hop lines in traceroute output")
    return {'hop_count': hops, 'timeout_hops': timeouts}


def parse_socket_stats(output: str, ports: Iterable[int] = ()) -> dict[str, float]:
    """Established connections touching any of the given ports"""
    patterns = [re.compile(rf':{int(p)}\b') for p in ports]
    count = 0
    for line in output.splitlines():
        if 'ESTAB' not in line:
            continue
        if any(p.search(line) for p in patterns):
            count += 1
    return {'established_connections': count}


def parse_tcp_metrics(output: str) -> dict[str, float]:
    match = RETRANSMIT_RE.search(output)
    if not match:
        return {}
    return {'retransmitted_segments': int(match.group(1))}


def parse_packet_capture(output: str) -> dict[str, float]:
    match = CAPTURED_RE.search(output)
    if not match:
        return {}
    return {'packets_captured': int(match.group(1))}


EXTRACTORS: dict[ProbeKind, Callable[[str], dict[str, float]]] = {
    ProbeKind.PING: parse_ping,
    ProbeKind.THROUGHPUT: parse_throughput,
    ProbeKind.TRACEROUTE: parse_traceroute,
    ProbeKind.TCP_METRICS: parse_tcp_metrics,
    ProbeKind.PACKET_CAPTURE: parse_packet_capture,
}


def extract(
    kind: ProbeKind,
    output: str,
    *,
    single_shot: bool = False,
    ports: Iterable[int] = (),
    exit_status: int = 0,
) -> dict[str, float]:
    """
    Turn raw probe output into a metrics mapping.

    Args:
        kind: Probe kind that produced the output
        output: Raw text output
        single_shot: Ping output of a single echo (continuous cadence)
        ports: Port set for socket statistics, or the probed port for
            a single port check
        exit_status: Exit status of the diagnostic

    Raises:
        ParseFailure: Required fields are missing
    """
    output = output or ''

    if kind is ProbeKind.PING and single_shot:
        return parse_single_ping(output)

    if kind is ProbeKind.PORT_CHECK:
        port_list = list(ports)
        if len(port_list) != 1:
            raise ParseFailure("Port check output covers exactly one port")
        connected = parse_port_check(output, exit_status)
        return summarize_ports([(port_list[0], connected)])

    if kind is ProbeKind.SOCKET_STATS:
        return parse_socket_stats(output, ports)

    extractor = EXTRACTORS.get(kind)
    if extractor is None:
        raise ParseFailure(f"No extractor for probe kind '{kind.value}'")
    return extractor(output)
