"""
Rich console output for CockroachNET - live per-probe lines and summary
"""

from typing import Optional, Sequence

from rich import box
from rich.console import Console
from rich.panel import Panel
from rich.table import Table
from rich.text import Text

from .. import __version__
from ..config import RunConfig
from ..models import AggregateSnapshot, Alert, Cadence, ProbeKind, ProbeResult


KIND_LABELS = {
    ProbeKind.PING: 'ping',
    ProbeKind.PORT_CHECK: 'ports',
    ProbeKind.THROUGHPUT: 'iperf3',
    ProbeKind.TRACEROUTE: 'trace',
    ProbeKind.SOCKET_STATS: 'ss',
    ProbeKind.TCP_METRICS: 'netstat',
    ProbeKind.PACKET_CAPTURE: 'tcpdump',
}


class ConsoleOutput:
    """
    Rich console output for a test run.

    Features:
    - Run header panel
    - One line per recorded probe, alerts highlighted
    - Summary panel with alert histogram and averages
    """

    def __init__(self, console: Optional[Console] = None, show_pings: bool = False):
        self.console = console or Console()
        self.show_pings = show_pings

    def print_header(self, config: RunConfig, event_log: Optional[str] = None):
        """Print run header"""
        content = Text()
        content.append("CockroachNET", style="bold cyan")
        content.append(f" v{__version__}\n", style="dim")
        content.append("Nodes: ", style="dim")
        content.append(', '.join(config.addresses), style="bold")
        content.append("\n")
        content.append(f"Ports: {', '.join(str(p) for p in config.ports)}", style="dim")
        content.append(f"  |  Duration: {config.duration:g}s", style="dim")
        content.append(f"  |  Interval: {config.interval:g}s / ping {config.ping_interval:g}s",
                       style="dim")
        content.append("\n")
        content.append(
            f"Thresholds: latency > {config.thresholds.latency_ms:g} ms, "
            f"loss > {config.thresholds.packet_loss_percent:g}%",
            style="dim",
        )
        if event_log:
            content.append(f"\nLog: {event_log}", style="dim")

        self.console.print(Panel(content, border_style="cyan", padding=(0, 1)))
        self.console.print()

    def on_event(self, result: ProbeResult, alerts: Sequence[Alert]):
        """Recording channel listener: print one line per result"""
        if result.request.cadence is Cadence.CONTINUOUS and result.success and not alerts:
            if not self.show_pings:
                return

        line = Text()
        line.append(f"{KIND_LABELS[result.kind]:<8} ", style="bold magenta")
        line.append(f"{result.target.address:<16} ")
        if result.success:
            line.append("ok    ", style="green")
        else:
            line.append("FAIL  ", style="bold red")
        line.append(self._format_metrics(result), style="dim")
        self.console.print(line)

        for alert in alerts:
            self.console.print(f"  [bold red]ALERT:[/] {alert.detail}")

    def print_summary(self, snapshot: AggregateSnapshot):
        """Print summary panel"""
        table = Table(
            show_header=True,
            header_style="bold magenta",
            box=box.ROUNDED,
            border_style="dim",
            padding=(0, 1),
        )
        table.add_column("Node", width=16)
        table.add_column("Probes", justify="right")
        table.add_column("Ping fail", justify="right")
        table.add_column("Port fail", justify="right")
        table.add_column("Throughput", justify="right")
        table.add_column("Avg RTT", justify="right")
        table.add_column("Alerts", justify="right")

        for stats in snapshot.per_target.values():
            table.add_row(
                stats.address,
                str(stats.probes),
                str(stats.ping_failures),
                str(stats.port_failures),
                self._format_mbps(stats.average_throughput_mbps),
                self._format_ms(stats.average_latency_ms),
                str(stats.alerts),
            )

        content = Text()
        if snapshot.alert_messages:
            for message, count in snapshot.alert_messages:
                content.append(f"{count:>4}x ", style="bold red")
                content.append(f"{message}\n")
        else:
            content.append("No alerts\n", style="green")
        content.append("Average latency: ", style="bold")
        content.append(self._format_ms(snapshot.overall_average_latency_ms))
        content.append("\nAverage throughput: ", style="bold")
        content.append(self._format_mbps(snapshot.overall_average_throughput_mbps))

        self.console.print()
        if snapshot.per_target:
            self.console.print(table)
        self.console.print(Panel(
            content,
            title=Text("Summary", style="bold"),
            border_style="red" if snapshot.total_alerts else "green",
            padding=(0, 1),
        ))

    def print_error(self, message: str):
        """Print error message"""
        self.console.print(f"[bold red]Error:[/] {message}")

    def print_warning(self, message: str):
        """Print warning message"""
        self.console.print(f"[yellow]Warning:[/] {message}")

    def _format_metrics(self, result: ProbeResult) -> str:
        m = result.metrics
        if not result.success and result.detail:
            return result.detail
        if result.kind is ProbeKind.PING:
            if 'rtt_ms' in m:
                return f"{m['rtt_ms']:.1f} ms"
            parts = []
            if 'packet_loss_percent' in m:
                parts.append(f"loss {int(m['packet_loss_percent'])}%")
            if 'avg_rtt_ms' in m:
                parts.append(f"avg {m['avg_rtt_ms']:.1f} ms")
            return ', '.join(parts)
        if result.kind is ProbeKind.PORT_CHECK:
            return ' '.join(
                f"{k[len('port_'):]}:{'open' if v else 'closed'}"
                for k, v in m.items() if k.startswith('port_'))
        if result.kind is ProbeKind.THROUGHPUT:
            return self._format_mbps(m.get('throughput_mbps'))
        if result.kind is ProbeKind.TRACEROUTE and 'hop_count' in m:
            return f"{int(m['hop_count'])} hops, {int(m.get('timeout_hops', 0))} timed out"
        if result.kind is ProbeKind.SOCKET_STATS:
            return f"{int(m.get('established_connections', 0))} established"
        if result.kind is ProbeKind.TCP_METRICS and 'retransmitted_segments' in m:
            return f"{int(m['retransmitted_segments'])} retransmitted"
        if result.kind is ProbeKind.PACKET_CAPTURE and 'packets_captured' in m:
            return f"{int(m['packets_captured'])} packets"
        return ""

    @staticmethod
    def _format_ms(value: Optional[float]) -> str:
        return f"{value:.1f} ms" if value is not None else "N/A"

    @staticmethod
    def _format_mbps(value: Optional[float]) -> str:
        return f"{value:.2f} Mbps" if value is not None else "-"
