"""
Plain text summary report
"""

from pathlib import Path

from ..errors import SinkError
from ..models import AggregateSnapshot, AlertKind, RunMetadata
from .eventlog import format_timestamp


NOT_AVAILABLE = "N/A"


class SummaryReporter:
    """
    Render an aggregate snapshot as the end-of-run summary.

    Output depends only on the snapshot and metadata, so rendering the
    same inputs twice gives the same text.
    """

    TITLE = "===== Network Connectivity Test Summary ====="

    def render(self, snapshot: AggregateSnapshot, metadata: RunMetadata) -> str:
        lines = [
            self.TITLE,
            f"Test period: {format_timestamp(metadata.started_at)} "
            f"to {format_timestamp(metadata.finished_at)}",
            f"Total test duration: {metadata.duration:g} seconds",
            f"Tested nodes: {' '.join(metadata.targets) or 'none'}",
            f"Tested ports: {' '.join(str(p) for p in metadata.ports) or 'none'}",
            "",
            "--- ALERTS ---",
        ]

        if snapshot.alert_messages:
            for message, count in snapshot.alert_messages:
                lines.append(f"{count:>7} {message}")
        else:
            lines.append("No alerts")

        lines += ["", "--- ALERTS BY KIND ---"]
        if snapshot.alert_counts:
            for kind in AlertKind:
                if kind in snapshot.alert_counts:
                    lines.append(f"{kind.value}: {snapshot.alert_counts[kind]}")
        else:
            lines.append("No alerts")

        lines += [
            "",
            "--- CONNECTIVITY STATISTICS ---",
            f"Probes recorded: {snapshot.total_results}",
            f"Ping failures: {snapshot.ping_failures}",
            f"Port connectivity failures: {snapshot.port_failures}",
            f"Throughput tests run: {snapshot.throughput_runs}",
            f"Throughput tests failed: {snapshot.throughput_failures}",
            "",
            "--- PER-TARGET STATISTICS ---",
        ]

        if snapshot.per_target:
            for stats in snapshot.per_target.values():
                lines.append(
                    f"{stats.address}: probes={stats.probes} "
                    f"ping_failures={stats.ping_failures} "
                    f"port_failures={stats.port_failures} "
                    f"throughput={stats.throughput_runs - stats.throughput_failures}"
                    f"/{stats.throughput_runs} "
                    f"alerts={stats.alerts} "
                    f"avg_latency_ms={self._number(stats.average_latency_ms, 3)} "
                    f"avg_throughput_mbps={self._number(stats.average_throughput_mbps, 2)}"
                )
        else:
            lines.append("No measurements")

        lines += [
            "",
            "--- AVERAGE METRICS ---",
            f"Average latency (msec): {self._number(snapshot.overall_average_latency_ms, 3)}",
            f"Average throughput (Mbps): {self._number(snapshot.overall_average_throughput_mbps, 2)}",
        ]

        if metadata.event_log_path:
            lines += ["", f"For detailed results, please check {metadata.event_log_path}"]

        return '\n'.join(lines) + '\n'

    def write(self, path: Path, snapshot: AggregateSnapshot,
              metadata: RunMetadata) -> str:
        """Render and write the report, returning the text"""
        text = self.render(snapshot, metadata)
        path = Path(path)
        try:
            path.parent.mkdir(parents=True, exist_ok=True)
            path.write_text(text, encoding='utf-8')
        except OSError as e:
            raise SinkError(f"Cannot write summary {path}: {e}") from e
        return text

    @staticmethod
    def _number(value, digits: int) -> str:
        if value is None:
            return NOT_AVAILABLE
        return f"{value:.{digits}f}"
