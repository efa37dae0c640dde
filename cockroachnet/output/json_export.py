"""
JSON export for CockroachNET
"""

import json
from datetime import datetime
from pathlib import Path
from typing import Optional

from .. import __version__
from ..errors import SinkError
from ..models import AggregateSnapshot, RunMetadata, TargetStats


class JsonExporter:
    """
    Export a run snapshot to JSON.

    Output format is designed to be both human-readable
    and machine-parseable.
    """

    def export(self, snapshot: AggregateSnapshot, metadata: RunMetadata,
               output_path: Optional[Path] = None) -> dict:
        """
        Export snapshot to JSON.

        Args:
            snapshot: Aggregate snapshot of the run
            metadata: Run metadata
            output_path: Optional file path to write

        Returns:
            JSON-serializable dict
        """
        average = snapshot.overall_average_latency_ms
        data = {
            "meta": {
                "version": __version__,
                "generator": "CockroachNET",
                "generated_at": datetime.now().isoformat(),
            },
            "run": {
                "started_at": datetime.fromtimestamp(metadata.started_at).isoformat(),
                "finished_at": datetime.fromtimestamp(metadata.finished_at).isoformat(),
                "duration_s": metadata.duration,
                "nodes": list(metadata.targets),
                "ports": list(metadata.ports),
                "event_log": metadata.event_log_path,
                "ping_log": metadata.ping_log_path,
            },
            "window": {
                "start": snapshot.window_start,
                "end": snapshot.window_end,
            },
            "totals": {
                "results": snapshot.total_results,
                "alerts": snapshot.total_alerts,
                "ping_failures": snapshot.ping_failures,
                "port_failures": snapshot.port_failures,
                "throughput_runs": snapshot.throughput_runs,
                "throughput_failures": snapshot.throughput_failures,
                "avg_latency_ms": round(average, 3) if average is not None else None,
                "avg_throughput_mbps": (round(snapshot.overall_average_throughput_mbps, 2)
                                        if snapshot.overall_average_throughput_mbps is not None
                                        else None),
            },
            "alerts_by_kind": {
                kind.value: count for kind, count in snapshot.alert_counts.items()
            },
            "alerts": [
                {"message": message, "count": count}
                for message, count in snapshot.alert_messages
            ],
            "targets": [self._serialize_stats(s) for s in snapshot.per_target.values()],
        }

        if output_path:
            self._write_file(data, output_path)

        return data

    def _serialize_stats(self, stats: TargetStats) -> dict:
        """Serialize one target's statistics"""
        return {
            "address": stats.address,
            "probes": stats.probes,
            "ping_failures": stats.ping_failures,
            "port_failures": stats.port_failures,
            "throughput_runs": stats.throughput_runs,
            "throughput_failures": stats.throughput_failures,
            "alerts": stats.alerts,
            "avg_latency_ms": (round(stats.average_latency_ms, 3)
                               if stats.average_latency_ms is not None else None),
            "avg_throughput_mbps": (round(stats.average_throughput_mbps, 2)
                                    if stats.average_throughput_mbps is not None else None),
        }

    def _write_file(self, data: dict, path: Path):
        """Write JSON to file"""
        path = Path(path)
        try:
            path.parent.mkdir(parents=True, exist_ok=True)
            with open(path, 'w', encoding='utf-8') as f:
                json.dump(data, f, indent=2, ensure_ascii=False)
        except OSError as e:
            raise SinkError(f"Cannot write JSON export {path}: {e}") from e
