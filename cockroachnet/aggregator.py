"""
Thread-safe result aggregation

The aggregator is an append-only event log of probe results and the
alerts they raised. Snapshots copy the log under the lock and compute
statistics outside it, so readers never hold up writers for longer
than a list copy.
"""

from __future__ import annotations

import logging
import queue
import threading
from collections import Counter
from dataclasses import dataclass
from statistics import mean
from typing import Iterable, Optional, Protocol, Sequence

from .errors import AggregationError
from .models import (
    AggregateSnapshot, Alert, AlertKind, ProbeKind, ProbeResult, Target,
    TargetStats, TimeWindow,
)

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class ProbeEvent:
    """One log entry: a result and the alerts it raised"""
    result: ProbeResult
    alerts: tuple[Alert, ...] = ()

    @property
    def timestamp(self) -> float:
        return self.result.finished_at


class EventListener(Protocol):
    def on_event(self, result: ProbeResult, alerts: Sequence[Alert]) -> None:
        ...


class ResultAggregator:
    """Append-only, thread-safe log of probe events"""

    def __init__(self):
        self._events: list[ProbeEvent] = []
        self._request_ids: set[int] = set()
        self._lock = threading.Lock()

    def record(self, result: ProbeResult, alerts: Iterable[Alert] = ()) -> None:
        """Append one result and its alerts. Safe to call from any thread."""
        event = ProbeEvent(result=result, alerts=tuple(alerts))
        with self._lock:
            if result.request.request_id in self._request_ids:
                raise AggregationError(
                    f"Request {result.request.request_id} recorded twice")
            self._request_ids.add(result.request.request_id)
            self._events.append(event)

    def events(self) -> list[ProbeEvent]:
        with self._lock:
            return list(self._events)

    def results(self) -> list[ProbeResult]:
        return [e.result for e in self.events()]

    def alerts(self) -> list[Alert]:
        return [a for e in self.events() for a in e.alerts]

    def __len__(self) -> int:
        with self._lock:
            return len(self._events)

    def snapshot(self, window: Optional[TimeWindow] = None) -> AggregateSnapshot:
        """
        Compute statistics over the log.

        Args:
            window: Inclusive time range; None covers the whole log

        Returns:
            AggregateSnapshot. overall_average_latency_ms is None when no
            ping measurement falls in the window.
        """
        events = self.events()
        if window is not None:
            events = [e for e in events if window.contains(e.timestamp)]
            start, end = window.start, window.end
        elif events:
            stamps = [e.timestamp for e in events]
            start, end = min(stamps), max(stamps)
        else:
            start = end = None

        per_target: dict[Target, dict] = {}
        latencies: list[float] = []
        throughputs: list[float] = []
        kind_counts: Counter = Counter()
        message_counts: Counter = Counter()
        total_alerts = 0

        for event in events:
            result = event.result
            stats = per_target.setdefault(result.target, {
                'probes': 0, 'ping_failures': 0, 'port_failures': 0,
                'throughput_runs': 0, 'throughput_failures': 0, 'alerts': 0,
                'latencies': [], 'throughputs': [],
            })
            stats['probes'] += 1
            stats['alerts'] += len(event.alerts)

            if result.kind is ProbeKind.PING:
                if not result.success:
                    stats['ping_failures'] += 1
                latency = result.latency_ms
                if latency is not None:
                    stats['latencies'].append(latency)
                    latencies.append(latency)
            elif result.kind is ProbeKind.PORT_CHECK:
                if not result.success:
                    stats['port_failures'] += 1
            elif result.kind is ProbeKind.THROUGHPUT:
                stats['throughput_runs'] += 1
                if not result.success:
                    stats['throughput_failures'] += 1
                mbps = result.metrics.get('throughput_mbps')
                if result.success and mbps is not None:
                    stats['throughputs'].append(mbps)
                    throughputs.append(mbps)

            for alert in event.alerts:
                total_alerts += 1
                kind_counts[alert.kind] += 1
                message_counts[alert.message] += 1

        target_stats = {}
        for target in sorted(per_target, key=lambda t: (t.address, t.ports)):
            raw = per_target[target]
            target_stats[target] = TargetStats(
                address=target.address,
                probes=raw['probes'],
                ping_failures=raw['ping_failures'],
                port_failures=raw['port_failures'],
                throughput_runs=raw['throughput_runs'],
                throughput_failures=raw['throughput_failures'],
                alerts=raw['alerts'],
                average_latency_ms=mean(raw['latencies']) if raw['latencies'] else None,
                average_throughput_mbps=mean(raw['throughputs']) if raw['throughputs'] else None,
            )

        return AggregateSnapshot(
            window_start=start,
            window_end=end,
            per_target=target_stats,
            alert_counts={k: kind_counts[k] for k in AlertKind if kind_counts[k]},
            alert_messages=tuple(sorted(message_counts.items())),
            overall_average_latency_ms=mean(latencies) if latencies else None,
            overall_average_throughput_mbps=mean(throughputs) if throughputs else None,
            total_results=len(events),
            total_alerts=total_alerts,
        )


_STOP = object()


class RecordingChannel:
    """
    Queue feeding the aggregator from probe workers.

    Workers put (result, alerts) pairs; a single consumer thread records
    them in arrival order and forwards them to listeners (event logs,
    console). Items put by one thread are recorded in the order they
    were put.
    """

    def __init__(self, aggregator: ResultAggregator,
                 listeners: Iterable[EventListener] = ()):
        self.aggregator = aggregator
        self.listeners = list(listeners)
        self._queue: queue.Queue = queue.Queue()
        self._thread: Optional[threading.Thread] = None
        self._error: Optional[AggregationError] = None

    def start(self) -> 'RecordingChannel':
        if self._thread is None:
            self._thread = threading.Thread(
                target=self._drain, name='recording-channel', daemon=True)
            self._thread.start()
        return self

    def put(self, result: ProbeResult, alerts: Sequence[Alert] = ()) -> None:
        self._queue.put((result, tuple(alerts)))

    def close(self, timeout: Optional[float] = None) -> None:
        """Record everything already queued, then stop the consumer"""
        if self._thread is None:
            return
        self._queue.put(_STOP)
        self._thread.join(timeout)
        self._thread = None
        if self._error is not None:
            raise self._error

    def _drain(self):
        while True:
            item = self._queue.get()
            if item is _STOP:
                break
            result, alerts = item
            try:
                self.aggregator.record(result, alerts)
            except AggregationError as e:
                logger.error("RECORD_FAILED error=%s", e)
                self._error = e
                break
            for listener in self.listeners:
                try:
                    listener.on_event(result, alerts)
                except Exception:
                    logger.exception("LISTENER_FAILED listener=%s", type(listener).__name__)

    def __enter__(self):
        return self.start()

    def __exit__(self, exc_type, exc_val, exc_tb):
        self.close()
        return False
