import threading

import pytest

from cockroachnet.aggregator import RecordingChannel, ResultAggregator
from cockroachnet.errors import AggregationError
from cockroachnet.models import (
    Alert, AlertKind, Cadence, ProbeKind, ProbeRequest, ProbeResult, Target,
    TimeWindow,
)


def ping_result(address, rtt=None, success=True, finished_at=100.0,
                cadence=Cadence.CONTINUOUS):
    metrics = {}
    if rtt is not None:
        metrics['rtt_ms' if cadence is Cadence.CONTINUOUS else 'avg_rtt_ms'] = rtt
    request = ProbeRequest(kind=ProbeKind.PING, target=Target(address),
                           issued_at=finished_at - 1, cadence=cadence)
    return ProbeResult(request=request, success=success, metrics=metrics,
                       finished_at=finished_at, source="10.0.0.1")


def kind_result(kind, address, success=True, metrics=None, finished_at=100.0):
    request = ProbeRequest(kind=kind, target=Target(address), issued_at=finished_at - 1)
    return ProbeResult(request=request, success=success, metrics=metrics or {},
                       finished_at=finished_at, source="10.0.0.1")


def alert_for(result, kind=AlertKind.UNREACHABLE, detail=None):
    return Alert(timestamp=result.finished_at, target=result.target, kind=kind,
                 detail=detail or f"Failed to ping {result.target}")


def test_concurrent_records_are_all_counted_once():
    aggregator = ResultAggregator()
    addresses = [f"10.0.0.{n}" for n in range(2, 8)]
    per_thread = 50

    def worker(address):
        for i in range(per_thread):
            result = ping_result(address, rtt=float(i), finished_at=100.0 + i)
            alerts = [alert_for(result)] if i % 10 == 0 else []
            aggregator.record(result, alerts)

    threads = [threading.Thread(target=worker, args=(a,)) for a in addresses]
    for t in threads:
        t.start()
    for t in threads:
        t.join()

    snapshot = aggregator.snapshot()
    assert snapshot.total_results == len(addresses) * per_thread
    assert len(aggregator) == len(addresses) * per_thread
    assert snapshot.total_alerts == len(addresses) * 5
    assert [s.address for s in snapshot.per_target.values()] == addresses
    for stats in snapshot.per_target.values():
        assert stats.probes == per_thread
        assert stats.average_latency_ms == pytest.approx(24.5)


def test_snapshots_without_new_records_are_equal():
    aggregator = ResultAggregator()
    for n in range(5):
        result = ping_result("10.0.0.2", rtt=10.0 + n, finished_at=100.0 + n)
        aggregator.record(result, [alert_for(result)] if n == 3 else [])
    aggregator.record(kind_result(ProbeKind.THROUGHPUT, "10.0.0.3",
                                  metrics={'throughput_mbps': 500.0}))

    assert aggregator.snapshot() == aggregator.snapshot()


def test_snapshot_of_empty_log():
    snapshot = ResultAggregator().snapshot()
    assert snapshot.total_results == 0
    assert snapshot.total_alerts == 0
    assert snapshot.overall_average_latency_ms is None
    assert snapshot.window_start is None
    assert dict(snapshot.per_target) == {}


def test_average_is_none_without_latency_measurements():
    aggregator = ResultAggregator()
    aggregator.record(ping_result("10.0.0.2", success=False))
    aggregator.record(kind_result(ProbeKind.PORT_CHECK, "10.0.0.2"))

    snapshot = aggregator.snapshot()
    assert snapshot.overall_average_latency_ms is None
    assert snapshot.ping_failures == 1


def test_average_covers_both_cadences():
    aggregator = ResultAggregator()
    aggregator.record(ping_result("10.0.0.2", rtt=10.0))
    aggregator.record(ping_result("10.0.0.3", rtt=20.0, cadence=Cadence.COMPREHENSIVE))
    aggregator.record(kind_result(ProbeKind.THROUGHPUT, "10.0.0.2",
                                  metrics={'throughput_mbps': 900.0}))

    assert aggregator.snapshot().overall_average_latency_ms == pytest.approx(15.0)


def test_window_filters_by_finish_time():
    aggregator = ResultAggregator()
    for ts in (100.0, 200.0, 300.0):
        aggregator.record(ping_result("10.0.0.2", rtt=ts / 10, finished_at=ts))

    snapshot = aggregator.snapshot(TimeWindow(start=150.0, end=300.0))
    assert snapshot.total_results == 2
    assert snapshot.window_start == 150.0
    assert snapshot.overall_average_latency_ms == pytest.approx(25.0)

    whole = aggregator.snapshot()
    assert (whole.window_start, whole.window_end) == (100.0, 300.0)


def test_failure_counters_and_throughput():
    aggregator = ResultAggregator()
    aggregator.record(kind_result(ProbeKind.PORT_CHECK, "10.0.0.2", success=False))
    aggregator.record(kind_result(ProbeKind.THROUGHPUT, "10.0.0.2", success=False))
    aggregator.record(kind_result(ProbeKind.THROUGHPUT, "10.0.0.2",
                                  metrics={'throughput_mbps': 400.0}))
    aggregator.record(kind_result(ProbeKind.THROUGHPUT, "10.0.0.2",
                                  metrics={'throughput_mbps': 600.0}))

    snapshot = aggregator.snapshot()
    assert snapshot.port_failures == 1
    assert snapshot.throughput_runs == 3
    assert snapshot.throughput_failures == 1
    stats = snapshot.per_target[Target("10.0.0.2")]
    assert stats.average_throughput_mbps == pytest.approx(500.0)


def test_alerts_grouped_by_message_and_kind():
    aggregator = ResultAggregator()
    first = ping_result("10.0.0.2", success=False, finished_at=100.0)
    second = ping_result("10.0.0.2", success=False, finished_at=160.0)
    slow = ping_result("10.0.0.3", rtt=150.0, finished_at=170.0)
    aggregator.record(first, [alert_for(first)])
    aggregator.record(second, [alert_for(second)])
    aggregator.record(slow, [alert_for(slow, AlertKind.HIGH_LATENCY,
                                       "High latency (150ms) to 10.0.0.3")])

    snapshot = aggregator.snapshot()
    assert snapshot.alert_messages == (
        ("ALERT: Failed to ping 10.0.0.2", 2),
        ("ALERT: High latency (150ms) to 10.0.0.3", 1),
    )
    assert dict(snapshot.alert_counts) == {
        AlertKind.UNREACHABLE: 2,
        AlertKind.HIGH_LATENCY: 1,
    }


class Collector:
    def __init__(self):
        self.seen = []

    def on_event(self, result, alerts):
        self.seen.append(result.finished_at)


class Exploding:
    def on_event(self, result, alerts):
        raise RuntimeError("boom")


def test_channel_records_in_put_order_and_notifies_listeners():
    aggregator = ResultAggregator()
    collector = Collector()

    with RecordingChannel(aggregator, [Exploding(), collector]) as channel:
        for n in range(20):
            channel.put(ping_result("10.0.0.2", rtt=1.0, finished_at=float(n)))

    assert [r.finished_at for r in aggregator.results()] == [float(n) for n in range(20)]
    assert collector.seen == [float(n) for n in range(20)]


def test_channel_close_without_start_is_a_no_op():
    channel = RecordingChannel(ResultAggregator())
    channel.close()
    assert len(channel.aggregator) == 0


def test_recording_the_same_request_twice_is_rejected():
    aggregator = ResultAggregator()
    result = ping_result("10.0.0.2", rtt=3.0)
    aggregator.record(result)

    with pytest.raises(AggregationError, match="recorded twice"):
        aggregator.record(result)
    assert len(aggregator) == 1
    assert aggregator.snapshot().total_results == 1


def test_channel_close_reraises_record_failure():
    aggregator = ResultAggregator()
    result = ping_result("10.0.0.2", rtt=3.0)
    channel = RecordingChannel(aggregator).start()
    channel.put(result)
    channel.put(result)

    with pytest.raises(AggregationError):
        channel.close(timeout=5)
    assert len(aggregator) == 1
