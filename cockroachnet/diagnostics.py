"""
Threshold evaluation for probe results
"""

from typing import Optional

from .models import Alert, AlertKind, ProbeKind, ProbeResult, Thresholds


def _fmt(value: float) -> str:
    """Render a measured value the way the probe tools print it"""
    if float(value).is_integer():
        return str(int(value))
    return f"{value:g}"


class ThresholdEvaluator:
    """
    Turn probe results into alerts.

    Detects:
    - Unreachable targets (failed ping, takes priority over loss/latency)
    - High packet loss, else high latency (first breach only)
    - Closed ports (first refused port per target)
    - Failed throughput tests
    - High TCP retransmission counts
    - Timeouts along the network path
    """

    def __init__(self, thresholds: Optional[Thresholds] = None):
        self.thresholds = thresholds or Thresholds()

    def evaluate(self, result: ProbeResult) -> list[Alert]:
        """
        Evaluate one result against the thresholds.

        Args:
            result: Probe result to check

        Returns:
            Alerts raised by this result, possibly empty
        """
        handler = {
            ProbeKind.PING: self._check_ping,
            ProbeKind.PORT_CHECK: self._check_ports,
            ProbeKind.THROUGHPUT: self._check_throughput,
            ProbeKind.TRACEROUTE: self._check_path,
            ProbeKind.TCP_METRICS: self._check_tcp,
        }.get(result.kind)

        if handler is None:
            return []

        alert = handler(result)
        return [alert] if alert else []

    def _alert(self, result: ProbeResult, kind: AlertKind, detail: str,
               value: Optional[float] = None, port: Optional[int] = None) -> Alert:
        return Alert(
            timestamp=result.finished_at,
            target=result.target,
            kind=kind,
            detail=detail,
            measured_value=value,
            source=result.source,
            port=port,
        )

    def _check_ping(self, result: ProbeResult) -> Optional[Alert]:
        target = result.target.address
        source = result.source
        metrics = result.metrics

        if result.request.single_shot:
            if not result.success:
                return self._alert(result, AlertKind.UNREACHABLE,
                                   f"Failed to ping {target}")
            rtt = metrics.get('rtt_ms')
            if rtt is not None and rtt > self.thresholds.latency_ms:
                return self._alert(result, AlertKind.HIGH_LATENCY,
                                   f"High latency ({_fmt(rtt)}ms) to {target}", rtt)
            return None

        if not result.success:
            return self._alert(result, AlertKind.UNREACHABLE,
                               f"Cannot ping {target} from {source}")

        # Loss is checked before latency; only the first breach is reported
        loss = metrics.get('packet_loss_percent')
        if loss is not None and loss > self.thresholds.packet_loss_percent:
            return self._alert(
                result, AlertKind.HIGH_PACKET_LOSS,
                f"High packet loss ({_fmt(loss)}%) to {target} from {source}", loss)

        rtt = metrics.get('avg_rtt_ms')
        if rtt is not None and rtt > self.thresholds.latency_ms:
            return self._alert(
                result, AlertKind.HIGH_LATENCY,
                f"High latency ({_fmt(rtt)} ms) to {target} from {source}", rtt)

        return None

    def _check_ports(self, result: ProbeResult) -> Optional[Alert]:
        if result.success:
            return None
        port = result.metrics.get('failed_port')
        port = int(port) if port is not None else None
        where = f"{result.target.address}:{port}" if port else result.target.address
        return self._alert(result, AlertKind.PORT_CLOSED,
                           f"Cannot connect to {where} from {result.source}",
                           port=port)

    def _check_throughput(self, result: ProbeResult) -> Optional[Alert]:
        if result.success:
            return None
        return self._alert(
            result, AlertKind.THROUGHPUT_FAILED,
            f"Throughput test failed from {result.source} to {result.target.address}")

    def _check_tcp(self, result: ProbeResult) -> Optional[Alert]:
        count = result.metrics.get('retransmitted_segments')
        if count is None or count <= self.thresholds.retransmission_count:
            return None
        return self._alert(
            result, AlertKind.HIGH_RETRANSMISSION,
            f"High TCP retransmission count ({_fmt(count)}) on {result.target.address}",
            count)

    def _check_path(self, result: ProbeResult) -> Optional[Alert]:
        timeouts = result.metrics.get('timeout_hops')
        if not timeouts:
            return None
        return self._alert(
            result, AlertKind.PATH_TIMEOUT,
            f"Path to {result.target.address} has {_fmt(timeouts)} hops with timeouts",
            timeouts)


def evaluate(result: ProbeResult, thresholds: Thresholds) -> list[Alert]:
    """Convenience function for one-off evaluation"""
    return ThresholdEvaluator(thresholds).evaluate(result)
