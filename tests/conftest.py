"""Shared test fixtures."""

import threading
from collections import deque
from typing import Any, Mapping, Optional

import pytest

from cockroachnet.config import RunConfig
from cockroachnet.models import ProbeKind, Target, Thresholds
from cockroachnet.probe.base import ProbeRunner, RunOutput


LOCAL_IP = "10.0.0.1"

PING_OK = """PING 10.0.0.2 (10.0.0.2) 56(84) bytes of data.
64 bytes from 10.0.0.2: icmp_seq=1 ttl=64 time=14.8 ms
64 bytes from 10.0.0.2: icmp_seq=2 ttl=64 time=15.2 ms

--- 10.0.0.2 ping statistics ---
10 packets transmitted, 10 received, 0% packet loss, time 9012ms
rtt min/avg/max/mdev = 14.512/15.000/15.734/0.301 ms
"""

PING_LOSSY = """PING 10.0.0.2 (10.0.0.2) 56(84) bytes of data.
64 bytes from 10.0.0.2: icmp_seq=1 ttl=64 time=15.1 ms

--- 10.0.0.2 ping statistics ---
20 packets transmitted, 19 received, 5% packet loss, time 19020ms
rtt min/avg/max/mdev = 14.512/15.000/15.734/0.301 ms
"""

PING_DOWN = """PING 10.0.0.9 (10.0.0.9) 56(84) bytes of data.

--- 10.0.0.9 ping statistics ---
10 packets transmitted, 0 received, 100% packet loss, time 9190ms
"""

SINGLE_PING_OK = """PING 10.0.0.2 (10.0.0.2) 56(84) bytes of data.
64 bytes from 10.0.0.2: icmp_seq=1 ttl=64 time=1.23 ms

--- 10.0.0.2 ping statistics ---
1 packets transmitted, 1 received, 0% packet loss, time 0ms
rtt min/avg/max/mdev = 1.230/1.230/1.230/0.000 ms
"""

NC_OK = "Connection to 10.0.0.2 8080 port [tcp/http-alt] succeeded!\n"
NC_REFUSED = "nc: connect to 10.0.0.2 port 9090 (tcp) failed: Connection refused\n"

IPERF_OK = """{
  "start": {"connected": [{"socket": 5}]},
  "intervals": [{"sum": {"bits_per_second": 4.9e+08}}],
  "end": {
    "sum_sent": {"bytes": 625000000, "bits_per_second": 5.01e+08},
    "sum_received": {"bytes": 625000000, "bits_per_second": 500000000}
  }
}
"""

TRACEROUTE_OK = """traceroute to 10.0.0.2 (10.0.0.2), 30 hops max, 60 byte packets
 1  10.0.0.254  0.412 ms  0.388 ms  0.371 ms
 2  10.0.0.2  0.801 ms  0.795 ms  0.790 ms
"""

SS_OUTPUT = """Netid State  Recv-Q Send-Q Local Address:Port  Peer Address:Port Process
tcp   ESTAB  0      0      10.0.0.1:8080        10.0.0.2:51234
tcp   LISTEN 0      128    0.0.0.0:8080         0.0.0.0:*
"""

NETSTAT_OUTPUT = """Tcp:
    1234 active connection openings
    12 segments retransmitted
    0 bad segments received
"""

TCPDUMP_OUTPUT = """tcpdump: listening on any, link-type LINUX_SLL2
42 packets captured
42 packets received by filter
0 packets dropped by kernel
"""


class FakeRunner(ProbeRunner):
    """
    Scriptable ProbeRunner.

    script: dict[(kind, address)] -> list of outputs returned in order;
    the last entry repeats. An entry may be a RunOutput, a str (exit 0)
    or an Exception to raise. Port checks can be keyed by
    (kind, address, port). Unscripted calls get a sensible default.
    """

    DEFAULTS = {
        ProbeKind.PING: PING_OK,
        ProbeKind.PORT_CHECK: NC_OK,
        ProbeKind.THROUGHPUT: IPERF_OK,
        ProbeKind.TRACEROUTE: TRACEROUTE_OK,
        ProbeKind.SOCKET_STATS: SS_OUTPUT,
        ProbeKind.TCP_METRICS: NETSTAT_OUTPUT,
        ProbeKind.PACKET_CAPTURE: TCPDUMP_OUTPUT,
    }

    def __init__(self, script=None, delays=None):
        self.script = {k: deque(v) for k, v in (script or {}).items()}
        self.delays = delays or {}
        self.calls: list[tuple[ProbeKind, str, dict]] = []
        self._lock = threading.Lock()

    def run(self, kind: ProbeKind, address: str, args: Mapping[str, Any],
            timeout: Optional[float] = None) -> RunOutput:
        with self._lock:
            self.calls.append((kind, address, dict(args)))
            entry = self._next(kind, address, args)

        delay = self.delays.get((kind, address))
        if delay:
            threading.Event().wait(delay)

        if isinstance(entry, Exception):
            raise entry
        if isinstance(entry, RunOutput):
            return entry
        return RunOutput(output=entry, exit_status=0)

    def _next(self, kind, address, args):
        keys = []
        if 'port' in args:
            keys.append((kind, address, args['port']))
        keys.append((kind, address))
        for key in keys:
            queue = self.script.get(key)
            if queue:
                return queue.popleft() if len(queue) > 1 else queue[0]
        return self.DEFAULTS[kind]

    def calls_for(self, kind: ProbeKind, address: Optional[str] = None) -> list:
        with self._lock:
            return [c for c in self.calls
                    if c[0] is kind and (address is None or c[1] == address)]


def make_config(nodes=("10.0.0.2",), ports=(8080,), **kwargs) -> RunConfig:
    ports = tuple(ports)
    params = dict(
        targets=tuple(Target(address=n, ports=ports) for n in nodes),
        ports=ports,
        thresholds=Thresholds(latency_ms=100, packet_loss_percent=1),
        capture_seconds=0,
    )
    params.update(kwargs)
    return RunConfig(**params)


@pytest.fixture
def fake_runner():
    return FakeRunner()


@pytest.fixture
def config():
    return make_config()

