import pytest

from cockroachnet.errors import ParseFailure
from cockroachnet.extract import (
    extract, parse_packet_capture, parse_ping, parse_port_check,
    parse_single_ping, parse_socket_stats, parse_tcp_metrics,
    parse_throughput, parse_traceroute, summarize_ports,
)
from cockroachnet.models import ProbeKind

from conftest import (
    IPERF_OK, NC_OK, NC_REFUSED, NETSTAT_OUTPUT, PING_DOWN, PING_LOSSY,
    PING_OK, SINGLE_PING_OK, SS_OUTPUT, TCPDUMP_OUTPUT, TRACEROUTE_OK,
)


def test_parse_ping_loss_and_average():
    metrics = parse_ping(PING_OK)
    assert metrics == {'packet_loss_percent': 0, 'avg_rtt_ms': 15.0}


def test_parse_ping_loss_is_integer():
    metrics = parse_ping(PING_LOSSY)
    assert metrics['packet_loss_percent'] == 5
    assert isinstance(metrics['packet_loss_percent'], int)


def test_parse_ping_missing_rtt_is_omitted_not_zero():
    metrics = parse_ping(PING_DOWN)
    assert metrics == {'packet_loss_percent': 100}
    assert 'avg_rtt_ms' not in metrics


def test_parse_ping_bsd_summary():
    output = ("4 packets transmitted, 4 packets received, 0.0% packet loss\n"
              "round-trip min/avg/max/stddev = 9.1/10.25/11.8/0.9 ms\n")
    assert parse_ping(output) == {'packet_loss_percent': 0, 'avg_rtt_ms': 10.25}


def test_parse_ping_malformed_rtt_is_omitted():
    output = "1 packets transmitted, 1 received, 0% packet loss\nrtt min/avg/max/mdev = 1.0/abc/2.0/0.1 ms\n"
    assert parse_ping(output) == {'packet_loss_percent': 0}


def test_parse_ping_without_statistics_fails():
    with pytest.raises(ParseFailure):
        parse_ping("ping: unknown host nowhere\n")


def test_parse_single_ping():
    assert parse_single_ping(SINGLE_PING_OK) == {'rtt_ms': 1.23}
    assert parse_single_ping("64 bytes from 10.0.0.2: icmp_seq=1 time<1 ms") == {'rtt_ms': 1.0}


def test_parse_single_ping_without_reply_fails():
    with pytest.raises(ParseFailure):
        parse_single_ping(PING_DOWN)


@pytest.mark.parametrize("output,status,expected", [
    (NC_OK, 0, True),
    (NC_REFUSED, 1, False),
    ("nc: connect to 10.0.0.2 port 22 (tcp) timed out: Operation now in progress", 1, False),
    ("Ncat: Connected to 10.0.0.2:8080.", 0, True),
    ("", 0, True),
    ("", 1, False),
])
def test_parse_port_check(output, status, expected):
    assert parse_port_check(output, status) is expected


def test_summarize_ports_records_first_failure():
    metrics = summarize_ports([(8080, True), (9090, False)])
    assert metrics == {
        'port_8080': 1.0,
        'port_9090': 0.0,
        'failed_port': 9090,
        'ports_checked': 2,
    }


def test_parse_throughput_uses_last_value_and_converts_to_mbps():
    metrics = parse_throughput(IPERF_OK)
    assert metrics['throughput_bps'] == 500_000_000
    assert metrics['throughput_mbps'] == 500.0


def test_parse_throughput_scientific_notation_full_precision():
    metrics = parse_throughput('"bits_per_second": 9.4123456e+08')
    assert metrics['throughput_mbps'] == pytest.approx(941.23456)
    assert f"{metrics['throughput_mbps']:.2f}" == "941.23"


def test_parse_throughput_missing_fails():
    with pytest.raises(ParseFailure):
        parse_throughput('iperf3: error - unable to connect to server: Connection refused')


def test_parse_traceroute_counts_hops_and_timeouts():
    output = """traceroute to 10.0.0.9 (10.0.0.9), 30 hops max, 60 byte packets
 1  10.0.0.254  0.412 ms  0.388 ms  0.371 ms
 2  * * *
 3  10.1.0.1  1.2 ms * 1.3 ms
 4  * * *
10  10.0.0.9  5.0 ms  5.1 ms  5.2 ms
"""
    assert parse_traceroute(output) == {'hop_count': 5, 'timeout_hops': 2}


def test_parse_traceroute_partial_timeout_is_not_a_timeout_hop():
    assert parse_traceroute(TRACEROUTE_OK) == {'hop_count': 2, 'timeout_hops': 0}


def test_parse_traceroute_without_hops_fails():
    with pytest.raises(ParseFailure):
        parse_traceroute("traceroute: unknown host nowhere\n")


def test_parse_socket_stats_matches_port_boundaries():
    output = SS_OUTPUT + "tcp   ESTAB  0      0      10.0.0.1:80801       10.0.0.3:4000\n"
    assert parse_socket_stats(output, [8080]) == {'established_connections': 1}
    assert parse_socket_stats(output, [9090]) == {'established_connections': 0}


def test_parse_tcp_metrics():
    assert parse_tcp_metrics(NETSTAT_OUTPUT) == {'retransmitted_segments': 12}
    assert parse_tcp_metrics("Tcp:\n    3 segments retransmited\n") == {'retransmitted_segments': 3}
    assert parse_tcp_metrics("Tcp:\n") == {}


def test_parse_packet_capture():
    assert parse_packet_capture(TCPDUMP_OUTPUT) == {'packets_captured': 42}
    assert parse_packet_capture("") == {}


def test_extract_dispatches_by_kind():
    assert extract(ProbeKind.PING, PING_OK)['avg_rtt_ms'] == 15.0
    assert extract(ProbeKind.PING, SINGLE_PING_OK, single_shot=True) == {'rtt_ms': 1.23}
    assert extract(ProbeKind.SOCKET_STATS, SS_OUTPUT, ports=[8080]) == {'established_connections': 1}
    assert extract(ProbeKind.PORT_CHECK, NC_REFUSED, ports=[9090], exit_status=1)['failed_port'] == 9090


def test_extract_tolerates_none_output():
    assert extract(ProbeKind.TCP_METRICS, None) == {}
