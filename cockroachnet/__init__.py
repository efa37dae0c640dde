"""
CockroachNET - Distributed System Network Testing Tool

Periodically probes connectivity between fleet nodes (reachability,
latency, packet loss, ports, throughput, TCP health), raises
threshold alerts and produces a summary report.
"""

__version__ = "1.0.0"
__author__ = "CockroachNET"
