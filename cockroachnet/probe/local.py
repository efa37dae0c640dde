"""
Local node address resolution
"""

import logging
import socket
from typing import Iterable, Optional


logger = logging.getLogger(__name__)

PUBLIC_PROBE_IP = '8.8.8.8'


def _route_source(ip: str) -> Optional[str]:
    """Source address the kernel picks for a UDP route to ip (no packet is sent)"""
    try:
        s = socket.socket(socket.AF_INET, socket.SOCK_DGRAM)
        try:
            s.connect((ip, 80))
            return s.getsockname()[0]
        finally:
            s.close()
    except OSError as e:
        logger.debug("No route towards %s: %s", ip, e)
        return None


def resolve_local_address(candidates: Iterable[str] = ()) -> str:
    """
    Get the address the local node uses to reach the network.

    Routes towards each candidate (the configured targets) are tried
    first, so hosts without a default route still resolve to the
    interface facing the cluster. Then a public address, the hostname
    address, and finally loopback.
    """
    if isinstance(candidates, str):
        candidates = [candidates]

    for ip in [*candidates, PUBLIC_PROBE_IP]:
        source = _route_source(ip)
        if source and source != '0.0.0.0':
            return source

    try:
        return socket.gethostbyname(socket.gethostname())
    except OSError:
        return '127.0.0.1'
