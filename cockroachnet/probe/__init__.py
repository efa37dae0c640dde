"""
Probe runners for CockroachNET
"""

from .base import ProbeRunner, RunOutput
from .command import SubprocessRunner
from .local import resolve_local_address

__all__ = ['ProbeRunner', 'RunOutput', 'SubprocessRunner', 'resolve_local_address']
