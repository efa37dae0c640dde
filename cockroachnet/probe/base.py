"""
Abstract base class for probe runners
"""

from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Any, Mapping, Optional

from ..models import ProbeKind


@dataclass(frozen=True)
class RunOutput:
    """Raw output of one diagnostic invocation"""
    output: str
    exit_status: int = 0

    @property
    def ok(self) -> bool:
        return self.exit_status == 0


class ProbeRunner(ABC):
    """Executes a named network diagnostic against an address"""

    @abstractmethod
    def run(
        self,
        kind: ProbeKind,
        address: str,
        args: Mapping[str, Any],
        timeout: Optional[float] = None,
    ) -> RunOutput:
        """
        Run one diagnostic and return its raw output.

        Args:
            kind: Diagnostic to run
            address: Target address (the local address for local probes)
            args: Kind specific options (count, port, ports, duration, ...)
            timeout: Seconds before the invocation is abandoned

        Returns:
            RunOutput with combined text output and exit status

        Raises:
            ProbeTimeout: The diagnostic exceeded its timeout
            ProbeExecutionError: The diagnostic could not be executed
        """
        pass

    def missing_tools(self) -> list[str]:
        """Names of required external tools that are not available"""
        return []

    def close(self):
        """Clean up resources"""
        pass

    def __enter__(self):
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        self.close()
        return False
