"""
Error taxonomy for CockroachNET
"""


class CockroachNetError(Exception):
    """Base class for all CockroachNET errors"""


class ConfigurationError(CockroachNetError):
    """Invalid run configuration. Fatal, raised before any probing starts."""


class ProbeTimeout(CockroachNetError):
    """A probe did not finish within its own timeout"""

    def __init__(self, message: str, timeout: float = None):
        super().__init__(message)
        self.timeout = timeout


class ProbeExecutionError(CockroachNetError):
    """The diagnostic could not be executed (missing binary, OS error)"""


class ParseFailure(CockroachNetError):
    """Probe output did not contain the expected fields"""


class SinkError(CockroachNetError):
    """An output sink could not be created or written"""


class AggregationError(CockroachNetError):
    """Aggregator state is inconsistent. Indicates a bug, never recovered from."""
