"""
Output modules for CockroachNET
"""

from .console import ConsoleOutput
from .eventlog import EventLog, EventLogWriter, LineSink, MemorySink, run_log_paths
from .json_export import JsonExporter
from .report import SummaryReporter

__all__ = ['ConsoleOutput', 'EventLog', 'EventLogWriter', 'LineSink', 'MemorySink',
           'JsonExporter', 'SummaryReporter', 'run_log_paths']
