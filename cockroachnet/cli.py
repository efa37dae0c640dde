import logging
import sys
import time
from dataclasses import dataclass
from pathlib import Path
from typing import Callable, Optional

import click
from rich.console import Console
from rich.logging import RichHandler

from . import __version__
from .aggregator import ResultAggregator
from .config import (
    DEFAULT_CAPTURE_SECONDS, DEFAULT_INTERVAL, DEFAULT_LATENCY_THRESHOLD_MS,
    DEFAULT_LOG_DIR, DEFAULT_PACKET_LOSS_THRESHOLD, DEFAULT_PING_INTERVAL,
    DEFAULT_TEST_DURATION, RunConfig,
)
from .errors import ConfigurationError, SinkError
from .models import AggregateSnapshot, RunMetadata
from .output import (
    ConsoleOutput, EventLog, EventLogWriter, JsonExporter, LineSink,
    SummaryReporter, run_log_paths,
)
from .output.eventlog import format_timestamp
from .probe import ProbeRunner, SubprocessRunner
from .probe.command import INSTALL_HINT
from .scheduler import ProbeScheduler


console = Console()
logger = logging.getLogger(__name__)

SEPARATOR = "---------------------------------------------"


def setup_logging(verbose: bool = False):
    """Send diagnostics to stderr through rich"""
    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.WARNING,
        format="%(name)s: %(message)s",
        datefmt="[%X]",
        handlers=[RichHandler(console=Console(stderr=True), show_path=False)],
        force=True,
    )


@dataclass
class SessionResult:
    """Outcome of one complete run"""
    snapshot: AggregateSnapshot
    metadata: RunMetadata
    report: str
    interrupted: bool = False


def run_session(
    config: RunConfig,
    runner: ProbeRunner,
    event_log: LineSink,
    ping_log: Optional[LineSink] = None,
    summary_path: Optional[Path] = None,
    output: Optional[ConsoleOutput] = None,
    clock: Callable[[], float] = time.time,
    local_address: Optional[Callable[[], str]] = None,
    event_log_path: Optional[str] = None,
    ping_log_path: Optional[str] = None,
) -> SessionResult:
    """
    Run both cadences for config.duration, then summarize.

    Ctrl-C stops dispatching new probes; the summary is still produced
    from whatever was recorded.
    """
    listeners = [EventLogWriter(event_log, ping_log)]
    if output is not None:
        listeners.append(output)

    event_log.write_line(f"Network connectivity test started at {format_timestamp(clock())}")
    event_log.write_line(f"Testing connectivity between nodes: {' '.join(config.addresses)}")
    event_log.write_line(f"Testing ports: {' '.join(str(p) for p in config.ports)}")
    event_log.write_line(f"Test will run for {config.duration:g} seconds")
    event_log.write_line(SEPARATOR)

    scheduler = ProbeScheduler(
        config,
        runner,
        aggregator=ResultAggregator(),
        clock=clock,
        local_address=local_address,
        listeners=listeners,
    )
    handle = scheduler.start()

    interrupted = False
    try:
        handle.join()
    except KeyboardInterrupt:
        interrupted = True
        logger.warning("Interrupted, waiting for in-flight probes")
        handle.stop()
        handle.join()

    snapshot = handle.snapshot()
    metadata = RunMetadata(
        started_at=handle.started_at,
        finished_at=clock(),
        duration=config.duration,
        targets=config.addresses,
        ports=config.ports,
        event_log_path=event_log_path,
        ping_log_path=ping_log_path,
    )

    reporter = SummaryReporter()
    if summary_path is not None:
        report = reporter.write(summary_path, snapshot, metadata)
        event_log.write_line(f"Summary report generated at {summary_path}")
    else:
        report = reporter.render(snapshot, metadata)

    for line in report.rstrip('\n').splitlines():
        event_log.write_line(line)
    event_log.write_line(
        f"Network connectivity testing completed at {format_timestamp(clock())}")

    if config.json_path:
        JsonExporter().export(snapshot, metadata, config.json_path)

    return SessionResult(snapshot=snapshot, metadata=metadata, report=report,
                         interrupted=interrupted)


@click.command()
@click.option('-n', '--nodes', multiple=True,
              help='Comma-separated list of node IPs to test')
@click.option('-p', '--ports', default=None,
              help='Comma-separated list of ports to test (default: 8080)')
@click.option('-d', '--duration', default=DEFAULT_TEST_DURATION, type=float,
              help=f'Test duration in seconds (default: {DEFAULT_TEST_DURATION})')
@click.option('-l', '--log-dir', default=str(DEFAULT_LOG_DIR), type=click.Path(),
              help=f'Directory to store logs (default: {DEFAULT_LOG_DIR})')
@click.option('-i', '--interval', default=DEFAULT_INTERVAL, type=float,
              help=f'Interval between test runs (default: {DEFAULT_INTERVAL})')
@click.option('--ping-interval', default=DEFAULT_PING_INTERVAL, type=float,
              help=f'Interval between ping tests (default: {DEFAULT_PING_INTERVAL})')
@click.option('--latency-threshold', default=DEFAULT_LATENCY_THRESHOLD_MS, type=float,
              help='Alert threshold for latency in ms (default: 100)')
@click.option('--loss-threshold', default=DEFAULT_PACKET_LOSS_THRESHOLD, type=float,
              help='Alert threshold for packet loss in % (default: 1)')
@click.option('--capture-seconds', default=DEFAULT_CAPTURE_SECONDS, type=float,
              help='Packet capture length per cycle, 0 disables (default: 30)')
@click.option('--json', 'json_path', type=click.Path(),
              help='Export summary to JSON file')
@click.option('--skip-tool-check', is_flag=True,
              help='Do not check that the diagnostic tools are installed')
@click.option('--show-pings', is_flag=True,
              help='Print every continuous ping, not only failures')
@click.option('-v', '--verbose', is_flag=True, help='Debug logging')
@click.version_option(version=__version__)
def main(nodes: tuple[str, ...], ports: Optional[str], duration: float, log_dir: str,
         interval: float, ping_interval: float, latency_threshold: float,
         loss_threshold: float, capture_seconds: float, json_path: Optional[str],
         skip_tool_check: bool, show_pings: bool, verbose: bool):
    """
    CockroachNET - Distributed system network testing.

    Tests connectivity between the local node and the given nodes and
    reports packet loss, latency, throughput and TCP health.

    Examples:

        cockroachnet --nodes 10.0.0.1,10.0.0.2 --ports 8080,9090 --duration 7200
    """
    setup_logging(verbose)
    output = ConsoleOutput(console=console, show_pings=show_pings)

    try:
        config = RunConfig.from_options(
            nodes=nodes,
            ports=ports,
            duration=duration,
            log_dir=log_dir,
            interval=interval,
            ping_interval=ping_interval,
            latency_threshold=latency_threshold,
            loss_threshold=loss_threshold,
            capture_seconds=capture_seconds,
            json_path=json_path,
        )
    except ConfigurationError as e:
        output.print_error(str(e))
        console.print("[dim]Use --help for usage information.[/]")
        sys.exit(1)

    runner = SubprocessRunner(capture_dir=config.log_dir)

    if not skip_tool_check:
        missing = runner.missing_tools()
        if missing:
            output.print_error(f"Missing required tools: {' '.join(missing)}")
            console.print(f"[dim]Please install them using: {INSTALL_HINT}[/]")
            sys.exit(1)

    paths = run_log_paths(config.log_dir)
    try:
        event_log = EventLog(paths['events'])
        ping_log = EventLog(paths['ping'])
    except SinkError as e:
        output.print_error(str(e))
        sys.exit(1)

    output.print_header(config, event_log=str(paths['events']))

    try:
        with runner, event_log, ping_log:
            result = run_session(
                config,
                runner,
                event_log,
                ping_log,
                summary_path=paths['summary'],
                output=output,
                event_log_path=str(paths['events']),
                ping_log_path=str(paths['ping']),
            )
    except SinkError as e:
        output.print_error(str(e))
        sys.exit(1)

    output.print_summary(result.snapshot)
    console.print(f"\n[dim]Summary report:[/] {paths['summary']}")
    if config.json_path:
        console.print(f"[dim]Results exported to:[/] {Path(config.json_path).absolute()}")

    if result.interrupted:
        output.print_warning("Interrupted, summary covers the probes recorded so far")
        sys.exit(130)


if __name__ == '__main__':
    main()
