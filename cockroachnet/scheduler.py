"""
Probe scheduler

Drives two independent cadences for the length of a run:

- comprehensive: every interval, each target runs its own chain
  Ping -> PortCheck -> Throughput -> Traceroute, and the local-only probes
  run once that tick's chains are done
- continuous ping: one single-shot ping per target every ping interval

Ticks only hand work to per-target workers and never wait for it. A target
whose previous chain (or ping) is still running skips the tick; the other
targets are not held back.

All results go through a RecordingChannel into the ResultAggregator.
"""

import functools
import logging
import threading
import time
from concurrent.futures import Future, ThreadPoolExecutor, wait as wait_futures
from contextlib import contextmanager
from typing import Any, Callable, Iterable, Mapping, Optional

from .aggregator import EventListener, RecordingChannel, ResultAggregator
from .config import RunConfig
from .diagnostics import ThresholdEvaluator
from .errors import ParseFailure, ProbeExecutionError, ProbeTimeout
from .extract import extract, parse_port_check, summarize_ports
from .models import (
    AggregateSnapshot, Alert, Cadence, ErrorKind, ProbeKind, ProbeRequest,
    ProbeResult, Target, TimeWindow,
)
from .probe.base import ProbeRunner
from .probe.local import resolve_local_address


logger = logging.getLogger(__name__)

PING_COUNT = 10
PING_SPACING = 1  # seconds between echo requests
PING_GRACE = 5
SINGLE_PING_TIMEOUT = 2.0
PORT_CHECK_TIMEOUT = 5.0
THROUGHPUT_DURATION = 10
THROUGHPUT_GRACE = 5
TRACEROUTE_TIMEOUT = None  # runner default
CAPTURE_GRACE = 5


class RunHandle:
    """Handle on a started run"""

    def __init__(self, scheduler: 'ProbeScheduler', threads: list[threading.Thread]):
        self._scheduler = scheduler
        self._threads = threads
        self._joined = False

    @property
    def started_at(self) -> float:
        return self._scheduler.started_at

    @property
    def deadline(self) -> float:
        return self._scheduler.deadline

    @property
    def running(self) -> bool:
        return any(t.is_alive() for t in self._threads)

    def stop(self):
        """Stop dispatching new probes. In-flight probes finish on their own."""
        self._scheduler.stop()

    def join(self, timeout: Optional[float] = None) -> bool:
        """
        Wait for both cadences to finish and all results to be recorded.

        Returns:
            True if everything finished within timeout
        """
        end = time.monotonic() + timeout if timeout is not None else None
        for thread in self._threads:
            remaining = None if end is None else max(0.0, end - time.monotonic())
            thread.join(remaining)

        if self.running:
            return False

        if not self._joined:
            self._scheduler._finish()
            self._joined = True
        return True

    def wait(self) -> AggregateSnapshot:
        """Block until the run ends, then return the final snapshot"""
        self.join()
        return self.snapshot()

    def snapshot(self, window: Optional[TimeWindow] = None) -> AggregateSnapshot:
        return self._scheduler.aggregator.snapshot(window)


class ProbeScheduler:
    """
    Run probes against the configured targets on two cadences.

    Probe failures are absorbed into failed ProbeResults; nothing a single
    probe does can stop the scheduler or another target's probes.
    """

    def __init__(
        self,
        config: RunConfig,
        runner: ProbeRunner,
        aggregator: Optional[ResultAggregator] = None,
        clock: Callable[[], float] = time.time,
        local_address: Optional[Callable[[], str]] = None,
        listeners: Iterable[EventListener] = (),
    ):
        self.config = config
        self.runner = runner
        self.aggregator = aggregator or ResultAggregator()
        self.clock = clock
        self.local_address = local_address or functools.partial(
            resolve_local_address, config.addresses)
        self.evaluator = ThresholdEvaluator(config.thresholds)
        self.channel = RecordingChannel(self.aggregator, listeners)

        self.started_at: Optional[float] = None
        self.deadline: Optional[float] = None
        self.dispatched = 0
        self._stop = threading.Event()
        self._dispatch_lock = threading.Lock()
        self._running = False

        self._target_pool: Optional[ThreadPoolExecutor] = None
        self._ping_pool: Optional[ThreadPoolExecutor] = None
        self._local_pool: Optional[ThreadPoolExecutor] = None
        self._chains: dict[str, Future] = {}
        self._pings: dict[str, Future] = {}
        self._local_task: Optional[Future] = None

    # Lifecycle

    def start(self) -> RunHandle:
        """Start both cadences; the run ends config.duration seconds from now"""
        if self._running:
            raise RuntimeError("Scheduler already started")

        self.started_at = self.clock()
        self.deadline = self.started_at + self.config.duration
        self._running = True
        self.channel.start()

        workers = max(1, len(self.config.targets))
        self._target_pool = ThreadPoolExecutor(max_workers=workers,
                                               thread_name_prefix='target')
        self._ping_pool = ThreadPoolExecutor(max_workers=workers,
                                             thread_name_prefix='ping')
        self._local_pool = ThreadPoolExecutor(max_workers=1,
                                              thread_name_prefix='local')

        threads = [
            threading.Thread(
                target=self._cadence,
                args=(self.config.interval, self._comprehensive_tick, Cadence.COMPREHENSIVE),
                name='comprehensive-cadence', daemon=True,
            ),
            threading.Thread(
                target=self._cadence,
                args=(self.config.ping_interval, self._ping_tick, Cadence.CONTINUOUS),
                name='continuous-ping-cadence', daemon=True,
            ),
        ]
        logger.info("RUN_START targets=%s duration=%s",
                    ','.join(self.config.addresses), self.config.duration)
        for thread in threads:
            thread.start()
        return RunHandle(self, threads)

    def stop(self):
        """Cooperative cancellation: no probe is dispatched after this returns"""
        with self._dispatch_lock:
            if not self._stop.is_set():
                logger.info("RUN_STOP requested")
            self._stop.set()

    @property
    def stopped(self) -> bool:
        return not self._should_dispatch()

    def _finish(self):
        for pool in (self._target_pool, self._ping_pool, self._local_pool):
            if pool is not None:
                pool.shutdown(wait=True)
        self._target_pool = self._ping_pool = self._local_pool = None
        self.channel.close()
        self._running = False
        logger.info("RUN_END results=%d dispatched=%d", len(self.aggregator), self.dispatched)

    def _should_dispatch(self) -> bool:
        if self._stop.is_set():
            return False
        return self.deadline is None or self.clock() < self.deadline

    def _claim(self) -> bool:
        """Reserve one probe dispatch; False once stopped or past the deadline"""
        with self._dispatch_lock:
            if not self._should_dispatch():
                return False
            self.dispatched += 1
            return True

    def _cadence(self, interval: float, tick: Callable[[], None], cadence: Cadence):
        next_tick = self.clock()
        while self._should_dispatch():
            try:
                tick()
            except Exception:
                logger.exception("TICK_FAILED cadence=%s", cadence.value)

            next_tick += interval
            now = self.clock()
            if next_tick < now:
                next_tick = now
            delay = min(next_tick, self.deadline) - now
            if delay > 0:
                self._stop.wait(delay)

    @contextmanager
    def _recording(self):
        """Drain the channel around one-shot cycles run outside start()"""
        if self._running:
            yield
            return
        self.channel.start()
        try:
            yield
        finally:
            self.channel.close()

    def _resolve_targets(self) -> tuple[str, list[Target]]:
        local = self.local_address()
        remote = [t for t in self.config.targets if t.address != local]
        return local, remote

    # Ticks of a started run

    def _submit_idle(self, pool: ThreadPoolExecutor, in_flight: dict[str, Future],
                     target: Target, work: Callable, *args) -> Optional[Future]:
        """Submit work for a target unless its previous run is still going"""
        previous = in_flight.get(target.address)
        if previous is not None and not previous.done():
            logger.debug("TICK_SKIPPED target=%s busy", target.address)
            return None
        future = pool.submit(work, target, *args)
        in_flight[target.address] = future
        return future

    def _comprehensive_tick(self):
        local, remote = self._resolve_targets()
        logger.info("TICK cadence=comprehensive local=%s targets=%d", local, len(remote))

        chains = []
        for target in remote:
            future = self._submit_idle(self._target_pool, self._chains, target,
                                       self._target_chain, local)
            if future is not None:
                chains.append(future)

        if self._local_task is not None and not self._local_task.done():
            logger.debug("TICK_SKIPPED local probes busy")
            return
        self._local_task = self._local_pool.submit(self._local_after, chains, local)

    def _ping_tick(self):
        local, remote = self._resolve_targets()
        for target in remote:
            self._submit_idle(self._ping_pool, self._pings, target,
                              self._single_ping, local)

    def _local_after(self, chains: list[Future], local: str):
        wait_futures(chains)
        try:
            self._local_probes(local)
        except Exception:
            logger.exception("LOCAL_PROBES_FAILED local=%s", local)

    # One-shot cycles

    def run_comprehensive_cycle(self):
        """One comprehensive cycle: per-target chains in parallel, then local probes"""
        with self._recording():
            local, remote = self._resolve_targets()
            logger.info("CYCLE_START cadence=comprehensive local=%s targets=%d",
                        local, len(remote))

            if remote:
                with ThreadPoolExecutor(max_workers=len(remote),
                                        thread_name_prefix='target') as pool:
                    for target in remote:
                        pool.submit(self._target_chain, target, local)

            self._local_probes(local)
            logger.info("CYCLE_END cadence=comprehensive")

    def run_ping_cycle(self):
        """One continuous-ping round: a single-shot ping per target, in parallel"""
        with self._recording():
            local, remote = self._resolve_targets()
            if not remote:
                return
            with ThreadPoolExecutor(max_workers=len(remote),
                                    thread_name_prefix='ping') as pool:
                for target in remote:
                    pool.submit(self._single_ping, target, local)

    def _target_chain(self, target: Target, source: str):
        try:
            for step in (self._ping, self._check_ports, self._throughput, self._traceroute):
                if not self._should_dispatch():
                    logger.debug("CHAIN_CANCELLED target=%s", target.address)
                    return
                step(target, source)
        except Exception:
            logger.exception("CHAIN_FAILED target=%s", target.address)

    def _local_probes(self, local: str):
        local_target = Target(address=local, ports=self.config.ports)
        ports = self.config.ports

        steps = [
            (ProbeKind.SOCKET_STATS, {'ports': ports}, None),
            (ProbeKind.TCP_METRICS, {}, None),
        ]
        if self.config.capture_seconds > 0:
            seconds = self.config.capture_seconds
            steps.append((ProbeKind.PACKET_CAPTURE,
                          {'ports': ports, 'seconds': seconds},
                          seconds + CAPTURE_GRACE))

        for kind, args, timeout in steps:
            result = self._probe(kind, local_target, local, args, timeout, ports=ports)
            if result is None:
                return
            self._emit(result)

    # Individual probes

    def _ping(self, target: Target, source: str):
        self._emit(self._probe(
            ProbeKind.PING, target, source,
            {'count': PING_COUNT, 'interval': PING_SPACING},
            PING_COUNT * PING_SPACING + PING_GRACE,
        ))

    def _single_ping(self, target: Target, source: str):
        try:
            self._emit(self._probe(
                ProbeKind.PING, target, source,
                {'count': 1, 'wait': int(SINGLE_PING_TIMEOUT)},
                SINGLE_PING_TIMEOUT,
                cadence=Cadence.CONTINUOUS,
            ))
        except Exception:
            logger.exception("PING_FAILED target=%s", target.address)

    def _throughput(self, target: Target, source: str):
        self._emit(self._probe(
            ProbeKind.THROUGHPUT, target, source,
            {'duration': THROUGHPUT_DURATION},
            THROUGHPUT_DURATION + THROUGHPUT_GRACE,
        ))

    def _traceroute(self, target: Target, source: str):
        self._emit(self._probe(ProbeKind.TRACEROUTE, target, source, {},
                               TRACEROUTE_TIMEOUT))

    def _check_ports(self, target: Target, source: str):
        """Connect to each port in order, stopping at the first refused one"""
        if not target.ports:
            return

        request = ProbeRequest(kind=ProbeKind.PORT_CHECK, target=target,
                               issued_at=self.clock(), timeout=PORT_CHECK_TIMEOUT)
        states: list[tuple[int, bool]] = []
        outputs: list[str] = []
        error: Optional[ErrorKind] = None
        detail: Optional[str] = None

        for port in target.ports:
            if not self._claim():
                break
            out, err, err_detail = self._invoke(
                ProbeKind.PORT_CHECK, target.address,
                {'port': port, 'wait': int(PORT_CHECK_TIMEOUT)}, PORT_CHECK_TIMEOUT)
            if out is None:
                connected = False
                error, detail = err, err_detail
                outputs.append(err_detail)
            else:
                connected = parse_port_check(out.output, out.exit_status)
                outputs.append(out.output.rstrip('\n'))
            states.append((port, connected))
            if not connected:
                break

        if not states:
            return

        success = all(connected for _, connected in states)
        self._emit(ProbeResult(
            request=request,
            success=success,
            raw_output='\n'.join(outputs),
            metrics=summarize_ports(states),
            error=error,
            finished_at=self.clock(),
            source=source,
            detail=detail,
        ))

    def _invoke(self, kind: ProbeKind, address: str, args: Mapping[str, Any],
                timeout: Optional[float]):
        """Run one diagnostic, mapping runner errors to (None, ErrorKind, detail)"""
        try:
            return self.runner.run(kind, address, args, timeout), None, None
        except ProbeTimeout as e:
            logger.warning("PROBE_TIMEOUT kind=%s target=%s timeout=%s",
                           kind.value, address, timeout)
            return None, ErrorKind.TIMEOUT, str(e)
        except ProbeExecutionError as e:
            logger.warning("PROBE_FAILED kind=%s target=%s error=%s",
                           kind.value, address, e)
            return None, ErrorKind.EXECUTION, str(e)

    def _probe(
        self,
        kind: ProbeKind,
        target: Target,
        source: str,
        args: Mapping[str, Any],
        timeout: Optional[float],
        cadence: Cadence = Cadence.COMPREHENSIVE,
        ports: Iterable[int] = (),
    ) -> Optional[ProbeResult]:
        """Dispatch one probe and build its result; None if dispatch is closed"""
        if not self._claim():
            return None

        request = ProbeRequest(kind=kind, target=target, issued_at=self.clock(),
                               timeout=timeout, cadence=cadence)
        logger.debug("DISPATCH id=%d kind=%s target=%s cadence=%s",
                     request.request_id, kind.value, target.address, cadence.value)

        out, error, detail = self._invoke(kind, target.address, args, timeout)
        if out is None:
            return ProbeResult(request=request, success=False, error=error,
                               finished_at=self.clock(), source=source, detail=detail)

        metrics: dict[str, float] = {}
        try:
            metrics = extract(kind, out.output, single_shot=request.single_shot,
                              ports=ports, exit_status=out.exit_status)
        except ParseFailure as e:
            error, detail = ErrorKind.PARSE, str(e)

        if not out.ok:
            error = ErrorKind.EXECUTION
            detail = f"{kind.value} exited with status {out.exit_status}"
        elif error is ErrorKind.PARSE:
            logger.warning("PARSE_FAILURE kind=%s target=%s error=%s",
                           kind.value, target.address, detail)

        return ProbeResult(
            request=request,
            success=out.ok and error is None,
            raw_output=out.output,
            metrics=metrics,
            error=error,
            finished_at=self.clock(),
            source=source,
            detail=detail,
        )

    def _emit(self, result: Optional[ProbeResult]) -> list[Alert]:
        if result is None:
            return []
        alerts = self.evaluator.evaluate(result)
        for alert in alerts:
            logger.debug("ALERT kind=%s target=%s value=%s",
                         alert.kind.value, alert.target.address, alert.measured_value)
        self.channel.put(result, alerts)
        return alerts
