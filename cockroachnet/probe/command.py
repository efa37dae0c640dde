"""
Subprocess-backed probe runner
"""

import logging
import shutil
import subprocess
import time
from pathlib import Path
from typing import Any, Mapping, Optional

from ..errors import ProbeExecutionError, ProbeTimeout
from ..models import ProbeKind
from .base import ProbeRunner, RunOutput


logger = logging.getLogger(__name__)

DEFAULT_TIMEOUT = 60  # seconds, used when a probe has no timeout of its own
CAPTURE_PACKET_LIMIT = 1000

INSTALL_HINT = (
    "yum install -y iputils nc iperf3 tcpdump iproute net-tools traceroute"
)


class SubprocessRunner(ProbeRunner):
    """
    Runs the standard Linux diagnostics as subprocesses.

    Only builds argv lists and captures text; all interpretation of the
    output happens in the extractors.
    """

    TOOLS = {
        ProbeKind.PING: 'ping',
        ProbeKind.PORT_CHECK: 'nc',
        ProbeKind.THROUGHPUT: 'iperf3',
        ProbeKind.TRACEROUTE: 'traceroute',
        ProbeKind.SOCKET_STATS: 'ss',
        ProbeKind.TCP_METRICS: 'netstat',
        ProbeKind.PACKET_CAPTURE: 'tcpdump',
    }

    def __init__(self, capture_dir: Optional[Path] = None,
                 default_timeout: float = DEFAULT_TIMEOUT):
        self.capture_dir = Path(capture_dir) if capture_dir else Path('.')
        self.default_timeout = default_timeout

    def missing_tools(self) -> list[str]:
        return [tool for tool in self.TOOLS.values()
                if shutil.which(tool) is None]

    def build_command(self, kind: ProbeKind, address: str,
                      args: Mapping[str, Any]) -> list[str]:
        """Build argv for a diagnostic"""
        if kind is ProbeKind.PING:
            cmd = ['ping', '-c', str(args.get('count', 10))]
            if 'interval' in args:
                cmd += ['-i', str(args['interval'])]
            if 'wait' in args:
                cmd += ['-W', str(args['wait'])]
            return cmd + [address]

        if kind is ProbeKind.PORT_CHECK:
            return ['nc', '-zv', '-w', str(args.get('wait', 5)),
                    address, str(args['port'])]

        if kind is ProbeKind.THROUGHPUT:
            return ['iperf3', '-c', address,
                    '-t', str(args.get('duration', 10)), '-J']

        if kind is ProbeKind.TRACEROUTE:
            return ['traceroute', '-n', address]

        if kind is ProbeKind.SOCKET_STATS:
            return ['ss', '-tunap']

        if kind is ProbeKind.TCP_METRICS:
            return ['netstat', '-s']

        if kind is ProbeKind.PACKET_CAPTURE:
            ports = list(args.get('ports', ()))
            stamp = time.strftime('%Y%m%d_%H%M%S')
            capture_file = self.capture_dir / f"traffic_{stamp}.pcap"
            cmd = ['tcpdump', '-i', 'any']
            if ports:
                cmd += [' or '.join(f"tcp port {p}" for p in ports)]
            return cmd + ['-w', str(capture_file), '-c', str(CAPTURE_PACKET_LIMIT)]

        raise ValueError(f"Unknown probe kind '{kind}'")

    def run(
        self,
        kind: ProbeKind,
        address: str,
        args: Mapping[str, Any],
        timeout: Optional[float] = None,
    ) -> RunOutput:
        cmd = self.build_command(kind, address, args)
        timeout = timeout if timeout is not None else self.default_timeout
        logger.debug("RUN cmd=%s timeout=%s", ' '.join(cmd), timeout)

        if kind is ProbeKind.PACKET_CAPTURE:
            return self._capture(cmd, float(args.get('seconds', 30)), timeout)

        try:
            proc = subprocess.run(
                cmd,
                capture_output=True,
                text=True,
                timeout=timeout,
            )
        except subprocess.TimeoutExpired as e:
            raise ProbeTimeout(
                f"{cmd[0]} to {address} timed out after {timeout}s",
                timeout=timeout,
            ) from e
        except OSError as e:
            raise ProbeExecutionError(f"Cannot run {cmd[0]}: {e}") from e

        return RunOutput(output=_merge(proc.stdout, proc.stderr),
                         exit_status=proc.returncode)

    def _capture(self, cmd: list[str], seconds: float, timeout: float) -> RunOutput:
        """
        Capture for a fixed window.

        tcpdump only exits by itself after the packet limit, so on a quiet
        port it is terminated when the window closes. That is the normal
        end of a capture and yields whatever tcpdump reported on exit.
        Only a tcpdump that ignores SIGTERM past the timeout is a failure.
        """
        try:
            proc = subprocess.Popen(cmd, stdout=subprocess.PIPE,
                                    stderr=subprocess.PIPE, text=True)
        except OSError as e:
            raise ProbeExecutionError(f"Cannot run {cmd[0]}: {e}") from e

        try:
            stdout, stderr = proc.communicate(timeout=seconds)
            return RunOutput(output=_merge(stdout, stderr), exit_status=proc.returncode)
        except subprocess.TimeoutExpired:
            logger.debug("CAPTURE_WINDOW_END seconds=%s", seconds)
            proc.terminate()

        try:
            stdout, stderr = proc.communicate(timeout=max(timeout - seconds, 1))
        except subprocess.TimeoutExpired as e:
            proc.kill()
            proc.communicate()
            raise ProbeTimeout(
                f"{cmd[0]} did not stop after {timeout}s", timeout=timeout,
            ) from e
        return RunOutput(output=_merge(stdout, stderr), exit_status=0)


def _merge(stdout: Optional[str], stderr: Optional[str]) -> str:
    output = stdout or ''
    if stderr:
        if output and not output.endswith('\n'):
            output += '\n'
        output += stderr
    return output
