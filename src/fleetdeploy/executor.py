"""SSH fan-out of a single command across many hosts."""

from __future__ import annotations

import asyncio
import logging
from enum import Enum
from pathlib import Path
from typing import Callable, Sequence

import asyncssh

from .listeners import ListenerFactory, classify_line
from .models import (
    CommandExecutionResult,
    FleetOperationReport,
    HostIdentity,
    LineSeverity,
)

logger = logging.getLogger(__name__)


class HostStatus(Enum):
    """Progress of a host's unit of work."""

    PENDING = "pending"
    CONNECTING = "connecting"
    RUNNING = "running"
    SUCCESS = "success"
    FAILED = "failed"
    TIMED_OUT = "timed out"


StatusCallback = Callable[[int, HostIdentity, HostStatus], None]  # (position, host, status) -> None


class RemoteCommandExecutor:
    """Runs one command on every host concurrently and reports per host."""

    def __init__(
        self,
        user: str = "root",
        port: int = 22,
        ssh_key: Path | None = None,
        timeout: float = 600,
        process_exceptions: bool = True,
        on_status: StatusCallback | None = None,
    ):
        self.user = user
        self.port = port
        self.ssh_key = ssh_key
        self.timeout = timeout
        self.process_exceptions = process_exceptions
        self.on_status = on_status

    def _emit_status(self, index: int, host: HostIdentity, status: HostStatus) -> None:
        if self.on_status:
            self.on_status(index, host, status)

    def run(
        self,
        command: str,
        hosts: Sequence[HostIdentity],
        listener_factory: ListenerFactory,
    ) -> FleetOperationReport:
        """Blocking wrapper around :meth:`execute`."""
        return asyncio.run(self.execute(command, hosts, listener_factory))

    async def execute(
        self,
        command: str,
        hosts: Sequence[HostIdentity],
        listener_factory: ListenerFactory,
    ) -> FleetOperationReport:
        """Run ``command`` on all hosts in parallel.

        A host failing or timing out never affects the others; results are
        collected once every host has finished.
        """
        for index, host in enumerate(hosts):
            self._emit_status(index, host, HostStatus.PENDING)

        logger.info("Running %r on %d host(s)", command, len(hosts))
        tasks = [
            self._run_host(index, command, host, listener_factory)
            for index, host in enumerate(hosts)
        ]
        results = await asyncio.gather(*tasks)

        report = FleetOperationReport(tuple(results))
        for result in report.failures:
            logger.warning("%s: %s", result.host, result.describe())
        return report

    async def _run_host(
        self,
        index: int,
        command: str,
        host: HostIdentity,
        listener_factory: ListenerFactory,
    ) -> CommandExecutionResult:
        """Run the command on a single host, bounded by the timeout.

        Every error is turned into a failed result for this host only.
        """
        lines: list[tuple[str, LineSeverity]] = []

        def failed(error: str) -> CommandExecutionResult:
            self._emit_status(index, host, HostStatus.FAILED)
            return CommandExecutionResult(host, None, lines=tuple(lines), error=error)

        try:
            chain = listener_factory(host)

            def emit(line: str) -> None:
                lines.append((line, classify_line(line, self.process_exceptions)))
                chain.receive_line(host, line)

            exit_status = await asyncio.wait_for(
                self._run_command(index, host, command, emit), timeout=self.timeout
            )
        except asyncio.TimeoutError:
            self._emit_status(index, host, HostStatus.TIMED_OUT)
            return CommandExecutionResult(host, None, timed_out=True, lines=tuple(lines))
        except asyncssh.Error as e:
            return failed(f"SSH error: {e}")
        except OSError as e:
            return failed(f"Connection error: {e}")
        except Exception as e:
            logger.exception("%s: unexpected error", host)
            return failed(f"{type(e).__name__}: {e}")

        if exit_status == 0:
            self._emit_status(index, host, HostStatus.SUCCESS)
        else:
            self._emit_status(index, host, HostStatus.FAILED)
            logger.debug("%s: command exited with status %s", host, exit_status)
        return CommandExecutionResult(host, exit_status, lines=tuple(lines))

    async def _run_command(
        self, index: int, host: HostIdentity, command: str, emit: Callable[[str], None]
    ) -> int:
        """Connect, stream output into ``emit`` and return the exit status."""
        self._emit_status(index, host, HostStatus.CONNECTING)
        logger.debug("Connecting to %s@%s:%d", self.user, host.internal_name, self.port)

        options = {}
        if self.ssh_key:
            options["client_keys"] = [str(self.ssh_key)]

        async with asyncssh.connect(
            host.internal_name,
            port=self.port,
            username=self.user,
            known_hosts=None,
            **options,
        ) as conn:
            self._emit_status(index, host, HostStatus.RUNNING)

            # Undecodable bytes become U+FFFD instead of breaking the channel
            async with conn.create_process(
                command, encoding="utf-8", errors="replace"
            ) as proc:
                # Read stdout and stderr concurrently
                async def read_stream(stream) -> None:
                    while True:
                        line = await stream.readline()
                        if not line:
                            break
                        emit(line.rstrip("\n\r"))

                await asyncio.gather(read_stream(proc.stdout), read_stream(proc.stderr))
                await proc.wait()
                return proc.exit_status
