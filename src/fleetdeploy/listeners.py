"""Observers of remote command output.

Each host gets its own :class:`ListenerChain`. A chain is an ordered tuple of
stages and every stage sees every line, in order, whatever earlier stages did
with it.
"""

from __future__ import annotations

import logging
from abc import ABC, abstractmethod
from typing import Callable, Iterable

from .models import HostIdentity, LineSeverity


def classify_line(line: str, process_exceptions: bool) -> LineSeverity:
    """Guess whether a line belongs to a Java stack trace.

    Not fool-proof: any line mentioning "Exception" or starting with "\\tat"
    is treated as elevated.
    """
    if process_exceptions and ("Exception" in line or line.startswith("\tat")):
        return LineSeverity.ELEVATED
    return LineSeverity.ROUTINE


class CommandOutputListener(ABC):
    """Receives lines of output from a remote host."""

    @abstractmethod
    def output_received(self, host: HostIdentity, line: str) -> None:
        ...


class LoggingListener(CommandOutputListener):
    """Writes each line to a logger at a severity picked by :func:`classify_line`."""

    def __init__(self, logger: logging.Logger, process_exceptions: bool = True):
        self.logger = logger
        self.process_exceptions = process_exceptions

    def output_received(self, host: HostIdentity, line: str) -> None:
        level = classify_line(line, self.process_exceptions).value
        if self.logger.isEnabledFor(level):
            self.logger.log(level, "%s: %s", host, line)


class CollectingListener(CommandOutputListener):
    """Keeps every observation in memory."""

    def __init__(self) -> None:
        self.observations: list[tuple[HostIdentity, str]] = []

    def output_received(self, host: HostIdentity, line: str) -> None:
        self.observations.append((host, line))

    @property
    def lines(self) -> list[str]:
        return [line for _, line in self.observations]


class CallbackListener(CommandOutputListener):
    """Forwards lines to a plain ``(host, line)`` callable."""

    def __init__(self, callback: Callable[[HostIdentity, str], None]):
        self.callback = callback

    def output_received(self, host: HostIdentity, line: str) -> None:
        self.callback(host, line)


class ListenerChain:
    """Ordered stages that all observe the same lines."""

    def __init__(self, stages: Iterable[CommandOutputListener] = ()):
        self.stages: tuple[CommandOutputListener, ...] = tuple(stages)

    def receive_line(self, host: HostIdentity, line: str) -> None:
        for stage in self.stages:
            stage.output_received(host, line)

    def then(self, stage: CommandOutputListener) -> ListenerChain:
        """Return a new chain with ``stage`` appended."""
        return ListenerChain(self.stages + (stage,))

    def __len__(self) -> int:
        return len(self.stages)


ListenerFactory = Callable[[HostIdentity], ListenerChain]


def logging_chain_factory(
    logger: logging.Logger, process_exceptions: bool = True
) -> ListenerFactory:
    """Factory building a fresh single-stage logging chain per host."""

    def factory(host: HostIdentity) -> ListenerChain:
        return ListenerChain([LoggingListener(logger, process_exceptions)])

    return factory
