"""Shared data structures for fleet operations."""

from __future__ import annotations

import logging
from dataclasses import dataclass
from enum import Enum
from typing import Union


@dataclass(frozen=True)
class HostIdentity:
    """Public/private address pair for one host."""

    external_name: str
    internal_name: str

    def __str__(self) -> str:
        return self.internal_name


class InstanceState(Enum):
    """State of a provider-managed instance."""

    PENDING = "pending"
    RUNNING = "running"
    TERMINATING = "terminating"
    TERMINATED = "terminated"
    NOT_FOUND = "not-found"  # only ever reported, never a provider state

    @classmethod
    def from_provider(cls, name: str) -> InstanceState:
        """Map an EC2 instance-state name onto our states."""
        if name == "pending":
            return cls.PENDING
        if name == "running":
            return cls.RUNNING
        if name == "terminated":
            return cls.TERMINATED
        # shutting-down, stopping, stopped
        return cls.TERMINATING


@dataclass(frozen=True)
class FleetInstance:
    """An instance as seen by the cloud provider."""

    provider_id: str
    identity: HostIdentity | None
    state: InstanceState


class LineSeverity(Enum):
    """Severity assigned to a line of remote output."""

    ROUTINE = logging.DEBUG
    ELEVATED = logging.WARNING


@dataclass(frozen=True)
class CommandExecutionResult:
    """Outcome of running one command on one host."""

    host: HostIdentity
    exit_status: int | None
    timed_out: bool = False
    lines: tuple[tuple[str, LineSeverity], ...] = ()
    error: str | None = None

    @property
    def success(self) -> bool:
        return self.exit_status == 0 and not self.timed_out

    @property
    def name(self) -> str:
        return self.host.internal_name

    def describe(self) -> str:
        if self.timed_out:
            return "timed out"
        if self.exit_status is None:
            return f"failed: {self.error}" if self.error else "failed"
        return f"exit {self.exit_status}"


@dataclass(frozen=True)
class TerminationOutcome:
    """Outcome of terminating the instance behind one host name."""

    name: str
    state: InstanceState

    @property
    def success(self) -> bool:
        # NOT_FOUND is a warning, it does not fail the batch
        return self.state in (InstanceState.TERMINATED, InstanceState.NOT_FOUND)

    def describe(self) -> str:
        return self.state.value


@dataclass(frozen=True)
class ProvisioningOutcome:
    """Outcome of launching one instance and waiting for it to run."""

    instance: FleetInstance

    @property
    def success(self) -> bool:
        return self.instance.state is InstanceState.RUNNING

    @property
    def name(self) -> str:
        return self.instance.provider_id

    def describe(self) -> str:
        identity = self.instance.identity
        if identity is None:
            return self.instance.state.value
        return f"{self.instance.state.value} as {identity.external_name}"


HostResult = Union[CommandExecutionResult, TerminationOutcome, ProvisioningOutcome]


@dataclass(frozen=True)
class FleetOperationReport:
    """Per-host outcomes of a batch operation, in request order."""

    results: tuple[HostResult, ...] = ()

    @property
    def success(self) -> bool:
        return all(result.success for result in self.results)

    @property
    def failures(self) -> list[HostResult]:
        return [result for result in self.results if not result.success]

    def as_dict(self) -> dict[str, str]:
        """Render as ``{name: outcome}``; later duplicates overwrite earlier ones."""
        return {result.name: result.describe() for result in self.results}

    def __len__(self) -> int:
        return len(self.results)

    def __iter__(self):
        return iter(self.results)
