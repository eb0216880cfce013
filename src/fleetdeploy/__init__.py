"""fleetdeploy: Provision, tear down and run commands on a broker fleet."""

from .ec2 import Credentials, Ec2Connection, InstanceSpec, Region
from .errors import (
    ConfigurationError,
    FleetConnectionError,
    FleetError,
    ProvisioningError,
    ProvisioningTimeoutError,
    UnreadableFileError,
)
from .executor import HostStatus, RemoteCommandExecutor
from .hosts import format_host_mapping, load_host_mapping, parse_host_mapping
from .listeners import (
    CallbackListener,
    CollectingListener,
    ListenerChain,
    LoggingListener,
    classify_line,
)
from .models import (
    CommandExecutionResult,
    FleetInstance,
    FleetOperationReport,
    HostIdentity,
    InstanceState,
    LineSeverity,
    ProvisioningOutcome,
    TerminationOutcome,
)
from .orchestrator import FleetOrchestrator

__all__ = [
    "CallbackListener",
    "CollectingListener",
    "CommandExecutionResult",
    "ConfigurationError",
    "Credentials",
    "Ec2Connection",
    "FleetConnectionError",
    "FleetError",
    "FleetInstance",
    "FleetOperationReport",
    "FleetOrchestrator",
    "HostIdentity",
    "HostStatus",
    "InstanceSpec",
    "InstanceState",
    "LineSeverity",
    "ListenerChain",
    "LoggingListener",
    "ProvisioningError",
    "ProvisioningOutcome",
    "ProvisioningTimeoutError",
    "Region",
    "RemoteCommandExecutor",
    "TerminationOutcome",
    "UnreadableFileError",
    "classify_line",
    "format_host_mapping",
    "load_host_mapping",
    "parse_host_mapping",
]
