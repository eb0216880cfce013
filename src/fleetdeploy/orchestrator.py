"""Provision, tear down and run commands across a broker fleet."""

from __future__ import annotations

import logging
from pathlib import Path
from typing import Callable, Optional

from .ec2 import Ec2Connection, InstanceSpec, Region
from .errors import (
    ConfigurationError,
    FleetConnectionError,
    ProvisioningError,
)
from .executor import RemoteCommandExecutor
from .hosts import external_names, load_host_mapping
from .listeners import ListenerFactory, logging_chain_factory
from .models import FleetOperationReport, HostIdentity, ProvisioningOutcome

logger = logging.getLogger(__name__)

ConnectionFactory = Callable[[], Ec2Connection]


class FleetOrchestrator:
    """Sequences the EC2 connection and the remote executor.

    The connection is only built, through ``connection_factory``, once every
    local input has been validated.
    """

    def __init__(
        self,
        connection_factory: ConnectionFactory,
        executor: RemoteCommandExecutor,
        listener_factory: Optional[ListenerFactory] = None,
    ):
        self.connection_factory = connection_factory
        self.executor = executor
        self.listener_factory = listener_factory or logging_chain_factory(
            logging.getLogger("fleetdeploy.output")
        )

    def _load_hosts(self, host_mapping_path: Path | str | None) -> list[HostIdentity]:
        if host_mapping_path is None:
            raise ConfigurationError("Missing required argument hostnames")
        return load_host_mapping(host_mapping_path)

    def terminate(self, host_mapping_path: Path | str | None) -> FleetOperationReport:
        """Terminate the instances named in a host mapping file."""
        hosts = self._load_hosts(host_mapping_path)
        names = external_names(hosts)

        connection = self.connection_factory()
        outcomes = connection.delete_instances_by_host_name(names)
        return FleetOperationReport(tuple(outcomes))

    def provision(
        self,
        count: int,
        spec: InstanceSpec,
        install_command: str,
        region: Region | str | None = None,
        wait_timeout: float = 600,
        poll_interval: float = 10,
    ) -> FleetOperationReport:
        """Launch instances, wait for them and run the install command on each.

        The report lists one provisioning outcome per instance followed by the
        install results. If the instances never all come up, the raised
        :class:`ProvisioningError` names every launched instance; none are
        terminated.
        """
        region = Region.parse(region) if region is not None else None
        if isinstance(count, bool) or count < 1:
            raise ConfigurationError(f"Instance count must be positive, got {count}")
        if not install_command:
            raise ConfigurationError("An install command is required")

        connection = self.connection_factory()
        created = connection.create_instances(count, spec, region)
        launched = [instance.provider_id for instance in created]
        logger.info("Launched %s", ", ".join(launched))
        try:
            running = connection.wait_for_running(
                created, timeout=wait_timeout, poll_interval=poll_interval, region=region
            )
        except (ProvisioningError, FleetConnectionError) as e:
            logger.error("Launched instances were not cleaned up: %s", ", ".join(launched))
            raise ProvisioningError(
                f"{e}; launched instances: {', '.join(launched)}", instance_ids=launched
            ) from e

        hosts = [instance.identity for instance in running]
        for instance in running:
            logger.info(
                "%s is up as %s (%s)",
                instance.provider_id,
                instance.identity.external_name,
                instance.identity.internal_name,
            )

        installed = self.executor.run(install_command, hosts, self.listener_factory)
        provisioned = tuple(ProvisioningOutcome(instance) for instance in running)
        return FleetOperationReport(provisioned + installed.results)

    def execute(
        self, command: str, host_mapping_path: Path | str | None
    ) -> FleetOperationReport:
        """Run a command on every host in a mapping file."""
        if not command:
            raise ConfigurationError("A command is required")
        hosts = self._load_hosts(host_mapping_path)
        return self.executor.run(command, hosts, self.listener_factory)
