"""Tests for the terminate, provision and exec flows."""

from unittest.mock import Mock

import pytest

from fleetdeploy.ec2 import Ec2Connection, InstanceSpec, Region
from fleetdeploy.errors import (
    ConfigurationError,
    FleetConnectionError,
    ProvisioningError,
    ProvisioningTimeoutError,
    UnreadableFileError,
)
from fleetdeploy.executor import RemoteCommandExecutor
from fleetdeploy.models import (
    CommandExecutionResult,
    FleetInstance,
    FleetOperationReport,
    HostIdentity,
    InstanceState,
    ProvisioningOutcome,
    TerminationOutcome,
)
from fleetdeploy.orchestrator import FleetOrchestrator


@pytest.fixture
def ec2():
    return Mock(spec=Ec2Connection)


@pytest.fixture
def connection_factory(ec2):
    return Mock(return_value=ec2)


@pytest.fixture
def executor():
    return Mock(spec=RemoteCommandExecutor)


@pytest.fixture
def orchestrator(connection_factory, executor):
    return FleetOrchestrator(connection_factory, executor)


@pytest.fixture
def host_file(tmp_path):
    path = tmp_path / "hosts"
    path.write_text("a.example.com=10.0.0.1\nb.example.com\n")
    return path


class TestTerminate:
    def test_terminates_external_names(self, orchestrator, ec2, host_file):
        ec2.delete_instances_by_host_name.return_value = [
            TerminationOutcome("a.example.com", InstanceState.TERMINATED),
            TerminationOutcome("b.example.com", InstanceState.NOT_FOUND),
        ]

        report = orchestrator.terminate(host_file)

        ec2.delete_instances_by_host_name.assert_called_once_with(
            ["a.example.com", "b.example.com"]
        )
        assert report.success
        assert report.as_dict() == {
            "a.example.com": "terminated",
            "b.example.com": "not-found",
        }

    def test_missing_host_file_argument(self, orchestrator, connection_factory):
        with pytest.raises(ConfigurationError):
            orchestrator.terminate(None)
        connection_factory.assert_not_called()

    def test_unreadable_host_file(self, orchestrator, connection_factory, tmp_path):
        with pytest.raises(UnreadableFileError):
            orchestrator.terminate(tmp_path / "missing")
        connection_factory.assert_not_called()


class TestProvision:
    SPEC = InstanceSpec("ami-123")

    def test_installs_on_new_instances(self, orchestrator, ec2, executor):
        pending = [FleetInstance(f"i-{n}", None, InstanceState.PENDING) for n in (1, 2)]
        identities = [
            HostIdentity("ec2-1.amazonaws.com", "ip-10-0-0-1.internal"),
            HostIdentity("ec2-2.amazonaws.com", "ip-10-0-0-2.internal"),
        ]
        ec2.create_instances.return_value = pending
        ec2.wait_for_running.return_value = [
            FleetInstance(i.provider_id, identity, InstanceState.RUNNING)
            for i, identity in zip(pending, identities)
        ]
        installed = tuple(CommandExecutionResult(host, 0) for host in identities)
        executor.run.return_value = FleetOperationReport(installed)

        report = orchestrator.provision(
            2, self.SPEC, "install.sh", region="eu-west-1", poll_interval=0
        )

        assert report.success
        assert report.results[2:] == installed
        assert [outcome.name for outcome in report.results[:2]] == ["i-1", "i-2"]
        assert all(isinstance(o, ProvisioningOutcome) for o in report.results[:2])
        assert report.as_dict()["i-1"] == "running as ec2-1.amazonaws.com"
        ec2.create_instances.assert_called_once_with(2, self.SPEC, Region.EU_WEST_1)
        assert ec2.wait_for_running.call_args.args == (pending,)
        command, hosts, _ = executor.run.call_args.args
        assert command == "install.sh"
        assert hosts == identities

    def test_validates_before_connecting(self, orchestrator, connection_factory):
        with pytest.raises(ConfigurationError):
            orchestrator.provision(1, self.SPEC, "install.sh", region="nowhere-1")
        with pytest.raises(ConfigurationError):
            orchestrator.provision(0, self.SPEC, "install.sh")
        with pytest.raises(ConfigurationError):
            orchestrator.provision(1, self.SPEC, "")
        with pytest.raises(ConfigurationError):
            orchestrator.provision(True, self.SPEC, "install.sh")
        connection_factory.assert_not_called()

    @pytest.mark.parametrize(
        "error",
        [
            ProvisioningTimeoutError("Timed out after 600s waiting for i-2", ["i-1", "i-2"]),
            FleetConnectionError("Endpoint unreachable"),
        ],
    )
    def test_failed_wait_names_every_launched_instance(self, orchestrator, ec2, executor, error):
        ec2.create_instances.return_value = [
            FleetInstance(f"i-{n}", None, InstanceState.PENDING) for n in (1, 2)
        ]
        ec2.wait_for_running.side_effect = error

        with pytest.raises(ProvisioningError) as exc_info:
            orchestrator.provision(2, self.SPEC, "install.sh", poll_interval=0)

        assert exc_info.value.instance_ids == ("i-1", "i-2")
        assert "launched instances: i-1, i-2" in str(exc_info.value)
        assert exc_info.value.__cause__ is error
        executor.run.assert_not_called()
        ec2.delete_instances_by_host_name.assert_not_called()


class TestExecute:
    def test_runs_command_on_mapped_hosts(self, orchestrator, executor, host_file, connection_factory):
        executor.run.return_value = FleetOperationReport()

        orchestrator.execute("uptime", host_file)

        command, hosts, listener_factory = executor.run.call_args.args
        assert command == "uptime"
        assert hosts == [
            HostIdentity("a.example.com", "10.0.0.1"),
            HostIdentity("b.example.com", "b.example.com"),
        ]
        assert callable(listener_factory)
        connection_factory.assert_not_called()

    def test_requires_host_file(self, orchestrator):
        with pytest.raises(ConfigurationError):
            orchestrator.execute("uptime", None)
