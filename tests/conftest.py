"""Shared fixtures: in-memory doubles for asyncssh and the EC2 client."""

import asyncio
from dataclasses import dataclass, field
from typing import Optional
from unittest.mock import Mock

import pytest

from fleetdeploy.ec2 import Credentials, Ec2Connection
from fleetdeploy.models import HostIdentity


@dataclass
class HostBehaviour:
    """What a fake host does when a command is run on it."""

    stdout: list = field(default_factory=list)
    stderr: list = field(default_factory=list)
    exit_status: int = 0
    hang: bool = False
    connect_error: Optional[Exception] = None
    wait_for: Optional[asyncio.Event] = None
    started: Optional[asyncio.Event] = None


class FakeStream:
    def __init__(self, lines):
        self._lines = list(lines)

    async def readline(self):
        await asyncio.sleep(0)
        if not self._lines:
            return ""
        return self._lines.pop(0) + "\n"


class FakeProcess:
    def __init__(self, behaviour: HostBehaviour):
        self.behaviour = behaviour
        self.stdout = FakeStream(behaviour.stdout)
        self.stderr = FakeStream(behaviour.stderr)
        self.exit_status = None

    async def __aenter__(self):
        return self

    async def __aexit__(self, *exc_info):
        return False

    async def wait(self):
        if self.behaviour.started:
            self.behaviour.started.set()
        if self.behaviour.wait_for:
            await self.behaviour.wait_for.wait()
        if self.behaviour.hang:
            await asyncio.sleep(3600)
        self.exit_status = self.behaviour.exit_status


class FakeConnection:
    def __init__(self, ssh, host, behaviour: HostBehaviour):
        self.ssh = ssh
        self.host = host
        self.behaviour = behaviour

    async def __aenter__(self):
        if self.behaviour.connect_error:
            raise self.behaviour.connect_error
        return self

    async def __aexit__(self, *exc_info):
        return False

    def create_process(self, command, **kwargs):
        self.ssh.commands.append((self.host, command))
        self.ssh.process_options.append(kwargs)
        return FakeProcess(self.behaviour)


class FakeSSH:
    """Stands in for ``asyncssh.connect``."""

    def __init__(self, behaviours):
        self.behaviours = behaviours
        self.connections = []
        self.commands = []
        self.process_options = []

    def connect(self, host, **kwargs):
        self.connections.append((host, kwargs))
        return FakeConnection(self, host, self.behaviours[host])


@pytest.fixture
def fake_ssh(monkeypatch):
    """Install a FakeSSH; tests fill in ``behaviours`` per internal host name."""
    ssh = FakeSSH({})
    monkeypatch.setattr("fleetdeploy.executor.asyncssh.connect", ssh.connect)
    return ssh


@pytest.fixture
def hosts():
    return [
        HostIdentity("ec2-1.compute.amazonaws.com", "ip-10-0-0-1.internal"),
        HostIdentity("ec2-2.compute.amazonaws.com", "ip-10-0-0-2.internal"),
    ]


def raw_instance(instance_id, state="running", public="", private="", public_ip=""):
    return {
        "InstanceId": instance_id,
        "State": {"Name": state},
        "PublicDnsName": public,
        "PublicIpAddress": public_ip,
        "PrivateDnsName": private,
    }


def pages_of(*instances):
    return [{"Reservations": [{"Instances": list(instances)}]}]


@pytest.fixture
def ec2_client():
    """Mock boto3 EC2 client with an empty describe_instances result."""
    client = Mock()
    client.get_paginator.return_value.paginate.return_value = pages_of()
    return client


@pytest.fixture
def ec2_session(ec2_client):
    session = Mock()
    session.client.return_value = ec2_client
    return session


@pytest.fixture
def connection(ec2_session):
    return Ec2Connection(Credentials("AKIDEXAMPLE", "secret"), session=ec2_session)
