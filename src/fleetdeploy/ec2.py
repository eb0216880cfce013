"""EC2 connection: create instances and terminate them by host name."""

from __future__ import annotations

import logging
import threading
import time
from contextlib import contextmanager
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Iterable, Iterator, Optional, Sequence

import boto3
from botocore.config import Config
from botocore.exceptions import BotoCoreError, ClientError

from .errors import ConfigurationError, FleetConnectionError, ProvisioningTimeoutError
from .models import FleetInstance, HostIdentity, InstanceState, TerminationOutcome

logger = logging.getLogger(__name__)

AUTH_ERROR_CODES = {
    "AuthFailure",
    "UnauthorizedOperation",
    "InvalidClientTokenId",
    "SignatureDoesNotMatch",
    "OptInRequired",
}

BOTO_CONFIG = Config(
    retries={"max_attempts": 3, "mode": "standard"},
    connect_timeout=5,
    read_timeout=30,
)


class Region(str, Enum):
    """EC2 regions this tool deploys to."""

    US_EAST_1 = "us-east-1"
    US_WEST_1 = "us-west-1"
    EU_WEST_1 = "eu-west-1"
    AP_SOUTHEAST_1 = "ap-southeast-1"

    @classmethod
    def default(cls) -> Region:
        return cls.US_EAST_1

    @classmethod
    def parse(cls, value: str | Region | None) -> Region:
        """Parse a region name or endpoint such as ``ec2.eu-west-1.amazonaws.com``.

        ``None`` means the default region; anything unrecognized is an error.
        """
        if value is None:
            return cls.default()
        if isinstance(value, cls):
            return value
        if not isinstance(value, str):
            raise ConfigurationError(f"Region must be a name, got {value!r}")

        name = value.strip().lower()
        for prefix in ("https://", "http://"):
            if name.startswith(prefix):
                name = name[len(prefix):]
        if name.startswith("ec2.") and name.endswith(".amazonaws.com"):
            name = name[len("ec2."):-len(".amazonaws.com")]

        try:
            return cls(name)
        except ValueError:
            choices = ", ".join(region.value for region in cls)
            raise ConfigurationError(
                f"Unknown region {value!r}; options are {choices}"
            ) from None


@dataclass(frozen=True)
class Credentials:
    access_id: str
    secret_key: str = field(repr=False)


@dataclass(frozen=True)
class InstanceSpec:
    """What to launch."""

    image_id: str
    instance_type: str = "m1.large"
    key_name: Optional[str] = None
    security_groups: tuple[str, ...] = ()


def _error_code(error: BaseException | None) -> str | None:
    if isinstance(error, ClientError):
        return error.response.get("Error", {}).get("Code")
    return None


@contextmanager
def _api_call(action: str) -> Iterator[None]:
    """Translate boto failures into :class:`FleetConnectionError`."""
    try:
        yield
    except ClientError as e:
        error_code = e.response.get("Error", {}).get("Code", "Unknown")
        error_message = e.response.get("Error", {}).get("Message", str(e))
        if error_code in AUTH_ERROR_CODES:
            raise FleetConnectionError(
                f"EC2 rejected the credentials during {action}: {error_message}"
            ) from e
        raise FleetConnectionError(
            f"EC2 {action} failed: {error_code} - {error_message}"
        ) from e
    except BotoCoreError as e:
        raise FleetConnectionError(f"EC2 unreachable during {action}: {e}") from e


def _public_addresses(raw: dict[str, Any]) -> list[str]:
    return [
        address
        for address in (raw.get("PublicDnsName"), raw.get("PublicIpAddress"))
        if address
    ]


def _to_instance(raw: dict[str, Any]) -> FleetInstance:
    identity = None
    addresses = _public_addresses(raw)
    if addresses:
        external = addresses[0]
        internal = raw.get("PrivateDnsName") or raw.get("PrivateIpAddress") or external
        identity = HostIdentity(external, internal)

    state = InstanceState.from_provider(raw.get("State", {}).get("Name", "pending"))
    return FleetInstance(raw["InstanceId"], identity, state)


class Ec2Connection:
    """Creates and terminates EC2 instances for a fleet.

    The boto3 session is built eagerly but no request is sent until one of
    the operations is called.
    """

    def __init__(
        self,
        credentials: Credentials,
        region: Region | str | None = None,
        session: Any = None,
    ):
        self.region = Region.parse(region)
        self._session = session or boto3.Session(
            aws_access_key_id=credentials.access_id,
            aws_secret_access_key=credentials.secret_key,
        )
        self._clients: dict[Region, Any] = {}
        self._terminated: set[str] = set()
        self._lock = threading.RLock()

    def _client(self, region: Region | None = None) -> Any:
        region = region or self.region
        if region not in self._clients:
            self._clients[region] = self._session.client(
                "ec2", region_name=region.value, config=BOTO_CONFIG
            )
        return self._clients[region]

    def create_instances(
        self, count: int, spec: InstanceSpec, region: Region | str | None = None
    ) -> list[FleetInstance]:
        """Launch ``count`` instances; they come back pending."""
        region = Region.parse(region) if region is not None else self.region
        if count < 1:
            raise ConfigurationError(f"Instance count must be positive, got {count}")

        params: dict[str, Any] = {
            "ImageId": spec.image_id,
            "InstanceType": spec.instance_type,
            "MinCount": count,
            "MaxCount": count,
        }
        if spec.key_name:
            params["KeyName"] = spec.key_name
        if spec.security_groups:
            params["SecurityGroups"] = list(spec.security_groups)

        logger.info(
            "Creating %d %s instance(s) of %s in %s",
            count,
            spec.instance_type,
            spec.image_id,
            region.value,
        )
        with _api_call("run_instances"):
            response = self._client(region).run_instances(**params)

        instances = [
            FleetInstance(raw["InstanceId"], None, InstanceState.PENDING)
            for raw in response.get("Instances", [])
        ]
        logger.debug("Created %s", ", ".join(i.provider_id for i in instances))
        return instances

    def _describe(self, region: Region | None = None, **params: Any) -> list[dict[str, Any]]:
        raws = []
        with _api_call("describe_instances"):
            paginator = self._client(region).get_paginator("describe_instances")
            for page in paginator.paginate(**params):
                for reservation in page.get("Reservations", []):
                    raws.extend(reservation.get("Instances", []))
        return raws

    def describe_instances(
        self, instance_ids: Sequence[str], region: Region | None = None
    ) -> list[FleetInstance]:
        """Current view of the given instances, in the order requested."""
        if not instance_ids:
            return []
        try:
            raws = self._describe(region, InstanceIds=list(instance_ids))
        except FleetConnectionError as e:
            # freshly launched ids can take a moment to become visible
            if _error_code(e.__cause__) != "InvalidInstanceID.NotFound":
                raise
            raws = []

        by_id = {raw["InstanceId"]: _to_instance(raw) for raw in raws}
        return [
            by_id.get(instance_id, FleetInstance(instance_id, None, InstanceState.NOT_FOUND))
            for instance_id in instance_ids
        ]

    def wait_for_running(
        self,
        instances: Sequence[FleetInstance],
        timeout: float = 600,
        poll_interval: float = 10,
        region: Region | None = None,
    ) -> list[FleetInstance]:
        """Poll until every instance is running and has a public address."""
        instance_ids = [instance.provider_id for instance in instances]
        deadline = time.monotonic() + timeout

        while True:
            current = self.describe_instances(instance_ids, region)
            gone = [
                i.provider_id
                for i in current
                if i.state in (InstanceState.TERMINATING, InstanceState.TERMINATED)
            ]
            if gone:
                raise ProvisioningTimeoutError(
                    f"Instance(s) {', '.join(gone)} stopped before reaching running",
                    instance_ids=instance_ids,
                )

            waiting = [
                i.provider_id
                for i in current
                if i.state != InstanceState.RUNNING or i.identity is None
            ]
            if not waiting:
                return current

            if time.monotonic() >= deadline:
                raise ProvisioningTimeoutError(
                    f"Timed out after {timeout}s waiting for {', '.join(waiting)}",
                    instance_ids=instance_ids,
                )
            logger.debug("Waiting for %d instance(s) to start", len(waiting))
            time.sleep(poll_interval)

    def _lookup_by_host_name(self) -> tuple[dict[str, str], set[str]]:
        """Map public addresses of running instances to instance ids.

        Also returns the addresses of instances already shutting down or
        terminated.
        """
        running: dict[str, str] = {}
        gone: set[str] = set()
        for raw in self._describe():
            state = raw.get("State", {}).get("Name")
            for address in _public_addresses(raw):
                if state == "running":
                    running[address] = raw["InstanceId"]
                elif state in ("shutting-down", "terminated"):
                    gone.add(address)
        return running, gone

    def delete_instances_by_host_name(self, names: Iterable[str]) -> list[TerminationOutcome]:
        """Terminate the running instances behind the given public host names.

        Names with no running instance are reported as NOT_FOUND. Names whose
        instance is already gone are reported as TERMINATED again, so a batch
        can be retried.
        """
        names = list(names)
        if not names:
            return []

        with self._lock:
            running, gone = self._lookup_by_host_name()

            outcomes = []
            instance_ids: list[str] = []
            for name in names:
                if name in running:
                    if running[name] not in instance_ids:
                        instance_ids.append(running[name])
                    outcomes.append(TerminationOutcome(name, InstanceState.TERMINATED))
                elif name in gone or name in self._terminated:
                    logger.debug("%s is already terminated", name)
                    outcomes.append(TerminationOutcome(name, InstanceState.TERMINATED))
                else:
                    logger.warning("No running instance found for %s", name)
                    outcomes.append(TerminationOutcome(name, InstanceState.NOT_FOUND))

            if instance_ids:
                logger.info("Terminating %s", ", ".join(instance_ids))
                with _api_call("terminate_instances"):
                    self._client().terminate_instances(InstanceIds=instance_ids)

            self._terminated.update(
                outcome.name
                for outcome in outcomes
                if outcome.state == InstanceState.TERMINATED
            )
            return outcomes
