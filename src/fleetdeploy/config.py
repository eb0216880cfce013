"""Configuration for fleetdeploy runs.

Everything is validated once, up front, and frozen. Nothing in here talks to
the network.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field, replace
from pathlib import Path
from typing import Any, Optional

import yaml

from .ec2 import Credentials, InstanceSpec, Region
from .errors import ConfigurationError, UnreadableFileError

LOG_LEVELS = {
    "debug": logging.DEBUG,
    "info": logging.INFO,
    "warn": logging.WARNING,
    "error": logging.ERROR,
    "off": logging.CRITICAL + 1,
}


def _read_file(path: str | Path) -> str:
    path = Path(path).expanduser()
    try:
        return path.read_text()
    except OSError as e:
        raise UnreadableFileError(f"File {path} cannot be read: {e.strerror or e}") from e


def resolve_credential(name: str, value: str | None, path: str | Path | None) -> str:
    """Return a credential given inline or via a file, never both."""
    if value is None and path is None:
        raise ConfigurationError(f"Missing required argument {name} or {name}file")
    if value is not None and path is not None:
        raise ConfigurationError(f"Provide either {name} or {name}file, not both")
    if value is not None:
        return value
    return _read_file(path).strip()


def resolve_credentials(
    access_id: str | None = None,
    access_id_file: str | Path | None = None,
    secret_key: str | None = None,
    secret_key_file: str | Path | None = None,
) -> Credentials:
    """Resolve both credential fields.

    Both pairs are checked for conflicts before either file is read.
    """
    for name, value, path in (
        ("accessid", access_id, access_id_file),
        ("secretkey", secret_key, secret_key_file),
    ):
        if (value is None) == (path is None):
            resolve_credential(name, value, path)

    return Credentials(
        access_id=resolve_credential("accessid", access_id, access_id_file),
        secret_key=resolve_credential("secretkey", secret_key, secret_key_file),
    )


def parse_log_level(name: str | None) -> int:
    if name is None:
        return logging.INFO
    try:
        return LOG_LEVELS[name.lower()]
    except KeyError:
        raise ConfigurationError(
            f"Unknown logging level {name!r}; options are {', '.join(LOG_LEVELS)}"
        ) from None


@dataclass(frozen=True)
class SshSettings:
    """How to reach hosts for remote commands."""

    user: str = "root"
    port: int = 22
    key: Optional[Path] = None
    timeout: float = 600


@dataclass(frozen=True)
class FleetConfig:
    """Validated configuration for a single CLI invocation."""

    credentials: Optional[Credentials] = None
    hostnames: Optional[Path] = None
    region: Region = field(default_factory=Region.default)
    log_level: int = logging.INFO
    ssh: SshSettings = field(default_factory=SshSettings)

    @classmethod
    def from_args(cls, args: Any, require_credentials: bool = True) -> FleetConfig:
        """Build from an argparse namespace.

        Raises ConfigurationError for missing or conflicting options and
        UnreadableFileError for credential files that cannot be read.
        """
        log_level = parse_log_level(getattr(args, "logging", None))
        region = Region.parse(getattr(args, "region", None))

        credentials = None
        if require_credentials:
            credentials = resolve_credentials(
                access_id=getattr(args, "accessid", None),
                access_id_file=getattr(args, "accessidfile", None),
                secret_key=getattr(args, "secretkey", None),
                secret_key_file=getattr(args, "secretkeyfile", None),
            )

        hostnames = getattr(args, "hostnames", None)
        key = getattr(args, "key", None)
        ssh = SshSettings(
            user=getattr(args, "user", None) or SshSettings.user,
            port=getattr(args, "port", None) or SshSettings.port,
            key=Path(key).expanduser() if key else None,
            timeout=getattr(args, "timeout", None) or SshSettings.timeout,
        )

        return cls(
            credentials=credentials,
            hostnames=Path(hostnames).expanduser() if hostnames else None,
            region=region,
            log_level=log_level,
            ssh=ssh,
        )


@dataclass(frozen=True)
class ProvisionConfig:
    """What to launch and what to run on it once it is up."""

    count: int
    instance: InstanceSpec
    install_commands: tuple[str, ...]
    region: Optional[Region] = None
    ssh: SshSettings = field(default_factory=SshSettings)
    wait_timeout: float = 600
    source_path: Optional[Path] = None

    @property
    def install_command(self) -> str:
        return " && ".join(self.install_commands)


def load_provision_config(config_path: str | Path) -> ProvisionConfig:
    """Load and validate a provisioning plan from a YAML file."""
    config_path = Path(config_path).expanduser().resolve()
    raw = yaml.safe_load(_read_file(config_path)) or {}
    if not isinstance(raw, dict):
        raise ConfigurationError(f"{config_path} must contain a mapping")

    return replace(_parse_provision_config(raw), source_path=config_path)


def _number(raw: dict[str, Any], key: str, default, integer: bool = False):
    """Read a positive number; YAML booleans are rejected even though they are ints."""
    value = raw.get(key, default)
    kinds = int if integer else (int, float)
    if isinstance(value, bool) or not isinstance(value, kinds) or value <= 0:
        kind = "integer" if integer else "number"
        raise ConfigurationError(f"{key} must be a positive {kind}, got {value!r}")
    return value


def _string_list(value: Any, what: str) -> list[str]:
    if not isinstance(value, list) or not all(isinstance(item, str) for item in value):
        raise ConfigurationError(f"{what} must be a list of strings, got {value!r}")
    return value


def _parse_ssh(raw: dict[str, Any]) -> SshSettings:
    """Parse the ssh section."""
    ssh_raw = raw.get("ssh") or {}
    if not isinstance(ssh_raw, dict):
        raise ConfigurationError("ssh section must be a mapping")
    user = ssh_raw.get("user", SshSettings.user)
    if not isinstance(user, str):
        raise ConfigurationError(f"ssh user must be a string, got {user!r}")
    key = ssh_raw.get("key")
    return SshSettings(
        user=user,
        port=_number(ssh_raw, "port", SshSettings.port, integer=True),
        key=Path(key).expanduser() if key else None,
        timeout=_number(ssh_raw, "timeout", SshSettings.timeout),
    )


def _parse_instance(raw: dict[str, Any]) -> InstanceSpec:
    instance_raw = raw.get("instance") or {}
    image_id = instance_raw.get("image_id")
    if not image_id:
        raise ConfigurationError("instance section must have an 'image_id' field")
    return InstanceSpec(
        image_id=image_id,
        instance_type=instance_raw.get("instance_type", InstanceSpec.instance_type),
        key_name=instance_raw.get("key_name"),
        security_groups=tuple(instance_raw.get("security_groups", ())),
    )


def _parse_provision_config(raw: dict[str, Any]) -> ProvisionConfig:
    """Parse raw YAML data into a ProvisionConfig."""
    count = _number(raw, "count", 1, integer=True)

    command_groups = raw.get("command_groups") or {}
    if not isinstance(command_groups, dict):
        raise ConfigurationError("command_groups must be a mapping")
    for name, group in command_groups.items():
        _string_list(group, f"command group {name!r}")
    install_commands = _string_list(raw.get("install_commands", []), "install_commands")

    commands = _resolve_commands(install_commands, command_groups)
    if not commands:
        raise ConfigurationError("At least one install command is required")

    region = raw.get("region")
    return ProvisionConfig(
        count=count,
        instance=_parse_instance(raw),
        install_commands=tuple(commands),
        region=Region.parse(region) if region is not None else None,
        ssh=_parse_ssh(raw),
        wait_timeout=_number(raw, "wait_timeout", 600),
    )


def _resolve_commands(
    commands_raw: list[str], command_groups: dict[str, list[str]]
) -> list[str]:
    """Resolve command group references to actual commands."""
    commands = []

    for cmd in commands_raw:
        if cmd in command_groups:
            # It's a group reference, expand it
            commands.extend(command_groups[cmd])
        else:
            commands.append(cmd)

    return commands
