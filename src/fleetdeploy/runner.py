#!/usr/bin/env python3
"""Main entry point for fleetdeploy."""

import argparse
import logging
import sys
from pathlib import Path
from typing import Optional

import asyncssh

from .config import (
    LOG_LEVELS,
    FleetConfig,
    ProvisionConfig,
    SshSettings,
    load_provision_config,
)
from .ec2 import Ec2Connection, Region
from .errors import (
    ConfigurationError,
    FleetConnectionError,
    ProvisioningError,
    UnreadableFileError,
)
from .executor import HostStatus, RemoteCommandExecutor, StatusCallback
from .listeners import (
    CallbackListener,
    ListenerChain,
    ListenerFactory,
    LoggingListener,
)
from .models import FleetOperationReport, HostIdentity
from .orchestrator import FleetOrchestrator

EXIT_OK = 0
EXIT_FAILURE = 1
EXIT_UNREADABLE_FILE = 2

# ANSI colors for different hosts
COLORS = [
    "\033[36m",  # Cyan
    "\033[33m",  # Yellow
    "\033[35m",  # Magenta
    "\033[32m",  # Green
    "\033[34m",  # Blue
    "\033[91m",  # Light Red
    "\033[96m",  # Light Cyan
    "\033[93m",  # Light Yellow
]
RESET = "\033[0m"

output_logger = logging.getLogger("fleetdeploy.output")


def configure_logging(level: int) -> None:
    """Set up process-wide logging once, before any work starts."""
    logging.basicConfig(
        level=level,
        format="%(asctime)s %(levelname)-7s %(name)s: %(message)s",
        stream=sys.stderr,
        force=True,
    )
    logging.disable(logging.CRITICAL if level > logging.CRITICAL else logging.NOTSET)


class _ArgumentParser(argparse.ArgumentParser):
    """Exits with the configuration error status rather than argparse's 2."""

    def error(self, message):
        self.print_usage(sys.stderr)
        self.exit(EXIT_FAILURE, f"{self.prog}: error: {message}\n")


def build_parser() -> argparse.ArgumentParser:
    common = argparse.ArgumentParser(add_help=False)
    common.add_argument(
        "--logging",
        default="info",
        help=f"Options are {', '.join(LOG_LEVELS)} (default info)",
    )

    cloud = argparse.ArgumentParser(add_help=False)
    cloud.add_argument("--accessid", help="Access ID (used instead of --accessidfile)")
    cloud.add_argument("--accessidfile", help="Access ID file (used instead of --accessid)")
    cloud.add_argument("--secretkey", help="Secret key (used instead of --secretkeyfile)")
    cloud.add_argument("--secretkeyfile", help="Secret key file (used instead of --secretkey)")
    cloud.add_argument(
        "--region",
        help="Region; options are "
        + ", ".join(region.value for region in Region)
        + f" (default {Region.default().value})",
    )

    ssh = argparse.ArgumentParser(add_help=False)
    ssh.add_argument("--key", help="SSH private key to authenticate with")
    ssh.add_argument("--user", help=f"SSH user (default {SshSettings.user})")
    ssh.add_argument("--port", type=int, help=f"SSH port (default {SshSettings.port})")
    ssh.add_argument(
        "--timeout",
        type=float,
        help=f"Per-host command timeout in seconds (default {SshSettings.timeout:g})",
    )
    ssh.add_argument(
        "--dashboard",
        action="store_true",
        help="Run with the TUI dashboard",
    )

    parser = _ArgumentParser(
        prog="fleetdeploy",
        description="Provision, tear down and run commands on a broker fleet",
    )
    subparsers = parser.add_subparsers(dest="command", required=True)

    terminate = subparsers.add_parser(
        "terminate",
        parents=[common, cloud],
        help="Terminate the instances listed in a host names file",
    )
    terminate.add_argument("--hostnames", help="File containing host names")

    provision = subparsers.add_parser(
        "provision",
        parents=[common, cloud, ssh],
        help="Launch instances and run the install commands on them",
    )
    provision.add_argument("plan", help="Path to YAML provisioning plan")

    execute = subparsers.add_parser(
        "exec",
        parents=[common, ssh],
        help="Run a command on every host in a host names file",
    )
    execute.add_argument("--hostnames", help="File containing host names")
    execute.add_argument("remote_command", metavar="command", help="Command to run")

    for subparser in (terminate, provision, execute):
        subparser.set_defaults(print_usage=subparser.print_usage)

    return parser


def _console_factory(process_exceptions: bool = True) -> ListenerFactory:
    """Chain per host: log the line, then print it in the host's color."""
    colors: dict[HostIdentity, str] = {}

    def print_line(host: HostIdentity, line: str) -> None:
        print(f"{colors[host]}[{host}]{RESET} {line}")

    def factory(host: HostIdentity) -> ListenerChain:
        colors.setdefault(host, COLORS[len(colors) % len(COLORS)])
        return ListenerChain(
            [LoggingListener(output_logger, process_exceptions), CallbackListener(print_line)]
        )

    return factory


def _print_status(index: int, host: HostIdentity, status: HostStatus) -> None:
    print(f"[{host}] Status: {status.value}")


def _print_report(report: FleetOperationReport) -> None:
    print()
    for result in report:
        print(f"{result.name}: {result.describe()}")
    if not report.success:
        failed = ", ".join(result.name for result in report.failures)
        print(f"\nFailed hosts: {failed}", file=sys.stderr)


def _resolve_ssh(args: argparse.Namespace, base: SshSettings) -> SshSettings:
    """Apply command-line SSH overrides and check the key can be loaded."""
    ssh = SshSettings(
        user=args.user or base.user,
        port=args.port or base.port,
        key=Path(args.key).expanduser() if args.key else base.key,
        timeout=args.timeout or base.timeout,
    )
    if ssh.key:
        if not ssh.key.is_file():
            raise UnreadableFileError(f"SSH key not found: {ssh.key}")
        try:
            asyncssh.read_private_key(ssh.key)
        except asyncssh.KeyImportError as e:
            raise ConfigurationError(f"Cannot load SSH key {ssh.key}: {e}") from e
        except OSError as e:
            raise UnreadableFileError(f"Cannot read SSH key {ssh.key}: {e}") from e
    return ssh


def _run(
    args: argparse.Namespace,
    config: FleetConfig,
    ssh: SshSettings,
    plan: Optional[ProvisionConfig],
    listener_factory: ListenerFactory,
    on_status: Optional[StatusCallback],
) -> FleetOperationReport:
    region = config.region
    if plan and plan.region and not args.region:
        region = plan.region

    executor = RemoteCommandExecutor(
        user=ssh.user,
        port=ssh.port,
        ssh_key=ssh.key,
        timeout=ssh.timeout,
        on_status=on_status,
    )
    orchestrator = FleetOrchestrator(
        lambda: Ec2Connection(config.credentials, region),
        executor,
        listener_factory,
    )

    if args.command == "terminate":
        return orchestrator.terminate(config.hostnames)
    if args.command == "provision":
        return orchestrator.provision(
            plan.count,
            plan.instance,
            plan.install_command,
            region=region,
            wait_timeout=plan.wait_timeout,
        )
    return orchestrator.execute(args.remote_command, config.hostnames)


def _run_dashboard(args, config, ssh, plan) -> FleetOperationReport:
    from .dashboard import Dashboard

    app = Dashboard(
        lambda listener_factory, on_status: _run(
            args, config, ssh, plan, listener_factory, on_status
        )
    )
    app.run()
    if app.error:
        raise app.error
    if app.report is None:
        raise KeyboardInterrupt
    return app.report


def main(argv: Optional[list] = None) -> int:
    """Main entry point."""
    parser = build_parser()
    args = parser.parse_args(argv)

    # Everything up to here is local; no network call has been made yet.
    try:
        config = FleetConfig.from_args(args, require_credentials=args.command != "exec")
        plan = None
        ssh = config.ssh
        if args.command == "terminate" and config.hostnames is None:
            raise ConfigurationError("Missing required argument --hostnames")
        if args.command == "provision":
            plan = load_provision_config(args.plan)
            ssh = _resolve_ssh(args, plan.ssh)
        elif args.command == "exec":
            if config.hostnames is None:
                raise ConfigurationError("Missing required argument --hostnames")
            ssh = _resolve_ssh(args, SshSettings())
    except ConfigurationError as e:
        print(f"Configuration error: {e}", file=sys.stderr)
        args.print_usage(sys.stderr)
        return EXIT_FAILURE
    except UnreadableFileError as e:
        print(f"Error: {e}", file=sys.stderr)
        return EXIT_UNREADABLE_FILE

    configure_logging(config.log_level)

    try:
        if getattr(args, "dashboard", False):
            report = _run_dashboard(args, config, ssh, plan)
        else:
            on_status = _print_status if args.command != "terminate" else None
            report = _run(args, config, ssh, plan, _console_factory(), on_status)
    except UnreadableFileError as e:
        print(f"Error: {e}", file=sys.stderr)
        return EXIT_UNREADABLE_FILE
    except ConfigurationError as e:
        print(f"Configuration error: {e}", file=sys.stderr)
        args.print_usage(sys.stderr)
        return EXIT_FAILURE
    except (FleetConnectionError, ProvisioningError) as e:
        print(f"Error: {e}", file=sys.stderr)
        return EXIT_FAILURE
    except KeyboardInterrupt:
        print("Interrupted", file=sys.stderr)
        return EXIT_FAILURE

    _print_report(report)
    return EXIT_OK if report.success else EXIT_FAILURE


if __name__ == "__main__":
    sys.exit(main())
