"""Error taxonomy for fleetdeploy."""


class FleetError(Exception):
    """Base class for all fleetdeploy errors."""


class ConfigurationError(FleetError, ValueError):
    """Missing or conflicting configuration, detected before any network call."""


class UnreadableFileError(FleetError, OSError):
    """A required input file does not exist or cannot be read."""


class FleetConnectionError(FleetError, ConnectionError):
    """The cloud API is unreachable or rejected the credentials."""


class ProvisioningError(FleetError):
    """Launched instances could not be brought into service.

    ``instance_ids`` lists every instance launched, so they can be cleaned up.
    """

    def __init__(self, message: str, instance_ids=()):
        super().__init__(message)
        self.instance_ids = tuple(instance_ids)


class ProvisioningTimeoutError(ProvisioningError, TimeoutError):
    """New instances did not reach the running state in time."""
