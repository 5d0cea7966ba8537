"""Domain-specific errors for sensorreset."""


class SensorResetError(Exception):
    """Base error for sensorreset."""


class ConfigValidationError(SensorResetError):
    """Raised when a config file does not conform to schema or semantics."""


class ConfigLoadError(SensorResetError):
    """Raised when reading config sources fails."""


class UnknownRoleError(SensorResetError):
    """Raised when a role name cannot be parsed."""


class DeviceRegistrationError(SensorResetError):
    """Raised when the registry would hold more than one device for a role."""


class NoMatchingDeviceError(SensorResetError):
    """Raised when a recovery targets a role with no registered device."""


class DeviceError(SensorResetError):
    """Base per-device error."""


class DeviceConnectError(DeviceError):
    """Raised on BLE connect failures."""


class DisconnectError(DeviceError):
    """Raised when a device fails to disconnect."""


class ForgetError(DeviceError):
    """Raised when a device fails to drop its cached identity."""


class PlatformSweepError(SensorResetError):
    """Base platform sweep error."""


class PlatformSweepUnavailable(PlatformSweepError):
    """Raised when an optional platform capability is absent."""


class PlatformSweepStepError(PlatformSweepError):
    """Raised when one platform sweep sub-step fails."""
