"""
Error taxonomy for the device monitor.

Controller-facing errors are raised by the session manager and gateway;
storage errors by the device database. Batch operations capture these
per item instead of raising.
"""

from typing import Optional


class DeviceMonitorError(Exception):
    """Base exception for device monitor errors."""
    pass


class ConfigurationError(DeviceMonitorError):
    """Connection parameters are missing or invalid."""
    pass


class AuthenticationError(DeviceMonitorError):
    """Credentials rejected, or the session expired or was invalidated."""
    pass


class PermissionDeniedError(DeviceMonitorError):
    """Authenticated, but the account lacks privilege for the mutation."""
    pass


class RateLimitedError(DeviceMonitorError):
    """Controller throttled the request."""

    def __init__(self, message: str, retry_after: Optional[float] = None):
        super().__init__(message)
        self.retry_after = retry_after


class NotFoundError(DeviceMonitorError):
    """No device record matches the hardware address."""
    pass


class OperationError(DeviceMonitorError):
    """Unclassified controller or transport failure."""
    pass


class StorageError(DeviceMonitorError):
    """Device database operation failed and was rolled back."""
    pass
