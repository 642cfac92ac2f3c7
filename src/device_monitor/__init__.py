"""
Device Monitor - New-device detection and access control for a network controller.

This service polls a UniFi-style network controller for connected
clients, records every hardware address it has not seen before, and
blocks or unblocks devices on request.

Architecture:
    SessionManager  - owns the authenticated controller session
    RateLimiter     - one per process, spaces every controller request
    ControllerGateway - typed controller operations and error mapping
    DeviceDatabase  - SQLite store of known devices and acknowledgments
    Reconciler      - detects new devices and notifies
    BatchCommandExecutor - sequential best-effort block/unblock
"""

__version__ = "1.0.0"

from ._types import (
    BatchResult,
    CommandAction,
    CommandConfirmation,
    CommandOutcome,
    DeviceAttributes,
    DeviceRecord,
    DeviceStats,
    DeviceType,
    ReconcileResult,
)
from .batch import BatchCommandExecutor
from .config import MonitorConfig, load_config
from .controller import ControllerGateway
from .device_db import DeviceDatabase
from .errors import (
    AuthenticationError,
    ConfigurationError,
    DeviceMonitorError,
    NotFoundError,
    OperationError,
    PermissionDeniedError,
    RateLimitedError,
    StorageError,
)
from .rate_limiter import RateLimiter
from .reconciler import Reconciler
from .session import SessionManager

__all__ = [
    "__version__",
    "BatchResult",
    "CommandAction",
    "CommandConfirmation",
    "CommandOutcome",
    "DeviceAttributes",
    "DeviceRecord",
    "DeviceStats",
    "DeviceType",
    "ReconcileResult",
    "BatchCommandExecutor",
    "MonitorConfig",
    "load_config",
    "ControllerGateway",
    "DeviceDatabase",
    "AuthenticationError",
    "ConfigurationError",
    "DeviceMonitorError",
    "NotFoundError",
    "OperationError",
    "PermissionDeniedError",
    "RateLimitedError",
    "StorageError",
    "RateLimiter",
    "Reconciler",
    "SessionManager",
]
