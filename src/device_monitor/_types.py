"""
Type definitions for the device monitor.

These dataclasses define the domain model shared by the controller
gateway, the device database, the reconciler and the batch executor.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Optional


def now_utc() -> datetime:
    """Get current UTC timestamp."""
    return datetime.now(timezone.utc)


def normalize_mac(mac: str) -> str:
    """Formats a MAC address to lowercase with colons."""
    return mac.strip().lower().replace("-", ":")


def from_epoch(value: Any) -> Optional[datetime]:
    """Convert a controller epoch-seconds field to an aware datetime."""
    if value is None or value == "":
        return None
    try:
        return datetime.fromtimestamp(int(value), tz=timezone.utc)
    except (TypeError, ValueError, OverflowError, OSError):
        return None


class DeviceType(str, Enum):
    """Device-type tag produced by classification."""
    PHONE = "phone"
    COMPUTER = "computer"
    TABLET = "tablet"
    TV = "tv"
    GAMING = "gaming"
    IOT = "iot"
    NETWORK = "network"
    UNKNOWN = "unknown"


class CommandAction(str, Enum):
    """Station-manager commands sent to the controller."""
    BLOCK = "block-sta"
    UNBLOCK = "unblock-sta"


@dataclass
class DeviceAttributes:
    """Normalized attributes produced by a classifier for one raw client."""
    vendor: Optional[str] = None
    display_name: Optional[str] = None
    online: bool = True
    device_type: DeviceType = DeviceType.UNKNOWN


@dataclass
class DeviceRecord:
    """
    A device persisted in the device database.

    The hardware address is the unique key. acknowledged_at is set
    if and only if acknowledged is True.
    """
    mac: str
    ip: Optional[str] = None
    hostname: Optional[str] = None
    vendor: Optional[str] = None
    first_seen: Optional[datetime] = None
    last_seen: Optional[datetime] = None
    is_wired: bool = False
    ap_mac: Optional[str] = None
    network: Optional[str] = None
    signal: Optional[int] = None
    tx_bytes: int = 0
    rx_bytes: int = 0
    detected_at: datetime = field(default_factory=now_utc)
    acknowledged: bool = False
    acknowledged_at: Optional[datetime] = None
    created_at: Optional[datetime] = None
    id: Optional[int] = None

    @classmethod
    def from_client(
        cls,
        raw: dict[str, Any],
        attributes: DeviceAttributes,
        detected_at: datetime,
    ) -> "DeviceRecord":
        """Build a new, unacknowledged record from a raw controller client."""
        signal = raw.get("signal", raw.get("rssi"))
        return cls(
            mac=normalize_mac(raw["mac"]),
            ip=raw.get("ip"),
            hostname=raw.get("hostname") or attributes.display_name,
            vendor=attributes.vendor,
            first_seen=from_epoch(raw.get("first_seen")),
            last_seen=from_epoch(raw.get("last_seen")),
            is_wired=bool(raw.get("is_wired", False)),
            ap_mac=raw.get("ap_mac"),
            network=raw.get("essid") or raw.get("network"),
            signal=int(signal) if signal is not None else None,
            tx_bytes=int(raw.get("tx_bytes") or 0),
            rx_bytes=int(raw.get("rx_bytes") or 0),
            detected_at=detected_at,
        )

    def to_dict(self) -> dict[str, Any]:
        """JSON-compatible representation for notifiers and reports."""
        def _iso(dt: Optional[datetime]) -> Optional[str]:
            return dt.isoformat() if dt else None

        return {
            "mac": self.mac,
            "ip": self.ip,
            "hostname": self.hostname,
            "vendor": self.vendor,
            "first_seen": _iso(self.first_seen),
            "last_seen": _iso(self.last_seen),
            "is_wired": self.is_wired,
            "ap_mac": self.ap_mac,
            "network": self.network,
            "signal": self.signal,
            "tx_bytes": self.tx_bytes,
            "rx_bytes": self.rx_bytes,
            "detected_at": _iso(self.detected_at),
            "acknowledged": self.acknowledged,
            "acknowledged_at": _iso(self.acknowledged_at),
        }


@dataclass
class DeviceStats:
    """Device counts taken from one consistent snapshot."""
    total: int = 0
    acknowledged: int = 0
    unacknowledged: int = 0
    today: int = 0

    def to_dict(self) -> dict[str, int]:
        return {
            "total": self.total,
            "acknowledged": self.acknowledged,
            "unacknowledged": self.unacknowledged,
            "today": self.today,
        }


@dataclass
class ApiResponse:
    """
    Result of one controller request.

    Controller payloads look like {"meta": {"rc": "ok"}, "data": [...]}.
    """
    status: int
    payload: Any = None
    headers: dict[str, str] = field(default_factory=dict)

    @property
    def meta(self) -> dict[str, Any]:
        if isinstance(self.payload, dict):
            return self.payload.get("meta") or {}
        return {}

    @property
    def rc(self) -> Optional[str]:
        return self.meta.get("rc")

    @property
    def message(self) -> str:
        msg = self.meta.get("msg")
        if msg:
            return str(msg)
        if isinstance(self.payload, dict) and self.payload.get("error"):
            return str(self.payload["error"])
        return f"HTTP {self.status}"

    @property
    def data(self) -> list[Any]:
        if isinstance(self.payload, dict):
            return self.payload.get("data") or []
        if isinstance(self.payload, list):
            return self.payload
        return []

    @property
    def ok(self) -> bool:
        return self.status == 200 and self.rc != "error"


@dataclass
class CommandConfirmation:
    """Controller confirmation of a block/unblock command."""
    mac: str
    action: CommandAction
    data: list[Any] = field(default_factory=list)
    confirmed_at: datetime = field(default_factory=now_utc)


@dataclass
class CommandOutcome:
    """Outcome of one item in a batch command."""
    mac: str
    success: bool
    error: Optional[str] = None

    def to_dict(self) -> dict[str, Any]:
        result: dict[str, Any] = {"mac": self.mac, "success": self.success}
        if self.error is not None:
            result["error"] = self.error
        return result


@dataclass
class BatchResult:
    """Full per-device outcome report of a batch command."""
    action: CommandAction
    outcomes: list[CommandOutcome] = field(default_factory=list)

    @property
    def success_count(self) -> int:
        return sum(1 for outcome in self.outcomes if outcome.success)

    @property
    def failure_count(self) -> int:
        return len(self.outcomes) - self.success_count

    def to_dict(self) -> dict[str, Any]:
        return {
            "action": self.action.value,
            "results": [outcome.to_dict() for outcome in self.outcomes],
            "success_count": self.success_count,
            "total": len(self.outcomes),
        }


@dataclass
class ReconcileResult:
    """Result of one reconciliation pass."""
    observed: int = 0
    candidates: list[DeviceRecord] = field(default_factory=list)
    inserted: int = 0
    started_at: datetime = field(default_factory=now_utc)
