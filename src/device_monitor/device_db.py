"""
Device database for the device monitor.

SQLite database (default /config/devices.db) storing every client device
ever observed at the controller, keyed by hardware address, with its
new-device acknowledgment state.

Uses WAL mode for crash safety and concurrent reads. Each operation
opens its own connection; writes run in a single transaction.
"""

from __future__ import annotations

import logging
import sqlite3
from contextlib import contextmanager
from datetime import datetime, time, timedelta, timezone
from pathlib import Path
from typing import Iterable, Iterator, Optional

from ._types import DeviceRecord, DeviceStats, normalize_mac, now_utc
from .errors import NotFoundError, StorageError

logger = logging.getLogger(__name__)


# Database schema
SCHEMA = """
CREATE TABLE IF NOT EXISTS devices (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    mac TEXT UNIQUE NOT NULL,
    ip TEXT,
    hostname TEXT,
    vendor TEXT,
    first_seen TEXT,
    last_seen TEXT,
    is_wired BOOLEAN DEFAULT FALSE,
    ap_mac TEXT,
    network TEXT,
    signal INTEGER,
    tx_bytes INTEGER DEFAULT 0,
    rx_bytes INTEGER DEFAULT 0,
    detected_at TEXT NOT NULL,
    acknowledged BOOLEAN DEFAULT FALSE,
    acknowledged_at TEXT,
    created_at TEXT NOT NULL,

    CHECK (mac <> ''),
    CHECK ((acknowledged = 0) = (acknowledged_at IS NULL))
);

CREATE INDEX IF NOT EXISTS idx_devices_detected ON devices(detected_at);
CREATE INDEX IF NOT EXISTS idx_devices_acknowledged ON devices(acknowledged);
"""


def _iso_format(dt: Optional[datetime]) -> Optional[str]:
    """Format datetime as a fixed-width UTC ISO string (sortable as text)."""
    if dt is None:
        return None
    if dt.tzinfo is None:
        dt = dt.replace(tzinfo=timezone.utc)
    return dt.astimezone(timezone.utc).isoformat(timespec="microseconds")


def _parse_datetime(s: Optional[str]) -> Optional[datetime]:
    """Parse ISO datetime string."""
    if not s:
        return None
    try:
        return datetime.fromisoformat(s)
    except ValueError:
        return None


def _local_day_bounds(now: datetime) -> tuple[str, str]:
    """UTC ISO bounds of the server-local calendar day containing now."""
    today = now.astimezone().date()
    # Each midnight gets its own offset; DST days are 23 or 25 hours long
    start = datetime.combine(today, time.min).astimezone()
    end = datetime.combine(today + timedelta(days=1), time.min).astimezone()
    return _iso_format(start), _iso_format(end)


class DeviceDatabase:
    """
    SQLite store of known devices.

    Thread-safe: every call uses its own connection, and SQLite
    serializes writers.
    """

    def __init__(self, db_path: Path | str = "/config/devices.db"):
        self.db_path = Path(db_path)
        self._ensure_directory()
        self._init_db()

    def _ensure_directory(self) -> None:
        """Ensure database directory exists."""
        self.db_path.parent.mkdir(parents=True, exist_ok=True)

    def _init_db(self) -> None:
        """Initialize database with schema."""
        try:
            with self._get_connection() as conn:
                conn.executescript(SCHEMA)
                # Enable WAL mode for crash safety
                conn.execute("PRAGMA journal_mode=WAL")
                conn.execute("PRAGMA synchronous=NORMAL")
                conn.commit()
        except sqlite3.Error as e:
            raise StorageError(f"Failed to initialize device database {self.db_path}: {e}") from e
        logger.debug(f"Device database ready at {self.db_path}")

    @contextmanager
    def _get_connection(self) -> Iterator[sqlite3.Connection]:
        """Get database connection with row factory."""
        conn = sqlite3.connect(str(self.db_path), timeout=30.0)
        conn.row_factory = sqlite3.Row
        try:
            yield conn
        finally:
            conn.close()

    # -------------------------------------------------------------------------
    # Insertion
    # -------------------------------------------------------------------------

    def insert_new(self, devices: Iterable[DeviceRecord]) -> int:
        """
        Insert devices whose hardware address is not yet known.

        Existing rows are never overwritten. The batch is one
        transaction: any row failure rolls back every row.

        Returns:
            Number of rows actually inserted

        Raises:
            StorageError: If the transaction failed (nothing committed)
        """
        return len(self.insert_new_macs(devices))

    def insert_new_macs(self, devices: Iterable[DeviceRecord]) -> list[str]:
        """Same as insert_new, returning the hardware addresses this call stored."""
        devices = list(devices)
        if not devices:
            return []

        created_at = _iso_format(now_utc())
        inserted: list[str] = []

        try:
            with self._get_connection() as conn:
                try:
                    for device in devices:
                        mac = normalize_mac(device.mac) if device.mac else device.mac
                        cursor = conn.execute("""
                            INSERT INTO devices (
                                mac, ip, hostname, vendor, first_seen, last_seen,
                                is_wired, ap_mac, network, signal, tx_bytes, rx_bytes,
                                detected_at, acknowledged, acknowledged_at, created_at
                            ) VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, FALSE, NULL, ?)
                            ON CONFLICT(mac) DO NOTHING
                        """, (
                            mac,
                            device.ip,
                            device.hostname,
                            device.vendor,
                            _iso_format(device.first_seen),
                            _iso_format(device.last_seen),
                            device.is_wired,
                            device.ap_mac,
                            device.network,
                            device.signal,
                            device.tx_bytes,
                            device.rx_bytes,
                            _iso_format(device.detected_at),
                            created_at,
                        ))
                        if cursor.rowcount:
                            inserted.append(mac)
                    conn.commit()
                except sqlite3.Error:
                    conn.rollback()
                    raise
        except sqlite3.Error as e:
            logger.error(f"Insert of {len(devices)} device(s) rolled back: {e}")
            raise StorageError(f"Failed to insert devices: {e}") from e

        if inserted:
            logger.info(f"Added {len(inserted)} new device(s) to database")
        if len(inserted) < len(devices):
            logger.debug(f"Skipped {len(devices) - len(inserted)} already known device(s)")
        return inserted

    def refresh_seen(self, devices: Iterable[DeviceRecord]) -> int:
        """
        Refresh live fields of known devices from a poll.

        Updates ip, last_seen, signal and byte counters. last_seen only
        moves forward; detected_at and acknowledgment are untouched.

        Returns:
            Number of rows updated
        """
        updated = 0
        try:
            with self._get_connection() as conn:
                try:
                    for device in devices:
                        if device.last_seen is None:
                            continue
                        cursor = conn.execute("""
                            UPDATE devices SET
                                ip = COALESCE(?, ip),
                                last_seen = ?,
                                signal = COALESCE(?, signal),
                                tx_bytes = ?,
                                rx_bytes = ?
                            WHERE mac = ?
                              AND (last_seen IS NULL OR last_seen <= ?)
                        """, (
                            device.ip,
                            _iso_format(device.last_seen),
                            device.signal,
                            device.tx_bytes,
                            device.rx_bytes,
                            normalize_mac(device.mac),
                            _iso_format(device.last_seen),
                        ))
                        updated += cursor.rowcount
                    conn.commit()
                except sqlite3.Error:
                    conn.rollback()
                    raise
        except sqlite3.Error as e:
            raise StorageError(f"Failed to refresh devices: {e}") from e

        return updated

    # -------------------------------------------------------------------------
    # Queries
    # -------------------------------------------------------------------------

    def _query(self, sql: str, params: tuple = ()) -> list[DeviceRecord]:
        try:
            with self._get_connection() as conn:
                rows = conn.execute(sql, params).fetchall()
        except sqlite3.Error as e:
            raise StorageError(f"Device query failed: {e}") from e
        return [self._row_to_device(row) for row in rows]

    def list_unacknowledged(self) -> list[DeviceRecord]:
        """Devices awaiting acknowledgment, most recently detected first."""
        return self._query(
            "SELECT * FROM devices WHERE acknowledged = FALSE ORDER BY detected_at DESC, id DESC"
        )

    def list_all(self) -> list[DeviceRecord]:
        """All devices, most recently detected first."""
        return self._query("SELECT * FROM devices ORDER BY detected_at DESC, id DESC")

    def get_device(self, mac: str) -> Optional[DeviceRecord]:
        """Get device by hardware address."""
        devices = self._query("SELECT * FROM devices WHERE mac = ?", (normalize_mac(mac),))
        return devices[0] if devices else None

    def known_macs(self) -> set[str]:
        """Hardware addresses of every stored device."""
        try:
            with self._get_connection() as conn:
                rows = conn.execute("SELECT mac FROM devices").fetchall()
        except sqlite3.Error as e:
            raise StorageError(f"Device query failed: {e}") from e
        return {row["mac"] for row in rows}

    # -------------------------------------------------------------------------
    # Acknowledgment
    # -------------------------------------------------------------------------

    def acknowledge(self, mac: str) -> DeviceRecord:
        """
        Mark a device as reviewed.

        Idempotent: acknowledging again succeeds and keeps the first
        acknowledged_at.

        Raises:
            NotFoundError: No device has this hardware address
        """
        mac = normalize_mac(mac)
        try:
            with self._get_connection() as conn:
                cursor = conn.execute("""
                    UPDATE devices SET
                        acknowledged = TRUE,
                        acknowledged_at = COALESCE(acknowledged_at, ?)
                    WHERE mac = ?
                """, (_iso_format(now_utc()), mac))
                conn.commit()
                if cursor.rowcount == 0:
                    raise NotFoundError(f"Device not found: {mac}")
                row = conn.execute("SELECT * FROM devices WHERE mac = ?", (mac,)).fetchone()
        except sqlite3.Error as e:
            raise StorageError(f"Failed to acknowledge {mac}: {e}") from e

        logger.info(f"Device {mac} acknowledged")
        return self._row_to_device(row)

    # -------------------------------------------------------------------------
    # Statistics
    # -------------------------------------------------------------------------

    def stats(self, now: Optional[datetime] = None) -> DeviceStats:
        """
        Device counts from one consistent snapshot.

        All four counts come from a single statement. "today" uses the
        server-local calendar day.
        """
        day_start, day_end = _local_day_bounds(now or now_utc())
        try:
            with self._get_connection() as conn:
                row = conn.execute("""
                    SELECT
                        COUNT(*) AS total,
                        COALESCE(SUM(CASE WHEN acknowledged THEN 1 ELSE 0 END), 0) AS acknowledged,
                        COALESCE(SUM(CASE WHEN acknowledged THEN 0 ELSE 1 END), 0) AS unacknowledged,
                        COALESCE(SUM(CASE WHEN detected_at >= ? AND detected_at < ? THEN 1 ELSE 0 END), 0) AS today
                    FROM devices
                """, (day_start, day_end)).fetchone()
        except sqlite3.Error as e:
            raise StorageError(f"Failed to compute device stats: {e}") from e

        return DeviceStats(
            total=row["total"],
            acknowledged=row["acknowledged"],
            unacknowledged=row["unacknowledged"],
            today=row["today"],
        )

    def _row_to_device(self, row: sqlite3.Row) -> DeviceRecord:
        """Convert database row to DeviceRecord."""
        return DeviceRecord(
            id=row["id"],
            mac=row["mac"],
            ip=row["ip"],
            hostname=row["hostname"],
            vendor=row["vendor"],
            first_seen=_parse_datetime(row["first_seen"]),
            last_seen=_parse_datetime(row["last_seen"]),
            is_wired=bool(row["is_wired"]),
            ap_mac=row["ap_mac"],
            network=row["network"],
            signal=row["signal"],
            tx_bytes=row["tx_bytes"] or 0,
            rx_bytes=row["rx_bytes"] or 0,
            detected_at=_parse_datetime(row["detected_at"]) or now_utc(),
            acknowledged=bool(row["acknowledged"]),
            acknowledged_at=_parse_datetime(row["acknowledged_at"]),
            created_at=_parse_datetime(row["created_at"]),
        )
