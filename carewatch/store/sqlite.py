import json
import sqlite3
import time
from collections.abc import Callable, Iterator
from contextlib import contextmanager
from pathlib import Path

from carewatch.core.errors import StoreUnavailable
from carewatch.core.models import Actor, Caregiver, Device, DeviceStatus, Event, EventStatus, Vitals
from carewatch.store.base import BaseStore


class SqliteStore(BaseStore):
    """Durable store backed by one SQLite file.

    Several tenants may share a file; every row carries its tenant and every
    query is scoped to this instance's tenant. Pushes reach subscribers of this
    instance only.
    """

    def __init__(
        self,
        db_path: str = "data/carewatch.db",
        tenant: str = "default",
        clock: Callable[[], float] = time.time,
    ):
        super().__init__(tenant=tenant, clock=clock)
        self.db_path = db_path
        if db_path != ":memory:":
            Path(db_path).parent.mkdir(parents=True, exist_ok=True)

        try:
            self.conn = sqlite3.connect(db_path, check_same_thread=False)
        except sqlite3.OperationalError as e:
            raise StoreUnavailable(f"Cannot open {db_path}: {e}") from e
        self._create_tables()

    @contextmanager
    def _db(self) -> Iterator[sqlite3.Connection]:
        with self._lock:
            try:
                yield self.conn
                self.conn.commit()
            except sqlite3.OperationalError as e:
                self.conn.rollback()
                raise StoreUnavailable(f"SQLite error: {e}") from e

    def _create_tables(self) -> None:
        with self._db() as conn:
            conn.execute("""
                CREATE TABLE IF NOT EXISTS devices (
                    tenant TEXT NOT NULL,
                    device_id TEXT NOT NULL,
                    status TEXT NOT NULL,
                    heart_rate INTEGER NOT NULL,
                    spo2 INTEGER NOT NULL,
                    battery INTEGER NOT NULL,
                    last_update REAL NOT NULL,
                    paired_wearer_ref TEXT,
                    PRIMARY KEY (tenant, device_id)
                )
            """)
            conn.execute("""
                CREATE TABLE IF NOT EXISTS events (
                    event_id INTEGER PRIMARY KEY AUTOINCREMENT,
                    tenant TEXT NOT NULL,
                    device_id TEXT NOT NULL,
                    type TEXT NOT NULL,
                    timestamp REAL NOT NULL,
                    status TEXT,
                    actor_role TEXT,
                    details TEXT NOT NULL DEFAULT '{}'
                )
            """)
            conn.execute("""
                CREATE TABLE IF NOT EXISTS caregivers (
                    caregiver_id TEXT PRIMARY KEY,
                    tenant TEXT NOT NULL,
                    device_id TEXT NOT NULL,
                    name TEXT NOT NULL,
                    phone TEXT NOT NULL,
                    priority INTEGER NOT NULL,
                    UNIQUE (tenant, device_id, priority)
                )
            """)

    def _load_device(self, device_id: str) -> Device | None:
        with self._db() as conn:
            row = conn.execute(
                """SELECT device_id, status, heart_rate, spo2, battery, last_update, paired_wearer_ref
                FROM devices WHERE tenant = ? AND device_id = ?""",
                (self.tenant, device_id),
            ).fetchone()
        if row is None:
            return None
        return Device(
            id=row[0],
            status=DeviceStatus(row[1]),
            vitals=Vitals(heart_rate=row[2], spo2=row[3], battery=row[4]),
            last_update=row[5],
            paired_wearer_ref=row[6],
        )

    def _save_device(self, device: Device) -> None:
        with self._db() as conn:
            conn.execute(
                """
                INSERT OR REPLACE INTO devices
                (tenant, device_id, status, heart_rate, spo2, battery, last_update, paired_wearer_ref)
                VALUES (?, ?, ?, ?, ?, ?, ?, ?)
                """,
                (
                    self.tenant,
                    device.id,
                    device.status.value,
                    device.vitals.heart_rate,
                    device.vitals.spo2,
                    device.vitals.battery,
                    device.last_update,
                    device.paired_wearer_ref,
                ),
            )

    def _insert_event(self, event: Event) -> Event:
        with self._db() as conn:
            cursor = conn.execute(
                """
                INSERT INTO events (tenant, device_id, type, timestamp, status, actor_role, details)
                VALUES (?, ?, ?, ?, ?, ?, ?)
                """,
                (
                    self.tenant,
                    event.device_id,
                    event.type,
                    event.timestamp,
                    event.status.value if event.status else None,
                    event.actor_role.value if event.actor_role else None,
                    json.dumps(event.details),
                ),
            )
            event_id = cursor.lastrowid
        return Event(
            id=event_id,
            device_id=event.device_id,
            type=event.type,
            timestamp=event.timestamp,
            status=event.status,
            actor_role=event.actor_role,
            details=event.details,
        )

    def _load_events(self) -> list[Event]:
        with self._db() as conn:
            cursor = conn.execute(
                """SELECT event_id, device_id, type, timestamp, status, actor_role, details
                FROM events WHERE tenant = ? ORDER BY event_id ASC""",
                (self.tenant,),
            )
            rows = cursor.fetchall()
        return [
            Event(
                id=row[0],
                device_id=row[1],
                type=row[2],
                timestamp=row[3],
                status=EventStatus(row[4]) if row[4] else None,
                actor_role=Actor(row[5]) if row[5] else None,
                details=json.loads(row[6]),
            )
            for row in rows
        ]

    def _load_caregivers(self, device_id: str) -> list[Caregiver]:
        with self._db() as conn:
            cursor = conn.execute(
                """SELECT caregiver_id, device_id, name, phone, priority
                FROM caregivers WHERE tenant = ? AND device_id = ?
                ORDER BY priority ASC""",
                (self.tenant, device_id),
            )
            rows = cursor.fetchall()
        columns = ["id", "device_id", "name", "phone", "priority"]
        return [Caregiver(**dict(zip(columns, row))) for row in rows]

    def _insert_caregiver(self, caregiver: Caregiver) -> None:
        with self._db() as conn:
            conn.execute(
                """
                INSERT INTO caregivers (caregiver_id, tenant, device_id, name, phone, priority)
                VALUES (?, ?, ?, ?, ?, ?)
                """,
                (
                    caregiver.id,
                    self.tenant,
                    caregiver.device_id,
                    caregiver.name,
                    caregiver.phone,
                    caregiver.priority,
                ),
            )

    def _delete_caregiver(self, caregiver_id: str) -> str | None:
        with self._db() as conn:
            row = conn.execute(
                "SELECT device_id FROM caregivers WHERE tenant = ? AND caregiver_id = ?",
                (self.tenant, caregiver_id),
            ).fetchone()
            if row is None:
                return None
            conn.execute(
                "DELETE FROM caregivers WHERE tenant = ? AND caregiver_id = ?",
                (self.tenant, caregiver_id),
            )
        return row[0]

    def close(self) -> None:
        super().close()
        self.conn.close()
