"""Repository layer responsible for all database access."""

from __future__ import annotations

import random
import sqlite3
from datetime import date, timedelta
from pathlib import Path
from typing import Iterable, Optional, Protocol, Sequence

from rental_inventory.domain.models import (
    DEVICE_OUT_STATUSES,
    Device,
    DeviceCategory,
    DeviceStatus,
    Reservation,
    ReservationStatus,
)
from rental_inventory.utils.config import Settings, get_settings
from rental_inventory.utils.logger import get_logger


logger = get_logger(__name__)


_RENTER_POOL = [
    ("Kim Minji", "010-2211-3344", "minji.kim@example.com"),
    ("Lee Jun", "010-5567-8890", None),
    ("Park Sora", "010-7788-1200", "sora.park@example.com"),
    ("Choi Woo", "010-4455-6677", "woo.choi@example.com"),
    ("Alex Turner", "+1 415 555 0199", "alex.t@example.com"),
    ("Yuki Tanaka", "+81 90 1234 5678", "yuki@example.jp"),
    ("Maria Silva", "+55 11 91234 5678", None),
    ("Jung Hana", "010-9090-1212", "hana.jung@example.com"),
]

_PICKUP_TIMES = ("09:00", "10:30", "13:00", "15:30", "18:00")


class ReservationNotFoundError(Exception):
    """Raised when a reservation id does not exist in the store."""


class DeviceNotFoundError(Exception):
    """Raised when a device tag does not exist in the store."""


class AssignmentConflictError(Exception):
    """Raised when persisting a tag would contradict already persisted state."""


class InventoryStore(Protocol):
    """Paginated read surface the ingestion layer depends on."""

    def list_devices_page(
        self,
        categories: Optional[Sequence[DeviceCategory]],
        limit: int,
        offset: int,
    ) -> list[Device]:
        ...

    def list_reservations_page(
        self,
        start_date: date,
        end_date: date,
        limit: int,
        offset: int,
    ) -> list[Reservation]:
        ...


def _device_from_row(row: sqlite3.Row) -> Device:
    return Device(
        tag=str(row["tag_name"]),
        category=DeviceCategory(row["category"]),
        status=DeviceStatus(row["status"]),
    )


def _reservation_from_row(row: sqlite3.Row) -> Reservation:
    return Reservation(
        id=int(row["id"]),
        reservation_code=str(row["reservation_code"]),
        category=DeviceCategory(row["category"]),
        assigned_tag=row["device_tag_name"],
        status=ReservationStatus(row["status"]),
        pickup_date=date.fromisoformat(row["pickup_date"]),
        pickup_time=str(row["pickup_time"] or ""),
        return_date=date.fromisoformat(row["return_date"]),
        return_time=str(row["return_time"] or ""),
        renter_name=str(row["renter_name"] or ""),
        renter_phone=str(row["renter_phone"] or ""),
        renter_email=row["renter_email"],
    )


class DataRepository:
    """Encapsulates SQLite access so business logic stays storage-agnostic."""

    def __init__(self, settings: Optional[Settings] = None) -> None:
        self._settings = settings or get_settings()
        self._db_path = Path(self._settings.database_path)
        self._db_path.parent.mkdir(parents=True, exist_ok=True)

    @property
    def database_path(self) -> Path:
        return self._db_path

    def _connect(self) -> sqlite3.Connection:
        connection = sqlite3.connect(self._db_path)
        connection.row_factory = sqlite3.Row
        connection.execute("PRAGMA foreign_keys = ON;")
        return connection

    def initialize_database(self) -> None:
        """Create all persistence artifacts before API startup."""
        try:
            with self._connect() as conn:
                cursor = conn.cursor()

                cursor.execute(
                    """
                    CREATE TABLE IF NOT EXISTS Devices (
                        id INTEGER PRIMARY KEY AUTOINCREMENT,
                        tag_name TEXT NOT NULL UNIQUE,
                        category TEXT NOT NULL,
                        status TEXT NOT NULL DEFAULT 'available',
                        priority INTEGER,
                        created_at DATETIME DEFAULT CURRENT_TIMESTAMP,
                        updated_at DATETIME DEFAULT CURRENT_TIMESTAMP
                    );
                    """
                )

                cursor.execute(
                    """
                    CREATE TABLE IF NOT EXISTS Reservations (
                        id INTEGER PRIMARY KEY AUTOINCREMENT,
                        reservation_code TEXT NOT NULL,
                        category TEXT NOT NULL,
                        device_tag_name TEXT,
                        status TEXT NOT NULL DEFAULT 'pending',
                        pickup_date TEXT NOT NULL,
                        pickup_time TEXT NOT NULL DEFAULT '',
                        return_date TEXT NOT NULL,
                        return_time TEXT NOT NULL DEFAULT '',
                        renter_name TEXT NOT NULL DEFAULT '',
                        renter_phone TEXT NOT NULL DEFAULT '',
                        renter_email TEXT,
                        created_at DATETIME DEFAULT CURRENT_TIMESTAMP,
                        updated_at DATETIME DEFAULT CURRENT_TIMESTAMP,
                        CHECK (pickup_date <= return_date)
                    );
                    """
                )

                cursor.execute(
                    """
                    CREATE INDEX IF NOT EXISTS idx_devices_category_tag
                    ON Devices(category, tag_name);
                    """
                )
                cursor.execute(
                    """
                    CREATE INDEX IF NOT EXISTS idx_reservations_dates
                    ON Reservations(pickup_date, return_date);
                    """
                )
                cursor.execute(
                    """
                    CREATE INDEX IF NOT EXISTS idx_reservations_status
                    ON Reservations(status);
                    """
                )
                cursor.execute(
                    """
                    CREATE INDEX IF NOT EXISTS idx_reservations_tag
                    ON Reservations(device_tag_name);
                    """
                )
                conn.commit()
            logger.info("Database initialized at %s", self._db_path)
        except sqlite3.Error as exc:
            raise RuntimeError(f"Database initialization failed: {exc}") from exc

    def seed_synthetic_data(self, today: Optional[date] = None) -> int:
        """Seed a deterministic demo fleet and reservation book when empty.

        Returns the number of reservations written (0 when data already exists).
        """
        rng = random.Random(self._settings.synthetic_random_seed)
        anchor = today or date.today()
        try:
            with self._connect() as conn:
                cursor = conn.cursor()

                cursor.execute("SELECT COUNT(*) AS count FROM Devices;")
                if int(cursor.fetchone()["count"]) > 0:
                    logger.info("Synthetic data already present; skipping seed")
                    return 0

                devices_by_category: dict[str, list[str]] = {}
                device_rows = []
                for category in self._settings.synthetic_categories:
                    DeviceCategory(category)
                    tags = [
                        f"{category}-{index:02d}"
                        for index in range(1, self._settings.synthetic_devices_per_category + 1)
                    ]
                    devices_by_category[category] = tags
                    for position, tag in enumerate(tags):
                        # The last unit of every category sits in maintenance.
                        status = (
                            DeviceStatus.MAINTENANCE.value
                            if position == len(tags) - 1 and len(tags) > 1
                            else DeviceStatus.AVAILABLE.value
                        )
                        device_rows.append((tag, category, status, position + 1))

                cursor.executemany(
                    """
                    INSERT INTO Devices (tag_name, category, status, priority)
                    VALUES (?, ?, ?, ?);
                    """,
                    device_rows,
                )

                half_span = self._settings.synthetic_seed_days // 2
                drafts = []
                for _ in range(self._settings.synthetic_reservation_count):
                    category = rng.choice(list(devices_by_category))
                    pickup = anchor + timedelta(days=rng.randint(-half_span, half_span))
                    duration = rng.randint(0, 4)
                    drafts.append((pickup, pickup + timedelta(days=duration), category))
                drafts.sort(key=lambda item: (item[0], item[2]))

                last_return_by_tag: dict[str, date] = {}
                reservation_rows = []
                for index, (pickup, return_date, category) in enumerate(drafts, start=1):
                    if return_date < anchor:
                        status = (
                            ReservationStatus.PICKED_UP
                            if rng.random() < 0.08
                            else ReservationStatus.RETURNED
                        )
                    elif pickup <= anchor:
                        status = ReservationStatus.PICKED_UP
                    else:
                        status = ReservationStatus.PENDING

                    tag = None
                    if status != ReservationStatus.PENDING or rng.random() < 0.3:
                        for candidate in devices_by_category[category][:-1] or devices_by_category[category]:
                            if last_return_by_tag.get(candidate, date.min) < pickup:
                                tag = candidate
                                break
                    if tag is not None:
                        still_out = status == ReservationStatus.PICKED_UP and return_date < anchor
                        last_return_by_tag[tag] = date.max if still_out else return_date

                    renter_name, renter_phone, renter_email = rng.choice(_RENTER_POOL)
                    reservation_rows.append(
                        (
                            f"RSV-{anchor:%y%m}-{index:04d}",
                            category,
                            tag,
                            status.value,
                            pickup.isoformat(),
                            rng.choice(_PICKUP_TIMES),
                            return_date.isoformat(),
                            rng.choice(_PICKUP_TIMES),
                            renter_name,
                            renter_phone,
                            renter_email,
                        )
                    )

                cursor.executemany(
                    """
                    INSERT INTO Reservations (
                        reservation_code,
                        category,
                        device_tag_name,
                        status,
                        pickup_date,
                        pickup_time,
                        return_date,
                        return_time,
                        renter_name,
                        renter_phone,
                        renter_email
                    )
                    VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?);
                    """,
                    reservation_rows,
                )
                conn.commit()
            logger.info(
                "Synthetic seed completed | devices=%s | reservations=%s",
                len(device_rows),
                len(reservation_rows),
            )
            return len(reservation_rows)
        except sqlite3.Error as exc:
            raise RuntimeError(f"Synthetic data seeding failed: {exc}") from exc

    def create_device(
        self,
        tag: str,
        category: DeviceCategory | str,
        status: DeviceStatus | str = DeviceStatus.AVAILABLE,
        priority: Optional[int] = None,
    ) -> int:
        """Insert device row and return the created id."""
        with self._connect() as conn:
            cursor = conn.cursor()
            cursor.execute(
                """
                INSERT INTO Devices (tag_name, category, status, priority)
                VALUES (?, ?, ?, ?);
                """,
                (
                    tag,
                    DeviceCategory(category).value,
                    DeviceStatus(status).value,
                    priority,
                ),
            )
            conn.commit()
            return int(cursor.lastrowid)

    def create_devices(self, devices: Iterable[Device]) -> int:
        rows = [
            (device.tag, device.category.value, device.status.value)
            for device in devices
        ]
        if not rows:
            return 0
        with self._connect() as conn:
            cursor = conn.cursor()
            cursor.executemany(
                "INSERT INTO Devices (tag_name, category, status) VALUES (?, ?, ?);",
                rows,
            )
            conn.commit()
        return len(rows)

    def create_reservation(
        self,
        category: DeviceCategory | str,
        pickup_date: date,
        return_date: date,
        status: ReservationStatus | str = ReservationStatus.PENDING,
        device_tag_name: Optional[str] = None,
        renter_name: str = "",
        renter_phone: str = "",
        renter_email: Optional[str] = None,
        pickup_time: str = "",
        return_time: str = "",
        reservation_code: Optional[str] = None,
    ) -> int:
        """Insert reservation row and return the created id."""
        with self._connect() as conn:
            cursor = conn.cursor()
            cursor.execute(
                """
                INSERT INTO Reservations (
                    reservation_code,
                    category,
                    device_tag_name,
                    status,
                    pickup_date,
                    pickup_time,
                    return_date,
                    return_time,
                    renter_name,
                    renter_phone,
                    renter_email
                )
                VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?);
                """,
                (
                    reservation_code or "",
                    DeviceCategory(category).value,
                    device_tag_name,
                    ReservationStatus(status).value,
                    pickup_date.isoformat(),
                    pickup_time,
                    return_date.isoformat(),
                    return_time,
                    renter_name,
                    renter_phone,
                    renter_email,
                ),
            )
            reservation_id = int(cursor.lastrowid)
            if not reservation_code:
                cursor.execute(
                    "UPDATE Reservations SET reservation_code = ? WHERE id = ?;",
                    (f"RSV-{reservation_id:06d}", reservation_id),
                )
            conn.commit()
            return reservation_id

    def list_devices_page(
        self,
        categories: Optional[Sequence[DeviceCategory]],
        limit: int,
        offset: int,
    ) -> list[Device]:
        """Return one page of devices, optionally restricted to categories."""
        params: list[object] = []
        where = ""
        if categories:
            placeholders = ",".join("?" for _ in categories)
            where = f"WHERE category IN ({placeholders})"
            params.extend(DeviceCategory(category).value for category in categories)
        params.extend([limit, offset])
        with self._connect() as conn:
            cursor = conn.cursor()
            cursor.execute(
                f"""
                SELECT id, tag_name, category, status
                FROM Devices
                {where}
                ORDER BY id ASC
                LIMIT ? OFFSET ?;
                """,
                tuple(params),
            )
            return [_device_from_row(row) for row in cursor.fetchall()]

    def list_reservations_page(
        self,
        start_date: date,
        end_date: date,
        limit: int,
        offset: int,
    ) -> list[Reservation]:
        """Return one page of reservations that may occupy a device in the window.

        Unreturned reservations are included regardless of their dates: an
        overdue rental still holds its device past the nominal return date.
        """
        with self._connect() as conn:
            cursor = conn.cursor()
            cursor.execute(
                """
                SELECT *
                FROM Reservations
                WHERE (pickup_date <= ? AND return_date >= ?)
                   OR status != 'returned'
                ORDER BY id ASC
                LIMIT ? OFFSET ?;
                """,
                (end_date.isoformat(), start_date.isoformat(), limit, offset),
            )
            return [_reservation_from_row(row) for row in cursor.fetchall()]

    def get_reservation(self, reservation_id: int) -> Optional[Reservation]:
        with self._connect() as conn:
            cursor = conn.cursor()
            cursor.execute("SELECT * FROM Reservations WHERE id = ?;", (reservation_id,))
            row = cursor.fetchone()
            if row is None:
                return None
            return _reservation_from_row(row)

    def get_device(self, tag: str) -> Optional[Device]:
        with self._connect() as conn:
            cursor = conn.cursor()
            cursor.execute(
                "SELECT id, tag_name, category, status FROM Devices WHERE tag_name = ?;",
                (tag,),
            )
            row = cursor.fetchone()
            if row is None:
                return None
            return _device_from_row(row)

    def assign_device_tag(
        self,
        reservation_id: int,
        tag: str,
        as_of: Optional[date] = None,
    ) -> bool:
        """Persist a reservation's device tag behind an optimistic overlap check.

        Returns False when the reservation already carried this exact tag.
        Raises AssignmentConflictError when the write would double-book the
        device or overwrite a different persisted tag.
        """
        reference_date = (as_of or date.today()).isoformat()
        out_statuses = sorted(status.value for status in DEVICE_OUT_STATUSES)
        conn = self._connect()
        try:
            conn.execute("BEGIN IMMEDIATE;")
            cursor = conn.cursor()
            cursor.execute("SELECT * FROM Reservations WHERE id = ?;", (reservation_id,))
            row = cursor.fetchone()
            if row is None:
                raise ReservationNotFoundError(f"reservation {reservation_id} not found")
            reservation = _reservation_from_row(row)

            cursor.execute(
                "SELECT id, tag_name, category, status FROM Devices WHERE tag_name = ?;",
                (tag,),
            )
            device_row = cursor.fetchone()
            if device_row is None:
                raise DeviceNotFoundError(f"device tag {tag!r} not found")
            device = _device_from_row(device_row)

            if reservation.assigned_tag == tag:
                conn.rollback()
                return False
            if reservation.assigned_tag is not None:
                raise AssignmentConflictError(
                    f"reservation {reservation_id} is already assigned to "
                    f"{reservation.assigned_tag}"
                )
            if device.category != reservation.category:
                raise AssignmentConflictError(
                    f"device {tag} is {device.category.value}, reservation "
                    f"{reservation_id} requests {reservation.category.value}"
                )

            status_placeholders = ",".join("?" for _ in out_statuses)
            cursor.execute(
                f"""
                SELECT id
                FROM Reservations
                WHERE device_tag_name = ?
                  AND id != ?
                  AND status != 'returned'
                  AND pickup_date <= ?
                  AND (
                      return_date >= ?
                      OR (status IN ({status_placeholders}) AND return_date < ?)
                  )
                ORDER BY id ASC;
                """,
                (
                    tag,
                    reservation_id,
                    reservation.return_date.isoformat(),
                    reservation.pickup_date.isoformat(),
                    *out_statuses,
                    reference_date,
                ),
            )
            conflicting_ids = [int(item["id"]) for item in cursor.fetchall()]
            if conflicting_ids:
                raise AssignmentConflictError(
                    f"device {tag} is already committed to reservations {conflicting_ids}"
                )

            cursor.execute(
                """
                UPDATE Reservations
                SET device_tag_name = ?, updated_at = CURRENT_TIMESTAMP
                WHERE id = ? AND device_tag_name IS NULL;
                """,
                (tag, reservation_id),
            )
            if cursor.rowcount != 1:
                raise AssignmentConflictError(
                    f"reservation {reservation_id} changed while assigning {tag}"
                )
            conn.commit()
            return True
        except Exception:
            conn.rollback()
            raise
        finally:
            conn.close()

    def update_reservation_status(
        self,
        reservation_id: int,
        status: ReservationStatus | str,
    ) -> None:
        with self._connect() as conn:
            cursor = conn.cursor()
            cursor.execute(
                """
                UPDATE Reservations
                SET status = ?, updated_at = CURRENT_TIMESTAMP
                WHERE id = ?;
                """,
                (ReservationStatus(status).value, reservation_id),
            )
            if cursor.rowcount == 0:
                raise ReservationNotFoundError(f"reservation {reservation_id} not found")
            conn.commit()

    def update_device_status(self, tag: str, status: DeviceStatus | str) -> None:
        with self._connect() as conn:
            cursor = conn.cursor()
            cursor.execute(
                """
                UPDATE Devices
                SET status = ?, updated_at = CURRENT_TIMESTAMP
                WHERE tag_name = ?;
                """,
                (DeviceStatus(status).value, tag),
            )
            if cursor.rowcount == 0:
                raise DeviceNotFoundError(f"device tag {tag!r} not found")
            conn.commit()

    def count_devices(self) -> int:
        with self._connect() as conn:
            cursor = conn.cursor()
            cursor.execute("SELECT COUNT(*) AS count FROM Devices;")
            return int(cursor.fetchone()["count"])

    def count_reservations(self) -> int:
        with self._connect() as conn:
            cursor = conn.cursor()
            cursor.execute("SELECT COUNT(*) AS count FROM Reservations;")
            return int(cursor.fetchone()["count"])
