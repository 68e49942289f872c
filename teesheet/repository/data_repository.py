"""Repository layer responsible for all database access."""

from __future__ import annotations

import json
import sqlite3
from datetime import date, datetime, timezone
from pathlib import Path
from typing import Iterable, Optional, Sequence

from teesheet.domain.constraints import OperatingConfig
from teesheet.domain.models import (
    AssignmentLogEntry,
    EntryStatus,
    EntryType,
    FairnessRecord,
    LotteryEntry,
    PendingChange,
    ProcessingRun,
    RestrictionCategory,
    RestrictionRule,
    Scope,
    Slot,
)
from teesheet.services.window_service import generate_slot_times
from teesheet.utils.config import Settings, get_settings
from teesheet.utils.logger import get_logger


logger = get_logger(__name__)


class RepositoryError(Exception):
    """Base exception for persistence failures the caller can act on."""


class RecordNotFoundError(RepositoryError):
    """Raised when a referenced row does not exist."""


class CapacityConflictError(RepositoryError):
    """Raised when a batch of changes would overfill a slot."""


def _utc_now() -> str:
    return datetime.now(timezone.utc).replace(microsecond=0).isoformat()


def _row_to_entry(row: sqlite3.Row) -> LotteryEntry:
    alternate = row["alternate_window"]
    assigned = row["assigned_slot_id"]
    return LotteryEntry(
        entry_id=int(row["id"]),
        entry_type=EntryType(row["entry_type"]),
        organizer_id=int(row["organizer_id"]),
        lottery_date=str(row["lottery_date"]),
        preferred_window=int(row["preferred_window"]),
        submitted_at=datetime.fromisoformat(str(row["submitted_at"])),
        member_ids=tuple(int(member_id) for member_id in json.loads(row["member_ids"])),
        alternate_window=int(alternate) if alternate is not None else None,
        status=EntryStatus(row["status"]),
        guest_ids=frozenset(int(guest_id) for guest_id in json.loads(row["guest_ids"])),
        guest_fill_count=int(row["guest_fill_count"]),
        assigned_slot_id=int(assigned) if assigned is not None else None,
    )


def _row_to_slot(row: sqlite3.Row) -> Slot:
    return Slot(
        slot_id=int(row["id"]),
        lottery_date=str(row["lottery_date"]),
        start_time=str(row["start_time"]),
        max_occupants=int(row["max_occupants"]),
        reserved_occupants=int(row["reserved_occupants"]),
    )


def _scope_from_columns(applies_to_all: int, values: Optional[str]) -> Scope:
    if applies_to_all:
        return Scope.everything()
    return Scope.only(json.loads(values or "[]"))


def _row_to_rule(row: sqlite3.Row) -> RestrictionRule:
    return RestrictionRule(
        rule_id=int(row["id"]),
        name=str(row["name"]),
        description=str(row["description"] or ""),
        category=RestrictionCategory(row["category"]),
        classes=_scope_from_columns(row["applies_to_all_classes"], row["member_classes"]),
        windows=_scope_from_columns(row["applies_to_all_windows"], row["window_indices"]),
        requires_no_guests=bool(row["requires_no_guests"]),
        max_count=int(row["max_count"]) if row["max_count"] is not None else None,
        period_days=int(row["period_days"]) if row["period_days"] is not None else None,
        is_active=bool(row["is_active"]),
    )


def _row_to_run(row: sqlite3.Row) -> ProcessingRun:
    return ProcessingRun(
        run_id=int(row["id"]),
        lottery_date=str(row["lottery_date"]),
        processed_at=str(row["processed_at"]),
        total_entries=int(row["total_entries"]),
        assigned_count=int(row["assigned_count"]),
        group_count=int(row["group_count"]),
        individual_count=int(row["individual_count"]),
        violation_count=int(row["violation_count"]),
        fairness_assigned_at=(
            str(row["fairness_assigned_at"]) if row["fairness_assigned_at"] is not None else None
        ),
    )


class DataRepository:
    """Encapsulates SQLite access so the lottery core stays storage-agnostic."""

    def __init__(self, settings: Optional[Settings] = None) -> None:
        self._settings = settings or get_settings()
        self._db_path = Path(self._settings.database_path)
        self._db_path.parent.mkdir(parents=True, exist_ok=True)

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
                    CREATE TABLE IF NOT EXISTS Members (
                        id INTEGER PRIMARY KEY AUTOINCREMENT,
                        display_name TEXT NOT NULL DEFAULT '',
                        member_class TEXT NOT NULL
                    );
                    """
                )

                cursor.execute(
                    """
                    CREATE TABLE IF NOT EXISTS Slots (
                        id INTEGER PRIMARY KEY AUTOINCREMENT,
                        lottery_date TEXT NOT NULL,
                        start_time TEXT NOT NULL,
                        max_occupants INTEGER NOT NULL CHECK (max_occupants > 0),
                        reserved_occupants INTEGER NOT NULL DEFAULT 0
                            CHECK (reserved_occupants >= 0),
                        UNIQUE (lottery_date, start_time)
                    );
                    """
                )

                cursor.execute(
                    """
                    CREATE TABLE IF NOT EXISTS Entries (
                        id INTEGER PRIMARY KEY AUTOINCREMENT,
                        lottery_date TEXT NOT NULL,
                        entry_type TEXT NOT NULL CHECK (entry_type IN ('INDIVIDUAL','GROUP')),
                        organizer_id INTEGER NOT NULL,
                        member_ids TEXT NOT NULL,
                        guest_ids TEXT NOT NULL DEFAULT '[]',
                        guest_fill_count INTEGER NOT NULL DEFAULT 0
                            CHECK (guest_fill_count >= 0),
                        preferred_window INTEGER NOT NULL,
                        alternate_window INTEGER,
                        status TEXT NOT NULL DEFAULT 'PENDING',
                        submitted_at TEXT NOT NULL,
                        assigned_slot_id INTEGER,
                        updated_at TEXT,
                        FOREIGN KEY (organizer_id) REFERENCES Members(id),
                        FOREIGN KEY (assigned_slot_id) REFERENCES Slots(id)
                    );
                    """
                )

                cursor.execute(
                    """
                    CREATE TABLE IF NOT EXISTS RestrictionRules (
                        id INTEGER PRIMARY KEY AUTOINCREMENT,
                        name TEXT NOT NULL,
                        description TEXT NOT NULL DEFAULT '',
                        category TEXT NOT NULL CHECK (category IN ('MEMBER_CLASS','FREQUENCY')),
                        applies_to_all_classes INTEGER NOT NULL DEFAULT 1,
                        member_classes TEXT,
                        applies_to_all_windows INTEGER NOT NULL DEFAULT 1,
                        window_indices TEXT,
                        requires_no_guests INTEGER NOT NULL DEFAULT 0,
                        max_count INTEGER,
                        period_days INTEGER,
                        is_active INTEGER NOT NULL DEFAULT 1
                    );
                    """
                )

                cursor.execute(
                    """
                    CREATE TABLE IF NOT EXISTS FairnessScores (
                        member_id INTEGER PRIMARY KEY,
                        fairness_score INTEGER NOT NULL DEFAULT 0,
                        current_month TEXT NOT NULL DEFAULT '',
                        total_entries_month INTEGER NOT NULL DEFAULT 0,
                        preferences_granted_month INTEGER NOT NULL DEFAULT 0,
                        days_without_good_time INTEGER NOT NULL DEFAULT 0,
                        last_updated TEXT,
                        FOREIGN KEY (member_id) REFERENCES Members(id)
                    );
                    """
                )

                cursor.execute(
                    """
                    CREATE TABLE IF NOT EXISTS ProcessingRuns (
                        id INTEGER PRIMARY KEY AUTOINCREMENT,
                        lottery_date TEXT NOT NULL UNIQUE,
                        processed_at TEXT NOT NULL,
                        total_entries INTEGER NOT NULL,
                        assigned_count INTEGER NOT NULL,
                        group_count INTEGER NOT NULL,
                        individual_count INTEGER NOT NULL,
                        violation_count INTEGER NOT NULL DEFAULT 0,
                        fairness_assigned_at TEXT
                    );
                    """
                )

                cursor.execute(
                    """
                    CREATE TABLE IF NOT EXISTS ProcessingEntryLogs (
                        id INTEGER PRIMARY KEY AUTOINCREMENT,
                        run_id INTEGER NOT NULL,
                        entry_id INTEGER NOT NULL,
                        entry_type TEXT NOT NULL,
                        assignment_reason TEXT NOT NULL,
                        auto_assigned_slot_id INTEGER,
                        final_slot_id INTEGER,
                        violated_restrictions TEXT,
                        fairness_score_before INTEGER,
                        fairness_score_after INTEGER,
                        FOREIGN KEY (run_id) REFERENCES ProcessingRuns(id) ON DELETE CASCADE,
                        FOREIGN KEY (entry_id) REFERENCES Entries(id)
                    );
                    """
                )

                cursor.execute(
                    """
                    CREATE INDEX IF NOT EXISTS idx_entries_date_status
                    ON Entries(lottery_date, status);
                    """
                )
                cursor.execute(
                    """
                    CREATE INDEX IF NOT EXISTS idx_slots_date_time
                    ON Slots(lottery_date, start_time);
                    """
                )
                cursor.execute(
                    """
                    CREATE INDEX IF NOT EXISTS idx_entry_logs_run
                    ON ProcessingEntryLogs(run_id);
                    """
                )
                conn.commit()
            logger.info("Database initialized at %s", self._db_path)
        except sqlite3.Error as exc:
            raise RuntimeError(f"Database initialization failed: {exc}") from exc

    # --- members -------------------------------------------------------

    def create_member(self, member_class: str, display_name: str = "") -> int:
        with self._connect() as conn:
            cursor = conn.cursor()
            cursor.execute(
                "INSERT INTO Members (display_name, member_class) VALUES (?, ?);",
                (display_name, member_class),
            )
            conn.commit()
            return int(cursor.lastrowid)

    def get_member_classes(self, member_ids: Optional[Iterable[int]] = None) -> dict[int, str]:
        """Return member class by id, for all members or the requested ids."""
        with self._connect() as conn:
            cursor = conn.cursor()
            if member_ids is None:
                cursor.execute("SELECT id, member_class FROM Members;")
            else:
                ids = sorted(set(member_ids))
                if not ids:
                    return {}
                placeholders = ",".join("?" for _ in ids)
                cursor.execute(
                    f"SELECT id, member_class FROM Members WHERE id IN ({placeholders});",
                    tuple(ids),
                )
            return {int(row["id"]): str(row["member_class"]) for row in cursor.fetchall()}

    # --- slots ---------------------------------------------------------

    def list_slots(self, lottery_date: str) -> list[Slot]:
        with self._connect() as conn:
            cursor = conn.cursor()
            cursor.execute(
                """
                SELECT id, lottery_date, start_time, max_occupants, reserved_occupants
                FROM Slots
                WHERE lottery_date = ?
                ORDER BY start_time ASC, id ASC;
                """,
                (lottery_date,),
            )
            return [_row_to_slot(row) for row in cursor.fetchall()]

    def set_slot_reserved_occupants(self, slot_id: int, reserved_occupants: int) -> None:
        """Block seats in a slot for players booked outside the lottery."""
        with self._connect() as conn:
            cursor = conn.cursor()
            cursor.execute(
                "UPDATE Slots SET reserved_occupants = ? WHERE id = ?;",
                (reserved_occupants, slot_id),
            )
            if cursor.rowcount != 1:
                raise RecordNotFoundError(f"slot {slot_id} does not exist")
            conn.commit()

    def ensure_slots_for_date(self, lottery_date: str, config: OperatingConfig) -> list[Slot]:
        """Lay out the day's slots from the operating configuration once."""
        existing = self.list_slots(lottery_date)
        if existing:
            return existing
        times = generate_slot_times(config)
        with self._connect() as conn:
            cursor = conn.cursor()
            cursor.executemany(
                """
                INSERT INTO Slots (lottery_date, start_time, max_occupants)
                VALUES (?, ?, ?);
                """,
                [(lottery_date, start_time, config.max_occupants_per_slot) for start_time in times],
            )
            conn.commit()
        logger.info("Generated %s slots for %s", len(times), lottery_date)
        return self.list_slots(lottery_date)

    # --- entries -------------------------------------------------------

    def create_entry(
        self,
        *,
        lottery_date: str,
        entry_type: EntryType,
        organizer_id: int,
        member_ids: Sequence[int],
        preferred_window: int,
        alternate_window: Optional[int] = None,
        guest_ids: Iterable[int] = (),
        guest_fill_count: int = 0,
        submitted_at: Optional[datetime] = None,
    ) -> int:
        """Insert entry row and return the created id."""
        submitted = submitted_at or datetime.now(timezone.utc)
        with self._connect() as conn:
            cursor = conn.cursor()
            cursor.execute(
                """
                INSERT INTO Entries (
                    lottery_date,
                    entry_type,
                    organizer_id,
                    member_ids,
                    guest_ids,
                    guest_fill_count,
                    preferred_window,
                    alternate_window,
                    submitted_at
                )
                VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?);
                """,
                (
                    lottery_date,
                    entry_type.value,
                    organizer_id,
                    json.dumps(list(member_ids)),
                    json.dumps(sorted(set(guest_ids))),
                    guest_fill_count,
                    preferred_window,
                    alternate_window,
                    submitted.isoformat(),
                ),
            )
            conn.commit()
            return int(cursor.lastrowid)

    def get_entry(self, entry_id: int) -> Optional[LotteryEntry]:
        with self._connect() as conn:
            cursor = conn.cursor()
            cursor.execute("SELECT * FROM Entries WHERE id = ?;", (entry_id,))
            row = cursor.fetchone()
            if row is None:
                return None
            return _row_to_entry(row)

    def list_entries(
        self,
        lottery_date: str,
        statuses: Optional[Sequence[EntryStatus]] = None,
    ) -> list[LotteryEntry]:
        """Return entries for a date in deterministic id order."""
        with self._connect() as conn:
            cursor = conn.cursor()
            if statuses:
                placeholders = ",".join("?" for _ in statuses)
                cursor.execute(
                    f"""
                    SELECT * FROM Entries
                    WHERE lottery_date = ? AND status IN ({placeholders})
                    ORDER BY id ASC;
                    """,
                    (lottery_date, *(status.value for status in statuses)),
                )
            else:
                cursor.execute(
                    "SELECT * FROM Entries WHERE lottery_date = ? ORDER BY id ASC;",
                    (lottery_date,),
                )
            return [_row_to_entry(row) for row in cursor.fetchall()]

    def list_organizer_booking_dates(
        self,
        organizer_id: int,
        start_date: str,
        end_date: str,
    ) -> list[date]:
        """Dates of non-cancelled entries organized by a member within a range."""
        with self._connect() as conn:
            cursor = conn.cursor()
            cursor.execute(
                """
                SELECT lottery_date
                FROM Entries
                WHERE organizer_id = ?
                  AND lottery_date >= ?
                  AND lottery_date <= ?
                  AND status != 'CANCELLED'
                ORDER BY lottery_date ASC;
                """,
                (organizer_id, start_date, end_date),
            )
            return [date.fromisoformat(str(row["lottery_date"])) for row in cursor.fetchall()]

    def update_entry_status(
        self,
        entry_id: int,
        status: EntryStatus,
        *,
        expected_status: Optional[EntryStatus] = None,
    ) -> bool:
        """Set an entry status; with ``expected_status`` only from that status."""
        with self._connect() as conn:
            cursor = conn.cursor()
            if expected_status is None:
                cursor.execute(
                    "UPDATE Entries SET status = ?, updated_at = ? WHERE id = ?;",
                    (status.value, _utc_now(), entry_id),
                )
            else:
                cursor.execute(
                    """
                    UPDATE Entries SET status = ?, updated_at = ?
                    WHERE id = ? AND status = ?;
                    """,
                    (status.value, _utc_now(), entry_id, expected_status.value),
                )
            conn.commit()
            return cursor.rowcount == 1

    def mark_entries_processing(self, entry_ids: Sequence[int]) -> None:
        if not entry_ids:
            return
        placeholders = ",".join("?" for _ in entry_ids)
        with self._connect() as conn:
            cursor = conn.cursor()
            cursor.execute(
                f"""
                UPDATE Entries
                SET status = 'PROCESSING', updated_at = ?
                WHERE status = 'PENDING' AND id IN ({placeholders});
                """,
                (_utc_now(), *entry_ids),
            )
            conn.commit()

    def count_processed_entries(self, lottery_date: str) -> int:
        with self._connect() as conn:
            cursor = conn.cursor()
            cursor.execute(
                """
                SELECT COUNT(*) AS count FROM Entries
                WHERE lottery_date = ? AND status IN ('PROCESSING', 'ASSIGNED');
                """,
                (lottery_date,),
            )
            return int(cursor.fetchone()["count"])

    # --- restriction rules ----------------------------------------------

    def create_restriction_rule(self, rule: RestrictionRule) -> int:
        with self._connect() as conn:
            cursor = conn.cursor()
            cursor.execute(
                """
                INSERT INTO RestrictionRules (
                    name,
                    description,
                    category,
                    applies_to_all_classes,
                    member_classes,
                    applies_to_all_windows,
                    window_indices,
                    requires_no_guests,
                    max_count,
                    period_days,
                    is_active
                )
                VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?);
                """,
                (
                    rule.name,
                    rule.description,
                    rule.category.value,
                    int(rule.classes.universal),
                    None if rule.classes.universal else json.dumps(sorted(rule.classes.values)),
                    int(rule.windows.universal),
                    None if rule.windows.universal else json.dumps(sorted(rule.windows.values)),
                    int(rule.requires_no_guests),
                    rule.max_count,
                    rule.period_days,
                    int(rule.is_active),
                ),
            )
            conn.commit()
            return int(cursor.lastrowid)

    def list_restriction_rules(self, active_only: bool = True) -> list[RestrictionRule]:
        with self._connect() as conn:
            cursor = conn.cursor()
            if active_only:
                cursor.execute("SELECT * FROM RestrictionRules WHERE is_active = 1 ORDER BY id ASC;")
            else:
                cursor.execute("SELECT * FROM RestrictionRules ORDER BY id ASC;")
            return [_row_to_rule(row) for row in cursor.fetchall()]

    # --- fairness ------------------------------------------------------

    def get_fairness_records(
        self,
        member_ids: Optional[Iterable[int]] = None,
    ) -> dict[int, FairnessRecord]:
        with self._connect() as conn:
            cursor = conn.cursor()
            if member_ids is None:
                cursor.execute("SELECT * FROM FairnessScores;")
            else:
                ids = sorted(set(member_ids))
                if not ids:
                    return {}
                placeholders = ",".join("?" for _ in ids)
                cursor.execute(
                    f"SELECT * FROM FairnessScores WHERE member_id IN ({placeholders});",
                    tuple(ids),
                )
            return {
                int(row["member_id"]): FairnessRecord(
                    member_id=int(row["member_id"]),
                    fairness_score=int(row["fairness_score"]),
                    total_entries_month=int(row["total_entries_month"]),
                    preferences_granted_month=int(row["preferences_granted_month"]),
                    days_without_good_time=int(row["days_without_good_time"]),
                    current_month=str(row["current_month"]),
                )
                for row in cursor.fetchall()
            }

    def get_fairness_scores(self, member_ids: Optional[Iterable[int]] = None) -> dict[int, int]:
        return {
            member_id: record.fairness_score
            for member_id, record in self.get_fairness_records(member_ids).items()
        }

    # --- processing runs -------------------------------------------------

    def get_processing_run(self, lottery_date: str) -> Optional[ProcessingRun]:
        with self._connect() as conn:
            cursor = conn.cursor()
            cursor.execute(
                "SELECT * FROM ProcessingRuns WHERE lottery_date = ?;",
                (lottery_date,),
            )
            row = cursor.fetchone()
            if row is None:
                return None
            return _row_to_run(row)

    def save_processing_outcome(
        self,
        *,
        lottery_date: str,
        assignments: dict[int, Optional[int]],
        log: Sequence[AssignmentLogEntry],
        group_count: int,
        individual_count: int,
    ) -> int:
        """Persist entry placements, the run row and its log in one transaction."""
        now = _utc_now()
        violation_count = sum(
            1 for item in log if item.assignment_reason.value == "RESTRICTION_VIOLATION"
        )
        assigned_count = sum(1 for slot_id in assignments.values() if slot_id is not None)
        with self._connect() as conn:
            cursor = conn.cursor()
            for entry_id, slot_id in assignments.items():
                cursor.execute(
                    """
                    UPDATE Entries
                    SET status = ?, assigned_slot_id = ?, updated_at = ?
                    WHERE id = ?;
                    """,
                    (
                        EntryStatus.ASSIGNED.value if slot_id is not None else EntryStatus.PENDING.value,
                        slot_id,
                        now,
                        entry_id,
                    ),
                )
            cursor.execute(
                """
                INSERT INTO ProcessingRuns (
                    lottery_date,
                    processed_at,
                    total_entries,
                    assigned_count,
                    group_count,
                    individual_count,
                    violation_count
                )
                VALUES (?, ?, ?, ?, ?, ?, ?);
                """,
                (
                    lottery_date,
                    now,
                    len(assignments),
                    assigned_count,
                    group_count,
                    individual_count,
                    violation_count,
                ),
            )
            run_id = int(cursor.lastrowid)
            cursor.executemany(
                """
                INSERT INTO ProcessingEntryLogs (
                    run_id,
                    entry_id,
                    entry_type,
                    assignment_reason,
                    auto_assigned_slot_id,
                    final_slot_id,
                    violated_restrictions,
                    fairness_score_before,
                    fairness_score_after
                )
                VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?);
                """,
                [
                    (
                        run_id,
                        item.entry_id,
                        item.entry_type.value,
                        item.assignment_reason.value,
                        item.final_slot_id,
                        item.final_slot_id,
                        (
                            json.dumps(list(item.violated_restrictions))
                            if item.violated_restrictions is not None
                            else None
                        ),
                        item.fairness_score_before,
                        None,
                    )
                    for item in log
                ],
            )
            conn.commit()
        return run_id

    def list_processing_log(self, run_id: int) -> list[dict[str, object]]:
        with self._connect() as conn:
            cursor = conn.cursor()
            cursor.execute(
                "SELECT * FROM ProcessingEntryLogs WHERE run_id = ? ORDER BY id ASC;",
                (run_id,),
            )
            rows: list[dict[str, object]] = []
            for row in cursor.fetchall():
                item = dict(row)
                violated = item.get("violated_restrictions")
                item["violated_restrictions"] = json.loads(violated) if violated else None
                rows.append(item)
            return rows

    def reset_date(self, lottery_date: str) -> int:
        """Revert every non-cancelled entry to PENDING and drop the run."""
        with self._connect() as conn:
            cursor = conn.cursor()
            cursor.execute(
                """
                UPDATE Entries
                SET status = 'PENDING', assigned_slot_id = NULL, updated_at = ?
                WHERE lottery_date = ? AND status != 'CANCELLED';
                """,
                (_utc_now(), lottery_date),
            )
            reverted = cursor.rowcount
            cursor.execute("DELETE FROM ProcessingRuns WHERE lottery_date = ?;", (lottery_date,))
            conn.commit()
            return int(reverted)

    def record_fairness_assignment(
        self,
        *,
        run_id: int,
        records: Sequence[FairnessRecord],
        final_slots: dict[int, Optional[int]],
        organizer_scores: dict[int, int],
    ) -> None:
        """Write member scores and close the run's fairness step atomically."""
        now = _utc_now()
        with self._connect() as conn:
            cursor = conn.cursor()
            cursor.executemany(
                """
                INSERT INTO FairnessScores (
                    member_id,
                    fairness_score,
                    current_month,
                    total_entries_month,
                    preferences_granted_month,
                    days_without_good_time,
                    last_updated
                )
                VALUES (?, ?, ?, ?, ?, ?, ?)
                ON CONFLICT(member_id) DO UPDATE SET
                    fairness_score = excluded.fairness_score,
                    current_month = excluded.current_month,
                    total_entries_month = excluded.total_entries_month,
                    preferences_granted_month = excluded.preferences_granted_month,
                    days_without_good_time = excluded.days_without_good_time,
                    last_updated = excluded.last_updated;
                """,
                [
                    (
                        record.member_id,
                        record.fairness_score,
                        record.current_month,
                        record.total_entries_month,
                        record.preferences_granted_month,
                        record.days_without_good_time,
                        now,
                    )
                    for record in records
                ],
            )
            cursor.executemany(
                """
                UPDATE ProcessingEntryLogs
                SET final_slot_id = ?, fairness_score_after = ?
                WHERE run_id = ? AND entry_id = ?;
                """,
                [
                    (slot_id, organizer_scores.get(entry_id), run_id, entry_id)
                    for entry_id, slot_id in final_slots.items()
                ],
            )
            cursor.execute(
                "UPDATE ProcessingRuns SET fairness_assigned_at = ? WHERE id = ?;",
                (now, run_id),
            )
            conn.commit()

    # --- demo data ---------------------------------------------------------

    def seed_demo_data_if_empty(self) -> None:
        """Insert a small member roster and rule set on an empty database."""
        with self._connect() as conn:
            cursor = conn.cursor()
            cursor.execute("SELECT COUNT(*) AS count FROM Members;")
            if int(cursor.fetchone()["count"]) > 0:
                logger.info("Members already populated, skipping demo seed")
                return

            roster = [
                ("Avery Collins", "FULL"),
                ("Jordan Reyes", "FULL"),
                ("Sam Whitfield", "FULL"),
                ("Riley Okafor", "FULL"),
                ("Casey Lindqvist", "SOCIAL"),
                ("Morgan Patel", "SOCIAL"),
                ("Taylor Nguyen", "JUNIOR"),
                ("Jamie Brennan", "JUNIOR"),
            ]
            cursor.executemany(
                "INSERT INTO Members (display_name, member_class) VALUES (?, ?);",
                roster,
            )
            cursor.executemany(
                """
                INSERT INTO RestrictionRules (
                    name,
                    description,
                    category,
                    applies_to_all_classes,
                    member_classes,
                    applies_to_all_windows,
                    window_indices,
                    requires_no_guests,
                    max_count,
                    period_days
                )
                VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?);
                """,
                [
                    (
                        "Social morning block",
                        "",
                        RestrictionCategory.MEMBER_CLASS.value,
                        0,
                        json.dumps(["SOCIAL"]),
                        0,
                        json.dumps([0]),
                        0,
                        None,
                        None,
                    ),
                    (
                        "Junior evening block",
                        "Juniors may not book the evening window without a guest",
                        RestrictionCategory.MEMBER_CLASS.value,
                        0,
                        json.dumps(["JUNIOR"]),
                        0,
                        json.dumps([3]),
                        1,
                        None,
                        None,
                    ),
                    (
                        "Junior weekly limit",
                        "",
                        RestrictionCategory.FREQUENCY.value,
                        0,
                        json.dumps(["JUNIOR"]),
                        1,
                        None,
                        0,
                        2,
                        7,
                    ),
                ],
            )
            conn.commit()
        logger.info("Seeded %s demo members and 3 restriction rules", len(roster))

    # --- batch arrangement commit ------------------------------------------

    def apply_assignment_changes(
        self,
        lottery_date: str,
        changes: Sequence[PendingChange],
    ) -> None:
        """Apply entry->slot changes as one transaction.

        Any unknown entry or slot, a cancelled entry, or a resulting slot
        overflow rolls back the whole batch.
        """
        if not changes:
            return
        now = _utc_now()
        conn = self._connect()
        try:
            with conn:
                cursor = conn.cursor()
                slots = {
                    int(row["id"]): _row_to_slot(row)
                    for row in cursor.execute(
                        "SELECT * FROM Slots WHERE lottery_date = ?;",
                        (lottery_date,),
                    ).fetchall()
                }
                for change in changes:
                    row = cursor.execute(
                        "SELECT status FROM Entries WHERE id = ? AND lottery_date = ?;",
                        (change.entry_id, lottery_date),
                    ).fetchone()
                    if row is None:
                        raise RecordNotFoundError(
                            f"entry {change.entry_id} does not exist for {lottery_date}"
                        )
                    if row["status"] == EntryStatus.CANCELLED.value:
                        raise RecordNotFoundError(f"entry {change.entry_id} is cancelled")
                    if change.new_slot_id is not None and change.new_slot_id not in slots:
                        raise RecordNotFoundError(
                            f"slot {change.new_slot_id} does not exist for {lottery_date}"
                        )
                    cursor.execute(
                        """
                        UPDATE Entries
                        SET assigned_slot_id = ?, status = ?, updated_at = ?
                        WHERE id = ?;
                        """,
                        (
                            change.new_slot_id,
                            (
                                EntryStatus.ASSIGNED.value
                                if change.new_slot_id is not None
                                else EntryStatus.PENDING.value
                            ),
                            now,
                            change.entry_id,
                        ),
                    )

                occupancy = {slot_id: slot.reserved_occupants for slot_id, slot in slots.items()}
                for row in cursor.execute(
                    """
                    SELECT * FROM Entries
                    WHERE lottery_date = ? AND status = 'ASSIGNED'
                      AND assigned_slot_id IS NOT NULL;
                    """,
                    (lottery_date,),
                ).fetchall():
                    entry = _row_to_entry(row)
                    occupancy[entry.assigned_slot_id] = (
                        occupancy.get(entry.assigned_slot_id, 0) + entry.party_size
                    )
                for slot_id, occupied in occupancy.items():
                    if occupied > slots[slot_id].max_occupants:
                        raise CapacityConflictError(
                            f"slot {slots[slot_id].start_time} would hold {occupied} "
                            f"of {slots[slot_id].max_occupants}"
                        )
        finally:
            conn.close()
        logger.info("Committed %s assignment changes for %s", len(changes), lottery_date)
