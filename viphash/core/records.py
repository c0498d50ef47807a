"""
Write-once verdict ledger.

Each (address, reviewer) pair can be written exactly once. A second write is
reported as SaveOutcome.ALREADY_EXISTS and leaves the stored record untouched.
Lookup misses are returned as None; only storage faults raise.
"""

import fcntl
import json
import os
import sqlite3
import tempfile
import threading
import time
from abc import ABC, abstractmethod
from contextlib import contextmanager
from pathlib import Path
from typing import Callable, List, Optional, Union

from .config import Settings
from .db import get_db, init_db
from .schema import SaveOutcome, Verdict, VerdictRecord, validate_key
from ..util.logging import logger

# Smallest gap between two recorded_at values in one ledger
TIMESTAMP_STEP = 1e-6


class IRecordStore(ABC):
    """Abstract interface for the verdict ledger."""

    def __init__(self, clock: Callable[[], float] = time.time):
        self.clock = clock

    def _next_timestamp(self, newest: Optional[float]) -> float:
        """
        Timestamp for a record about to be written after newest.

        recorded_at is the ledger's replication log, so it must grow strictly
        even when the wall clock steps backwards. Callers hold the write lock.
        """
        now = self.clock()
        if newest is not None and now <= newest:
            return newest + TIMESTAMP_STEP
        return now

    @abstractmethod
    def save(self, address: str, reviewer: str, verdict: Verdict,
             origin: Optional[str] = None) -> SaveOutcome:
        """Record a verdict unless one already exists for (address, reviewer)."""
        pass

    @abstractmethod
    def get_by_reviewer(self, address: str, reviewer: str) -> Optional[VerdictRecord]:
        """Return one reviewer's verdict on an address."""
        pass

    @abstractmethod
    def get_all_for_address(self, address: str) -> List[VerdictRecord]:
        """Return every reviewer's verdict on an address in insertion order."""
        pass

    @abstractmethod
    def get_records_after(self, timestamp: float,
                          exclude_origin: Optional[str] = None) -> List[VerdictRecord]:
        """Return records with recorded_at > timestamp, oldest first."""
        pass

    @abstractmethod
    def newest_timestamp(self) -> Optional[float]:
        """Return the largest recorded_at in the ledger."""
        pass

    @abstractmethod
    def count(self) -> int:
        """Return the number of records in the ledger."""
        pass

    def _log_save(self, address: str, reviewer: str, outcome: SaveOutcome, origin: Optional[str]):
        details = {"outcome": outcome.value}
        if origin:
            details["origin"] = origin
        logger.log_record_operation("save", address, reviewer, "success", details)


class SqliteRecordStore(IRecordStore):
    """Ledger kept in the SQLite records table."""

    def __init__(self, db_path: Union[str, Path], clock: Callable[[], float] = time.time):
        super().__init__(clock)
        self.db_path = Path(db_path)
        init_db(self.db_path)

    @staticmethod
    def _row_to_record(row) -> VerdictRecord:
        address, reviewer, verdict, recorded_at, origin = row
        return VerdictRecord(
            address=address,
            reviewer=reviewer,
            verdict=Verdict(verdict),
            recorded_at=recorded_at,
            origin=origin
        )

    def save(self, address: str, reviewer: str, verdict: Verdict,
             origin: Optional[str] = None) -> SaveOutcome:
        validate_key(address, reviewer)
        verdict = Verdict(verdict)

        with get_db(self.db_path) as conn:
            cursor = conn.cursor()
            # The write lock orders recorded_at the same way as commits
            cursor.execute("BEGIN IMMEDIATE")
            try:
                cursor.execute("SELECT MAX(recorded_at) FROM records")
                recorded_at = self._next_timestamp(cursor.fetchone()[0])
                # INSERT OR IGNORE against UNIQUE(address, reviewer) is the atomic create-if-absent
                cursor.execute(
                    "INSERT OR IGNORE INTO records (address, reviewer, verdict, recorded_at, origin) "
                    "VALUES (?, ?, ?, ?, ?)",
                    (address, reviewer, verdict.value, recorded_at, origin)
                )
                outcome = SaveOutcome.CREATED if cursor.rowcount == 1 else SaveOutcome.ALREADY_EXISTS
                cursor.execute("COMMIT")
            except sqlite3.Error:
                cursor.execute("ROLLBACK")
                raise

        self._log_save(address, reviewer, outcome, origin)
        return outcome

    def get_by_reviewer(self, address: str, reviewer: str) -> Optional[VerdictRecord]:
        with get_db(self.db_path) as conn:
            cursor = conn.cursor()
            cursor.execute(
                "SELECT address, reviewer, verdict, recorded_at, origin FROM records "
                "WHERE address = ? AND reviewer = ?",
                (address, reviewer)
            )
            row = cursor.fetchone()
            return self._row_to_record(row) if row else None

    def get_all_for_address(self, address: str) -> List[VerdictRecord]:
        with get_db(self.db_path) as conn:
            cursor = conn.cursor()
            cursor.execute(
                "SELECT address, reviewer, verdict, recorded_at, origin FROM records "
                "WHERE address = ? ORDER BY seq",
                (address,)
            )
            return [self._row_to_record(row) for row in cursor.fetchall()]

    def get_records_after(self, timestamp: float,
                          exclude_origin: Optional[str] = None) -> List[VerdictRecord]:
        query = ("SELECT address, reviewer, verdict, recorded_at, origin FROM records "
                 "WHERE recorded_at > ?")
        params = [timestamp]
        if exclude_origin is not None:
            query += " AND (origin IS NULL OR origin != ?)"
            params.append(exclude_origin)
        query += " ORDER BY recorded_at, seq"

        with get_db(self.db_path) as conn:
            cursor = conn.cursor()
            cursor.execute(query, params)
            return [self._row_to_record(row) for row in cursor.fetchall()]

    def newest_timestamp(self) -> Optional[float]:
        with get_db(self.db_path) as conn:
            cursor = conn.cursor()
            cursor.execute("SELECT MAX(recorded_at) FROM records")
            return cursor.fetchone()[0]

    def count(self) -> int:
        with get_db(self.db_path) as conn:
            cursor = conn.cursor()
            cursor.execute("SELECT COUNT(*) FROM records")
            return cursor.fetchone()[0]


class FileRecordStore(IRecordStore):
    """
    Ledger kept as one file per record, named <address>-<reviewer>.

    A record is written to a temporary file and then hard linked to its final
    name. os.link fails when the name exists, which makes creation atomic and
    means a reader never sees a half written record. Writers serialize on a
    lock file so recorded_at grows in the order records are created.
    """

    def __init__(self, directory: Union[str, Path], clock: Callable[[], float] = time.time):
        super().__init__(clock)
        self.directory = Path(directory)
        self.directory.mkdir(parents=True, exist_ok=True)
        self._thread_lock = threading.Lock()

    @contextmanager
    def _write_lock(self):
        with self._thread_lock:
            with open(self.directory / ".lock", "a") as fh:
                fcntl.flock(fh.fileno(), fcntl.LOCK_EX)
                try:
                    yield
                finally:
                    fcntl.flock(fh.fileno(), fcntl.LOCK_UN)

    def _path(self, address: str, reviewer: str) -> Path:
        return self.directory / f"{address}-{reviewer}"

    def _read(self, path: Path) -> VerdictRecord:
        data = json.loads(path.read_text(encoding="utf-8"))
        return VerdictRecord(
            address=data["address"],
            reviewer=data["reviewer"],
            verdict=Verdict(data["verdict"]),
            recorded_at=data["recorded_at"],
            origin=data.get("origin")
        )

    def _all_records(self) -> List[VerdictRecord]:
        records = []
        for path in self.directory.iterdir():
            if path.name.startswith(".") or not path.is_file():
                continue
            records.append(self._read(path))
        return records

    def save(self, address: str, reviewer: str, verdict: Verdict,
             origin: Optional[str] = None) -> SaveOutcome:
        validate_key(address, reviewer)
        verdict = Verdict(verdict)

        with self._write_lock():
            recorded_at = self._next_timestamp(self.newest_timestamp())
            record = VerdictRecord(address, reviewer, verdict, recorded_at, origin)
            payload = dict(record.to_wire(), origin=origin)

            fd, tmp_name = tempfile.mkstemp(prefix=".tmp-", dir=str(self.directory))
            try:
                with os.fdopen(fd, "w", encoding="utf-8") as fh:
                    json.dump(payload, fh)
                    fh.flush()
                    os.fsync(fh.fileno())
                try:
                    os.link(tmp_name, self._path(address, reviewer))
                    outcome = SaveOutcome.CREATED
                except FileExistsError:
                    outcome = SaveOutcome.ALREADY_EXISTS
            finally:
                os.unlink(tmp_name)

        self._log_save(address, reviewer, outcome, origin)
        return outcome

    def get_by_reviewer(self, address: str, reviewer: str) -> Optional[VerdictRecord]:
        path = self._path(address, reviewer)
        if not path.exists():
            return None
        return self._read(path)

    def get_all_for_address(self, address: str) -> List[VerdictRecord]:
        records = []
        for path in self.directory.glob(f"{address}-*"):
            records.append(self._read(path))
        # Files carry no sequence number; creation time stands in for insertion order
        return sorted(records, key=lambda r: r.recorded_at)

    def get_records_after(self, timestamp: float,
                          exclude_origin: Optional[str] = None) -> List[VerdictRecord]:
        records = [
            r for r in self._all_records()
            if r.recorded_at > timestamp and (exclude_origin is None or r.origin != exclude_origin)
        ]
        return sorted(records, key=lambda r: r.recorded_at)

    def newest_timestamp(self) -> Optional[float]:
        records = self._all_records()
        if not records:
            return None
        return max(r.recorded_at for r in records)

    def count(self) -> int:
        return len(self._all_records())


def open_record_store(settings: Settings, clock: Callable[[], float] = time.time) -> IRecordStore:
    """Get the configured record store implementation."""
    if settings.store_backend == "file":
        return FileRecordStore(settings.records_dir, clock=clock)
    if settings.store_backend == "sqlite":
        return SqliteRecordStore(settings.db_path, clock=clock)
    raise ValueError(f"Unknown store backend: {settings.store_backend}")
