"""
Registry of peer installations and their replication watermarks.
"""

import json
import sqlite3
from abc import ABC, abstractmethod
from pathlib import Path
from typing import Any, Dict, List, Optional, Union

from .db import get_db, init_db
from .schema import RemoteDescriptor
from ..util.logging import logger


class DuplicateNameError(Exception):
    """Raised when a remote name is already registered."""
    pass


class IRemoteRegistry(ABC):
    """Abstract interface for peer descriptor storage."""

    @abstractmethod
    def add(self, name: str, endpoint: str, auth: Optional[Dict[str, Any]] = None,
            latest_seen: float = 0.0, last_sent: float = 0.0) -> int:
        """Register a peer and return its id."""
        pass

    @abstractmethod
    def update(self, remote_id: int, latest_seen: Optional[float] = None,
               last_sent: Optional[float] = None) -> Optional[RemoteDescriptor]:
        """Advance the supplied watermarks; the others are left alone."""
        pass

    @abstractmethod
    def get(self, name: str) -> Optional[RemoteDescriptor]:
        pass

    @abstractmethod
    def list(self) -> List[RemoteDescriptor]:
        pass

    @abstractmethod
    def remove(self, name: str) -> bool:
        pass


class SqliteRemoteRegistry(IRemoteRegistry):
    """Peer descriptors kept in the SQLite remotes table."""

    def __init__(self, db_path: Union[str, Path]):
        self.db_path = Path(db_path)
        init_db(self.db_path)

    @staticmethod
    def _row_to_descriptor(row) -> RemoteDescriptor:
        remote_id, name, endpoint_uri, auth_material, latest_seen, last_sent = row
        return RemoteDescriptor(
            id=remote_id,
            name=name,
            endpoint_uri=endpoint_uri,
            auth_material=json.loads(auth_material or "{}"),
            latest_seen=latest_seen,
            last_sent=last_sent
        )

    def add(self, name: str, endpoint: str, auth: Optional[Dict[str, Any]] = None,
            latest_seen: float = 0.0, last_sent: float = 0.0) -> int:
        if not name or not name.strip():
            raise ValueError("remote name cannot be empty")
        if not endpoint or not endpoint.strip():
            raise ValueError("remote endpoint cannot be empty")

        try:
            with get_db(self.db_path) as conn:
                cursor = conn.cursor()
                cursor.execute(
                    "INSERT INTO remotes (name, endpoint_uri, auth_material, latest_seen, last_sent) "
                    "VALUES (?, ?, ?, ?, ?)",
                    (name, endpoint, json.dumps(auth or {}), latest_seen, last_sent)
                )
                remote_id = cursor.lastrowid
        except sqlite3.IntegrityError:
            raise DuplicateNameError(f"a remote named '{name}' already exists")

        logger.log_remote_operation("add", name, "success", {"endpoint": endpoint, "id": remote_id})
        return remote_id

    def update(self, remote_id: int, latest_seen: Optional[float] = None,
               last_sent: Optional[float] = None) -> Optional[RemoteDescriptor]:
        assignments = []
        params = []
        # MAX() keeps watermarks monotonic when two syncs race on the same peer
        if latest_seen is not None:
            assignments.append("latest_seen = MAX(latest_seen, ?)")
            params.append(latest_seen)
        if last_sent is not None:
            assignments.append("last_sent = MAX(last_sent, ?)")
            params.append(last_sent)

        with get_db(self.db_path) as conn:
            cursor = conn.cursor()
            cursor.execute("BEGIN IMMEDIATE")
            try:
                if assignments:
                    cursor.execute(
                        f"UPDATE remotes SET {', '.join(assignments)} WHERE id = ?",
                        params + [remote_id]
                    )
                cursor.execute(
                    "SELECT id, name, endpoint_uri, auth_material, latest_seen, last_sent "
                    "FROM remotes WHERE id = ?",
                    (remote_id,)
                )
                row = cursor.fetchone()
                cursor.execute("COMMIT")
            except sqlite3.Error:
                cursor.execute("ROLLBACK")
                raise

        if row is None:
            return None

        descriptor = self._row_to_descriptor(row)
        logger.log_remote_operation("update", descriptor.name, "success", {
            "latest_seen": descriptor.latest_seen,
            "last_sent": descriptor.last_sent
        })
        return descriptor

    def get(self, name: str) -> Optional[RemoteDescriptor]:
        with get_db(self.db_path) as conn:
            cursor = conn.cursor()
            cursor.execute(
                "SELECT id, name, endpoint_uri, auth_material, latest_seen, last_sent "
                "FROM remotes WHERE name = ?",
                (name,)
            )
            row = cursor.fetchone()
            return self._row_to_descriptor(row) if row else None

    def list(self) -> List[RemoteDescriptor]:
        with get_db(self.db_path) as conn:
            cursor = conn.cursor()
            cursor.execute(
                "SELECT id, name, endpoint_uri, auth_material, latest_seen, last_sent "
                "FROM remotes ORDER BY id"
            )
            return [self._row_to_descriptor(row) for row in cursor.fetchall()]

    def remove(self, name: str) -> bool:
        with get_db(self.db_path) as conn:
            cursor = conn.cursor()
            cursor.execute("DELETE FROM remotes WHERE name = ?", (name,))
            removed = cursor.rowcount > 0

        logger.log_remote_operation("remove", name, "success" if removed else "not_found")
        return removed
