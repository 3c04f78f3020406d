"""
Operator -> camera assignments, persisted in SQLite.

One active camera per operator: assigning again replaces the previous row.
"""

import logging
import sqlite3
import threading
from dataclasses import dataclass
from pathlib import Path
from typing import List, Optional, Union

_SCHEMA = """
CREATE TABLE IF NOT EXISTS users (
    user_id INTEGER PRIMARY KEY,
    username TEXT,
    camera_number INTEGER NOT NULL,
    created_at DATETIME DEFAULT CURRENT_TIMESTAMP,
    updated_at DATETIME DEFAULT CURRENT_TIMESTAMP
)
"""


@dataclass(frozen=True)
class Assignment:
    operator_id: int
    display_name: str
    camera_number: int


class AssignmentStore:
    """SQLite-backed assignment table. Use ":memory:" for a throwaway store."""

    def __init__(self, db_path: Union[str, Path] = "tally.db"):
        self.db_path = str(db_path)
        # Shared by the bot handlers and the monitor loop
        self._lock = threading.Lock()
        self._conn = sqlite3.connect(self.db_path, check_same_thread=False)
        self._conn.row_factory = sqlite3.Row
        with self._conn:
            self._conn.execute(_SCHEMA)
        logging.debug(f"Assignment store opened at {self.db_path}")

    @staticmethod
    def _to_assignment(row: Optional[sqlite3.Row]) -> Optional[Assignment]:
        if row is None:
            return None
        return Assignment(
            operator_id=row["user_id"],
            display_name=row["username"] or "",
            camera_number=row["camera_number"],
        )

    def assign(self, operator_id: int, display_name: str, camera_number: int) -> Assignment:
        """Create or replace the operator's assignment."""
        with self._lock, self._conn:
            self._conn.execute(
                """
                INSERT INTO users (user_id, username, camera_number)
                VALUES (?, ?, ?)
                ON CONFLICT(user_id) DO UPDATE SET
                    username = excluded.username,
                    camera_number = excluded.camera_number,
                    updated_at = CURRENT_TIMESTAMP
                """,
                (operator_id, display_name, camera_number),
            )
        return Assignment(operator_id, display_name, camera_number)

    def get(self, camera_number: int) -> Optional[Assignment]:
        """First operator watching a camera, or None."""
        with self._lock:
            row = self._conn.execute(
                "SELECT * FROM users WHERE camera_number = ? ORDER BY user_id LIMIT 1",
                (camera_number,),
            ).fetchone()
        return self._to_assignment(row)

    def get_by_operator(self, operator_id: int) -> Optional[Assignment]:
        with self._lock:
            row = self._conn.execute(
                "SELECT * FROM users WHERE user_id = ?", (operator_id,)
            ).fetchone()
        return self._to_assignment(row)

    def list_all(self) -> List[Assignment]:
        """Every assignment, ordered by camera number."""
        with self._lock:
            rows = self._conn.execute(
                "SELECT * FROM users ORDER BY camera_number, user_id"
            ).fetchall()
        return [self._to_assignment(row) for row in rows]

    def remove(self, operator_id: int) -> int:
        """Delete the operator's assignment. Returns the number of rows removed."""
        with self._lock, self._conn:
            cursor = self._conn.execute(
                "DELETE FROM users WHERE user_id = ?", (operator_id,)
            )
        return cursor.rowcount

    def close(self):
        with self._lock:
            self._conn.close()
