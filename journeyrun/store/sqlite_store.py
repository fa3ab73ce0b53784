"""SQLite-backed persistence for journeys, runs and block states.

Design principles:
- At most one active run per (user_id, journey_id): a partial unique index
- At most one block state per (run_id, block_id): a unique index
- Creation is get-or-insert (INSERT .. ON CONFLICT DO NOTHING, then select),
  never a client-side check-then-act
- Write failures surface as PersistenceWriteError
- Thread-safe for concurrent reads and writes
"""

import json
import logging
import sqlite3
import threading
import uuid
from datetime import datetime, timezone
from enum import Enum
from pathlib import Path
from typing import Any

from journeyrun.errors import PersistenceWriteError
from journeyrun.models.graph import JourneyGraph
from journeyrun.models.records import (
    BlockState,
    BlockStatus,
    JourneyRecord,
    JourneyStatus,
    ModuleRecord,
    NextModule,
    Run,
    RunStatus,
)

logger = logging.getLogger(__name__)

_RUN_COLUMNS = {"current_block_id", "status", "started_at", "completed_at"}
_BLOCK_STATE_COLUMNS = {
    "status",
    "attempts_count",
    "output_payload",
    "score",
    "weak_topics",
    "time_spent_seconds",
    "started_at",
    "completed_at",
    "last_entered_at",
}
# Model field -> column, where they differ
_JSON_COLUMNS = {"output_payload": "output_json", "weak_topics": "weak_topics_json"}


def _to_db(value: Any) -> Any:
    if isinstance(value, datetime):
        return value.isoformat()
    if isinstance(value, Enum):
        return value.value
    return value


def _from_db_ts(value: str | None) -> datetime | None:
    return datetime.fromisoformat(value) if value else None


class JourneyStore:
    """Store for journey definitions, runs and block states.

    Thread-safe: uses per-thread connections for concurrent access.
    For in-memory databases, uses a unique shared cache URI to allow multi-threaded access
    while keeping each store instance isolated.
    """

    def __init__(self, db_path: str | Path = ":memory:"):
        """Initialize the store.

        Args:
            db_path: Path to SQLite database file, or ":memory:" for in-memory.
        """
        self._original_path = str(db_path)

        # Each in-memory store gets its own shared-cache database
        if self._original_path == ":memory:":
            unique_id = uuid.uuid4().hex[:8]
            self.db_path = f"file:journeyrun_{unique_id}?mode=memory&cache=shared"
            self._uri = True
        else:
            self.db_path = self._original_path
            self._uri = False

        self._local = threading.local()
        self._write_lock = threading.Lock()
        self._init_schema()

    def _get_conn(self) -> sqlite3.Connection:
        """Get or create a thread-local database connection."""
        if not hasattr(self._local, "conn") or self._local.conn is None:
            self._local.conn = sqlite3.connect(
                self.db_path,
                uri=self._uri,
                check_same_thread=False,
                timeout=30.0,
            )
            self._local.conn.row_factory = sqlite3.Row
            # WAL for file-based databases only
            if not self._uri:
                self._local.conn.execute("PRAGMA journal_mode=WAL")
        return self._local.conn

    def _init_schema(self) -> None:
        """Create tables and indexes if they don't exist."""
        conn = self._get_conn()
        conn.executescript(
            """
            CREATE TABLE IF NOT EXISTS journeys (
                journey_id TEXT PRIMARY KEY,
                module_id TEXT,
                version INTEGER NOT NULL DEFAULT 1,
                status TEXT NOT NULL,
                graph_json TEXT NOT NULL,
                updated_at TEXT NOT NULL
            );

            CREATE TABLE IF NOT EXISTS modules (
                module_id TEXT PRIMARY KEY,
                track_id TEXT NOT NULL,
                title TEXT NOT NULL,
                order_index INTEGER NOT NULL
            );

            CREATE INDEX IF NOT EXISTS idx_modules_track_order
                ON modules(track_id, order_index);

            CREATE TABLE IF NOT EXISTS runs (
                run_id TEXT PRIMARY KEY,
                user_id TEXT NOT NULL,
                journey_id TEXT NOT NULL,
                current_block_id TEXT,
                status TEXT NOT NULL,
                started_at TEXT,
                completed_at TEXT
            );

            CREATE UNIQUE INDEX IF NOT EXISTS idx_runs_one_active
                ON runs(user_id, journey_id)
                WHERE status IN ('not_started', 'in_progress');

            CREATE INDEX IF NOT EXISTS idx_runs_user
                ON runs(user_id, journey_id);

            CREATE TABLE IF NOT EXISTS block_states (
                state_id TEXT PRIMARY KEY,
                run_id TEXT NOT NULL,
                block_id TEXT NOT NULL,
                status TEXT NOT NULL,
                attempts_count INTEGER NOT NULL DEFAULT 0,
                output_json TEXT NOT NULL DEFAULT '{}',
                score NUMERIC,
                weak_topics_json TEXT NOT NULL DEFAULT '[]',
                time_spent_seconds INTEGER NOT NULL DEFAULT 0,
                started_at TEXT,
                completed_at TEXT,
                last_entered_at TEXT
            );

            CREATE UNIQUE INDEX IF NOT EXISTS idx_block_states_run_block
                ON block_states(run_id, block_id);
            """
        )
        conn.commit()

    def _write(self, query: str, params: tuple | list) -> sqlite3.Cursor:
        """Execute and commit a single write under the write lock."""
        with self._write_lock:
            conn = self._get_conn()
            try:
                cursor = conn.execute(query, params)
                conn.commit()
                return cursor
            except sqlite3.Error as e:
                conn.rollback()
                raise PersistenceWriteError(f"Write failed: {e}") from e

    # -------------------------------------------------------------------------
    # Journeys and modules
    # -------------------------------------------------------------------------

    def save_journey(self, record: JourneyRecord) -> JourneyRecord:
        """Insert or replace a journey version."""
        self._write(
            """
            INSERT INTO journeys (journey_id, module_id, version, status, graph_json, updated_at)
            VALUES (?, ?, ?, ?, ?, ?)
            ON CONFLICT(journey_id) DO UPDATE SET
                module_id = excluded.module_id,
                version = excluded.version,
                status = excluded.status,
                graph_json = excluded.graph_json,
                updated_at = excluded.updated_at
            """,
            (
                record.journey_id,
                record.module_id,
                record.version,
                record.status.value,
                json.dumps(record.graph.to_wire()),
                datetime.now(timezone.utc).isoformat(),
            ),
        )
        return record

    def get_journey(self, journey_id: str) -> JourneyRecord | None:
        """Get a journey version by id; the graph is validated, not integrity-checked."""
        conn = self._get_conn()
        row = conn.execute(
            "SELECT * FROM journeys WHERE journey_id = ?", (journey_id,)
        ).fetchone()
        return self._row_to_journey(row) if row else None

    def list_journeys(self) -> list[JourneyRecord]:
        conn = self._get_conn()
        cursor = conn.execute("SELECT * FROM journeys ORDER BY journey_id")
        return [self._row_to_journey(row) for row in cursor.fetchall()]

    def save_module(self, module: ModuleRecord) -> ModuleRecord:
        self._write(
            """
            INSERT INTO modules (module_id, track_id, title, order_index)
            VALUES (?, ?, ?, ?)
            ON CONFLICT(module_id) DO UPDATE SET
                track_id = excluded.track_id,
                title = excluded.title,
                order_index = excluded.order_index
            """,
            (module.module_id, module.track_id, module.title, module.order_index),
        )
        return module

    def get_module(self, module_id: str) -> ModuleRecord | None:
        conn = self._get_conn()
        row = conn.execute(
            "SELECT * FROM modules WHERE module_id = ?", (module_id,)
        ).fetchone()
        if not row:
            return None
        return ModuleRecord(
            module_id=row["module_id"],
            track_id=row["track_id"],
            title=row["title"],
            order_index=row["order_index"],
        )

    def find_next_published_module(
        self, track_id: str, current_module_id: str
    ) -> NextModule | None:
        """Find the module right after the current one that has a published version.

        Args:
            track_id: The track both modules belong to.
            current_module_id: The module just finished.

        Returns:
            The successor's published version and title, or None.
        """
        current = self.get_module(current_module_id)
        if current is None:
            return None

        conn = self._get_conn()
        row = conn.execute(
            """
            SELECT j.journey_id, m.title FROM modules m
            JOIN journeys j ON j.module_id = m.module_id
            WHERE m.track_id = ? AND m.order_index = ? AND j.status = ?
            ORDER BY j.version DESC LIMIT 1
            """,
            (track_id, current.order_index + 1, JourneyStatus.PUBLISHED.value),
        ).fetchone()
        if not row:
            return None
        return NextModule(version_id=row["journey_id"], title=row["title"])

    # -------------------------------------------------------------------------
    # Runs
    # -------------------------------------------------------------------------

    def get_active_run(self, user_id: str, journey_id: str) -> Run | None:
        """Get the single non-terminal run for a user and journey."""
        conn = self._get_conn()
        row = conn.execute(
            """
            SELECT * FROM runs
            WHERE user_id = ? AND journey_id = ? AND status IN (?, ?)
            """,
            (user_id, journey_id, RunStatus.NOT_STARTED.value, RunStatus.IN_PROGRESS.value),
        ).fetchone()
        return self._row_to_run(row) if row else None

    def get_run(self, run_id: str) -> Run | None:
        conn = self._get_conn()
        row = conn.execute("SELECT * FROM runs WHERE run_id = ?", (run_id,)).fetchone()
        return self._row_to_run(row) if row else None

    def list_runs(
        self,
        user_id: str | None = None,
        journey_id: str | None = None,
    ) -> list[Run]:
        """List runs with optional filters, oldest first."""
        query = "SELECT * FROM runs WHERE 1 = 1"
        params: list = []

        if user_id is not None:
            query += " AND user_id = ?"
            params.append(user_id)

        if journey_id is not None:
            query += " AND journey_id = ?"
            params.append(journey_id)

        query += " ORDER BY started_at, run_id"

        cursor = self._get_conn().execute(query, params)
        return [self._row_to_run(row) for row in cursor.fetchall()]

    def create_run(self, run: Run) -> Run:
        """Insert a run unless an active one already exists; return the winner.

        Only active runs are deduplicated; a terminal run is inserted as-is.
        """
        self._write(
            """
            INSERT INTO runs (
                run_id, user_id, journey_id, current_block_id,
                status, started_at, completed_at
            ) VALUES (?, ?, ?, ?, ?, ?, ?)
            ON CONFLICT DO NOTHING
            """,
            (
                run.id,
                run.user_id,
                run.journey_id,
                run.current_block_id,
                run.status.value,
                _to_db(run.started_at),
                _to_db(run.completed_at),
            ),
        )
        if run.is_active:
            stored = self.get_active_run(run.user_id, run.journey_id)
        else:
            stored = self.get_run(run.id)
        if stored is None:
            raise PersistenceWriteError(f"Run was not stored: {run.id}")
        return stored

    def update_run(self, run_id: str, **patch: Any) -> Run:
        """Apply a partial update to a run and return the stored result."""
        unknown = set(patch) - _RUN_COLUMNS
        if unknown:
            raise ValueError(f"Unknown run fields: {sorted(unknown)}")

        if patch:
            assignments = ", ".join(f"{name} = ?" for name in patch)
            params = [_to_db(value) for value in patch.values()] + [run_id]
            cursor = self._write(f"UPDATE runs SET {assignments} WHERE run_id = ?", params)
            if cursor.rowcount == 0:
                raise PersistenceWriteError(f"Run not found: {run_id}")

        run = self.get_run(run_id)
        if run is None:
            raise PersistenceWriteError(f"Run not found: {run_id}")
        return run

    def restart_run(self, run_id: str, start_block_id: str) -> Run:
        """Delete a run's block states and put it back in progress at the start block.

        Both writes commit together. If the run cannot be reopened (another
        run of the same user and journey is active), nothing is deleted.

        Raises:
            PersistenceWriteError: If the run is missing or the reset fails.
        """
        with self._write_lock:
            conn = self._get_conn()
            try:
                conn.execute("DELETE FROM block_states WHERE run_id = ?", (run_id,))
                cursor = conn.execute(
                    """
                    UPDATE runs SET status = ?, current_block_id = ?, completed_at = NULL
                    WHERE run_id = ?
                    """,
                    (RunStatus.IN_PROGRESS.value, start_block_id, run_id),
                )
                if cursor.rowcount == 0:
                    conn.rollback()
                    raise PersistenceWriteError(f"Run not found: {run_id}")
                conn.commit()
            except sqlite3.Error as e:
                conn.rollback()
                raise PersistenceWriteError(f"Restart failed for run {run_id}: {e}") from e

        run = self.get_run(run_id)
        if run is None:
            raise PersistenceWriteError(f"Run not found: {run_id}")
        return run

    # -------------------------------------------------------------------------
    # Block states
    # -------------------------------------------------------------------------

    def get_block_state(self, run_id: str, block_id: str) -> BlockState | None:
        conn = self._get_conn()
        row = conn.execute(
            "SELECT * FROM block_states WHERE run_id = ? AND block_id = ?",
            (run_id, block_id),
        ).fetchone()
        return self._row_to_block_state(row) if row else None

    def list_block_states(self, run_id: str) -> list[BlockState]:
        """All block states of a run, in the order they were first created."""
        conn = self._get_conn()
        cursor = conn.execute(
            "SELECT * FROM block_states WHERE run_id = ? ORDER BY rowid", (run_id,)
        )
        return [self._row_to_block_state(row) for row in cursor.fetchall()]

    def create_block_state(self, state: BlockState) -> BlockState:
        """Insert a block state unless one exists for (run_id, block_id); return the winner."""
        self._write(
            """
            INSERT INTO block_states (
                state_id, run_id, block_id, status, attempts_count,
                output_json, score, weak_topics_json, time_spent_seconds,
                started_at, completed_at, last_entered_at
            ) VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
            ON CONFLICT DO NOTHING
            """,
            (
                state.id,
                state.run_id,
                state.block_id,
                state.status.value,
                state.attempts_count,
                json.dumps(state.output_payload),
                state.score,
                json.dumps(state.weak_topics),
                state.time_spent_seconds,
                _to_db(state.started_at),
                _to_db(state.completed_at),
                _to_db(state.last_entered_at),
            ),
        )
        stored = self.get_block_state(state.run_id, state.block_id)
        if stored is None:
            raise PersistenceWriteError(
                f"Block state was not stored: {state.run_id}/{state.block_id}"
            )
        return stored

    def update_block_state(self, state_id: str, **patch: Any) -> BlockState:
        """Apply a partial update to a block state and return the stored result."""
        unknown = set(patch) - _BLOCK_STATE_COLUMNS
        if unknown:
            raise ValueError(f"Unknown block state fields: {sorted(unknown)}")

        if patch:
            assignments = []
            params: list = []
            for name, value in patch.items():
                if name in _JSON_COLUMNS:
                    assignments.append(f"{_JSON_COLUMNS[name]} = ?")
                    params.append(json.dumps(value))
                else:
                    assignments.append(f"{name} = ?")
                    params.append(_to_db(value))
            params.append(state_id)
            cursor = self._write(
                f"UPDATE block_states SET {', '.join(assignments)} WHERE state_id = ?",
                params,
            )
            if cursor.rowcount == 0:
                raise PersistenceWriteError(f"Block state not found: {state_id}")

        row = self._get_conn().execute(
            "SELECT * FROM block_states WHERE state_id = ?", (state_id,)
        ).fetchone()
        if row is None:
            raise PersistenceWriteError(f"Block state not found: {state_id}")
        return self._row_to_block_state(row)

    def delete_block_states(self, run_id: str) -> int:
        """Delete every block state of a run; returns how many were removed."""
        cursor = self._write("DELETE FROM block_states WHERE run_id = ?", (run_id,))
        return cursor.rowcount

    def list_orphan_block_states(self) -> list[BlockState]:
        """Block states whose run no longer exists."""
        conn = self._get_conn()
        cursor = conn.execute(
            """
            SELECT b.* FROM block_states b
            LEFT JOIN runs r ON r.run_id = b.run_id
            WHERE r.run_id IS NULL
            """
        )
        return [self._row_to_block_state(row) for row in cursor.fetchall()]

    # -------------------------------------------------------------------------
    # Housekeeping
    # -------------------------------------------------------------------------

    def close(self) -> None:
        """Close the thread-local database connection."""
        if hasattr(self._local, "conn") and self._local.conn:
            self._local.conn.close()
            self._local.conn = None

    def _row_to_journey(self, row: sqlite3.Row) -> JourneyRecord:
        return JourneyRecord(
            journey_id=row["journey_id"],
            module_id=row["module_id"],
            version=row["version"],
            status=JourneyStatus(row["status"]),
            graph=JourneyGraph.model_validate(json.loads(row["graph_json"])),
        )

    def _row_to_run(self, row: sqlite3.Row) -> Run:
        return Run(
            id=row["run_id"],
            user_id=row["user_id"],
            journey_id=row["journey_id"],
            current_block_id=row["current_block_id"],
            status=RunStatus(row["status"]),
            started_at=_from_db_ts(row["started_at"]),
            completed_at=_from_db_ts(row["completed_at"]),
        )

    def _row_to_block_state(self, row: sqlite3.Row) -> BlockState:
        return BlockState(
            id=row["state_id"],
            run_id=row["run_id"],
            block_id=row["block_id"],
            status=BlockStatus(row["status"]),
            attempts_count=row["attempts_count"],
            output_payload=json.loads(row["output_json"]),
            score=row["score"],
            weak_topics=json.loads(row["weak_topics_json"]),
            time_spent_seconds=row["time_spent_seconds"],
            started_at=_from_db_ts(row["started_at"]),
            completed_at=_from_db_ts(row["completed_at"]),
            last_entered_at=_from_db_ts(row["last_entered_at"]),
        )

    def __enter__(self) -> "JourneyStore":
        return self

    def __exit__(self, exc_type, exc_val, exc_tb) -> None:
        self.close()
