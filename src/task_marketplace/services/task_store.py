"""SQLite-backed task storage."""

from __future__ import annotations

import contextlib
import json
import sqlite3
from pathlib import Path
from threading import RLock
from typing import TYPE_CHECKING, Any

if TYPE_CHECKING:
    from collections.abc import Iterator


def _casefold(value: str | None) -> str | None:
    """SQL `casefold()`: Unicode case folding, unlike SQLite's ASCII-only lower()."""
    return value.casefold() if value is not None else None


class DuplicateTaskError(Exception):
    """Raised when attempting to insert a task with a duplicate task_id."""


class DuplicateProposalError(Exception):
    """Raised when a worker already has a proposal on the task."""


class TaskStore:
    """
    SQLite-backed storage for tasks and their proposals.

    A task and its proposals form one aggregate. Writes that touch more than
    one row of the aggregate run inside a single ``BEGIN IMMEDIATE``
    transaction, and status changes are compare-and-swap on the current
    status so that concurrent callers cannot both win.
    """

    _TASK_COLUMNS: tuple[str, ...] = (
        "task_id",
        "client_id",
        "title",
        "description",
        "category",
        "location",
        "budget",
        "deadline",
        "skills",
        "is_urgent",
        "status",
        "worker_id",
        "rating",
        "created_at",
        "updated_at",
        "assigned_at",
        "started_at",
        "completed_at",
        "cancelled_at",
        "rated_at",
    )
    _TASK_COLUMNS_SQL = ", ".join(_TASK_COLUMNS)
    _TASK_INSERT_SQL = (
        "INSERT INTO tasks ("
        + _TASK_COLUMNS_SQL
        + ") VALUES ("
        + ", ".join("?" for _ in _TASK_COLUMNS)
        + ")"
    )
    _TASK_SELECT_BASE_SQL = "SELECT " + _TASK_COLUMNS_SQL + " FROM tasks"  # nosec B608

    _PROPOSAL_COLUMNS: tuple[str, ...] = (
        "proposal_id",
        "task_id",
        "worker_id",
        "cover_letter",
        "proposed_budget",
        "estimated_time",
        "milestones",
        "status",
        "submitted_at",
        "updated_at",
    )
    _PROPOSAL_COLUMNS_SQL = ", ".join(_PROPOSAL_COLUMNS)
    _PROPOSAL_SELECT_BASE_SQL = (
        "SELECT " + _PROPOSAL_COLUMNS_SQL + " FROM proposals"  # nosec B608
    )

    # Sortable columns exposed to the listing API
    SORT_COLUMNS = frozenset({"created_at", "budget", "deadline", "title"})

    def __init__(self, db_path: str) -> None:
        self._lock = RLock()
        Path(db_path).parent.mkdir(parents=True, exist_ok=True)
        self._db = sqlite3.connect(db_path, check_same_thread=False, isolation_level=None)
        self._db.row_factory = sqlite3.Row
        self._db.create_function("casefold", 1, _casefold, deterministic=True)
        self._db.execute("PRAGMA journal_mode=WAL")
        self._db.execute("PRAGMA foreign_keys=ON")
        self._db.execute("PRAGMA busy_timeout=5000")
        self._init_schema()

    def _init_schema(self) -> None:
        with self._lock:
            self._db.executescript(
                """
                CREATE TABLE IF NOT EXISTS tasks (
                    task_id TEXT PRIMARY KEY,
                    client_id TEXT NOT NULL,
                    title TEXT NOT NULL,
                    description TEXT NOT NULL,
                    category TEXT NOT NULL,
                    location TEXT NOT NULL,
                    budget REAL NOT NULL,
                    deadline TEXT NOT NULL,
                    skills TEXT NOT NULL,
                    is_urgent INTEGER NOT NULL DEFAULT 0,
                    status TEXT NOT NULL DEFAULT 'open',
                    worker_id TEXT,
                    rating INTEGER,
                    created_at TEXT NOT NULL,
                    updated_at TEXT NOT NULL,
                    assigned_at TEXT,
                    started_at TEXT,
                    completed_at TEXT,
                    cancelled_at TEXT,
                    rated_at TEXT
                );

                CREATE INDEX IF NOT EXISTS idx_tasks_status ON tasks(status);
                CREATE INDEX IF NOT EXISTS idx_tasks_worker ON tasks(worker_id);

                CREATE TABLE IF NOT EXISTS proposals (
                    proposal_id TEXT PRIMARY KEY,
                    task_id TEXT NOT NULL REFERENCES tasks(task_id) ON DELETE CASCADE,
                    worker_id TEXT NOT NULL,
                    cover_letter TEXT NOT NULL,
                    proposed_budget REAL NOT NULL,
                    estimated_time TEXT NOT NULL,
                    milestones TEXT NOT NULL,
                    status TEXT NOT NULL DEFAULT 'pending',
                    submitted_at TEXT NOT NULL,
                    updated_at TEXT NOT NULL,
                    UNIQUE(task_id, worker_id)
                );
                """
            )

    @contextlib.contextmanager
    def _transaction(self) -> Iterator[sqlite3.Connection]:
        """Run the enclosed statements as one write transaction."""
        with self._lock:
            self._db.execute("BEGIN IMMEDIATE")
            try:
                yield self._db
            except BaseException:
                with contextlib.suppress(sqlite3.Error):
                    self._db.execute("ROLLBACK")
                raise
            self._db.execute("COMMIT")

    # ------------------------------------------------------------------
    # Row conversion
    # ------------------------------------------------------------------

    def _row_to_task(self, row: sqlite3.Row) -> dict[str, Any]:
        task = {column: row[column] for column in self._TASK_COLUMNS}
        task["skills"] = json.loads(task["skills"])
        task["is_urgent"] = bool(task["is_urgent"])
        return task

    def _row_to_proposal(self, row: sqlite3.Row) -> dict[str, Any]:
        proposal = {column: row[column] for column in self._PROPOSAL_COLUMNS}
        proposal["milestones"] = json.loads(proposal["milestones"])
        return proposal

    @staticmethod
    def _encode_task_values(values: dict[str, Any]) -> dict[str, Any]:
        encoded = dict(values)
        if "skills" in encoded:
            encoded["skills"] = json.dumps(encoded["skills"])
        if "is_urgent" in encoded:
            encoded["is_urgent"] = int(bool(encoded["is_urgent"]))
        return encoded

    # ------------------------------------------------------------------
    # Tasks
    # ------------------------------------------------------------------

    def insert_task(self, task_data: dict[str, Any]) -> None:
        """Insert a new task row."""
        encoded = self._encode_task_values(task_data)
        values = tuple(encoded[column] for column in self._TASK_COLUMNS)

        try:
            with self._transaction() as db:
                db.execute(self._TASK_INSERT_SQL, values)
        except sqlite3.IntegrityError as exc:
            if "unique" in str(exc).lower():
                raise DuplicateTaskError(
                    f"A task with task_id={task_data['task_id']} already exists"
                ) from exc
            raise

    def get_task(self, task_id: str) -> dict[str, Any] | None:
        """Fetch a task by ID."""
        with self._lock:
            cursor = self._db.execute(
                self._TASK_SELECT_BASE_SQL + " WHERE task_id = ?",
                (task_id,),
            )
            row = cursor.fetchone()
        if row is None:
            return None
        return self._row_to_task(row)

    def update_task(
        self,
        task_id: str,
        updates: dict[str, Any],
        *,
        expected_status: str | None,
    ) -> int:
        """Update task columns and return the number of affected rows."""
        if len(updates) == 0:
            return 0

        if any(column not in self._TASK_COLUMNS for column in updates):
            msg = "Attempted to update unknown task column"
            raise ValueError(msg)

        encoded = self._encode_task_values(updates)
        set_clause = ", ".join(f"{column} = ?" for column in encoded)
        params: list[object] = list(encoded.values())

        query = "UPDATE tasks SET " + set_clause + " WHERE task_id = ?"  # nosec B608
        params.append(task_id)
        if expected_status is not None:
            query += " AND status = ?"
            params.append(expected_status)

        with self._transaction() as db:
            cursor = db.execute(query, params)
        return int(cursor.rowcount)

    def set_rating(self, task_id: str, rating: int, rated_at: str) -> int:
        """Set the rating of a completed, unrated task. Returns affected rows."""
        with self._transaction() as db:
            cursor = db.execute(
                "UPDATE tasks SET rating = ?, rated_at = ?, updated_at = ? "
                "WHERE task_id = ? AND status = 'completed' AND rating IS NULL",
                (rating, rated_at, rated_at, task_id),
            )
        return int(cursor.rowcount)

    def delete_task(self, task_id: str, *, expected_status: str | None) -> int:
        """Delete a task; its proposals go with it (ON DELETE CASCADE)."""
        query = "DELETE FROM tasks WHERE task_id = ?"
        params: list[object] = [task_id]
        if expected_status is not None:
            query += " AND status = ?"
            params.append(expected_status)

        with self._transaction() as db:
            cursor = db.execute(query, params)
        return int(cursor.rowcount)

    @staticmethod
    def _build_filters(filters: dict[str, Any]) -> tuple[str, list[object]]:
        clauses: list[str] = []
        params: list[object] = []

        for column in ("status", "category", "location", "client_id", "worker_id"):
            value = filters.get(column)
            if value is not None:
                clauses.append(f"{column} = ?")
                params.append(value)

        if filters.get("min_budget") is not None:
            clauses.append("budget >= ?")
            params.append(filters["min_budget"])
        if filters.get("max_budget") is not None:
            clauses.append("budget <= ?")
            params.append(filters["max_budget"])
        if filters.get("is_urgent") is not None:
            clauses.append("is_urgent = ?")
            params.append(int(bool(filters["is_urgent"])))

        skills = filters.get("skills")
        if skills:
            placeholders = ", ".join("?" for _ in skills)
            clauses.append(
                "EXISTS (SELECT 1 FROM json_each(tasks.skills) "
                f"WHERE json_each.value IN ({placeholders}))"
            )
            params.extend(skills)

        search = filters.get("search")
        if search:
            clauses.append(
                "(instr(casefold(title), ?) > 0 OR instr(casefold(description), ?) > 0)"
            )
            needle = search.casefold()
            params.extend([needle, needle])

        if len(clauses) == 0:
            return "", params
        return " WHERE " + " AND ".join(clauses), params

    def list_tasks(
        self,
        filters: dict[str, Any],
        sort_by: str,
        sort_order: str,
        limit: int | None,
        offset: int | None,
    ) -> list[dict[str, Any]]:
        """List tasks matching all filters (AND logic)."""
        if sort_by not in self.SORT_COLUMNS:
            msg = f"Unsupported sort column: {sort_by}"
            raise ValueError(msg)
        direction = "ASC" if sort_order == "asc" else "DESC"

        where, params = self._build_filters(filters)
        query = (
            self._TASK_SELECT_BASE_SQL
            + where
            + f" ORDER BY {sort_by} {direction}, created_at {direction}, task_id {direction}"
        )

        if limit is not None:
            query += " LIMIT ?"
            params.append(limit)
            if offset is not None:
                query += " OFFSET ?"
                params.append(offset)

        with self._lock:
            rows = self._db.execute(query, params).fetchall()
        return [self._row_to_task(row) for row in rows]

    def count_matching_tasks(self, filters: dict[str, Any]) -> int:
        """Count tasks matching all filters."""
        where, params = self._build_filters(filters)
        with self._lock:
            row = self._db.execute("SELECT COUNT(*) FROM tasks" + where, params).fetchone()
        return int(row[0]) if row is not None else 0

    def count_tasks(self) -> int:
        """Count total tasks."""
        with self._lock:
            row = self._db.execute("SELECT COUNT(*) FROM tasks").fetchone()
        return int(row[0]) if row is not None else 0

    def count_tasks_by_status(self) -> dict[str, int]:
        """Count tasks grouped by status."""
        with self._lock:
            rows = self._db.execute("SELECT status, COUNT(*) FROM tasks GROUP BY status").fetchall()
        return {str(row[0]): int(row[1]) for row in rows}

    def get_worker_ratings(self, worker_id: str) -> list[int]:
        """Ratings of every completed, rated task assigned to a worker."""
        with self._lock:
            rows = self._db.execute(
                "SELECT rating FROM tasks "
                "WHERE worker_id = ? AND status = 'completed' AND rating IS NOT NULL",
                (worker_id,),
            ).fetchall()
        return [int(row[0]) for row in rows]

    # ------------------------------------------------------------------
    # Proposals
    # ------------------------------------------------------------------

    def insert_proposal(self, proposal_data: dict[str, Any]) -> None:
        """Append a proposal to a task and bump the task's updated_at."""
        encoded = dict(proposal_data)
        encoded["milestones"] = json.dumps(encoded["milestones"])
        values = tuple(encoded[column] for column in self._PROPOSAL_COLUMNS)

        try:
            with self._transaction() as db:
                db.execute(
                    "INSERT INTO proposals ("
                    + self._PROPOSAL_COLUMNS_SQL
                    + ") VALUES ("
                    + ", ".join("?" for _ in self._PROPOSAL_COLUMNS)
                    + ")",
                    values,
                )
                db.execute(
                    "UPDATE tasks SET updated_at = ? WHERE task_id = ?",
                    (proposal_data["submitted_at"], proposal_data["task_id"]),
                )
        except sqlite3.IntegrityError as exc:
            if "unique" in str(exc).lower():
                raise DuplicateProposalError(
                    "This worker already submitted a proposal for this task"
                ) from exc
            raise

    def get_proposal(self, task_id: str, proposal_id: str) -> dict[str, Any] | None:
        """Fetch a proposal by ID within a task."""
        with self._lock:
            row = self._db.execute(
                self._PROPOSAL_SELECT_BASE_SQL + " WHERE proposal_id = ? AND task_id = ?",
                (proposal_id, task_id),
            ).fetchone()
        if row is None:
            return None
        return self._row_to_proposal(row)

    def get_proposal_by_worker(self, task_id: str, worker_id: str) -> dict[str, Any] | None:
        """Fetch the proposal a worker submitted on a task."""
        with self._lock:
            row = self._db.execute(
                self._PROPOSAL_SELECT_BASE_SQL + " WHERE task_id = ? AND worker_id = ?",
                (task_id, worker_id),
            ).fetchone()
        if row is None:
            return None
        return self._row_to_proposal(row)

    def get_proposals_for_task(self, task_id: str) -> list[dict[str, Any]]:
        """Fetch all proposals for a task in submission order."""
        with self._lock:
            rows = self._db.execute(
                self._PROPOSAL_SELECT_BASE_SQL
                + " WHERE task_id = ? ORDER BY submitted_at, rowid",
                (task_id,),
            ).fetchall()
        return [self._row_to_proposal(row) for row in rows]

    def update_proposal_status(
        self,
        task_id: str,
        proposal_id: str,
        status: str,
        updated_at: str,
        *,
        expected_status: str | None,
    ) -> int:
        """Change one proposal's status. Returns affected rows."""
        query = (
            "UPDATE proposals SET status = ?, updated_at = ? "
            "WHERE proposal_id = ? AND task_id = ?"
        )
        params: list[object] = [status, updated_at, proposal_id, task_id]
        if expected_status is not None:
            query += " AND status = ?"
            params.append(expected_status)

        with self._transaction() as db:
            cursor = db.execute(query, params)
            if cursor.rowcount > 0:
                db.execute(
                    "UPDATE tasks SET updated_at = ? WHERE task_id = ?",
                    (updated_at, task_id),
                )
        return int(cursor.rowcount)

    def delete_proposal(self, task_id: str, proposal_id: str, *, task_status: str) -> int:
        """Remove a proposal while the task is still in ``task_status``."""
        with self._transaction() as db:
            cursor = db.execute(
                "DELETE FROM proposals WHERE proposal_id = ? AND task_id = ? "
                "AND EXISTS (SELECT 1 FROM tasks WHERE task_id = ? AND status = ?)",
                (proposal_id, task_id, task_id, task_status),
            )
        return int(cursor.rowcount)

    def accept_proposal(
        self,
        task_id: str,
        proposal_id: str,
        worker_id: str,
        accepted_at: str,
    ) -> bool:
        """
        Assign the task to the proposal's worker in one transaction.

        The task must still be open and the proposal still pending. The
        accepted proposal flips to ``accepted`` and every other pending
        proposal on the task to ``rejected``. Returns False, with nothing
        written, when either precondition no longer holds.
        """
        with self._lock:
            self._db.execute("BEGIN IMMEDIATE")
            try:
                task_cursor = self._db.execute(
                    "UPDATE tasks SET status = 'assigned', worker_id = ?, assigned_at = ?, "
                    "updated_at = ? WHERE task_id = ? AND status = 'open'",
                    (worker_id, accepted_at, accepted_at, task_id),
                )
                proposal_cursor = self._db.execute(
                    "UPDATE proposals SET status = 'accepted', updated_at = ? "
                    "WHERE proposal_id = ? AND task_id = ? AND worker_id = ? "
                    "AND status = 'pending'",
                    (accepted_at, proposal_id, task_id, worker_id),
                )
                if task_cursor.rowcount != 1 or proposal_cursor.rowcount != 1:
                    self._db.execute("ROLLBACK")
                    return False
                self._db.execute(
                    "UPDATE proposals SET status = 'rejected', updated_at = ? "
                    "WHERE task_id = ? AND proposal_id != ? AND status = 'pending'",
                    (accepted_at, task_id, proposal_id),
                )
                self._db.execute("COMMIT")
            except BaseException:
                with contextlib.suppress(sqlite3.Error):
                    self._db.execute("ROLLBACK")
                raise
        return True

    def close(self) -> None:
        """Close the database connection."""
        with self._lock:
            self._db.close()
