"""
SQLite Job Repository.
Mirrors the queue engine's view of each job so status and per-state
counts can be answered without scanning the broker.
"""
import json
import logging
from datetime import datetime
from dataclasses import dataclass
from typing import Any, Dict, Iterable, List, Optional

from .database import Database

logger = logging.getLogger(__name__)


@dataclass
class JobRecord:
    """Job mirror record."""
    job_id: str
    queue: str
    priority: int
    state: str
    data: Dict[str, Any]
    output: Optional[Any]
    created_on: datetime
    started_on: Optional[datetime] = None
    completed_on: Optional[datetime] = None
    failed_on: Optional[datetime] = None
    retry_count: int = 0


def _parse_dt(value: Optional[str]) -> Optional[datetime]:
    return datetime.fromisoformat(value) if value else None


class SQLiteJobRepository:
    """SQLite-backed job mirror."""

    def __init__(self, db: Database):
        self._db = db

    def track_job(
        self,
        job_id: str,
        queue: str,
        priority: int,
        state: str,
        data: Dict[str, Any],
    ) -> None:
        """Record a newly sent job."""
        now = datetime.utcnow().isoformat()

        with self._db.transaction() as conn:
            conn.execute(
                """
                INSERT OR REPLACE INTO jobs
                    (job_id, queue, priority, state, data, created_on)
                VALUES (?, ?, ?, ?, ?, ?)
                """,
                (job_id, queue, priority, state, json.dumps(data, default=str), now)
            )

        logger.debug(f"Tracked job: job_id={job_id}, queue={queue}, priority={priority}")

    def update_state(
        self,
        job_id: str,
        state: str,
        output: Optional[Any] = None,
        timestamp_column: Optional[str] = None,
    ) -> bool:
        """
        Update job state, optionally storing output and stamping one of
        started_on / completed_on / failed_on.
        """
        if timestamp_column not in (None, "started_on", "completed_on", "failed_on"):
            raise ValueError(f"Invalid timestamp column: {timestamp_column}")

        now = datetime.utcnow().isoformat()
        assignments = ["state = ?"]
        params: list = [state]

        if output is not None:
            assignments.append("output = ?")
            params.append(json.dumps(output, default=str))

        if timestamp_column:
            assignments.append(f"{timestamp_column} = ?")
            params.append(now)

        params.append(job_id)

        with self._db.transaction() as conn:
            cursor = conn.execute(
                f"UPDATE jobs SET {', '.join(assignments)} WHERE job_id = ?",
                tuple(params)
            )

        return cursor.rowcount > 0

    def record_retry(self, job_id: str, state: str) -> bool:
        """Set the retry state and count the attempt."""
        with self._db.transaction() as conn:
            cursor = conn.execute(
                "UPDATE jobs SET state = ?, retry_count = retry_count + 1 WHERE job_id = ?",
                (state, job_id)
            )
        return cursor.rowcount > 0

    def list_jobs(
        self,
        queue: str,
        states: Iterable[str],
        limit: Optional[int] = None,
        finished_since: Optional[datetime] = None,
    ) -> List[JobRecord]:
        """
        Jobs of a queue in the given states, most recent activity first.
        finished_since filters on completed_on / failed_on.
        """
        states = list(states)
        if not states:
            return []

        sql = f"""
            SELECT * FROM jobs
            WHERE queue = ? AND state IN ({', '.join('?' for _ in states)})
        """
        params: list = [queue, *states]

        if finished_since is not None:
            sql += " AND COALESCE(completed_on, failed_on) >= ?"
            params.append(finished_since.isoformat())

        sql += " ORDER BY COALESCE(completed_on, failed_on, started_on, created_on) DESC"
        if limit is not None:
            sql += " LIMIT ?"
            params.append(limit)

        rows = self._db.query(sql, tuple(params))
        return [self._row_to_record(row) for row in rows]

    def delete_finished(self, queue: str, states: Iterable[str], finished_before: datetime) -> int:
        """Delete jobs in the given states that finished before the cutoff."""
        states = list(states)
        if not states:
            return 0

        with self._db.transaction() as conn:
            cursor = conn.execute(
                f"""
                DELETE FROM jobs
                WHERE queue = ?
                AND state IN ({', '.join('?' for _ in states)})
                AND COALESCE(completed_on, failed_on) < ?
                """,
                (queue, *states, finished_before.isoformat())
            )

        logger.info(f"Deleted {cursor.rowcount} finished job(s) from {queue}")
        return cursor.rowcount

    def get_job(self, job_id: str) -> Optional[JobRecord]:
        """Get full job record."""
        rows = self._db.query("SELECT * FROM jobs WHERE job_id = ?", (job_id,))
        if not rows:
            return None
        return self._row_to_record(rows[0])

    def count_by_state(self, queue: str) -> Dict[str, int]:
        """Count jobs per state for a queue."""
        rows = self._db.query(
            """
            SELECT state, COUNT(*) AS cnt
            FROM jobs
            WHERE queue = ?
            GROUP BY state
            """,
            (queue,)
        )
        return {row["state"]: row["cnt"] for row in rows}

    def delete_job(self, job_id: str) -> bool:
        """Delete job record."""
        with self._db.transaction() as conn:
            cursor = conn.execute("DELETE FROM jobs WHERE job_id = ?", (job_id,))
        return cursor.rowcount > 0

    def _row_to_record(self, row) -> JobRecord:
        """Convert database row to JobRecord."""
        return JobRecord(
            job_id=row["job_id"],
            queue=row["queue"],
            priority=row["priority"],
            state=row["state"],
            data=json.loads(row["data"]) if row["data"] else {},
            output=json.loads(row["output"]) if row["output"] else None,
            created_on=datetime.fromisoformat(row["created_on"]),
            started_on=_parse_dt(row["started_on"]),
            completed_on=_parse_dt(row["completed_on"]),
            failed_on=_parse_dt(row["failed_on"]),
            retry_count=row["retry_count"] or 0,
        )
