"""
Repository pattern for data access.

Handles the append-only provenance ledger and the aggregate queries built on
top of it.
"""

import sqlite3
from datetime import datetime
from typing import Dict, List, Optional

from .db import DEFAULT_DB_PATH, get_connection
from .models import ErrorEntry, ModelStats, RequestProvenance, WindowAggregate

_COLUMNS = (
    "request_id, model_id, task_type, prompt_hash, output_hash, input_tokens, "
    "output_tokens, latency_ms, quality_score, error, created_at"
)


class DuplicateRequestError(Exception):
    """Raised when a request id is already present in the ledger."""

    def __init__(self, request_id: str):
        super().__init__(f"Request id already recorded: {request_id}")
        self.request_id = request_id


def _timestamp(value: datetime) -> str:
    # fixed width keeps lexical and chronological order identical
    return value.isoformat(timespec="microseconds")


def initialize_schema(db_path: str = DEFAULT_DB_PATH) -> None:
    """Create the llm_provenance table and its indexes if they don't exist.

    The table is an append-only ledger. request_id is UNIQUE so a request can
    never be written (or counted) twice. No DELETE is ever issued; the only
    UPDATE is the one-time quality score backfill.

    Args:
        db_path: Path to SQLite database file
    """
    conn = get_connection(db_path)
    try:
        conn.executescript("""
            CREATE TABLE IF NOT EXISTS llm_provenance (
                id INTEGER PRIMARY KEY AUTOINCREMENT,
                request_id TEXT NOT NULL UNIQUE,
                model_id TEXT NOT NULL,
                task_type TEXT NOT NULL,
                prompt_hash TEXT NOT NULL,
                output_hash TEXT NOT NULL,
                input_tokens INTEGER NOT NULL DEFAULT 0,
                output_tokens INTEGER NOT NULL DEFAULT 0,
                latency_ms INTEGER NOT NULL DEFAULT 0,
                quality_score REAL,
                error TEXT,
                created_at TEXT NOT NULL
            );

            CREATE INDEX IF NOT EXISTS idx_provenance_model ON llm_provenance(model_id);
            CREATE INDEX IF NOT EXISTS idx_provenance_task ON llm_provenance(task_type);
            CREATE INDEX IF NOT EXISTS idx_provenance_created ON llm_provenance(created_at);
        """)
        conn.commit()
    finally:
        conn.close()


def insert_provenance(record: RequestProvenance, db_path: str = DEFAULT_DB_PATH) -> None:
    """Append a single provenance record to the ledger.

    Args:
        record: The record to store
        db_path: Path to SQLite database file

    Raises:
        DuplicateRequestError: If the request id was already written
    """
    conn = get_connection(db_path)
    try:
        conn.execute(f"""
            INSERT INTO llm_provenance ({_COLUMNS})
            VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
        """, (
            record.request_id,
            record.model_id,
            record.task_type,
            record.prompt_hash,
            record.output_hash,
            record.input_tokens,
            record.output_tokens,
            record.latency_ms,
            record.quality_score,
            record.error,
            _timestamp(record.created_at),
        ))
        conn.commit()
    except sqlite3.IntegrityError as e:
        conn.rollback()
        if "unique" in str(e).lower():
            raise DuplicateRequestError(record.request_id) from e
        raise
    finally:
        conn.close()


def _row_to_record(row) -> RequestProvenance:
    return RequestProvenance(
        request_id=row[0],
        model_id=row[1],
        task_type=row[2],
        prompt_hash=row[3],
        output_hash=row[4],
        input_tokens=row[5],
        output_tokens=row[6],
        latency_ms=row[7],
        quality_score=row[8],
        error=row[9],
        created_at=datetime.fromisoformat(row[10]),
    )


class ProvenanceRepository:
    """Repository for reading and appending provenance records.

    Every method opens its own connection, so a repository instance can be
    shared freely between threads; reads see whatever has been committed.
    """

    def __init__(self, db_path: str = DEFAULT_DB_PATH):
        """Initialize the repository with a database path.

        Args:
            db_path: Path to SQLite database file
        """
        self.db_path = db_path

    def initialize_schema(self) -> None:
        initialize_schema(self.db_path)

    def insert(self, record: RequestProvenance) -> None:
        insert_provenance(record, self.db_path)

    def backfill_quality_score(self, request_id: str, score: float) -> bool:
        """Set the quality score of a record that has not been scored yet.

        Returns:
            True if a row was patched, False if the id is unknown or the
            record already carries a score
        """
        conn = get_connection(self.db_path)
        try:
            cursor = conn.execute("""
                UPDATE llm_provenance SET quality_score = ?
                WHERE request_id = ? AND quality_score IS NULL
            """, (score, request_id))
            conn.commit()
            return cursor.rowcount == 1
        finally:
            conn.close()

    def get(self, request_id: str) -> Optional[RequestProvenance]:
        conn = get_connection(self.db_path)
        try:
            row = conn.execute(
                f"SELECT {_COLUMNS} FROM llm_provenance WHERE request_id = ?",
                (request_id,),
            ).fetchone()
            return _row_to_record(row) if row else None
        finally:
            conn.close()

    def fetch(
        self,
        model_id: Optional[str] = None,
        task_type: Optional[str] = None,
        since: Optional[datetime] = None,
        limit: int = 100,
    ) -> List[RequestProvenance]:
        """Fetch records with optional filtering.

        Args:
            model_id: Optional filter for a specific model
            task_type: Optional filter for a specific task type
            since: Optional lower bound on created_at (exclusive)
            limit: Maximum number of records to return

        Returns:
            List of records ordered by created_at (newest first)
        """
        conn = get_connection(self.db_path)
        try:
            query = f"SELECT {_COLUMNS} FROM llm_provenance"
            params: list = []
            conditions = []

            if model_id:
                conditions.append("model_id = ?")
                params.append(model_id)
            if task_type:
                conditions.append("task_type = ?")
                params.append(task_type)
            if since is not None:
                conditions.append("created_at > ?")
                params.append(_timestamp(since))

            if conditions:
                query += " WHERE " + " AND ".join(conditions)

            query += " ORDER BY created_at DESC LIMIT ?"
            params.append(limit)

            cursor = conn.execute(query, params)
            return [_row_to_record(row) for row in cursor.fetchall()]
        finally:
            conn.close()

    def model_stats(self, since: datetime, model_id: Optional[str] = None) -> List[ModelStats]:
        """Per-model count, mean latency, mean quality and error rate since a cutoff.

        Returns:
            Stats ordered by request count (busiest first)
        """
        conn = get_connection(self.db_path)
        try:
            query = """
                SELECT
                    model_id,
                    COUNT(*) AS total_requests,
                    AVG(latency_ms) AS avg_latency,
                    AVG(quality_score) AS avg_quality,
                    SUM(CASE WHEN error IS NOT NULL THEN 1 ELSE 0 END) * 1.0 / COUNT(*) AS error_rate,
                    MAX(created_at) AS last_used
                FROM llm_provenance
                WHERE created_at > ?
            """
            params: list = [_timestamp(since)]
            if model_id:
                query += " AND model_id = ?"
                params.append(model_id)
            query += " GROUP BY model_id ORDER BY total_requests DESC, model_id"

            stats = []
            for row in conn.execute(query, params).fetchall():
                stats.append(ModelStats(
                    model_id=row[0],
                    total_requests=row[1],
                    average_latency_ms=int(round(row[2] or 0)),
                    average_quality_score=row[3],
                    error_rate=float(row[4] or 0),
                    last_used=datetime.fromisoformat(row[5]) if row[5] else None,
                ))
            return stats
        finally:
            conn.close()

    def task_distribution(self, since: datetime) -> Dict[str, int]:
        """Number of records per task type since a cutoff."""
        conn = get_connection(self.db_path)
        try:
            cursor = conn.execute("""
                SELECT task_type, COUNT(*) FROM llm_provenance
                WHERE created_at > ?
                GROUP BY task_type
            """, (_timestamp(since),))
            return {row[0]: row[1] for row in cursor.fetchall()}
        finally:
            conn.close()

    def recent_errors(self, limit: int = 10) -> List[ErrorEntry]:
        conn = get_connection(self.db_path)
        try:
            cursor = conn.execute("""
                SELECT request_id, model_id, error, created_at
                FROM llm_provenance
                WHERE error IS NOT NULL
                ORDER BY created_at DESC
                LIMIT ?
            """, (limit,))
            return [
                ErrorEntry(
                    request_id=row[0],
                    model_id=row[1],
                    error=row[2],
                    created_at=datetime.fromisoformat(row[3]),
                )
                for row in cursor.fetchall()
            ]
        finally:
            conn.close()

    def window_aggregate(self, model_id: str, start: datetime, end: datetime) -> WindowAggregate:
        """Aggregate of one model's records with start < created_at <= end."""
        conn = get_connection(self.db_path)
        try:
            row = conn.execute("""
                SELECT
                    COUNT(*),
                    AVG(latency_ms),
                    SUM(CASE WHEN error IS NOT NULL THEN 1 ELSE 0 END)
                FROM llm_provenance
                WHERE model_id = ? AND created_at > ? AND created_at <= ?
            """, (model_id, _timestamp(start), _timestamp(end))).fetchone()
            count = row[0] or 0
            return WindowAggregate(
                sample_count=count,
                average_latency_ms=float(row[1] or 0),
                error_rate=(row[2] or 0) / count if count else 0.0,
            )
        finally:
            conn.close()

    def count(self) -> int:
        conn = get_connection(self.db_path)
        try:
            return conn.execute("SELECT COUNT(*) FROM llm_provenance").fetchone()[0]
        finally:
            conn.close()
