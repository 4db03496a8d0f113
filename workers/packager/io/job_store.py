"""Job record persistence.

The engine only ever calls ``update_status`` after each stage and
``get_job`` when reconciling remote runs.  Writes are last-value-wins:
no version or progress-ordering check is made at this boundary.
"""

import json
import logging
import threading
from contextlib import contextmanager
from datetime import datetime, timezone
from typing import Any, Optional, Protocol

import psycopg2
import psycopg2.extras

from packager.io.schema import BuildConfig, BuildJob, JobStatus, Platform

logger = logging.getLogger(__name__)

# Columns ``update_status`` may touch besides status/progress.
EXTRA_FIELDS = frozenset({
    "output_file_path",
    "download_url",
    "file_size",
    "error_message",
    "github_run_id",
})


class JobStore(Protocol):
    def update_status(
        self,
        job_id: str,
        status: JobStatus,
        progress: int,
        **extra: Any,
    ) -> None: ...

    def get_job(self, job_id: str) -> Optional[BuildJob]: ...


def _check_extra(extra: dict) -> None:
    unknown = set(extra) - EXTRA_FIELDS
    if unknown:
        raise ValueError(f"Unknown job fields: {sorted(unknown)}")


class InMemoryJobStore:
    """Thread-safe dict-backed job store.

    Also records every write in ``history`` so callers can inspect the
    sequence of transitions a job went through.
    """

    def __init__(self):
        self._jobs: dict[str, BuildJob] = {}
        self._lock = threading.Lock()
        self.history: list[tuple[str, JobStatus, int]] = []

    def create_job(self, job_id: str, platform: Platform, config: BuildConfig) -> BuildJob:
        job = BuildJob(id=job_id, platform=platform, config=config)
        with self._lock:
            self._jobs[job_id] = job
        return job

    def update_status(self, job_id: str, status: JobStatus, progress: int, **extra: Any) -> None:
        _check_extra(extra)
        with self._lock:
            job = self._jobs.get(job_id)
            if job is None:
                raise KeyError(f"Job not found: {job_id}")
            self._jobs[job_id] = job.model_copy(update={
                "status": status,
                "progress": progress,
                "updated_at": datetime.now(timezone.utc),
                **extra,
            })
            self.history.append((job_id, status, progress))

    def get_job(self, job_id: str) -> Optional[BuildJob]:
        with self._lock:
            return self._jobs.get(job_id)


class PostgresJobStore:
    """PostgreSQL-backed job store (``builds`` table)."""

    def __init__(self, dsn: str, schema: str = "public"):
        """Initialize job store.

        Args:
            dsn: libpq connection string
            schema: Schema holding the ``builds`` table
        """
        self.dsn = dsn
        self.schema = schema
        self._conn = None
        # calls arrive from asyncio.to_thread workers; one statement at a time
        self._lock = threading.RLock()

    def _get_connection(self) -> "psycopg2.extensions.connection":
        """Get the shared database connection, reconnecting if it was closed."""
        with self._lock:
            if self._conn is None or self._conn.closed:
                self._conn = psycopg2.connect(self.dsn)
            return self._conn

    @contextmanager
    def _cursor(self):
        """Context manager for database cursor with auto-commit."""
        with self._lock:
            conn = self._get_connection()
            cursor = conn.cursor(cursor_factory=psycopg2.extras.RealDictCursor)
            try:
                yield cursor
                conn.commit()
            except Exception:
                conn.rollback()
                raise
            finally:
                cursor.close()

    def init_schema(self) -> None:
        """Create the ``builds`` table if it does not exist."""
        with self._cursor() as cursor:
            cursor.execute(f"""
                CREATE TABLE IF NOT EXISTS {self.schema}.builds (
                    id TEXT PRIMARY KEY,
                    platform TEXT NOT NULL,
                    status TEXT NOT NULL DEFAULT 'pending',
                    progress INTEGER NOT NULL DEFAULT 0,
                    config JSONB NOT NULL,
                    output_file_path TEXT,
                    download_url TEXT,
                    file_size BIGINT,
                    error_message TEXT,
                    github_run_id BIGINT,
                    updated_at TIMESTAMPTZ NOT NULL DEFAULT NOW()
                )
            """)

    def create_job(self, job_id: str, platform: Platform, config: BuildConfig) -> BuildJob:
        with self._cursor() as cursor:
            cursor.execute(
                f"""
                INSERT INTO {self.schema}.builds (id, platform, status, progress, config)
                VALUES (%s, %s, %s, 0, %s::jsonb)
                """,
                (job_id, platform.value, JobStatus.PENDING.value, config.model_dump_json()),
            )
        return BuildJob(id=job_id, platform=platform, config=config)

    def update_status(self, job_id: str, status: JobStatus, progress: int, **extra: Any) -> None:
        """Single UPDATE of status, progress and any extra columns."""
        _check_extra(extra)
        columns = ["status = %s", "progress = %s", "updated_at = NOW()"]
        values: list[Any] = [status.value, progress]
        for name in sorted(extra):
            columns.append(f"{name} = %s")
            values.append(extra[name])
        values.append(job_id)

        with self._cursor() as cursor:
            cursor.execute(
                f"UPDATE {self.schema}.builds SET {', '.join(columns)} WHERE id = %s",
                values,
            )
            if cursor.rowcount == 0:
                logger.warning("update_status: no build row for %s", job_id)

    def get_job(self, job_id: str) -> Optional[BuildJob]:
        with self._cursor() as cursor:
            cursor.execute(f"SELECT * FROM {self.schema}.builds WHERE id = %s", (job_id,))
            row = cursor.fetchone()
        if row is None:
            return None
        return self._row_to_job(row)

    def _row_to_job(self, row: dict) -> BuildJob:
        config = row["config"]
        if isinstance(config, str):
            config = json.loads(config)
        return BuildJob(
            id=row["id"],
            platform=Platform(row["platform"]),
            status=JobStatus(row["status"]),
            progress=row["progress"],
            config=BuildConfig.model_validate(config),
            output_file_path=row["output_file_path"],
            download_url=row["download_url"],
            file_size=row["file_size"],
            error_message=row["error_message"],
            github_run_id=row["github_run_id"],
            updated_at=row["updated_at"],
        )

    def close(self) -> None:
        with self._lock:
            if self._conn is not None and not self._conn.closed:
                self._conn.close()
            self._conn = None
