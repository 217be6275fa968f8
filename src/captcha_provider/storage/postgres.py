"""PostgreSQL-backed commitment store with automatic table migration."""

from __future__ import annotations

import json
import threading
import uuid
from datetime import UTC, datetime
from typing import Any

from captcha_provider.errors import TaskNoLongerRunning
from captcha_provider.storage.models import (
    CaptchaSolution,
    CommitmentRecord,
    Dataset,
    PoWCommitmentRecord,
    ScheduledTaskName,
    ScheduledTaskRecord,
    ScheduledTaskStatus,
)


class PostgresCommitmentStore:
    """Persist commitments, datasets and scheduled task history in PostgreSQL."""

    def __init__(self, database_url: str) -> None:
        if not database_url:
            raise ValueError("CAPTCHA_PROVIDER_DATABASE_URL is required")
        self.database_url = database_url
        self._lock = threading.Lock()
        self._psycopg, self._dict_row, self._json_wrapper = self._load_psycopg()

    def migrate(self) -> None:
        with self._lock, self._connect() as conn:
            conn.execute("""
                CREATE TABLE IF NOT EXISTS user_commitments (
                    id TEXT PRIMARY KEY,
                    user_account TEXT NOT NULL,
                    dapp_account TEXT NOT NULL,
                    dataset_id TEXT NOT NULL,
                    status TEXT NOT NULL DEFAULT 'Pending',
                    requested_at_block BIGINT NOT NULL DEFAULT 0,
                    solutions_json JSONB NOT NULL DEFAULT '[]'::jsonb,
                    resolved BOOLEAN NOT NULL DEFAULT FALSE,
                    stored BOOLEAN NOT NULL DEFAULT FALSE,
                    last_updated_timestamp TIMESTAMPTZ NOT NULL
                )
                """)
            conn.execute("""
                CREATE INDEX IF NOT EXISTS idx_user_commitments_unstored
                ON user_commitments(stored) WHERE stored = FALSE
                """)
            conn.execute("""
                CREATE INDEX IF NOT EXISTS idx_user_commitments_dataset_id
                ON user_commitments(dataset_id)
                """)
            conn.execute("""
                CREATE TABLE IF NOT EXISTS pow_commitments (
                    challenge TEXT PRIMARY KEY,
                    difficulty INTEGER NOT NULL DEFAULT 0,
                    checked BOOLEAN NOT NULL DEFAULT FALSE,
                    stored BOOLEAN NOT NULL DEFAULT FALSE,
                    last_updated_timestamp TIMESTAMPTZ NOT NULL
                )
                """)
            conn.execute("""
                CREATE INDEX IF NOT EXISTS idx_pow_commitments_unstored
                ON pow_commitments(stored) WHERE stored = FALSE
                """)
            conn.execute("""
                CREATE TABLE IF NOT EXISTS scheduled_tasks (
                    task_id UUID PRIMARY KEY,
                    process_name TEXT NOT NULL,
                    status TEXT NOT NULL,
                    started TIMESTAMPTZ NOT NULL,
                    updated TIMESTAMPTZ NOT NULL,
                    data_json JSONB
                )
                """)
            # At most one Running record per task; inserts race on this index.
            conn.execute("""
                CREATE UNIQUE INDEX IF NOT EXISTS uq_scheduled_tasks_running
                ON scheduled_tasks(process_name) WHERE status = 'Running'
                """)
            conn.execute("""
                CREATE INDEX IF NOT EXISTS idx_scheduled_tasks_name_status_updated
                ON scheduled_tasks(process_name, status, updated DESC)
                """)
            conn.execute("""
                CREATE TABLE IF NOT EXISTS datasets (
                    dataset_id TEXT PRIMARY KEY,
                    dataset_content_id TEXT NOT NULL,
                    format TEXT NOT NULL,
                    captchas_json JSONB NOT NULL,
                    created_at TIMESTAMPTZ NOT NULL,
                    updated_at TIMESTAMPTZ NOT NULL
                )
                """)
            conn.commit()

    def add_commitment(self, record: CommitmentRecord) -> None:
        with self._lock, self._connect() as conn:
            conn.execute(
                """
                INSERT INTO user_commitments (
                    id,
                    user_account,
                    dapp_account,
                    dataset_id,
                    status,
                    requested_at_block,
                    solutions_json,
                    resolved,
                    stored,
                    last_updated_timestamp
                ) VALUES (%s, %s, %s, %s, %s, %s, %s, %s, %s, %s)
                ON CONFLICT (id) DO NOTHING
                """,
                (
                    record.id,
                    record.user,
                    record.dapp,
                    record.dataset_id,
                    record.status,
                    record.requested_at_block,
                    self._json_wrapper([item.model_dump(mode="json") for item in record.solutions]),
                    record.resolved,
                    record.stored,
                    record.last_updated_timestamp,
                ),
            )
            conn.commit()

    def add_pow_commitment(self, record: PoWCommitmentRecord) -> None:
        with self._lock, self._connect() as conn:
            conn.execute(
                """
                INSERT INTO pow_commitments (
                    challenge,
                    difficulty,
                    checked,
                    stored,
                    last_updated_timestamp
                ) VALUES (%s, %s, %s, %s, %s)
                ON CONFLICT (challenge) DO NOTHING
                """,
                (
                    record.challenge,
                    record.difficulty,
                    record.checked,
                    record.stored,
                    record.last_updated_timestamp,
                ),
            )
            conn.commit()

    def get_unstored_commitments(self) -> list[CommitmentRecord]:
        with self._lock, self._connect() as conn:
            rows = conn.execute(
                """
                SELECT *
                FROM user_commitments
                WHERE stored = FALSE
                ORDER BY last_updated_timestamp ASC
                """
            ).fetchall()
        return [self._row_to_commitment(row) for row in rows]

    def get_unstored_pow_commitments(self) -> list[PoWCommitmentRecord]:
        with self._lock, self._connect() as conn:
            rows = conn.execute(
                """
                SELECT *
                FROM pow_commitments
                WHERE stored = FALSE
                ORDER BY last_updated_timestamp ASC
                """
            ).fetchall()
        return [self._row_to_pow_commitment(row) for row in rows]

    def mark_commitments_stored(self, commitment_ids: list[str]) -> None:
        if not commitment_ids:
            return
        with self._lock, self._connect() as conn:
            conn.execute(
                """
                UPDATE user_commitments
                SET stored = TRUE,
                    last_updated_timestamp = GREATEST(last_updated_timestamp, %s)
                WHERE id = ANY(%s)
                """,
                (datetime.now(tz=UTC), list(commitment_ids)),
            )
            conn.commit()

    def mark_pow_commitments_stored(self, challenges: list[str]) -> None:
        if not challenges:
            return
        with self._lock, self._connect() as conn:
            conn.execute(
                """
                UPDATE pow_commitments
                SET stored = TRUE,
                    last_updated_timestamp = GREATEST(last_updated_timestamp, %s)
                WHERE challenge = ANY(%s)
                """,
                (datetime.now(tz=UTC), list(challenges)),
            )
            conn.commit()

    def get_dataset_commitments(self, dataset_id: str) -> list[CommitmentRecord]:
        with self._lock, self._connect() as conn:
            rows = conn.execute(
                "SELECT * FROM user_commitments WHERE dataset_id = %s",
                (dataset_id,),
            ).fetchall()
        return [self._row_to_commitment(row) for row in rows]

    def mark_commitments_resolved(self, commitment_ids: list[str]) -> None:
        if not commitment_ids:
            return
        with self._lock, self._connect() as conn:
            conn.execute(
                """
                UPDATE user_commitments
                SET resolved = TRUE,
                    last_updated_timestamp = GREATEST(last_updated_timestamp, %s)
                WHERE id = ANY(%s)
                """,
                (datetime.now(tz=UTC), list(commitment_ids)),
            )
            conn.commit()

    def create_scheduled_task_status(self, name: ScheduledTaskName) -> str | None:
        task_id = uuid.uuid4()
        now = datetime.now(tz=UTC)
        with self._lock, self._connect() as conn:
            row = conn.execute(
                """
                INSERT INTO scheduled_tasks (
                    task_id,
                    process_name,
                    status,
                    started,
                    updated,
                    data_json
                ) VALUES (%s, %s, %s, %s, %s, %s)
                ON CONFLICT (process_name) WHERE status = 'Running' DO NOTHING
                RETURNING task_id
                """,
                (task_id, str(name), str(ScheduledTaskStatus.RUNNING), now, now, None),
            ).fetchone()
            conn.commit()
        if row is None:
            return None
        return str(row["task_id"])

    def update_scheduled_task_status(
        self,
        task_id: str,
        status: ScheduledTaskStatus,
        data: dict[str, Any] | None = None,
    ) -> ScheduledTaskRecord:
        with self._lock, self._connect() as conn:
            row = conn.execute(
                """
                UPDATE scheduled_tasks
                SET status = %s,
                    data_json = COALESCE(%s, data_json),
                    updated = GREATEST(updated, %s)
                WHERE task_id::text = %s AND status = %s
                RETURNING *
                """,
                (
                    str(status),
                    self._json_wrapper(data) if data is not None else None,
                    datetime.now(tz=UTC),
                    task_id,
                    str(ScheduledTaskStatus.RUNNING),
                ),
            ).fetchone()
            current = None
            if row is None:
                current = conn.execute(
                    "SELECT status FROM scheduled_tasks WHERE task_id::text = %s",
                    (task_id,),
                ).fetchone()
            conn.commit()
        if row is None:
            if current is None:
                raise KeyError(f"Scheduled task {task_id} does not exist")
            raise TaskNoLongerRunning(task_id, str(current["status"]))
        return self._row_to_scheduled_task(row)

    def get_last_scheduled_task_status(
        self,
        name: ScheduledTaskName,
        status: ScheduledTaskStatus | None = None,
    ) -> ScheduledTaskRecord | None:
        with self._lock, self._connect() as conn:
            if status is None:
                row = conn.execute(
                    """
                    SELECT *
                    FROM scheduled_tasks
                    WHERE process_name = %s
                    ORDER BY started DESC
                    LIMIT 1
                    """,
                    (str(name),),
                ).fetchone()
            else:
                order_column = "started" if status == ScheduledTaskStatus.RUNNING else "updated"
                row = conn.execute(
                    f"""
                    SELECT *
                    FROM scheduled_tasks
                    WHERE process_name = %s AND status = %s
                    ORDER BY {order_column} DESC
                    LIMIT 1
                    """,
                    (str(name), str(status)),
                ).fetchone()
        if row is None:
            return None
        return self._row_to_scheduled_task(row)

    def list_scheduled_task_statuses(
        self,
        name: ScheduledTaskName,
        limit: int = 20,
    ) -> list[ScheduledTaskRecord]:
        with self._lock, self._connect() as conn:
            rows = conn.execute(
                """
                SELECT *
                FROM scheduled_tasks
                WHERE process_name = %s
                ORDER BY started DESC
                LIMIT %s
                """,
                (str(name), limit),
            ).fetchall()
        return [self._row_to_scheduled_task(row) for row in rows]

    def store_dataset(self, dataset: Dataset) -> None:
        now = datetime.now(tz=UTC)
        with self._lock, self._connect() as conn:
            conn.execute(
                """
                INSERT INTO datasets (
                    dataset_id,
                    dataset_content_id,
                    format,
                    captchas_json,
                    created_at,
                    updated_at
                ) VALUES (%s, %s, %s, %s, %s, %s)
                ON CONFLICT (dataset_id) DO UPDATE
                SET dataset_content_id = EXCLUDED.dataset_content_id,
                    format = EXCLUDED.format,
                    captchas_json = EXCLUDED.captchas_json,
                    updated_at = EXCLUDED.updated_at
                """,
                (
                    dataset.dataset_id,
                    dataset.dataset_content_id,
                    dataset.format,
                    self._json_wrapper(
                        [captcha.model_dump(mode="json") for captcha in dataset.captchas]
                    ),
                    now,
                    now,
                ),
            )
            conn.commit()

    def get_dataset(self, dataset_id: str | None = None) -> Dataset | None:
        with self._lock, self._connect() as conn:
            if dataset_id is None:
                row = conn.execute(
                    "SELECT * FROM datasets ORDER BY updated_at DESC LIMIT 1"
                ).fetchone()
            else:
                row = conn.execute(
                    "SELECT * FROM datasets WHERE dataset_id = %s",
                    (dataset_id,),
                ).fetchone()
        if row is None:
            return None
        return Dataset(
            dataset_id=row["dataset_id"],
            dataset_content_id=row["dataset_content_id"],
            format=row["format"],
            captchas=self._parse_json_list(row["captchas_json"]),
        )

    def _connect(self) -> Any:
        return self._psycopg.connect(self.database_url, row_factory=self._dict_row)

    @staticmethod
    def _load_psycopg() -> tuple[Any, Any, Any]:
        try:
            import psycopg
            from psycopg.rows import dict_row
            from psycopg.types.json import Json
        except ImportError as exc:  # pragma: no cover
            raise RuntimeError(
                "PostgreSQL storage requires psycopg. "
                'Install with: python -m pip install "psycopg[binary]>=3.2,<4.0"'
            ) from exc
        return psycopg, dict_row, Json

    @staticmethod
    def _parse_json_optional(raw: Any) -> dict[str, Any] | None:
        if raw is None:
            return None
        if isinstance(raw, str):
            parsed = json.loads(raw)
        else:
            parsed = raw
        if isinstance(parsed, dict):
            return parsed
        return None

    @staticmethod
    def _parse_json_list(raw: Any) -> list[dict[str, Any]]:
        if raw is None:
            return []
        if isinstance(raw, str):
            parsed = json.loads(raw)
        else:
            parsed = raw
        if not isinstance(parsed, list):
            return []
        return [item for item in parsed if isinstance(item, dict)]

    @staticmethod
    def _parse_datetime(raw: Any) -> datetime:
        if isinstance(raw, datetime):
            return raw
        if isinstance(raw, str):
            return datetime.fromisoformat(raw)
        raise TypeError(f"Unsupported datetime value: {type(raw)!r}")

    @classmethod
    def _row_to_commitment(cls, row: Any) -> CommitmentRecord:
        return CommitmentRecord(
            id=str(row["id"]),
            user=row["user_account"],
            dapp=row["dapp_account"],
            dataset_id=row["dataset_id"],
            status=row["status"],
            requested_at_block=int(row["requested_at_block"]),
            solutions=[
                CaptchaSolution.model_validate(item)
                for item in cls._parse_json_list(row["solutions_json"])
            ],
            resolved=bool(row["resolved"]),
            stored=bool(row["stored"]),
            last_updated_timestamp=cls._parse_datetime(row["last_updated_timestamp"]),
        )

    @classmethod
    def _row_to_pow_commitment(cls, row: Any) -> PoWCommitmentRecord:
        return PoWCommitmentRecord(
            challenge=row["challenge"],
            difficulty=int(row["difficulty"]),
            checked=bool(row["checked"]),
            stored=bool(row["stored"]),
            last_updated_timestamp=cls._parse_datetime(row["last_updated_timestamp"]),
        )

    @classmethod
    def _row_to_scheduled_task(cls, row: Any) -> ScheduledTaskRecord:
        return ScheduledTaskRecord(
            task_id=str(row["task_id"]),
            process_name=ScheduledTaskName(row["process_name"]),
            status=ScheduledTaskStatus(row["status"]),
            started=cls._parse_datetime(row["started"]),
            updated=cls._parse_datetime(row["updated"]),
            data=cls._parse_json_optional(row["data_json"]),
        )
