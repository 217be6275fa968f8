"""Sink that upserts exported commitments into an external PostgreSQL database."""

from __future__ import annotations

import logging
from datetime import UTC, datetime
from typing import Any

from captcha_provider.storage.models import CommitmentRecord, PoWCommitmentRecord

logger = logging.getLogger(__name__)


class PostgresCommitmentSink:
    """Write exported records to the database named by ``destination_uri``.

    Both batches go out in one transaction. Rows are keyed on commitment id and
    PoW challenge, so a re-sent batch overwrites instead of duplicating.
    """

    def __init__(self) -> None:
        self._psycopg, self._json_wrapper = self._load_psycopg()
        self._migrated: set[str] = set()

    def save(
        self,
        commitments: list[CommitmentRecord],
        pow_commitments: list[PoWCommitmentRecord],
        destination_uri: str,
    ) -> None:
        if not destination_uri:
            raise ValueError("destination_uri is required")
        exported_at = datetime.now(tz=UTC)
        with self._psycopg.connect(destination_uri) as conn:
            if destination_uri not in self._migrated:
                self._migrate(conn)
                self._migrated.add(destination_uri)
            with conn.cursor() as cur:
                if commitments:
                    cur.executemany(
                        """
                        INSERT INTO stored_commitments (
                            id,
                            record_json,
                            last_updated_timestamp,
                            exported_at
                        ) VALUES (%s, %s, %s, %s)
                        ON CONFLICT (id) DO UPDATE
                        SET record_json = EXCLUDED.record_json,
                            last_updated_timestamp = EXCLUDED.last_updated_timestamp,
                            exported_at = EXCLUDED.exported_at
                        """,
                        [
                            (
                                record.id,
                                self._json_wrapper(record.model_dump(mode="json")),
                                record.last_updated_timestamp,
                                exported_at,
                            )
                            for record in commitments
                        ],
                    )
                if pow_commitments:
                    cur.executemany(
                        """
                        INSERT INTO stored_pow_commitments (
                            challenge,
                            record_json,
                            last_updated_timestamp,
                            exported_at
                        ) VALUES (%s, %s, %s, %s)
                        ON CONFLICT (challenge) DO UPDATE
                        SET record_json = EXCLUDED.record_json,
                            last_updated_timestamp = EXCLUDED.last_updated_timestamp,
                            exported_at = EXCLUDED.exported_at
                        """,
                        [
                            (
                                record.challenge,
                                self._json_wrapper(record.model_dump(mode="json")),
                                record.last_updated_timestamp,
                                exported_at,
                            )
                            for record in pow_commitments
                        ],
                    )
            conn.commit()
        logger.info(
            "sink saved commitments=%d pow_commitments=%d",
            len(commitments),
            len(pow_commitments),
        )

    @staticmethod
    def _migrate(conn: Any) -> None:
        conn.execute("""
            CREATE TABLE IF NOT EXISTS stored_commitments (
                id TEXT PRIMARY KEY,
                record_json JSONB NOT NULL,
                last_updated_timestamp TIMESTAMPTZ NOT NULL,
                exported_at TIMESTAMPTZ NOT NULL
            )
            """)
        conn.execute("""
            CREATE TABLE IF NOT EXISTS stored_pow_commitments (
                challenge TEXT PRIMARY KEY,
                record_json JSONB NOT NULL,
                last_updated_timestamp TIMESTAMPTZ NOT NULL,
                exported_at TIMESTAMPTZ NOT NULL
            )
            """)

    @staticmethod
    def _load_psycopg() -> tuple[Any, Any]:
        try:
            import psycopg
            from psycopg.types.json import Json
        except ImportError as exc:  # pragma: no cover
            raise RuntimeError(
                "PostgreSQL sink requires psycopg. "
                'Install with: python -m pip install "psycopg[binary]>=3.2,<4.0"'
            ) from exc
        return psycopg, Json
