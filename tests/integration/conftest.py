from __future__ import annotations

import os
import uuid
from collections.abc import Iterator

import pytest

from captcha_provider.storage.postgres import PostgresCommitmentStore


def _database_url() -> str:
    if os.getenv("RUN_POSTGRES_INTEGRATION_TESTS") != "1":
        pytest.skip(
            "Set RUN_POSTGRES_INTEGRATION_TESTS=1 and CAPTCHA_PROVIDER_DATABASE_URL "
            "to run integration tests against PostgreSQL."
        )
    database_url = os.getenv("CAPTCHA_PROVIDER_DATABASE_URL")
    if not database_url:
        pytest.skip("CAPTCHA_PROVIDER_DATABASE_URL is required for integration tests.")
    return database_url


@pytest.fixture
def database_url() -> str:
    return _database_url()


@pytest.fixture
def postgres_store(database_url: str) -> Iterator[PostgresCommitmentStore]:
    store = PostgresCommitmentStore(database_url)
    store.migrate()
    yield store
    import psycopg

    with psycopg.connect(database_url) as conn:
        conn.execute("DELETE FROM scheduled_tasks")
        conn.execute("DELETE FROM user_commitments")
        conn.execute("DELETE FROM pow_commitments")
        conn.execute("DELETE FROM datasets")
        conn.commit()


@pytest.fixture
def unique_id() -> str:
    return uuid.uuid4().hex[:12]
