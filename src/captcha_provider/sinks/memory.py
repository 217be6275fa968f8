"""In-memory sink for tests and dry runs."""

from __future__ import annotations

import threading

from captcha_provider.storage.models import CommitmentRecord, PoWCommitmentRecord


class InMemoryCommitmentSink:
    """Upserts exported records by id, keyed per destination uri."""

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self.commitments: dict[str, dict[str, CommitmentRecord]] = {}
        self.pow_commitments: dict[str, dict[str, PoWCommitmentRecord]] = {}
        self.calls = 0

    def save(
        self,
        commitments: list[CommitmentRecord],
        pow_commitments: list[PoWCommitmentRecord],
        destination_uri: str,
    ) -> None:
        with self._lock:
            self.calls += 1
            stored = self.commitments.setdefault(destination_uri, {})
            for record in commitments:
                stored[record.id] = record.model_copy(deep=True)
            stored_pow = self.pow_commitments.setdefault(destination_uri, {})
            for record in pow_commitments:
                stored_pow[record.challenge] = record.model_copy(deep=True)
