"""Interface for the external store that receives exported commitments."""

from __future__ import annotations

from typing import Protocol

from captcha_provider.storage.models import CommitmentRecord, PoWCommitmentRecord


class CommitmentSink(Protocol):
    def save(
        self,
        commitments: list[CommitmentRecord],
        pow_commitments: list[PoWCommitmentRecord],
        destination_uri: str,
    ) -> None:
        """Persist both batches or raise. Retried payloads are upserted by id."""
        ...
