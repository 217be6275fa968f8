"""Storage interface consumed by the scheduled tasks and dataset ingest."""

from __future__ import annotations

from typing import Any, Protocol

from captcha_provider.storage.models import (
    CommitmentRecord,
    Dataset,
    PoWCommitmentRecord,
    ScheduledTaskName,
    ScheduledTaskRecord,
    ScheduledTaskStatus,
)


class CommitmentStore(Protocol):
    def migrate(self) -> None: ...

    def add_commitment(self, record: CommitmentRecord) -> None: ...

    def add_pow_commitment(self, record: PoWCommitmentRecord) -> None: ...

    def get_unstored_commitments(self) -> list[CommitmentRecord]: ...

    def get_unstored_pow_commitments(self) -> list[PoWCommitmentRecord]: ...

    def mark_commitments_stored(self, commitment_ids: list[str]) -> None: ...

    def mark_pow_commitments_stored(self, challenges: list[str]) -> None: ...

    def get_dataset_commitments(self, dataset_id: str) -> list[CommitmentRecord]: ...

    def mark_commitments_resolved(self, commitment_ids: list[str]) -> None: ...

    def create_scheduled_task_status(self, name: ScheduledTaskName) -> str | None:
        """Insert a Running record unless one already exists for ``name``.

        Must be a single atomic operation. Returns the new record id, or None
        when another run holds the Running slot.
        """
        ...

    def update_scheduled_task_status(
        self,
        task_id: str,
        status: ScheduledTaskStatus,
        data: dict[str, Any] | None = None,
    ) -> ScheduledTaskRecord:
        """Move a Running record to ``status``; raises ``TaskNoLongerRunning`` otherwise."""
        ...

    def get_last_scheduled_task_status(
        self,
        name: ScheduledTaskName,
        status: ScheduledTaskStatus | None = None,
    ) -> ScheduledTaskRecord | None: ...

    def list_scheduled_task_statuses(
        self,
        name: ScheduledTaskName,
        limit: int = 20,
    ) -> list[ScheduledTaskRecord]: ...

    def store_dataset(self, dataset: Dataset) -> None: ...

    def get_dataset(self, dataset_id: str | None = None) -> Dataset | None: ...
