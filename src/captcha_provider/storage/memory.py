"""In-memory commitment store for tests and local runs."""

from __future__ import annotations

import threading
from datetime import UTC, datetime
from typing import Any
from uuid import uuid4

from captcha_provider.errors import TaskNoLongerRunning
from captcha_provider.storage.models import (
    CommitmentRecord,
    Dataset,
    PoWCommitmentRecord,
    ScheduledTaskName,
    ScheduledTaskRecord,
    ScheduledTaskStatus,
)


class InMemoryCommitmentStore:
    """Thread-safe in-memory implementation of ``CommitmentStore``."""

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._commitments: dict[str, CommitmentRecord] = {}
        self._pow_commitments: dict[str, PoWCommitmentRecord] = {}
        self._scheduled_tasks: list[ScheduledTaskRecord] = []
        self._datasets: dict[str, Dataset] = {}
        self._latest_dataset_id: str | None = None

    def migrate(self) -> None:
        return None

    def add_commitment(self, record: CommitmentRecord) -> None:
        with self._lock:
            self._commitments[record.id] = record.model_copy(deep=True)

    def add_pow_commitment(self, record: PoWCommitmentRecord) -> None:
        with self._lock:
            self._pow_commitments[record.challenge] = record.model_copy(deep=True)

    def get_commitment(self, commitment_id: str) -> CommitmentRecord | None:
        with self._lock:
            record = self._commitments.get(commitment_id)
            return record.model_copy(deep=True) if record else None

    def get_pow_commitment(self, challenge: str) -> PoWCommitmentRecord | None:
        with self._lock:
            record = self._pow_commitments.get(challenge)
            return record.model_copy(deep=True) if record else None

    def get_unstored_commitments(self) -> list[CommitmentRecord]:
        with self._lock:
            return [
                record.model_copy(deep=True)
                for record in self._commitments.values()
                if not record.stored
            ]

    def get_unstored_pow_commitments(self) -> list[PoWCommitmentRecord]:
        with self._lock:
            return [
                record.model_copy(deep=True)
                for record in self._pow_commitments.values()
                if not record.stored
            ]

    def mark_commitments_stored(self, commitment_ids: list[str]) -> None:
        with self._lock:
            now = datetime.now(UTC)
            for commitment_id in commitment_ids:
                current = self._commitments.get(commitment_id)
                if current is None:
                    continue
                self._commitments[commitment_id] = current.model_copy(
                    update={
                        "stored": True,
                        "last_updated_timestamp": max(now, current.last_updated_timestamp),
                    }
                )

    def mark_pow_commitments_stored(self, challenges: list[str]) -> None:
        with self._lock:
            now = datetime.now(UTC)
            for challenge in challenges:
                current = self._pow_commitments.get(challenge)
                if current is None:
                    continue
                self._pow_commitments[challenge] = current.model_copy(
                    update={
                        "stored": True,
                        "last_updated_timestamp": max(now, current.last_updated_timestamp),
                    }
                )

    def get_dataset_commitments(self, dataset_id: str) -> list[CommitmentRecord]:
        with self._lock:
            return [
                record.model_copy(deep=True)
                for record in self._commitments.values()
                if record.dataset_id == dataset_id
            ]

    def mark_commitments_resolved(self, commitment_ids: list[str]) -> None:
        with self._lock:
            now = datetime.now(UTC)
            for commitment_id in commitment_ids:
                current = self._commitments.get(commitment_id)
                if current is None:
                    continue
                self._commitments[commitment_id] = current.model_copy(
                    update={
                        "resolved": True,
                        "last_updated_timestamp": max(now, current.last_updated_timestamp),
                    }
                )

    def create_scheduled_task_status(self, name: ScheduledTaskName) -> str | None:
        with self._lock:
            for record in self._scheduled_tasks:
                if record.process_name == name and record.status == ScheduledTaskStatus.RUNNING:
                    return None
            now = datetime.now(UTC)
            record = ScheduledTaskRecord(
                task_id=str(uuid4()),
                process_name=name,
                status=ScheduledTaskStatus.RUNNING,
                started=now,
                updated=now,
            )
            self._scheduled_tasks.append(record)
            return record.task_id

    def update_scheduled_task_status(
        self,
        task_id: str,
        status: ScheduledTaskStatus,
        data: dict[str, Any] | None = None,
    ) -> ScheduledTaskRecord:
        with self._lock:
            for index, current in enumerate(self._scheduled_tasks):
                if current.task_id != task_id:
                    continue
                if current.status != ScheduledTaskStatus.RUNNING:
                    raise TaskNoLongerRunning(task_id, str(current.status))
                updated = current.model_copy(
                    update={
                        "status": status,
                        "data": data if data is not None else current.data,
                        "updated": max(datetime.now(UTC), current.updated),
                    },
                    deep=True,
                )
                self._scheduled_tasks[index] = updated
                return updated.model_copy(deep=True)
        raise KeyError(f"Scheduled task {task_id} does not exist")

    def get_last_scheduled_task_status(
        self,
        name: ScheduledTaskName,
        status: ScheduledTaskStatus | None = None,
    ) -> ScheduledTaskRecord | None:
        with self._lock:
            candidates = [
                record
                for record in self._scheduled_tasks
                if record.process_name == name and (status is None or record.status == status)
            ]
        if not candidates:
            return None
        # Completed lookups order by the transition time, everything else by start.
        if status is None or status == ScheduledTaskStatus.RUNNING:
            latest = max(reversed(candidates), key=lambda record: record.started)
        else:
            latest = max(reversed(candidates), key=lambda record: record.updated)
        return latest.model_copy(deep=True)

    def list_scheduled_task_statuses(
        self,
        name: ScheduledTaskName,
        limit: int = 20,
    ) -> list[ScheduledTaskRecord]:
        with self._lock:
            records = [
                record
                for record in reversed(self._scheduled_tasks)
                if record.process_name == name
            ]
        records.sort(key=lambda record: record.started, reverse=True)
        return [record.model_copy(deep=True) for record in records[:limit]]

    def store_dataset(self, dataset: Dataset) -> None:
        with self._lock:
            self._datasets[dataset.dataset_id] = dataset.model_copy(deep=True)
            self._latest_dataset_id = dataset.dataset_id

    def get_dataset(self, dataset_id: str | None = None) -> Dataset | None:
        with self._lock:
            key = dataset_id or self._latest_dataset_id
            if key is None:
                return None
            dataset = self._datasets.get(key)
            return dataset.model_copy(deep=True) if dataset else None
