"""Incremental export of unstored commitments to the external sink."""

from __future__ import annotations

import logging
from typing import Any

from captcha_provider.errors import SinkDeliveryError, StoreReadError, StoreWriteError
from captcha_provider.sinks.base import CommitmentSink
from captcha_provider.storage.base import CommitmentStore
from captcha_provider.storage.models import ScheduledTaskName
from captcha_provider.tasks.coordinator import (
    ScheduledTaskCoordinator,
    TaskHandle,
    TaskRunSummary,
)

logger = logging.getLogger(__name__)


class ExportCommitmentsTask:
    """Ship unstored records updated after the watermark to the sink, then mark them stored.

    Records are marked stored only after the sink accepts the whole batch, so a
    failure at any step leaves them eligible for the next run.
    """

    task_name = ScheduledTaskName.EXPORT_COMMITMENTS

    def __init__(
        self,
        *,
        store: CommitmentStore,
        sink: CommitmentSink,
        destination_uri: str,
        coordinator: ScheduledTaskCoordinator | None = None,
    ) -> None:
        self.store = store
        self.sink = sink
        self.destination_uri = destination_uri
        self.coordinator = coordinator or ScheduledTaskCoordinator(store)

    def run(self) -> TaskRunSummary:
        if not self.destination_uri:
            logger.info("export skipped reason=external_sink_uri_not_set")
            return TaskRunSummary(task_name=self.task_name, data={"skipped": True})
        return self.coordinator.execute(self.task_name, self._export)

    def _export(self, handle: TaskHandle) -> dict[str, Any]:
        try:
            commitments = self.store.get_unstored_commitments()
            pow_commitments = self.store.get_unstored_pow_commitments()
        except Exception as exc:
            raise StoreReadError("Failed to read unstored commitments") from exc

        # Only records touched since the last completed export are new.
        commitments = [
            record for record in commitments if record.last_updated_timestamp > handle.watermark
        ]
        pow_commitments = [
            record
            for record in pow_commitments
            if record.last_updated_timestamp > handle.watermark
        ]

        commitment_ids = [record.id for record in commitments]
        pow_challenges = [record.challenge for record in pow_commitments]
        logger.info(
            "export batch id=%s watermark=%s commitments=%d pow_commitments=%d",
            handle.task_id,
            handle.watermark.isoformat(),
            len(commitment_ids),
            len(pow_challenges),
        )

        if commitments or pow_commitments:
            try:
                self.sink.save(commitments, pow_commitments, self.destination_uri)
            except Exception as exc:
                raise SinkDeliveryError(f"Sink rejected export batch: {exc}") from exc

            try:
                self.store.mark_commitments_stored(commitment_ids)
                self.store.mark_pow_commitments_stored(pow_challenges)
            except Exception as exc:
                raise StoreWriteError("Failed to mark exported commitments as stored") from exc

        return {
            "commitments": commitment_ids,
            "powRecords": pow_challenges,
            "counts": {
                "commitments": len(commitment_ids),
                "powRecords": len(pow_challenges),
            },
            "watermark": handle.watermark.isoformat(),
        }
