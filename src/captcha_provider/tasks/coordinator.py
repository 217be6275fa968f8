"""Single-flight coordination and watermarks for recurring provider tasks.

Each run of a named task is an append-only ``ScheduledTaskRecord``. A Running
record acts as the task's mutex: ``begin`` only succeeds when the store
atomically inserts a new Running record. The watermark handed to a run is the
``updated`` time of the last Completed record, so a Failed run never moves it.
"""

from __future__ import annotations

import logging
from collections.abc import Callable
from dataclasses import dataclass
from datetime import UTC, datetime, timedelta
from typing import Any

from pydantic import BaseModel, Field

from captcha_provider.errors import (
    StoreReadError,
    StoreWriteError,
    TaskAlreadyRunning,
    TaskNoLongerRunning,
)
from captcha_provider.storage.base import CommitmentStore
from captcha_provider.storage.models import (
    BEGINNING_OF_TIME,
    ScheduledTaskName,
    ScheduledTaskRecord,
    ScheduledTaskStatus,
)

logger = logging.getLogger(__name__)


@dataclass(slots=True, frozen=True)
class TaskHandle:
    task_id: str
    task_name: ScheduledTaskName
    watermark: datetime


class TaskRunSummary(BaseModel):
    """Outcome of one scheduled run, returned instead of raising."""

    task_name: ScheduledTaskName
    task_id: str | None = None
    status: ScheduledTaskStatus | None = None
    watermark: datetime | None = None
    data: dict[str, Any] = Field(default_factory=dict)
    error: str | None = None

    @property
    def ok(self) -> bool:
        return self.status == ScheduledTaskStatus.COMPLETED


class ScheduledTaskCoordinator:
    """Begin, complete and fail runs of scheduled tasks against a store."""

    def __init__(
        self,
        store: CommitmentStore,
        *,
        running_task_stale_after_s: float | None = None,
    ) -> None:
        self.store = store
        self.running_task_stale_after_s = running_task_stale_after_s

    def begin(self, task_name: ScheduledTaskName) -> TaskHandle:
        task_id = self._create_running(task_name)
        if task_id is None and self._reap_stale_run(task_name):
            task_id = self._create_running(task_name)
        if task_id is None:
            logger.warning("scheduled task refused name=%s reason=already_running", task_name)
            raise TaskAlreadyRunning(str(task_name))

        handle = TaskHandle(task_id=task_id, task_name=task_name, watermark=BEGINNING_OF_TIME)
        try:
            watermark = self.watermark(task_name)
        except StoreReadError as exc:
            self.fail(handle, exc)
            raise
        handle = TaskHandle(task_id=task_id, task_name=task_name, watermark=watermark)
        logger.info(
            "scheduled task begin name=%s id=%s watermark=%s",
            task_name,
            task_id,
            watermark.isoformat(),
        )
        return handle

    def watermark(self, task_name: ScheduledTaskName) -> datetime:
        try:
            last_completed = self.store.get_last_scheduled_task_status(
                task_name, ScheduledTaskStatus.COMPLETED
            )
        except Exception as exc:
            raise StoreReadError(f"Failed to read last completed {task_name} run") from exc
        if last_completed is None:
            return BEGINNING_OF_TIME
        return last_completed.updated

    def complete(self, handle: TaskHandle, result_data: dict[str, Any]) -> ScheduledTaskRecord:
        record = self._transition(handle, ScheduledTaskStatus.COMPLETED, result_data)
        logger.info("scheduled task completed name=%s id=%s", handle.task_name, handle.task_id)
        return record

    def fail(self, handle: TaskHandle, error: BaseException | str) -> ScheduledTaskRecord:
        data = {
            "error": str(error),
            "error_type": type(error).__name__ if isinstance(error, BaseException) else "str",
        }
        record = self._transition(handle, ScheduledTaskStatus.FAILED, data)
        logger.warning(
            "scheduled task failed name=%s id=%s error=%s",
            handle.task_name,
            handle.task_id,
            data["error"],
        )
        return record

    def execute(
        self,
        task_name: ScheduledTaskName,
        work: Callable[[TaskHandle], dict[str, Any]],
    ) -> TaskRunSummary:
        """Run ``work`` inside a Running record and record how it ended.

        ``TaskAlreadyRunning`` propagates. Any other failure is recorded as a
        Failed run and reported through the returned summary.
        """
        try:
            handle = self.begin(task_name)
        except TaskAlreadyRunning:
            raise
        except (StoreReadError, StoreWriteError, TaskNoLongerRunning) as exc:
            logger.exception("scheduled task could not start name=%s", task_name)
            return TaskRunSummary(task_name=task_name, error=str(exc))

        try:
            result_data = work(handle)
            self.complete(handle, result_data)
        except TaskNoLongerRunning as exc:
            return self._discarded(handle, exc)
        except Exception as exc:
            logger.exception("scheduled task error name=%s id=%s", task_name, handle.task_id)
            try:
                record = self.fail(handle, exc)
            except TaskNoLongerRunning as lost:
                return self._discarded(handle, lost, error=str(exc))
            except StoreWriteError:
                # The Running record stays behind until reaped.
                logger.exception(
                    "scheduled task failure not recorded name=%s id=%s",
                    task_name,
                    handle.task_id,
                )
                return TaskRunSummary(
                    task_name=task_name,
                    task_id=handle.task_id,
                    status=ScheduledTaskStatus.RUNNING,
                    watermark=handle.watermark,
                    error=str(exc),
                )
            return TaskRunSummary(
                task_name=task_name,
                task_id=handle.task_id,
                status=record.status,
                watermark=handle.watermark,
                data=record.data or {},
                error=str(exc),
            )

        return TaskRunSummary(
            task_name=task_name,
            task_id=handle.task_id,
            status=ScheduledTaskStatus.COMPLETED,
            watermark=handle.watermark,
            data=result_data,
        )

    def _discarded(
        self,
        handle: TaskHandle,
        exc: TaskNoLongerRunning,
        *,
        error: str | None = None,
    ) -> TaskRunSummary:
        # The record was reaped while this run worked; its outcome is not recorded.
        logger.warning(
            "scheduled task outcome discarded name=%s id=%s status=%s",
            handle.task_name,
            handle.task_id,
            exc.status,
        )
        return TaskRunSummary(
            task_name=handle.task_name,
            task_id=handle.task_id,
            status=ScheduledTaskStatus(exc.status),
            watermark=handle.watermark,
            error=error or str(exc),
        )

    def _create_running(self, task_name: ScheduledTaskName) -> str | None:
        try:
            return self.store.create_scheduled_task_status(task_name)
        except Exception as exc:
            raise StoreWriteError(f"Failed to create {task_name} run record") from exc

    def _transition(
        self,
        handle: TaskHandle,
        status: ScheduledTaskStatus,
        data: dict[str, Any],
    ) -> ScheduledTaskRecord:
        try:
            return self.store.update_scheduled_task_status(handle.task_id, status, data)
        except TaskNoLongerRunning:
            raise
        except Exception as exc:
            raise StoreWriteError(
                f"Failed to mark {handle.task_name} run {handle.task_id} as {status}"
            ) from exc

    def _reap_stale_run(self, task_name: ScheduledTaskName) -> bool:
        if self.running_task_stale_after_s is None:
            return False
        try:
            running = self.store.get_last_scheduled_task_status(
                task_name, ScheduledTaskStatus.RUNNING
            )
        except Exception as exc:
            raise StoreReadError(f"Failed to read running {task_name} run") from exc
        if running is None:
            # The other run finished between our insert and this read.
            return True
        age = datetime.now(UTC) - running.updated
        if age < timedelta(seconds=self.running_task_stale_after_s):
            return False
        stale_handle = TaskHandle(
            task_id=running.task_id,
            task_name=task_name,
            watermark=BEGINNING_OF_TIME,
        )
        try:
            self._transition(
                stale_handle,
                ScheduledTaskStatus.FAILED,
                {
                    "error": "abandoned",
                    "error_type": "StaleRun",
                    "age_s": round(age.total_seconds(), 3),
                },
            )
        except TaskNoLongerRunning:
            # Its owner finished it first.
            return True
        logger.warning(
            "scheduled task reaped name=%s id=%s age_s=%.1f",
            task_name,
            running.task_id,
            age.total_seconds(),
        )
        return True
