"""Recurring trigger for scheduled tasks."""

from __future__ import annotations

import logging
import time
from collections.abc import Callable
from dataclasses import dataclass

from captcha_provider.errors import TaskAlreadyRunning
from captcha_provider.tasks.coordinator import TaskRunSummary

logger = logging.getLogger(__name__)


def parse_every(raw: str | None) -> int | None:
    """Parse ``30s``, ``5m``, ``1h`` or plain seconds into seconds."""
    if raw is None:
        return None
    raw = raw.strip().lower()
    if raw.endswith("ms"):
        return max(1, int(raw[:-2]) // 1000)
    if raw.endswith("s"):
        return int(raw[:-1])
    if raw.endswith("m"):
        return int(raw[:-1]) * 60
    if raw.endswith("h"):
        return int(raw[:-1]) * 3600
    return int(raw)


@dataclass(slots=True)
class ScheduleConfig:
    every_seconds: int | None = None
    max_runs: int | None = None


class TaskScheduler:
    """Invoke a task on a fixed interval.

    A tick that finds the task already running is logged and skipped; the next
    tick tries again. Runs are never retried within a tick.
    """

    def __init__(
        self,
        run_task: Callable[[], TaskRunSummary],
        config: ScheduleConfig | None = None,
        *,
        sleep: Callable[[float], None] = time.sleep,
    ) -> None:
        self.run_task = run_task
        self.config = config or ScheduleConfig()
        self._sleep = sleep

    def tick(self) -> TaskRunSummary | None:
        try:
            summary = self.run_task()
        except TaskAlreadyRunning as exc:
            logger.warning("scheduled tick skipped name=%s reason=already_running", exc.task_name)
            return None
        logger.info(
            "scheduled tick done name=%s id=%s status=%s",
            summary.task_name,
            summary.task_id,
            summary.status,
        )
        return summary

    def run(self) -> list[TaskRunSummary | None]:
        if self.config.every_seconds is None:
            return [self.tick()]

        results: list[TaskRunSummary | None] = []
        while self.config.max_runs is None or len(results) < self.config.max_runs:
            start = time.monotonic()
            results.append(self.tick())
            if self.config.max_runs is not None and len(results) >= self.config.max_runs:
                break
            elapsed = time.monotonic() - start
            self._sleep(max(0.0, self.config.every_seconds - elapsed))
        return results
