"""Scheduled provider tasks."""

from captcha_provider.tasks.coordinator import (
    ScheduledTaskCoordinator,
    TaskHandle,
    TaskRunSummary,
)
from captcha_provider.tasks.export import ExportCommitmentsTask
from captcha_provider.tasks.scheduler import ScheduleConfig, TaskScheduler, parse_every
from captcha_provider.tasks.solutions import (
    CalculateSolutionsTask,
    ConsensusOutcome,
    RecalculationResult,
    calculate_solution,
    collect_votes,
    recalculate,
)

__all__ = [
    "CalculateSolutionsTask",
    "ConsensusOutcome",
    "ExportCommitmentsTask",
    "RecalculationResult",
    "ScheduleConfig",
    "ScheduledTaskCoordinator",
    "TaskHandle",
    "TaskRunSummary",
    "TaskScheduler",
    "calculate_solution",
    "collect_votes",
    "parse_every",
    "recalculate",
]
