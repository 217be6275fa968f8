"""Scheduled commitment export and captcha solution consensus for a captcha provider."""

from captcha_provider.datasets.ingest import DatasetManager
from captcha_provider.errors import (
    CaptchaProviderError,
    DatasetValidationError,
    SinkDeliveryError,
    StoreReadError,
    StoreWriteError,
    TaskAlreadyRunning,
    TaskNoLongerRunning,
)
from captcha_provider.storage.models import ScheduledTaskName, ScheduledTaskStatus
from captcha_provider.tasks.coordinator import ScheduledTaskCoordinator, TaskRunSummary
from captcha_provider.tasks.export import ExportCommitmentsTask
from captcha_provider.tasks.solutions import CalculateSolutionsTask

__version__ = "0.1.0"

__all__ = [
    "CalculateSolutionsTask",
    "CaptchaProviderError",
    "DatasetManager",
    "DatasetValidationError",
    "ExportCommitmentsTask",
    "ScheduledTaskCoordinator",
    "ScheduledTaskName",
    "ScheduledTaskStatus",
    "SinkDeliveryError",
    "StoreReadError",
    "StoreWriteError",
    "TaskAlreadyRunning",
    "TaskNoLongerRunning",
    "TaskRunSummary",
]
