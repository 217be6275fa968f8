"""Error types raised by the provider's scheduled tasks and ingest path."""

from __future__ import annotations


class CaptchaProviderError(Exception):
    """Base class for provider errors."""


class TaskAlreadyRunning(CaptchaProviderError):
    """Another run of the same scheduled task holds the Running slot."""

    def __init__(self, task_name: str) -> None:
        super().__init__(f"Scheduled task {task_name} is already running")
        self.task_name = task_name


class TaskNoLongerRunning(CaptchaProviderError):
    """A run record already left Running and cannot be transitioned again."""

    def __init__(self, task_id: str, status: str) -> None:
        super().__init__(f"Scheduled task run {task_id} is already {status}")
        self.task_id = task_id
        self.status = status


class StoreReadError(CaptchaProviderError):
    pass


class StoreWriteError(CaptchaProviderError):
    pass


class SinkDeliveryError(CaptchaProviderError):
    pass


class DatasetValidationError(CaptchaProviderError):
    """Raw dataset rejected at ingest.

    ``category`` is ``"solved"`` or ``"unsolved"`` for threshold shortfalls and
    ``"format"`` for malformed input.
    """

    def __init__(
        self,
        category: str,
        *,
        required: int | None = None,
        actual: int | None = None,
        detail: str | None = None,
    ) -> None:
        if detail is None:
            detail = (
                f"Dataset has {actual} {category} captchas, "
                f"at least {required} {category} captchas are required"
            )
        super().__init__(detail)
        self.category = category
        self.required = required
        self.actual = actual
