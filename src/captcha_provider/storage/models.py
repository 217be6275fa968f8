"""Records shared by the commitment store, sinks, tasks and API."""

from __future__ import annotations

from datetime import UTC, datetime
from enum import StrEnum
from typing import Any, Literal

from pydantic import BaseModel, Field

# Watermark used when a task has never completed.
BEGINNING_OF_TIME = datetime(1970, 1, 1, tzinfo=UTC)


class ScheduledTaskName(StrEnum):
    """Every recurring task the provider knows how to run."""

    RECALCULATE_SOLUTIONS = "RecalculateSolutions"
    EXPORT_COMMITMENTS = "ExportCommitments"


class ScheduledTaskStatus(StrEnum):
    RUNNING = "Running"
    COMPLETED = "Completed"
    FAILED = "Failed"


class ScheduledTaskRecord(BaseModel):
    """One run of a scheduled task. Records are appended, never deleted."""

    task_id: str
    process_name: ScheduledTaskName
    status: ScheduledTaskStatus
    started: datetime
    # Set on every status transition; the Completed value is the watermark.
    updated: datetime
    data: dict[str, Any] | None = None


CommitmentStatus = Literal["Pending", "Approved", "Disapproved"]


class CaptchaSolution(BaseModel):
    """A user's answer to one captcha: the indices of the items they selected."""

    captcha_id: str
    solution: list[int] = Field(default_factory=list)


class CommitmentRecord(BaseModel):
    """Human-solved commitment collected by the provider."""

    id: str
    user: str
    dapp: str
    dataset_id: str
    status: CommitmentStatus = "Pending"
    requested_at_block: int = Field(default=0, ge=0)
    solutions: list[CaptchaSolution] = Field(default_factory=list)
    resolved: bool = False
    stored: bool = False
    last_updated_timestamp: datetime


class PoWCommitmentRecord(BaseModel):
    """Proof-of-work challenge record. Exported as-is, never resolved."""

    # Encodes timestamp, user and dapp, e.g. "1712345678___user___dapp".
    challenge: str
    difficulty: int = Field(default=0, ge=0)
    checked: bool = False
    stored: bool = False
    last_updated_timestamp: datetime

    @property
    def user(self) -> str:
        parts = self.challenge.split("___")
        return parts[1] if len(parts) > 1 else ""

    @property
    def dapp(self) -> str:
        parts = self.challenge.split("___")
        return parts[2] if len(parts) > 2 else ""


class CaptchaItem(BaseModel):
    type: Literal["image", "text"]
    data: str
    hash: str = ""


class Captcha(BaseModel):
    """One captcha specification inside a dataset."""

    captcha_id: str = ""
    target: str
    salt: str = ""
    items: list[CaptchaItem]
    # None marks the captcha as unsolved.
    solution: list[int] | None = None

    @property
    def solved(self) -> bool:
        return self.solution is not None


class Dataset(BaseModel):
    """Fingerprinted captcha dataset as persisted by the store."""

    dataset_id: str
    dataset_content_id: str
    format: str = "SelectAll"
    captchas: list[Captcha] = Field(default_factory=list)

    def solved_captchas(self) -> list[Captcha]:
        return [captcha for captcha in self.captchas if captcha.solved]

    def unsolved_captchas(self) -> list[Captcha]:
        return [captcha for captcha in self.captchas if not captcha.solved]
