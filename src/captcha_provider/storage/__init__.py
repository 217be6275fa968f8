"""Commitment store backends and records."""

from captcha_provider.storage.base import CommitmentStore
from captcha_provider.storage.memory import InMemoryCommitmentStore
from captcha_provider.storage.models import (
    BEGINNING_OF_TIME,
    Captcha,
    CaptchaItem,
    CaptchaSolution,
    CommitmentRecord,
    Dataset,
    PoWCommitmentRecord,
    ScheduledTaskName,
    ScheduledTaskRecord,
    ScheduledTaskStatus,
)
from captcha_provider.storage.postgres import PostgresCommitmentStore

__all__ = [
    "BEGINNING_OF_TIME",
    "Captcha",
    "CaptchaItem",
    "CaptchaSolution",
    "CommitmentRecord",
    "CommitmentStore",
    "Dataset",
    "InMemoryCommitmentStore",
    "PoWCommitmentRecord",
    "PostgresCommitmentStore",
    "ScheduledTaskName",
    "ScheduledTaskRecord",
    "ScheduledTaskStatus",
]
