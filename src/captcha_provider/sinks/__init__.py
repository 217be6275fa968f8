"""External sinks that receive exported commitments."""

from captcha_provider.sinks.base import CommitmentSink
from captcha_provider.sinks.memory import InMemoryCommitmentSink
from captcha_provider.sinks.postgres import PostgresCommitmentSink

__all__ = [
    "CommitmentSink",
    "InMemoryCommitmentSink",
    "PostgresCommitmentSink",
]
