"""Majority-vote recalculation of solutions for unsolved captchas.

The vote functions are pure: they take commitments already read from the
store and return a classification per captcha. ``CalculateSolutionsTask``
wraps them in a scheduled run that reads and writes the store.
"""

from __future__ import annotations

import logging
from collections import Counter
from collections.abc import Callable, Iterable, Sequence
from dataclasses import dataclass, field
from typing import Any, Literal

from captcha_provider.config.settings import CaptchaSolutionConfig
from captcha_provider.datasets import fingerprint
from captcha_provider.errors import StoreReadError, StoreWriteError
from captcha_provider.storage.base import CommitmentStore
from captcha_provider.storage.models import CommitmentRecord, Dataset, ScheduledTaskName
from captcha_provider.tasks.coordinator import (
    ScheduledTaskCoordinator,
    TaskHandle,
    TaskRunSummary,
)

logger = logging.getLogger(__name__)

Answer = tuple[int, ...]
OutcomeReason = Literal["resolved", "insufficient_samples", "insufficient_margin", "tie"]


@dataclass(slots=True, frozen=True)
class Vote:
    commitment_id: str
    answer: Answer


@dataclass(slots=True, frozen=True)
class ConsensusOutcome:
    captcha_id: str
    reason: OutcomeReason
    total_votes: int
    leader_votes: int = 0
    solution: Answer | None = None

    @property
    def resolved(self) -> bool:
        return self.reason == "resolved"


@dataclass(slots=True)
class RecalculationResult:
    dataset: Dataset
    outcomes: list[ConsensusOutcome] = field(default_factory=list)
    resolved_captcha_ids: list[str] = field(default_factory=list)
    # Commitments that voted on a captcha that got resolved.
    commitment_ids: list[str] = field(default_factory=list)

    @property
    def content_changed(self) -> bool:
        return bool(self.resolved_captcha_ids)


def normalize_answer(solution: Iterable[int]) -> Answer:
    return tuple(sorted(set(solution)))


def reference_block_for(commitments: Sequence[CommitmentRecord]) -> int:
    return max((record.requested_at_block for record in commitments), default=0)


def collect_votes(
    captcha_ids: Iterable[str],
    commitments: Sequence[CommitmentRecord],
    *,
    captcha_block_recency: int,
    reference_block: int,
) -> dict[str, list[Vote]]:
    """Group eligible answers by captcha, one vote per commitment."""
    wanted = set(captcha_ids)
    votes: dict[str, list[Vote]] = {captcha_id: [] for captcha_id in wanted}
    seen: set[tuple[str, str]] = set()
    for record in commitments:
        if record.status == "Disapproved":
            continue
        if reference_block - record.requested_at_block >= captcha_block_recency:
            continue
        for item in record.solutions:
            if item.captcha_id not in wanted:
                continue
            key = (item.captcha_id, record.id)
            if key in seen:
                continue
            seen.add(key)
            votes[item.captcha_id].append(
                Vote(commitment_id=record.id, answer=normalize_answer(item.solution))
            )
    return votes


def calculate_solution(
    captcha_id: str,
    votes: Sequence[Vote],
    config: CaptchaSolutionConfig,
) -> ConsensusOutcome:
    """Classify one captcha from its eligible votes."""
    total = len({vote.commitment_id for vote in votes})
    if total < config.required_number_of_solutions:
        return ConsensusOutcome(
            captcha_id=captcha_id,
            reason="insufficient_samples",
            total_votes=total,
        )

    ranked = Counter(vote.answer for vote in votes).most_common()
    leader, leader_votes = ranked[0]
    runner_up_votes = ranked[1][1] if len(ranked) > 1 else 0
    if leader_votes * 100 < config.solution_winning_percentage * total:
        return ConsensusOutcome(
            captcha_id=captcha_id,
            reason="insufficient_margin",
            total_votes=total,
            leader_votes=leader_votes,
        )
    if leader_votes == runner_up_votes:
        return ConsensusOutcome(
            captcha_id=captcha_id,
            reason="tie",
            total_votes=total,
            leader_votes=leader_votes,
        )
    return ConsensusOutcome(
        captcha_id=captcha_id,
        reason="resolved",
        total_votes=total,
        leader_votes=leader_votes,
        solution=leader,
    )


def recalculate(
    dataset: Dataset,
    commitments: Sequence[CommitmentRecord],
    config: CaptchaSolutionConfig,
    *,
    reference_block: int | None = None,
) -> RecalculationResult:
    """Resolve unsolved captchas in ``dataset`` by majority vote.

    Returns a new dataset; the input is not modified. ``dataset_content_id`` is
    recomputed only when at least one captcha was resolved.
    """
    relevant = [record for record in commitments if record.dataset_id == dataset.dataset_id]
    if reference_block is None:
        reference_block = reference_block_for(relevant)

    unsolved_ids = [captcha.captcha_id for captcha in dataset.unsolved_captchas()]
    votes = collect_votes(
        unsolved_ids,
        relevant,
        captcha_block_recency=config.captcha_block_recency,
        reference_block=reference_block,
    )

    updated = dataset.model_copy(deep=True)
    result = RecalculationResult(dataset=updated)
    voters: set[str] = set()
    for captcha in updated.captchas:
        if captcha.solved:
            continue
        captcha_votes = votes.get(captcha.captcha_id, [])
        outcome = calculate_solution(captcha.captcha_id, captcha_votes, config)
        result.outcomes.append(outcome)
        if not outcome.resolved or outcome.solution is None:
            continue
        captcha.solution = list(outcome.solution)
        result.resolved_captcha_ids.append(captcha.captcha_id)
        voters.update(vote.commitment_id for vote in captcha_votes)

    if result.resolved_captcha_ids:
        updated.dataset_content_id = fingerprint.dataset_content_id(updated.captchas)
    result.commitment_ids = sorted(voters)
    return result


class CalculateSolutionsTask:
    """Scheduled recalculation of the stored dataset's unsolved captchas."""

    task_name = ScheduledTaskName.RECALCULATE_SOLUTIONS

    def __init__(
        self,
        *,
        store: CommitmentStore,
        config: CaptchaSolutionConfig,
        coordinator: ScheduledTaskCoordinator | None = None,
        on_content_changed: Callable[[str], None] | None = None,
    ) -> None:
        self.store = store
        self.config = config
        self.coordinator = coordinator or ScheduledTaskCoordinator(store)
        self.on_content_changed = on_content_changed

    def run(self, *, reference_block: int | None = None) -> TaskRunSummary:
        summary = self.coordinator.execute(
            self.task_name,
            lambda handle: self._recalculate(handle, reference_block),
        )
        if summary.ok and summary.data.get("contentChanged") and self.on_content_changed:
            try:
                self.on_content_changed(summary.data["datasetContentId"])
                summary.data["notified"] = True
            except Exception:
                logger.exception(
                    "dataset content change notification failed content_id=%s",
                    summary.data["datasetContentId"],
                )
                summary.data["notified"] = False
        return summary

    def _recalculate(self, handle: TaskHandle, reference_block: int | None) -> dict[str, Any]:
        try:
            dataset = self.store.get_dataset()
            commitments = (
                self.store.get_dataset_commitments(dataset.dataset_id) if dataset else []
            )
        except Exception as exc:
            raise StoreReadError("Failed to read dataset or commitments") from exc

        if dataset is None:
            logger.info("solution recalculation skipped id=%s reason=no_dataset", handle.task_id)
            return {"resolved": 0, "captchaIds": [], "contentChanged": False}

        result = recalculate(dataset, commitments, self.config, reference_block=reference_block)
        reasons = Counter(outcome.reason for outcome in result.outcomes)

        if result.content_changed:
            try:
                self.store.store_dataset(result.dataset)
                self.store.mark_commitments_resolved(result.commitment_ids)
            except Exception as exc:
                raise StoreWriteError(
                    f"Failed to store resolved dataset {dataset.dataset_id}"
                ) from exc

        logger.info(
            "solution recalculation id=%s dataset_id=%s unsolved=%d resolved=%d",
            handle.task_id,
            dataset.dataset_id,
            len(result.outcomes),
            len(result.resolved_captcha_ids),
        )
        return {
            "resolved": len(result.resolved_captcha_ids),
            "captchaIds": result.resolved_captcha_ids,
            "commitments": result.commitment_ids,
            "outcomes": dict(reasons),
            "datasetId": result.dataset.dataset_id,
            "datasetContentId": result.dataset.dataset_content_id,
            "previousDatasetContentId": dataset.dataset_content_id,
            "contentChanged": result.content_changed,
        }
