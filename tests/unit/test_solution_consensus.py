from captcha_provider.config.settings import CaptchaCountsConfig, CaptchaSolutionConfig
from captcha_provider.datasets.ingest import ingest
from captcha_provider.storage.memory import InMemoryCommitmentStore
from captcha_provider.storage.models import ScheduledTaskName, ScheduledTaskStatus
from captcha_provider.tasks.solutions import (
    CalculateSolutionsTask,
    Vote,
    calculate_solution,
    collect_votes,
    normalize_answer,
    recalculate,
)

A = (0, 1)
B = (2,)
C = (3,)


def _config(**overrides) -> CaptchaSolutionConfig:
    values = {
        "required_number_of_solutions": 2,
        "solution_winning_percentage": 60,
        "captcha_block_recency": 10,
    }
    values.update(overrides)
    return CaptchaSolutionConfig(**values)


def _votes(*answers: tuple[int, ...]) -> list[Vote]:
    return [Vote(commitment_id=f"c{index}", answer=answer) for index, answer in enumerate(answers)]


def _dataset(raw_dataset, solved: int = 2, unsolved: int = 2):
    counts = CaptchaCountsConfig.model_validate(
        {"solved": {"count": solved}, "unsolved": {"count": unsolved}}
    )
    return ingest(raw_dataset(solved, unsolved), counts)


def test_majority_at_threshold_resolves() -> None:
    outcome = calculate_solution("x", _votes(A, A, A, B, B), _config())

    assert outcome.resolved
    assert outcome.solution == A
    assert outcome.leader_votes == 3
    assert outcome.total_votes == 5


def test_no_answer_reaching_threshold_stays_unsolved() -> None:
    outcome = calculate_solution("x", _votes(A, A, B, B, C), _config())

    assert not outcome.resolved
    assert outcome.reason == "insufficient_margin"
    assert outcome.solution is None


def test_single_commitment_is_below_minimum_sample() -> None:
    outcome = calculate_solution("x", _votes(A), _config(solution_winning_percentage=50))

    assert outcome.reason == "insufficient_samples"
    assert outcome.total_votes == 1


def test_exact_tie_at_threshold_stays_unsolved() -> None:
    outcome = calculate_solution("x", _votes(A, A, B, B), _config(solution_winning_percentage=50))

    assert outcome.reason == "tie"


def test_answers_compare_as_sets_of_indices() -> None:
    assert normalize_answer([3, 1, 1]) == (1, 3)


def test_collect_votes_filters_stale_and_disapproved(make_commitment) -> None:
    commitments = [
        make_commitment("fresh", answers={"x": [1, 0]}, block=100),
        make_commitment("edge", answers={"x": [0, 1]}, block=91),
        make_commitment("stale", answers={"x": [2]}, block=90),
        make_commitment("rejected", answers={"x": [2]}, status="Disapproved", block=100),
        make_commitment("other", answers={"y": [2]}, block=100),
    ]

    votes = collect_votes(["x"], commitments, captcha_block_recency=10, reference_block=100)

    assert [vote.commitment_id for vote in votes["x"]] == ["fresh", "edge"]
    assert {vote.answer for vote in votes["x"]} == {(0, 1)}


def test_commitment_votes_once_per_captcha(make_commitment) -> None:
    record = make_commitment("c1", answers={"x": [1]})
    record.solutions.append(record.solutions[0].model_copy(update={"solution": [2]}))

    votes = collect_votes(["x"], [record], captcha_block_recency=10, reference_block=100)

    assert len(votes["x"]) == 1
    assert votes["x"][0].answer == (1,)


def test_recalculate_changes_content_id_but_not_dataset_id(raw_dataset, make_commitment) -> None:
    dataset = _dataset(raw_dataset)
    target = dataset.unsolved_captchas()[0].captcha_id
    commitments = [
        make_commitment(f"c{index}", dataset_id=dataset.dataset_id, answers={target: [1]})
        for index in range(3)
    ]

    result = recalculate(dataset, commitments, _config())

    assert result.resolved_captcha_ids == [target]
    assert result.commitment_ids == ["c0", "c1", "c2"]
    assert result.dataset.dataset_id == dataset.dataset_id
    assert result.dataset.dataset_content_id != dataset.dataset_content_id
    resolved = next(c for c in result.dataset.captchas if c.captcha_id == target)
    assert resolved.solution == [1]
    original = next(c for c in dataset.captchas if c.captcha_id == target)
    assert original.solution is None


def test_recalculate_without_resolution_keeps_content_id(raw_dataset, make_commitment) -> None:
    dataset = _dataset(raw_dataset)
    target = dataset.unsolved_captchas()[0].captcha_id
    commitments = [
        make_commitment("c1", dataset_id=dataset.dataset_id, answers={target: [1]}),
    ]

    result = recalculate(dataset, commitments, _config())

    assert not result.content_changed
    assert result.dataset.dataset_content_id == dataset.dataset_content_id
    assert {outcome.reason for outcome in result.outcomes} == {"insufficient_samples"}


def test_recalculate_ignores_other_datasets_and_solved_captchas(
    raw_dataset, make_commitment
) -> None:
    dataset = _dataset(raw_dataset)
    solved = dataset.solved_captchas()[0].captcha_id
    unsolved = dataset.unsolved_captchas()[0].captcha_id
    commitments = [
        make_commitment("c1", dataset_id="other", answers={unsolved: [1]}),
        make_commitment("c2", dataset_id="other", answers={unsolved: [1]}),
        make_commitment("c3", dataset_id=dataset.dataset_id, answers={solved: [3]}),
        make_commitment("c4", dataset_id=dataset.dataset_id, answers={solved: [3]}),
    ]

    result = recalculate(dataset, commitments, _config())

    assert result.resolved_captcha_ids == []
    assert len(result.outcomes) == len(dataset.unsolved_captchas())


def test_calculate_solutions_task_persists_resolution(
    store: InMemoryCommitmentStore, raw_dataset, make_commitment
) -> None:
    dataset = _dataset(raw_dataset)
    store.store_dataset(dataset)
    target = dataset.unsolved_captchas()[0].captcha_id
    for index in range(3):
        store.add_commitment(
            make_commitment(f"c{index}", dataset_id=dataset.dataset_id, answers={target: [2, 3]})
        )
    notified: list[str] = []

    summary = CalculateSolutionsTask(
        store=store, config=_config(), on_content_changed=notified.append
    ).run()

    assert summary.ok
    assert summary.data["resolved"] == 1
    assert summary.data["notified"] is True
    stored = store.get_dataset(dataset.dataset_id)
    assert stored is not None
    assert stored.dataset_content_id == summary.data["datasetContentId"]
    assert notified == [stored.dataset_content_id]
    for index in range(3):
        record = store.get_commitment(f"c{index}")
        assert record.resolved
        assert not record.stored
    latest = store.get_last_scheduled_task_status(ScheduledTaskName.RECALCULATE_SOLUTIONS)
    assert latest.status == ScheduledTaskStatus.COMPLETED


def test_calculate_solutions_task_without_dataset_completes(
    store: InMemoryCommitmentStore,
) -> None:
    summary = CalculateSolutionsTask(store=store, config=_config()).run()

    assert summary.ok
    assert summary.data["resolved"] == 0
    assert summary.data["contentChanged"] is False


def test_calculate_solutions_task_honours_reference_block(
    store: InMemoryCommitmentStore, raw_dataset, make_commitment
) -> None:
    dataset = _dataset(raw_dataset)
    store.store_dataset(dataset)
    target = dataset.unsolved_captchas()[0].captcha_id
    for index in range(3):
        store.add_commitment(
            make_commitment(
                f"c{index}", dataset_id=dataset.dataset_id, answers={target: [1]}, block=100
            )
        )

    summary = CalculateSolutionsTask(store=store, config=_config()).run(reference_block=500)

    assert summary.ok
    assert summary.data["resolved"] == 0
    assert store.get_dataset().dataset_content_id == dataset.dataset_content_id
