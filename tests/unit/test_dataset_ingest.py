import json

import pytest

from captcha_provider.config.settings import CaptchaCountsConfig
from captcha_provider.datasets.ingest import DatasetManager, ingest
from captcha_provider.errors import DatasetValidationError
from captcha_provider.storage.memory import InMemoryCommitmentStore


def _counts(solved: int, unsolved: int) -> CaptchaCountsConfig:
    return CaptchaCountsConfig.model_validate(
        {"solved": {"count": solved}, "unsolved": {"count": unsolved}}
    )


def test_ingest_accepts_dataset_meeting_thresholds(raw_dataset) -> None:
    dataset = ingest(raw_dataset(5, 5), _counts(5, 5))

    assert len(dataset.captchas) == 10
    assert len(dataset.solved_captchas()) == 5
    assert len(dataset.unsolved_captchas()) == 5
    assert dataset.dataset_id
    assert dataset.dataset_content_id
    assert all(captcha.captcha_id for captcha in dataset.captchas)
    assert all(item.hash for item in dataset.captchas[0].items)


def test_ingest_rejects_unsolved_shortfall(raw_dataset) -> None:
    with pytest.raises(DatasetValidationError, match="unsolved") as exc_info:
        ingest(raw_dataset(5, 1), _counts(5, 5))

    assert exc_info.value.category == "unsolved"
    assert exc_info.value.required == 5
    assert exc_info.value.actual == 1


def test_ingest_rejects_solved_shortfall(raw_dataset) -> None:
    with pytest.raises(DatasetValidationError) as exc_info:
        ingest(raw_dataset(2, 5), _counts(5, 5))

    assert exc_info.value.category == "solved"
    assert exc_info.value.actual == 2


def test_reingesting_unchanged_dataset_is_stable(raw_dataset) -> None:
    first = ingest(raw_dataset(5, 5), _counts(5, 5))
    second = ingest(raw_dataset(5, 5), _counts(5, 5))

    assert first.dataset_id == second.dataset_id
    assert first.dataset_content_id == second.dataset_content_id


def test_solution_changes_affect_content_id_only(raw_dataset) -> None:
    original = ingest(raw_dataset(5, 5), _counts(5, 4))
    resolved = ingest(raw_dataset(5, 5, solutions={7: [1, 3]}), _counts(5, 4))

    assert resolved.dataset_id == original.dataset_id
    assert resolved.dataset_content_id != original.dataset_content_id


def test_solution_order_does_not_change_fingerprint(raw_dataset) -> None:
    ordered = ingest(raw_dataset(5, 5, solutions={0: [1, 3]}), _counts(5, 5))
    shuffled = ingest(raw_dataset(5, 5, solutions={0: [3, 1, 3]}), _counts(5, 5))

    assert ordered.dataset_content_id == shuffled.dataset_content_id


def test_reordering_captchas_changes_dataset_id(raw_dataset) -> None:
    raw = raw_dataset(5, 5)
    reordered = dict(raw, captchas=list(reversed(raw["captchas"])))

    assert ingest(raw, _counts(5, 5)).dataset_id != ingest(reordered, _counts(5, 5)).dataset_id


def test_malformed_dataset_is_a_format_error() -> None:
    with pytest.raises(DatasetValidationError) as exc_info:
        ingest({"captchas": [{"target": "dog", "items": []}]}, _counts(1, 0))

    assert exc_info.value.category == "format"


def test_out_of_range_solution_is_a_format_error(raw_dataset) -> None:
    raw = raw_dataset(5, 5, solutions={0: [9]})

    with pytest.raises(DatasetValidationError) as exc_info:
        ingest(raw, _counts(5, 5))

    assert exc_info.value.category == "format"


def test_unknown_captcha_field_is_a_format_error(raw_dataset) -> None:
    raw = raw_dataset(5, 5)
    raw["captchas"][0]["answer"] = [1]

    with pytest.raises(DatasetValidationError) as exc_info:
        ingest(raw, _counts(5, 5))

    assert exc_info.value.category == "format"


def test_dataset_manager_stores_dataset_from_file(tmp_path, raw_dataset) -> None:
    path = tmp_path / "dataset.json"
    path.write_text(json.dumps(raw_dataset(5, 5)), encoding="utf-8")
    store = InMemoryCommitmentStore()

    dataset = DatasetManager(store=store, config=_counts(5, 5)).set_dataset_from_file(path)

    stored = store.get_dataset()
    assert stored is not None
    assert stored.dataset_id == dataset.dataset_id
    assert stored.dataset_content_id == dataset.dataset_content_id


def test_dataset_manager_does_not_store_rejected_dataset(raw_dataset) -> None:
    store = InMemoryCommitmentStore()

    with pytest.raises(DatasetValidationError):
        DatasetManager(store=store, config=_counts(5, 5)).set_dataset(raw_dataset(5, 1))

    assert store.get_dataset() is None
