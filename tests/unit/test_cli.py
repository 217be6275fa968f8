import json

import pytest

from captcha_provider.cli import main
from captcha_provider.config.settings import Settings
from captcha_provider.runtime import ProviderRuntime
from captcha_provider.sinks.memory import InMemoryCommitmentSink
from captcha_provider.storage.memory import InMemoryCommitmentStore
from captcha_provider.storage.models import ScheduledTaskName
from captcha_provider.tasks.coordinator import ScheduledTaskCoordinator


def _runtime(store, sink, settings: Settings) -> ProviderRuntime:
    return ProviderRuntime(settings=settings, store=store, sink=sink)


def test_ingest_dataset_command(tmp_path, capsys, store, sink, settings, raw_dataset) -> None:
    path = tmp_path / "dataset.json"
    path.write_text(json.dumps(raw_dataset(5, 5)), encoding="utf-8")

    runtime = _runtime(store, sink, settings)
    exit_code = main(["ingest-dataset", "--file", str(path)], runtime=runtime)

    assert exit_code == 0
    output = json.loads(capsys.readouterr().out.strip().splitlines()[-1])
    assert output["captchas"] == 10
    assert store.get_dataset().dataset_id == output["datasetId"]


def test_ingest_dataset_command_reports_shortfall(
    tmp_path, capsys, store, sink, settings, raw_dataset
) -> None:
    path = tmp_path / "dataset.json"
    path.write_text(json.dumps(raw_dataset(5, 1)), encoding="utf-8")

    runtime = _runtime(store, sink, settings)
    exit_code = main(["ingest-dataset", "--file", str(path)], runtime=runtime)

    assert exit_code == 1
    output = json.loads(capsys.readouterr().out.strip().splitlines()[-1])
    assert output["category"] == "unsolved"


def test_export_commitments_command(capsys, store, sink, settings, make_commitment) -> None:
    store.add_commitment(make_commitment("c1"))

    exit_code = main(["export-commitments"], runtime=_runtime(store, sink, settings))

    assert exit_code == 0
    output = json.loads(capsys.readouterr().out.strip().splitlines()[-1])
    assert output["status"] == "Completed"
    assert output["data"]["commitments"] == ["c1"]


def test_calculate_solutions_command_reports_already_running(
    capsys, store, sink, settings
) -> None:
    ScheduledTaskCoordinator(store).begin(ScheduledTaskName.RECALCULATE_SOLUTIONS)

    exit_code = main(["calculate-solutions"], runtime=_runtime(store, sink, settings))

    assert exit_code == 1
    output = json.loads(capsys.readouterr().out.strip().splitlines()[-1])
    assert output == {"task": "RecalculateSolutions", "status": "AlreadyRunning"}


def test_task_history_command(capsys, store, sink, settings) -> None:
    runtime = _runtime(store, sink, settings)
    main(["calculate-solutions"], runtime=runtime)
    capsys.readouterr()

    exit_code = main(["task-history", "RecalculateSolutions"], runtime=runtime)

    assert exit_code == 0
    history = json.loads(capsys.readouterr().out.strip().splitlines()[-1])
    assert [item["status"] for item in history] == ["Completed"]
    assert history[0]["process_name"] == "RecalculateSolutions"


def test_invalid_interval_is_a_usage_error(capsys, store, sink, settings) -> None:
    runtime = _runtime(store, sink, settings)

    with pytest.raises(SystemExit) as exc_info:
        main(["export-commitments", "--every", "abc"], runtime=runtime)

    assert exc_info.value.code == 2
    assert "invalid interval 'abc'" in capsys.readouterr().err
    assert store.list_scheduled_task_statuses(ScheduledTaskName.EXPORT_COMMITMENTS) == []
