from fastapi.testclient import TestClient

from captcha_provider.api.main import create_app
from captcha_provider.config.settings import Settings
from captcha_provider.sinks.memory import InMemoryCommitmentSink
from captcha_provider.storage.memory import InMemoryCommitmentStore
from captcha_provider.storage.models import ScheduledTaskName
from captcha_provider.tasks.coordinator import ScheduledTaskCoordinator


def _client(store, sink, settings: Settings) -> TestClient:
    return TestClient(create_app(store=store, sink=sink, settings_override=settings))


def test_health_endpoint(
    store: InMemoryCommitmentStore, sink: InMemoryCommitmentSink, settings: Settings
) -> None:
    response = _client(store, sink, settings).get("/health")

    assert response.status_code == 200
    assert response.json() == {"status": "ok", "service": "captcha-provider"}


def test_run_export_and_read_history(
    store: InMemoryCommitmentStore,
    sink: InMemoryCommitmentSink,
    settings: Settings,
    make_commitment,
) -> None:
    store.add_commitment(make_commitment("c1"))
    client = _client(store, sink, settings)

    run_resp = client.post("/tasks/ExportCommitments/run")
    assert run_resp.status_code == 200
    payload = run_resp.json()
    assert payload["status"] == "Completed"
    assert payload["data"]["commitments"] == ["c1"]

    latest_resp = client.get("/tasks/ExportCommitments")
    assert latest_resp.status_code == 200
    assert latest_resp.json()["task_id"] == payload["task_id"]

    history_resp = client.get("/tasks/ExportCommitments/history", params={"limit": 5})
    assert history_resp.status_code == 200
    assert [item["status"] for item in history_resp.json()] == ["Completed"]


def test_run_returns_conflict_while_task_is_running(
    store: InMemoryCommitmentStore, sink: InMemoryCommitmentSink, settings: Settings
) -> None:
    ScheduledTaskCoordinator(store).begin(ScheduledTaskName.RECALCULATE_SOLUTIONS)

    response = _client(store, sink, settings).post("/tasks/RecalculateSolutions/run")

    assert response.status_code == 409


def test_unknown_task_name_is_not_found(
    store: InMemoryCommitmentStore, sink: InMemoryCommitmentSink, settings: Settings
) -> None:
    client = _client(store, sink, settings)

    assert client.post("/tasks/DropEverything/run").status_code == 404
    assert client.get("/tasks/DropEverything/history").status_code == 404


def test_latest_task_is_not_found_before_first_run(
    store: InMemoryCommitmentStore, sink: InMemoryCommitmentSink, settings: Settings
) -> None:
    response = _client(store, sink, settings).get("/tasks/RecalculateSolutions")

    assert response.status_code == 404
