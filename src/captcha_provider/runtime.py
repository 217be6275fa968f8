"""Build the store, sink and tasks from settings."""

from __future__ import annotations

from collections.abc import Callable
from dataclasses import dataclass, field

from captcha_provider.config.settings import Settings
from captcha_provider.datasets.ingest import DatasetManager
from captcha_provider.sinks.base import CommitmentSink
from captcha_provider.sinks.postgres import PostgresCommitmentSink
from captcha_provider.storage.base import CommitmentStore
from captcha_provider.storage.models import ScheduledTaskName
from captcha_provider.storage.postgres import PostgresCommitmentStore
from captcha_provider.tasks.coordinator import ScheduledTaskCoordinator, TaskRunSummary
from captcha_provider.tasks.export import ExportCommitmentsTask
from captcha_provider.tasks.solutions import CalculateSolutionsTask


@dataclass(slots=True)
class ProviderRuntime:
    settings: Settings
    store: CommitmentStore
    sink: CommitmentSink | None = None
    on_content_changed: Callable[[str], None] | None = None
    coordinator: ScheduledTaskCoordinator = field(init=False)

    def __post_init__(self) -> None:
        self.coordinator = ScheduledTaskCoordinator(
            self.store,
            running_task_stale_after_s=self.settings.scheduler.running_task_stale_after_s,
        )

    def export_task(self) -> ExportCommitmentsTask:
        if self.sink is None:
            self.sink = PostgresCommitmentSink()
        return ExportCommitmentsTask(
            store=self.store,
            sink=self.sink,
            destination_uri=self.settings.external_sink_uri,
            coordinator=self.coordinator,
        )

    def solutions_task(self) -> CalculateSolutionsTask:
        return CalculateSolutionsTask(
            store=self.store,
            config=self.settings.captcha_solutions,
            coordinator=self.coordinator,
            on_content_changed=self.on_content_changed,
        )

    def dataset_manager(self) -> DatasetManager:
        return DatasetManager(store=self.store, config=self.settings.captchas)

    def run_task(
        self,
        task_name: ScheduledTaskName,
        *,
        reference_block: int | None = None,
    ) -> TaskRunSummary:
        if task_name == ScheduledTaskName.EXPORT_COMMITMENTS:
            return self.export_task().run()
        if task_name == ScheduledTaskName.RECALCULATE_SOLUTIONS:
            return self.solutions_task().run(reference_block=reference_block)
        raise ValueError(f"Unknown scheduled task: {task_name}")


def build_runtime(
    settings: Settings,
    *,
    store: CommitmentStore | None = None,
    sink: CommitmentSink | None = None,
) -> ProviderRuntime:
    if store is None:
        database_url = settings.resolved_database_url()
        if not database_url:
            raise RuntimeError(
                "Missing database URL. Set CAPTCHA_PROVIDER_DATABASE_URL "
                "or CAPTCHA_PROVIDER_DB_URL."
            )
        store = PostgresCommitmentStore(database_url)
        store.migrate()
    return ProviderRuntime(settings=settings, store=store, sink=sink)
