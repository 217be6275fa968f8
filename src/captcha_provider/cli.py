"""Command line entrypoint for the captcha provider's scheduled tasks."""

from __future__ import annotations

import argparse
import json
import logging
import sys
from pathlib import Path

from captcha_provider.config.settings import Settings, get_settings
from captcha_provider.errors import DatasetValidationError
from captcha_provider.runtime import ProviderRuntime, build_runtime
from captcha_provider.storage.models import ScheduledTaskName
from captcha_provider.tasks.scheduler import ScheduleConfig, TaskScheduler, parse_every


def _interval(raw: str) -> int:
    try:
        return parse_every(raw)
    except ValueError:
        raise argparse.ArgumentTypeError(
            f"invalid interval {raw!r}, expected e.g. 30s, 5m, 1h or plain seconds"
        ) from None


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="captcha-provider",
        description="Run captcha provider dataset and scheduled task commands.",
    )
    sub = parser.add_subparsers(dest="command", required=True)

    ingest_p = sub.add_parser("ingest-dataset", help="Validate and store a captcha dataset.")
    ingest_p.add_argument(
        "--file",
        type=Path,
        default=None,
        help="Dataset JSON path. Defaults to captcha_solutions.captcha_file_path.",
    )

    export_p = sub.add_parser(
        "export-commitments",
        help="Export unstored commitments to the external sink.",
    )
    export_p.add_argument(
        "--every", type=_interval, default=None, help="Repeat interval, e.g. 30s, 5m, 1h."
    )
    export_p.add_argument("--max-runs", type=int, default=None)

    solutions_p = sub.add_parser(
        "calculate-solutions",
        help="Recalculate solutions for unsolved captchas.",
    )
    solutions_p.add_argument(
        "--every", type=_interval, default=None, help="Repeat interval, e.g. 30s, 5m, 1h."
    )
    solutions_p.add_argument("--max-runs", type=int, default=None)
    solutions_p.add_argument("--reference-block", type=int, default=None)

    history_p = sub.add_parser("task-history", help="Show recent runs of a scheduled task.")
    history_p.add_argument("task_name", choices=[name.value for name in ScheduledTaskName])
    history_p.add_argument("--limit", type=int, default=20)

    return parser


def _run_scheduled(
    runtime: ProviderRuntime,
    task_name: ScheduledTaskName,
    *,
    every: int | None,
    max_runs: int | None,
    reference_block: int | None = None,
) -> int:
    scheduler = TaskScheduler(
        lambda: runtime.run_task(task_name, reference_block=reference_block),
        ScheduleConfig(every_seconds=every, max_runs=max_runs),
    )
    failed = False
    for summary in scheduler.run():
        if summary is None:
            print(json.dumps({"task": str(task_name), "status": "AlreadyRunning"}))
            failed = True
            continue
        print(summary.model_dump_json())
        failed = failed or summary.error is not None
    return 1 if failed else 0


def main(
    argv: list[str] | None = None,
    *,
    runtime: ProviderRuntime | None = None,
    settings: Settings | None = None,
) -> int:
    parser = build_parser()
    args = parser.parse_args(argv)
    settings = settings or (runtime.settings if runtime else get_settings())
    logging.basicConfig(
        level=getattr(logging, settings.log_level.upper(), logging.INFO),
        format="%(asctime)s %(levelname)s %(name)s %(message)s",
    )
    runtime = runtime or build_runtime(settings)

    if args.command == "ingest-dataset":
        path = args.file or (
            Path(settings.captcha_solutions.captcha_file_path)
            if settings.captcha_solutions.captcha_file_path
            else None
        )
        if path is None:
            parser.error("--file is required when captcha_solutions.captcha_file_path is unset")
        try:
            dataset = runtime.dataset_manager().set_dataset_from_file(path)
        except DatasetValidationError as exc:
            print(json.dumps({"error": str(exc), "category": exc.category}))
            return 1
        print(
            json.dumps(
                {
                    "datasetId": dataset.dataset_id,
                    "datasetContentId": dataset.dataset_content_id,
                    "captchas": len(dataset.captchas),
                }
            )
        )
        return 0

    if args.command == "export-commitments":
        return _run_scheduled(
            runtime,
            ScheduledTaskName.EXPORT_COMMITMENTS,
            every=args.every,
            max_runs=args.max_runs,
        )

    if args.command == "calculate-solutions":
        return _run_scheduled(
            runtime,
            ScheduledTaskName.RECALCULATE_SOLUTIONS,
            every=args.every,
            max_runs=args.max_runs,
            reference_block=args.reference_block,
        )

    if args.command == "task-history":
        records = runtime.store.list_scheduled_task_statuses(
            ScheduledTaskName(args.task_name), args.limit
        )
        print(json.dumps([record.model_dump(mode="json") for record in records]))
        return 0

    parser.print_help()
    return 1


if __name__ == "__main__":
    sys.exit(main())
