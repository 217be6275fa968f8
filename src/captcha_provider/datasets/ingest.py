"""Validate, fingerprint and store raw captcha datasets."""

from __future__ import annotations

import logging
from collections.abc import Mapping
from pathlib import Path
from typing import Any, Literal

from pydantic import BaseModel, ConfigDict, Field, ValidationError, model_validator

from captcha_provider.config.settings import CaptchaCountsConfig
from captcha_provider.datasets import fingerprint
from captcha_provider.errors import DatasetValidationError, StoreWriteError
from captcha_provider.storage.base import CommitmentStore
from captcha_provider.storage.models import Captcha, CaptchaItem, Dataset

logger = logging.getLogger(__name__)


class StrictModel(BaseModel):
    """Raw input model that rejects unknown fields."""

    model_config = ConfigDict(extra="forbid")


class RawCaptchaItem(StrictModel):
    type: Literal["image", "text"]
    data: str = Field(min_length=1)


class RawCaptcha(StrictModel):
    target: str = Field(min_length=1)
    salt: str = ""
    items: list[RawCaptchaItem] = Field(min_length=1)
    solution: list[int] | None = None

    @model_validator(mode="after")
    def _solution_indexes_items(self) -> "RawCaptcha":
        if self.solution is None:
            return self
        for index in self.solution:
            if index < 0 or index >= len(self.items):
                raise ValueError(
                    f"solution index {index} is out of range for {len(self.items)} items"
                )
        return self


class RawDataset(StrictModel):
    format: str = "SelectAll"
    captchas: list[RawCaptcha]


def parse_raw_dataset(raw: Mapping[str, Any] | str | Path) -> RawDataset:
    """Parse a dataset from a mapping, a JSON string or a JSON file path."""
    try:
        if isinstance(raw, Path):
            return RawDataset.model_validate_json(raw.read_text(encoding="utf-8"))
        if isinstance(raw, str):
            return RawDataset.model_validate_json(raw)
        return RawDataset.model_validate(dict(raw))
    except (ValidationError, OSError) as exc:
        raise DatasetValidationError("format", detail=f"Invalid dataset: {exc}") from exc


def build_dataset(raw: RawDataset) -> Dataset:
    captchas = [
        fingerprint.with_hashes(
            Captcha(
                target=item.target,
                salt=item.salt,
                items=[CaptchaItem(type=entry.type, data=entry.data) for entry in item.items],
                solution=sorted(set(item.solution)) if item.solution is not None else None,
            )
        )
        for item in raw.captchas
    ]
    return Dataset(
        dataset_id=fingerprint.dataset_id(captchas),
        dataset_content_id=fingerprint.dataset_content_id(captchas),
        format=raw.format,
        captchas=captchas,
    )


def validate_dataset(raw: RawDataset, solved_count: int, unsolved_count: int) -> Dataset:
    """Check solved/unsolved thresholds and return the fingerprinted dataset."""
    solved = sum(1 for captcha in raw.captchas if captcha.solution is not None)
    unsolved = len(raw.captchas) - solved
    if solved < solved_count:
        raise DatasetValidationError("solved", required=solved_count, actual=solved)
    if unsolved < unsolved_count:
        raise DatasetValidationError("unsolved", required=unsolved_count, actual=unsolved)
    return build_dataset(raw)


def ingest(
    raw: Mapping[str, Any] | str | Path | RawDataset,
    config: CaptchaCountsConfig,
) -> Dataset:
    parsed = raw if isinstance(raw, RawDataset) else parse_raw_dataset(raw)
    return validate_dataset(parsed, config.solved.count, config.unsolved.count)


class DatasetManager:
    """Accept a provider dataset and persist it to the commitment store."""

    def __init__(self, *, store: CommitmentStore, config: CaptchaCountsConfig) -> None:
        self.store = store
        self.config = config

    def set_dataset(self, raw: Mapping[str, Any] | str | Path | RawDataset) -> Dataset:
        dataset = ingest(raw, self.config)
        try:
            self.store.store_dataset(dataset)
        except Exception as exc:
            raise StoreWriteError(f"Failed to store dataset {dataset.dataset_id}") from exc
        logger.info(
            "dataset stored id=%s content_id=%s captchas=%d solved=%d",
            dataset.dataset_id,
            dataset.dataset_content_id,
            len(dataset.captchas),
            len(dataset.solved_captchas()),
        )
        return dataset

    def set_dataset_from_file(self, path: str | Path) -> Dataset:
        return self.set_dataset(Path(path))

