"""Dataset validation, ingest and fingerprinting."""

from captcha_provider.datasets.fingerprint import dataset_content_id, dataset_id
from captcha_provider.datasets.ingest import (
    DatasetManager,
    RawDataset,
    ingest,
    parse_raw_dataset,
    validate_dataset,
)

__all__ = [
    "DatasetManager",
    "RawDataset",
    "dataset_content_id",
    "dataset_id",
    "ingest",
    "parse_raw_dataset",
    "validate_dataset",
]
