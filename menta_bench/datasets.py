"""Load labelled posts from CSV or JSON files for a task."""

from __future__ import annotations

import csv
import json
import logging
from collections.abc import Iterable, Mapping
from dataclasses import dataclass
from pathlib import Path
from typing import Any

from .errors import ConfigError
from .tasks import TaskConfig

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class DatasetItem:
    """One labelled post.

    Attributes:
        id: Stable identifier, ``<task>_<row id or index>``
        text: Post text inserted into the prompt
        expected: Class label from ``task.class_names``
    """

    id: str
    text: str
    expected: str


def item_from_record(record: Mapping[str, Any], task: TaskConfig, index: int) -> DatasetItem:
    """Build an item from one raw row using the task's columns and label map."""
    parts = [str(record.get(col) or "") for col in task.text_columns]
    text = "\n\n".join(parts).strip()
    raw_label = record.get(task.label_column)
    expected = task.map_label(None if raw_label is None else str(raw_label))
    if not text:
        logger.warning("Empty text for row %d of %s", index, task.task_type.value)
        expected = task.default_value
    row_id = record.get("id") or index
    return DatasetItem(id=f"{task.task_type.value}_{row_id}", text=text, expected=expected)


def items_from_records(
    records: Iterable[Mapping[str, Any]],
    task: TaskConfig,
    max_samples: int | None = None,
) -> list[DatasetItem]:
    items: list[DatasetItem] = []
    for index, record in enumerate(records):
        if max_samples is not None and len(items) >= max_samples:
            break
        items.append(item_from_record(record, task, index))
    return items


def load_dataset(path: str | Path, task: TaskConfig, max_samples: int | None = None) -> list[DatasetItem]:
    """Read a ``.csv`` or ``.json`` dataset.

    JSON files hold either a list of records or an object with a ``data``
    list. CSV files need a header row.

    Raises:
        ConfigError: Missing file or unsupported format.
    """
    path = Path(path)
    if not path.is_file():
        raise ConfigError(f"Dataset file not found: {path}")

    suffix = path.suffix.lower()
    if suffix == ".csv":
        with path.open(newline="", encoding="utf-8") as f:
            items = items_from_records(csv.DictReader(f), task, max_samples)
    elif suffix == ".json":
        with path.open(encoding="utf-8") as f:
            payload = json.load(f)
        records = payload.get("data", []) if isinstance(payload, dict) else payload
        if not isinstance(records, list):
            raise ConfigError(f"Unsupported JSON layout in {path}")
        items = items_from_records(records, task, max_samples)
    else:
        raise ConfigError(f"Unsupported dataset format: {path.suffix!r}")

    logger.info("Loaded %d items from %s", len(items), path)
    return items
