from __future__ import annotations

import csv
from pathlib import Path
from typing import Any, Iterable, Protocol, Sequence

import pandas as pd

from core.errors import AmbiguousLegacyValueError
from core.types import TrainingLabelValue
from utils.logger import get_logger

LOGGER = get_logger(__name__)

CSV_HEADER = ["message", "label"]


def _union_chat_ids(values: Iterable[Any]) -> list[int]:
    merged: set[int] = set()
    for chat_ids in values:
        merged.update(int(chat_id) for chat_id in chat_ids or [])
    return sorted(merged)


def _earliest(values: Iterable[Any]) -> Any:
    present = [value for value in values if value is not None and not pd.isna(value)]
    return min(present) if present else None


def _latest(values: Iterable[Any]) -> Any:
    present = [value for value in values if value is not None and not pd.isna(value)]
    return max(present) if present else None


def consolidate_training_samples(frame: pd.DataFrame) -> pd.DataFrame:
    """
    Collapse samples with identical text into one row per text.

    The survivor keeps the lowest id and its own metadata; detection counts
    are summed and chat ids unioned. `merged_ids` lists every id folded into
    the survivor. Texts labelled both spam and ham are refused.
    """
    if frame.empty:
        return frame.assign(merged_ids=pd.Series(dtype=object))

    labels = frame.groupby("message_text")["is_spam"].nunique()
    conflicts = labels[labels > 1]
    if not conflicts.empty:
        raise AmbiguousLegacyValueError(
            f"{len(conflicts)} training text(s) are labelled both spam and ham",
            values=list(conflicts.index),
        )

    ordered = frame.sort_values("id", kind="stable")
    grouped = ordered.groupby("message_text", sort=False)
    survivors = grouped.head(1).set_index("message_text")

    totals = grouped.agg(
        detection_count=("detection_count", "sum"),
        added_date=("added_date", _earliest),
        last_detected_date=("last_detected_date", _latest),
        chat_ids=("chat_ids", _union_chat_ids),
        merged_ids=("id", lambda ids: sorted(int(i) for i in ids)),
    )

    result = survivors.drop(columns=[c for c in totals.columns if c in survivors.columns]).join(totals)
    return result.reset_index().sort_values("id", kind="stable").reset_index(drop=True)


class TrainingLabelSource(Protocol):
    def export_rows(self) -> Sequence[tuple[str, TrainingLabelValue]]: ...


class TrainingExporter:
    """
    Dump labelled messages into the classifier CSV (message,label) where
    label 1 is spam and 0 is ham.
    """

    def __init__(self, dataset_path: Path | str):
        self.dataset_path = Path(dataset_path)

    def export(self, source: TrainingLabelSource) -> int:
        rows = source.export_rows()
        self.dataset_path.parent.mkdir(parents=True, exist_ok=True)

        written = 0
        with open(self.dataset_path, "w", newline="", encoding="utf-8") as f:
            writer = csv.writer(f)
            writer.writerow(CSV_HEADER)
            for text, label in rows:
                if not text:
                    continue
                writer.writerow([text, 1 if label == TrainingLabelValue.SPAM else 0])
                written += 1

        LOGGER.info("Exported %s training sample(s) to %s", written, self.dataset_path)
        return written

    def get_row_count(self) -> int:
        try:
            with open(self.dataset_path, newline="", encoding="utf-8") as f:
                return sum(1 for _ in csv.reader(f)) - 1
        except FileNotFoundError:
            return 0


__all__ = ["TrainingExporter", "consolidate_training_samples"]
