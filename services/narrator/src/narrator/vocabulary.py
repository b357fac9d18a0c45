"""Class vocabulary: loads a YAML label list and maps class indices to labels."""
from __future__ import annotations

from pathlib import Path
from typing import Sequence

import yaml

from assist_shared.logging import get_logger

log = get_logger(__name__)

DEFAULT_VOCABULARY_PATH = Path(__file__).parent / "data" / "coco.yaml"


class Vocabulary:
    """Ordered, index-addressed list of class labels.

    Indices outside the list map to a synthetic ``class_<index>`` label so a
    model with more heads than the vocabulary still produces usable output.
    """

    def __init__(self, labels: Sequence[str]) -> None:
        self._labels: tuple[str, ...] = tuple(str(label) for label in labels)

    @classmethod
    def from_yaml(cls, yaml_path: str | Path) -> Vocabulary:
        with open(yaml_path) as f:
            data = yaml.safe_load(f) or {}
        labels = data.get("labels") if isinstance(data, dict) else data
        if not isinstance(labels, list):
            raise ValueError(f"{yaml_path}: expected a 'labels' list")
        if not labels:
            raise ValueError(f"{yaml_path}: 'labels' list is empty")
        vocab = cls(labels)
        log.info("vocabulary_loaded", path=str(yaml_path), size=len(vocab))
        return vocab

    @classmethod
    def default(cls) -> Vocabulary:
        return cls.from_yaml(DEFAULT_VOCABULARY_PATH)

    def label_for(self, index: int) -> str:
        if 0 <= index < len(self._labels):
            return self._labels[index]
        return f"class_{index}"

    @property
    def labels(self) -> tuple[str, ...]:
        return self._labels

    def __len__(self) -> int:
        return len(self._labels)
