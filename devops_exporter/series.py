"""Data structures for metric rows and families."""
from dataclasses import dataclass, field
from typing import Dict, Optional, Tuple
import hashlib
import json


@dataclass
class MetricRow:
    """A single aggregated measurement with labels."""
    labels: Dict[str, str]
    value: float

    def copy(self) -> "MetricRow":
        return MetricRow(dict(self.labels), self.value)


@dataclass(frozen=True)
class MetricFamily:
    """A named metric with a fixed set of label names."""
    name: str
    help: str
    label_names: Tuple[str, ...]
    kind: str = "gauge"  # "gauge" or "counter"


@dataclass(frozen=True)
class TaskSnapshot:
    """Immutable result of one collection cycle, published by reference."""
    task: str
    families: Dict[str, Tuple[MetricRow, ...]] = field(default_factory=dict)
    created_at: float = 0.0
    source: str = "fetch"

    def row_count(self) -> int:
        return sum(len(rows) for rows in self.families.values())


def normalize_labels(labels: Dict[str, Optional[str]]) -> Dict[str, str]:
    """Replace missing label values with an empty string."""
    return {str(k): "" if v is None else str(v) for k, v in labels.items()}


def canonical_labels(labels: Dict[str, str]) -> str:
    """Serialize labels as a JSON list of ``[name, value]`` pairs in key order.

    Values are quoted and escaped, so label text containing separators cannot
    make two different label sets serialize the same way.
    """
    return json.dumps(sorted(labels.items()), ensure_ascii=False, separators=(",", ":"))


def label_digest(labels: Dict[str, str]) -> str:
    """Content key of a label set (SHA-256 of the canonical form)."""
    return hashlib.sha256(canonical_labels(labels).encode("utf-8")).hexdigest()
