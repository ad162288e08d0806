"""
Format-agnostic metric model.

Measurement results write :class:`MetricEntry` values into a
:class:`MetricsBuilder`; the encoders only ever see the finished entries.
Malformed entries (bad names, conflicting kinds) are programming errors and
are rejected here, so encoding can never fail.
"""
from __future__ import annotations

import enum
import re
from contextlib import contextmanager
from dataclasses import dataclass
from typing import Dict, Iterator, List, Mapping, Set, Tuple, Union

from .values import format_go_float

LabelValue = Union[str, int, float]

_NAME_RE = re.compile(r"^[a-zA-Z_:][a-zA-Z0-9_:]*$")
_LABEL_RE = re.compile(r"^[a-zA-Z_][a-zA-Z0-9_]*$")


class MetricKind(str, enum.Enum):
    GAUGE = "gauge"
    COUNTER = "counter"

    def __str__(self) -> str:
        return self.value


def is_valid_metric_name(name: str) -> bool:
    return bool(_NAME_RE.match(name))


def is_valid_label_name(name: str) -> bool:
    return bool(_LABEL_RE.match(name)) and not name.startswith("__")


@dataclass(frozen=True)
class MetricEntry:
    """One sample of one metric: name, kind, help text, labels and value."""

    name: str
    kind: MetricKind
    help: str
    labels: Tuple[Tuple[str, str], ...]
    value: float

    @property
    def label_dict(self) -> Dict[str, str]:
        return dict(self.labels)


def _label_text(value: LabelValue) -> str:
    if isinstance(value, str):
        return value
    return format_go_float(value)


class MetricsBuilder:
    """
    Collects metric entries.

    Labels can be scoped with :meth:`with_labels`, mirroring how results are
    nested (direction → statistic, target → statistic)::

        with builder.with_labels(direction="download"):
            builder.add("speedtest_bytes_total", MetricKind.COUNTER, "...", 1024)
    """

    def __init__(self) -> None:
        self._entries: List[MetricEntry] = []
        self._families: Dict[str, Tuple[MetricKind, str]] = {}
        self._label_stack: List[Dict[str, str]] = []
        self._seen: Set[Tuple[str, Tuple[Tuple[str, str], ...]]] = set()

    def __len__(self) -> int:
        return len(self._entries)

    @contextmanager
    def with_labels(self, **labels: LabelValue) -> Iterator[MetricsBuilder]:
        self._label_stack.append(self._check_labels(labels))
        try:
            yield self
        finally:
            self._label_stack.pop()

    def add(
        self,
        name: str,
        kind: MetricKind,
        help: str,
        value: Union[int, float, bool],
        **labels: LabelValue,
    ) -> MetricEntry:
        if not is_valid_metric_name(name):
            raise ValueError(f"invalid metric name: {name!r}")
        kind = MetricKind(kind)

        known = self._families.get(name)
        if known is None:
            self._families[name] = (kind, help)
        elif known != (kind, help):
            raise ValueError(f"metric {name!r} was already registered as {known[0]} with other help text")

        merged: Dict[str, str] = {}
        for scope in self._label_stack:
            merged.update(scope)
        merged.update(self._check_labels(labels))

        label_pairs = tuple(sorted(merged.items()))
        if (name, label_pairs) in self._seen:
            raise ValueError(f"duplicate sample for {name!r} with labels {dict(label_pairs)}")
        self._seen.add((name, label_pairs))

        entry = MetricEntry(
            name=name,
            kind=kind,
            help=help,
            labels=label_pairs,
            value=float(value),
        )
        self._entries.append(entry)
        return entry

    def entries(self) -> Tuple[MetricEntry, ...]:
        return tuple(self._entries)

    @staticmethod
    def _check_labels(labels: Mapping[str, LabelValue]) -> Dict[str, str]:
        checked = {}
        for key, value in labels.items():
            if not is_valid_label_name(key):
                raise ValueError(f"invalid label name: {key!r}")
            checked[key] = _label_text(value)
        return checked
