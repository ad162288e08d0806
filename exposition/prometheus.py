"""Prometheus text exposition format (version 0.0.4).

Converts metric entries to text for scraping::

    # HELP speedtest_bytes_total bytes transferred during the speedtest
    # TYPE speedtest_bytes_total counter
    speedtest_bytes_total{direction="download"} 6000

Reading text back goes through ``prometheus_client``'s parser.
"""
from __future__ import annotations

from collections import defaultdict
from typing import Dict, FrozenSet, Iterable, List, Set, Tuple

from prometheus_client.parser import text_string_to_metric_families

from .metrics import MetricEntry
from .values import format_go_float

CONTENT_TYPE = "text/plain; version=0.0.4; charset=utf-8"

Triple = Tuple[str, FrozenSet[Tuple[str, str]], float]


def escape_label_value(value: str) -> str:
    return value.replace("\\", "\\\\").replace('"', '\\"').replace("\n", "\\n")


def escape_help(text: str) -> str:
    return text.replace("\\", "\\\\").replace("\n", "\\n")


def format_labels(labels: Iterable[Tuple[str, str]]) -> str:
    """Format label pairs as ``{key1="value1",key2="value2"}`` (empty if none)."""
    pairs = [f'{key}="{escape_label_value(value)}"' for key, value in sorted(labels)]
    if not pairs:
        return ""
    return "{" + ",".join(pairs) + "}"


def format_as_prometheus(entries: Iterable[MetricEntry]) -> str:
    """Render *entries* grouped by metric name, names and label sets sorted."""
    families: Dict[str, List[MetricEntry]] = defaultdict(list)
    for entry in entries:
        families[entry.name].append(entry)

    lines: List[str] = []
    for name in sorted(families):
        group = families[name]
        head = group[0]
        lines.append(f"# HELP {name} {escape_help(head.help)}")
        lines.append(f"# TYPE {name} {head.kind}")
        for entry in sorted(group, key=lambda e: e.labels):
            lines.append(f"{name}{format_labels(entry.labels)} {format_go_float(entry.value)}")

    return "\n".join(lines) + "\n" if lines else ""


def encode_prometheus(entries: Iterable[MetricEntry]) -> bytes:
    return format_as_prometheus(entries).encode("utf-8")


def parse_prometheus(text: str) -> Set[Triple]:
    """Decode exposition text into ``(name, labels, value)`` triples.

    Raises ``ValueError`` for text that is not valid exposition format.
    """
    triples: Set[Triple] = set()
    for family in text_string_to_metric_families(text):
        for sample in family.samples:
            triples.add((sample.name, frozenset(sample.labels.items()), float(sample.value)))
    return triples
