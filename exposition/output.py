"""
JSON exposition.

Same logical content as the Prometheus text, keyed by metric name::

    {
      "speedtest_bytes_total": [
        {"labels": {"direction": "download"}, "value": 6000.0}
      ]
    }

JSON has no spelling for non-finite numbers, so those are written as the
Prometheus strings ``"NaN"``, ``"+Inf"`` and ``"-Inf"``.
"""
from __future__ import annotations

import json
import math
from collections import defaultdict
from typing import Any, Dict, Iterable, List, Set, Union

from .metrics import MetricEntry
from .prometheus import Triple
from .values import NAN, NEG_INF, POS_INF, parse_go_float

CONTENT_TYPE = "application/json"


def _json_value(value: float) -> Union[float, str]:
    if math.isnan(value):
        return NAN
    if math.isinf(value):
        return POS_INF if value > 0 else NEG_INF
    return value


def create_result_json(entries: Iterable[MetricEntry]) -> Dict[str, List[Dict[str, Any]]]:
    """Build the JSON-serialisable dict for *entries*."""
    families: Dict[str, List[MetricEntry]] = defaultdict(list)
    for entry in entries:
        families[entry.name].append(entry)

    result: Dict[str, List[Dict[str, Any]]] = {}
    for name in sorted(families):
        result[name] = [
            {"labels": entry.label_dict, "value": _json_value(entry.value)}
            for entry in sorted(families[name], key=lambda e: e.labels)
        ]
    return result


def format_as_json(entries: Iterable[MetricEntry]) -> str:
    return json.dumps(create_result_json(entries), indent=2, sort_keys=True, ensure_ascii=False)


def encode_json(entries: Iterable[MetricEntry]) -> bytes:
    return format_as_json(entries).encode("utf-8")


def parse_json(text: Union[str, bytes]) -> Set[Triple]:
    """Decode JSON exposition into ``(name, labels, value)`` triples."""
    data = json.loads(text)
    triples: Set[Triple] = set()
    for name, samples in data.items():
        for sample in samples:
            value = sample["value"]
            if isinstance(value, str):
                value = parse_go_float(value)
            triples.add((name, frozenset(sample["labels"].items()), float(value)))
    return triples
