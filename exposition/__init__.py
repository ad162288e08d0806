"""Metric model and the two exposition encoders (Prometheus text and JSON)."""

from .metrics import MetricEntry, MetricKind, MetricsBuilder
from .output import create_result_json, encode_json, format_as_json, parse_json
from .prometheus import (
    encode_prometheus,
    escape_label_value,
    format_as_prometheus,
    format_labels,
    parse_prometheus,
)
from .values import format_go_float, parse_go_float

__all__ = [
    "MetricEntry",
    "MetricKind",
    "MetricsBuilder",
    "create_result_json",
    "encode_json",
    "encode_prometheus",
    "escape_label_value",
    "format_as_json",
    "format_as_prometheus",
    "format_go_float",
    "format_labels",
    "parse_go_float",
    "parse_json",
    "parse_prometheus",
]
