"""
Number rendering shared by both encoders.

Prometheus servers are written in Go and the text format is specified in
terms of Go's float formatting, so values are rendered the way
``strconv.FormatFloat(f, 'g', -1, 64)`` does: shortest round-trip digits,
exponent notation below 1e-4 and from 1e6 upwards, and the special values
``NaN``, ``+Inf`` and ``-Inf``.
"""
from __future__ import annotations

import math
from decimal import Decimal
from typing import Union

Number = Union[int, float]

NAN = "NaN"
POS_INF = "+Inf"
NEG_INF = "-Inf"

# Go switches to %e when the decimal exponent is < -4 or >= this
_EXP_LIMIT = 6


def format_go_float(value: Number) -> str:
    if isinstance(value, bool):
        return "1" if value else "0"
    if isinstance(value, int):
        return str(value)

    if math.isnan(value):
        return NAN
    if math.isinf(value):
        return POS_INF if value > 0 else NEG_INF
    if value == 0:
        return "-0" if math.copysign(1.0, value) < 0 else "0"

    # repr() yields the shortest string that round-trips, same as Go
    sign, digit_tuple, exponent = Decimal(repr(value)).normalize().as_tuple()
    digits = "".join(str(d) for d in digit_tuple)
    # decimal exponent of the leading digit
    exp = len(digits) - 1 + exponent
    prefix = "-" if sign else ""

    if exp < -4 or exp >= _EXP_LIMIT:
        mantissa = digits[0]
        if len(digits) > 1:
            mantissa += "." + digits[1:]
        exp_sign = "-" if exp < 0 else "+"
        return f"{prefix}{mantissa}e{exp_sign}{abs(exp):02d}"

    if exp < 0:
        return f"{prefix}0.{'0' * (-exp - 1)}{digits}"
    if len(digits) <= exp + 1:
        return f"{prefix}{digits}{'0' * (exp + 1 - len(digits))}"
    return f"{prefix}{digits[:exp + 1]}.{digits[exp + 1:]}"


def parse_go_float(text: str) -> float:
    """Inverse of :func:`format_go_float` for the special spellings."""
    if text == NAN:
        return math.nan
    if text == POS_INF:
        return math.inf
    if text == NEG_INF:
        return -math.inf
    return float(text)
