"""リクエストパラメータの検証モジュール.

値は文字列（CLI / クエリ文字列）でも数値でも受け付ける。
不正な値は計算を始める前に InvalidParameterError で弾く。
"""

from __future__ import annotations

import math
import re
from typing import Union

from serp_volatility.config import (
    ALERT_THRESHOLD_DEFAULT,
    ALERT_THRESHOLD_MAX,
    ALERT_THRESHOLD_MIN,
    CONCENTRATION_THRESHOLD_DEFAULT,
    CONCENTRATION_THRESHOLD_MAX,
    CONCENTRATION_THRESHOLD_MIN,
    MATURITIES,
    MIN_MATURITY_DEFAULT,
    SPIKE_THRESHOLD_DEFAULT,
    SPIKE_THRESHOLD_MAX,
    SPIKE_THRESHOLD_MIN,
    WINDOW_DAYS_MAX,
    WINDOW_DAYS_MIN,
)

RawValue = Union[str, int, float, None]

_UNSIGNED_INT = re.compile(r"^\d+$")
_SIGNED_INT = re.compile(r"^-?\d+$")


class InvalidParameterError(ValueError):
    """パラメータ不正. field に対象パラメータ名を持つ."""

    def __init__(self, field: str, message: str):
        super().__init__(f"{field} {message}")
        self.field = field
        self.message = message


def parse_int(
    field: str,
    raw: RawValue,
    minimum: int,
    maximum: int,
    default: int | None = None,
    required: bool = False,
    signed: bool = False,
) -> int | None:
    """整数パラメータを検証する. 未指定なら default（required なら例外）."""
    if raw is None:
        if required:
            raise InvalidParameterError(field, "is required")
        return default

    if isinstance(raw, str):
        pattern = _SIGNED_INT if signed else _UNSIGNED_INT
        if not pattern.match(raw):
            raise InvalidParameterError(field, "must be an integer")
        value = int(raw)
    elif isinstance(raw, int) and not isinstance(raw, bool):
        value = raw
    else:
        raise InvalidParameterError(field, "must be an integer")

    if value < minimum:
        raise InvalidParameterError(field, f"must be >= {minimum}")
    if value > maximum:
        raise InvalidParameterError(field, f"must be <= {maximum}")
    return value


def parse_float(
    field: str,
    raw: RawValue,
    minimum: float,
    maximum: float,
    default: float,
) -> float:
    if raw is None:
        return default

    if isinstance(raw, bool):
        raise InvalidParameterError(field, "must be a number")
    try:
        value = float(raw)
    except (TypeError, ValueError):
        raise InvalidParameterError(field, "must be a number") from None
    if math.isnan(value):
        raise InvalidParameterError(field, "must be a number")

    if value < minimum:
        raise InvalidParameterError(field, f"must be >= {minimum}")
    if value > maximum:
        raise InvalidParameterError(field, f"must be <= {maximum}")
    return value


def parse_window_days(
    raw: RawValue, maximum: int = WINDOW_DAYS_MAX, required: bool = False
) -> int | None:
    return parse_int("window_days", raw, WINDOW_DAYS_MIN, maximum, required=required)


def parse_alert_threshold(raw: RawValue) -> int:
    return parse_int(
        "alert_threshold", raw, ALERT_THRESHOLD_MIN, ALERT_THRESHOLD_MAX,
        default=ALERT_THRESHOLD_DEFAULT, signed=True,
    )


def parse_spike_threshold(raw: RawValue) -> float:
    return parse_float(
        "spike_threshold", raw, SPIKE_THRESHOLD_MIN, SPIKE_THRESHOLD_MAX, SPIKE_THRESHOLD_DEFAULT,
    )


def parse_concentration_threshold(raw: RawValue) -> float:
    return parse_float(
        "concentration_threshold", raw,
        CONCENTRATION_THRESHOLD_MIN, CONCENTRATION_THRESHOLD_MAX, CONCENTRATION_THRESHOLD_DEFAULT,
    )


def parse_min_maturity(raw: str | None) -> str:
    if raw is None:
        return MIN_MATURITY_DEFAULT
    if raw not in MATURITIES:
        raise InvalidParameterError("min_maturity", f"must be one of: {', '.join(MATURITIES)}")
    return raw


def parse_limit(raw: RawValue, minimum: int, maximum: int, default: int) -> int:
    return parse_int("limit", raw, minimum, maximum, default=default)


def parse_top_n(raw: RawValue, minimum: int, maximum: int, default: int) -> int:
    return parse_int("top_n", raw, minimum, maximum, default=default)


def parse_include_payload(raw: str | bool | None) -> bool:
    if raw is None:
        return False
    if isinstance(raw, bool):
        return raw
    if raw == "true":
        return True
    if raw == "false":
        return False
    raise InvalidParameterError("include_payload", "must be true or false")
