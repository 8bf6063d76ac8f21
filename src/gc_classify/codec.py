"""Size, duration and timestamp conversions shared by the pipeline and the catalog.

All functions are pure. Sizes are normalized to kilobytes, durations and
timestamps to integer milliseconds. Fractional values are rounded half-up,
never truncated.
"""

from __future__ import annotations

import re
from datetime import datetime, timedelta
from decimal import ROUND_HALF_UP, Decimal, InvalidOperation
from typing import TypeAlias

from .errors import MalformedDate, MalformedDuration, MalformedNumber

KilobytesValue: TypeAlias = int
MillisValue: TypeAlias = int

U32_MAX = 2**32 - 1
U64_MAX = 2**64 - 1

_INTEGER = re.compile(r"\d+")
_DECIMAL = re.compile(r"\d+(?:[.,]\d+)?")
_SIZE_TOKEN = re.compile(r"(?P<number>\d+)(?P<unit>[BbKkMmGg])")

# Multiplier to kilobytes; bytes are divided instead
_UNIT_TO_KB: dict[str, int] = {"K": 1, "M": 1024, "G": 1024 * 1024}

DATESTAMP_FORMAT = "%Y-%m-%dT%H:%M:%S.%f%z"


# ============================================================
# SIZES
# ============================================================


def parse_size(number: str, unit: str) -> KilobytesValue:
    """Convert a quantity and its unit character (B, K, M, G) into kilobytes.

    Byte quantities are truncated toward zero.
    """
    if not _INTEGER.fullmatch(number):
        raise MalformedNumber(f"Size literal is not a non-negative integer: {number!r}")

    value = int(number)
    unit_key = unit.upper()
    if unit_key == "B":
        kb = value // 1024
    elif unit_key in _UNIT_TO_KB:
        kb = value * _UNIT_TO_KB[unit_key]
    else:
        raise MalformedNumber(f"Unsupported size unit: {unit!r}")

    if kb > U32_MAX:
        raise MalformedNumber(f"Size {number}{unit} overflows 32 bits")
    return kb


def parse_size_token(token: str) -> KilobytesValue:
    """Parse a combined token such as '2270M' or '150784K' into kilobytes."""
    match = _SIZE_TOKEN.fullmatch(token.strip())
    if not match:
        raise MalformedNumber(f"Unrecognized size token: {token!r}")
    return parse_size(match.group("number"), match.group("unit"))


def format_size(kb: KilobytesValue, unit: str) -> str:
    """Render a kilobyte quantity as a literal in the given unit (rounded down)."""
    if kb < 0:
        raise MalformedNumber(f"Negative size: {kb}")
    unit_key = unit.upper()
    if unit_key == "B":
        return str(kb * 1024)
    if unit_key in _UNIT_TO_KB:
        return str(kb // _UNIT_TO_KB[unit_key])
    raise MalformedNumber(f"Unsupported size unit: {unit!r}")


# ============================================================
# DURATIONS
# ============================================================


def _to_decimal(literal: str) -> Decimal:
    text = literal.strip()
    if not _DECIMAL.fullmatch(text):
        raise MalformedDuration(f"Not a fixed-point number: {literal!r}")
    try:
        return Decimal(text.replace(",", "."))
    except InvalidOperation as exc:  # pragma: no cover - guarded by the regex
        raise MalformedDuration(f"Not a fixed-point number: {literal!r}") from exc


def _round_half_up(value: Decimal, literal: str) -> MillisValue:
    millis = int(value.quantize(Decimal(1), rounding=ROUND_HALF_UP))
    if millis > U64_MAX:
        raise MalformedDuration(f"Duration overflows 64 bits: {literal!r}")
    return millis


def seconds_to_millis(literal: str) -> MillisValue:
    """Convert a fixed-point seconds literal ('130.5284640') to milliseconds, half-up."""
    return _round_half_up(_to_decimal(literal) * 1000, literal)


def parse_millis(literal: str) -> MillisValue:
    """Round a fractional milliseconds literal ('3.543') to whole milliseconds, half-up."""
    return _round_half_up(_to_decimal(literal), literal)


def millis_to_seconds(ms: MillisValue, precision: int = 7) -> str:
    """Format milliseconds as a fixed-point seconds literal.

    Durations in the logs carry 7 fractional digits; relative timestamps carry 3,
    so the pipeline passes ``precision=3`` when it rewrites a timestamp.
    """
    if ms < 0:
        raise MalformedDuration(f"Negative milliseconds: {ms}")
    return f"{Decimal(ms).scaleb(-3):.{precision}f}"


# ============================================================
# DATESTAMPS
# ============================================================


def parse_datestamp(literal: str) -> datetime:
    """Parse a -XX:+PrintGCDateStamps literal ('2010-02-26T08:31:51.990-0600')."""
    text = literal.strip().replace(",", ".")
    try:
        return datetime.strptime(text, DATESTAMP_FORMAT)
    except ValueError as exc:
        raise MalformedDate(f"Unrecognized datestamp: {literal!r}") from exc


def elapsed_since(start: datetime, at: datetime) -> MillisValue:
    """Milliseconds from ``start`` to ``at``, saturating at 0 when ``at`` is earlier."""
    delta = at - start
    if delta < timedelta(0):
        return 0
    return delta // timedelta(milliseconds=1)
