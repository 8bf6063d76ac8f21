"""Regex fragments shared by the preprocessing stages and the event catalog.

Capturing fragments take the name of the field they feed so that extraction is
by group name, never by position.
"""

from __future__ import annotations

# Seconds since JVM start, e.g. '251.781' (some locales print '251,781')
TIMESTAMP = r"\d+[.,]\d{3}"

# -XX:+PrintGCDateStamps, e.g. '2010-02-26T08:31:51.990-0600'
DATESTAMP = r"\d{4}-\d{2}-\d{2}T\d{2}:\d{2}:\d{2}[.,]\d{3}[+-]\d{2}:?\d{2}"

# Fractional seconds; 7 digits in collection durations, 3 in concurrent phases
DURATION = r"\d+[.,]\d+"

# -XX:+PrintGCDetails CPU accounting block
TIMES_BLOCK = r"\[Times: user=\d+[.,]\d{2} sys=\d+[.,]\d{2}, real=\d+[.,]\d{2} secs\]"
OPTIONAL_TIMES = rf"(?: ?{TIMES_BLOCK})?"

# Cause in parentheses, possibly ending in '()' as in 'System.gc()'
CAUSE = r"[^()]+?(?:\(\))?"
TRIGGER = rf"(?P<trigger>{CAUSE})"

LINE_END = r"\s*$"


def timestamp(name: str = "ts") -> str:
    """Capturing relative timestamp."""
    return rf"(?P<{name}>{TIMESTAMP})"


def duration(name: str = "dur") -> str:
    """Capturing fractional-seconds duration."""
    return rf"(?P<{name}>{DURATION})"


def region_kb(region: str) -> str:
    """Capturing 'before->after(capacity)' triple in kilobytes: '1940K->0K(98560K)'."""
    return (
        rf"(?P<{region}_before>\d+)K->(?P<{region}_after>\d+)K"
        rf"\((?P<{region}_capacity>\d+)K\)"
    )


def region_units(region: str, units: str = "BKMG") -> str:
    """Capturing triple with explicit units per value: '2270M->2038M(3398M)'."""
    unit = f"[{units}]"
    return (
        rf"(?P<{region}_before>\d+)(?P<{region}_before_unit>{unit})->"
        rf"(?P<{region}_after>\d+)(?P<{region}_after_unit>{unit})"
        rf"\((?P<{region}_capacity>\d+)(?P<{region}_capacity_unit>{unit})\)"
    )
