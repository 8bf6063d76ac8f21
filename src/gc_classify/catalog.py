"""Ordered catalog of GC log line grammars.

Each grammar pairs a recognizer (optional substring guard plus an anchored
regex) with a field extractor driven by named capture groups:

- ``ts`` / ``ts_ms``: time since JVM start in seconds / milliseconds
- ``dur`` / ``dur_ms``: duration in seconds / milliseconds
- ``trigger``: collection cause
- ``<region>_before|_after|_capacity`` (+ optional ``_unit``): occupancy triples

The catalog is built once and never mutated. Order matters: the first grammar
whose recognizer matches wins, so specific shapes precede generic ones.
"""

from __future__ import annotations

import re
from collections.abc import Iterable, Iterator
from dataclasses import dataclass
from functools import cache

from pydantic import ValidationError

from .codec import U32_MAX, parse_millis, parse_size_token, seconds_to_millis
from .errors import GrammarContractError, MalformedDuration, MalformedNumber
from .models import (
    KIND_CAPABILITIES,
    CanonicalRecord,
    Capability,
    EventKind,
    GCEvent,
    RegionOccupancy,
)
from .patterns import (
    CAUSE,
    DURATION,
    LINE_END,
    OPTIONAL_TIMES,
    TIMESTAMP,
    TRIGGER,
    duration,
    region_kb,
    region_units,
    timestamp,
)

_REGION_FIELDS: dict[Capability, str] = {
    Capability.YOUNG: "young",
    Capability.OLD: "old",
    Capability.PERMANENT: "permanent",
    Capability.COMBINED: "combined",
}

# ============================================================
# GRAMMAR
# ============================================================


@dataclass(frozen=True, slots=True)
class EventGrammar:
    """One event kind's line shape and field layout."""

    name: str
    kind: EventKind
    pattern: re.Pattern[str]
    guard: str | None = None

    def __post_init__(self) -> None:
        groups = set(self.pattern.groupindex)
        capabilities = KIND_CAPABILITIES[self.kind]

        def require(condition: bool, reason: str) -> None:
            if not condition:
                raise GrammarContractError(self.name, self.pattern.pattern, reason)

        has_duration = bool(groups & {"dur", "dur_ms"})
        require(
            has_duration == (Capability.DURATION in capabilities),
            "duration group does not match the kind's capabilities",
        )
        require(
            ("trigger" in groups) == (Capability.TRIGGER in capabilities),
            "trigger group does not match the kind's capabilities",
        )
        for capability, region in _REGION_FIELDS.items():
            wanted = {f"{region}_before", f"{region}_after", f"{region}_capacity"}
            if capability in capabilities:
                require(wanted <= groups, f"missing {region} occupancy groups")
            else:
                require(not wanted & groups, f"{region} groups on a kind without {region} data")

    def recognize(self, text: str) -> re.Match[str] | None:
        """Match ``text`` against this grammar; None when it does not apply."""
        if self.guard is not None and self.guard not in text:
            return None
        return self.pattern.match(text)

    def extract(self, match: re.Match[str], record: CanonicalRecord) -> GCEvent:
        """Build the event from a successful ``recognize`` match.

        Any failure here means the recognizer accepted something the extractor
        cannot represent and is raised as ``GrammarContractError``.
        """
        groups = match.groupdict()
        try:
            fields: dict[str, object] = {
                "timestamp_ms": self._timestamp(groups),
                "duration_ms": self._duration(groups),
                "trigger": groups.get("trigger"),
            }
            for region in _REGION_FIELDS.values():
                fields[region] = self._region(groups, region)

            return GCEvent(
                kind=self.kind,
                raw_text=record.text,
                first_line=record.first_line,
                last_line=record.last_line,
                **fields,
            )
        except (MalformedNumber, MalformedDuration, ValidationError) as exc:
            raise GrammarContractError(self.name, record.text, str(exc)) from exc

    @staticmethod
    def _timestamp(groups: dict[str, str | None]) -> int:
        if groups.get("ts") is not None:
            return seconds_to_millis(groups["ts"])
        if groups.get("ts_ms") is not None:
            return parse_millis(groups["ts_ms"])
        # Safepoint lines printed without -XX:+PrintGCTimeStamps
        return 0

    @staticmethod
    def _duration(groups: dict[str, str | None]) -> int | None:
        if groups.get("dur") is not None:
            millis = seconds_to_millis(groups["dur"])
        elif groups.get("dur_ms") is not None:
            millis = parse_millis(groups["dur_ms"])
        else:
            return None
        if millis > U32_MAX:
            raise MalformedDuration(f"Duration overflows 32 bits: {millis}ms")
        return millis

    @staticmethod
    def _region(groups: dict[str, str | None], region: str) -> RegionOccupancy | None:
        parts = ("before", "after", "capacity")
        values = [groups.get(f"{region}_{part}") for part in parts]
        if all(value is None for value in values):
            return None
        if any(value is None for value in values):
            raise MalformedNumber(f"Incomplete {region} occupancy: {values}")

        def size(part: str) -> int:
            unit = groups.get(f"{region}_{part}_unit") or "K"
            return parse_size_token(f"{groups[f'{region}_{part}']}{unit}")

        return RegionOccupancy(
            before_kb=size("before"),
            after_kb=size("after"),
            capacity_kb=size("capacity"),
        )


def _grammar(name: str, kind: EventKind, regex: str, guard: str | None = None) -> EventGrammar:
    return EventGrammar(name=name, kind=kind, pattern=re.compile(regex), guard=guard)


# ============================================================
# CATALOG
# ============================================================


@dataclass(frozen=True, slots=True)
class EventCatalog:
    """Immutable, ordered collection of grammars."""

    grammars: tuple[EventGrammar, ...]

    def __post_init__(self) -> None:
        names = [grammar.name for grammar in self.grammars]
        duplicates = {name for name in names if names.count(name) > 1}
        if duplicates:
            raise ValueError(f"Duplicate grammar names: {sorted(duplicates)}")

    def __iter__(self) -> Iterator[EventGrammar]:
        return iter(self.grammars)

    def __len__(self) -> int:
        return len(self.grammars)

    def find(self, text: str) -> tuple[EventGrammar, re.Match[str]] | None:
        """Return the first grammar (in priority order) recognizing ``text``."""
        for grammar in self.grammars:
            if match := grammar.recognize(text):
                return grammar, match
        return None

    def get(self, name: str) -> EventGrammar:
        for grammar in self.grammars:
            if grammar.name == name:
                return grammar
        raise KeyError(name)


# Optional ' (cause)' after 'GC' / 'Full GC'
_CAUSE = rf"(?: \({TRIGGER}\))?"
_TS = timestamp()
_DUR = duration()

CMS_CONCURRENT_PHASES: dict[str, tuple[EventKind, EventKind]] = {
    "mark": (EventKind.CMS_CONCURRENT_MARK_START, EventKind.CMS_CONCURRENT_MARK),
    "preclean": (EventKind.CMS_CONCURRENT_PRECLEAN_START, EventKind.CMS_CONCURRENT_PRECLEAN),
    "abortable-preclean": (
        EventKind.CMS_CONCURRENT_ABORTABLE_PRECLEAN_START,
        EventKind.CMS_CONCURRENT_ABORTABLE_PRECLEAN,
    ),
    "sweep": (EventKind.CMS_CONCURRENT_SWEEP_START, EventKind.CMS_CONCURRENT_SWEEP),
    "reset": (EventKind.CMS_CONCURRENT_RESET_START, EventKind.CMS_CONCURRENT_RESET),
}

G1_CONCURRENT_PHASES = r"(?:root-region-scan|mark|cleanup)"


def _parallel_grammars() -> Iterable[EventGrammar]:
    # 2182.541: [Full GC [PSYoungGen: 1940K->0K(98560K)] [ParOldGen: 813929K->422305K(815616K)]
    #   815869K->422305K(914176K) [PSPermGen: 81960K->81783K(164352K)], 2.4749181 secs]
    for name, kind, old_gen in (
        ("parallel_old_compacting", EventKind.PARALLEL_OLD_COMPACTING, "ParOldGen"),
        ("parallel_serial_old", EventKind.PARALLEL_SERIAL_OLD, "PSOldGen"),
    ):
        yield _grammar(
            name,
            kind,
            rf"^{_TS}: \[Full GC{_CAUSE} \[PSYoungGen: {region_kb('young')}\] "
            rf"\[{old_gen}: {region_kb('old')}\] {region_kb('combined')},? "
            rf"\[(?:PSPermGen|Metaspace): {region_kb('permanent')}\], {_DUR} secs\]"
            rf"{OPTIONAL_TIMES}{LINE_END}",
            guard=old_gen,
        )

    # 19.135: [GC [PSYoungGen: 1024K->64K(1088K)] 1800K->900K(4032K), 0.0033530 secs]
    yield _grammar(
        "parallel_scavenge",
        EventKind.PARALLEL_SCAVENGE,
        rf"^{_TS}: \[GC(?:--)?{_CAUSE}(?:--)? \[PSYoungGen: {region_kb('young')}\] "
        rf"{region_kb('combined')}, {_DUR} secs\]{OPTIONAL_TIMES}{LINE_END}",
        guard="PSYoungGen",
    )


def _cms_grammars() -> Iterable[EventGrammar]:
    # Merged by the concurrent_mode_failure preprocessing rule
    yield _grammar(
        "par_new_concurrent_mode_failure",
        EventKind.PAR_NEW_CONCURRENT_MODE_FAILURE,
        rf"^{_TS}: \[GC(?: \({CAUSE}\))? {TIMESTAMP}: \[ParNew: {region_kb('young')}, {DURATION} secs\]"
        rf"{TIMESTAMP}: \[CMS ?{TIMESTAMP}: \[CMS-concurrent-[a-z-]+: {DURATION}/{DURATION} secs\]"
        rf"{OPTIONAL_TIMES} \((?P<trigger>concurrent mode (?:failure|interrupted))\): "
        rf"{region_kb('old')}, {DURATION} secs\] {region_kb('combined')}, "
        rf"\[(?:CMS Perm |Metaspace): {region_kb('permanent')}\], {_DUR} secs\]"
        rf"{OPTIONAL_TIMES}{LINE_END}",
        guard="concurrent mode",
    )

    # 1.219: [GC 1.219: [ParNew: 4800K->512K(5120K), 0.0105210 secs] 4800K->1028K(15872K), 0.0106160 secs]
    yield _grammar(
        "par_new",
        EventKind.PAR_NEW,
        rf"^{_TS}: \[GC{_CAUSE} {TIMESTAMP}: \[ParNew: {region_kb('young')}, {DURATION} secs\] "
        rf"{region_kb('combined')}, {_DUR} secs\]{OPTIONAL_TIMES}{LINE_END}",
        guard="ParNew",
    )

    # 2.352: [Full GC 2.352: [CMS: 9370K->7853K(10240K), 0.0311790 secs] 13466K->7853K(15872K),
    #   [CMS Perm : 2571K->2571K(12288K)], 0.0312600 secs]
    yield _grammar(
        "cms_serial_old",
        EventKind.CMS_SERIAL_OLD,
        rf"^{_TS}: \[Full GC{_CAUSE} {TIMESTAMP}: \[CMS: {region_kb('old')}, {DURATION} secs\] "
        rf"{region_kb('combined')}(?:, \[(?:CMS Perm |Metaspace): {region_kb('permanent')}\])?, "
        rf"{_DUR} secs\]{OPTIONAL_TIMES}{LINE_END}",
        guard="[CMS:",
    )

    # 251.763: [GC [1 CMS-initial-mark: 4133273K(8218240K)] 4150346K(8367360K), 0.0174433 secs]
    yield _grammar(
        "cms_initial_mark",
        EventKind.CMS_INITIAL_MARK,
        rf"^{_TS}: \[GC{_CAUSE} \[1 CMS-initial-mark: \d+K\(\d+K\)\] \d+K\(\d+K\), {_DUR} secs\]"
        rf"{OPTIONAL_TIMES}{LINE_END}",
        guard="CMS-initial-mark",
    )

    # 253.103: [GC[YG occupancy: 16172 K (149120 K)]253.103: [Rescan (parallel) , 0.0226730 secs]
    #   ... [1 CMS-remark: 4173470K(8218240K)] 4189643K(8367360K), 0.0857163 secs]
    yield _grammar(
        "cms_remark",
        EventKind.CMS_REMARK,
        rf"^{_TS}: \[GC{_CAUSE} ?\[YG occupancy: .*?\[1 CMS-remark: \d+K\(\d+K\)\] "
        rf"\d+K\(\d+K\), {_DUR} secs\]{OPTIONAL_TIMES}{LINE_END}",
        guard="CMS-remark",
    )

    # 251.781: [CMS-concurrent-mark-start]
    # 252.707: [CMS-concurrent-mark: 0.796/0.926 secs]
    # CMS: abort preclean due to time 32633.935: [CMS-concurrent-abortable-preclean: 0.622/5.054 secs]
    prefix = r"^\s*(?:CMS: abort preclean due to time )?"
    for phase, (start_kind, end_kind) in CMS_CONCURRENT_PHASES.items():
        slug = phase.replace("-", "_")
        yield _grammar(
            f"cms_concurrent_{slug}_start",
            start_kind,
            rf"{prefix}{_TS}: \[CMS-concurrent-{phase}-start\]{LINE_END}",
            guard="CMS-concurrent-",
        )
        yield _grammar(
            f"cms_concurrent_{slug}",
            end_kind,
            rf"{prefix}{_TS}: \[CMS-concurrent-{phase}: {DURATION}/{_DUR} secs\]"
            rf"{OPTIONAL_TIMES}{LINE_END}",
            guard="CMS-concurrent-",
        )


def _serial_grammars() -> Iterable[EventGrammar]:
    # 7.798: [GC 7.798: [DefNew: 37172K->3631K(39296K), 0.0209300 secs] 41677K->10314K(126720K), 0.0210210 secs]
    yield _grammar(
        "serial_new",
        EventKind.SERIAL_NEW,
        rf"^{_TS}: \[GC{_CAUSE} {TIMESTAMP}: \[DefNew: {region_kb('young')}, {DURATION} secs\] "
        rf"{region_kb('combined')}, {_DUR} secs\]{OPTIONAL_TIMES}{LINE_END}",
        guard="DefNew",
    )

    # 2.457: [Full GC 2.457: [Tenured: 1092K->2866K(116544K), 0.0489070 secs] 1092K->2866K(129280K),
    #   [Perm : 8602K->8602K(131072K)], 0.0490320 secs]
    yield _grammar(
        "serial_old",
        EventKind.SERIAL_OLD,
        rf"^{_TS}: \[Full GC{_CAUSE} {TIMESTAMP}: \[Tenured: {region_kb('old')}, {DURATION} secs\] "
        rf"{region_kb('combined')}(?:, \[(?:Perm |Metaspace): {region_kb('permanent')}\])?, "
        rf"{_DUR} secs\]{OPTIONAL_TIMES}{LINE_END}",
        guard="Tenured",
    )


def _g1_grammars() -> Iterable[EventGrammar]:
    combined = rf"(?: {region_units('combined')})?"
    to_space = r"(?: \(to-space (?:exhausted|overflow)\))?"

    # 1244.357: [GC pause (young) (initial-mark) 847M->599M(970M), 0.0566840 secs]
    for name, kind, shape, guard in (
        ("g1_young_initial_mark", EventKind.G1_YOUNG_INITIAL_MARK, r"\(young\) \(initial-mark\)", "initial-mark"),
        ("g1_mixed_pause", EventKind.G1_MIXED_PAUSE, r"\(mixed\)", "(mixed)"),
        ("g1_young_pause", EventKind.G1_YOUNG_PAUSE, r"\(young\)", "GC pause"),
    ):
        yield _grammar(
            name,
            kind,
            rf"^{_TS}: \[GC pause{_CAUSE} {shape}{to_space}{combined}, {_DUR} secs\]"
            rf"{OPTIONAL_TIMES}{LINE_END}",
            guard=guard,
        )

    # 106.129: [GC remark, 0.0450170 secs]
    # 106.129: [GC remark 106.129: [GC ref-proc, 0.0000080 secs], 0.0450170 secs]
    yield _grammar(
        "g1_remark",
        EventKind.G1_REMARK,
        rf"^{_TS}: \[GC remark(?: .*?)?, {_DUR} secs\]{OPTIONAL_TIMES}{LINE_END}",
        guard="GC remark",
    )

    # 2972.698: [GC cleanup 1591M->1591M(3098M), 0.0043550 secs]
    yield _grammar(
        "g1_cleanup",
        EventKind.G1_CLEANUP,
        rf"^{_TS}: \[GC cleanup {region_units('combined')}, {_DUR} secs\]{OPTIONAL_TIMES}{LINE_END}",
        guard="GC cleanup",
    )

    # 0.891: [GC concurrent-mark-start]
    # 1.223: [GC concurrent-mark-end, 0.3319950 secs]
    yield _grammar(
        "g1_concurrent_start",
        EventKind.G1_CONCURRENT_START,
        rf"^{_TS}: \[GC concurrent-{G1_CONCURRENT_PHASES}-start\]{LINE_END}",
        guard="GC concurrent-",
    )
    yield _grammar(
        "g1_concurrent",
        EventKind.G1_CONCURRENT,
        rf"^{_TS}: \[GC concurrent-{G1_CONCURRENT_PHASES}-end, {_DUR} secs\]{OPTIONAL_TIMES}{LINE_END}",
        guard="GC concurrent-",
    )

    # 5060.152: [Full GC (System.gc()) 2270M->2038M(3398M), 5.8360430 secs]
    # K-only sizes are left to verbose_gc_old.
    yield _grammar(
        "g1_full_gc",
        EventKind.G1_FULL_GC,
        rf"^{_TS}: \[Full GC \({TRIGGER}\) +{region_units('combined', units='BMG')}, {_DUR} secs\]"
        rf"{OPTIONAL_TIMES}{LINE_END}",
        guard="Full GC (",
    )


def _verbose_grammars() -> Iterable[EventGrammar]:
    # 2205570.508: [GC 1726387K->773247K(3097984K), 0.2318035 secs]
    yield _grammar(
        "verbose_gc_young",
        EventKind.VERBOSE_GC_YOUNG,
        rf"^{_TS}: \[GC{_CAUSE} +{region_kb('combined')}, {_DUR} secs\]?{OPTIONAL_TIMES}{LINE_END}",
        guard="[GC ",
    )

    # 2192.214: [Full GC 1660254K->1053213K(3097984K), 5.6349480 secs]
    yield _grammar(
        "verbose_gc_old",
        EventKind.VERBOSE_GC_OLD,
        rf"^{_TS}: \[Full GC{_CAUSE} +{region_kb('combined')}, {_DUR} secs\]{OPTIONAL_TIMES}{LINE_END}",
        guard="[Full GC",
    )


def _unified_grammars() -> Iterable[EventGrammar]:
    # [2020-03-01T10:15:00.123+0000][12.345s][info][gc] GC(3) Pause Young (Normal) (G1 Evacuation Pause) 24M->4M(256M) 3.543ms
    decorators = r"^(?:\[[^\]]*\])*?\[(?:(?P<ts>\d+[.,]\d{3})s|(?P<ts_ms>\d+)ms)\](?:\[[^\]]*\])* GC\(\d+\) "
    tail = rf"{region_units('combined')} (?P<dur_ms>\d+(?:[.,]\d+)?)ms{LINE_END}"

    yield _grammar(
        "unified_young_pause",
        EventKind.UNIFIED_YOUNG_PAUSE,
        rf"{decorators}Pause Young(?: \([A-Za-z ]+\))? \({TRIGGER}\) {tail}",
        guard="Pause Young",
    )
    yield _grammar(
        "unified_full_pause",
        EventKind.UNIFIED_FULL_PAUSE,
        rf"{decorators}Pause Full \({TRIGGER}\) {tail}",
        guard="Pause Full",
    )
    yield _grammar(
        "unified_remark",
        EventKind.UNIFIED_REMARK,
        rf"{decorators}Pause Remark {tail}",
        guard="Pause Remark",
    )
    yield _grammar(
        "unified_cleanup",
        EventKind.UNIFIED_CLEANUP,
        rf"{decorators}Pause Cleanup {tail}",
        guard="Pause Cleanup",
    )


def _safepoint_grammars() -> Iterable[EventGrammar]:
    # Total time for which application threads were stopped: 0.0968457 seconds
    yield _grammar(
        "application_stopped_time",
        EventKind.APPLICATION_STOPPED_TIME,
        rf"^(?:{_TS}: )?Total time for which application threads were stopped: {_DUR} seconds"
        rf"(?:, Stopping threads took: {DURATION} seconds)?{LINE_END}",
        guard="Total time for which",
    )

    # Application time: 130.5284640 seconds
    yield _grammar(
        "application_concurrent_time",
        EventKind.APPLICATION_CONCURRENT_TIME,
        rf"^(?:{_TS}: )?Application time: {_DUR} seconds{LINE_END}",
        guard="Application time:",
    )


def build_catalog() -> EventCatalog:
    """Assemble the grammars in priority order."""
    grammars: list[EventGrammar] = []
    grammars.extend(_parallel_grammars())
    grammars.extend(_cms_grammars())
    grammars.extend(_serial_grammars())
    grammars.extend(_g1_grammars())
    grammars.extend(_verbose_grammars())
    grammars.extend(_unified_grammars())
    grammars.extend(_safepoint_grammars())
    return EventCatalog(grammars=tuple(grammars))


@cache
def default_catalog() -> EventCatalog:
    """Process-wide catalog, compiled on first use."""
    return build_catalog()
