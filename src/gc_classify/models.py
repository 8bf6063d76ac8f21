"""Pydantic models for raw lines, canonical records and classified GC events."""

from __future__ import annotations

from datetime import datetime, timezone
from enum import Enum

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator

from .codec import U32_MAX, U64_MAX, KilobytesValue, MillisValue

# ============================================================
# INPUT RECORDS
# ============================================================


class LogLine(BaseModel):
    """One raw line of the GC log with its 1-indexed line number."""

    model_config = ConfigDict(frozen=True)

    line_no: int = Field(ge=1)
    text: str


class CanonicalRecord(BaseModel):
    """A single-line, fully merged record covering one or more raw lines."""

    model_config = ConfigDict(frozen=True)

    text: str
    first_line: int = Field(ge=1)
    last_line: int = Field(ge=1)

    @model_validator(mode="after")
    def _check_range(self) -> CanonicalRecord:
        if self.last_line < self.first_line:
            raise ValueError("last_line must be >= first_line")
        return self


# ============================================================
# EVENT KINDS AND CAPABILITIES
# ============================================================


class Capability(str, Enum):
    """Optional payloads an event kind may carry."""

    DURATION = "duration"
    TRIGGER = "trigger"
    YOUNG = "young"
    OLD = "old"
    PERMANENT = "permanent"
    COMBINED = "combined"


class EventKind(str, Enum):
    """Closed set of event kinds the catalog can produce."""

    # Parallel collector
    PARALLEL_OLD_COMPACTING = "PARALLEL_OLD_COMPACTING"
    PARALLEL_SERIAL_OLD = "PARALLEL_SERIAL_OLD"
    PARALLEL_SCAVENGE = "PARALLEL_SCAVENGE"

    # Serial collector
    SERIAL_NEW = "SERIAL_NEW"
    SERIAL_OLD = "SERIAL_OLD"

    # CMS collector
    PAR_NEW = "PAR_NEW"
    PAR_NEW_CONCURRENT_MODE_FAILURE = "PAR_NEW_CONCURRENT_MODE_FAILURE"
    CMS_SERIAL_OLD = "CMS_SERIAL_OLD"
    CMS_INITIAL_MARK = "CMS_INITIAL_MARK"
    CMS_REMARK = "CMS_REMARK"
    CMS_CONCURRENT_MARK_START = "CMS_CONCURRENT_MARK_START"
    CMS_CONCURRENT_MARK = "CMS_CONCURRENT_MARK"
    CMS_CONCURRENT_PRECLEAN_START = "CMS_CONCURRENT_PRECLEAN_START"
    CMS_CONCURRENT_PRECLEAN = "CMS_CONCURRENT_PRECLEAN"
    CMS_CONCURRENT_ABORTABLE_PRECLEAN_START = "CMS_CONCURRENT_ABORTABLE_PRECLEAN_START"
    CMS_CONCURRENT_ABORTABLE_PRECLEAN = "CMS_CONCURRENT_ABORTABLE_PRECLEAN"
    CMS_CONCURRENT_SWEEP_START = "CMS_CONCURRENT_SWEEP_START"
    CMS_CONCURRENT_SWEEP = "CMS_CONCURRENT_SWEEP"
    CMS_CONCURRENT_RESET_START = "CMS_CONCURRENT_RESET_START"
    CMS_CONCURRENT_RESET = "CMS_CONCURRENT_RESET"

    # G1 collector (legacy logging)
    G1_YOUNG_PAUSE = "G1_YOUNG_PAUSE"
    G1_YOUNG_INITIAL_MARK = "G1_YOUNG_INITIAL_MARK"
    G1_MIXED_PAUSE = "G1_MIXED_PAUSE"
    G1_REMARK = "G1_REMARK"
    G1_CLEANUP = "G1_CLEANUP"
    G1_FULL_GC = "G1_FULL_GC"
    G1_CONCURRENT_START = "G1_CONCURRENT_START"
    G1_CONCURRENT = "G1_CONCURRENT"

    # Collector-agnostic -verbose:gc
    VERBOSE_GC_YOUNG = "VERBOSE_GC_YOUNG"
    VERBOSE_GC_OLD = "VERBOSE_GC_OLD"

    # JDK 9+ unified logging
    UNIFIED_YOUNG_PAUSE = "UNIFIED_YOUNG_PAUSE"
    UNIFIED_FULL_PAUSE = "UNIFIED_FULL_PAUSE"
    UNIFIED_REMARK = "UNIFIED_REMARK"
    UNIFIED_CLEANUP = "UNIFIED_CLEANUP"

    # Safepoint accounting
    APPLICATION_STOPPED_TIME = "APPLICATION_STOPPED_TIME"
    APPLICATION_CONCURRENT_TIME = "APPLICATION_CONCURRENT_TIME"

    UNKNOWN = "UNKNOWN"


_D = Capability.DURATION
_T = Capability.TRIGGER
_Y = Capability.YOUNG
_O = Capability.OLD
_P = Capability.PERMANENT
_C = Capability.COMBINED

KIND_CAPABILITIES: dict[EventKind, frozenset[Capability]] = {
    EventKind.PARALLEL_OLD_COMPACTING: frozenset({_D, _T, _Y, _O, _P, _C}),
    EventKind.PARALLEL_SERIAL_OLD: frozenset({_D, _T, _Y, _O, _P, _C}),
    EventKind.PARALLEL_SCAVENGE: frozenset({_D, _T, _Y, _C}),
    EventKind.SERIAL_NEW: frozenset({_D, _T, _Y, _C}),
    EventKind.SERIAL_OLD: frozenset({_D, _T, _O, _P, _C}),
    EventKind.PAR_NEW: frozenset({_D, _T, _Y, _C}),
    EventKind.PAR_NEW_CONCURRENT_MODE_FAILURE: frozenset({_D, _T, _Y, _O, _P, _C}),
    EventKind.CMS_SERIAL_OLD: frozenset({_D, _T, _O, _P, _C}),
    EventKind.CMS_INITIAL_MARK: frozenset({_D, _T}),
    EventKind.CMS_REMARK: frozenset({_D, _T}),
    EventKind.CMS_CONCURRENT_MARK_START: frozenset(),
    EventKind.CMS_CONCURRENT_MARK: frozenset({_D}),
    EventKind.CMS_CONCURRENT_PRECLEAN_START: frozenset(),
    EventKind.CMS_CONCURRENT_PRECLEAN: frozenset({_D}),
    EventKind.CMS_CONCURRENT_ABORTABLE_PRECLEAN_START: frozenset(),
    EventKind.CMS_CONCURRENT_ABORTABLE_PRECLEAN: frozenset({_D}),
    EventKind.CMS_CONCURRENT_SWEEP_START: frozenset(),
    EventKind.CMS_CONCURRENT_SWEEP: frozenset({_D}),
    EventKind.CMS_CONCURRENT_RESET_START: frozenset(),
    EventKind.CMS_CONCURRENT_RESET: frozenset({_D}),
    EventKind.G1_YOUNG_PAUSE: frozenset({_D, _T, _C}),
    EventKind.G1_YOUNG_INITIAL_MARK: frozenset({_D, _T, _C}),
    EventKind.G1_MIXED_PAUSE: frozenset({_D, _T, _C}),
    EventKind.G1_REMARK: frozenset({_D}),
    EventKind.G1_CLEANUP: frozenset({_D, _C}),
    EventKind.G1_FULL_GC: frozenset({_D, _T, _C}),
    EventKind.G1_CONCURRENT_START: frozenset(),
    EventKind.G1_CONCURRENT: frozenset({_D}),
    EventKind.VERBOSE_GC_YOUNG: frozenset({_D, _T, _C}),
    EventKind.VERBOSE_GC_OLD: frozenset({_D, _T, _C}),
    EventKind.UNIFIED_YOUNG_PAUSE: frozenset({_D, _T, _C}),
    EventKind.UNIFIED_FULL_PAUSE: frozenset({_D, _T, _C}),
    EventKind.UNIFIED_REMARK: frozenset({_D, _C}),
    EventKind.UNIFIED_CLEANUP: frozenset({_D, _C}),
    EventKind.APPLICATION_STOPPED_TIME: frozenset({_D}),
    EventKind.APPLICATION_CONCURRENT_TIME: frozenset({_D}),
    EventKind.UNKNOWN: frozenset(),
}


# ============================================================
# EVENTS
# ============================================================


class RegionOccupancy(BaseModel):
    """Occupancy before/after a collection and the region's capacity, in KB.

    ``capacity_kb >= after_kb`` is the usual shape but is not enforced: odd
    values are preserved as logged.
    """

    model_config = ConfigDict(frozen=True)

    before_kb: KilobytesValue = Field(ge=0, le=U32_MAX)
    after_kb: KilobytesValue = Field(ge=0, le=U32_MAX)
    capacity_kb: KilobytesValue = Field(ge=0, le=U32_MAX)


class GCEvent(BaseModel):
    """A classified GC log record.

    Payloads other than the common fields are only populated when the kind
    declares the matching capability in ``KIND_CAPABILITIES``.
    """

    model_config = ConfigDict(frozen=True)

    kind: EventKind
    timestamp_ms: MillisValue = Field(ge=0, le=U64_MAX)
    raw_text: str
    first_line: int | None = None
    last_line: int | None = None

    duration_ms: MillisValue | None = Field(default=None, ge=0, le=U32_MAX)
    trigger: str | None = None

    young: RegionOccupancy | None = None
    old: RegionOccupancy | None = None
    permanent: RegionOccupancy | None = None
    combined: RegionOccupancy | None = None

    @model_validator(mode="after")
    def _check_capabilities(self) -> GCEvent:
        allowed = KIND_CAPABILITIES[self.kind]
        present = {cap for cap in Capability if self.payload(cap) is not None}
        extra = present - allowed
        if extra:
            names = ", ".join(sorted(cap.value for cap in extra))
            raise ValueError(f"{self.kind.value} does not carry: {names}")
        return self

    @classmethod
    def unknown(cls, text: str, first_line: int | None = None, last_line: int | None = None) -> GCEvent:
        """Fallback event preserving a record no grammar recognized."""
        return cls(
            kind=EventKind.UNKNOWN,
            timestamp_ms=0,
            raw_text=text,
            first_line=first_line,
            last_line=last_line,
        )

    def supports(self, capability: Capability) -> bool:
        """Whether this event's kind can carry ``capability``."""
        return capability in KIND_CAPABILITIES[self.kind]

    def payload(self, capability: Capability) -> object | None:
        """Return the payload for ``capability`` (None when absent)."""
        if capability is Capability.DURATION:
            return self.duration_ms
        if capability is Capability.TRIGGER:
            return self.trigger
        if capability is Capability.YOUNG:
            return self.young
        if capability is Capability.OLD:
            return self.old
        if capability is Capability.PERMANENT:
            return self.permanent
        if capability is Capability.COMBINED:
            return self.combined
        raise ValueError(f"Unsupported capability: {capability}")

    @property
    def is_blocking(self) -> bool:
        """Stop-the-world collections; concurrent phases and markers are not."""
        return self.kind in BLOCKING_KINDS


BLOCKING_KINDS: frozenset[EventKind] = frozenset(
    {
        EventKind.PARALLEL_OLD_COMPACTING,
        EventKind.PARALLEL_SERIAL_OLD,
        EventKind.PARALLEL_SCAVENGE,
        EventKind.SERIAL_NEW,
        EventKind.SERIAL_OLD,
        EventKind.PAR_NEW,
        EventKind.PAR_NEW_CONCURRENT_MODE_FAILURE,
        EventKind.CMS_SERIAL_OLD,
        EventKind.CMS_INITIAL_MARK,
        EventKind.CMS_REMARK,
        EventKind.G1_YOUNG_PAUSE,
        EventKind.G1_YOUNG_INITIAL_MARK,
        EventKind.G1_MIXED_PAUSE,
        EventKind.G1_REMARK,
        EventKind.G1_CLEANUP,
        EventKind.G1_FULL_GC,
        EventKind.VERBOSE_GC_YOUNG,
        EventKind.VERBOSE_GC_OLD,
        EventKind.UNIFIED_YOUNG_PAUSE,
        EventKind.UNIFIED_FULL_PAUSE,
        EventKind.UNIFIED_REMARK,
        EventKind.UNIFIED_CLEANUP,
    }
)


# ============================================================
# CONFIGURATION AND DIAGNOSTICS
# ============================================================


class PipelineConfig(BaseModel):
    """Per-file preprocessing configuration."""

    model_config = ConfigDict(frozen=True)

    jvm_start: datetime | None = None
    drop_application_logging: bool = True
    merge_multiline: bool = True

    @field_validator("jvm_start")
    @classmethod
    def _assume_utc(cls, value: datetime | None) -> datetime | None:
        if value is not None and value.tzinfo is None:
            return value.replace(tzinfo=timezone.utc)
        return value


class PipelineStats(BaseModel):
    """Counters collected while preprocessing one log."""

    raw_lines: int = 0
    blank_lines: int = 0
    application_lines_dropped: int = 0
    datestamps_rewritten: int = 0
    negative_elapsed_clamped: int = 0
    merges: int = 0
    records_emitted: int = 0


class ClassificationStats(BaseModel):
    """Counters collected while classifying canonical records."""

    classified: int = 0
    unknown: int = 0
    contract_violations: int = 0
    by_kind: dict[EventKind, int] = Field(default_factory=dict)
