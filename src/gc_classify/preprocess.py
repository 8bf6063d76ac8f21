"""Preprocessing: turn raw GC log lines into canonical single-line records.

Each raw line goes through three stages in a fixed order:

1. Datestamp rewriting (-XX:+PrintGCDateStamps to JVM-relative timestamps).
2. Removal of interleaved application logging (log4j lines, stack traces, ...).
3. Multi-line merging for collectors that split one event over two lines,
   possibly with safepoint timer output printed in between.

The pipeline is a generator: it pulls one raw line at a time and holds at most
one pending record for merging.
"""

from __future__ import annotations

import logging
import re
from collections.abc import Iterable, Iterator, Sequence
from dataclasses import dataclass
from datetime import datetime, timedelta

from .codec import elapsed_since, millis_to_seconds, parse_datestamp, seconds_to_millis
from .errors import MalformedDate
from .models import CanonicalRecord, LogLine, PipelineConfig, PipelineStats
from .patterns import CAUSE, DATESTAMP, DURATION, OPTIONAL_TIMES, TIMES_BLOCK, TIMESTAMP

logger = logging.getLogger(__name__)


# ============================================================
# STAGE 1: DATESTAMPS
# ============================================================


class DateStampRewriter:
    """Replace absolute datestamps with seconds since JVM start.

    Older JDKs print the datestamp instead of the relative timestamp; newer ones
    print both ('2010-04-16T12:11:18.979+0200: 84.335: [GC ...'). In the second
    case the datestamp is simply dropped. Datestamps embedded later in the line
    are handled the same way.
    """

    DATESTAMP_PATTERN: re.Pattern[str] = re.compile(
        rf"(?P<datestamp>{DATESTAMP}): (?P<relative>{TIMESTAMP}: )?"
    )

    def __init__(self, jvm_start: datetime | None, stats: PipelineStats) -> None:
        self.jvm_start = jvm_start
        self._stats = stats

    def rewrite(self, text: str) -> str:
        """Return ``text`` with every datestamp replaced (no-op without datestamps)."""
        # Substring guard: every datestamp has a 'T' between date and time
        if "T" not in text:
            return text
        return self.DATESTAMP_PATTERN.sub(self._replace, text)

    def _replace(self, match: re.Match[str]) -> str:
        literal = match.group("datestamp")
        relative = match.group("relative")
        try:
            instant = parse_datestamp(literal)
            jvm_start = self.jvm_start
            if jvm_start is None:
                jvm_start = self._anchor(instant, relative)
        except MalformedDate:
            logger.warning("Leaving unparseable datestamp in place: %s", literal)
            return match.group(0)
        except OverflowError:
            logger.warning("Leaving out-of-range datestamp in place: %s", literal)
            return match.group(0)

        self._stats.datestamps_rewritten += 1
        if relative is not None:
            return relative

        if instant < jvm_start:
            self._stats.negative_elapsed_clamped += 1
            logger.debug("Datestamp %s precedes JVM start %s; clamping to 0", literal, jvm_start)
        elapsed = elapsed_since(jvm_start, instant)
        return f"{millis_to_seconds(elapsed, precision=3)}: "

    def _anchor(self, instant: datetime, relative: str | None) -> datetime:
        """Derive the JVM start from the first datestamp seen."""
        if relative is not None:
            offset_ms = seconds_to_millis(relative.removesuffix(": "))
            jvm_start = instant - timedelta(milliseconds=offset_ms)
        else:
            jvm_start = instant
        self.jvm_start = jvm_start
        logger.info("JVM start not configured; anchored at %s", jvm_start.isoformat())
        return jvm_start


# ============================================================
# STAGE 2: APPLICATION LOGGING
# ============================================================


class ApplicationLoggingFilter:
    """Recognize application output interleaved with GC logging.

    GC logging should go to a dedicated file (-Xloggc), but stdout captures
    often mix in log4j lines, exceptions and stack traces.
    """

    PATTERNS: tuple[re.Pattern[str], ...] = (
        # '00:02:04,915 INFO [STDOUT]' and '2010-03-25 17:00:20,769 WARN ...'
        re.compile(
            r"^(?:\d{4}-\d{2}-\d{2} )?\d{2}:\d{2}:\d{2},\d{3} "
            r"(?:DEBUG|ERROR|FATAL|INFO|TRACE|WARN|WARNING|SEVERE)\b.*$"
        ),
        # 'java.sql.SQLException: pingDatabase failed status=-1'
        re.compile(r"^(?:java|javax|com|org|net|io)\.[\w.$]*(?:Exception|Error)\b.*$"),
        # 'ORA-12514, TNS:listener does not currently know of service ...'
        re.compile(r"^ORA-\d{1,6}.*$"),
        # '\tat oracle.jdbc.driver.T4CConnection.logon(T4CConnection.java:292)'
        re.compile(r"^\s+at (?:java|javax|com|org|net|io|oracle|sun)\..*$"),
        # 'Caused by: java.net.ConnectException: Connection refused'
        re.compile(r"^Caused by: (?:java|javax|com|org|net|io|oracle|sun)\..*$"),
        # '\t... 56 more'
        re.compile(r"^\s+\.\.\. \d+ more\s*$"),
    )

    def matches(self, text: str) -> bool:
        return any(pattern.match(text) for pattern in self.PATTERNS)


# ============================================================
# STAGE 3: MULTI-LINE MERGING
# ============================================================


@dataclass(frozen=True, slots=True)
class MergeRule:
    """An opening line shape and the continuation expected on the next line.

    ``interleaved`` lines may appear between the two; they are passed through
    as records of their own while the opener stays pending.
    """

    name: str
    opener: re.Pattern[str]
    continuation: re.Pattern[str]
    interleaved: re.Pattern[str] | None = None
    separator: str = " "

    def join(self, head: str, tail: str) -> str:
        return f"{head.rstrip()}{self.separator}{tail.strip()}"

    def passes_through(self, text: str) -> bool:
        return self.interleaved is not None and self.interleaved.match(text) is not None


_OPTIONAL_CAUSE = rf"(?: \({CAUSE}\))?"

MERGE_RULES: tuple[MergeRule, ...] = (
    # CMS concurrent phase output lands in the middle of a ParNew collection:
    # 2869.318: [GC 2869.318: [ParNew: ...]2869.318: [CMS2869.319: [CMS-concurrent-preclean: 0.024/0.048 secs]
    #  (concurrent mode failure): 3163392K->1451452K(3163392K), 8.1924620 secs] ...
    MergeRule(
        name="concurrent_mode_failure",
        opener=re.compile(
            rf"^{TIMESTAMP}: \[GC{_OPTIONAL_CAUSE} {TIMESTAMP}: \[ParNew: .*\]{TIMESTAMP}: "
            rf"\[CMS ?{TIMESTAMP}: \[CMS-concurrent-[a-z-]+: {DURATION}/{DURATION} secs\]"
            rf"{OPTIONAL_TIMES}\s*$"
        ),
        continuation=re.compile(r"^\s*\(concurrent mode (?:failure|interrupted)\): .*secs\].*$"),
    ),
    # Header printed before the generation details are known:
    # 10.392: [GC
    #  [PSYoungGen: 1024K->64K(1088K)] 1800K->900K(4032K), 0.0033530 secs]
    MergeRule(
        name="split_header",
        opener=re.compile(rf"^{TIMESTAMP}: \[(?:GC|Full GC){_OPTIONAL_CAUSE}\s*$"),
        continuation=re.compile(
            rf"^\s*(?:{TIMESTAMP}: )?\[(?:PSYoungGen|ParOldGen|PSOldGen|ParNew|DefNew|Tenured|CMS): "
            r".*secs\].*$"
        ),
    ),
    # Safepoint timer output lands between a generation header and its figures:
    # 1.178: [GC 1.178: [ParNew
    # Total time for which application threads were stopped: 0.0003160 seconds
    # : 15336K->1664K(15360K), 0.0094290 secs] 17234K->4564K(49536K), 0.0095140 secs]
    MergeRule(
        name="interrupted_generation",
        opener=re.compile(
            rf"^{TIMESTAMP}: \[(?:GC|Full GC){_OPTIONAL_CAUSE} {TIMESTAMP}: "
            r"\[(?:ParNew|DefNew|Tenured|CMS)\s*$"
        ),
        continuation=re.compile(rf"^\s*: \d+K->\d+K\(\d+K\), {DURATION} secs\].*$"),
        interleaved=re.compile(
            rf"^(?:{TIMESTAMP}: )?"
            r"(?:Total time for which application threads were stopped|Application time): .*$"
        ),
        separator="",
    ),
    # CPU accounting printed on its own line after the event:
    # 2.847: [GC pause (young), 0.0414530 secs]
    #  [Times: user=0.13 sys=0.01, real=0.04 secs]
    MergeRule(
        name="times_block",
        opener=re.compile(rf"^(?!.*\[Times:){TIMESTAMP}: \[.*secs\]\s*$"),
        continuation=re.compile(rf"^\s*{TIMES_BLOCK}\s*$"),
    ),
)


class MultilineMerger:
    """State machine joining an opening line with its continuation.

    A buffered opener is emitted on its own when the next line is not its
    continuation; that next line is then treated as a fresh line. A merged
    record that opens another (not yet applied) rule stays buffered, so rules
    chain while never holding more than one pending record. Interleaved timer
    lines are emitted as soon as they are read, ahead of the record they
    interrupt.
    """

    def __init__(self, rules: Sequence[MergeRule], stats: PipelineStats) -> None:
        self.rules = tuple(rules)
        self._stats = stats
        self._pending: CanonicalRecord | None = None
        self._pending_rule: MergeRule | None = None
        self._applied: frozenset[str] = frozenset()

    @property
    def pending(self) -> CanonicalRecord | None:
        return self._pending

    def feed(self, line: LogLine) -> Iterator[CanonicalRecord]:
        """Consume one line; yield zero, one or two completed records."""
        pending, rule = self._pending, self._pending_rule
        if pending is not None and rule is not None:
            if rule.continuation.match(line.text):
                merged = CanonicalRecord(
                    text=rule.join(pending.text, line.text),
                    first_line=pending.first_line,
                    last_line=line.line_no,
                )
                applied = self._applied | {rule.name}
                self._stats.merges += 1
                self._clear()
                if not self._hold(merged, applied):
                    yield merged
                return

            if rule.passes_through(line.text):
                logger.debug("Line %d interrupts %s; passing it through", line.line_no, rule.name)
                yield CanonicalRecord(text=line.text, first_line=line.line_no, last_line=line.line_no)
                return

            logger.debug(
                "Line %d does not continue %s; emitting line %d unmerged",
                line.line_no,
                rule.name,
                pending.first_line,
            )
            self._clear()
            yield pending

        record = CanonicalRecord(text=line.text, first_line=line.line_no, last_line=line.line_no)
        if not self._hold(record, frozenset()):
            yield record

    def flush(self) -> Iterator[CanonicalRecord]:
        """Emit the pending record, if any, at end of input."""
        pending = self._pending
        if pending is not None:
            self._clear()
            yield pending

    def _hold(self, record: CanonicalRecord, applied: frozenset[str]) -> bool:
        for rule in self.rules:
            if rule.name not in applied and rule.opener.match(record.text):
                self._pending = record
                self._pending_rule = rule
                self._applied = applied
                return True
        return False

    def _clear(self) -> None:
        self._pending = None
        self._pending_rule = None
        self._applied = frozenset()


# ============================================================


# ============================================================
# PIPELINE
# ============================================================


class PreprocessPipeline:
    """Raw lines in, canonical records out, in non-decreasing line order."""

    def __init__(self, config: PipelineConfig | None = None) -> None:
        self.config = config or PipelineConfig()
        self.stats = PipelineStats()
        self._datestamps = DateStampRewriter(self.config.jvm_start, self.stats)
        self._app_logging = ApplicationLoggingFilter()
        self._merger = MultilineMerger(MERGE_RULES, self.stats)

    def process(self, lines: Iterable[str]) -> Iterator[CanonicalRecord]:
        """Preprocess raw text lines, numbering them from 1."""
        log_lines = (
            LogLine(line_no=line_no, text=line.rstrip("\r\n"))
            for line_no, line in enumerate(lines, start=1)
        )
        return self.process_lines(log_lines)

    def process_lines(self, lines: Iterable[LogLine]) -> Iterator[CanonicalRecord]:
        """Preprocess already-numbered lines."""
        for line in lines:
            self.stats.raw_lines += 1
            for record in self._process_one(line):
                self.stats.records_emitted += 1
                yield record

        for record in self._merger.flush():
            self.stats.records_emitted += 1
            yield record

    def _process_one(self, line: LogLine) -> Iterator[CanonicalRecord]:
        if not line.text.strip():
            self.stats.blank_lines += 1
            return

        text = self._datestamps.rewrite(line.text)

        if self.config.drop_application_logging and self._app_logging.matches(text):
            self.stats.application_lines_dropped += 1
            logger.debug("Dropping application logging at line %d", line.line_no)
            return

        if not self.config.merge_multiline:
            yield CanonicalRecord(text=text, first_line=line.line_no, last_line=line.line_no)
            return

        if text != line.text:
            line = LogLine(line_no=line.line_no, text=text)
        yield from self._merger.feed(line)
