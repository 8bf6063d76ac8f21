from __future__ import annotations

import re

import pytest
from pydantic import ValidationError

from gc_classify.catalog import EventCatalog, EventGrammar, build_catalog, default_catalog
from gc_classify.classifier import classify_line
from gc_classify.errors import GrammarContractError
from gc_classify.models import Capability, EventKind, GCEvent, RegionOccupancy


def _kb(before: int, after: int, capacity: int) -> RegionOccupancy:
    return RegionOccupancy(before_kb=before, after_kb=after, capacity_kb=capacity)


def _mb(before: int, after: int, capacity: int) -> RegionOccupancy:
    return _kb(before * 1024, after * 1024, capacity * 1024)


# ============================================================
# CATALOG STRUCTURE
# ============================================================


def test_default_catalog_is_built_once() -> None:
    assert default_catalog() is default_catalog()


def test_catalog_names_are_unique(catalog: EventCatalog) -> None:
    names = [grammar.name for grammar in catalog]
    assert len(names) == len(set(names)) == len(catalog)


def test_every_kind_has_a_grammar(catalog: EventCatalog) -> None:
    covered = {grammar.kind for grammar in catalog}
    assert covered == set(EventKind) - {EventKind.UNKNOWN}


def test_catalog_rejects_duplicate_names(catalog: EventCatalog) -> None:
    grammar = catalog.get("par_new")
    with pytest.raises(ValueError):
        EventCatalog(grammars=(grammar, grammar))


def test_catalog_get_unknown_name(catalog: EventCatalog) -> None:
    with pytest.raises(KeyError):
        catalog.get("no_such_grammar")


def test_grammar_groups_must_match_capabilities() -> None:
    with pytest.raises(GrammarContractError):
        EventGrammar(
            name="marker_with_duration",
            kind=EventKind.CMS_CONCURRENT_MARK_START,
            pattern=re.compile(r"^(?P<ts>\d+\.\d{3}): (?P<dur>\d+\.\d+)$"),
        )
    with pytest.raises(GrammarContractError):
        EventGrammar(
            name="young_without_region",
            kind=EventKind.PARALLEL_SCAVENGE,
            pattern=re.compile(r"^(?P<ts>\d+\.\d{3}): (?P<dur>\d+\.\d+) (?P<trigger>\w+)$"),
        )


def test_build_catalog_is_deterministic() -> None:
    assert [g.name for g in build_catalog()] == [g.name for g in default_catalog()]


# ============================================================
# EVENT MODEL
# ============================================================


def test_event_rejects_payload_its_kind_lacks() -> None:
    with pytest.raises(ValidationError):
        GCEvent(
            kind=EventKind.CMS_CONCURRENT_MARK_START,
            timestamp_ms=1,
            raw_text="x",
            duration_ms=5,
        )


def test_event_supports_capability() -> None:
    event = classify_line("251.781: [CMS-concurrent-mark-start]")
    assert not event.supports(Capability.DURATION)
    assert not event.is_blocking

    event = classify_line("252.707: [CMS-concurrent-mark: 0.796/0.926 secs]")
    assert event.supports(Capability.DURATION)
    assert not event.supports(Capability.YOUNG)


# ============================================================
# PARALLEL COLLECTOR
# ============================================================


def test_parallel_old_compacting() -> None:
    event = classify_line(
        "2182.541: [Full GC [PSYoungGen: 1940K->0K(98560K)] [ParOldGen: 813929K->422305K(815616K)] "
        "815869K->422305K(914176K) [PSPermGen: 81960K->81783K(164352K)], 2.4749181 secs]"
    )

    assert event.kind is EventKind.PARALLEL_OLD_COMPACTING
    assert event.timestamp_ms == 2182541
    assert event.duration_ms == 2475
    assert event.trigger is None
    assert event.young == _kb(1940, 0, 98560)
    assert event.old == _kb(813929, 422305, 815616)
    assert event.combined == _kb(815869, 422305, 914176)
    assert event.permanent == _kb(81960, 81783, 164352)
    assert event.is_blocking


def test_parallel_serial_old_with_trigger() -> None:
    event = classify_line(
        "3.600: [Full GC (System) [PSYoungGen: 48K->0K(3584K)] [PSOldGen: 1344K->1350K(8192K)] "
        "1392K->1350K(11776K) [PSPermGen: 2558K->2558K(16384K)], 0.0144360 secs]"
    )

    assert event.kind is EventKind.PARALLEL_SERIAL_OLD
    assert event.trigger == "System"
    assert event.duration_ms == 14


def test_parallel_scavenge() -> None:
    event = classify_line(
        "19.135: [GC (Allocation Failure) [PSYoungGen: 1024K->64K(1088K)] 1800K->900K(4032K), "
        "0.0033530 secs] [Times: user=0.01 sys=0.00, real=0.00 secs]"
    )

    assert event.kind is EventKind.PARALLEL_SCAVENGE
    assert event.timestamp_ms == 19135
    assert event.trigger == "Allocation Failure"
    assert event.young == _kb(1024, 64, 1088)
    assert event.combined == _kb(1800, 900, 4032)
    assert event.old is None
    assert event.duration_ms == 3


# ============================================================
# CMS COLLECTOR
# ============================================================


def test_par_new() -> None:
    event = classify_line(
        "1.219: [GC 1.219: [ParNew: 4800K->512K(5120K), 0.0105210 secs] "
        "4800K->1028K(15872K), 0.0106160 secs]"
    )

    assert event.kind is EventKind.PAR_NEW
    assert event.young == _kb(4800, 512, 5120)
    assert event.combined == _kb(4800, 1028, 15872)
    assert event.duration_ms == 11


def test_par_new_concurrent_mode_failure() -> None:
    event = classify_line(
        "2869.318: [GC 2869.318: [ParNew: 261760K->261760K(261952K), 0.0000230 secs]"
        "2869.318: [CMS2869.319: [CMS-concurrent-preclean: 0.024/0.048 secs] "
        "(concurrent mode failure): 3163392K->1451452K(3163392K), 8.1924620 secs] "
        "3425344K->1451452K(3425344K), [CMS Perm : 53194K->53194K(88744K)], 8.1925740 secs]"
    )

    assert event.kind is EventKind.PAR_NEW_CONCURRENT_MODE_FAILURE
    assert event.trigger == "concurrent mode failure"
    assert event.young == _kb(261760, 261760, 261952)
    assert event.old == _kb(3163392, 1451452, 3163392)
    assert event.combined == _kb(3425344, 1451452, 3425344)
    assert event.permanent == _kb(53194, 53194, 88744)
    assert event.duration_ms == 8193


def test_par_new_concurrent_mode_failure_after_system_gc() -> None:
    event = classify_line(
        "2869.318: [GC (System.gc()) 2869.318: [ParNew: 261760K->261760K(261952K), 0.0000230 secs]"
        "2869.318: [CMS2869.319: [CMS-concurrent-preclean: 0.024/0.048 secs] "
        "(concurrent mode failure): 3163392K->1451452K(3163392K), 8.1924620 secs] "
        "3425344K->1451452K(3425344K), [CMS Perm : 53194K->53194K(88744K)], 8.1925740 secs]"
    )

    assert event.kind is EventKind.PAR_NEW_CONCURRENT_MODE_FAILURE
    assert event.trigger == "concurrent mode failure"
    assert event.old == _kb(3163392, 1451452, 3163392)


def test_cms_serial_old() -> None:
    event = classify_line(
        "2.352: [Full GC 2.352: [CMS: 9370K->7853K(10240K), 0.0311790 secs] 13466K->7853K(15872K), "
        "[CMS Perm : 2571K->2571K(12288K)], 0.0312600 secs]"
    )

    assert event.kind is EventKind.CMS_SERIAL_OLD
    assert event.old == _kb(9370, 7853, 10240)
    assert event.permanent == _kb(2571, 2571, 12288)
    assert event.duration_ms == 31


def test_cms_initial_mark() -> None:
    event = classify_line(
        "251.763: [GC [1 CMS-initial-mark: 4133273K(8218240K)] 4150346K(8367360K), 0.0174433 secs]"
    )

    assert event.kind is EventKind.CMS_INITIAL_MARK
    assert event.timestamp_ms == 251763
    assert event.duration_ms == 17
    assert event.is_blocking


def test_cms_remark() -> None:
    event = classify_line(
        "253.103: [GC[YG occupancy: 16172 K (149120 K)]253.103: [Rescan (parallel) , 0.0226730 secs]"
        "253.126: [weak refs processing, 0.0044740 secs] [1 CMS-remark: 4173470K(8218240K)] "
        "4189643K(8367360K), 0.0857163 secs]"
    )

    assert event.kind is EventKind.CMS_REMARK
    assert event.duration_ms == 86


def test_cms_concurrent_mark_start() -> None:
    event = classify_line("251.781: [CMS-concurrent-mark-start]")

    assert event.kind is EventKind.CMS_CONCURRENT_MARK_START
    assert event.timestamp_ms == 251781
    assert event.duration_ms is None


@pytest.mark.parametrize(
    ("line", "kind", "duration_ms"),
    [
        ("252.707: [CMS-concurrent-mark: 0.796/0.926 secs]", EventKind.CMS_CONCURRENT_MARK, 926),
        ("252.750: [CMS-concurrent-preclean: 0.024/0.048 secs]", EventKind.CMS_CONCURRENT_PRECLEAN, 48),
        (
            "253.102: [CMS-concurrent-abortable-preclean: 0.083/0.214 secs] "
            "[Times: user=1.23 sys=0.02, real=0.21 secs]",
            EventKind.CMS_CONCURRENT_ABORTABLE_PRECLEAN,
            214,
        ),
        ("255.001: [CMS-concurrent-sweep: 1.204/1.303 secs]", EventKind.CMS_CONCURRENT_SWEEP, 1303),
        ("255.100: [CMS-concurrent-reset: 0.031/0.031 secs]", EventKind.CMS_CONCURRENT_RESET, 31),
    ],
)
def test_cms_concurrent_phase_end(line: str, kind: EventKind, duration_ms: int) -> None:
    event = classify_line(line)

    assert event.kind is kind
    assert event.duration_ms == duration_ms
    assert not event.is_blocking


def test_cms_abort_preclean_prefix() -> None:
    event = classify_line(
        "CMS: abort preclean due to time 32633.935: [CMS-concurrent-abortable-preclean: 0.622/5.054 secs]"
    )

    assert event.kind is EventKind.CMS_CONCURRENT_ABORTABLE_PRECLEAN
    assert event.timestamp_ms == 32633935
    assert event.duration_ms == 5054


# ============================================================
# SERIAL COLLECTOR
# ============================================================


def test_serial_new() -> None:
    event = classify_line(
        "7.798: [GC 7.798: [DefNew: 37172K->3631K(39296K), 0.0209300 secs] "
        "41677K->10314K(126720K), 0.0210210 secs]"
    )

    assert event.kind is EventKind.SERIAL_NEW
    assert event.young == _kb(37172, 3631, 39296)
    assert event.duration_ms == 21


def test_serial_old() -> None:
    event = classify_line(
        "2.457: [Full GC 2.457: [Tenured: 1092K->2866K(116544K), 0.0489070 secs] "
        "1092K->2866K(129280K), [Perm : 8602K->8602K(131072K)], 0.0490320 secs]"
    )

    assert event.kind is EventKind.SERIAL_OLD
    assert event.old == _kb(1092, 2866, 116544)
    assert event.permanent == _kb(8602, 8602, 131072)
    assert event.duration_ms == 49


# ============================================================
# G1 COLLECTOR
# ============================================================


def test_g1_young_pause_without_details() -> None:
    event = classify_line("2.847: [GC pause (young), 0.0414530 secs]")

    assert event.kind is EventKind.G1_YOUNG_PAUSE
    assert event.trigger is None
    assert event.combined is None
    assert event.duration_ms == 41


def test_g1_young_pause_with_trigger_and_sizes() -> None:
    event = classify_line(
        "6.950: [GC pause (G1 Evacuation Pause) (young) 52M->20M(256M), 0.0123450 secs]"
    )

    assert event.kind is EventKind.G1_YOUNG_PAUSE
    assert event.trigger == "G1 Evacuation Pause"
    assert event.combined == _mb(52, 20, 256)
    assert event.duration_ms == 12


def test_g1_young_initial_mark() -> None:
    event = classify_line("1244.357: [GC pause (young) (initial-mark) 847M->599M(970M), 0.0566840 secs]")

    assert event.kind is EventKind.G1_YOUNG_INITIAL_MARK
    assert event.timestamp_ms == 1244357
    assert event.combined == _mb(847, 599, 970)
    assert event.duration_ms == 57


def test_g1_mixed_pause() -> None:
    event = classify_line(
        "3.121: [GC pause (G1 Evacuation Pause) (mixed) 100M->60M(256M), 0.0200000 secs]"
    )

    assert event.kind is EventKind.G1_MIXED_PAUSE
    assert event.duration_ms == 20


@pytest.mark.parametrize(
    "line",
    [
        "106.129: [GC remark, 0.0450170 secs]",
        "106.129: [GC remark 106.129: [GC ref-proc, 0.0000080 secs], 0.0450170 secs]",
    ],
)
def test_g1_remark(line: str) -> None:
    event = classify_line(line)

    assert event.kind is EventKind.G1_REMARK
    assert event.timestamp_ms == 106129
    assert event.duration_ms == 45


def test_g1_cleanup() -> None:
    event = classify_line("2972.698: [GC cleanup 1591M->1591M(3098M), 0.0043550 secs]")

    assert event.kind is EventKind.G1_CLEANUP
    assert event.combined == _mb(1591, 1591, 3098)
    assert event.duration_ms == 4


def test_g1_concurrent_phases() -> None:
    start = classify_line("0.891: [GC concurrent-mark-start]")
    end = classify_line("1.223: [GC concurrent-mark-end, 0.3319950 secs]")

    assert start.kind is EventKind.G1_CONCURRENT_START
    assert start.duration_ms is None
    assert end.kind is EventKind.G1_CONCURRENT
    assert end.duration_ms == 332


def test_g1_full_gc() -> None:
    event = classify_line("5060.152: [Full GC (System.gc()) 2270M->2038M(3398M), 5.8360430 secs]")

    assert event.kind is EventKind.G1_FULL_GC
    assert event.timestamp_ms == 5060152
    assert event.trigger == "System.gc()"
    assert event.combined == _mb(2270, 2038, 3398)
    assert event.duration_ms == 5836


# ============================================================
# VERBOSE GC, UNIFIED LOGGING, SAFEPOINTS
# ============================================================


def test_verbose_gc_young() -> None:
    event = classify_line("2205570.508: [GC 1726387K->773247K(3097984K), 0.2318035 secs]")

    assert event.kind is EventKind.VERBOSE_GC_YOUNG
    assert event.combined == _kb(1726387, 773247, 3097984)
    assert event.duration_ms == 232


def test_verbose_gc_old() -> None:
    event = classify_line("2192.214: [Full GC 1660254K->1053213K(3097984K), 5.6349480 secs]")

    assert event.kind is EventKind.VERBOSE_GC_OLD
    assert event.duration_ms == 5635


def test_verbose_gc_old_with_trigger_in_kilobytes() -> None:
    event = classify_line("2192.214: [Full GC (System.gc()) 1660254K->1053213K(3097984K), 5.6349480 secs]")

    assert event.kind is EventKind.VERBOSE_GC_OLD
    assert event.trigger == "System.gc()"


def test_unified_young_pause() -> None:
    event = classify_line(
        "[2020-03-01T10:15:00.123+0000][12.345s][info][gc] GC(3) "
        "Pause Young (Normal) (G1 Evacuation Pause) 24M->4M(256M) 3.543ms"
    )

    assert event.kind is EventKind.UNIFIED_YOUNG_PAUSE
    assert event.timestamp_ms == 12345
    assert event.trigger == "G1 Evacuation Pause"
    assert event.combined == _mb(24, 4, 256)
    assert event.duration_ms == 4


def test_unified_pauses_with_millisecond_uptime() -> None:
    full = classify_line("[5678ms][info][gc] GC(10) Pause Full (System.gc()) 100M->50M(256M) 45.678ms")
    remark = classify_line("[7.000s][info][gc] GC(12) Pause Remark 80M->80M(256M) 1.234ms")
    cleanup = classify_line("[7.100s][info][gc] GC(12) Pause Cleanup 80M->78M(256M) 0.512ms")

    assert full.kind is EventKind.UNIFIED_FULL_PAUSE
    assert full.timestamp_ms == 5678
    assert full.trigger == "System.gc()"
    assert full.duration_ms == 46
    assert remark.kind is EventKind.UNIFIED_REMARK
    assert remark.duration_ms == 1
    assert cleanup.kind is EventKind.UNIFIED_CLEANUP
    assert cleanup.duration_ms == 1


def test_application_stopped_time() -> None:
    bare = classify_line("Total time for which application threads were stopped: 0.0968457 seconds")
    stamped = classify_line(
        "12.345: Total time for which application threads were stopped: 0.0001234 seconds, "
        "Stopping threads took: 0.0000456 seconds"
    )

    assert bare.kind is EventKind.APPLICATION_STOPPED_TIME
    assert bare.timestamp_ms == 0
    assert bare.duration_ms == 97
    assert stamped.kind is EventKind.APPLICATION_STOPPED_TIME
    assert stamped.timestamp_ms == 12345
    assert stamped.duration_ms == 0


def test_application_concurrent_time() -> None:
    event = classify_line("Application time: 130.5284640 seconds")

    assert event.kind is EventKind.APPLICATION_CONCURRENT_TIME
    assert event.duration_ms == 130528


def test_trailing_times_block_is_accepted() -> None:
    event = classify_line(
        "7.798: [GC 7.798: [DefNew: 37172K->3631K(39296K), 0.0209300 secs] "
        "41677K->10314K(126720K), 0.0210210 secs] [Times: user=0.02 sys=0.00, real=0.02 secs]"
    )

    assert event.kind is EventKind.SERIAL_NEW
