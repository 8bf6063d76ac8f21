from __future__ import annotations

from collections.abc import Callable
from pathlib import Path

import pytest

from gc_classify.catalog import EventCatalog, default_catalog


@pytest.fixture
def catalog() -> EventCatalog:
    return default_catalog()


@pytest.fixture
def cms_lines() -> list[str]:
    return [
        "251.763: [GC [1 CMS-initial-mark: 4133273K(8218240K)] 4150346K(8367360K), 0.0174433 secs]",
        "251.781: [CMS-concurrent-mark-start]",
        "2010-03-25 17:00:20,769 WARN something",
        "252.707: [CMS-concurrent-mark: 0.796/0.926 secs]",
        "252.889: [CMS-concurrent-abortable-preclean-start]",
        "253.102: [CMS-concurrent-abortable-preclean: 0.083/0.214 secs] "
        "[Times: user=1.23 sys=0.02, real=0.21 secs]",
        "",
        "this is not a gc line",
    ]


@pytest.fixture
def write_log() -> Callable[[Path, list[str]], None]:
    def _write(path: Path, lines: list[str]) -> None:
        path.write_text("\n".join(lines) + "\n", encoding="utf-8")

    return _write
