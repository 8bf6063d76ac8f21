"""Classification of canonical records against the event catalog.

``classify`` is total: every record yields exactly one event. Records no grammar
recognizes, and records whose grammar fails to extract them, become ``UNKNOWN``
events that keep the original text.
"""

from __future__ import annotations

import logging
from collections.abc import Iterable, Iterator

from .catalog import EventCatalog, default_catalog
from .errors import GrammarContractError
from .models import CanonicalRecord, ClassificationStats, EventKind, GCEvent

logger = logging.getLogger(__name__)


class Classifier:
    """First-match classifier that keeps per-kind counts."""

    def __init__(self, catalog: EventCatalog | None = None) -> None:
        self.catalog = catalog if catalog is not None else default_catalog()
        self.stats = ClassificationStats()

    def classify(self, record: CanonicalRecord) -> GCEvent:
        event = self._classify(record)
        self.stats.classified += 1
        self.stats.by_kind[event.kind] = self.stats.by_kind.get(event.kind, 0) + 1
        if event.kind is EventKind.UNKNOWN:
            self.stats.unknown += 1
        return event

    def classify_all(self, records: Iterable[CanonicalRecord]) -> Iterator[GCEvent]:
        """Classify lazily, one record at a time, preserving order."""
        for record in records:
            yield self.classify(record)

    def _classify(self, record: CanonicalRecord) -> GCEvent:
        found = self.catalog.find(record.text)
        if found is None:
            logger.debug("No grammar for line %d: %s", record.first_line, record.text)
            return _unknown(record)

        grammar, match = found
        try:
            return grammar.extract(match, record)
        except GrammarContractError as exc:
            self.stats.contract_violations += 1
            logger.error("Line %d: %s", record.first_line, exc)
            return _unknown(record)


def _unknown(record: CanonicalRecord) -> GCEvent:
    return GCEvent.unknown(record.text, first_line=record.first_line, last_line=record.last_line)


def classify(record: CanonicalRecord, catalog: EventCatalog | None = None) -> GCEvent:
    """Classify a single record without keeping statistics."""
    return Classifier(catalog).classify(record)


def classify_line(text: str, catalog: EventCatalog | None = None) -> GCEvent:
    """Classify one already-canonical line of text (line number 1)."""
    return classify(CanonicalRecord(text=text, first_line=1, last_line=1), catalog)
