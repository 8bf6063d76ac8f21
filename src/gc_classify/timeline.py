"""Timeline assembly: the ordered, single-pass event sequence handed to analysis."""

from __future__ import annotations

from collections.abc import Iterable, Iterator

from .catalog import EventCatalog
from .classifier import Classifier
from .errors import TimelineConsumedError
from .models import ClassificationStats, GCEvent, PipelineConfig, PipelineStats
from .preprocess import PreprocessPipeline


class Timeline:
    """Forward-only sequence of events in input order.

    Events are neither sorted by timestamp nor deduplicated. The timeline can be
    iterated once; re-processing means re-running the pipeline on the source.
    The counters fill in as the timeline is consumed.
    """

    def __init__(
        self,
        events: Iterable[GCEvent],
        pipeline_stats: PipelineStats | None = None,
        classification_stats: ClassificationStats | None = None,
    ) -> None:
        self._events = iter(events)
        self._started = False
        self.pipeline_stats = pipeline_stats if pipeline_stats is not None else PipelineStats()
        self.classification_stats = (
            classification_stats if classification_stats is not None else ClassificationStats()
        )

    def __iter__(self) -> Iterator[GCEvent]:
        if self._started:
            raise TimelineConsumedError("Timeline has already been iterated")
        self._started = True
        return self

    def __next__(self) -> GCEvent:
        self._started = True
        return next(self._events)

    @property
    def dropped_lines(self) -> int:
        """Lines removed as application logging."""
        return self.pipeline_stats.application_lines_dropped

    @property
    def unknown_lines(self) -> int:
        """Records classified as UNKNOWN so far."""
        return self.classification_stats.unknown


def assemble(
    events: Iterable[GCEvent],
    *,
    pipeline_stats: PipelineStats | None = None,
    classification_stats: ClassificationStats | None = None,
) -> Timeline:
    return Timeline(events, pipeline_stats, classification_stats)


def build_timeline(
    lines: Iterable[str],
    config: PipelineConfig | None = None,
    catalog: EventCatalog | None = None,
) -> Timeline:
    """Run preprocessing and classification lazily over raw log lines."""
    pipeline = PreprocessPipeline(config)
    classifier = Classifier(catalog)
    events = classifier.classify_all(pipeline.process(lines))
    return assemble(
        events,
        pipeline_stats=pipeline.stats,
        classification_stats=classifier.stats,
    )
