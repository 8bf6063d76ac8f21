"""Exception hierarchy for GC log classification."""

from __future__ import annotations


class GCClassifyError(Exception):
    """Base class for all gc-classify errors."""


class MalformedNumber(GCClassifyError, ValueError):
    """A size literal is not a non-negative integer, or does not fit in 32 bits."""


class MalformedDuration(GCClassifyError, ValueError):
    """A seconds or milliseconds literal could not be parsed."""


class MalformedDate(GCClassifyError, ValueError):
    """A datestamp literal could not be parsed into an instant."""


class GrammarContractError(GCClassifyError):
    """A grammar's recognizer matched a line its extractor could not handle."""

    def __init__(self, grammar: str, text: str, reason: str) -> None:
        super().__init__(f"grammar {grammar!r} matched but failed to extract: {reason}")
        self.grammar = grammar
        self.text = text
        self.reason = reason


class TimelineConsumedError(GCClassifyError, RuntimeError):
    """A timeline was iterated a second time."""
