"""
Exceptions raised by the extraction core.

Ordinary messy input never raises; it degrades to Warning records and
low-confidence annotations. These classes cover the two cases that do.
"""


class InvariantViolation(RuntimeError):
    """A structural invariant of an emitted record was broken (a defect, never bad input)."""


class ExtractionCancelled(RuntimeError):
    """The caller set the cancellation flag before the document finished."""
