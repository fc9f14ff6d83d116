from datetime import date
from typing import Optional

from pydantic import BaseModel, Field

from .enums import AnchorKind, AnchorSource, ReferenceEvent

# Relative anchors sort by clinical phase first, then by day offset.
_PHASE_ORDER = {
    ReferenceEvent.ADMISSION: 0,
    ReferenceEvent.SURGERY: 1,
    ReferenceEvent.DISCHARGE: 2,
}


class SourceSpan(BaseModel):
    start: int = Field(ge=0)
    end: int = Field(ge=0)
    text: str = ""


class TemporalAnchor(BaseModel):
    kind: AnchorKind = AnchorKind.UNRESOLVED
    value: Optional[date] = None
    relative_day: Optional[int] = None  # e.g. 3 for "POD#3"
    reference_event: Optional[ReferenceEvent] = None
    reference_date: Optional[date] = None
    source: AnchorSource = AnchorSource.NONE
    confidence: float = Field(default=0.0, ge=0.0, le=1.0)
    year_inferred: bool = False
    text: Optional[str] = None

    @classmethod
    def unresolved(cls) -> "TemporalAnchor":
        return cls(kind=AnchorKind.UNRESOLVED, source=AnchorSource.NONE, confidence=0.0)

    @property
    def is_resolved(self) -> bool:
        return self.kind != AnchorKind.UNRESOLVED

    def sort_key(self) -> tuple[int, str]:
        """Return a sortable tuple. Absolute dates, then relative offsets, then unknown."""
        if self.kind == AnchorKind.ABSOLUTE and self.value is not None:
            return (0, self.value.isoformat())

        if self.kind == AnchorKind.RELATIVE and self.relative_day is not None:
            phase = _PHASE_ORDER.get(self.reference_event, 1)
            return (1, f"REL:{phase}:{max(self.relative_day, 0):06d}")

        return (99, "UNKNOWN")

    def days_between(self, other: "TemporalAnchor") -> Optional[int]:
        """Signed day difference other - self, or None when the two are not comparable."""
        if self.value is not None and other.value is not None:
            return (other.value - self.value).days
        if (
            self.relative_day is not None
            and other.relative_day is not None
            and self.reference_event == other.reference_event
            and self.reference_date == other.reference_date
        ):
            return other.relative_day - self.relative_day
        return None
