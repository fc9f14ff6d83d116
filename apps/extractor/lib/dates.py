"""
Time-expression scanning for clinical notes.

Finds three kinds of expressions with their character spans:
  - calendar dates (full, or year-less with the year inferred from the note)
  - relative day counts (POD, hospital day)
  - encounter phrases ("on admission", "at discharge")
Resolution against document anchors lives in temporal.py.
"""
from __future__ import annotations

import re
from dataclasses import dataclass
from datetime import date

# ── Date regex patterns ──────────────────────────────────────────────────

_FULL_MONTHS = (
    "January|February|March|April|May|June|July|August"
    "|September|October|November|December"
)
_ABBREV_MONTHS = "Jan|Feb|Mar|Apr|May|Jun|Jul|Aug|Sep|Sept|Oct|Nov|Dec"

_DATE_PATTERNS = [
    # 0: MM/DD/YYYY or MM-DD-YYYY
    r"\b(\d{1,2})[/\-](\d{1,2})[/\-](\d{4})\b",
    # 1: YYYY-MM-DD
    r"\b(\d{4})[/\-](\d{1,2})[/\-](\d{1,2})\b",
    # 2: Month DD, YYYY / Mon DD, YYYY, optional ordinal suffix
    rf"\b({_FULL_MONTHS}|{_ABBREV_MONTHS})\.?\s+(\d{{1,2}})(?:st|nd|rd|th)?,?\s+(\d{{4}})\b",
    # 3: DD Month YYYY
    rf"\b(\d{{1,2}})\s+({_FULL_MONTHS}|{_ABBREV_MONTHS}),?\s+(\d{{4}})\b",
    # 4: MM/DD/YY
    r"\b(\d{1,2})/(\d{1,2})/(\d{2})\b(?![/\-]?\d)",
]

# Year-less forms. Bare "4/5" is too often a strength grade or ratio, so the
# numeric form needs a leading preposition.
_PARTIAL_NUMERIC = re.compile(
    r"\b(?:on|dated|date:?|since|from|until|through|by)\s+(\d{1,2})/(\d{1,2})\b(?![/\-]\d)",
    re.IGNORECASE,
)
_PARTIAL_MONTH_NAME = re.compile(
    rf"\b({_FULL_MONTHS}|{_ABBREV_MONTHS})\.?\s+(\d{{1,2}})(?:st|nd|rd|th)?\b(?!,?\s+\d{{4}})(?!\s*/)"
)

_MONTH_MAP = {
    "january": 1, "february": 2, "march": 3, "april": 4,
    "may": 5, "june": 6, "july": 7, "august": 8,
    "september": 9, "october": 10, "november": 11, "december": 12,
    "jan": 1, "feb": 2, "mar": 3, "apr": 4,
    "jun": 6, "jul": 7, "aug": 8, "sep": 9, "sept": 9,
    "oct": 10, "nov": 11, "dec": 12,
}

# ── Relative day patterns ────────────────────────────────────────────────

# More specific patterns first to avoid shorter pattern stealing the match
_RELATIVE_PATTERNS = [
    (re.compile(r"\bpost-?op(?:erative)?\s+day\s*#?\s*(\d{1,3})\b", re.IGNORECASE), "pod"),
    (re.compile(r"\bPOD\s*#?\s*(\d{1,3})\b", re.IGNORECASE), "pod"),
    (re.compile(r"\bday\s*#?\s*(\d{1,3})\s+(?:post-?op(?:erative(?:ly)?)?|after surgery)\b", re.IGNORECASE), "pod"),
    (re.compile(r"\b(\d{1,3})\s+days?\s+(?:post-?op(?:eratively)?|after surgery)\b", re.IGNORECASE), "pod"),
    (re.compile(r"\bhospital\s+day\s*#?\s*(\d{1,3})\b", re.IGNORECASE), "hospital_day"),
    (re.compile(r"\bHD\s*#?\s*(\d{1,3})\b"), "hospital_day"),
]

_ENCOUNTER_PATTERNS = [
    (re.compile(r"\b(?:on|at|upon)\s+(?:the\s+time\s+of\s+)?admission\b", re.IGNORECASE), "admission"),
    (re.compile(r"\b(?:on|at|upon)\s+(?:the\s+time\s+of\s+)?discharge\b", re.IGNORECASE), "discharge"),
]


@dataclass(frozen=True)
class DateMention:
    value: date
    start: int
    end: int
    text: str
    year_inferred: bool = False


@dataclass(frozen=True)
class RelativeMention:
    kind: str  # pod | hospital_day | admission | discharge
    day: int
    start: int
    end: int
    text: str


# ── Parsing helpers ──────────────────────────────────────────────────────


def _build_date(year: int, month: int, day: int) -> date | None:
    try:
        if 1 <= month <= 12 and 1 <= day <= 31 and 1900 <= year <= 2100:
            return date(year, month, day)
    except ValueError:
        pass
    return None


def _parse_date_from_match(match: re.Match, pattern_index: int) -> date | None:
    """Parse a date from a regex match based on which pattern matched."""
    try:
        groups = match.groups()
        if pattern_index == 0:  # MM/DD/YYYY
            month, day, year = int(groups[0]), int(groups[1]), int(groups[2])
        elif pattern_index == 1:  # YYYY-MM-DD
            year, month, day = int(groups[0]), int(groups[1]), int(groups[2])
        elif pattern_index == 2:  # Month DD YYYY
            month = _MONTH_MAP.get(groups[0].lower(), 0)
            day, year = int(groups[1]), int(groups[2])
        elif pattern_index == 3:  # DD Month YYYY
            day = int(groups[0])
            month = _MONTH_MAP.get(groups[1].lower(), 0)
            year = int(groups[2])
        elif pattern_index == 4:  # MM/DD/YY
            month, day = int(groups[0]), int(groups[1])
            year = 2000 + int(groups[2])
        else:
            return None
        return _build_date(year, month, day)
    except (ValueError, IndexError):
        return None


def _overlaps(start: int, end: int, spans: list[tuple[int, int]]) -> bool:
    return any(start < e and s < end for s, e in spans)


def find_full_dates(text: str) -> list[DateMention]:
    """All fully specified calendar dates in *text*, in document order."""
    results: list[DateMention] = []
    taken: list[tuple[int, int]] = []
    for i, pattern in enumerate(_DATE_PATTERNS):
        for m in re.finditer(pattern, text, re.IGNORECASE):
            if _overlaps(m.start(), m.end(), taken):
                continue
            d = _parse_date_from_match(m, i)
            if d:
                taken.append((m.start(), m.end()))
                results.append(DateMention(d, m.start(), m.end(), m.group(0)))
    results.sort(key=lambda dm: dm.start)
    return results


def _nearest_year(position: int, full_dates: list[DateMention]) -> int | None:
    if not full_dates:
        return None
    nearest = min(full_dates, key=lambda dm: (abs(dm.start - position), dm.start))
    return nearest.value.year


def find_dates(text: str, default_year: int | None = None) -> list[DateMention]:
    """
    Full dates plus year-less dates. A year-less date takes the year of the
    nearest full date in *text*, else *default_year*, else the current year.
    """
    if not text:
        return []
    full = find_full_dates(text)
    taken = [(dm.start, dm.end) for dm in full]
    results = list(full)

    partial_hits: list[tuple[int, int, int, int]] = []  # (start, end, month, day)
    for m in _PARTIAL_NUMERIC.finditer(text):
        partial_hits.append((m.start(1), m.end(2), int(m.group(1)), int(m.group(2))))
    for m in _PARTIAL_MONTH_NAME.finditer(text):
        partial_hits.append((m.start(), m.end(), _MONTH_MAP.get(m.group(1).lower(), 0), int(m.group(2))))

    for start, end, month, day in sorted(partial_hits):
        if _overlaps(start, end, taken):
            continue
        year = _nearest_year(start, full) or default_year or date.today().year
        d = _build_date(year, month, day)
        if d is None:
            continue
        taken.append((start, end))
        results.append(DateMention(d, start, end, text[start:end], year_inferred=True))

    results.sort(key=lambda dm: dm.start)
    return results


def find_relative_days(text: str) -> list[RelativeMention]:
    """POD / hospital-day counts and encounter phrases, in document order."""
    if not text:
        return []
    results: list[RelativeMention] = []
    taken: list[tuple[int, int]] = []
    for pattern, kind in _RELATIVE_PATTERNS:
        for m in pattern.finditer(text):
            if _overlaps(m.start(), m.end(), taken):
                continue
            taken.append((m.start(), m.end()))
            results.append(RelativeMention(kind, int(m.group(1)), m.start(), m.end(), m.group(0)))
    for pattern, kind in _ENCOUNTER_PATTERNS:
        for m in pattern.finditer(text):
            if _overlaps(m.start(), m.end(), taken):
                continue
            taken.append((m.start(), m.end()))
            results.append(RelativeMention(kind, 0, m.start(), m.end(), m.group(0)))
    results.sort(key=lambda rm: rm.start)
    return results
