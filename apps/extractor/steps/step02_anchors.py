"""
Step 2 — Document anchors and hospital-course markers.

Anchors: labeled dates (admission, discharge, surgery, ictus), procedure
dates ("underwent craniotomy on 10/12"), prior-context dates, and every
time expression in document order for inheritance.
Markers: admission / discharge / status-change phrases that become
timeline events without being entities.
Rejects: date of birth, printed on, faxed on.
"""
from __future__ import annotations

import logging
import re
from datetime import date
from typing import Optional

from packages.shared.models import (
    AnchorPoint,
    CourseMarker,
    CourseMarkerKind,
    DocumentAnchors,
    ExtractionConfig,
    SourceSpan,
    StructuredFacts,
    Warning,
)
from apps.extractor.lib.dates import find_dates, find_full_dates, find_relative_days
from apps.extractor.lib.negation import detect_qualifiers
from apps.extractor.lib.temporal import (
    anchor_from_date,
    anchor_from_relative,
    resolve_span,
    sentence_bounds,
)
from apps.extractor.lib.vocabulary import DEFAULT_VOCABULARY, Vocabulary

logger = logging.getLogger(__name__)

# ── Label patterns (matched against the text just before a date) ─────────

_LABEL_WINDOW = 60

_ANCHOR_LABELS: list[tuple[str, re.Pattern[str]]] = [
    ("reject", re.compile(
        r"(?:date\s+of\s+birth|dob|born|printed\s+on|generated\s+on|faxed\s+on|fax\s+date|print\s+date)\s*:?\s*$",
        re.IGNORECASE,
    )),
    ("admission", re.compile(
        r"(?:admission\s+date|admit\s+date|date\s+of\s+admission|date\s+admitted|admitted(?:\s+\w+){0,3}\s+on|presented(?:\s+\w+){0,3}\s+on)\s*:?\s*$",
        re.IGNORECASE,
    )),
    ("discharge", re.compile(
        r"(?:discharge\s+date|date\s+of\s+discharge|discharged(?:\s+\w+){0,3}\s+on)\s*:?\s*$",
        re.IGNORECASE,
    )),
    ("surgery", re.compile(
        r"(?:surgery\s+date|date\s+of\s+surgery|procedure\s+date|date\s+of\s+procedure|operation\s+date|date\s+of\s+operation|operated\s+on|(?:was\s+)?performed\s+on)\s*:?\s*$",
        re.IGNORECASE,
    )),
    ("ictus", re.compile(
        r"(?:ictus|date\s+of\s+ictus|symptom\s+onset|onset(?:\s+of\s+symptoms)?|date\s+of\s+injury|date\s+of\s+hemorrhage)\s*(?:on|was)?\s*:?\s*$",
        re.IGNORECASE,
    )),
]

_ON_BEFORE_DATE = re.compile(r"\bon\s*$", re.IGNORECASE)

# ── Course marker patterns ───────────────────────────────────────────────

_MARKER_PATTERNS: list[tuple[CourseMarkerKind, re.Pattern[str]]] = [
    (CourseMarkerKind.ADMISSION, re.compile(r"\b(?:was\s+)?admitted\b|\badmission\s+date\s*:", re.IGNORECASE)),
    (CourseMarkerKind.DISCHARGE, re.compile(r"\bdischarged\b|\bdischarge\s+date\s*:", re.IGNORECASE)),
    (CourseMarkerKind.RESOLVED, re.compile(r"\b(?:resolved|resolution\s+of)\b", re.IGNORECASE)),
    (CourseMarkerKind.IMPROVED, re.compile(r"\b(?:improved|improving|improvement)\b", re.IGNORECASE)),
    (CourseMarkerKind.WORSENED, re.compile(r"\b(?:worsened|worsening|deteriorat(?:ed|ion|ing)|declined)\b", re.IGNORECASE)),
    (CourseMarkerKind.UNCHANGED, re.compile(
        r"\b(?:unchanged|no\s+(?:significant\s+)?change|(?:remains?|remained|clinically|neurologically)\s+stable)\b",
        re.IGNORECASE,
    )),
]

_DISPOSITION_RULES: list[tuple[re.Pattern[str], str]] = [
    (re.compile(r"\bhome\b", re.IGNORECASE), "home"),
    (re.compile(r"\bskilled\s+nursing\b|\bSNF\b", re.IGNORECASE), "SNF"),
    (re.compile(r"\bLTACH\b|\blong[-\s]term\s+acute\s+care\b", re.IGNORECASE), "LTACH"),
    (re.compile(r"\b(?:acute\s+)?rehab(?:ilitation)?\b|\bIRF\b", re.IGNORECASE), "rehab"),
    (re.compile(r"\bhospice\b", re.IGNORECASE), "hospice"),
    (re.compile(r"\bexpired\b|\bdeceased\b", re.IGNORECASE), "expired"),
]

_SINGLE_ENCOUNTER = (CourseMarkerKind.ADMISSION, CourseMarkerKind.DISCHARGE)

# Admission / discharge talked about rather than done ("plan to discharge",
# "will be admitted", "discharge pending placement")
_ENCOUNTER_CLAUSE_BREAK = re.compile(r"[.;!?,\n]")
_PLANNED_BEFORE = re.compile(
    r"\b(?:will|would|should|plan(?:s|ned|ning)?|anticipat\w*|expect(?:s|ed)?|await\w*|pending|"
    r"hope\s+to|ready\s+to|possibl[ey]|likely|tentative(?:ly)?)\b",
    re.IGNORECASE,
)
_PLANNED_AFTER = re.compile(
    r"^\s*(?:is\s+|was\s+|remains\s+)?(?:pending|planned|anticipated|tomorrow|once|when)\b",
    re.IGNORECASE,
)


# ── Anchor detection ─────────────────────────────────────────────────────


def _label_for(text: str, date_start: int) -> Optional[str]:
    context = text[max(0, date_start - _LABEL_WINDOW):date_start]
    for label, pattern in _ANCHOR_LABELS:
        if pattern.search(context):
            return label
    return None


def _is_procedure_date(text: str, date_start: int, vocabulary: Vocabulary) -> bool:
    """'<procedure> on <date>' inside one sentence."""
    if not _ON_BEFORE_DATE.search(text[max(0, date_start - 8):date_start]):
        return False
    sent_start, _ = sentence_bounds(text, date_start, date_start)
    lead = text[sent_start:date_start]
    return any(term.category == "therapeutic" and term.pattern.search(lead) for term in vocabulary.procedures)


def build_document_anchors(
    text: str,
    prior_context: Optional[StructuredFacts] = None,
    reference_date: Optional[date] = None,
    vocabulary: Vocabulary = DEFAULT_VOCABULARY,
) -> DocumentAnchors:
    """Collect labeled anchor dates and every resolvable time expression."""
    text = text or ""
    full_dates = find_full_dates(text)
    if full_dates:
        reference_year = full_dates[0].value.year
    elif reference_date is not None:
        reference_year = reference_date.year
    else:
        reference_year = None

    admission: Optional[date] = None
    discharge: Optional[date] = None
    ictus: Optional[date] = None
    surgeries: list[tuple[int, date]] = []
    date_points = []

    for dm in find_dates(text, reference_year):
        label = _label_for(text, dm.start)
        if label == "reject":
            continue
        if label == "admission" and admission is None:
            admission = dm.value
        elif label == "discharge" and discharge is None:
            discharge = dm.value
        elif label == "ictus" and ictus is None:
            ictus = dm.value
        elif label == "surgery" or (label is None and _is_procedure_date(text, dm.start, vocabulary)):
            surgeries.append((dm.start, dm.value))
        date_points.append(dm)

    if prior_context is not None:
        admission = admission or prior_context.admission_date
        discharge = discharge or prior_context.discharge_date
        ictus = ictus or prior_context.ictus_date
        # Prior surgeries precede every position in this document
        surgeries.extend((0, d) for d in prior_context.surgery_dates)

    surgeries.sort()
    anchors = DocumentAnchors(
        admission_date=admission,
        discharge_date=discharge,
        ictus_date=ictus,
        surgery_dates=[d for _, d in surgeries],
        surgery_positions=[pos for pos, _ in surgeries],
        reference_year=reference_year,
    )

    points = [AnchorPoint(position=dm.start, end=dm.end, anchor=anchor_from_date(dm)) for dm in date_points]
    points.extend(
        AnchorPoint(position=rm.start, end=rm.end, anchor=anchor_from_relative(rm, anchors))
        for rm in find_relative_days(text)
    )
    points.sort(key=lambda p: (p.position, p.end))
    anchors.points = points

    logger.debug(
        f"Anchors: admission={admission} discharge={discharge} surgeries={anchors.surgery_dates} "
        f"points={len(points)}"
    )
    return anchors


# ── Course markers ───────────────────────────────────────────────────────


def _discharge_destination(text: str, end: int) -> Optional[str]:
    tail = text[end:end + 40]
    _, sent_end = sentence_bounds(tail, 0, 0)
    tail = tail[:sent_end]
    for pattern, destination in _DISPOSITION_RULES:
        if pattern.search(tail):
            return destination
    return None


def _encounter_happened(text: str, start: int, end: int, config: ExtractionConfig) -> bool:
    """False for negated, hypothetical or planned admissions and discharges."""
    clause_start = 0
    for m in _ENCOUNTER_CLAUSE_BREAK.finditer(text, 0, start):
        clause_start = m.end()
    m = _ENCOUNTER_CLAUSE_BREAK.search(text, end)
    clause_end = m.start() if m else len(text)
    clause = text[clause_start:clause_end]
    local_start, local_end = start - clause_start, end - clause_start

    qualifiers = detect_qualifiers(clause, local_start, local_end, window_tokens=config.negation_window_tokens)
    if qualifiers.negated or qualifiers.hypothetical:
        return False
    if _PLANNED_BEFORE.search(clause, 0, local_start) or _PLANNED_AFTER.search(clause[local_end:]):
        return False
    return True


def detect_course_markers(
    text: str,
    anchors: DocumentAnchors,
    config: Optional[ExtractionConfig] = None,
) -> tuple[list[CourseMarker], list[Warning]]:
    """
    Find admission, discharge and status-change phrases, dated like entities.
    Returns (markers, warnings).
    """
    config = config or ExtractionConfig()
    warnings: list[Warning] = []
    markers: list[CourseMarker] = []
    if not text:
        return markers, warnings

    hits: list[tuple[int, int, CourseMarkerKind]] = []
    taken: list[tuple[int, int]] = []
    for kind, pattern in _MARKER_PATTERNS:
        for m in pattern.finditer(text):
            if any(m.start() < e and s < m.end() for s, e in taken):
                continue
            taken.append((m.start(), m.end()))
            hits.append((m.start(), m.end(), kind))
    hits.sort()

    seen_encounters: set[CourseMarkerKind] = set()
    for start, end, kind in hits:
        if kind in _SINGLE_ENCOUNTER:
            if kind in seen_encounters:
                continue
            if not _encounter_happened(text, start, end, config):
                logger.debug(f"Skipped {kind.value} that has not happened: '{text[start:end]}'")
                continue
        else:
            qualifiers = detect_qualifiers(text, start, end, window_tokens=config.negation_window_tokens)
            if qualifiers.hypothetical:
                continue
            if qualifiers.negated:
                # "not improved" / "no improvement" reads as no change
                if kind == CourseMarkerKind.WORSENED:
                    continue
                kind = CourseMarkerKind.UNCHANGED
        seen_encounters.add(kind)

        anchor = resolve_span(text, start, end, anchors, window=config.context_window_chars)
        detail = None
        if kind == CourseMarkerKind.DISCHARGE:
            detail = _discharge_destination(text, end)
            if detail is None:
                warnings.append(Warning(
                    code="DISCHARGE_DESTINATION_UNKNOWN",
                    message=f"No destination found for discharge at offset {start}: '{text[start:end]}'",
                ))
        markers.append(CourseMarker(
            marker_id=f"mrk-{kind.value}-{start:06d}",
            kind=kind,
            anchor=anchor,
            span=SourceSpan(start=start, end=end, text=text[start:end]),
            detail=detail,
            confidence=round(0.5 + 0.5 * anchor.confidence, 3) if anchor.is_resolved else 0.5,
        ))

    logger.debug(f"Course markers: {len(markers)}")
    return markers, warnings
