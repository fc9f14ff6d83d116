"""
Temporal resolution and reference classification for candidate mentions.

resolve() dates a mention in three tiers:
  1. an absolute date or POD / hospital-day / encounter expression in the
     same sentence (nearest wins)
  2. the nearest preceding resolved anchor point in document order
     (temporal locality)
  3. an explicit UNRESOLVED anchor

classify_reference() decides new_event vs reference with a fixed priority:
section header > performance marker > retrospective marker > immediacy
marker > default. The ordering is a policy choice; "today, following
craniotomy" style phrases remain ambiguous under it.
"""
from __future__ import annotations

import logging
import re
from datetime import date, timedelta
from typing import Optional

from packages.shared.models import (
    AnchorKind,
    AnchorSource,
    Candidate,
    DocumentAnchors,
    ReferenceClass,
    ReferenceClassification,
    ReferenceEvent,
    TemporalAnchor,
)
from apps.extractor.lib.dates import DateMention, RelativeMention, find_dates, find_relative_days

logger = logging.getLogger(__name__)

# Periods after title abbreviations ("Dr. Smith") do not end a sentence
_ABBREV_GUARD = r"(?<!\bDr)(?<!\bMr)(?<!\bMs)(?<!\bMrs)(?<!\bSt)(?<!\bvs)"
_SENTENCE_BREAK = re.compile(rf"(?:{_ABBREV_GUARD}[.!?;](?=\s|$))|\n")

_NEAR_CHARS = 40
_INHERIT_DECAY = 0.7

# ── Reference-classification markers ─────────────────────────────────────

_SECTION_HEADERS = re.compile(
    r"^\s*(?:procedures?(?:\s+performed)?|operations?(?:\s+performed)?|surgeries|operative\s+procedures?)\s*:",
    re.IGNORECASE,
)

_PERFORMANCE_MARKERS = [
    (re.compile(r"\b(?:was\s+)?performed\s+on\b", re.IGNORECASE), 0.95),
    (re.compile(r"\bunderwent\b", re.IGNORECASE), 0.9),
    (re.compile(r"\b(?:was\s+)?taken\s+to\s+(?:the\s+)?(?:OR|operating\s+room|angio(?:graphy)?\s+suite)\b", re.IGNORECASE), 0.9),
    (re.compile(r"\b(?:received|receiving|undergoing)\b", re.IGNORECASE), 0.85),
    (re.compile(r"\b(?:was\s+)?performed\b", re.IGNORECASE), 0.85),
    (re.compile(r"\bcompleted\b", re.IGNORECASE), 0.8),
]

_RETROSPECTIVE_MARKERS = [
    (re.compile(r"\bs/p\b", re.IGNORECASE), 0.95),
    (re.compile(r"\bstatus\s+post\b", re.IGNORECASE), 0.95),
    (re.compile(r"\b(?:prior\s+)?history\s+of\b", re.IGNORECASE), 0.85),
    (re.compile(r"\bh/o\b", re.IGNORECASE), 0.85),
    (re.compile(r"\bfollowing\b", re.IGNORECASE), 0.8),
    (re.compile(r"\bafter\b", re.IGNORECASE), 0.8),
    (re.compile(r"\b(?:prior|previous|previously|earlier)\b", re.IGNORECASE), 0.8),
    (re.compile(r"\b(?:yesterday|\d+\s+(?:days?|weeks?|months?|years?)\s+ago)\b", re.IGNORECASE), 0.75),
]

_IMMEDIACY_MARKERS = [
    (re.compile(r"\b(?:today|tonight|this\s+(?:morning|afternoon|evening))\b", re.IGNORECASE), 0.85),
    (re.compile(r"\b(?:currently|now|just)\b", re.IGNORECASE), 0.75),
    (re.compile(r"\b(?:developed|new\s+onset(?:\s+of)?|complicated\s+by|found\s+to\s+have)\b", re.IGNORECASE), 0.75),
]

_DEFAULT_CONFIDENCE = 0.5


# ── Sentence helpers ─────────────────────────────────────────────────────


def sentence_bounds(text: str, start: int, end: int) -> tuple[int, int]:
    """Bounds of the sentence containing text[start:end]."""
    sent_start = 0
    for m in _SENTENCE_BREAK.finditer(text, 0, start):
        sent_start = m.end()
    m = _SENTENCE_BREAK.search(text, end)
    sent_end = m.start() if m else len(text)
    return sent_start, sent_end


def _distance(start: int, end: int, expr_start: int, expr_end: int) -> int:
    if expr_end <= start:
        return start - expr_end
    if expr_start >= end:
        return expr_start - end
    return 0


# ── Expression -> anchor ─────────────────────────────────────────────────


def anchor_from_date(mention: DateMention, distance: int = 0) -> TemporalAnchor:
    confidence = 0.9 if distance <= _NEAR_CHARS else 0.75
    if mention.year_inferred:
        confidence -= 0.1
    return TemporalAnchor(
        kind=AnchorKind.ABSOLUTE,
        value=mention.value,
        source=AnchorSource.EXPLICIT_DATE,
        confidence=confidence,
        year_inferred=mention.year_inferred,
        text=mention.text,
    )


def surgery_date_for(position: int, anchors: DocumentAnchors) -> Optional[date]:
    """Latest surgery date recorded before *position*, else the earliest one."""
    if not anchors.surgery_dates:
        return None
    positions = anchors.surgery_positions or [0] * len(anchors.surgery_dates)
    preceding = [
        (pos, d) for pos, d in zip(positions, anchors.surgery_dates) if pos <= position
    ]
    if preceding:
        return max(preceding)[1]
    return min(anchors.surgery_dates)


def anchor_from_relative(mention: RelativeMention, anchors: DocumentAnchors) -> TemporalAnchor:
    if mention.kind == "pod":
        ref = surgery_date_for(mention.start, anchors)
        if ref is not None:
            return TemporalAnchor(
                kind=AnchorKind.ABSOLUTE,
                value=ref + timedelta(days=mention.day),
                relative_day=mention.day,
                reference_event=ReferenceEvent.SURGERY,
                reference_date=ref,
                source=AnchorSource.INFERRED_FROM_POD,
                confidence=0.85,
                text=mention.text,
            )
        return TemporalAnchor(
            kind=AnchorKind.RELATIVE,
            relative_day=mention.day,
            reference_event=ReferenceEvent.SURGERY,
            source=AnchorSource.INFERRED_FROM_POD,
            confidence=0.6,
            text=mention.text,
        )

    if mention.kind == "hospital_day":
        # Hospital day 1 is the admission date
        offset = max(mention.day - 1, 0)
        event, ref = ReferenceEvent.ADMISSION, anchors.admission_date
    elif mention.kind == "admission":
        offset, event, ref = 0, ReferenceEvent.ADMISSION, anchors.admission_date
    else:
        offset, event, ref = 0, ReferenceEvent.DISCHARGE, anchors.discharge_date

    if ref is not None:
        return TemporalAnchor(
            kind=AnchorKind.ABSOLUTE,
            value=ref + timedelta(days=offset),
            relative_day=offset,
            reference_event=event,
            reference_date=ref,
            source=AnchorSource.ENCOUNTER,
            confidence=0.8,
            text=mention.text,
        )
    return TemporalAnchor(
        kind=AnchorKind.RELATIVE,
        relative_day=offset,
        reference_event=event,
        source=AnchorSource.ENCOUNTER,
        confidence=0.5,
        text=mention.text,
    )


def _inherit(anchor: TemporalAnchor) -> TemporalAnchor:
    return anchor.model_copy(update={
        "source": AnchorSource.INHERITED,
        "confidence": round(anchor.confidence * _INHERIT_DECAY, 3),
    })


# ── Public API ───────────────────────────────────────────────────────────


def _resolve_local(
    context: str,
    context_start: int,
    local_start: int,
    local_end: int,
    anchors: DocumentAnchors,
) -> TemporalAnchor:
    sent_start, sent_end = sentence_bounds(context, local_start, local_end)
    sentence = context[sent_start:sent_end]
    rel_start, rel_end = local_start - sent_start, local_end - sent_start

    # Tier 1: expressions in the same sentence
    best: Optional[tuple[int, TemporalAnchor]] = None
    for dm in find_dates(sentence, anchors.reference_year):
        dist = _distance(rel_start, rel_end, dm.start, dm.end)
        if best is None or dist < best[0]:
            best = (dist, anchor_from_date(dm, dist))
    for rm in find_relative_days(sentence):
        dist = _distance(rel_start, rel_end, rm.start, rm.end)
        # Re-based to document coordinates for the surgery lookup
        shift = sent_start + context_start
        rebased = RelativeMention(rm.kind, rm.day, rm.start + shift, rm.end + shift, rm.text)
        if best is None or dist < best[0]:
            best = (dist, anchor_from_relative(rebased, anchors))
    if best is not None:
        return best[1]

    # Tier 2: nearest preceding anchor point
    doc_start = context_start + local_start
    preceding = [p for p in anchors.points if p.end <= doc_start]
    if preceding:
        nearest = max(preceding, key=lambda p: (p.end, p.position))
        return _inherit(nearest.anchor)

    logger.debug(f"No temporal anchor for mention at {doc_start}")
    return TemporalAnchor.unresolved()


def resolve(candidate: Candidate, anchors: DocumentAnchors) -> TemporalAnchor:
    """Date one candidate mention. Never raises; falls back to UNRESOLVED."""
    if candidate.context:
        offset = candidate.context_offset
        if 0 <= offset <= len(candidate.context):
            local_end = min(offset + len(candidate.text), len(candidate.context))
            return _resolve_local(candidate.context, candidate.context_start, offset, local_end, anchors)
    return _resolve_local(candidate.text, candidate.start, 0, len(candidate.text), anchors)


def resolve_span(text: str, start: int, end: int, anchors: DocumentAnchors, window: int = 100) -> TemporalAnchor:
    """resolve() for a raw span of the document."""
    ctx_start = max(0, start - window)
    context = text[ctx_start:end + window]
    return _resolve_local(context, ctx_start, start - ctx_start, end - ctx_start, anchors)


def classify_reference(
    text: str,
    mention_start: Optional[int] = None,
    mention_end: Optional[int] = None,
    section_header: Optional[str] = None,
) -> ReferenceClassification:
    """
    Decide whether a mention is a new occurrence or refers back to one.

    With mention offsets, retrospective and immediacy markers are only taken
    from text before the mention; performance markers may sit on either side.
    """
    if not text:
        return ReferenceClassification(confidence=0.0)

    start = mention_start if mention_start is not None else len(text)
    end = mention_end if mention_end is not None else len(text)
    start = max(0, min(start, len(text)))
    end = max(start, min(end, len(text)))
    left = text[:start]

    # 1) Section header
    header_source = section_header or text
    if _SECTION_HEADERS.search(header_source):
        header = _SECTION_HEADERS.search(header_source).group(0).strip()
        return ReferenceClassification(
            classification=ReferenceClass.NEW_EVENT, confidence=0.95, trigger=header.lower(),
        )

    # 2) Performance markers ("performed on <date>", "underwent ... on <date>").
    # Undated weak verbs ("received") only count after retrospective markers.
    weak: Optional[ReferenceClassification] = None
    for pattern, conf in _PERFORMANCE_MARKERS:
        m = pattern.search(text)
        if not m:
            continue
        tail = text[m.start():]
        dated = bool(find_dates(tail)) or bool(find_relative_days(tail))
        result = ReferenceClassification(
            classification=ReferenceClass.NEW_EVENT,
            confidence=min(conf + (0.05 if dated else 0.0), 0.99),
            trigger=m.group(0).lower(),
        )
        if dated or conf >= 0.9:
            return result
        weak = weak or result

    # 3) Retrospective markers
    for pattern, conf in _RETROSPECTIVE_MARKERS:
        m = pattern.search(left)
        if m:
            return ReferenceClassification(
                classification=ReferenceClass.REFERENCE, confidence=conf, trigger=m.group(0).lower(),
            )

    if weak is not None:
        return weak

    # 4) Immediacy markers
    for pattern, conf in _IMMEDIACY_MARKERS:
        m = pattern.search(left)
        if m:
            return ReferenceClassification(
                classification=ReferenceClass.NEW_EVENT, confidence=conf, trigger=m.group(0).lower(),
            )

    # 5) Default: first mention is taken to be the event itself
    return ReferenceClassification(
        classification=ReferenceClass.NEW_EVENT, confidence=_DEFAULT_CONFIDENCE,
    )
