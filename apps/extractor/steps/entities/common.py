from __future__ import annotations

import logging
import re
from typing import Iterable, Optional

from packages.shared.models import (
    Candidate,
    DocumentAnchors,
    EntityType,
    ExtractedEntity,
    ExtractionConfig,
    Qualifiers,
    ReferenceClass,
    SourceSpan,
)
from apps.extractor.lib.negation import detect_qualifiers
from apps.extractor.lib.temporal import classify_reference, resolve
from apps.extractor.lib.vocabulary import Term, Vocabulary
from apps.extractor.steps.step02_anchors import build_document_anchors

logger = logging.getLogger(__name__)

_ID_PREFIX = {
    EntityType.PROCEDURE: "proc",
    EntityType.COMPLICATION: "comp",
    EntityType.MEDICATION: "med",
    EntityType.DEMOGRAPHIC: "demo",
    EntityType.FUNCTIONAL_SCORE: "func",
}

_CLAUSE_BREAK = re.compile(r"(?<!\bDr)(?<!\bMr)(?<!\bMs)(?<!\bMrs)[.;!?,\n]")
_SENTENCE_END = re.compile(r"(?<!\bDr)(?<!\bMr)(?<!\bMs)(?<!\bMrs)[.!?](?=\s|$)|\n")
_HEADER_LINE = re.compile(r"^\s*(?:\d+[.)]\s*)?([A-Z][A-Za-z /&\-]{1,40}):")


def entity_id(entity_type: EntityType, start: int) -> str:
    return f"{_ID_PREFIX[entity_type]}-{start:06d}"


def make_candidate(
    text: str,
    start: int,
    end: int,
    entity_type: EntityType,
    canonical: Optional[str] = None,
    window: int = 100,
) -> Candidate:
    ctx_start = max(0, start - window)
    return Candidate(
        text=text[start:end],
        start=start,
        end=end,
        entity_type=entity_type,
        canonical=canonical,
        context=text[ctx_start:end + window],
        context_start=ctx_start,
    )


def resolve_overlaps(candidates: Iterable[Candidate]) -> list[Candidate]:
    """Keep the longest match where spans overlap; ties go to the earlier one."""
    ordered = sorted(candidates, key=lambda c: (-(c.end - c.start), c.start))
    kept: list[Candidate] = []
    for cand in ordered:
        if any(cand.start < k.end and k.start < cand.end for k in kept):
            continue
        kept.append(cand)
    kept.sort(key=lambda c: c.start)
    return kept


def scan_terms(
    text: str,
    terms: Iterable[Term],
    entity_type: EntityType,
    window: int = 100,
) -> list[tuple[Candidate, Term]]:
    """Vocabulary scan; one candidate per non-overlapping match."""
    hits: dict[tuple[int, int], tuple[Candidate, Term]] = {}
    for term in terms:
        for m in term.pattern.finditer(text):
            key = (m.start(), m.end())
            if key in hits:
                continue
            hits[key] = (make_candidate(text, m.start(), m.end(), entity_type, term.canonical, window), term)
    kept = resolve_overlaps(c for c, _ in hits.values())
    return [hits[(c.start, c.end)] for c in kept]


def find_section_header(text: str, position: int) -> Optional[str]:
    """
    Header of the section holding *position*: the mention's own line if it
    opens with "Header:", else the nearest header line above it, stopping at
    a blank line.
    """
    line_start = text.rfind("\n", 0, position) + 1
    line_end = text.find("\n", position)
    line = text[line_start:line_end if line_end != -1 else len(text)]
    m = _HEADER_LINE.match(line)
    if m and line_start + m.end() <= position:
        return m.group(0).strip()

    cursor = line_start - 1
    while cursor > 0:
        prev_start = text.rfind("\n", 0, cursor) + 1
        prev = text[prev_start:cursor]
        if not prev.strip():
            return None
        m = _HEADER_LINE.match(prev)
        if m:
            return m.group(0).strip()
        cursor = prev_start - 1
    return None


def clause_context(text: str, start: int, end: int) -> tuple[str, int, int]:
    """The comma/sentence clause around a mention, with the mention's offsets in it."""
    clause_start = 0
    for m in _CLAUSE_BREAK.finditer(text, 0, start):
        clause_start = m.end()
    m = _CLAUSE_BREAK.search(text, end)
    clause_end = m.start() if m else len(text)
    clause = text[clause_start:clause_end]
    return clause, start - clause_start, end - clause_start


def should_drop(entity_type: EntityType, qualifiers: Qualifiers) -> bool:
    if qualifiers.negated:
        return True
    if qualifiers.hypothetical:
        # "seizure prophylaxis with Keppra": the drug is still given
        trigger = qualifiers.trigger or ""
        return not (entity_type == EntityType.MEDICATION and trigger.startswith("prophyla"))
    return False


def build_entity(
    text: str,
    candidate: Candidate,
    attributes,
    anchors: DocumentAnchors,
    config: ExtractionConfig,
    base_confidence: float,
    name: Optional[str] = None,
    flags: Optional[list[str]] = None,
) -> Optional[ExtractedEntity]:
    """
    Qualify, classify and date one candidate. Returns None for negated or
    hypothetical mentions unless negative findings are tracked.
    """
    header = find_section_header(text, candidate.start)
    qualifiers = detect_qualifiers(
        text, candidate.start, candidate.end,
        window_tokens=config.negation_window_tokens,
        section_header=header,
    )
    if should_drop(candidate.entity_type, qualifiers) and not config.track_negative_findings:
        logger.debug(f"Dropped {candidate.entity_type.value} '{candidate.text}' ({qualifiers.trigger})")
        return None

    clause, c_start, c_end = clause_context(text, candidate.start, candidate.end)
    reference = classify_reference(clause, c_start, c_end, section_header=header)
    classification = reference.classification
    classification_confidence = reference.confidence
    if qualifiers.historical and classification == ReferenceClass.NEW_EVENT:
        classification = ReferenceClass.REFERENCE
        classification_confidence = max(qualifiers.confidence, 0.6)

    anchor = resolve(candidate, anchors)

    entity_flags = list(flags or [])
    if min(classification_confidence, qualifiers.confidence) < config.confidence_floor:
        entity_flags.append("LOW_CONFIDENCE_CLASSIFICATION")
    if not anchor.is_resolved:
        entity_flags.append("UNRESOLVED_DATE")
    if qualifiers.negated:
        entity_flags.append("NEGATED")
    if qualifiers.hypothetical:
        entity_flags.append("HYPOTHETICAL")

    confidence = 0.6 * base_confidence + 0.2 * classification_confidence + 0.2 * anchor.confidence
    return ExtractedEntity(
        entity_id=entity_id(candidate.entity_type, candidate.start),
        entity_type=candidate.entity_type,
        name=name or candidate.canonical or candidate.text.lower(),
        surface=candidate.text,
        attributes=attributes,
        anchor=anchor,
        qualifiers=qualifiers,
        classification=classification,
        classification_confidence=round(classification_confidence, 3),
        span=SourceSpan(start=candidate.start, end=candidate.end, text=candidate.text),
        confidence=round(min(max(confidence, 0.0), 1.0), 3),
        flags=entity_flags,
    )


def sentence_tail(text: str, end: int, sentences: int = 1, limit: int = 200) -> str:
    """Text after *end* through the close of the current sentence (plus more sentences)."""
    tail = text[end:end + limit]
    cut = 0
    for _ in range(sentences):
        m = _SENTENCE_END.search(tail[cut:])
        if not m:
            return tail
        cut += m.end()
    return tail[:cut]


def ensure_anchors(text: str, anchors: Optional[DocumentAnchors], vocabulary: Vocabulary) -> DocumentAnchors:
    """Standalone extractor calls compute anchors from the text itself."""
    if anchors is not None:
        return anchors
    return build_document_anchors(text, vocabulary=vocabulary)
