"""
Complication extraction with severity grading and resolution status.

Severity decision table (nearest intensity word in the clause wins):
  high:     severe, critical, massive, life-threatening, refractory, significant, large
  moderate: moderate, symptomatic
  low:      mild, minimal, small, trace, slight, asymptomatic
No intensity word -> moderate, with reduced confidence.
"""
from __future__ import annotations

import logging
import re
from typing import Optional

from packages.shared.models import (
    ComplicationAttributes,
    DocumentAnchors,
    EntityType,
    ExtractedEntity,
    ExtractionConfig,
    ResolutionStatus,
    Severity,
)
from apps.extractor.lib.vocabulary import DEFAULT_VOCABULARY, Vocabulary
from apps.extractor.steps.entities.common import (
    build_entity,
    clause_context,
    ensure_anchors,
    scan_terms,
    sentence_tail,
)

logger = logging.getLogger(__name__)

_SEVERITY_TABLE: list[tuple[re.Pattern[str], Severity]] = [
    (re.compile(r"\b(?:severe|severely|critical|massive|life[-\s]threatening|refractory|significant|large|malignant)\b", re.IGNORECASE), Severity.HIGH),
    (re.compile(r"\b(?:moderate|moderately|symptomatic)\b", re.IGNORECASE), Severity.MODERATE),
    (re.compile(r"\b(?:mild|mildly|minimal|small|trace|slight|asymptomatic|low[-\s]grade)\b", re.IGNORECASE), Severity.LOW),
]

_RESOLUTION_TABLE: list[tuple[re.Pattern[str], ResolutionStatus]] = [
    (re.compile(r"\b(?:resolved|resolution|cleared)\b", re.IGNORECASE), ResolutionStatus.RESOLVED),
    (re.compile(r"\b(?:resolving|improv(?:ed|ing|ement)|better|decreas(?:ed|ing))\b", re.IGNORECASE), ResolutionStatus.IMPROVING),
    (re.compile(r"\b(?:persistent|persists|ongoing|worsen(?:ed|ing)|progress(?:ed|ing)|continued|refractory)\b", re.IGNORECASE), ResolutionStatus.ONGOING),
]

_MANAGEMENT = re.compile(
    r"\b(?:treated|managed|started|requiring|required)\s+(?:with\s+|on\s+)?([A-Za-z][A-Za-z\- ]{2,40}?)(?=[,.;]|\s+and\b|\s+for\b|$)",
    re.IGNORECASE,
)

_EXPLICIT_SEVERITY_CONFIDENCE = 0.85
_DEFAULT_SEVERITY_CONFIDENCE = 0.65


def grade_severity(clause: str, mention_start: int, mention_end: int) -> tuple[Severity, bool]:
    """(severity, explicit) from intensity words in the clause; nearest to the mention wins."""
    best: Optional[tuple[int, Severity]] = None
    for pattern, severity in _SEVERITY_TABLE:
        for m in pattern.finditer(clause):
            if m.end() <= mention_start:
                dist = mention_start - m.end()
            elif m.start() >= mention_end:
                dist = m.start() - mention_end
            else:
                dist = 0
            if best is None or dist < best[0]:
                best = (dist, severity)
    if best is None:
        return Severity.MODERATE, False
    return best[1], True


def resolution_status(following: str) -> ResolutionStatus:
    for pattern, status in _RESOLUTION_TABLE:
        if pattern.search(following):
            return status
    return ResolutionStatus.UNKNOWN


def extract_complications(
    text: str,
    anchors: Optional[DocumentAnchors] = None,
    vocabulary: Vocabulary = DEFAULT_VOCABULARY,
    config: Optional[ExtractionConfig] = None,
) -> list[ExtractedEntity]:
    """Complications mentioned in *text*; empty list when there are none."""
    if not text:
        return []
    config = config or ExtractionConfig()
    anchors = ensure_anchors(text, anchors, vocabulary)

    entities: list[ExtractedEntity] = []
    for candidate, term in scan_terms(text, vocabulary.complications, EntityType.COMPLICATION, config.context_window_chars):
        clause, c_start, c_end = clause_context(text, candidate.start, candidate.end)
        severity, explicit = grade_severity(clause, c_start, c_end)

        following = sentence_tail(text, candidate.end, sentences=2)
        management = _MANAGEMENT.search(sentence_tail(text, candidate.end, sentences=1))

        attributes = ComplicationAttributes(
            severity=severity,
            severity_explicit=explicit,
            resolution_status=resolution_status(following),
            category=term.category,
            management=management.group(1).strip() if management else None,
        )
        base = _EXPLICIT_SEVERITY_CONFIDENCE if explicit else _DEFAULT_SEVERITY_CONFIDENCE
        flags = [] if explicit else ["SEVERITY_DEFAULTED"]
        entity = build_entity(text, candidate, attributes, anchors, config, base, flags=flags)
        if entity is not None:
            entities.append(entity)

    logger.debug(f"Complications: {len(entities)}")
    return entities
