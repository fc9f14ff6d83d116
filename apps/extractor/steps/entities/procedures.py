"""
Procedure extraction: vocabulary scan plus operator / laterality / approach.
"""
from __future__ import annotations

import logging
import re
from typing import Optional

from packages.shared.models import (
    DocumentAnchors,
    EntityType,
    ExtractedEntity,
    ExtractionConfig,
    ProcedureAttributes,
)
from apps.extractor.lib.vocabulary import DEFAULT_VOCABULARY, Vocabulary
from apps.extractor.steps.entities.common import build_entity, ensure_anchors, scan_terms, sentence_tail

logger = logging.getLogger(__name__)

_OPERATOR_PATTERNS = [
    re.compile(r"\b(?:performed\s+)?by\s+(Dr\.?\s+[A-Z][A-Za-z'\-]+)"),
    re.compile(r"\b(?:surgeon|attending|operator)\s*:\s*(Dr\.?\s+[A-Z][A-Za-z'\-]+|[A-Z][A-Za-z'\-]+,?\s+(?:MD|DO))"),
]
_LATERALITY = re.compile(r"\b(left|right|bilateral)\b", re.IGNORECASE)
_APPROACH = re.compile(
    r"\b(endovascular|open|minimally\s+invasive|endoscopic|stereotactic|percutaneous|pterional|suboccipital|anterior|posterior)\b",
    re.IGNORECASE,
)

_BASE_CONFIDENCE = 0.8


def _operator(text: str, start: int, end: int) -> Optional[str]:
    window = text[max(0, start - 80):end] + sentence_tail(text, end, limit=120)
    for pattern in _OPERATOR_PATTERNS:
        m = pattern.search(window)
        if m:
            return m.group(1).strip()
    return None


def _near_left(pattern: re.Pattern[str], text: str, start: int, end: int) -> Optional[str]:
    """Modifier inside the mention itself or in the few words before it."""
    lead = text[max(0, start - 30):end]
    hits = list(pattern.finditer(lead))
    return hits[-1].group(1).lower() if hits else None


def extract_procedures(
    text: str,
    anchors: Optional[DocumentAnchors] = None,
    vocabulary: Vocabulary = DEFAULT_VOCABULARY,
    config: Optional[ExtractionConfig] = None,
) -> list[ExtractedEntity]:
    """Procedures mentioned in *text*; empty list when there are none."""
    if not text:
        return []
    config = config or ExtractionConfig()
    anchors = ensure_anchors(text, anchors, vocabulary)

    entities: list[ExtractedEntity] = []
    for candidate, term in scan_terms(text, vocabulary.procedures, EntityType.PROCEDURE, config.context_window_chars):
        attributes = ProcedureAttributes(
            operator=_operator(text, candidate.start, candidate.end),
            approach=_near_left(_APPROACH, text, candidate.start, candidate.end),
            laterality=_near_left(_LATERALITY, text, candidate.start, candidate.end),
        )
        flags = ["DIAGNOSTIC"] if term.category == "diagnostic" else []
        entity = build_entity(text, candidate, attributes, anchors, config, _BASE_CONFIDENCE, flags=flags)
        if entity is not None:
            entities.append(entity)

    logger.debug(f"Procedures: {len(entities)}")
    return entities
