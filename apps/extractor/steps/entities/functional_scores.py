"""
Functional and neurological scale scores (KPS, ECOG, mRS, GCS, NIHSS, ASIA).

Out-of-range values ("GCS 17", "mRS 9") are discarded as misreads.
"""
from __future__ import annotations

import logging
from typing import Optional

from packages.shared.models import (
    DocumentAnchors,
    EntityType,
    ExtractedEntity,
    ExtractionConfig,
    FunctionalScoreAttributes,
)
from apps.extractor.lib.vocabulary import DEFAULT_VOCABULARY, SCALES, ScaleSpec, Vocabulary
from apps.extractor.steps.entities.common import build_entity, ensure_anchors, make_candidate, resolve_overlaps

logger = logging.getLogger(__name__)

_BASE_CONFIDENCE = 0.9


def score_value(spec: ScaleSpec, raw: str) -> Optional[float]:
    """Numeric value of a raw score, or None when it is outside the scale."""
    if spec.letter_grades:
        grade = spec.letter_grades.get(raw.upper())
        return float(grade) if grade is not None else None
    try:
        value = float(raw)
    except ValueError:
        return None
    if value < spec.min_value or value > spec.max_value:
        return None
    return value


def extract_functional_scores(
    text: str,
    anchors: Optional[DocumentAnchors] = None,
    vocabulary: Vocabulary = DEFAULT_VOCABULARY,
    config: Optional[ExtractionConfig] = None,
) -> list[ExtractedEntity]:
    """Scale scores mentioned in *text*; empty list when there are none."""
    if not text:
        return []
    config = config or ExtractionConfig()
    anchors = ensure_anchors(text, anchors, vocabulary)

    found = {}
    for spec in SCALES.values():
        for m in spec.pattern.finditer(text):
            raw = m.group(1)
            value = score_value(spec, raw)
            if value is None:
                logger.debug(f"Discarded out-of-range {spec.name} value '{raw}'")
                continue
            candidate = make_candidate(text, m.start(), m.end(), EntityType.FUNCTIONAL_SCORE, spec.name, config.context_window_chars)
            found[(m.start(), m.end())] = (candidate, spec, value, raw)

    entities: list[ExtractedEntity] = []
    for candidate in resolve_overlaps(c for c, _, _, _ in found.values()):
        _, spec, value, raw = found[(candidate.start, candidate.end)]
        attributes = FunctionalScoreAttributes(scale=spec.name, value=value, raw=raw)
        entity = build_entity(text, candidate, attributes, anchors, config, _BASE_CONFIDENCE, name=spec.name)
        if entity is not None:
            entities.append(entity)

    logger.debug(f"Functional scores: {len(entities)}")
    return entities
