"""
Pairwise similarity between extracted entities.

score = lexical_weight * token Jaccard
      + edit_weight    * normalized Levenshtein similarity
      + semantic_weight * semantic score

The semantic score is 0 for different entity types, incompatible attributes
(different score values, dose units, or doses more than 2x apart) and
conflicting resolved dates. Otherwise it is 0.5 for the shared type,
+0.3 when the normalized names agree, +0.2 when every attribute both sides
state is equal.
"""
from __future__ import annotations

import re
from typing import Optional

from rapidfuzz.distance import Levenshtein

from packages.shared.models import (
    AnchorSource,
    ExtractedEntity,
    ExtractionConfig,
    MedicationAttributes,
    FunctionalScoreAttributes,
    TemporalAnchor,
)

_TOKEN = re.compile(r"[a-z0-9]+")
# Inherited dates come from an earlier line and may lag the mention by a day
_INHERITED_TOLERANCE_DAYS = 1
_MAX_DOSE_RATIO = 2.0
# Fields that say nothing about identity
_IGNORED_FIELDS = {"kind", "raw", "severity_explicit", "status", "resolution_status", "management", "reversed"}


def normalize_name(name: str) -> str:
    return " ".join(_TOKEN.findall((name or "").lower()))


def jaccard(a: str, b: str) -> float:
    ta, tb = set(normalize_name(a).split()), set(normalize_name(b).split())
    if not ta and not tb:
        return 0.0
    return len(ta & tb) / len(ta | tb)


def edit_similarity(a: str, b: str) -> float:
    na, nb = normalize_name(a), normalize_name(b)
    if not na and not nb:
        return 0.0
    return float(Levenshtein.normalized_similarity(na, nb))


def anchors_conflict(a: Optional[TemporalAnchor], b: Optional[TemporalAnchor]) -> bool:
    """True when both mentions are resolved to dates (or offsets) that disagree."""
    if a is None or b is None:
        return False
    days = a.days_between(b)
    if days is None:
        return False
    inherited = AnchorSource.INHERITED in (a.source, b.source)
    return abs(days) > (_INHERITED_TOLERANCE_DAYS if inherited else 0)


def dates_conflict(a: ExtractedEntity, b: ExtractedEntity) -> bool:
    """
    Date disagreement between two mentions. A retrospective mention inherits
    the date it was written on, not the date of the episode it points back
    to, so an inherited date only separates two new-event mentions.
    """
    if not anchors_conflict(a.anchor, b.anchor):
        return False
    inherited = AnchorSource.INHERITED in (a.anchor.source, b.anchor.source)
    return not inherited or (a.is_new_event and b.is_new_event)


def attributes_compatible(a: ExtractedEntity, b: ExtractedEntity) -> bool:
    aa, ba = a.attributes, b.attributes
    if isinstance(aa, FunctionalScoreAttributes) and isinstance(ba, FunctionalScoreAttributes):
        return aa.scale == ba.scale and aa.value == ba.value
    if isinstance(aa, MedicationAttributes) and isinstance(ba, MedicationAttributes):
        if aa.dose_unit and ba.dose_unit and aa.dose_unit.lower() != ba.dose_unit.lower():
            return False
        if aa.dose_value and ba.dose_value:
            ratio = max(aa.dose_value, ba.dose_value) / min(aa.dose_value, ba.dose_value)
            if ratio > _MAX_DOSE_RATIO:
                return False
    return True


def attributes_match(a: ExtractedEntity, b: ExtractedEntity) -> bool:
    """Every attribute stated on both sides is equal."""
    da = a.attributes.model_dump()
    db = b.attributes.model_dump()
    for key, value in da.items():
        if key in _IGNORED_FIELDS or value is None or db.get(key) is None:
            continue
        if value != db[key]:
            return False
    return True


def semantic_similarity(a: ExtractedEntity, b: ExtractedEntity) -> float:
    if a.entity_type != b.entity_type:
        return 0.0
    if not attributes_compatible(a, b) or dates_conflict(a, b):
        return 0.0
    score = 0.5
    if normalize_name(a.name) == normalize_name(b.name):
        score += 0.3
    if attributes_match(a, b):
        score += 0.2
    return score


def entity_similarity(a: ExtractedEntity, b: ExtractedEntity, config: Optional[ExtractionConfig] = None) -> float:
    """Weighted similarity in [0, 1]; entities of different types always score 0."""
    config = config or ExtractionConfig()
    if a.entity_type != b.entity_type:
        return 0.0
    score = (
        config.lexical_weight * jaccard(a.name, b.name)
        + config.edit_weight * edit_similarity(a.name, b.name)
        + config.semantic_weight * semantic_similarity(a, b)
    )
    return round(min(max(score, 0.0), 1.0), 4)
