"""
Demographics: age and gender from shorthand ("55M", "55 yo F"), prose
("55-year-old male") and labeled fields ("Age: 55", "Sex: F").

At most one entity per document. Conflicting mentions are settled by vote,
the first mention breaking ties. Demographics carry no temporal anchor.
"""
from __future__ import annotations

import logging
import re
from collections import Counter
from typing import Optional

from packages.shared.models import (
    DemographicAttributes,
    DocumentAnchors,
    EntityType,
    ExtractedEntity,
    ExtractionConfig,
    Gender,
    ReferenceClass,
    SourceSpan,
)
from apps.extractor.lib.vocabulary import DEFAULT_VOCABULARY, Vocabulary
from apps.extractor.steps.entities.common import entity_id

logger = logging.getLogger(__name__)

_GENDER_WORDS = {
    "m": Gender.MALE, "male": Gender.MALE, "man": Gender.MALE, "gentleman": Gender.MALE, "boy": Gender.MALE,
    "f": Gender.FEMALE, "female": Gender.FEMALE, "woman": Gender.FEMALE, "lady": Gender.FEMALE, "girl": Gender.FEMALE,
}
_GENDER_ALT = r"male|female|man|woman|gentleman|lady|boy|girl|M|F"

# (pattern, has_age, has_gender)
_PATTERNS: list[tuple[re.Pattern[str], bool, bool]] = [
    # "55M", "55yo F"
    (re.compile(r"(?<![\d.#/])\b(\d{1,3})(?:\s?(?:yo|y/o|y\.o\.|yr?s?\s+old)\s?)?([MF])\b"), True, True),
    # "55 M" only where a field starts: line start or after a name and comma
    (re.compile(r"(?:^|[,;:]\s*)(\d{1,3})\s([MF])\b", re.MULTILINE), True, True),
    (re.compile(
        rf"\b(\d{{1,3}})[-\s](?:year|yr)s?[-\s]old\s+(?:(?:right|left)[-\s]handed\s+)?({_GENDER_ALT})\b",
        re.IGNORECASE,
    ), True, True),
    (re.compile(rf"\b(\d{{1,3}})\s*(?:yo|y/o|y\.o\.)\s+({_GENDER_ALT})\b", re.IGNORECASE), True, True),
    (re.compile(r"\b(\d{1,3})[-\s](?:year|yr)s?[-\s]old\b|\b(?:age|aged)\s*:?\s*(\d{1,3})\b", re.IGNORECASE), True, False),
    (re.compile(r"\b(?:sex|gender)\s*:\s*(male|female|M|F)\b", re.IGNORECASE), False, True),
]

_PAIR_CONFIDENCE = 0.9
_SINGLE_CONFIDENCE = 0.75

# Vitals that read like shorthand demographics ("febrile to 102 F", "Tmax: 101 F")
_TEMPERATURE_CUE = re.compile(
    r"(?:\b(?:T|Tm|Tmax|temp|temperature|febrile\s+to|fevers?\s+(?:of|to|up\s+to)|spik(?:ed|ing)\s+to)\s*:?\s*)$",
    re.IGNORECASE,
)


def _age(raw: Optional[str]) -> Optional[int]:
    if raw is None:
        return None
    value = int(raw)
    return value if 0 <= value <= 120 else None


def extract_demographics(
    text: str,
    anchors: Optional[DocumentAnchors] = None,
    vocabulary: Vocabulary = DEFAULT_VOCABULARY,
    config: Optional[ExtractionConfig] = None,
) -> list[ExtractedEntity]:
    """Zero or one demographic entity for the patient described in *text*."""
    if not text:
        return []

    hits: list[tuple[int, int, Optional[int], Optional[Gender]]] = []
    taken: list[tuple[int, int]] = []

    for pattern, has_age, has_gender in _PATTERNS:
        for m in pattern.finditer(text):
            matched = m.group(0)
            start = m.start() + len(matched) - len(matched.lstrip(",;: \t\n"))
            if any(start < e and s < m.end() for s, e in taken):
                continue
            if _TEMPERATURE_CUE.search(text, max(0, start - 24), start):
                continue
            groups = [g for g in m.groups() if g is not None]
            age = _age(groups[0]) if has_age and groups else None
            gender = _GENDER_WORDS.get(groups[-1].lower()) if has_gender and groups else None
            if age is None and gender is None:
                continue
            taken.append((start, m.end()))
            hits.append((start, m.end(), age, gender))

    if not hits:
        return []

    hits.sort(key=lambda h: h[0])
    ages: Counter[int] = Counter(h[2] for h in hits if h[2] is not None)
    genders: Counter[Gender] = Counter(h[3] for h in hits if h[3] is not None)
    paired = any(h[2] is not None and h[3] is not None for h in hits)

    # Counter.most_common keeps insertion order among equal counts
    age = ages.most_common(1)[0][0] if ages else None
    gender = genders.most_common(1)[0][0] if genders else None
    flags = []
    if len(ages) > 1 or len(genders) > 1:
        flags.append("CONFLICTING_DEMOGRAPHICS")

    start, end = hits[0][0], hits[0][1]
    confidence = _PAIR_CONFIDENCE if paired else _SINGLE_CONFIDENCE
    if flags:
        confidence -= 0.15
    entity = ExtractedEntity(
        entity_id=entity_id(EntityType.DEMOGRAPHIC, start),
        entity_type=EntityType.DEMOGRAPHIC,
        name="patient demographics",
        surface=text[start:end],
        attributes=DemographicAttributes(age=age, gender=gender),
        classification=ReferenceClass.NEW_EVENT,
        classification_confidence=confidence,
        span=SourceSpan(start=start, end=end, text=text[start:end]),
        confidence=confidence,
        flags=flags,
    )
    logger.debug(f"Demographics: age={age} gender={gender.value if gender else None}")
    return [entity]
