"""
Medication extraction: vocabulary drugs plus unlisted capitalized drug names
written with a dose ("Ziprasidone 20mg").

Attributes come from the text right after the drug name, within its sentence:
dose, route, frequency, duration ("x 4 weeks"), indication ("for vasospasm").
Status comes from the verb before it (started / continued / discontinued).
Antiplatelets and anticoagulants also carry class, mechanism, reversal agent
and whether a reversal is documented next to the mention.
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
    MedicationAttributes,
    MedicationStatus,
)
from apps.extractor.lib.vocabulary import DEFAULT_VOCABULARY, Term, Vocabulary
from apps.extractor.steps.entities.common import (
    build_entity,
    ensure_anchors,
    make_candidate,
    resolve_overlaps,
    scan_terms,
    sentence_tail,
)

logger = logging.getLogger(__name__)

_UNITS = r"mg/kg|mcg/kg/min|mcg|mg|g|units?|mEq|mL|ml"
_DOSE = re.compile(rf"^\W{{0,3}}(\d+(?:\.\d+)?)\s*({_UNITS})\b", re.IGNORECASE)
_ROUTE = re.compile(r"\b(IV|PO|IM|SC|SQ|subq|(?-i:PR|IT|NG)|per\s+os|intravenous(?:ly)?|oral(?:ly)?|topical)\b", re.IGNORECASE)
_FREQUENCY = re.compile(
    r"\b(q\s?\d{1,2}\s?h(?:rs?)?|q\s?(?:AM|PM|HS|day|daily)|qhs|daily|once\s+daily|twice\s+daily|"
    r"three\s+times\s+daily|BID|TID|QID|PRN|as\s+needed|once|nightly|weekly)\b",
    re.IGNORECASE,
)
_DURATION = re.compile(
    r"(?:\bx\s*|\bfor\s+(?:a\s+)?(?:total\s+of\s+)?)(\d+\s*(?:days?|weeks?|wks?|months?|doses?))\b",
    re.IGNORECASE,
)
_INDICATION = re.compile(r"\bfor\s+(?!\d)(?:(?:presumed|suspected|possible|likely)\s+)?([A-Za-z][A-Za-z\- ]{2,40}?)(?=[,.;)]|\s+(?:and|with|x|for)\b|$)", re.IGNORECASE)

_GENERIC_DRUG = re.compile(rf"\b([A-Z][a-z]{{3,}}(?:[-/][A-Za-z]+)?)\s+(\d+(?:\.\d+)?)\s*({_UNITS})\b")
_NOT_DRUGS = {"Patient", "Total", "Received", "Given", "Started", "Dose", "Weight", "Sodium", "Urine", "Output", "Blood"}

_STATUS_RULES: list[tuple[re.Pattern[str], MedicationStatus]] = [
    (re.compile(r"\b(?:discontinued|stopped|d/c'?d|held|weaned\s+off|tapered\s+off)\b", re.IGNORECASE), MedicationStatus.DISCONTINUED),
    (re.compile(r"\b(?:switched|changed|increased|decreased|titrated|uptitrated)\b", re.IGNORECASE), MedicationStatus.CHANGED),
    (re.compile(r"\b(?:started|initiated|begun|began|commenced|loaded|treated\s+with|given|administered)\b", re.IGNORECASE), MedicationStatus.STARTED),
    (re.compile(r"\b(?:continued|continue|maintained|remains?\s+on|home\s+med(?:ication)?s?)\b", re.IGNORECASE), MedicationStatus.CONTINUED),
]
_STATUS_AFTER = re.compile(r"^\W{0,3}(?:was\s+|were\s+)?(discontinued|stopped|held|started|initiated|continued|changed)\b", re.IGNORECASE)

_REVERSAL = re.compile(
    r"\b(?:reversed|reversal|vitamin\s+K|PCC|Kcentra|prothrombin\s+complex(?:\s+concentrate)?|FFP|"
    r"fresh\s+frozen\s+plasma|protamine|andexanet(?:\s+alfa)?|Andexxa|idarucizumab|Praxbind|"
    r"platelet\s+transfusion|transfused\s+platelets|DDAVP|desmopressin)\b",
    re.IGNORECASE,
)
_REVERSAL_WINDOW = 160

_VOCAB_WITH_DOSE = 0.85
_VOCAB_NAME_ONLY = 0.6
_GENERIC_CONFIDENCE = 0.55


def parse_dose(tail: str) -> tuple[Optional[str], Optional[float], Optional[str]]:
    """(dose, value, unit) when the text right after the name starts with a dose."""
    m = _DOSE.search(tail)
    if not m:
        return None, None, None
    value = float(m.group(1))
    unit = m.group(2)
    unit = "mL" if unit.lower() == "ml" else unit
    return f"{m.group(1)}{unit}", value, unit


def _first(pattern: re.Pattern[str], text: str) -> Optional[str]:
    m = pattern.search(text)
    return re.sub(r"\s+", " ", m.group(1)).strip() if m else None


def _normalize_route(route: Optional[str]) -> Optional[str]:
    if route is None:
        return None
    low = route.lower()
    if low.startswith("intravenous"):
        return "IV"
    if low.startswith("oral") or low == "per os":
        return "PO"
    if low in ("sq", "subq"):
        return "SC"
    if low == "topical":
        return "topical"
    return route.upper()


def _status(text: str, start: int, end: int) -> MedicationStatus:
    after = _STATUS_AFTER.search(text[end:end + 30])
    if after:
        word = after.group(1).lower()
        for pattern, status in _STATUS_RULES:
            if pattern.search(word):
                return status
    lead_start = max(text.rfind(".", 0, start), text.rfind("\n", 0, start), start - 60, 0)
    lead = text[lead_start:start]
    best: Optional[tuple[int, MedicationStatus]] = None
    for pattern, status in _STATUS_RULES:
        for m in pattern.finditer(lead):
            if best is None or m.end() > best[0]:
                best = (m.end(), status)
    return best[1] if best else MedicationStatus.ACTIVE


def _reversed(text: str, start: int, end: int) -> bool:
    """A reversal agent or "reversed" in the mention's sentence or the next one."""
    lead_start = max(text.rfind(".", 0, start), text.rfind("\n", 0, start), 0)
    window = text[lead_start:start] + " " + sentence_tail(text, end, sentences=2, limit=_REVERSAL_WINDOW)
    return _REVERSAL.search(window) is not None


def _attributes(text: str, start: int, end: int, term: Optional[Term] = None) -> MedicationAttributes:
    tail = sentence_tail(text, end, limit=120)
    dose, value, unit = parse_dose(tail)
    indication = _first(_INDICATION, tail)
    antithrombotic = term is not None and term.drug_class is not None
    return MedicationAttributes(
        dose=dose,
        dose_value=value,
        dose_unit=unit,
        route=_normalize_route(_first(_ROUTE, tail)),
        frequency=_first(_FREQUENCY, tail),
        duration=_first(_DURATION, tail),
        status=_status(text, start, end),
        indication=indication.lower() if indication else None,
        drug_class=term.drug_class if antithrombotic else None,
        mechanism=term.mechanism if antithrombotic else None,
        reversal_agent=term.reversal_agent if antithrombotic else None,
        reversed=antithrombotic and _reversed(text, start, end),
    )


def extract_medications(
    text: str,
    anchors: Optional[DocumentAnchors] = None,
    vocabulary: Vocabulary = DEFAULT_VOCABULARY,
    config: Optional[ExtractionConfig] = None,
) -> list[ExtractedEntity]:
    """Medications mentioned in *text*; empty list when there are none."""
    if not text:
        return []
    config = config or ExtractionConfig()
    anchors = ensure_anchors(text, anchors, vocabulary)

    known = scan_terms(text, vocabulary.medications, EntityType.MEDICATION, config.context_window_chars)
    generic = []
    for m in _GENERIC_DRUG.finditer(text):
        name = m.group(1)
        if name in _NOT_DRUGS:
            continue
        generic.append(make_candidate(text, m.start(1), m.end(1), EntityType.MEDICATION, name, config.context_window_chars))

    # Vocabulary hits take priority over the generic pattern
    known_candidates = [c for c, _ in known]
    kept_generic = [
        g for g in resolve_overlaps(generic)
        if not any(g.start < k.end and k.start < g.end for k in known_candidates)
    ]

    entities: list[ExtractedEntity] = []
    for candidate, term in known + [(g, None) for g in kept_generic]:
        attributes = _attributes(text, candidate.start, candidate.end, term)
        if term is None:
            base, flags = _GENERIC_CONFIDENCE, ["UNLISTED_MEDICATION"]
        elif attributes.dose is not None:
            base, flags = _VOCAB_WITH_DOSE, []
        else:
            base, flags = _VOCAB_NAME_ONLY, []
        entity = build_entity(text, candidate, attributes, anchors, config, base, flags=flags)
        if entity is not None:
            entities.append(entity)

    entities.sort(key=lambda e: e.span.start)
    logger.debug(f"Medications: {len(entities)}")
    return entities
