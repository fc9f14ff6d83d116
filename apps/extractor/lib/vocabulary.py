"""
Clinical vocabularies for the entity extractors.

Vocabularies are immutable and built once per pathology-signal set, so one
instance can be shared by concurrent extractors across documents.
"""
from __future__ import annotations

import re
from dataclasses import dataclass, field
from functools import lru_cache
from typing import Iterable, Optional

from packages.shared.models import EntityType


@dataclass(frozen=True)
class Term:
    canonical: str
    pattern: re.Pattern[str]
    category: str
    system: str = "neurological"
    indications: tuple[str, ...] = ()
    prophylaxis_for: tuple[str, ...] = ()
    drug_class: Optional[str] = None
    mechanism: Optional[str] = None
    reversal_agent: Optional[str] = None


@dataclass(frozen=True)
class ScaleSpec:
    name: str
    pattern: re.Pattern[str]
    min_value: float
    max_value: float
    higher_is_better: bool
    system: str
    letter_grades: dict[str, int] = field(default_factory=dict)

    def normalize(self, value: float) -> float:
        """Map a raw score to 0-100 where higher is always better."""
        span = self.max_value - self.min_value
        pct = (value - self.min_value) / span * 100.0 if span else 0.0
        return pct if self.higher_is_better else 100.0 - pct


def _rx(pattern: str) -> re.Pattern[str]:
    return re.compile(rf"\b(?:{pattern})\b", re.IGNORECASE)


# ── Procedures: (canonical, pattern, category) ──────────────────────────

_PROCEDURE_RULES: list[tuple[str, str, str]] = [
    ("coiling", r"(?:endovascular\s+)?(?:aneurysm\s+)?coil(?:ing|\s+embolization)", "therapeutic"),
    ("clipping", r"(?:aneurysm(?:al)?\s+)?clipping|clip\s+ligation", "therapeutic"),
    ("craniotomy", r"(?:(?:left|right|bifrontal|frontal|pterional|temporal|suboccipital)\s+)*craniotomy", "therapeutic"),
    ("craniectomy", r"(?:decompressive\s+)?(?:hemi)?craniectomy", "therapeutic"),
    ("cranioplasty", r"cranioplasty", "therapeutic"),
    ("EVD placement", r"EVD(?:\s+placement)?|external\s+ventricular\s+drain(?:age)?|ventriculostomy", "therapeutic"),
    ("lumbar drain", r"lumbar\s+drain(?:\s+placement)?", "therapeutic"),
    ("VP shunt", r"VP\s+shunt(?:\s+placement)?|ventriculoperitoneal\s+shunt(?:\s+placement)?", "therapeutic"),
    ("resection", r"(?:gross\s+total\s+|subtotal\s+|tumou?r\s+)?resection", "therapeutic"),
    ("biopsy", r"(?:stereotactic\s+|needle\s+)?biopsy", "diagnostic"),
    ("angiography", r"(?:cerebral\s+|diagnostic\s+)?angiogra(?:m|phy)|DSA", "diagnostic"),
    ("embolization", r"(?:onyx\s+|particle\s+)?embolization", "therapeutic"),
    ("thrombectomy", r"(?:mechanical\s+)?thrombectomy", "therapeutic"),
    ("laminectomy", r"(?:decompressive\s+)?laminectomy", "therapeutic"),
    ("ACDF", r"ACDF|anterior\s+cervical\s+discectomy(?:\s+and\s+fusion)?", "therapeutic"),
    ("discectomy", r"(?:micro)?discectomy", "therapeutic"),
    ("spinal fusion", r"(?:posterior\s+|lumbar\s+|cervical\s+|spinal\s+)fusion|TLIF|PLIF", "therapeutic"),
    ("kyphoplasty", r"kyphoplasty|vertebroplasty", "therapeutic"),
    ("tracheostomy", r"tracheostomy|trach\s+placement", "therapeutic"),
    ("PEG placement", r"PEG(?:\s+tube)?(?:\s+placement)?|gastrostomy", "therapeutic"),
    ("lumbar puncture", r"lumbar\s+puncture|LP", "diagnostic"),
]

# ── Complications: (canonical, pattern, category, system) ────────────────

_COMPLICATION_RULES: list[tuple[str, str, str, str]] = [
    ("vasospasm", r"(?:cerebral\s+|angiographic\s+)?vasospasm", "vascular", "neurological"),
    ("hydrocephalus", r"(?:acute\s+|communicating\s+|obstructive\s+)?hydrocephalus", "neurological", "neurological"),
    ("seizure", r"seizures?|status\s+epilepticus", "neurological", "neurological"),
    ("cerebral edema", r"(?:cerebral\s+|vasogenic\s+|cytotoxic\s+)?edema", "neurological", "neurological"),
    ("hemorrhage", r"(?<!subarachnoid\s)(?<!intracerebral\s)(?:re-?)?hemorrhage|rebleed(?:ing)?|intracranial\s+bleed", "vascular", "neurological"),
    ("stroke", r"stroke|(?:cerebral\s+)?infarct(?:ion)?", "vascular", "neurological"),
    ("infection", r"(?:wound\s+|surgical\s+site\s+|shunt\s+|CSF\s+)?infection", "infectious", "infectious"),
    ("meningitis", r"meningitis|ventriculitis", "infectious", "infectious"),
    ("pneumonia", r"(?:aspiration\s+|ventilator[-\s]associated\s+)?pneumonia|VAP", "respiratory", "respiratory"),
    ("respiratory failure", r"respiratory\s+failure|hypoxic\s+respiratory\s+failure", "respiratory", "respiratory"),
    ("pulmonary embolism", r"pulmonary\s+embol(?:ism|us)", "respiratory", "respiratory"),
    ("deep vein thrombosis", r"DVT|deep\s+vein\s+thrombosis", "vascular", "cardiovascular"),
    ("arrhythmia", r"atrial\s+fibrillation|afib|arrhythmia", "cardiac", "cardiovascular"),
    ("hyponatremia", r"hyponatremia|SIADH|cerebral\s+salt\s+wasting", "metabolic", "metabolic"),
    ("fever", r"fevers?|febrile", "metabolic", "infectious"),
    ("wound dehiscence", r"wound\s+dehiscence|dehiscence", "surgical", "surgical"),
]

# Signal-specific additions; signals come from the pathology detector.
_COMPLICATION_EXTENSIONS: dict[str, list[tuple[str, str, str, str]]] = {
    "vascular": [
        ("delayed cerebral ischemia", r"delayed\s+cerebral\s+ischemia|DCI", "vascular", "neurological"),
        ("aneurysm rerupture", r"(?:aneurysm(?:al)?\s+)?re-?rupture", "vascular", "neurological"),
    ],
    "spine": [
        ("CSF leak", r"CSF\s+leak|cerebrospinal\s+fluid\s+leak|pseudomeningocele", "surgical", "surgical"),
        ("hardware failure", r"hardware\s+failure|screw\s+loosening|rod\s+fracture", "surgical", "surgical"),
        ("pseudarthrosis", r"pseudarthrosis|non-?union", "surgical", "surgical"),
    ],
    "tumor": [
        ("radiation necrosis", r"radiation\s+necrosis", "neurological", "neurological"),
        ("tumor recurrence", r"tumou?r\s+recurrence|recurrent\s+tumou?r", "neurological", "neurological"),
    ],
    "hydrocephalus": [
        ("shunt malfunction", r"shunt\s+malfunction|shunt\s+failure", "surgical", "neurological"),
        ("overdrainage", r"over-?drainage|slit\s+ventricle", "surgical", "neurological"),
    ],
    "infection": [
        ("abscess", r"(?:brain\s+|epidural\s+)?abscess", "infectious", "infectious"),
        ("osteomyelitis", r"osteomyelitis|bone\s+flap\s+infection", "infectious", "infectious"),
    ],
    "trauma": [
        ("contusion expansion", r"contusion\s+(?:expansion|blossoming)", "vascular", "neurological"),
    ],
}

# ── Medications: (canonical, pattern, system, indications, prophylaxis_for) ──

_MEDICATION_RULES: list[tuple[str, str, str, tuple[str, ...], tuple[str, ...]]] = [
    ("Nimodipine", r"nimodipine|Nimotop", "neurological", ("vasospasm", "delayed cerebral ischemia"), ("vasospasm",)),
    ("Milrinone", r"milrinone", "neurological", ("vasospasm",), ()),
    ("Verapamil", r"verapamil", "neurological", ("vasospasm",), ()),
    ("Levetiracetam", r"levetiracetam|Keppra", "neurological", ("seizure",), ("seizure",)),
    ("Phenytoin", r"phenytoin|fosphenytoin|Dilantin", "neurological", ("seizure",), ("seizure",)),
    ("Lacosamide", r"lacosamide|Vimpat", "neurological", ("seizure",), ()),
    ("Dexamethasone", r"dexamethasone|Decadron", "neurological", ("cerebral edema",), ()),
    ("Mannitol", r"mannitol", "neurological", ("cerebral edema",), ()),
    ("Hypertonic saline", r"hypertonic\s+saline|3%\s+saline|23\.4%\s+saline", "neurological", ("cerebral edema", "hyponatremia"), ()),
    ("Aspirin", r"aspirin|ASA|acetylsalicylic\s+acid|Ecotrin", "cardiovascular", ("stroke",), ("stroke",)),
    ("Clopidogrel", r"clopidogrel|Plavix", "cardiovascular", ("stroke",), ()),
    ("Ticagrelor", r"ticagrelor|Brilinta", "cardiovascular", ("stroke",), ()),
    ("Prasugrel", r"prasugrel|Effient", "cardiovascular", ("stroke",), ()),
    ("Warfarin", r"warfarin|Coumadin|Jantoven", "cardiovascular", ("deep vein thrombosis", "pulmonary embolism"), ()),
    ("Apixaban", r"apixaban|Eliquis", "cardiovascular", ("deep vein thrombosis", "pulmonary embolism"), ()),
    ("Rivaroxaban", r"rivaroxaban|Xarelto", "cardiovascular", ("deep vein thrombosis", "pulmonary embolism"), ()),
    ("Edoxaban", r"edoxaban|Savaysa", "cardiovascular", ("deep vein thrombosis", "pulmonary embolism"), ()),
    ("Dabigatran", r"dabigatran|Pradaxa", "cardiovascular", ("deep vein thrombosis", "pulmonary embolism"), ()),
    ("Heparin", r"(?:unfractionated\s+)?heparin|SQH|UFH", "cardiovascular", ("deep vein thrombosis",), ("deep vein thrombosis",)),
    ("Enoxaparin", r"enoxaparin|Lovenox|LMWH", "cardiovascular", ("deep vein thrombosis",), ("deep vein thrombosis",)),
    ("Labetalol", r"labetalol", "cardiovascular", (), ()),
    ("Nicardipine", r"nicardipine|Cardene", "cardiovascular", (), ()),
    ("Metoprolol", r"metoprolol|Lopressor", "cardiovascular", ("arrhythmia",), ()),
    ("Atorvastatin", r"atorvastatin|Lipitor", "cardiovascular", (), ()),
    ("Pantoprazole", r"pantoprazole|Protonix", "gastrointestinal", (), ()),
    ("Vancomycin", r"vancomycin|vanc", "infectious", ("infection", "meningitis", "pneumonia"), ()),
    ("Cefazolin", r"cefazolin|Ancef", "infectious", ("infection",), ("infection",)),
    ("Ceftriaxone", r"ceftriaxone|Rocephin", "infectious", ("infection", "meningitis", "pneumonia"), ()),
    ("Cefepime", r"cefepime", "infectious", ("infection", "meningitis", "pneumonia"), ()),
    ("Meropenem", r"meropenem", "infectious", ("infection", "meningitis", "pneumonia"), ()),
    ("Piperacillin-tazobactam", r"piperacillin[-/\s]tazobactam|Zosyn", "infectious", ("infection", "pneumonia"), ()),
    ("Acetaminophen", r"acetaminophen|Tylenol", "infectious", ("fever",), ()),
    ("Sodium chloride tablets", r"(?:sodium\s+chloride|NaCl)\s+tabs?(?:lets)?|salt\s+tabs?(?:lets)?", "metabolic", ("hyponatremia",), ()),
    ("Fludrocortisone", r"fludrocortisone|Florinef", "metabolic", ("hyponatremia",), ()),
]

# Antiplatelets and anticoagulants: canonical -> (drug_class, mechanism, reversal_agent)
_ANTITHROMBOTICS: dict[str, tuple[str, str, str]] = {
    "Aspirin": ("antiplatelet", "COX inhibitor", "platelet transfusion"),
    "Clopidogrel": ("antiplatelet", "P2Y12 inhibitor", "platelet transfusion"),
    "Ticagrelor": ("antiplatelet", "P2Y12 inhibitor", "platelet transfusion"),
    "Prasugrel": ("antiplatelet", "P2Y12 inhibitor", "platelet transfusion"),
    "Warfarin": ("anticoagulant", "vitamin K antagonist", "vitamin K, PCC, FFP"),
    "Apixaban": ("anticoagulant", "factor Xa inhibitor", "andexanet alfa, PCC"),
    "Rivaroxaban": ("anticoagulant", "factor Xa inhibitor", "andexanet alfa, PCC"),
    "Edoxaban": ("anticoagulant", "factor Xa inhibitor", "andexanet alfa, PCC"),
    "Dabigatran": ("anticoagulant", "direct thrombin inhibitor", "idarucizumab"),
    "Heparin": ("anticoagulant", "heparin", "protamine"),
    "Enoxaparin": ("anticoagulant", "low molecular weight heparin", "protamine (partial)"),
}

# ── Functional scales ────────────────────────────────────────────────────

_ASIA_GRADES = {"A": 0, "B": 1, "C": 2, "D": 3, "E": 4}

SCALES: dict[str, ScaleSpec] = {
    "KPS": ScaleSpec(
        "KPS", re.compile(r"\b(?:KPS|Karnofsky(?:\s+performance\s+(?:status|score))?)\s*(?:score)?\s*(?:of|was|is|=|:)?\s*(\d{1,3})\b", re.IGNORECASE),
        0, 100, True, "functional",
    ),
    "ECOG": ScaleSpec(
        "ECOG", re.compile(r"\bECOG(?:\s+performance\s+status)?\s*(?:PS)?\s*(?:of|was|is|=|:)?\s*(\d)\b", re.IGNORECASE),
        0, 5, False, "functional",
    ),
    "mRS": ScaleSpec(
        "mRS", re.compile(r"\b(?:mRS|modified\s+Rankin(?:\s+scale)?)\s*(?:score)?\s*(?:of|was|is|=|:)?\s*(\d)\b", re.IGNORECASE),
        0, 6, False, "functional",
    ),
    "GCS": ScaleSpec(
        "GCS", re.compile(r"\b(?:GCS|Glasgow\s+Coma\s+(?:Scale|Score))\s*(?:score)?\s*(?:of|was|is|=|:)?\s*(\d{1,2})\b", re.IGNORECASE),
        3, 15, True, "neurological",
    ),
    "NIHSS": ScaleSpec(
        "NIHSS", re.compile(r"\b(?:NIHSS|NIH\s+stroke\s+scale)\s*(?:score)?\s*(?:of|was|is|=|:)?\s*(\d{1,2})\b", re.IGNORECASE),
        0, 42, False, "neurological",
    ),
    "ASIA": ScaleSpec(
        "ASIA", re.compile(r"\bASIA(?:\s+impairment\s+scale)?\s*(?:grade|score)?\s*(?:of|was|is|=|:)?\s*([A-E])\b"),
        0, 4, True, "neurological", _ASIA_GRADES,
    ),
}


@dataclass(frozen=True)
class Vocabulary:
    procedures: tuple[Term, ...]
    complications: tuple[Term, ...]
    medications: tuple[Term, ...]
    signals: frozenset[str] = frozenset()

    def terms_for(self, entity_type: EntityType) -> tuple[Term, ...]:
        if entity_type == EntityType.PROCEDURE:
            return self.procedures
        if entity_type == EntityType.COMPLICATION:
            return self.complications
        if entity_type == EntityType.MEDICATION:
            return self.medications
        return ()

    def lookup(self, entity_type: EntityType, name: str) -> Optional[Term]:
        """Find the term whose canonical name matches *name* (case-insensitive)."""
        key = name.lower()
        for term in self.terms_for(entity_type):
            if term.canonical.lower() == key:
                return term
        return None


@lru_cache(maxsize=32)
def _build(signals: frozenset[str]) -> Vocabulary:
    procedures = tuple(Term(c, _rx(p), cat) for c, p, cat in _PROCEDURE_RULES)

    complication_rules = list(_COMPLICATION_RULES)
    for signal in sorted(signals):
        complication_rules.extend(_COMPLICATION_EXTENSIONS.get(signal, []))
    complications = tuple(Term(c, _rx(p), cat, system) for c, p, cat, system in complication_rules)

    medications = tuple(
        Term(c, _rx(p), "therapeutic", system, indications, prophylaxis, *_ANTITHROMBOTICS.get(c, (None, None, None)))
        for c, p, system, indications, prophylaxis in _MEDICATION_RULES
    )
    return Vocabulary(procedures, complications, medications, signals)


def build_vocabulary(signals: Iterable[str] = ()) -> Vocabulary:
    """Vocabulary for a pathology-signal set. Unknown signals are ignored."""
    return _build(frozenset(s for s in signals if s))


DEFAULT_VOCABULARY = build_vocabulary(())
