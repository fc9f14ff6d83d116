"""
Step 1 — Pathology signals.
Tag the note with high-level condition signals that select vocabulary
extensions. An external classifier may be supplied; when it fails or returns
something other than a collection of strings, the keyword detector is used.
"""
from __future__ import annotations

import logging
import re
from typing import Callable, Iterable, Optional

from packages.shared.models import Warning

logger = logging.getLogger(__name__)

PathologyClassifier = Callable[[str], Iterable[str]]

KNOWN_SIGNALS = ("vascular", "tumor", "spine", "trauma", "hydrocephalus", "infection")

_SIGNAL_PATTERNS: dict[str, re.Pattern[str]] = {
    "vascular": re.compile(
        r"\b(?:aneurysm(?:al)?|subarachnoid\s+hemorrhage|SAH|AVM|arteriovenous\s+malformation|"
        r"vasospasm|Hunt[-\s]and[-\s]Hess|Fisher\s+grade|moyamoya|carotid\s+stenosis)\b",
        re.IGNORECASE,
    ),
    "tumor": re.compile(
        r"\b(?:tumou?r|glioma|glioblastoma|GBM|meningioma|metasta(?:sis|ses|tic)|astrocytoma|"
        r"schwannoma|lymphoma|neoplasm|mass\s+lesion)\b",
        re.IGNORECASE,
    ),
    "spine": re.compile(
        r"\b(?:spinal|spine|lumbar\s+(?:fusion|stenosis|laminectomy)|cervical\s+(?:fusion|myelopathy)|"
        r"laminectomy|discectomy|ACDF|TLIF|PLIF|myelopathy|radiculopathy|vertebr(?:a|al))\b",
        re.IGNORECASE,
    ),
    "trauma": re.compile(
        r"\b(?:TBI|traumatic\s+brain\s+injury|trauma|subdural\s+hematoma|SDH|epidural\s+hematoma|"
        r"contusion|MVC|motor\s+vehicle|fall\s+from|assault)\b",
        re.IGNORECASE,
    ),
    "hydrocephalus": re.compile(
        r"\b(?:hydrocephalus|NPH|ventriculomegaly|VP\s+shunt|ventriculoperitoneal|EVD|ventriculostomy)\b",
        re.IGNORECASE,
    ),
    "infection": re.compile(
        r"\b(?:abscess|meningitis|ventriculitis|osteomyelitis|empyema|wound\s+infection|bacteremia|sepsis)\b",
        re.IGNORECASE,
    ),
}


def detect_pathology_signals(text: str) -> list[str]:
    """Keyword detector; signals come back in a fixed order."""
    if not text:
        return []
    return [signal for signal in KNOWN_SIGNALS if _SIGNAL_PATTERNS[signal].search(text)]


def _clean(tags: object) -> Optional[list[str]]:
    """Known signals from a classifier's answer, or None if the answer is unusable."""
    if isinstance(tags, (str, bytes)) or not isinstance(tags, Iterable):
        return None
    cleaned: list[str] = []
    for tag in tags:
        if not isinstance(tag, str):
            return None
        tag = tag.strip().lower()
        if tag in KNOWN_SIGNALS and tag not in cleaned:
            cleaned.append(tag)
    return [s for s in KNOWN_SIGNALS if s in cleaned]


def resolve_pathology_signals(
    text: str,
    classifier: Optional[PathologyClassifier] = None,
) -> tuple[list[str], list[Warning]]:
    """
    Return (signals, warnings). Tags the classifier returns that are not
    known signals are ignored.
    """
    warnings: list[Warning] = []
    if classifier is None:
        return detect_pathology_signals(text), warnings

    try:
        signals = _clean(classifier(text))
    except Exception as e:
        logger.warning(f"Pathology classifier failed: {e}")
        signals = None
        reason = str(e)
    else:
        reason = "classifier returned an unusable tag set"

    if signals is None:
        warnings.append(Warning(
            code="PATHOLOGY_CLASSIFIER_FAILED",
            message=f"Fell back to keyword pathology detection: {reason}",
        ))
        return detect_pathology_signals(text), warnings

    return signals, warnings
