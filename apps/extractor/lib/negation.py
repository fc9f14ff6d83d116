"""
Negation and qualifier detection for a single mention.

Left-window trigger matching with scope breakers, in the NegEx manner:
  - pseudo-negations are matched first and win
  - pre-mention triggers inside a bounded token window
  - a few post-mention triggers ("was ruled out", "unlikely")
  - separate historical and hypothetical trigger sets
Ambiguous or missing context never raises; it comes back affirmed with low
confidence.
"""
from __future__ import annotations

import re
from typing import Optional

from packages.shared.models import Qualifiers

# ── Trigger tables ───────────────────────────────────────────────────────

_PSEUDO_NEGATIONS = [
    r"\bno\s+significant\s+change\b",
    r"\bno\s+change\b",
    r"\bno\s+increase\b",
    r"\bno\s+longer\b",
    r"\bnot\s+only\b",
    r"\bnot\s+certain\b",
    r"\bnot\s+necessarily\b",
    r"\bwithout\s+difficulty\b",
]

# (pattern, confidence); extended phrases listed before the bare words they contain
_PRE_TRIGGERS: list[tuple[str, float]] = [
    (r"\bno\s+(?:evidence|signs?|sign\s+of|findings?)\s+(?:of|for)\b", 0.9),
    (r"\bno\s+signs\s+of\b", 0.9),
    (r"\bdid\s+not\b", 0.9),
    (r"\bnever\b", 0.9),
    (r"\brule\s+out\b", 0.9),
    (r"\bnegative\s+for\b", 0.95),
    (r"\babsence\s+of\b", 0.95),
    (r"\bfree\s+of\b", 0.95),
    (r"\bruled\s+out\b", 0.95),
    (r"\bden(?:ies|ied|ying)\b", 0.95),
    (r"\bwithout\b", 0.95),
    (r"\babsent\b", 0.95),
    (r"\bnot\b", 0.95),
    (r"\bno\b", 0.95),
]

_POST_TRIGGERS: list[tuple[str, float]] = [
    (r"^\W*(?:was|were|has\s+been|have\s+been)\s+ruled\s+out\b", 0.85),
    (r"^\W*(?:is|was|felt\s+to\s+be|considered)?\s*unlikely\b", 0.85),
    (r"^\W*(?:was|were|is|are)?\s*not\s+seen\b", 0.85),
    (r"^\W*(?:is|was|are|were)?\s*absent\b", 0.85),
]

_HISTORICAL_TRIGGERS = [
    r"\bprior\s+history\s+of\b",
    r"\bhistory\s+of\b",
    r"\bhx\s+of\b",
    r"\bh/o\b",
    r"\bpast\s+medical\s+history\b",
    r"\bpmh\b",
    r"\bremote\b",
    r"\bpreviously\b",
    r"\bprior\b",
    r"\bin\s+the\s+past\b",
]

_HYPOTHETICAL_TRIGGERS = [
    r"\bmonitor(?:ing|ed)?\s+(?:closely\s+)?for\b",
    r"\bwatch(?:ing)?\s+for\b",
    r"\b(?:at\s+)?risk\s+(?:of|for)\b",
    r"\bconcern(?:ed)?\s+for\b",
    r"\bin\s+case\s+of\b",
    r"\bprophyla(?:xis|ctic)\b",
    r"\bif\b",
]

_HYPOTHETICAL_POST = re.compile(r"^\W*(?:prophyla(?:xis|ctic)|precautions?)\b", re.IGNORECASE)

HISTORY_SECTION_HEADERS = re.compile(
    r"^\s*(?:past\s+medical\s+history|past\s+surgical\s+history|pmh|psh|medical\s+history)\b",
    re.IGNORECASE,
)

# Scope breakers: sentence punctuation and contrastive connectives
_BREAKERS = re.compile(
    r"[.;!?\n]|\bbut\b|\bhowever\b|\balthough\b|\bexcept\b|\byet\b|\bthough\b",
    re.IGNORECASE,
)

_PSEUDO_RE = [re.compile(p, re.IGNORECASE) for p in _PSEUDO_NEGATIONS]
_PRE_RE = [(re.compile(p, re.IGNORECASE), c) for p, c in _PRE_TRIGGERS]
_POST_RE = [(re.compile(p, re.IGNORECASE), c) for p, c in _POST_TRIGGERS]
_HIST_RE = [re.compile(p, re.IGNORECASE) for p in _HISTORICAL_TRIGGERS]
_HYPO_RE = [re.compile(p, re.IGNORECASE) for p in _HYPOTHETICAL_TRIGGERS]

_LOOKBACK_CHARS = 200
_LOOKAHEAD_CHARS = 60
_AFFIRMED_CONFIDENCE = 0.5


# ── Helpers ──────────────────────────────────────────────────────────────


def _cut_after_last_breaker(left: str) -> str:
    """Keep only the text after the last scope breaker."""
    last = None
    for m in _BREAKERS.finditer(left):
        last = m
    return left[last.end():] if last else left


def _cut_before_first_breaker(right: str) -> str:
    m = _BREAKERS.search(right)
    return right[:m.start()] if m else right


def _last_tokens(left: str, n: int) -> str:
    tokens = left.split()
    return " ".join(tokens[-n:]) if tokens else ""


def _blank(text: str, start: int, end: int) -> str:
    return text[:start] + " " * (end - start) + text[end:]


def _closest(patterns: list[re.Pattern[str]], text: str) -> Optional[re.Match]:
    """The match ending nearest to the end of *text* (i.e. nearest the mention)."""
    best = None
    for pattern in patterns:
        for m in pattern.finditer(text):
            if best is None or m.end() > best.end():
                best = m
    return best


# ── Public API ───────────────────────────────────────────────────────────


def detect_qualifiers(
    text: str,
    start: int,
    end: int,
    *,
    window_tokens: int = 6,
    section_header: Optional[str] = None,
) -> Qualifiers:
    """
    Classify the mention text[start:end] as negated / historical / hypothetical.
    """
    if not text or start is None or end is None or not (0 <= start < end <= len(text)):
        return Qualifiers(confidence=0.0)

    mention = text[start:end]
    left_clause = _cut_after_last_breaker(text[max(0, start - _LOOKBACK_CHARS):start])
    right_clause = _cut_before_first_breaker(text[end:end + _LOOKAHEAD_CHARS])

    left = _last_tokens(left_clause, window_tokens)
    scope = f"{left} {mention}" if left else mention
    mention_offset = len(scope) - len(mention)

    # 1) Pseudo-negations first; one covering the mention settles it
    for pattern in _PSEUDO_RE:
        for m in pattern.finditer(scope):
            if m.end() > mention_offset:
                return Qualifiers(confidence=0.85, trigger=m.group(0).lower())
            scope = _blank(scope, m.start(), m.end())
    left = scope[:mention_offset]

    historical = False
    hypothetical = False
    trigger: Optional[str] = None

    hist_match = _closest(_HIST_RE, left_clause)
    if hist_match is not None:
        historical = True
        trigger = hist_match.group(0).lower()
    elif section_header and HISTORY_SECTION_HEADERS.search(section_header):
        historical = True
        trigger = section_header.strip().lower()

    hypo_match = _closest(_HYPO_RE, left)
    if hypo_match is not None:
        hypothetical = True
        trigger = trigger or hypo_match.group(0).lower()
    else:
        post_hypo = _HYPOTHETICAL_POST.search(right_clause)
        if post_hypo is not None:
            hypothetical = True
            trigger = trigger or post_hypo.group(0).strip(" ,").lower()

    # 2) Pre-mention negation, nearest trigger wins
    best: Optional[tuple[re.Match, float]] = None
    for pattern, conf in _PRE_RE:
        for m in pattern.finditer(left):
            if best is None or m.end() > best[0].end() or (m.end() == best[0].end() and m.start() < best[0].start()):
                best = (m, conf)
    if best is not None:
        return Qualifiers(
            negated=True,
            historical=historical,
            hypothetical=hypothetical,
            confidence=best[1],
            trigger=best[0].group(0).lower(),
        )

    # 3) Post-mention negation
    for pattern, conf in _POST_RE:
        m = pattern.search(right_clause)
        if m:
            return Qualifiers(
                negated=True,
                historical=historical,
                hypothetical=hypothetical,
                confidence=conf,
                trigger=m.group(0).strip(" ,").lower(),
            )

    if historical or hypothetical:
        return Qualifiers(historical=historical, hypothetical=hypothetical, confidence=0.8, trigger=trigger)
    return Qualifiers(confidence=_AFFIRMED_CONFIDENCE)
