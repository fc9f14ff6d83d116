"""
Step 8 — Overall confidence.
Blend of mean entity confidence (70%) and the share of dated entities (30%),
reduced by 0.05 per extractor failure. No entities -> 0.0.
"""
from __future__ import annotations

from packages.shared.models import EntityType, ExtractedEntity, Warning


def score_extraction(entities: list[ExtractedEntity], warnings: list[Warning]) -> float:
    """Overall extraction confidence in [0, 1]."""
    if not entities:
        return 0.0

    mean_conf = sum(e.confidence for e in entities) / len(entities)

    dated_candidates = [e for e in entities if e.entity_type != EntityType.DEMOGRAPHIC]
    if dated_candidates:
        resolved = sum(1 for e in dated_candidates if e.anchor is not None and e.anchor.is_resolved)
        dated_share = resolved / len(dated_candidates)
    else:
        dated_share = 1.0

    score = 0.7 * mean_conf + 0.3 * dated_share
    score -= 0.05 * sum(1 for w in warnings if w.code == "EXTRACTOR_FAILED")
    return round(min(max(score, 0.0), 1.0), 3)
