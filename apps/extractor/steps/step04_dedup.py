"""
Step 4 — Deduplication.
Greedy single-link clustering in document order: each entity joins every
existing cluster holding a member it matches, merging them. Canonical member
is the most confident, ties going to the earliest mention.
"""
from __future__ import annotations

import logging
from typing import Optional

from packages.shared.errors import InvariantViolation
from packages.shared.models import DeduplicationCluster, ExtractedEntity, ExtractionConfig
from apps.extractor.lib.similarity import entity_similarity

logger = logging.getLogger(__name__)


def _choose_canonical(members: list[ExtractedEntity]) -> ExtractedEntity:
    return min(members, key=lambda e: (-e.confidence, e.span.start, e.entity_id))


def _check_clusters(clusters: list[DeduplicationCluster], total: int) -> None:
    seen: set[str] = set()
    count = 0
    for cluster in clusters:
        types = {m.entity_type for m in cluster.members}
        if len(types) != 1 or cluster.entity_type not in types:
            raise InvariantViolation(
                f"Cluster {cluster.cluster_id} spans entity types {sorted(t.value for t in types)}"
            )
        for member in cluster.members:
            if member.entity_id in seen:
                raise InvariantViolation(f"Entity {member.entity_id} assigned to two clusters")
            seen.add(member.entity_id)
            count += 1
    if count != total:
        raise InvariantViolation(f"Clusters hold {count} entities, expected {total}")


def deduplicate(
    entities: list[ExtractedEntity],
    config: Optional[ExtractionConfig] = None,
) -> list[DeduplicationCluster]:
    """
    Partition entities into clusters of mentions of the same fact.
    Deterministic for identical input and configuration.
    """
    config = config or ExtractionConfig()
    if not entities:
        return []

    ordered = sorted(entities, key=lambda e: (e.span.start, e.span.end, e.entity_id))
    groups: list[list[ExtractedEntity]] = []
    best: list[float] = []

    for entity in ordered:
        matched: list[int] = []
        top = 0.0
        for idx, group in enumerate(groups):
            scores = [entity_similarity(entity, member, config) for member in group]
            score = max(scores)
            if score > config.dedup_threshold:
                matched.append(idx)
                top = max(top, score)
        if not matched:
            groups.append([entity])
            best.append(0.0)
            continue

        # Merge every matched group into the first one
        head = matched[0]
        groups[head].append(entity)
        best[head] = max(best[head], top)
        for idx in reversed(matched[1:]):
            groups[head].extend(groups[idx])
            best[head] = max(best[head], best[idx])
            del groups[idx]
            del best[idx]

    clusters: list[DeduplicationCluster] = []
    for group, score in zip(groups, best):
        members = sorted(group, key=lambda e: (e.span.start, e.entity_id))
        canonical = _choose_canonical(members)
        clusters.append(DeduplicationCluster(
            cluster_id=f"clu-{canonical.entity_id}",
            entity_type=canonical.entity_type,
            members=members,
            canonical=canonical,
            max_similarity=score if len(members) > 1 else 1.0,
        ))
    clusters.sort(key=lambda c: (c.canonical.span.start, c.cluster_id))

    _check_clusters(clusters, len(ordered))
    merged = len(ordered) - len(clusters)
    if merged:
        logger.info(f"Dedup: {len(ordered)} mentions -> {len(clusters)} clusters")
    return clusters
