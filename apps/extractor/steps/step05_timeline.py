"""
Step 5 — Timeline construction.

Only clusters holding a new_event mention become events; their reference
mentions attach to that event. Reference-only clusters link to the most
similar event of the same type, else to a prior-context entity, else they
are kept as unlinked references. Course markers (admission, discharge,
status changes) become encounter and outcome events.

Events are ordered by anchor (absolute dates, then POD / hospital-day
offsets, then unresolved) with document order breaking ties.

Relationship windows:
  complication -> treatment   TRIGGERS     within 2 days   (0.8)
  procedure    -> complication LEADS_TO    within 14 days  (0.85 if <= 7 days, else 0.7)
  treatment    -> outcome     RESPONDS_TO  within 21 days  (0.7)
  prophylaxis with no target complication on record       PREVENTS (0.75)
Without computable day offsets, immediate adjacency is used at lower
confidence. These are heuristic matches, not causal inference.
"""
from __future__ import annotations

import logging
from typing import Iterable, Optional

from packages.shared.models import (
    CourseMarker,
    CourseMarkerKind,
    DeduplicationCluster,
    EntityType,
    Event,
    EventCategory,
    ExtractedEntity,
    ExtractionConfig,
    Milestone,
    MilestoneKind,
    ReferenceClass,
    ReferenceLink,
    Relationship,
    RelationshipType,
    StructuredFacts,
    Timeline,
)
from apps.extractor.lib.similarity import entity_similarity
from apps.extractor.lib.vocabulary import DEFAULT_VOCABULARY, SCALES

logger = logging.getLogger(__name__)

_MARKER_CATEGORY = {
    CourseMarkerKind.ADMISSION: EventCategory.ENCOUNTER,
    CourseMarkerKind.DISCHARGE: EventCategory.ENCOUNTER,
    CourseMarkerKind.IMPROVED: EventCategory.OUTCOME,
    CourseMarkerKind.WORSENED: EventCategory.OUTCOME,
    CourseMarkerKind.UNCHANGED: EventCategory.OUTCOME,
    CourseMarkerKind.RESOLVED: EventCategory.OUTCOME,
}

_ADJACENT_CONFIDENCE = {
    RelationshipType.TRIGGERS: 0.55,
    RelationshipType.LEADS_TO: 0.5,
    RelationshipType.RESPONDS_TO: 0.45,
}


# ── Event construction ───────────────────────────────────────────────────


def _entity_category(entity: ExtractedEntity) -> EventCategory:
    if entity.entity_type == EntityType.PROCEDURE:
        return EventCategory.DIAGNOSTIC if "DIAGNOSTIC" in entity.flags else EventCategory.THERAPEUTIC
    if entity.entity_type == EntityType.MEDICATION:
        return EventCategory.THERAPEUTIC
    if entity.entity_type == EntityType.COMPLICATION:
        return EventCategory.COMPLICATION
    return EventCategory.OUTCOME


def _entity_label(entity: ExtractedEntity) -> str:
    attrs = entity.attributes
    if entity.entity_type == EntityType.FUNCTIONAL_SCORE:
        return f"{attrs.scale} {attrs.raw or format(attrs.value, 'g')}"
    if entity.entity_type == EntityType.MEDICATION and attrs.dose:
        return f"{entity.name} {attrs.dose}"
    return entity.name


def _event_from_cluster(cluster: DeduplicationCluster) -> Event:
    new_events = [m for m in cluster.members if m.is_new_event]
    primary = min(new_events, key=lambda e: (-e.confidence, e.span.start))
    refs = [m for m in cluster.members if not m.is_new_event]
    return Event(
        event_id=f"evt-{primary.entity_id}",
        category=_entity_category(primary),
        label=_entity_label(primary),
        entity=primary,
        anchor=primary.anchor,
        timestamp=primary.anchor.value,
        relative_day=primary.anchor.relative_day,
        classification=ReferenceClass.NEW_EVENT,
        document_position=primary.span.start,
        references=refs,
    )


def _event_from_marker(marker: CourseMarker) -> Event:
    label = marker.kind.value if not marker.detail else f"{marker.kind.value} ({marker.detail})"
    return Event(
        event_id=f"evt-{marker.marker_id}",
        category=_MARKER_CATEGORY[marker.kind],
        label=label,
        marker=marker,
        anchor=marker.anchor,
        timestamp=marker.anchor.value,
        relative_day=marker.anchor.relative_day,
        document_position=marker.span.start,
    )


def _order(events: list[Event]) -> list[Event]:
    ordered = sorted(events, key=lambda e: (e.anchor.sort_key(), e.document_position, e.event_id))
    return [e.model_copy(update={"ordinal": i}) for i, e in enumerate(ordered)]


# ── References ───────────────────────────────────────────────────────────


def _link_references(
    reference_clusters: list[DeduplicationCluster],
    events: list[Event],
    prior_context: Optional[StructuredFacts],
    config: ExtractionConfig,
) -> tuple[dict[str, list[ExtractedEntity]], list[ReferenceLink], list[ReferenceLink]]:
    attached: dict[str, list[ExtractedEntity]] = {}
    prior_links: list[ReferenceLink] = []
    unlinked: list[ReferenceLink] = []
    prior_entities = prior_context.entities if prior_context is not None else []

    for cluster in reference_clusters:
        reference = cluster.canonical
        best: Optional[tuple[float, int, Event]] = None
        for event in events:
            if event.entity is None or event.entity.entity_type != reference.entity_type:
                continue
            score = entity_similarity(reference, event.entity, config)
            if score >= config.reference_link_threshold and (best is None or score > best[0]):
                best = (score, event.ordinal, event)
        if best is not None:
            attached.setdefault(best[2].event_id, []).extend(cluster.members)
            continue

        prior_best: Optional[tuple[float, ExtractedEntity]] = None
        for prior in prior_entities:
            if prior.entity_type != reference.entity_type:
                continue
            score = entity_similarity(reference, prior, config)
            if score >= config.reference_link_threshold and (prior_best is None or score > prior_best[0]):
                prior_best = (score, prior)
        if prior_best is not None:
            prior_links.append(ReferenceLink(reference=reference, linked_prior_entity_id=prior_best[1].entity_id))
        else:
            unlinked.append(ReferenceLink(reference=reference))

    return attached, prior_links, unlinked


# ── Milestones ───────────────────────────────────────────────────────────


def _milestones(events: list[Event]) -> list[Milestone]:
    milestones: list[Milestone] = []
    seen: set[MilestoneKind] = set()
    for event in events:
        kind: Optional[MilestoneKind] = None
        if event.marker is not None and event.marker.kind == CourseMarkerKind.ADMISSION:
            kind = MilestoneKind.ADMISSION
        elif event.marker is not None and event.marker.kind == CourseMarkerKind.DISCHARGE:
            kind = MilestoneKind.DISCHARGE
        elif event.entity_type == EntityType.PROCEDURE:
            kind = MilestoneKind.FIRST_PROCEDURE
        elif event.entity_type == EntityType.COMPLICATION:
            kind = MilestoneKind.COMPLICATION_ONSET
        if kind is None:
            continue
        if kind != MilestoneKind.COMPLICATION_ONSET and kind in seen:
            continue
        seen.add(kind)
        milestones.append(Milestone(kind=kind, event_id=event.event_id, label=event.label, ordinal=event.ordinal))
    return milestones


# ── Relationships ────────────────────────────────────────────────────────


def is_treatment(event: Event) -> bool:
    return event.entity is not None and event.category == EventCategory.THERAPEUTIC


def is_outcome(event: Event) -> bool:
    if event.marker is not None:
        return event.category == EventCategory.OUTCOME
    return event.entity_type == EntityType.FUNCTIONAL_SCORE


def days_apart(a: Event, b: Event) -> Optional[int]:
    return a.anchor.days_between(b.anchor)


def indicated_for(treatment: Event, complication: Event) -> bool:
    """The medication's indication (stated or from vocabulary) names the complication."""
    if treatment.entity is None or complication.entity is None:
        return False
    target = complication.entity.name.lower()
    stated = getattr(treatment.entity.attributes, "indication", None)
    if stated and (target in stated.lower() or stated.lower() in target):
        return True
    term = DEFAULT_VOCABULARY.lookup(EntityType.MEDICATION, treatment.entity.name)
    return term is not None and target in term.indications


def _systems_match(treatment: Event, outcome: Event) -> bool:
    """Medication -> functional score pairs must concern the same body system."""
    if outcome.entity_type != EntityType.FUNCTIONAL_SCORE or treatment.entity_type != EntityType.MEDICATION:
        return True
    term = DEFAULT_VOCABULARY.lookup(EntityType.MEDICATION, treatment.entity.name)
    spec = SCALES.get(outcome.entity.attributes.scale)
    if term is None or spec is None:
        return False
    if term.system == spec.system:
        return True
    return term.system == "neurological" and spec.system == "functional"


def _within(days: Optional[int], window: int) -> bool:
    return days is not None and 0 <= days <= window


def _triggers(events: list[Event], config: ExtractionConfig) -> list[Relationship]:
    rels: list[Relationship] = []
    for i, comp in enumerate(events):
        if comp.category != EventCategory.COMPLICATION:
            continue
        for j in range(i + 1, len(events)):
            treat = events[j]
            if not is_treatment(treat):
                continue
            days = days_apart(comp, treat)
            if _within(days, config.trigger_window_days):
                conf = 0.8 + (0.1 if indicated_for(treat, comp) else 0.0)
                rels.append(Relationship(
                    source_event_id=comp.event_id, target_event_id=treat.event_id,
                    relationship_type=RelationshipType.TRIGGERS, confidence=round(conf, 3),
                    days_apart=days, rationale=f"{treat.label} started {days} day(s) after {comp.label}",
                ))
            elif days is None and j == i + 1:
                rels.append(Relationship(
                    source_event_id=comp.event_id, target_event_id=treat.event_id,
                    relationship_type=RelationshipType.TRIGGERS,
                    confidence=_ADJACENT_CONFIDENCE[RelationshipType.TRIGGERS],
                    rationale=f"{treat.label} immediately follows {comp.label}",
                ))
    return rels


def _leads_to(events: list[Event], config: ExtractionConfig) -> list[Relationship]:
    rels: list[Relationship] = []
    for i, proc in enumerate(events):
        if proc.entity_type != EntityType.PROCEDURE or proc.category != EventCategory.THERAPEUTIC:
            continue
        for j in range(i + 1, len(events)):
            comp = events[j]
            if comp.category != EventCategory.COMPLICATION:
                continue
            days = days_apart(proc, comp)
            if _within(days, config.complication_window_days):
                conf = 0.85 if days <= 7 else 0.7
                rels.append(Relationship(
                    source_event_id=proc.event_id, target_event_id=comp.event_id,
                    relationship_type=RelationshipType.LEADS_TO, confidence=conf,
                    days_apart=days, rationale=f"{comp.label} {days} day(s) after {proc.label}",
                ))
            elif days is None and j == i + 1:
                rels.append(Relationship(
                    source_event_id=proc.event_id, target_event_id=comp.event_id,
                    relationship_type=RelationshipType.LEADS_TO,
                    confidence=_ADJACENT_CONFIDENCE[RelationshipType.LEADS_TO],
                    rationale=f"{comp.label} immediately follows {proc.label}",
                ))
    return rels


def _responds_to(events: list[Event], config: ExtractionConfig) -> list[Relationship]:
    """Nearest qualifying outcome per treatment."""
    rels: list[Relationship] = []
    for i, treat in enumerate(events):
        if not is_treatment(treat):
            continue
        for j in range(i + 1, len(events)):
            outcome = events[j]
            if is_treatment(outcome) and outcome.entity.name == treat.entity.name:
                break
            if not is_outcome(outcome) or not _systems_match(treat, outcome):
                continue
            days = days_apart(treat, outcome)
            if _within(days, config.response_window_days):
                rels.append(Relationship(
                    source_event_id=treat.event_id, target_event_id=outcome.event_id,
                    relationship_type=RelationshipType.RESPONDS_TO, confidence=0.7,
                    days_apart=days, rationale=f"{outcome.label} {days} day(s) after {treat.label}",
                ))
                break
            if days is None and all(not is_treatment(e) for e in events[i + 1:j]):
                rels.append(Relationship(
                    source_event_id=treat.event_id, target_event_id=outcome.event_id,
                    relationship_type=RelationshipType.RESPONDS_TO,
                    confidence=_ADJACENT_CONFIDENCE[RelationshipType.RESPONDS_TO],
                    rationale=f"{outcome.label} is the next outcome after {treat.label}",
                ))
                break
    return rels


def _prevents(events: list[Event]) -> list[Relationship]:
    rels: list[Relationship] = []
    if not events:
        return rels
    recorded = {e.entity.name.lower() for e in events if e.category == EventCategory.COMPLICATION}
    closing = next((e for e in reversed(events) if e.marker is not None and e.marker.kind == CourseMarkerKind.DISCHARGE), events[-1])
    for event in events:
        if event.entity_type != EntityType.MEDICATION or event is closing:
            continue
        term = DEFAULT_VOCABULARY.lookup(EntityType.MEDICATION, event.entity.name)
        if term is None or not term.prophylaxis_for:
            continue
        if any(target in recorded for target in term.prophylaxis_for):
            continue
        if closing.ordinal <= event.ordinal:
            continue
        rels.append(Relationship(
            source_event_id=event.event_id, target_event_id=closing.event_id,
            relationship_type=RelationshipType.PREVENTS, confidence=0.75,
            days_apart=days_apart(event, closing),
            rationale=f"no {', '.join(term.prophylaxis_for)} recorded after {event.label} prophylaxis",
        ))
    return rels


def detect_relationships(events: list[Event], config: Optional[ExtractionConfig] = None) -> list[Relationship]:
    config = config or ExtractionConfig()
    return _triggers(events, config) + _leads_to(events, config) + _responds_to(events, config) + _prevents(events)


# ── Entry point ──────────────────────────────────────────────────────────


def build_timeline(
    clusters: list[DeduplicationCluster],
    markers: Iterable[CourseMarker] = (),
    prior_context: Optional[StructuredFacts] = None,
    config: Optional[ExtractionConfig] = None,
) -> Timeline:
    """Order new events, attach references, and detect milestones and relationships."""
    config = config or ExtractionConfig()

    events: list[Event] = []
    reference_clusters: list[DeduplicationCluster] = []
    for cluster in clusters:
        if cluster.entity_type == EntityType.DEMOGRAPHIC:
            continue
        if cluster.has_new_event:
            events.append(_event_from_cluster(cluster))
        else:
            reference_clusters.append(cluster)
    events.extend(_event_from_marker(m) for m in markers)
    events = _order(events)

    attached, prior_links, unlinked = _link_references(reference_clusters, events, prior_context, config)
    if attached:
        events = [
            e.model_copy(update={"references": e.references + attached[e.event_id]}) if e.event_id in attached else e
            for e in events
        ]

    dates = [e.timestamp for e in events if e.timestamp is not None]
    timeline = Timeline(
        events=events,
        milestones=_milestones(events),
        relationships=detect_relationships(events, config),
        prior_references=prior_links,
        unlinked_references=unlinked,
        date_range_start=min(dates) if dates else None,
        date_range_end=max(dates) if dates else None,
    )
    logger.info(
        f"Timeline: {len(events)} events, {len(timeline.milestones)} milestones, "
        f"{len(timeline.relationships)} relationships, {len(unlinked)} unlinked references"
    )
    return timeline
