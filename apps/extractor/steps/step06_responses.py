"""
Step 6 — Treatment-response tracking.

Each treatment event (medication or therapeutic procedure) is paired with
the nearest later outcome inside the response window and before the next
treatment of the same name. Outcomes are, in order of appearance:
  - a status marker: improved / resolved -> improved, worsened, unchanged
  - a functional score, compared with the last same-scale score before the
    treatment (normalized change under 10 points -> unchanged)
  - a recurrence of the complication the treatment targets -> worsened
Treatments with no outcome produce no response.
"""
from __future__ import annotations

import logging
from typing import Optional

from packages.shared.models import (
    CourseMarkerKind,
    EntityType,
    Event,
    EventCategory,
    ExtractionConfig,
    ResponseClass,
    Timeline,
    TreatmentResponse,
)
from apps.extractor.lib.vocabulary import SCALES
from apps.extractor.steps.step05_timeline import days_apart, indicated_for, is_treatment

logger = logging.getLogger(__name__)

_STABLE_POINTS = 10.0

_MARKER_OUTCOMES = {
    CourseMarkerKind.RESOLVED: (ResponseClass.IMPROVED, 1.0),
    CourseMarkerKind.IMPROVED: (ResponseClass.IMPROVED, 0.8),
    CourseMarkerKind.UNCHANGED: (ResponseClass.UNCHANGED, 0.0),
    CourseMarkerKind.WORSENED: (ResponseClass.WORSENED, -0.8),
}


def _target(treatment: Event, earlier: list[Event], config: ExtractionConfig) -> Optional[Event]:
    """Nearest complication at or before the treatment, preferring its indication."""
    candidates = []
    for event in earlier:
        if event.category != EventCategory.COMPLICATION:
            continue
        days = days_apart(event, treatment)
        if days is not None and not 0 <= days <= config.trigger_window_days:
            continue
        candidates.append(event)
    if not candidates:
        return None
    return max(candidates, key=lambda e: (indicated_for(treatment, e), e.ordinal))


def _baseline(scale: str, earlier: list[Event]) -> Optional[Event]:
    for event in reversed(earlier):
        if event.entity_type == EntityType.FUNCTIONAL_SCORE and event.entity.attributes.scale == scale:
            return event
    return None


def _score_outcome(outcome: Event, earlier: list[Event]) -> Optional[tuple[ResponseClass, float, str]]:
    attrs = outcome.entity.attributes
    spec = SCALES.get(attrs.scale)
    base = _baseline(attrs.scale, earlier)
    if spec is None or base is None:
        return None
    before = spec.normalize(base.entity.attributes.value)
    after = spec.normalize(attrs.value)
    delta = after - before
    if abs(delta) < _STABLE_POINTS:
        cls = ResponseClass.UNCHANGED
    else:
        cls = ResponseClass.IMPROVED if delta > 0 else ResponseClass.WORSENED
    effectiveness = max(-1.0, min(1.0, delta / 50.0))
    return cls, effectiveness, f"{attrs.scale} {base.entity.attributes.raw} -> {attrs.raw}"


def _classify(
    outcome: Event,
    target: Optional[Event],
    earlier: list[Event],
) -> Optional[tuple[ResponseClass, float, float, str]]:
    """(class, effectiveness, base confidence, rationale) or None if not an outcome."""
    if outcome.marker is not None:
        if outcome.marker.kind not in _MARKER_OUTCOMES:
            return None
        cls, effectiveness = _MARKER_OUTCOMES[outcome.marker.kind]
        return cls, effectiveness, 0.7, f"course marker '{outcome.marker.span.text}'"

    if outcome.entity_type == EntityType.FUNCTIONAL_SCORE:
        scored = _score_outcome(outcome, earlier)
        if scored is None:
            return None
        cls, effectiveness, rationale = scored
        return cls, effectiveness, 0.75, rationale

    if (
        target is not None
        and outcome.category == EventCategory.COMPLICATION
        and outcome.entity.name == target.entity.name
    ):
        return ResponseClass.WORSENED, -0.6, 0.6, f"{target.label} recurred"
    return None


def track_responses(timeline: Timeline, config: Optional[ExtractionConfig] = None) -> list[TreatmentResponse]:
    """Pair treatments with their outcomes; empty when there is nothing to pair."""
    config = config or ExtractionConfig()
    events = timeline.events
    responses: list[TreatmentResponse] = []
    if len(events) < 2:
        return responses

    for idx, treatment in enumerate(events):
        if not is_treatment(treatment):
            continue
        earlier = events[:idx]
        target = _target(treatment, earlier, config)

        for outcome in events[idx + 1:]:
            if is_treatment(outcome) and outcome.entity.name == treatment.entity.name:
                break
            days = days_apart(treatment, outcome)
            if days is not None and days > config.response_window_days:
                break
            if days is not None and days < 0:
                continue
            classified = _classify(outcome, target, earlier)
            if classified is None:
                continue

            cls, effectiveness, confidence, rationale = classified
            if days is None:
                confidence *= 0.7
            if target is not None and indicated_for(treatment, target):
                confidence += 0.1
            responses.append(TreatmentResponse(
                treatment=treatment,
                outcome=outcome,
                target=target,
                classification=cls,
                effectiveness=round(effectiveness, 3),
                days_to_response=days,
                confidence=round(min(confidence, 1.0), 3),
                rationale=rationale,
            ))
            break

    logger.info(f"Treatment responses: {len(responses)}")
    return responses
