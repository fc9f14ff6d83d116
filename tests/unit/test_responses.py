"""
Unit tests for treatment-response tracking (Step 6).
"""
from datetime import date, timedelta

from packages.shared.models import (
    AnchorKind,
    AnchorSource,
    ComplicationAttributes,
    CourseMarker,
    CourseMarkerKind,
    EntityType,
    ExtractedEntity,
    FunctionalScoreAttributes,
    MedicationAttributes,
    ResponseClass,
    SourceSpan,
    TemporalAnchor,
    Timeline,
)
from apps.extractor.steps.step04_dedup import deduplicate
from apps.extractor.steps.step05_timeline import build_timeline
from apps.extractor.steps.step06_responses import track_responses

_DAY0 = date(2024, 3, 1)


def _day(n: int | None) -> TemporalAnchor | None:
    if n is None:
        return None
    return TemporalAnchor(
        kind=AnchorKind.ABSOLUTE, value=_DAY0 + timedelta(days=n), source=AnchorSource.EXPLICIT_DATE, confidence=0.9,
    )


def _complication(name: str, start: int, day: int | None) -> ExtractedEntity:
    return ExtractedEntity(
        entity_id=f"comp-{start:06d}", entity_type=EntityType.COMPLICATION, name=name,
        attributes=ComplicationAttributes(), anchor=_day(day),
        span=SourceSpan(start=start, end=start + len(name), text=name), confidence=0.8,
    )


def _medication(name: str, start: int, day: int | None) -> ExtractedEntity:
    return ExtractedEntity(
        entity_id=f"med-{start:06d}", entity_type=EntityType.MEDICATION, name=name,
        attributes=MedicationAttributes(), anchor=_day(day),
        span=SourceSpan(start=start, end=start + len(name), text=name), confidence=0.8,
    )


def _score(scale: str, value: float, start: int, day: int | None) -> ExtractedEntity:
    return ExtractedEntity(
        entity_id=f"func-{start:06d}", entity_type=EntityType.FUNCTIONAL_SCORE, name=scale,
        attributes=FunctionalScoreAttributes(scale=scale, value=value, raw=format(value, "g")),
        anchor=_day(day), span=SourceSpan(start=start, end=start + len(scale) + 2, text=scale), confidence=0.9,
    )


def _marker(kind: CourseMarkerKind, start: int, day: int | None) -> CourseMarker:
    return CourseMarker(
        marker_id=f"mrk-{kind.value}-{start:06d}", kind=kind,
        anchor=_day(day) or TemporalAnchor.unresolved(),
        span=SourceSpan(start=start, end=start + len(kind.value), text=kind.value),
    )


def _responses(entities, markers=()):
    return track_responses(build_timeline(deduplicate(entities), markers))


class TestTrackResponses:
    def test_improvement_after_indicated_treatment(self):
        responses = _responses(
            [_complication("vasospasm", 0, 2), _medication("Nimodipine", 30, 2)],
            [_marker(CourseMarkerKind.IMPROVED, 60, 9)],
        )
        assert len(responses) == 1
        response = responses[0]
        assert response.treatment.label == "Nimodipine"
        assert response.target.label == "vasospasm"
        assert response.classification == ResponseClass.IMPROVED
        assert response.effectiveness == 0.8
        assert response.days_to_response == 7
        assert response.confidence == 0.8

    def test_functional_score_improvement(self):
        responses = _responses([
            _score("mRS", 4, 0, 1),
            _medication("Nimodipine", 20, 2),
            _score("mRS", 2, 40, 9),
        ])
        assert len(responses) == 1
        assert responses[0].classification == ResponseClass.IMPROVED
        assert responses[0].effectiveness == 0.667
        assert responses[0].days_to_response == 7

    def test_functional_score_decline(self):
        responses = _responses([
            _score("GCS", 14, 0, 0),
            _medication("Mannitol", 20, 1),
            _score("GCS", 8, 40, 2),
        ])
        assert responses[0].classification == ResponseClass.WORSENED
        assert responses[0].effectiveness == -1.0

    def test_small_score_change_is_unchanged(self):
        responses = _responses([
            _score("KPS", 70, 0, 0),
            _medication("Dexamethasone", 20, 1),
            _score("KPS", 75, 40, 5),
        ])
        assert responses[0].classification == ResponseClass.UNCHANGED

    def test_recurrence_of_target_is_worsened(self):
        responses = _responses([
            _complication("vasospasm", 0, 1),
            _medication("Nimodipine", 30, 1),
            _complication("vasospasm", 60, 5),
        ])
        assert len(responses) == 1
        assert responses[0].classification == ResponseClass.WORSENED
        assert responses[0].outcome.ordinal == 2

    def test_outcome_outside_window_ignored(self):
        responses = _responses(
            [_medication("Nimodipine", 0, 0)],
            [_marker(CourseMarkerKind.IMPROVED, 60, 30)],
        )
        assert responses == []

    def test_stops_at_next_dose_of_same_treatment(self):
        responses = _responses(
            [_medication("Nimodipine", 0, 1), _medication("Nimodipine", 30, 3)],
            [_marker(CourseMarkerKind.IMPROVED, 60, 5)],
        )
        assert len(responses) == 1
        assert responses[0].treatment.entity.entity_id == "med-000030"
        assert responses[0].days_to_response == 2

    def test_undated_outcome_lowers_confidence(self):
        responses = _responses(
            [_medication("Nimodipine", 0, None)],
            [_marker(CourseMarkerKind.IMPROVED, 60, None)],
        )
        assert len(responses) == 1
        assert responses[0].days_to_response is None
        assert responses[0].confidence == 0.49

    def test_treatment_without_outcome(self):
        assert _responses([_medication("Nimodipine", 0, 1)]) == []

    def test_empty_timeline(self):
        assert track_responses(Timeline()) == []
