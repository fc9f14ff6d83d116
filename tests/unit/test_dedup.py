"""
Unit tests for entity similarity and deduplication (Step 4).
"""
from datetime import date

import pytest

from packages.shared.errors import InvariantViolation
from packages.shared.models import (
    AnchorKind,
    AnchorSource,
    ComplicationAttributes,
    DeduplicationCluster,
    EntityType,
    ExtractedEntity,
    ExtractionConfig,
    FunctionalScoreAttributes,
    MedicationAttributes,
    ProcedureAttributes,
    ReferenceClass,
    SourceSpan,
    TemporalAnchor,
)
from apps.extractor.lib.similarity import edit_similarity, entity_similarity, jaccard
from apps.extractor.steps.step04_dedup import _check_clusters, deduplicate


def _dated(day: date, source: AnchorSource = AnchorSource.EXPLICIT_DATE) -> TemporalAnchor:
    return TemporalAnchor(kind=AnchorKind.ABSOLUTE, value=day, source=source, confidence=0.9)


def _make_entity(
    name: str,
    start: int,
    entity_type: EntityType = EntityType.COMPLICATION,
    attributes=None,
    anchor: TemporalAnchor | None = None,
    confidence: float = 0.7,
    classification: ReferenceClass = ReferenceClass.NEW_EVENT,
) -> ExtractedEntity:
    if attributes is None:
        attributes = {
            EntityType.COMPLICATION: ComplicationAttributes(),
            EntityType.PROCEDURE: ProcedureAttributes(),
            EntityType.MEDICATION: MedicationAttributes(),
        }[entity_type]
    return ExtractedEntity(
        entity_id=f"ent-{start:06d}",
        entity_type=entity_type,
        name=name,
        surface=name,
        attributes=attributes,
        anchor=anchor,
        span=SourceSpan(start=start, end=start + len(name), text=name),
        confidence=confidence,
        classification=classification,
    )


def _score(value: float, start: int, anchor: TemporalAnchor | None = None) -> ExtractedEntity:
    return _make_entity(
        "mRS", start, EntityType.FUNCTIONAL_SCORE,
        attributes=FunctionalScoreAttributes(scale="mRS", value=value, raw=format(value, "g")),
        anchor=anchor,
    )


def _med(dose: float, start: int) -> ExtractedEntity:
    return _make_entity(
        "Nimodipine", start, EntityType.MEDICATION,
        attributes=MedicationAttributes(dose=f"{dose:g}mg", dose_value=dose, dose_unit="mg"),
    )


class TestSimilarity:
    def test_token_and_edit_measures(self):
        assert jaccard("EVD placement", "EVD") == 0.5
        assert edit_similarity("Vasospasm", "vasospasm") == 1.0
        assert jaccard("", "") == 0.0

    def test_identical_mentions_score_one(self):
        a = _make_entity("vasospasm", 0)
        b = _make_entity("vasospasm", 50)
        assert entity_similarity(a, b) == 1.0

    def test_different_types_score_zero(self):
        a = _make_entity("seizure", 0)
        b = _make_entity("seizure", 50, EntityType.PROCEDURE)
        assert entity_similarity(a, b) == 0.0

    def test_score_in_unit_interval(self):
        a = _make_entity("vasospasm", 0)
        b = _make_entity("cerebral edema", 50)
        assert 0.0 <= entity_similarity(a, b) < 0.75


class TestDeduplication:
    def test_empty(self):
        assert deduplicate([]) == []

    def test_repeated_mentions_merge(self):
        clusters = deduplicate([_make_entity("vasospasm", 0), _make_entity("vasospasm", 60)])
        assert len(clusters) == 1
        assert len(clusters[0].members) == 2
        assert clusters[0].max_similarity == 1.0

    def test_different_types_never_merge(self):
        clusters = deduplicate([
            _make_entity("seizure", 0),
            _make_entity("seizure", 40, EntityType.PROCEDURE),
        ])
        assert len(clusters) == 2
        for cluster in clusters:
            assert {m.entity_type for m in cluster.members} == {cluster.entity_type}

    def test_different_score_values_stay_apart(self):
        assert len(deduplicate([_score(4, 0), _score(2, 40)])) == 2

    def test_conflicting_dates_stay_apart(self):
        clusters = deduplicate([
            _make_entity("vasospasm", 0, anchor=_dated(date(2024, 3, 12))),
            _make_entity("vasospasm", 80, anchor=_dated(date(2024, 3, 20))),
        ])
        assert len(clusters) == 2

    def test_inherited_dates_separate_recurrences(self):
        inherited = AnchorSource.INHERITED
        clusters = deduplicate([
            _make_entity("fever", 0, anchor=_dated(date(2025, 1, 10), inherited)),
            _make_entity("fever", 90, anchor=_dated(date(2025, 1, 20), inherited)),
        ])
        assert len(clusters) == 2
        assert [c.canonical.anchor.value for c in clusters] == [date(2025, 1, 10), date(2025, 1, 20)]

    def test_inherited_dates_within_a_day_merge(self):
        inherited = AnchorSource.INHERITED
        clusters = deduplicate([
            _make_entity("fever", 0, anchor=_dated(date(2025, 1, 10))),
            _make_entity("fever", 90, anchor=_dated(date(2025, 1, 11), inherited)),
        ])
        assert len(clusters) == 1

    def test_reference_with_inherited_date_joins_its_episode(self):
        clusters = deduplicate([
            _make_entity("craniotomy", 0, EntityType.PROCEDURE, anchor=_dated(date(2025, 1, 10))),
            _make_entity(
                "craniotomy", 120, EntityType.PROCEDURE,
                anchor=_dated(date(2025, 1, 15), AnchorSource.INHERITED),
                classification=ReferenceClass.REFERENCE,
            ),
        ])
        assert len(clusters) == 1
        assert clusters[0].canonical.span.start == 0

    def test_dose_ratio(self):
        assert len(deduplicate([_med(60, 0), _med(60, 50)])) == 1
        assert len(deduplicate([_med(30, 0), _med(90, 50)])) == 2

    def test_canonical_is_most_confident(self):
        low = _make_entity("vasospasm", 0, confidence=0.5)
        high = _make_entity("vasospasm", 60, confidence=0.9)
        cluster = deduplicate([low, high])[0]
        assert cluster.canonical.entity_id == high.entity_id
        assert cluster.cluster_id == f"clu-{high.entity_id}"

    def test_canonical_tie_goes_to_earliest(self):
        cluster = deduplicate([_make_entity("vasospasm", 60), _make_entity("vasospasm", 0)])[0]
        assert cluster.canonical.span.start == 0

    def test_every_entity_in_exactly_one_cluster(self):
        entities = [
            _make_entity("vasospasm", 0),
            _make_entity("seizure", 30),
            _make_entity("vasospasm", 60),
            _score(3, 90),
        ]
        clusters = deduplicate(entities)
        ids = [m.entity_id for c in clusters for m in c.members]
        assert sorted(ids) == sorted(e.entity_id for e in entities)

    def test_idempotent_on_canonicals(self):
        entities = [
            _make_entity("vasospasm", 0, confidence=0.5),
            _make_entity("seizure", 20),
            _make_entity("vasospasm", 50, confidence=0.9),
        ]
        first = deduplicate(entities)
        again = deduplicate([c.canonical for c in first])
        assert [c.cluster_id for c in again] == [c.cluster_id for c in first]
        assert all(len(c.members) == 1 for c in again)

    def test_deterministic(self):
        entities = [_make_entity("vasospasm", 60), _make_entity("seizure", 10), _make_entity("vasospasm", 0)]
        first = deduplicate(entities)
        second = deduplicate(list(reversed(entities)))
        assert [c.model_dump() for c in first] == [c.model_dump() for c in second]

    def test_threshold_is_configurable(self):
        a = _make_entity("vasospasm", 0)
        b = _make_entity("vasospasm", 60)
        assert len(deduplicate([a, b], ExtractionConfig(dedup_threshold=1.0))) == 2


class TestClusterInvariants:
    def test_mixed_type_cluster_rejected(self):
        comp = _make_entity("seizure", 0)
        proc = _make_entity("seizure", 40, EntityType.PROCEDURE)
        cluster = DeduplicationCluster(
            cluster_id="clu-x", entity_type=EntityType.COMPLICATION, members=[comp, proc], canonical=comp,
        )
        with pytest.raises(InvariantViolation):
            _check_clusters([cluster], 2)

    def test_faulty_similarity_surfaces_as_invariant_violation(self, monkeypatch):
        monkeypatch.setattr("apps.extractor.steps.step04_dedup.entity_similarity", lambda a, b, config=None: 1.0)
        with pytest.raises(InvariantViolation):
            deduplicate([_make_entity("seizure", 0), _make_entity("seizure", 40, EntityType.PROCEDURE)])
