"""
Unit tests for functional-score trajectories (Step 7).
"""
from datetime import date, timedelta

from packages.shared.models import (
    AnchorKind,
    AnchorSource,
    ChangeRate,
    EntityType,
    ExtractedEntity,
    FunctionalScoreAttributes,
    SourceSpan,
    TemporalAnchor,
    Timeline,
    Trend,
)
from apps.extractor.steps.step04_dedup import deduplicate
from apps.extractor.steps.step05_timeline import build_timeline
from apps.extractor.steps.step07_trajectories import analyze_trajectories

_DAY0 = date(2024, 5, 1)


def _score(scale: str, value: float, start: int, day: int | None = None) -> ExtractedEntity:
    anchor = None
    if day is not None:
        anchor = TemporalAnchor(
            kind=AnchorKind.ABSOLUTE, value=_DAY0 + timedelta(days=day),
            source=AnchorSource.EXPLICIT_DATE, confidence=0.9,
        )
    return ExtractedEntity(
        entity_id=f"func-{start:06d}", entity_type=EntityType.FUNCTIONAL_SCORE, name=scale,
        attributes=FunctionalScoreAttributes(scale=scale, value=value, raw=format(value, "g")),
        anchor=anchor, span=SourceSpan(start=start, end=start + len(scale) + 3, text=scale), confidence=0.9,
    )


def _trajectories(entities):
    return analyze_trajectories(build_timeline(deduplicate(entities)))


class TestTrajectories:
    def test_two_point_improvement(self):
        (traj,) = _trajectories([_score("KPS", 60, 0, 0), _score("KPS", 90, 50, 14)])
        assert traj.scale == "KPS"
        assert traj.trend == Trend.IMPROVING
        assert traj.magnitude_of_change == 30
        assert traj.rate_unit == "per_day"
        assert traj.change_rate == ChangeRate.RAPID
        assert [p.value for p in traj.points] == [60, 90]

    def test_lower_is_better_scale_declines(self):
        (traj,) = _trajectories([_score("NIHSS", 4, 0, 0), _score("NIHSS", 12, 50, 3)])
        assert traj.trend == Trend.DECLINING
        assert traj.magnitude_of_change == 8

    def test_stable(self):
        (traj,) = _trajectories([_score("mRS", 3, 0, 0), _score("mRS", 3, 50, 10)])
        assert traj.trend == Trend.STABLE
        assert traj.magnitude_of_change == 0

    def test_fluctuating_series(self):
        (traj,) = _trajectories([
            _score("GCS", 10, 0, 0),
            _score("GCS", 14, 20, 1),
            _score("GCS", 9, 40, 2),
            _score("GCS", 12, 60, 3),
        ])
        assert traj.fluctuating is True
        assert traj.trend == Trend.STABLE
        assert len(traj.points) == 4

    def test_undated_points_use_observation_rate(self):
        (traj,) = _trajectories([_score("KPS", 50, 0), _score("KPS", 80, 50)])
        assert traj.rate_unit == "per_observation"
        assert traj.change_rate == ChangeRate.UNKNOWN
        assert traj.rate_of_change == 30

    def test_one_trajectory_per_scale(self):
        trajectories = _trajectories([
            _score("mRS", 4, 0, 0),
            _score("GCS", 9, 20, 0),
            _score("mRS", 2, 40, 7),
            _score("GCS", 14, 60, 7),
        ])
        assert [t.scale for t in trajectories] == ["GCS", "mRS"]

    def test_single_score_has_no_trajectory(self):
        assert _trajectories([_score("KPS", 70, 0, 0)]) == []

    def test_empty_timeline(self):
        assert analyze_trajectories(Timeline()) == []
