"""
Step 7 — Functional-score trajectories.
Group functional-score events by scale, in timeline order. Trend is computed
on the 0-100 direction-normalized value: first vs last for two points,
least-squares slope over three or more.
"""
from __future__ import annotations

import logging
from collections import defaultdict
from typing import Optional

from packages.shared.models import (
    ChangeRate,
    EntityType,
    Event,
    FunctionalTrajectory,
    Timeline,
    TrajectoryPoint,
    Trend,
)
from apps.extractor.lib.vocabulary import SCALES

logger = logging.getLogger(__name__)

_STABLE_POINTS = 10.0
_RAPID_PER_WEEK = 2.0
_SLOW_PER_WEEK = 0.5


def _slope(xs: list[float], ys: list[float]) -> float:
    n = len(xs)
    mean_x = sum(xs) / n
    mean_y = sum(ys) / n
    den = sum((x - mean_x) ** 2 for x in xs)
    if den == 0:
        return 0.0
    return sum((x - mean_x) * (y - mean_y) for x, y in zip(xs, ys)) / den


def _day_offsets(events: list[Event]) -> Optional[list[int]]:
    """Day offset of every point from the first, when all are computable."""
    first = events[0].anchor
    offsets = []
    for event in events:
        days = first.days_between(event.anchor)
        if days is None:
            return None
        offsets.append(days)
    return offsets


def _fluctuating(values: list[float]) -> bool:
    signs = []
    for a, b in zip(values, values[1:]):
        if b != a:
            signs.append(b > a)
    return any(s != t for s, t in zip(signs, signs[1:]))


def _change_rate(per_day: float) -> ChangeRate:
    per_week = abs(per_day) * 7
    if per_week > _RAPID_PER_WEEK:
        return ChangeRate.RAPID
    if per_week >= _SLOW_PER_WEEK:
        return ChangeRate.GRADUAL
    return ChangeRate.SLOW


def _trajectory(scale: str, events: list[Event]) -> FunctionalTrajectory:
    spec = SCALES[scale]
    raw = [e.entity.attributes.value for e in events]
    normalized = [spec.normalize(v) for v in raw]
    offsets = _day_offsets(events)

    if len(events) >= 3:
        xs = [float(d) for d in offsets] if offsets and offsets[-1] > 0 else [float(i) for i in range(len(events))]
        normalized_change = _slope(xs, normalized) * (xs[-1] - xs[0])
    else:
        normalized_change = normalized[-1] - normalized[0]

    if abs(normalized_change) < _STABLE_POINTS:
        trend = Trend.STABLE
    else:
        trend = Trend.IMPROVING if normalized_change > 0 else Trend.DECLINING

    raw_change = raw[-1] - raw[0]
    if offsets and offsets[-1] > 0:
        rate: float = raw_change / offsets[-1]
        unit = "per_day"
        change_rate = _change_rate(rate)
    else:
        rate = raw_change / (len(events) - 1)
        unit = "per_observation"
        change_rate = ChangeRate.UNKNOWN

    return FunctionalTrajectory(
        scale=scale,
        points=[
            TrajectoryPoint(
                event_id=e.event_id,
                value=v,
                normalized=round(n, 2),
                anchor=e.anchor,
                ordinal=e.ordinal,
            )
            for e, v, n in zip(events, raw, normalized)
        ],
        trend=trend,
        magnitude_of_change=abs(raw_change),
        normalized_change=round(normalized_change, 2),
        rate_of_change=round(rate, 4),
        rate_unit=unit,
        change_rate=change_rate,
        fluctuating=_fluctuating(normalized),
    )


def analyze_trajectories(timeline: Timeline) -> list[FunctionalTrajectory]:
    """One trajectory per scale with at least two scores; empty otherwise."""
    by_scale: dict[str, list[Event]] = defaultdict(list)
    for event in timeline.events:
        if event.entity_type == EntityType.FUNCTIONAL_SCORE:
            by_scale[event.entity.attributes.scale].append(event)

    trajectories = []
    for scale in sorted(by_scale):
        events = by_scale[scale]
        if len(events) < 2 or scale not in SCALES:
            continue
        trajectories.append(_trajectory(scale, events))

    logger.info(f"Trajectories: {len(trajectories)}")
    return trajectories
