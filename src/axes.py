"""
Axis domains and ticks for the Habit Index / Trust NPS chart.

X (Habit Index): lower bound follows the data, upper bound is pinned at 100.
Y (Trust NPS): always 0-100 in steps of 20.
"""

import math
from dataclasses import dataclass
from typing import Optional, Sequence, Tuple

import numpy as np

try:
    from .projection import EntityPointPair
except ImportError:
    from projection import EntityPointPair  # type: ignore

X_UPPER_BOUND = 100
X_TICK_INTERVALS = 5
Y_DOMAIN: Tuple[int, int] = (0, 100)
Y_TICKS: Tuple[int, ...] = (0, 20, 40, 60, 80, 100)


@dataclass(frozen=True)
class AxisSpec:
    domain: Tuple[float, float]
    ticks: Tuple[float, ...]


@dataclass(frozen=True)
class ChartAxes:
    x: AxisSpec
    y: AxisSpec


def x_lower_bound(pairs: Sequence[EntityPointPair]) -> Optional[int]:
    """
    Floor of the smallest Habit Index across both scans.

    NaN values are ignored. Returns None when there is no finite value.
    """
    xs = np.array(
        [p.first_scan.x for p in pairs] + [p.latest_scan.x for p in pairs],
        dtype=float,
    )
    xs = xs[np.isfinite(xs)]
    if xs.size == 0:
        return None
    return int(math.floor(xs.min()))


def x_tick_step(lower: int, upper: int = X_UPPER_BOUND) -> int:
    """Step between x ticks. Never below 1, so tick generation always ends."""
    return max(1, math.ceil((upper - lower) / X_TICK_INTERVALS))


def build_x_ticks(lower: int, upper: int = X_UPPER_BOUND) -> Tuple[int, ...]:
    """
    Ticks from `lower` by x_tick_step up to `upper`; `upper` is appended when
    the stepping does not land on it exactly.
    """
    step = x_tick_step(lower, upper)
    ticks = []
    value = lower
    while value <= upper:
        ticks.append(value)
        value += step
    if not ticks or ticks[-1] != upper:
        ticks.append(upper)
    return tuple(ticks)


def compute_x_axis(pairs: Sequence[EntityPointPair]) -> AxisSpec:
    lower = x_lower_bound(pairs)
    if lower is None:
        # Empty or all-NaN data: collapse onto the fixed upper bound
        lower = X_UPPER_BOUND
    return AxisSpec(domain=(lower, X_UPPER_BOUND), ticks=build_x_ticks(lower))


def compute_y_axis(pairs: Sequence[EntityPointPair] = ()) -> AxisSpec:
    return AxisSpec(domain=Y_DOMAIN, ticks=Y_TICKS)


def compute_axes(pairs: Sequence[EntityPointPair]) -> ChartAxes:
    """Recompute both axes from the full current point set."""
    return ChartAxes(x=compute_x_axis(pairs), y=compute_y_axis(pairs))
