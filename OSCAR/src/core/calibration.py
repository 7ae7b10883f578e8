"""Steady-state windowing and tick-based pixel -> physical mapping."""

from __future__ import annotations

import math
from typing import Optional, Sequence

import numpy as np

from OSCAR.src.core.types import Side


def window_start(width: int, fraction: float) -> int:
    """First column of the trailing steady-state window, clamped to [0, width - 2]."""
    start = int(math.floor(width * (1.0 - fraction) + 0.5))
    return max(0, min(max(0, width - 2), start))


def steady_window(seq: np.ndarray, fraction: float) -> tuple[np.ndarray, int]:
    start = window_start(len(seq), fraction)
    return seq[start:], start


class PixelToPhysicalMapper:
    """Maps pixel rows to signed physical values using dashed-tick segments.

    Every tick crossed outward from the baseline adds one ``per_segment_value``;
    rows above the baseline map positive, rows below negative. A side with no
    ticks falls back to ``fallback_span_px`` pixels per segment and is reported
    in :attr:`degraded_sides`.
    """

    def __init__(
        self,
        baseline: float,
        ticks: Sequence[float],
        per_segment_value: float,
        fallback_span_px: float = 300.0,
        baseline_tolerance_px: float = 0.0,
    ):
        self.baseline = float(baseline)
        self.per_segment_value = float(per_segment_value)
        self.fallback_span_px = float(fallback_span_px)
        self._distances = {Side.ABOVE: [], Side.BELOW: []}
        for t in sorted(set(float(t) for t in ticks)):
            d = self.baseline - t
            if abs(d) <= baseline_tolerance_px:
                continue
            if d > 0:
                self._distances[Side.ABOVE].append(d)
            else:
                self._distances[Side.BELOW].append(-d)
        for side in self._distances:
            self._distances[side].sort()

    @property
    def degraded_sides(self) -> tuple[str, ...]:
        return tuple(side for side in (Side.ABOVE, Side.BELOW) if not self._distances[side])

    def ticks(self, side: str) -> list[float]:
        sign = -1.0 if side == Side.ABOVE else 1.0
        return [self.baseline + sign * d for d in self._distances[side]]

    def side_of(self, y: float) -> Optional[str]:
        if y < self.baseline:
            return Side.ABOVE
        if y > self.baseline:
            return Side.BELOW
        return None

    def magnitude(self, distance: float, side: str) -> float:
        """Unsigned value for a pixel distance from the baseline on ``side``."""
        dists = self._distances[side]
        if not dists:
            return distance * self.per_segment_value / self.fallback_span_px

        prev = 0.0
        for section, d in enumerate(dists):
            if distance <= d:
                return (section + (distance - prev) / (d - prev)) * self.per_segment_value
            prev = d
        span = dists[-1] - (dists[-2] if len(dists) > 1 else 0.0)
        return (len(dists) + (distance - prev) / span) * self.per_segment_value

    def to_physical(self, y: float) -> float:
        if y is None or not math.isfinite(y):
            return float("nan")
        side = self.side_of(y)
        if side is None:
            return 0.0
        value = self.magnitude(abs(y - self.baseline), side)
        return value if side == Side.ABOVE else -value

    def map_rows(self, rows: np.ndarray) -> np.ndarray:
        return np.array([self.to_physical(y) for y in np.asarray(rows, dtype=np.float64)], dtype=np.float64)
