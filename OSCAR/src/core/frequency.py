"""Fundamental period recovery from a traced waveform.

The primary estimate is the lag that maximises the energy-normalised
autocorrelation inside a plausible period window. When that score is too weak
the median spacing between same-type extrema is used instead.
"""

from __future__ import annotations

import logging
import math
from typing import NamedTuple, Optional, Sequence

import numpy as np

from OSCAR.config import PhaseConfig
from OSCAR.src.core.errors import DegenerateLagWindow, InconclusivePeriod, InsufficientReferenceLines

logger = logging.getLogger(__name__)


class PeriodEstimate(NamedTuple):
    lag_px: float
    period_s: Optional[float]
    freq_hz: Optional[float]
    method: str
    score: Optional[float]
    min_lag_px: int
    max_lag_px: int


def seconds_per_pixel(vertical_lines: Sequence[int], seconds_per_division: float) -> float:
    """Time scale from the median spacing of adjacent time-grid lines."""
    xs = np.asarray(sorted(vertical_lines), dtype=np.float64)
    if xs.size < 2:
        raise InsufficientReferenceLines(
            f"insufficient reference lines: {xs.size} vertical, need 2",
            {"vertical_lines": xs.astype(int).tolist()},
        )
    spacing = float(np.median(np.diff(xs)))
    if spacing <= 0:
        raise InsufficientReferenceLines("vertical reference lines have no spacing")
    return seconds_per_division / spacing


def lag_window(sec_per_px: float, period_min: float, period_max: float, n: int) -> tuple[int, int]:
    min_lag = max(1, int(math.ceil(period_min / sec_per_px)))
    max_lag = min(n - 1, int(math.floor(period_max / sec_per_px)))
    if min_lag >= max_lag:
        raise DegenerateLagWindow(
            f"degenerate lag window [{min_lag}, {max_lag}] px",
            {"min_lag_px": min_lag, "max_lag_px": max_lag, "samples": n},
        )
    return min_lag, max_lag


def autocorrelation_lag(x: np.ndarray, min_lag: int, max_lag: int) -> tuple[int, float]:
    """Best lag in [min_lag, max_lag] and its score normalised by total energy."""
    x = np.asarray(x, dtype=np.float64)
    energy = float(np.dot(x, x))
    if energy <= 0.0:
        return min_lag, 0.0
    lags = np.arange(min_lag, max_lag + 1)
    scores = np.array([np.dot(x[:-k], x[k:]) for k in lags]) / energy
    best = int(np.argmax(scores))
    return int(lags[best]), float(scores[best])


def find_extrema(x: np.ndarray, min_spacing: int) -> tuple[list[int], list[int]]:
    """Local maxima and minima from sign changes of the first difference."""
    d = np.diff(np.asarray(x, dtype=np.float64))
    maxima: list[int] = []
    minima: list[int] = []
    for i in range(1, d.size):
        if d[i - 1] > 0 and d[i] <= 0:
            if not maxima or i - maxima[-1] >= min_spacing:
                maxima.append(i)
        elif d[i - 1] < 0 and d[i] >= 0:
            if not minima or i - minima[-1] >= min_spacing:
                minima.append(i)
    return maxima, minima


def extrema_period(x: np.ndarray, min_lag: int, max_lag: int, spacing_ratio: float) -> Optional[float]:
    min_spacing = max(1, int(round(len(x) * spacing_ratio)))
    maxima, minima = find_extrema(x, min_spacing)
    spacings = np.concatenate((np.diff(maxima), np.diff(minima))) if (maxima or minima) else np.empty(0)
    spacings = spacings[(spacings >= min_lag) & (spacings <= max_lag)]
    if spacings.size == 0:
        return None
    return float(np.median(spacings))


def estimate_period(x: np.ndarray, sec_per_px: float, cfg: PhaseConfig) -> PeriodEstimate:
    """Period of a mean-removed pixel trace restricted to the steady window."""
    x = np.asarray(x, dtype=np.float64)
    min_lag, max_lag = lag_window(sec_per_px, cfg.period_sec_min, cfg.period_sec_max, x.size)

    lag, score = autocorrelation_lag(x, min_lag, max_lag)
    method = "autocorrelation"
    best: Optional[float] = float(lag)
    if score < cfg.autocorr_min_score:
        logger.debug("autocorrelation inconclusive (score=%.3f); trying extrema spacing", score)
        best = extrema_period(x, min_lag, max_lag, cfg.extrema_min_spacing_ratio)
        method = "extrema"
        if best is None:
            raise InconclusivePeriod(
                "period estimation inconclusive",
                {"autocorr_score": score, "min_lag_px": min_lag, "max_lag_px": max_lag},
            )

    period_s = best * sec_per_px
    freq = 1.0 / period_s if period_s > 0 else float("nan")
    return PeriodEstimate(
        lag_px=best,
        period_s=period_s if math.isfinite(period_s) else None,
        freq_hz=freq if math.isfinite(freq) else None,
        method=method,
        score=score,
        min_lag_px=min_lag,
        max_lag_px=max_lag,
    )
