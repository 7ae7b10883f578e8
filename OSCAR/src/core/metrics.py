"""RMS, power and peak-derived amplitude estimators."""

from __future__ import annotations

import math
from typing import NamedTuple

import numpy as np

from OSCAR.src.core.conditioning import resample

PF_EPSILON = 1e-12


class PowerMetrics(NamedTuple):
    """Paired voltage/current metrics in base SI units (V, A, W, VA, var)."""

    vrms: float
    irms: float
    p: float
    s: float
    q: float
    pf: float
    samples: int


def rms(seq) -> float:
    arr = np.asarray(seq, dtype=np.float64)
    if arr.size == 0:
        return float("nan")
    return float(np.sqrt(np.mean(arr * arr)))


def sample_rms(values) -> float:
    """RMS of |value| over the finite samples; no sinusoid assumption."""
    arr = np.abs(np.asarray(values, dtype=np.float64))
    return rms(arr[np.isfinite(arr)])


def rms_from_peak(peak: float) -> float:
    # Exact only for a clean sinusoid.
    return abs(peak) / math.sqrt(2.0)


def power_factor(p: float, s: float) -> float:
    if s > PF_EPSILON:
        return float(min(1.0, max(0.0, p / s)))
    return 0.0


def align_pair(v, i) -> tuple[np.ndarray, np.ndarray]:
    """Resample both signals onto the shorter of the two lengths."""
    v = np.asarray(v, dtype=np.float64)
    i = np.asarray(i, dtype=np.float64)
    n = min(v.size, i.size)
    return resample(v, n), resample(i, n)


def power_metrics(v, i) -> PowerMetrics:
    v_s, i_s = align_pair(v, i)
    vrms = rms(v_s)
    irms = rms(i_s)
    p = float(np.mean(v_s * i_s)) if v_s.size else 0.0
    s = vrms * irms
    q = math.sqrt(max(s * s - p * p, 0.0)) if math.isfinite(s) else float("nan")
    return PowerMetrics(vrms, irms, p, s, q, power_factor(p, s), int(v_s.size))


def peak_row(rows, baseline: float) -> float:
    """Row farthest from the baseline; the upper excursion wins ties."""
    arr = np.asarray(rows, dtype=np.float64)
    arr = arr[np.isfinite(arr)]
    if arr.size == 0:
        return float("nan")
    ymin = float(np.min(arr))
    ymax = float(np.max(arr))
    return ymin if abs(ymin - baseline) >= abs(ymax - baseline) else ymax
