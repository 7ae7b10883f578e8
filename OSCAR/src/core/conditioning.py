"""Compaction, smoothing and resampling of traced or calibrated sequences."""

from __future__ import annotations

import numpy as np

from OSCAR.src.core.errors import InsufficientValidSamples


def compact(seq) -> np.ndarray:
    arr = np.asarray(seq, dtype=np.float64)
    return arr[~np.isnan(arr)]


def smooth(seq, radius: int) -> np.ndarray:
    arr = np.asarray(seq, dtype=np.float64)
    n = arr.size
    if n == 0 or radius <= 0:
        return arr.copy()
    csum = np.concatenate(([0.0], np.cumsum(arr)))
    idx = np.arange(n)
    lo = np.maximum(0, idx - radius)
    hi = np.minimum(n - 1, idx + radius)
    return (csum[hi + 1] - csum[lo]) / (hi - lo + 1)


def resample(seq, n: int) -> np.ndarray:
    """Linear resample onto ``n`` evenly spaced indices spanning the input."""
    arr = np.asarray(seq, dtype=np.float64)
    if n == arr.size:
        return arr
    if arr.size == 0:
        raise ValueError("cannot resample an empty sequence")
    if n <= 0:
        return np.empty(0, dtype=np.float64)
    xs = np.linspace(0.0, arr.size - 1.0, int(n))
    return np.interp(xs, np.arange(arr.size, dtype=np.float64), arr)


def require_samples(seq: np.ndarray, minimum: int, label: str = "signal") -> np.ndarray:
    if seq.size < minimum:
        raise InsufficientValidSamples(
            f"insufficient valid samples ({label}): {seq.size} < {minimum}",
            {f"{label}_samples": int(seq.size)},
        )
    return seq
