"""Per-column extraction of the coloured waveform trace."""

from __future__ import annotations

import cv2
import numpy as np

from OSCAR.src.core.types import TracePolicy


def waveform_mask(roi: np.ndarray, sat_threshold: int, val_threshold: int) -> np.ndarray:
    """True where a pixel is saturated and bright enough to belong to the trace."""
    if roi.ndim == 2:
        return np.zeros(roi.shape, dtype=bool)
    hsv = cv2.cvtColor(roi, cv2.COLOR_BGR2HSV)
    _h, s, v = cv2.split(hsv)
    return (s > sat_threshold) & (v > val_threshold)


def trace_columns(mask: np.ndarray, top: int, bottom: int, policy: str) -> np.ndarray:
    """Representative row per column within [top, bottom]; NaN where nothing qualifies."""
    h, w = mask.shape
    top = max(0, int(top))
    bottom = min(h - 1, int(bottom))
    rows = np.full(w, np.nan, dtype=np.float64)
    if bottom < top or w == 0:
        return rows

    band = mask[top : bottom + 1]
    has = band.any(axis=0)
    first = np.argmax(band, axis=0)
    if policy == TracePolicy.FIRST_MATCH:
        rows[has] = top + first[has]
    elif policy == TracePolicy.CENTER:
        last = band.shape[0] - 1 - np.argmax(band[::-1], axis=0)
        rows[has] = top + (first[has] + last[has]) / 2.0
    else:
        raise ValueError(f"Unknown trace policy '{policy}'")
    return rows


def smooth_valid(rows: np.ndarray, radius: int) -> np.ndarray:
    """Centered mean over non-NaN neighbours; all-NaN neighbourhoods stay NaN."""
    n = rows.size
    if n == 0 or radius <= 0:
        return rows.copy()
    valid = np.isfinite(rows)
    vsum = np.concatenate(([0.0], np.cumsum(np.where(valid, rows, 0.0))))
    vcnt = np.concatenate(([0], np.cumsum(valid.astype(np.int64))))
    idx = np.arange(n)
    lo = np.maximum(0, idx - radius)
    hi = np.minimum(n - 1, idx + radius)
    cnt = vcnt[hi + 1] - vcnt[lo]
    out = np.full(n, np.nan, dtype=np.float64)
    ok = cnt > 0
    out[ok] = (vsum[hi + 1] - vsum[lo])[ok] / cnt[ok]
    return out

