"""Solid reference-line and dashed calibration-tick detection."""

from __future__ import annotations

import logging
from typing import Optional

import cv2
import numpy as np

from OSCAR.config import PhaseConfig
from OSCAR.src.core.errors import InsufficientReferenceLines
from OSCAR.src.core.types import ReferenceLines

logger = logging.getLogger(__name__)

MIN_HORIZONTAL_LINES = 3
MIN_VERTICAL_LINES = 2


def to_gray(roi: np.ndarray) -> np.ndarray:
    if roi.ndim == 2:
        return roi
    return cv2.cvtColor(roi, cv2.COLOR_BGR2GRAY)


def binarize_dark(roi: np.ndarray) -> np.ndarray:
    """Global Otsu threshold, inverted so dark strokes are True."""
    gray = to_gray(roi)
    _, bw = cv2.threshold(gray, 0, 255, cv2.THRESH_BINARY_INV + cv2.THRESH_OTSU)
    return bw > 0


def longest_runs(mask: np.ndarray) -> np.ndarray:
    """Longest run of consecutive True values in every row of a 2D mask."""
    h, w = mask.shape
    out = np.zeros(h, dtype=np.int64)
    if w == 0:
        return out
    padded = np.zeros((h, w + 2), dtype=np.int8)
    padded[:, 1:-1] = mask
    edges = np.diff(padded, axis=1)
    for y in np.flatnonzero(mask.any(axis=1)):
        starts = np.flatnonzero(edges[y] == 1)
        ends = np.flatnonzero(edges[y] == -1)
        out[y] = int(np.max(ends - starts))
    return out


def merge_runs(indices: np.ndarray, gap: int) -> list[int]:
    """Collapse candidates separated by <= gap into the midpoint of each run."""
    merged: list[int] = []
    start: Optional[int] = None
    end: Optional[int] = None
    for idx in indices.tolist():
        if end is None or idx - end <= gap:
            if start is None:
                start = idx
            end = idx
        else:
            merged.append((start + end) // 2)
            start = end = idx
    if start is not None:
        merged.append((start + end) // 2)
    return merged


def detect_horizontal_lines(binary: np.ndarray, run_ratio: float, merge_px: int) -> list[int]:
    h, w = binary.shape
    if w == 0:
        return []
    runs = longest_runs(binary)
    candidates = np.flatnonzero(runs >= w * run_ratio)
    return merge_runs(candidates, merge_px)


def detect_vertical_lines(
    binary: np.ndarray, run_ratio: float, merge_px: int, edge_margin_px: int = 5
) -> list[int]:
    h, w = binary.shape
    lines = detect_horizontal_lines(binary.T, run_ratio, merge_px)
    # Lines hugging the border are the display frame, not the time grid.
    return [x for x in lines if edge_margin_px <= x < w - edge_margin_px]


def horizontal_reference_lines(roi: np.ndarray, cfg: PhaseConfig) -> ReferenceLines:
    lines = detect_horizontal_lines(binarize_dark(roi), cfg.hline_run_ratio, cfg.merge_tolerance_px)
    if len(lines) < MIN_HORIZONTAL_LINES:
        raise InsufficientReferenceLines(
            f"insufficient reference lines: found {len(lines)} horizontal, need {MIN_HORIZONTAL_LINES}",
            {"lines": lines},
        )
    return ReferenceLines(tuple(lines), "horizontal")


def vertical_reference_lines(roi: np.ndarray, cfg: PhaseConfig) -> ReferenceLines:
    lines = detect_vertical_lines(
        binarize_dark(roi), cfg.vline_run_ratio, cfg.merge_tolerance_px, cfg.vline_edge_margin_px
    )
    if len(lines) < MIN_VERTICAL_LINES:
        raise InsufficientReferenceLines(
            f"insufficient reference lines: found {len(lines)} vertical, need {MIN_VERTICAL_LINES}",
            {"vertical_lines": lines},
        )
    return ReferenceLines(tuple(lines), "vertical")


def band_moving_average(values: np.ndarray, radius: int) -> np.ndarray:
    """Centered mean that shrinks at the ends instead of padding."""
    n = values.size
    if n == 0 or radius <= 0:
        return values.astype(np.float64)
    csum = np.concatenate(([0.0], np.cumsum(values, dtype=np.float64)))
    idx = np.arange(n)
    lo = np.maximum(0, idx - radius)
    hi = np.minimum(n - 1, idx + radius)
    return (csum[hi + 1] - csum[lo]) / (hi - lo + 1)


def _plateau_peaks(values: np.ndarray, threshold: float) -> list[int]:
    # Interior local maxima; a flat top counts once, at its midpoint.
    peaks: list[int] = []
    n = values.size
    i = 1
    while i < n - 1:
        if values[i] > values[i - 1]:
            j = i
            while j + 1 < n - 1 and values[j + 1] == values[i]:
                j += 1
            if values[j + 1] < values[i] and values[i] > threshold:
                peaks.append((i + j) // 2)
            i = j + 1
        else:
            i += 1
    return peaks


def detect_ticks(
    roi: np.ndarray,
    top: int,
    bottom: int,
    cfg: PhaseConfig,
    exclude: Optional[np.ndarray] = None,
) -> list[int]:
    """Rows of the faint dashed scale marks between the outer reference lines.

    ``exclude`` masks pixels (the coloured trace) that must not count as dashes.
    """
    gray = to_gray(roi)
    h = gray.shape[0]
    top = max(0, int(top))
    bottom = min(h - 1, int(bottom))
    if bottom - top < 2:
        return []

    block = int(cfg.dash_block_size) | 1
    bw = cv2.adaptiveThreshold(
        gray, 255, cv2.ADAPTIVE_THRESH_MEAN_C, cv2.THRESH_BINARY_INV, block, cfg.dash_offset
    )
    fg = bw[top : bottom + 1] > 0
    if exclude is not None:
        fg &= ~exclude[top : bottom + 1]

    counts = fg.sum(axis=1).astype(np.int64)
    smoothed = band_moving_average(counts, cfg.dash_smooth_radius)
    threshold = float(np.mean(smoothed)) * cfg.dash_peak_gain

    merged: list[int] = []
    for rel in _plateau_peaks(smoothed, threshold):
        y = top + rel
        if not merged or y - merged[-1] > cfg.tick_merge_tolerance_px:
            merged.append(y)
        else:
            merged[-1] = (merged[-1] + y) // 2
    logger.debug("ticks in band [%d, %d]: %s", top, bottom, merged)
    return merged
