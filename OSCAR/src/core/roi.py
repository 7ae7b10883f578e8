from __future__ import annotations

from typing import NamedTuple

import numpy as np

from OSCAR.config import Config
from OSCAR.src.core.types import PHASES


class ROIRect(NamedTuple):
    x: int
    y: int
    w: int
    h: int


class ROIManager:
    """Fixed per-phase regions of a capture; crops are read-only views."""

    def __init__(self, config: Config):
        self.config = config
        self.rects = {phase: ROIRect(*(int(v) for v in config.roi_for(phase))) for phase in PHASES}

    def _clamp_bounds(self, rect: ROIRect, shape: tuple[int, ...]) -> tuple[int, int, int, int]:
        h, w = shape[:2]
        x0 = int(np.clip(rect.x, 0, w))
        y0 = int(np.clip(rect.y, 0, h))
        x1 = int(np.clip(rect.x + rect.w, x0, w))
        y1 = int(np.clip(rect.y + rect.h, y0, h))
        return x0, y0, x1, y1

    def get_crop(self, img: np.ndarray, phase: str) -> np.ndarray:
        x0, y0, x1, y1 = self._clamp_bounds(self.rects[phase], img.shape)
        return img[y0:y1, x0:x1]

    def crops(self, img: np.ndarray) -> dict[str, np.ndarray]:
        return {phase: self.get_crop(img, phase) for phase in PHASES}
