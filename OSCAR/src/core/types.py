"""Shared core data structures used across analysis and orchestration."""

from __future__ import annotations

import math
from dataclasses import dataclass, field
from typing import Any, NamedTuple, Optional

import numpy as np

PHASES = ("A", "B", "C")


class Side:
    """Which side of the baseline a pixel row lies on."""

    ABOVE = "above"
    BELOW = "below"


class TracePolicy:
    CENTER = "center"
    FIRST_MATCH = "first_match"


class ReferenceLines(NamedTuple):
    """Solid reference lines along one axis, strictly ascending."""

    positions: tuple[int, ...]
    axis: str  # "horizontal" or "vertical"

    @property
    def top(self) -> int:
        return self.positions[0]

    @property
    def baseline(self) -> int:
        return self.positions[len(self.positions) // 2]

    @property
    def bottom(self) -> int:
        return self.positions[-1]


@dataclass
class ChannelDiagnostics:
    """What each stage found for one ROI; never feeds back into computation."""

    quantity: str
    lines: tuple[int, ...] = ()
    ticks: tuple[int, ...] = ()
    vertical_lines: tuple[int, ...] = ()
    window_start: Optional[int] = None
    window_columns: Optional[int] = None
    valid_samples: Optional[int] = None
    degraded_sides: tuple[str, ...] = ()
    trace: Optional[np.ndarray] = field(default=None, repr=False)
    # window samples in display units (kV / A)
    calibrated: Optional[np.ndarray] = field(default=None, repr=False)

    def to_dict(self) -> dict[str, Any]:
        out: dict[str, Any] = {
            "lines": list(self.lines),
            "ticks": list(self.ticks),
        }
        if self.vertical_lines:
            out["vertical_lines"] = list(self.vertical_lines)
        if self.window_start is not None:
            out["window_start"] = self.window_start
            out["window_columns"] = self.window_columns
        if self.valid_samples is not None:
            out["valid_samples"] = self.valid_samples
        if self.degraded_sides:
            out["degraded_sides"] = list(self.degraded_sides)
        return out


def _finite_or_none(value: Optional[float]) -> Optional[float]:
    if value is None:
        return None
    value = float(value)
    return value if math.isfinite(value) else None


@dataclass
class PhaseResult:
    """Per-phase measurement, or an error with whatever diagnostics were gathered."""

    phase: str
    mode: str
    unit: str = ""
    error: Optional[str] = None
    error_kind: Optional[str] = None

    # power
    vrms_kv: Optional[float] = None
    irms_a: Optional[float] = None
    p_kw: Optional[float] = None
    s_kva: Optional[float] = None
    q_kvar: Optional[float] = None
    pf: Optional[float] = None

    # frequency
    freq_hz: Optional[float] = None
    period_ms: Optional[float] = None

    # steady amplitude
    steady_peak: Optional[float] = None
    steady_rms: Optional[float] = None
    sample_rms: Optional[float] = None

    # transient
    peak_value: Optional[float] = None
    wave_top_y: Optional[int] = None

    degraded_calibration: bool = False
    approximations: list[str] = field(default_factory=list)
    channels: dict[str, ChannelDiagnostics] = field(default_factory=dict)
    debug: dict[str, Any] = field(default_factory=dict)

    @property
    def ok(self) -> bool:
        return self.error is None

    def to_dict(self) -> dict[str, Any]:
        out: dict[str, Any] = {"phase": self.phase, "mode": self.mode, "unit": self.unit}
        for name in (
            "vrms_kv", "irms_a", "p_kw", "s_kva", "q_kvar", "pf",
            "freq_hz", "period_ms",
            "steady_peak", "steady_rms", "sample_rms",
            "peak_value",
        ):
            val = _finite_or_none(getattr(self, name))
            if val is not None:
                out[name] = val
        if self.wave_top_y is not None:
            out["wave_top_y"] = int(self.wave_top_y)
        if self.error is not None:
            out["error"] = self.error
            out["error_kind"] = self.error_kind
        if self.degraded_calibration:
            out["degraded_calibration"] = True
        if self.approximations:
            out["approximations"] = list(self.approximations)
        debug = dict(self.debug)
        for name, diag in self.channels.items():
            debug[name] = diag.to_dict()
        out["debug"] = debug
        return out


@dataclass
class FileResult:
    file: str
    mode: str
    unit: str
    phases: list[PhaseResult] = field(default_factory=list)

    def to_dict(self) -> dict[str, Any]:
        return {
            "file": self.file,
            "mode": self.mode,
            "unit": self.unit,
            "phases": [p.to_dict() for p in self.phases],
        }


@dataclass
class PairResult:
    file_pair: str
    phases: list[PhaseResult] = field(default_factory=list)

    def to_dict(self) -> dict[str, Any]:
        return {
            "file_pair": self.file_pair,
            "phases": [p.to_dict() for p in self.phases],
        }


class ImageSource(NamedTuple):
    """Raw upload: original file name plus encoded image bytes."""

    name: str
    data: bytes
