"""Application configuration with simple JSON persistence."""

from __future__ import annotations

import json
import logging
from dataclasses import asdict, dataclass, fields
from pathlib import Path
from typing import Optional

logger = logging.getLogger(__name__)

QUANTITIES = ("voltage", "current")
MODES = ("power", "steady", "transient", "frequency")
TRACE_POLICIES = ("center", "first_match")


@dataclass(frozen=True)
class PhaseConfig:
    """Frozen per-call settings consumed by every pipeline stage."""

    per_segment_value: float
    steady_window_fraction: float
    is_voltage_like: bool
    hline_run_ratio: float = 0.60
    vline_run_ratio: float = 0.55
    merge_tolerance_px: int = 10
    dash_smooth_radius: int = 5
    dash_peak_gain: float = 1.2
    hsv_sat_threshold: int = 40
    hsv_val_threshold: int = 40
    autocorr_min_score: float = 0.3
    period_sec_min: float = 0.012
    period_sec_max: float = 0.030
    seconds_per_grid_division: float = 0.010
    tick_merge_tolerance_px: int = 3
    dash_block_size: int = 15
    dash_offset: float = 10.0
    trace_smooth_radius: int = 3
    signal_smooth_radius: int = 1
    min_valid_samples: int = 30
    fallback_span_px: float = 300.0
    vline_edge_margin_px: int = 5
    extrema_min_spacing_ratio: float = 0.03
    trace_policy: str = "center"
    display_scale: float = 1.0
    unit: str = "V"


@dataclass
class Config:
    # Phase ROIs (x, y, w, h) in source-image pixels
    ROI_A: tuple = (55, 56, 1400, 310)
    ROI_B: tuple = (55, 370, 1400, 310)
    ROI_C: tuple = (55, 683, 1400, 310)

    # Calibration: physical value of one dashed-tick step
    VOLTAGE_PER_SEGMENT: float = 200000.0
    CURRENT_PER_SEGMENT: float = 500.0
    FALLBACK_SEGMENT_PX: float = 300.0
    VOLTAGE_DISPLAY_SCALE: float = 0.001  # V -> kV
    CURRENT_DISPLAY_SCALE: float = 1.0

    # Steady-state windows (retained trailing fraction of columns)
    POWER_WINDOW_FRACTION: float = 0.60
    FREQUENCY_WINDOW_FRACTION: float = 0.60
    STEADY_WINDOW_FRACTION: float = 0.40
    TRANSIENT_WINDOW_FRACTION: float = 1.0

    # Reference lines
    HLINE_RUN_RATIO: float = 0.60
    VLINE_RUN_RATIO: float = 0.55
    LINE_MERGE_PX: int = 10
    VLINE_EDGE_MARGIN_PX: int = 5

    # Dashed calibration ticks
    DASH_BLOCK_SIZE: int = 15
    DASH_OFFSET: float = 10.0
    DASH_SMOOTH_RADIUS: int = 5
    DASH_PEAK_GAIN: float = 1.2
    DASH_MERGE_PX: int = 3

    # Waveform tracing
    HSV_SAT_THRESHOLD: int = 40
    HSV_VAL_THRESHOLD: int = 40
    TRACE_SMOOTH_RADIUS: int = 3
    SIGNAL_SMOOTH_RADIUS: int = 1
    MIN_VALID_SAMPLES: int = 30

    # Frequency estimation
    AUTOCORR_MIN_SCORE: float = 0.3
    PERIOD_SEC_MIN: float = 0.012
    PERIOD_SEC_MAX: float = 0.030
    SECONDS_PER_GRID_DIVISION: float = 0.010
    EXTREMA_MIN_SPACING_RATIO: float = 0.03

    # Batch processing
    WORKER_COUNT: int = 4

    @staticmethod
    def default_path() -> Path:
        return Path.home() / ".oscar_config.json"

    @classmethod
    def load(cls, path: Optional[Path] = None) -> "Config":
        cfg = cls()
        cfg_path = path or cls.default_path()
        if not cfg_path.exists():
            return cfg

        try:
            data = json.loads(cfg_path.read_text())
        except Exception:
            logger.exception("Failed to read config file: %s", cfg_path)
            return cfg

        for f in fields(cfg):
            if f.name not in data:
                continue
            raw = data[f.name]
            current = getattr(cfg, f.name)
            try:
                if isinstance(current, bool):
                    val = bool(raw)
                elif isinstance(current, int):
                    val = int(raw)
                elif isinstance(current, float):
                    val = float(raw)
                elif isinstance(current, tuple):
                    val = tuple(int(v) for v in raw)
                    if len(val) != 4:
                        raise ValueError(f"expected 4 values, got {len(val)}")
                else:
                    val = raw
                setattr(cfg, f.name, val)
            except Exception:
                logger.warning("Ignoring invalid config value for %s", f.name)

        cfg.normalize()
        return cfg

    def save(self, path: Optional[Path] = None) -> None:
        cfg_path = path or self.default_path()
        cfg_path.write_text(json.dumps(asdict(self), indent=2, sort_keys=True))

    def normalize(self) -> None:
        if self.PERIOD_SEC_MIN > self.PERIOD_SEC_MAX:
            self.PERIOD_SEC_MIN, self.PERIOD_SEC_MAX = self.PERIOD_SEC_MAX, self.PERIOD_SEC_MIN
        for name in (
            "POWER_WINDOW_FRACTION",
            "FREQUENCY_WINDOW_FRACTION",
            "STEADY_WINDOW_FRACTION",
            "TRANSIENT_WINDOW_FRACTION",
        ):
            setattr(self, name, min(1.0, max(0.0, float(getattr(self, name)))))
        self.WORKER_COUNT = max(1, int(self.WORKER_COUNT))
        self.MIN_VALID_SAMPLES = max(2, int(self.MIN_VALID_SAMPLES))

    def roi_for(self, phase: str) -> tuple:
        return {"A": self.ROI_A, "B": self.ROI_B, "C": self.ROI_C}[phase]

    def phase_config(self, quantity: str, mode: str) -> PhaseConfig:
        """Freeze the settings for one (quantity, mode) analysis call."""
        if quantity not in QUANTITIES:
            raise ValueError(f"Unknown quantity '{quantity}'")
        if mode not in MODES:
            raise ValueError(f"Unknown mode '{mode}'")

        is_voltage = quantity == "voltage"
        window = {
            "power": self.POWER_WINDOW_FRACTION,
            "frequency": self.FREQUENCY_WINDOW_FRACTION,
            "steady": self.STEADY_WINDOW_FRACTION,
            "transient": self.TRANSIENT_WINDOW_FRACTION,
        }[mode]
        if mode == "frequency":
            scale, unit = 1.0, "Hz"
        elif is_voltage:
            scale = self.VOLTAGE_DISPLAY_SCALE
            unit = "kV" if scale == 0.001 else "V"
        else:
            scale = self.CURRENT_DISPLAY_SCALE
            unit = "kA" if scale == 0.001 else "A"

        return PhaseConfig(
            per_segment_value=self.VOLTAGE_PER_SEGMENT if is_voltage else self.CURRENT_PER_SEGMENT,
            steady_window_fraction=window,
            is_voltage_like=is_voltage,
            hline_run_ratio=self.HLINE_RUN_RATIO,
            vline_run_ratio=self.VLINE_RUN_RATIO,
            merge_tolerance_px=self.LINE_MERGE_PX,
            dash_smooth_radius=self.DASH_SMOOTH_RADIUS,
            dash_peak_gain=self.DASH_PEAK_GAIN,
            hsv_sat_threshold=self.HSV_SAT_THRESHOLD,
            hsv_val_threshold=self.HSV_VAL_THRESHOLD,
            autocorr_min_score=self.AUTOCORR_MIN_SCORE,
            period_sec_min=self.PERIOD_SEC_MIN,
            period_sec_max=self.PERIOD_SEC_MAX,
            seconds_per_grid_division=self.SECONDS_PER_GRID_DIVISION,
            tick_merge_tolerance_px=self.DASH_MERGE_PX,
            dash_block_size=self.DASH_BLOCK_SIZE,
            dash_offset=self.DASH_OFFSET,
            trace_smooth_radius=self.TRACE_SMOOTH_RADIUS,
            signal_smooth_radius=self.SIGNAL_SMOOTH_RADIUS,
            min_valid_samples=self.MIN_VALID_SAMPLES,
            fallback_span_px=self.FALLBACK_SEGMENT_PX,
            vline_edge_margin_px=self.VLINE_EDGE_MARGIN_PX,
            extrema_min_spacing_ratio=self.EXTREMA_MIN_SPACING_RATIO,
            trace_policy="first_match" if mode == "transient" else "center",
            display_scale=scale,
            unit=unit,
        )
