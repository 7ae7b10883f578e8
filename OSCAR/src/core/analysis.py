"""Per-phase measurement pipelines.

Every mode runs the same channel extraction (reference lines, ticks, trace,
steady window, mapper) and then projects it onto its own outputs. A stage that
cannot meet its minimum-data precondition raises a
:class:`~OSCAR.src.core.errors.PhaseAnalysisError`; the entry points turn that
into an error-carrying :class:`~OSCAR.src.core.types.PhaseResult` for the phase.
"""

from __future__ import annotations

import logging
from typing import Callable, NamedTuple

import numpy as np

from OSCAR.config import PhaseConfig
from OSCAR.src.core import conditioning, metrics
from OSCAR.src.core.calibration import PixelToPhysicalMapper, steady_window
from OSCAR.src.core.errors import InsufficientReferenceLines, PhaseAnalysisError
from OSCAR.src.core.frequency import estimate_period, seconds_per_pixel
from OSCAR.src.core.lines import detect_ticks, horizontal_reference_lines, vertical_reference_lines
from OSCAR.src.core.tracing import smooth_valid, trace_columns, waveform_mask
from OSCAR.src.core.types import ChannelDiagnostics, PhaseResult, ReferenceLines

logger = logging.getLogger(__name__)

SINUSOID_RMS_NOTE = "steady_rms = |peak|/sqrt(2) assumes a clean sinusoid"
POWER_UNIT = "kV/A/kW/kVA"


class ChannelExtraction(NamedTuple):
    lines: ReferenceLines
    mapper: PixelToPhysicalMapper
    trace: np.ndarray
    window: np.ndarray
    raw_window: np.ndarray
    window_start: int


def extract_channel(roi: np.ndarray, cfg: PhaseConfig, diag: ChannelDiagnostics) -> ChannelExtraction:
    """Lines -> Ticks -> Trace -> Window for one ROI, recording diagnostics as it goes."""
    if roi.size == 0 or roi.shape[0] < 3 or roi.shape[1] < 2:
        raise InsufficientReferenceLines("insufficient reference lines: empty ROI", {"roi_shape": list(roi.shape)})

    lines = horizontal_reference_lines(roi, cfg)
    diag.lines = lines.positions

    trace_mask = waveform_mask(roi, cfg.hsv_sat_threshold, cfg.hsv_val_threshold)
    ticks = detect_ticks(roi, lines.top, lines.bottom, cfg, exclude=trace_mask)
    diag.ticks = tuple(ticks)

    mapper = PixelToPhysicalMapper(
        lines.baseline,
        ticks,
        cfg.per_segment_value,
        fallback_span_px=cfg.fallback_span_px,
        baseline_tolerance_px=cfg.tick_merge_tolerance_px,
    )
    diag.degraded_sides = mapper.degraded_sides

    rows = trace_columns(trace_mask, lines.top, lines.bottom, cfg.trace_policy)
    trace = smooth_valid(rows, cfg.trace_smooth_radius)
    diag.trace = trace

    window, start = steady_window(trace, cfg.steady_window_fraction)
    raw_window = rows[start:]
    diag.window_start = start
    diag.window_columns = int(window.size)
    return ChannelExtraction(lines, mapper, trace, window, raw_window, start)


def calibrated_samples(ext: ChannelExtraction, cfg: PhaseConfig, diag: ChannelDiagnostics) -> np.ndarray:
    """Calibrate -> Condition: compacted, minimum-checked, smoothed physical signal."""
    signal = conditioning.compact(ext.mapper.map_rows(ext.window))
    diag.valid_samples = int(signal.size)
    diag.calibrated = signal * cfg.display_scale
    conditioning.require_samples(signal, cfg.min_valid_samples, diag.quantity)
    return conditioning.smooth(signal, cfg.signal_smooth_radius)


def _quantity(cfg: PhaseConfig) -> str:
    return "voltage" if cfg.is_voltage_like else "current"


def _run(result: PhaseResult, body: Callable[[], None]) -> PhaseResult:
    try:
        body()
    except PhaseAnalysisError as exc:
        result.error = exc.message
        result.error_kind = exc.kind
        result.debug.update(exc.details)
        logger.info("phase %s (%s): %s", result.phase, result.mode, exc.message)
    except Exception as exc:
        logger.exception("phase %s (%s) failed unexpectedly", result.phase, result.mode)
        result.error = f"internal error: {exc}"
        result.error_kind = "InternalError"
    if any(diag.degraded_sides for diag in result.channels.values()):
        result.degraded_calibration = True
    return result


def analyze_steady(roi: np.ndarray, cfg: PhaseConfig, phase: str) -> PhaseResult:
    """Peak-derived and sample RMS over the trailing steady window."""
    result = PhaseResult(phase=phase, mode="steady", unit=cfg.unit)
    diag = result.channels.setdefault(_quantity(cfg), ChannelDiagnostics(_quantity(cfg)))

    def body() -> None:
        ext = extract_channel(roi, cfg, diag)
        rows = conditioning.compact(ext.window)
        diag.valid_samples = int(rows.size)
        conditioning.require_samples(rows, cfg.min_valid_samples, diag.quantity)

        peak_y = metrics.peak_row(rows, ext.lines.baseline)
        peak = ext.mapper.to_physical(peak_y)
        values = ext.mapper.map_rows(rows)
        diag.calibrated = values * cfg.display_scale

        result.steady_peak = peak * cfg.display_scale
        result.steady_rms = metrics.rms_from_peak(peak) * cfg.display_scale
        result.sample_rms = metrics.sample_rms(values) * cfg.display_scale
        result.approximations.append(SINUSOID_RMS_NOTE)
        result.debug["peak_row"] = float(peak_y)

    return _run(result, body)


def analyze_transient(roi: np.ndarray, cfg: PhaseConfig, phase: str) -> PhaseResult:
    """Extreme excursion of a transient capture from the topmost traced rows.

    Uses the unsmoothed first-match rows so spikes a few columns wide keep
    their full height.
    """
    result = PhaseResult(phase=phase, mode="transient", unit=cfg.unit)
    diag = result.channels.setdefault(_quantity(cfg), ChannelDiagnostics(_quantity(cfg)))

    def body() -> None:
        ext = extract_channel(roi, cfg, diag)
        rows = conditioning.compact(ext.raw_window)
        diag.valid_samples = int(rows.size)
        conditioning.require_samples(rows, cfg.min_valid_samples, diag.quantity)
        diag.calibrated = ext.mapper.map_rows(rows) * cfg.display_scale

        top_y = float(np.min(rows))
        result.peak_value = ext.mapper.to_physical(top_y) * cfg.display_scale
        result.wave_top_y = int(round(top_y))

    return _run(result, body)


def analyze_frequency(roi: np.ndarray, cfg: PhaseConfig, phase: str) -> PhaseResult:
    """Fundamental frequency from the pixel trace and the vertical time grid."""
    result = PhaseResult(phase=phase, mode="frequency", unit="Hz")
    diag = result.channels.setdefault(_quantity(cfg), ChannelDiagnostics(_quantity(cfg)))

    def body() -> None:
        ext = extract_channel(roi, cfg, diag)
        vlines = vertical_reference_lines(roi, cfg)
        diag.vertical_lines = vlines.positions
        sec_per_px = seconds_per_pixel(vlines.positions, cfg.seconds_per_grid_division)
        result.debug["seconds_per_pixel"] = sec_per_px

        x = conditioning.compact(ext.window)
        diag.valid_samples = int(x.size)
        conditioning.require_samples(x, cfg.min_valid_samples, diag.quantity)
        x = conditioning.smooth(x, cfg.signal_smooth_radius)
        x = x - float(np.mean(x))

        est = estimate_period(x, sec_per_px, cfg)
        result.debug.update(
            {
                "method": est.method,
                "autocorr_score": est.score,
                "lag_px": est.lag_px,
                "lag_window_px": [est.min_lag_px, est.max_lag_px],
            }
        )
        result.freq_hz = est.freq_hz
        result.period_ms = est.period_s * 1000.0 if est.period_s is not None else None

    return _run(result, body)


MODE_HANDLERS = {
    "steady": analyze_steady,
    "transient": analyze_transient,
    "frequency": analyze_frequency,
}


def analyze_phase(roi: np.ndarray, config: PhaseConfig, phase: str, mode: str) -> PhaseResult:
    """Single-image entry point for the steady, transient and frequency modes."""
    try:
        handler = MODE_HANDLERS[mode]
    except KeyError:
        raise ValueError(f"Unknown single-image mode '{mode}'") from None
    return handler(roi, config, phase)


def analyze_power_phase(
    v_roi: np.ndarray,
    i_roi: np.ndarray,
    v_config: PhaseConfig,
    i_config: PhaseConfig,
    phase: str,
) -> PhaseResult:
    """Vrms, Irms, P, S, Q and PF for one phase of a voltage/current image pair."""
    result = PhaseResult(phase=phase, mode="power", unit=POWER_UNIT)
    v_diag = result.channels.setdefault("voltage", ChannelDiagnostics("voltage"))
    i_diag = result.channels.setdefault("current", ChannelDiagnostics("current"))

    def body() -> None:
        v_ext = extract_channel(v_roi, v_config, v_diag)
        i_ext = extract_channel(i_roi, i_config, i_diag)
        v_sig = calibrated_samples(v_ext, v_config, v_diag)
        i_sig = calibrated_samples(i_ext, i_config, i_diag)

        pm = metrics.power_metrics(v_sig, i_sig)
        result.vrms_kv = pm.vrms / 1000.0
        result.irms_a = pm.irms
        result.p_kw = pm.p / 1000.0
        result.s_kva = pm.s / 1000.0
        result.q_kvar = pm.q / 1000.0
        result.pf = pm.pf
        result.debug["resampled_length"] = pm.samples

    return _run(result, body)
