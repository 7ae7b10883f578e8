"""File- and pair-level orchestration over the three phase regions."""

from __future__ import annotations

import logging
import re
import threading
from pathlib import Path
from typing import Optional

import matplotlib
import matplotlib.pyplot as plt
import numpy as np

from OSCAR.config import Config
from OSCAR.src.core.analysis import analyze_phase, analyze_power_phase
from OSCAR.src.core.errors import PhaseAnalysisError
from OSCAR.src.core.processing import decoded_image
from OSCAR.src.core.roi import ROIManager
from OSCAR.src.core.types import PHASES, ChannelDiagnostics, FileResult, ImageSource, PairResult, PhaseResult

matplotlib.use("Agg")

logger = logging.getLogger(__name__)

SERIES_EDGE = 50

# pyplot state is process-global; batch threads take turns.
_PLOT_LOCK = threading.Lock()


def _error_phases(mode: str, unit: str, exc: PhaseAnalysisError) -> list[PhaseResult]:
    return [
        PhaseResult(phase=phase, mode=mode, unit=unit, error=exc.message, error_kind=exc.kind)
        for phase in PHASES
    ]


def _log_series(label: str, seq: Optional[np.ndarray]) -> None:
    if seq is None or not logger.isEnabledFor(logging.DEBUG):
        return
    n = len(seq)
    head = np.round(seq[: min(SERIES_EDGE, n)], 2).tolist()
    tail = np.round(seq[max(0, n - SERIES_EDGE):], 2).tolist()
    logger.debug("%s: len=%d head=%s tail=%s", label, n, head, tail)


def log_phase_result(label: str, result: PhaseResult) -> None:
    if not logger.isEnabledFor(logging.DEBUG):
        return
    for quantity, diag in result.channels.items():
        logger.debug(
            "%s phase %s %s: lines=%s ticks=%s window_start=%s valid=%s",
            label,
            result.phase,
            quantity,
            list(diag.lines),
            list(diag.ticks),
            diag.window_start,
            diag.valid_samples,
        )
        _log_series(f"{label} phase {result.phase} {quantity} trace", diag.trace)
        _log_series(f"{label} phase {result.phase} {quantity} calibrated", diag.calibrated)
    if result.ok:
        logger.debug("%s phase %s -> %s", label, result.phase, result.to_dict())
    else:
        logger.debug("%s phase %s failed: %s (%s)", label, result.phase, result.error, result.error_kind)


def _safe_name(label: str) -> str:
    return re.sub(r"[^A-Za-z0-9_.-]+", "_", label)


def save_phase_overlay(roi: np.ndarray, diag: ChannelDiagnostics, title: str, path: Path) -> Path:
    """Render the ROI with detected lines, ticks, window start and traced rows."""
    fig, ax = plt.subplots(figsize=(12, 4))
    if roi.ndim == 3:
        ax.imshow(roi[:, :, ::-1])
    else:
        ax.imshow(roi, cmap="gray")
    for y in diag.lines:
        ax.axhline(y, color="k", lw=1.0, alpha=0.8)
    for y in diag.ticks:
        ax.axhline(y, color="tab:blue", lw=0.8, ls="--", alpha=0.8)
    for x in diag.vertical_lines:
        ax.axvline(x, color="tab:gray", lw=0.8, ls=":")
    if diag.window_start is not None:
        ax.axvline(diag.window_start, color="tab:orange", lw=1.5, label="window start")
    if diag.trace is not None:
        ax.plot(np.arange(diag.trace.size), diag.trace, "g-", lw=1.0, label="trace")
    ax.set_title(title)
    ax.set_xlabel("Column (px)")
    ax.set_ylabel("Row (px)")
    handles, _labels = ax.get_legend_handles_labels()
    if handles:
        ax.legend(loc="upper right")
    plt.tight_layout()
    path.parent.mkdir(parents=True, exist_ok=True)
    plt.savefig(path)
    plt.close(fig)
    return path


class MeasurementOrchestrator:
    """Crops the three phase regions of a capture and runs the phase pipelines."""

    def __init__(self, config: Config, plot_dir: Optional[Path] = None):
        self.config = config
        self.roi = ROIManager(config)
        self.plot_dir = Path(plot_dir) if plot_dir is not None else None

    def _save_plots(self, label: str, crops: dict[str, np.ndarray], result: PhaseResult) -> None:
        if self.plot_dir is None:
            return
        for quantity, diag in result.channels.items():
            roi = crops[quantity]
            if roi.size == 0:
                continue
            title = f"{label} phase {result.phase} ({quantity})"
            path = self.plot_dir / f"{_safe_name(label)}_{result.phase}_{quantity}.png"
            try:
                with _PLOT_LOCK:
                    save_phase_overlay(roi, diag, title, path)
            except Exception:
                logger.exception("Failed to save overlay plot %s", path)

    def analyze_file(self, source: ImageSource, mode: str, quantity: str = "voltage") -> FileResult:
        """Single-image modes: steady, transient, frequency."""
        if mode == "power":
            raise ValueError("Power mode needs a voltage/current pair; use analyze_pair")
        cfg = self.config.phase_config(quantity, mode)
        result = FileResult(file=source.name, mode=mode, unit=cfg.unit)
        try:
            with decoded_image(source) as img:
                for phase in PHASES:
                    roi = self.roi.get_crop(img, phase)
                    phase_result = analyze_phase(roi, cfg, phase, mode)
                    log_phase_result(source.name, phase_result)
                    self._save_plots(source.name, {quantity: roi}, phase_result)
                    result.phases.append(phase_result)
        except PhaseAnalysisError as exc:
            logger.warning("%s: %s", source.name, exc.message)
            result.phases = _error_phases(mode, cfg.unit, exc)
        return result

    def analyze_pair(self, voltage: ImageSource, current: ImageSource) -> PairResult:
        """Power mode over one voltage/current capture pair."""
        v_cfg = self.config.phase_config("voltage", "power")
        i_cfg = self.config.phase_config("current", "power")
        label = f"{voltage.name} + {current.name}"
        result = PairResult(file_pair=label)
        try:
            with decoded_image(voltage) as v_img, decoded_image(current) as i_img:
                for phase in PHASES:
                    crops = {
                        "voltage": self.roi.get_crop(v_img, phase),
                        "current": self.roi.get_crop(i_img, phase),
                    }
                    phase_result = analyze_power_phase(crops["voltage"], crops["current"], v_cfg, i_cfg, phase)
                    log_phase_result(label, phase_result)
                    self._save_plots(label, crops, phase_result)
                    result.phases.append(phase_result)
        except PhaseAnalysisError as exc:
            logger.warning("%s: %s", label, exc.message)
            result.phases = _error_phases("power", "kV/A/kW/kVA", exc)
        return result


def analyze_file(
    source: ImageSource,
    config: Config,
    mode: str,
    quantity: str = "voltage",
    plot_dir: Optional[Path] = None,
) -> FileResult:
    return MeasurementOrchestrator(config, plot_dir).analyze_file(source, mode, quantity)


def analyze_pair(
    voltage: ImageSource,
    current: ImageSource,
    config: Config,
    plot_dir: Optional[Path] = None,
) -> PairResult:
    return MeasurementOrchestrator(config, plot_dir).analyze_pair(voltage, current)
