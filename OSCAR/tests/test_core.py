import unittest
from dataclasses import replace
from pathlib import Path
import json
import math
import tempfile
import sys
import numpy as np

ROOT = Path(__file__).resolve().parents[2]
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))

from OSCAR.config import Config
from OSCAR.src.core import conditioning, metrics
from OSCAR.src.core.calibration import PixelToPhysicalMapper, steady_window, window_start
from OSCAR.src.core.errors import (
    DecodeFailure,
    DegenerateLagWindow,
    InconclusivePeriod,
    InsufficientReferenceLines,
    InsufficientValidSamples,
)
from OSCAR.src.core.frequency import (
    autocorrelation_lag,
    estimate_period,
    extrema_period,
    lag_window,
    seconds_per_pixel,
)
from OSCAR.src.core.lines import (
    binarize_dark,
    detect_horizontal_lines,
    detect_ticks,
    detect_vertical_lines,
    horizontal_reference_lines,
    longest_runs,
    merge_runs,
)
from OSCAR.src.core.processing import decode_image, decoded_image
from OSCAR.src.core.roi import ROIManager
from OSCAR.src.core.tracing import smooth_valid, trace_columns, waveform_mask
from OSCAR.src.core.types import ImageSource, PhaseResult, Side, TracePolicy
from OSCAR.tests.synthetic import LINES, TICKS, draw_phase, encode_png


def sine(n, period, amplitude=1.0):
    return amplitude * np.sin(2.0 * np.pi * np.arange(n) / period)


class TestConfig(unittest.TestCase):
    def test_save_load_roundtrip(self):
        cfg = Config()
        cfg.ROI_B = (10, 20, 300, 40)
        cfg.VOLTAGE_PER_SEGMENT = 100000.0
        cfg.WORKER_COUNT = 2

        with tempfile.TemporaryDirectory() as td:
            path = Path(td) / "config.json"
            cfg.save(path)
            loaded = Config.load(path)

        self.assertEqual(loaded.ROI_B, (10, 20, 300, 40))
        self.assertAlmostEqual(loaded.VOLTAGE_PER_SEGMENT, 100000.0)
        self.assertEqual(loaded.WORKER_COUNT, 2)

    def test_invalid_values_are_ignored(self):
        with tempfile.TemporaryDirectory() as td:
            path = Path(td) / "config.json"
            path.write_text(json.dumps({"ROI_A": [1, 2, 3], "MIN_VALID_SAMPLES": "many", "LINE_MERGE_PX": 7}))
            loaded = Config.load(path)

        self.assertEqual(loaded.ROI_A, Config().ROI_A)
        self.assertEqual(loaded.MIN_VALID_SAMPLES, Config().MIN_VALID_SAMPLES)
        self.assertEqual(loaded.LINE_MERGE_PX, 7)

    def test_unreadable_file_gives_defaults(self):
        with tempfile.TemporaryDirectory() as td:
            path = Path(td) / "config.json"
            path.write_text("{not json")
            loaded = Config.load(path)
        self.assertEqual(loaded, Config())

    def test_normalize_swaps_period_bounds(self):
        cfg = Config()
        cfg.PERIOD_SEC_MIN, cfg.PERIOD_SEC_MAX = 0.03, 0.012
        cfg.STEADY_WINDOW_FRACTION = 1.5
        cfg.normalize()
        self.assertLess(cfg.PERIOD_SEC_MIN, cfg.PERIOD_SEC_MAX)
        self.assertEqual(cfg.STEADY_WINDOW_FRACTION, 1.0)

    def test_phase_config(self):
        cfg = Config()
        v = cfg.phase_config("voltage", "steady")
        self.assertEqual(v.per_segment_value, 200000.0)
        self.assertEqual(v.steady_window_fraction, 0.4)
        self.assertEqual(v.unit, "kV")
        self.assertTrue(v.is_voltage_like)

        i = cfg.phase_config("current", "transient")
        self.assertEqual(i.per_segment_value, 500.0)
        self.assertEqual(i.trace_policy, TracePolicy.FIRST_MATCH)
        self.assertEqual(i.unit, "A")

        f = cfg.phase_config("voltage", "frequency")
        self.assertEqual(f.unit, "Hz")
        self.assertEqual(f.steady_window_fraction, 0.6)

    def test_unknown_mode_raises(self):
        with self.assertRaises(ValueError):
            Config().phase_config("voltage", "harmonics")
        with self.assertRaises(ValueError):
            Config().phase_config("flux", "steady")


class TestReferenceLines(unittest.TestCase):
    def setUp(self):
        self.cfg = Config().phase_config("voltage", "steady")

    def test_single_dark_row_is_one_line(self):
        img = np.full((50, 200), 255, dtype=np.uint8)
        img[17, :] = 0
        lines = detect_horizontal_lines(binarize_dark(img), 0.6, 10)
        self.assertEqual(lines, [17])

    def test_thick_line_merges_to_midpoint(self):
        img = np.full((50, 200), 255, dtype=np.uint8)
        img[20:25, :] = 0
        lines = detect_horizontal_lines(binarize_dark(img), 0.6, 10)
        self.assertEqual(lines, [22])

    def test_short_runs_are_rejected(self):
        img = np.full((50, 200), 255, dtype=np.uint8)
        img[10, :100] = 0
        img[30, :] = 0
        self.assertEqual(detect_horizontal_lines(binarize_dark(img), 0.6, 10), [30])

    def test_longest_runs(self):
        mask = np.array([[1, 1, 0, 1, 1, 1], [0, 0, 0, 0, 0, 0]], dtype=bool)
        np.testing.assert_array_equal(longest_runs(mask), [3, 0])

    def test_merge_runs(self):
        self.assertEqual(merge_runs(np.array([3, 4, 5, 40, 41]), 10), [4, 40])
        self.assertEqual(merge_runs(np.array([], dtype=int), 10), [])

    def test_panel_lines(self):
        lines = horizontal_reference_lines(draw_phase(), self.cfg)
        self.assertEqual(lines.positions, LINES)
        self.assertEqual(lines.baseline, 160)

    def test_too_few_lines(self):
        img = np.full((100, 200, 3), 255, dtype=np.uint8)
        img[50, :] = 0
        with self.assertRaises(InsufficientReferenceLines):
            horizontal_reference_lines(img, self.cfg)

    def test_vertical_lines_skip_border(self):
        img = np.full((100, 200), 255, dtype=np.uint8)
        img[:, 0] = 0
        img[:, 50] = 0
        img[:, 100] = 0
        img[:, 199] = 0
        self.assertEqual(detect_vertical_lines(binarize_dark(img), 0.55, 10, 5), [50, 100])


class TestTicks(unittest.TestCase):
    def test_dashed_ticks_found(self):
        cfg = Config().phase_config("voltage", "steady")
        roi = draw_phase()
        mask = waveform_mask(roi, cfg.hsv_sat_threshold, cfg.hsv_val_threshold)
        ticks = detect_ticks(roi, LINES[0], LINES[-1], cfg, exclude=mask)
        for t in TICKS:
            self.assertTrue(any(abs(t - y) <= 1 for y in ticks), f"tick {t} missing from {ticks}")

    def test_no_ticks_in_blank_band(self):
        cfg = Config().phase_config("voltage", "steady")
        roi = draw_phase(ticks=(), amplitude=0, grid_spacing=0)
        ticks = detect_ticks(roi, LINES[0], LINES[-1], cfg)
        self.assertTrue(all(abs(y - 160) <= 1 for y in ticks))


class TestTracing(unittest.TestCase):
    def test_mask_ignores_gray_and_black(self):
        roi = np.full((5, 5, 3), 255, dtype=np.uint8)
        roi[1, 1] = (0, 0, 255)
        roi[2, 2] = (120, 120, 120)
        roi[3, 3] = (0, 0, 0)
        mask = waveform_mask(roi, 40, 40)
        self.assertEqual(int(mask.sum()), 1)
        self.assertTrue(mask[1, 1])

    def test_gray_roi_has_no_trace(self):
        self.assertFalse(waveform_mask(np.zeros((4, 4), dtype=np.uint8), 40, 40).any())

    def test_policies(self):
        mask = np.zeros((10, 3), dtype=bool)
        mask[2:7, 0] = True
        mask[4, 1] = True
        rows_center = trace_columns(mask, 0, 9, TracePolicy.CENTER)
        rows_first = trace_columns(mask, 0, 9, TracePolicy.FIRST_MATCH)
        self.assertEqual(rows_center[0], 4.0)
        self.assertEqual(rows_first[0], 2.0)
        self.assertEqual(rows_center[1], 4.0)
        self.assertTrue(math.isnan(rows_center[2]))

    def test_band_limits(self):
        mask = np.zeros((10, 1), dtype=bool)
        mask[1, 0] = True
        mask[6, 0] = True
        self.assertEqual(trace_columns(mask, 3, 9, TracePolicy.FIRST_MATCH)[0], 6.0)

    def test_smooth_valid_skips_gaps(self):
        rows = np.array([10.0, np.nan, 20.0, np.nan, np.nan, np.nan, np.nan])
        out = smooth_valid(rows, 1)
        self.assertEqual(out[0], 10.0)
        self.assertEqual(out[1], 15.0)
        self.assertTrue(math.isnan(out[5]))


class TestWindow(unittest.TestCase):
    def test_window_start(self):
        self.assertEqual(window_start(1000, 0.6), 400)
        self.assertEqual(window_start(1000, 0.4), 600)
        self.assertEqual(window_start(1000, 1.0), 0)
        self.assertEqual(window_start(1000, 0.0), 998)
        self.assertEqual(window_start(1, 0.4), 0)

    def test_steady_window_keeps_tail(self):
        seq = np.arange(10)
        tail, start = steady_window(seq, 0.6)
        self.assertEqual(start, 4)
        np.testing.assert_array_equal(tail, np.arange(4, 10))


class TestMapper(unittest.TestCase):
    def setUp(self):
        self.mapper = PixelToPhysicalMapper(160, TICKS, 200000.0)

    def test_tick_rows_map_to_segments(self):
        self.assertEqual(self.mapper.to_physical(160), 0.0)
        self.assertAlmostEqual(self.mapper.to_physical(130), 200000.0)
        self.assertAlmostEqual(self.mapper.to_physical(40), 800000.0)
        self.assertAlmostEqual(self.mapper.to_physical(280), -800000.0)

    def test_interpolates_within_segment(self):
        self.assertAlmostEqual(self.mapper.to_physical(145), 100000.0)
        self.assertAlmostEqual(self.mapper.to_physical(205), -300000.0)

    def test_extrapolates_past_last_tick(self):
        self.assertAlmostEqual(self.mapper.to_physical(25), 900000.0)

    def test_nan_stays_nan(self):
        self.assertTrue(math.isnan(self.mapper.to_physical(float("nan"))))

    def test_side_of(self):
        self.assertEqual(self.mapper.side_of(100), Side.ABOVE)
        self.assertEqual(self.mapper.side_of(200), Side.BELOW)
        self.assertIsNone(self.mapper.side_of(160))
        self.assertEqual(self.mapper.ticks(Side.ABOVE), [130.0, 100.0, 70.0, 40.0])

    def test_degraded_side_uses_fallback(self):
        mapper = PixelToPhysicalMapper(160, (130, 100), 200000.0, fallback_span_px=300.0)
        self.assertEqual(mapper.degraded_sides, (Side.BELOW,))
        self.assertAlmostEqual(mapper.to_physical(220), -60 * 200000.0 / 300.0)

    def test_baseline_tick_ignored(self):
        mapper = PixelToPhysicalMapper(160, (130, 159, 190), 1.0, baseline_tolerance_px=3)
        self.assertEqual(mapper.degraded_sides, ())
        self.assertAlmostEqual(mapper.to_physical(130), 1.0)

    def test_sinusoid_rms(self):
        amplitude = 120.0
        rows = 160 - sine(1000, 100, amplitude)
        values = self.mapper.map_rows(rows)
        expected = 4 * 200000.0 / math.sqrt(2.0)
        self.assertAlmostEqual(metrics.rms(values), expected, delta=expected * 0.01)


class TestConditioning(unittest.TestCase):
    def test_resample_identity(self):
        s = np.array([1.0, 3.0, 2.0, 5.0])
        self.assertIs(conditioning.resample(s, len(s)), s)

    def test_resample_endpoints(self):
        s = np.array([1.0, 3.0, 2.0, 5.0, 4.0])
        for n in (2, 3, 7, 50):
            out = conditioning.resample(s, n)
            self.assertEqual(out.size, n)
            self.assertEqual(out[0], 1.0)
            self.assertEqual(out[-1], 4.0)

    def test_compact(self):
        out = conditioning.compact([np.nan, 1.0, np.nan, 2.0, 3.0])
        np.testing.assert_array_equal(out, [1.0, 2.0, 3.0])

    def test_smooth_shrinks_at_edges(self):
        out = conditioning.smooth([0.0, 3.0, 6.0], 1)
        np.testing.assert_allclose(out, [1.5, 3.0, 4.5])

    def test_require_samples(self):
        with self.assertRaises(InsufficientValidSamples) as ctx:
            conditioning.require_samples(np.zeros(5), 30, "voltage")
        self.assertEqual(ctx.exception.details["voltage_samples"], 5)


class TestMetrics(unittest.TestCase):
    def test_pf_zero_when_no_apparent_power(self):
        self.assertEqual(metrics.power_factor(0.0, 0.0), 0.0)
        pm = metrics.power_metrics(np.zeros(50), np.zeros(50))
        self.assertEqual(pm.pf, 0.0)

    def test_in_phase_and_quadrature(self):
        v = sine(400, 40, 100.0)
        pm = metrics.power_metrics(v, v / 10.0)
        self.assertAlmostEqual(pm.pf, 1.0, places=6)
        self.assertAlmostEqual(pm.q, 0.0, delta=1e-3 * pm.s)

        i = 10.0 * np.cos(2.0 * np.pi * np.arange(400) / 40)
        pm = metrics.power_metrics(v, i)
        self.assertAlmostEqual(pm.pf, 0.0, places=6)
        self.assertAlmostEqual(pm.q, pm.s, delta=1e-6 * pm.s)

    def test_pf_clamped_non_negative(self):
        v = sine(400, 40)
        pm = metrics.power_metrics(v, -v)
        self.assertEqual(pm.pf, 0.0)

    def test_resamples_to_shorter(self):
        pm = metrics.power_metrics(sine(400, 40), sine(200, 20))
        self.assertEqual(pm.samples, 200)

    def test_peak_row_top_wins_ties(self):
        self.assertEqual(metrics.peak_row([40.0, 280.0], 160.0), 40.0)
        self.assertEqual(metrics.peak_row([150.0, 290.0], 160.0), 290.0)

    def test_sample_rms_uses_magnitude(self):
        self.assertAlmostEqual(metrics.sample_rms([-3.0, 3.0, np.nan]), 3.0)
        self.assertAlmostEqual(metrics.rms_from_peak(-2.0), math.sqrt(2.0))


class TestFrequency(unittest.TestCase):
    def setUp(self):
        self.cfg = Config().phase_config("voltage", "frequency")

    def test_tiled_period_autocorrelation(self):
        x = sine(400, 40)
        lag, score = autocorrelation_lag(x, 20, 60)
        self.assertAlmostEqual(lag, 40, delta=1)
        self.assertGreater(score, 0.5)

    def test_estimate_period(self):
        # 0.5 ms per px and 40 px period -> 20 ms, 50 Hz
        est = estimate_period(sine(400, 40), 0.0005, self.cfg)
        self.assertEqual(est.method, "autocorrelation")
        self.assertAlmostEqual(est.freq_hz, 50.0, delta=1.5)

    def test_extrema_fallback(self):
        cfg = replace(self.cfg, autocorr_min_score=1.01)
        est = estimate_period(sine(400, 40), 0.0005, cfg)
        self.assertEqual(est.method, "extrema")
        self.assertAlmostEqual(est.lag_px, 40.0, delta=1.0)
        self.assertAlmostEqual(extrema_period(sine(400, 40), 24, 60, 0.03), 40.0, delta=1.0)

    def test_inconclusive(self):
        with self.assertRaises(InconclusivePeriod):
            estimate_period(np.zeros(400), 0.0005, self.cfg)

    def test_degenerate_window(self):
        with self.assertRaises(DegenerateLagWindow):
            lag_window(0.02, 0.012, 0.030, 400)
        with self.assertRaises(DegenerateLagWindow):
            lag_window(0.0002, 0.012, 0.030, 50)
        min_lag, max_lag = lag_window(0.0005, 0.012, 0.030, 400)
        self.assertEqual(min_lag, 24)
        self.assertIn(max_lag, (59, 60))

    def test_seconds_per_pixel(self):
        self.assertAlmostEqual(seconds_per_pixel([50, 100, 150, 200], 0.01), 0.0002)
        with self.assertRaises(InsufficientReferenceLines):
            seconds_per_pixel([50], 0.01)


class TestDecodeAndROI(unittest.TestCase):
    def test_decode_roundtrip(self):
        img = draw_phase(width=200, height=320)
        out = decode_image(encode_png(img))
        np.testing.assert_array_equal(out, img)

    def test_decode_failure(self):
        with self.assertRaises(DecodeFailure):
            decode_image(b"")
        with self.assertRaises(DecodeFailure):
            decode_image(b"definitely not a png")

    def test_decoded_image_scope(self):
        img = draw_phase(width=200, height=320)
        with decoded_image(ImageSource("p.png", encode_png(img))) as out:
            self.assertEqual(out.shape, (320, 200, 3))
        with self.assertRaises(DecodeFailure):
            with decoded_image(ImageSource("bad.png", b"nope")):
                self.fail("body must not run for undecodable bytes")

    def test_roi_clamps_to_image(self):
        cfg = Config()
        cfg.ROI_A = (-10, -10, 50, 50)
        cfg.ROI_C = (500, 500, 100, 100)
        roi = ROIManager(cfg)
        img = np.zeros((100, 200, 3), dtype=np.uint8)
        self.assertEqual(roi.get_crop(img, "A").shape, (40, 40, 3))
        self.assertEqual(roi.get_crop(img, "C").size, 0)


class TestPhaseResult(unittest.TestCase):
    def test_to_dict_drops_missing_and_non_finite(self):
        res = PhaseResult(phase="A", mode="frequency", unit="Hz", freq_hz=float("nan"), period_ms=20.0)
        out = res.to_dict()
        self.assertNotIn("freq_hz", out)
        self.assertEqual(out["period_ms"], 20.0)
        self.assertNotIn("error", out)
        self.assertTrue(res.ok)


if __name__ == "__main__":
    unittest.main()
