"""Tests for the FFT + integral-image CPU backend."""

import threading
from unittest.mock import patch

import numpy as np
import pytest

from libtmatch.cpu_backend import CPUMatcher, match_template_cpu
from libtmatch.errors import TemplateTooLarge
from libtmatch.method import MatchTemplateMethod as M
from libtmatch.search import find_extremes

ALL_METHODS = list(M)


class TestAgainstReference:
    """Every method agrees with an explicit sliding-window computation."""

    @pytest.mark.parametrize("method", ALL_METHODS, ids=lambda m: m.name)
    def test_matches_brute_force(self, frame, method, reference_match):
        template = frame[10:18, 20:32].copy()
        grid = CPUMatcher().match_template(frame, template, method)
        expected = reference_match(frame, template, method)
        assert (grid.height, grid.width) == expected.shape
        scale = max(1.0, float(np.abs(expected).max()))
        np.testing.assert_allclose(grid.data, expected, atol=1e-4 * scale)

    @pytest.mark.parametrize("budget", [1, 1600], ids=["row", "uneven"])
    def test_chunked_sae_matches_brute_force(self, frame, budget, reference_match):
        template = frame[3:12, 5:14].copy()
        with patch("libtmatch.cpu_backend.SLIDING_CHUNK_ELEMENTS", budget):
            grid = match_template_cpu(frame, template, M.SumOfAbsoluteErrors)
        expected = reference_match(frame, template, M.SumOfAbsoluteErrors)
        np.testing.assert_allclose(grid.data, expected, atol=1e-4 * expected.max())

    def test_grid_size(self, frame):
        grid = match_template_cpu(frame, np.zeros((7, 5), dtype=np.float32) + 0.5)
        assert grid.size == (64 - 5 + 1, 48 - 7 + 1)

    def test_default_method_is_normalized(self, frame):
        template = frame[0:8, 0:8]
        grid = CPUMatcher().match_template(frame, template)
        assert find_extremes(grid).max_value == pytest.approx(1.0, abs=1e-5)


class TestSelfMatch:

    def test_normalized_self_match_is_one(self, frame):
        grid = match_template_cpu(frame, frame, M.CCOEFF_NORMED)
        assert grid.size == (1, 1)
        assert grid.data[0, 0] == pytest.approx(1.0, abs=1e-5)

    def test_crop_peaks_at_its_location(self, frame):
        template = frame[20:30, 33:45]
        ext = find_extremes(match_template_cpu(frame, template))
        assert ext.max_location == (33, 20)
        assert ext.max_value == pytest.approx(1.0, abs=1e-5)

    @pytest.mark.parametrize("method", [M.SumOfAbsoluteErrors, M.SumOfSquaredErrors])
    def test_error_metric_self_match_is_zero(self, frame, method):
        template = frame[5:13, 7:19]
        ext = find_extremes(match_template_cpu(frame, template, method))
        assert ext.min_location == (7, 5)
        assert ext.min_value == pytest.approx(0.0, abs=1e-4)

    def test_scale_agnostic(self, frame):
        """[0, 1] and [0, 255] inputs give the same normalized scores."""
        template = frame[3:11, 3:11]
        a = match_template_cpu(frame, template).data
        b = match_template_cpu(frame * 255.0, template * 255.0).data
        np.testing.assert_allclose(a, b, atol=1e-4)


class TestDegenerateInputs:

    def test_flat_template_yields_nan_or_inf(self, frame):
        template = np.full((6, 6), 0.5, dtype=np.float32)
        grid = match_template_cpu(frame, template).data
        assert not np.isfinite(grid).any()

    def test_flat_patch_is_not_clamped(self, rng):
        frame = rng.random((20, 20), dtype=np.float32)
        frame[:8, :8] = 0.25
        template = rng.random((8, 8), dtype=np.float32)
        grid = match_template_cpu(frame, template).data
        assert not np.isfinite(grid[0, 0])
        assert np.isfinite(grid[10, 10])

    def test_template_too_large(self, frame):
        with pytest.raises(TemplateTooLarge):
            match_template_cpu(frame, np.zeros((49, 10), dtype=np.float32))
        with pytest.raises(TemplateTooLarge):
            match_template_cpu(frame, np.zeros((10, 65), dtype=np.float32))

    def test_inputs_not_mutated(self, frame):
        before = frame.copy()
        match_template_cpu(frame, frame[:5, :5], M.SumOfSquaredErrors)
        np.testing.assert_array_equal(frame, before)


class TestConcurrency:

    def test_shared_instance_across_threads(self, frame):
        matcher = CPUMatcher()
        template = frame[12:20, 40:50]
        expected = matcher.match_template(frame, template).data
        results = [None] * 4

        def worker(i):
            results[i] = matcher.match_template(frame, template).data

        threads = [threading.Thread(target=worker, args=(i,)) for i in range(4)]
        for t in threads:
            t.start()
        for t in threads:
            t.join()
        for res in results:
            np.testing.assert_array_equal(res, expected)


class TestOpenCVOracle:
    """Optional cross-check against cv2.matchTemplate."""

    @pytest.mark.parametrize("method, cv_name", [
        (M.CCOEFF_NORMED, "TM_CCOEFF_NORMED"),
        (M.CCOEFF, "TM_CCOEFF"),
        (M.SumOfSquaredErrors, "TM_SQDIFF"),
        (M.CrossCorrelation, "TM_CCORR"),
    ])
    def test_agrees_with_opencv(self, frame, method, cv_name):
        cv2 = pytest.importorskip("cv2")
        template = frame[15:27, 9:25].copy()
        expected = cv2.matchTemplate(frame, template, getattr(cv2, cv_name))
        grid = match_template_cpu(frame, template, method).data
        scale = max(1.0, float(np.abs(expected).max()))
        np.testing.assert_allclose(grid, expected, atol=1e-3 * scale)
