"""Tests for extremum search and multi-match suppression."""

import numpy as np
import pytest

from libtmatch.method import MatchTemplateMethod as M
from libtmatch.search import Extremes, Match, Rect, find_extremes, find_matches


class TestFindExtremes:

    def test_locations_are_x_y(self):
        grid = np.zeros((4, 6), dtype=np.float32)
        grid[1, 4] = 5.0
        grid[3, 2] = -2.0
        ext = find_extremes(grid)
        assert ext.max_location == (4, 1)
        assert ext.min_location == (2, 3)
        assert (ext.min_value, ext.max_value) == (-2.0, 5.0)

    def test_ties_keep_first_in_raster_order(self):
        grid = np.zeros((3, 3), dtype=np.float32)
        grid[0, 2] = grid[2, 0] = 1.0
        ext = find_extremes(grid)
        assert ext.max_location == (2, 0)
        assert ext.min_location == (0, 0)

    def test_nan_cells_are_ignored(self):
        grid = np.array([[np.nan, 0.3], [0.9, np.nan]], dtype=np.float32)
        ext = find_extremes(grid)
        assert ext.max_location == (0, 1)
        assert ext.min_location == (1, 0)
        assert ext.max_value == pytest.approx(0.9)

    def test_all_nan_grid(self):
        ext = find_extremes(np.full((2, 2), np.nan, dtype=np.float32))
        assert np.isnan(ext.min_value) and np.isnan(ext.max_value)
        assert ext.min_location == ext.max_location == (0, 0)

    def test_single_cell(self):
        ext = find_extremes(np.array([[0.5]], dtype=np.float32))
        assert ext == Extremes(0.5, 0.5, (0, 0), (0, 0))

    def test_best_by_polarity(self):
        ext = Extremes(0.1, 0.8, (1, 2), (3, 4))
        assert ext.best_value(M.SumOfSquaredErrors) == 0.1
        assert ext.best_location(M.SumOfAbsoluteErrors) == (1, 2)
        assert ext.best_value(M.CCOEFF_NORMED) == 0.8
        assert ext.best_location(M.CrossCorrelation) == (3, 4)


class TestFindMatches:

    @staticmethod
    def _error_grid(shape, minima):
        grid = np.full(shape, 100.0, dtype=np.float32)
        for (x, y), value in minima.items():
            grid[y, x] = value
        return grid

    def test_separated_instances_all_found(self):
        minima = {(2, 2): 1.0, (20, 3): 2.0, (5, 15): 0.5}
        grid = self._error_grid((24, 30), minima)
        matches = find_matches(grid, 6, 6, threshold=10.0)
        assert [m.location for m in matches] == [(2, 2), (20, 3), (5, 15)]
        assert [m.value for m in matches] == [1.0, 2.0, 0.5]

    def test_overlapping_cells_merge_to_better(self):
        grid = self._error_grid((10, 10), {(2, 2): 5.0, (3, 3): 1.0, (4, 2): 3.0})
        matches = find_matches(grid, 4, 4, threshold=10.0)
        assert len(matches) == 1
        assert matches[0].location == (3, 3)
        assert matches[0].value == 1.0

    def test_worse_neighbor_does_not_replace(self):
        grid = self._error_grid((10, 10), {(2, 2): 1.0, (3, 2): 5.0})
        matches = find_matches(grid, 4, 4, threshold=10.0)
        assert matches == [Match(location=(2, 2), value=1.0)]

    def test_equal_neighbor_keeps_first(self):
        grid = self._error_grid((10, 10), {(2, 2): 1.0, (3, 2): 1.0})
        matches = find_matches(grid, 4, 4, threshold=10.0)
        assert matches[0].location == (2, 2)

    def test_separation_is_strict(self):
        # Exactly one template width apart on x: two detections.
        grid = self._error_grid((6, 12), {(0, 0): 1.0, (4, 0): 1.0})
        assert len(find_matches(grid, 4, 4, threshold=10.0)) == 2

    def test_threshold_is_strict(self):
        grid = self._error_grid((5, 5), {(1, 1): 10.0})
        assert find_matches(grid, 2, 2, threshold=10.0) == []

    def test_similarity_polarity(self):
        grid = np.zeros((12, 12), dtype=np.float32)
        grid[1, 1] = 0.95
        grid[2, 2] = 0.97
        grid[9, 9] = 0.92
        matches = find_matches(grid, 4, 4, threshold=0.9, method=M.CCOEFF_NORMED)
        assert [(m.location, m.value) for m in matches] == [
            ((2, 2), pytest.approx(0.97)), ((9, 9), pytest.approx(0.92))]

    def test_error_method_matches_default(self):
        grid = self._error_grid((8, 8), {(1, 1): 0.0, (6, 6): 2.0})
        assert (find_matches(grid, 3, 3, 5.0, method=M.SumOfSquaredErrors)
                == find_matches(grid, 3, 3, 5.0))

    def test_nan_never_accepted(self):
        grid = np.full((4, 4), np.nan, dtype=np.float32)
        assert find_matches(grid, 2, 2, threshold=0.5, method=M.CCOEFF_NORMED) == []
        assert find_matches(grid, 2, 2, threshold=0.5) == []

    def test_random_grid_matches_pass_threshold(self, rng):
        grid = rng.random((40, 40), dtype=np.float32)
        matches = find_matches(grid, 5, 7, threshold=0.2)
        assert matches
        assert all(m.value < 0.2 for m in matches)
        assert len(matches) < int((grid < 0.2).sum())


class TestRect:

    def test_from_location(self):
        assert Rect.from_location((3, 4), 10, 20) == Rect(3, 4, 10, 20)

    def test_offset(self):
        assert Rect(1, 2, 5, 5).offset(10, 20) == Rect(11, 22, 5, 5)

    def test_center(self):
        assert Rect(0, 0, 4, 6).center == (2.0, 3.0)

    def test_match_rect(self):
        assert Match((7, 8), 0.5).rect(3, 2) == Rect(7, 8, 3, 2)
