"""Extremum and multi-match search over score grids.

``find_extremes`` reduces a grid to its global minimum and maximum.
``find_matches`` returns every cell that passes a threshold, merging cells
closer than one template footprint into a single detection (greedy,
single-pass non-maximum suppression).
"""

from dataclasses import dataclass
from typing import List, Optional, Tuple

import numpy as np

from .image import ImageLike, as_image
from .method import MatchTemplateMethod

__all__ = ["Extremes", "Match", "Rect", "find_extremes", "find_matches"]

Location = Tuple[int, int]


@dataclass(frozen=True)
class Rect:
    """Pixel rectangle of a detection, always template-sized."""
    x: int
    y: int
    width: int
    height: int

    @classmethod
    def from_location(cls, location: Location, width: int, height: int) -> "Rect":
        return cls(int(location[0]), int(location[1]), int(width), int(height))

    def offset(self, dx: int, dy: int) -> "Rect":
        """Same rectangle shifted by (dx, dy), e.g. back out of a cropped ROI."""
        return Rect(self.x + dx, self.y + dy, self.width, self.height)

    @property
    def center(self) -> Tuple[float, float]:
        return self.x + self.width / 2.0, self.y + self.height / 2.0


@dataclass(frozen=True)
class Extremes:
    """Global minimum and maximum of a score grid and their (x, y) locations."""
    min_value: float
    max_value: float
    min_location: Location
    max_location: Location

    def best_value(self, method: MatchTemplateMethod) -> float:
        """Minimum for error metrics, maximum for similarity metrics."""
        return self.min_value if method.is_error_metric else self.max_value

    def best_location(self, method: MatchTemplateMethod) -> Location:
        return self.min_location if method.is_error_metric else self.max_location


@dataclass
class Match:
    """One accepted detection; updated in place during suppression."""
    location: Location
    value: float

    def rect(self, template_width: int, template_height: int) -> Rect:
        return Rect.from_location(self.location, template_width, template_height)


def find_extremes(grid: ImageLike) -> Extremes:
    """Find the smallest and largest values and their locations.

    Ties keep the first location in raster order.  NaN cells are never
    selected; an all-NaN grid reports NaN values at (0, 0).
    """
    data = as_image(grid).data
    width = data.shape[1]
    flat = data.ravel()

    valid = ~np.isnan(flat)
    if not valid.any():
        return Extremes(float("nan"), float("nan"), (0, 0), (0, 0))

    min_idx = int(np.argmin(np.where(valid, flat, np.inf)))
    max_idx = int(np.argmax(np.where(valid, flat, -np.inf)))

    return Extremes(
        min_value=float(flat[min_idx]),
        max_value=float(flat[max_idx]),
        min_location=(min_idx % width, min_idx // width),
        max_location=(max_idx % width, max_idx // width),
    )


def find_matches(grid: ImageLike, template_width: int, template_height: int,
                 threshold: float,
                 method: Optional[MatchTemplateMethod] = None) -> List[Match]:
    """Find every detection that passes ``threshold``.

    Cells are visited in raster order.  An accepted cell closer than
    ``template_width`` on x and ``template_height`` on y to an existing match
    (most recent first) is the same detection: it replaces that match only
    if its score is strictly better, otherwise it is dropped.  An accepted
    cell with no such neighbor starts a new match.

    Args:
        grid: Score grid.
        template_width: Template width, the minimum x separation.
        template_height: Template height, the minimum y separation.
        threshold: Acceptance threshold.
        method: Scoring method of ``grid``.  None (default) uses the error
            metric convention: accept ``value < threshold``, lower is better.
            A similarity method accepts ``value > threshold``, higher is better.

    Returns:
        Matches in discovery order.
    """
    data = as_image(grid).data
    lower_is_better = method is None or method.is_error_metric

    with np.errstate(invalid="ignore"):
        accepted = data < threshold if lower_is_better else data > threshold

    matches: List[Match] = []
    # argwhere yields (y, x) pairs in raster order
    for y, x in np.argwhere(accepted):
        x, y = int(x), int(y)
        value = float(data[y, x])

        for m in reversed(matches):
            if (abs(m.location[0] - x) < template_width
                    and abs(m.location[1] - y) < template_height):
                better = value < m.value if lower_is_better else value > m.value
                if better:
                    m.location = (x, y)
                    m.value = value
                break
        else:
            matches.append(Match(location=(x, y), value=value))

    return matches
