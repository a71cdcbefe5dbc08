"""Thresholded single- and multi-match helpers.

These turn a backend's score grid into the pixel rectangles higher-level
analyzers consume.  Thresholds are in the units of the chosen method; see
``_constants.DEFAULT_THRESHOLDS`` for the defaults.
"""

import sys
import time
from dataclasses import dataclass, field
from typing import Any, List, Optional

from ._constants import DEFAULT_THRESHOLDS
from .image import ImageLike, as_image
from .method import MatchTemplateMethod
from .search import Match, Rect, find_extremes, find_matches

__all__ = ["MultiMatchResult", "match_best", "match_all", "resolve_threshold"]


@dataclass
class MultiMatchResult:
    """All detections of one template in one frame."""
    rects: List[Rect] = field(default_factory=list)
    matches: List[Match] = field(default_factory=list)


def resolve_threshold(method: MatchTemplateMethod,
                      threshold: Optional[float]) -> float:
    """Return ``threshold``, or the method's default when it is None.

    Raises:
        ValueError: If ``threshold`` is None and the method has no default.
    """
    if threshold is not None:
        return threshold
    if method not in DEFAULT_THRESHOLDS:
        raise ValueError(
            f"No default threshold for {method.name}; pass threshold explicitly"
        )
    return DEFAULT_THRESHOLDS[method]


def match_best(frame: ImageLike, template: ImageLike, backend: Any,
               method: MatchTemplateMethod = MatchTemplateMethod.CCOEFF_NORMED,
               threshold: Optional[float] = None,
               verbose: bool = False) -> Optional[Rect]:
    """Locate the single best occurrence of ``template`` in ``frame``.

    Error metrics fail when the minimum is at or above ``threshold``;
    similarity metrics fail when the maximum is at or below it.

    Returns:
        Template-sized ``Rect`` at the best location, or None.
    """
    frame, template = as_image(frame), as_image(template)
    threshold = resolve_threshold(method, threshold)

    t0 = time.perf_counter()
    extremes = find_extremes(backend.match_template(frame, template, method))
    if verbose:
        print(f"[match_best] {method.name} cost "
              f"{(time.perf_counter() - t0) * 1000:.1f} ms, {extremes}",
              file=sys.stderr)

    if not method.accepts(extremes.best_value(method), threshold):
        return None
    return Rect.from_location(extremes.best_location(method),
                              template.width, template.height)


def match_all(frame: ImageLike, template: ImageLike, backend: Any,
              method: MatchTemplateMethod = MatchTemplateMethod.CCOEFF_NORMED,
              threshold: Optional[float] = None,
              verbose: bool = False) -> MultiMatchResult:
    """Locate every occurrence of ``template`` in ``frame``.

    Detections closer than one template footprint are merged, keeping the
    better-scoring one.
    """
    frame, template = as_image(frame), as_image(template)
    threshold = resolve_threshold(method, threshold)

    t0 = time.perf_counter()
    grid = backend.match_template(frame, template, method)
    matches = find_matches(grid, template.width, template.height, threshold,
                           method=method)
    if verbose:
        print(f"[match_all] {method.name} found {len(matches)} matches, cost "
              f"{(time.perf_counter() - t0) * 1000:.1f} ms", file=sys.stderr)

    rects = [m.rect(template.width, template.height) for m in matches]
    return MultiMatchResult(rects=rects, matches=matches)
