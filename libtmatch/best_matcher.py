"""Best-candidate classifier.

Matches one template against each of a fixed set of labeled candidate
images and reports which candidate contains it best.

Usage::

    matcher = BestMatcher([("medic", medic_img), ("guard", guard_img)])
    label = matcher.classify(crop)
    best = matcher.best(crop)           # BestMatch(index, label, score)
"""

import math
import sys
import time
import warnings
from typing import Any, Hashable, List, NamedTuple, Optional, Sequence, Tuple, Union

import numpy as np

from ._constants import EARLY_EXIT_SCORE
from .cpu_backend import CPUMatcher
from .errors import NoCandidates, TemplateTooLarge
from .image import Image, ImageLike, as_image
from .method import MatchTemplateMethod
from .search import find_extremes

__all__ = ["BestMatch", "BestMatcher", "classify"]

Candidate = Union[Tuple[Hashable, ImageLike], ImageLike]


class BestMatch(NamedTuple):
    index: int
    label: Hashable
    score: float


class BestMatcher:
    """Pick the candidate image that best contains a template."""

    def __init__(self, candidates: Sequence[Candidate], backend: Any = None,
                 method: MatchTemplateMethod = MatchTemplateMethod.CCOEFF_NORMED,
                 early_exit_score: float = EARLY_EXIT_SCORE,
                 verbose: bool = False) -> None:
        """
        Args:
            candidates: ``(label, image)`` pairs (tuple or list, image an
                ndarray or ``Image``), or bare images (labelled by their index).
            backend: Object with ``match_template(frame, template, method)``.
                Defaults to a ``CPUMatcher``.
            method: Scoring method.
            early_exit_score: Stop scanning once a candidate reaches this
                score.  Only applies to CCOEFF_NORMED.
            verbose: Print per-candidate scores to stderr.

        Raises:
            NoCandidates: If ``candidates`` is empty.
        """
        self._labels: List[Hashable] = []
        self._images: List[Image] = []
        for i, candidate in enumerate(candidates):
            if (isinstance(candidate, (tuple, list)) and len(candidate) == 2
                    and isinstance(candidate[1], (np.ndarray, Image))):
                label, image = candidate
            else:
                label, image = i, candidate
            self._labels.append(label)
            self._images.append(as_image(image))

        if not self._images:
            raise NoCandidates("BestMatcher needs at least one candidate")

        self._backend = backend if backend is not None else CPUMatcher()
        self._method = method
        self._early_exit_score = early_exit_score
        self._verbose = verbose

    def best(self, template: ImageLike) -> Optional[BestMatch]:
        """Match ``template`` against every candidate, in order.

        Candidates smaller than the template are skipped with a warning.
        The first candidate reaching the best score wins ties.

        Returns:
            The winning candidate, or None when no candidate produced a
            comparable score (all skipped or NaN).
        """
        template = as_image(template)
        method = self._method
        best: Optional[BestMatch] = None
        t0 = time.perf_counter()

        for index, (label, image) in enumerate(zip(self._labels, self._images)):
            try:
                grid = self._backend.match_template(image, template, method)
            except TemplateTooLarge as e:
                warnings.warn(f"Skipping candidate {label!r}: {e}",
                              RuntimeWarning, stacklevel=2)
                continue

            score = find_extremes(grid).best_value(method)
            if self._verbose:
                print(f"[BestMatcher] candidate {label!r}: {score:.4f}",
                      file=sys.stderr)

            if best is None:
                if not math.isnan(score):
                    best = BestMatch(index, label, score)
            elif method.is_better(score, best.score):
                best = BestMatch(index, label, score)

            if (method.is_normalized and best is not None
                    and best.score >= self._early_exit_score):
                break

        if self._verbose:
            print(f"[BestMatcher] result {best}, "
                  f"cost {(time.perf_counter() - t0) * 1000:.1f} ms",
                  file=sys.stderr)
        return best

    def match_with(self, template: ImageLike) -> Optional[int]:
        """Index of the best candidate, or None."""
        best = self.best(template)
        return None if best is None else best.index

    def classify(self, template: ImageLike) -> Optional[Hashable]:
        """Label of the best candidate, or None."""
        best = self.best(template)
        return None if best is None else best.label

    @property
    def labels(self) -> List[Hashable]:
        return list(self._labels)

    @property
    def method(self) -> MatchTemplateMethod:
        return self._method


def classify(template: ImageLike, candidates: Sequence[Candidate],
             backend: Any = None,
             method: MatchTemplateMethod = MatchTemplateMethod.CCOEFF_NORMED
             ) -> Optional[Hashable]:
    """Label of the candidate that best contains ``template``.

    Raises:
        NoCandidates: If ``candidates`` is empty.
    """
    return BestMatcher(candidates, backend=backend, method=method).classify(template)
