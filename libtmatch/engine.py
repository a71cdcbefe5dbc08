"""MatchEngine: one backend behind a call-boundary lock.

Usage:
    with MatchEngine() as engine:                       # GPU, else CPU
        grid = engine.match_template(frame, template)
        rect = engine.locate(frame, button)             # Rect or None
        hits = engine.locate_all(frame, icon).rects
        label = engine.classify(crop, [("a", img_a), ("b", img_b)])
"""

import threading
import warnings
from typing import Hashable, Optional, Sequence, Union

from .best_matcher import BestMatcher, Candidate
from .cpu_backend import CPUMatcher
from .errors import ConstructionError
from .gpu_backend import GPUMatcher
from .image import Image, ImageLike
from .matcher import MultiMatchResult, match_all, match_best
from .method import MatchTemplateMethod
from .search import Extremes, Rect, find_extremes

__all__ = ["MatchEngine"]

_BACKENDS = ("auto", "gpu", "cpu")


class MatchEngine:
    """Template-matching engine owning a single GPU or CPU backend.

    Every public call holds the engine lock, so one engine may be shared
    between threads.  Independent engines run in parallel.
    """

    def __init__(self, backend: str = "auto", device=None,
                 method: MatchTemplateMethod = MatchTemplateMethod.CCOEFF_NORMED,
                 verbose: bool = False) -> None:
        """Create the engine and its backend.

        Args:
            backend: ``"gpu"`` (fail without a device), ``"cpu"``, or
                ``"auto"`` (GPU, falling back to CPU with a warning).
            device: Torch device for the GPU backend, see
                ``gpu_backend.select_device``.
            method: Default scoring method.
            verbose: Print timings to stderr.

        Raises:
            ConstructionError: If ``backend="gpu"`` and no device is usable.
            ValueError: If ``backend`` is unknown.
        """
        if backend not in _BACKENDS:
            raise ValueError(f"Unknown backend {backend!r}. Available: {_BACKENDS}")

        self._method = method
        self._verbose = verbose
        self._lock = threading.Lock()

        if backend == "cpu":
            self._backend = CPUMatcher(verbose=verbose)
        else:
            try:
                self._backend = GPUMatcher(device=device, verbose=verbose)
            except ConstructionError as e:
                if backend == "gpu":
                    raise
                warnings.warn(f"GPU backend unavailable ({e}); using CPU backend",
                              RuntimeWarning, stacklevel=2)
                self._backend = CPUMatcher(verbose=verbose)

    # ── Lifecycle ─────────────────────────────────────────────────────

    def close(self) -> None:
        """Release the GPU session, if any."""
        with self._lock:
            close = getattr(self._backend, "close", None)
            if close is not None:
                close()

    def __enter__(self):
        return self

    def __exit__(self, *exc):
        self.close()

    # ── Matching ──────────────────────────────────────────────────────

    def match_template(self, frame: ImageLike, template: ImageLike,
                       method: Optional[MatchTemplateMethod] = None) -> Image:
        """Dense score grid of ``template`` over ``frame``."""
        with self._lock:
            return self._backend.match_template(frame, template,
                                                method or self._method)

    def find_best(self, frame: ImageLike, template: ImageLike,
                  method: Optional[MatchTemplateMethod] = None) -> Extremes:
        """Extremes of the score grid."""
        return find_extremes(self.match_template(frame, template, method))

    def locate(self, frame: ImageLike, template: ImageLike,
               method: Optional[MatchTemplateMethod] = None,
               threshold: Optional[float] = None) -> Optional[Rect]:
        """Best occurrence of ``template`` passing ``threshold``, or None."""
        with self._lock:
            return match_best(frame, template, self._backend,
                              method or self._method, threshold,
                              verbose=self._verbose)

    def locate_all(self, frame: ImageLike, template: ImageLike,
                   method: Optional[MatchTemplateMethod] = None,
                   threshold: Optional[float] = None) -> MultiMatchResult:
        """Every occurrence of ``template`` passing ``threshold``."""
        with self._lock:
            return match_all(frame, template, self._backend,
                             method or self._method, threshold,
                             verbose=self._verbose)

    def classify(self, template: ImageLike, candidates: Sequence[Candidate],
                 method: Optional[MatchTemplateMethod] = None
                 ) -> Optional[Hashable]:
        """Label of the candidate image that best contains ``template``.

        Raises:
            NoCandidates: If ``candidates`` is empty.
        """
        matcher = BestMatcher(candidates, backend=self._backend,
                              method=method or self._method,
                              verbose=self._verbose)
        with self._lock:
            return matcher.classify(template)

    # ── Properties ────────────────────────────────────────────────────

    @property
    def backend(self) -> Union[CPUMatcher, GPUMatcher]:
        return self._backend

    @property
    def backend_name(self) -> str:
        """``"gpu"`` or ``"cpu"``."""
        return self._backend.name
