"""libtmatch: GPU-accelerated template matching with a CPU fallback."""

from .method import MatchTemplateMethod
from .image import Image
from .search import Extremes, Match, Rect, find_extremes, find_matches
from .cpu_backend import CPUMatcher
from .gpu_backend import GPUMatcher
from .best_matcher import BestMatch, BestMatcher, classify
from .matcher import MultiMatchResult, match_all, match_best
from .engine import MatchEngine
from .errors import (
    MatchError, ConstructionError, DimensionMismatch, TemplateTooLarge,
    OutOfBounds, UnsupportedMethod, NoCandidates,
)

__all__ = ["MatchTemplateMethod", "Image", "Extremes", "Match", "Rect",
           "find_extremes", "find_matches", "CPUMatcher", "GPUMatcher",
           "BestMatch", "BestMatcher", "classify", "MultiMatchResult",
           "match_all", "match_best", "MatchEngine",
           "MatchError", "ConstructionError", "DimensionMismatch",
           "TemplateTooLarge", "OutOfBounds", "UnsupportedMethod", "NoCandidates"]
