"""Shared constants for the libtmatch package.

Score thresholds are expressed in the units of the method they apply to.
"""

from .method import MatchTemplateMethod

# A normalized-correlation score at or above this value is treated as an
# exact match.  The candidate classifier stops scanning once it sees one.
EARLY_EXIT_SCORE = 0.99

# Default acceptance threshold for CCOEFF_NORMED (similarity, [-1, 1]).
CCOEFF_NORMED_THRESHOLD = 0.9

# Default acceptance threshold for SumOfSquaredErrors.  Raw SSE grows with
# template area and input scale, so this assumes [0, 1] luminance and small
# UI templates; pass an explicit threshold for anything else.
SSE_THRESHOLD = 40.0

DEFAULT_THRESHOLDS = {
    MatchTemplateMethod.CCOEFF_NORMED: CCOEFF_NORMED_THRESHOLD,
    MatchTemplateMethod.SumOfSquaredErrors: SSE_THRESHOLD,
}

# GPU CCOEFF_NORMED: a window whose local energy is at most this fraction of
# its sum of squares is flat at float32 precision and scores NaN/inf.
FLAT_WINDOW_ENERGY_RATIO = 1e-4

# Element budget for the temporary built per chunk of output rows by the
# sliding SAE/SSE loops (4M elements: 32 MB in float64, 16 MB in float32).
SLIDING_CHUNK_ELEMENTS = 1 << 22

# Maximum absolute per-cell difference tolerated between the CPU and GPU
# CCOEFF_NORMED grids for identical inputs.
CROSS_BACKEND_TOLERANCE = 1e-3
