"""CPU correlation backend.

Computes normalized cross-correlation (Pearson correlation over every
template-sized window) without a direct O(N*M) sliding sum:

1. Raw cross-correlation of frame and template via FFT convolution,
   restricted to the "valid" region.
2. Summed-area tables of the frame and of the squared frame give the sum
   and sum of squares under every window in O(1).
3. Template sum, sum of squares, mean and variance are computed once.
4. Each cell is normalized::

       score = (raw - local_sum * t_mean) / sqrt(local_var * t_var) / n

Flat windows or a flat template have zero variance and produce NaN or
+/-inf cells.  These are returned as-is; threshold comparisons reject them.

The other methods reuse the same building blocks so this backend can stand
in for the GPU one for every ``MatchTemplateMethod``.

Usage::

    matcher = CPUMatcher()
    grid = matcher.match_template(frame, template)   # CCOEFF_NORMED
    grid = matcher.match_template(frame, template, MatchTemplateMethod.SumOfSquaredErrors)
"""

import sys
import time

import numpy as np
from scipy.signal import fftconvolve

from . import integral
from ._constants import SLIDING_CHUNK_ELEMENTS
from .errors import TemplateTooLarge, UnsupportedMethod
from .image import Image, ImageLike, as_image
from .method import MatchTemplateMethod

__all__ = ["CPUMatcher", "match_template_cpu"]


class CPUMatcher:
    """Stateless CPU backend.  Safe to share between threads."""

    name = "cpu"

    def __init__(self, verbose: bool = False) -> None:
        """
        Args:
            verbose: Print per-stage timings to stderr.
        """
        self._verbose = verbose

    def match_template(self, frame: ImageLike, template: ImageLike,
                       method: MatchTemplateMethod = MatchTemplateMethod.CCOEFF_NORMED
                       ) -> Image:
        """Slide ``template`` over ``frame`` and score every offset.

        Args:
            frame: Search image, (H, W).
            template: Template image, (h, w), same luminance scale as frame.
            method: Scoring method.

        Returns:
            Score grid of size (W - w + 1) x (H - h + 1).

        Raises:
            TemplateTooLarge: If the template does not fit in the frame.
        """
        frame, template = as_image(frame), as_image(template)
        _check_fits(frame, template)

        t0 = time.perf_counter()
        image = frame.data.astype(np.float64)
        kernel = template.data.astype(np.float64)

        if method is MatchTemplateMethod.SumOfAbsoluteErrors:
            res = _sum_of_absolute_errors(image, kernel)
        elif method is MatchTemplateMethod.CrossCorrelation:
            res = _cross_correlate(image, kernel)
        elif method in (MatchTemplateMethod.SumOfSquaredErrors,
                        MatchTemplateMethod.CCOEFF,
                        MatchTemplateMethod.CCOEFF_NORMED):
            res = self._integral_method(image, kernel, method)
        else:
            raise UnsupportedMethod(method, "CPUMatcher")

        if self._verbose:
            print(f"[CPUMatcher] {method.name} {frame.width}x{frame.height} / "
                  f"{template.width}x{template.height}: "
                  f"{(time.perf_counter() - t0) * 1000:.1f} ms", file=sys.stderr)
        return Image(res.astype(np.float32))

    def _integral_method(self, image: np.ndarray, kernel: np.ndarray,
                         method: MatchTemplateMethod) -> np.ndarray:
        t0 = time.perf_counter()
        raw = _cross_correlate(image, kernel)
        t_fft = time.perf_counter()

        kernel_h, kernel_w = kernel.shape
        n = kernel.size
        local_sqsum = integral.window_sums(integral.build(image * image),
                                           kernel_w, kernel_h)
        t_integral = time.perf_counter()

        if method is MatchTemplateMethod.SumOfSquaredErrors:
            # sum((I - T)^2) = sum(I^2) - 2 sum(I*T) + sum(T^2)
            res = local_sqsum - 2.0 * raw + float(np.sum(kernel * kernel))
            # Round-off can push exact matches slightly below zero.
            return np.maximum(res, 0.0)

        local_sum = integral.window_sums(integral.build(image), kernel_w, kernel_h)

        kernel_sum = float(kernel.sum())
        kernel_sqsum = float(np.sum(kernel * kernel))
        kernel_avg = kernel_sum / n
        kernel_var = kernel_sqsum / n - kernel_avg * kernel_avg

        numerator = raw - local_sum * kernel_avg
        if method is MatchTemplateMethod.CCOEFF:
            return numerator

        value_avg = local_sum / n
        value_var = local_sqsum / n - value_avg * value_avg
        with np.errstate(divide="ignore", invalid="ignore"):
            res = numerator / (np.sqrt(value_var * kernel_var) * n)

        if self._verbose:
            t_end = time.perf_counter()
            print(f"[CPUMatcher] fftcorrelate {(t_fft - t0) * 1000:.1f} ms, "
                  f"integral {(t_integral - t_fft) * 1000:.1f} ms, "
                  f"normalize {(t_end - t_integral) * 1000:.1f} ms",
                  file=sys.stderr)
        return res


def match_template_cpu(frame: ImageLike, template: ImageLike,
                       method: MatchTemplateMethod = MatchTemplateMethod.CCOEFF_NORMED
                       ) -> Image:
    """Shorthand for ``CPUMatcher().match_template(frame, template, method)``."""
    return CPUMatcher().match_template(frame, template, method)


def _check_fits(frame: Image, template: Image) -> None:
    if template.width > frame.width or template.height > frame.height:
        raise TemplateTooLarge(frame.size, template.size)


def _cross_correlate(image: np.ndarray, kernel: np.ndarray) -> np.ndarray:
    """Valid-region cross-correlation via FFT convolution."""
    return fftconvolve(image, kernel[::-1, ::-1], mode="valid")


def _sum_of_absolute_errors(image: np.ndarray, kernel: np.ndarray) -> np.ndarray:
    """Direct sliding sum of |I - T|, one template row at a time."""
    kernel_h, kernel_w = kernel.shape
    out_h = image.shape[0] - kernel_h + 1
    out_w = image.shape[1] - kernel_w + 1
    res = np.zeros((out_h, out_w), dtype=np.float64)
    # Chunks of output rows bound the (rows, out_w, kernel_w) temporary.
    chunk = max(1, SLIDING_CHUNK_ELEMENTS // (out_w * kernel_w))
    for y0 in range(0, out_h, chunk):
        y1 = min(y0 + chunk, out_h)
        for dy in range(kernel_h):
            rows = np.lib.stride_tricks.sliding_window_view(
                image[y0 + dy:y1 + dy], kernel_w, axis=1)
            res[y0:y1] += np.abs(rows - kernel[dy]).sum(axis=-1)
    return res
