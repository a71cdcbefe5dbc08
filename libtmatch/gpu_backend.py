"""GPU correlation backend.

``GPUMatcher`` owns one compute-device session: the device handle, the
pipeline compiled for the last method, and the input/template/result/staging
buffers sized for the last call.  Buffers are recreated only when the input
or template size changes; otherwise new pixels are written into the existing
buffers in place.

Raw methods (SAE, SSE, CrossCorrelation) run as a single kernel.  CCOEFF and
CCOEFF_NORMED are composed from several raw CrossCorrelation calls with the
image algebra in ``image.py``.

At most one computation is outstanding per session.  ``dispatch`` enqueues
work and returns immediately; ``wait_for_result`` blocks until the device has
copied the score grid to the host staging buffer.  There is no timeout and no
cancellation: a new ``dispatch`` discards an uncollected result.

A session is not reentrant.  Serialize calls on one instance (``MatchEngine``
does this with a lock); separate instances share nothing.

Usage::

    with GPUMatcher() as gpu:
        grid = gpu.match_template(frame, template, MatchTemplateMethod.CCOEFF_NORMED)

        gpu.dispatch(frame, template, MatchTemplateMethod.SumOfSquaredErrors)
        ...                                  # overlap host work
        grid = gpu.wait_for_result()
"""

import sys
import time
from typing import Callable, Optional, Tuple, Union

import numpy as np
import torch
import torch.nn.functional as F

from ._constants import FLAT_WINDOW_ENERGY_RATIO, SLIDING_CHUNK_ELEMENTS
from .errors import ConstructionError, TemplateTooLarge, UnsupportedMethod
from .image import (
    Image, ImageLike, as_image, ones,
    elementwise_div, elementwise_mul, image_mean, scale, sqrt, square_sum, sub,
)
from .method import MatchTemplateMethod

__all__ = ["GPUMatcher", "select_device"]

Kernel = Callable[[torch.Tensor, torch.Tensor, torch.Tensor], None]


def select_device(device: Union[str, torch.device, None] = None) -> torch.device:
    """Pick the compute device for a session.

    Args:
        device: Explicit device ("cuda", "cuda:1", "mps", "cpu").  When None,
            the best available accelerator is used: CUDA, then Apple MPS.

    Raises:
        ConstructionError: If no compute-capable device is available, or the
            requested one is not.
    """
    if device is None:
        if torch.cuda.is_available():
            return torch.device("cuda")
        mps = getattr(torch.backends, "mps", None)
        if mps is not None and mps.is_available():
            return torch.device("mps")
        raise ConstructionError("No compute-capable GPU device found")

    try:
        device = torch.device(device)
    except RuntimeError as e:
        raise ConstructionError(f"Invalid device {device!r}: {e}") from e

    if device.type == "cuda":
        if not torch.cuda.is_available():
            raise ConstructionError("CUDA device requested but CUDA is not available")
        if device.index is not None and device.index >= torch.cuda.device_count():
            raise ConstructionError(
                f"CUDA device {device.index} requested, "
                f"only {torch.cuda.device_count()} available"
            )
    elif device.type == "mps":
        mps = getattr(torch.backends, "mps", None)
        if mps is None or not mps.is_available():
            raise ConstructionError("MPS device requested but MPS is not available")
    return device


class GPUMatcher:
    """Template matching on a torch compute device with cached resources."""

    name = "gpu"

    def __init__(self, device: Union[str, torch.device, None] = None,
                 verbose: bool = False) -> None:
        """Acquire the device and set up an empty session.

        Args:
            device: Compute device, see ``select_device``.  ``"cpu"`` runs the
                same session logic on the host.
            verbose: Print dispatch/collect timings to stderr.

        Raises:
            ConstructionError: If no usable compute device exists.
        """
        self._device = select_device(device)
        self._verbose = verbose

        self._last_pipeline: Optional[Kernel] = None
        self._last_method: Optional[MatchTemplateMethod] = None

        self._last_input_size: Tuple[int, int] = (0, 0)
        self._last_template_size: Tuple[int, int] = (0, 0)
        self._last_result_size: Tuple[int, int] = (0, 0)

        self._input_buffer: Optional[torch.Tensor] = None
        self._template_buffer: Optional[torch.Tensor] = None
        self._result_buffer: Optional[torch.Tensor] = None
        self._staging_buffer: Optional[torch.Tensor] = None
        self._done_event = None

        self._matching_ongoing = False
        self._closed = False
        self._dispatch_time = 0.0

        # Instrumentation
        self.reallocation_count = 0
        self.pipeline_compile_count = 0

    # ── Lifecycle ─────────────────────────────────────────────────────

    def close(self) -> None:
        """Release device buffers and the compiled pipeline."""
        self._matching_ongoing = False
        self._done_event = None
        self._input_buffer = None
        self._template_buffer = None
        self._result_buffer = None
        self._staging_buffer = None
        self._last_pipeline = None
        self._last_method = None
        self._last_input_size = (0, 0)
        self._last_template_size = (0, 0)
        self._last_result_size = (0, 0)
        self._closed = True
        if self._device.type == "cuda":
            torch.cuda.empty_cache()

    def __enter__(self):
        return self

    def __exit__(self, *exc):
        self.close()

    # ── Public API ────────────────────────────────────────────────────

    def match_template(self, frame: ImageLike, template: ImageLike,
                       method: MatchTemplateMethod = MatchTemplateMethod.CCOEFF_NORMED
                       ) -> Image:
        """Score every offset of ``template`` over ``frame`` and wait for it.

        Args:
            frame: Search image, (H, W).
            template: Template image, (h, w), same luminance scale as frame.
            method: Scoring method.

        Returns:
            Score grid of size (W - w + 1) x (H - h + 1).

        Raises:
            TemplateTooLarge: If the template does not fit in the frame.
        """
        if method is MatchTemplateMethod.CCOEFF:
            return self._ccoeff(frame, template, normed=False)
        if method is MatchTemplateMethod.CCOEFF_NORMED:
            return self._ccoeff(frame, template, normed=True)
        self.dispatch(frame, template, method)
        return self.wait_for_result()

    def ccorr(self, frame: ImageLike, template: ImageLike) -> Image:
        """Raw cross-correlation, blocking."""
        self.dispatch(frame, template, MatchTemplateMethod.CrossCorrelation)
        return self.wait_for_result()

    def dispatch(self, frame: ImageLike, template: ImageLike,
                 method: MatchTemplateMethod) -> None:
        """Enqueue a raw-method computation without waiting for it.

        Any previous result that was not collected is discarded.  Call
        ``wait_for_result`` to obtain the score grid.

        Raises:
            UnsupportedMethod: If ``method`` has no single-kernel path.
            TemplateTooLarge: If the template does not fit in the frame.
        """
        self._check_open()
        frame, template = as_image(frame), as_image(template)
        if template.width > frame.width or template.height > frame.height:
            raise TemplateTooLarge(frame.size, template.size)

        if self._matching_ongoing:
            # Discard previous result if not collected.
            self.wait_for_result()

        if self._last_pipeline is None or self._last_method is not method:
            self._last_pipeline = self._compile_pipeline(method)
            self._last_method = method

        # Each cached size is recorded only once its buffer exists, so a
        # failed allocation leaves the session consistent for the next call.
        buffers_changed = False

        input_size = frame.size
        if self._input_buffer is None or self._last_input_size != input_size:
            buffers_changed = True
            self._input_buffer = self._create_buffer(
                "input_buffer", (frame.height, frame.width))
            self._last_input_size = input_size
        self._input_buffer.copy_(_host_tensor(frame), non_blocking=True)

        template_size = template.size
        if self._template_buffer is None or self._last_template_size != template_size:
            buffers_changed = True
            self._template_buffer = self._create_buffer(
                "template_buffer", (template.height, template.width))
            self._last_template_size = template_size
        self._template_buffer.copy_(_host_tensor(template), non_blocking=True)

        result_width = frame.width - template.width + 1
        result_height = frame.height - template.height + 1
        result_size = (result_width, result_height)

        if (self._result_buffer is None or self._staging_buffer is None
                or self._last_result_size != result_size):
            buffers_changed = True
            result_buffer = self._create_buffer(
                "result_buffer", (result_height, result_width))
            staging_buffer = self._create_buffer(
                "staging_buffer", (result_height, result_width), staging=True)
            self._result_buffer = result_buffer
            self._staging_buffer = staging_buffer
            self._last_result_size = result_size

        if buffers_changed:
            self.reallocation_count += 1

        self._dispatch_time = time.perf_counter()
        self._last_pipeline(self._input_buffer, self._template_buffer,
                            self._result_buffer)
        self._staging_buffer.copy_(self._result_buffer, non_blocking=True)

        if self._device.type == "cuda":
            self._done_event = torch.cuda.Event()
            self._done_event.record()
        self._matching_ongoing = True

    def wait_for_result(self) -> Optional[Image]:
        """Block until the outstanding computation finishes and return it.

        Returns:
            Copied-out score grid, or None if nothing was dispatched since the
            last collection.
        """
        if not self._matching_ongoing:
            return None
        self._matching_ongoing = False

        if self._device.type == "cuda":
            self._done_event.synchronize()
            self._done_event = None
        elif self._device.type == "mps":
            torch.mps.synchronize()

        result = Image(self._staging_buffer.numpy().copy())

        if self._verbose:
            print(f"[GPUMatcher] {self._last_method.name} "
                  f"{result.width}x{result.height} grid on {self._device}: "
                  f"{(time.perf_counter() - self._dispatch_time) * 1000:.1f} ms",
                  file=sys.stderr)
        return result

    # ── Properties ────────────────────────────────────────────────────

    @property
    def device(self) -> torch.device:
        return self._device

    @property
    def matching_ongoing(self) -> bool:
        """True when a dispatched result has not been collected yet."""
        return self._matching_ongoing

    @property
    def last_method(self) -> Optional[MatchTemplateMethod]:
        return self._last_method

    # ── Session internals ─────────────────────────────────────────────

    def _check_open(self) -> None:
        if self._closed:
            raise RuntimeError("GPUMatcher has been closed")

    def _compile_pipeline(self, method: MatchTemplateMethod) -> Kernel:
        """Return the kernel implementing ``method``."""
        if method is MatchTemplateMethod.SumOfAbsoluteErrors:
            kernel = _kernel_sae
        elif method is MatchTemplateMethod.SumOfSquaredErrors:
            kernel = _kernel_sse
        elif method is MatchTemplateMethod.CrossCorrelation:
            kernel = _kernel_cc
        else:
            raise UnsupportedMethod(method, "GPUMatcher raw kernels")
        self.pipeline_compile_count += 1
        return kernel

    def _create_buffer(self, label: str, shape: Tuple[int, int],
                       staging: bool = False) -> torch.Tensor:
        """Allocate a float32 buffer on the device (or host, for staging)."""
        if staging:
            return torch.empty(shape, dtype=torch.float32, device="cpu",
                               pin_memory=self._device.type == "cuda")
        return torch.empty(shape, dtype=torch.float32, device=self._device)

    def _ccoeff(self, frame: ImageLike, template: ImageLike, normed: bool) -> Image:
        """Mean-subtracted cross-correlation composed from raw CC calls.

        With M a template-sized mask of ones and n = |T|::

            T' = T - mean(T)
            CCorr(I', T') = CCorr(I, T') - mean(T') * CCorr(I, M)

        and, for the normalized form (Pearson correlation)::

            E = CCorr(I*I, M) - CCorr(I, M)^2 / n
            CCOEFF_NORMED = CCorr(I', T') / sqrt(E * sum(T'^2))
        """
        frame, template = as_image(frame), as_image(template)
        if template.width > frame.width or template.height > frame.height:
            raise TemplateTooLarge(frame.size, template.size)

        # CCOEFF is unchanged by a constant offset of the frame.  Removing the
        # global mean keeps CCorr(I*I, M) and CCorr(I, M)^2 / n small enough
        # that their float32 difference does not cancel on bright frames.
        frame = Image(frame.data - np.float32(image_mean(frame)))

        mask = ones(template.width, template.height)
        n = float(len(template))

        tc = Image(template.data - np.float32(image_mean(template)))

        # CCorr(I, M): local sum under the template footprint
        ccorr_i_m = self.ccorr(frame, mask)
        # CCorr(I, T'*M)
        ccorr_i_tc = self.ccorr(frame, tc)
        mean_tc = image_mean(tc)

        # CCorr(I', T') = CCorr(I, T'*M) - sum(T'*M)/sum(M) * CCorr(I, M)
        res = sub(ccorr_i_tc, scale(ccorr_i_m, mean_tc))
        if not normed:
            return res

        ccorr_isq_m = self.ccorr(elementwise_mul(frame, frame), mask)
        local_energy = sub(ccorr_isq_m,
                           scale(elementwise_mul(ccorr_i_m, ccorr_i_m), 1.0 / n))
        # Below float32 resolution of CCorr(I*I, M) the window is flat: zero
        # energy, so the cell comes out NaN or +/-inf like on the CPU.
        flat = local_energy.data <= ccorr_isq_m.data * np.float32(FLAT_WINDOW_ENERGY_RATIO)
        local_energy = Image(np.where(flat, np.float32(0.0), local_energy.data))
        tc_sq_sum = square_sum(tc)
        return elementwise_div(res, sqrt(scale(local_energy, tc_sq_sum)))


# ── Kernels ───────────────────────────────────────────────────────────
# Each kernel reads the input (H, W) and template (h, w) buffers and writes
# every cell of the (H-h+1, W-w+1) result buffer.

def _sliding_accumulate(inp: torch.Tensor, tmpl: torch.Tensor, out: torch.Tensor,
                        reduce_: Callable[[torch.Tensor], torch.Tensor]) -> None:
    """out[y, x] = sum over the window of reduce_(window - template).

    Output rows are processed in chunks so the (rows, out_w, tmpl_w)
    temporary stays under ``SLIDING_CHUNK_ELEMENTS`` elements.
    """
    out_h, out_w = out.shape
    tmpl_h, tmpl_w = tmpl.shape
    chunk = max(1, SLIDING_CHUNK_ELEMENTS // (out_w * tmpl_w))
    out.zero_()
    for y0 in range(0, out_h, chunk):
        y1 = min(y0 + chunk, out_h)
        for dy in range(tmpl_h):
            # (y1 - y0, out_w, tmpl_w) view of every window row at this offset
            rows = inp[y0 + dy:y1 + dy].unfold(1, tmpl_w, 1)
            out[y0:y1].add_(reduce_(rows - tmpl[dy]).sum(dim=-1))


def _kernel_sae(inp: torch.Tensor, tmpl: torch.Tensor, out: torch.Tensor) -> None:
    _sliding_accumulate(inp, tmpl, out, torch.Tensor.abs_)


def _kernel_sse(inp: torch.Tensor, tmpl: torch.Tensor, out: torch.Tensor) -> None:
    _sliding_accumulate(inp, tmpl, out, torch.Tensor.square_)


def _kernel_cc(inp: torch.Tensor, tmpl: torch.Tensor, out: torch.Tensor) -> None:
    # conv2d is a cross-correlation; TF32 would cost ~3 decimal digits.
    with torch.backends.cudnn.flags(enabled=torch.backends.cudnn.enabled,
                                    benchmark=torch.backends.cudnn.benchmark,
                                    deterministic=torch.backends.cudnn.deterministic,
                                    allow_tf32=False):
        res = F.conv2d(inp[None, None], tmpl[None, None])
    out.copy_(res[0, 0])


def _host_tensor(image: Image) -> torch.Tensor:
    data = image.data
    if not data.flags.writeable:
        data = data.copy()
    return torch.from_numpy(data)
