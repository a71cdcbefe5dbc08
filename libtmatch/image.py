"""Image buffer and image algebra.

An ``Image`` is a 2-D grid of float32 values stored row-major as a numpy
array of shape ``(height, width)``.  It is used both for grayscale frames and
templates and for the score grids produced by the backends.

The algebra is a set of named pure functions rather than operator overloads:
every function returns a new owned ``Image`` and never mutates its inputs.
Binary operations require identical dimensions; there is no broadcasting.

Usage::

    local_sum = ccorr(frame, ones(tw, th))
    res = sub(ccorr(frame, tc), scale(local_sum, mean_tc))
"""

from typing import Optional, Tuple, Union

import numpy as np

from .errors import DimensionMismatch

__all__ = [
    "Image", "as_image", "zeros", "ones",
    "add", "sub", "elementwise_mul", "elementwise_div", "scale", "divide", "sqrt",
    "image_sum", "image_mean", "square_sum",
]

ImageLike = Union["Image", np.ndarray]


class Image:
    """2-D float32 buffer that either owns or borrows its storage.

    Args:
        data: 2-D array of shape (height, width), or a flat buffer when
            ``width`` and ``height`` are given.
        width: Image width.  Required for flat buffers.
        height: Image height.  Required for flat buffers.
        copy: Always copy ``data`` into owned storage.  When False (default)
            a C-contiguous float32 array is borrowed as-is.

    Raises:
        DimensionMismatch: If ``data.size != width * height`` or ``data`` is
            not 2-D and no dimensions were given.
    """

    __slots__ = ("_data", "_owned")

    def __init__(self, data, width: Optional[int] = None,
                 height: Optional[int] = None, copy: bool = False) -> None:
        arr = np.asarray(data)
        if width is not None or height is not None:
            if width is None or height is None:
                raise DimensionMismatch("Both width and height are required")
            if arr.size != width * height:
                raise DimensionMismatch(
                    f"Buffer has {arr.size} elements, expected "
                    f"{width}x{height}={width * height}"
                )
            arr = arr.reshape(height, width)
        elif arr.ndim != 2:
            raise DimensionMismatch(
                f"Expected 2D single-channel image, got shape {arr.shape}"
            )

        if copy:
            arr = np.array(arr, dtype=np.float32, order="C", copy=True)
            owned = True
        else:
            converted = np.ascontiguousarray(arr, dtype=np.float32)
            owned = converted is not arr and not np.shares_memory(converted, arr)
            arr = converted
        self._data = arr
        self._owned = owned

    # ── Properties ────────────────────────────────────────────────────

    @property
    def data(self) -> np.ndarray:
        """Underlying (height, width) float32 array."""
        return self._data

    @property
    def width(self) -> int:
        return self._data.shape[1]

    @property
    def height(self) -> int:
        return self._data.shape[0]

    @property
    def size(self) -> Tuple[int, int]:
        """(width, height)."""
        return self.width, self.height

    @property
    def owned(self) -> bool:
        """False when the image borrows a caller's array."""
        return self._owned

    def to_numpy(self) -> np.ndarray:
        """Return a copy of the pixels as a (height, width) float32 array."""
        return self._data.copy()

    def __len__(self) -> int:
        return self._data.size

    def __repr__(self) -> str:
        kind = "owned" if self._owned else "borrowed"
        return f"Image({self.width}x{self.height}, {kind})"


def as_image(image: ImageLike) -> Image:
    """Wrap ``image`` as an ``Image`` without copying when possible."""
    if isinstance(image, Image):
        return image
    return Image(image)


def _new(arr: np.ndarray) -> Image:
    img = Image(arr)
    img._owned = True
    return img


def zeros(width: int, height: int) -> Image:
    return _new(np.zeros((height, width), dtype=np.float32))


def ones(width: int, height: int) -> Image:
    return _new(np.ones((height, width), dtype=np.float32))


def _check_same_size(a: Image, b: Image) -> None:
    if a.size != b.size:
        raise DimensionMismatch(
            f"Image sizes differ: {a.width}x{a.height} vs {b.width}x{b.height}"
        )


# ── Elementwise operations ────────────────────────────────────────────

def add(a: ImageLike, b: ImageLike) -> Image:
    a, b = as_image(a), as_image(b)
    _check_same_size(a, b)
    return _new(a.data + b.data)


def sub(a: ImageLike, b: ImageLike) -> Image:
    a, b = as_image(a), as_image(b)
    _check_same_size(a, b)
    return _new(a.data - b.data)


def elementwise_mul(a: ImageLike, b: ImageLike) -> Image:
    a, b = as_image(a), as_image(b)
    _check_same_size(a, b)
    return _new(a.data * b.data)


def elementwise_div(a: ImageLike, b: ImageLike) -> Image:
    """Divide ``a`` by ``b`` cell by cell.

    Division by zero produces inf/NaN cells; no warning is raised.
    """
    a, b = as_image(a), as_image(b)
    _check_same_size(a, b)
    with np.errstate(divide="ignore", invalid="ignore"):
        return _new(a.data / b.data)


def scale(a: ImageLike, factor: float) -> Image:
    """Multiply every cell by ``factor``."""
    a = as_image(a)
    return _new(a.data * np.float32(factor))


def divide(a: ImageLike, divisor: float) -> Image:
    """Divide every cell by ``divisor`` (as multiplication by its reciprocal)."""
    return scale(a, 1.0 / divisor)


def sqrt(a: ImageLike) -> Image:
    """Square root of every cell; negative cells become NaN."""
    a = as_image(a)
    with np.errstate(invalid="ignore"):
        return _new(np.sqrt(a.data))


# ── Reductions ────────────────────────────────────────────────────────

def image_sum(a: ImageLike) -> float:
    return float(as_image(a).data.sum(dtype=np.float64))


def image_mean(a: ImageLike) -> float:
    a = as_image(a)
    return image_sum(a) / len(a)


def square_sum(a: ImageLike) -> float:
    data = as_image(a).data.astype(np.float64)
    return float(np.sum(data * data))
