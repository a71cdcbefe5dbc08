"""Summed-area tables (integral images).

``build`` produces a table of the same size as its input where each cell
holds the sum of every input cell above and to the left of it, inclusive::

    table[y, x] = buf[y, x] + table[y-1, x] + table[y, x-1] - table[y-1, x-1]

with neighbors outside the table treated as zero.  Any axis-aligned
rectangle sum is then four lookups.  Tables accumulate in float64 so that
large frames do not lose precision in the bottom-right corner.
"""

import numpy as np

from .errors import OutOfBounds
from .image import ImageLike, as_image

__all__ = ["build", "rect_sum", "window_sums"]


def build(buffer: ImageLike) -> np.ndarray:
    """Build the summed-area table of ``buffer``.

    Args:
        buffer: 2-D image or array.

    Returns:
        (height, width) float64 array.
    """
    data = as_image(buffer).data.astype(np.float64)
    # Row prefix sums followed by column prefix sums evaluate the recurrence
    # above in row-major order.
    return np.cumsum(np.cumsum(data, axis=0), axis=1)


def rect_sum(table: np.ndarray, x: int, y: int, width: int, height: int) -> float:
    """Sum of the ``width`` x ``height`` rectangle with top-left ``(x, y)``.

    Raises:
        OutOfBounds: If the rectangle is empty or leaves the table.
    """
    table_h, table_w = table.shape
    if width < 1 or height < 1 or x < 0 or y < 0:
        raise OutOfBounds(f"Invalid rectangle ({x}, {y}, {width}, {height})")
    if x + width > table_w or y + height > table_h:
        raise OutOfBounds(
            f"Rectangle ({x}, {y}, {width}, {height}) exceeds "
            f"{table_w}x{table_h} table"
        )

    left = x - 1
    top = y - 1
    right = x + width - 1
    bottom = y + height - 1

    total = table[bottom, right]
    if left >= 0:
        total -= table[bottom, left]
    if top >= 0:
        total -= table[top, right]
    if left >= 0 and top >= 0:
        total += table[top, left]
    return float(total)


def window_sums(table: np.ndarray, width: int, height: int) -> np.ndarray:
    """Evaluate ``rect_sum`` for every ``width`` x ``height`` window at once.

    Returns:
        (table_h - height + 1, table_w - width + 1) float64 array where cell
        ``[y, x]`` equals ``rect_sum(table, x, y, width, height)``.

    Raises:
        OutOfBounds: If the window does not fit inside the table.
    """
    table_h, table_w = table.shape
    if width < 1 or height < 1 or width > table_w or height > table_h:
        raise OutOfBounds(
            f"Window {width}x{height} does not fit {table_w}x{table_h} table"
        )
    # Zero row/column in front so the four-corner lookup needs no branches.
    padded = np.zeros((table_h + 1, table_w + 1), dtype=table.dtype)
    padded[1:, 1:] = table
    return (padded[height:, width:]
            - padded[height:, :table_w + 1 - width]
            - padded[:table_h + 1 - height, width:]
            + padded[:table_h + 1 - height, :table_w + 1 - width])
