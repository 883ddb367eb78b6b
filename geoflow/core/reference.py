"""Per-pixel reference implementation over flat contiguous buffers.

Mirrors the torch backend exactly: same window, same scan order, same
strict-less-than update and threshold gate. Batch elements own disjoint
output slots and run on a thread pool.
"""

import math
from concurrent.futures import ThreadPoolExecutor
from typing import Tuple

import numpy as np

from .camera import META_MIN_LENGTH
from .errors import ShapeError
from .matching import float32_threshold
from .transfer import check_params


def _nearest(points, n, h, w, X1, Y1, Z1, height, width, kernel_size, max_distance):
    """Return (dmin, fx, fy) for one query point; fx = fy = -1 when nothing valid."""
    dmin = max_distance
    fx = fy = -1
    for x in range(w - kernel_size, w + kernel_size + 1):
        for y in range(h - kernel_size, h + kernel_size + 1):
            if 0 <= x < width and 0 <= y < height:
                index = n * height * width + y * width + x
                X_prev = points[index * 3 + 0]
                Y_prev = points[index * 3 + 1]
                Z_prev = points[index * 3 + 2]
                if math.isnan(X_prev) or math.isnan(Y_prev) or math.isnan(Z_prev):
                    continue
                ex, ey, ez = X1 - X_prev, Y1 - Y_prev, Z1 - Z_prev
                dis = np.sqrt(ex * ex + ey * ey + ez * ez)
                if dis < dmin:
                    dmin, fx, fy = dis, x, y
    return dmin, fx, fy


def _forward_batch(n, data, points, depth, meta, top_data, top_points,
                   height, width, channels, num_meta, kernel_size, threshold, max_distance):
    m = n * num_meta
    for h in range(height):
        for w in range(width):
            index_pixel = n * height * width + h * width + w
            top_data[index_pixel * channels:(index_pixel + 1) * channels] = 0
            top_points[index_pixel * 3:(index_pixel + 1) * 3] = np.nan

            d = depth[index_pixel]
            if not d > 0:
                continue

            RX = meta[m + 9] * w + meta[m + 10] * h + meta[m + 11]
            RY = meta[m + 12] * w + meta[m + 13] * h + meta[m + 14]
            RZ = meta[m + 15] * w + meta[m + 16] * h + meta[m + 17]
            X, Y, Z = d * RX, d * RY, d * RZ
            X1 = meta[m + 30] * X + meta[m + 31] * Y + meta[m + 32] * Z + meta[m + 33]
            Y1 = meta[m + 34] * X + meta[m + 35] * Y + meta[m + 36] * Z + meta[m + 37]
            Z1 = meta[m + 38] * X + meta[m + 39] * Y + meta[m + 40] * Z + meta[m + 41]
            top_points[index_pixel * 3:(index_pixel + 1) * 3] = (X1, Y1, Z1)

            dmin, fx, fy = _nearest(points, n, h, w, X1, Y1, Z1, height, width, kernel_size, max_distance)
            if fx >= 0 and dmin < threshold:
                index = n * height * width + fy * width + fx
                top_data[index_pixel * channels:(index_pixel + 1) * channels] = \
                    data[index * channels:(index + 1) * channels]


def _backward_batch(n, bottom_points, top_points, top_diff, bottom_diff,
                    height, width, channels, kernel_size, threshold, max_distance):
    for h in range(height):
        for w in range(width):
            index_pixel = n * height * width + h * width + w
            X1, Y1, Z1 = top_points[index_pixel * 3:(index_pixel + 1) * 3]
            if math.isnan(X1) or math.isnan(Y1) or math.isnan(Z1):
                continue
            dmin, fx, fy = _nearest(bottom_points, n, h, w, X1, Y1, Z1, height, width, kernel_size, max_distance)
            if fx >= 0 and dmin < threshold:
                index = n * height * width + fy * width + fx
                bottom_diff[index * channels:(index + 1) * channels] += \
                    top_diff[index_pixel * channels:(index_pixel + 1) * channels]


def _run(fn, batch_size: int, num_workers: int, *args) -> None:
    if num_workers <= 1 or batch_size <= 1:
        for n in range(batch_size):
            fn(n, *args)
        return
    with ThreadPoolExecutor(max_workers=min(num_workers, batch_size)) as executor:
        futures = [executor.submit(fn, n, *args) for n in range(batch_size)]
        for future in futures:
            future.result()


def compute_flow_reference(
    data: np.ndarray,
    prev_points: np.ndarray,
    depth: np.ndarray,
    meta: np.ndarray,
    kernel_size: int,
    threshold: float,
    max_distance: float = 1000.0,
    num_workers: int = 1,
) -> Tuple[np.ndarray, np.ndarray]:
    """Loop-based forward pass. Shapes as in :func:`geoflow.core.transfer.compute_flow`."""
    check_params(kernel_size, threshold)
    data = np.ascontiguousarray(data)
    N, H, W, C = data.shape
    num_meta = meta.shape[-1]
    if num_meta < META_MIN_LENGTH:
        raise ShapeError(f"Need at least {META_MIN_LENGTH} meta values, got {num_meta}")
    dtype = data.dtype

    top_data = np.empty(N * H * W * C, dtype=dtype)
    top_points = np.empty(N * H * W * 3, dtype=dtype)
    _run(
        _forward_batch, N, num_workers,
        data.reshape(-1),
        np.ascontiguousarray(prev_points, dtype=dtype).reshape(-1),
        np.ascontiguousarray(depth, dtype=dtype).reshape(-1),
        np.ascontiguousarray(meta, dtype=dtype).reshape(-1),
        top_data, top_points, H, W, C, num_meta, kernel_size, float32_threshold(threshold), dtype.type(max_distance),
    )
    return top_data.reshape(N, H, W, C), top_points.reshape(N, H, W, 3)


def compute_flow_grad_reference(
    prev_points: np.ndarray,
    curr_points: np.ndarray,
    grad: np.ndarray,
    kernel_size: int,
    threshold: float,
    max_distance: float = 1000.0,
    num_workers: int = 1,
) -> np.ndarray:
    """Loop-based backward pass. Shapes as in :func:`geoflow.core.transfer.compute_flow_grad`."""
    check_params(kernel_size, threshold)
    grad = np.ascontiguousarray(grad)
    N, H, W, C = grad.shape
    dtype = grad.dtype

    bottom_diff = np.zeros(N * H * W * C, dtype=dtype)
    _run(
        _backward_batch, N, num_workers,
        np.ascontiguousarray(prev_points, dtype=dtype).reshape(-1),
        np.ascontiguousarray(curr_points, dtype=dtype).reshape(-1),
        grad.reshape(-1),
        bottom_diff, H, W, C, kernel_size, float32_threshold(threshold), dtype.type(max_distance),
    )
    return bottom_diff.reshape(N, H, W, C)
