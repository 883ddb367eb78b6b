"""Forward gather and backward scatter through geometric correspondences."""

import logging
from typing import Tuple

import torch

from .camera import backproject, point_validity, META_MIN_LENGTH
from .errors import ConfigurationError, ShapeError
from .matching import match_points

logger = logging.getLogger(__name__)


def check_params(kernel_size: int, threshold: float) -> None:
    if isinstance(kernel_size, bool) or not isinstance(kernel_size, int):
        raise ConfigurationError(f"Need integer kernel_size, got {kernel_size!r}")
    if kernel_size < 0:
        raise ConfigurationError(f"Need kernel_size >= 0, got {kernel_size}")
    # NaN fails this comparison too
    if not threshold >= 0:
        raise ConfigurationError(f"Need threshold >= 0, got {threshold}")


def _check_4d(name: str, x: torch.Tensor) -> None:
    if x.dim() != 4:
        raise ShapeError(f"{name} must be 4-dimensional, got shape {tuple(x.shape)}")


def validate_inputs(
    data: torch.Tensor,
    prev_points: torch.Tensor,
    depth: torch.Tensor,
    meta: torch.Tensor,
) -> None:
    """Check ranks, shared (N, H, W) and channel counts of forward inputs."""
    for name, x in (("data", data), ("points", prev_points), ("depth", depth), ("meta data", meta)):
        _check_4d(name, x)
    N, H, W, _ = data.shape
    if prev_points.shape != (N, H, W, 3):
        raise ShapeError(f"points must be [{N}, {H}, {W}, 3], got {tuple(prev_points.shape)}")
    if depth.shape != (N, H, W, 1):
        raise ShapeError(f"depth must be [{N}, {H}, {W}, 1], got {tuple(depth.shape)}")
    if meta.shape[:3] != (N, 1, 1) or meta.shape[3] < META_MIN_LENGTH:
        raise ShapeError(f"meta data must be [{N}, 1, 1, >={META_MIN_LENGTH}], got {tuple(meta.shape)}")


def validate_grad_inputs(prev_points: torch.Tensor, curr_points: torch.Tensor, grad: torch.Tensor) -> None:
    """Check ranks and shared (N, H, W) of backward inputs."""
    for name, x in (("bottom points", prev_points), ("top points", curr_points), ("grad", grad)):
        _check_4d(name, x)
    N, H, W, _ = grad.shape
    for name, x in (("bottom points", prev_points), ("top points", curr_points)):
        if x.shape != (N, H, W, 3):
            raise ShapeError(f"{name} must be [{N}, {H}, {W}, 3], got {tuple(x.shape)}")


def compute_flow(
    data: torch.Tensor,
    prev_points: torch.Tensor,
    depth: torch.Tensor,
    meta: torch.Tensor,
    kernel_size: int,
    threshold: float,
    max_distance: float = 1000.0,
) -> Tuple[torch.Tensor, torch.Tensor]:
    """Transfer features onto the current frame by 3D nearest-neighbour matching.

    Each current pixel is backprojected with its depth and the metadata
    record; the closest defined point of ``prev_points`` inside the window is
    looked up and, when closer than ``threshold``, ``data`` at that location
    is copied into the output. Unmatched pixels stay zero.

    Args:
        data: [N, H, W, C] features to transfer
        prev_points: [N, H, W, 3] previous frame world points (NaN = undefined)
        depth: [N, H, W, 1] current frame depth
        meta: [N, 1, 1, M] metadata record
        kernel_size: search window half-width
        threshold: exclusive match distance bound

    Returns:
        out_data: [N, H, W, C]
        out_points: [N, H, W, 3] current frame world points (NaN = undefined)
    """
    check_params(kernel_size, threshold)
    N, H, W, C = data.shape

    points, valid = backproject(depth.to(data.dtype), meta)
    match = match_points(points, valid, prev_points, kernel_size, threshold, max_distance)

    out_data = data.new_zeros(N, H, W, C)
    src = data.reshape(-1, C)
    dst = out_data.view(-1, C)
    m = match.matched.reshape(-1)
    dst[m] = src[match.index.reshape(-1)[m]]

    logger.debug(
        "compute_flow: %d/%d points defined, %d matched (k=%d, threshold=%g)",
        int(valid.sum()), valid.numel(), int(match.matched.sum()), kernel_size, threshold,
    )
    return out_data, points


def compute_flow_grad(
    prev_points: torch.Tensor,
    curr_points: torch.Tensor,
    grad: torch.Tensor,
    kernel_size: int,
    threshold: float,
    max_distance: float = 1000.0,
) -> torch.Tensor:
    """Scatter ``grad`` back to the source pixels chosen by :func:`compute_flow`.

    The matching is re-derived from the recorded point fields rather than
    cached, so the same kernel_size and threshold must be passed.

    Args:
        prev_points: [N, H, W, 3] previous frame points used in forward
        curr_points: [N, H, W, 3] points returned by forward
        grad: [N, H, W, C] upstream gradient w.r.t. out_data
        kernel_size: search window half-width
        threshold: exclusive match distance bound

    Returns:
        out_grad: [N, H, W, C] gradient w.r.t. data
    """
    check_params(kernel_size, threshold)
    C = grad.shape[3]

    curr = curr_points.to(grad.dtype)
    match = match_points(curr, point_validity(curr), prev_points, kernel_size, threshold, max_distance)

    out_grad = grad.new_zeros(grad.shape)
    m = match.matched.reshape(-1)
    # Several targets may share a source; index_add_ accumulates them
    out_grad.view(-1, C).index_add_(0, match.index.reshape(-1)[m], grad.reshape(-1, C)[m])
    return out_grad
